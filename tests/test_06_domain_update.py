# Corner, position and deformation gradient updates driven by grid velocities.
import numpy as np
import pytest

from cpdi2mpm.bodies.particle_state import uniform_particle_domains
from cpdi2mpm.config.base_config import Config
from cpdi2mpm.update_methods.cpdi2_update_method import make_cpdi2_update_method
from cpdi2mpm.update_methods.weight_gradient_pairs import allocate_weight_gradient_pairs


class NearestNodeWeightFunction:
    """Weight 1 at the nearest grid node, nothing elsewhere."""

    support_node_num = 1

    def __init__(self, grid):
        self.grid = grid

    def evaluate(self, position):
        node = tuple(int(i) for i in np.rint((position - self.grid.origin) * self.grid.inv_dx))
        return [(node, 1.0, np.zeros(self.grid.dim))]


def build(cfg, *objects, weight_function=None):
    grid = cfg.make_grid()
    state = cfg.make_particle_state(grid)
    for domains in objects:
        state.add_object(domains)
    method = make_cpdi2_update_method(cfg, state)
    if weight_function is None:
        weight_function = cfg.make_weight_function(grid)
    else:
        weight_function = weight_function(grid)
    particle_capacity, corner_capacity = cfg.pair_capacities(weight_function)
    particle_pairs, corner_pairs = allocate_weight_gradient_pairs(
        state.particle_nums(), cfg.dim, cfg.corner_num, particle_capacity, corner_capacity)
    return state, method, weight_function, particle_pairs, corner_pairs


def node_positions(grid):
    axes = [np.arange(n) for n in grid.node_num]
    return grid.origin + np.stack(np.meshgrid(*axes, indexing='ij'), axis=-1) * grid.dx


def test_unit_square_translates_with_grid():
    cfg = Config(dim=2, n_grid=4, grid_dx=1.0)
    square = np.array([[[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]])
    state, method, weight_function, particle_pairs, corner_pairs = build(
        cfg, square, weight_function=NearestNodeWeightFunction)
    velocity = np.zeros(state.grid_velocity_field(0).shape)
    velocity[..., 0] = 1.0
    state.set_grid_velocity_field(0, velocity)
    np.testing.assert_allclose(state.particle_positions(0), [[0.5, 0.5]])

    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    assert particle_pairs[0][0].weight_sum() == pytest.approx(1.0)
    method.update_particle_domain(corner_pairs, dt=1.0)
    np.testing.assert_allclose(state.particle_domains(0), square + [1.0, 0.0])

    method.update_particle_position(1.0, [np.zeros(1, dtype=bool)])
    np.testing.assert_allclose(state.particle_positions(0), [[1.5, 0.5]])

    method.update_particle_deformation_gradient()
    np.testing.assert_allclose(state.deformation_gradients(0)[0], np.eye(2), atol=1e-12)
    np.testing.assert_array_equal(state.initial_particle_domains(0), square)


def test_dirichlet_particle_keeps_position():
    cfg = Config(dim=2, n_grid=16, grid_dx=1.0 / 15)
    domains = uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 2)
    state, method, weight_function, particle_pairs, corner_pairs = build(cfg, domains)
    velocity = np.zeros(state.grid_velocity_field(0).shape)
    velocity[..., 1] = -2.0
    state.set_grid_velocity_field(0, velocity)

    fixed = np.array([True, False, False, True])
    before = state.particle_positions(0).copy()
    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    method.update_particle_domain(corner_pairs, dt=0.01)
    method.update_particle_position(0.01, [fixed])

    after = state.particle_positions(0)
    np.testing.assert_array_equal(after[fixed], before[fixed])
    np.testing.assert_allclose(after[~fixed], before[~fixed] + [0.0, -0.02], atol=1e-12)
    # corners of fixed particles still follow the grid
    np.testing.assert_allclose(state.particle_domains(0)[0], domains[0] + [0.0, -0.02], atol=1e-12)


def test_zero_time_step_is_a_no_op():
    cfg = Config(dim=2, n_grid=16, grid_dx=1.0 / 15)
    domains = uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 2)
    state, method, weight_function, particle_pairs, corner_pairs = build(cfg, domains)
    state.set_grid_velocity_field(0, np.ones(state.grid_velocity_field(0).shape))
    positions = state.particle_positions(0).copy()

    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    method.update_particle_domain(corner_pairs, dt=0.0)
    method.update_particle_position(0.0, [np.zeros(4, dtype=bool)])
    np.testing.assert_array_equal(state.particle_domains(0), domains)
    np.testing.assert_allclose(state.particle_positions(0), positions, atol=1e-15)


@pytest.mark.parametrize("dim", [2, 3])
def test_affine_grid_velocity_gives_affine_deformation(dim):
    cfg = Config(dim=dim, n_grid=16, grid_dx=1.0 / 15)
    domains = uniform_particle_domains(np.full(dim, 0.4), np.full(dim, 0.6), 2)
    state, method, weight_function, particle_pairs, corner_pairs = build(cfg, domains)
    center = np.full(dim, 0.5)
    L = np.zeros((dim, dim))
    L[0, 1] = 1.0
    L[1, 1] = -0.5
    state.set_grid_velocity_field(0, (node_positions(state.grid) - center) @ L.T)

    dt = 0.05
    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    method.update_particle_domain(corner_pairs, dt)
    method.update_particle_position(dt, [np.zeros(len(domains), dtype=bool)])
    method.update_particle_deformation_gradient()

    expected = domains + dt * (domains - center) @ L.T
    np.testing.assert_allclose(state.particle_domains(0), expected, atol=1e-12)
    np.testing.assert_allclose(state.particle_positions(0), expected.mean(axis=1), atol=1e-12)
    for F in state.deformation_gradients(0):
        np.testing.assert_allclose(F, np.eye(dim) + dt * L, atol=1e-10)


def test_objects_are_updated_independently():
    cfg = Config(dim=3, n_grid=16, grid_dx=1.0 / 15)
    block = uniform_particle_domains([0.4, 0.4, 0.4], [0.6, 0.6, 0.6], 1)
    state, method, weight_function, particle_pairs, corner_pairs = build(cfg, block, block + 0.1)
    velocity = np.zeros(state.grid_velocity_field(1).shape)
    velocity[..., 2] = -1.0
    state.set_grid_velocity_field(1, velocity)

    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    method.update_particle_domain(corner_pairs, dt=0.1)
    method.update_particle_position(0.1, [np.zeros(1, dtype=bool)] * 2)
    method.update_particle_deformation_gradient()

    np.testing.assert_allclose(state.particle_domains(0), block)
    np.testing.assert_allclose(state.particle_domains(1), block + 0.1 + [0.0, 0.0, -0.1], atol=1e-12)
    np.testing.assert_allclose(state.particle_positions(1), [[0.6, 0.6, 0.5]], atol=1e-12)
    np.testing.assert_allclose(state.deformation_gradients(1)[0], np.eye(3), atol=1e-12)


def test_dirichlet_flags_shape_is_checked():
    cfg = Config(dim=2, n_grid=16, grid_dx=1.0 / 15)
    state, method, *_ = build(cfg, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 2))
    with pytest.raises(ValueError):
        method.update_particle_position(0.1, [np.zeros(3, dtype=bool)])
    with pytest.raises(ValueError):
        method.update_particle_position(0.1, [])


def test_grid_velocity_lookup_and_domain_volumes():
    cfg = Config(dim=2, n_grid=8, grid_dx=1.0)
    square = np.array([[[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]]) * [2.0, 1.0]
    state, method, *_ = build(cfg, square)
    velocity = np.zeros(state.grid_velocity_field(0).shape)
    velocity[7, 0] = [3.0, 0.0]
    velocity[1, 2] = [0.0, -1.0]
    state.set_grid_velocity_field(0, velocity)

    np.testing.assert_array_equal(state.grid_velocity(0, (7, 0)), [3.0, 0.0])
    np.testing.assert_array_equal(state.grid_velocity(0, [[7, 0], [1, 2], [0, 0]]),
                                  [[3.0, 0.0], [0.0, -1.0], [0.0, 0.0]])
    np.testing.assert_allclose(state.particle_domain_volumes(0, method.quadrature), [2.0])


def test_single_precision_config_reaches_particle_state():
    cfg = Config(dim=2, dtype="float32", n_grid=16, grid_dx=1.0 / 15)
    domains = uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 2)
    state, method, weight_function, particle_pairs, corner_pairs = build(cfg, domains)
    assert state.particle_domains(0).dtype == np.float32
    assert state.grid_velocity_field(0).dtype == np.float32
    state.set_grid_velocity_field(0, np.ones(state.grid_velocity_field(0).shape))

    method.update_particle_interpolation_weight(weight_function, particle_pairs, corner_pairs)
    method.update_particle_domain(corner_pairs, dt=0.01)
    method.update_particle_deformation_gradient()
    assert state.deformation_gradients(0).dtype == np.float32
    np.testing.assert_allclose(state.particle_domains(0), domains + 0.01, atol=1e-5)
    np.testing.assert_allclose(state.deformation_gradients(0), np.tile(np.eye(2), (4, 1, 1)), atol=1e-5)
