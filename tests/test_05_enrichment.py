# Enriched CPDI2 weights: corner shape queries against the particle domain mesh.
import numpy as np
import pytest
import taichi as ti

from cpdi2mpm.bodies.domain_mesh import ParticleDomainMesh
from cpdi2mpm.bodies.particle_state import uniform_particle_domains
from cpdi2mpm.config.base_config import Config
from cpdi2mpm.errors import EnrichmentConfigurationError
from cpdi2mpm.update_methods.cpdi2_update_method import make_cpdi2_update_method
from cpdi2mpm.update_methods.domain_quadrature import DomainQuadrature
from cpdi2mpm.update_methods.enrichment import query_corner_shape, query_corner_shapes
from cpdi2mpm.update_methods.weight_gradient_pairs import allocate_weight_gradient_pairs


class Setup:

    def __init__(self, dim, domains):
        self.cfg = Config(dim=dim, n_grid=16, grid_dx=1.0 / 15)
        grid = self.cfg.make_grid()
        self.state = self.cfg.make_particle_state(grid)
        self.state.add_object(domains)
        self.method = make_cpdi2_update_method(self.cfg, self.state)
        self.weight_function = self.cfg.make_weight_function(grid)
        self.mesh = ParticleDomainMesh.from_particle_domains(domains)
        self.n = domains.shape[0]
        self.corner_num = self.cfg.corner_num

    def pairs(self):
        particle_capacity, corner_capacity = self.cfg.pair_capacities(self.weight_function)
        return allocate_weight_gradient_pairs(self.state.particle_nums(), self.cfg.dim, self.corner_num,
                                              particle_capacity, corner_capacity)

    def corner_outputs(self, fill=0.0):
        dim = self.cfg.dim
        return ([np.full((self.n, self.corner_num), fill)],
                [np.full((self.n, self.corner_num, dim), fill)],
                [np.full((self.n, self.corner_num, dim), fill)])

    def run_enriched(self, flags, meshes=None):
        particle_pairs, corner_pairs = self.pairs()
        weight, gradient_ref, gradient_cur = self.corner_outputs(fill=7.0)
        self.method.update_particle_interpolation_weight_with_enrichment(
            self.weight_function, meshes if meshes is not None else [self.mesh], [flags],
            particle_pairs, corner_pairs, weight, gradient_ref, gradient_cur)
        return particle_pairs, corner_pairs, weight[0], gradient_ref[0], gradient_cur[0]


def assert_same_pairs(a, b):
    assert a.pair_num == b.pair_num
    np.testing.assert_array_equal(a.nodes(), b.nodes())
    np.testing.assert_allclose(a.weights(), b.weights(), rtol=0, atol=1e-14)
    np.testing.assert_allclose(a.gradients(), b.gradients(), rtol=0, atol=1e-12)


@pytest.mark.parametrize("dim", [2, 3])
def test_no_enriched_corner_matches_plain_update(dim):
    setup = Setup(dim, uniform_particle_domains(np.full(dim, 0.4), np.full(dim, 0.6), 2))
    particle_pairs, corner_pairs = setup.pairs()
    setup.method.update_particle_interpolation_weight(setup.weight_function, particle_pairs, corner_pairs)

    flags = np.zeros((setup.n, setup.corner_num), dtype=bool)
    enriched_pairs, enriched_corner_pairs, weight, gradient_ref, gradient_cur = setup.run_enriched(flags)

    for p in range(setup.n):
        assert_same_pairs(particle_pairs[0][p], enriched_pairs[0][p])
        for c in range(setup.corner_num):
            assert_same_pairs(corner_pairs[0][p][c], enriched_corner_pairs[0][p][c])
    assert not weight.any() and not gradient_ref.any() and not gradient_cur.any()


def test_enriched_corner_leaves_particle_grid_list():
    setup = Setup(2, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 1))
    flags = np.array([[True, False, False, False]])
    particle_pairs, corner_pairs, weight, gradient_ref, gradient_cur = setup.run_enriched(flags)

    assert particle_pairs[0][0].weight_sum() == pytest.approx(0.75, abs=1e-10)
    assert corner_pairs[0][0][0].weight_sum() == pytest.approx(1.0, abs=1e-10)
    np.testing.assert_allclose(weight[0], [0.25, 0.0, 0.0, 0.0], atol=1e-12)
    # grid weights plus enriched corner weights partition unity on a parallelogram
    assert particle_pairs[0][0].weight_sum() + weight[0].sum() == pytest.approx(1.0, abs=1e-10)
    np.testing.assert_allclose(gradient_ref[0, 0], [-2.5, -2.5], atol=1e-9)
    np.testing.assert_allclose(gradient_cur[0, 0], [-2.5, -2.5], atol=1e-9)
    assert not gradient_ref[0, 1:].any()


def test_reference_and_current_gradients_follow_their_configuration():
    domains = np.array([[[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]]) * 0.1 + 0.3
    setup = Setup(2, domains)
    # stretch the mesh element (current configuration) to twice its width
    setup.mesh.update_vertex_positions(domains * [2.0, 1.0] - [0.3, 0.0])
    flags = np.array([[True, False, False, True]])
    _, _, weight, gradient_ref, gradient_cur = setup.run_enriched(flags)

    np.testing.assert_allclose(gradient_ref[0, 0], [-5.0, -5.0], atol=1e-9)
    np.testing.assert_allclose(gradient_cur[0, 0], [-2.5, -5.0], atol=1e-9)
    np.testing.assert_allclose(gradient_cur[0, 3], [2.5, 5.0], atol=1e-9)
    np.testing.assert_allclose(weight[0], [0.25, 0.0, 0.0, 0.25], atol=1e-12)


def test_enriched_flags_without_mesh_are_rejected():
    setup = Setup(2, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 1))
    flags = np.array([[False, True, False, False]])
    with pytest.raises(EnrichmentConfigurationError):
        setup.run_enriched(flags, meshes=[None])
    # no enriched corner: the mesh is never consulted
    setup.run_enriched(np.zeros((1, 4), dtype=bool), meshes=[None])


def test_mesh_element_count_must_match():
    setup = Setup(2, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 2))
    small_mesh = ParticleDomainMesh.from_particle_domains(uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 1))
    flags = np.zeros((4, 4), dtype=bool)
    flags[0, 0] = True
    with pytest.raises(EnrichmentConfigurationError):
        setup.run_enriched(flags, meshes=[small_mesh])


def test_flag_and_output_shapes_are_checked():
    setup = Setup(2, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 1))
    with pytest.raises(ValueError):
        setup.run_enriched(np.zeros((1, 8), dtype=bool))


def test_single_corner_query_matches_batched_query():
    quad = DomainQuadrature(3, ti.f64)
    initial = uniform_particle_domains([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 2)
    mesh = ParticleDomainMesh.from_particle_domains(initial)
    mesh.update_vertex_positions(initial * 1.5)
    weight, gradient_ref, gradient_cur = query_corner_shapes(quad, mesh, initial)

    w, g_ref, g_cur = query_corner_shape(quad, mesh, 5, initial[5], 6, True)
    assert w == pytest.approx(weight[5, 6])
    np.testing.assert_allclose(g_ref, gradient_ref[5, 6])
    np.testing.assert_allclose(g_cur, gradient_cur[5, 6])
    np.testing.assert_allclose(g_cur, g_ref / 1.5)

    w, g_ref, g_cur = query_corner_shape(quad, mesh, 5, initial[5], (0, 1, 1), False)
    assert w == 0.0 and not g_ref.any() and not g_cur.any()


def test_mesh_welds_shared_corners():
    domains = uniform_particle_domains([0.0, 0.0], [1.0, 1.0], 2)
    mesh = ParticleDomainMesh.from_particle_domains(domains)
    assert mesh.ele_num() == 4
    assert mesh.vert_num() == 9
    np.testing.assert_allclose(mesh.element_vertex_positions(3), domains[3])
    flags = mesh.boundary_corner_flags()
    assert flags.sum(axis=1).tolist() == [3, 3, 3, 3]
    assert mesh.vertex_valence().max() == 4


def test_mesh_without_element_queries_is_rejected():
    setup = Setup(2, uniform_particle_domains([0.4, 0.4], [0.6, 0.6], 1))
    flags = np.array([[True, False, False, False]])
    with pytest.raises(EnrichmentConfigurationError):
        setup.run_enriched(flags, meshes=[object()])
