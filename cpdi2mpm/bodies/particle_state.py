# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# CPDIParticleState: simulation-owned particle storage handed to the CPDI2
# update method each step. Initial and current particle domains, particle
# positions, deformation gradients and the grid velocity of every object.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import itertools

import numpy as np

from cpdi2mpm.update_methods.domain_quadrature import corner_natural_signs


def uniform_particle_domains(lower, upper, particles_per_axis, dtype=np.float64):
    """
    Split the box [lower, upper] into axis-aligned particle domains, returned
    as `(n, 2**dim, dim)` with corners in natural-coordinate order.
    """
    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)
    dim = len(lower)
    counts = tuple(int(n) for n in np.broadcast_to(particles_per_axis, (dim,)))
    h = (upper - lower) / np.asarray(counts)
    signs = np.asarray(corner_natural_signs(dim))
    unit_corners = 0.5 * (signs + 1.0)

    domains = []
    for cell in itertools.product(*(range(n) for n in counts)):
        cell_lower = lower + np.asarray(cell) * h
        domains.append(cell_lower + unit_corners * h)
    return np.asarray(domains, dtype=dtype).reshape(-1, 2 ** dim, dim)


class CPDIParticleState:
    """
    Per-object particle storage. Update methods read the initial domains and
    write the current domains, positions and deformation gradients in place.
    """

    def __init__(self, grid, dtype=np.float64):
        self.grid = grid
        self.dim = grid.dim
        self.corner_num = 2 ** self.dim
        self.dtype = dtype
        self._initial_domains = []
        self._domains = []
        self._positions = []
        self._deformation_gradients = []
        self._grid_velocities = []

    @property
    def object_num(self) -> int:
        return len(self._domains)

    def particle_num(self, object_idx) -> int:
        return self._domains[object_idx].shape[0]

    def particle_nums(self):
        return [d.shape[0] for d in self._domains]

    def add_object(self, initial_domains) -> int:
        domains = np.array(initial_domains, dtype=self.dtype)
        if domains.ndim != 3 or domains.shape[1:] != (self.corner_num, self.dim):
            raise ValueError(f"particle domains must have shape (n, {self.corner_num}, {self.dim}), "
                             f"got {domains.shape}")
        n = domains.shape[0]
        initial = domains.copy()
        initial.setflags(write=False)
        self._initial_domains.append(initial)
        self._domains.append(domains)
        self._positions.append(domains.mean(axis=1))
        self._deformation_gradients.append(np.tile(np.eye(self.dim, dtype=self.dtype), (n, 1, 1)))
        self._grid_velocities.append(self.grid.zero_velocity_field(self.dtype))
        return self.object_num - 1

    def initial_particle_domains(self, object_idx):
        return self._initial_domains[object_idx]

    def particle_domains(self, object_idx):
        return self._domains[object_idx]

    def particle_positions(self, object_idx):
        return self._positions[object_idx]

    def deformation_gradients(self, object_idx):
        return self._deformation_gradients[object_idx]

    def grid_velocity_field(self, object_idx):
        return self._grid_velocities[object_idx]

    def set_grid_velocity_field(self, object_idx, velocity):
        field = self._grid_velocities[object_idx]
        velocity = np.asarray(velocity, dtype=self.dtype)
        if velocity.shape != field.shape:
            raise ValueError(f"grid velocity must have shape {field.shape}, got {velocity.shape}")
        field[...] = velocity

    def grid_velocity(self, object_idx, node_idx):
        """Velocity at one node `(dim,)` or at a batch of nodes `(k, dim)`."""
        node_idx = np.asarray(node_idx, dtype=np.int64)
        return self._grid_velocities[object_idx][tuple(node_idx.T)]

    def particle_domain_volumes(self, object_idx, quadrature):
        integrals = quadrature.integrate_particle_domains(self._domains[object_idx])
        quadrature.check_domains(integrals.min_jacobian_det, object_idx)
        return integrals.volume
