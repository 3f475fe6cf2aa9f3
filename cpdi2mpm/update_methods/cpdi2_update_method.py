# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# CPDI2 particle domain update method ("Second-order convected particle domain
# interpolation with enrichment for weak discontinuities at material
# interfaces"). Particle domain corners interpolate with the grid; particle
# position and deformation gradient follow from the corners.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from typing import List, Optional, Sequence

import numpy as np

from cpdi2mpm.errors import CollaboratorError, EnrichmentConfigurationError, PairCapacityError
from cpdi2mpm.interfaces import GridWeightFunction, ParticleDomainUpdateMethod, VolumetricMesh
from cpdi2mpm.update_methods.domain_quadrature import DomainQuadrature
from cpdi2mpm.update_methods.enrichment import query_corner_shapes


class CPDI2UpdateMethod:
    """
    Shared implementation of the CPDI2 update. Only the 2D and 3D
    specialisations below can be constructed.

    Caller-owned containers are indexed by object, then particle (then corner):
      particle_grid_weight_and_gradient[obj][p]      -> NodeWeightGradientPairs
      corner_grid_weight_and_gradient[obj][p][c]     -> NodeWeightGradientPairs
    and must be sized to the state's object/particle counts before each call.
    """

    dim = None

    def __init__(self, cfg, state):
        if self.dim not in (2, 3):
            raise TypeError("CPDI2 update is only defined for 2D and 3D: "
                            "use CPDI2UpdateMethod2D or CPDI2UpdateMethod3D")
        if cfg.dim != self.dim or state.dim != self.dim:
            raise ValueError(f"{type(self).__name__} needs a {self.dim}D config and state, "
                             f"got cfg.dim={cfg.dim}, state.dim={state.dim}")
        self.cfg = cfg
        self.state = state
        self.corner_num = 2 ** self.dim
        self.quadrature = DomainQuadrature(self.dim, cfg.taichi_dtype)

    # ------------------------------------------------------------------ weights

    def update_particle_interpolation_weight(self, weight_function: GridWeightFunction,
                                             particle_grid_weight_and_gradient: List,
                                             corner_grid_weight_and_gradient: List):
        self._check_weight_function(weight_function)
        self._check_pair_containers(particle_grid_weight_and_gradient, corner_grid_weight_and_gradient)
        for obj in range(self.state.object_num):
            domains = self.state.particle_domains(obj)
            # raises on degenerate domains
            self.state.particle_domain_volumes(obj, self.quadrature)
            for p in range(domains.shape[0]):
                self._update_particle_interpolation_weight(
                    obj, p, weight_function, domains[p],
                    particle_grid_weight_and_gradient[obj][p], corner_grid_weight_and_gradient[obj][p])
        self._report("interpolation weights", particle_grid_weight_and_gradient)

    def update_particle_interpolation_weight_with_enrichment(
            self, weight_function: GridWeightFunction,
            particle_domain_mesh: Sequence[Optional[VolumetricMesh]],
            is_enriched_domain_corner: Sequence[np.ndarray],
            particle_grid_weight_and_gradient: List, corner_grid_weight_and_gradient: List,
            particle_corner_weight: Sequence[np.ndarray],
            particle_corner_gradient_to_reference_configuration: Sequence[np.ndarray],
            particle_corner_gradient_to_current_configuration: Sequence[np.ndarray]):
        """
        Same as `update_particle_interpolation_weight`, except that enriched
        corners are taken out of the particle's grid list and instead get their
        own shape function weight and gradients (reference and current
        configuration) from the particle domain mesh. Non-enriched corners
        report zero weight and gradients.
        """
        state = self.state
        self._check_weight_function(weight_function)
        self._check_pair_containers(particle_grid_weight_and_gradient, corner_grid_weight_and_gradient)
        self._check_object_list("particle_domain_mesh", particle_domain_mesh)
        self._check_object_list("is_enriched_domain_corner", is_enriched_domain_corner)
        corner_outputs = (particle_corner_weight, particle_corner_gradient_to_reference_configuration,
                          particle_corner_gradient_to_current_configuration)
        for name, output in zip(("particle_corner_weight",
                                 "particle_corner_gradient_to_reference_configuration",
                                 "particle_corner_gradient_to_current_configuration"), corner_outputs):
            self._check_object_list(name, output)

        flags = []
        for obj in range(state.object_num):
            n = state.particle_num(obj)
            obj_flags = np.asarray(is_enriched_domain_corner[obj], dtype=bool)
            if obj_flags.shape != (n, self.corner_num):
                raise ValueError(f"is_enriched_domain_corner[{obj}] must have shape "
                                 f"({n}, {self.corner_num}), got {obj_flags.shape}")
            if obj_flags.any() and particle_domain_mesh[obj] is None:
                raise EnrichmentConfigurationError(
                    f"object {obj} has enriched domain corners but no particle domain mesh")
            for output, shape in zip(corner_outputs, ((n, self.corner_num),
                                                      (n, self.corner_num, self.dim),
                                                      (n, self.corner_num, self.dim))):
                if np.shape(output[obj]) != shape:
                    raise ValueError(f"enrichment output of object {obj} must have shape {shape}, "
                                     f"got {np.shape(output[obj])}")
            flags.append(obj_flags)

        for obj in range(state.object_num):
            domains = state.particle_domains(obj)
            # raises on degenerate domains
            state.particle_domain_volumes(obj, self.quadrature)
            weight, gradient_to_reference, gradient_to_current = corner_outputs
            weight[obj][...] = 0
            gradient_to_reference[obj][...] = 0
            gradient_to_current[obj][...] = 0
            if flags[obj].any():
                corner_weight, corner_gradient_ref, corner_gradient_cur = query_corner_shapes(
                    self.quadrature, particle_domain_mesh[obj], state.initial_particle_domains(obj), obj)
                enriched = flags[obj]
                weight[obj][enriched] = corner_weight[enriched]
                gradient_to_reference[obj][enriched] = corner_gradient_ref[enriched]
                gradient_to_current[obj][enriched] = corner_gradient_cur[enriched]
            for p in range(domains.shape[0]):
                self._update_particle_interpolation_weight(
                    obj, p, weight_function, domains[p],
                    particle_grid_weight_and_gradient[obj][p], corner_grid_weight_and_gradient[obj][p],
                    flags[obj][p])
        self._report("enriched interpolation weights", particle_grid_weight_and_gradient)

    def _update_particle_interpolation_weight(self, object_idx, particle_idx, weight_function, domain,
                                              particle_pairs, corner_pairs, is_enriched_corner=None):
        # each corner carries 1/corner_num of its grid weight and gradient
        share = 1.0 / self.corner_num
        particle_pairs.clear()
        for c in range(self.corner_num):
            corner_list = corner_pairs[c]
            corner_list.clear()
            for node, weight, gradient in self._evaluate_weight_function(
                    weight_function, domain[c], object_idx, particle_idx, c):
                if not corner_list.try_append_or_accumulate(node, weight, gradient):
                    raise PairCapacityError(corner_list.capacity, object_idx, particle_idx, c)
                if is_enriched_corner is not None and is_enriched_corner[c]:
                    continue
                if not particle_pairs.try_append_or_accumulate(node, share * weight, share * gradient):
                    raise PairCapacityError(particle_pairs.capacity, object_idx, particle_idx)

    def _evaluate_weight_function(self, weight_function, position, object_idx, particle_idx, corner_idx):
        pairs = []
        for node, weight, gradient in weight_function.evaluate(position):
            node = tuple(int(i) for i in node)
            gradient = np.asarray(gradient, dtype=np.float64)
            where = f"object {object_idx}, particle {particle_idx}, corner {corner_idx}, node {node}"
            if len(node) != self.dim or gradient.shape != (self.dim,):
                raise CollaboratorError(f"weight function returned a malformed pair at {where}")
            if not self.state.grid.contains(node):
                raise CollaboratorError(f"weight function returned a node outside the grid at {where}")
            if not np.isfinite(weight) or not np.all(np.isfinite(gradient)):
                raise CollaboratorError(f"weight function returned non-finite values at {where}")
            pairs.append((node, float(weight), gradient))
        return pairs

    # ------------------------------------------------------------- kinematics

    def update_particle_domain(self, corner_grid_weight_and_gradient, dt):
        """Move every corner with the grid velocity interpolated by its own pair list."""
        self._check_pair_containers(None, corner_grid_weight_and_gradient)
        for obj in range(self.state.object_num):
            domains = self.state.particle_domains(obj)
            for p in range(domains.shape[0]):
                for c in range(self.corner_num):
                    pairs = corner_grid_weight_and_gradient[obj][p][c]
                    if pairs.pair_num == 0:
                        continue
                    velocity = pairs.weights() @ self.state.grid_velocity(obj, pairs.nodes())
                    domains[p, c] += dt * velocity

    def update_particle_position(self, dt, is_dirichlet_particle):
        """
        Particle position is the centroid of its domain corners. Dirichlet
        particles keep their position. `dt` is part of the shared interface;
        CPDI2 positions depend on the corners only.
        """
        self._check_object_list("is_dirichlet_particle", is_dirichlet_particle)
        for obj in range(self.state.object_num):
            n = self.state.particle_num(obj)
            fixed = np.asarray(is_dirichlet_particle[obj], dtype=bool)
            if fixed.shape != (n,):
                raise ValueError(f"is_dirichlet_particle[{obj}] must have shape ({n},), got {fixed.shape}")
            free = ~fixed
            positions = self.state.particle_positions(obj)
            positions[free] = self.state.particle_domains(obj)[free].mean(axis=1)

    def update_particle_deformation_gradient(self):
        """Recompute F from the corner displacements relative to the initial domain."""
        for obj in range(self.state.object_num):
            F = self.quadrature.deformation_gradients(
                self.state.particle_domains(obj), self.state.initial_particle_domains(obj), obj)
            self.state.deformation_gradients(obj)[...] = F

    # ------------------------------------------------------------------ checks

    def _check_weight_function(self, weight_function):
        if not isinstance(weight_function, GridWeightFunction):
            raise CollaboratorError(f"{type(weight_function).__name__} does not provide "
                                    "`support_node_num` and `evaluate(position)`")

    def _check_object_list(self, name, values):
        if len(values) != self.state.object_num:
            raise ValueError(f"{name} has {len(values)} entries for {self.state.object_num} objects")

    def _check_pair_containers(self, particle_pairs, corner_pairs):
        nums = self.state.particle_nums()
        if particle_pairs is not None:
            self._check_object_list("particle_grid_weight_and_gradient", particle_pairs)
            for obj, n in enumerate(nums):
                if len(particle_pairs[obj]) != n:
                    raise ValueError(f"particle_grid_weight_and_gradient[{obj}] has "
                                     f"{len(particle_pairs[obj])} entries for {n} particles")
        self._check_object_list("corner_grid_weight_and_gradient", corner_pairs)
        for obj, n in enumerate(nums):
            if len(corner_pairs[obj]) != n:
                raise ValueError(f"corner_grid_weight_and_gradient[{obj}] has "
                                 f"{len(corner_pairs[obj])} entries for {n} particles")
            for p in range(n):
                if len(corner_pairs[obj][p]) != self.corner_num:
                    raise ValueError(f"corner_grid_weight_and_gradient[{obj}][{p}] needs "
                                     f"{self.corner_num} corner lists")

    def _report(self, what, particle_pairs):
        if not self.cfg.verbose:
            return
        counts = [pairs.pair_num for obj_pairs in particle_pairs for pairs in obj_pairs]
        print(f"[CPDI2 {self.dim}D] {what}: {self.state.object_num} objects, {len(counts)} particles, "
              f"max {max(counts, default=0)} grid nodes per particle")


class CPDI2UpdateMethod2D(CPDI2UpdateMethod):
    """Quadrilateral particle domains, 4 corners, 2x2 Gauss points."""

    dim = 2


class CPDI2UpdateMethod3D(CPDI2UpdateMethod):
    """Hexahedral particle domains, 8 corners, 2x2x2 Gauss points."""

    dim = 3


def make_cpdi2_update_method(cfg, state) -> ParticleDomainUpdateMethod:
    if cfg.dim == 2:
        return CPDI2UpdateMethod2D(cfg, state)
    if cfg.dim == 3:
        return CPDI2UpdateMethod3D(cfg, state)
    raise ValueError(f"CPDI2 is defined for 2D and 3D only, got dim={cfg.dim}")
