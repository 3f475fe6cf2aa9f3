# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Corner shape queries for enriched particle domain corners: the corner's own
# shape function weight and its gradients in the reference and the current
# configuration, evaluated against the particle domain mesh.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import numpy as np

from cpdi2mpm.errors import EnrichmentConfigurationError
from cpdi2mpm.interfaces import VolumetricMesh
from cpdi2mpm.update_methods.domain_quadrature import flat_corner_index


def _check_mesh(mesh):
    if not isinstance(mesh, VolumetricMesh):
        raise EnrichmentConfigurationError(f"{type(mesh).__name__} is not a volumetric mesh")


def _mesh_domains(mesh: VolumetricMesh, particle_indices, corner_num, dim):
    domains = np.zeros((len(particle_indices), corner_num, dim))
    for i, p in enumerate(particle_indices):
        positions = np.asarray(mesh.element_vertex_positions(p), dtype=np.float64)
        if positions.shape != (corner_num, dim):
            raise EnrichmentConfigurationError(
                f"mesh element {p} has vertex array of shape {positions.shape}, "
                f"expected ({corner_num}, {dim})")
        domains[i] = positions
    return domains


def query_corner_shapes(quadrature, mesh: VolumetricMesh, initial_domains, object_idx=0):
    """
    Volume-averaged corner shape data for every particle of one object:
    weight (n, corners), gradient to reference and to current configuration
    (n, corners, dim). The current configuration is the mesh element geometry,
    the reference configuration is the initial particle domain.
    """
    _check_mesh(mesh)
    n = initial_domains.shape[0]
    if mesh.ele_num() != n:
        raise EnrichmentConfigurationError(
            f"object {object_idx}: mesh has {mesh.ele_num()} elements for {n} particles")

    mesh_domains = _mesh_domains(mesh, range(n), quadrature.corner_num, quadrature.dim)
    current = quadrature.integrate_particle_domains(mesh_domains)
    quadrature.check_domains(current.min_jacobian_det, object_idx)
    reference_gradient, reference_volume = quadrature.integrate_reference_gradients(
        mesh_domains, initial_domains, object_idx)

    weight = current.weight / current.volume[:, None]
    gradient_to_current = current.gradient / current.volume[:, None, None]
    gradient_to_reference = reference_gradient / reference_volume[:, None, None]
    return weight, gradient_to_reference, gradient_to_current


def query_corner_shape(quadrature, mesh: VolumetricMesh, particle_idx, initial_domain, corner_idx, enriched):
    """(weight, gradient to reference, gradient to current) of one corner; zeros unless enriched."""
    dim = quadrature.dim
    if not enriched:
        return 0.0, np.zeros(dim), np.zeros(dim)
    _check_mesh(mesh)
    c = flat_corner_index(corner_idx)
    mesh_domain = _mesh_domains(mesh, [particle_idx], quadrature.corner_num, dim)
    current = quadrature.integrate_particle_domains(mesh_domain)
    quadrature.check_domains(current.min_jacobian_det, 0)
    reference_gradient, reference_volume = quadrature.integrate_reference_gradients(mesh_domain, initial_domain)
    return (float(current.weight[0, c] / current.volume[0]),
            reference_gradient[0, c] / reference_volume[0],
            current.gradient[0, c] / current.volume[0])
