# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# DomainQuadrature: Taichi kernels for the bilinear/trilinear particle domain
# map. Jacobian in natural coordinates, 2-point-per-axis Gauss integration of
# corner shape functions and their gradients, and the deformation gradient
# recovered from corner displacements.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import math
from collections import namedtuple

import numpy as np
import taichi as ti

from cpdi2mpm.errors import DegenerateDomainError


DomainIntegrals = namedtuple("DomainIntegrals", ["weight", "gradient", "volume", "min_jacobian_det"])


def corner_natural_signs(dim):
    # bit d of the flat corner index selects the side along axis d
    return [tuple(1.0 if (c >> d) & 1 else -1.0 for d in range(dim)) for c in range(2 ** dim)]


def flat_corner_index(corner_idx) -> int:
    """Accept a flat index or a per-axis (0/1) natural index."""
    if isinstance(corner_idx, (int, np.integer)):
        return int(corner_idx)
    return sum(int(bit) << d for d, bit in enumerate(corner_idx))


@ti.data_oriented
class DomainQuadrature:
    """
    Numerical kernel over particle domains stored as `(n, corner_num, dim)`
    arrays, corners in natural-coordinate order (first axis fastest).
    All per-particle loops are parallel over particles.
    """

    def __init__(self, dim, dtype=ti.f64):
        if dim not in (2, 3):
            raise ValueError(f"dim must be 2 or 3, got {dim}")
        self.dim = dim
        self.dtype = dtype
        self.np_dtype = np.float32 if dtype == ti.f32 else np.float64
        self.corner_num = 2 ** dim
        self.corner_signs = corner_natural_signs(dim)

        g = 1.0 / math.sqrt(3.0)
        self.gauss_points = [[g * s for s in signs] for signs in self.corner_signs]
        self.gauss_weight = 1.0

    @ti.func
    def shape_function(self, c: ti.template(), xi):
        value = ti.cast(1.0, self.dtype)
        for d in ti.static(range(self.dim)):
            value *= 0.5 * (1.0 + self.corner_signs[c][d] * xi[d])
        return value

    @ti.func
    def shape_function_natural_gradient(self, c: ti.template(), xi):
        grad = ti.Vector.zero(self.dtype, self.dim)
        for d in ti.static(range(self.dim)):
            value = ti.cast(0.5 * self.corner_signs[c][d], self.dtype)
            for e in ti.static(range(self.dim)):
                if ti.static(e != d):
                    value *= 0.5 * (1.0 + self.corner_signs[c][e] * xi[e])
            grad[d] = value
        return grad

    @ti.func
    def jacobian(self, xi, x):
        # row d holds the derivative of the physical position w.r.t. xi[d]
        jacobian = ti.Matrix.zero(self.dtype, self.dim, self.dim)
        for c in ti.static(range(self.corner_num)):
            dN = self.shape_function_natural_gradient(c, xi)
            for d, k in ti.static(ti.ndrange(self.dim, self.dim)):
                jacobian[d, k] += dN[d] * x[c, k]
        return jacobian

    @ti.kernel
    def _jacobian(self, point: ti.types.ndarray(), domain: ti.types.ndarray(), out: ti.types.ndarray()):
        xi = ti.Vector.zero(self.dtype, self.dim)
        for d in ti.static(range(self.dim)):
            xi[d] = point[d]
        x = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
        for c, k in ti.static(ti.ndrange(self.corner_num, self.dim)):
            x[c, k] = domain[c, k]
        jacobian = self.jacobian(xi, x)
        for d, k in ti.static(ti.ndrange(self.dim, self.dim)):
            out[d, k] = jacobian[d, k]

    @ti.kernel
    def _integrate(self, domains: ti.types.ndarray(), weight_integral: ti.types.ndarray(),
                   gradient_integral: ti.types.ndarray(), volume: ti.types.ndarray(),
                   min_det: ti.types.ndarray()):
        for p in range(domains.shape[0]):
            x = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
            for c, k in ti.static(ti.ndrange(self.corner_num, self.dim)):
                x[c, k] = domains[p, c, k]

            vol = ti.cast(0.0, self.dtype)
            det_min = ti.cast(1.0e30, self.dtype)
            N_int = ti.Vector.zero(self.dtype, self.corner_num)
            dN_int = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
            for g in ti.static(range(len(self.gauss_points))):
                xi = ti.Vector(self.gauss_points[g], dt=self.dtype)
                jacobian = self.jacobian(xi, x)
                det = jacobian.determinant()
                det_min = ti.min(det_min, det)
                measure = ti.abs(det) * self.gauss_weight
                vol += measure
                jacobian_inv = jacobian.inverse()
                for c in ti.static(range(self.corner_num)):
                    N_int[c] += self.shape_function(c, xi) * measure
                    grad = jacobian_inv @ self.shape_function_natural_gradient(c, xi)
                    for k in ti.static(range(self.dim)):
                        dN_int[c, k] += grad[k] * measure

            for c in ti.static(range(self.corner_num)):
                weight_integral[p, c] = N_int[c]
                for k in ti.static(range(self.dim)):
                    gradient_integral[p, c, k] = dN_int[c, k]
            volume[p] = vol
            min_det[p] = det_min

    @ti.kernel
    def _integrate_reference(self, domains: ti.types.ndarray(), initial_domains: ti.types.ndarray(),
                             gradient_integral: ti.types.ndarray(), volume: ti.types.ndarray(),
                             min_det: ti.types.ndarray(), min_initial_det: ti.types.ndarray()):
        for p in range(domains.shape[0]):
            x = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
            X = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
            for c, k in ti.static(ti.ndrange(self.corner_num, self.dim)):
                x[c, k] = domains[p, c, k]
                X[c, k] = initial_domains[p, c, k]

            vol = ti.cast(0.0, self.dtype)
            det_min = ti.cast(1.0e30, self.dtype)
            initial_det_min = ti.cast(1.0e30, self.dtype)
            dN_int = ti.Matrix.zero(self.dtype, self.corner_num, self.dim)
            for g in ti.static(range(len(self.gauss_points))):
                xi = ti.Vector(self.gauss_points[g], dt=self.dtype)
                jacobian = self.jacobian(xi, x)
                initial_jacobian = self.jacobian(xi, X)
                det_min = ti.min(det_min, jacobian.determinant())
                initial_det = initial_jacobian.determinant()
                initial_det_min = ti.min(initial_det_min, initial_det)
                # reference volume element; F^T = J0^-1 J maps grad_x N to grad_X N
                measure = ti.abs(initial_det) * self.gauss_weight
                vol += measure
                jacobian_inv = jacobian.inverse()
                to_reference = initial_jacobian.inverse() @ jacobian
                for c in ti.static(range(self.corner_num)):
                    grad_current = jacobian_inv @ self.shape_function_natural_gradient(c, xi)
                    grad = to_reference @ grad_current
                    for k in ti.static(range(self.dim)):
                        dN_int[c, k] += grad[k] * measure

            for c, k in ti.static(ti.ndrange(self.corner_num, self.dim)):
                gradient_integral[p, c, k] = dN_int[c, k]
            volume[p] = vol
            min_det[p] = det_min
            min_initial_det[p] = initial_det_min

    def _as_domains(self, domains):
        domains = np.ascontiguousarray(domains, dtype=self.np_dtype)
        if not domains.flags.writeable:
            domains = domains.copy()
        if domains.ndim == 2:
            domains = domains[None]
        if domains.shape[1:] != (self.corner_num, self.dim):
            raise ValueError(f"particle domains must have shape (n, {self.corner_num}, {self.dim}), "
                             f"got {domains.shape}")
        return domains

    def particle_domain_jacobian(self, natural_point, domain):
        """Jacobian of the domain map at `natural_point`, derivatives as rows."""
        point = np.ascontiguousarray(natural_point, dtype=self.np_dtype)
        domain = self._as_domains(domain)[0]
        out = np.zeros((self.dim, self.dim), dtype=self.np_dtype)
        self._jacobian(point, domain, out)
        return out

    def integrate_particle_domains(self, domains) -> DomainIntegrals:
        """
        Gauss integrals over every domain: per corner the shape function value
        and its gradient w.r.t. the physical coordinates of that same domain,
        plus the domain volume and the smallest det(J) seen at a Gauss point.
        """
        domains = self._as_domains(domains)
        n = domains.shape[0]
        weight = np.zeros((n, self.corner_num), dtype=self.np_dtype)
        gradient = np.zeros((n, self.corner_num, self.dim), dtype=self.np_dtype)
        volume = np.zeros(n, dtype=self.np_dtype)
        min_det = np.zeros(n, dtype=self.np_dtype)
        if n > 0:
            self._integrate(domains, weight, gradient, volume, min_det)
        return DomainIntegrals(weight, gradient, volume, min_det)

    def integrate_reference_gradients(self, domains, initial_domains, object_idx=0):
        """
        Per corner the integral of grad_X N_c over the initial domain, and the
        initial volume. The shape gradient is taken on the current geometry
        and pulled back with the Gauss-point F; the volume element is det(J)
        of the initial domain. Both snapshots must be non-degenerate.
        """
        domains = self._as_domains(domains)
        initial_domains = self._as_domains(initial_domains)
        if domains.shape != initial_domains.shape:
            raise ValueError(f"current {domains.shape} and initial {initial_domains.shape} domains differ in shape")
        n = domains.shape[0]
        gradient = np.zeros((n, self.corner_num, self.dim), dtype=self.np_dtype)
        volume = np.zeros(n, dtype=self.np_dtype)
        min_det = np.zeros(n, dtype=self.np_dtype)
        min_initial_det = np.zeros(n, dtype=self.np_dtype)
        if n > 0:
            self._integrate_reference(domains, initial_domains, gradient, volume, min_det, min_initial_det)
            self.check_domains(min_initial_det, object_idx, "initial")
            self.check_domains(min_det, object_idx)
        return gradient, volume

    def deformation_gradients(self, domains, initial_domains, object_idx=0):
        """F = I + (1/V0) sum_c u_c (x) integral(grad_X N_c dV0) for every particle."""
        gradient, volume = self.integrate_reference_gradients(domains, initial_domains, object_idx)
        displacement = self._as_domains(domains) - self._as_domains(initial_domains)
        F = np.einsum("pcj,pck->pjk", displacement, gradient) / volume[:, None, None]
        return F + np.eye(self.dim, dtype=self.np_dtype)

    @staticmethod
    def check_domains(min_jacobian_det, object_idx, configuration="current"):
        bad = np.flatnonzero(~(min_jacobian_det > 0))
        if bad.size:
            p = int(bad[0])
            raise DegenerateDomainError(object_idx, p, float(min_jacobian_det[p]), configuration)

    def gauss_integrate_shape_function_value(self, corner_idx, domain) -> float:
        integrals = self.integrate_particle_domains(domain)
        self.check_domains(integrals.min_jacobian_det, 0)
        return float(integrals.weight[0, flat_corner_index(corner_idx)])

    def gauss_integrate_shape_function_gradient_to_current_coordinate(self, corner_idx, domain):
        integrals = self.integrate_particle_domains(domain)
        self.check_domains(integrals.min_jacobian_det, 0)
        return integrals.gradient[0, flat_corner_index(corner_idx)]

    def gauss_integrate_shape_function_gradient_to_reference_coordinate(self, corner_idx, domain, initial_domain):
        gradient, _ = self.integrate_reference_gradients(domain, initial_domain)
        return gradient[0, flat_corner_index(corner_idx)]
