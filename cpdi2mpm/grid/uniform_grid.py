# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Uniform background grid and the tensor-product weight functions the CPDI2
# update queries at particle domain corners (linear tent, quadratic B-spline).
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import itertools

import numpy as np


class UniformGrid:
    """Axis-aligned grid with `node_num[d]` nodes along axis d, spaced `dx` apart."""

    def __init__(self, origin, dx, node_num):
        self.origin = np.asarray(origin, dtype=np.float64)
        self.dim = len(self.origin)
        self.dx = float(dx)
        self.inv_dx = 1.0 / self.dx
        self.node_num = tuple(int(n) for n in node_num)
        if len(self.node_num) != self.dim:
            raise ValueError(f"node_num needs {self.dim} entries, got {len(self.node_num)}")

    def node_position(self, node_idx):
        return self.origin + np.asarray(node_idx, dtype=np.float64) * self.dx

    def contains(self, node_idx) -> bool:
        return all(0 <= i < n for i, n in zip(node_idx, self.node_num))

    def zero_velocity_field(self, dtype=np.float64):
        return np.zeros(self.node_num + (self.dim,), dtype=dtype)


class TensorProductWeightFunction:
    """
    Weight N_i(x) = prod_d w(fx_d) over a fixed stencil of nodes starting at
    `base`. Subclasses provide the 1D stencil weights and their derivatives.
    """

    stencil: int = 0
    base_shift: float = 0.0

    def __init__(self, grid: UniformGrid):
        self.grid = grid
        self.dim = grid.dim
        self.support_node_num = self.stencil ** self.dim
        self._offsets = list(itertools.product(range(self.stencil), repeat=self.dim))

    def stencil_weights(self, fx):
        raise NotImplementedError

    def evaluate(self, position):
        grid = self.grid
        xp = (np.asarray(position, dtype=np.float64) - grid.origin) * grid.inv_dx
        base = np.floor(xp - self.base_shift).astype(np.int64)
        fx = xp - base
        w, dw = self.stencil_weights(fx)
        dw = dw * grid.inv_dx

        pairs = []
        for offset in self._offsets:
            node = tuple(int(b + o) for b, o in zip(base, offset))
            if not grid.contains(node):
                continue
            weight = 1.0
            gradient = np.ones(self.dim)
            for d in range(self.dim):
                weight *= w[offset[d]][d]
                for e in range(self.dim):
                    gradient[e] *= dw[offset[d]][d] if e == d else w[offset[d]][d]
            pairs.append((node, weight, gradient))
        return pairs


class LinearWeightFunction(TensorProductWeightFunction):
    """Tent function with support radius dx, two nodes per axis."""

    stencil = 2
    base_shift = 0.0

    def stencil_weights(self, fx):
        w = np.array([1.0 - fx, fx])
        dw = np.array([-np.ones_like(fx), np.ones_like(fx)])
        return w, dw


class QuadraticBSplineWeightFunction(TensorProductWeightFunction):
    """Quadratic B-spline with support radius 1.5 dx, three nodes per axis."""

    stencil = 3
    base_shift = 0.5

    def stencil_weights(self, fx):
        w = np.array([0.5 * (1.5 - fx) ** 2, 0.75 - (fx - 1.0) ** 2, 0.5 * (fx - 0.5) ** 2])
        dw = np.array([fx - 1.5, -2.0 * (fx - 1.0), fx - 0.5])
        return w, dw
