# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Configuration module for the CPDI2 particle domain update: dimensionality,
# numeric precision, background grid, weight function and pair-list sizing.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from dataclasses import dataclass, fields
from typing import Tuple

import numpy as np
import taichi as ti
import yaml


@dataclass
class Config:
    """
    Configuration for the CPDI2 update method and the background grid it
    interpolates with. Tweak these parameters to control the dimension,
    precision and the sizing of the node/weight/gradient buffers.
    """

    # -------------------------- Simulation Dimensions --------------------------
    dim: int = 2  # Spatial dimensionality: 2 (quadrilateral domains) or 3 (hexahedral)
    dtype: str = "float64"  # Numeric precision: "float32" or "float64"
    arch: str = "cpu"  # Taichi backend passed to ti.init by drivers

    # ------------------------------ Background Grid ----------------------------
    n_grid: int = 32  # Grid nodes per axis
    grid_origin: Tuple[float, ...] = (0.0, 0.0, 0.0)  # Position of node (0, ..., 0); extra entries ignored
    grid_dx: float = 1.0 / 31  # Node spacing
    weight_function: str = "quadratic"  # "linear" (tent) or "quadratic" (B-spline)

    # --------------------------- Pair-list Capacities --------------------------
    particle_pair_capacity: int = 0  # 0: derive from weight function support
    corner_pair_capacity: int = 0  # 0: derive from weight function support

    # ---------------------------- Time Stepping -------------------------------
    dt: float = 1e-3  # Fixed time step size (in seconds)
    max_steps: int = 100  # Steps run by the demo driver

    verbose: bool = False  # Print a summary line per update call

    def __post_init__(self):
        if self.dim not in (2, 3):
            raise ValueError(f"dim must be 2 or 3, got {self.dim}")
        if self.dtype not in ("float32", "float64"):
            raise ValueError(f"dtype must be 'float32' or 'float64', got {self.dtype!r}")
        if self.weight_function not in ("linear", "quadratic"):
            raise ValueError(f"Unknown weight function: {self.weight_function!r}")
        if self.dt <= 0:
            raise ValueError(f"Time step dt must be positive, got {self.dt}")
        if self.grid_dx <= 0:
            raise ValueError(f"Grid spacing must be positive, got {self.grid_dx}")
        if self.n_grid < 2:
            raise ValueError(f"n_grid must be at least 2, got {self.n_grid}")
        if self.particle_pair_capacity < 0 or self.corner_pair_capacity < 0:
            raise ValueError("Pair capacities must be non-negative")
        if len(self.grid_origin) < self.dim:
            raise ValueError(f"grid_origin needs {self.dim} entries, got {len(self.grid_origin)}")
        self.grid_origin = tuple(float(x) for x in self.grid_origin)

    @classmethod
    def from_yaml(cls, path) -> "Config":
        with open(path, "r") as f:
            overrides = yaml.safe_load(f) or {}
        if not isinstance(overrides, dict):
            raise ValueError(f"{path}: expected a mapping of config keys")
        known = {f.name for f in fields(cls)}
        for key in overrides:
            if key not in known:
                raise ValueError(f"Unknown config key: {key}")
        if "grid_origin" in overrides:
            overrides["grid_origin"] = tuple(overrides["grid_origin"])
        return cls(**overrides)

    @property
    def corner_num(self) -> int:
        return 2 ** self.dim

    @property
    def taichi_dtype(self):
        return ti.f32 if self.dtype == "float32" else ti.f64

    @property
    def numpy_dtype(self):
        return np.float32 if self.dtype == "float32" else np.float64

    def make_grid(self):
        from cpdi2mpm.grid.uniform_grid import UniformGrid
        return UniformGrid(self.grid_origin[:self.dim], self.grid_dx, (self.n_grid,) * self.dim)

    def make_weight_function(self, grid=None):
        from cpdi2mpm.grid.uniform_grid import LinearWeightFunction, QuadraticBSplineWeightFunction
        grid = grid if grid is not None else self.make_grid()
        if self.weight_function == "linear":
            return LinearWeightFunction(grid)
        return QuadraticBSplineWeightFunction(grid)

    def make_particle_state(self, grid=None):
        from cpdi2mpm.bodies.particle_state import CPDIParticleState
        grid = grid if grid is not None else self.make_grid()
        return CPDIParticleState(grid, self.numpy_dtype)

    def pair_capacities(self, weight_function) -> Tuple[int, int]:
        """(particle capacity, corner capacity); explicit settings win over the derived bound."""
        corner_capacity = self.corner_pair_capacity or weight_function.support_node_num
        particle_capacity = self.particle_pair_capacity or self.corner_num * corner_capacity
        return particle_capacity, corner_capacity

    def summary(self) -> str:
        """Return a human-readable summary of the configuration."""
        return f"""
CPDI2 Configuration:
====================
Dimension: {self.dim}D ({self.corner_num} corners per particle domain)
Precision: {self.dtype}  Backend: {self.arch}
Grid: {self.n_grid}^{self.dim} nodes, dx = {self.grid_dx:g}, origin = {self.grid_origin[:self.dim]}
Weight function: {self.weight_function}
Pair capacities: particle = {self.particle_pair_capacity or 'auto'}, corner = {self.corner_pair_capacity or 'auto'}
Time step: {self.dt} s, steps: {self.max_steps}
"""
