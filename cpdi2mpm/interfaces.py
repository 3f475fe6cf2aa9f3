# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Capability interfaces for the collaborators of the CPDI2 update method:
# the grid weight function, the particle domain mesh used by enrichment, and
# the five per-timestep operations every dimension specialisation provides.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


NodeIndex = Tuple[int, ...]
WeightGradient = Tuple[NodeIndex, float, np.ndarray]


@runtime_checkable
class GridWeightFunction(Protocol):
    """
    Interpolation kernel between a physical point and the background grid.
    Must be stateless per call so particle workers may share it.
    """

    support_node_num: int

    def evaluate(self, position: np.ndarray) -> Iterable[WeightGradient]:
        ...


@runtime_checkable
class VolumetricMesh(Protocol):
    """Topology provider whose element `p` is the domain of particle `p`."""

    def ele_num(self) -> int:
        ...

    def element_vertex_positions(self, ele_idx: int) -> np.ndarray:
        ...


@runtime_checkable
class ParticleDomainUpdateMethod(Protocol):
    """The per-timestep operations of a CPDI2 update method."""

    dim: int
    corner_num: int

    def update_particle_interpolation_weight(self, weight_function: GridWeightFunction,
                                             particle_grid_weight_and_gradient: List,
                                             corner_grid_weight_and_gradient: List) -> None:
        ...

    def update_particle_interpolation_weight_with_enrichment(
            self, weight_function: GridWeightFunction,
            particle_domain_mesh: Sequence[Optional[VolumetricMesh]],
            is_enriched_domain_corner: Sequence[np.ndarray],
            particle_grid_weight_and_gradient: List,
            corner_grid_weight_and_gradient: List,
            particle_corner_weight: Sequence[np.ndarray],
            particle_corner_gradient_to_reference_configuration: Sequence[np.ndarray],
            particle_corner_gradient_to_current_configuration: Sequence[np.ndarray]) -> None:
        ...

    def update_particle_domain(self, corner_grid_weight_and_gradient: List, dt: float) -> None:
        ...

    def update_particle_position(self, dt: float, is_dirichlet_particle: Sequence[np.ndarray]) -> None:
        ...

    def update_particle_deformation_gradient(self) -> None:
        ...
