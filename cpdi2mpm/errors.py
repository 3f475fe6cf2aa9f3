# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Fatal error types raised by the CPDI2 particle domain update method.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------


class CPDIError(RuntimeError):
    """Base class for every fatal condition raised by the CPDI2 update."""


class PairCapacityError(CPDIError):
    """A fixed-capacity node/weight/gradient pair list ran out of slots."""

    def __init__(self, capacity, object_idx, particle_idx, corner_idx=None):
        self.capacity = capacity
        self.object_idx = object_idx
        self.particle_idx = particle_idx
        self.corner_idx = corner_idx
        owner = f"object {object_idx}, particle {particle_idx}"
        if corner_idx is not None:
            owner += f", corner {corner_idx}"
        super().__init__(
            f"pair list capacity {capacity} exceeded ({owner}); "
            f"grid weight function support does not fit the buffer size"
        )


class DegenerateDomainError(CPDIError):
    """A particle domain has a non-positive Jacobian determinant."""

    def __init__(self, object_idx, particle_idx, determinant, configuration="current"):
        self.object_idx = object_idx
        self.particle_idx = particle_idx
        self.determinant = determinant
        self.configuration = configuration
        super().__init__(
            f"{configuration} domain of object {object_idx}, particle {particle_idx} "
            f"is degenerate or has wrong corner order (min det(J) = {determinant:g})"
        )


class CollaboratorError(CPDIError):
    """A collaborator (grid weight function, mesh) returned unusable data."""


class EnrichmentConfigurationError(CPDIError):
    """Enrichment requested for an object without a valid domain mesh."""
