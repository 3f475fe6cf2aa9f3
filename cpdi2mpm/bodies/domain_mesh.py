# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# ParticleDomainMesh: quadrilateral/hexahedral volumetric mesh whose element p
# is the domain of particle p, with corners shared between adjacent domains.
# Queried by the enriched CPDI2 weight update.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import numpy as np


class ParticleDomainMesh:

    def __init__(self, vertices, elements):
        self.vertices = np.array(vertices, dtype=np.float64)
        self.elements = np.array(elements, dtype=np.int64)
        if self.elements.ndim != 2 or self.elements.shape[1] != 2 ** self.vertices.shape[1]:
            raise ValueError(f"elements must have shape (n, {2 ** self.vertices.shape[1]}), "
                             f"got {self.elements.shape}")
        if self.elements.size and (self.elements.min() < 0 or self.elements.max() >= len(self.vertices)):
            raise ValueError("element vertex index out of range")
        self.dim = self.vertices.shape[1]

    @classmethod
    def from_particle_domains(cls, domains, tolerance=1e-9):
        """Weld coincident domain corners into shared mesh vertices."""
        domains = np.asarray(domains, dtype=np.float64)
        n, corner_num, dim = domains.shape
        lookup = {}
        vertices = []
        elements = np.zeros((n, corner_num), dtype=np.int64)
        for p in range(n):
            for c in range(corner_num):
                key = tuple(np.round(domains[p, c] / tolerance).astype(np.int64))
                if key not in lookup:
                    lookup[key] = len(vertices)
                    vertices.append(domains[p, c])
                elements[p, c] = lookup[key]
        return cls(np.asarray(vertices).reshape(-1, dim), elements)

    def ele_num(self) -> int:
        return self.elements.shape[0]

    def vert_num(self) -> int:
        return self.vertices.shape[0]

    def element_vertex_positions(self, ele_idx):
        return self.vertices[self.elements[ele_idx]]

    def vertex_valence(self):
        """Number of elements sharing each vertex."""
        return np.bincount(self.elements.reshape(-1), minlength=self.vert_num())

    def boundary_corner_flags(self):
        """(n, corners) flags of element corners on the mesh boundary."""
        return self.vertex_valence()[self.elements] < self.elements.shape[1]

    def update_vertex_positions(self, domains):
        domains = np.asarray(domains, dtype=np.float64)
        if domains.shape[:2] != self.elements.shape:
            raise ValueError(f"domains {domains.shape} do not match mesh elements {self.elements.shape}")
        self.vertices[self.elements.reshape(-1)] = domains.reshape(-1, self.dim)
