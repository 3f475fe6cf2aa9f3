# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Fixed-capacity (grid node, weight, weight gradient) pair lists with a valid
# prefix length, and the helper that sizes the nested per-object containers.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import numpy as np


class NodeWeightGradientPairs:
    """
    Bounded append-only list of grid node contributions. A grid node appears
    at most once; only the first `pair_num` slots are valid.
    """

    def __init__(self, capacity: int, dim: int, dtype=np.float64):
        self.capacity = capacity
        self.dim = dim
        self.node_indices = np.zeros((capacity, dim), dtype=np.int64)
        self.weight_values = np.zeros(capacity, dtype=dtype)
        self.gradient_values = np.zeros((capacity, dim), dtype=dtype)
        self.pair_num = 0

    def __len__(self):
        return self.pair_num

    def clear(self):
        self.pair_num = 0

    def try_append_or_accumulate(self, node_idx, weight, gradient) -> bool:
        """
        Sum into the entry of `node_idx` if present, else append it.
        Returns False, leaving the list untouched, when a new node does not fit.
        """
        n = self.pair_num
        if n > 0:
            hits = np.flatnonzero(np.all(self.node_indices[:n] == node_idx, axis=1))
            if hits.size:
                i = hits[0]
                self.weight_values[i] += weight
                self.gradient_values[i] += gradient
                return True
        if n == self.capacity:
            return False
        self.node_indices[n] = node_idx
        self.weight_values[n] = weight
        self.gradient_values[n] = gradient
        self.pair_num = n + 1
        return True

    def nodes(self):
        return self.node_indices[:self.pair_num]

    def weights(self):
        return self.weight_values[:self.pair_num]

    def gradients(self):
        return self.gradient_values[:self.pair_num]

    def weight_sum(self) -> float:
        return float(self.weights().sum())

    def find(self, node_idx):
        """Index of `node_idx` in the valid prefix, or -1."""
        hits = np.flatnonzero(np.all(self.nodes() == node_idx, axis=1))
        return int(hits[0]) if hits.size else -1


def allocate_weight_gradient_pairs(particle_nums, dim, corner_num, particle_capacity,
                                   corner_capacity, dtype=np.float64):
    """
    Build caller-owned containers sized to the current object/particle counts:
    `particle_pairs[object][particle]` and `corner_pairs[object][particle][corner]`.
    """
    particle_pairs = [[NodeWeightGradientPairs(particle_capacity, dim, dtype) for _ in range(n)]
                      for n in particle_nums]
    corner_pairs = [[[NodeWeightGradientPairs(corner_capacity, dim, dtype) for _ in range(corner_num)]
                     for _ in range(n)]
                    for n in particle_nums]
    return particle_pairs, corner_pairs
