"""
Network patches: named regions of the relay topology.

Each patch owns a fixed routing-weight table and exposes its local routing
function phi_p (a ring map built from apply_routing_weights). Patches refer
to each other only by id; boundaries live in gluing constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ring_polynomial import Polynomial
from routing_polynomial import RoutingWeights, apply_routing_weights

__all__ = ["Patch"]


@dataclass(frozen=True)
class Patch:
    patch_id: str
    weights: RoutingWeights

    @classmethod
    def create(cls, patch_id: str, weights: RoutingWeights) -> "Patch":
        return cls(patch_id, weights)

    @property
    def num_positions(self) -> int:
        return self.weights.num_positions

    def apply_local_routing(self, input_poly: Polynomial) -> Polynomial:
        """phi_p(input)."""
        return apply_routing_weights(input_poly, self.weights)

    def project_to_characters(self, poly: Polynomial) -> List[Polynomial]:
        return poly.project_to_all_characters()

    def with_weights(self, weights: RoutingWeights) -> "Patch":
        """Same patch id, new table."""
        return Patch(self.patch_id, weights)
