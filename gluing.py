#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Gluing constraints: boundary consistency between patches.

Sheaf gluing axiom for routing: local routing functions must be compatible
where patches meet. A constraint names the patches it couples and the
boundary element; the sheaf router turns it into rows C of the global system
C . w = rhs and attaches them to an assembled copy (the declared constraint
itself is never mutated).

Kinds:
  CONTINUITY   phi_2(phi_1(b)) = b across one boundary: both patches fix b
  PERIODICITY  phi_k(...phi_1(b)) = b around a closed chain: every patch fixes b
  CUSTOM       caller-supplied rows over the two patches' weight blocks
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from ring_polynomial import Polynomial
from routing_errors import RoutingInputError

__all__ = [
    "GluingKind",
    "GluingConstraint",
    "DEFAULT_GLUING_TOLERANCE",
    "create_continuity",
    "create_periodicity",
    "create_custom",
]

DEFAULT_GLUING_TOLERANCE = 1e-6


class GluingKind(Enum):
    CONTINUITY = "continuity"
    PERIODICITY = "periodicity"
    CUSTOM = "custom"


@dataclass(frozen=True)
class GluingConstraint:
    patch_1_id: str
    patch_2_id: str
    boundary: Polynomial
    kind: GluingKind
    patch_ids: Tuple[str, ...] = ()
    # Filled in by the sheaf router during assembly (or by create_custom).
    constraint_matrix: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    constraint_rhs: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    @property
    def is_assembled(self) -> bool:
        return self.constraint_matrix is not None

    def describe(self) -> str:
        return f"{self.patch_1_id} -> {self.patch_2_id}"

    def chain_ids(self) -> Tuple[str, ...]:
        """Patches the boundary passes through, in order, each once."""
        ids = self.patch_ids or (self.patch_1_id, self.patch_2_id)
        return tuple(dict.fromkeys(i for i in ids if i))

    def verify(self, routed: Polynomial, tolerance: float = DEFAULT_GLUING_TOLERANCE) -> bool:
        """L2 distance between ``routed`` and the boundary, coefficients taken as reals."""
        routed_coeffs = routed.coefficients
        boundary_coeffs = self.boundary.coefficients
        if routed_coeffs.shape != boundary_coeffs.shape:
            return False
        diff = routed_coeffs.astype(np.float64) - boundary_coeffs.astype(np.float64)
        return float(np.linalg.norm(diff)) < tolerance

    def error_norm(self, routed: Polynomial) -> float:
        if routed.coefficients.shape != self.boundary.coefficients.shape:
            return float("inf")
        diff = routed.coefficients.astype(np.float64) - self.boundary.coefficients.astype(np.float64)
        return float(np.linalg.norm(diff))


def create_continuity(patch_1_id: str, patch_2_id: str, boundary: Polynomial) -> GluingConstraint:
    """Routing ``boundary`` through patch 1 then patch 2 must give back ``boundary``."""
    return GluingConstraint(
        patch_1_id=patch_1_id,
        patch_2_id=patch_2_id,
        boundary=boundary,
        kind=GluingKind.CONTINUITY,
        patch_ids=(patch_1_id, patch_2_id),
    )


def create_periodicity(patch_ids: Sequence[str], start: Polynomial) -> GluingConstraint:
    """Circular routing over ``patch_ids`` (in order) returns to ``start``."""
    ids = tuple(patch_ids)
    return GluingConstraint(
        patch_1_id=ids[0] if ids else "",
        patch_2_id=ids[-1] if ids else "",
        boundary=start,
        kind=GluingKind.PERIODICITY,
        patch_ids=ids,
    )


def create_custom(
    patch_1_id: str,
    patch_2_id: str,
    boundary: Polynomial,
    matrix,
    rhs=None,
) -> GluingConstraint:
    """
    Caller-defined rows C . [w_1 ; w_2] = rhs.

    Columns cover patch 1's flattened weight block followed by patch 2's
    (one block when both ids are equal). ``rhs`` defaults to zeros.
    """
    c = np.array(matrix, dtype=np.float64, ndmin=2)
    if c.ndim != 2 or c.shape[0] == 0:
        raise RoutingInputError(f"custom constraint matrix must be non-empty 2-D, got shape {c.shape}")
    r = np.zeros(c.shape[0], dtype=np.float64) if rhs is None else np.asarray(rhs, dtype=np.float64).ravel()
    if r.shape[0] != c.shape[0]:
        raise RoutingInputError(f"custom constraint rhs has {r.shape[0]} entries for {c.shape[0]} rows")
    c.setflags(write=False)
    r.setflags(write=False)
    return GluingConstraint(
        patch_1_id=patch_1_id,
        patch_2_id=patch_2_id,
        boundary=boundary,
        kind=GluingKind.CUSTOM,
        patch_ids=(patch_1_id, patch_2_id),
        constraint_matrix=c,
        constraint_rhs=r,
    )
