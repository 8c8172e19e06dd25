#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Algebraic route encoding and wreath-style routing weights.

Encoding:
    R = message + destination          (encode_route)
    message = R - destination          (extract_message)

The relay never needs the endpoints in the clear: it only applies ring
operations to R. The source ID is accepted for auditing / future schemes but
has no algebraic effect in the base scheme.

Routing weights:
    w[p][j] = weight of character chi_j at network position p
    out[p]  = round( sum_j w[p][j] * Proj_chi_j(in)[p] )      p < min(P, n)

For fixed input the routed output is linear in the flattened weight table
(index p*K + j), which is what lets the weights be learned in one
least-squares solve (position_design_matrix).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ring_polynomial import Polynomial, round_half_away
from routing_errors import RingParameterError, RoutingInputError
from sheaf_linalg import NumericalLinearAlgebraConfig, solve_least_squares

__all__ = [
    "RoutingWeights",
    "RoutingExample",
    "MAILBOX_ID_BITS",
    "encode_route",
    "extract_message",
    "position_design_matrix",
    "position_targets",
    "learn_routing_weights",
    "apply_routing_weights",
    "embed_mailbox_id",
    "extract_mailbox_id",
    "mailbox_payload",
]

logger = logging.getLogger(__name__)

MAILBOX_ID_BITS = 64


# ============================================================================
# Data structures
# ============================================================================

@dataclass(frozen=True)
class RoutingWeights:
    """
    weights[position][character]; every row has the same length.
    Rows are stored as tuples so a learned table cannot be altered in place.
    """

    weights: Tuple[Tuple[float, ...], ...] = ()

    def __post_init__(self) -> None:
        rows = tuple(tuple(float(w) for w in row) for row in self.weights)
        if rows and any(len(r) != len(rows[0]) for r in rows):
            raise RoutingInputError(
                f"routing weight rows must have equal length, got {[len(r) for r in rows]}"
            )
        object.__setattr__(self, "weights", rows)

    @property
    def num_positions(self) -> int:
        return len(self.weights)

    @property
    def num_characters(self) -> int:
        return len(self.weights[0]) if self.weights else 0

    @classmethod
    def uniform(cls, num_positions: int, num_characters: int) -> "RoutingWeights":
        if num_positions <= 0 or num_characters <= 0:
            raise RoutingInputError("Invalid dimensions")
        value = 1.0 / num_characters
        return cls(tuple((value,) * num_characters for _ in range(num_positions)))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RoutingWeights":
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 2:
            raise RoutingInputError(f"weight array must be 2-D, got shape {array.shape}")
        return cls(tuple(tuple(row) for row in array.tolist()))

    def as_array(self) -> np.ndarray:
        if not self.weights:
            return np.zeros((0, 0), dtype=np.float64)
        return np.array(self.weights, dtype=np.float64)


@dataclass(frozen=True)
class RoutingExample:
    """Training tuple for weight learning."""

    source: Polynomial
    destination: Polynomial
    message: Polynomial
    expected_output: Polynomial


def _require_same_ring(*polys: Polynomial) -> None:
    for poly in polys:
        if not isinstance(poly, Polynomial):
            raise RoutingInputError(f"expected Polynomial, got {type(poly).__name__}")
    first = polys[0].params
    for poly in polys[1:]:
        if poly.params != first:
            raise RingParameterError(f"ring parameter mismatch: {first.name} vs {poly.params.name}")


# ============================================================================
# Route encoding
# ============================================================================

def encode_route(source: Polynomial, destination: Polynomial, message: Polynomial) -> Polynomial:
    """R = message + destination. ``source`` has no algebraic effect."""
    _require_same_ring(source, destination, message)
    return message.add(destination)


def extract_message(routed: Polynomial, my_id: Polynomial) -> Polynomial:
    """
    Exact inverse of encode_route with respect to the destination term.
    No integrity check happens at this layer.
    """
    _require_same_ring(routed, my_id)
    return routed.subtract(my_id)


# ============================================================================
# Weight learning / application
# ============================================================================

def position_design_matrix(element: Polynomial, num_positions: int, num_characters: int) -> np.ndarray:
    """
    Linear map from a flattened weight table to the unrounded routed output.

    Returns a (num_positions, num_positions * num_characters) matrix M with
        M[p, p*K + j] = Proj_chi_j(element)[p]
    for p < n and j below both num_characters and the ring's character count.
    Everything else is zero.
    """
    table = element.character_table()
    ring_chars, n = table.shape
    chars = min(num_characters, ring_chars)
    rows = min(num_positions, n)
    matrix = np.zeros((num_positions, num_positions * num_characters), dtype=np.float64)
    for p in range(rows):
        start = p * num_characters
        matrix[p, start:start + chars] = table[:chars, p]
    return matrix


def position_targets(expected: Polynomial, num_positions: int) -> np.ndarray:
    """First num_positions coefficients of ``expected`` (zero beyond the ring degree)."""
    coeffs = expected.coefficients
    targets = np.zeros(num_positions, dtype=np.float64)
    count = min(num_positions, coeffs.shape[0])
    targets[:count] = coeffs[:count]
    return targets


def learn_routing_weights(
    examples: Sequence[RoutingExample],
    num_positions: int,
    num_characters: int,
    *,
    la_cfg: Optional[NumericalLinearAlgebraConfig] = None,
) -> RoutingWeights:
    """
    Closed-form weights for a single patch: w* = argmin ||A w - b||^2 where
    each example contributes position_design_matrix(message) against the
    first num_positions coefficients of its expected output.

    Raises:
        RoutingInputError: no examples or non-positive dimensions
        LinearAlgebraError: the solve failed
    """
    if not examples:
        raise RoutingInputError("No training examples provided")
    if num_positions <= 0 or num_characters <= 0:
        raise RoutingInputError("Invalid dimensions")

    a = np.vstack([position_design_matrix(ex.message, num_positions, num_characters) for ex in examples])
    b = np.concatenate([position_targets(ex.expected_output, num_positions) for ex in examples])
    solution = solve_least_squares(a, b, la_cfg)
    logger.info(
        "learned routing weights: examples=%d shape=%dx%d residual=%.3e rank=%d",
        len(examples),
        num_positions,
        num_characters,
        solution.residual,
        solution.rank,
    )
    return RoutingWeights.from_array(solution.weights.reshape(num_positions, num_characters))


def apply_routing_weights(input_poly: Polynomial, weights: RoutingWeights) -> Polynomial:
    """
    Wreath-style position-dependent character weighting.

    Returns ``input_poly`` unchanged when the table's character count does not
    match the ring's projection count.
    """
    projections = input_poly.project_to_all_characters()
    if len(projections) != weights.num_characters:
        logger.warning(
            "weight table has %d characters but ring projects onto %d; routing is a no-op",
            weights.num_characters,
            len(projections),
        )
        return input_poly

    n = input_poly.params.degree
    limit = min(weights.num_positions, n)
    table = np.vstack([proj.coefficients for proj in projections]).astype(np.float64)
    w = weights.as_array()[:limit]
    sums = np.einsum("pj,jp->p", w, table[:, :limit])
    if not np.all(np.isfinite(sums)):
        raise RoutingInputError("routing weights produced non-finite output")

    out = np.zeros(n, dtype=np.int64)
    out[:limit] = round_half_away(sums).astype(np.int64)
    return Polynomial(out, params=input_poly.params)


# ============================================================================
# Mailbox addressing
# ============================================================================

def _require_mailbox_room(poly: Polynomial) -> None:
    if poly.params.degree < MAILBOX_ID_BITS:
        raise RoutingInputError(
            f"ring degree {poly.params.degree} cannot hold a {MAILBOX_ID_BITS}-bit mailbox id"
        )


def embed_mailbox_id(mailbox_id: int, message: Polynomial) -> Polynomial:
    """
    Spread the mailbox id one bit per coefficient over c_0..c_63, and shift
    the message into c_64.. (what does not fit is dropped).
    """
    _require_mailbox_room(message)
    if not isinstance(mailbox_id, int) or not 0 <= mailbox_id < (1 << MAILBOX_ID_BITS):
        raise RoutingInputError(f"mailbox id must be an unsigned {MAILBOX_ID_BITS}-bit int, got {mailbox_id!r}")

    n = message.params.degree
    coeffs = np.zeros(n, dtype=np.int64)
    coeffs[:MAILBOX_ID_BITS] = [(mailbox_id >> i) & 1 for i in range(MAILBOX_ID_BITS)]
    room = n - MAILBOX_ID_BITS
    payload = message.coefficients
    coeffs[MAILBOX_ID_BITS:] = payload[:room]
    if np.any(payload[room:]):
        logger.warning("mailbox embedding dropped %d trailing message coefficients", int(np.count_nonzero(payload[room:])))
    return Polynomial(coeffs, params=message.params)


def extract_mailbox_id(poly: Polynomial) -> int:
    """Inverse of embed_mailbox_id: the low bit of c_i is bit i of the id."""
    _require_mailbox_room(poly)
    bits: List[int] = (poly.coefficients[:MAILBOX_ID_BITS] & 1).tolist()
    return sum(bit << i for i, bit in enumerate(bits))


def mailbox_payload(poly: Polynomial) -> Polynomial:
    """Message part of an element built by embed_mailbox_id, shifted back to c_0."""
    _require_mailbox_room(poly)
    return Polynomial(poly.coefficients[MAILBOX_ID_BITS:].copy(), params=poly.params)
