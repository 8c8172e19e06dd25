#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ring elements of Z_p[x]/(x^n + 1).

    p(x) = c_0 + c_1 x + ... + c_{n-1} x^{n-1},   c_i in [0, p)

All operations are depth-0 (no ciphertext-ciphertext products are needed by
the routing layer), so an encrypted backend can later replace this class
operation for operation.

Invariants:
  - exactly n coefficients, every one reduced into [0, p)
  - immutable: the coefficient array is write-protected, every operation
    returns a new element
  - FFT products are rounded back to integers only while the worst drift
    from an integer stays below FFT_ROUNDING_GUARD; otherwise
    RingPrecisionError is raised instead of silently misrounding

Costs: add/subtract/rotate O(n), multiply O(n log n),
character projection table O(n K^2) once per element (cached).
"""

from __future__ import annotations

import logging
import math
import operator
from functools import cached_property
from typing import Iterable, List, Optional, Union

import numpy as np

from ring_params import RingParams, active_ring_params
from routing_errors import RingParameterError, RingPrecisionError, RoutingInputError

__all__ = [
    "Polynomial",
    "FFT_ROUNDING_GUARD",
    "round_half_away",
]

logger = logging.getLogger(__name__)

# Largest tolerated |x - round(x)| on inverse-FFT output. Exact products are
# integers, so anything near 0.5 means the float pipeline lost the value.
FFT_ROUNDING_GUARD = 0.25

Coefficients = Union[Iterable[int], np.ndarray]


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to nearest, ties away from zero (np.rint rounds ties to even)."""
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def _as_int_strict(v) -> int:
    try:
        return operator.index(v)
    except TypeError as e:
        raise RoutingInputError(f"coefficient must be int-like, got {v!r}") from e


def _reduce_coefficients(values: Coefficients, params: RingParams) -> np.ndarray:
    """
    Reduce an arbitrary-length coefficient sequence into the ring.

    x^n = -1, so the coefficient at index i lands on i mod n with sign
    (-1)^(i // n): even cycles add, odd cycles subtract.
    """
    n, p = params.degree, params.modulus
    if isinstance(values, np.ndarray) and values.dtype == np.int64:
        reduced = np.mod(values.ravel(), p)
    else:
        reduced = np.fromiter((_as_int_strict(v) % p for v in values), dtype=np.int64)

    length = int(reduced.shape[0])
    if length <= n:
        out = np.zeros(n, dtype=np.int64)
        out[:length] = reduced
        return out

    cycles = -(-length // n)
    padded = np.zeros(cycles * n, dtype=np.int64)
    padded[:length] = reduced
    signs = np.where(np.arange(cycles) % 2 == 0, 1, -1).astype(np.int64)
    folded = (padded.reshape(cycles, n) * signs[:, None]).sum(axis=0)
    return np.mod(folded, p)


class Polynomial:
    """
    Element of Z_p[x]/(x^n + 1).

    Args:
        coefficients: c_0, c_1, ... (zero-padded if shorter than n,
            folded by x^n = -1 if longer, then reduced mod p)
        params: ring parameter set; defaults to the active set
    """

    def __init__(self, coefficients: Optional[Coefficients] = None, *, params: Optional[RingParams] = None):
        self._params = params if params is not None else active_ring_params()
        self._coeffs = _reduce_coefficients(() if coefficients is None else coefficients, self._params)
        self._coeffs.setflags(write=False)

    @classmethod
    def _from_reduced(cls, coeffs: np.ndarray, params: RingParams) -> "Polynomial":
        obj = cls.__new__(cls)
        obj._params = params
        obj._coeffs = coeffs
        obj._coeffs.setflags(write=False)
        return obj

    @classmethod
    def zero(cls, params: Optional[RingParams] = None) -> "Polynomial":
        return cls(params=params)

    @classmethod
    def encode(cls, values: Iterable[int], *, params: Optional[RingParams] = None) -> "Polynomial":
        """
        Encode integer values as coefficients.

        Raises:
            RoutingInputError: more values than the ring degree
        """
        params = params if params is not None else active_ring_params()
        values = list(values)
        if len(values) > params.degree:
            raise RoutingInputError(
                f"Too many values to encode: {len(values)} > {params.degree}"
            )
        return cls(values, params=params)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def params(self) -> RingParams:
        return self._params

    @property
    def coefficients(self) -> np.ndarray:
        """Read-only view of the coefficient vector."""
        return self._coeffs

    @property
    def degree(self) -> int:
        return int(self._coeffs.shape[0]) - 1

    def decode(self) -> List[int]:
        return self._coeffs.tolist()

    def is_zero(self) -> bool:
        return not bool(np.any(self._coeffs))

    # ------------------------------------------------------------------ #
    # Ring operations
    # ------------------------------------------------------------------ #

    def _check_compatible(self, other: "Polynomial") -> None:
        if not isinstance(other, Polynomial):
            raise TypeError(f"expected Polynomial, got {type(other).__name__}")
        if other._params != self._params:
            raise RingParameterError(
                f"ring parameter mismatch: {self._params.name} vs {other._params.name}"
            )

    def add(self, other: "Polynomial") -> "Polynomial":
        self._check_compatible(other)
        return Polynomial._from_reduced(np.mod(self._coeffs + other._coeffs, self._params.modulus), self._params)

    def subtract(self, other: "Polynomial") -> "Polynomial":
        self._check_compatible(other)
        return Polynomial._from_reduced(np.mod(self._coeffs - other._coeffs, self._params.modulus), self._params)

    def multiply(self, other: "Polynomial") -> "Polynomial":
        """
        Product mod (x^n + 1, p) via FFT convolution.

        The linear convolution (length 2n-1) is computed on a power-of-two
        buffer, rounded, then folded and reduced by the constructor.
        """
        self._check_compatible(other)
        size = self._params.fft_size
        fa = np.fft.fft(self._coeffs.astype(np.float64), n=size)
        fb = np.fft.fft(other._coeffs.astype(np.float64), n=size)
        product = np.fft.ifft(fa * fb).real

        rounded = round_half_away(product)
        drift = float(np.max(np.abs(product - rounded)))
        if drift > FFT_ROUNDING_GUARD:
            raise RingPrecisionError(
                f"FFT rounding drift {drift:.3f} exceeds guard {FFT_ROUNDING_GUARD} "
                f"for ring {self._params.name} (n={self._params.degree}, p={self._params.modulus})"
            )
        return Polynomial(rounded.astype(np.int64), params=self._params)

    def multiply_scalar(self, scalar: int) -> "Polynomial":
        k = _as_int_strict(scalar) % self._params.modulus
        return Polynomial._from_reduced(np.mod(self._coeffs * k, self._params.modulus), self._params)

    def rotate(self, positions: int) -> "Polynomial":
        """
        Cyclic coefficient shift: right for positive positions, left for negative.
        The shift is normalized into [0, n) first.
        """
        shift = _as_int_strict(positions) % self._params.degree
        return Polynomial._from_reduced(np.roll(self._coeffs, shift), self._params)

    def negate(self) -> "Polynomial":
        return Polynomial._from_reduced(np.mod(-self._coeffs, self._params.modulus), self._params)

    __add__ = add
    __sub__ = subtract

    def __neg__(self) -> "Polynomial":
        return self.negate()

    def __mul__(self, other):
        if isinstance(other, Polynomial):
            return self.multiply(other)
        try:
            return self.multiply_scalar(other)
        except RoutingInputError:
            return NotImplemented

    __rmul__ = __mul__

    # ------------------------------------------------------------------ #
    # Character projection
    # ------------------------------------------------------------------ #

    @cached_property
    def _character_table(self) -> np.ndarray:
        """
        (K, n) table of all projections.

        Slot s of character j:
            round( Re( 1/K * sum_k exp(-2 pi i j k / K) * c[(s K + k) mod n] ) ) mod p
        """
        n, p, K = self._params.degree, self._params.modulus, self._params.num_characters
        ks = np.arange(K)
        windows = (np.arange(n)[:, None] * K + ks[None, :]) % n
        gathered = self._coeffs[windows].astype(np.float64)
        phase = (np.outer(ks, ks) % K) * (2.0 * math.pi / K)
        spectrum = gathered @ np.cos(phase).T / K
        table = np.mod(round_half_away(spectrum).astype(np.int64), p).T.copy()
        table.setflags(write=False)
        return table

    def character_table(self) -> np.ndarray:
        """Read-only (num_characters, n) array; row j is the projection onto character j."""
        return self._character_table

    def project_to_character(self, character_index: int) -> "Polynomial":
        """
        Raises:
            RoutingInputError: index outside [0, num_characters)
        """
        K = self._params.num_characters
        if not isinstance(character_index, (int, np.integer)) or not 0 <= character_index < K:
            raise RoutingInputError(
                f"Character index out of range: {character_index} (must be 0-{K - 1})"
            )
        return Polynomial._from_reduced(self._character_table[int(character_index)].copy(), self._params)

    def project_to_all_characters(self) -> List["Polynomial"]:
        projections: List[Polynomial] = []
        for j in range(self._params.num_characters):
            try:
                projections.append(self.project_to_character(j))
            except RoutingInputError as e:
                logger.warning("skipping character %d: %s", j, e)
        return projections

    # ------------------------------------------------------------------ #
    # Comparison / display
    # ------------------------------------------------------------------ #

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Polynomial):
            return NotImplemented
        return self._params == other._params and bool(np.array_equal(self._coeffs, other._coeffs))

    def __hash__(self) -> int:
        return hash((self._params, self._coeffs.tobytes()))

    def __len__(self) -> int:
        return int(self._coeffs.shape[0])

    def __repr__(self) -> str:
        head = ", ".join(str(c) for c in self._coeffs[:4].tolist())
        more = ", ..." if self._coeffs.shape[0] > 4 else ""
        return f"Polynomial({self._params.name}: [{head}{more}])"
