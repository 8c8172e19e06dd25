#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ring parameter sets for Z_p[x]/(x^n + 1).

Three fixed sets are shipped:

  SAFE        n=64,   p=65537, 8 characters   (local testing, default)
  MEDIUM      n=256,  p=65537, 16 characters  (small networks)
  PRODUCTION  n=4096, p=65537, 64 characters  (large networks)

The active set is a deployment choice, read once from the environment:

  POLYROUTE_RING_PARAMS=SAFE|MEDIUM|PRODUCTION

Redlines:
  - An unknown value in the environment is a deployment error and raises.
  - Every set is validated on construction: prime modulus, and enough
    double-precision headroom for exact FFT convolution.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple

from routing_errors import RingParameterError

__all__ = [
    "RingParams",
    "SAFE_PARAMS",
    "MEDIUM_PARAMS",
    "PRODUCTION_PARAMS",
    "PARAMETER_SETS",
    "RING_PARAMS_ENV",
    "DEFAULT_ROUTING_POSITIONS",
    "FFT_HEADROOM_BITS",
    "resolve_ring_params",
    "active_ring_params",
]

RING_PARAMS_ENV = "POLYROUTE_RING_PARAMS"

# Network depth used when a patch does not declare its own table shape.
DEFAULT_ROUTING_POSITIONS = 8

# Largest exact convolution term n * (p-1)^2 allowed, as a power of two.
# float64 carries 53 mantissa bits; the rest absorbs FFT round-off.
FFT_HEADROOM_BITS = 50


def _is_prime(p: int) -> bool:
    if p <= 1:
        return False
    if p <= 3:
        return True
    if p % 2 == 0:
        return False
    r = int(math.isqrt(p))
    f = 3
    while f <= r:
        if p % f == 0:
            return False
        f += 2
    return True


@dataclass(frozen=True)
class RingParams:
    """
    One (degree, modulus, character count) triple.

    Attributes:
        name: label of the set (SAFE / MEDIUM / PRODUCTION / custom)
        degree: n, number of coefficients
        modulus: p, prime coefficient modulus
        num_characters: K, size of the discrete character basis
        routing_positions: default network depth of a weight table
    """

    name: str
    degree: int
    modulus: int
    num_characters: int
    routing_positions: int = DEFAULT_ROUTING_POSITIONS

    def __post_init__(self) -> None:
        if not isinstance(self.degree, int) or self.degree < 1:
            raise RingParameterError(f"degree must be a positive int, got {self.degree!r}")
        if not isinstance(self.modulus, int) or not _is_prime(self.modulus):
            raise RingParameterError(f"modulus must be a prime int, got {self.modulus!r}")
        if not isinstance(self.num_characters, int) or self.num_characters < 1:
            raise RingParameterError(
                f"num_characters must be a positive int, got {self.num_characters!r}"
            )
        if not isinstance(self.routing_positions, int) or self.routing_positions < 1:
            raise RingParameterError(
                f"routing_positions must be a positive int, got {self.routing_positions!r}"
            )
        if self.max_convolution_term >= (1 << FFT_HEADROOM_BITS):
            raise RingParameterError(
                f"{self.name}: n*(p-1)^2 = {self.max_convolution_term} exceeds 2^{FFT_HEADROOM_BITS}; "
                f"FFT multiplication could not round back to integers exactly"
            )

    @property
    def max_convolution_term(self) -> int:
        """Upper bound on any coefficient of the unreduced product of two elements."""
        return self.degree * (self.modulus - 1) ** 2

    @property
    def fft_size(self) -> int:
        """Smallest power of two >= 2n."""
        size = 1
        while size < 2 * self.degree:
            size *= 2
        return size

    def shape(self) -> Tuple[int, int, int]:
        return (self.degree, self.modulus, self.num_characters)


SAFE_PARAMS = RingParams(name="SAFE", degree=64, modulus=65537, num_characters=8)
MEDIUM_PARAMS = RingParams(name="MEDIUM", degree=256, modulus=65537, num_characters=16)
PRODUCTION_PARAMS = RingParams(name="PRODUCTION", degree=4096, modulus=65537, num_characters=64)

PARAMETER_SETS: Dict[str, RingParams] = {
    p.name: p for p in (SAFE_PARAMS, MEDIUM_PARAMS, PRODUCTION_PARAMS)
}


def _env_strict_enum(name: str, *, allowed: Tuple[str, ...], default: str) -> str:
    """
    Read an env var as an enum-like string with strict validation.
    Invalid values raise (deployment/config error).
    """
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return str(default)
    val = str(raw).strip().upper()
    if val not in allowed:
        raise ValueError(f"{name} must be one of {list(allowed)}, got {raw!r}")
    return val


def resolve_ring_params(name: Optional[str] = None) -> RingParams:
    """
    Resolve a parameter set by name, or from the environment when name is None.
    """
    if name is None:
        name = _env_strict_enum(RING_PARAMS_ENV, allowed=tuple(PARAMETER_SETS), default=SAFE_PARAMS.name)
    key = str(name).strip().upper()
    if key not in PARAMETER_SETS:
        raise RingParameterError(f"unknown ring parameter set {name!r}; known: {sorted(PARAMETER_SETS)}")
    return PARAMETER_SETS[key]


@lru_cache(maxsize=1)
def active_ring_params() -> RingParams:
    """The process-wide parameter set. Call ``active_ring_params.cache_clear()`` after changing the env."""
    return resolve_ring_params()
