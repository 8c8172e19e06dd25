#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Strict error model for the polynomial routing core.

Every failure is raised, never returned as a sentinel or silently downgraded.
The hierarchy mirrors the four failure kinds the routing layer knows about:

  - RoutingInputError        malformed or out-of-range input
  - RoutingNotFoundError     contact or gluing target absent
  - RoutingPreconditionError routing attempted before weights are learned
  - RoutingInternalError     gluing violated / numerical solve failed
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "RoutingError",
    "RoutingInputError",
    "RingParameterError",
    "RoutingNotFoundError",
    "RoutingPreconditionError",
    "RoutingInternalError",
    "GluingViolationError",
    "LinearAlgebraError",
    "RingPrecisionError",
]


class RoutingError(RuntimeError):
    """Base class of every error raised by the routing core."""


class RoutingInputError(RoutingError, ValueError):
    """Input is malformed or out of range."""


class RingParameterError(RoutingInputError):
    """Ring parameters are invalid, or two elements use different parameter sets."""


class RoutingNotFoundError(RoutingError, KeyError):
    """A named contact or patch does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class RoutingPreconditionError(RoutingError):
    """Operation called in the wrong lifecycle state."""


class RoutingInternalError(RoutingError):
    """Internal consistency failure."""


class GluingViolationError(RoutingInternalError):
    """A gluing constraint did not hold for a routed element."""

    def __init__(self, message: str, *, boundary: str, error_norm: Optional[float] = None):
        super().__init__(message)
        self.boundary = boundary
        self.error_norm = error_norm


class LinearAlgebraError(RoutingInternalError):
    """Numerical linear algebra failed (SVD / least squares)."""

    def __init__(self, message: str, *, analysis: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.analysis: Dict[str, Any] = dict(analysis or {})


class RingPrecisionError(RoutingInternalError):
    """FFT output drifted too far from an integer to round safely."""
