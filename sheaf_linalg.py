"""
Numerical linear algebra for the sheaf routing solve.

Tolerances are derived from machine precision and problem scale rather than
hard-coded constants. The least-squares solve goes through SVD (LAPACK
gelsd), never through an explicit Gram-matrix inverse, so rank-deficient
systems (more weights than equations is the normal case here) return the
minimum-norm solution instead of failing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.linalg

from routing_errors import LinearAlgebraError, RoutingInputError

__all__ = [
    "NumericalLinearAlgebraConfig",
    "LeastSquaresSolution",
    "solve_least_squares",
    "numerical_rank",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumericalLinearAlgebraConfig:
    dtype: np.dtype = np.dtype(np.float64)

    @property
    def eps(self) -> float:
        return float(np.finfo(self.dtype).eps)

    def svd_rank_tol(self, s_max: float, shape: Tuple[int, int]) -> float:
        """
        SVD rank threshold: tol = eps * max(shape) * s_max
        (the LAPACK / numpy.linalg.matrix_rank convention).
        """
        if s_max == 0:
            return 0.0
        return self.eps * float(max(shape)) * float(s_max)


@dataclass(frozen=True)
class LeastSquaresSolution:
    """
    Attributes:
        weights: minimiser w* of ||A w - b||^2 (minimum norm when not unique)
        residual: ||A w* - b||^2, recomputed from w*
        rank: numerical rank of A
        singular_values: singular values of A, descending
    """

    weights: np.ndarray
    residual: float
    rank: int
    singular_values: np.ndarray


def _require_floating_matrix(matrix: np.ndarray, *, context: str) -> None:
    if not isinstance(matrix, np.ndarray):
        raise RoutingInputError(f"{context}: expected np.ndarray, got {type(matrix).__name__}")
    if matrix.ndim != 2:
        raise RoutingInputError(f"{context}: expected a 2-D matrix, got shape {matrix.shape}")
    if not np.issubdtype(matrix.dtype, np.floating):
        raise RoutingInputError(f"{context}: expected floating dtype, got {matrix.dtype}")


def numerical_rank(matrix: np.ndarray, cfg: Optional[NumericalLinearAlgebraConfig] = None) -> int:
    cfg = cfg or NumericalLinearAlgebraConfig()
    _require_floating_matrix(matrix, context="numerical_rank")
    if matrix.size == 0:
        return 0
    try:
        s = scipy.linalg.svd(matrix, compute_uv=False)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise LinearAlgebraError("SVD failed while computing numerical rank.") from e
    tol = cfg.svd_rank_tol(float(np.max(s)) if s.size else 0.0, matrix.shape)
    return int(np.sum(s > tol))


def solve_least_squares(
    a: np.ndarray,
    b: np.ndarray,
    cfg: Optional[NumericalLinearAlgebraConfig] = None,
) -> LeastSquaresSolution:
    """
    w* = argmin ||A w - b||^2

    Raises:
        RoutingInputError: empty system or inconsistent shapes
        LinearAlgebraError: LAPACK failure or non-finite solution
    """
    cfg = cfg or NumericalLinearAlgebraConfig()
    _require_floating_matrix(a, context="solve_least_squares")
    b = np.asarray(b, dtype=cfg.dtype)
    if a.shape[0] == 0 or a.shape[1] == 0:
        raise RoutingInputError(f"Empty system: A has shape {a.shape}")
    if b.ndim != 1 or b.shape[0] != a.shape[0]:
        raise RoutingInputError(f"right-hand side shape {b.shape} does not match A {a.shape}")
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        raise RoutingInputError("system contains non-finite entries")

    # Relative cutoff: singular values below cond * s_max count as zero.
    cond = cfg.svd_rank_tol(1.0, a.shape)
    try:
        w, _res, rank, s = scipy.linalg.lstsq(a, b, cond=cond, lapack_driver="gelsd")
    except (np.linalg.LinAlgError, ValueError) as e:
        raise LinearAlgebraError("least-squares solve failed", analysis={"shape": a.shape}) from e

    if not np.all(np.isfinite(w)):
        raise LinearAlgebraError("least-squares solution is not finite", analysis={"shape": a.shape})

    residual_vec = a @ w - b
    residual = float(residual_vec @ residual_vec)
    rank = int(rank)
    if rank < min(a.shape):
        logger.debug("rank-deficient system: rank=%d shape=%s", rank, a.shape)
    logger.debug("least squares: shape=%s rank=%d residual=%.3e", a.shape, rank, residual)
    return LeastSquaresSolution(
        weights=w,
        residual=residual,
        rank=rank,
        singular_values=np.asarray(s if s is not None else np.zeros(0)),
    )
