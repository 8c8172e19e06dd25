#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unified sheaf router: local routing + gluing in one least-squares solve.

    [ A_local  ]       [ b_local  ]
    [ A_gluing ] w  =  [ b_gluing ]

    w*          = argmin ||A w - b||^2          (SVD, minimum norm)
    obstruction = ||A w* - b||^2                (cohomological obstruction)

Zero obstruction means the learned routing reproduces every training example
and every patch on a gluing chain carries the boundary element to itself.

Unknown layout:
    w = [ w_patch_0 | w_patch_1 | ... ]     (problem order)
    w_patch[p*K + j] = weights[p][j]         (position-major)

Local rows: every patch is fitted to every example through
position_design_matrix(message); blocks are placed block-diagonally.
Gluing rows: for every patch x on a continuity / periodicity chain and each
position p < min(P_x, n),
    sum_j w_x[p][j] Proj_j(boundary)[p] = boundary[p]
so each phi_x fixes the boundary on its positions, and so does the composed
chain. A boundary the examples cannot also fix leaves a nonzero obstruction.

Every example element and boundary must share one ring parameter set.

Lifecycle: created -> weights learned -> routing.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import scipy.linalg

from gluing import DEFAULT_GLUING_TOLERANCE, GluingConstraint, GluingKind
from ring_params import RingParams, active_ring_params
from ring_polynomial import Polynomial
from routing_errors import (
    GluingViolationError,
    RingParameterError,
    RoutingInputError,
    RoutingNotFoundError,
    RoutingInternalError,
    RoutingPreconditionError,
)
from routing_patch import Patch
from routing_polynomial import (
    RoutingExample,
    RoutingWeights,
    encode_route,
    position_design_matrix,
    position_targets,
)
from sheaf_linalg import NumericalLinearAlgebraConfig, solve_least_squares

__all__ = [
    "RoutingProblem",
    "RoutingResult",
    "SheafRouter",
    "OBSTRUCTION_TOLERANCE",
]

logger = logging.getLogger(__name__)

# A solve counts as successful when the obstruction is below this.
OBSTRUCTION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class RoutingProblem:
    patches: Tuple[Patch, ...] = ()
    gluings: Tuple[GluingConstraint, ...] = ()
    examples: Tuple[RoutingExample, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "patches", tuple(self.patches))
        object.__setattr__(self, "gluings", tuple(self.gluings))
        object.__setattr__(self, "examples", tuple(self.examples))


@dataclass(frozen=True)
class RoutingResult:
    """
    Attributes:
        patch_weights: learned table per patch, problem order
        obstruction: ||A w* - b||^2
        success: obstruction < OBSTRUCTION_TOLERANCE
        rank: numerical rank of the global system
        num_equations: rows of the global system
    """

    patch_weights: Tuple[RoutingWeights, ...]
    obstruction: float
    success: bool
    rank: int = 0
    num_equations: int = 0


@dataclass(frozen=True)
class _Block:
    offset: int
    positions: int

    def columns(self, num_characters: int) -> slice:
        return slice(self.offset, self.offset + self.positions * num_characters)


class SheafRouter:
    """Use ``SheafRouter.create``."""

    def __init__(
        self,
        problem: RoutingProblem,
        *,
        la_cfg: Optional[NumericalLinearAlgebraConfig] = None,
        gluing_tolerance: float = DEFAULT_GLUING_TOLERANCE,
    ):
        self._problem = problem
        self._la_cfg = la_cfg or NumericalLinearAlgebraConfig()
        self._gluing_tolerance = float(gluing_tolerance)
        self._params = self._infer_params(problem)
        self._last_result: Optional[RoutingResult] = None
        self._assembled_gluings: Tuple[GluingConstraint, ...] = ()

    @classmethod
    def create(cls, problem: RoutingProblem, **kwargs) -> "SheafRouter":
        """
        Raises:
            RoutingInputError: no patches, or two patches share an id
            RingParameterError: examples and boundaries mix ring parameter sets
        """
        if not problem.patches:
            raise RoutingInputError("No patches provided")
        ids = [p.patch_id for p in problem.patches]
        if len(set(ids)) != len(ids):
            raise RoutingInputError(f"duplicate patch ids: {sorted(i for i in set(ids) if ids.count(i) > 1)}")
        router = cls(problem, **kwargs)
        logger.info(
            "sheaf router created: patches=%d gluings=%d examples=%d ring=%s",
            len(problem.patches),
            len(problem.gluings),
            len(problem.examples),
            router._params.name,
        )
        return router

    @staticmethod
    def _infer_params(problem: RoutingProblem) -> RingParams:
        """
        The one parameter set shared by every example element and boundary.

        Raises:
            RingParameterError: two elements of the problem use different sets
        """
        elements: List[Tuple[str, Polynomial]] = []
        for i, ex in enumerate(problem.examples):
            elements.extend(
                (f"example {i} {field}", poly)
                for field, poly in (
                    ("source", ex.source),
                    ("destination", ex.destination),
                    ("message", ex.message),
                    ("expected_output", ex.expected_output),
                )
            )
        elements.extend((f"gluing {g.describe()} boundary", g.boundary) for g in problem.gluings)
        if not elements:
            return active_ring_params()

        first_label, first = elements[0]
        for label, poly in elements:
            if not isinstance(poly, Polynomial):
                raise RoutingInputError(f"{label}: expected Polynomial, got {type(poly).__name__}")
            if poly.params != first.params:
                raise RingParameterError(
                    f"ring parameter mismatch: {label} uses {poly.params.name}, "
                    f"{first_label} uses {first.params.name}"
                )
        return first.params

    @property
    def problem(self) -> RoutingProblem:
        return self._problem

    @property
    def last_result(self) -> Optional[RoutingResult]:
        return self._last_result

    @property
    def assembled_gluings(self) -> Tuple[GluingConstraint, ...]:
        """Gluing constraints with their rows attached, from the last solve."""
        return self._assembled_gluings

    # ------------------------------------------------------------------ #
    # System assembly
    # ------------------------------------------------------------------ #

    def _layout(self) -> Tuple[Dict[str, _Block], int]:
        K = self._params.num_characters
        layout: Dict[str, _Block] = {}
        offset = 0
        for patch in self._problem.patches:
            positions = patch.num_positions or self._params.routing_positions
            layout[patch.patch_id] = _Block(offset=offset, positions=positions)
            offset += positions * K
        return layout, offset

    def _assemble_local_system(self, layout: Dict[str, _Block], total: int) -> Tuple[np.ndarray, np.ndarray]:
        K = self._params.num_characters
        examples = self._problem.examples
        if not examples:
            # Keeps the solve well-defined without training data.
            a = np.zeros((1, total), dtype=np.float64)
            a[0, 0] = 1.0
            return a, np.ones(1, dtype=np.float64)

        blocks: List[np.ndarray] = []
        targets: List[np.ndarray] = []
        for patch in self._problem.patches:
            positions = layout[patch.patch_id].positions
            blocks.append(np.vstack([position_design_matrix(ex.message, positions, K) for ex in examples]))
            targets.extend(position_targets(ex.expected_output, positions) for ex in examples)
        return scipy.linalg.block_diag(*blocks), np.concatenate(targets)

    def _block_for(self, layout: Dict[str, _Block], patch_id: str, gluing: GluingConstraint) -> _Block:
        try:
            return layout[patch_id]
        except KeyError:
            raise RoutingNotFoundError(
                f"gluing {gluing.describe()} references unknown patch {patch_id!r}"
            ) from None

    def _boundary_rows(
        self, gluing: GluingConstraint, layout: Dict[str, _Block], total: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        K = self._params.num_characters
        n = self._params.degree
        rows: List[np.ndarray] = []
        rhs: List[float] = []
        for patch_id in gluing.chain_ids():
            block = self._block_for(layout, patch_id, gluing)
            design = position_design_matrix(gluing.boundary, block.positions, K)
            targets = position_targets(gluing.boundary, block.positions)
            for p in range(min(block.positions, n)):
                row = np.zeros(total, dtype=np.float64)
                row[block.columns(K)] = design[p]
                rows.append(row)
                rhs.append(float(targets[p]))
        if not rows:
            return np.zeros((0, total), dtype=np.float64), np.zeros(0, dtype=np.float64)
        return np.vstack(rows), np.asarray(rhs, dtype=np.float64)

    def _custom_rows(
        self, gluing: GluingConstraint, layout: Dict[str, _Block], total: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        K = self._params.num_characters
        c = gluing.constraint_matrix
        if c is None:
            raise RoutingInputError(f"custom gluing {gluing.describe()} has no constraint matrix")
        c = np.asarray(c, dtype=np.float64)
        if c.ndim != 2:
            raise RoutingInputError(f"custom gluing {gluing.describe()} matrix must be 2-D, got shape {c.shape}")
        if gluing.constraint_rhs is None:
            rhs = np.zeros(c.shape[0], dtype=np.float64)
        else:
            rhs = np.asarray(gluing.constraint_rhs, dtype=np.float64).ravel()
        if rhs.shape[0] != c.shape[0]:
            raise RoutingInputError(
                f"custom gluing {gluing.describe()} has {rhs.shape[0]} rhs entries for {c.shape[0]} rows"
            )
        block_a = self._block_for(layout, gluing.patch_1_id, gluing)
        block_b = self._block_for(layout, gluing.patch_2_id, gluing)
        spans = [block_a.columns(K)]
        if gluing.patch_2_id != gluing.patch_1_id:
            spans.append(block_b.columns(K))
        width = sum(s.stop - s.start for s in spans)
        if c.shape[1] != width:
            raise RoutingInputError(
                f"custom gluing {gluing.describe()} has {c.shape[1]} columns, patch blocks need {width}"
            )
        rows = np.zeros((c.shape[0], total), dtype=np.float64)
        start = 0
        for span in spans:
            size = span.stop - span.start
            rows[:, span] = c[:, start:start + size]
            start += size
        return rows, rhs

    def _assemble_gluing_system(
        self, layout: Dict[str, _Block], total: int
    ) -> Tuple[np.ndarray, np.ndarray, Tuple[GluingConstraint, ...]]:
        row_blocks: List[np.ndarray] = [np.zeros((0, total), dtype=np.float64)]
        rhs_blocks: List[np.ndarray] = [np.zeros(0, dtype=np.float64)]
        assembled: List[GluingConstraint] = []
        for gluing in self._problem.gluings:
            if gluing.kind is GluingKind.CUSTOM:
                rows, rhs = self._custom_rows(gluing, layout, total)
            else:
                rows, rhs = self._boundary_rows(gluing, layout, total)
            row_blocks.append(rows)
            rhs_blocks.append(rhs)
            assembled.append(dataclasses.replace(gluing, constraint_matrix=rows, constraint_rhs=rhs))
            logger.debug("gluing %s (%s): %d rows", gluing.describe(), gluing.kind.value, rows.shape[0])
        return np.vstack(row_blocks), np.concatenate(rhs_blocks), tuple(assembled)

    # ------------------------------------------------------------------ #
    # Solve / route
    # ------------------------------------------------------------------ #

    def learn_routing(self) -> RoutingResult:
        """
        Assemble the global system, solve it, and unpack per-patch weights.

        Raises:
            RoutingNotFoundError: a gluing names a patch outside the problem
            RoutingInputError: a custom gluing has no rows or the wrong width
            LinearAlgebraError: the solve failed
        """
        K = self._params.num_characters
        layout, total = self._layout()
        a_local, b_local = self._assemble_local_system(layout, total)
        a_gluing, b_gluing, assembled = self._assemble_gluing_system(layout, total)

        a = np.vstack([a_local, a_gluing])
        b = np.concatenate([b_local, b_gluing])
        logger.debug(
            "global system: local=%s gluing=%s unknowns=%d", a_local.shape, a_gluing.shape, total
        )

        solution = solve_least_squares(a, b, self._la_cfg)
        weights: List[RoutingWeights] = []
        for patch in self._problem.patches:
            block = layout[patch.patch_id]
            w = solution.weights[block.columns(K)].reshape(block.positions, K)
            weights.append(RoutingWeights.from_array(w))

        result = RoutingResult(
            patch_weights=tuple(weights),
            obstruction=solution.residual,
            success=solution.residual < OBSTRUCTION_TOLERANCE,
            rank=solution.rank,
            num_equations=int(a.shape[0]),
        )
        self._last_result = result
        self._assembled_gluings = assembled
        logger.info(
            "routing learned: obstruction=%.3e success=%s rank=%d equations=%d unknowns=%d",
            result.obstruction,
            result.success,
            result.rank,
            result.num_equations,
            total,
        )
        return result

    def route(self, message: Polynomial, source_id: Polynomial, dest_id: Polynomial) -> Polynomial:
        """
        Encode the route, apply every patch's learned local routing in
        problem order, then check every gluing constraint on the result.

        Raises:
            RoutingPreconditionError: learn_routing() has not run
            GluingViolationError: first violated constraint
        """
        result = self._last_result
        if result is None or not result.patch_weights:
            raise RoutingPreconditionError("No routing weights learned. Call learn_routing() first.")

        routed = encode_route(source_id, dest_id, message)
        for patch, weights in zip(self._problem.patches, result.patch_weights):
            routed = patch.with_weights(weights).apply_local_routing(routed)

        for gluing in self._problem.gluings:
            if not gluing.verify(routed, self._gluing_tolerance):
                norm = gluing.error_norm(routed)
                raise GluingViolationError(
                    f"Gluing constraint violated: {gluing.describe()} (error {norm:.3e})",
                    boundary=gluing.describe(),
                    error_norm=norm,
                )
        return routed

    def verify_consistency(self, result: RoutingResult, tolerance: float = OBSTRUCTION_TOLERANCE) -> float:
        """The cohomological obstruction of ``result``. ``tolerance`` does not alter the value."""
        return result.obstruction


# ============================================================================
# Smoke
# ============================================================================

def _configure_smoke_logging() -> None:
    """Only inject a default handler when the host has not configured logging."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(levelname)s] %(name)s: %(message)s",
        )
    root.setLevel(logging.INFO)


def main() -> int:
    from polynomial_identity import PolynomialIdentity
    from routing_polynomial import extract_message

    _configure_smoke_logging()
    logger.info("sheaf_router smoke: START")

    alice = PolynomialIdentity.create("alice@example.com", "alice_pw")
    bob = PolynomialIdentity.create("bob@example.com", "bob_pw")
    alice.add_contact("Bob", bob.polynomial_id)

    hello = [72, 101, 108, 108, 111]
    message = Polynomial.encode(hello)
    routed = encode_route(alice.polynomial_id, alice.lookup_contact_polynomial("Bob"), message)
    received = extract_message(routed, bob.polynomial_id).decode()[: len(hello)]
    if received != hello:
        raise RoutingInternalError(f"smoke failed: extracted {received}, expected {hello}")
    logger.info("[Direct] extracted=%s", received)

    params = message.params
    example = RoutingExample(
        source=alice.polynomial_id,
        destination=bob.polynomial_id,
        message=routed,
        expected_output=routed,
    )
    problem = RoutingProblem(
        patches=(Patch.create("relay", RoutingWeights.uniform(params.routing_positions, params.num_characters)),),
        examples=(example,),
    )
    router = SheafRouter.create(problem)
    result = router.learn_routing()
    logger.info("[Sheaf] obstruction=%.3e success=%s", router.verify_consistency(result), result.success)
    logger.info("sheaf_router smoke: PASS")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
