"""
Global least-squares routing: local fits plus boundary reproduction in one solve.
"""

import numpy as np
import pytest

from gluing import GluingConstraint, GluingKind, create_continuity, create_custom, create_periodicity
from ring_params import MEDIUM_PARAMS, SAFE_PARAMS
from ring_polynomial import Polynomial
from routing_errors import (
    GluingViolationError,
    RingParameterError,
    RoutingInputError,
    RoutingNotFoundError,
    RoutingPreconditionError,
)
from routing_patch import Patch
from routing_polynomial import RoutingExample, RoutingWeights, apply_routing_weights, encode_route
from sheaf_router import OBSTRUCTION_TOLERANCE, RoutingProblem, SheafRouter

K = SAFE_PARAMS.num_characters
POSITIONS = SAFE_PARAMS.routing_positions
BLOCK = POSITIONS * K


def uniform_patch(patch_id):
    return Patch.create(patch_id, RoutingWeights.uniform(POSITIONS, K))


@pytest.fixture
def example(random_poly):
    return RoutingExample(
        source=random_poly(),
        destination=random_poly(),
        message=random_poly(1000, 60000),
        expected_output=random_poly(),
    )


def flat(result):
    return np.concatenate([w.as_array().ravel() for w in result.patch_weights])


# =============================================================================
# Construction / lifecycle
# =============================================================================

def test_create_requires_patches():
    with pytest.raises(RoutingInputError, match="No patches"):
        SheafRouter.create(RoutingProblem())


def test_create_rejects_duplicate_patch_ids():
    problem = RoutingProblem(patches=(uniform_patch("relay"), uniform_patch("relay")))
    with pytest.raises(RoutingInputError, match="duplicate"):
        SheafRouter.create(problem)


def test_route_before_learning_fails(random_poly):
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")]))
    assert router.last_result is None
    with pytest.raises(RoutingPreconditionError):
        router.route(random_poly(), random_poly(), random_poly())


def test_problem_fields_are_tuples():
    problem = RoutingProblem(patches=[uniform_patch("a")], gluings=[], examples=[])
    assert isinstance(problem.patches, tuple)
    assert isinstance(problem.gluings, tuple)
    assert isinstance(problem.examples, tuple)


# =============================================================================
# Solve
# =============================================================================

def test_single_patch_fits_single_example(example):
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], examples=[example]))
    result = router.learn_routing()

    assert len(result.patch_weights) == 1
    assert result.patch_weights[0].as_array().shape == (POSITIONS, K)
    assert result.num_equations == POSITIONS
    assert 0.0 <= result.obstruction < OBSTRUCTION_TOLERANCE
    assert result.success
    assert router.last_result is result
    assert router.verify_consistency(result) == result.obstruction


def test_no_examples_solves_trivial_system():
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")]))
    result = router.learn_routing()
    w = result.patch_weights[0].as_array()
    assert w[0, 0] == pytest.approx(1.0)
    assert np.allclose(w.ravel()[1:], 0.0)
    assert result.success


def test_inconsistent_examples_leave_an_obstruction(random_poly):
    message = Polynomial([100] * SAFE_PARAMS.degree)
    examples = [
        RoutingExample(random_poly(), random_poly(), message, Polynomial([10])),
        RoutingExample(random_poly(), random_poly(), message, Polynomial([12])),
    ]
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], examples=examples))
    result = router.learn_routing()
    # the best fit is 11: residual (11-10)^2 + (11-12)^2
    assert result.obstruction == pytest.approx(2.0)
    assert not result.success
    assert router.verify_consistency(result) == pytest.approx(2.0)


def test_gluing_to_unknown_patch_raises(example):
    problem = RoutingProblem(
        patches=[uniform_patch("relay")],
        gluings=[create_continuity("relay", "ghost", example.message)],
        examples=[example],
    )
    with pytest.raises(RoutingNotFoundError, match="ghost"):
        SheafRouter.create(problem).learn_routing()


def test_continuity_rows_make_both_patches_fix_the_boundary(example, random_poly):
    boundary = random_poly(1000, 60000)
    problem = RoutingProblem(
        patches=[uniform_patch("north"), uniform_patch("south")],
        gluings=[create_continuity("north", "south", boundary)],
        examples=[example],
    )
    router = SheafRouter.create(problem)
    result = router.learn_routing()
    assert result.success

    assembled = router.assembled_gluings
    assert len(assembled) == 1
    c, rhs = assembled[0].constraint_matrix, assembled[0].constraint_rhs
    assert c.shape == (2 * POSITIONS, 2 * BLOCK)
    assert rhs.tolist() == boundary.decode()[:POSITIONS] * 2
    assert not problem.gluings[0].is_assembled

    np.testing.assert_allclose(c @ flat(result), rhs, atol=1e-3)
    assert result.num_equations == 2 * POSITIONS + 2 * POSITIONS

    for weights in result.patch_weights:
        assert apply_routing_weights(boundary, weights).decode()[:POSITIONS] == boundary.decode()[:POSITIONS]


def test_periodicity_adds_rows_for_every_patch_on_the_cycle(example, random_poly):
    ids = ["a", "b", "c"]
    problem = RoutingProblem(
        patches=[uniform_patch(i) for i in ids],
        gluings=[create_periodicity(ids, random_poly(1000, 60000))],
        examples=[example],
    )
    router = SheafRouter.create(problem)
    result = router.learn_routing()
    assert router.assembled_gluings[0].constraint_matrix.shape == (3 * POSITIONS, 3 * BLOCK)
    assert result.num_equations == 3 * POSITIONS + 3 * POSITIONS
    assert result.success


@pytest.mark.parametrize(
    "ids, make_gluing",
    [
        (["a", "b"], lambda b: create_continuity("a", "b", b)),
        (["a", "b"], lambda b: create_periodicity(["a", "b"], b)),
        (["a", "b", "c"], lambda b: create_periodicity(["a", "b", "c"], b)),
    ],
)
def test_unsatisfiable_boundary_leaves_an_obstruction(random_poly, ids, make_gluing):
    # the examples send a constant 100 to 10 but the boundary asks 100 -> 100
    constant = Polynomial([100] * SAFE_PARAMS.degree)
    examples = [RoutingExample(random_poly(), random_poly(), constant, Polynomial([10] * SAFE_PARAMS.degree))]
    patches = [uniform_patch(i) for i in ids]

    free = SheafRouter.create(RoutingProblem(patches=patches, examples=examples)).learn_routing()
    assert free.success

    glued = SheafRouter.create(
        RoutingProblem(patches=patches, gluings=[make_gluing(constant)], examples=examples)
    ).learn_routing()
    assert glued.obstruction > OBSTRUCTION_TOLERANCE
    assert not glued.success
    # per patch and position the best compromise is 55: (55-10)^2 + (55-100)^2
    assert glued.obstruction == pytest.approx(len(ids) * POSITIONS * 4050.0)


def test_mixed_parameter_sets_rejected(example):
    medium = Polynomial([1], params=MEDIUM_PARAMS)
    patches = [uniform_patch("relay")]

    other = RoutingExample(medium, medium, medium, medium)
    with pytest.raises(RingParameterError, match="example 1"):
        SheafRouter.create(RoutingProblem(patches=patches, examples=[example, other]))

    with pytest.raises(RingParameterError, match="boundary"):
        SheafRouter.create(
            RoutingProblem(patches=patches, gluings=[create_continuity("relay", "relay", medium)], examples=[example])
        )

    stray_source = RoutingExample(medium, example.destination, example.message, example.expected_output)
    with pytest.raises(RingParameterError, match="source"):
        SheafRouter.create(RoutingProblem(patches=patches, examples=[stray_source]))


def test_conflicting_custom_rows_fail():
    row = np.zeros(BLOCK)
    row[0] = 1.0
    gluing = create_custom("relay", "relay", Polynomial(), [row, row], rhs=[0.0, 1.0])
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], gluings=[gluing]))
    result = router.learn_routing()
    assert not result.success
    assert result.obstruction > 0.1


def test_custom_rows_with_wrong_width_raise():
    gluing = create_custom("relay", "relay", Polynomial(), np.ones((1, 10)))
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], gluings=[gluing]))
    with pytest.raises(RoutingInputError, match="columns"):
        router.learn_routing()


def test_custom_kind_without_rows_raises():
    gluing = GluingConstraint("relay", "relay", Polynomial(), GluingKind.CUSTOM)
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], gluings=[gluing]))
    with pytest.raises(RoutingInputError, match="no constraint matrix"):
        router.learn_routing()


def test_custom_rows_span_both_patches():
    # w_a[0] - w_b[0] = 0 together with the trivial row w_a[0] = 1
    row = np.zeros(2 * BLOCK)
    row[0], row[BLOCK] = 1.0, -1.0
    gluing = create_custom("a", "b", Polynomial(), [row])
    router = SheafRouter.create(
        RoutingProblem(patches=[uniform_patch("a"), uniform_patch("b")], gluings=[gluing])
    )
    result = router.learn_routing()
    assert result.success
    wa, wb = (w.as_array() for w in result.patch_weights)
    assert wa[0, 0] == pytest.approx(1.0)
    assert wb[0, 0] == pytest.approx(1.0)


def test_patch_with_own_table_shape(example):
    wide = Patch.create("wide", RoutingWeights.uniform(4, K))
    router = SheafRouter.create(RoutingProblem(patches=[wide], examples=[example]))
    result = router.learn_routing()
    assert result.patch_weights[0].as_array().shape == (4, K)
    assert result.num_equations == 4


# =============================================================================
# Route
# =============================================================================

def test_route_applies_learned_weights(example, random_poly):
    router = SheafRouter.create(RoutingProblem(patches=[uniform_patch("relay")], examples=[example]))
    result = router.learn_routing()
    msg, src, dst = random_poly(), random_poly(), random_poly()
    expected = apply_routing_weights(encode_route(src, dst, msg), result.patch_weights[0])
    assert router.route(msg, src, dst) == expected


def test_route_checks_gluing_constraints(random_poly):
    msg, src, dst = random_poly(), random_poly(), random_poly()
    # every route is delivered to the single-coefficient element 800
    delivered = Polynomial([800])
    examples = [RoutingExample(src, dst, encode_route(src, dst, msg), delivered)]
    patch = uniform_patch("relay")

    holding = SheafRouter.create(
        RoutingProblem(patches=[patch], gluings=[create_continuity("relay", "relay", delivered)], examples=examples)
    )
    assert holding.learn_routing().success
    assert holding.route(msg, src, dst) == delivered

    # c_9 = 1 projects to zero everywhere, so learning is unchanged and only the route check sees it
    nudged = Polynomial([800] + [0] * 8 + [1])
    violated = SheafRouter.create(
        RoutingProblem(patches=[patch], gluings=[create_continuity("relay", "relay", nudged)], examples=examples)
    )
    assert violated.learn_routing().success
    with pytest.raises(GluingViolationError) as excinfo:
        violated.route(msg, src, dst)
    assert excinfo.value.boundary == "relay -> relay"
    assert excinfo.value.error_norm == pytest.approx(1.0)
