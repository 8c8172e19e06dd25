import numpy as np
import pytest

from routing_errors import RoutingInputError
from sheaf_linalg import NumericalLinearAlgebraConfig, numerical_rank, solve_least_squares


def test_exact_square_system():
    sol = solve_least_squares(np.array([[2.0, 0.0], [0.0, 4.0]]), np.array([2.0, 8.0]))
    np.testing.assert_allclose(sol.weights, [1.0, 2.0])
    assert sol.residual == pytest.approx(0.0, abs=1e-12)
    assert sol.rank == 2
    assert sol.singular_values.tolist() == pytest.approx([4.0, 2.0])


def test_overdetermined_returns_least_squares_residual():
    sol = solve_least_squares(np.array([[1.0], [1.0]]), np.array([1.0, 3.0]))
    assert sol.weights[0] == pytest.approx(2.0)
    assert sol.residual == pytest.approx(2.0)


def test_underdetermined_returns_minimum_norm():
    sol = solve_least_squares(np.array([[1.0, 1.0]]), np.array([2.0]))
    np.testing.assert_allclose(sol.weights, [1.0, 1.0])
    assert sol.rank == 1


def test_rank_deficient_square_system_does_not_fail():
    a = np.array([[1.0, 2.0], [2.0, 4.0]])
    sol = solve_least_squares(a, np.array([1.0, 2.0]))
    assert sol.rank == 1
    assert sol.residual == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_allclose(a @ sol.weights, [1.0, 2.0])


@pytest.mark.parametrize(
    "a, b",
    [
        (np.array([[1, 2]]), np.array([1.0])),
        (np.zeros((0, 2)), np.zeros(0)),
        (np.ones((2, 2)), np.ones(3)),
        (np.ones((2, 2)), np.ones((2, 1))),
        (np.array([[np.nan, 1.0]]), np.array([1.0])),
        (np.ones(3), np.ones(3)),
    ],
)
def test_malformed_systems_rejected(a, b):
    with pytest.raises(RoutingInputError):
        solve_least_squares(a, b)


def test_numerical_rank():
    assert numerical_rank(np.array([[1.0, 2.0], [2.0, 4.0]])) == 1
    assert numerical_rank(np.eye(3)) == 3
    assert numerical_rank(np.zeros((2, 2))) == 0


def test_rank_tolerance_scales_with_shape():
    cfg = NumericalLinearAlgebraConfig()
    assert cfg.svd_rank_tol(0.0, (3, 3)) == 0.0
    assert cfg.svd_rank_tol(2.0, (10, 4)) == pytest.approx(cfg.eps * 10 * 2.0)
