import numpy as np
import pytest

from ring_params import RING_PARAMS_ENV, SAFE_PARAMS, active_ring_params
from ring_polynomial import Polynomial


@pytest.fixture(autouse=True)
def _safe_ring(monkeypatch):
    """Every test starts on the SAFE parameter set, whatever the shell says."""
    monkeypatch.delenv(RING_PARAMS_ENV, raising=False)
    active_ring_params.cache_clear()
    yield
    active_ring_params.cache_clear()


@pytest.fixture
def rng():
    return np.random.default_rng(20251111)


@pytest.fixture
def random_poly(rng):
    """Factory: random element with coefficients in [low, high)."""

    def make(low=0, high=SAFE_PARAMS.modulus, params=SAFE_PARAMS):
        return Polynomial(rng.integers(low, high, size=params.degree).tolist(), params=params)

    return make
