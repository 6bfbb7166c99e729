"""Global pytest configuration and shared fixtures for rkc_engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from rkc_engine.state import StateVector, StateVectorOptions

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Reference problems
# -----------------------------------------------------------------------------


class LinearDecay:
    """u' = lam * u with a constant initial value."""

    def __init__(self, lam: float, u0: float = 1.0, n: int = 1) -> None:
        self.lam = float(lam)
        self.u0 = float(u0)
        self.n = int(n)
        self.calls = 0

    def evaluate(self, t: float, u: FloatArray) -> FloatArray:  # noqa: ARG002
        self.calls += 1
        return self.lam * u

    def initial_condition(self) -> FloatArray:
        return np.full(self.n, self.u0)


class LinearDecayWithRadius(LinearDecay):
    """LinearDecay that also reports its exact spectral radius."""

    def __init__(self, lam: float, u0: float = 1.0, n: int = 1) -> None:
        super().__init__(lam, u0, n)
        self.radius_calls = 0

    def spectral_radius(self, t: float, u: FloatArray) -> float:  # noqa: ARG002
        self.radius_calls += 1
        return abs(self.lam)


class DiagonalDecay:
    """u' = diag(lams) u."""

    def __init__(self, lams: list[float]) -> None:
        self.lams = np.asarray(lams, dtype=float)

    def evaluate(self, t: float, u: FloatArray) -> FloatArray:  # noqa: ARG002
        return self.lams * u

    def initial_condition(self) -> FloatArray:
        return np.ones_like(self.lams)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def make_decay() -> type[LinearDecay]:
    """Factory for scalar or vector linear decay problems."""
    return LinearDecay


@pytest.fixture
def make_decay_with_radius() -> type[LinearDecayWithRadius]:
    """Factory for linear decay problems that report their spectral radius."""
    return LinearDecayWithRadius


@pytest.fixture
def make_diagonal() -> type[DiagonalDecay]:
    """Factory for diagonal linear problems."""
    return DiagonalDecay


@pytest.fixture
def decay_problem() -> LinearDecay:
    """Scalar u' = -50 u with u(0) = 1."""
    return LinearDecay(-50.0)


@pytest.fixture
def decay_state(decay_problem: LinearDecay) -> StateVector:
    """StateVector for decay_problem with history enabled."""
    return StateVector(
        "u",
        decay_problem,
        options=StateVectorOptions(store_history=True),
    )
