# tests/test_stepper_accuracy.py
"""Accuracy and convergence tests for rkc_engine.stepper.RKCStepper.

Design principle:
- Order is assessed by halving dt and comparing against exact solutions of
  linear problems, where the exact solution of the semi-discrete system is
  known in closed form.

Coverage in this file:
1) Local error of one step is O(dt**3) (third-order observed rate).
2) Global error over a fixed interval is O(dt**2).
3) Scalar stiff decay end to end with the internal radius estimate.
4) Stiff diffusion with many stages, fixed and adaptive step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from rkc_engine.operators import DiffusionConfig, GridGeometry, build_laplacian_tridiag
from rkc_engine.state import StateVector, StateVectorOptions
from rkc_engine.stepper import IntegratorConfig, RKCStepper, StepStatus

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


def _one_step_error(make_decay: Any, dt: float) -> float:
    state = StateVector("u", make_decay(-1.0))
    RKCStepper().advance(state, dt)
    return abs(float(state.un[0]) - np.exp(-dt))


def _global_error(make_decay: Any, dt: float, n_steps: int) -> float:
    state = StateVector("u", make_decay(-1.0))
    stepper = RKCStepper()
    for _ in range(n_steps):
        stepper.advance(state, dt)
    return abs(float(state.un[0]) - np.exp(-state.time))


def test_local_error_is_third_order(make_decay: Any) -> None:
    """Halving dt divides the one-step error by about eight."""
    dts = [0.1, 0.05, 0.025, 0.0125]
    errs = [_one_step_error(make_decay, dt) for dt in dts]
    rates = [np.log2(errs[i] / errs[i + 1]) for i in range(len(errs) - 1)]
    assert min(rates) > 2.7


def test_global_error_is_second_order(make_decay: Any) -> None:
    """Over t in [0, 1] halving dt divides the error by about four."""
    cases = [(0.1, 10), (0.05, 20), (0.025, 40)]
    errs = [_global_error(make_decay, dt, n) for dt, n in cases]
    rates = [np.log2(errs[i] / errs[i + 1]) for i in range(len(errs) - 1)]
    assert min(rates) > 1.8


def test_stiff_decay_end_to_end(decay_state: StateVector) -> None:
    """u' = -50 u with dt = 1e-3 for 100 steps stays within 1% of exp(-5)."""
    stepper = RKCStepper()
    for _ in range(100):
        assert stepper.advance(decay_state, 0.001).status is StepStatus.CONTINUE

    assert decay_state.time == pytest.approx(0.1, abs=1e-12)
    exact = np.exp(-5.0)
    assert abs(decay_state.un[0] - exact) / exact < 1e-2
    assert decay_state.history_times().shape == (101,)
    assert np.all(np.diff(decay_state.history_states()[:, 0]) < 0.0)


# -------------------------------------------------------------------
# Stiff diffusion
# -------------------------------------------------------------------


class _HeatProblem:
    """u' = D Lap_h u on a cell-centred Neumann grid.

    The initial state mixes the slowest cosine mode with a small amount of the
    fastest one, so both ends of the spectrum are present.
    """

    def __init__(self, n: int = 50, coeff: float = 1.0) -> None:
        self.n = n
        self.coeff = coeff
        self.geom = GridGeometry(n=n, dx=1.0 / n)
        self.lap = build_laplacian_tridiag(self.geom, DiffusionConfig(coeff=coeff))
        self.x = (np.arange(n) + 0.5) * self.geom.dx
        self.modes = ((1, 1.0), (n - 1, 1e-3))

    def _rate(self, k: int) -> float:
        dx = self.geom.dx
        return -(4.0 * self.coeff / dx**2) * np.sin(0.5 * np.pi * k * dx) ** 2

    def evaluate(self, t: float, u: FloatArray) -> FloatArray:  # noqa: ARG002
        return self.lap @ u

    def initial_condition(self) -> FloatArray:
        return self.exact(0.0)

    def exact(self, t: float) -> FloatArray:
        return sum(
            amp * np.exp(self._rate(k) * t) * np.cos(np.pi * k * self.x)
            for k, amp in self.modes
        )


def test_heat_equation_fixed_step_uses_many_stages() -> None:
    """A stiff diffusion step far beyond the explicit limit stays accurate."""
    problem = _HeatProblem()
    state = StateVector("u", problem)
    stepper = RKCStepper()

    for _ in range(10):
        assert stepper.advance(state, 0.01).status is StepStatus.CONTINUE

    assert stepper.statistics.max_stages > 10
    assert np.max(np.abs(state.un - problem.exact(state.time))) < 1e-2


def test_heat_equation_adaptive_to_t_end() -> None:
    """Adaptive multi-step integration finishes and tracks the exact mode."""
    problem = _HeatProblem()
    state = StateVector("u", problem, options=StateVectorOptions(t_end=0.1))
    cfg = IntegratorConfig(one_step=False, adaptive=True, atol=1e-4, rtol=1e-4)
    stepper = RKCStepper(cfg)

    result = stepper.advance(state, 0.01)

    assert result.status is StepStatus.FINISHED
    assert state.time >= 0.1
    assert stepper.statistics.n_accepted == result.n_steps
    assert np.max(np.abs(state.un - problem.exact(state.time))) < 1e-2
