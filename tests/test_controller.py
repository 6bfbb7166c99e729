# tests/test_controller.py
"""Unit tests for rkc_engine.controller.

Coverage:
- error_norm weighting (absolute, relative, max of old/new magnitudes).
- Non-finite errors map to an infinite norm.
- Accept boundary: err == 1 is accepted, err slightly above 1 is rejected.
- Growth/shrink factors are clamped and dt is bounded by [dt_min, dt_max].
"""

from __future__ import annotations

import numpy as np
import pytest

from rkc_engine.controller import DtControllerConfig, StepSizeController, error_norm


def test_error_norm_absolute_only() -> None:
    """With zero state the norm is the RMS of err / atol."""
    err = np.array([1e-3, -1e-3])
    zeros = np.zeros(2)
    assert error_norm(err, zeros, zeros, rtol=1e-2, atol=1e-3) == pytest.approx(1.0)


def test_error_norm_uses_larger_magnitude() -> None:
    """The scale uses max(|y_new|, |y_old|)."""
    err = np.array([0.11])
    got = error_norm(err, np.array([10.0]), np.array([-1.0]), rtol=1e-2, atol=1e-2)
    assert got == pytest.approx(0.11 / (1e-2 + 1e-2 * 10.0))


def test_error_norm_per_component_atol() -> None:
    """atol may be an array."""
    err = np.array([1.0, 2.0])
    zeros = np.zeros(2)
    atol = np.array([1.0, 2.0])
    assert error_norm(err, zeros, zeros, rtol=0.0, atol=atol) == pytest.approx(1.0)


def test_error_norm_non_finite_is_inf() -> None:
    """NaN in the estimate gives an infinite norm."""
    err = np.array([np.nan, 0.0])
    ones = np.ones(2)
    assert error_norm(err, ones, ones, rtol=1e-2, atol=1e-2) == float("inf")


def test_accept_boundary() -> None:
    """err == 1 is accepted; slightly larger is rejected with a smaller dt."""
    ctrl = StepSizeController()
    accept, _ = ctrl.control(1.0, 0.1)
    assert accept

    accept, dt_new = ctrl.control(1.0001, 0.1)
    assert not accept
    assert dt_new < 0.1


def test_proposal_follows_order_law() -> None:
    """new_dt = dt * safety * err ** (-1 / (p + 1)) inside the clamp range."""
    ctrl = StepSizeController(order=2)
    err = 0.5
    expected = 0.1 * 0.9 * err ** (-1.0 / 3.0)
    assert ctrl.propose(0.1, err) == pytest.approx(expected)


def test_proposal_factor_clamps() -> None:
    """Tiny errors grow by fac_max; huge or non-finite errors shrink by fac_min."""
    ctrl = StepSizeController(DtControllerConfig(fac_min=0.2, fac_max=5.0))
    assert ctrl.propose(1.0, 0.0) == pytest.approx(5.0)
    assert ctrl.propose(1.0, 1e-30) == pytest.approx(5.0)
    assert ctrl.propose(1.0, 1e30) == pytest.approx(0.2)
    assert ctrl.propose(1.0, float("inf")) == pytest.approx(0.2)


def test_proposal_respects_dt_bounds() -> None:
    """Proposals are clipped to [dt_min, dt_max]."""
    ctrl = StepSizeController(DtControllerConfig(dt_min=0.5, dt_max=2.0))
    assert ctrl.propose(1.0, 0.0) == 2.0
    assert ctrl.propose(1.0, 1e30) == 0.5


def test_invalid_order_rejected() -> None:
    """The method order must be positive."""
    with pytest.raises(ValueError, match="order must be >= 1"):
        StepSizeController(order=0)
