# tests/test_state.py
"""Unit tests for rkc_engine.state.

Coverage:
- StateVector construction from a problem or explicit initial values.
- Validation of dimensionality, emptiness and time ordering.
- In-place accept_step keeps array identity so read-only views see updates.
- snapshot/restore round trip, including history truncation.
- History accessors and their error when history is disabled.
- CoupledProblem binding semantics (read-only views, unbound lookups).
- Problem / SpectralRadiusProvider runtime protocol checks.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from rkc_engine.errors import StateShapeError
from rkc_engine.state import (
    CoupledProblem,
    Problem,
    SpectralRadiusProvider,
    StateVector,
    StateVectorOptions,
)

# -------------------------------------------------------------------
# Construction and validation
# -------------------------------------------------------------------


def test_state_uses_problem_initial_condition(make_decay: Any) -> None:
    """Initial values come from the problem and are copied."""
    problem = make_decay(-1.0, u0=2.0, n=3)
    state = StateVector("u", problem)
    assert state.shape == (3,)
    assert len(state) == 3
    assert np.array_equal(state.un, np.full(3, 2.0))
    assert state.time == 0.0
    assert not state.finished


def test_explicit_initial_overrides_problem(make_decay: Any) -> None:
    """An explicit initial array takes precedence and is not aliased."""
    init = np.array([1.0, 2.0])
    state = StateVector("u", make_decay(-1.0), initial=init)
    init[0] = 99.0
    assert np.array_equal(state.un, [1.0, 2.0])


def test_state_rejects_non_1d(make_decay: Any) -> None:
    """2D initial data is rejected."""
    with pytest.raises(ValueError, match="must be 1D"):
        StateVector("u", make_decay(-1.0), initial=np.zeros((2, 2)))


def test_state_rejects_empty(make_decay: Any) -> None:
    """Zero-length state is rejected."""
    with pytest.raises(ValueError, match="at least one point"):
        StateVector("u", make_decay(-1.0), initial=np.zeros(0))


def test_state_rejects_t_end_before_t0(make_decay: Any) -> None:
    """t_end earlier than t0 is rejected."""
    with pytest.raises(ValueError, match="must not precede"):
        StateVector(
            "u",
            make_decay(-1.0),
            options=StateVectorOptions(t0=1.0, t_end=0.5),
        )


def test_finished_is_inclusive(make_decay: Any) -> None:
    """A state exactly at t_end counts as finished."""
    state = StateVector(
        "u", make_decay(-1.0), options=StateVectorOptions(t0=0.0, t_end=1.0)
    )
    state.accept_step(np.array([0.5]), 1.0)
    assert state.finished


# -------------------------------------------------------------------
# Updates
# -------------------------------------------------------------------


def test_accept_step_is_in_place(make_decay: Any) -> None:
    """Views taken before an update observe the new values."""
    state = StateVector("u", make_decay(-1.0, n=2))
    view = state.read_only_view()
    buffer_id = id(state.un)

    state.accept_step(np.array([3.0, 4.0]), 0.1)

    assert id(state.un) == buffer_id
    assert np.array_equal(view, [3.0, 4.0])
    assert state.time == pytest.approx(0.1)


def test_read_only_view_is_not_writable(make_decay: Any) -> None:
    """Writing through a read-only view fails."""
    state = StateVector("u", make_decay(-1.0))
    view = state.read_only_view()
    with pytest.raises(ValueError, match="read-only"):
        view[0] = 5.0


def test_accept_step_rejects_wrong_shape(make_decay: Any) -> None:
    """Shape mismatches raise StateShapeError."""
    state = StateVector("u", make_decay(-1.0, n=2))
    with pytest.raises(StateShapeError, match="next_state has an invalid shape"):
        state.accept_step(np.zeros(3), 0.1)


def test_accept_step_rejects_backwards_time(make_decay: Any) -> None:
    """Time never decreases."""
    state = StateVector("u", make_decay(-1.0), options=StateVectorOptions(t0=1.0))
    with pytest.raises(ValueError, match="cannot move backwards in time"):
        state.accept_step(np.zeros(1), 0.5)


def test_snapshot_restore_truncates_history(make_decay: Any) -> None:
    """Restoring drops history entries later than the snapshot."""
    state = StateVector(
        "u", make_decay(-1.0), options=StateVectorOptions(store_history=True)
    )
    state.accept_step(np.array([0.9]), 0.1)
    snap = state.snapshot()
    state.accept_step(np.array([0.8]), 0.2)
    state.accept_step(np.array([0.7]), 0.3)

    state.restore(snap)

    assert state.time == pytest.approx(0.1)
    assert np.array_equal(state.un, [0.9])
    assert np.allclose(state.history_times(), [0.0, 0.1])
    assert state.history_states().shape == (2, 1)


def test_snapshot_is_a_copy(make_decay: Any) -> None:
    """Later updates do not leak into a snapshot."""
    state = StateVector("u", make_decay(-1.0))
    snap = state.snapshot()
    state.accept_step(np.array([0.0]), 1.0)
    assert np.array_equal(snap.un, [1.0])
    assert snap.time == 0.0


def test_history_disabled_raises(make_decay: Any) -> None:
    """History accessors raise when history is off."""
    state = StateVector("u", make_decay(-1.0))
    with pytest.raises(RuntimeError, match="History is not stored"):
        state.history_times()
    with pytest.raises(RuntimeError, match="History is not stored"):
        state.history_states()


# -------------------------------------------------------------------
# Problem interfaces
# -------------------------------------------------------------------


class _Reader(CoupledProblem):
    requires = ("v",)

    def evaluate(self, t: float, u: np.ndarray) -> np.ndarray:  # noqa: ARG002
        return self.coupling("v") - u

    def initial_condition(self) -> np.ndarray:
        return np.zeros(2)


def test_coupled_problem_binds_read_only_views() -> None:
    """Bound couplings are views that cannot be written."""
    source = np.array([1.0, 2.0])
    problem = _Reader()
    problem.bind("v", source)

    bound = problem.coupling("v")
    assert np.shares_memory(bound, source)
    assert not bound.flags.writeable
    assert set(problem.couplings) == {"v"}

    source[0] = 10.0
    assert problem.evaluate(0.0, np.zeros(2))[0] == pytest.approx(10.0)


def test_coupled_problem_unbound_lookup_raises() -> None:
    """Reading an unbound coupling names the missing key."""
    with pytest.raises(KeyError, match="has not been bound"):
        _Reader().coupling("v")


def test_runtime_protocols(make_decay: Any, make_decay_with_radius: Any) -> None:
    """Protocol checks distinguish radius providers."""
    plain = make_decay(-1.0)
    with_radius = make_decay_with_radius(-1.0)
    assert isinstance(plain, Problem)
    assert isinstance(with_radius, Problem)
    assert not isinstance(plain, SpectralRadiusProvider)
    assert isinstance(with_radius, SpectralRadiusProvider)
