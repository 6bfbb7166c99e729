# src/rkc_engine/state.py
"""State containers and problem interfaces for stabilized explicit stepping.

A :class:`StateVector` holds one physical field (e.g. membrane potential, or a
gating variable) sampled at mesh points, the time it is valid at, and the
:class:`Problem` whose right-hand side governs it. The stepper only ever talks
to the problem through the small capability interface defined here:

- ``evaluate(t, u) -> du``
- ``initial_condition() -> u0``
- optionally ``spectral_radius(t, u) -> float`` for externally supplied radii

Cross-coupled subsystems (gating variables reading the potential and vice
versa) derive from :class:`CoupledProblem`. They never hold a writable
reference to another subsystem's state: the driver binds read-only views, and
the subsystem only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np
import numpy.typing as npt

from .errors import raise_state_shape_error

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import DTypeLike


# Error / message constants -------------------------------------------------

_STATE_1D_ERROR = "State vector '{name}' must be 1D; got ndim={ndim}"
_STATE_EMPTY_ERROR = "State vector '{name}' must contain at least one point"
_TIME_ORDER_ERROR = (
    "State vector '{name}' cannot move backwards in time: {t_next} < {t_curr}"
)
_T_END_ERROR = "t_end ({t_end}) must not precede the initial time ({t0})"
_HISTORY_NOT_STORED_ERROR = (
    "History is not stored (store_history=False); history access is unavailable."
)
_UNBOUND_COUPLING_ERROR = (
    "Coupling '{name}' has not been bound; available: {available}"
)


# Typing helpers ------------------------------------------------------------

FloatArray = npt.NDArray[np.floating[Any]]


@runtime_checkable
class Problem(Protocol):
    """Right-hand side and initial data for one subsystem."""

    def evaluate(self, t: float, u: FloatArray) -> FloatArray:
        """Return du/dt at (t, u)."""
        ...

    def initial_condition(self) -> FloatArray:
        """Return the initial state vector."""
        ...


@runtime_checkable
class SpectralRadiusProvider(Protocol):
    """Problems that can bound their own Jacobian spectral radius."""

    def spectral_radius(self, t: float, u: FloatArray) -> float:
        """Return an upper bound on the Jacobian spectral radius at (t, u)."""
        ...


class CoupledProblem:
    """Base class for problems whose RHS reads other subsystems' states.

    Subclasses list the names they depend on in ``requires`` and read them
    through :meth:`coupling` inside ``evaluate``. Bound arrays are read-only
    views; rebinding replaces the view, it never copies data.
    """

    requires: tuple[str, ...] = ()

    def __init__(self) -> None:
        """Initialize with no bound couplings."""
        self._couplings: dict[str, FloatArray] = {}

    def bind(self, name: str, values: FloatArray) -> None:
        """
        Bind a read-only view of another subsystem's state.

        Args:
            name: Name under which the state is read.
            values: Array to view. It is not copied.
        """
        view = np.asarray(values).view()
        view.flags.writeable = False
        self._couplings[name] = view

    def coupling(self, name: str) -> FloatArray:
        """
        Return the bound view for ``name``.

        Args:
            name: Coupling name.

        Raises:
            KeyError: If nothing has been bound under ``name``.

        Returns:
            Read-only array view.
        """
        try:
            return self._couplings[name]
        except KeyError as exc:
            raise KeyError(
                _UNBOUND_COUPLING_ERROR.format(
                    name=name, available=sorted(self._couplings)
                )
            ) from exc

    @property
    def couplings(self) -> Mapping[str, FloatArray]:
        """Read-only mapping of the currently bound views."""
        return MappingProxyType(self._couplings)


@dataclass(slots=True)
class StateVectorOptions:
    """Optional configuration for StateVector.

    Attributes:
        t0: Initial time.
        t_end: End time the stepper reports FINISHED at (inclusive).
        store_history: Whether to record every accepted (time, state) pair.
        dtype: Floating-point dtype for the state array.
    """

    t0: float = 0.0
    t_end: float = float("inf")
    store_history: bool = False
    dtype: DTypeLike = np.float64


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    """Saved copy of a state vector for replay.

    Attributes:
        time: Time of the snapshot.
        un: Copy of the state values.
    """

    time: float
    un: FloatArray


class StateVector:
    """One field of unknowns, its current time and its governing problem."""

    def __init__(
        self,
        name: str,
        problem: Problem,
        *,
        initial: FloatArray | None = None,
        options: StateVectorOptions | None = None,
    ) -> None:
        """
        Initialize StateVector.

        Args:
            name: Subsystem name (used for couplings and diagnostics).
            problem: Problem supplying the RHS and the initial condition.
            initial: Optional initial values overriding
                ``problem.initial_condition()``.
            options: Optional StateVectorOptions.

        Raises:
            ValueError: If the initial state is not a non-empty 1D array or
                t_end precedes t0.
        """
        opts = options or StateVectorOptions()

        self.name = str(name)
        self.problem = problem
        self.dtype = np.dtype(opts.dtype)

        u0 = problem.initial_condition() if initial is None else initial
        self.un: FloatArray = np.array(u0, dtype=self.dtype, copy=True)
        if self.un.ndim != 1:
            raise ValueError(_STATE_1D_ERROR.format(name=self.name, ndim=self.un.ndim))
        if self.un.size == 0:
            raise ValueError(_STATE_EMPTY_ERROR.format(name=self.name))

        self.time = float(opts.t0)
        self.t_end = float(opts.t_end)
        if self.t_end < self.time:
            raise ValueError(_T_END_ERROR.format(t_end=self.t_end, t0=self.time))

        self.store_history = bool(opts.store_history)
        self._times: list[float] = []
        self._states: list[FloatArray] = []
        if self.store_history:
            self._record()

    def __len__(self) -> int:
        return int(self.un.size)

    def __repr__(self) -> str:
        return (
            f"StateVector(name={self.name!r}, n_points={len(self)}, "
            f"time={self.time!r}, t_end={self.t_end!r})"
        )

    @property
    def shape(self) -> tuple[int, ...]:
        """Shape of the state array."""
        return self.un.shape

    @property
    def finished(self) -> bool:
        """True once time has reached or passed t_end."""
        return self.time >= self.t_end

    # ------------------------------------------------------------------
    # Validation / access
    # ------------------------------------------------------------------

    def validate_state_shape(self, arr: FloatArray, *, name: str = "state") -> None:
        """
        Validate that arr matches the state shape.

        Args:
            arr: Array to validate.
            name: Name used in the error message.
        """
        arr_shape = np.asarray(arr).shape
        if arr_shape != self.shape:
            raise_state_shape_error(name=name, expected=self.shape, got=arr_shape)

    def read_only_view(self) -> FloatArray:
        """Return a read-only view of the current values."""
        view = self.un.view()
        view.flags.writeable = False
        return view

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def accept_step(self, next_state: FloatArray, t_next: float) -> None:
        """
        Overwrite the state in place with an accepted step.

        The array object is kept, so read-only views handed to coupled
        subsystems observe the update.

        Args:
            next_state: New values, same shape as the state.
            t_next: Time the new values are valid at.

        Raises:
            ValueError: If t_next precedes the current time.
        """
        self.validate_state_shape(next_state, name="next_state")
        t_next = float(t_next)
        if t_next < self.time:
            raise ValueError(
                _TIME_ORDER_ERROR.format(
                    name=self.name, t_next=t_next, t_curr=self.time
                )
            )
        np.copyto(self.un, next_state)
        self.time = t_next
        if self.store_history:
            self._record()

    def snapshot(self) -> StateSnapshot:
        """Return a copy of the current (time, values)."""
        return StateSnapshot(time=self.time, un=self.un.copy())

    def restore(self, snapshot: StateSnapshot) -> None:
        """
        Restore values and time from a snapshot, in place.

        History, if stored, is truncated to entries not later than the
        snapshot time.

        Args:
            snapshot: Snapshot previously taken from a vector of this shape.
        """
        self.validate_state_shape(snapshot.un, name="snapshot")
        np.copyto(self.un, snapshot.un)
        self.time = float(snapshot.time)
        if self.store_history:
            keep = sum(1 for t in self._times if t <= self.time)
            del self._times[keep:]
            del self._states[keep:]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _record(self) -> None:
        self._times.append(self.time)
        self._states.append(self.un.copy())

    def _require_history(self) -> None:
        if not self.store_history:
            raise RuntimeError(_HISTORY_NOT_STORED_ERROR)

    def history_times(self) -> FloatArray:
        """
        Return recorded times, shape (n_records,).

        Raises:
            RuntimeError: If history is not stored.
        """
        self._require_history()
        return np.asarray(self._times, dtype=float)

    def history_states(self) -> FloatArray:
        """
        Return recorded states, shape (n_records, n_points).

        Raises:
            RuntimeError: If history is not stored.
        """
        self._require_history()
        return np.stack(self._states).astype(self.dtype, copy=False)
