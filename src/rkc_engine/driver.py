# src/rkc_engine/driver.py
"""Lockstep driver for cross-coupled subsystems.

Several :class:`rkc_engine.state.StateVector` objects (for example a membrane
potential and its gating variables), each with its own
:class:`rkc_engine.stepper.RKCStepper`, are advanced with a shared step size
in a fixed order:

    for sub in subsystems (registration order):
        refresh sub's couplings with read-only views of the other states
        sub.stepper.advance(sub.state, dt, sub.status)

This is a Gauss-Seidel sweep: a subsystem advanced later sees the already
updated values of the subsystems advanced before it. The next shared step size
is the minimum of the subsystems' proposals.

The driver performs no I/O. An optional ``observer(time, driver)`` callback is
invoked after every completed sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import raise_invalid_config
from .state import CoupledProblem
from .stepper import RKCStepper, StepStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from .state import StateVector

logger = logging.getLogger(__name__)

_DUPLICATE_NAME_ERROR_MSG = "Subsystem names must be unique; '{name}' is repeated"
_UNKNOWN_REQUIREMENT_ERROR_MSG = (
    "Subsystem '{name}' requires '{req}', which is not registered"
)
_UNKNOWN_SUBSYSTEM_ERROR_MSG = "No subsystem named '{name}'; registered: {names}"
_EMPTY_DRIVER_ERROR_MSG = "LockstepDriver needs at least one subsystem"
_TIME_MISMATCH_WARNING_MSG = (
    "Subsystem '{name}' is at t={time}, but the lead subsystem is at t={lead}"
)


@dataclass(slots=True)
class Subsystem:
    """One state vector and the stepper that owns its advancement.

    Attributes:
        state: State vector advanced by ``stepper``.
        stepper: Stepper instance; never shared between subsystems.
        status: Status returned by the last advance call.
        dt_next: Step size proposed by the last advance call.
    """

    state: StateVector
    stepper: RKCStepper = field(default_factory=RKCStepper)
    status: StepStatus = StepStatus.CONTINUE
    dt_next: float | None = None

    @property
    def name(self) -> str:
        """Name of the underlying state vector."""
        return self.state.name


@dataclass(frozen=True, slots=True)
class DriverResult:
    """Outcome of :meth:`LockstepDriver.run`.

    Attributes:
        status: Aggregate status (first fatal status, else FINISHED/CONTINUE).
        time: Time of the lead subsystem at exit.
        n_sweeps: Completed lockstep sweeps.
        dt: Shared step size proposed for the next sweep.
        statuses: Per-subsystem status at exit.
    """

    status: StepStatus
    time: float
    n_sweeps: int
    dt: float
    statuses: dict[str, StepStatus]


class LockstepDriver:
    """Advance coupled subsystems together with a shared step size."""

    def __init__(
        self,
        subsystems: Iterable[Subsystem],
        *,
        observer: Callable[[float, LockstepDriver], None] | None = None,
    ) -> None:
        """
        Initialize LockstepDriver.

        Args:
            subsystems: Subsystems in the order they are advanced.
            observer: Optional callback invoked as ``observer(time, driver)``
                after every sweep of :meth:`run`.

        Raises:
            ConfigurationError: If no subsystems are given, names repeat, or a
                coupled problem requires an unregistered name.
        """
        self._subsystems: tuple[Subsystem, ...] = tuple(subsystems)
        self.observer = observer

        if not self._subsystems:
            raise_invalid_config(detail=_EMPTY_DRIVER_ERROR_MSG)

        self._by_name: dict[str, Subsystem] = {}
        for sub in self._subsystems:
            if sub.name in self._by_name:
                raise_invalid_config(
                    detail=_DUPLICATE_NAME_ERROR_MSG.format(name=sub.name)
                )
            self._by_name[sub.name] = sub

        for sub in self._subsystems:
            for req in self._requirements(sub):
                if req not in self._by_name:
                    raise_invalid_config(
                        detail=_UNKNOWN_REQUIREMENT_ERROR_MSG.format(
                            name=sub.name, req=req
                        )
                    )

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def subsystems(self) -> tuple[Subsystem, ...]:
        """Subsystems in advancement order."""
        return self._subsystems

    def __getitem__(self, name: str) -> Subsystem:
        try:
            return self._by_name[name]
        except KeyError as exc:
            raise KeyError(
                _UNKNOWN_SUBSYSTEM_ERROR_MSG.format(
                    name=name, names=list(self._by_name)
                )
            ) from exc

    @property
    def time(self) -> float:
        """Time of the lead (first registered) subsystem."""
        return self._subsystems[0].state.time

    @property
    def proposed_dt(self) -> float | None:
        """Minimum of the subsystems' proposals, or None before any step."""
        proposals = [s.dt_next for s in self._subsystems if s.dt_next is not None]
        return min(proposals) if proposals else None

    @property
    def status(self) -> StepStatus:
        """Aggregate status: first fatal, else FINISHED if any, else CONTINUE."""
        return self._aggregate(s.status for s in self._subsystems)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _requirements(sub: Subsystem) -> tuple[str, ...]:
        problem = sub.state.problem
        if isinstance(problem, CoupledProblem):
            return tuple(problem.requires)
        return ()

    @staticmethod
    def _aggregate(statuses: Iterable[StepStatus]) -> StepStatus:
        finished = False
        for status in statuses:
            if status.is_fatal:
                return status
            finished = finished or status is StepStatus.FINISHED
        return StepStatus.FINISHED if finished else StepStatus.CONTINUE

    def _refresh_couplings(self, sub: Subsystem) -> None:
        problem = sub.state.problem
        if not isinstance(problem, CoupledProblem):
            return
        for req in problem.requires:
            problem.bind(req, self._by_name[req].state.read_only_view())

    def _advance(self, sub: Subsystem, dt: float) -> StepStatus:
        self._refresh_couplings(sub)
        result = sub.stepper.advance(sub.state, dt, sub.status)
        sub.status = result.status
        sub.dt_next = result.dt
        if result.status.is_fatal:
            logger.error(
                "Subsystem '%s' stopped at t=%g with status %s",
                sub.name,
                sub.state.time,
                result.status,
            )
        return result.status

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def check_correctness(self, dt: float) -> bool:
        """
        Pre-flight check of every subsystem's stepper and the shared clock.

        Args:
            dt: Initial shared step size.

        Returns:
            True if every stepper accepts its configuration and dt.
        """
        ok = True
        for sub in self._subsystems:
            ok = sub.stepper.check_correctness(dt) and ok

        lead = self.time
        for sub in self._subsystems[1:]:
            if sub.state.time != lead:
                logger.warning(
                    _TIME_MISMATCH_WARNING_MSG.format(
                        name=sub.name, time=sub.state.time, lead=lead
                    )
                )
        return ok

    def stagger(self, dt: float, names: Sequence[str]) -> StepStatus:
        """
        Advance the named subsystems once by ``dt / 2``.

        Used to offset e.g. gating variables by half a step from the potential
        before lockstep integration begins.

        Args:
            dt: Shared step size; half of it is taken.
            names: Subsystems to advance, in the given order.

        Raises:
            KeyError: If a name is not registered.

        Returns:
            Aggregate status of the advanced subsystems.
        """
        subs = [self[name] for name in names]
        statuses = [self._advance(sub, 0.5 * dt) for sub in subs]
        return self._aggregate(statuses)

    def step(self, dt: float) -> StepStatus:
        """
        Run one Gauss-Seidel sweep over all subsystems.

        A fatal status stops the sweep immediately; subsystems after the
        failing one are not advanced.

        Args:
            dt: Shared step size.

        Returns:
            Aggregate status after the sweep.
        """
        for sub in self._subsystems:
            if self._advance(sub, dt).is_fatal:
                break
        return self.status

    def run(self, dt: float, t_end: float) -> DriverResult:
        """
        Sweep until a subsystem stops or the lead time passes ``t_end``.

        The loop continues while every status is CONTINUE and the lead time
        is ``<= t_end``. After each sweep the shared step size becomes the
        minimum of the subsystems' proposals.

        Args:
            dt: Initial shared step size.
            t_end: End time.

        Returns:
            DriverResult describing where and why the loop stopped.
        """
        n_sweeps = 0
        status = self.status
        while status is StepStatus.CONTINUE and self.time <= t_end:
            status = self.step(dt)
            n_sweeps += 1
            if self.observer is not None:
                self.observer(self.time, self)
            proposed = self.proposed_dt
            if proposed is not None:
                dt = proposed

        logger.info(
            "Lockstep run ended at t=%g after %d sweeps (status %s)",
            self.time,
            n_sweeps,
            status,
        )
        return DriverResult(
            status=status,
            time=self.time,
            n_sweeps=n_sweeps,
            dt=dt,
            statuses={s.name: s.status for s in self._subsystems},
        )
