# src/rkc_engine/stepper.py
"""Stabilized explicit (Runge-Kutta-Chebyshev) stepper.

:class:`RKCStepper` advances a :class:`rkc_engine.state.StateVector` with the
damped second-order Chebyshev method described in :mod:`rkc_engine.chebyshev`.
Each attempted step:

1. obtains a spectral radius bound (internal power iteration, a value cached
   for the same StateVector at the same time, or the problem's own
   ``spectral_radius``),
2. selects the smallest stable stage count for that bound and the step size,
3. runs the stage recurrence,
4. with adaptivity on, forms the embedded error estimate

       est = (12 (y_n - y_{n+1}) + 6 h (F(y_n) + F(y_{n+1}))) / 15

   and lets the step-size controller accept or reject it.

Call semantics:
    - one_step=True: one accepted step per ``advance`` call.
    - one_step=False: accepted steps until ``state.time >= state.t_end``.
    - The stepper never clips dt to the end time; that is the caller's policy.
    - Fatal outcomes are returned as statuses and leave the state untouched.

Performance hygiene:
    - Stage buffers are allocated once per call and rotated in place.
    - The derivative at an accepted adaptive solution is reused as F(y_n) of
      the next step within the same call. It is never carried across calls,
      since coupled subsystems may change between calls.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt

from .chebyshev import (
    MAX_STAGES,
    MIN_STAGES,
    ORDER,
    chebyshev_coefficients,
    max_stable_dt,
    select_stages,
)
from .controller import DtControllerConfig, StepSizeController, error_norm
from .errors import (
    ConfigurationError,
    ErrorCode,
    StabilityBudgetError,
    raise_invalid_config,
    raise_state_shape_error,
)
from .spectral_radius import (
    DEFAULT_MAX_ITER,
    DEFAULT_SAFETY,
    estimate_spectral_radius,
)
from .state import SpectralRadiusProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from .state import StateVector

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.floating[Any]]


# =============================================================================
# Errors / messages
# =============================================================================

_DT_ERROR_MSG = "dt must be finite and > 0; got {dt}"
_EXTERNAL_RHO_ERROR_MSG = (
    "internal_rho=False requires the problem of '{name}' to provide "
    "spectral_radius(t, u)"
)
_T_END_REQUIRED_ERROR_MSG = (
    "one_step=False integrates to state.t_end, but '{name}' has t_end={t_end}"
)
_REFRESH_IGNORED_WARNING_MSG = (
    "rho_refresh_interval={interval} is ignored when internal_rho=False; "
    "the problem's spectral_radius is called on every attempt"
)


# =============================================================================
# Status / configuration
# =============================================================================


class StepStatus(StrEnum):
    """Outcome of an ``advance`` call."""

    CONTINUE = "continue"
    FINISHED = "finished"
    STABILITY_BUDGET_EXCEEDED = "stability_budget_exceeded"
    TOO_MANY_REJECTIONS = "too_many_rejections"
    STEP_SIZE_UNDERFLOW = "step_size_underflow"
    NON_FINITE = "non_finite"

    @property
    def is_fatal(self) -> bool:
        """True for statuses after which the caller must stop."""
        return self not in {StepStatus.CONTINUE, StepStatus.FINISHED}


@dataclass(slots=True, frozen=True)
class IntegratorConfig:
    """Immutable integrator configuration captured at construction.

    Attributes:
        one_step: Advance exactly one accepted step per call.
        verbose: Log per-step details at INFO instead of DEBUG.
        adaptive: Enable error estimation and step-size control.
        atol: Absolute tolerance.
        rtol: Relative tolerance.
        internal_rho: Estimate the spectral radius by power iteration; if
            False the problem must implement ``spectral_radius(t, u)``.
        rho_refresh_interval: Accepted steps an internal estimate stays valid.
            1 re-estimates every step.
        min_stages: Smallest stage count the selector may return.
        max_stages: Largest stage count; beyond it the step is fatal.
        max_rejects: Rejections allowed per accepted step.
        rho_max_iter: Power iteration cap.
        rho_safety: Inflation applied to the power iteration result.
        dt_controller: Step-size controller bounds and factors.
    """

    one_step: bool = True
    verbose: bool = False
    adaptive: bool = False
    atol: float = 1e-2
    rtol: float = 1e-2
    internal_rho: bool = True
    rho_refresh_interval: int = 1
    min_stages: int = MIN_STAGES
    max_stages: int = MAX_STAGES
    max_rejects: int = 25
    rho_max_iter: int = DEFAULT_MAX_ITER
    rho_safety: float = DEFAULT_SAFETY
    dt_controller: DtControllerConfig = field(default_factory=DtControllerConfig)

    def problems(self, dt: float | None = None) -> list[str]:
        """
        List everything wrong with this configuration (and dt, if given).

        Args:
            dt: Optional initial step size to validate alongside.

        Returns:
            Human-readable problems; empty when the configuration is usable.
        """
        out: list[str] = []
        if dt is not None and not (np.isfinite(dt) and dt > 0.0):
            out.append(f"dt must be finite and > 0 (got {dt})")
        if not (np.isfinite(self.atol) and self.atol > 0.0):
            out.append(f"atol must be finite and > 0 (got {self.atol})")
        if not (np.isfinite(self.rtol) and self.rtol > 0.0):
            out.append(f"rtol must be finite and > 0 (got {self.rtol})")
        if not (MIN_STAGES <= self.min_stages <= self.max_stages):
            out.append(
                f"stage bounds must satisfy {MIN_STAGES} <= min_stages <= "
                f"max_stages (got {self.min_stages}, {self.max_stages})"
            )
        if self.rho_refresh_interval < 1:
            out.append(
                f"rho_refresh_interval must be >= 1 (got {self.rho_refresh_interval})"
            )
        if self.max_rejects < 0:
            out.append(f"max_rejects must be >= 0 (got {self.max_rejects})")
        if self.rho_max_iter < 2:
            out.append(f"rho_max_iter must be >= 2 (got {self.rho_max_iter})")
        if self.rho_safety < 1.0:
            out.append(f"rho_safety must be >= 1 (got {self.rho_safety})")

        ctrl = self.dt_controller
        if not (0.0 < ctrl.safety <= 1.0):
            out.append(f"controller safety must be in (0, 1] (got {ctrl.safety})")
        if not (0.0 < ctrl.fac_min < 1.0 < ctrl.fac_max):
            out.append(
                "controller factors must satisfy 0 < fac_min < 1 < fac_max "
                f"(got {ctrl.fac_min}, {ctrl.fac_max})"
            )
        if not (0.0 <= ctrl.dt_min < ctrl.dt_max):
            out.append(
                "controller bounds must satisfy 0 <= dt_min < dt_max "
                f"(got {ctrl.dt_min}, {ctrl.dt_max})"
            )
        if self.adaptive and dt is not None and dt < ctrl.dt_min:
            out.append(f"dt ({dt}) is below dt_min ({ctrl.dt_min})")
        return out

    def validate(self, dt: float | None = None) -> None:
        """
        Validate this configuration.

        Args:
            dt: Optional initial step size to validate alongside.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        found = self.problems(dt)
        if found:
            raise_invalid_config(problems=found)


# =============================================================================
# Mutable stepper state
# =============================================================================


@dataclass(slots=True)
class StepperStats:
    """Running statistics of one stepper instance.

    Attributes:
        n_calls: advance() calls that attempted at least one step.
        n_accepted: Accepted steps.
        n_rejected: Rejected attempts.
        n_rhs_evals: RHS evaluations, spectral radius estimation included.
        n_rho_evals: Spectral radius estimations (internal or external).
        n_rho_unconverged: Internal estimations that hit the iteration cap.
        max_stages: Largest stage count used so far.
    """

    n_calls: int = 0
    n_accepted: int = 0
    n_rejected: int = 0
    n_rhs_evals: int = 0
    n_rho_evals: int = 0
    n_rho_unconverged: int = 0
    max_stages: int = 0

    def as_dict(self) -> dict[str, int]:
        """Return the counters as a plain dict."""
        return {
            "n_calls": self.n_calls,
            "n_accepted": self.n_accepted,
            "n_rejected": self.n_rejected,
            "n_rhs_evals": self.n_rhs_evals,
            "n_rho_evals": self.n_rho_evals,
            "n_rho_unconverged": self.n_rho_unconverged,
            "max_stages": self.max_stages,
        }


@dataclass(slots=True)
class StepperState:
    """Mutable state private to one stepper instance.

    Attributes:
        last_dt: Last accepted step size.
        rho: Cached spectral radius estimate.
        rho_age: Accepted steps since rho was estimated.
        rho_owner: id() of the StateVector the cached rho belongs to.
        rho_time: Time of that StateVector the cached rho is valid at.
        direction: Dominant direction from power iteration, used as a warm
            start within one advance call only.
        last_stages: Stage count of the last attempted step.
        stats: Running counters.
    """

    last_dt: float | None = None
    rho: float | None = None
    rho_age: int = 0
    rho_owner: int | None = None
    rho_time: float | None = None
    direction: FloatArray | None = None
    last_stages: int | None = None
    stats: StepperStats = field(default_factory=StepperStats)


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of one ``advance`` call.

    Attributes:
        status: Terminal or continuing status.
        dt: Step size to use next (unchanged when adaptivity is off).
        stages: Stage count of the last attempt, or None if none was made.
        n_steps: Steps accepted during this call.
    """

    status: StepStatus
    dt: float
    stages: int | None
    n_steps: int


@dataclass(slots=True)
class _Attempt:
    """Result of advancing by one accepted step (or failing to)."""

    status: StepStatus
    dt_next: float
    f_new: FloatArray | None = None


# =============================================================================
# RKCStepper
# =============================================================================


class RKCStepper:
    """Degree-adaptive Runge-Kutta-Chebyshev stepper for stiff systems."""

    def __init__(self, config: IntegratorConfig | None = None) -> None:
        """Initialize RKCStepper.

        Args:
            config: Integrator configuration; defaults are used if None.
        """
        self.config = config or IntegratorConfig()
        if not self.config.internal_rho and self.config.rho_refresh_interval != 1:
            warnings.warn(
                _REFRESH_IGNORED_WARNING_MSG.format(
                    interval=self.config.rho_refresh_interval
                ),
                RuntimeWarning,
                stacklevel=2,
            )
        self.controller = StepSizeController(self.config.dt_controller, order=ORDER)
        self._state = StepperState()

    # ------------------------------------------------------------------
    # Accessors / diagnostics
    # ------------------------------------------------------------------

    @property
    def statistics(self) -> StepperStats:
        """Running statistics (live object; do not mutate)."""
        return self._state.stats

    @property
    def stepper_state(self) -> StepperState:
        """Mutable per-instance state (cached radius, last dt, counters)."""
        return self._state

    def reset(self) -> None:
        """Forget cached estimates and zero the statistics."""
        self._state = StepperState()

    def check_correctness(self, dt: float) -> bool:
        """
        Pre-flight check of configuration and initial step size.

        Args:
            dt: Initial step size.

        Returns:
            True if stepping may begin; otherwise the reasons are logged.
        """
        try:
            self.config.validate(dt)
        except ConfigurationError as exc:
            logger.error("%s", exc)
            return False
        return True

    def print_info(self) -> None:
        """Log the configuration."""
        cfg = self.config
        logger.info("RKC stepper (damped Chebyshev, order %d)", ORDER)
        logger.info(
            "  one_step=%s adaptive=%s internal_rho=%s verbose=%s",
            cfg.one_step,
            cfg.adaptive,
            cfg.internal_rho,
            cfg.verbose,
        )
        logger.info("  atol=%g rtol=%g", cfg.atol, cfg.rtol)
        logger.info(
            "  stages in [%d, %d], max_rejects=%d, rho_refresh_interval=%d",
            cfg.min_stages,
            cfg.max_stages,
            cfg.max_rejects,
            cfg.rho_refresh_interval,
        )

    def print_statistics(self) -> None:
        """Log the running statistics."""
        stats = self._state.stats
        logger.info("RKC stepper statistics")
        for key, value in stats.as_dict().items():
            logger.info("  %s: %d", key, value)
        if self._state.last_dt is not None:
            logger.info("  last_dt: %g", self._state.last_dt)

    def _log_step(self, msg: str, *args: object) -> None:
        level = logging.INFO if self.config.verbose else logging.DEBUG
        logger.log(level, msg, *args)

    # ------------------------------------------------------------------
    # RHS / spectral radius helpers
    # ------------------------------------------------------------------

    def _make_rhs(self, state: StateVector) -> Callable[[float, FloatArray], FloatArray]:
        """
        Wrap the problem RHS with shape/dtype enforcement and counting.

        Args:
            state: State vector whose problem is evaluated.

        Returns:
            Callable F(t, u).
        """
        problem = state.problem
        shape = state.shape
        dtype = state.dtype
        stats = self._state.stats

        def rhs(t: float, u: FloatArray) -> FloatArray:
            stats.n_rhs_evals += 1
            f = np.asarray(problem.evaluate(float(t), u), dtype=dtype)
            if f.shape != shape:
                raise_state_shape_error(
                    name=f"rhs of '{state.name}'", expected=shape, got=f.shape
                )
            return f

        return rhs

    def _spectral_radius(
        self,
        state: StateVector,
        rhs: Callable[[float, FloatArray], FloatArray],
        t: float,
        y0: FloatArray,
        f0: FloatArray,
        *,
        force: bool,
    ) -> tuple[float, bool]:
        """
        Return (rho, fresh): a radius bound and whether it was just computed.

        Args:
            state: State vector being advanced.
            rhs: Wrapped RHS.
            t: Current time.
            y0: Current state values.
            f0: F(t, y0).
            force: Ignore the cache.

        Returns:
            Tuple (rho, fresh).
        """
        cfg = self.config
        st = self._state

        if not cfg.internal_rho:
            provider = state.problem
            if not isinstance(provider, SpectralRadiusProvider):
                raise ConfigurationError(
                    _EXTERNAL_RHO_ERROR_MSG.format(name=state.name),
                    code=ErrorCode.INVALID_CONFIG,
                )
            st.stats.n_rho_evals += 1
            return float(provider.spectral_radius(float(t), y0)), True

        if (
            not force
            and st.rho is not None
            and st.rho_owner == id(state)
            and st.rho_time == t
            and st.rho_age < cfg.rho_refresh_interval
        ):
            return st.rho, False

        direction = st.direction
        if direction is not None and direction.shape != y0.shape:
            direction = None

        est = estimate_spectral_radius(
            rhs,
            t,
            y0,
            f0,
            direction=direction,
            max_iter=cfg.rho_max_iter,
            safety=cfg.rho_safety,
        )
        st.stats.n_rho_evals += 1
        if not est.converged:
            st.stats.n_rho_unconverged += 1
        st.rho = est.rho
        st.rho_age = 0
        st.rho_owner = id(state)
        st.rho_time = float(t)
        st.direction = est.direction
        return est.rho, True

    # ------------------------------------------------------------------
    # Stage recurrence
    # ------------------------------------------------------------------

    @staticmethod
    def _rkc_stages(
        rhs: Callable[[float, FloatArray], FloatArray],
        t: float,
        y0: FloatArray,
        f0: FloatArray,
        h: float,
        s: int,
    ) -> FloatArray | None:
        """
        Run the s-stage recurrence from y0 and return Y_s.

        Args:
            rhs: Wrapped RHS.
            t: Step start time.
            y0: Step start values (not modified).
            f0: F(t, y0).
            h: Step size.
            s: Stage count.

        Returns:
            New array holding the propagated solution, or None as soon as a
            stage derivative is non-finite.
        """
        coeffs = chebyshev_coefficients(s)
        mu, nu, mus, gamma, c = (
            coeffs.mu,
            coeffs.nu,
            coeffs.mus,
            coeffs.gamma,
            coeffs.c,
        )

        y_jm2 = np.array(y0, copy=True)
        y_jm1 = np.multiply(f0, h * mus[1])
        y_jm1 += y0
        y_j = np.empty_like(y_jm1)
        tmp = np.empty_like(y_jm1)

        for j in range(2, s + 1):
            f_jm1 = rhs(t + c[j - 1] * h, y_jm1)
            if not np.all(np.isfinite(f_jm1)):
                return None

            np.multiply(y_jm1, mu[j], out=y_j)
            np.multiply(y_jm2, nu[j], out=tmp)
            y_j += tmp
            np.multiply(y0, 1.0 - mu[j] - nu[j], out=tmp)
            y_j += tmp
            np.multiply(f_jm1, h * mus[j], out=tmp)
            y_j += tmp
            np.multiply(f0, h * gamma[j], out=tmp)
            y_j += tmp

            y_jm2, y_jm1, y_j = y_jm1, y_j, y_jm2

        return y_jm1

    # ------------------------------------------------------------------
    # One accepted step
    # ------------------------------------------------------------------

    def _step_once(
        self,
        state: StateVector,
        rhs: Callable[[float, FloatArray], FloatArray],
        dt: float,
        f0: FloatArray | None,
    ) -> _Attempt:
        """
        Take one accepted step, retrying rejected attempts.

        Args:
            state: State vector to advance (modified only on acceptance).
            rhs: Wrapped RHS.
            dt: Step size of the first attempt.
            f0: F(t, y0) if already known (reused from the previous step).

        Returns:
            _Attempt with the outcome and the proposed next dt.
        """
        cfg = self.config
        st = self._state
        stats = st.stats

        t = state.time
        y0 = state.read_only_view()
        if f0 is None:
            f0 = rhs(t, y0)
        if not np.all(np.isfinite(f0)):
            return _Attempt(StepStatus.NON_FINITE, dt)

        h = float(dt)
        rejects = 0
        force_rho = False
        while True:
            rho, fresh = self._spectral_radius(state, rhs, t, y0, f0, force=force_rho)
            if not np.isfinite(rho):
                logger.error("Non-finite spectral radius for '%s' at t=%g", state.name, t)
                return _Attempt(StepStatus.NON_FINITE, h)

            try:
                s = select_stages(
                    rho,
                    h,
                    min_stages=cfg.min_stages,
                    max_stages=cfg.max_stages,
                )
            except StabilityBudgetError as exc:
                logger.error("'%s' at t=%g: %s", state.name, t, exc)
                return _Attempt(StepStatus.STABILITY_BUDGET_EXCEEDED, h)

            st.last_stages = s
            stats.max_stages = max(stats.max_stages, s)

            y_new = self._rkc_stages(rhs, t, y0, f0, h, s)
            if y_new is None or not np.all(np.isfinite(y_new)):
                logger.error("Non-finite stage values for '%s' at t=%g", state.name, t)
                return _Attempt(StepStatus.NON_FINITE, h)

            if not cfg.adaptive:
                self._accept(state, y_new, t, h)
                self._log_step(
                    "%s: t=%.8g dt=%.4g rho=%.4g stages=%d",
                    state.name,
                    state.time,
                    h,
                    rho,
                    s,
                )
                return _Attempt(StepStatus.CONTINUE, h)

            f_new = rhs(t + h, y_new)
            if not np.all(np.isfinite(f_new)):
                logger.error(
                    "Non-finite derivative at the candidate solution of '%s' at t=%g",
                    state.name,
                    t,
                )
                return _Attempt(StepStatus.NON_FINITE, h)

            est = y0 - y_new
            est *= 12.0
            est += (6.0 * h) * (f0 + f_new)
            est /= 15.0
            err = error_norm(est, y_new, y0, rtol=cfg.rtol, atol=cfg.atol)

            accept, h_new = self.controller.control(err, h)
            if accept:
                self._accept(state, y_new, t, h)
                h_next = min(
                    h_new,
                    cfg.dt_controller.safety
                    * max_stable_dt(rho, max_stages=cfg.max_stages),
                )
                self._log_step(
                    "%s: t=%.8g dt=%.4g err=%.3g rho=%.4g stages=%d next_dt=%.4g",
                    state.name,
                    state.time,
                    h,
                    err,
                    rho,
                    s,
                    h_next,
                )
                return _Attempt(StepStatus.CONTINUE, h_next, f_new)

            rejects += 1
            stats.n_rejected += 1
            self._log_step(
                "%s: rejected t=%.8g dt=%.4g err=%.3g retry_dt=%.4g",
                state.name,
                t,
                h,
                err,
                h_new,
            )
            if rejects > cfg.max_rejects:
                logger.error(
                    "'%s' at t=%g: %d consecutive rejections", state.name, t, rejects
                )
                return _Attempt(StepStatus.TOO_MANY_REJECTIONS, h_new)
            if h_new <= cfg.dt_controller.dt_min:
                logger.error(
                    "'%s' at t=%g: dt fell to dt_min=%g",
                    state.name,
                    t,
                    cfg.dt_controller.dt_min,
                )
                return _Attempt(StepStatus.STEP_SIZE_UNDERFLOW, h_new)

            h = h_new
            force_rho = not fresh

    def _accept(self, state: StateVector, y_new: FloatArray, t: float, h: float) -> None:
        st = self._state
        state.accept_step(y_new, t + h)
        st.last_dt = h
        st.rho_age += 1
        if st.rho_owner == id(state):
            st.rho_time = state.time
        st.stats.n_accepted += 1

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def advance(
        self,
        state: StateVector,
        dt: float,
        status: StepStatus = StepStatus.CONTINUE,
    ) -> StepResult:
        """Advance ``state`` in place by one accepted step (or to ``t_end``).

        Args:
            state: State vector to advance.
            dt: Step size to attempt.
            status: Status from the previous call. Anything other than
                CONTINUE makes this call a no-op that returns it unchanged.

        Raises:
            ConfigurationError: If dt is invalid, external radius estimation
                is configured but unsupported by the problem, or one_step is
                False while state.t_end is not finite.

        Returns:
            StepResult with the new status and the dt to use next.
        """
        st = self._state
        if status is not StepStatus.CONTINUE:
            return StepResult(status=status, dt=dt, stages=st.last_stages, n_steps=0)

        dt_f = float(dt)
        if not (np.isfinite(dt_f) and dt_f > 0.0):
            raise ConfigurationError(
                _DT_ERROR_MSG.format(dt=dt), code=ErrorCode.INVALID_CONFIG
            )
        if not self.config.one_step and not np.isfinite(state.t_end):
            raise ConfigurationError(
                _T_END_REQUIRED_ERROR_MSG.format(name=state.name, t_end=state.t_end),
                code=ErrorCode.INVALID_CONFIG,
            )

        st.stats.n_calls += 1
        st.direction = None
        rhs = self._make_rhs(state)

        n_steps = 0
        h = dt_f
        f0: FloatArray | None = None
        while True:
            attempt = self._step_once(state, rhs, h, f0)
            if attempt.status.is_fatal:
                return StepResult(
                    status=attempt.status,
                    dt=attempt.dt_next,
                    stages=st.last_stages,
                    n_steps=n_steps,
                )

            n_steps += 1
            h = attempt.dt_next
            f0 = attempt.f_new

            if state.finished:
                return StepResult(
                    status=StepStatus.FINISHED,
                    dt=h,
                    stages=st.last_stages,
                    n_steps=n_steps,
                )
            if self.config.one_step:
                return StepResult(
                    status=StepStatus.CONTINUE,
                    dt=h,
                    stages=st.last_stages,
                    n_steps=n_steps,
                )
