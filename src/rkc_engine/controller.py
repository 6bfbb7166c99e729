# src/rkc_engine/controller.py
"""Error norms and step-size control for adaptive stepping.

The controller implements the standard error-per-step law

    new_dt = dt * clamp(safety * err ** (-1 / (p + 1)), fac_min, fac_max)

bounded by [dt_min, dt_max]. A step is accepted iff ``err <= 1``, where ``err``
is the weighted RMS norm returned by :func:`error_norm`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt

FloatArray = npt.NDArray[np.floating[Any]]

_ORDER_ERROR_MSG = "order must be >= 1; got {order}"


@dataclass(slots=True, frozen=True)
class DtControllerConfig:
    """Configuration for adaptive timestep control.

    Attributes:
        dt_min: Minimum allowed dt; a rejection that would go below it is fatal.
        dt_max: Maximum allowed dt.
        safety: Safety factor applied to dt updates.
        fac_min: Minimum multiplicative change factor.
        fac_max: Maximum multiplicative change factor.
    """

    dt_min: float = 1e-12
    dt_max: float = float("inf")
    safety: float = 0.9
    fac_min: float = 0.2
    fac_max: float = 5.0


def error_norm(
    err: FloatArray,
    y_new: FloatArray,
    y_old: FloatArray,
    *,
    rtol: float,
    atol: float | FloatArray,
) -> float:
    """
    Compute the RMS scaled error norm.

    Each component is weighted by ``atol + rtol * max(|y_new|, |y_old|)``.

    Args:
        err: Local error estimate.
        y_new: Candidate solution.
        y_old: Solution at the start of the step.
        rtol: Relative tolerance.
        atol: Absolute tolerance (scalar or per-component).

    Returns:
        Weighted RMS norm; inf if it is not finite.
    """
    scale = np.maximum(np.abs(y_new), np.abs(y_old))
    scale *= float(rtol)
    scale += np.asarray(atol, dtype=scale.dtype)

    ratio = np.asarray(err, dtype=scale.dtype) / scale
    v = float(np.sqrt(np.mean(ratio * ratio)))
    if not np.isfinite(v):
        return float("inf")
    return v


class StepSizeController:
    """Accept/reject decision and dt proposal for an order-p method."""

    def __init__(
        self,
        config: DtControllerConfig | None = None,
        *,
        order: int = 2,
    ) -> None:
        """
        Initialize StepSizeController.

        Args:
            config: Controller bounds and safety factors.
            order: Order p of the propagated solution.

        Raises:
            ValueError: If order < 1.
        """
        if order < 1:
            raise ValueError(_ORDER_ERROR_MSG.format(order=order))
        self.config = config or DtControllerConfig()
        self.order = int(order)

    def propose(self, dt: float, err_norm: float) -> float:
        """
        Propose a new dt based on error norm and method order.

        Args:
            dt: Current dt.
            err_norm: Current error norm.

        Returns:
            Proposed new dt, bounded by [dt_min, dt_max].
        """
        cfg = self.config
        if err_norm <= 0.0:
            fac = cfg.fac_max
        elif not np.isfinite(err_norm):
            fac = cfg.fac_min
        else:
            exp = 1.0 / float(self.order + 1)
            fac = cfg.safety * (err_norm ** (-exp))
            fac = min(cfg.fac_max, max(cfg.fac_min, fac))

        dt_new = dt * fac
        if dt_new < cfg.dt_min:
            return cfg.dt_min
        if dt_new > cfg.dt_max:
            return cfg.dt_max
        return dt_new

    def control(self, err_norm: float, dt: float) -> tuple[bool, float]:
        """
        Decide whether to accept a step and propose the next dt.

        Args:
            err_norm: Weighted RMS error norm of the attempted step.
            dt: Step size of the attempted step.

        Returns:
            (accept, new_dt). On rejection new_dt is the retry step size.
        """
        return bool(err_norm <= 1.0), self.propose(dt, err_norm)
