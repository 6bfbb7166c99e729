# src/rkc_engine/errors.py
"""Error types and standardized raisers for rkc_engine.

This module centralizes:
- a small exception taxonomy with machine-readable error codes, and
- helpers that build consistent, actionable error messages.

Design intent:
- configuration problems surface before any stepping begins
- fatal numerical outcomes inside `advance` are reported as statuses, not
  exceptions; the exceptions here are the building blocks those statuses are
  derived from
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Machine-readable classification for rkc_engine failures."""

    INVALID_CONFIG = "invalid_config"
    STABILITY_BUDGET_EXCEEDED = "stability_budget_exceeded"
    INVALID_STATE_SHAPE = "invalid_state_shape"


class RkcEngineError(Exception):
    """Base exception for rkc_engine errors."""

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        """
        Initialize an RkcEngineError.

        Args:
            message: Human-readable error message.
            code: Optional machine-readable error code classifying the error.
        """
        super().__init__(message)
        self.code: ErrorCode | None = code


class ConfigurationError(RkcEngineError, ValueError):
    """Raised when integrator configuration or run parameters are invalid."""


class StabilityBudgetError(RkcEngineError, ArithmeticError):
    """Raised when no allowed stage count can stabilize the requested step."""

    def __init__(
        self,
        message: str,
        *,
        rho: float,
        dt: float,
        max_stages: int,
    ) -> None:
        """
        Initialize a StabilityBudgetError.

        Args:
            message: Human-readable error message.
            rho: Spectral radius estimate that was used.
            dt: Requested step size.
            max_stages: Largest stage count that was allowed.
        """
        super().__init__(message, code=ErrorCode.STABILITY_BUDGET_EXCEEDED)
        self.rho = rho
        self.dt = dt
        self.max_stages = max_stages


class StateShapeError(RkcEngineError, ValueError):
    """Raised when a state or derivative array has an incompatible shape."""


def raise_invalid_config(
    *,
    problems: list[str] | None = None,
    detail: str | None = None,
) -> None:
    """Raise a standardized ConfigurationError.

    Args:
        problems: Individual validation failures, one per entry.
        detail: Optional additional context.

    Raises:
        ConfigurationError: Always.
    """
    parts: list[str] = ["Invalid integrator configuration."]
    if problems:
        parts.append("Problem(s): " + "; ".join(problems) + ".")
    if detail:
        parts.append(f"Detail: {detail}")
    raise ConfigurationError(" ".join(parts), code=ErrorCode.INVALID_CONFIG)


def raise_state_shape_error(*, name: str, expected: object, got: object) -> None:
    """Raise a standardized StateShapeError.

    Args:
        name: Name of the object with the shape issue.
        expected: Expected shape.
        got: Actual observed shape/value.

    Raises:
        StateShapeError: Always.
    """
    msg = f"{name} has an invalid shape. Expected {expected!r}. Got: {got!r}."
    raise StateShapeError(msg, code=ErrorCode.INVALID_STATE_SHAPE)
