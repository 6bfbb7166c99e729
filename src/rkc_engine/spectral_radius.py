# src/rkc_engine/spectral_radius.py
"""Matrix-free spectral radius estimation for the local Jacobian.

The Jacobian is never assembled. Its action along a direction ``v`` is taken
from a finite difference of the right-hand side,

    J v  ~  (F(t, u + dyn * v/|v|) - F(t, u)) * |v| / dyn,

and a nonlinear power iteration drives the direction toward the dominant
eigenvector. The scale ``dyn = |u| sqrt(eps)`` keeps the perturbation inside
the linear regime of F without drowning in round-off.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

import numpy as np
import numpy.typing as npt

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.floating[Any]]
RHSFunction = Callable[[float, FloatArray], FloatArray]

_UROUND: Final[float] = float(np.finfo(np.float64).eps)
_SQRT_UROUND: Final[float] = float(np.sqrt(_UROUND))
_TINY: Final[float] = float(np.finfo(np.float64).tiny)

DEFAULT_MAX_ITER: Final[int] = 50
DEFAULT_RTOL: Final[float] = 0.01
DEFAULT_SAFETY: Final[float] = 1.2

_MAX_ITER_ERROR_MSG = "max_iter must be >= 2; got {max_iter}"
_SAFETY_ERROR_MSG = "safety must be >= 1 so the estimate is never deflated; got {safety}"


@dataclass(frozen=True, slots=True)
class SpectralRadiusEstimate:
    """Result of one spectral radius estimation.

    Attributes:
        rho: Inflated estimate (safety * last Rayleigh-type quotient).
        converged: Whether successive quotients agreed to rtol.
        iterations: Power iterations performed.
        n_evals: RHS evaluations spent (including F(u) if it was computed here).
        direction: Last perturbation direction, suitable as a warm start.
    """

    rho: float
    converged: bool
    iterations: int
    n_evals: int
    direction: FloatArray


def _initial_perturbation(
    u: FloatArray,
    direction: FloatArray,
) -> tuple[FloatArray, float]:
    """
    Build the first perturbed point and the perturbation size.

    Args:
        u: Current state.
        direction: Starting direction (previous eigenvector or F(u)).

    Returns:
        (v, dyn) with |v - u| == dyn.
    """
    unrm = float(np.linalg.norm(u))
    vnrm = float(np.linalg.norm(direction))

    if unrm != 0.0 and vnrm != 0.0:
        dyn = unrm * _SQRT_UROUND
        return u + direction * (dyn / vnrm), dyn
    if unrm != 0.0:
        dyn = unrm * _SQRT_UROUND
        return u * (1.0 + _SQRT_UROUND), dyn
    if vnrm != 0.0:
        dyn = _UROUND
        return u + direction * (dyn / vnrm), dyn
    dyn = _UROUND
    return np.full_like(u, dyn / np.sqrt(u.size)), dyn


def estimate_spectral_radius(
    rhs: RHSFunction,
    t: float,
    u: FloatArray,
    f_u: FloatArray | None = None,
    *,
    direction: FloatArray | None = None,
    max_iter: int = DEFAULT_MAX_ITER,
    rtol: float = DEFAULT_RTOL,
    safety: float = DEFAULT_SAFETY,
) -> SpectralRadiusEstimate:
    """
    Estimate the spectral radius of dF/du at (t, u) by power iteration.

    Args:
        rhs: Right-hand side F(t, u).
        t: Time.
        u: State at which the Jacobian is linearized.
        f_u: Optional F(t, u), reused to save one evaluation.
        direction: Optional warm-start direction (e.g. the previous result's
            direction). Ignored if its shape differs from u.
        max_iter: Iteration cap; hitting it returns converged=False.
        rtol: Relative change in the quotient that counts as converged.
        safety: Inflation factor (>= 1) applied to the returned estimate.

    Raises:
        ValueError: If max_iter < 2 or safety < 1.

    Returns:
        SpectralRadiusEstimate.
    """
    if max_iter < 2:
        raise ValueError(_MAX_ITER_ERROR_MSG.format(max_iter=max_iter))
    if safety < 1.0:
        raise ValueError(_SAFETY_ERROR_MSG.format(safety=safety))

    u_arr = np.asarray(u, dtype=np.float64)
    n_evals = 0
    if f_u is None:
        f_u = rhs(float(t), u_arr)
        n_evals += 1
    f_arr = np.asarray(f_u, dtype=np.float64)

    start = f_arr
    if direction is not None and np.shape(direction) == u_arr.shape:
        start = np.asarray(direction, dtype=np.float64)

    v, dyn = _initial_perturbation(u_arr, start)

    sigma = 0.0
    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        f_v = np.asarray(rhs(float(t), v), dtype=np.float64)
        n_evals += 1

        diff = f_v - f_arr
        dfnrm = float(np.linalg.norm(diff))
        sigma_prev = sigma
        sigma = dfnrm / dyn

        if not np.isfinite(sigma):
            break
        if iterations >= 2 and abs(sigma - sigma_prev) <= rtol * max(sigma, _TINY):
            converged = True
            break

        if dfnrm != 0.0:
            v = u_arr + diff * (dyn / dfnrm)
        else:
            # Direction lies in the null space; flip one component and retry.
            idx = iterations % u_arr.size
            v[idx] = u_arr[idx] - (v[idx] - u_arr[idx])

    if not converged:
        logger.debug(
            "Spectral radius power iteration did not converge in %d iterations "
            "(last quotient %.6g)",
            iterations,
            sigma,
        )

    return SpectralRadiusEstimate(
        rho=float(safety * sigma),
        converged=converged,
        iterations=iterations,
        n_evals=n_evals,
        direction=v - u_arr,
    )
