# src/rkc_engine/chebyshev.py
"""Damped Chebyshev (RKC) stability polynomials, coefficients and stage selection.

The stabilized family used by rkc_engine is the second-order Runge-Kutta-Chebyshev
method of Sommeijer, Shampine and Verwer (J. Comput. Appl. Math. 88, 1998).
For ``s`` stages and damping ``eps = 2/13``:

    w0 = 1 + eps / s**2
    w1 = T_s'(w0) / T_s''(w0)
    b_j = T_j''(w0) / T_j'(w0)**2   (j >= 2),   b_0 = b_1 = b_2
    a_j = 1 - b_j T_j(w0)

and the stability polynomial is ``R_s(z) = a_s + b_s T_s(w0 + w1 z)``. It stays
bounded by one while ``w0 + w1 z >= -1``, so the real stability boundary has
the closed form

    boundary(s) = (1 + w0) / w1   ~   0.653 * (s**2 - 1)

The stage recurrence (k = 2..s) is

    Y_k = (1 - mu_k - nu_k) Y_0 + mu_k Y_{k-1} + nu_k Y_{k-2}
          + h mus_k F(Y_{k-1}) + h gamma_k F(Y_0)

with ``mu_k = 2 b_k w0 / b_{k-1}``, ``nu_k = -b_k / b_{k-2}``,
``mus_k = 2 b_k w1 / b_{k-1}``, ``gamma_k = -a_{k-1} mus_k`` and the first
stage ``Y_1 = Y_0 + h b_1 w1 F(Y_0)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import StabilityBudgetError

# =============================================================================
# Constants
# =============================================================================

DAMPING: Final[float] = 2.0 / 13.0
ORDER: Final[int] = 2
MIN_STAGES: Final[int] = 2
MAX_STAGES: Final[int] = 200

_STAGES_RANGE_ERROR_MSG = "stage count must be >= {min_stages}; got {s}"
_STAGE_BOUNDS_ERROR_MSG = (
    "stage bounds must satisfy {floor} <= min_stages <= max_stages; "
    "got min_stages={min_stages}, max_stages={max_stages}"
)
_RHO_ERROR_MSG = "spectral radius must be finite and >= 0; got {rho}"
_DT_ERROR_MSG = "dt must be finite and > 0; got {dt}"
_BUDGET_ERROR_MSG = (
    "Step too large for stability budget: dt*rho = {z:.6g} exceeds "
    "boundary({max_stages}) = {bound:.6g} (dt={dt:.6g}, rho={rho:.6g})"
)


# =============================================================================
# Stability boundary
# =============================================================================


def _damped_w(s: NDArray[np.floating]) -> tuple[NDArray[np.floating], ...]:
    """
    Return (w0, w1) for stage counts s.

    Uses T_s(w) = cosh(s * arccosh(w)) so that w1 = T_s'(w0) / T_s''(w0) is
    evaluated without running the three-term recurrence.

    Args:
        s: Stage counts as a float array.

    Returns:
        Tuple (w0, w1) with the shape of s.
    """
    w0 = 1.0 + DAMPING / s**2
    temp1 = w0**2 - 1.0
    temp2 = np.sqrt(temp1)
    arg = s * np.log(w0 + temp2)
    w1 = np.sinh(arg) * temp1 / (np.cosh(arg) * s * temp2 - w0 * np.sinh(arg))
    return w0, w1


def stability_boundary(s: ArrayLike) -> float | NDArray[np.floating]:
    """
    Length of the real stability interval of the s-stage damped method.

    Args:
        s: Stage count, or an array of stage counts.

    Raises:
        ValueError: If any stage count is below MIN_STAGES.

    Returns:
        boundary(s) = (1 + w0) / w1, a float for scalar input.
    """
    s_arr = np.asarray(s, dtype=float)
    if np.any(s_arr < MIN_STAGES):
        raise ValueError(
            _STAGES_RANGE_ERROR_MSG.format(min_stages=MIN_STAGES, s=s)
        )
    w0, w1 = _damped_w(s_arr)
    beta = (1.0 + w0) / w1
    if beta.ndim == 0:
        return float(beta)
    return beta


@lru_cache(maxsize=8)
def _boundary_table(max_stages: int) -> NDArray[np.floating]:
    """Boundaries for s = 0..max_stages (entries 0 and 1 are zero)."""
    table = np.zeros(max_stages + 1, dtype=float)
    table[MIN_STAGES:] = stability_boundary(np.arange(MIN_STAGES, max_stages + 1))
    table.flags.writeable = False
    return table


def _validate_stage_bounds(min_stages: int, max_stages: int) -> None:
    if not (MIN_STAGES <= min_stages <= max_stages):
        raise ValueError(
            _STAGE_BOUNDS_ERROR_MSG.format(
                floor=MIN_STAGES,
                min_stages=min_stages,
                max_stages=max_stages,
            )
        )


def max_stable_dt(
    rho: float,
    *,
    max_stages: int = MAX_STAGES,
) -> float:
    """
    Largest step the max_stages method keeps stable for a given radius.

    Args:
        rho: Spectral radius estimate.
        max_stages: Largest allowed stage count.

    Returns:
        boundary(max_stages) / rho, or inf when rho is zero.
    """
    if rho <= 0.0:
        return float("inf")
    return float(_boundary_table(int(max_stages))[int(max_stages)]) / float(rho)


# =============================================================================
# Stage selection
# =============================================================================


def select_stages(
    rho: float,
    dt: float,
    *,
    min_stages: int = MIN_STAGES,
    max_stages: int = MAX_STAGES,
) -> int:
    """
    Choose the smallest stage count that keeps dt * rho inside the boundary.

    Args:
        rho: Spectral radius estimate (already inflated by the estimator).
        dt: Step size.
        min_stages: Lower bound on the stage count.
        max_stages: Upper bound on the stage count.

    Raises:
        ValueError: If rho, dt or the stage bounds are invalid.
        StabilityBudgetError: If boundary(max_stages) < dt * rho.

    Returns:
        Minimal s in [min_stages, max_stages] with dt * rho <= boundary(s).
    """
    rho_f = float(rho)
    dt_f = float(dt)
    if not np.isfinite(rho_f) or rho_f < 0.0:
        raise ValueError(_RHO_ERROR_MSG.format(rho=rho))
    if not np.isfinite(dt_f) or dt_f <= 0.0:
        raise ValueError(_DT_ERROR_MSG.format(dt=dt))
    _validate_stage_bounds(int(min_stages), int(max_stages))

    table = _boundary_table(int(max_stages))
    z = dt_f * rho_f
    if z > table[max_stages]:
        raise StabilityBudgetError(
            _BUDGET_ERROR_MSG.format(
                z=z,
                max_stages=max_stages,
                bound=float(table[max_stages]),
                dt=dt_f,
                rho=rho_f,
            ),
            rho=rho_f,
            dt=dt_f,
            max_stages=int(max_stages),
        )

    # table is increasing in s, so the first entry >= z is the minimal s.
    offset = int(np.searchsorted(table[min_stages:], z, side="left"))
    return int(min_stages) + offset


# =============================================================================
# Recurrence coefficients
# =============================================================================


@dataclass(frozen=True, slots=True)
class StageCoefficients:
    """Per-stage coefficients of the s-stage recurrence.

    Arrays have length s + 1 and are indexed by stage j. Entries j < 2 of mu,
    nu and gamma are unused (zero); mus[1] is the first-stage coefficient.

    Attributes:
        stages: Stage count s.
        w0: Chebyshev argument shift.
        w1: Chebyshev argument scale.
        mu: Weights of Y_{j-1}.
        nu: Weights of Y_{j-2}.
        mus: Weights of h F(Y_{j-1}).
        gamma: Weights of h F(Y_0).
        c: Stage times as fractions of h; c[s] == 1.
    """

    stages: int
    w0: float
    w1: float
    mu: NDArray[np.floating]
    nu: NDArray[np.floating]
    mus: NDArray[np.floating]
    gamma: NDArray[np.floating]
    c: NDArray[np.floating]


@lru_cache(maxsize=MAX_STAGES)
def chebyshev_coefficients(s: int) -> StageCoefficients:
    """
    Build recurrence coefficients for the s-stage damped method.

    Args:
        s: Stage count (>= MIN_STAGES).

    Raises:
        ValueError: If s < MIN_STAGES.

    Returns:
        Frozen StageCoefficients; cached per s.
    """
    s = int(s)
    if s < MIN_STAGES:
        raise ValueError(_STAGES_RANGE_ERROR_MSG.format(min_stages=MIN_STAGES, s=s))

    w0_arr, w1_arr = _damped_w(np.asarray(float(s)))
    w0 = float(w0_arr)
    w1 = float(w1_arr)

    mu = np.zeros(s + 1)
    nu = np.zeros(s + 1)
    mus = np.zeros(s + 1)
    gamma = np.zeros(s + 1)
    c = np.zeros(s + 1)

    # T_j(w0), T_j'(w0), T_j''(w0) for j-1 and j-2.
    z_jm2, dz_jm2, d2z_jm2 = 1.0, 0.0, 0.0
    z_jm1, dz_jm1, d2z_jm1 = w0, 1.0, 0.0

    b_jm2 = b_jm1 = 1.0 / (2.0 * w0) ** 2
    mus[1] = w1 * b_jm1
    c[1] = mus[1]

    for j in range(2, s + 1):
        z_j = 2.0 * w0 * z_jm1 - z_jm2
        dz_j = 2.0 * w0 * dz_jm1 - dz_jm2 + 2.0 * z_jm1
        d2z_j = 2.0 * w0 * d2z_jm1 - d2z_jm2 + 4.0 * dz_jm1
        b_j = d2z_j / dz_j**2
        a_jm1 = 1.0 - z_jm1 * b_jm1

        mu[j] = 2.0 * w0 * b_j / b_jm1
        nu[j] = -b_j / b_jm2
        mus[j] = mu[j] * w1 / w0
        gamma[j] = -a_jm1 * mus[j]
        c[j] = mu[j] * c[j - 1] + nu[j] * c[j - 2] + mus[j] * (1.0 - a_jm1)

        z_jm2, z_jm1 = z_jm1, z_j
        dz_jm2, dz_jm1 = dz_jm1, dz_j
        d2z_jm2, d2z_jm1 = d2z_jm1, d2z_j
        b_jm2, b_jm1 = b_jm1, b_j

    for arr in (mu, nu, mus, gamma, c):
        arr.flags.writeable = False

    return StageCoefficients(
        stages=s,
        w0=w0,
        w1=w1,
        mu=mu,
        nu=nu,
        mus=mus,
        gamma=gamma,
        c=c,
    )


def stability_polynomial(s: int, z: ArrayLike) -> NDArray[np.floating]:
    """
    Evaluate R_s(z) = a_s + b_s T_s(w0 + w1 z) for real z.

    Args:
        s: Stage count.
        z: Points h * lambda at which to evaluate.

    Returns:
        R_s(z) with the shape of z.
    """
    coeffs = chebyshev_coefficients(s)
    w0, w1 = coeffs.w0, coeffs.w1

    t_s = float(np.cosh(s * np.arccosh(w0)))
    theta = np.arccosh(w0)
    dt_s = s * np.sinh(s * theta) / np.sinh(theta)
    d2t_s = (
        s**2 * np.cosh(s * theta) * np.sinh(theta)
        - s * np.sinh(s * theta) * np.cosh(theta)
    ) / np.sinh(theta) ** 3
    b_s = d2t_s / dt_s**2
    a_s = 1.0 - b_s * t_s

    x = w0 + w1 * np.asarray(z, dtype=float)
    return a_s + b_s * np.polynomial.chebyshev.chebval(x, [0.0] * s + [1.0])
