# src/rkc_engine/operators.py
"""Sparse spatial operators for cable and diffusion right-hand sides.

Problem authors assemble the diffusive part of a semi-discretised PDE once and
apply it inside ``evaluate``:

    lap = build_laplacian_tridiag(GridGeometry(n, dx), DiffusionConfig(coeff))
    du = lap @ u + reaction(u)

The operators are plain SciPy CSR matrices. Because they are symmetric with a
known Gershgorin bound, :func:`laplacian_spectral_bound` also gives a cheap
external spectral radius for problems that implement ``spectral_radius``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import DTypeLike
from scipy.sparse import csr_matrix, diags

BoundaryCondition = Literal["neumann", "absorbing"]

_UNKNOWN_BC_ERROR = "Unknown boundary condition '{bc}'; use 'neumann' or 'absorbing'"
_GRID_SIZE_ERROR = "Grid must have n >= 2 points; got n={n}"
_GRID_DX_ERROR = "Grid spacing dx must be finite and > 0; got dx={dx}"
_COEFF_ERROR = "Diffusion coefficient must be finite and >= 0; got coeff={coeff}"


@dataclass(frozen=True, slots=True)
class GridGeometry:
    """Geometry of a uniform 1D grid.

    Attributes:
        n: Number of grid points.
        dx: Grid spacing.
    """

    n: int
    dx: float

    def __post_init__(self) -> None:
        """Validate the grid.

        Raises:
            ValueError: If n < 2 or dx is not a positive finite number.
        """
        if self.n < 2:
            raise ValueError(_GRID_SIZE_ERROR.format(n=self.n))
        if not (np.isfinite(self.dx) and self.dx > 0.0):
            raise ValueError(_GRID_DX_ERROR.format(dx=self.dx))

    @property
    def length(self) -> float:
        """Distance between the first and last grid points."""
        return (self.n - 1) * self.dx

    def points(self) -> np.ndarray:
        """Return the grid coordinates, starting at zero."""
        return np.arange(self.n, dtype=float) * self.dx


@dataclass(frozen=True, slots=True)
class DiffusionConfig:
    """Configuration for diffusion-like linear operators.

    Attributes:
        coeff: Diffusion coefficient D (units length^2 / time).
        dtype: Floating dtype (e.g. np.float64).
        bc: Boundary condition; either "neumann" (sealed ends) or "absorbing"
            (ends clamped to zero through a ghost point).
    """

    coeff: float
    dtype: DTypeLike = np.float64
    bc: BoundaryCondition = "neumann"


def build_laplacian_tridiag(
    geom: GridGeometry,
    cfg: DiffusionConfig,
) -> csr_matrix:
    """Build ``coeff * Lap_h`` for the given boundary condition.

    ``Lap_h`` is the second-order central-difference Laplacian. With Neumann
    ends the first and last rows are ``(-1, 1) / dx**2``, which conserves the
    sum of the state; absorbing ends keep the interior ``-2`` on the diagonal.

    Args:
        geom: Grid geometry.
        cfg: Diffusion configuration.

    Raises:
        ValueError: If the coefficient is invalid or the boundary condition is
            unknown.

    Returns:
        Sparse CSR matrix of shape (n, n).
    """
    if not (np.isfinite(cfg.coeff) and cfg.coeff >= 0.0):
        raise ValueError(_COEFF_ERROR.format(coeff=cfg.coeff))

    n = geom.n
    dtype_obj = np.dtype(cfg.dtype)
    factor = cfg.coeff / geom.dx**2

    main_diag = -2.0 * np.ones(n, dtype=dtype_obj)
    off_diag = np.ones(n - 1, dtype=dtype_obj)

    if cfg.bc == "neumann":
        main_diag[0] = -1.0
        main_diag[-1] = -1.0
    elif cfg.bc != "absorbing":
        raise ValueError(_UNKNOWN_BC_ERROR.format(bc=cfg.bc))

    laplacian = diags(
        [off_diag, main_diag, off_diag],
        [-1, 0, 1],
        shape=(n, n),
        dtype=dtype_obj,
    )
    return (laplacian * factor).tocsr()


def laplacian_spectral_bound(geom: GridGeometry, cfg: DiffusionConfig) -> float:
    """
    Gershgorin bound on the spectral radius of ``build_laplacian_tridiag``.

    Args:
        geom: Grid geometry.
        cfg: Diffusion configuration.

    Returns:
        4 * coeff / dx**2.
    """
    return 4.0 * float(cfg.coeff) / geom.dx**2
