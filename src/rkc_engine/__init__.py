"""rkc_engine stabilized explicit (Runge-Kutta-Chebyshev) integration package."""

from __future__ import annotations

from .chebyshev import (
    StageCoefficients,
    chebyshev_coefficients,
    max_stable_dt,
    select_stages,
    stability_boundary,
    stability_polynomial,
)
from .config import SolverSettings
from .controller import DtControllerConfig, StepSizeController, error_norm
from .driver import DriverResult, LockstepDriver, Subsystem
from .errors import (
    ConfigurationError,
    ErrorCode,
    RkcEngineError,
    StabilityBudgetError,
    StateShapeError,
)
from .operators import (
    DiffusionConfig,
    GridGeometry,
    build_laplacian_tridiag,
    laplacian_spectral_bound,
)
from .spectral_radius import SpectralRadiusEstimate, estimate_spectral_radius
from .state import (
    CoupledProblem,
    Problem,
    SpectralRadiusProvider,
    StateSnapshot,
    StateVector,
    StateVectorOptions,
)
from .stepper import (
    IntegratorConfig,
    RKCStepper,
    StepperState,
    StepperStats,
    StepResult,
    StepStatus,
)

__all__ = [
    "ConfigurationError",
    "CoupledProblem",
    "DiffusionConfig",
    "DriverResult",
    "DtControllerConfig",
    "ErrorCode",
    "GridGeometry",
    "IntegratorConfig",
    "LockstepDriver",
    "Problem",
    "RKCStepper",
    "RkcEngineError",
    "SolverSettings",
    "SpectralRadiusEstimate",
    "SpectralRadiusProvider",
    "StabilityBudgetError",
    "StageCoefficients",
    "StateShapeError",
    "StateSnapshot",
    "StateVector",
    "StateVectorOptions",
    "StepResult",
    "StepSizeController",
    "StepStatus",
    "StepperState",
    "StepperStats",
    "Subsystem",
    "build_laplacian_tridiag",
    "chebyshev_coefficients",
    "error_norm",
    "estimate_spectral_radius",
    "laplacian_spectral_bound",
    "max_stable_dt",
    "select_stages",
    "stability_boundary",
    "stability_polynomial",
]

__version__ = "0.1.0"
