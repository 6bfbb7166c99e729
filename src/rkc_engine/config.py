# src/rkc_engine/config.py
"""Pydantic run settings for rkc_engine.

:class:`SolverSettings` is the YAML/dict-facing description of a run. It
validates field ranges on load and translates into the frozen
:class:`rkc_engine.stepper.IntegratorConfig` consumed by the stepper.

Notes:
    - Unknown fields are allowed and ignored (``extra="allow"``) so a settings
      block can live inside a larger model configuration file.
    - ``dt`` and ``t_end`` belong to the run, not to the integrator; they are
      passed to the driver by the caller.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .chebyshev import MAX_STAGES, MIN_STAGES
from .controller import DtControllerConfig
from .spectral_radius import DEFAULT_MAX_ITER, DEFAULT_SAFETY
from .stepper import IntegratorConfig

_STAGE_ORDER_ERROR_MSG = "min_stages ({min_stages}) must not exceed max_stages ({max_stages})"
_FACTOR_ORDER_ERROR_MSG = "fac_min ({fac_min}) must be < 1 < fac_max ({fac_max})"


class SolverSettings(BaseModel):
    """Run parameters for a stabilized explicit integration."""

    model_config = ConfigDict(extra="allow")

    dt: float = Field(default=0.01, gt=0.0, description="Initial (or fixed) step")
    t_end: float = Field(default=1.0, description="End time of the run")

    one_step: bool = Field(default=True, description="One accepted step per call")
    adaptive: bool = Field(default=False, description="Enable step-size control")
    internal_rho: bool = Field(
        default=True,
        description="Estimate the spectral radius by power iteration",
    )
    verbose: bool = Field(default=False, description="Log every step at INFO")

    rtol: float = Field(default=1e-2, gt=0.0)
    atol: float = Field(default=1e-2, gt=0.0)

    rho_refresh_interval: int = Field(default=1, ge=1)
    min_stages: int = Field(default=MIN_STAGES, ge=MIN_STAGES)
    max_stages: int = Field(default=MAX_STAGES, ge=MIN_STAGES)
    max_rejects: int = Field(default=25, ge=0)
    rho_max_iter: int = Field(default=DEFAULT_MAX_ITER, ge=2)
    rho_safety: float = Field(
        default=DEFAULT_SAFETY,
        ge=1.0,
        description="Inflation applied to the power iteration radius",
    )

    # dt controller controls
    dt_min: float = Field(default=1e-12, ge=0.0)
    dt_max: float = Field(default=float("inf"), gt=0.0)
    safety: float = Field(default=0.9, gt=0.0, le=1.0)
    fac_min: float = Field(default=0.2, gt=0.0)
    fac_max: float = Field(default=5.0, gt=0.0)

    @model_validator(mode="after")
    def check_orderings(self) -> SolverSettings:
        """Validate orderings between fields.

        Raises:
            ValueError: If min_stages > max_stages or the controller factors
                do not straddle one.

        Returns:
            The validated settings.
        """
        if self.min_stages > self.max_stages:
            raise ValueError(
                _STAGE_ORDER_ERROR_MSG.format(
                    min_stages=self.min_stages, max_stages=self.max_stages
                )
            )
        if not (self.fac_min < 1.0 < self.fac_max):
            raise ValueError(
                _FACTOR_ORDER_ERROR_MSG.format(
                    fac_min=self.fac_min, fac_max=self.fac_max
                )
            )
        return self

    def to_integrator_config(self) -> IntegratorConfig:
        """Convert these settings to a native IntegratorConfig.

        Returns:
            Fully constructed IntegratorConfig instance.
        """
        dt_controller = DtControllerConfig(
            dt_min=self.dt_min,
            dt_max=self.dt_max,
            safety=self.safety,
            fac_min=self.fac_min,
            fac_max=self.fac_max,
        )

        return IntegratorConfig(
            one_step=self.one_step,
            verbose=self.verbose,
            adaptive=self.adaptive,
            atol=self.atol,
            rtol=self.rtol,
            internal_rho=self.internal_rho,
            rho_refresh_interval=self.rho_refresh_interval,
            min_stages=self.min_stages,
            max_stages=self.max_stages,
            max_rejects=self.max_rejects,
            rho_max_iter=self.rho_max_iter,
            rho_safety=self.rho_safety,
            dt_controller=dt_controller,
        )
