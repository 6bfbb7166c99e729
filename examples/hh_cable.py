# rkc_engine/examples/hh_cable.py
"""Hodgkin-Huxley cable with Chebyshev-stabilized explicit stepping.

The membrane potential V(x, t) on a sealed cable obeys

    C_m dV/dt = D V_xx - I_ion(V, n, m, h) + I_stim(x, t)

and each gating variable g in {n, m, h} obeys the pointwise ODE

    dg/dt = alpha_g(V) (1 - g) - beta_g(V) g.

The four fields are separate subsystems advanced by a LockstepDriver in the
order (potential, n, m, h). The gates start half a step ahead of the potential
(staggered start), so only the potential carries the end time and the run
ends when the potential reaches it. The potential uses the internal power-iteration radius; the
gates report their exact radius max(alpha + beta).

Outputs written to examples/output/hh_cable/:
  - monitor_potential.txt: (time, V) near the far end of the cable
  - profile.txt: (x, V, n, m, h) at the final time
  - hh_cable.png: monitor trace and final profile
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from rkc_engine.config import SolverSettings
from rkc_engine.driver import LockstepDriver, Subsystem
from rkc_engine.operators import DiffusionConfig, GridGeometry, build_laplacian_tridiag
from rkc_engine.state import CoupledProblem, StateVector, StateVectorOptions
from rkc_engine.stepper import RKCStepper

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "hh_cable"

V_REST = -64.974  # mV


# -----------------------------------------------------------------------------
# Channel kinetics (V in mV, rates in 1/ms)
# -----------------------------------------------------------------------------


def _vtrap(x: np.ndarray, y: float) -> np.ndarray:
    """x / (exp(x / y) - 1) with its removable singularity at x = 0."""
    ratio = x / y
    small = np.abs(ratio) < 1e-6
    denom = np.where(small, 1.0, np.expm1(np.where(small, 1.0, ratio)))
    return np.where(small, y * (1.0 - 0.5 * ratio), x / denom)


def alpha_n(v: np.ndarray) -> np.ndarray:
    return 0.01 * _vtrap(-(v + 55.0), 10.0)


def beta_n(v: np.ndarray) -> np.ndarray:
    return 0.125 * np.exp(-(v + 65.0) / 80.0)


def alpha_m(v: np.ndarray) -> np.ndarray:
    return 0.1 * _vtrap(-(v + 40.0), 10.0)


def beta_m(v: np.ndarray) -> np.ndarray:
    return 4.0 * np.exp(-(v + 65.0) / 18.0)


def alpha_h(v: np.ndarray) -> np.ndarray:
    return 0.07 * np.exp(-(v + 65.0) / 20.0)


def beta_h(v: np.ndarray) -> np.ndarray:
    return 1.0 / (np.exp(-(v + 35.0) / 10.0) + 1.0)


_RATES = {
    "n": (alpha_n, beta_n),
    "m": (alpha_m, beta_m),
    "h": (alpha_h, beta_h),
}


def steady_state(gate: str, v: float) -> float:
    """Return alpha / (alpha + beta) for ``gate`` at potential ``v``."""
    alpha, beta = _RATES[gate]
    a = float(alpha(np.asarray(v)))
    b = float(beta(np.asarray(v)))
    return a / (a + b)


# -----------------------------------------------------------------------------
# Problems
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MembraneParams:
    """Squid axon membrane parameters (mS/cm^2, mV, uF/cm^2)."""

    c_m: float = 1.0
    g_na: float = 120.0
    g_k: float = 36.0
    g_l: float = 0.3
    e_na: float = 50.0
    e_k: float = -77.0
    e_l: float = -54.387
    stim_amp: float = 40.0
    stim_width: float = 0.05
    stim_end: float = 1.0


class CableProblem(CoupledProblem):
    """Membrane potential on a sealed 1D cable."""

    requires = ("n", "m", "h")

    def __init__(
        self,
        geom: GridGeometry,
        diffusion: float,
        params: MembraneParams | None = None,
    ) -> None:
        super().__init__()
        self.geom = geom
        self.params = params or MembraneParams()
        self.lap = build_laplacian_tridiag(geom, DiffusionConfig(coeff=diffusion))
        self._stim_mask = geom.points() <= self.params.stim_width

    def initial_condition(self) -> np.ndarray:
        return np.full(self.geom.n, V_REST)

    def evaluate(self, t: float, u: np.ndarray) -> np.ndarray:
        p = self.params
        n = self.coupling("n")
        m = self.coupling("m")
        h = self.coupling("h")

        i_ion = (
            p.g_na * m**3 * h * (u - p.e_na)
            + p.g_k * n**4 * (u - p.e_k)
            + p.g_l * (u - p.e_l)
        )
        du = self.lap @ u - i_ion
        if t < p.stim_end:
            du[self._stim_mask] += p.stim_amp
        return du / p.c_m


class GateProblem(CoupledProblem):
    """One gating variable driven by the membrane potential."""

    requires = ("potential",)

    def __init__(self, gate: str, n_points: int) -> None:
        super().__init__()
        self.gate = gate
        self.n_points = n_points
        self.alpha, self.beta = _RATES[gate]

    def initial_condition(self) -> np.ndarray:
        return np.full(self.n_points, steady_state(self.gate, V_REST))

    def evaluate(self, t: float, u: np.ndarray) -> np.ndarray:  # noqa: ARG002
        v = self.coupling("potential")
        a = self.alpha(v)
        return a * (1.0 - u) - self.beta(v) * u

    def spectral_radius(self, t: float, u: np.ndarray) -> float:  # noqa: ARG002
        v = self.coupling("potential")
        return float(np.max(self.alpha(v) + self.beta(v)))


# -----------------------------------------------------------------------------
# Run
# -----------------------------------------------------------------------------


def build_driver(
    settings: SolverSettings,
    *,
    n_points: int = 201,
    dx: float = 0.01,
    diffusion: float = 0.336,
    monitor: list[tuple[float, float]] | None = None,
) -> LockstepDriver:
    """Assemble the potential and gate subsystems.

    Args:
        settings: Run settings shared by every subsystem.
        n_points: Number of grid points.
        dx: Grid spacing (cm).
        diffusion: Cable coefficient a / (2 R_i) (mS).
        monitor: Optional list receiving (time, V) near the far end.

    Returns:
        LockstepDriver advancing (potential, n, m, h) in that order.
    """
    geom = GridGeometry(n=n_points, dx=dx)
    cable_opts = StateVectorOptions(t_end=settings.t_end)
    cfg = settings.to_integrator_config()
    gate_cfg = settings.model_copy(update={"internal_rho": False})

    cable = Subsystem(
        StateVector("potential", CableProblem(geom, diffusion), options=cable_opts),
        RKCStepper(cfg),
    )
    gates = [
        Subsystem(
            StateVector(name, GateProblem(name, n_points)),
            RKCStepper(gate_cfg.to_integrator_config()),
        )
        for name in ("n", "m", "h")
    ]

    probe = n_points - 5

    def observer(time: float, driver: LockstepDriver) -> None:
        if monitor is not None:
            monitor.append((time, float(driver["potential"].state.un[probe])))

    return LockstepDriver([cable, *gates], observer=observer)


def save_outputs(
    driver: LockstepDriver,
    monitor: list[tuple[float, float]],
    out_dir: Path,
) -> None:
    """Write tab-separated traces and a summary plot."""
    out_dir.mkdir(parents=True, exist_ok=True)

    trace = np.asarray(monitor, dtype=float)
    np.savetxt(out_dir / "monitor_potential.txt", trace, fmt="%.12f", delimiter="\t")

    cable = driver["potential"].state
    x = cable.problem.geom.points()
    profile = np.column_stack(
        [x, cable.un] + [driver[name].state.un for name in ("n", "m", "h")]
    )
    np.savetxt(
        out_dir / "profile.txt",
        profile,
        fmt="%.12f",
        delimiter="\t",
        header="x\tV\tn\tm\th",
    )

    fig, (ax_t, ax_x) = plt.subplots(1, 2, figsize=(11, 4))
    ax_t.plot(trace[:, 0], trace[:, 1])
    ax_t.set_xlabel("time (ms)")
    ax_t.set_ylabel("V (mV)")
    ax_t.set_title("Potential near the far end")
    ax_x.plot(x, cable.un)
    ax_x.set_xlabel("x (cm)")
    ax_x.set_title(f"Profile at t = {cable.time:.3f} ms")
    fig.tight_layout()
    fig.savefig(out_dir / "hh_cable.png", dpi=150)
    plt.close(fig)


def main() -> None:
    """Run the Hodgkin-Huxley cable and save traces to examples/output/."""
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    settings = SolverSettings(dt=0.025, t_end=10.0, rtol=1e-2, atol=1e-2)
    monitor: list[tuple[float, float]] = []
    driver = build_driver(settings, monitor=monitor)

    if not driver.check_correctness(settings.dt):
        return

    driver["potential"].stepper.print_info()
    monitor.append((driver.time, float(driver["potential"].state.un[-5])))

    driver.stagger(settings.dt, ["n", "m", "h"])
    result = driver.run(settings.dt, settings.t_end)

    driver["potential"].stepper.print_statistics()
    logging.getLogger(__name__).info(
        "Finished with status %s at t=%.4f ms", result.status, result.time
    )
    save_outputs(driver, monitor, _OUTPUT_DIR)


if __name__ == "__main__":
    main()
