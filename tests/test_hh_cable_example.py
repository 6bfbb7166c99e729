# tests/test_hh_cable_example.py
"""Smoke tests for examples/hh_cable.py.

Coverage:
- With the gates staggered half a step ahead, the run ends only once the
  potential itself has reached t_end.
- Gating variables stay inside [0, 1] over a short run.
"""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

import numpy as np
import pytest

from rkc_engine.config import SolverSettings
from rkc_engine.stepper import StepStatus

_EXAMPLE_PATH = Path(__file__).resolve().parents[1] / "examples" / "hh_cable.py"


@pytest.fixture(scope="module")
def hh_cable() -> ModuleType:
    """Load the example module (it needs matplotlib at import time)."""
    pytest.importorskip("matplotlib")
    spec = importlib.util.spec_from_file_location("hh_cable", _EXAMPLE_PATH)
    assert spec is not None
    assert spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


def test_run_ends_when_potential_reaches_t_end(hh_cable: ModuleType) -> None:
    """Staggered gates do not finish the run ahead of the potential."""
    settings = SolverSettings(dt=0.025, t_end=0.21)
    driver = hh_cable.build_driver(settings, n_points=21)

    driver.stagger(settings.dt, ["n", "m", "h"])
    result = driver.run(settings.dt, settings.t_end)

    assert result.status is StepStatus.FINISHED
    assert driver["potential"].state.time >= settings.t_end
    assert driver["n"].state.time > driver["potential"].state.time
    assert result.statuses["n"] is StepStatus.CONTINUE


def test_gates_stay_in_unit_interval(hh_cable: ModuleType) -> None:
    """n, m and h remain probabilities while the stimulus is on."""
    settings = SolverSettings(dt=0.025, t_end=0.5)
    driver = hh_cable.build_driver(settings, n_points=21)

    driver.stagger(settings.dt, ["n", "m", "h"])
    driver.run(settings.dt, settings.t_end)

    for name in ("n", "m", "h"):
        values = driver[name].state.un
        assert np.all(values >= 0.0)
        assert np.all(values <= 1.0)
