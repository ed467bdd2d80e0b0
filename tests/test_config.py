import json

import numpy as np
import pytest

from pynsfem.config import SimulationConfig, viscosity_from_reynolds
from pynsfem.errors import ConfigurationError


def test_defaults():
    cfg = SimulationConfig()
    assert cfg.reynolds == 20.0
    assert cfg.outlet_pressure == 0.0
    assert cfg.picard.max_iter == 10 and cfg.picard.update_tol == 1e-7
    assert cfg.picard.preconditioner == cfg.stokes.preconditioner == "triangular"
    # relative Stokes tolerance, absolute Oseen tolerance
    assert cfg.stokes.linear.relative and not cfg.picard.linear.relative
    assert np.isclose(cfg.viscosity, 1e-3)
    assert np.isclose(cfg.benchmark.force_scaling, 500.0)
    assert np.isclose(cfg.benchmark.mean_velocity, 0.2)


def test_viscosity_from_reynolds():
    assert np.isclose(viscosity_from_reynolds(100.0, 1.0, 0.1), 1e-3)
    with pytest.raises(ConfigurationError):
        viscosity_from_reynolds(0.0, 1.0, 0.1)


def test_nested_sections_keep_their_defaults():
    cfg = SimulationConfig.from_dict({
        "reynolds": 10,
        "picard": {"linear": {"tolerance": 1e-10}},
        "benchmark": {"center": [0.2, 0.2], "probe_points": [[0.1, 0.2], [0.3, 0.2]]},
    })
    assert cfg.reynolds == 10
    assert cfg.picard.linear.tolerance == 1e-10
    assert cfg.picard.linear.max_iter == 2_000_000
    assert cfg.picard.linear.relative is False
    assert cfg.benchmark.center == (0.2, 0.2)
    assert cfg.benchmark.probe_points == ((0.1, 0.2), (0.3, 0.2))
    assert np.isclose(cfg.viscosity, 2e-3)


def test_from_json(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"mesh": {"h": 0.04}, "probe_reduction": "max"}))
    cfg = SimulationConfig.from_json(path)
    assert cfg.mesh.h == 0.04 and cfg.mesh.n_circle == 64
    assert cfg.probe_reduction == "max"
    again = SimulationConfig.from_dict(cfg.to_dict())
    assert again == cfg


@pytest.mark.parametrize("data", [
    {"reynold": 20},
    {"picard": {"max_iterations": 5}},
    {"picard": {"linear": {"tol": 1e-3}}},
    {"picard": {"max_iter": 0}},
    {"stokes": {"preconditioner": "jacobi"}},
    {"stokes": {"linear": {"backend": "cuda"}}},
    {"picard": {"linear": {"velocity_solver": "amg"}}},
    {"probe_reduction": "mean"},
    {"communicator": "pvm"},
    {"reynolds": -1},
    {"mesh": 3},
])
def test_invalid_entries(data):
    with pytest.raises(ConfigurationError):
        SimulationConfig.from_dict(data)
