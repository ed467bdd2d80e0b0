"""pynsfem.config
Run configuration as nested dataclasses, loadable from JSON.
"""
import dataclasses
import json
from dataclasses import dataclass, field
from typing import Tuple

from pynsfem.errors import ConfigurationError
from pynsfem.postprocess.forces import PROBE_REDUCTIONS
from pynsfem.solvers.nonlinear_solver import LinearSolverParameters, PicardParameters, StokesParameters

__all__ = ["MeshParameters", "BenchmarkParameters", "SimulationConfig", "LinearSolverParameters",
           "StokesParameters", "PicardParameters", "viscosity_from_reynolds"]


def viscosity_from_reynolds(reynolds: float, mean_velocity: float, diameter: float) -> float:
    """nu = U_mean * D / Re."""
    if reynolds <= 0:
        raise ConfigurationError("Reynolds number must be positive")
    return mean_velocity * diameter / reynolds


@dataclass
class MeshParameters:
    file: str = ""          # .msh path; empty -> generated channel
    h: float = 0.02
    n_circle: int = 64


@dataclass
class BenchmarkParameters:
    length: float = 2.2
    height: float = 0.41
    center: Tuple[float, float] = (0.2, 0.2)
    radius: float = 0.05
    max_inflow: float = 0.3
    probe_points: Tuple[Tuple[float, float], ...] = ((0.15, 0.2), (0.25, 0.2))
    reference_drag: float = 5.57953523384
    reference_lift: float = 0.010618948146
    reference_pressure_difference: float = 0.11752016697

    @property
    def diameter(self) -> float:
        return 2.0 * self.radius

    @property
    def mean_velocity(self) -> float:
        return 2.0 * self.max_inflow / 3.0

    @property
    def force_scaling(self) -> float:
        """2 / (U_mean^2 D)."""
        return 2.0 / (self.mean_velocity ** 2 * self.diameter)


@dataclass
class SimulationConfig:
    reynolds: float = 20.0
    outlet_pressure: float = 0.0
    communicator: str = "serial"        # "serial" | "mpi"
    probe_reduction: str = "rank"
    output_dir: str = "results"
    write_vtk: bool = True
    stokes: StokesParameters = field(default_factory=StokesParameters)
    picard: PicardParameters = field(default_factory=PicardParameters)
    mesh: MeshParameters = field(default_factory=MeshParameters)
    benchmark: BenchmarkParameters = field(default_factory=BenchmarkParameters)

    def __post_init__(self):
        if self.reynolds <= 0:
            raise ConfigurationError("reynolds must be positive")
        if self.communicator not in ("serial", "mpi"):
            raise ConfigurationError(f"unknown communicator '{self.communicator}'")
        if self.probe_reduction not in PROBE_REDUCTIONS:
            raise ConfigurationError(f"probe_reduction must be one of {PROBE_REDUCTIONS}")

    @property
    def viscosity(self) -> float:
        b = self.benchmark
        return viscosity_from_reynolds(self.reynolds, b.mean_velocity, b.diameter)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationConfig":
        return _build(cls, data, "config")

    @classmethod
    def from_json(cls, path) -> "SimulationConfig":
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def _build(cls, data, where):
    if not isinstance(data, dict):
        raise ConfigurationError(f"{where}: expected a mapping, got {type(data).__name__}")
    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ConfigurationError(f"{where}: unknown key(s) {unknown}")
    kwargs = {}
    for name, value in data.items():
        f = fields[name]
        if f.default_factory is not dataclasses.MISSING:
            # nested sections start from the defaults of their enclosing field
            default = f.default_factory()
            if isinstance(value, dict):
                value = {**dataclasses.asdict(default), **value}
            kwargs[name] = _build(type(default), value, f"{where}.{name}")
        elif isinstance(f.default, tuple) and isinstance(value, list):
            kwargs[name] = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        else:
            kwargs[name] = value
    try:
        return cls(**kwargs)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{where}: {err}") from err
