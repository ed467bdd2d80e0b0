"""pynsfem.solvers.steady
The complete steady run on the cylinder channel: Stokes start-up, Picard
iteration, output and force evaluation.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pynsfem.assembly.constraints import ConstraintSet
from pynsfem.assembly.global_matrix import OseenAssembler
from pynsfem.config import SimulationConfig
from pynsfem.core.bcs import BoundaryCondition, no_slip, parabolic_inflow
from pynsfem.core.dofhandler import DofHandler
from pynsfem.core.mesh import Mesh
from pynsfem.io.results import append_csv_row, output_directory
from pynsfem.io.vtk import write_result
from pynsfem.parallel.comm import Communicator, get_communicator
from pynsfem.parallel.vector import BlockVector
from pynsfem.postprocess.forces import ForceResult, compute_lift_drag
from pynsfem.solvers.nonlinear_solver import IterationState, PicardSolver, StokesSolver
from pynsfem.utils.gmsh_loader import load_gmsh
from pynsfem.utils.meshgen import channel_with_cylinder

logger = logging.getLogger(__name__)

FIELD_NAMES = ("velocity", "velocity", "pressure")
STOKES_STAGE = "Stokes"
NAVIER_STOKES_STAGE = "IncrementalStokes"


@dataclass
class SteadyResult:
    stokes: BlockVector
    solution: BlockVector
    state: IterationState
    forces: Optional[ForceResult]           # None off rank 0
    output_dirs: Dict[str, Path] = field(default_factory=dict)


def channel_boundary_conditions(config: SimulationConfig) -> List[BoundaryCondition]:
    b = config.benchmark
    return [
        BoundaryCondition("velocity", "dirichlet", "inlet", parabolic_inflow(b.max_inflow, b.height)),
        BoundaryCondition("velocity", "dirichlet", "wall", no_slip()),
        BoundaryCondition("velocity", "dirichlet", "obstacle", no_slip()),
        BoundaryCondition("pressure", "neumann", "outlet", config.outlet_pressure),
    ]


class SteadyNavierStokes:
    """
    Drives one steady computation.

    Every public method is collective: all ranks of ``comm`` call it in the
    same order. Results and files are produced on rank 0.
    """

    def __init__(self, config: Optional[SimulationConfig] = None, comm: Optional[Communicator] = None,
                 mesh: Optional[Mesh] = None):
        self.config = config or SimulationConfig()
        self.comm = comm or get_communicator(self.config.communicator)
        self.mesh = mesh
        self.viscosity = self.config.viscosity
        self.dof_handler: Optional[DofHandler] = None
        self.constraints: Optional[ConstraintSet] = None
        self.assembler: Optional[OseenAssembler] = None

    # ------------------------------------------------------------------
    def _build_mesh(self) -> Mesh:
        m, b = self.config.mesh, self.config.benchmark
        if m.file:
            return load_gmsh(m.file)
        return channel_with_cylinder(b.length, b.height, b.center, b.radius, h=m.h, n_circle=m.n_circle)

    def setup(self):
        if self.mesh is None:
            self.mesh = self._build_mesh()
        self.dof_handler = DofHandler(self.mesh, self.comm)
        bcs = channel_boundary_conditions(self.config)
        self.constraints = ConstraintSet.from_boundary_conditions(self.dof_handler, bcs)
        self.assembler = OseenAssembler(self.dof_handler, self.viscosity, self.constraints, bcs)
        if self.comm.is_root:
            n_u, n_p = self.dof_handler.block_sizes
            logger.info("Re = %g, nu = %.3e, %d ranks, %d velocity + %d pressure unknowns",
                        self.config.reynolds, self.viscosity, self.comm.size, n_u, n_p)
        return self

    def _require_setup(self):
        if self.assembler is None:
            self.setup()

    def solve_stokes(self) -> BlockVector:
        self._require_setup()
        return StokesSolver(self.assembler, self.constraints, self.config.stokes).solve()

    def solve_navier_stokes(self, initial_guess: BlockVector) -> IterationState:
        self._require_setup()
        state = PicardSolver(self.assembler, self.constraints, self.config.picard).solve(initial_guess)
        if self.comm.is_root:
            logger.info("Picard finished: %s after %d iteration(s)", state.status.value, state.iteration)
        return state

    def output(self, stage: str, solution: BlockVector) -> Path:
        directory = output_directory(self.config.output_dir, stage, self.config.reynolds, self.comm)
        if self.config.write_vtk:
            write_result(directory, self.dof_handler, FIELD_NAMES, solution)
        return directory

    def compute_forces(self, solution: BlockVector) -> Optional[ForceResult]:
        b = self.config.benchmark
        return compute_lift_drag(self.dof_handler, solution, self.viscosity, "obstacle",
                                 scaling=b.force_scaling, probe_points=b.probe_points,
                                 probe_reduction=self.config.probe_reduction)

    def run(self) -> SteadyResult:
        self._require_setup()
        stokes = self.solve_stokes()
        dirs = {STOKES_STAGE: self.output(STOKES_STAGE, stokes)}
        state = self.solve_navier_stokes(stokes)
        dirs[NAVIER_STOKES_STAGE] = self.output(NAVIER_STOKES_STAGE, state.current)
        forces = self.compute_forces(state.current)
        if forces is not None:
            append_csv_row(dirs[NAVIER_STOKES_STAGE] / "lift_drag.csv", forces.as_row())
        return SteadyResult(stokes=stokes, solution=state.current, state=state,
                            forces=forces, output_dirs=dirs)
