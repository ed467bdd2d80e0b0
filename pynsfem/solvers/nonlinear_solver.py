"""pynsfem.solvers.nonlinear_solver
Stokes start-up solve and the Picard (Oseen) fixed-point driver.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from pynsfem.assembly.constraints import ConstraintSet
from pynsfem.assembly.global_matrix import OseenAssembler
from pynsfem.errors import LinearSolverError
from pynsfem.parallel.vector import BlockVector
from pynsfem.solvers.krylov import KRYLOV_BACKENDS, GMRESSolver
from pynsfem.solvers.preconditioner import VARIANTS, BlockPreconditioner

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Parameters
# ----------------------------------------------------------------------
@dataclass
class LinearSolverParameters:
    """Krylov stopping rule: ``relative`` scales ``tolerance`` by ||rhs||."""
    tolerance: float = 1e-6
    max_iter: int = 2000
    restart: int = 50
    relative: bool = True
    velocity_solver: str = "ilu"        # "ilu" | "lu"
    ilu_drop_tol: float = 1e-4
    ilu_fill_factor: float = 10.0
    backend: str = "auto"               # "auto" | "scipy" | "petsc"

    def __post_init__(self):
        if self.backend not in KRYLOV_BACKENDS:
            raise ValueError(f"backend must be one of {KRYLOV_BACKENDS}")
        if self.velocity_solver not in ("ilu", "lu"):
            raise ValueError("velocity_solver must be 'ilu' or 'lu'")


@dataclass
class StokesParameters:
    preconditioner: str = "triangular"
    linear: LinearSolverParameters = field(default_factory=LinearSolverParameters)

    def __post_init__(self):
        if self.preconditioner not in VARIANTS:
            raise ValueError(f"preconditioner must be one of {VARIANTS}")


@dataclass
class PicardParameters:
    max_iter: int = 10
    update_tol: float = 1e-7
    preconditioner: str = "triangular"
    accept_unconverged_linear: bool = True
    linear: LinearSolverParameters = field(
        default_factory=lambda: LinearSolverParameters(tolerance=1e-4, max_iter=2_000_000, relative=False))

    def __post_init__(self):
        if self.max_iter < 1:
            raise ValueError("PicardParameters.max_iter must be >= 1")
        if self.preconditioner not in VARIANTS:
            raise ValueError(f"preconditioner must be one of {VARIANTS}")


# ----------------------------------------------------------------------
# Iteration state
# ----------------------------------------------------------------------
class SolverStatus(Enum):
    IDLE = "idle"
    ITERATING = "iterating"
    CONVERGED = "converged"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class IterationState:
    """Everything the fixed-point loop carries from one step to the next."""
    current: BlockVector
    previous: BlockVector
    residual_norm: float = np.inf
    update_norm: float = np.inf
    iteration: int = 0
    status: SolverStatus = SolverStatus.IDLE
    update_history: List[float] = field(default_factory=list)
    linear_iterations: List[int] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status is SolverStatus.CONVERGED

    @property
    def finished(self) -> bool:
        return self.status in (SolverStatus.CONVERGED, SolverStatus.BUDGET_EXHAUSTED)


def global_l2_norm(vector: BlockVector) -> float:
    """sqrt of the all-reduced sum of squares of the owned entries."""
    local = sum(float(np.dot(b.owned, b.owned)) for b in vector.blocks)
    return float(np.sqrt(vector.comm.allreduce(local, "sum")))


def _make_preconditioner(K, mass, variant, linear: LinearSolverParameters):
    return BlockPreconditioner(K, mass, variant=variant, velocity_solver=linear.velocity_solver,
                               drop_tol=linear.ilu_drop_tol, fill_factor=linear.ilu_fill_factor)


# ----------------------------------------------------------------------
# Solvers
# ----------------------------------------------------------------------
class StokesSolver:
    """One linear Stokes solve; a Krylov failure here is fatal."""

    def __init__(self, assembler: OseenAssembler, constraints: ConstraintSet,
                 params: Optional[StokesParameters] = None):
        self.assembler = assembler
        self.constraints = constraints
        self.params = params or StokesParameters()
        self.linear_solver = GMRESSolver(self.params.linear.restart, self.params.linear.relative,
                                         self.params.linear.backend)
        self.iterations: Optional[int] = None

    def solve(self, initial_guess: Optional[BlockVector] = None) -> BlockVector:
        dh = self.assembler.dof_handler
        K, rhs = self.assembler.assemble(None)
        mass = self.assembler.assemble_pressure_mass()
        P = _make_preconditioner(K, mass, self.params.preconditioner, self.params.linear)
        x0 = initial_guess.copy() if initial_guess is not None else dh.new_vector()
        self.constraints.distribute(x0)
        lin = self.params.linear
        x, its = self.linear_solver.solve(K, x0, rhs, P, lin.tolerance, lin.max_iter)
        self.iterations = its
        self.constraints.distribute(x)
        if dh.comm.is_root:
            logger.info("Stokes solve: %d GMRES iterations, |r| = %.3e", its, self.linear_solver.last_residual)
        return x


class PicardSolver:
    """
    Fixed-point driver: Idle -> Iterating -> {Converged, BudgetExhausted}.

    Each step assembles the Oseen system around the previous iterate, solves
    it with block-preconditioned GMRES started from the previous iterate,
    re-imposes the constraints and measures the update.
    """

    def __init__(self, assembler: OseenAssembler, constraints: ConstraintSet,
                 params: Optional[PicardParameters] = None):
        self.assembler = assembler
        self.constraints = constraints
        self.params = params or PicardParameters()
        self.linear_solver = GMRESSolver(self.params.linear.restart, self.params.linear.relative,
                                         self.params.linear.backend)
        self.comm = assembler.dof_handler.comm
        self._mass = None

    @property
    def pressure_mass(self):
        if self._mass is None:
            self._mass = self.assembler.assemble_pressure_mass()
        return self._mass

    def start(self, initial_guess: BlockVector) -> IterationState:
        """Idle -> Iterating."""
        guess = initial_guess.copy().update_ghost_values()
        state = IterationState(current=guess, previous=guess.copy())
        state.status = SolverStatus.ITERATING
        return state

    def step(self, state: IterationState) -> IterationState:
        """One assemble -> solve -> update cycle and the resulting transition."""
        if state.status is not SolverStatus.ITERATING:
            raise RuntimeError(f"cannot step a solver in state {state.status.value}")
        p = self.params
        K, rhs = self.assembler.assemble(state.previous)
        P = _make_preconditioner(K, self.pressure_mass, p.preconditioner, p.linear)
        state.residual_norm = (rhs - K.vmult(state.previous)).norm()
        try:
            x, its = self.linear_solver.solve(K, state.previous, rhs, P, p.linear.tolerance, p.linear.max_iter)
        except LinearSolverError as err:
            if not p.accept_unconverged_linear or err.solution is None:
                raise
            if self.comm.is_root:
                logger.warning("Oseen solve not converged after %d iterations (|r| = %.3e); "
                               "continuing with the last iterate", err.iterations, err.residual)
            x, its = err.solution, err.iterations
        self.constraints.distribute(x)

        state.update_norm = global_l2_norm(x - state.previous)
        state.iteration += 1
        state.update_history.append(state.update_norm)
        state.linear_iterations.append(its)
        state.current = x
        state.previous = x.copy()
        if self.comm.is_root:
            logger.info("Picard %d: |du| = %.3e, |F(u_k)| = %.3e, GMRES its = %d",
                        state.iteration, state.update_norm, state.residual_norm, its)

        if state.update_norm < p.update_tol:
            state.status = SolverStatus.CONVERGED
        elif state.iteration >= p.max_iter:
            state.status = SolverStatus.BUDGET_EXHAUSTED
            if self.comm.is_root:
                logger.warning("Picard iteration budget (%d) exhausted, |du| = %.3e",
                               p.max_iter, state.update_norm)
        return state

    def solve(self, initial_guess: BlockVector) -> IterationState:
        state = self.start(initial_guess)
        while not state.finished:
            self.step(state)
        return state
