from .krylov import GMRESSolver, gmres, ksp_gmres
from .nonlinear_solver import (IterationState, LinearSolverParameters, PicardParameters, PicardSolver,
                               SolverStatus, StokesParameters, StokesSolver)
from .preconditioner import BlockPreconditioner

__all__ = ["gmres", "ksp_gmres", "GMRESSolver", "BlockPreconditioner", "LinearSolverParameters", "StokesParameters",
           "PicardParameters", "SolverStatus", "IterationState", "StokesSolver", "PicardSolver"]
