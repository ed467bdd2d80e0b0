"""pynsfem.solvers.krylov
Restarted, right-preconditioned GMRES for the block saddle-point systems.

Two backends share one calling convention:

* ``scipy``: :func:`scipy.sparse.linalg.gmres` on monolithic arrays that
  every rank holds in full. Mat-vecs and preconditioner applications run
  on the distributed operators and are gathered again, so all ranks follow
  the same iteration in lockstep. Used for serial runs and for in-process
  rank groups.
* ``petsc``: a PETSc KSP (gmres) over a MatNest of AIJ blocks, with the
  block preconditioner plugged in as a python PC. Used for MPI runs.
"""
import logging
from typing import Optional

import scipy.sparse.linalg as spla

from pynsfem.errors import LinearSolverError, SingularOperatorError
from pynsfem.parallel.comm import MPICommunicator
from pynsfem.parallel.vector import BlockVector

logger = logging.getLogger(__name__)

KRYLOV_BACKENDS = ("auto", "scipy", "petsc")


def _not_converged(iterations, residual, target, x):
    return LinearSolverError(
        f"GMRES did not converge in {iterations} iterations "
        f"(residual {residual:.3e}, target {target:.3e})",
        residual=residual, iterations=iterations, solution=x)


def gmres(matrix, rhs, x0, preconditioner=None, tol: float = 1e-6, max_iter: int = 1000,
          restart: int = 50, relative: bool = True):
    """
    Solve ``matrix x = rhs`` with scipy's GMRES.

    Stops when ||rhs - matrix x|| <= tol * ||rhs|| (``relative``) or <= tol.
    ``max_iter`` counts inner iterations and is spent in whole restart
    cycles. Collective.

    Returns:
        tuple: (x, iterations, info) where ``info`` holds the initial and
        final true residual norms.

    Raises:
        LinearSolverError: budget exhausted; carries the last iterate.
        SingularOperatorError: GMRES broke down.
    """
    spaces = rhs.spaces
    n = sum(s.size for s in spaces)

    def distributed(op):
        return lambda v: op(BlockVector.from_global(spaces, v)).gather()

    A = spla.LinearOperator((n, n), matvec=distributed(matrix.vmult), dtype=float)
    M = None
    if preconditioner is not None:
        M = spla.LinearOperator((n, n), matvec=distributed(preconditioner.apply), dtype=float)

    initial = (rhs - matrix.vmult(x0)).norm()
    info = {"initial_residual": initial, "residual": initial}
    m = max(1, min(restart, max_iter))
    iterations = 0

    def count(_):
        nonlocal iterations
        iterations += 1

    x_glob, flag = spla.gmres(A, rhs.gather(), x0=x0.gather(),
                              rtol=tol if relative else 0.0, atol=0.0 if relative else tol,
                              restart=m, maxiter=max(1, -(-max_iter // m)), M=M,
                              callback=count, callback_type="pr_norm")
    x = BlockVector.from_global(spaces, x_glob).update_ghost_values()
    info["residual"] = (rhs - matrix.vmult(x)).norm()
    logger.debug("scipy gmres: it=%d, |r|=%.3e, info=%d", iterations, info["residual"], flag)
    if flag < 0:
        raise SingularOperatorError(f"GMRES broke down (info = {flag})")
    if flag > 0:
        raise _not_converged(iterations, info["residual"], tol * rhs.norm() if relative else tol, x)
    return x, iterations, info


def ksp_gmres(matrix, rhs, x0, preconditioner=None, tol: float = 1e-6, max_iter: int = 1000,
              restart: int = 50, relative: bool = True, options_prefix: str = "pynsfem_"):
    """
    Same contract as :func:`gmres`, solved by a PETSc KSP.

    PETSc options under ``options_prefix`` (e.g. ``-pynsfem_ksp_monitor``)
    are applied after the defaults. Needs an MPI communicator and petsc4py.
    """
    if not isinstance(rhs.comm, MPICommunicator):
        raise ValueError(f"the petsc backend needs an MPICommunicator, got {type(rhs.comm).__name__}")
    from pynsfem.parallel import petsc as backend  # optional dependency, pip install pynsfem[mpi]

    PETSc = backend.PETSc
    comm = rhs.comm.mpi_comm
    initial = (rhs - matrix.vmult(x0)).norm()
    info = {"initial_residual": initial, "residual": initial}
    if relative and rhs.norm() == 0.0:
        info["residual"] = 0.0
        return x0.zeros_like().update_ghost_values(), 0, info

    K = backend.to_petsc_block_matrix(matrix, comm)
    b = backend.to_petsc_vector(rhs)
    x = backend.to_petsc_vector(x0)
    ksp = PETSc.KSP().create(comm=comm)
    ksp.setOptionsPrefix(options_prefix)
    ksp.setOperators(K)
    ksp.setType("gmres")
    ksp.setGMRESRestart(restart)
    ksp.setPCSide(PETSc.PC.Side.RIGHT)
    ksp.setNormType(PETSc.KSP.NormType.UNPRECONDITIONED)
    ksp.setTolerances(rtol=tol if relative else 0.0, atol=0.0 if relative else tol, max_it=max_iter)
    ksp.setInitialGuessNonzero(True)
    pc = ksp.getPC()
    if preconditioner is None:
        pc.setType("none")
    else:
        pc.setType("python")
        pc.setPythonContext(backend.BlockPreconditionerContext(preconditioner, rhs.spaces))
    ksp.setFromOptions()
    ksp.solve(b, x)

    iterations = ksp.getIterationNumber()
    reason = ksp.getConvergedReason()
    out = backend.from_petsc_vector(x, rhs.spaces)
    for obj in (ksp, K, b, x):
        obj.destroy()
    info["residual"] = (rhs - matrix.vmult(out)).norm()
    logger.debug("PETSc gmres: it=%d, |r|=%.3e, reason=%d", iterations, info["residual"], reason)
    if reason == PETSc.KSP.ConvergedReason.DIVERGED_ITS:
        raise _not_converged(iterations, info["residual"], tol * rhs.norm() if relative else tol, out)
    if reason < 0:
        raise SingularOperatorError(f"KSP diverged (reason {reason})")
    return out, iterations, info


class GMRESSolver:
    """`solve(matrix, initial_guess, rhs, preconditioner, tolerance, max_iterations)`.

    ``backend='auto'`` takes PETSc under MPI with more than one rank and
    scipy otherwise. The last solve's residuals are kept on the instance for
    reporting.
    """

    def __init__(self, restart: int = 50, relative: bool = True, backend: str = "auto"):
        if backend not in KRYLOV_BACKENDS:
            raise ValueError(f"Unknown Krylov backend '{backend}'; expected one of {KRYLOV_BACKENDS}")
        self.restart = restart
        self.relative = relative
        self.backend = backend
        self.last_iterations: Optional[int] = None
        self.last_residual: Optional[float] = None
        self.initial_residual: Optional[float] = None

    def backend_for(self, comm) -> str:
        if self.backend != "auto":
            return self.backend
        return "petsc" if isinstance(comm, MPICommunicator) and comm.size > 1 else "scipy"

    def solve(self, matrix, initial_guess, rhs, preconditioner, tolerance, max_iterations):
        run = ksp_gmres if self.backend_for(rhs.comm) == "petsc" else gmres
        try:
            x, its, info = run(matrix, rhs, initial_guess, preconditioner, tol=tolerance,
                               max_iter=max_iterations, restart=self.restart, relative=self.relative)
        except LinearSolverError as err:
            self.last_iterations, self.last_residual = err.iterations, err.residual
            raise
        self.last_iterations = its
        self.last_residual = info["residual"]
        self.initial_residual = info["initial_residual"]
        return x, its
