"""pynsfem.solvers.preconditioner
Block preconditioners for the Oseen saddle-point operator.

With K = [[A, B^T], [B, 0]] and the Schur complement S = -B A^{-1} B^T
replaced by -M/nu (pressure mass matrix scaled by the inverse viscosity):

* triangular: P = [[A, 0], [B, -M/nu]],
  x_u = A^{-1} r_u,  x_p = (M/nu)^{-1} (B x_u - r_p)
* diagonal:   P = diag(A, M/nu),
  x_u = A^{-1} r_u,  x_p = (M/nu)^{-1} r_p

A^{-1} and (M/nu)^{-1} are applied block-Jacobi over ranks: an incomplete
(or complete) LU of the owned diagonal block of A, and a complete LU of the
owned diagonal block of M/nu.
"""
import logging

import numpy as np
import scipy.sparse.linalg as spla

from pynsfem.errors import SingularOperatorError
from pynsfem.parallel.matrix import DistributedBlockMatrix
from pynsfem.parallel.vector import BlockVector, DistributedVector

logger = logging.getLogger(__name__)

VARIANTS = ("diagonal", "triangular")


class LocalFactorization:
    """Sparse LU or ILU of a rank-local square block."""

    def __init__(self, matrix, method: str = "ilu", drop_tol: float = 1e-4, fill_factor: float = 10.0):
        self.n = matrix.shape[0]
        if self.n == 0:
            self._factor = None
            return
        A = matrix.tocsc()
        try:
            if method == "ilu":
                self._factor = spla.spilu(A, drop_tol=drop_tol, fill_factor=fill_factor)
            elif method == "lu":
                self._factor = spla.splu(A)
            else:
                raise ValueError(f"Unknown factorization '{method}'")
        except RuntimeError as exc:
            raise SingularOperatorError(f"{method} factorization failed: {exc}") from exc

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        if self._factor is None:
            return np.asarray(rhs, dtype=float).copy()
        return self._factor.solve(np.asarray(rhs, dtype=float))


class BlockPreconditioner:
    """Fixed linear operator approximating K^{-1}; ``apply`` is collective."""

    def __init__(self, system: DistributedBlockMatrix, pressure_mass: DistributedBlockMatrix,
                 variant: str = "triangular", velocity_solver: str = "ilu",
                 drop_tol: float = 1e-4, fill_factor: float = 10.0):
        if variant not in VARIANTS:
            raise ValueError(f"Unknown preconditioner '{variant}'; expected one of {VARIANTS}")
        self.variant = variant
        self.spaces = system.spaces
        self._B = system.block(1, 0)
        self._A_inv = LocalFactorization(system.block(0, 0).local_diagonal_block(), velocity_solver,
                                         drop_tol, fill_factor)
        self._M_inv = LocalFactorization(pressure_mass.block(1, 1).local_diagonal_block(), "lu")
        logger.debug("%s preconditioner: %s on %d velocity rows, lu on %d pressure rows",
                     variant, velocity_solver, self._A_inv.n, self._M_inv.n)

    def apply(self, r: BlockVector) -> BlockVector:
        x_u = DistributedVector(self.spaces[0], self._A_inv.solve(r.u.owned))
        if self.variant == "triangular":
            t = self._B.vmult(x_u).owned - r.p.owned
        else:
            t = r.p.owned
        x_p = DistributedVector(self.spaces[1], self._M_inv.solve(t))
        return BlockVector([x_u, x_p])

    vmult = apply
