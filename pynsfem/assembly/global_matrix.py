"""pynsfem.assembly.global_matrix
Global assembly of the Stokes/Oseen saddle-point system.

    [ A   B^T ] [u]   [f]
    [ B   0   ] [p] = [g]

A = nu (grad u, grad v) + ((u_k.grad) u, v) + ((u.grad) u_k, v),
B = -(q, div u), and f carries ((u_k.grad) u_k, v), the body force and the
outlet traction -p_out <n, v>. With no previous iterate the convection
terms are dropped and the Stokes system is obtained.
"""
import logging
from typing import Callable, Iterable, Optional

import numpy as np

from pynsfem.assembly.constraints import ConstraintSet
from pynsfem.assembly.local_assembler import BoundaryKernel, TaylorHoodKernel
from pynsfem.core.bcs import BoundaryCondition
from pynsfem.core.dofhandler import DofHandler
from pynsfem.parallel.matrix import DistributedBlockMatrix, SparsityPattern, VectorPattern
from pynsfem.parallel.vector import BlockVector, DistributedVector

logger = logging.getLogger(__name__)


def _pairs(rows, cols):
    """Flattened (row, col) index arrays of dense local blocks."""
    r = np.broadcast_to(rows[:, :, None], (rows.shape[0], rows.shape[1], cols.shape[1]))
    c = np.broadcast_to(cols[:, None, :], (rows.shape[0], rows.shape[1], cols.shape[1]))
    return r.ravel(), c.ravel()


class OseenAssembler:
    """
    Assembles the linearized Navier–Stokes system over the locally owned cells.

    The sparsity patterns and routing plans are built on the first call and
    reused by every later assembly of the same run; only values move.
    """

    def __init__(self, dof_handler: DofHandler, viscosity: float, constraints: ConstraintSet,
                 bcs: Iterable[BoundaryCondition] = (), body_force: Optional[Callable] = None,
                 quad_degree: int = 5):
        self.dof_handler = dof_handler
        self.viscosity = float(viscosity)
        self.constraints = constraints
        self.body_force = body_force
        mesh = dof_handler.mesh
        cells = dof_handler.owned_cells
        self.kernel = TaylorHoodKernel(mesh, cells, quad_degree)
        self._udofs = dof_handler.cell_velocity_dofs[cells].reshape(-1, 12)
        self._pdofs = dof_handler.cell_pressure_dofs[cells]

        rank = dof_handler.comm.rank
        self._neumann = []
        for bc in bcs:
            if bc.method != "neumann":
                continue
            edges = [e for e in mesh.boundary_edges(bc.domain_tag) if dof_handler.cell_owner[e.element] == rank]
            kern = BoundaryKernel(mesh, edges)
            rows = dof_handler.cell_velocity_dofs[kern.cells].reshape(-1, 12)
            self._neumann.append((bc, kern, rows))

        self._stokes_cache = None
        self._patterns = None
        self._mass_pattern = None

    # ------------------------------------------------------------------
    def _build_patterns(self):
        u_space, p_space = self.dof_handler.spaces
        uu = _pairs(self._udofs, self._udofs)
        up = _pairs(self._udofs, self._pdofs)
        pu = _pairs(self._pdofs, self._udofs)
        rhs_rows = np.concatenate([self._udofs.ravel()] + [r.ravel() for _, _, r in self._neumann])
        self._patterns = {
            "A": SparsityPattern(u_space, u_space, *uu, include_diagonal=True),
            "Bt": SparsityPattern(u_space, p_space, *up),
            "B": SparsityPattern(p_space, u_space, *pu),
            "f": VectorPattern(u_space, rhs_rows),
        }
        logger.debug("sparsity patterns built: nnz(A) = %d, nnz(Bt) = %d, nnz(B) = %d",
                     self._patterns["A"].nnz, self._patterns["Bt"].nnz, self._patterns["B"].nnz)

    def _stokes_parts(self):
        if self._stokes_cache is None:
            k = self.kernel
            A = k.viscous(self.viscosity)
            Bt = k.divergence()
            f = k.body_force(self.body_force) if self.body_force is not None else np.zeros((k.n_cells, 12))
            neumann = [kern.normal_traction(bc.value) for bc, kern, _ in self._neumann]
            self._stokes_cache = (A, Bt, f, neumann)
        return self._stokes_cache

    def cell_coefficients(self, state: BlockVector) -> np.ndarray:
        """Previous-iterate velocity per owned cell, (nc, 2, 6)."""
        state.u.update_ghost_values()
        return state.u.values_at(self._udofs.ravel()).reshape(-1, 2, 6)

    def assemble(self, state: Optional[BlockVector] = None):
        """
        Return ``(K, rhs)`` with constraints already eliminated.

        ``state`` is the previous iterate; ``None`` assembles Stokes.
        Collective: every rank must call it.
        """
        if self._patterns is None:
            self._build_patterns()
        A, Bt, f, neumann = self._stokes_parts()
        if state is not None:
            U = self.cell_coefficients(state)
            A = A + self.kernel.convection(U)
            f = f + self.kernel.convection_rhs(U)

        pats = self._patterns
        K = DistributedBlockMatrix(self.dof_handler.spaces, [
            [pats["A"].assemble(A.ravel()), pats["Bt"].assemble(Bt.ravel())],
            [pats["B"].assemble(np.transpose(Bt, (0, 2, 1)).ravel()), None],
        ])
        rhs = BlockVector([
            pats["f"].assemble(np.concatenate([f.ravel()] + [n.ravel() for n in neumann])),
            DistributedVector(self.dof_handler.pressure_space),
        ])
        self.constraints.apply(K, rhs)
        return K, rhs

    def assemble_pressure_mass(self) -> DistributedBlockMatrix:
        """Pressure mass matrix scaled by 1/nu, only the (p, p) block populated."""
        p_space = self.dof_handler.pressure_space
        if self._mass_pattern is None:
            self._mass_pattern = SparsityPattern(p_space, p_space, *_pairs(self._pdofs, self._pdofs),
                                                 include_diagonal=True)
        M = self._mass_pattern.assemble(self.kernel.pressure_mass(self.viscosity).ravel())
        return DistributedBlockMatrix(self.dof_handler.spaces, [[None, None], [None, M]])
