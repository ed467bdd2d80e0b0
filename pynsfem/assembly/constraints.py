"""pynsfem.assembly.constraints
Affine (Dirichlet) constraints and their symmetric elimination.
"""
import logging
from typing import Dict, Iterable, Tuple

import numpy as np

from pynsfem.core.bcs import BoundaryCondition
from pynsfem.errors import DiscretizationError
from pynsfem.parallel.matrix import DistributedBlockMatrix
from pynsfem.parallel.vector import BlockVector

logger = logging.getLogger(__name__)

_BLOCK = {"velocity": 0, "pressure": 1}


class ConstraintSet:
    """
    Constrained block-local indices and their prescribed values.

    The set is global (identical on every rank) and immutable once built;
    each rank only ever writes the entries it owns.
    """

    def __init__(self, dof_handler, entries: Dict[int, Tuple[np.ndarray, np.ndarray]]):
        self.dof_handler = dof_handler
        self._entries = {}
        sizes = dof_handler.block_sizes
        for block in (0, 1):
            idx, vals = entries.get(block, (np.empty(0, np.int64), np.empty(0)))
            idx = np.asarray(idx, dtype=np.int64)
            vals = np.asarray(vals, dtype=float)
            if idx.shape != vals.shape:
                raise DiscretizationError("constraint indices and values differ in length")
            if idx.size and (idx.min() < 0 or idx.max() >= sizes[block]):
                raise DiscretizationError("constraint index outside its block")
            order = np.argsort(idx)
            idx, vals = idx[order], vals[order]
            if np.any(np.diff(idx) == 0):
                raise DiscretizationError("duplicate constrained index")
            idx.flags.writeable = False
            vals.flags.writeable = False
            self._entries[block] = (idx, vals)
        self._masks = {}
        for block, (idx, _) in self._entries.items():
            mask = np.zeros(sizes[block], dtype=bool)
            mask[idx] = True
            self._masks[block] = mask

    @classmethod
    def from_boundary_conditions(cls, dof_handler, bcs: Iterable[BoundaryCondition]):
        """Collect Dirichlet data on every node (vertex and mid) of tagged edges.

        When two conditions claim the same unknown the first one wins.
        """
        mesh = dof_handler.mesh
        collected = {0: {}, 1: {}}
        for bc in bcs:
            if bc.method != "dirichlet":
                continue
            edges = mesh.boundary_edges(bc.domain_tag)
            if not edges:
                logger.warning("No boundary edges tagged '%s' for %r", bc.domain_tag, bc)
                continue
            nodes = np.unique([n for e in edges for n in e.all_nodes])
            block = _BLOCK[bc.field]
            if block == 0:
                xy = mesh.nodes_x_y_pos[nodes]
                ux, uy = bc.value(xy[:, 0], xy[:, 1])
                idx = dof_handler.velocity_dofs[nodes]
                vals = np.column_stack(np.broadcast_arrays(ux, uy))
                pairs = zip(idx.ravel(), vals.ravel())
            else:
                nodes = nodes[dof_handler.pressure_dofs[nodes] >= 0]
                xy = mesh.nodes_x_y_pos[nodes]
                v = bc.value(xy[:, 0], xy[:, 1]) if callable(bc.value) else bc.value
                vals = np.broadcast_to(np.asarray(v, dtype=float), (len(nodes),))
                pairs = zip(dof_handler.pressure_dofs[nodes], vals)
            target = collected[block]
            for i, v in pairs:
                target.setdefault(int(i), float(v))
        entries = {b: (np.fromiter(d.keys(), np.int64, len(d)), np.fromiter(d.values(), float, len(d)))
                   for b, d in collected.items()}
        return cls(dof_handler, entries)

    # ------------------------------------------------------------------
    def indices(self, block: int) -> np.ndarray:
        return self._entries[block][0]

    def values(self, block: int) -> np.ndarray:
        return self._entries[block][1]

    def __len__(self):
        return sum(len(i) for i, _ in self._entries.values())

    def _owned(self, block, space):
        idx, vals = self._entries[block]
        keep = space.owns(idx)
        return idx[keep] - space.start, vals[keep]

    def inhomogeneity(self) -> BlockVector:
        """Vector holding the prescribed values on constrained entries, zero elsewhere."""
        g = self.dof_handler.new_vector()
        for block, vec in enumerate(g.blocks):
            loc, vals = self._owned(block, vec.space)
            vec.owned[loc] = vals
        return g

    def apply(self, matrix: DistributedBlockMatrix, rhs: BlockVector):
        """
        Eliminate constrained unknowns after global accumulation:
        rhs -= K g, zero constrained rows and columns, unit diagonal,
        rhs[c] = g[c].
        """
        for i in range(2):
            if len(self.indices(i)) and matrix.block(i, i) is None:
                raise DiscretizationError(f"constraints on block {i} need a diagonal block")
        g = self.inhomogeneity()
        rhs.axpy(-1.0, matrix.vmult(g))
        for i in range(2):
            for j in range(2):
                blk = matrix.block(i, j)
                if blk is None:
                    continue
                rows, cols = blk.entry_indices()
                keep = ~self._masks[i][rows] & ~self._masks[j][cols]
                blk.local.data *= keep
                if i == j:
                    diag = self._masks[i][rows] & (rows == cols)
                    blk.local.data[diag] = 1.0
                    n_owned = int(np.count_nonzero(blk.row_space.owns(self.indices(i))))
                    if int(np.count_nonzero(diag)) != n_owned:
                        raise DiscretizationError(f"block ({i},{i}) lacks diagonal slots for constrained rows")
        for block, vec in enumerate(rhs.blocks):
            loc, vals = self._owned(block, vec.space)
            vec.owned[loc] = vals
        return matrix, rhs

    def distribute(self, vector: BlockVector) -> BlockVector:
        """Write prescribed values into owned entries and refresh ghosts."""
        for block, vec in enumerate(vector.blocks):
            loc, vals = self._owned(block, vec.space)
            vec.owned[loc] = vals
        return vector.update_ghost_values()

    def set_zero(self, vector: BlockVector) -> BlockVector:
        for block, vec in enumerate(vector.blocks):
            loc, _ = self._owned(block, vec.space)
            vec.owned[loc] = 0.0
        return vector
