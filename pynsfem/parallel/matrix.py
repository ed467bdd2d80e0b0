"""pynsfem.parallel.matrix
Row-distributed sparse matrices and their 2x2 block containers.
"""
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sp

from pynsfem.parallel.comm import Communicator
from pynsfem.parallel.vector import BlockVector, DistributedVector, Importer, IndexSpace


class EntryRouter:
    """Ships locally computed entries to the rank that owns their row.

    The routing order is fixed at construction, so repeated assemblies over
    the same cells only exchange values.
    """

    def __init__(self, row_space: IndexSpace, rows: np.ndarray):
        self.comm: Communicator = row_space.comm
        owners = row_space.owner(rows)
        self._order = np.argsort(owners, kind="stable")
        counts = np.bincount(owners, minlength=self.comm.size)
        self._splits = np.cumsum(counts)[:-1]
        self.received_rows = self.route(np.asarray(rows, dtype=np.int64))

    def route(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values)
        parts = np.split(values[self._order], self._splits)
        return np.concatenate(self.comm.alltoall(parts))


class DistributedMatrix:
    """
    Owned rows of a sparse matrix in CSR form.

    Columns are numbered locally: the owned column range first, then the
    sorted ghost columns. ``importer`` fetches the ghost part of an input
    vector before each product.
    """

    def __init__(self, row_space: IndexSpace, col_space: IndexSpace, local: sp.csr_matrix,
                 col_ghosts: np.ndarray, importer: Importer):
        self.row_space = row_space
        self.col_space = col_space
        self.local = local
        self.col_ghosts = col_ghosts
        self.importer = importer

    @property
    def shape(self):
        return (self.row_space.size, self.col_space.size)

    def vmult(self, x: DistributedVector) -> DistributedVector:
        xl = np.concatenate((x.owned, self.importer(x.owned)))
        return DistributedVector(self.row_space, self.local @ xl)

    def global_columns(self) -> np.ndarray:
        return np.concatenate((np.arange(self.col_space.start, self.col_space.stop), self.col_ghosts))

    def entry_indices(self):
        """Global (row, column) of every stored entry, aligned with ``local.data``."""
        rows = np.repeat(np.arange(self.row_space.start, self.row_space.stop), np.diff(self.local.indptr))
        return rows, self.global_columns()[self.local.indices]

    def local_diagonal_block(self) -> sp.csr_matrix:
        """Owned-rows x owned-columns part (the block-Jacobi block)."""
        return self.local[:, :self.col_space.n_owned].tocsr()

    def to_global(self) -> sp.csr_matrix:
        """Collect the whole matrix on every rank (tests and small problems)."""
        rows, cols = self.entry_indices()
        parts = self.row_space.comm.allgather((rows, cols, self.local.data.copy()))
        r = np.concatenate([p[0] for p in parts])
        c = np.concatenate([p[1] for p in parts])
        v = np.concatenate([p[2] for p in parts])
        return sp.csr_matrix((v, (r, c)), shape=self.shape)


class SparsityPattern:
    """
    Fixed CSR structure of one block, built once from assembly triplets.

    Later assemblies push values in the same triplet order and only pay for
    the value exchange and a ``bincount`` into the stored slots.
    """

    def __init__(self, row_space: IndexSpace, col_space: IndexSpace, rows, cols,
                 include_diagonal: bool = False):
        self.row_space = row_space
        self.col_space = col_space
        self.router = EntryRouter(row_space, rows)
        r = self.router.received_rows - row_space.start
        c = self.router.route(np.asarray(cols, dtype=np.int64))
        self._n_diag = 0
        if include_diagonal:
            self._n_diag = row_space.n_owned
            r = np.concatenate((r, np.arange(row_space.n_owned)))
            c = np.concatenate((c, np.arange(row_space.start, row_space.stop)))

        owned_col = (c >= col_space.start) & (c < col_space.stop)
        self.col_ghosts = np.unique(c[~owned_col])
        n_cols_local = col_space.n_owned + len(self.col_ghosts)
        local_c = np.where(owned_col, c - col_space.start,
                           col_space.n_owned + np.searchsorted(self.col_ghosts, c))
        keys = r * max(n_cols_local, 1) + local_c
        uniq, slot = np.unique(keys, return_inverse=True)
        self._slot = slot.ravel()
        self.nnz = len(uniq)
        self.shape_local = (row_space.n_owned, n_cols_local)
        self.indices = (uniq % max(n_cols_local, 1)).astype(np.int32)
        self.indptr = np.concatenate(([0], np.cumsum(
            np.bincount(uniq // max(n_cols_local, 1), minlength=row_space.n_owned)))).astype(np.int32)
        self.importer = Importer(row_space.comm, col_space.offsets, self.col_ghosts)

    def assemble(self, values) -> DistributedMatrix:
        v = self.router.route(np.asarray(values, dtype=float))
        if self._n_diag:
            v = np.concatenate((v, np.zeros(self._n_diag)))
        data = np.bincount(self._slot, weights=v, minlength=self.nnz)
        local = sp.csr_matrix((data, self.indices.copy(), self.indptr.copy()), shape=self.shape_local)
        return DistributedMatrix(self.row_space, self.col_space, local, self.col_ghosts, self.importer)


class VectorPattern:
    """Routing plan for right-hand-side entries (row owner accumulation)."""

    def __init__(self, space: IndexSpace, rows):
        self.space = space
        self.router = EntryRouter(space, rows)
        self._local_rows = self.router.received_rows - space.start

    def assemble(self, values) -> DistributedVector:
        v = self.router.route(np.asarray(values, dtype=float))
        owned = np.bincount(self._local_rows, weights=v, minlength=self.space.n_owned)
        return DistributedVector(self.space, owned)


class DistributedBlockMatrix:
    """2x2 block operator; absent blocks (``None``) are structural zeros."""

    def __init__(self, spaces: Sequence[IndexSpace], blocks):
        self.spaces = tuple(spaces)
        self.blocks = [[blocks[i][j] for j in range(2)] for i in range(2)]

    def block(self, i: int, j: int) -> Optional[DistributedMatrix]:
        return self.blocks[i][j]

    def vmult(self, x: BlockVector) -> BlockVector:
        out = []
        for i in range(2):
            acc = DistributedVector(self.spaces[i])
            for j in range(2):
                blk = self.blocks[i][j]
                if blk is not None:
                    acc.owned += blk.vmult(x.blocks[j]).owned
            out.append(acc)
        return BlockVector(out)

    def to_global(self) -> sp.csr_matrix:
        """Monolithic matrix gathered on every rank."""
        n = [s.size for s in self.spaces]
        rows = []
        for i in range(2):
            row = []
            for j in range(2):
                blk = self.blocks[i][j]
                row.append(blk.to_global() if blk is not None else sp.csr_matrix((n[i], n[j])))
            rows.append(row)
        return sp.bmat(rows, format="csr")
