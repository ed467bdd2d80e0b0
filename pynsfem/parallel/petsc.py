"""pynsfem.parallel.petsc
PETSc views of the distributed containers for Krylov solves under MPI.

Every block keeps its ownership range, so the ghosted Vec of an
:class:`IndexSpace` has the same ``[owned..., ghosts...]`` local form as the
matching :class:`DistributedVector`. Block operators become a MatNest of AIJ
matrices and block vectors a VecNest.

Needs petsc4py (pip install pynsfem[mpi]); import it only for MPI runs.
"""
import scipy.sparse as sp
from petsc4py import PETSc

from pynsfem.parallel.matrix import DistributedBlockMatrix, DistributedMatrix
from pynsfem.parallel.vector import BlockVector, DistributedVector, IndexSpace


def create_vector(space: IndexSpace, comm) -> PETSc.Vec:
    """Ghosted Vec over the owned range of ``space`` with its ghost indices."""
    ghosts = space.ghosts.astype(PETSc.IntType)
    return PETSc.Vec().createGhost(ghosts, size=(space.n_owned, space.size), comm=comm)


def to_petsc_vector(vector: BlockVector) -> PETSc.Vec:
    """VecNest holding a copy of the owned values of each block."""
    comm = vector.comm.mpi_comm
    subs = []
    for block in vector.blocks:
        v = create_vector(block.space, comm)
        v.setArray(block.owned)
        subs.append(v)
    return PETSc.Vec().createNest(subs, comm=comm)


def from_petsc_vector(vec: PETSc.Vec, spaces) -> BlockVector:
    """Copy a VecNest back; ghosts come from PETSc's forward ghost scatter."""
    blocks = []
    for sub, space in zip(vec.getNestSubVecs(), spaces):
        sub.ghostUpdate(addv=PETSc.InsertMode.INSERT, mode=PETSc.ScatterMode.FORWARD)
        with sub.localForm() as loc:
            blocks.append(DistributedVector.from_relevant(space, loc.getArray(readonly=True)))
    return BlockVector(blocks)


def to_petsc_matrix(matrix: DistributedMatrix, comm) -> PETSc.Mat:
    """AIJ matrix with the same row and column ownership, columns in global numbering."""
    rows, cols = matrix.row_space, matrix.col_space
    local = sp.csr_matrix((matrix.local.data.copy(), matrix.global_columns()[matrix.local.indices],
                           matrix.local.indptr.copy()), shape=(rows.n_owned, cols.size))
    local.sort_indices()
    ia = local.indptr.astype(PETSc.IntType, copy=False)
    ja = local.indices.astype(PETSc.IntType, copy=False)
    A = PETSc.Mat().createAIJ(size=((rows.n_owned, rows.size), (cols.n_owned, cols.size)),
                              csr=(ia, ja, local.data), comm=comm)
    A.assemble()
    return A


def to_petsc_block_matrix(matrix: DistributedBlockMatrix, comm) -> PETSc.Mat:
    """MatNest [[A, B^T], [B, C]]; missing blocks stay empty."""
    blocks = [[to_petsc_matrix(blk, comm) if blk is not None else None for blk in row]
              for row in matrix.blocks]
    K = PETSc.Mat().createNest(blocks, comm=comm)
    K.assemble()
    return K


class BlockPreconditionerContext:
    """Python PC context applying a :class:`BlockPreconditioner` to VecNest residuals."""

    def __init__(self, preconditioner, spaces):
        self.preconditioner = preconditioner
        self.spaces = tuple(spaces)

    def apply(self, pc, x, y):
        r = BlockVector(DistributedVector(space, sub.getArray(readonly=True).copy())
                        for space, sub in zip(self.spaces, x.getNestSubVecs()))
        z = self.preconditioner.apply(r)
        for sub, block in zip(y.getNestSubVecs(), z.blocks):
            sub.setArray(block.owned)
