"""pynsfem.parallel.vector
Distributed index spaces and vectors with read-only ghost copies.
"""
from typing import Sequence

import numpy as np

from pynsfem.errors import DiscretizationError
from pynsfem.parallel.comm import Communicator


def ownership_offsets(comm: Communicator, n_owned: int) -> np.ndarray:
    """Prefix offsets (size + 1,) of contiguous owned ranges."""
    counts = np.asarray(comm.allgather(int(n_owned)), dtype=np.int64)
    return np.concatenate(([0], np.cumsum(counts)))


class Importer:
    """
    Exchange plan that copies remote owned entries into local ghost slots.

    Construction is collective: every rank announces the ghost indices it
    needs, grouped by owner, and remembers which of its own entries the
    other ranks asked for. ``ghosts`` must be sorted and unique, so the
    received values come back in the same order.
    """

    def __init__(self, comm: Communicator, offsets: np.ndarray, ghosts: np.ndarray):
        self.comm = comm
        offsets = np.asarray(offsets, dtype=np.int64)
        ghosts = np.asarray(ghosts, dtype=np.int64)
        start, stop = offsets[comm.rank], offsets[comm.rank + 1]
        owners = np.searchsorted(offsets, ghosts, side="right") - 1
        if np.any((ghosts >= start) & (ghosts < stop)):
            raise DiscretizationError("ghost indices overlap the locally owned range")
        requests = [ghosts[owners == r] for r in range(comm.size)]
        incoming = comm.alltoall(requests)
        self._send = [np.asarray(idx, dtype=np.int64) - start for idx in incoming]
        self.n_ghosts = len(ghosts)

    def __call__(self, owned: np.ndarray) -> np.ndarray:
        recv = self.comm.alltoall([owned[idx] for idx in self._send])
        return np.concatenate([np.asarray(r, dtype=float) for r in recv])


class IndexSpace:
    """One block of unknowns: contiguous owned range plus sorted ghosts."""

    def __init__(self, comm: Communicator, offsets: Sequence[int], ghosts=()):
        self.comm = comm
        self.offsets = np.asarray(offsets, dtype=np.int64)
        if len(self.offsets) != comm.size + 1:
            raise DiscretizationError("ownership offsets must have one entry per rank plus one")
        self.start = int(self.offsets[comm.rank])
        self.stop = int(self.offsets[comm.rank + 1])
        self.size = int(self.offsets[-1])
        g = np.unique(np.asarray(ghosts, dtype=np.int64))
        self.ghosts = g[(g < self.start) | (g >= self.stop)]
        if self.ghosts.size and (self.ghosts[0] < 0 or self.ghosts[-1] >= self.size):
            raise DiscretizationError("ghost index outside the global index range")
        self.importer = Importer(comm, self.offsets, self.ghosts)

    @property
    def n_owned(self) -> int:
        return self.stop - self.start

    @property
    def n_relevant(self) -> int:
        return self.n_owned + len(self.ghosts)

    def owner(self, indices) -> np.ndarray:
        return np.searchsorted(self.offsets, np.asarray(indices, dtype=np.int64), side="right") - 1

    def owns(self, indices) -> np.ndarray:
        idx = np.asarray(indices, dtype=np.int64)
        return (idx >= self.start) & (idx < self.stop)

    def local_index(self, indices) -> np.ndarray:
        """Positions of global indices inside ``[owned..., ghosts...]``."""
        idx = np.asarray(indices, dtype=np.int64)
        out = idx - self.start
        remote = ~self.owns(idx)
        if np.any(remote):
            pos = np.searchsorted(self.ghosts, idx[remote])
            pos_c = np.minimum(pos, max(len(self.ghosts) - 1, 0))
            if len(self.ghosts) == 0 or np.any(self.ghosts[pos_c] != idx[remote]):
                raise DiscretizationError("index is neither owned nor a ghost on this rank")
            out[remote] = self.n_owned + pos
        return out


class DistributedVector:
    """
    Owned values plus ghost copies of remote entries.

    Ghosts are never written directly; call :meth:`update_ghost_values`
    after the owned part changed.
    """

    def __init__(self, space: IndexSpace, owned=None):
        self.space = space
        if owned is None:
            self.owned = np.zeros(space.n_owned)
        else:
            self.owned = np.asarray(owned, dtype=float)
            if self.owned.shape != (space.n_owned,):
                raise DiscretizationError(
                    f"owned values have shape {self.owned.shape}, expected ({space.n_owned},)")
        self._ghosts = np.zeros(len(space.ghosts))
        self._ghosts.flags.writeable = False

    @classmethod
    def from_relevant(cls, space: IndexSpace, values):
        """Build from ``[owned..., ghosts...]`` already consistent across ranks."""
        values = np.asarray(values, dtype=float)
        if values.shape != (space.n_relevant,):
            raise DiscretizationError(
                f"relevant values have shape {values.shape}, expected ({space.n_relevant},)")
        out = cls(space, values[:space.n_owned].copy())
        ghosts = values[space.n_owned:].copy()
        ghosts.flags.writeable = False
        out._ghosts = ghosts
        return out

    @property
    def comm(self):
        return self.space.comm

    @property
    def ghost_values(self) -> np.ndarray:
        return self._ghosts

    def update_ghost_values(self):
        ghosts = self.space.importer(self.owned)
        ghosts.flags.writeable = False
        self._ghosts = ghosts
        return self

    def relevant_values(self) -> np.ndarray:
        return np.concatenate((self.owned, self._ghosts))

    def values_at(self, indices) -> np.ndarray:
        return self.relevant_values()[self.space.local_index(indices)]

    def copy(self):
        out = DistributedVector(self.space, self.owned.copy())
        out._ghosts = self._ghosts
        return out

    def zeros_like(self):
        return DistributedVector(self.space)

    def dot(self, other) -> float:
        return self.comm.allreduce(float(np.dot(self.owned, other.owned)), "sum")

    def norm(self) -> float:
        return float(np.sqrt(self.dot(self)))

    def axpy(self, alpha, x):
        self.owned += alpha * x.owned
        return self

    def scale(self, alpha):
        self.owned *= alpha
        return self

    def __add__(self, other):
        return DistributedVector(self.space, self.owned + other.owned)

    def __sub__(self, other):
        return DistributedVector(self.space, self.owned - other.owned)

    def __repr__(self):
        return (f"DistributedVector(size={self.space.size}, owned=[{self.space.start}, "
                f"{self.space.stop}), ghosts={len(self.space.ghosts)})")


class BlockVector:
    """Ordered (velocity, pressure) pair of distributed vectors."""

    def __init__(self, blocks):
        self.blocks = tuple(blocks)

    @classmethod
    def zeros(cls, spaces):
        return cls(DistributedVector(s) for s in spaces)

    @property
    def u(self) -> DistributedVector:
        return self.blocks[0]

    @property
    def p(self) -> DistributedVector:
        return self.blocks[1]

    @property
    def comm(self):
        return self.blocks[0].comm

    @property
    def spaces(self):
        return tuple(b.space for b in self.blocks)

    def copy(self):
        return BlockVector(b.copy() for b in self.blocks)

    def zeros_like(self):
        return BlockVector(b.zeros_like() for b in self.blocks)

    def update_ghost_values(self):
        for b in self.blocks:
            b.update_ghost_values()
        return self

    def dot(self, other) -> float:
        local = sum(float(np.dot(a.owned, b.owned)) for a, b in zip(self.blocks, other.blocks))
        return self.comm.allreduce(local, "sum")

    def norm(self) -> float:
        return float(np.sqrt(self.dot(self)))

    def axpy(self, alpha, x):
        for a, b in zip(self.blocks, x.blocks):
            a.axpy(alpha, b)
        return self

    def scale(self, alpha):
        for b in self.blocks:
            b.scale(alpha)
        return self

    def __add__(self, other):
        return BlockVector(a + b for a, b in zip(self.blocks, other.blocks))

    def __sub__(self, other):
        return BlockVector(a - b for a, b in zip(self.blocks, other.blocks))

    def owned_array(self) -> np.ndarray:
        return np.concatenate([b.owned for b in self.blocks])

    def gather(self) -> np.ndarray:
        """Monolithic array (velocity block first) replicated on every rank. Collective."""
        return np.concatenate([np.concatenate(b.comm.allgather(b.owned)) for b in self.blocks])

    @classmethod
    def from_global(cls, spaces, values):
        """Inverse of :meth:`gather`: keep this rank's owned slice of each block."""
        values = np.asarray(values, dtype=float).ravel()
        total = sum(s.size for s in spaces)
        if values.shape != (total,):
            raise DiscretizationError(f"monolithic array has {values.size} entries, expected {total}")
        blocks, offset = [], 0
        for s in spaces:
            blocks.append(DistributedVector(s, values[offset + s.start:offset + s.stop].copy()))
            offset += s.size
        return cls(blocks)

    def __repr__(self):
        return f"BlockVector({', '.join(repr(b) for b in self.blocks)})"
