"""pynsfem.parallel.comm
Collective-communication port and its adapters.

The numerical core only talks to :class:`Communicator`; concrete backends
(serial, MPI through mpi4py) are selected from configuration with
:func:`get_communicator`.
"""
from abc import ABC, abstractmethod
from functools import reduce as _fold
from typing import Any, List, Optional

import numpy as np

_OPS = {
    "sum": lambda a, b: a + b,
    "max": lambda a, b: np.maximum(a, b),
    "min": lambda a, b: np.minimum(a, b),
}


def fold(values, op: str):
    """Combine per-rank contributions with a named reduction operator."""
    try:
        fn = _OPS[op]
    except KeyError:
        raise ValueError(f"Unknown reduction '{op}'; expected one of {sorted(_OPS)}") from None
    return _fold(fn, values)


class Communicator(ABC):
    """Blocking collectives over a fixed-size process group."""

    @property
    @abstractmethod
    def rank(self) -> int: ...

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def allreduce(self, value, op: str = "sum"): ...

    @abstractmethod
    def allgather(self, obj) -> List[Any]: ...

    @abstractmethod
    def alltoall(self, objs: List[Any]) -> List[Any]: ...

    @abstractmethod
    def bcast(self, obj, root: int = 0): ...

    @abstractmethod
    def barrier(self) -> None: ...

    def reduce(self, value, op: str = "sum", root: int = 0):
        """Reduce to ``root``; every other rank receives None."""
        out = self.allreduce(value, op)
        return out if self.rank == root else None

    def gather(self, obj, root: int = 0) -> Optional[List[Any]]:
        out = self.allgather(obj)
        return out if self.rank == root else None

    @property
    def is_root(self) -> bool:
        return self.rank == 0


class SerialCommunicator(Communicator):
    """Single-process group."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def allreduce(self, value, op: str = "sum"):
        fold([value], op)  # validates op
        return value.copy() if isinstance(value, np.ndarray) else value

    def allgather(self, obj):
        return [obj]

    def alltoall(self, objs):
        if len(objs) != 1:
            raise ValueError(f"alltoall expects one entry per rank (1), got {len(objs)}")
        return list(objs)

    def bcast(self, obj, root: int = 0):
        return obj

    def barrier(self) -> None:
        return None


class MPICommunicator(Communicator):
    """Adapter over an ``mpi4py`` communicator (COMM_WORLD by default)."""

    def __init__(self, comm=None):
        from mpi4py import MPI  # optional dependency, pip install pynsfem[mpi]

        self._MPI = MPI
        self._comm = MPI.COMM_WORLD if comm is None else comm
        self._ops = {"sum": MPI.SUM, "max": MPI.MAX, "min": MPI.MIN}

    @property
    def mpi_comm(self):
        """The wrapped mpi4py communicator (handed to PETSc objects)."""
        return self._comm

    @property
    def rank(self) -> int:
        return self._comm.Get_rank()

    @property
    def size(self) -> int:
        return self._comm.Get_size()

    def _op(self, op):
        try:
            return self._ops[op]
        except KeyError:
            raise ValueError(f"Unknown reduction '{op}'") from None

    def allreduce(self, value, op: str = "sum"):
        if isinstance(value, np.ndarray):
            send = np.ascontiguousarray(value)
            out = np.empty_like(send)
            self._comm.Allreduce(send, out, op=self._op(op))
            return out
        return self._comm.allreduce(value, op=self._op(op))

    def reduce(self, value, op: str = "sum", root: int = 0):
        if isinstance(value, np.ndarray):
            send = np.ascontiguousarray(value)
            out = np.empty_like(send) if self.rank == root else None
            self._comm.Reduce(send, out, op=self._op(op), root=root)
            return out
        return self._comm.reduce(value, op=self._op(op), root=root)

    def allgather(self, obj):
        return self._comm.allgather(obj)

    def gather(self, obj, root: int = 0):
        return self._comm.gather(obj, root=root)

    def alltoall(self, objs):
        return self._comm.alltoall(list(objs))

    def bcast(self, obj, root: int = 0):
        return self._comm.bcast(obj, root=root)

    def barrier(self) -> None:
        self._comm.Barrier()


def get_communicator(kind: str = "serial") -> Communicator:
    """Build the communicator named in the configuration ('serial' or 'mpi')."""
    if kind == "serial":
        return SerialCommunicator()
    if kind == "mpi":
        return MPICommunicator()
    raise ValueError(f"Unknown communicator '{kind}'; expected 'serial' or 'mpi'")
