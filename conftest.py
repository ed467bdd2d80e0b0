# conftest.py
import copy
import threading

import matplotlib
import numpy as np
import pytest

from pynsfem.parallel.comm import Communicator, fold


@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Switch to a non-interactive backend for all tests."""
    matplotlib.use('Agg')


class _Group:
    def __init__(self, size, timeout):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=timeout)
        self.slots = [None] * size


class ThreadCommunicator(Communicator):
    """In-process rank of a thread group; collectives meet at a shared barrier."""

    def __init__(self, group: _Group, rank: int):
        self._group = group
        self._rank = rank

    @property
    def rank(self):
        return self._rank

    @property
    def size(self):
        return self._group.size

    def _exchange(self, obj):
        g = self._group
        g.slots[self._rank] = obj
        g.barrier.wait()
        out = copy.deepcopy(g.slots)
        g.barrier.wait()
        return out

    def allreduce(self, value, op="sum"):
        return fold(self._exchange(value), op)

    def allgather(self, obj):
        return self._exchange(obj)

    def alltoall(self, objs):
        if len(objs) != self.size:
            raise ValueError(f"alltoall expects one entry per rank ({self.size}), got {len(objs)}")
        table = self._exchange(list(objs))
        return [table[src][self._rank] for src in range(self.size)]

    def bcast(self, obj, root=0):
        return self._exchange(obj)[root]

    def barrier(self):
        self._group.barrier.wait()


def run_spmd(n_ranks, fn, *args, timeout=120.0, **kwargs):
    """Run ``fn(comm, *args, **kwargs)`` on ``n_ranks`` threads; results by rank."""
    group = _Group(n_ranks, timeout)
    results = [None] * n_ranks
    errors = [None] * n_ranks

    def target(rank):
        try:
            results[rank] = fn(ThreadCommunicator(group, rank), *args, **kwargs)
        except BaseException as exc:  # re-raised in the calling thread
            errors[rank] = exc
            group.barrier.abort()

    threads = [threading.Thread(target=target, args=(r,)) for r in range(n_ranks)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    real = [e for e in errors if e is not None and not isinstance(e, threading.BrokenBarrierError)]
    if real:
        raise real[0]
    if any(e is not None for e in errors):
        raise next(e for e in errors if e is not None)
    return results


@pytest.fixture
def spmd():
    """``spmd(n, fn, *args)`` runs ``fn(comm, *args)`` on n in-process ranks."""
    return run_spmd


def node_permutation(dof_handler):
    """Monolithic indices listed by (node id, component), whatever the rank count."""
    has_u = dof_handler.velocity_dofs[:, 0] >= 0
    u = dof_handler.velocity_dofs[has_u].ravel()
    p = dof_handler.pressure_dofs[dof_handler.pressure_dofs >= 0] + dof_handler.velocity_space.size
    return np.concatenate((u, p))


@pytest.fixture
def node_order():
    """``node_order(dh)`` permutes gathered monolithic arrays into node order."""
    return node_permutation
