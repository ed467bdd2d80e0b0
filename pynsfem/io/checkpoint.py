"""Per-rank persistence of the owned part of a block vector."""
from pathlib import Path

import numpy as np

from pynsfem.errors import DiscretizationError
from pynsfem.parallel.vector import BlockVector


def _rank_file(prefix, rank: int) -> Path:
    return Path(f"{prefix}.rank{rank:04d}.npz")


def save_block_vector(prefix, vector: BlockVector) -> Path:
    """Write owned ranges and values of every block to ``<prefix>.rankNNNN.npz``."""
    rank = vector.comm.rank
    path = _rank_file(prefix, rank)
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays = {}
    for i, b in enumerate(vector.blocks):
        arrays[f"range_{i}"] = np.array([b.space.start, b.space.stop, b.space.size], dtype=np.int64)
        arrays[f"values_{i}"] = b.owned
    np.savez(path, n_blocks=len(vector.blocks), **arrays)
    return path


def load_block_vector(prefix, template: BlockVector) -> BlockVector:
    """Read the owned values written by :func:`save_block_vector` and refresh ghosts.

    The stored ranges must match the layout of ``template``. Collective.
    """
    path = _rank_file(prefix, template.comm.rank)
    out = template.zeros_like()
    with np.load(path) as data:
        if int(data["n_blocks"]) != len(out.blocks):
            raise DiscretizationError(f"{path}: block count mismatch")
        for i, b in enumerate(out.blocks):
            expected = [b.space.start, b.space.stop, b.space.size]
            if data[f"range_{i}"].tolist() != expected:
                raise DiscretizationError(f"{path}: block {i} range {data[f'range_{i}'].tolist()} "
                                          f"does not match layout {expected}")
            b.owned[:] = data[f"values_{i}"]
    return out.update_ghost_values()
