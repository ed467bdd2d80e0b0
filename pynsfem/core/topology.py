from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(slots=True)
class Edge:
    """A boundary edge of a P2 triangle mesh.

    ``nodes`` are the end vertices in the counter-clockwise order of the
    owning cell ``element``; ``local_index`` is the edge number inside that
    cell (0: v0-v1, 1: v1-v2, 2: v2-v0).
    """
    gid: int
    nodes: Tuple[int, int]
    mid_node: int
    element: int
    local_index: int
    normal: np.ndarray
    length: float
    tag: Optional[str] = None

    @property
    def all_nodes(self) -> Tuple[int, int, int]:
        return (self.nodes[0], self.mid_node, self.nodes[1])
