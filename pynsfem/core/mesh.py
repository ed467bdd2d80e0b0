import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from pynsfem.core.topology import Edge
from pynsfem.errors import DiscretizationError

logger = logging.getLogger(__name__)


class Mesh:
    """
    Quadratic (P2) triangle mesh with straight edges.

    Each cell lists its six nodes in reference lattice order
    ``(v0, m01, v1, m02, m12, v2)``. The class derives the corner
    connectivity, the unique edge set and the boundary edges with their
    outward normals, and keeps string tags on boundary edges.
    """
    CORNERS = (0, 2, 5)
    # corner pairs of each local edge and the lattice index of its mid node
    _EDGE_TABLE = ((0, 1), (1, 2), (2, 0))
    _EDGE_MID = (1, 4, 3)

    def __init__(self, nodes: np.ndarray, element_connectivity: np.ndarray):
        self.nodes_x_y_pos = np.asarray(nodes, dtype=float)
        cells = np.asarray(element_connectivity, dtype=np.int64)
        if self.nodes_x_y_pos.ndim != 2 or self.nodes_x_y_pos.shape[1] != 2:
            raise DiscretizationError(f"nodes must have shape (n, 2), got {self.nodes_x_y_pos.shape}")
        if cells.ndim != 2 or cells.shape[1] != 6:
            raise DiscretizationError(f"P2 connectivity must have shape (n, 6), got {cells.shape}")
        if cells.size and (cells.min() < 0 or cells.max() >= len(self.nodes_x_y_pos)):
            raise DiscretizationError("element connectivity references nodes outside the node array")
        self.elements_connectivity = self._orient(cells)
        self.corner_connectivity = self.elements_connectivity[:, list(self.CORNERS)]
        self.n_elements = len(self.elements_connectivity)
        self.n_nodes = len(self.nodes_x_y_pos)
        self.vertex_nodes = np.unique(self.corner_connectivity)

        c = self.corner_coordinates()
        self.centroids = c.mean(axis=1)
        self.areas = 0.5 * self._signed_double_area(c)
        self.boundary_edges_list: List[Edge] = []
        self._build_topology()

    # ------------------------------------------------------------------
    @staticmethod
    def _signed_double_area(c):
        return ((c[:, 1, 0] - c[:, 0, 0]) * (c[:, 2, 1] - c[:, 0, 1])
                - (c[:, 1, 1] - c[:, 0, 1]) * (c[:, 2, 0] - c[:, 0, 0]))

    def _orient(self, cells):
        """Flip clockwise cells to counter-clockwise, reject degenerate ones."""
        c = self.nodes_x_y_pos[cells[:, list(self.CORNERS)]]
        area2 = self._signed_double_area(c)
        scale = max(np.ptp(self.nodes_x_y_pos, axis=0).max(), 1.0) ** 2 if len(self.nodes_x_y_pos) else 1.0
        bad = np.abs(area2) <= 1e-14 * scale
        if np.any(bad):
            raise DiscretizationError(f"{int(bad.sum())} degenerate cell(s), first id {int(np.flatnonzero(bad)[0])}")
        cells = cells.copy()
        cw = area2 < 0
        if np.any(cw):
            # swapping v1 and v2 in lattice order: (v0, m02, v2, m01, m12, v1)
            cells[cw] = cells[cw][:, [0, 3, 5, 1, 4, 2]]
            logger.debug("Reoriented %d clockwise cells", int(cw.sum()))
        return cells

    def _build_topology(self):
        """Unique edges, cell-edge incidence and boundary edges."""
        n = self.n_elements
        corners = self.corner_connectivity
        local = np.array(self._EDGE_TABLE)
        a = corners[:, local[:, 0]].ravel()             # (3n,)
        b = corners[:, local[:, 1]].ravel()
        keys = np.column_stack((np.minimum(a, b), np.maximum(a, b)))
        uniq, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
        inverse = inverse.ravel()
        if np.any(counts > 2):
            raise DiscretizationError("non-manifold mesh: an edge is shared by more than two cells")
        self.edges = uniq
        self.element_edges = inverse.reshape(n, 3)

        mids = self.elements_connectivity[:, list(self._EDGE_MID)].ravel()
        on_boundary = counts[inverse] == 1
        for gid, k in enumerate(np.flatnonzero(on_boundary)):
            eid, loc = divmod(int(k), 3)
            va, vb = int(a[k]), int(b[k])
            d = self.nodes_x_y_pos[vb] - self.nodes_x_y_pos[va]
            length = float(np.hypot(d[0], d[1]))
            normal = np.array([d[1], -d[0]]) / length  # outward for CCW cells
            self.boundary_edges_list.append(Edge(
                gid=gid, nodes=(va, vb), mid_node=int(mids[k]), element=eid,
                local_index=loc, normal=normal, length=length,
            ))
        self._vertex_key_to_edge = {
            (min(e.nodes), max(e.nodes)): e for e in self.boundary_edges_list
        }

    # ------------------------------------------------------------------
    def corner_coordinates(self, elements: Optional[np.ndarray] = None) -> np.ndarray:
        """Vertex coordinates (n, 3, 2) of the given (default: all) cells."""
        conn = self.corner_connectivity if elements is None else self.corner_connectivity[elements]
        return self.nodes_x_y_pos[conn]

    def tag_boundary_edges(self, tag_functions: Dict[str, Callable], overwrite: bool = False):
        """Tag boundary edges with the first predicate that holds on the whole edge.

        Predicates are called as ``f(x, y)`` with arrays and must be
        vectorized (``np.isclose`` and friends).
        """
        if not self.boundary_edges_list:
            return
        pts = np.array([[self.nodes_x_y_pos[e.nodes[0]], self.nodes_x_y_pos[e.mid_node],
                         self.nodes_x_y_pos[e.nodes[1]]] for e in self.boundary_edges_list])
        x, y = pts[..., 0], pts[..., 1]
        free = np.array([overwrite or e.tag is None for e in self.boundary_edges_list])
        for name, func in tag_functions.items():
            hit = np.all(np.broadcast_to(np.asarray(func(x, y), dtype=bool), x.shape), axis=1) & free
            for k in np.flatnonzero(hit):
                self.boundary_edges_list[k].tag = name
            free &= ~hit

    def tag_edges_by_vertices(self, vertex_pairs: Iterable[Sequence[int]], tag: str):
        """Tag the boundary edges joining the given vertex pairs."""
        missing = 0
        for va, vb in vertex_pairs:
            edge = self._vertex_key_to_edge.get((min(va, vb), max(va, vb)))
            if edge is None:
                missing += 1
                continue
            edge.tag = tag
        if missing:
            logger.warning("%d tagged segment(s) of '%s' are not boundary edges of the mesh", missing, tag)

    def boundary_edges(self, tag: Optional[str] = None) -> List[Edge]:
        if tag is None:
            return list(self.boundary_edges_list)
        return [e for e in self.boundary_edges_list if e.tag == tag]

    @property
    def boundary_tags(self) -> Tuple[str, ...]:
        return tuple(sorted({e.tag for e in self.boundary_edges_list if e.tag is not None}))

    def __repr__(self):
        return (f"Mesh(n_elements={self.n_elements}, n_nodes={self.n_nodes}, "
                f"n_boundary_edges={len(self.boundary_edges_list)})")
