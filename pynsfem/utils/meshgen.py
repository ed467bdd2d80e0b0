"""pynsfem.utils.meshgen
Mesh generators: structured rectangles and the Schäfer–Turek cylinder channel.
"""
import logging
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import Delaunay

from pynsfem.core.mesh import Mesh

__all__ = ["delaunay_points", "promote_to_p2", "structured_triangles",
           "channel_with_cylinder", "tag_channel_boundaries"]

logger = logging.getLogger(__name__)


def _make_ccw(pts, elems):
    a, b, c = pts[elems[:, 0]], pts[elems[:, 1]], pts[elems[:, 2]]
    signed = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    cw = signed < 0
    elems[cw] = elems[cw][:, [0, 2, 1]]
    return elems


def delaunay_points(pts: np.ndarray):
    """Delaunay triangulation of a point cloud with CCW triangles."""
    tri = Delaunay(pts)
    return _make_ccw(pts, tri.simplices.copy())


def promote_to_p2(pts: np.ndarray, triangles: np.ndarray):
    """
    Add one node per edge and return (nodes, P2 connectivity).

    Mid nodes are appended after the vertices in the order of the sorted
    unique edge list, so the result does not depend on the cell order.
    """
    pts = np.asarray(pts, dtype=float)
    # drop points no triangle uses (hole interiors, qhull coplanar points)
    used, tris = np.unique(np.asarray(triangles, dtype=np.int64), return_inverse=True)
    pts = pts[used]
    tris = _make_ccw(pts, tris.reshape(-1, 3))
    pairs = np.stack([tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]], axis=1)  # (n, 3, 2)
    keys = np.sort(pairs.reshape(-1, 2), axis=1)
    edges, inverse = np.unique(keys, axis=0, return_inverse=True)
    inverse = inverse.ravel().reshape(-1, 3) + len(pts)
    mids = 0.5 * (pts[edges[:, 0]] + pts[edges[:, 1]])
    nodes = np.vstack([pts, mids])
    cells = np.column_stack([tris[:, 0], inverse[:, 0], tris[:, 1],
                             inverse[:, 2], inverse[:, 1], tris[:, 2]])
    return nodes, cells


def structured_triangles(Lx: float, Ly: float, *, nx: int, ny: int,
                         offset: Optional[Tuple[float, float]] = None):
    """
    P2 triangles on [0, Lx] x [0, Ly]: every base quad is cut along its
    bottom-left / top-right diagonal. Returns (nodes, P2 connectivity).
    """
    if nx < 1 or ny < 1:
        raise ValueError("nx and ny must be positive")
    x = np.linspace(0.0, Lx, nx + 1)
    y = np.linspace(0.0, Ly, ny + 1)
    X, Y = np.meshgrid(x, y)
    pts = np.column_stack([X.ravel(), Y.ravel()])
    if offset is not None:
        pts += np.asarray(offset, dtype=float)[None, :]
    j, i = np.meshgrid(np.arange(ny), np.arange(nx), indexing="ij")
    bl = (j * (nx + 1) + i).ravel()
    br, tl = bl + 1, bl + nx + 1
    tr = tl + 1
    tris = np.vstack([np.column_stack([bl, br, tr]), np.column_stack([bl, tr, tl])])
    return promote_to_p2(pts, tris)


def channel_with_cylinder(length: float = 2.2, height: float = 0.41,
                          center: Tuple[float, float] = (0.2, 0.2), radius: float = 0.05,
                          h: float = 0.02, n_circle: int = 64):
    """
    Triangulate the benchmark channel with a circular hole.

    Concentric rings of ``n_circle`` points grow geometrically from the
    cylinder until their spacing reaches ``h``; the rest of the channel is
    filled with a lattice of spacing ``h``. The point cloud is Delaunay
    triangulated and cells whose centroid falls inside the hole are removed.

    Returns:
        Mesh: a P2 mesh tagged with inlet/outlet/wall/obstacle.
    """
    cx, cy = center
    clearance = min(cx, cy, height - cy, length - cx)
    if radius >= clearance:
        raise ValueError("cylinder does not fit in the channel")

    growth = 1.0 + 2.0 * np.pi / n_circle
    r_max = clearance - 0.5 * h
    radii = [radius]
    while radii[-1] * growth <= r_max and 2.0 * np.pi * radii[-1] / n_circle < h:
        radii.append(radii[-1] * growth)
    theta = 2.0 * np.pi * np.arange(n_circle) / n_circle
    rings = [np.column_stack([cx + r * np.cos(theta + k * np.pi / n_circle),
                              cy + r * np.sin(theta + k * np.pi / n_circle)])
             for k, r in enumerate(radii)]

    nx = max(2, int(round(length / h)))
    ny = max(2, int(round(height / h)))
    X, Y = np.meshgrid(np.linspace(0.0, length, nx + 1), np.linspace(0.0, height, ny + 1))
    lattice = np.column_stack([X.ravel(), Y.ravel()])
    keep = np.hypot(lattice[:, 0] - cx, lattice[:, 1] - cy) > radii[-1] + 0.6 * h
    pts = np.vstack(rings + [lattice[keep]])

    tris = delaunay_points(pts)
    centroid = pts[tris].mean(axis=1)
    tris = tris[np.hypot(centroid[:, 0] - cx, centroid[:, 1] - cy) > radius]
    nodes, cells = promote_to_p2(pts, tris)
    mesh = Mesh(nodes, cells)
    tag_channel_boundaries(mesh, length, height, center, radius)
    logger.info("channel mesh: %d cells, %d nodes, %d rings", mesh.n_elements, mesh.n_nodes, len(radii))
    return mesh


def tag_channel_boundaries(mesh: Mesh, length: float, height: float,
                           center: Tuple[float, float], radius: float):
    cx, cy = center
    mesh.tag_boundary_edges({
        "inlet": lambda x, y: np.isclose(x, 0.0),
        "outlet": lambda x, y: np.isclose(x, length),
        "wall": lambda x, y: np.isclose(y, 0.0) | np.isclose(y, height),
        "obstacle": lambda x, y: np.hypot(x - cx, y - cy) < radius * 1.05,
    })
    return mesh
