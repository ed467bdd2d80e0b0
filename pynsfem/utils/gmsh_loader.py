"""pynsfem.utils.gmsh_loader
Read triangle meshes written by Gmsh and turn physical line groups into
boundary tags.
"""
import logging
from typing import Dict, Optional

import meshio
import numpy as np

from pynsfem.core.mesh import Mesh
from pynsfem.errors import DiscretizationError
from pynsfem.utils.meshgen import promote_to_p2

logger = logging.getLogger(__name__)

# Gmsh triangle6 (v0, v1, v2, m01, m12, m20) -> lattice (v0, m01, v1, m20, m12, v2)
_GMSH_TRIANGLE6 = [0, 3, 1, 5, 4, 2]


def _physical_names(field_data, dim: int) -> Dict[int, str]:
    return {int(v[0]): name for name, v in field_data.items() if int(v[1]) == dim}


def load_gmsh(path: str, tag_names: Optional[Dict[int, str]] = None) -> Mesh:
    """
    Load a ``.msh`` file into a P2 :class:`Mesh`.

    Linear triangles are promoted to P2; quadratic ones are used as-is.
    Line elements carrying a physical id tag the matching boundary edges,
    named by the file's physical names or by ``tag_names`` (id -> name),
    which takes precedence.
    """
    msh = meshio.read(path)
    points = np.asarray(msh.points[:, :2], dtype=float)
    physical = msh.cell_data.get("gmsh:physical")
    names = _physical_names(msh.field_data, 1)
    names.update(tag_names or {})

    blocks = {}
    for b in msh.cells:
        blocks.setdefault(b.type, []).append(np.asarray(b.data, dtype=np.int64))
    if "triangle6" in blocks:
        cells = np.vstack(blocks["triangle6"])[:, _GMSH_TRIANGLE6]
        mesh = Mesh(points, cells)
        vertex_map = np.arange(len(points))
    elif "triangle" in blocks:
        tris = np.vstack(blocks["triangle"])
        used = np.unique(tris)
        nodes, cells = promote_to_p2(points, tris)
        mesh = Mesh(nodes, cells)
        # promote_to_p2 compacts the vertex numbering to the used points
        vertex_map = np.full(len(points), -1, dtype=np.int64)
        vertex_map[used] = np.arange(len(used))
    else:
        raise DiscretizationError(f"{path}: no triangle cells found")

    n_tagged = 0
    for i, block in enumerate(msh.cells):
        if block.type not in ("line", "line3") or physical is None:
            continue
        segs = vertex_map[np.asarray(block.data[:, :2], dtype=np.int64)]
        ids = np.asarray(physical[i])
        for pid in np.unique(ids):
            tag = names.get(int(pid), str(int(pid)))
            mesh.tag_edges_by_vertices(segs[ids == pid], tag)
            n_tagged += 1
    logger.info("Loaded %s: %d cells, %d nodes, %d boundary groups",
                path, mesh.n_elements, mesh.n_nodes, n_tagged)
    return mesh
