import logging
from pathlib import Path
from typing import Sequence

import meshio
import numpy as np

from pynsfem.core.dofhandler import DofHandler
from pynsfem.parallel.vector import BlockVector

logger = logging.getLogger(__name__)

# lattice (v0, m01, v1, m02, m12, v2) -> VTK quadratic triangle (v0, v1, v2, m01, m12, m20)
_VTK_TRIANGLE6 = [0, 2, 5, 1, 4, 3]


def _group_fields(field_names: Sequence[str]):
    """Collapse per-component labels into (name, components) groups, in order."""
    groups = []
    for comp, name in enumerate(field_names):
        if groups and groups[-1][0] == name:
            groups[-1][1].append(comp)
        else:
            groups.append((name, [comp]))
    return groups


def export_vtk(filename: str, dof_handler: DofHandler, solution: BlockVector,
               field_names: Sequence[str] = ("velocity", "velocity", "pressure"),
               partition: bool = True):
    """
    Exports a velocity/pressure solution to a VTK (.vtu) file.

    Args:
        filename: The path to the output file (e.g., 'results/solution.vtu').
        dof_handler: Block layout the solution lives on.
        solution: Distributed (velocity, pressure) vector.
        field_names: One label per component (ux, uy, p); consecutive equal
            labels are written as one vector field.
        partition: Also write the owning rank of each cell as 'subdomain'.

    Collective; only rank 0 writes. Returns the path on rank 0, None elsewhere.
    """
    if len(field_names) != 3:
        raise ValueError("field_names needs one label per component (ux, uy, p)")
    vel, pres = dof_handler.nodal_fields(solution)
    if not dof_handler.comm.is_root:
        return None

    mesh = dof_handler.mesh
    components = np.column_stack((vel, pres))
    point_data = {}
    for name, comps in _group_fields(field_names):
        data = components[:, comps]
        if len(comps) == 1:
            point_data[name] = data[:, 0]
        else:
            # pad 2D vectors to 3D as VTK expects
            v = np.zeros((mesh.n_nodes, 3))
            v[:, :len(comps)] = data
            point_data[name] = v

    points_3d = np.pad(mesh.nodes_x_y_pos, ((0, 0), (0, 1)), constant_values=0)
    cells = [meshio.CellBlock("triangle6", mesh.elements_connectivity[:, _VTK_TRIANGLE6])]
    cell_data = {"subdomain": [dof_handler.cell_owner.astype(np.int32)]} if partition else None

    path = Path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    meshio.Mesh(points_3d, cells, point_data=point_data, cell_data=cell_data).write(str(path))
    logger.info("Solution exported to %s", path)
    return path


def write_result(directory, dof_handler: DofHandler, field_names: Sequence[str],
                 solution: BlockVector, basename: str = "solution"):
    """Write ``<directory>/<basename>.vtu`` with the given component labels."""
    return export_vtk(str(Path(directory) / f"{basename}.vtu"), dof_handler, solution, field_names)
