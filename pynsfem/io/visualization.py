"""pynsfem.io.visualization"""
from typing import Optional

import matplotlib.pyplot as plt
import matplotlib.tri as mtri
import numpy as np

from pynsfem.core.dofhandler import DofHandler
from pynsfem.parallel.vector import BlockVector

# split every P2 cell into its four linear sub-triangles for plotting
_SUB_TRIANGLES = np.array([[0, 1, 3], [1, 2, 4], [3, 4, 5], [1, 4, 3]])


def plot_solution(dof_handler: DofHandler, solution: BlockVector, field: str = "velocity",
                  ax=None, title: Optional[str] = None, cmap: str = "viridis", show_mesh: bool = False):
    """
    Tripcolor plot of the velocity magnitude or the pressure.

    Collective (gathers the solution); the figure is drawn on rank 0 only,
    which returns the axes. Other ranks return None.
    """
    if field not in ("velocity", "pressure"):
        raise ValueError("field must be 'velocity' or 'pressure'")
    vel, pres = dof_handler.nodal_fields(solution)
    if not dof_handler.comm.is_root:
        return None

    mesh = dof_handler.mesh
    tris = mesh.elements_connectivity[:, _SUB_TRIANGLES].reshape(-1, 3)
    tri = mtri.Triangulation(mesh.nodes_x_y_pos[:, 0], mesh.nodes_x_y_pos[:, 1], tris)
    values = np.linalg.norm(vel, axis=1) if field == "velocity" else pres

    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 3))
    tpc = ax.tripcolor(tri, values, shading="gouraud", cmap=cmap)
    if show_mesh:
        ax.triplot(mtri.Triangulation(mesh.nodes_x_y_pos[:, 0], mesh.nodes_x_y_pos[:, 1],
                                      mesh.corner_connectivity), lw=0.3, color="k")
    ax.figure.colorbar(tpc, ax=ax, label="|u|" if field == "velocity" else "p")
    ax.set_aspect("equal")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title(title or field)
    return ax
