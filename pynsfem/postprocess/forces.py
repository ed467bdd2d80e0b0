"""pynsfem.postprocess.forces
Drag/lift by a boundary stress integral and a two-point pressure probe.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numba
import numpy as np

from pynsfem.assembly.local_assembler import BoundaryKernel
from pynsfem.core.dofhandler import DofHandler
from pynsfem.fem.transform import barycentric
from pynsfem.parallel.vector import BlockVector

logger = logging.getLogger(__name__)

PROBE_REDUCTIONS = ("rank", "max")


@dataclass
class ForceResult:
    drag: float
    lift: float
    pressure_difference: float
    probes_available: Tuple[bool, bool]

    def as_row(self):
        return [self.drag, self.lift, self.pressure_difference]


@numba.jit(nopython=True, cache=True)
def _locate_point(px, py, tri_xy, tol):
    """Index of the first triangle containing (px, py), or -1."""
    for c in range(tri_xy.shape[0]):
        x0, y0 = tri_xy[c, 0, 0], tri_xy[c, 0, 1]
        a, b = tri_xy[c, 1, 0] - x0, tri_xy[c, 2, 0] - x0
        d, e = tri_xy[c, 1, 1] - y0, tri_xy[c, 2, 1] - y0
        det = a * e - b * d
        if det == 0.0:
            continue
        xi = (e * (px - x0) - b * (py - y0)) / det
        eta = (-d * (px - x0) + a * (py - y0)) / det
        if xi >= -tol and eta >= -tol and xi + eta <= 1.0 + tol:
            return c
    return -1


def boundary_force(dof_handler: DofHandler, solution: BlockVector, viscosity: float,
                   boundary_tag: str = "obstacle") -> np.ndarray:
    """
    Local (this rank's owned cells) part of  int (nu grad u - p I) (-n) ds
    over ``boundary_tag``, where n is the outward normal of the fluid
    domain, i.e. -n points out of the obstacle.
    """
    mesh = dof_handler.mesh
    rank = dof_handler.comm.rank
    edges = [e for e in mesh.boundary_edges(boundary_tag) if dof_handler.cell_owner[e.element] == rank]
    kern = BoundaryKernel(mesh, edges)
    solution.update_ghost_values()
    U = solution.u.values_at(dof_handler.cell_velocity_dofs[kern.cells].ravel()).reshape(-1, 2, 6)
    P = solution.p.values_at(dof_handler.cell_pressure_dofs[kern.cells].ravel()).reshape(-1, 3)
    grad_u = np.einsum("eai,eqib->eqab", U, kern.G2)                 # d_b u_a
    p = np.einsum("ej,eqj->eq", P, kern.N1)
    stress = viscosity * grad_u - p[:, :, None, None] * np.eye(2)[None, None]
    traction = np.einsum("eqab,eb->eqa", stress, -kern.normals)
    return np.einsum("eq,eqa->a", kern.w, traction)


def probe_pressure(dof_handler: DofHandler, solution: BlockVector, point, tol: float = 1e-12):
    """Pressure at ``point`` if a locally owned cell contains it: (available, value).

    Collective (refreshes pressure ghosts).
    """
    solution.p.update_ghost_values()
    mesh = dof_handler.mesh
    cells = dof_handler.owned_cells
    tri_xy = np.ascontiguousarray(mesh.corner_coordinates(cells))
    c = _locate_point(float(point[0]), float(point[1]), tri_xy, tol)
    if c < 0:
        return False, 0.0
    lam = barycentric(tri_xy[c:c + 1], np.asarray(point, dtype=float))[0]
    pv = solution.p.values_at(dof_handler.cell_pressure_dofs[cells[c]])
    return True, float(lam @ pv)


def _reduce_probe(comm, available: bool, value: float, mode: str):
    """Resolve one probe value on rank 0. Returns (available, value) there, None elsewhere."""
    if mode == "rank":
        readings = comm.gather((available, value), root=0)
        if readings is None:
            return None
        for ok, v in readings:  # lowest available rank wins
            if ok:
                return True, v
        return False, float("nan")
    if mode == "max":
        flag = comm.reduce(np.array([1.0 if available else 0.0]), "max", root=0)
        v = comm.reduce(np.array([value if available else -np.inf]), "max", root=0)
        if flag is None:
            return None
        return bool(flag[0]), (float(v[0]) if flag[0] else float("nan"))
    raise ValueError(f"Unknown probe reduction '{mode}'; expected one of {PROBE_REDUCTIONS}")


def compute_lift_drag(dof_handler: DofHandler, solution: BlockVector, viscosity: float,
                      boundary_tag: str = "obstacle", scaling: float = 500.0,
                      probe_points: Sequence = ((0.15, 0.2), (0.25, 0.2)),
                      probe_reduction: str = "rank") -> Optional[ForceResult]:
    """
    Scaled drag/lift over ``boundary_tag`` and p(probe_0) - p(probe_1).

    Collective. The result lives on rank 0; other ranks get None.
    """
    comm = dof_handler.comm
    local = boundary_force(dof_handler, solution, viscosity, boundary_tag)
    total = comm.reduce(local, "sum", root=0)

    probes = []
    for pt in probe_points:
        ok, val = probe_pressure(dof_handler, solution, pt)
        probes.append(_reduce_probe(comm, ok, val, probe_reduction))
    if not comm.is_root:
        return None

    for (ok, _), pt in zip(probes, probe_points):
        if not ok:
            logger.warning("Pressure probe at %s is outside the mesh", tuple(pt))
    dp = probes[0][1] - probes[1][1]
    result = ForceResult(drag=float(total[0] * scaling), lift=float(total[1] * scaling),
                         pressure_difference=float(dp),
                         probes_available=(probes[0][0], probes[1][0]))
    logger.info("drag = %.8f, lift = %.8f, dp = %.8f", result.drag, result.lift, result.pressure_difference)
    return result
