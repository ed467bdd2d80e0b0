"""pynsfem.assembly.local_assembler
Batched element kernels for Taylor–Hood P2/P1 triangles.

Local velocity unknowns are ordered component-major: index ``a * 6 + i``
for component ``a`` and lattice node ``i``. All kernels return arrays with a
leading cell axis, computed with ``einsum`` over the whole batch.
"""
from typing import Callable, Sequence

import numpy as np

from pynsfem.core.mesh import Mesh
from pynsfem.fem.reference import get_reference
from pynsfem.fem.transform import affine_geometry, map_gradients, x_mapping
from pynsfem.integration.quadrature import edge as edge_rule
from pynsfem.integration.quadrature import volume


def _block_diagonal(S):
    """(nc, 6, 6) scalar block -> (nc, 2, 6, 2, 6) vector block."""
    out = np.zeros((S.shape[0], 2, 6, 2, 6))
    out[:, 0, :, 0, :] = S
    out[:, 1, :, 1, :] = S
    return out


class TaylorHoodKernel:
    """Quadrature data and local matrices for a fixed set of cells."""

    def __init__(self, mesh: Mesh, cells: np.ndarray, quad_degree: int = 5):
        self.cells = np.asarray(cells, dtype=np.int64)
        pts, wts = volume("tri", quad_degree)
        self.N2, dN2 = get_reference("tri", 2).tabulate(pts)
        self.N1, _ = get_reference("tri", 1).tabulate(pts)
        self._NN = np.einsum("qi,qj->qij", self.N2, self.N2)

        corners = mesh.corner_coordinates(self.cells)
        detJ, invJ = affine_geometry(corners)
        self.w = wts[None, :] * np.abs(detJ)[:, None]          # (nc, nq)
        self.G2 = map_gradients(dN2, invJ)                       # (nc, nq, 6, 2)
        self.xq = x_mapping(corners, pts)                        # (nc, nq, 2)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    # ----- constant (Stokes) parts ------------------------------------
    def viscous(self, nu: float) -> np.ndarray:
        S = nu * np.einsum("cq,cqik,cqjk->cij", self.w, self.G2, self.G2)
        return _block_diagonal(S).reshape(-1, 12, 12)

    def divergence(self) -> np.ndarray:
        """Velocity-row / pressure-column coupling ``-(q_j, div phi_i)``, (nc, 12, 3)."""
        return -np.einsum("cq,cqia,qj->caij", self.w, self.G2, self.N1).reshape(-1, 12, 3)

    def pressure_mass(self, nu: float) -> np.ndarray:
        return np.einsum("cq,qi,qj->cij", self.w, self.N1, self.N1) / nu

    def body_force(self, f: Callable) -> np.ndarray:
        fx, fy = f(self.xq[..., 0], self.xq[..., 1])
        fq = np.stack(np.broadcast_arrays(fx, fy), axis=-1) * np.ones_like(self.xq)
        return np.einsum("cq,qi,cqa->cai", self.w, self.N2, fq).reshape(-1, 12)

    # ----- state dependent (Oseen) parts ------------------------------
    def sample(self, U: np.ndarray):
        """Velocity (nc, nq, 2) and gradient (nc, nq, a, b) = d_b u_a from (nc, 2, 6) coefficients."""
        uq = np.einsum("cai,qi->cqa", U, self.N2)
        Gu = np.einsum("cai,cqib->cqab", U, self.G2)
        return uq, Gu

    def convection(self, U: np.ndarray) -> np.ndarray:
        """(u_k . grad) u . v + (u . grad) u_k . v for trial u, test v."""
        uq, Gu = self.sample(U)
        adv = np.einsum("cqk,cqjk->cqj", uq, self.G2)
        C1 = np.einsum("cq,qi,cqj->cij", self.w, self.N2, adv)
        C = np.einsum("cq,qij,cqab->caibj", self.w, self._NN, Gu)
        return (C + _block_diagonal(C1)).reshape(-1, 12, 12)

    def convection_rhs(self, U: np.ndarray) -> np.ndarray:
        """(u_k . grad) u_k . v."""
        uq, Gu = self.sample(U)
        self_adv = np.einsum("cqk,cqak->cqa", uq, Gu)
        return np.einsum("cq,qi,cqa->cai", self.w, self.N2, self_adv).reshape(-1, 12)


class BoundaryKernel:
    """Edge quadrature on boundary edges of P2 cells.

    Provides, per edge and quadrature point: physical points, weights
    (including the edge length), P2/P1 values, physical P2 gradients and
    the outward unit normal.
    """

    def __init__(self, mesh: Mesh, edges: Sequence, order: int = 3):
        self.edges = list(edges)
        ne = len(self.edges)
        self.cells = np.array([e.element for e in self.edges], dtype=np.int64)
        local = np.array([e.local_index for e in self.edges], dtype=np.int64)
        self.normals = np.array([e.normal for e in self.edges]).reshape(ne, 2)
        lengths = np.array([e.length for e in self.edges])

        ref2, ref1 = get_reference("tri", 2), get_reference("tri", 1)
        tab = [edge_rule(k, order) for k in range(3)]
        ref_pts = np.array([tab[k][0] for k in range(3)])        # (3, nq, 2)
        t_w = tab[0][1]
        N2 = np.array([ref2.tabulate(p)[0] for p in ref_pts])   # (3, nq, 6)
        dN2 = np.array([ref2.tabulate(p)[1] for p in ref_pts])  # (3, nq, 6, 2)
        N1 = np.array([ref1.tabulate(p)[0] for p in ref_pts])

        self.N2 = N2[local]
        self.N1 = N1[local]
        self.w = lengths[:, None] * t_w[None, :]
        corners = mesh.corner_coordinates(self.cells)
        _, invJ = affine_geometry(corners)
        self.G2 = np.einsum("eqik,ekl->eqil", dN2[local], invJ)
        self.xq = x_mapping(corners, ref_pts[local])

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    def normal_traction(self, value) -> np.ndarray:
        """-value * int n . v ds per edge, (ne, 12) in component-major order."""
        if callable(value):
            pq = np.broadcast_to(value(self.xq[..., 0], self.xq[..., 1]), self.w.shape)
        else:
            pq = np.full(self.w.shape, float(value))
        return -np.einsum("eq,eqi,ea->eai", self.w * pq, self.N2, self.normals).reshape(-1, 12)
