"""pynsfem.fem.transform
Reference → physical mapping for straight-sided (affine) triangles.

All functions work on batches of cells; ``corners`` is an array of shape
(n_cells, 3, 2) holding the vertex coordinates of each cell.
"""
import numpy as np


def jacobian(corners):
    """J[c] = [[x1-x0, x2-x0], [y1-y0, y2-y0]], shape (n_cells, 2, 2)."""
    corners = np.asarray(corners, dtype=float)
    J = np.empty((corners.shape[0], 2, 2))
    J[:, :, 0] = corners[:, 1] - corners[:, 0]
    J[:, :, 1] = corners[:, 2] - corners[:, 0]
    return J


def affine_geometry(corners):
    """Return (detJ, invJ) for a batch of cells."""
    J = jacobian(corners)
    detJ = J[:, 0, 0] * J[:, 1, 1] - J[:, 0, 1] * J[:, 1, 0]
    invJ = np.empty_like(J)
    invJ[:, 0, 0] = J[:, 1, 1]
    invJ[:, 0, 1] = -J[:, 0, 1]
    invJ[:, 1, 0] = -J[:, 1, 0]
    invJ[:, 1, 1] = J[:, 0, 0]
    with np.errstate(divide="ignore", invalid="ignore"):
        invJ /= detJ[:, None, None]
    return detJ, invJ


def x_mapping(corners, ref_points):
    """Physical coordinates of reference points, shape (n_cells, nq, 2).

    ``ref_points`` is either shared by all cells (nq, 2) or given per cell
    (n_cells, nq, 2).
    """
    corners = np.asarray(corners, dtype=float)
    ref_points = np.atleast_2d(ref_points)
    J = jacobian(corners)
    subscripts = "cij,cqj->cqi" if ref_points.ndim == 3 else "cij,qj->cqi"
    return corners[:, None, 0, :] + np.einsum(subscripts, J, ref_points)


def map_gradients(ref_grads, invJ):
    """Push reference gradients (nq, n, 2) forward: grad_x = J^{-T} grad_xi.

    Returns an array of shape (n_cells, nq, n, 2).
    """
    return np.einsum("qik,ckl->cqil", ref_grads, invJ)


def barycentric(corners, point):
    """Barycentric coordinates (l0, l1, l2) of ``point`` in each cell."""
    corners = np.asarray(corners, dtype=float)
    detJ, invJ = affine_geometry(corners)
    xi = np.einsum("cij,cj->ci", invJ, np.asarray(point, dtype=float)[None, :] - corners[:, 0])
    return np.column_stack((1.0 - xi[:, 0] - xi[:, 1], xi[:, 0], xi[:, 1]))
