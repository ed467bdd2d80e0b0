"""pynsfem.integration.quadrature
Gauss rules for edges and the reference triangle (0,0)-(1,0)-(0,1).
"""
# pynsfem.integration.quadrature
from functools import lru_cache

import numpy as np
from numpy.polynomial.legendre import leggauss


# -------------------------------------------------------------------------
# 1‑D Gauss–Legendre
# -------------------------------------------------------------------------
def gauss_legendre(order: int):
    if order < 1:
        raise ValueError(order)
    return leggauss(order)  # (points, weights) on [-1, 1]


def gl01(order: int):
    """Gauss–Legendre nodes and weights mapped to [0,1]."""
    xi, w = gauss_legendre(int(order))
    return 0.5 * (xi + 1.0), 0.5 * w


# -------------------------------------------------------------------------
# Triangle rule (collapsed square → reference triangle)
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def tri_rule(degree: int):
    """Rule exact for polynomials of total degree <= ``degree``.

    The Duffy map (u, v) -> (u, v(1-u)) adds one power of (1-u) to the
    integrand, so ceil((degree + 2) / 2) Gauss points per direction suffice.
    """
    n = max(1, (int(degree) + 3) // 2)
    u, w = gl01(n)
    U, V = np.meshgrid(u, u, indexing="ij")
    WU, WV = np.meshgrid(w, w, indexing="ij")
    pts = np.column_stack([U.ravel(), (V * (1.0 - U)).ravel()])
    wts = (WU * WV * (1.0 - U)).ravel()
    return pts, wts


# -------------------------------------------------------------------------
# Edge rules on the reference triangle
# -------------------------------------------------------------------------
# local edge -> (start vertex, end vertex) in reference coordinates, CCW
_REF_VERTICES = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
EDGE_VERTICES = ((0, 1), (1, 2), (2, 0))


@lru_cache(maxsize=None)
def edge(edge_index: int, order: int = 3):
    """Reference points on a triangle edge and the parameter weights on [0, 1].

    Multiply the weights by the physical edge length to integrate.
    """
    if edge_index not in (0, 1, 2):
        raise IndexError(edge_index)
    t, w = gl01(order)
    a, b = EDGE_VERTICES[edge_index]
    pts = _REF_VERTICES[a][None, :] + t[:, None] * (_REF_VERTICES[b] - _REF_VERTICES[a])[None, :]
    return pts, w


def volume(element_type: str, degree: int = 5):
    if element_type == 'tri':
        return tri_rule(degree)
    raise KeyError(element_type)
