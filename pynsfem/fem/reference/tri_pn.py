"""Lagrange P_n basis on the reference triangle (0,0)-(1,0)-(0,1).

Nodes are enumerated in lattice order: rows of constant eta from bottom to
top, xi increasing inside a row. For n=2 that gives (v0, m01, v1, m02, m12, v2),
for n=1 the three vertices.
"""
from functools import lru_cache

import sympy as sp


def lattice_nodes(n: int):
    """Reference coordinates of the P_n nodes as exact rationals."""
    return [(sp.Rational(i, n), sp.Rational(j, n))
            for j in range(n + 1) for i in range(n + 1 - j)]


@lru_cache(maxsize=None)
def tri_pn(n: int):
    """
    Return lambdified shape functions and first derivatives of the P_n element.

    Args:
        n: Polynomial order (>= 1).

    Returns:
        tuple: (shape_lambda, {(1, 0): dxi_lambda, (0, 1): deta_lambda})
    """
    if n < 1:
        raise ValueError(f"Polynomial order must be >= 1, got {n}.")
    xi, eta = sp.symbols("xi eta")
    nodes = lattice_nodes(n)
    monomials = [xi**px * eta**(d - px) for d in range(n + 1) for px in range(d + 1)]

    # Row k of V holds the monomials at node k; the Lagrange coefficients
    # are the columns of V^{-1}.
    V = sp.Matrix([[m.subs({xi: x0, eta: y0}) for m in monomials] for x0, y0 in nodes])
    try:
        coeffs = V.inv()
    except ValueError as exc:
        raise RuntimeError(f"Vandermonde matrix is singular for P{n}.") from exc

    basis = [sp.expand(sum(coeffs[j, k] * monomials[j] for j in range(len(monomials))))
             for k in range(len(nodes))]
    dxi = [sp.diff(phi, xi) for phi in basis]
    deta = [sp.diff(phi, eta) for phi in basis]

    shape_lambda = sp.lambdify((xi, eta), sp.Matrix(basis), "numpy")
    deriv_lambdas = {
        (1, 0): sp.lambdify((xi, eta), sp.Matrix(dxi), "numpy"),
        (0, 1): sp.lambdify((xi, eta), sp.Matrix(deta), "numpy"),
    }
    return shape_lambda, deriv_lambdas
