# pynsfem.fem.reference
"""
Reference-element factory for Lagrange triangles.
"""
from functools import lru_cache

import numpy as np

from pynsfem.fem.reference.tri_pn import tri_pn


class Ref:
    def __init__(self, poly_order, shape_lambda, deriv_lambdas):
        self.poly_order = poly_order
        self.n_dofs = (poly_order + 1) * (poly_order + 2) // 2
        self.shape_lambda = shape_lambda
        self.deriv_lambdas = deriv_lambdas

    @lru_cache(maxsize=None)
    def shape(self, xi, eta):
        return np.asarray(self.shape_lambda(xi, eta), dtype=float).ravel()

    @lru_cache(maxsize=None)
    def grad(self, xi, eta):
        dxi = np.asarray(self.deriv_lambdas[(1, 0)](xi, eta), dtype=float).ravel()
        deta = np.asarray(self.deriv_lambdas[(0, 1)](xi, eta), dtype=float).ravel()
        return np.column_stack((dxi, deta))

    def tabulate(self, points):
        """Values (nq, n_dofs) and reference gradients (nq, n_dofs, 2) at points."""
        pts = np.atleast_2d(np.asarray(points, dtype=float))
        values = np.array([self.shape(float(x), float(y)) for x, y in pts])
        grads = np.array([self.grad(float(x), float(y)) for x, y in pts])
        return values, grads


@lru_cache(maxsize=None)
def get_reference(element_type: str, poly_order: int = 1):
    if element_type != "tri":
        raise KeyError(element_type)
    shape_l, deriv_lambdas = tri_pn(poly_order)
    return Ref(poly_order, shape_l, deriv_lambdas)
