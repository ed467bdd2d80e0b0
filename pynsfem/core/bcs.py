"""pynsfem.core.bcs
Boundary conditions and the analytic profiles used by the channel benchmark.
"""
from typing import Callable, Union

import numpy as np


class BoundaryCondition:
    """
    A condition on one tagged boundary part.

    ``value`` is a pure function of position: ``value(x, y) -> (ux, uy)`` for
    velocity Dirichlet data, or a constant/callable outlet pressure for a
    Neumann (do-nothing with prescribed pressure) condition.
    """

    def __init__(self, field: str, method: str, domain_tag: str, value: Union[Callable, float]):
        f = field.lower()
        if f not in ("velocity", "pressure"):
            raise ValueError("BC field must be 'velocity' or 'pressure'")
        m = method.lower()
        if m not in ("dirichlet", "neumann"):
            raise ValueError("BC method must be 'dirichlet' or 'neumann'")
        self.field = f
        self.method = m
        self.domain_tag = domain_tag
        self.value = value

    def __repr__(self):
        return f"BoundaryCondition({self.field!r}, {self.method!r}, {self.domain_tag!r})"


def parabolic_inflow(max_velocity: float, height: float):
    """u = (4 U_m y (H - y) / H^2, 0)."""
    def value(x, y):
        y = np.asarray(y, dtype=float)
        return 4.0 * max_velocity * y * (height - y) / height**2, np.zeros_like(y)
    return value


def no_slip():
    def value(x, y):
        z = np.zeros_like(np.asarray(x, dtype=float))
        return z, z
    return value


def constant(ux: float, uy: float = 0.0):
    def value(x, y):
        shape = np.shape(x)
        return np.full(shape, float(ux)), np.full(shape, float(uy))
    return value
