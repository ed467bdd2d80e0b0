"""Exception hierarchy shared by all pynsfem modules."""


class PynsfemError(Exception):
    """Base class for every error raised by pynsfem."""


class DiscretizationError(PynsfemError, ValueError):
    """Malformed mesh, index mapping or boundary data. Fatal for the whole run."""


class SingularOperatorError(DiscretizationError):
    """An assembled block could not be factorized."""


class ConfigurationError(PynsfemError, ValueError):
    """Invalid or unknown configuration entries."""


class LinearSolverError(PynsfemError, RuntimeError):
    """A Krylov solve exhausted its iteration budget.

    The best iterate found so far is attached so the caller can decide
    whether to continue with it.
    """

    def __init__(self, message, residual, iterations, solution=None):
        super().__init__(message)
        self.residual = residual
        self.iterations = iterations
        self.solution = solution
