"""
Failure types raised by the iterative solvers and preconditioners.

``ShapeMismatch`` lives in :mod:`torch_krylov.check` next to the shape
checks that raise it.
"""

from enum import Enum
from typing import Optional


class Reason(Enum):
    """Why an iterative solve stopped without converging."""
    DIVERGENCE = "divergence"
    ITERATIONS = "iterations"
    DIVERGENCE_NAN = "divergence_nan"
    CANCELLED = "cancelled"


class NotConvergedError(RuntimeError):
    """
    Raised when an iterative solve stops without meeting its tolerance.

    Attributes
    ----------
    reason : Reason
        Terminal outcome reported by the iteration monitor
    iterations : int
        Number of iterations performed
    residual : float
        Last residual norm seen by the monitor
    x : torch.Tensor or None
        Last iterate, attached by the solver before re-raising
    """

    def __init__(self, reason: Reason, iterations: int, residual: float,
                 message: Optional[str] = None):
        self.reason = reason
        self.iterations = iterations
        self.residual = residual
        self.x = None
        if message is None:
            message = (f"iterative solve did not converge ({reason.value}) "
                       f"after {iterations} iterations, residual={residual:.3e}")
        super().__init__(message)


class BreakdownError(NotConvergedError):
    """A recurrence denominator vanished; reported as divergence."""

    def __init__(self, quantity: str, value: float, iterations: int, residual: float):
        self.quantity = quantity
        self.value = value
        super().__init__(
            Reason.DIVERGENCE, iterations, residual,
            f"breakdown in '{quantity}' (value={value:.3e}) "
            f"after {iterations} iterations, residual={residual:.3e}")


class PreconditionerSetupError(RuntimeError):
    """Raised by ``set_matrix`` when a preconditioner cannot be built."""
