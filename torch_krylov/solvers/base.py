"""
Common machinery of the iterative solvers.

Every solver composes one operator, one preconditioner (identity when none is
given) and one :class:`~torch_krylov.monitor.IterationMonitor`, and owns the
scratch vectors of its recurrence. The scratch vectors are allocated once in
the constructor and overwritten in place by every ``solve`` call, so a solver
instance must not run two solves at the same time. Independent solves on
separate threads each need their own solver and monitor; a built
preconditioner may be shared.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

import torch
from torch import Tensor

from ..check import ShapeMismatch, check_system
from ..exceptions import NotConvergedError, BreakdownError
from ..linear_operator import LinearOperator, aslinearoperator
from ..monitor import IterationMonitor, MonitorConfig, as_monitor
from ..preconditioners import Preconditioner, get_preconditioner

logger = logging.getLogger(__name__)


class IterativeSolver(ABC):
    """
    Base class of the iterative solvers for ``A x = b``.

    Parameters
    ----------
    A : matrix-like
        Square operator, see :func:`torch_krylov.aslinearoperator`
    monitor : IterationMonitor, MonitorConfig or dict, optional
        Termination control, by default ``IterationMonitor()``
    preconditioner : Preconditioner or str, optional
        Built against ``A`` here unless already set, by default none
    breakdown_tol : float, optional
        Magnitude under which a recurrence denominator counts as zero, by
        default the smallest normal number of the working dtype
    """

    #: the method applies A^T and M^{-T}
    uses_transpose = False

    def __init__(self,
                 A,
                 monitor: Union[IterationMonitor, MonitorConfig, dict, None] = None,
                 preconditioner: Union[Preconditioner, str, None] = None,
                 breakdown_tol: Optional[float] = None):
        A = aslinearoperator(A)
        if A.shape[0] != A.shape[1]:
            raise ShapeMismatch("A", A.shape, f"({A.shape[0]},{A.shape[0]})")
        self.A: LinearOperator = A
        self.n = A.shape[0]
        self.dtype = A.dtype
        self.device = A.device
        if breakdown_tol is None:
            breakdown_tol = torch.finfo(self.dtype).tiny
        self.breakdown_tol = breakdown_tol
        self.monitor = as_monitor(monitor)
        self.set_preconditioner(preconditioner)
        self._allocate()

    def set_preconditioner(self, preconditioner: Union[Preconditioner, str, None]):
        M = get_preconditioner(preconditioner)
        if not M.is_set:
            M.set_matrix(self.A)
        self.M = M

    def set_monitor(self, monitor: Union[IterationMonitor, MonitorConfig, dict, None]):
        self.monitor = as_monitor(monitor)

    def _vector(self) -> Tensor:
        return torch.zeros(self.n, dtype=self.dtype, device=self.device)

    @abstractmethod
    def _allocate(self):
        """Create the scratch vectors of the recurrence"""

    @abstractmethod
    def _iterate(self, b: Tensor, x: Tensor):
        """Run the recurrence, updating ``x`` in place, until the monitor stops it"""

    def solve(self, b: Tensor, x0: Optional[Tensor] = None) -> Tensor:
        """
        Solve ``A x = b``.

        Parameters
        ----------
        b : Tensor
            [n] right-hand side
        x0 : Tensor, optional
            [n] initial guess, by default zero. Not modified.

        Returns
        -------
        Tensor
            [n] solution

        Raises
        ------
        ShapeMismatch
            ``b`` or ``x0`` does not match ``A``, before any iteration
        NotConvergedError
            The monitor stopped the iteration; ``err.x`` holds the last iterate
        """
        check_system(self.A.shape, b, x0)
        b = b.detach().to(dtype=self.dtype, device=self.device)
        if x0 is None:
            x = self._vector()
        else:
            x = x0.detach().to(dtype=self.dtype, device=self.device).clone()

        self.monitor.reset()
        try:
            self._iterate(b, x)
        except NotConvergedError as err:
            err.x = x
            logger.debug("%s stopped: %s", type(self).__name__, err)
            raise
        logger.debug("%s converged in %d iterations, residual=%.3e",
                     type(self).__name__, self.monitor.iterations, self.monitor.residual)
        return x

    @property
    def iterations(self) -> int:
        return self.monitor.iterations

    @property
    def residual(self) -> float:
        return self.monitor.residual

    @staticmethod
    def _dot(u: Tensor, v: Tensor) -> float:
        return torch.dot(u, v).item()

    @staticmethod
    def _norm(v: Tensor) -> float:
        return torch.linalg.vector_norm(v).item()

    def _check_breakdown(self, quantity: str, value: float, positive: bool = False):
        """Raise BreakdownError when ``value`` vanished (or is not positive)"""
        if abs(value) < self.breakdown_tol or (positive and value <= 0):
            raise BreakdownError(quantity, value, self.monitor.iterations, self.monitor.residual)

    def __repr__(self):
        return f"{type(self).__name__}(n={self.n}, preconditioner={type(self.M).__name__}, monitor={self.monitor})"
