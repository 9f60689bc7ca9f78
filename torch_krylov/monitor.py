"""
Convergence / divergence monitor shared by every iterative solver.

The monitor declares convergence when the residual norm drops below
``max(rtol * r0, atol)`` where ``r0`` is the first residual norm it sees in a
solve. It raises :class:`NotConvergedError` when the residual grows beyond
``dtol * r0``, when ``max_iterations`` is reached, when the residual is NaN,
or when :meth:`IterationMonitor.cancel` was requested.
"""

import math
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Union

import torch
from torch import Tensor

from .exceptions import NotConvergedError, Reason


class MonitorStatus(Enum):
    CONTINUE = "continue"
    CONVERGED = "converged"


@dataclass(frozen=True)
class MonitorConfig:
    """
    Tunable parameters of :class:`IterationMonitor`.

    Parameters
    ----------
    max_iterations : int
        Maximum number of iterations, by default 100000
    rtol : float
        Convergence tolerance relative to the initial residual, by default 1e-5
    atol : float
        Absolute convergence tolerance, by default 1e-50
    dtol : float
        Divergence tolerance relative to the initial residual, by default 1e5
    """
    max_iterations: int = 100000
    rtol: float = 1e-5
    atol: float = 1e-50
    dtol: float = 1e5

    def __post_init__(self):
        if not (isinstance(self.max_iterations, int) and self.max_iterations > 0):
            raise ValueError(f"max_iterations must be a positive int, got {self.max_iterations}")
        if not 0.0 <= self.rtol <= 1.0:
            raise ValueError(f"rtol must be in [0, 1], got {self.rtol}")
        if not self.atol >= 0.0:
            raise ValueError(f"atol must be non-negative, got {self.atol}")
        if not self.dtol > 1.0:
            raise ValueError(f"dtol must be greater than 1, got {self.dtol}")


class IterationMonitor:
    """
    Per-solve state machine deciding CONTINUE / CONVERGED, or raising
    :class:`NotConvergedError`.

    Parameters
    ----------
    config : MonitorConfig, optional
        Tolerances, by default ``MonitorConfig()``
    callback : Callable[[int, float], None], optional
        Called as ``callback(iteration, residual_norm)`` on every check
    **overrides
        Any ``MonitorConfig`` field, applied on top of ``config``

    Notes
    -----
    A monitor is mutated once per iteration and must not be shared between
    solves running at the same time. Only :meth:`cancel` may be called from
    another thread.
    """

    def __init__(self,
                 config: Optional[MonitorConfig] = None,
                 callback: Optional[Callable[[int, float], None]] = None,
                 **overrides):
        config = config or MonitorConfig()
        if overrides:
            config = replace(config, **overrides)
        self.config = config
        self.callback = callback
        self._cancelled = threading.Event()
        self.reset()

    # ------------------------------------------------------------------
    # configuration
    # ------------------------------------------------------------------

    @property
    def max_iterations(self) -> int:
        return self.config.max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int):
        self.config = replace(self.config, max_iterations=value)

    @property
    def rtol(self) -> float:
        return self.config.rtol

    @rtol.setter
    def rtol(self, value: float):
        self.config = replace(self.config, rtol=value)

    @property
    def atol(self) -> float:
        return self.config.atol

    @atol.setter
    def atol(self, value: float):
        self.config = replace(self.config, atol=value)

    @property
    def dtol(self) -> float:
        return self.config.dtol

    @dtol.setter
    def dtol(self, value: float):
        self.config = replace(self.config, dtol=value)

    # ------------------------------------------------------------------
    # per-solve state
    # ------------------------------------------------------------------

    def reset(self):
        """Forget the previous solve. Called by every solver before iterating."""
        self.iterations = 0
        self.initial_residual = None
        self.residual = math.nan
        self.residuals: List[float] = []
        self._cancelled.clear()

    @property
    def is_first(self) -> bool:
        return self.initial_residual is None

    def cancel(self):
        """Ask the running solve to stop at its next residual check."""
        self._cancelled.set()

    def check(self, residual_norm: float, x: Optional[Tensor] = None,
              advance: bool = True) -> MonitorStatus:
        """
        Evaluate one residual norm.

        Parameters
        ----------
        residual_norm : float
            Norm of the (true or recursively updated) residual
        x : Tensor, optional
            Current iterate, unused by the default tests
        advance : bool
            Count this check as an iteration when it returns CONTINUE

        Returns
        -------
        MonitorStatus

        Raises
        ------
        NotConvergedError
            DIVERGENCE, ITERATIONS, DIVERGENCE_NAN or CANCELLED
        """
        r = float(residual_norm)
        if self.initial_residual is None:
            self.initial_residual = r
        self.residual = r
        self.residuals.append(r)
        if self.callback is not None:
            self.callback(self.iterations, r)

        r0 = self.initial_residual
        cfg = self.config
        # an exactly zero residual converges even with atol=0
        if r < max(cfg.rtol * r0, cfg.atol) or r == 0.0:
            return MonitorStatus.CONVERGED
        if r > cfg.dtol * r0:
            raise NotConvergedError(Reason.DIVERGENCE, self.iterations, r)
        # NaN fails every comparison above
        if math.isnan(r):
            raise NotConvergedError(Reason.DIVERGENCE_NAN, self.iterations, r)
        if self.iterations >= cfg.max_iterations:
            raise NotConvergedError(Reason.ITERATIONS, self.iterations, r)
        if self._cancelled.is_set():
            raise NotConvergedError(Reason.CANCELLED, self.iterations, r)

        if advance:
            self.iterations += 1
        return MonitorStatus.CONTINUE

    def converged(self, r: Union[Tensor, float], x: Optional[Tensor] = None) -> bool:
        """``check`` for a residual vector or norm, as a boolean"""
        if isinstance(r, Tensor):
            r = torch.linalg.vector_norm(r).item()
        return self.check(r, x) is MonitorStatus.CONVERGED

    def __repr__(self):
        cfg = self.config
        return (f"IterationMonitor(max_iterations={cfg.max_iterations}, rtol={cfg.rtol}, "
                f"atol={cfg.atol}, dtol={cfg.dtol}, iterations={self.iterations})")


def as_monitor(monitor: Union[IterationMonitor, MonitorConfig, dict, None]) -> IterationMonitor:
    """Build a monitor from a monitor, a config, a dict of config options or None"""
    if monitor is None:
        return IterationMonitor()
    if isinstance(monitor, IterationMonitor):
        return monitor
    if isinstance(monitor, MonitorConfig):
        return IterationMonitor(monitor)
    if isinstance(monitor, dict):
        return IterationMonitor(MonitorConfig(**monitor))
    raise TypeError(f"Cannot build an IterationMonitor from {type(monitor).__name__}")
