"""
Preconditioned Chebyshev iteration.

Chebyshev needs no inner products, only bounds ``[eig_min, eig_max]`` on the
(real, positive) spectrum of ``M^{-1} A``. With tight bounds it converges
like CG; with loose ones it converges slowly, and it diverges if the bounds
miss part of the spectrum. The monitor sees the recursively updated
residual.

:func:`estimate_eigenvalue_bounds` gives rough bounds by power iteration.
"""

from typing import Optional, Tuple

import torch
from torch import Tensor

from ..linear_operator import aslinearoperator
from ..preconditioners import get_preconditioner
from .base import IterativeSolver


class Chebyshev(IterativeSolver):
    """
    Chebyshev iteration solver.

    Parameters
    ----------
    eig_min, eig_max : float
        Bounds on the eigenvalues of the preconditioned matrix, with
        ``0 < eig_min <= eig_max``

    Other parameters are those of :class:`IterativeSolver`.
    """

    def __init__(self, A, eig_min: float, eig_max: float, monitor=None, preconditioner=None,
                 breakdown_tol: Optional[float] = None):
        self.set_eigenvalue_bounds(eig_min, eig_max)
        super().__init__(A, monitor=monitor, preconditioner=preconditioner,
                         breakdown_tol=breakdown_tol)

    def set_eigenvalue_bounds(self, eig_min: float, eig_max: float):
        if not 0.0 < eig_min <= eig_max:
            raise ValueError(f"need 0 < eig_min <= eig_max, got eig_min={eig_min}, eig_max={eig_max}")
        self.eig_min = float(eig_min)
        self.eig_max = float(eig_max)

    def _allocate(self):
        self.r = self._vector()
        self.z = self._vector()
        self.p = self._vector()
        self.q = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, z, p, q = self.r, self.z, self.p, self.q

        # centre and half-width of the eigenvalue interval
        d = 0.5 * (self.eig_max + self.eig_min)
        c = 0.5 * (self.eig_max - self.eig_min)

        r.copy_(b - A.matvec(x))
        alpha = 0.0
        k = 0
        while not monitor.converged(self._norm(r), x):
            z.copy_(M.apply(r))
            if k == 0:
                p.copy_(z)
                alpha = 1.0 / d
            else:
                if k == 1:
                    beta = 0.5 * (c * alpha) ** 2
                else:
                    beta = (0.5 * c * alpha) ** 2
                alpha = 1.0 / (d - beta / alpha)
                p.mul_(beta).add_(z)

            q.copy_(A.matvec(p))
            x.add_(p, alpha=alpha)
            r.add_(q, alpha=-alpha)
            k += 1


def estimate_eigenvalue_bounds(A, preconditioner=None, num_iters: int = 50,
                               seed: int = 0) -> Tuple[float, float]:
    """
    Estimate the extreme eigenvalues of ``M^{-1} A`` by power iteration.

    The largest eigenvalue comes from power iteration on ``M^{-1} A``, the
    smallest from power iteration on the shifted operator
    ``eig_max I - M^{-1} A``. Both estimates lie inside the true interval,
    so widen them a little before passing them to :class:`Chebyshev`.

    Parameters
    ----------
    A : matrix-like
        Matrix with a real, positive spectrum (e.g. SPD)
    preconditioner : Preconditioner or str, optional
        By default none
    num_iters : int
        Power iterations per bound, by default 50
    seed : int
        Seed of the random start vector

    Returns
    -------
    Tuple[float, float]
        (eig_min, eig_max)
    """
    A = aslinearoperator(A)
    M = get_preconditioner(preconditioner)
    if not M.is_set:
        M.set_matrix(A)
    n = A.shape[0]

    generator = torch.Generator().manual_seed(seed)
    start = torch.rand(n, generator=generator, dtype=torch.float64) + 0.5
    start = start.to(dtype=A.dtype, device=A.device)

    def power(op) -> float:
        v = start / torch.linalg.vector_norm(start)
        lam = 0.0
        for _ in range(num_iters):
            w = op(v)
            lam = torch.dot(v, w).item()
            norm = torch.linalg.vector_norm(w)
            if norm == 0:
                break
            v = w / norm
        return lam

    eig_max = power(lambda v: M.apply(A.matvec(v)))
    shift = power(lambda v: eig_max * v - M.apply(A.matvec(v)))
    eig_min = eig_max - shift
    if eig_min <= 0:
        eig_min = abs(eig_max) * 1e-10
    return eig_min, eig_max
