"""
Restarted GMRES with left preconditioning.

Each cycle builds an orthonormal basis of the Krylov space of ``M^{-1} A``
by Arnoldi iteration (modified Gram-Schmidt), reduces the Hessenberg matrix
to triangular form with Givens rotations and, after ``restart`` basis vectors
or on convergence, solves the small triangular system and updates ``x``.

Residuals seen by the monitor: at the start of every cycle, the norm of the
preconditioned residual ``M^{-1}(b - A x)``; inside a cycle, the Givens
estimate ``|s_i|`` of that norm, which costs nothing but is only as accurate
as the Arnoldi basis is orthogonal. Every Arnoldi step counts as one
monitor iteration.
"""

import math
from typing import Optional, Tuple

import torch
from torch import Tensor

from .base import IterativeSolver


def _givens(a: float, b: float) -> Tuple[float, float]:
    """(c, s) such that [c s; -s c] @ [a; b] = [r; 0]"""
    if b == 0.0:
        return 1.0, 0.0
    if abs(b) > abs(a):
        t = a / b
        s = 1.0 / math.sqrt(1.0 + t * t)
        return s * t, s
    t = b / a
    c = 1.0 / math.sqrt(1.0 + t * t)
    return c, c * t


class GMRES(IterativeSolver):
    """
    Restarted GMRES(m) solver.

    Parameters
    ----------
    restart : int
        Basis size ``m`` before a restart, by default 30

    Other parameters are those of :class:`IterativeSolver`.
    """

    def __init__(self, A, monitor=None, preconditioner=None, restart: int = 30,
                 breakdown_tol: Optional[float] = None):
        if restart < 1:
            raise ValueError(f"restart must be at least 1, got {restart}")
        self.restart = int(restart)
        super().__init__(A, monitor=monitor, preconditioner=preconditioner,
                         breakdown_tol=breakdown_tol)

    def _allocate(self):
        m = self.restart
        self.u = self._vector()
        self.r = self._vector()
        self.w = self._vector()
        # Krylov basis, one vector per row
        self.V = torch.zeros(m + 1, self.n, dtype=self.dtype, device=self.device)
        # Hessenberg matrix and rotated right-hand side, small and on the CPU
        self.H = torch.zeros(m + 1, m, dtype=torch.float64)
        self.s = torch.zeros(m + 1, dtype=torch.float64)
        self.rotations = [(1.0, 0.0)] * m

    def _preconditioned_residual(self, b: Tensor, x: Tensor) -> float:
        self.u.copy_(b - self.A.matvec(x))
        self.r.copy_(self.M.apply(self.u))
        return self._norm(self.r)

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        m, V, H, s, w = self.restart, self.V, self.H, self.s, self.w
        rotations = self.rotations

        normr = self._preconditioned_residual(b, x)
        while not monitor.converged(normr, x):
            V[0].copy_(self.r).div_(normr)
            H.zero_()
            s.zero_()
            s[0] = normr

            # the first step of a cycle was counted by the restart check
            i = 0
            while i < m and (i == 0 or not monitor.converged(abs(s[i].item()), x)):
                w.copy_(M.apply(A.matvec(V[i])))
                for k in range(i + 1):
                    h = self._dot(w, V[k])
                    H[k, i] = h
                    w.add_(V[k], alpha=-h)
                h_next = self._norm(w)
                H[i + 1, i] = h_next
                if h_next != 0.0:
                    V[i + 1].copy_(w).div_(h_next)
                else:
                    V[i + 1].zero_()

                for k in range(i):
                    c, sn = rotations[k]
                    hk, hk1 = H[k, i].item(), H[k + 1, i].item()
                    H[k, i] = c * hk + sn * hk1
                    H[k + 1, i] = -sn * hk + c * hk1

                c, sn = _givens(H[i, i].item(), H[i + 1, i].item())
                rotations[i] = (c, sn)
                H[i, i] = c * H[i, i].item() + sn * H[i + 1, i].item()
                H[i + 1, i] = 0.0
                self._check_breakdown("H[i,i]", H[i, i].item())
                si = s[i].item()
                s[i] = c * si
                s[i + 1] = -sn * si
                i += 1

            if i > 0:
                y = torch.linalg.solve_triangular(H[:i, :i], s[:i].unsqueeze(1), upper=True)
                x.add_(y.squeeze(1).to(dtype=self.dtype, device=self.device) @ V[:i])

            normr = self._preconditioned_residual(b, x)
