"""
Quasi-Minimal Residual method (without look-ahead).

QMR runs the two-sided Lanczos process of BiCG but chooses the iterate that
quasi-minimizes the residual, which smooths BiCG's erratic convergence. It
needs products with ``A`` and ``A^T``. The preconditioner may be split into
a left part ``M1`` and a right part ``M2``; the monitor sees the recursively
updated residual.
"""

import math
from typing import Optional, Union

from torch import Tensor

from ..preconditioners import Preconditioner, get_preconditioner
from .base import IterativeSolver


class QMR(IterativeSolver):
    """
    Quasi-Minimal Residual solver.

    Parameters
    ----------
    preconditioner : Preconditioner or str, optional
        Left preconditioner ``M1``
    right_preconditioner : Preconditioner or str, optional
        Right preconditioner ``M2``, by default none

    Other parameters are those of :class:`IterativeSolver`.
    """

    uses_transpose = True

    def __init__(self, A, monitor=None,
                 preconditioner: Union[Preconditioner, str, None] = None,
                 right_preconditioner: Union[Preconditioner, str, None] = None,
                 breakdown_tol: Optional[float] = None):
        super().__init__(A, monitor=monitor, preconditioner=preconditioner,
                         breakdown_tol=breakdown_tol)
        self.set_right_preconditioner(right_preconditioner)

    def set_right_preconditioner(self, preconditioner: Union[Preconditioner, str, None]):
        M2 = get_preconditioner(preconditioner)
        if not M2.is_set:
            M2.set_matrix(self.A)
        self.M2 = M2

    def _allocate(self):
        self.r = self._vector()
        self.y = self._vector()
        self.z = self._vector()
        self.v = self._vector()
        self.w = self._vector()
        self.p = self._vector()
        self.q = self._vector()
        self.d = self._vector()
        self.s = self._vector()
        self.v_tld = self._vector()
        self.w_tld = self._vector()
        self.y_tld = self._vector()
        self.z_tld = self._vector()
        self.p_tld = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M1, M2, monitor = self.A, self.M, self.M2, self.monitor
        r, y, z, v, w = self.r, self.y, self.z, self.v, self.w
        p, q, d, s = self.p, self.q, self.d, self.s
        v_tld, w_tld, y_tld, z_tld, p_tld = self.v_tld, self.w_tld, self.y_tld, self.z_tld, self.p_tld

        r.copy_(b - A.matvec(x))
        v_tld.copy_(r)
        y.copy_(M1.apply(v_tld))
        rho = self._norm(y)
        w_tld.copy_(r)
        z.copy_(M2.apply_transpose(w_tld))
        xi = self._norm(z)

        gamma, eta, theta = 1.0, -1.0, 0.0
        ep = 1.0
        first = True
        while not monitor.converged(self._norm(r), x):
            self._check_breakdown("rho", rho)
            self._check_breakdown("xi", xi)

            v.copy_(v_tld).div_(rho)
            y.div_(rho)
            w.copy_(w_tld).div_(xi)
            z.div_(xi)

            delta = self._dot(z, y)
            self._check_breakdown("delta", delta)

            y_tld.copy_(M2.apply(y))
            z_tld.copy_(M1.apply_transpose(z))

            if first:
                p.copy_(y_tld)
                q.copy_(z_tld)
            else:
                p.mul_(-xi * delta / ep).add_(y_tld)
                q.mul_(-rho * delta / ep).add_(z_tld)

            p_tld.copy_(A.matvec(p))
            ep = self._dot(q, p_tld)
            self._check_breakdown("epsilon", ep)

            beta = ep / delta
            self._check_breakdown("beta", beta)

            v_tld.copy_(p_tld).add_(v, alpha=-beta)
            y.copy_(M1.apply(v_tld))
            rho_1 = rho
            rho = self._norm(y)

            w_tld.copy_(A.rmatvec(q)).add_(w, alpha=-beta)
            z.copy_(M2.apply_transpose(w_tld))
            xi = self._norm(z)

            gamma_1, theta_1 = gamma, theta
            theta = rho / (gamma_1 * abs(beta))
            gamma = 1.0 / math.sqrt(1.0 + theta * theta)
            self._check_breakdown("gamma", gamma)

            eta = -eta * rho_1 * gamma * gamma / (beta * gamma_1 * gamma_1)

            if first:
                d.copy_(p).mul_(eta)
                s.copy_(p_tld).mul_(eta)
                first = False
            else:
                scale = (theta_1 * gamma) ** 2
                d.mul_(scale).add_(p, alpha=eta)
                s.mul_(scale).add_(p_tld, alpha=eta)

            x.add_(d)
            r.sub_(s)
