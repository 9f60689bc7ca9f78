"""
Bi-Conjugate Gradient family for general (nonsymmetric) matrices.

- :class:`BiCG`: two coupled recurrences, needs ``A^T`` and ``M^{-T}``
- :class:`CGS`: Conjugate Gradient Squared, avoids the transpose
- :class:`BiCGstab`: BiCG stabilized by a local residual minimization

All three feed the monitor the recursively updated residual. A vanishing
shadow-residual inner product raises
:class:`~torch_krylov.exceptions.BreakdownError` instead of producing NaN.
"""

from torch import Tensor

from ..monitor import MonitorStatus
from .base import IterativeSolver


class BiCG(IterativeSolver):
    """BiConjugate Gradient solver"""

    uses_transpose = True

    def _allocate(self):
        self.r = self._vector()
        self.z = self._vector()
        self.p = self._vector()
        self.q = self._vector()
        self.r_tld = self._vector()
        self.z_tld = self._vector()
        self.p_tld = self._vector()
        self.q_tld = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, z, p, q = self.r, self.z, self.p, self.q
        r_tld, z_tld, p_tld, q_tld = self.r_tld, self.z_tld, self.p_tld, self.q_tld

        r.copy_(b - A.matvec(x))
        r_tld.copy_(r)
        rho_2 = 1.0
        first = True
        while not monitor.converged(self._norm(r), x):
            z.copy_(M.apply(r))
            z_tld.copy_(M.apply_transpose(r_tld))
            rho_1 = self._dot(z, r_tld)
            self._check_breakdown("rho", rho_1)

            if first:
                p.copy_(z)
                p_tld.copy_(z_tld)
                first = False
            else:
                beta = rho_1 / rho_2
                p.mul_(beta).add_(z)
                p_tld.mul_(beta).add_(z_tld)

            q.copy_(A.matvec(p))
            q_tld.copy_(A.rmatvec(p_tld))
            sigma = self._dot(p_tld, q)
            self._check_breakdown("p_tld^T A p", sigma)
            alpha = rho_1 / sigma

            x.add_(p, alpha=alpha)
            r.add_(q, alpha=-alpha)
            r_tld.add_(q_tld, alpha=-alpha)
            rho_2 = rho_1


class CGS(IterativeSolver):
    """Conjugate Gradient Squared solver"""

    def _allocate(self):
        self.r = self._vector()
        self.r_tld = self._vector()
        self.p = self._vector()
        self.p_hat = self._vector()
        self.q = self._vector()
        self.q_hat = self._vector()
        self.u = self._vector()
        self.u_hat = self._vector()
        self.v_hat = self._vector()
        self.sum = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, r_tld, p, p_hat = self.r, self.r_tld, self.p, self.p_hat
        q, q_hat, u, u_hat, v_hat, sum_ = self.q, self.q_hat, self.u, self.u_hat, self.v_hat, self.sum

        r.copy_(b - A.matvec(x))
        r_tld.copy_(r)
        rho_2 = 1.0
        first = True
        while not monitor.converged(self._norm(r), x):
            rho_1 = self._dot(r_tld, r)
            self._check_breakdown("rho", rho_1)

            if first:
                u.copy_(r)
                p.copy_(u)
                first = False
            else:
                beta = rho_1 / rho_2
                u.copy_(r).add_(q, alpha=beta)
                sum_.copy_(q).add_(p, alpha=beta)
                p.copy_(u).add_(sum_, alpha=beta)

            p_hat.copy_(M.apply(p))
            v_hat.copy_(A.matvec(p_hat))
            sigma = self._dot(r_tld, v_hat)
            self._check_breakdown("r_tld^T A p", sigma)
            alpha = rho_1 / sigma

            q.copy_(u).add_(v_hat, alpha=-alpha)
            sum_.copy_(u).add_(q)
            u_hat.copy_(M.apply(sum_))

            x.add_(u_hat, alpha=alpha)
            q_hat.copy_(A.matvec(u_hat))
            r.add_(q_hat, alpha=-alpha)
            rho_2 = rho_1


class BiCGstab(IterativeSolver):
    """
    BiConjugate Gradient Stabilized solver.

    The half-step residual ``s`` is also checked; when it converges the
    iteration stops before the stabilizing step.
    """

    def _allocate(self):
        self.r = self._vector()
        self.r_tld = self._vector()
        self.p = self._vector()
        self.p_hat = self._vector()
        self.s = self._vector()
        self.s_hat = self._vector()
        self.t = self._vector()
        self.v = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, r_tld, p, p_hat = self.r, self.r_tld, self.p, self.p_hat
        s, s_hat, t, v = self.s, self.s_hat, self.t, self.v

        r.copy_(b - A.matvec(x))
        r_tld.copy_(r)
        rho_2 = alpha = omega = 1.0
        first = True
        while not monitor.converged(self._norm(r), x):
            rho_1 = self._dot(r_tld, r)
            self._check_breakdown("rho", rho_1)
            self._check_breakdown("omega", omega)

            if first:
                p.copy_(r)
                first = False
            else:
                beta = (rho_1 / rho_2) * (alpha / omega)
                p.add_(v, alpha=-omega).mul_(beta).add_(r)

            p_hat.copy_(M.apply(p))
            v.copy_(A.matvec(p_hat))
            sigma = self._dot(r_tld, v)
            self._check_breakdown("r_tld^T A p", sigma)
            alpha = rho_1 / sigma

            s.copy_(r).add_(v, alpha=-alpha)
            x.add_(p_hat, alpha=alpha)
            if monitor.check(self._norm(s), x, advance=False) is MonitorStatus.CONVERGED:
                return

            s_hat.copy_(M.apply(s))
            t.copy_(A.matvec(s_hat))
            tt = self._dot(t, t)
            self._check_breakdown("t^T t", tt)
            omega = self._dot(t, s) / tt

            x.add_(s_hat, alpha=omega)
            r.copy_(s).add_(t, alpha=-omega)
            rho_2 = rho_1
