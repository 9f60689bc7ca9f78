"""
Preconditioned Conjugate Gradient (for SPD matrices).

One matrix-vector product and one preconditioner application per iteration.
The monitor sees the recursively updated residual ``r <- r - alpha A p``,
which can drift from ``b - A x`` in finite precision.
"""

from torch import Tensor

from .base import IterativeSolver


class CG(IterativeSolver):
    """
    Conjugate Gradient solver.

    Requires A symmetric positive definite and a symmetric positive definite
    preconditioner. A non-positive ``p^T A p`` or ``r^T M^{-1} r`` raises
    :class:`~torch_krylov.exceptions.BreakdownError`.
    """

    def _allocate(self):
        self.r = self._vector()
        self.z = self._vector()
        self.p = self._vector()
        self.q = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, z, p, q = self.r, self.z, self.p, self.q

        r.copy_(b - A.matvec(x))
        rho_1 = 1.0
        first = True
        while not monitor.converged(self._norm(r), x):
            z.copy_(M.apply(r))
            rho = self._dot(r, z)
            self._check_breakdown("rho", rho, positive=True)

            if first:
                p.copy_(z)
                first = False
            else:
                p.mul_(rho / rho_1).add_(z)

            q.copy_(A.matvec(p))
            pq = self._dot(p, q)
            self._check_breakdown("pAp", pq, positive=True)
            alpha = rho / pq

            x.add_(p, alpha=alpha)
            r.add_(q, alpha=-alpha)
            rho_1 = rho
