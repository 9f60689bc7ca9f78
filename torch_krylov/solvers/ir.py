"""
Iterative refinement (preconditioned Richardson iteration).

``x <- x + M^{-1} (b - A x)``. It converges when the spectral radius of
``I - M^{-1} A`` is below one, so it is only useful with a good
preconditioner (ILU, AMG, ...). The residual is recomputed from ``x`` every
iteration, so the monitor sees the true residual.
"""

from torch import Tensor

from .base import IterativeSolver


class IR(IterativeSolver):
    """Iterative refinement solver"""

    def _allocate(self):
        self.r = self._vector()
        self.z = self._vector()

    def _iterate(self, b: Tensor, x: Tensor):
        A, M, monitor = self.A, self.M, self.monitor
        r, z = self.r, self.z

        r.copy_(b - A.matvec(x))
        while not monitor.converged(self._norm(r), x):
            z.copy_(M.apply(r))
            x.add_(z)
            r.copy_(b - A.matvec(x))
