"""
Symmetric successive over-relaxation (SSOR) preconditioner.

One application performs a forward SOR sweep followed, when ``reverse`` is
set, by a backward sweep, starting from a zero guess. Each sweep is written
as a sparse triangular solve:

    forward:  (D + w L) x' = w b - (w U + (w - 1) D) x
    backward: (D + w U) x  = w b - (w L + (w - 1) D) x'

Both sweeps are consistent, so a sweep from ``x`` equals
``x + N (b - A x)`` with ``N = M^{-1}`` the zero-guess operator. The
transposed application runs the transposed triangles in reverse order.

The same sweeps are the smoother of :class:`torch_krylov.preconditioners.AMG`.
"""

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve_triangular
from torch import Tensor

from ..exceptions import PreconditionerSetupError
from ..linear_operator import LinearOperator
from .base import Preconditioner, to_numpy, from_numpy


class SSOR(Preconditioner):
    """
    Parameters
    ----------
    omega_forward : float
        Relaxation of the forward sweep, in [0, 2], by default 1.0
    omega_backward : float
        Relaxation of the backward sweep, in [0, 2], by default 1.0
    reverse : bool
        Perform the backward sweep, by default True
    """

    def __init__(self, omega_forward: float = 1.0, omega_backward: float = 1.0, reverse: bool = True):
        super().__init__()
        if not 0.0 <= omega_forward <= 2.0:
            raise ValueError(f"omega_forward must be between 0 and 2, got {omega_forward}")
        if not 0.0 <= omega_backward <= 2.0:
            raise ValueError(f"omega_backward must be between 0 and 2, got {omega_backward}")
        self.omega_forward = omega_forward
        self.omega_backward = omega_backward
        self.reverse = reverse

    def _setup(self, A: LinearOperator):
        self.setup_csr(self._require_entries(A).to_scipy())

    def setup_csr(self, F: "sp.csr_matrix"):
        """Build the sweep operators directly from a SciPy CSR matrix"""
        F = sp.csr_matrix(F, dtype=np.float64)
        d = F.diagonal()
        zero = np.flatnonzero(d == 0)
        if zero.size:
            raise PreconditionerSetupError(f"missing or zero diagonal on row {zero[0]}")
        D = sp.diags(d, format='csr')
        L = sp.tril(F, k=-1, format='csr')
        U = sp.triu(F, k=1, format='csr')
        wf, wb = self.omega_forward, self.omega_backward
        self._fwd_lhs = (D + wf * L).tocsr()
        self._fwd_rhs = (wf * U + (wf - 1.0) * D).tocsr()
        self._bwd_lhs = (D + wb * U).tocsr()
        self._bwd_rhs = (wb * L + (wb - 1.0) * D).tocsr()
        # transposed operators, for M^{-T} and the transposed sweep
        self._At = F.T.tocsr()
        self._fwd_lhs_t = self._fwd_lhs.T.tocsr()
        self._bwd_lhs_t = self._bwd_lhs.T.tocsr()
        self._bwd_rhs_t = self._bwd_rhs.T.tocsr()
        return self

    def sweep(self, b: np.ndarray, x: np.ndarray) -> np.ndarray:
        """One SSOR relaxation of ``A x = b`` starting from ``x`` (not modified)"""
        xx = spsolve_triangular(self._fwd_lhs, self.omega_forward * b - self._fwd_rhs @ x,
                                lower=True)
        if not self.reverse:
            return xx
        return spsolve_triangular(self._bwd_lhs, self.omega_backward * b - self._bwd_rhs @ xx,
                                  lower=False)

    def _solve_transpose(self, b: np.ndarray) -> np.ndarray:
        """M^{-T} b"""
        wf, wb = self.omega_forward, self.omega_backward
        if not self.reverse:
            return wf * spsolve_triangular(self._fwd_lhs_t, b, lower=False)
        y = spsolve_triangular(self._bwd_lhs_t, b, lower=True)
        return wb * y - wf * spsolve_triangular(self._fwd_lhs_t, self._bwd_rhs_t @ y, lower=False)

    def sweep_transpose(self, b: np.ndarray, x: np.ndarray) -> np.ndarray:
        """One relaxation of ``A^T x = b`` with the transposed SSOR operator"""
        return x + self._solve_transpose(b - self._At @ x)

    def apply(self, r: Tensor) -> Tensor:
        b = to_numpy(r)
        return from_numpy(self.sweep(b, np.zeros_like(b)), r)

    def apply_transpose(self, r: Tensor) -> Tensor:
        return from_numpy(self._solve_transpose(to_numpy(r)), r)
