"""
Incomplete factorization preconditioners.

- :class:`ICC`: incomplete Cholesky with zero fill-in, ``A ~ R^T R``
- :class:`ILU`: incomplete LU with zero fill-in, ``A ~ L U`` on the pattern of A
- :class:`ILUT`: threshold ILU from SuperLU, with a drop tolerance and a fill limit

The factors are computed once in ``set_matrix`` on a CPU copy of the matrix.
ICC and ILU store SciPy CSR triangles and ``apply`` performs the forward and
backward substitutions; ILUT keeps the ``SuperLU`` object of ``spilu``.
"""

from typing import Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spilu, spsolve_triangular
from torch import Tensor

from ..exceptions import PreconditionerSetupError
from ..linear_operator import LinearOperator
from .base import Preconditioner, to_numpy, from_numpy


def _diagonal_positions(indptr: np.ndarray, indices: np.ndarray, n: int) -> np.ndarray:
    """Position of every diagonal entry in a CSR matrix with sorted columns"""
    diag = np.empty(n, dtype=np.int64)
    for i in range(n):
        start, end = indptr[i], indptr[i + 1]
        p = start + np.searchsorted(indices[start:end], i)
        if p == end or indices[p] != i:
            raise PreconditionerSetupError(f"matrix is missing a diagonal entry on row {i}")
        diag[i] = p
    return diag


class _TriangularFactors(Preconditioner):
    """M = lower @ upper, applied by two triangular solves"""

    _unit_lower = False

    def _store(self, lower: "sp.csr_matrix", upper: "sp.csr_matrix"):
        self._lower = lower.tocsr()
        self._upper = upper.tocsr()
        self._lower_t = self._lower.T.tocsr()
        self._upper_t = self._upper.T.tocsr()

    @property
    def factors(self) -> Tuple["sp.csr_matrix", "sp.csr_matrix"]:
        """(L, U); for unit-diagonal L the stored triangle is strictly lower"""
        return self._lower, self._upper

    def apply(self, r: Tensor) -> Tensor:
        y = spsolve_triangular(self._lower, to_numpy(r), lower=True,
                               unit_diagonal=self._unit_lower)
        z = spsolve_triangular(self._upper, y, lower=False)
        return from_numpy(z, r)

    def apply_transpose(self, r: Tensor) -> Tensor:
        y = spsolve_triangular(self._upper_t, to_numpy(r), lower=True)
        z = spsolve_triangular(self._lower_t, y, lower=False,
                               unit_diagonal=self._unit_lower)
        return from_numpy(z, r)


class ICC(_TriangularFactors):
    """
    Incomplete Cholesky factorization with zero fill-in.

    Only the upper triangle of A is read, so A is assumed symmetric.
    A non-positive pivot makes ``set_matrix`` fail.
    """

    def _setup(self, A: LinearOperator):
        F = sp.triu(self._require_entries(A).to_scipy(), k=0, format='csr').astype(np.float64)
        F.sort_indices()
        n = F.shape[0]
        indptr, indices, data = F.indptr, F.indices, F.data.copy()
        diag = _diagonal_positions(indptr, indices, n)
        # row k of the upper triangle starts at its diagonal entry
        lookup = [dict(zip(indices[indptr[k]:indptr[k + 1]].tolist(),
                           range(indptr[k], indptr[k + 1]))) for k in range(n)]

        for k in range(n):
            pivot = data[diag[k]]
            if not pivot > 0:
                raise PreconditionerSetupError(f"non-positive pivot {pivot:.3e} on row {k}")
            pivot = np.sqrt(pivot)
            data[diag[k]] = pivot
            end = indptr[k + 1]
            data[diag[k] + 1:end] /= pivot
            for p in range(diag[k] + 1, end):
                j = indices[p]
                rkj = data[p]
                row_j = lookup[j]
                for q in range(p, end):
                    t = row_j.get(indices[q])
                    if t is not None:
                        data[t] -= rkj * data[q]

        R = sp.csr_matrix((data, indices.copy(), indptr.copy()), shape=F.shape)
        self._store(R.T, R)


class ILU(_TriangularFactors):
    """
    Incomplete LU factorization with zero fill-in (IKJ variant).

    A missing diagonal entry or a zero pivot makes ``set_matrix`` fail.
    """

    _unit_lower = True

    def _setup(self, A: LinearOperator):
        F = self._require_entries(A).to_scipy().astype(np.float64)
        F.sort_indices()
        n = F.shape[0]
        indptr, indices, data = F.indptr, F.indices, F.data.copy()
        diag = _diagonal_positions(indptr, indices, n)

        for i in range(n):
            start, end = indptr[i], indptr[i + 1]
            pos = dict(zip(indices[start:end].tolist(), range(start, end)))
            for p in range(start, diag[i]):
                k = indices[p]
                data[p] /= data[diag[k]]
                lik = data[p]
                for q in range(diag[k] + 1, indptr[k + 1]):
                    t = pos.get(indices[q])
                    if t is not None:
                        data[t] -= lik * data[q]
            if data[diag[i]] == 0 or not np.isfinite(data[diag[i]]):
                raise PreconditionerSetupError(f"zero pivot encountered on row {i}")

        LU = sp.csr_matrix((data, indices.copy(), indptr.copy()), shape=F.shape)
        self._store(sp.tril(LU, k=-1, format='csr'), sp.triu(LU, k=0, format='csr'))


class ILUT(Preconditioner):
    """
    Threshold incomplete LU factorization (SuperLU ``spilu``).

    Parameters
    ----------
    drop_tol : float
        Drop tolerance, entries of the factors below it (relative to the
        column) are discarded, by default 1e-4
    fill_factor : float
        Upper bound on the ratio ``nnz(L + U) / nnz(A)``, by default 10.0

    Rows and columns are permuted by SuperLU; ``apply`` and
    ``apply_transpose`` use the factorization's own solves.
    """

    def __init__(self, drop_tol: float = 1e-4, fill_factor: float = 10.0):
        super().__init__()
        if drop_tol < 0:
            raise ValueError(f"drop_tol must be non-negative, got {drop_tol}")
        if fill_factor < 1:
            raise ValueError(f"fill_factor must be at least 1, got {fill_factor}")
        self.drop_tol = drop_tol
        self.fill_factor = fill_factor
        self._ilu = None

    @property
    def nnz(self) -> int:
        """Number of stored entries of the incomplete factors"""
        return self._ilu.nnz

    def _setup(self, A: LinearOperator):
        F = self._require_entries(A).to_scipy().astype(np.float64).tocsc()
        try:
            ilu = spilu(F, drop_tol=self.drop_tol, fill_factor=self.fill_factor)
        except RuntimeError as err:
            raise PreconditionerSetupError(f"threshold ILU failed: {err}") from err
        if not (np.isfinite(ilu.L.data).all() and np.isfinite(ilu.U.data).all()):
            raise PreconditionerSetupError("threshold ILU produced non-finite factors")
        self._ilu = ilu

    def apply(self, r: Tensor) -> Tensor:
        return from_numpy(self._ilu.solve(to_numpy(r)), r)

    def apply_transpose(self, r: Tensor) -> Tensor:
        return from_numpy(self._ilu.solve(to_numpy(r), 'T'), r)
