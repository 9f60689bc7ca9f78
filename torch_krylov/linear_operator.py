"""
Linear operators consumed by the iterative solvers.

A solver only needs ``matvec``, ``rmatvec`` (transpose product), ``shape``,
``dtype`` and ``device`` from the matrix it works on. Two implementations are
provided:

- :class:`LinearOperator`: matrix-free, wraps user callables
- :class:`CachedSparseMatrix`: explicit sparse matrix, converted once to CSR
  and cached, with the diagonal and a SciPy view available to the
  factorizing preconditioners

Any other matrix-like input is adapted with :func:`aslinearoperator`.
"""

import torch
from torch import Tensor
from typing import Callable, Optional, Tuple
import numpy as np
import scipy.sparse as sp

from .check import check_coo, check_csr, check_csc, ShapeMismatch


class LinearOperator:
    """
    Matrix-free operator defined by its action on a vector.

    Parameters
    ----------
    shape : Tuple[int, int]
        (m, n)
    matvec : Callable[[Tensor], Tensor]
        x -> A @ x
    rmatvec : Callable[[Tensor], Tensor], optional
        x -> A^T @ x, required by BiCG and QMR
    dtype : torch.dtype
        Scalar type of the working vectors
    device : torch.device
        Device of the working vectors
    """

    def __init__(self,
                 shape: Tuple[int, int],
                 matvec: Callable[[Tensor], Tensor],
                 rmatvec: Optional[Callable[[Tensor], Tensor]] = None,
                 dtype: torch.dtype = torch.float64,
                 device=torch.device('cpu')):
        if len(shape) != 2 or shape[0] <= 0 or shape[1] <= 0:
            raise ShapeMismatch("shape", tuple(shape), "(m,n)")
        self.shape = (int(shape[0]), int(shape[1]))
        self.dtype = dtype
        self.device = torch.device(device)
        self._matvec = matvec
        self._rmatvec = rmatvec

    @property
    def n(self) -> int:
        return self.shape[0]

    def dimension(self) -> Tuple[int, int]:
        """(rows, cols)"""
        return self.shape

    def matvec(self, x: Tensor) -> Tensor:
        """y = A @ x"""
        return self._matvec(x)

    def rmatvec(self, x: Tensor) -> Tensor:
        """y = A^T @ x"""
        if self._rmatvec is None:
            raise NotImplementedError(
                f"{type(self).__name__} has no transpose product; pass rmatvec=")
        return self._rmatvec(x)

    def __matmul__(self, x: Tensor) -> Tensor:
        return self.matvec(x)

    def __repr__(self):
        return f"{type(self).__name__}(shape={self.shape}, dtype={self.dtype}, device={self.device})"


class CachedSparseMatrix(LinearOperator):
    """
    Sparse matrix cached in CSR form for repeated matvec operations.

    The COO input is coalesced (duplicates summed, entries sorted row-major)
    and converted to CSR once. The transpose CSR and the SciPy view are built
    lazily on first use.
    """

    def __init__(self, val: Tensor, row: Tensor, col: Tensor, shape: Tuple[int, int]):
        check_coo(val, row, col, shape)
        shape = (int(shape[0]), int(shape[1]))
        indices = torch.stack([row.to(val.device), col.to(val.device)], dim=0).long()
        coo = torch.sparse_coo_tensor(indices, val.detach(), shape,
                                      device=val.device, dtype=val.dtype).coalesce()
        super().__init__(shape, self._mv, self._rmv, dtype=val.dtype, device=val.device)

        self.val = coo.values()
        self.row = coo.indices()[0]
        self.col = coo.indices()[1]
        self._csr = coo.to_sparse_csr()

        # Cache structures
        self._csr_t = None
        self._diag = None
        self._scipy = None

    @property
    def nnz(self) -> int:
        return self.val.shape[0]

    def _mv(self, x: Tensor) -> Tensor:
        return torch.mv(self._csr, x)

    def _rmv(self, x: Tensor) -> Tensor:
        if self._csr_t is None:
            indices = torch.stack([self.col, self.row], dim=0)
            coo_t = torch.sparse_coo_tensor(indices, self.val, (self.shape[1], self.shape[0]),
                                            device=self.device, dtype=self.dtype)
            self._csr_t = coo_t.coalesce().to_sparse_csr()
        return torch.mv(self._csr_t, x)

    @property
    def diagonal(self) -> Tensor:
        """Get diagonal elements (cached)"""
        if self._diag is None:
            self._diag = torch.zeros(min(self.shape), dtype=self.dtype, device=self.device)
            diag_mask = self.row == self.col
            self._diag.scatter_add_(0, self.row[diag_mask], self.val[diag_mask])
        return self._diag

    def to_scipy(self) -> "sp.csr_matrix":
        """CPU copy as a SciPy CSR matrix with sorted column indices (cached)"""
        if self._scipy is None:
            val_np = self.val.detach().cpu().numpy()
            row_np = self.row.detach().cpu().numpy()
            col_np = self.col.detach().cpu().numpy()
            csr = sp.coo_matrix((val_np, (row_np, col_np)), shape=self.shape).tocsr()
            csr.sort_indices()
            self._scipy = csr
        return self._scipy

    def to_dense(self) -> Tensor:
        return self._csr.to_dense()

    def transpose(self) -> "CachedSparseMatrix":
        return CachedSparseMatrix(self.val, self.col, self.row, (self.shape[1], self.shape[0]))

    def to(self, device=None, dtype=None) -> "CachedSparseMatrix":
        val = self.val.to(device=device or self.device, dtype=dtype or self.dtype)
        return CachedSparseMatrix(val, self.row.to(val.device), self.col.to(val.device), self.shape)

    @classmethod
    def from_dense(cls, A: Tensor) -> "CachedSparseMatrix":
        """Build from a dense 2-D tensor, keeping its non-zero entries"""
        if A.ndim != 2:
            raise ShapeMismatch("A", tuple(A.shape), "(m,n)")
        coo = A.detach().to_sparse_coo().coalesce()
        return cls(coo.values(), coo.indices()[0], coo.indices()[1], tuple(A.shape))

    @classmethod
    def from_csr(cls, val: Tensor, rowptr: Tensor, col: Tensor, shape: Tuple[int, int]) -> "CachedSparseMatrix":
        check_csr(val, rowptr, col, shape)
        counts = rowptr[1:] - rowptr[:-1]
        row = torch.repeat_interleave(torch.arange(shape[0], device=rowptr.device), counts)
        return cls(val, row, col, shape)

    @classmethod
    def from_csc(cls, val: Tensor, row: Tensor, colptr: Tensor, shape: Tuple[int, int]) -> "CachedSparseMatrix":
        check_csc(val, row, colptr, shape)
        counts = colptr[1:] - colptr[:-1]
        col = torch.repeat_interleave(torch.arange(shape[1], device=colptr.device), counts)
        return cls(val, row, col, shape)

    @classmethod
    def from_torch_sparse(cls, A: Tensor) -> "CachedSparseMatrix":
        """Build from any 2-D torch sparse layout (COO, CSR, CSC)"""
        if A.layout != torch.sparse_coo:
            A = A.to_sparse_coo()
        A = A.coalesce()
        return cls(A.values(), A.indices()[0], A.indices()[1], tuple(A.shape))

    @classmethod
    def from_scipy(cls, A, dtype: torch.dtype = torch.float64, device=torch.device('cpu')) -> "CachedSparseMatrix":
        coo = sp.coo_matrix(A)
        val = torch.from_numpy(np.asarray(coo.data)).to(device=device, dtype=dtype)
        row = torch.from_numpy(np.asarray(coo.row, dtype=np.int64)).to(device)
        col = torch.from_numpy(np.asarray(coo.col, dtype=np.int64)).to(device)
        return cls(val, row, col, coo.shape)


def aslinearoperator(A) -> LinearOperator:
    """
    Adapt a matrix-like object to the operator interface used by the solvers.

    Parameters
    ----------
    A : LinearOperator, torch.Tensor (dense or sparse) or scipy.sparse matrix

    Returns
    -------
    LinearOperator
    """
    if isinstance(A, LinearOperator):
        return A
    if isinstance(A, Tensor):
        if A.layout == torch.strided:
            return CachedSparseMatrix.from_dense(A)
        return CachedSparseMatrix.from_torch_sparse(A)
    if sp.issparse(A):
        return CachedSparseMatrix.from_scipy(A)
    raise TypeError(f"Cannot interpret {type(A).__name__} as a linear operator")
