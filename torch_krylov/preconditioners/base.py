"""
Preconditioner interface and the two trivial variants.

Lifecycle: construct -> ``set_matrix(A)`` -> ``apply(r)`` any number of times.
All numerical setup (and every setup failure) happens in ``set_matrix``;
``apply`` never mutates the preconditioner, so a built preconditioner may be
shared read-only by several solves.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import torch
from torch import Tensor

from ..exceptions import PreconditionerSetupError
from ..linear_operator import LinearOperator, CachedSparseMatrix, aslinearoperator

logger = logging.getLogger(__name__)


class Preconditioner(ABC):
    """
    Approximate inverse ``M^{-1}`` of a square matrix.

    Subclasses implement ``_setup`` and ``apply``; ``apply_transpose``
    defaults to ``apply``, which is exact when ``M^{-1}`` is symmetric.
    """

    def __init__(self):
        self._matrix: Optional[LinearOperator] = None

    @property
    def is_set(self) -> bool:
        return self._matrix is not None

    @property
    def matrix(self) -> Optional[LinearOperator]:
        return self._matrix

    def set_matrix(self, A) -> "Preconditioner":
        """
        Build the preconditioner for ``A``.

        Raises
        ------
        PreconditionerSetupError
            When the preconditioner cannot be built for this matrix
        """
        A = aslinearoperator(A)
        if A.shape[0] != A.shape[1]:
            raise PreconditionerSetupError(
                f"{type(self).__name__} needs a square matrix, got shape {A.shape}")
        self._setup(A)
        self._matrix = A
        logger.debug("%s built for %s", type(self).__name__, A)
        return self

    @abstractmethod
    def _setup(self, A: LinearOperator):
        ...

    @abstractmethod
    def apply(self, r: Tensor) -> Tensor:
        """z = M^{-1} r"""

    def apply_transpose(self, r: Tensor) -> Tensor:
        """z = M^{-T} r"""
        return self.apply(r)

    def __call__(self, r: Tensor) -> Tensor:
        return self.apply(r)

    def _require_entries(self, A: LinearOperator) -> CachedSparseMatrix:
        if not isinstance(A, CachedSparseMatrix):
            raise PreconditionerSetupError(
                f"{type(self).__name__} needs explicit matrix entries, "
                f"got matrix-free {type(A).__name__}")
        return A

    def __repr__(self):
        return f"{type(self).__name__}(is_set={self.is_set})"


def to_numpy(r: Tensor) -> np.ndarray:
    """CPU float64 copy of a vector, for the SciPy based preconditioners"""
    return r.detach().cpu().numpy().astype(np.float64)


def from_numpy(z: np.ndarray, like: Tensor) -> Tensor:
    return torch.from_numpy(np.ascontiguousarray(z)).to(dtype=like.dtype, device=like.device)


class Identity(Preconditioner):
    """No preconditioning: ``apply(r) = r``"""

    def _setup(self, A: LinearOperator):
        pass

    def apply(self, r: Tensor) -> Tensor:
        return r


class Diagonal(Preconditioner):
    """
    Diagonal (Jacobi) preconditioner: M^{-1} = diag(A)^{-1}.

    Parameters
    ----------
    fallback : float, optional
        Value substituted for zero diagonal entries. By default a zero
        diagonal entry is a setup error; with a fallback it is replaced and a
        warning is issued.
    """

    def __init__(self, fallback: Optional[float] = None):
        super().__init__()
        self.fallback = fallback
        self._inv_diag: Optional[Tensor] = None

    def _setup(self, A: LinearOperator):
        diag = self._require_entries(A).diagonal.clone()
        bad = (diag == 0) | ~torch.isfinite(diag)
        if bad.any():
            rows = torch.nonzero(bad).flatten().tolist()
            if self.fallback is None:
                raise PreconditionerSetupError(
                    f"zero or non-finite diagonal entry on row(s) {rows[:10]}")
            warnings.warn(f"Diagonal preconditioner: replacing {len(rows)} zero diagonal "
                          f"entries by {self.fallback}")
            diag[bad] = self.fallback
        self._inv_diag = 1.0 / diag

    def apply(self, r: Tensor) -> Tensor:
        return self._inv_diag * r
