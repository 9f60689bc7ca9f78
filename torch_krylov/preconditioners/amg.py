"""
Smoothed-aggregation algebraic multigrid (AMG) preconditioner.

Setup (``set_matrix``) builds a hierarchy of Galerkin operators
``A_{k+1} = P_k^T A_k P_k``. On each level:

1. strongly coupled neighbourhoods are found with the threshold
   ``|a_ij| >= eps_k * sqrt(a_ii * a_jj)``, ``eps_k = 0.08 * 0.5**k``
2. nodes are grouped into aggregates (initial, enlarge and final passes)
3. the tentative piecewise-constant prolongation is smoothed by one damped
   Jacobi step, ``P = (I - omega D^{-1} A_F) P_t``, where ``A_F`` keeps the
   strong couplings and lumps the weak ones onto the diagonal

Coarsening stops once a level has at most ``min_size`` rows (or no
aggregate can be formed); the coarsest operator is LU-factorized densely.
``apply`` runs one multigrid cycle (``gamma=1`` is a V-cycle) from a zero
initial guess with SSOR pre- and post-smoothing. ``apply_transpose`` runs
the transposed cycle on ``A^T``: transposed post-smoothing sweeps first,
transposed pre-smoothing sweeps last.
"""

import logging
from typing import List, Set, Tuple

import numpy as np
import scipy.sparse as sp
import torch
from torch import Tensor

from ..exceptions import PreconditionerSetupError
from ..linear_operator import LinearOperator
from .base import Preconditioner, to_numpy, from_numpy
from .ssor import SSOR

logger = logging.getLogger(__name__)


class AMG(Preconditioner):
    """
    Parameters
    ----------
    omega_pre_forward, omega_pre_backward : float
        SSOR relaxation of the pre-smoother, by default 1.0 and 1.85
    omega_post_forward, omega_post_backward : float
        SSOR relaxation of the post-smoother, by default 1.85 and 1.0
    nu1, nu2 : int
        Number of pre- and post-smoothing sweeps, by default 1
    gamma : int
        Recursive calls per level: 1 for a V-cycle, 2 for a W-cycle
    min_size : int
        Levels with at most this many rows are solved directly, by default 40
    omega : float
        Jacobi damping of the prolongation smoother; 0 keeps the tentative
        prolongation, by default 2/3
    reverse : bool
        Run the backward SSOR sweep, by default True
    """

    def __init__(self,
                 omega_pre_forward: float = 1.0,
                 omega_pre_backward: float = 1.85,
                 omega_post_forward: float = 1.85,
                 omega_post_backward: float = 1.0,
                 nu1: int = 1,
                 nu2: int = 1,
                 gamma: int = 1,
                 min_size: int = 40,
                 omega: float = 2.0 / 3.0,
                 reverse: bool = True):
        super().__init__()
        if nu1 < 0 or nu2 < 0:
            raise ValueError(f"nu1 and nu2 must be non-negative, got {nu1}, {nu2}")
        if gamma < 1:
            raise ValueError(f"gamma must be at least 1, got {gamma}")
        if min_size < 1:
            raise ValueError(f"min_size must be at least 1, got {min_size}")
        self.omega_pre = (omega_pre_forward, omega_pre_backward)
        self.omega_post = (omega_post_forward, omega_post_backward)
        self.nu1 = nu1
        self.nu2 = nu2
        self.gamma = gamma
        self.min_size = min_size
        self.omega = omega
        self.reverse = reverse

    @property
    def num_levels(self) -> int:
        return len(self._levels)

    @property
    def level_sizes(self) -> List[int]:
        return [A.shape[0] for A in self._levels]

    def _setup(self, A: LinearOperator):
        Af = sp.csr_matrix(self._require_entries(A).to_scipy(), dtype=np.float64)
        Af.sort_indices()
        levels = [Af]
        prolongations = []

        k = 0
        while levels[-1].shape[0] > self.min_size:
            Af = levels[-1]
            eps = 0.08 * 0.5 ** k
            aggregates, neighbourhoods = _aggregate(Af, eps)
            if len(aggregates) == 0 or len(aggregates) >= Af.shape[0]:
                break
            P = _prolongation(Af, aggregates, neighbourhoods, self.omega)
            Ac = (P.T @ Af @ P).tocsr()
            Ac.sort_indices()
            levels.append(Ac)
            prolongations.append(P)
            k += 1

        coarse = torch.from_numpy(levels[-1].toarray())
        LU, pivots, info = torch.linalg.lu_factor_ex(coarse)
        if info.item() != 0 or not torch.isfinite(LU).all():
            raise PreconditionerSetupError(
                f"coarsest AMG operator ({coarse.shape[0]} rows) is singular")

        pre, post = [], []
        for Ak in levels[:-1]:
            pre.append(SSOR(*self.omega_pre, reverse=self.reverse).setup_csr(Ak))
            post.append(SSOR(*self.omega_post, reverse=self.reverse).setup_csr(Ak))

        self._levels = levels
        self._levels_t = [Ak.T.tocsr() for Ak in levels[:-1]]
        self._prolongations = prolongations
        self._restrictions = [P.T.tocsr() for P in prolongations]
        self._lu = (LU, pivots)
        self._pre = pre
        self._post = post
        logger.debug("AMG hierarchy with %d levels: %s", len(levels), self.level_sizes)

    def _direct_solve(self, f: np.ndarray, transpose: bool) -> np.ndarray:
        LU, pivots = self._lu
        rhs = torch.from_numpy(f).unsqueeze(1)
        return torch.linalg.lu_solve(LU, pivots, rhs, adjoint=transpose).squeeze(1).numpy()

    def _cycle(self, k: int, f: np.ndarray, u: np.ndarray, transpose: bool) -> np.ndarray:
        if k == len(self._levels) - 1:
            return self._direct_solve(f, transpose)

        if transpose:
            # transposed cycle: the post-smoother transposed comes first
            for _ in range(self.nu2):
                u = self._post[k].sweep_transpose(f, u)
        else:
            for _ in range(self.nu1):
                u = self._pre[k].sweep(f, u)

        Ak = self._levels_t[k] if transpose else self._levels[k]
        r = f - Ak @ u
        fc = self._restrictions[k] @ r
        uc = np.zeros_like(fc)
        for _ in range(self.gamma):
            uc = self._cycle(k + 1, fc, uc, transpose)
        u = u + self._prolongations[k] @ uc

        if transpose:
            for _ in range(self.nu1):
                u = self._pre[k].sweep_transpose(f, u)
        else:
            for _ in range(self.nu2):
                u = self._post[k].sweep(f, u)
        return u

    def apply(self, r: Tensor) -> Tensor:
        f = to_numpy(r)
        return from_numpy(self._cycle(0, f, np.zeros_like(f), False), r)

    def apply_transpose(self, r: Tensor) -> Tensor:
        f = to_numpy(r)
        return from_numpy(self._cycle(0, f, np.zeros_like(f), True), r)


def _aggregate(A: "sp.csr_matrix", eps: float) -> Tuple[List[Set[int]], List[Set[int]]]:
    """Group the nodes of ``A`` into aggregates of strongly coupled nodes"""
    n = A.shape[0]
    indptr, indices, data = A.indptr, A.indices, A.data
    d = A.diagonal()
    rows = np.repeat(np.arange(n), np.diff(indptr))
    missing = np.setdiff1d(np.arange(n), rows[rows == indices])
    if missing.size:
        raise PreconditionerSetupError(f"matrix is missing a diagonal entry on row {missing[0]}")

    with np.errstate(invalid='ignore'):
        strong = np.abs(data) >= eps * np.sqrt(d[rows] * d[indices])
    neighbourhoods = [set(indices[indptr[i]:indptr[i + 1]][strong[indptr[i]:indptr[i + 1]]].tolist())
                      for i in range(n)]

    # nodes without off-diagonal couplings stay out of every aggregate
    offdiag = (rows != indices) & (data != 0)
    free = np.zeros(n, dtype=bool)
    free[rows[offdiag]] = True

    aggregates: List[Set[int]] = []
    for i in range(n):
        if free[i] and all(free[j] for j in neighbourhoods[i]):
            aggregates.append(set(neighbourhoods[i]))
            for j in neighbourhoods[i]:
                free[j] = False

    belong: List[List[int]] = [[] for _ in range(n)]
    for k, C in enumerate(aggregates):
        for j in C:
            belong[j].append(k)
    for i in range(n):
        if not free[i]:
            continue
        counts = {}
        largest, max_count = -1, 0
        for j in neighbourhoods[i]:
            for k in belong[j]:
                counts[k] = counts.get(k, 0) + 1
                if counts[k] > max_count:
                    largest, max_count = k, counts[k]
        if max_count > 0:
            free[i] = False
            aggregates[largest].add(i)

    for i in range(n):
        if not free[i]:
            continue
        C = set()
        for j in neighbourhoods[i]:
            if free[j]:
                free[j] = False
                C.add(j)
        if C:
            aggregates.append(C)

    return aggregates, neighbourhoods


def _prolongation(A: "sp.csr_matrix", aggregates: List[Set[int]],
                  neighbourhoods: List[Set[int]], omega: float) -> "sp.csr_matrix":
    """Tentative prolongation, smoothed by damped Jacobi when ``omega != 0``"""
    n, c = A.shape[0], len(aggregates)
    pt = np.full(n, -1, dtype=np.int64)
    for k, C in enumerate(aggregates):
        for j in C:
            pt[j] = k

    if omega == 0:
        rows = np.flatnonzero(pt >= 0)
        return sp.csr_matrix((np.ones(rows.size), (rows, pt[rows])), shape=(n, c))

    indptr, indices, data = A.indptr, A.indices, A.data
    d = A.diagonal()
    P_rows, P_cols, P_vals = [], [], []
    for i in range(n):
        if pt[i] == -1:
            continue
        dot = {}
        weak = 0.0
        Ni = neighbourhoods[i]
        for p in range(indptr[i], indptr[i + 1]):
            j = indices[p]
            if pt[j] == -1:
                continue
            aij = data[p]
            if aij != 0 and j not in Ni:
                weak += aij
                continue
            dot[pt[j]] = dot.get(pt[j], 0.0) + aij
        dot[pt[i]] = dot.get(pt[i], 0.0) - weak

        scale = -omega / d[i]
        for k in dot:
            dot[k] *= scale
        dot[pt[i]] += 1.0

        for k, v in dot.items():
            if v != 0:
                P_rows.append(i)
                P_cols.append(k)
                P_vals.append(v)

    return sp.csr_matrix((np.asarray(P_vals), (np.asarray(P_rows, dtype=np.int64),
                                                np.asarray(P_cols, dtype=np.int64))),
                         shape=(n, c))
