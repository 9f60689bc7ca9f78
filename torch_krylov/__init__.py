"""
torch-krylov: Iterative Krylov Solvers for PyTorch

Preconditioned iterative solvers for large sparse linear systems ``A x = b``,
with vectors as 1-D torch tensors on any device.

Methods
-------
- SPD: CG, Chebyshev
- General: BiCG, CGS, BiCGstab, QMR, GMRES(m), iterative refinement

Preconditioners
---------------
- Identity, Diagonal (Jacobi), SSOR
- Incomplete factorizations: ICC, ILU(0), ILUT
- Smoothed-aggregation algebraic multigrid (AMG)

Features
--------
- One IterationMonitor deciding convergence / divergence for every method
- Failures reported as NotConvergedError with reason, iterations and residual
- Gradient support through ``spsolve`` via torch.autograd (adjoint solve)

Usage
-----
>>> import torch
>>> from torch_krylov import spsolve, solve, new_solver, IterationMonitor
>>>
>>> val = torch.tensor([4.0, -1.0, -1.0, 4.0, -1.0, -1.0, 4.0], dtype=torch.float64)
>>> row = torch.tensor([0, 0, 1, 1, 1, 2, 2])
>>> col = torch.tensor([0, 1, 0, 1, 2, 1, 2])
>>> b = torch.tensor([1.0, 2.0, 3.0], dtype=torch.float64)
>>>
>>> # Method 1: COO entry point, differentiable w.r.t. val and b
>>> x = spsolve(val, row, col, (3, 3), b, method='cg', preconditioner='jacobi')
>>>
>>> # Method 2: any matrix-like object
>>> A = torch.sparse_coo_tensor(torch.stack([row, col]), val, (3, 3))
>>> x = solve(A, b, method='gmres', preconditioner='ilu', restart=20)
>>>
>>> # Method 3: reusable solver with its own monitor
>>> solver = new_solver('bicgstab', A, monitor=IterationMonitor(rtol=1e-10))
>>> x = solver.solve(b)
>>> solver.iterations, solver.residual
"""

import logging

from .check import ShapeMismatch
from .exceptions import (
    Reason,
    NotConvergedError,
    BreakdownError,
    PreconditionerSetupError,
)
from .linear_operator import LinearOperator, CachedSparseMatrix, aslinearoperator
from .monitor import IterationMonitor, MonitorConfig, MonitorStatus
from .preconditioners import (
    Preconditioner,
    Identity,
    Diagonal,
    SSOR,
    ICC,
    ILU,
    ILUT,
    AMG,
    PRECONDITIONERS,
    get_available_preconditioners,
    register_preconditioner,
    get_preconditioner,
)
from .solvers import (
    IterativeSolver,
    CG,
    BiCG,
    CGS,
    BiCGstab,
    QMR,
    GMRES,
    Chebyshev,
    IR,
    estimate_eigenvalue_bounds,
    SOLVER_METHODS,
    get_available_methods,
    register_solver,
)
from .linear_solve import (
    DEFAULT_METHOD,
    new_solver,
    solve,
    spsolve,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Facade
    "new_solver",
    "solve",
    "spsolve",
    "DEFAULT_METHOD",
    # Operators
    "LinearOperator",
    "CachedSparseMatrix",
    "aslinearoperator",
    # Monitor
    "IterationMonitor",
    "MonitorConfig",
    "MonitorStatus",
    # Errors
    "ShapeMismatch",
    "Reason",
    "NotConvergedError",
    "BreakdownError",
    "PreconditionerSetupError",
    # Preconditioners
    "Preconditioner",
    "Identity",
    "Diagonal",
    "SSOR",
    "ICC",
    "ILU",
    "ILUT",
    "AMG",
    "PRECONDITIONERS",
    "get_available_preconditioners",
    "register_preconditioner",
    "get_preconditioner",
    # Solvers
    "IterativeSolver",
    "CG",
    "BiCG",
    "CGS",
    "BiCGstab",
    "QMR",
    "GMRES",
    "Chebyshev",
    "IR",
    "estimate_eigenvalue_bounds",
    "SOLVER_METHODS",
    "get_available_methods",
    "register_solver",
]
