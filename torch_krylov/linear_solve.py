import logging
import warnings
from typing import Literal, Optional, Tuple, Union

import torch
from torch.autograd.function import Function

from .exceptions import NotConvergedError
from .linear_operator import CachedSparseMatrix
from .monitor import IterationMonitor, MonitorConfig
from .preconditioners import Preconditioner
from .solvers import IterativeSolver, SOLVER_METHODS

logger = logging.getLogger(__name__)

MethodType = Literal['cg', 'bicg', 'cgs', 'bicgstab', 'qmr', 'gmres', 'chebyshev', 'ir']

DEFAULT_METHOD = 'cg'


def new_solver(method: Union[MethodType, str],
               A,
               monitor: Union[IterationMonitor, MonitorConfig, dict, None] = None,
               preconditioner: Union[Preconditioner, str, None] = None,
               **options) -> IterativeSolver:
    """Build a solver of the given method for ``A``

    Parameters
    ----------
    method : str
        One of :func:`get_available_methods`
    A : matrix-like
        Square operator: LinearOperator, torch dense/sparse tensor or scipy sparse matrix
    monitor : IterationMonitor, MonitorConfig or dict, optional
        Termination control, by default ``IterationMonitor()``
    preconditioner : Preconditioner or str, optional
        Preconditioner instance or name, by default none
    **options
        Method specific keywords, e.g. ``restart`` for GMRES, ``eig_min`` /
        ``eig_max`` for Chebyshev, ``right_preconditioner`` for QMR

    Returns
    -------
    IterativeSolver
    """
    try:
        cls = SOLVER_METHODS[method]
    except KeyError:
        raise ValueError(f"Unknown method: {method}. "
                         f"Available: {', '.join(SOLVER_METHODS)}") from None
    return cls(A, monitor=monitor, preconditioner=preconditioner, **options)


def solve(A,
          b: torch.Tensor,
          x0: Optional[torch.Tensor] = None,
          method: Union[MethodType, str] = DEFAULT_METHOD,
          monitor: Union[IterationMonitor, MonitorConfig, dict, None] = None,
          preconditioner: Union[Preconditioner, str, None] = None,
          **options) -> torch.Tensor:
    """Solve ``A x = b`` with an iterative method

    Parameters
    ----------
    A : matrix-like
        Square operator
    b : torch.Tensor
        [n]
    x0 : torch.Tensor, optional
        [n] initial guess, by default zero
    method : str, optional
        by default "cg"

    Other parameters are those of :func:`new_solver`.

    Returns
    -------
    torch.Tensor
        [n]

    Raises
    ------
    ShapeMismatch
        ``b`` or ``x0`` does not match ``A``
    NotConvergedError
        The iteration stopped without converging; ``err.x`` is the last iterate
    """
    solver = new_solver(method, A, monitor=monitor, preconditioner=preconditioner, **options)
    return solver.solve(b, x0)


def _solve_or_warn(A: CachedSparseMatrix, b: torch.Tensor, method: str, preconditioner: str,
                   config: MonitorConfig, raise_on_failure: bool, options: dict) -> torch.Tensor:
    solver = new_solver(method, A, monitor=config, preconditioner=preconditioner, **options)
    try:
        return solver.solve(b)
    except NotConvergedError as err:
        if raise_on_failure:
            raise
        warnings.warn(f"spsolve: {err}; returning the last iterate")
        return err.x


class SparseLinearSolve(Function):

    @staticmethod
    def forward(ctx,
                val: torch.Tensor,
                row: torch.Tensor,
                col: torch.Tensor,
                shape: Tuple[int, int],
                b: torch.Tensor,
                method: str,
                preconditioner: str,
                config: MonitorConfig,
                raise_on_failure: bool,
                options: dict):
        A = CachedSparseMatrix(val, row, col, shape)
        u = _solve_or_warn(A, b, method, preconditioner, config, raise_on_failure, options)
        ctx.save_for_backward(val, row, col, u)
        ctx.A_shape = shape
        ctx.method = method
        ctx.preconditioner = preconditioner
        ctx.config = config
        ctx.raise_on_failure = raise_on_failure
        ctx.options = options
        return u

    @staticmethod
    def backward(ctx, gradu):
        val, row, col, u = ctx.saved_tensors
        m, n = ctx.A_shape
        # adjoint system A^T g = dL/du
        At = CachedSparseMatrix(val, col, row, (n, m))
        gradb = _solve_or_warn(At, gradu.contiguous(), ctx.method, ctx.preconditioner,
                               ctx.config, ctx.raise_on_failure, ctx.options)
        gradval = - gradb[row] * u[col]

        return gradval, None, None, None, gradb, None, None, None, None, None


def spsolve(val: torch.Tensor,
            row: torch.Tensor,
            col: torch.Tensor,
            shape: Tuple[int, int],
            b: torch.Tensor,
            method: Union[MethodType, str] = DEFAULT_METHOD,
            preconditioner: str = "none",
            rtol: float = 1e-10,
            atol: float = 1e-50,
            maxiter: int = 10000,
            raise_on_failure: bool = True,
            **options) -> torch.Tensor:
    """Solve the sparse linear equation represented in COO format with gradient support

    Only the val and b can receive gradient

    .. math::
        Ax = b

    The backward pass solves the adjoint system :math:`A^T g = \\partial L/\\partial x`
    with the same method and preconditioner.

    Parameters
    ----------
    val : torch.Tensor
        [nnz]
    row : torch.Tensor
        [nnz]
    col : torch.Tensor
        [nnz]
    shape : Tuple[int, int]
        (n, n)
    b : torch.Tensor
        [n]
    method : str, optional
        One of :func:`get_available_methods`, by default "cg"
    preconditioner : str, optional
        One of :func:`get_available_preconditioners`, by default "none"
    rtol : float, optional
        Relative tolerance, by default 1e-10
    atol : float, optional
        Absolute tolerance, by default 1e-50
    maxiter : int, optional
        Maximum number of iterations, by default 10000
    raise_on_failure : bool, optional
        Raise NotConvergedError when the iteration fails, otherwise warn and
        return the last iterate, by default True
    **options
        Method specific keywords, see :func:`new_solver`. A QMR
        ``right_preconditioner`` is given by name as well

    Returns
    -------
    torch.Tensor
        [n]
    """
    for key, value in [('preconditioner', preconditioner),
                       ('right_preconditioner', options.get('right_preconditioner', 'none'))]:
        if value is not None and not isinstance(value, str):
            raise TypeError(f"spsolve takes a {key} name, the preconditioner is rebuilt "
                            f"for the adjoint system; got {type(value).__name__}")
    if method not in SOLVER_METHODS:
        raise ValueError(f"Unknown method: {method}. Available: {', '.join(SOLVER_METHODS)}")
    if val.dtype != b.dtype:
        raise ValueError(f"val and b must have same dtype, got {val.dtype} and {b.dtype}")
    if val.dtype != torch.float64:
        warnings.warn("float64 is recommended for iterative solves, "
                      f"{val.dtype} may stall before reaching rtol={rtol}")

    config = MonitorConfig(max_iterations=maxiter, rtol=rtol, atol=atol)
    logger.debug("spsolve method=%s preconditioner=%s shape=%s nnz=%d",
                 method, preconditioner, tuple(shape), val.shape[0])
    return SparseLinearSolve.apply(val, row, col, tuple(shape), b, method, preconditioner,
                                   config, raise_on_failure, options)
