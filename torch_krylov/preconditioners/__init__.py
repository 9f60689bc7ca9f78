"""
Preconditioners for the iterative solvers.

Available preconditioners (roughly ordered by setup cost):
- 'none': No preconditioning
- 'diagonal' / 'jacobi': Diagonal (Jacobi) scaling
- 'ssor': Symmetric successive over-relaxation
- 'icc': Incomplete Cholesky, zero fill-in (SPD matrices)
- 'ilu': Incomplete LU, zero fill-in
- 'ilut': Threshold incomplete LU
- 'amg': Smoothed-aggregation algebraic multigrid
"""

from typing import Dict, List, Type, Union

from .base import Preconditioner, Identity, Diagonal
from .ssor import SSOR
from .incomplete import ICC, ILU, ILUT
from .amg import AMG

# Name -> preconditioner class mapping
PRECONDITIONERS: Dict[str, Type[Preconditioner]] = {
    'none': Identity,
    'identity': Identity,
    'diagonal': Diagonal,
    'jacobi': Diagonal,
    'ssor': SSOR,
    'icc': ICC,
    'ilu': ILU,
    'ilut': ILUT,
    'amg': AMG,
}


def get_available_preconditioners() -> List[str]:
    """Get list of registered preconditioner names"""
    return list(PRECONDITIONERS)


def register_preconditioner(name: str, cls: Type[Preconditioner]):
    """Make a Preconditioner subclass available by name"""
    if not (isinstance(cls, type) and issubclass(cls, Preconditioner)):
        raise TypeError(f"{cls!r} is not a Preconditioner subclass")
    PRECONDITIONERS[name] = cls


def get_preconditioner(name: Union[str, Preconditioner, None] = 'none',
                       A=None,
                       **options) -> Preconditioner:
    """
    Get preconditioner by name.

    Parameters
    ----------
    name : str or Preconditioner
        Preconditioner name, or an instance that is returned as is
    A : matrix-like, optional
        When given, ``set_matrix(A)`` is called on the result
    **options
        Constructor options of the preconditioner class

    Returns
    -------
    Preconditioner
    """
    if name is None:
        name = 'none'
    if isinstance(name, Preconditioner):
        precond = name
    else:
        try:
            cls = PRECONDITIONERS[name]
        except KeyError:
            raise ValueError(f"Unknown preconditioner: {name}. "
                             f"Available: {', '.join(PRECONDITIONERS)}") from None
        precond = cls(**options)
    if A is not None:
        precond.set_matrix(A)
    return precond


__all__ = [
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
]
