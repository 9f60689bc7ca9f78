"""
Iterative solvers.

Methods:
- 'cg': Conjugate Gradient (SPD matrices)
- 'bicg': BiConjugate Gradient (general, uses A^T)
- 'cgs': Conjugate Gradient Squared (general)
- 'bicgstab': BiCGstab (general)
- 'qmr': Quasi-Minimal Residual (general, uses A^T)
- 'gmres': restarted GMRES (general)
- 'chebyshev': Chebyshev iteration (needs eigenvalue bounds)
- 'ir': Iterative refinement (needs a good preconditioner)
"""

from typing import Dict, List, Type

from .base import IterativeSolver
from .cg import CG
from .bicg import BiCG, CGS, BiCGstab
from .qmr import QMR
from .gmres import GMRES
from .chebyshev import Chebyshev, estimate_eigenvalue_bounds
from .ir import IR

# Method -> solver class mapping
SOLVER_METHODS: Dict[str, Type[IterativeSolver]] = {
    'cg': CG,
    'bicg': BiCG,
    'cgs': CGS,
    'bicgstab': BiCGstab,
    'qmr': QMR,
    'gmres': GMRES,
    'chebyshev': Chebyshev,
    'ir': IR,
}


def get_available_methods() -> List[str]:
    """Get list of registered solver method names"""
    return list(SOLVER_METHODS)


def register_solver(name: str, cls: Type[IterativeSolver]):
    """Make an IterativeSolver subclass available by method name"""
    if not (isinstance(cls, type) and issubclass(cls, IterativeSolver)):
        raise TypeError(f"{cls!r} is not an IterativeSolver subclass")
    SOLVER_METHODS[name] = cls


__all__ = [
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
