#!/usr/bin/env python
"""
Basic Usage Examples for torch-krylov

This example demonstrates:
1. Solving with the facade and choosing method / preconditioner
2. Reusable solvers and the iteration monitor
3. Handling non-convergence
4. Chebyshev with estimated eigenvalue bounds
5. Gradients through spsolve
"""

import logging
import torch
import torch_krylov as tk


def create_poisson_2d(grid_n: int, dtype=torch.float64):
    """Create 2D Poisson matrix (5-point stencil) as a dense tensor."""
    T = torch.diag(torch.full((grid_n,), 2.0, dtype=dtype)) \
        - torch.diag(torch.ones(grid_n - 1, dtype=dtype), 1) \
        - torch.diag(torch.ones(grid_n - 1, dtype=dtype), -1)
    I = torch.eye(grid_n, dtype=dtype)
    return torch.kron(T, I) + torch.kron(I, T)


# =============================================================================
# 1. Facade
# =============================================================================

def example_1_solve():
    """Compare preconditioners on the same SPD system."""
    A = tk.CachedSparseMatrix.from_dense(create_poisson_2d(32))
    b = torch.ones(A.shape[0], dtype=torch.float64)

    for preconditioner in ['none', 'jacobi', 'ssor', 'icc', 'amg']:
        solver = tk.new_solver('cg', A, monitor={'rtol': 1e-8}, preconditioner=preconditioner)
        x = solver.solve(b)
        residual = torch.linalg.vector_norm(b - A @ x) / torch.linalg.vector_norm(b)
        print(f"cg+{preconditioner:8s}: {solver.iterations:4d} iterations, residual={residual:.1e}")


# =============================================================================
# 2. Monitor
# =============================================================================

def example_2_monitor():
    """Record the residual history of a GMRES solve."""
    A = create_poisson_2d(16) + torch.diag(torch.ones(255, dtype=torch.float64), 1) * 0.5
    b = torch.ones(256, dtype=torch.float64)

    monitor = tk.IterationMonitor(rtol=1e-10, callback=lambda it, r: print(f"  it={it:3d} r={r:.3e}")
                                  if it % 10 == 0 else None)
    solver = tk.GMRES(A, monitor=monitor, preconditioner='ilu', restart=20)
    solver.solve(b)
    print(f"GMRES(20)+ILU converged in {solver.iterations} iterations, "
          f"{len(monitor.residuals)} residual checks")


# =============================================================================
# 3. Failures
# =============================================================================

def example_3_not_converged():
    """Inspect a solve that hits the iteration limit."""
    A = create_poisson_2d(32)
    b = torch.ones(A.shape[0], dtype=torch.float64)
    try:
        tk.solve(A, b, method='cg', monitor={'max_iterations': 5, 'rtol': 1e-12})
    except tk.NotConvergedError as err:
        print(f"stopped: reason={err.reason.value}, iterations={err.iterations}, residual={err.residual:.2e}")
        x = err.x
        print(f"last iterate norm: {torch.linalg.vector_norm(x):.3f}")


# =============================================================================
# 4. Chebyshev
# =============================================================================

def example_4_chebyshev():
    """Chebyshev needs no inner products, only spectrum bounds."""
    A = tk.CachedSparseMatrix.from_dense(create_poisson_2d(16))
    b = torch.ones(A.shape[0], dtype=torch.float64)
    lo, hi = tk.estimate_eigenvalue_bounds(A, preconditioner='jacobi')
    print(f"estimated spectrum of D^-1 A: [{lo:.3e}, {hi:.3e}]")
    solver = tk.Chebyshev(A, 0.9 * lo, 1.1 * hi, monitor={'rtol': 1e-8}, preconditioner='jacobi')
    solver.solve(b)
    print(f"Chebyshev converged in {solver.iterations} iterations")


# =============================================================================
# 5. Gradients
# =============================================================================

def example_5_gradient():
    """Differentiate a loss through the linear solve."""
    A = create_poisson_2d(8).to_sparse_coo().coalesce()
    val = A.values().clone().requires_grad_(True)
    row, col = A.indices()
    b = torch.ones(A.shape[0], dtype=torch.float64, requires_grad=True)

    x = tk.spsolve(val, row, col, tuple(A.shape), b, method='cg', preconditioner='icc')
    loss = (x ** 2).sum()
    loss.backward()
    print(f"loss={loss.item():.4f}, |dL/dval|={val.grad.norm():.4f}, |dL/db|={b.grad.norm():.4f}")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    example_1_solve()
    example_2_monitor()
    example_3_not_converged()
    example_4_chebyshev()
    example_5_gradient()
