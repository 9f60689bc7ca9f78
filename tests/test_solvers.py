"""
Tests for the iterative solvers.

Tests cover:
- CG on SPD systems, relative residual below rtol
- Nonsymmetric systems for BiCG, CGS, BiCGstab, QMR, GMRES and IR
- Chebyshev with exact and estimated eigenvalue bounds
- Zero right-hand side, shape mismatch, breakdown and iteration limit
- Solver reuse, cancellation and float32 support
"""

import pytest
import torch
from itertools import product
import sys

sys.path.insert(0, "..")
from torch_krylov import (
    CachedSparseMatrix,
    LinearOperator,
    IterationMonitor,
    MonitorConfig,
    NotConvergedError,
    BreakdownError,
    ShapeMismatch,
    Reason,
    CG,
    BiCG,
    CGS,
    BiCGstab,
    QMR,
    GMRES,
    Chebyshev,
    IR,
    estimate_eigenvalue_bounds,
    new_solver,
    get_available_methods,
    get_preconditioner,
)


def create_spd(n: int, seed: int = 0, dtype=torch.float64):
    """Well-conditioned sparse SPD matrix."""
    g = torch.Generator().manual_seed(seed)
    R = torch.rand(n, n, generator=g, dtype=dtype)
    R[R < 0.95] = 0
    A = R @ R.T + torch.eye(n, dtype=dtype) * n / 2
    return A


def create_tridiagonal_spd(n: int, dtype=torch.float64):
    """Tridiagonal SPD matrix (like 1D Poisson), eigenvalues in (2, 6)."""
    A = torch.diag(torch.full((n,), 4.0, dtype=dtype)) \
        - torch.diag(torch.ones(n - 1, dtype=dtype), 1) \
        - torch.diag(torch.ones(n - 1, dtype=dtype), -1)
    return A


def create_nonsymmetric(n: int, seed: int = 0, dtype=torch.float64):
    """Sparse, diagonally dominant, nonsymmetric matrix."""
    g = torch.Generator().manual_seed(seed)
    A = torch.rand(n, n, generator=g, dtype=dtype) - 0.5
    A[torch.rand(n, n, generator=g) < 0.6] = 0
    A = A + torch.diag(torch.linspace(n / 2, n, n, dtype=dtype))
    return A


def random_vector(n: int, seed: int = 1, dtype=torch.float64):
    g = torch.Generator().manual_seed(seed)
    return torch.randn(n, generator=g, dtype=dtype)


def relative_residual(A: torch.Tensor, x: torch.Tensor, b: torch.Tensor) -> float:
    return (torch.linalg.vector_norm(b - A @ x) / torch.linalg.vector_norm(b)).item()


# options needed to construct each method on the tridiagonal matrix
METHOD_OPTIONS = {
    'chebyshev': dict(eig_min=2.0, eig_max=6.0),
}


# ============================================================================
# Convergence
# ============================================================================

class TestSPD:
    """Test methods for symmetric positive definite matrices."""

    @pytest.mark.parametrize(['n', 'preconditioner'],
                             product([10, 50, 120], ['none', 'jacobi', 'icc', 'ssor', 'amg']))
    def test_cg(self, n, preconditioner):
        A = create_spd(n)
        b = random_vector(n)
        solver = CG(A, monitor=IterationMonitor(rtol=1e-8), preconditioner=preconditioner)
        x = solver.solve(b)
        assert relative_residual(A, x, b) < 1e-8
        assert solver.iterations <= n

    def test_cg_matches_dense(self):
        A = create_tridiagonal_spd(40)
        b = random_vector(40)
        x = CG(A, monitor=MonitorConfig(rtol=1e-12)).solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-9, atol=1e-10)

    def test_cg_initial_guess(self):
        A = create_tridiagonal_spd(40)
        b = random_vector(40)
        x_ref = torch.linalg.solve(A, b)
        x0 = x_ref + 1e-3 * random_vector(40, seed=5)
        x0_copy = x0.clone()
        x = CG(A, monitor=dict(rtol=1e-6)).solve(b, x0)
        torch.testing.assert_close(x, x_ref, rtol=1e-7, atol=1e-8)
        torch.testing.assert_close(x0, x0_copy)

    @pytest.mark.parametrize('preconditioner', ['none', 'jacobi', 'ilu'])
    def test_chebyshev_exact_bounds(self, preconditioner):
        A = create_tridiagonal_spd(60)
        b = random_vector(60)
        if preconditioner == 'none':
            eigs = torch.linalg.eigvalsh(A)
        else:
            M = get_preconditioner(preconditioner, A)
            MA = torch.stack([M.apply(c) for c in A.T]).T
            eigs = torch.linalg.eigvals(MA).real
        solver = Chebyshev(A, eigs.min().item(), eigs.max().item(),
                           monitor=IterationMonitor(rtol=1e-10), preconditioner=preconditioner)
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)

    def test_estimate_eigenvalue_bounds(self):
        A = create_tridiagonal_spd(30)
        eigs = torch.linalg.eigvalsh(A)
        lo, hi = estimate_eigenvalue_bounds(A, num_iters=200)
        assert eigs.min().item() - 1e-8 <= lo < hi <= eigs.max().item() + 1e-8
        assert hi > 0.9 * eigs.max().item()

    def test_chebyshev_estimated_bounds(self):
        A = create_spd(40)
        b = random_vector(40)
        lo, hi = estimate_eigenvalue_bounds(A, preconditioner='jacobi', num_iters=100)
        solver = Chebyshev(A, 0.5 * lo, 1.5 * hi, monitor=IterationMonitor(rtol=1e-8),
                           preconditioner='jacobi')
        x = solver.solve(b)
        assert relative_residual(A, x, b) < 1e-6

    @pytest.mark.parametrize(['eig_min', 'eig_max'], [(0.0, 1.0), (2.0, 1.0), (-1.0, 1.0)])
    def test_chebyshev_invalid_bounds(self, eig_min, eig_max):
        with pytest.raises(ValueError):
            Chebyshev(create_tridiagonal_spd(5), eig_min, eig_max)


class TestNonsymmetric:
    """Test methods for general matrices."""

    @pytest.mark.parametrize(['n', 'method', 'preconditioner'],
                             product([20, 80],
                                     ['bicg', 'cgs', 'bicgstab', 'qmr', 'gmres'],
                                     ['none', 'jacobi', 'ilu', 'ilut']))
    def test_solve(self, n, method, preconditioner):
        A = create_nonsymmetric(n)
        b = random_vector(n)
        solver = new_solver(method, A, monitor=IterationMonitor(rtol=1e-12),
                            preconditioner=preconditioner)
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)

    @pytest.mark.parametrize('preconditioner', ['jacobi', 'ilu', 'amg'])
    def test_ir(self, preconditioner):
        A = create_nonsymmetric(40)
        b = random_vector(40)
        solver = IR(A, monitor=IterationMonitor(rtol=1e-10), preconditioner=preconditioner)
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)

    def test_ir_reports_true_residual(self):
        A = create_nonsymmetric(30)
        b = random_vector(30)
        solver = IR(A, monitor=IterationMonitor(rtol=1e-8), preconditioner='jacobi')
        x = solver.solve(b)
        true = torch.linalg.vector_norm(b - A @ x).item()
        assert solver.residual == pytest.approx(true, rel=1e-6, abs=1e-14)

    @pytest.mark.parametrize('restart', [1, 3, 30])
    def test_gmres_restart(self, restart):
        A = create_nonsymmetric(50)
        b = random_vector(50)
        solver = GMRES(A, monitor=IterationMonitor(rtol=1e-10), restart=restart)
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-7, atol=1e-8)

    def test_gmres_counts_arnoldi_steps(self):
        """Each Arnoldi step is one iteration, restarts are not counted twice."""
        Ad = create_nonsymmetric(30)
        calls = []

        def matvec(v):
            calls.append(1)
            return Ad @ v

        op = LinearOperator((30, 30), matvec)
        solver = GMRES(op, monitor=IterationMonitor(rtol=1e-8, max_iterations=1000), restart=1)
        solver.solve(random_vector(30))
        # one initial residual, then one Arnoldi step and one residual per cycle
        assert len(calls) % 2 == 1
        assert solver.iterations == (len(calls) - 1) // 2

    def test_gmres_iteration_limit(self):
        Ad = create_nonsymmetric(30)
        calls = []

        def matvec(v):
            calls.append(1)
            return Ad @ v

        op = LinearOperator((30, 30), matvec)
        solver = GMRES(op, monitor=IterationMonitor(rtol=1e-14, max_iterations=5), restart=1)
        with pytest.raises(NotConvergedError) as info:
            solver.solve(random_vector(30))
        assert info.value.reason is Reason.ITERATIONS
        assert info.value.iterations == 5
        assert len(calls) == 1 + 2 * 5

    @pytest.mark.parametrize('method', ['bicg', 'qmr'])
    def test_transpose_ssor(self, method):
        """Methods using M^{-T} converge with SSOR on a nonsymmetric system."""
        A = create_nonsymmetric(60)
        b = random_vector(60)
        solver = new_solver(method, A, monitor=IterationMonitor(rtol=1e-12, max_iterations=500),
                            preconditioner='ssor')
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)

    def test_gmres_invalid_restart(self):
        with pytest.raises(ValueError):
            GMRES(create_nonsymmetric(5), restart=0)

    def test_qmr_right_preconditioner(self):
        A = create_nonsymmetric(40)
        b = random_vector(40)
        solver = QMR(A, monitor=IterationMonitor(rtol=1e-12), right_preconditioner='jacobi')
        x = solver.solve(b)
        torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)

    def test_matrix_free(self):
        Ad = create_nonsymmetric(30)
        op = LinearOperator((30, 30), lambda v: Ad @ v, lambda v: Ad.T @ v)
        b = random_vector(30)
        for cls in [BiCG, CGS, BiCGstab, QMR, GMRES]:
            x = cls(op, monitor=IterationMonitor(rtol=1e-12)).solve(b)
            torch.testing.assert_close(x, torch.linalg.solve(Ad, b), rtol=1e-8, atol=1e-9)

    def test_missing_transpose(self):
        Ad = create_nonsymmetric(10)
        op = LinearOperator((10, 10), lambda v: Ad @ v)
        with pytest.raises(NotImplementedError):
            BiCG(op).solve(random_vector(10))


# ============================================================================
# Edge cases
# ============================================================================

class TestEdgeCases:
    """Test zero right-hand side, shape checks and failures."""

    @pytest.mark.parametrize('method', get_available_methods())
    def test_zero_rhs(self, method):
        A = create_tridiagonal_spd(12)
        solver = new_solver(method, A, **METHOD_OPTIONS.get(method, {}))
        x = solver.solve(torch.zeros(12, dtype=torch.float64))
        assert torch.count_nonzero(x) == 0
        assert solver.iterations == 0

    @pytest.mark.parametrize('method', get_available_methods())
    def test_shape_mismatch(self, method):
        A = create_tridiagonal_spd(12)
        solver = new_solver(method, A, **METHOD_OPTIONS.get(method, {}))
        with pytest.raises(ShapeMismatch):
            solver.solve(torch.ones(11, dtype=torch.float64))
        with pytest.raises(ShapeMismatch):
            solver.solve(torch.ones(12, dtype=torch.float64), torch.zeros(13, dtype=torch.float64))
        assert solver.monitor.is_first

    def test_not_square(self):
        with pytest.raises(ShapeMismatch):
            CG(torch.ones(3, 4, dtype=torch.float64))

    def test_cg_breakdown(self):
        """p^T A p vanishes for this indefinite matrix."""
        A = torch.diag(torch.tensor([1.0, -1.0], dtype=torch.float64))
        b = torch.tensor([1.0, 1.0], dtype=torch.float64)
        with pytest.raises(BreakdownError) as info:
            CG(A).solve(b)
        assert info.value.reason is Reason.DIVERGENCE
        assert info.value.quantity == "pAp"
        assert info.value.x is not None

    def test_bicg_breakdown(self):
        A = torch.tensor([[0.0, 1.0], [1.0, 0.0]], dtype=torch.float64)
        b = torch.tensor([1.0, 0.0], dtype=torch.float64)
        with pytest.raises(BreakdownError) as info:
            BiCG(A).solve(b)
        assert info.value.reason is Reason.DIVERGENCE
        assert isinstance(info.value, NotConvergedError)

    @pytest.mark.parametrize('method', ['cgs', 'bicgstab', 'qmr'])
    def test_shadow_breakdown(self, method):
        """The shadow residual is orthogonal to A r on the first step."""
        A = torch.tensor([[0.0, 1.0], [1.0, 0.0]], dtype=torch.float64)
        b = torch.tensor([1.0, 0.0], dtype=torch.float64)
        with pytest.raises(BreakdownError) as info:
            new_solver(method, A).solve(b)
        assert info.value.reason is Reason.DIVERGENCE
        assert info.value.x is not None

    @pytest.mark.parametrize('method', get_available_methods())
    def test_nan_entry(self, method):
        A = 4.0 * torch.eye(6, dtype=torch.float64)
        A[1, 2] = float('nan')
        solver = new_solver(method, A, **METHOD_OPTIONS.get(method, {}))
        with pytest.raises(NotConvergedError) as info:
            solver.solve(torch.ones(6, dtype=torch.float64))
        assert info.value.reason is Reason.DIVERGENCE_NAN

    def test_iteration_limit(self):
        A = create_spd(50)
        b = random_vector(50)
        with pytest.raises(NotConvergedError) as info:
            CG(A, monitor=dict(max_iterations=2, rtol=1e-12)).solve(b)
        err = info.value
        assert err.reason is Reason.ITERATIONS
        assert err.iterations == 2
        assert err.x is not None and err.x.shape == (50,)
        assert err.residual > 0

    def test_cancel_from_callback(self):
        A = create_spd(60)
        b = random_vector(60)
        monitor = IterationMonitor(rtol=1e-14)
        monitor.callback = lambda it, r: monitor.cancel() if it == 3 else None
        with pytest.raises(NotConvergedError) as info:
            CG(A, monitor=monitor).solve(b)
        assert info.value.reason is Reason.CANCELLED
        assert info.value.iterations == 3

    def test_reuse(self):
        A = create_tridiagonal_spd(30)
        solver = CG(A, monitor=IterationMonitor(rtol=1e-10))
        for seed in [1, 2]:
            b = random_vector(30, seed=seed)
            x = solver.solve(b)
            torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-8, atol=1e-9)
            assert solver.monitor.initial_residual == pytest.approx(
                torch.linalg.vector_norm(b).item())

    @pytest.mark.parametrize('method', ['cg', 'bicgstab', 'gmres'])
    def test_float32(self, method):
        A = create_tridiagonal_spd(30, dtype=torch.float32)
        b = random_vector(30, dtype=torch.float32)
        solver = new_solver(method, A, monitor=IterationMonitor(rtol=1e-5))
        x = solver.solve(b)
        assert x.dtype == torch.float32
        x_ref = torch.linalg.solve(A.double(), b.double()).float()
        torch.testing.assert_close(x, x_ref, rtol=1e-4, atol=1e-4)

    def test_sparse_tensor_input(self):
        A = create_tridiagonal_spd(20)
        b = random_vector(20)
        for layout in [A.to_sparse_coo(), A.to_sparse_csr(), CachedSparseMatrix.from_dense(A)]:
            x = CG(layout, monitor=IterationMonitor(rtol=1e-12)).solve(b)
            torch.testing.assert_close(x, torch.linalg.solve(A, b), rtol=1e-9, atol=1e-10)
