#!/usr/bin/env python
"""
Benchmark for torch-krylov iterative solvers.

Runs every method / preconditioner pair on 2D Poisson problems of growing
size and records wall time, iteration count and true relative residual.

Usage:
    python benchmark_solvers.py                  # Run full benchmark
    python benchmark_solvers.py --dtype float32  # Test with float32
    python benchmark_solvers.py --only-summary   # Print summary from cached data
"""

import argparse
import json
import os
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import torch

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import torch_krylov as tk

# Output directories
OUTPUT_DIR = Path(__file__).parent / "results" / "benchmark_solvers"


@dataclass
class BenchmarkResult:
    """Result of a single benchmark run."""
    method: str
    preconditioner: str
    dof: int
    setup_ms: float
    solve_ms: float
    iterations: int
    residual: float
    success: bool
    error_msg: Optional[str] = None


def create_poisson_2d(grid_n: int, device: str = 'cpu', dtype=torch.float64):
    """Create 2D Poisson matrix (5-point stencil)."""
    N = grid_n * grid_n
    idx = torch.arange(N, device=device)
    i, j = idx // grid_n, idx % grid_n

    entries = [
        (idx, idx, torch.full((N,), 4.0, dtype=dtype, device=device)),
        (idx[j > 0], idx[j > 0] - 1, torch.full(((j > 0).sum(),), -1.0, dtype=dtype, device=device)),
        (idx[j < grid_n-1], idx[j < grid_n-1] + 1, torch.full(((j < grid_n-1).sum(),), -1.0, dtype=dtype, device=device)),
        (idx[i > 0], idx[i > 0] - grid_n, torch.full(((i > 0).sum(),), -1.0, dtype=dtype, device=device)),
        (idx[i < grid_n-1], idx[i < grid_n-1] + grid_n, torch.full(((i < grid_n-1).sum(),), -1.0, dtype=dtype, device=device)),
    ]

    rows = torch.cat([e[0] for e in entries])
    cols = torch.cat([e[1] for e in entries])
    vals = torch.cat([e[2] for e in entries])

    return tk.CachedSparseMatrix(vals, rows, cols, (N, N))


def get_solver_configs() -> List[Dict[str, Any]]:
    """Method / preconditioner pairs to benchmark."""
    configs = []
    for method in ['cg', 'bicgstab', 'gmres', 'qmr', 'cgs', 'bicg']:
        for preconditioner in ['none', 'jacobi', 'ssor', 'ilu', 'amg']:
            configs.append({"method": method, "preconditioner": preconditioner, "kwargs": {}})
    configs.append({"method": "chebyshev", "preconditioner": "jacobi", "kwargs": {"bounds": True}})
    configs.append({"method": "ir", "preconditioner": "amg", "kwargs": {}})
    return configs


def bench_solver(config: Dict, A: tk.CachedSparseMatrix, b: torch.Tensor, rtol: float) -> BenchmarkResult:
    """Run a single solver benchmark."""
    method = config["method"]
    preconditioner = config["preconditioner"]
    dof = A.shape[0]
    try:
        t0 = time.perf_counter()
        M = tk.get_preconditioner(preconditioner, A)
        options = {}
        if config["kwargs"].get("bounds"):
            lo, hi = tk.estimate_eigenvalue_bounds(A, M)
            options = {"eig_min": 0.9 * lo, "eig_max": 1.1 * hi}
        setup_ms = (time.perf_counter() - t0) * 1000

        solver = tk.new_solver(method, A, monitor=tk.IterationMonitor(rtol=rtol, max_iterations=20000),
                               preconditioner=M, **options)
        t0 = time.perf_counter()
        x = solver.solve(b)
        solve_ms = (time.perf_counter() - t0) * 1000

        residual = (torch.linalg.vector_norm(b - A.matvec(x)) / torch.linalg.vector_norm(b)).item()
        return BenchmarkResult(method=method, preconditioner=preconditioner, dof=dof,
                               setup_ms=setup_ms, solve_ms=solve_ms,
                               iterations=solver.iterations, residual=residual, success=True)

    except (tk.NotConvergedError, tk.PreconditionerSetupError) as e:
        return BenchmarkResult(method=method, preconditioner=preconditioner, dof=dof,
                               setup_ms=-1, solve_ms=-1, iterations=getattr(e, "iterations", -1),
                               residual=-1, success=False, error_msg=str(e)[:80])


def run_benchmark(dtype, dtype_name: str, grid_sizes: List[int], rtol: float) -> List[Dict]:
    """Run benchmark for a specific dtype."""
    print(f"\n{'='*80}")
    print(f"Running Solver Benchmark ({dtype_name})")
    print(f"{'='*80}")

    configs = get_solver_configs()
    print(f"Testing {len(configs)} solver configurations")
    print(f"Grid sizes: {grid_sizes} (DOF: {[n*n for n in grid_sizes]})")

    results = []
    for grid_n in grid_sizes:
        A = create_poisson_2d(grid_n, dtype=dtype)
        b = torch.randn(A.shape[0], generator=torch.Generator().manual_seed(0)).to(dtype)
        print(f"\n  DOF {A.shape[0]:,}:")
        for config in configs:
            name = f"{config['method']}+{config['preconditioner']}"
            result = bench_solver(config, A, b, rtol)
            results.append(asdict(result))
            if result.success:
                print(f"    {name:20s}: setup={result.setup_ms:8.1f}ms  solve={result.solve_ms:8.1f}ms  "
                      f"it={result.iterations:6d}  res={result.residual:.1e}")
            else:
                print(f"    {name:20s}: FAILED ({result.error_msg})")
    return results


def main():
    parser = argparse.ArgumentParser(description='Benchmark iterative solvers')
    parser.add_argument('--only-summary', action='store_true',
                        help='Only print the summary from cached data')
    parser.add_argument('--dtype', choices=['float64', 'float32', 'both'], default='float64',
                        help='Data type to test (default: float64)')
    parser.add_argument('--rtol', type=float, default=1e-8,
                        help='Relative tolerance (default: 1e-8)')
    parser.add_argument('--grid', type=int, nargs='+', default=[16, 32, 64],
                        help='Grid sizes, DOF = grid^2 (default: 16 32 64)')
    args = parser.parse_args()

    print("=" * 80)
    print("torch-krylov Solver Benchmark")
    print("=" * 80)
    print(f"PyTorch: {torch.__version__}")

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    dtypes_to_test = []
    if args.dtype in ['float64', 'both']:
        dtypes_to_test.append((torch.float64, 'float64'))
    if args.dtype in ['float32', 'both']:
        dtypes_to_test.append((torch.float32, 'float32'))

    all_results = {}
    for dtype, dtype_name in dtypes_to_test:
        cache_file = OUTPUT_DIR / f'benchmark_{dtype_name}.json'
        if args.only_summary:
            if not cache_file.exists():
                print(f"Cache file not found: {cache_file}")
                continue
            with open(cache_file, 'r') as f:
                results = json.load(f)
            print(f"Loaded {len(results)} results from {cache_file}")
        else:
            results = run_benchmark(dtype, dtype_name, args.grid, args.rtol)
            with open(cache_file, 'w') as f:
                json.dump(results, f, indent=2)
            print(f"Results saved to: {cache_file}")
        all_results[dtype_name] = results

    # Summary
    print("\n" + "=" * 80)
    print("Summary")
    print("=" * 80)
    for dtype_name, results in all_results.items():
        succeeded = [r for r in results if r['success']]
        if not succeeded:
            continue
        max_dof = max(r['dof'] for r in succeeded)
        best = [r for r in succeeded if r['dof'] == max_dof]
        best.sort(key=lambda r: r['setup_ms'] + r['solve_ms'])
        print(f"\n{dtype_name}, best results at DOF = {max_dof:,}:")
        for r in best[:5]:
            name = f"{r['method']}+{r['preconditioner']}"
            print(f"    {name:20s}: {r['setup_ms'] + r['solve_ms']:8.1f}ms, "
                  f"it={r['iterations']}, res={r['residual']:.1e}")

    print("\nDone!")


if __name__ == '__main__':
    main()
