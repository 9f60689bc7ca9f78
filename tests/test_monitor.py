"""
Tests for the IterationMonitor state machine.

Tests cover:
- Convergence on relative and absolute tolerance
- Divergence, NaN, iteration limit and cancellation outcomes
- Residual history and callback
- MonitorConfig validation
"""

import math
import pytest
import torch
import sys

sys.path.insert(0, "..")
from torch_krylov import (
    IterationMonitor,
    MonitorConfig,
    MonitorStatus,
    NotConvergedError,
    Reason,
)
from torch_krylov.monitor import as_monitor


class TestConvergence:
    """Test CONTINUE / CONVERGED decisions."""

    def test_converged_at_step_two(self):
        """[1.0, 1e-6] with default tolerances converges on the second check."""
        monitor = IterationMonitor()
        assert monitor.check(1.0) is MonitorStatus.CONTINUE
        assert monitor.iterations == 1
        assert monitor.check(1e-6) is MonitorStatus.CONVERGED
        assert monitor.iterations == 1
        assert monitor.initial_residual == 1.0
        assert monitor.residual == 1e-6

    def test_zero_initial_residual(self):
        """A zero residual converges immediately, even with atol=0."""
        monitor = IterationMonitor(atol=0.0)
        assert monitor.check(0.0) is MonitorStatus.CONVERGED
        assert monitor.iterations == 0

    def test_absolute_tolerance(self):
        monitor = IterationMonitor(rtol=0.0, atol=1e-3)
        assert monitor.check(10.0) is MonitorStatus.CONTINUE
        assert monitor.check(5e-4) is MonitorStatus.CONVERGED

    def test_initial_residual_frozen(self):
        monitor = IterationMonitor(rtol=0.1)
        monitor.check(1.0)
        monitor.check(2.0)
        monitor.check(0.5)
        assert monitor.initial_residual == 1.0
        assert monitor.check(0.09) is MonitorStatus.CONVERGED

    def test_advance_false_does_not_count(self):
        monitor = IterationMonitor()
        monitor.check(1.0)
        monitor.check(0.5, advance=False)
        assert monitor.iterations == 1

    def test_converged_accepts_vector(self):
        monitor = IterationMonitor(rtol=0.1)
        assert not monitor.converged(torch.tensor([3.0, 4.0], dtype=torch.float64))
        assert monitor.initial_residual == 5.0
        assert monitor.converged(torch.tensor([0.3, 0.0], dtype=torch.float64))

    def test_reset(self):
        monitor = IterationMonitor()
        monitor.check(1.0)
        monitor.check(0.5)
        monitor.reset()
        assert monitor.is_first
        assert monitor.iterations == 0
        assert monitor.residuals == []
        assert math.isnan(monitor.residual)


class TestFailures:
    """Test the NotConvergedError outcomes."""

    def test_divergence(self):
        monitor = IterationMonitor()
        residuals = [1.0, 10.0, 1e3, 1e5, 1e6]
        with pytest.raises(NotConvergedError) as info:
            for r in residuals:
                monitor.check(r)
        assert info.value.reason is Reason.DIVERGENCE
        assert info.value.residual == 1e6
        assert info.value.iterations == 4

    @pytest.mark.parametrize('step', [0, 1, 3])
    def test_nan(self, step):
        monitor = IterationMonitor(rtol=0.0, atol=0.0, dtol=1e300, max_iterations=1)
        residuals = [1.0] * step + [math.nan]
        with pytest.raises(NotConvergedError) as info:
            for r in residuals:
                monitor.check(r, advance=False)
        assert info.value.reason is Reason.DIVERGENCE_NAN

    def test_nan_at_iteration_limit(self):
        """NaN reports DIVERGENCE_NAN even when the iteration limit is also reached."""
        monitor = IterationMonitor(max_iterations=1)
        monitor.check(1.0)
        with pytest.raises(NotConvergedError) as info:
            monitor.check(math.nan)
        assert info.value.reason is Reason.DIVERGENCE_NAN

    def test_iterations(self):
        monitor = IterationMonitor(max_iterations=3)
        with pytest.raises(NotConvergedError) as info:
            for _ in range(10):
                monitor.check(1.0)
        assert info.value.reason is Reason.ITERATIONS
        assert info.value.iterations == 3

    def test_cancel(self):
        monitor = IterationMonitor()
        monitor.check(1.0)
        monitor.cancel()
        with pytest.raises(NotConvergedError) as info:
            monitor.check(0.9)
        assert info.value.reason is Reason.CANCELLED
        monitor.reset()
        assert monitor.check(1.0) is MonitorStatus.CONTINUE

    def test_convergence_wins_over_cancel(self):
        monitor = IterationMonitor()
        monitor.check(1.0)
        monitor.cancel()
        assert monitor.check(1e-9) is MonitorStatus.CONVERGED


class TestHistory:
    """Test residual history and callback."""

    def test_residuals_and_callback(self):
        seen = []
        monitor = IterationMonitor(callback=lambda it, r: seen.append((it, r)))
        for r in [1.0, 0.5, 0.25, 1e-7]:
            monitor.check(r)
        assert monitor.residuals == [1.0, 0.5, 0.25, 1e-7]
        assert seen == [(0, 1.0), (1, 0.5), (2, 0.25), (3, 1e-7)]


class TestConfig:
    """Test MonitorConfig defaults and validation."""

    def test_defaults(self):
        config = MonitorConfig()
        assert config.max_iterations == 100000
        assert config.rtol == 1e-5
        assert config.atol == 1e-50
        assert config.dtol == 1e5

    @pytest.mark.parametrize('options', [
        dict(max_iterations=0),
        dict(max_iterations=1.5),
        dict(rtol=-1e-3),
        dict(rtol=2.0),
        dict(atol=-1.0),
        dict(dtol=1.0),
    ])
    def test_invalid(self, options):
        with pytest.raises(ValueError):
            MonitorConfig(**options)

    def test_setters_validate(self):
        monitor = IterationMonitor()
        monitor.rtol = 1e-8
        monitor.max_iterations = 7
        assert monitor.config == MonitorConfig(max_iterations=7, rtol=1e-8)
        with pytest.raises(ValueError):
            monitor.dtol = 0.5

    def test_as_monitor(self):
        monitor = IterationMonitor()
        assert as_monitor(monitor) is monitor
        assert as_monitor(None).config == MonitorConfig()
        assert as_monitor(MonitorConfig(rtol=1e-3)).rtol == 1e-3
        assert as_monitor({'max_iterations': 5}).max_iterations == 5
        with pytest.raises(TypeError):
            as_monitor(1e-5)
