"""Unit tests for the trust-region CM-step minimizer."""
import pytest
import numpy as np

from integrative_survival.config import ECMControl
from integrative_survival.likelihood import OVERFLOW_PENALTY, ProfileLikelihood, ProfileResult
from integrative_survival.optimize import (
    ConvergenceCode,
    MaximizerResult,
    TrustRegionMaximizer,
    _StepMonitor,
)


def quadratic(center, scale=(1.0, 4.0)):
    center = np.asarray(center, dtype=float)
    A = np.diag(scale)

    def objective(x):
        d = np.asarray(x) - center
        return ProfileResult(value=0.5 * d @ A @ d, gradient=A @ d, hessian=A)
    return objective


def rosenbrock(x):
    x = np.asarray(x, dtype=float)
    a, b = x
    value = (1 - a) ** 2 + 100 * (b - a ** 2) ** 2
    grad = np.array([-2 * (1 - a) - 400 * a * (b - a ** 2), 200 * (b - a ** 2)])
    hess = np.array([[2 - 400 * b + 1200 * a ** 2, -400 * a], [-400 * a, 200.0]])
    return ProfileResult(value=value, gradient=grad, hessian=hess)


class TestConvergenceCode:
    """Tests for ConvergenceCode.converged."""

    @pytest.mark.parametrize("code, expected", [
        (ConvergenceCode.SUCCESS, True),
        (ConvergenceCode.GRADIENT_TOLERANCE, True),
        (ConvergenceCode.STEP_TOLERANCE, True),
        (ConvergenceCode.ITERATION_LIMIT, False),
        (ConvergenceCode.FAILURE, False),
    ])
    def test_converged(self, code, expected):
        assert code.converged is expected


class TestStepMonitor:
    """Tests for the relative-step callback."""

    def test_rejected_step_ignored(self):
        monitor = _StepMonitor(np.array([1.0]), steptol=1e-3)
        monitor(np.array([1.0]))
        assert not monitor.triggered

    def test_large_step_continues(self):
        monitor = _StepMonitor(np.array([1.0]), steptol=1e-3)
        monitor(np.array([2.0]))
        assert not monitor.triggered

    def test_tiny_step_stops(self):
        monitor = _StepMonitor(np.array([1.0]), steptol=1e-3)
        with pytest.raises(StopIteration):
            monitor(np.array([1.0 + 1e-6]))
        assert monitor.triggered


class TestTrustRegionMaximizer:
    """Tests for TrustRegionMaximizer.minimize."""

    def test_quadratic_minimum(self):
        res = TrustRegionMaximizer().minimize(quadratic([1.0, -2.0]), np.zeros(2))
        assert isinstance(res, MaximizerResult)
        assert np.allclose(res.estimate, [1.0, -2.0], atol=1e-6)
        assert res.code.converged
        assert res.minimum == pytest.approx(0.0, abs=1e-10)

    def test_rosenbrock(self):
        res = TrustRegionMaximizer(iterlim=500).minimize(rosenbrock, np.array([-1.2, 1.0]))
        assert np.allclose(res.estimate, [1.0, 1.0], atol=1e-4)
        assert res.code.converged

    def test_iteration_limit(self):
        res = TrustRegionMaximizer(iterlim=1).minimize(rosenbrock, np.array([-1.2, 1.0]))
        assert res.code is ConvergenceCode.ITERATION_LIMIT
        assert not res.code.converged
        assert res.iterations == 1

    def test_step_tolerance(self):
        res = TrustRegionMaximizer(steptol=10.0).minimize(rosenbrock, np.array([-1.2, 1.0]))
        assert res.code is ConvergenceCode.STEP_TOLERANCE

    def test_failure_is_reported_not_raised(self):
        def objective(x):
            if np.any(x != 0):
                raise ValueError("objective undefined away from the origin")
            return ProfileResult(value=0.0, gradient=np.array([1.0]), hessian=np.eye(1))

        res = TrustRegionMaximizer().minimize(objective, np.zeros(1))
        assert res.code is ConvergenceCode.FAILURE
        assert np.array_equal(res.estimate, np.zeros(1))
        assert "undefined" in res.message

    def test_hessian_evaluated_at_estimate(self, unambiguous_records):
        objective = ProfileLikelihood(unambiguous_records, np.ones(unambiguous_records.n_records))
        res = TrustRegionMaximizer().minimize(objective, np.zeros(1))
        assert res.code.converged
        assert np.allclose(res.hessian, objective(res.estimate).hessian)
        assert np.allclose(res.gradient, objective(res.estimate).gradient)

    def test_loglik_excludes_overflow_penalty(self):
        def objective(x):
            x = np.asarray(x, dtype=float)
            return ProfileResult(value=0.5 * float(x @ x) + OVERFLOW_PENALTY, gradient=x,
                                 hessian=np.eye(1), overflow=True)

        res = TrustRegionMaximizer().minimize(objective, np.array([2.0]))
        assert res.minimum > OVERFLOW_PENALTY / 2
        assert res.loglik == -(res.minimum - OVERFLOW_PENALTY)
        assert abs(res.loglik) < 1e4

    def test_stepmax_bounds_steps(self):
        res = TrustRegionMaximizer(stepmax=0.5, iterlim=3).minimize(quadratic([10.0, 10.0]), np.zeros(2))
        assert np.linalg.norm(res.estimate) <= 3 * 0.5 + 1e-9

    def test_from_control(self):
        control = ECMControl(gradtol=1e-8, stepmax=5.0, steptol=1e-7, iterlim=20)
        maximizer = TrustRegionMaximizer.from_control(control)
        assert (maximizer.gradtol, maximizer.stepmax, maximizer.steptol, maximizer.iterlim) == (
            1e-8, 5.0, 1e-7, 20
        )
