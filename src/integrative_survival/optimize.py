"""Trust-region Newton minimizer for the CM step."""
from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable
import logging
import numpy as np
from scipy.optimize import minimize

from integrative_survival.config import ECMControl
from integrative_survival.likelihood import ProfileResult

logger = logging.getLogger(__name__)


class ConvergenceCode(IntEnum):
    """Why a CM step terminated.

    Attributes:
        SUCCESS: Optimizer reported success
        GRADIENT_TOLERANCE: Gradient norm fell below ``gradtol``
        STEP_TOLERANCE: Relative step fell below ``steptol``
        ITERATION_LIMIT: ``iterlim`` iterations were performed
        FAILURE: Optimizer failed (numerical error or no improvement)
    """
    SUCCESS = 0
    GRADIENT_TOLERANCE = 1
    STEP_TOLERANCE = 2
    ITERATION_LIMIT = 4
    FAILURE = 5

    @property
    def converged(self) -> bool:
        return self in (ConvergenceCode.SUCCESS,
                        ConvergenceCode.GRADIENT_TOLERANCE,
                        ConvergenceCode.STEP_TOLERANCE)


@dataclass(frozen=True)
class MaximizerResult:
    """Outcome of one CM step.

    Attributes:
        estimate: Minimizing coefficient vector
        minimum: Objective value at ``estimate``
        loglik: Profile log-likelihood at ``estimate`` without the overflow penalty
        gradient: Objective gradient at ``estimate``
        hessian: Objective Hessian at ``estimate`` (complete-data information)
        code: Convergence code
        iterations: Number of optimizer iterations
        message: Optimizer message
    """
    estimate: np.ndarray
    minimum: float
    loglik: float
    gradient: np.ndarray
    hessian: np.ndarray
    code: ConvergenceCode
    iterations: int
    message: str = ""


class _StepMonitor:
    """Callback stopping the search once accepted steps become tiny."""

    def __init__(self, x0: np.ndarray, steptol: float):
        self.previous = np.array(x0, dtype=float)
        self.steptol = steptol
        self.triggered = False

    def __call__(self, intermediate_result):
        x = np.asarray(getattr(intermediate_result, "x", intermediate_result), dtype=float)
        step = np.linalg.norm(x - self.previous)
        if step == 0.0:
            # rejected step, the trust radius shrinks
            return
        relative = step / max(np.linalg.norm(x), 1.0)
        self.previous = x.copy()
        if relative < self.steptol:
            self.triggered = True
            raise StopIteration


class TrustRegionMaximizer:
    """Newton-type trust-region minimizer driven by analytic derivatives.

    Wraps ``scipy.optimize.minimize(method="trust-exact")``. ``stepmax``
    bounds the trust radius, ``gradtol`` is the gradient tolerance,
    ``iterlim`` caps iterations and ``steptol`` stops on tiny relative steps.

    Args:
        gradtol: Gradient norm tolerance
        stepmax: Maximum trust-region radius
        steptol: Minimum relative step length
        iterlim: Maximum number of iterations

    Example:
        >>> maximizer = TrustRegionMaximizer.from_control(ECMControl())
        >>> res = maximizer.minimize(ProfileLikelihood(records, weights), beta0)
        >>> res.code.converged
        True
    """

    def __init__(self, gradtol: float = 1e-6, stepmax: float = 1e2,
                 steptol: float = 1e-6, iterlim: int = 100):
        self.gradtol = gradtol
        self.stepmax = stepmax
        self.steptol = steptol
        self.iterlim = iterlim

    @classmethod
    def from_control(cls, control: ECMControl) -> "TrustRegionMaximizer":
        return cls(
            gradtol=control.gradtol,
            stepmax=control.stepmax,
            steptol=control.steptol,
            iterlim=control.iterlim,
        )

    def minimize(self, objective: Callable[[np.ndarray], ProfileResult], x0) -> MaximizerResult:
        """Minimize an objective returning a ProfileResult.

        Args:
            objective: Callable mapping coefficients to value/gradient/Hessian
            x0: Starting coefficients

        Returns:
            MaximizerResult. Non-converged codes are returned, never raised.
        """
        x0 = np.asarray(x0, dtype=float)
        cache = {}

        def _evaluate(x):
            key = x.tobytes()
            if key not in cache:
                cache.clear()
                cache[key] = objective(x)
            return cache[key]

        monitor = _StepMonitor(x0, self.steptol)
        try:
            res = minimize(
                lambda x: (_evaluate(x).value, _evaluate(x).gradient),
                x0,
                jac=True,
                hess=lambda x: _evaluate(x).hessian,
                method="trust-exact",
                callback=monitor,
                options={
                    "gtol": self.gradtol,
                    "initial_trust_radius": min(1.0, self.stepmax),
                    "max_trust_radius": self.stepmax,
                    "maxiter": self.iterlim,
                },
            )
        except (np.linalg.LinAlgError, ValueError, FloatingPointError) as e:
            logger.warning(f"CM step failed: {e}")
            final = objective(x0)
            return MaximizerResult(
                estimate=x0,
                minimum=final.value,
                loglik=final.loglik,
                gradient=final.gradient,
                hessian=final.hessian,
                code=ConvergenceCode.FAILURE,
                iterations=0,
                message=str(e),
            )

        estimate = np.asarray(res.x, dtype=float)
        if not np.all(np.isfinite(estimate)):
            estimate = x0
            code = ConvergenceCode.FAILURE
        elif monitor.triggered:
            code = ConvergenceCode.STEP_TOLERANCE
        elif res.status == 1:
            code = ConvergenceCode.ITERATION_LIMIT
        elif res.success:
            final_grad = _evaluate(estimate).gradient
            if np.linalg.norm(final_grad) < self.gradtol:
                code = ConvergenceCode.GRADIENT_TOLERANCE
            else:
                code = ConvergenceCode.SUCCESS
        else:
            code = ConvergenceCode.FAILURE

        final = _evaluate(estimate)
        return MaximizerResult(
            estimate=estimate,
            minimum=float(final.value),
            loglik=float(final.loglik),
            gradient=final.gradient,
            hessian=final.hessian,
            code=code,
            iterations=int(getattr(res, "nit", 0)),
            message=str(getattr(res, "message", "")),
        )
