"""Expectation / conditional-maximization loop.

One ECM sub-step, given coefficients b and prior membership weights pi:

    1. exp(x'b) per record (clipped on overflow)
    2. hazards of the event and censoring processes from the weights pi
    3. E-step: posterior weights p and observed-data log-likelihood
    4. CM-step: maximize the profile likelihood weighted by p, starting at b

``run_ecm`` repeats sub-steps until the relative squared change of the
coefficients drops below ``steptol_ecm`` or ``iterlim_ecm`` is reached.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import logging
import numpy as np

from integrative_survival.config import ECMControl
from integrative_survival.data import RecordTable
from integrative_survival.estep import EStepResult, e_step
from integrative_survival.hazard import HazardTable, estimate_hazards
from integrative_survival.likelihood import ProfileLikelihood
from integrative_survival.optimize import ConvergenceCode, MaximizerResult, TrustRegionMaximizer
from integrative_survival.risk_set import linear_predictor

logger = logging.getLogger(__name__)


class ECMState(str, Enum):
    """State of an ECM run."""
    RUNNING = "running"
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"
    CM_FAILURE = "cm_failure"


@dataclass(frozen=True)
class StartConfig:
    """One starting configuration of the multi-start search.

    Exactly one of ``censor_rate`` and ``pi`` is set. ``pi`` is stored in
    sorted record order.
    """
    censor_rate: Optional[float] = None
    pi: Optional[np.ndarray] = None

    def __post_init__(self):
        if (self.censor_rate is None) == (self.pi is None):
            raise ValueError("StartConfig needs exactly one of censor_rate and pi")

    @property
    def label(self) -> str:
        if self.censor_rate is not None:
            return f"censor_rate={self.censor_rate:g}"
        return "pi=explicit"


@dataclass(frozen=True)
class ECMStepResult:
    """Output of one ECM sub-step."""
    beta: np.ndarray
    maximizer: MaximizerResult
    hazards: HazardTable
    estep: EStepResult
    xexp: np.ndarray

    @property
    def posterior(self) -> np.ndarray:
        return self.estep.posterior

    @property
    def loglik(self) -> float:
        return self.estep.loglik


@dataclass
class FitState:
    """Coefficient and log-likelihood trajectory of one ECM run."""
    beta: np.ndarray
    beta_path: List[np.ndarray] = field(default_factory=list)
    loglik_path: List[float] = field(default_factory=list)
    state: ECMState = ECMState.RUNNING
    iterations: int = 0

    def beta_trajectory(self) -> np.ndarray:
        return np.vstack(self.beta_path)

    def finite_loglik(self) -> np.ndarray:
        trace = np.asarray(self.loglik_path, dtype=float)
        return trace[np.isfinite(trace)]


@dataclass
class ECMRun:
    """A finished ECM run from one starting configuration.

    Attributes:
        start: Starting configuration
        initial_pi: Prior weights the run started from (sorted order)
        prior: Prior weights in effect at the last iteration (sorted order)
        fit_state: Coefficient and log-likelihood trajectory
        last_step: Final ECM sub-step
    """
    start: StartConfig
    initial_pi: np.ndarray
    prior: np.ndarray
    fit_state: FitState
    last_step: ECMStepResult

    @property
    def final_loglik(self) -> float:
        """Last finite observed-data log-likelihood (-inf when none)."""
        finite = self.fit_state.finite_loglik()
        return float(finite[-1]) if finite.size else float("-inf")

    @property
    def converged(self) -> bool:
        return self.fit_state.state is ECMState.CONVERGED


def relative_change(new: np.ndarray, old: np.ndarray) -> float:
    """Relative squared difference of successive coefficient vectors."""
    denom = float(np.sum((new + old) ** 2))
    if denom == 0.0:
        return 0.0
    return float(np.sum((new - old) ** 2)) / denom


def ecm_step(beta: np.ndarray, prior: np.ndarray, records: RecordTable,
             maximizer: TrustRegionMaximizer) -> ECMStepResult:
    """Run one E-step followed by one CM-step.

    Args:
        beta: Current coefficients
        prior: Prior membership weights per sorted record; hazards are
            estimated with these weights
        records: Sorted candidate records
        maximizer: CM-step minimizer

    Returns:
        ECMStepResult with the updated coefficients
    """
    beta = np.asarray(beta, dtype=float)
    _, xexp, _ = linear_predictor(records.X, beta)

    hazards = estimate_hazards(records, prior, xexp)
    estep = e_step(records, xexp, prior, hazards)

    cm = maximizer.minimize(ProfileLikelihood(records, estep.posterior), beta)
    return ECMStepResult(
        beta=cm.estimate,
        maximizer=cm,
        hazards=hazards,
        estep=estep,
        xexp=xexp,
    )


def run_ecm(records: RecordTable, beta0: np.ndarray, pi0: np.ndarray,
            control: ECMControl, start: StartConfig) -> ECMRun:
    """Iterate ECM sub-steps from one starting configuration.

    Priors are replaced by the posterior weights after each iteration when
    ``control.always_update_pi`` is set, otherwise only once the previous
    relative change fell below ``control.pi_tolerance``.

    Args:
        records: Sorted candidate records
        beta0: Starting coefficients
        pi0: Starting prior weights per sorted record
        control: Resolved ECM control (``always_update_pi`` not None)
        start: The starting configuration, kept for reporting

    Returns:
        ECMRun whose state is CONVERGED, ITERATION_LIMIT, or CM_FAILURE when
        a CM step failed without leaving its starting coefficients
    """
    maximizer = TrustRegionMaximizer.from_control(control)
    always_update = bool(control.always_update_pi)

    beta = np.asarray(beta0, dtype=float).copy()
    prior = np.asarray(pi0, dtype=float).copy()
    state = FitState(beta=beta, beta_path=[beta.copy()])
    step: Optional[ECMStepResult] = None
    tol = None

    for iteration in range(1, control.iterlim_ecm + 1):
        step = ecm_step(beta, prior, records, maximizer)
        state.loglik_path.append(step.loglik)
        state.iterations = iteration

        if always_update or (iteration > 1 and tol < control.pi_tolerance):
            prior = step.posterior

        new_beta = step.beta
        tol = relative_change(new_beta, beta)
        state.beta_path.append(new_beta.copy())
        beta = new_beta
        state.beta = beta

        logger.debug(
            f"[{start.label}] iteration {iteration}: loglik={step.loglik:.6f} "
            f"rel_change={tol:.3e} cm_code={step.maximizer.code.name}"
        )

        if step.maximizer.code is ConvergenceCode.FAILURE and np.array_equal(new_beta, state.beta_path[-2]):
            state.state = ECMState.CM_FAILURE
            logger.warning(
                f"[{start.label}] CM step failed at its starting coefficients "
                f"({step.maximizer.message}); stopping ECM"
            )
            break
        if tol < control.steptol_ecm:
            state.state = ECMState.CONVERGED
            break
    else:
        state.state = ECMState.ITERATION_LIMIT
        logger.warning(
            f"[{start.label}] ECM did not converge within {control.iterlim_ecm} iterations"
        )

    return ECMRun(
        start=start,
        initial_pi=np.asarray(pi0, dtype=float),
        prior=prior,
        fit_state=state,
        last_step=step,
    )
