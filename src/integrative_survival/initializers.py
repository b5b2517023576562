from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence
import logging
import warnings
import numpy as np
import pandas as pd

from sksurv.linear_model import CoxPHSurvivalAnalysis
from sksurv.util import Surv
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

from integrative_survival.data import RecordTable

logger = logging.getLogger(__name__)

# below this event rate among unambiguous subjects the Cox fit is skipped
MIN_EVENT_RATE = 0.01


class BaseInitializer:
    """Base class for starting-coefficient strategies.

    The ECM engine only needs a numeric seed vector; strategies decide how
    to obtain it without the engine depending on any regression routine.

    Attributes:
        name: String identifier for the strategy
    """

    name: str = "base"

    def initial_beta(self, records: RecordTable) -> np.ndarray:
        """Return starting coefficients with shape (n_covariates,).

        Raises:
            NotImplementedError: Must be implemented by subclass
        """
        raise NotImplementedError


@dataclass
class ZeroInitializer(BaseInitializer):
    """Start every coefficient at zero."""
    name: str = "zeros"

    def initial_beta(self, records: RecordTable) -> np.ndarray:
        return np.zeros(records.n_covariates)


@dataclass
class FixedInitializer(BaseInitializer):
    """Start from user-supplied coefficients."""
    beta: Sequence[float] = ()
    name: str = "fixed"

    def initial_beta(self, records: RecordTable) -> np.ndarray:
        beta = np.asarray(self.beta, dtype=float).ravel()
        if beta.shape[0] != records.n_covariates:
            raise ValueError(
                f"{self.name}: expected {records.n_covariates} starting coefficients, got {beta.shape[0]}"
            )
        return beta


class _UnambiguousCoxInitializer(BaseInitializer):
    """Shared logic: fit an ordinary Cox model on unambiguous subjects.

    Falls back to zeros when no subject has a single record, when fewer
    than 1% of those subjects had an event, or when the fit fails or warns
    about convergence (for example under perfect separation).
    """

    def _fit(self, X: np.ndarray, time: np.ndarray, event: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def initial_beta(self, records: RecordTable) -> np.ndarray:
        zeros = np.zeros(records.n_covariates)
        mask = records.unambiguous()
        if not mask.any():
            logger.info(f"{self.name}: no unambiguous subjects, starting from zeros")
            return zeros
        event = records.event[mask]
        if event.mean() < MIN_EVENT_RATE:
            logger.info(f"{self.name}: too few events among unambiguous subjects, starting from zeros")
            return zeros

        X = records.X[mask]
        if np.any(np.std(X, axis=0) == 0):
            logger.info(f"{self.name}: zero-variance covariates among unambiguous subjects, starting from zeros")
            return zeros

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                beta = self._fit(X, records.time[mask], event)
            except (ConvergenceError, ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
                logger.warning(f"{self.name}: starting Cox fit failed ({e}), starting from zeros")
                return zeros

        convergence_issues = [
            w for w in caught
            if issubclass(w.category, ConvergenceWarning) or "converge" in str(w.message).lower()
        ]
        if convergence_issues:
            logger.warning(
                f"{self.name}: starting Cox fit did not converge "
                f"({convergence_issues[0].message}), starting from zeros"
            )
            return zeros
        if not np.all(np.isfinite(beta)):
            return zeros
        return beta


@dataclass
class LifelinesCoxInitializer(_UnambiguousCoxInitializer):
    """Starting values from a lifelines CoxPHFitter on unambiguous subjects.

    Attributes:
        name: Strategy identifier, defaults to "lifelines_cox"
        penalizer: L2 penalty passed to CoxPHFitter. Defaults to 0
    """
    name: str = "lifelines_cox"
    penalizer: float = 0.0

    def _fit(self, X, time, event):
        df = pd.DataFrame(X, columns=[f"X{i}" for i in range(X.shape[1])])
        df["time"] = time
        df["event"] = event.astype(int)
        cph = CoxPHFitter(penalizer=self.penalizer)
        cph.fit(df, duration_col="time", event_col="event")
        return cph.params_.to_numpy(dtype=float)


@dataclass
class SksurvCoxInitializer(_UnambiguousCoxInitializer):
    """Starting values from scikit-survival's Cox model with Breslow ties.

    Attributes:
        name: Strategy identifier, defaults to "sksurv_cox"
        alpha: L2 regularization strength. Defaults to 0 (unpenalized)
        max_iter: Maximum Newton-Raphson iterations
    """
    name: str = "sksurv_cox"
    alpha: float = 0.0
    max_iter: int = 100

    def _fit(self, X, time, event):
        y = Surv.from_arrays(event=event.astype(bool), time=time)
        model = CoxPHSurvivalAnalysis(alpha=self.alpha, ties="breslow", n_iter=self.max_iter, tol=1e-9)
        model.fit(X, y)
        return np.asarray(model.coef_, dtype=float)


INITIALIZERS = {
    "lifelines_cox": LifelinesCoxInitializer,
    "sksurv_cox": SksurvCoxInitializer,
    "zeros": ZeroInitializer,
}


def get_initializer(name: str) -> BaseInitializer:
    """Instantiate an initializer strategy by name.

    Raises:
        KeyError: If the name is unknown
    """
    try:
        return INITIALIZERS[name]()
    except KeyError:
        raise KeyError(f"Unknown initializer '{name}'. Available: {sorted(INITIALIZERS)}") from None
