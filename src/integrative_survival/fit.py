"""Integrative Cox proportional hazards estimator.

Fits a Cox model when each subject may have several candidate records of
which exactly one is true. Membership of records is treated as missing data
and estimated jointly with the coefficients by the ECM algorithm; standard
errors come from the supplemented ECM (SECM) procedure.

Example:
    >>> from integrative_survival.config import IntegrativeCoxConfig, ECMControl, StartOptions
    >>> config = IntegrativeCoxConfig(control=ECMControl(no_se=False),
    ...                               start=StartOptions(multi_start=True))
    >>> result = IntegrativeCoxPH(config).fit_frame(df)
    >>> result.summary()
          coef  exp(coef)  se(coef)     z  Pr(>|z|)
    x1  0.4921     1.6358    0.1304  3.77    0.0002
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import logging
import numpy as np
import pandas as pd
from scipy.stats import norm

from integrative_survival.config import ECMControl, IntegrativeCoxConfig
from integrative_survival.data import RecordTable, prepare_records, split_design
from integrative_survival.ecm import ECMRun, ECMState, StartConfig
from integrative_survival.hazard import HazardTable
from integrative_survival.initializers import BaseInitializer, LifelinesCoxInitializer
from integrative_survival.logging_config import capture_warnings, log_performance
from integrative_survival.multistart import build_start_configs, empirical_censor_rate, run_multistart
from integrative_survival.optimize import ConvergenceCode
from integrative_survival.timing import Timer
from integrative_survival.variance import VarianceResult, estimate_variance

SUMMARY_COLUMNS = ["coef", "exp(coef)", "se(coef)", "z", "Pr(>|z|)"]


@dataclass
class FitResult:
    """Fitted integrative Cox model.

    Per-record vectors (``ids``, ``time``, ``event``, ``prior``,
    ``posterior``) are in the order the records were supplied.

    Attributes:
        coefficients: Estimated coefficients
        covariate_names: Covariate names, one per coefficient
        variance: SECM result, or None when standard errors were not requested
        hazards: Event and censoring hazards at the estimate
        ids: Subject identifier per record
        time: Observed time per record
        event: Event indicator per record
        prior: Prior membership weights the winning start began from
        posterior: Posterior membership weights at the estimate
        loglik_trace: Observed-data log-likelihood per ECM iteration
        beta_trace: Coefficients per ECM iteration, starting values first
        code: Convergence code of the final CM step
        ecm_state: Final state of the winning ECM run
        iterations: Number of ECM iterations of the winning run
        partial_loglik: Weighted partial log-likelihood at the estimate,
            excluding any overflow penalty
        loglik: Observed-data log-likelihood (last finite value)
        information: Complete-data Fisher information (Hessian of the negated
            partial log-likelihood)
        start: Winning starting configuration
        censor_rate0: Empirical censoring rate among unambiguous subjects
        control: ECM controls used, with derived values resolved
        n_obs: Number of candidate records
        n_subjects: Number of distinct subjects
    """
    coefficients: np.ndarray
    covariate_names: Tuple[str, ...]
    variance: Optional[VarianceResult]
    hazards: HazardTable
    ids: np.ndarray
    time: np.ndarray
    event: np.ndarray
    prior: np.ndarray
    posterior: np.ndarray
    loglik_trace: np.ndarray
    beta_trace: np.ndarray
    code: ConvergenceCode
    ecm_state: ECMState
    iterations: int
    partial_loglik: float
    loglik: float
    information: np.ndarray
    start: StartConfig
    censor_rate0: float
    control: ECMControl
    n_obs: int
    n_subjects: int

    @property
    def covariance(self) -> Optional[np.ndarray]:
        if self.variance is None or not self.variance.available:
            return None
        return self.variance.covariance

    @property
    def standard_errors(self) -> Optional[np.ndarray]:
        if self.variance is None or not self.variance.available:
            return None
        return self.variance.standard_errors

    @property
    def baseline_hazard(self) -> pd.DataFrame:
        return self.hazards.to_frame()

    @property
    def converged(self) -> bool:
        return self.ecm_state is ECMState.CONVERGED and self.code.converged

    def summary(self) -> pd.DataFrame:
        """Coefficient table indexed by covariate.

        Columns are ``coef, exp(coef), se(coef), z, Pr(>|z|)``; the last
        three are NaN when standard errors are unavailable. P-values are
        two-sided from the standard normal distribution.
        """
        coef = np.asarray(self.coefficients, dtype=float)
        se = self.standard_errors
        if se is None:
            se = np.full_like(coef, np.nan)
        with np.errstate(divide="ignore", invalid="ignore"):
            z = coef / se
        table = pd.DataFrame(
            {
                "coef": coef,
                "exp(coef)": np.exp(coef),
                "se(coef)": se,
                "z": z,
                "Pr(>|z|)": 2.0 * norm.sf(np.abs(z)),
            },
            index=pd.Index(self.covariate_names, name="covariate"),
        )
        return table[SUMMARY_COLUMNS]


class IntegrativeCoxPH:
    """Cox model estimator for subjects with ambiguous candidate records.

    Args:
        config: Fit configuration. Defaults to ``IntegrativeCoxConfig()``
        initializer: Strategy providing starting coefficients when
            ``config.start.beta`` is not given. Defaults to a lifelines Cox
            fit on unambiguous subjects
        logger: Logger for progress and diagnostics

    Example:
        >>> model = IntegrativeCoxPH()
        >>> result = model.fit(X, ids, time, event)
        >>> result.coefficients
        array([0.49])
    """
    name = "integrative_coxph"

    def __init__(self, config: Optional[IntegrativeCoxConfig] = None,
                 initializer: Optional[BaseInitializer] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or IntegrativeCoxConfig()
        self.initializer = initializer or LifelinesCoxInitializer()
        self.logger = logger or logging.getLogger(__name__)
        self.result_: Optional[FitResult] = None

    def fit_frame(self, df: pd.DataFrame) -> FitResult:
        """Fit from a DataFrame using the configured column names."""
        cfg = self.config
        X, ids, time, event = split_design(
            df,
            id_column=cfg.id_column,
            time_column=cfg.time_column,
            event_column=cfg.event_column,
            covariates=cfg.covariates,
            dropna=cfg.dropna,
        )
        return self.fit(X, ids, time, event)

    def fit(self, X, ids, time, event,
            covariate_names: Optional[Sequence[str]] = None) -> FitResult:
        """Fit the integrative Cox model.

        Args:
            X: Design matrix without intercept, shape (n_records, n_covariates)
            ids: Subject identifier per record
            time: Observed time per record
            event: Event indicator per record
            covariate_names: Optional names (taken from DataFrame columns)

        Returns:
            FitResult, also stored as ``self.result_``

        Raises:
            ValueError: If inputs are invalid
            InvalidConfigurationError: If starting values do not fit the data
        """
        logger = self.logger
        cfg = self.config

        with Timer(logger, "Integrative Cox fit"), capture_warnings(logger):
            try:
                records = prepare_records(X, ids, time, event, covariate_names)
            except ValueError as e:
                raise ValueError(f"{self.name}: {e}") from e
            cfg.start.validate_for(records.n_records, records.n_covariates)
            logger.info(
                f"{records.n_records:,} records from {records.n_subjects:,} subjects, "
                f"{int(records.has_duplicates.sum()):,} records in ambiguous subjects"
            )

            censor_rate0 = empirical_censor_rate(records)
            control = cfg.control.resolve(censor_rate0)
            logger.info(f"Empirical censoring rate {censor_rate0:g}; always_update_pi={control.always_update_pi}")

            beta0 = self._starting_beta(records)
            starts = build_start_configs(cfg.start, records, censor_rate0)

            with Timer(logger, "Multi-start ECM"):
                best = run_multistart(records, beta0, control, starts, cfg.execution)

            step = best.last_step
            if not step.maximizer.code.converged:
                logger.warning(
                    f"Final CM step did not converge: {step.maximizer.code.name} ({step.maximizer.message})"
                )

            variance = None
            if not control.no_se:
                variance = estimate_variance(
                    step.beta,
                    step.posterior,
                    step.maximizer.hessian,
                    records,
                    control,
                    cfg.execution,
                )

        result = self._build_result(records, best, control, censor_rate0, variance)
        log_performance(
            logger,
            "Fit summary",
            loglik=round(result.loglik, 6),
            iterations=result.iterations,
            code=result.code.name,
            **{f"coef_{n}": round(float(b), 6) for n, b in zip(result.covariate_names, result.coefficients)},
        )
        self.result_ = result
        return result

    def _starting_beta(self, records: RecordTable) -> np.ndarray:
        if self.config.start.beta is not None:
            return np.asarray(self.config.start.beta, dtype=float).ravel()
        beta0 = np.asarray(self.initializer.initial_beta(records), dtype=float).ravel()
        if beta0.shape[0] != records.n_covariates:
            raise ValueError(
                f"{self.name}: initializer '{self.initializer.name}' returned "
                f"{beta0.shape[0]} coefficients for {records.n_covariates} covariates"
            )
        self.logger.info(f"Starting coefficients from {self.initializer.name}: {np.round(beta0, 4).tolist()}")
        return beta0

    @staticmethod
    def _build_result(records: RecordTable, best: ECMRun, control: ECMControl,
                      censor_rate0: float, variance: Optional[VarianceResult]) -> FitResult:
        step = best.last_step
        return FitResult(
            coefficients=np.asarray(step.beta, dtype=float),
            covariate_names=records.covariate_names,
            variance=variance,
            hazards=step.hazards,
            ids=records.to_input(records.subject_ids[records.subject]),
            time=records.to_input(records.time),
            event=records.to_input(records.event),
            prior=records.to_input(best.initial_pi),
            posterior=records.to_input(step.posterior),
            loglik_trace=np.asarray(best.fit_state.loglik_path, dtype=float),
            beta_trace=best.fit_state.beta_trajectory(),
            code=step.maximizer.code,
            ecm_state=best.fit_state.state,
            iterations=best.fit_state.iterations,
            partial_loglik=float(step.maximizer.loglik),
            loglik=best.final_loglik,
            information=step.maximizer.hessian,
            start=best.start,
            censor_rate0=censor_rate0,
            control=control,
            n_obs=records.n_records,
            n_subjects=records.n_subjects,
        )
