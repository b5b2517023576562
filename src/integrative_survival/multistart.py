"""Multi-start search over prior censoring-rate assumptions."""
from __future__ import annotations
from typing import List, Optional, Sequence
import logging
import numpy as np
from joblib import Parallel, delayed

from integrative_survival.config import ECMControl, ExecutionConfig, StartOptions
from integrative_survival.data import RecordTable
from integrative_survival.ecm import ECMRun, StartConfig, run_ecm
from integrative_survival.logging_config import ProgressLogger, log_performance

logger = logging.getLogger(__name__)


def empirical_censor_rate(records: RecordTable) -> float:
    """Censoring rate among subjects having a single, unambiguous record.

    Rounded to two decimals. Falls back to all records when every subject
    has several candidates.

    Example:
        >>> empirical_censor_rate(records)
        0.3
    """
    mask = records.unambiguous()
    if not mask.any():
        mask = np.ones(records.n_records, dtype=bool)
    return round(float(1.0 - records.event[mask].mean()), 2)


def initial_pi(censor_rate: float, records: RecordTable) -> np.ndarray:
    """Prior membership probabilities implied by a censoring rate.

    Records of single-record subjects get 1. For subjects with several
    candidates, each censoring record gets ``censor_rate`` and the remaining
    mass is shared equally by the event records.

    Args:
        censor_rate: Prior probability of a censoring record being true
        records: Sorted candidate records

    Returns:
        Prior probability per sorted record
    """
    censored = (~records.event).astype(float)
    subject_has_censoring = (records.subject_sum(censored) > 0).astype(float)
    cen_idx = subject_has_censoring[records.subject]
    n_records = records.n_per_subject[records.subject].astype(float)

    pi = np.ones(records.n_records, dtype=float)
    multi_event = records.has_duplicates & records.event
    multi_censor = records.has_duplicates & ~records.event
    pi[multi_event] = (1.0 - censor_rate * cen_idx[multi_event]) / (
        n_records[multi_event] - cen_idx[multi_event]
    )
    pi[multi_censor] = censor_rate
    return pi


def build_start_configs(options: StartOptions, records: RecordTable,
                        censor_rate0: Optional[float] = None) -> List[StartConfig]:
    """Expand start options into the list of starting configurations.

    Precedence: explicit ``pi`` vector, explicit censoring rate(s),
    multi-start grid, then the empirical censoring rate.

    Args:
        options: Validated start options
        records: Sorted candidate records
        censor_rate0: Empirical censoring rate (computed when None)

    Returns:
        Starting configurations, in search order
    """
    if options.pi is not None:
        return [StartConfig(pi=records.to_sorted(np.asarray(options.pi, dtype=float)))]
    rates = options.censor_rates
    if rates is not None:
        return [StartConfig(censor_rate=r) for r in rates]
    if options.multi_start:
        return [StartConfig(censor_rate=float(r)) for r in options.grid()]
    if censor_rate0 is None:
        censor_rate0 = empirical_censor_rate(records)
    return [StartConfig(censor_rate=censor_rate0)]


def start_prior(start: StartConfig, records: RecordTable) -> np.ndarray:
    """Prior weights of a starting configuration in sorted order."""
    if start.pi is not None:
        return np.asarray(start.pi, dtype=float)
    return initial_pi(start.censor_rate, records)


def _run_one(records: RecordTable, beta0: np.ndarray, control: ECMControl,
             start: StartConfig) -> ECMRun:
    return run_ecm(records, beta0, start_prior(start, records), control, start)


def select_best(runs: Sequence[ECMRun]) -> ECMRun:
    """Keep the run with the strictly largest final log-likelihood.

    Ties keep the first run found; when no run has a finite final
    log-likelihood the first run is returned.
    """
    if not runs:
        raise ValueError("No ECM runs to select from")
    best = runs[0]
    best_loglik = float("-inf")
    for run in runs:
        if run.final_loglik > best_loglik:
            best, best_loglik = run, run.final_loglik
    return best


def run_multistart(records: RecordTable, beta0: np.ndarray, control: ECMControl,
                   starts: Sequence[StartConfig],
                   execution: Optional[ExecutionConfig] = None) -> ECMRun:
    """Run ECM from every starting configuration and keep the best run.

    Runs are independent and share only the read-only records, so they are
    dispatched through joblib when ``execution`` is parallel.

    Args:
        records: Sorted candidate records
        beta0: Starting coefficients shared by all runs
        control: Resolved ECM control
        starts: Starting configurations
        execution: Execution settings. Defaults to sequential

    Returns:
        The winning ECMRun
    """
    execution = execution or ExecutionConfig()
    starts = list(starts)
    logger.info(f"Running ECM from {len(starts)} starting configuration(s) ({execution})")

    if execution.is_parallel() and len(starts) > 1:
        runs = Parallel(
            n_jobs=execution.n_jobs,
            verbose=execution.verbose,
            backend=execution.backend
        )(
            delayed(_run_one)(records, beta0, control, start)
            for start in starts
        )
    else:
        progress = ProgressLogger(logger, total=len(starts), desc="Multi-start",
                                  log_interval=max(1, len(starts) // 10))
        runs = []
        for start in starts:
            run = _run_one(records, beta0, control, start)
            runs.append(run)
            progress.update(1, metrics={"loglik": run.final_loglik})

    best = select_best(runs)
    log_performance(
        logger,
        "Multi-start selection",
        n_starts=len(runs),
        chosen=best.start.label,
        loglik=round(best.final_loglik, 6),
        iterations=best.fit_state.iterations,
        state=best.fit_state.state.value,
    )
    return best
