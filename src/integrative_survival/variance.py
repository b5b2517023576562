"""Supplemented ECM (SECM) variance estimation.

The DM matrix is the Jacobian of the ECM coefficient map at the fitted
coefficients, obtained by four-point central differences. The corrected
covariance is

    V = I^-1 + I^-1 DM (Id - DM)^-1

where I is the complete-data information (Hessian of the negated profile
likelihood at the optimum).
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging
import numpy as np
from joblib import Parallel, delayed

from integrative_survival.config import ECMControl, ExecutionConfig
from integrative_survival.data import RecordTable
from integrative_survival.ecm import ecm_step
from integrative_survival.optimize import TrustRegionMaximizer
from integrative_survival.timing import log_execution_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VarianceResult:
    """SECM variance estimate.

    Attributes:
        available: Whether the corrected covariance could be computed
        covariance: Corrected covariance matrix, or None
        standard_errors: Square roots of its diagonal, or None
        dm: DM matrix, or None when it was not computed
        naive_covariance: Inverse complete-data information, or None
        reason: Why the estimate is unavailable
    """
    available: bool
    covariance: Optional[np.ndarray] = None
    standard_errors: Optional[np.ndarray] = None
    dm: Optional[np.ndarray] = None
    naive_covariance: Optional[np.ndarray] = None
    reason: str = ""


def dm_row(index: int, beta: np.ndarray, prior: np.ndarray, records: RecordTable,
           control: ECMControl) -> np.ndarray:
    """One row of the DM matrix by four-point central differences."""
    h = control.h
    maximizer = TrustRegionMaximizer.from_control(control)
    shift = np.zeros_like(beta)
    shift[index] = h

    f = {}
    for k in (-2, -1, 1, 2):
        f[k] = ecm_step(beta + k * shift, prior, records, maximizer).beta
    return (f[-2] - f[2] + 8.0 * (f[1] - f[-1])) / (12.0 * h)


def dm_matrix(beta: np.ndarray, prior: np.ndarray, records: RecordTable,
              control: ECMControl, execution: Optional[ExecutionConfig] = None) -> np.ndarray:
    """Jacobian of the ECM coefficient map at ``beta``.

    Args:
        beta: Fitted coefficients
        prior: Membership weights used as prior for the perturbed sub-steps
        records: Sorted candidate records
        control: ECM control (``h`` is the difference step)
        execution: Execution settings. Rows run in parallel when enabled

    Returns:
        Array of shape (n_covariates, n_covariates), row i = d beta_new / d beta_i
    """
    beta = np.asarray(beta, dtype=float)
    execution = execution or ExecutionConfig()
    indices = range(beta.shape[0])

    if execution.is_parallel() and beta.shape[0] > 1:
        rows = Parallel(
            n_jobs=execution.n_jobs,
            verbose=execution.verbose,
            backend=execution.backend
        )(
            delayed(dm_row)(i, beta, prior, records, control) for i in indices
        )
    else:
        rows = [dm_row(i, beta, prior, records, control) for i in indices]
    return np.vstack(rows)


def secm_covariance(information: np.ndarray, dm: np.ndarray) -> np.ndarray:
    """Corrected covariance from complete-data information and DM matrix.

    Raises:
        numpy.linalg.LinAlgError: If the information or ``Id - DM`` is singular
    """
    n = information.shape[0]
    inv_info = np.linalg.inv(information)
    covariance = inv_info + inv_info @ dm @ np.linalg.inv(np.eye(n) - dm)
    return (covariance + covariance.T) / 2.0


@log_execution_time()
def estimate_variance(beta: np.ndarray, prior: np.ndarray, information: np.ndarray,
                      records: RecordTable, control: ECMControl,
                      execution: Optional[ExecutionConfig] = None) -> VarianceResult:
    """Run the SECM procedure without ever invalidating point estimates.

    Singular matrices and non-positive variances are reported through
    ``VarianceResult.available`` instead of being raised.
    """
    information = np.asarray(information, dtype=float)
    try:
        naive = np.linalg.inv(information)
    except np.linalg.LinAlgError:
        logger.warning("Complete-data information is singular; standard errors unavailable")
        return VarianceResult(available=False, reason="singular information matrix")

    dm = dm_matrix(beta, prior, records, control, execution)
    if not np.all(np.isfinite(dm)):
        logger.warning("DM matrix has non-finite entries; standard errors unavailable")
        return VarianceResult(available=False, dm=dm, naive_covariance=naive,
                              reason="non-finite DM matrix")
    try:
        covariance = secm_covariance(information, dm)
    except np.linalg.LinAlgError:
        logger.warning("Id - DM is singular; standard errors unavailable")
        return VarianceResult(available=False, dm=dm, naive_covariance=naive,
                              reason="singular Id - DM")

    variances = np.diag(covariance)
    if not np.all(np.isfinite(variances)) or np.any(variances < 0):
        logger.warning("SECM covariance has invalid diagonal; standard errors unavailable")
        return VarianceResult(available=False, dm=dm, naive_covariance=naive,
                              reason="invalid variance estimate")

    return VarianceResult(
        available=True,
        covariance=covariance,
        standard_errors=np.sqrt(variances),
        dm=dm,
        naive_covariance=naive,
    )
