"""Weighted Breslow profile partial likelihood of the coefficients."""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from integrative_survival.data import RecordTable
from integrative_survival.risk_set import RiskSetAggregator, guarded_ratio, linear_predictor, tie_sum

# added to the objective when exp(x'b) overflows
OVERFLOW_PENALTY = 1e20


@dataclass(frozen=True)
class ProfileResult:
    """Negated profile log-likelihood with its derivatives.

    Attributes:
        value: Negative log-likelihood (plus penalty on overflow)
        gradient: Gradient of ``value``
        hessian: Hessian of ``value``
        overflow: Whether any exp(x'b) was clipped
    """
    value: float
    gradient: np.ndarray
    hessian: np.ndarray
    overflow: bool = False

    @property
    def loglik(self) -> float:
        """Profile log-likelihood without the overflow penalty."""
        return -(self.value - OVERFLOW_PENALTY * self.overflow)


class ProfileLikelihood:
    """Profile partial likelihood for fixed records and membership weights.

    With weights p, event indicators d and tie-aggregated weighted event
    counts dN(t) = sum_{t_i = t} d_i p_i, the log-likelihood is

        l(b) = sum_i d_i p_i x_i'b - sum_t dN(t) log k0(t)

    Calling the instance returns value, gradient and Hessian of -l(b).

    Args:
        records: Sorted candidate records
        weights: Membership weight per sorted record

    Example:
        >>> objective = ProfileLikelihood(records, posterior)
        >>> res = objective(np.zeros(records.n_covariates))
        >>> res.value, res.gradient.shape
    """

    def __init__(self, records: RecordTable, weights: np.ndarray):
        self.records = records
        self.weights = np.asarray(weights, dtype=float)
        self._aggregator = RiskSetAggregator(records)

        event_weight = records.event * self.weights
        self._event_weight = event_weight
        self._d_n = tie_sum(records, event_weight)
        self._score_sum = records.X.T @ event_weight
        self._has_events = self._d_n > 0

    def __call__(self, beta) -> ProfileResult:
        beta = np.asarray(beta, dtype=float)
        eta, xexp, overflow = linear_predictor(self.records.X, beta)
        sums = self._aggregator.sums(self.weights, xexp, order=2)
        d_n = self._d_n

        log_k0 = np.where(
            self._has_events,
            np.log(np.maximum(np.where(self._has_events, sums.k0, 1.0), 1e-300)),
            0.0,
        )
        loglik = float(np.dot(self._event_weight, eta) - np.dot(d_n, log_k0))

        mean_x = guarded_ratio(sums.k1, sums.k0)
        mean_xx = guarded_ratio(sums.k2, sums.k0)

        gradient = self._score_sum - mean_x.T @ d_n
        hessian = (
            np.einsum("t,tj,tl->jl", d_n, mean_x, mean_x)
            - np.einsum("t,tjl->jl", d_n, mean_xx)
        )

        value = -loglik
        if overflow:
            value += OVERFLOW_PENALTY
        return ProfileResult(
            value=value,
            gradient=-gradient,
            hessian=-hessian,
            overflow=overflow,
        )


def profile_likelihood(beta, records: RecordTable, weights: np.ndarray) -> ProfileResult:
    """Evaluate the negated profile log-likelihood at ``beta``."""
    return ProfileLikelihood(records, weights)(beta)
