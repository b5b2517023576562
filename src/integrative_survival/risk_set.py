"""Risk-set sums over time-sorted candidate records.

For each distinct observed time t the aggregator computes the weighted tail
sums over records still at risk at t:

    k0(t)       = sum_{t_i >= t} p_i exp(x_i'b)
    k1(t)[j]    = sum_{t_i >= t} p_i exp(x_i'b) x_ij
    k2(t)[j, l] = sum_{t_i >= t} p_i exp(x_i'b) x_ij x_il

Tail sums run over sorted records and are read at the first record of each
distinct time, so tied records enter the same risk set.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import numpy as np

from integrative_survival.data import RecordTable

# exp(x'b) is clipped to this value when it overflows
XEXP_CAP = 1e50


def tail_sum(values: np.ndarray) -> np.ndarray:
    """Reverse cumulative sum along the first axis."""
    return np.cumsum(values[::-1], axis=0)[::-1]


def tie_sum(records: RecordTable, values: np.ndarray) -> np.ndarray:
    """Sum a per-record vector within each distinct time."""
    return np.bincount(records.time_group, weights=values, minlength=records.unique_times.shape[0])


def guarded_ratio(numer: np.ndarray, denom: np.ndarray, eps: float = 1e-300) -> np.ndarray:
    """Elementwise ratio that is zero wherever the denominator is ~0.

    ``denom`` broadcasts against ``numer`` along leading axes.
    """
    numer = np.asarray(numer, dtype=float)
    denom = np.asarray(denom, dtype=float)
    denom = denom.reshape(denom.shape + (1,) * (numer.ndim - denom.ndim))
    safe = np.abs(denom) > eps
    return np.divide(numer, np.where(safe, denom, 1.0), out=np.zeros(np.broadcast(numer, denom).shape), where=safe)


def linear_predictor(X: np.ndarray, beta: np.ndarray):
    """Exponentiated linear predictor with overflow clipping.

    Returns:
        Tuple of (x'b, exp(x'b) clipped to XEXP_CAP, overflow flag)
    """
    eta = X @ np.asarray(beta, dtype=float)
    with np.errstate(over="ignore"):
        xexp = np.exp(eta)
    overflow = ~np.isfinite(xexp)
    if overflow.any():
        xexp = np.where(overflow, XEXP_CAP, xexp)
    return eta, xexp, bool(overflow.any())


@dataclass(frozen=True)
class RiskSetSums:
    """Tail sums per distinct time.

    Attributes:
        k0: Shape (n_times,)
        k1: Shape (n_times, n_covariates), or None when not requested
        k2: Shape (n_times, n_covariates, n_covariates), or None when not requested
    """
    k0: np.ndarray
    k1: Optional[np.ndarray] = None
    k2: Optional[np.ndarray] = None


class RiskSetAggregator:
    """Computes weighted risk-set sums for a fixed RecordTable.

    Example:
        >>> aggregator = RiskSetAggregator(records)
        >>> sums = aggregator.sums(weights, xexp, order=2)
        >>> sums.k2.shape
        (n_times, n_covariates, n_covariates)
    """

    def __init__(self, records: RecordTable):
        self.records = records

    def _at_times(self, tails: np.ndarray) -> np.ndarray:
        return tails[self.records.first_at_time]

    def sums(self, weights: np.ndarray, xexp: np.ndarray, order: int = 2) -> RiskSetSums:
        """Tail sums of weighted exp(x'b), optionally times covariates.

        Args:
            weights: Membership weight per sorted record
            xexp: exp(x'b) per sorted record
            order: 0 for k0 only, 1 adds k1, 2 adds k1 and k2

        Returns:
            RiskSetSums with one row per distinct time
        """
        w = np.asarray(weights, dtype=float) * np.asarray(xexp, dtype=float)
        k0 = self._at_times(tail_sum(w))
        if order == 0:
            return RiskSetSums(k0=k0)

        X = self.records.X
        wx = w[:, None] * X
        k1 = self._at_times(tail_sum(wx))
        if order == 1:
            return RiskSetSums(k0=k0, k1=k1)

        wxx = wx[:, :, None] * X[:, None, :]
        k2 = self._at_times(tail_sum(wxx))
        return RiskSetSums(k0=k0, k1=k1, k2=k2)

    def at_risk_weight(self, weights: np.ndarray) -> np.ndarray:
        """Tail sum of the raw weights per distinct time."""
        return self._at_times(tail_sum(np.asarray(weights, dtype=float)))
