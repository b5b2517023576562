"""Breslow-type baseline hazards for the event and censoring processes."""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np
import pandas as pd

from integrative_survival.data import RecordTable
from integrative_survival.risk_set import RiskSetAggregator, guarded_ratio, tie_sum


@dataclass(frozen=True)
class HazardTable:
    """Hazard increments and cumulative hazards per distinct observed time.

    Attributes:
        time: Distinct observed times (ascending)
        h0: Event-process baseline hazard increments
        H0: Cumulative event-process baseline hazard
        hc: Censoring-process hazard increments
        Hc: Cumulative censoring-process hazard
    """
    time: np.ndarray
    h0: np.ndarray
    H0: np.ndarray
    hc: np.ndarray
    Hc: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        """Return the table as a DataFrame with columns time, h0, H0, hc, Hc."""
        return pd.DataFrame({
            "time": self.time,
            "h0": self.h0,
            "H0": self.H0,
            "hc": self.hc,
            "Hc": self.Hc,
        })

    def for_records(self, records: RecordTable):
        """Map hazards onto sorted records.

        Event increments are kept only for event records and censoring
        increments only for censoring records; cumulative hazards apply
        to every record.

        Returns:
            Tuple of per-record arrays (h0, H0, hc, Hc)
        """
        g = records.time_group
        event = records.event
        h0 = np.where(event, self.h0[g], 0.0)
        hc = np.where(event, 0.0, self.hc[g])
        return h0, self.H0[g], hc, self.Hc[g]


def estimate_hazards(records: RecordTable, weights: np.ndarray, xexp: np.ndarray) -> HazardTable:
    """Estimate event and censoring hazards from current membership weights.

    The event increment at time t is the weighted number of events at t over
    the weighted risk set k0(t); the censoring increment is the weighted
    number of censorings at t over the total weight still at risk.

    Args:
        records: Sorted candidate records
        weights: Current membership weight per sorted record
        xexp: exp(x'b) per sorted record

    Returns:
        A new HazardTable
    """
    weights = np.asarray(weights, dtype=float)
    aggregator = RiskSetAggregator(records)

    d_event = tie_sum(records, records.event * weights)
    d_censor = tie_sum(records, (~records.event) * weights)

    k0 = aggregator.sums(weights, xexp, order=0).k0
    at_risk = aggregator.at_risk_weight(weights)

    h0 = np.where(d_event > 0, guarded_ratio(d_event, k0), 0.0)
    hc = np.where(d_censor > 0, guarded_ratio(d_censor, at_risk), 0.0)

    return HazardTable(
        time=records.unique_times,
        h0=h0,
        H0=np.cumsum(h0),
        hc=hc,
        Hc=np.cumsum(hc),
    )
