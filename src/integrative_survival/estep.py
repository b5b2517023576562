"""Posterior membership probabilities of candidate records."""
from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from integrative_survival.data import RecordTable
from integrative_survival.hazard import HazardTable


@dataclass(frozen=True)
class EStepResult:
    """Posterior weights and observed-data likelihood pieces.

    Attributes:
        posterior: Posterior probability that each sorted record is true
        scores: Unnormalized per-record likelihood contributions
        subject_totals: Sum of scores per subject
        loglik: Observed-data log-likelihood, sum of log subject totals
    """
    posterior: np.ndarray
    scores: np.ndarray
    subject_totals: np.ndarray
    loglik: float


def record_scores(records: RecordTable, xexp: np.ndarray, prior: np.ndarray,
                  hazards: HazardTable) -> np.ndarray:
    """Prior-weighted likelihood contribution of each candidate record.

    An event record contributes pi h(t) S(t) G(t) and a censoring record
    pi S(t) hc(t) G(t), where S is the event survival exp(-H0(t) exp(x'b))
    and G the censoring survival exp(-Hc(t)).
    """
    h0, H0, hc, Hc = hazards.for_records(records)
    survival = np.exp(-H0 * xexp)
    censor_survival = np.exp(-Hc)
    event_score = h0 * xexp * survival * censor_survival
    censor_score = survival * hc * censor_survival
    return np.asarray(prior, dtype=float) * np.where(records.event, event_score, censor_score)


def e_step(records: RecordTable, xexp: np.ndarray, prior: np.ndarray,
           hazards: HazardTable) -> EStepResult:
    """Compute posterior membership weights from the current fit.

    Records of single-record subjects keep weight 1. For subjects with
    several candidates the weight is the record's score over the subject
    total; when a subject total is zero the prior is kept instead.

    Args:
        records: Sorted candidate records
        xexp: exp(x'b) per sorted record
        prior: Prior membership probability per sorted record
        hazards: Hazards estimated from the prior weights

    Returns:
        EStepResult with posterior weights in sorted order
    """
    prior = np.asarray(prior, dtype=float)
    scores = record_scores(records, xexp, prior, hazards)
    totals = records.subject_sum(scores)
    record_totals = totals[records.subject]

    zero_mass = record_totals <= 0
    ratio = np.divide(scores, np.where(zero_mass, 1.0, record_totals))
    posterior = np.where(records.has_duplicates, np.where(zero_mass, prior, ratio), 1.0)

    with np.errstate(divide="ignore"):
        loglik = float(np.sum(np.log(totals)))

    return EStepResult(
        posterior=posterior,
        scores=scores,
        subject_totals=totals,
        loglik=loglik,
    )
