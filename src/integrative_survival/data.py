from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import logging
import numpy as np
import pandas as pd
from pathlib import Path

logger = logging.getLogger(__name__)


def load_data(file_path: str) -> pd.DataFrame:
    """Load candidate survival records from CSV or pickle file.

    Automatically detects file format based on extension and loads the data.
    Supports both CSV (.csv) and pickle (.pkl, .pickle) formats.

    Args:
        file_path: Path to input file (CSV or pickle)

    Returns:
        DataFrame with one row per candidate record

    Raises:
        FileNotFoundError: If file_path does not exist
        ValueError: If file format is not supported

    Example:
        >>> df = load_data("data/inputs/linked_records.csv")
        >>> print(df.shape)
        (240, 6)
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()

    if suffix == '.csv':
        logger.info(f"Loading CSV data from {file_path}")
        df = pd.read_csv(file_path)
    elif suffix in ['.pkl', '.pickle']:
        logger.info(f"Loading pickle data from {file_path}")
        df = pd.read_pickle(file_path)
    else:
        raise ValueError(
            f"Unsupported file format: {suffix}. "
            f"Supported formats: .csv, .pkl, .pickle"
        )

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns")
    return df


def split_design(
    df: pd.DataFrame,
    id_column: str = "ID",
    time_column: str = "time",
    event_column: str = "event",
    covariates: Optional[Sequence[str]] = None,
    dropna: bool = True,
) -> Tuple[pd.DataFrame, pd.Series, pd.Series, pd.Series]:
    """Extract design matrix and response columns from a record DataFrame.

    Args:
        df: Input DataFrame with one row per candidate record
        id_column: Column holding subject identifiers
        time_column: Column holding observed times
        event_column: Column holding event indicators
        covariates: Covariate columns. If None or empty, every column other
            than the response columns is used
        dropna: If True, remove records with any missing value in the
            selected columns. Defaults to True

    Returns:
        Tuple containing:
        - X: DataFrame of covariates (no intercept)
        - ids: Series of subject identifiers
        - time: Series of observed times
        - event: Series of event indicators

    Raises:
        KeyError: If a requested column is missing

    Example:
        >>> X, ids, time, event = split_design(df, covariates=["x1", "x2"])
        >>> X.shape
        (240, 2)
    """
    response = [id_column, time_column, event_column]
    if not covariates:
        covariates = [c for c in df.columns if c not in response]
    covariates = list(covariates)

    missing_cols = [c for c in response + covariates if c not in df.columns]
    if missing_cols:
        raise KeyError(
            f"Columns {missing_cols} not found in input DataFrame. "
            f"Available columns: {list(df.columns)[:10]}"
        )

    data = df[response + covariates].copy()
    if dropna:
        n_before = len(data)
        data = data.dropna()
        if len(data) < n_before:
            logger.warning(f"Removed {n_before - len(data):,} records with missing values")

    X = data[covariates]
    return X, data[id_column], data[time_column], data[event_column]


@dataclass(frozen=True)
class RecordTable:
    """Candidate records sorted by time then subject id.

    Built once by ``prepare_records`` and never mutated. Weight vectors and
    hazard estimates that change across ECM iterations are held outside.

    Attributes:
        X: Covariates, shape (n_records, n_covariates)
        time: Observed times (ascending)
        event: Event indicators as booleans
        subject: Integer subject codes
        subject_ids: Original subject identifiers, indexed by subject code
        n_per_subject: Number of records of each subject, indexed by subject code
        has_duplicates: True for records whose subject has several candidates
        first_at_time: True for the first record at each distinct time
        time_group: Index of each record's distinct time in ``unique_times``
        unique_times: Distinct observed times (ascending)
        order: Permutation sorting the input records
        inverse_order: Permutation restoring input order from sorted order
        covariate_names: Names of the covariates
    """
    X: np.ndarray
    time: np.ndarray
    event: np.ndarray
    subject: np.ndarray
    subject_ids: np.ndarray
    n_per_subject: np.ndarray
    has_duplicates: np.ndarray
    first_at_time: np.ndarray
    time_group: np.ndarray
    unique_times: np.ndarray
    order: np.ndarray
    inverse_order: np.ndarray
    covariate_names: Tuple[str, ...]

    @property
    def n_records(self) -> int:
        return self.X.shape[0]

    @property
    def n_covariates(self) -> int:
        return self.X.shape[1]

    @property
    def n_subjects(self) -> int:
        return self.n_per_subject.shape[0]

    def to_sorted(self, values) -> np.ndarray:
        """Reorder a per-record vector from input order to sorted order."""
        return np.asarray(values)[self.order]

    def to_input(self, values) -> np.ndarray:
        """Reorder a per-record vector from sorted order to input order."""
        return np.asarray(values)[self.inverse_order]

    def subject_sum(self, values: np.ndarray) -> np.ndarray:
        """Sum a per-record vector within each subject."""
        return np.bincount(self.subject, weights=values, minlength=self.n_subjects)

    def unambiguous(self) -> np.ndarray:
        """Boolean mask of records belonging to single-record subjects."""
        return ~self.has_duplicates


def prepare_records(X, ids, time, event, covariate_names: Optional[Sequence[str]] = None) -> RecordTable:
    """Validate inputs and build a time-sorted RecordTable.

    Records are sorted by time then subject id. The sorting permutation is
    kept so that per-record outputs can be restored to input order.

    Args:
        X: Design matrix (array or DataFrame) with shape (n_records, n_covariates)
        ids: Subject identifier per record
        time: Observed time per record
        event: Event indicator per record (1/True = event, 0/False = censored)
        covariate_names: Optional covariate names. Taken from DataFrame
            columns when X is a DataFrame

    Returns:
        RecordTable sorted by (time, id)

    Raises:
        ValueError: If inputs have mismatched lengths, non-finite values,
            non-binary events, no covariates or no records

    Example:
        >>> records = prepare_records(X, ids, time, event)
        >>> records.n_subjects
        100
    """
    if covariate_names is None and isinstance(X, pd.DataFrame):
        covariate_names = [str(c) for c in X.columns]

    X_array = np.asarray(X, dtype=float)
    if X_array.ndim == 1:
        X_array = X_array.reshape(-1, 1)
    if X_array.ndim != 2:
        raise ValueError(f"Design matrix must be two-dimensional, got {X_array.ndim} dimensions")

    n_records, n_covariates = X_array.shape
    if n_records == 0:
        raise ValueError("Need at least 1 record to fit")
    if n_covariates == 0:
        raise ValueError("Covariates must be specified.")

    ids_array = np.asarray(ids)
    time_array = np.asarray(time, dtype=float).ravel()
    event_array = np.asarray(event).ravel()
    for name, arr in (("ids", ids_array), ("time", time_array), ("event", event_array)):
        if arr.shape[0] != n_records:
            raise ValueError(f"Length of '{name}' ({arr.shape[0]}) does not match number of records ({n_records})")

    if not np.isfinite(X_array).all():
        raise ValueError("Non-finite values detected in design matrix")
    if not np.isfinite(time_array).all():
        raise ValueError("Non-finite values detected in time")
    event_numeric = pd.to_numeric(pd.Series(event_array), errors="coerce").to_numpy(dtype=float)
    if not np.isin(event_numeric, (0.0, 1.0)).all():
        raise ValueError("Event indicator must be binary (0/1 or False/True)")

    if covariate_names is None:
        covariate_names = [f"x{j + 1}" for j in range(n_covariates)]
    covariate_names = tuple(str(c) for c in covariate_names)
    if len(covariate_names) != n_covariates:
        raise ValueError("Number of covariate names does not match design matrix")

    subject_codes, subject_ids = pd.factorize(pd.Series(ids_array), sort=True)
    if np.any(subject_codes < 0):
        raise ValueError("Missing values detected in subject identifiers")
    order = np.lexsort((subject_codes, time_array))
    inverse_order = np.empty_like(order)
    inverse_order[order] = np.arange(n_records)

    sorted_time = time_array[order]
    sorted_subject = subject_codes[order]
    unique_times, first_index, time_group = np.unique(
        sorted_time, return_index=True, return_inverse=True
    )
    first_at_time = np.zeros(n_records, dtype=bool)
    first_at_time[first_index] = True

    n_per_subject = np.bincount(sorted_subject, minlength=len(subject_ids))

    return RecordTable(
        X=X_array[order],
        time=sorted_time,
        event=event_numeric[order].astype(bool),
        subject=sorted_subject,
        subject_ids=np.asarray(subject_ids),
        n_per_subject=n_per_subject,
        has_duplicates=n_per_subject[sorted_subject] > 1,
        first_at_time=first_at_time,
        time_group=time_group.ravel(),
        unique_times=unique_times,
        order=order,
        inverse_order=inverse_order,
        covariate_names=covariate_names,
    )
