"""Pytest configuration and shared fixtures for integrative Cox tests.

Provides simulated candidate-record data: exponential event times with a
log-linear covariate effect, uniform censoring, and optional decoy records
attached to a fraction of subjects.
"""
import logging
import pytest
import pandas as pd
import numpy as np

from integrative_survival.data import prepare_records


def simulate_records(
    n_subjects: int = 100,
    beta=(0.5,),
    decoy_fraction: float = 0.0,
    seed: int = 0,
    baseline_rate: float = 0.1,
    censor_max: float = 30.0,
    shuffle: bool = True,
) -> pd.DataFrame:
    """Simulate one true record per subject plus optional decoys.

    Decoy records copy the subject's covariates and carry an event at a
    time well beyond the subject's true time. Column ``true`` marks the
    true record of each subject.
    """
    rng = np.random.default_rng(seed)
    beta = np.asarray(beta, dtype=float)
    X = rng.normal(size=(n_subjects, beta.size))
    rate = baseline_rate * np.exp(X @ beta)
    t_event = rng.exponential(1.0 / rate)
    t_censor = rng.uniform(0.0, censor_max, n_subjects)

    df = pd.DataFrame(X, columns=[f"x{j + 1}" for j in range(beta.size)])
    df.insert(0, "ID", np.arange(1, n_subjects + 1))
    df["time"] = np.minimum(t_event, t_censor)
    df["event"] = (t_event <= t_censor).astype(int)
    df["true"] = 1

    n_decoys = int(round(decoy_fraction * n_subjects))
    if n_decoys:
        idx = rng.choice(n_subjects, size=n_decoys, replace=False)
        decoys = df.iloc[idx].copy()
        decoys["time"] = decoys["time"] + rng.uniform(25.0, 50.0, n_decoys)
        decoys["event"] = 1
        decoys["true"] = 0
        df = pd.concat([df, decoys], ignore_index=True)

    if shuffle:
        df = df.sample(frac=1.0, random_state=seed).reset_index(drop=True)
    return df


def covariate_columns(df: pd.DataFrame):
    return [c for c in df.columns if c.startswith("x")]


@pytest.fixture
def simulate():
    """Return the simulation helper so tests can vary its arguments."""
    return simulate_records


@pytest.fixture(scope="session")
def unambiguous_df():
    """100 subjects, one covariate with effect 0.5, one record each."""
    return simulate_records(n_subjects=100, beta=(0.5,), seed=11)


@pytest.fixture(scope="session")
def ambiguous_df():
    """200 subjects, 20% of them with an extra decoy record."""
    return simulate_records(n_subjects=200, beta=(0.5,), decoy_fraction=0.2, seed=7)


@pytest.fixture(scope="session")
def two_covariate_df():
    """150 subjects, two covariates, 30% with decoy records."""
    return simulate_records(n_subjects=150, beta=(0.5, -0.4), decoy_fraction=0.3, seed=3)


@pytest.fixture
def unambiguous_records(unambiguous_df):
    df = unambiguous_df
    return prepare_records(df[covariate_columns(df)], df["ID"], df["time"], df["event"])


@pytest.fixture
def ambiguous_records(ambiguous_df):
    df = ambiguous_df
    return prepare_records(df[covariate_columns(df)], df["ID"], df["time"], df["event"])


@pytest.fixture
def two_covariate_records(two_covariate_df):
    df = two_covariate_df
    return prepare_records(df[covariate_columns(df)], df["ID"], df["time"], df["event"])


@pytest.fixture
def tiny_frame():
    """Hand-checkable data: subjects 1 and 3 have two candidate records.

    Sorted by (time, ID) the records are:
        time 1 (ID 2, event), time 2 (ID 1, event), time 2 (ID 3, censored),
        time 3 (ID 1, censored), time 4 (ID 4, event), time 5 (ID 3, event)
    """
    return pd.DataFrame({
        "ID":    [1, 1, 2, 3, 3, 4],
        "time":  [3.0, 2.0, 1.0, 5.0, 2.0, 4.0],
        "event": [0, 1, 1, 1, 0, 1],
        "x1":    [0.5, 0.5, -1.0, 0.2, 0.2, 1.5],
    })


@pytest.fixture
def tiny_records(tiny_frame):
    df = tiny_frame
    return prepare_records(df[["x1"]], df["ID"], df["time"], df["event"])


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Detach handlers added by setup_logging so tests stay independent."""
    yield
    logger = logging.getLogger("integrative_survival")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """End any active MLflow run and reset the tracking URI after each test."""
    import mlflow
    yield
    if mlflow.active_run() is not None:
        mlflow.end_run()
    mlflow.set_tracking_uri(None)
