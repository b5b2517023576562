from __future__ import annotations
import os
import json
import logging
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "integrative_survival"


def start_run(run_name: str, tags: Dict[str, str] | None = None,
              tracking_uri: str | None = None):
    """Start an MLflow run under the integrative_survival experiment.

    Args:
        run_name: Name identifier for this run
        tags: Optional key-value tags to attach to the run
        tracking_uri: Optional tracking location (e.g. ``file:runs/mlruns``)

    Returns:
        Active MLflow run context manager

    Example:
        >>> with start_run("icoxph_multistart", tags={"data": "linked_2024"}):
        ...     safe_log_metrics({"loglik": -431.2})
    """
    if tracking_uri:
        mlflow.set_tracking_uri(tracking_uri)
    mlflow.set_experiment(EXPERIMENT_NAME)
    return mlflow.start_run(run_name=run_name, tags=tags)


def flatten_params(params: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested dictionaries into dotted MLflow parameter names.

    Example:
        >>> flatten_params({"control": {"gradtol": 1e-6}})
        {'control.gradtol': 1e-06}
    """
    flat = {}
    for k, v in params.items():
        key = f"{prefix}{k}"
        if isinstance(v, dict):
            flat.update(flatten_params(v, prefix=f"{key}."))
        else:
            flat[key] = v
    return flat


# ============================================================================
# Safe MLflow Wrappers with Graceful Degradation
# ============================================================================


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to MLflow, warning instead of raising on failure.

    Non-finite values are skipped since MLflow rejects them on some stores.

    Returns:
        True if logging succeeded, False if it failed

    Example:
        >>> safe_log_metrics({"loglik": -431.2, "iterations": 12}, logger=logger)
        True
    """
    clean = {}
    for k, v in metrics.items():
        try:
            value = float(v)
        except (TypeError, ValueError):
            continue
        if value == value and abs(value) != float("inf"):
            clean[k] = value
    try:
        mlflow.log_metrics(clean, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}", extra={"category": "mlflow_error"})
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow metrics logging: {e}", extra={"category": "mlflow_error"})
        return False


def safe_log_params(
    params: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log parameters to MLflow, warning instead of raising on failure.

    Nested dictionaries (e.g. ``IntegrativeCoxConfig.to_dict()``) are
    flattened first.

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        for k, v in flatten_params(params).items():
            if isinstance(v, (list, tuple)):
                v = json.dumps(list(v), default=str)
            mlflow.log_param(k, v)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}", extra={"category": "mlflow_error"})
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow params logging: {e}", extra={"category": "mlflow_error"})
        return False


def safe_log_artifact(
    path: str,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log a file artifact to MLflow, warning instead of raising on failure.

    Returns:
        True if logging succeeded, False if it failed or the file is missing

    Example:
        >>> safe_log_artifact("runs/coefficients.csv", logger=logger)
        True
    """
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow artifact logging failed for {path}: {e}", extra={"category": "mlflow_error"})
        return False
    except Exception as e:
        if logger:
            logger.error(
                f"Unexpected error in MLflow artifact logging for {path}: {e}",
                extra={"category": "mlflow_error"}
            )
        return False
