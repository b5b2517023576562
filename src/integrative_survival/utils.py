from __future__ import annotations
import os
import datetime as dt
from typing import TYPE_CHECKING, Dict

import pandas as pd

if TYPE_CHECKING:
    from integrative_survival.fit import FitResult


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("data/outputs/artifacts")
    """
    os.makedirs(path, exist_ok=True)


def versioned_name(base: str, tag: str | None = None) -> str:
    """Generate a timestamped name for versioning.

    Args:
        base: Base name without extension
        tag: Optional prefix (e.g. "multistart")

    Returns:
        Versioned name in format "[tag_]base_YYYYMMDD_HHMMSS"

    Example:
        >>> versioned_name("icoxph")
        'icoxph_20250123_143052'
        >>> versioned_name("icoxph", tag="multistart")
        'multistart_icoxph_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    if tag:
        return f"{tag}_{base}_{ts}"
    return f"{base}_{ts}"


def get_output_paths(base_dir: str = "data/outputs") -> Dict[str, str]:
    """Get standardized output directory paths under ``base_dir``.

    Returns:
        Dictionary with keys:
        - base_dir: Root output directory
        - artifacts: Coefficient tables, hazards, posterior weights
        - configs: Saved fit configurations
        - mlruns: MLflow tracking directory

    Example:
        >>> paths = get_output_paths("runs/trial_1")
        >>> paths["artifacts"]
        'runs/trial_1/artifacts'

    Notes:
        - All paths are created if they don't exist
    """
    paths = {
        "base_dir": base_dir,
        "artifacts": os.path.join(base_dir, "artifacts"),
        "configs": os.path.join(base_dir, "configs"),
        "mlruns": os.path.join(base_dir, "mlruns"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths


def save_fit_artifacts(result: "FitResult", outdir: str) -> Dict[str, str]:
    """Write the tables of a fitted model to CSV files.

    Files written:
    - coefficients.csv: ``FitResult.summary()``
    - baseline_hazard.csv: event and censoring hazards per distinct time
    - posterior.csv: prior and posterior membership weights in input order
    - loglik_trace.csv: observed-data log-likelihood per ECM iteration

    Args:
        result: Fitted model result
        outdir: Output directory (created if missing)

    Returns:
        Mapping of artifact name to written path

    Example:
        >>> paths = save_fit_artifacts(result, "data/outputs/artifacts")
        >>> sorted(paths)
        ['baseline_hazard', 'coefficients', 'loglik_trace', 'posterior']
    """
    ensure_dir(outdir)
    paths = {
        "coefficients": os.path.join(outdir, "coefficients.csv"),
        "baseline_hazard": os.path.join(outdir, "baseline_hazard.csv"),
        "posterior": os.path.join(outdir, "posterior.csv"),
        "loglik_trace": os.path.join(outdir, "loglik_trace.csv"),
    }

    result.summary().to_csv(paths["coefficients"], index_label="covariate")
    result.baseline_hazard.to_csv(paths["baseline_hazard"], index=False)
    pd.DataFrame({
        "ID": result.ids,
        "time": result.time,
        "event": result.event.astype(int),
        "prior": result.prior,
        "posterior": result.posterior,
    }).to_csv(paths["posterior"], index=False)
    pd.DataFrame({
        "iteration": range(1, len(result.loglik_trace) + 1),
        "loglik": result.loglik_trace,
    }).to_csv(paths["loglik_trace"], index=False)
    return paths
