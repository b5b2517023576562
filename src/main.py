"""Command-line entry point for fitting integrative Cox models.

Loads candidate survival records (CSV or pickle), fits the model by ECM,
writes coefficient, hazard, posterior and log-likelihood tables and
optionally tracks the run in MLflow.

Can be used as CLI or imported as a function.
"""
from integrative_survival.config import (
    ExecutionConfig,
    IntegrativeCoxConfig,
    InvalidConfigurationError,
)
from integrative_survival.data import load_data
from integrative_survival.fit import IntegrativeCoxPH, FitResult
from integrative_survival.initializers import INITIALIZERS, get_initializer
from integrative_survival.logging_config import setup_logging
from integrative_survival.tracking import (
    start_run,
    safe_log_artifact,
    safe_log_metrics,
    safe_log_params,
)
from integrative_survival.utils import get_output_paths, save_fit_artifacts, versioned_name
from dataclasses import replace
from typing import Dict, Optional, Sequence
import os
import logging
import argparse


def _track_fit(result: FitResult, config: IntegrativeCoxConfig, artifact_paths: Dict[str, str],
               mlruns_dir: str, input_file: str, logger: logging.Logger) -> None:
    tracking_uri = "file:" + os.path.abspath(mlruns_dir)
    with start_run(run_name=versioned_name("icoxph"), tracking_uri=tracking_uri):
        params = config.to_dict()
        params["input_file"] = input_file
        params["control"] = {k: v for k, v in result.control.__dict__.items()}
        params["chosen_start"] = result.start.label
        safe_log_params(params, logger=logger)

        metrics = {
            "loglik": result.loglik,
            "partial_loglik": result.partial_loglik,
            "censor_rate0": result.censor_rate0,
            "iterations": result.iterations,
            "n_obs": result.n_obs,
            "n_subjects": result.n_subjects,
        }
        if result.start.censor_rate is not None:
            metrics["chosen_censor_rate"] = result.start.censor_rate
        summary = result.summary()
        for name, row in summary.iterrows():
            metrics[f"coef_{name}"] = row["coef"]
            metrics[f"se_{name}"] = row["se(coef)"]
        safe_log_metrics(metrics, logger=logger)

        for step, value in enumerate(result.loglik_trace):
            safe_log_metrics({"loglik_trace": value}, step=step, logger=logger)
        for path in artifact_paths.values():
            safe_log_artifact(path, logger=logger)


def run_fit(
    input_file: str,
    config: Optional[IntegrativeCoxConfig] = None,
    output_dir: str = "data/outputs",
    track: bool = False,
    log_level: int = logging.INFO,
    initializer: str = "lifelines_cox",
) -> int:
    """Fit an integrative Cox model on a record file and write artifacts.

    Args:
        input_file: Path to input file (CSV or pickle), one row per
            candidate record
        config: Fit configuration. Defaults to ``IntegrativeCoxConfig()``
        output_dir: Base output directory for logs, artifacts and MLflow runs
        track: Log parameters, metrics and artifacts to MLflow
        log_level: Console log level
        initializer: Starting-value strategy name (see ``INITIALIZERS``)

    Returns:
        Exit code (0 for success, 1 for failure)

    Example:
        >>> from main import run_fit
        >>> run_fit("data/inputs/linked_records.csv", output_dir="runs/trial_1")
        0
    """
    config = config or IntegrativeCoxConfig()
    logger = setup_logging(output_dir, log_level=log_level)

    if not os.path.exists(input_file):
        logger.error(f"Input file not found: {input_file}")
        return 1

    paths = get_output_paths(output_dir)
    logger.info("=" * 70)
    logger.info("INTEGRATIVE COX MODEL FIT")
    logger.info("=" * 70)
    logger.info(f"Input file: {input_file}")
    logger.info(f"Execution:  {config.execution}")

    try:
        df = load_data(input_file)
        model = IntegrativeCoxPH(
            config,
            initializer=get_initializer(initializer),
            logger=logging.getLogger("integrative_survival.fit"),
        )
        result = model.fit_frame(df)
    except (KeyError, ValueError) as e:
        logger.error(f"Fit failed: {e}")
        return 1

    config.save(os.path.join(paths["configs"], "fit_config.json"))
    artifact_paths = save_fit_artifacts(result, paths["artifacts"])
    logger.info(f"Artifacts saved to: {paths['artifacts']}")
    logger.info("\n" + result.summary().to_string())

    if track:
        _track_fit(result, config, artifact_paths, paths["mlruns"], input_file, logger)

    if not result.converged:
        logger.warning(f"Fit finished without convergence (ECM: {result.ecm_state.value}, CM: {result.code.name})")
    return 0


def build_config(args: argparse.Namespace) -> IntegrativeCoxConfig:
    """Combine an optional JSON config with command-line overrides.

    Raises:
        InvalidConfigurationError: If the resulting configuration is invalid
    """
    config = IntegrativeCoxConfig.load(args.config) if args.config else IntegrativeCoxConfig()

    columns = {}
    if args.id_col:
        columns["id_column"] = args.id_col
    if args.time_col:
        columns["time_column"] = args.time_col
    if args.event_col:
        columns["event_column"] = args.event_col
    if args.covariates:
        columns["covariates"] = tuple(args.covariates)

    start = config.start
    if args.censor_rate:
        start = replace(start, censor_rate=list(args.censor_rate))
    if args.multi_start:
        start = replace(start, multi_start=True)

    control = config.control
    if args.se:
        control = replace(control, no_se=False)

    execution = config.execution
    if args.n_jobs is not None:
        execution = ExecutionConfig(n_jobs=args.n_jobs, backend=execution.backend, verbose=execution.verbose)

    return replace(config, start=start, control=control, execution=execution, **columns)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Integrative Cox model - fit with ambiguous candidate records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default start from the empirical censoring rate
  python src/main.py --input data/inputs/linked_records.csv --covariates x1 x2

  # Multi-start grid, standard errors, 4 parallel jobs
  python src/main.py --input data.csv --multi-start --se --n-jobs 4

  # Explicit prior censoring rates, tracked in MLflow
  python src/main.py --input data.csv --censor-rate 0.2 0.5 --track
        """
    )
    parser.add_argument("--input", type=str, required=True,
                        help="Path to input file (CSV or pickle)")
    parser.add_argument("--id-col", type=str, default=None,
                        help="Subject identifier column. Default: ID")
    parser.add_argument("--time-col", type=str, default=None,
                        help="Observed time column. Default: time")
    parser.add_argument("--event-col", type=str, default=None,
                        help="Event indicator column. Default: event")
    parser.add_argument("--covariates", type=str, nargs="+", default=None,
                        help="Covariate columns. Default: all remaining columns")
    parser.add_argument("--multi-start", action="store_true",
                        help="Search prior censoring rates 0, 0.02, ..., 1")
    parser.add_argument("--censor-rate", type=float, nargs="+", default=None,
                        help="Prior censoring rate(s) to start from")
    parser.add_argument("--se", action="store_true",
                        help="Estimate standard errors by SECM")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Parallel jobs for multi-start runs and DM rows. -1 means all cores")
    parser.add_argument("--initializer", type=str, default="lifelines_cox",
                        choices=sorted(INITIALIZERS),
                        help="Starting coefficients when not given in --config. Default: lifelines_cox")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON configuration file (IntegrativeCoxConfig.save format)")
    parser.add_argument("--output-dir", type=str, default="data/outputs",
                        help="Output directory. Default: data/outputs")
    parser.add_argument("--track", action="store_true",
                        help="Log the run to MLflow")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Console log level. Default: INFO")

    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except (InvalidConfigurationError, OSError) as e:
        print(f"ERROR: {e}")
        return 1

    return run_fit(
        input_file=args.input,
        config=config,
        output_dir=args.output_dir,
        track=args.track,
        log_level=getattr(logging, args.log_level),
        initializer=args.initializer,
    )


if __name__ == "__main__":
    exit(main())
