"""Centralized logging configuration for integrative Cox fits.

This module provides:
- Console and file logging under the ``integrative_survival`` namespace
- Separate log files for performance metrics and warnings
- Warning categorization for optimizer and Cox-fit diagnostics
- Progress tracking for multi-start searches

Example:
    >>> from integrative_survival.logging_config import setup_logging, log_performance
    >>> logger = setup_logging(output_dir="data/outputs", log_level=logging.INFO)
    >>> logger.info("Starting fit")
    >>> log_performance(logger, "ECM finished", iterations=12, loglik=-431.2)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional, Union
from contextlib import contextmanager

PACKAGE_LOGGER = "integrative_survival"


class PerformanceFilter(logging.Filter):
    """Pass only records tagged with the ``is_performance`` attribute."""

    def filter(self, record):
        return hasattr(record, 'is_performance') and record.is_performance


class WarningErrorFilter(logging.Filter):
    """Pass only WARNING records and above."""

    def filter(self, record):
        return record.levelno >= logging.WARNING


def setup_logging(
    output_dir: Union[str, Path, None] = "data/outputs",
    log_level: int = logging.INFO,
    console_output: bool = True
) -> logging.Logger:
    """Configure the package logger.

    Creates log files in ``{output_dir}/logs/``:
    - main_{timestamp}.log: All log messages
    - performance_{timestamp}.log: Performance metrics only
    - warnings_{timestamp}.log: Warnings and errors only
    - debug_{timestamp}.log: Per-iteration ECM traces (if log_level=DEBUG)

    Args:
        output_dir: Base output directory. When None, no files are written
        log_level: Minimum console log level
        console_output: Whether to log to stdout (default: True)

    Returns:
        Configured ``integrative_survival`` logger

    Example:
        >>> logger = setup_logging("runs/trial_1", log_level=logging.DEBUG)
        >>> logger.debug("ECM iteration 1 ...")
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    performance_formatter = logging.Formatter(
        fmt='%(asctime)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(fmt='%(levelname)-8s | %(message)s')

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    if output_dir is None:
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        return logger

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    main_handler = logging.FileHandler(log_dir / f"main_{timestamp}.log", mode='w', encoding='utf-8')
    main_handler.setLevel(min(log_level, logging.INFO))
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(log_dir / f"performance_{timestamp}.log", mode='w', encoding='utf-8')
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(log_dir / f"warnings_{timestamp}.log", mode='w', encoding='utf-8')
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    if log_level == logging.DEBUG:
        debug_handler = logging.FileHandler(log_dir / f"debug_{timestamp}.log", mode='w', encoding='utf-8')
        debug_handler.setLevel(logging.DEBUG)
        debug_handler.setFormatter(detailed_formatter)
        logger.addHandler(debug_handler)

    logger.info(f"Log directory: {log_dir.absolute()}")
    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance message with key=value context.

    The record is tagged so that it also lands in the performance log.

    Example:
        >>> log_performance(logger, "SECM finished", duration_sec=3.2, n_covariates=2)
        # Output: "SECM finished | duration_sec=3.2 | n_covariates=2"
    """
    extra = {'is_performance': True}
    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        full_message = f"{message} | {metrics_str}"
    else:
        full_message = message
    logger.info(full_message, extra=extra)


class WarningLogger:
    """Captures warnings and categorizes them for analysis.

    Categories:
    - convergence: Cox or trust-region convergence issues
    - numerical: Overflow, underflow, invalid values
    - data: Data quality issues
    - statistical: Hessian / covariance problems
    - other: Uncategorized warnings
    """

    WARNING_CATEGORIES = {
        'convergence': ['ConvergenceWarning', 'did not converge', 'maximum iterations', 'iteration limit'],
        'numerical': ['overflow', 'underflow', 'invalid value', 'divide by zero'],
        'data': ['missing values', 'zero variance', 'low variance'],
        'statistical': ['Hessian', 'variance_matrix', 'covariance', 'singular'],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts['other'] = 0

    def categorize_warning(self, message: str) -> str:
        """Return the first category whose keywords occur in ``message``."""
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return 'other'

    def log_warning(self, message: str, category: Optional[str] = None):
        if category is None:
            category = self.categorize_warning(message)
        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Return {category: count} for categories with warnings."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Route Python warnings raised inside the block into ``logger``.

    Yields:
        WarningLogger instance for accessing warning counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     result = model.fit(X, ids, time, event)
        >>> warning_logger.summary()
        {'numerical': 2}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(f"{message}")

    old_showwarning = warnings.showwarning
    warnings.showwarning = warning_handler
    try:
        yield warning_logger
    finally:
        warnings.showwarning = old_showwarning
        summary = warning_logger.summary()
        if summary:
            summary_str = ", ".join(f"{k}={v}" for k, v in summary.items())
            logger.info(f"Warning summary: {summary_str}")


class ProgressLogger:
    """Logs progress updates for iterations.

    Example:
        >>> progress = ProgressLogger(logger, total=51, desc="Multi-start", log_interval=5)
        >>> for start in starts:
        ...     progress.update(1, metrics={'loglik': -431.2})
        # Output: "Multi-start: 5/51 (9.8%) | loglik=-431.2000"
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int,
        desc: str,
        log_interval: int = 1
    ):
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = max(1, int(log_interval))
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        """Advance by ``n`` steps, logging every ``log_interval`` and at the end."""
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100 if self.total else 100.0
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"
            if metrics:
                metrics_str = ", ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                                        for k, v in metrics.items())
                msg += f" | {metrics_str}"
            self.logger.info(msg)
