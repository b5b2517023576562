"""Timing helpers that report durations to the performance log.

Example:
    >>> from integrative_survival.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def fit_model(records):
    ...     ...
    >>> with Timer(logger, "SECM variance"):
    ...     variance = estimate_variance(...)
"""
import time
import functools
import logging
from typing import Callable, Optional

from integrative_survival.logging_config import log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator that logs how long the wrapped function took.

    Successful calls are logged as performance metrics; failures are logged
    as errors with the traceback and re-raised.

    Args:
        logger: Logger instance (uses the function's module logger if None)

    Example:
        >>> @log_execution_time()
        ... def run_multistart(...):
        ...     ...
        INFO     | Completed: run_multistart | duration_sec=4.1
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = logging.getLogger(func.__module__)

            start_time = time.time()
            logger.info(f"Starting: {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"{func.__name__} failed after {duration:.2f}s: {e}", exc_info=True)
                raise

            duration = time.time() - start_time
            log_performance(
                logger,
                f"Completed: {func.__name__}",
                duration_sec=round(duration, 2),
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager timing a block of code.

    Args:
        logger: Logger instance
        description: Description of the timed operation

    Example:
        >>> with Timer(logger, "Multi-start search") as timer:
        ...     best = run_multistart(...)
        >>> timer.duration
        4.12
    """

    def __init__(self, logger: logging.Logger, description: str):
        self.logger = logger
        self.description = description
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time
        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                duration_sec=round(self.duration, 2),
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}",
                exc_info=True
            )
        return False

    def elapsed(self) -> float:
        """Seconds since entering the context (0 before entering)."""
        if self.start_time is None:
            return 0.0
        return time.time() - self.start_time
