"""Timing utilities for performance logging.

Provides a decorator and a context manager that measure and log execution
times of pipeline stages.

Example:
    >>> from bioage_framework.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def select_covariates(cohort, config):
    ...     ...
    ...
    >>> with Timer(logger, "Gompertz reference fit"):
    ...     reference = regression.fit(cohort.frame, covariates)
"""
import time
import functools
import logging
from typing import Callable, Optional

from bioage_framework.logging_config import log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator to log function execution time.

    Logs a DEBUG message on entry, a performance line on success, and an
    ERROR on failure before re-raising.

    Args:
        logger: Logger instance (uses the function's module logger if None)

    Returns:
        Decorated function that logs its execution time
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = logging.getLogger(func.__module__)

            start_time = time.perf_counter()
            logger.debug(f"Starting: {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.error(f"{func.__name__} failed after {duration:.2f}s: {e}")
                raise

            duration = time.perf_counter() - start_time
            log_performance(
                logger,
                f"Completed: {func.__name__}",
                duration_sec=round(duration, 3)
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager for timing code blocks.

    Args:
        logger: Logger instance
        description: Description of the operation being timed

    Example:
        >>> with Timer(logger, "Augmented fit") as timer:
        ...     model = regression.fit(frame, covariates)
        >>> timer.duration
        0.0421
    """

    def __init__(self, logger: logging.Logger, description: str):
        self.logger = logger
        self.description = description
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                duration_sec=round(self.duration, 3)
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}"
            )

        # Don't suppress exception
        return False

    def elapsed(self) -> float:
        """Get elapsed time in seconds (during execution)."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time
