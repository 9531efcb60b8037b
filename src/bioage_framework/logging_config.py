"""Centralized logging configuration for bioage_framework.

This module provides:
- Opt-in handler setup for the ``bioage_framework`` logger tree (console and,
  when a directory is given, main / performance / warnings log files)
- Performance metric logging with timing data
- Categorisation of library warnings raised during model fitting
- Progress tracking for cross-validation folds

Library modules only obtain loggers with ``logging.getLogger``; handlers are
installed solely by ``setup_logging``, which callers invoke themselves.

Example:
    >>> from bioage_framework.logging_config import setup_logging, log_performance
    >>> logger = setup_logging(log_dir="outputs/logs", log_level=logging.INFO)
    >>> log_performance(logger, "Gompertz reference fit", duration_sec=0.4, n_iter=9)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional, Union
from contextlib import contextmanager


LOGGER_NAME = "bioage_framework"


class PerformanceFilter(logging.Filter):
    """Filter to capture only performance-related messages.

    Messages tagged with 'is_performance' attribute will pass through.
    """

    def filter(self, record):
        """Check if record is a performance metric."""
        return hasattr(record, 'is_performance') and record.is_performance


class WarningErrorFilter(logging.Filter):
    """Filter to capture only warnings and errors."""

    def filter(self, record):
        """Check if record is WARNING level or above."""
        return record.levelno >= logging.WARNING


def setup_logging(
    log_dir: Optional[Union[str, Path]] = None,
    log_level: int = logging.INFO,
    console_output: bool = True
) -> logging.Logger:
    """Setup logging for bioage_framework.

    Always (re)configures the ``bioage_framework`` logger. When ``log_dir`` is
    given, creates:
    - main_{timestamp}.log: All log messages
    - performance_{timestamp}.log: Performance metrics only
    - warnings_{timestamp}.log: Warnings and errors only

    Args:
        log_dir: Optional directory for log files. No files are written if None
        log_level: Minimum log level for the console (DEBUG=10, INFO=20, ...)
        console_output: Whether to output logs to stdout (default: True)

    Returns:
        Configured root logger for bioage_framework

    Example:
        >>> logger = setup_logging(log_level=logging.DEBUG)
        >>> logger.debug("Fitting reference model")
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handlers

    # Clear any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    performance_formatter = logging.Formatter(
        fmt='%(asctime)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        fmt='%(levelname)-8s | %(message)s'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    if log_dir is None:
        return logger

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    main_handler = logging.FileHandler(
        log_dir / f"main_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    main_handler.setLevel(logging.DEBUG)
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(
        log_dir / f"performance_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(
        log_dir / f"warnings_{timestamp}.log",
        mode='w',
        encoding='utf-8'
    )
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    logger.info(f"Log directory: {log_dir.absolute()}")
    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance-related message with timing data.

    Args:
        logger: Logger instance
        message: Performance message description
        **kwargs: Additional context (duration, iterations, log-likelihood, ...)

    Example:
        >>> log_performance(logger, "Cox augmented fit", n_iter=6, loglik=-5120.3)
        # Output: "Cox augmented fit | n_iter=6 | loglik=-5120.3"
    """
    extra = {'is_performance': True}
    extra.update(kwargs)

    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        full_message = f"{message} | {metrics_str}"
    else:
        full_message = message

    logger.info(full_message, extra=extra)


class WarningLogger:
    """Captures warnings and categorizes them for analysis.

    Categories:
    - convergence: Optimizer convergence issues
    - numerical: Overflow, underflow, invalid values
    - data: Data quality issues
    - statistical: Hessian and variance problems
    - other: Uncategorized warnings
    """

    WARNING_CATEGORIES = {
        'convergence': ['ConvergenceWarning', 'did not converge', 'maximum iterations',
                        'maximum number of iterations'],
        'numerical': ['overflow', 'underflow', 'invalid value', 'divide by zero'],
        'data': ['missing values', 'least populated class'],
        'statistical': ['Hessian', 'singular', 'covariance'],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts['other'] = 0

    def categorize_warning(self, message: str) -> str:
        """Categorize a warning message based on keywords.

        Args:
            message: Warning message text

        Returns:
            Category name (convergence, numerical, data, statistical, other)
        """
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return 'other'

    def log_warning(self, message: str, category: str = None):
        """Log a warning with category tag.

        Args:
            message: Warning message
            category: Category name (auto-detected if None)
        """
        if category is None:
            category = self.categorize_warning(message)

        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Return {category: count} for categories with warnings."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Context manager to capture and log warnings from fitting libraries.

    Redirects Python warnings raised inside the block to the logging system,
    categorizes them, and logs a summary at the end.

    Args:
        logger: Logger instance

    Yields:
        WarningLogger instance for accessing warning counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     result = PHReg(time, X, status=status).fit()
        >>> print(warning_logger.summary())
        {'convergence': 1}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(f"{category.__name__}: {message}")

    with warnings.catch_warnings():
        warnings.simplefilter("always")
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
        >>> progress = ProgressLogger(logger, total=10, desc="CV folds")
        >>> for fold in range(10):
        ...     progress.update(1, metrics={'n_events': 41})
        # Output: "CV folds: 1/10 (10.0%) | n_events=41"
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
        self.log_interval = log_interval
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        """Update progress by n steps.

        Args:
            n: Number of steps to advance (default: 1)
            metrics: Optional dict of metrics to include in log message
        """
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"

            if metrics:
                metrics_str = ", ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                                        for k, v in metrics.items())
                msg += f" | {metrics_str}"

            self.logger.debug(msg)
