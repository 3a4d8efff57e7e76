"""Logging setup for the burn survival analysis.

Every module logs through a child of the ``burn_survival`` logger. A run
writes three files under ``<output_dir>/logs/``:

- ``main_<timestamp>.log``: everything, with module names
- ``performance_<timestamp>.log``: timings and fit/validation metrics only
- ``warnings_<timestamp>.log``: warnings and errors, including captured
  library warnings (null models, unstable metrics, convergence)

Example:
    >>> from burn_survival.logging_config import setup_logging, log_performance
    >>> logger = setup_logging("data/outputs", log_level=logging.INFO)
    >>> log_performance(logger, "lasso fitted", alpha=0.041, n_nonzero=3)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional, Union
from contextlib import contextmanager

from burn_survival.exceptions import NullModelWarning, UnstableMetricWarning

LOGGER_NAME = "burn_survival"


class PerformanceFilter(logging.Filter):
    """Pass only records tagged with ``is_performance``."""

    def filter(self, record):
        return getattr(record, "is_performance", False)


class WarningErrorFilter(logging.Filter):
    def filter(self, record):
        return record.levelno >= logging.WARNING


def setup_logging(
    output_dir: Union[str, Path] = "data/outputs",
    log_level: int = logging.INFO,
    console_output: bool = True
) -> logging.Logger:
    """Configure the ``burn_survival`` logger for one analysis run.

    Args:
        output_dir: Run output directory; log files go to its ``logs/`` subdirectory
        log_level: Minimum level shown on the console
        console_output: Whether to log to stdout

    Returns:
        The configured ``burn_survival`` logger
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    # Close handlers of a previous run in the same process
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    performance_formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(fmt="%(levelname)-8s | %(message)s"))
        logger.addHandler(console_handler)

    main_handler = logging.FileHandler(log_dir / f"main_{timestamp}.log", mode="w", encoding="utf-8")
    main_handler.setLevel(min(log_level, logging.DEBUG))
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(
        log_dir / f"performance_{timestamp}.log", mode="w", encoding="utf-8"
    )
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(
        log_dir / f"warnings_{timestamp}.log", mode="w", encoding="utf-8"
    )
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    logger.info(f"Log directory: {log_dir.absolute()}")
    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a message to the main and performance logs with key=value context.

    Example:
        >>> log_performance(logger, "External validation", horizon=15.0, auc=0.71)
        # "External validation | horizon=15.0 | auc=0.71"
    """
    extra = {"is_performance": True}
    if kwargs:
        full_message = message + " | " + " | ".join(f"{k}={v}" for k, v in kwargs.items())
    else:
        full_message = message
    logger.info(full_message, extra=extra)


class WarningLogger:
    """Categorizes captured warnings and counts them.

    Warning classes map directly to a category; other warnings are
    categorized by keywords in their message.
    """

    CATEGORY_CLASSES = {
        NullModelWarning: "null_model",
        UnstableMetricWarning: "unstable_metric",
    }

    WARNING_CATEGORIES = {
        "convergence": ["ConvergenceWarning", "did not converge", "maximum iterations",
                        "maximum number of iterations"],
        "numerical": ["overflow", "underflow", "invalid value", "divide by zero"],
        "data": ["non-positive", "missing values", "dropped"],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.CATEGORY_CLASSES.values()}
        self.warning_counts.update({cat: 0 for cat in self.WARNING_CATEGORIES})
        self.warning_counts["other"] = 0

    def categorize_warning(self, message: str, category: Optional[type] = None) -> str:
        """Category name for a warning message and optional warning class."""
        if category is not None:
            for cls, name in self.CATEGORY_CLASSES.items():
                if issubclass(category, cls):
                    return name
            if category.__name__ == "ConvergenceWarning":
                return "convergence"
        message_lower = message.lower()
        for name, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return name
        return "other"

    def log_warning(self, message: str, category: Optional[type] = None):
        name = self.categorize_warning(message, category)
        self.warning_counts[name] += 1
        self.logger.warning(f"[{name.upper()}] {message}")

    def summary(self) -> dict:
        """Counts of the categories that saw at least one warning."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Route Python warnings raised inside the block to ``logger``.

    Every warning is logged (not only the first per location) and counted
    by category; a summary is logged on exit.

    Yields:
        WarningLogger holding the counts

    Example:
        >>> with capture_warnings(logger) as wl:
        ...     model = fitter.fit(view.X, view.y)
        >>> wl.summary()
        {'null_model': 1}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(str(message), category)

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
                logger.info("Warning summary: " + ", ".join(f"{k}={v}" for k, v in summary.items()))


class ProgressLogger:
    """Logs progress of a fixed number of steps.

    Example:
        >>> progress = ProgressLogger(logger, total=5, desc="lasso resamples")
        >>> progress.update(1, metrics={"auc_15": 0.74})
        # "lasso resamples: 1/5 (20.0%) | auc_15=0.7400"
    """

    def __init__(self, logger: logging.Logger, total: int, desc: str, log_interval: int = 1):
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = log_interval
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"
            if metrics:
                msg += " | " + ", ".join(
                    f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                    for k, v in metrics.items()
                )
            self.logger.info(msg)
