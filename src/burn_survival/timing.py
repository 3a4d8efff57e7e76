"""Timing helpers that report durations to the performance log.

Example:
    >>> @log_execution_time()
    ... def fit_all(view):
    ...     ...
    >>> with Timer(logger, "External validation"):
    ...     result = external_validate(...)
"""
import time
import functools
import logging
from typing import Callable, Optional

from burn_survival.logging_config import log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator logging the duration of each call.

    Failures are logged with their traceback and re-raised.

    Args:
        logger: Logger to use; defaults to ``burn_survival.<module>`` of the
            decorated function
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            log = logger or logging.getLogger(
                f"burn_survival.{func.__module__.rsplit('.', 1)[-1]}"
            )
            start_time = time.perf_counter()
            log.info(f"Starting: {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                log.error(f"{func.__name__} failed after {duration:.2f}s: {e}", exc_info=True)
                raise
            duration = time.perf_counter() - start_time
            log_performance(
                log, f"Completed: {func.__name__}",
                duration_sec=round(duration, 2),
                duration_min=round(duration / 60, 2)
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager timing a block of code.

    Args:
        logger: Logger instance
        description: What is being timed

    Example:
        >>> with Timer(logger, "Fit mcp"):
        ...     model = MCPCox(config).fit(X, y)
        INFO     | Starting: Fit mcp
        INFO     | Completed: Fit mcp | duration_sec=4.1 | duration_min=0.07
    """

    def __init__(self, logger: logging.Logger, description: str):
        self.logger = logger
        self.description = description
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                duration_sec=round(self.duration, 2),
                duration_min=round(self.duration / 60, 2)
            )
        else:
            self.logger.error(f"{self.description} failed after {self.duration:.2f}s: {exc_val}")

        return False

    def elapsed(self) -> float:
        """Seconds since entering the block (0.0 before entering)."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time
