"""Unit tests for burn_survival logging and timing helpers."""
import logging
import warnings

import pytest

from burn_survival.exceptions import NullModelWarning, UnstableMetricWarning
from burn_survival.logging_config import (
    LOGGER_NAME,
    ProgressLogger,
    WarningLogger,
    capture_warnings,
    log_performance,
    setup_logging,
)
from burn_survival.timing import Timer, log_execution_time


@pytest.fixture
def run_logger(tmp_path):
    """Logger configured to write under a temporary output directory."""
    logger = setup_logging(tmp_path, log_level=logging.DEBUG, console_output=False)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def read_log(tmp_path, prefix):
    (path,) = (tmp_path / "logs").glob(f"{prefix}_*.log")
    return path.read_text(encoding="utf-8")


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_creates_log_files(self, tmp_path, run_logger):
        names = sorted(p.name.split("_")[0] for p in (tmp_path / "logs").iterdir())

        assert names == ["main", "performance", "warnings"]
        assert run_logger.name == LOGGER_NAME

    def test_routing(self, tmp_path, run_logger):
        """Test that each file receives only its share of records."""
        child = logging.getLogger(f"{LOGGER_NAME}.models.lasso")

        child.info("plain message")
        log_performance(child, "lasso fitted", alpha=0.04, n_nonzero=3)
        child.warning("something odd")

        main = read_log(tmp_path, "main")
        performance = read_log(tmp_path, "performance")
        warning_log = read_log(tmp_path, "warnings")

        assert "plain message" in main
        assert "lasso fitted | alpha=0.04 | n_nonzero=3" in performance
        assert "plain message" not in performance
        assert "something odd" in warning_log
        assert "plain message" not in warning_log

    def test_repeated_setup_replaces_handlers(self, tmp_path, run_logger):
        again = setup_logging(tmp_path / "second", console_output=False)

        assert again is run_logger
        assert len(again.handlers) == 3


class TestCaptureWarnings:
    """Tests for capture_warnings and WarningLogger."""

    def test_categorizes_domain_warnings(self, run_logger):
        with capture_warnings(run_logger) as wl:
            warnings.warn("lasso: null model", NullModelWarning)
            warnings.warn("horizon 30 has 2 events", UnstableMetricWarning)
            warnings.warn("horizon 7.5 has 1 event", UnstableMetricWarning)

        assert wl.summary() == {"null_model": 1, "unstable_metric": 2}

    def test_repeated_warnings_all_counted(self, run_logger):
        with capture_warnings(run_logger) as wl:
            for _ in range(3):
                warnings.warn("overflow encountered in exp", RuntimeWarning)

        assert wl.summary() == {"numerical": 3}

    def test_written_to_warning_log(self, tmp_path, run_logger):
        with capture_warnings(run_logger):
            warnings.warn("mcp: null model", NullModelWarning)

        assert "[NULL_MODEL] mcp: null model" in read_log(tmp_path, "warnings")

    @pytest.mark.parametrize("message,expected", [
        ("Optimization did not converge", "convergence"),
        ("divide by zero encountered", "numerical"),
        ("3 rows dropped", "data"),
        ("something else", "other"),
    ])
    def test_keyword_categories(self, message, expected):
        wl = WarningLogger(logging.getLogger("test"))

        assert wl.categorize_warning(message) == expected


class TestTiming:
    """Tests for Timer and log_execution_time."""

    def test_timer_logs_duration(self, tmp_path, run_logger):
        with Timer(run_logger, "Fit lasso") as timer:
            pass

        assert timer.duration >= 0
        assert "Completed: Fit lasso | duration_sec=" in read_log(tmp_path, "performance")

    def test_timer_does_not_swallow(self, run_logger):
        with pytest.raises(ValueError):
            with Timer(run_logger, "failing step"):
                raise ValueError("boom")

    def test_decorator(self, tmp_path, run_logger):
        @log_execution_time(run_logger)
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert "Completed: add" in read_log(tmp_path, "performance")


class TestProgressLogger:

    def test_reports_progress(self, tmp_path, run_logger):
        progress = ProgressLogger(run_logger, total=2, desc="lasso resamples")

        progress.update(1, metrics={"auc": 0.7})
        progress.update(1)

        main = read_log(tmp_path, "main")
        assert "lasso resamples: 1/2 (50.0%) | auc=0.7000" in main
        assert "lasso resamples: 2/2 (100.0%)" in main
