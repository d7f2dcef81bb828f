"""
Tests for the logging configuration module.
"""

import logging
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from contact_reconciler.utils.logging import (
    CONSOLE_FORMAT,
    MATCHING_LOGGER_NAME,
    ROOT_LOGGER_NAME,
    VERBOSE_FORMAT,
    ColoredFormatter,
    cleanup_old_logs,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    get_matching_log_path,
    get_matching_logger,
    setup_logging,
    setup_matching_logger,
)


@pytest.fixture
def reset_matching_logger():
    yield
    logger = logging.getLogger(MATCHING_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env."""

    def test_default_is_info(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_log_level_from_env() == logging.INFO

    def test_log_level_variable(self):
        with patch.dict(os.environ, {"CONTACT_RECONCILER_LOG_LEVEL": "warn"}, clear=True):
            assert get_log_level_from_env() == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        with patch.dict(os.environ, {"CONTACT_RECONCILER_LOG_LEVEL": "LOUD"}, clear=True):
            assert get_log_level_from_env() == logging.INFO

    def test_debug_flag_wins(self):
        env = {"CONTACT_RECONCILER_DEBUG": "true", "CONTACT_RECONCILER_LOG_LEVEL": "ERROR"}
        with patch.dict(os.environ, env, clear=True):
            assert get_log_level_from_env() == logging.DEBUG


class TestGetLogFilePath:
    """Tests for get_log_file_path."""

    def test_dated_file_in_log_dir(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            path = get_log_file_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("contact_reconciler_")
        assert path.suffix == ".log"

    def test_env_override(self, tmp_path):
        target = tmp_path / "custom.log"
        with patch.dict(os.environ, {"CONTACT_RECONCILER_LOG_FILE": str(target)}):
            assert get_log_file_path() == target

    def test_env_disables_file_logging(self):
        with patch.dict(os.environ, {"CONTACT_RECONCILER_LOG_FILE": "none"}):
            assert get_log_file_path() is None


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self):
        logger = setup_logging(level=logging.WARNING, enable_file_logging=False)

        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.WARNING
        assert logger.propagate is False
        assert len(logger.handlers) == 1
        assert logger.handlers[0].formatter._fmt == CONSOLE_FORMAT

    def test_verbose_uses_debug_and_verbose_format(self):
        logger = setup_logging(level=logging.ERROR, verbose=True, enable_file_logging=False)
        assert logger.level == logging.DEBUG
        assert logger.handlers[0].formatter._fmt == VERBOSE_FORMAT

    def test_file_handler_created(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging(level=logging.INFO, log_file=log_file, use_colors=False)

        logger.info("hello from the test")
        for handler in logger.handlers:
            handler.flush()

        assert len(logger.handlers) == 2
        assert "hello from the test" in log_file.read_text()

    def test_repeated_setup_does_not_stack_handlers(self):
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_unwritable_log_file_warns(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        logger = setup_logging(log_file=blocker / "run.log", use_colors=False)
        assert len(logger.handlers) == 1


class TestGetLogger:
    def test_prefixes_name(self):
        assert get_logger("sync.pipeline").name == "contact_reconciler.sync.pipeline"

    def test_keeps_package_names(self):
        assert get_logger("contact_reconciler.api").name == "contact_reconciler.api"


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_no_colors_without_tty(self):
        with patch("sys.stderr") as stderr:
            stderr.isatty.return_value = False
            formatter = ColoredFormatter("%(levelname)s")
        assert formatter.use_colors is False

    def test_no_color_env(self):
        with patch("sys.stderr") as stderr, patch.dict(os.environ, {"NO_COLOR": "1"}):
            stderr.isatty.return_value = True
            assert ColoredFormatter("%(levelname)s").use_colors is False

    def test_colors_level_without_mutating_record(self):
        with patch("sys.stderr") as stderr, patch.dict(os.environ, {"TERM": "xterm"}):
            stderr.isatty.return_value = True
            os.environ.pop("NO_COLOR", None)
            formatter = ColoredFormatter("%(levelname)s")

        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "msg", None, None)
        assert formatter.format(record) == "\033[31mERROR\033[0m"
        assert record.levelname == "ERROR"


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs."""

    def _touch(self, directory: Path, name: str, age: int) -> Path:
        path = directory / name
        path.write_text("")
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))
        return path

    def test_keeps_newest_per_prefix(self, tmp_path):
        for age in range(4):
            self._touch(tmp_path, f"contact_reconciler_2024010{age}.log", age * 100)
            self._touch(tmp_path, f"matching_2024010{age}.log", age * 100)
        unrelated = self._touch(tmp_path, "other.log", 1000)

        assert cleanup_old_logs(tmp_path, keep_count=2) == 4
        assert len(list(tmp_path.glob("contact_reconciler_*.log"))) == 2
        assert (tmp_path / "contact_reconciler_20240100.log").exists()
        assert unrelated.exists()

    def test_zero_keep_count_disables(self, tmp_path):
        self._touch(tmp_path, "contact_reconciler_1.log", 0)
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        assert cleanup_old_logs(tmp_path / "missing") == 0


class TestMatchingLogger:
    """Tests for the deduplication decision log."""

    def test_writes_to_file(self, tmp_path, reset_matching_logger):
        log_file = tmp_path / "matching.log"
        logger = setup_matching_logger(log_file=log_file)

        logger.debug("MATCH people/c1 -> c1 (EXACT, 1.0000)")
        for handler in logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "Matching log session started" in content
        assert "MATCH people/c1" in content
        assert get_matching_logger() is logger

    def test_path_uses_prefix(self, tmp_path):
        path = get_matching_log_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("matching_")
