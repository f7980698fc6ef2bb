"""
Tests for logging setup.
"""

import logging

import pytest
from rich.logging import RichHandler

from devfleet.logging_config import ROOT_LOGGER, get_logger, setup_cli_logging, setup_logging


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_repeated_calls_do_not_stack_handlers(self):
        setup_logging()
        logger = setup_logging()
        assert len(logger.handlers) == 1

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "devfleet.log"
        logger = setup_logging(level=logging.DEBUG, log_file=log_file, console=False)

        get_logger("test").debug("hello from test")
        for handler in logger.handlers:
            handler.flush()

        assert "hello from test" in log_file.read_text()

    def test_rich_console(self):
        logger = setup_logging(rich_console=True)
        assert isinstance(logger.handlers[0], RichHandler)

    def test_child_loggers_share_namespace(self):
        assert get_logger("scheduler").name == "devfleet.scheduler"


class TestSetupCliLogging:

    def test_quiet_by_default(self):
        setup_cli_logging()
        assert logging.getLogger(ROOT_LOGGER).level == logging.WARNING

    def test_verbose_writes_log_file(self, isolated_state_dir):
        setup_cli_logging(verbose=True)
        logger = logging.getLogger(ROOT_LOGGER)
        assert logger.level == logging.DEBUG
        assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        assert (isolated_state_dir / "devfleet.log").exists()
