"""
Unit tests for logging setup.
"""

import logging

import pytest

from convoroute.config.logging import ColoredFormatter, get_logger, setup_logging
from convoroute.config.settings import Settings


@pytest.fixture
def restore_package_logger():
    package_logger = logging.getLogger("convoroute")
    handlers = list(package_logger.handlers)
    level, propagate = package_logger.level, package_logger.propagate
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate


class TestGetLogger:

    def test_package_module_names_kept(self):
        assert get_logger("convoroute.llm.router").name == "convoroute.llm.router"

    def test_foreign_names_nested(self):
        assert get_logger("scripts.replay").name == "convoroute.scripts.replay"


class TestColoredFormatter:

    def test_levelname_restored_after_format(self):
        formatter = ColoredFormatter(fmt="%(levelname)s %(message)s")
        record = logging.LogRecord("convoroute", logging.WARNING, __file__, 1, "careful", None, None)

        output = formatter.format(record)

        assert "\033[33mWARNING\033[0m careful" == output
        assert record.levelname == "WARNING"


class TestSetupLogging:

    def test_console_handler_and_levels(self, restore_package_logger):
        setup_logging(Settings(_env_file=None, log_level="ERROR"))

        package_logger = logging.getLogger("convoroute")
        assert package_logger.level == logging.ERROR
        assert package_logger.propagate is False
        assert len(package_logger.handlers) == 1
        assert logging.getLogger("LiteLLM").level == logging.WARNING

    def test_file_handler(self, restore_package_logger, tmp_path):
        log_file = tmp_path / "logs" / "convoroute.log"

        setup_logging(Settings(_env_file=None, log_file=log_file))

        assert log_file.parent.is_dir()
        assert len(logging.getLogger("convoroute").handlers) == 2
        for handler in logging.getLogger("convoroute").handlers:
            handler.close()
