"""
Unit tests for logging setup.
"""

import logging

import pytest

from cellchain.utils.logger import CellchainLogger, get_logger, setup_logging


@pytest.fixture(autouse=True)
def fresh_logging():
    CellchainLogger.reset()
    yield
    CellchainLogger.reset()


class TestLogger:
    """Tests for subsystem loggers and handlers."""

    def test_subsystem_namespace(self):
        assert get_logger("wallet").name == "cellchain.wallet"

    def test_console_handler_installed_once(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("cellchain").handlers) == 1

    def test_level_applied(self):
        setup_logging(level=logging.WARNING)
        assert logging.getLogger("cellchain").level == logging.WARNING

    def test_file_output(self, tmp_path):
        setup_logging(level=logging.DEBUG, log_dir=str(tmp_path), log_to_file=True)
        get_logger("test").info("hello file")
        for handler in logging.getLogger("cellchain").handlers:
            handler.flush()
        assert "hello file" in (tmp_path / "cellchain.log").read_text()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
