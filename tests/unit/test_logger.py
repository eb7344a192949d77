"""
Unit tests for logging setup.
"""

import logging

import pytest

from bidcore.core.config import MarketConfig
from bidcore.utils.logger import LOG_FILE, get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # Close any file handler a test opened
    setup_logging(logging.WARNING)


class TestSetupLogging:

    def test_console_only_by_default(self, tmp_path):
        config = MarketConfig(log_dir=tmp_path / "logs")
        root = setup_logging(logging.INFO, config)

        assert len(root.handlers) == 1
        assert not (tmp_path / "logs").exists()

    def test_file_under_config_log_dir(self, tmp_path):
        config = MarketConfig(log_dir=tmp_path / "logs", log_to_file=True)
        root = setup_logging(logging.INFO, config)

        get_logger("closer").info("Auction 7 closed")
        for handler in root.handlers:
            handler.flush()

        text = (tmp_path / "logs" / LOG_FILE).read_text()
        assert "[bidcore.closer] INFO" in text
        assert "Auction 7 closed" in text

    def test_reconfigure_replaces_handlers(self, tmp_path):
        config = MarketConfig(log_dir=tmp_path / "logs", log_to_file=True)
        setup_logging(logging.DEBUG, config)
        root = setup_logging(logging.WARNING)

        assert len(root.handlers) == 1
        assert root.level == logging.WARNING

    def test_subsystem_loggers_share_the_tree(self):
        assert get_logger("placement").name == "bidcore.placement"
        assert get_logger("storage.sqlite").name == "bidcore.storage.sqlite"
