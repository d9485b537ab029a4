"""Tests for converge logging setup."""

import logging
from converge.utils.logging import DEFAULT_FORMAT, get_logger, setup_logging


class TestLogging:
    def test_module_loggers_live_under_converge(self):
        logger = get_logger("executor.scheduler")

        assert logger.name == "converge.executor.scheduler"
        assert logger.parent.name in ("converge", "converge.executor")

    def test_records_carry_the_thread_name(self):
        assert "%(threadName)s" in DEFAULT_FORMAT

    def test_setup_changes_the_converge_level(self):
        try:
            assert setup_logging(logging.DEBUG).level == logging.DEBUG
            assert get_logger("engine").getEffectiveLevel() == logging.DEBUG
        finally:
            setup_logging(logging.INFO)
