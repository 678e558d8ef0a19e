"""
Tests for logger set-up.
"""
import logging

from stemforge.utils.logger import LOGGER_NAME, setup_logger


class TestLogger:

    def test_single_handler(self):
        first = setup_logger()
        second = setup_logger()
        assert first is second
        assert first.name == LOGGER_NAME
        assert len(first.handlers) == 1

    def test_level(self):
        logger = setup_logger(logging.WARNING)
        try:
            assert logger.level == logging.WARNING
        finally:
            setup_logger(logging.DEBUG)
