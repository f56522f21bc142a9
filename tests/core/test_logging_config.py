"""Tests for logging configuration."""

import logging

import pytest

from imodel_transformer.core.logging_config import (
    LOGGER_NAME,
    apply_logger_overrides,
    configure_logging,
    parse_level,
)


@pytest.fixture
def clean_logger():
    """Remove handlers and levels configure_logging installs."""
    logger = logging.getLogger(LOGGER_NAME)
    saved = logger.handlers[:], logger.level
    logger.handlers.clear()
    yield logger
    logger.handlers[:], level = saved
    logger.setLevel(level)
    logging.getLogger("sqlalchemy").setLevel(logging.NOTSET)
    logging.getLogger("hydra").setLevel(logging.NOTSET)


class TestParseLevel:
    def test_names_and_numbers(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Warning ") == logging.WARNING
        assert parse_level(logging.ERROR) == logging.ERROR

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="verbose"):
            parse_level("verbose")


class TestConfigureLogging:
    def test_levels(self, clean_logger):
        logger = configure_logging(level="info", library_level=logging.ERROR)
        assert logger is clean_logger
        assert logger.level == logging.INFO
        assert logging.getLogger("sqlalchemy").level == logging.ERROR
        assert logging.getLogger("hydra").level == logging.ERROR

    def test_handler_attached_once(self, clean_logger):
        handler = logging.NullHandler()
        configure_logging(handler=handler)
        configure_logging(level=logging.DEBUG)
        assert clean_logger.handlers == [handler]
        assert logging.getLogger("sqlalchemy").level == logging.DEBUG

    def test_module_loggers_share_the_namespace(self, clean_logger):
        configure_logging(level=logging.ERROR)
        child = logging.getLogger("imodel_transformer.transformer.transformer")
        assert child.getEffectiveLevel() == logging.ERROR

    def test_overrides(self, clean_logger):
        name = "imodel_transformer.transformer.importer"
        try:
            apply_logger_overrides({name: "debug"})
            assert logging.getLogger(name).level == logging.DEBUG
        finally:
            logging.getLogger(name).setLevel(logging.NOTSET)
