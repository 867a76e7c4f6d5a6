"""Tests for package logging setup."""

import logging
from io import StringIO

import pytest

from ftadmit.logging import (
    ROOT_LOGGER_NAME,
    disable_debug_logging,
    enable_debug_logging,
    get_logger,
    level_from_flags,
    reset_logging,
    set_global_log_level,
    setup_root_logger,
)


@pytest.fixture(autouse=True)
def restore_logging():
    reset_logging()
    setup_root_logger()
    yield
    reset_logging()
    setup_root_logger()


def test_module_loggers_inherit_package_level():
    """Module loggers defer to the package logger level."""
    logger = get_logger("ftadmit.test")

    log_capture = StringIO()
    handler = logging.StreamHandler(log_capture)
    handler.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.addHandler(handler)

    logger.info("visible info")
    assert "visible info" in log_capture.getvalue()

    logger.debug("hidden debug")
    assert "hidden debug" not in log_capture.getvalue()

    enable_debug_logging()
    logger.debug("debug after enable")
    assert "debug after enable" in log_capture.getvalue()

    disable_debug_logging()
    logger.debug("debug after disable")
    assert "debug after disable" not in log_capture.getvalue()
    logger.removeHandler(handler)


def test_logger_naming():
    logger = get_logger("ftadmit.admission.test")
    assert logger.name == "ftadmit.admission.test"
    assert logger.level == logging.NOTSET


def test_set_global_log_level_reaches_children():
    logger1 = get_logger("ftadmit.module1")
    logger2 = get_logger("ftadmit.module2")
    assert logger1 is not logger2

    set_global_log_level(logging.WARNING)
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    assert root_logger.level == logging.WARNING
    assert logger1.getEffectiveLevel() == logging.WARNING
    assert logger2.getEffectiveLevel() == logging.WARNING
    for handler in root_logger.handlers:
        assert handler.level == logging.WARNING


def test_setup_is_idempotent():
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    setup_root_logger()
    setup_root_logger()
    assert len(root_logger.handlers) == 1


def test_reset_allows_custom_handler():
    reset_logging()
    capture = StringIO()
    setup_root_logger(
        level=logging.DEBUG,
        format_string="%(levelname)s:%(message)s",
        handler=logging.StreamHandler(capture),
    )
    get_logger("ftadmit.custom").debug("hello")
    assert "DEBUG:hello" in capture.getvalue()


class TestLevelFromFlags:
    def test_default_is_info(self):
        assert level_from_flags() == logging.INFO

    def test_verbose(self):
        assert level_from_flags(verbose=True) == logging.DEBUG

    def test_quiet(self):
        assert level_from_flags(quiet=True) == logging.WARNING

    def test_verbose_wins(self):
        assert level_from_flags(verbose=True, quiet=True) == logging.DEBUG
