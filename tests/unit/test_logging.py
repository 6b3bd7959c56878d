"""Tests for structured logging setup."""

import logging

import pytest
import structlog

from pocket_guardian.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_format_renders_json(test_settings):
    test_settings.log_format = "json"

    setup_logging(test_settings)

    processors = structlog.get_config()["processors"]
    assert processors[0] is structlog.contextvars.merge_contextvars
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_console_format_renders_console(test_settings):
    test_settings.log_format = "console"

    setup_logging(test_settings)

    assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)


def test_noisy_loggers_are_quieted(test_settings):
    test_settings.log_level = "DEBUG"

    setup_logging(test_settings)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_service_context_is_added(test_settings):
    setup_logging(test_settings)

    add_service_context = structlog.get_config()["processors"][-2]
    event = add_service_context(None, "info", {"event": "Alert sent"})

    assert event["service"] == test_settings.service_name
    assert event["environment"] == test_settings.environment


def test_get_logger_returns_bound_logger():
    logger = get_logger("pocket_guardian.test")
    assert hasattr(logger, "info")
