"""Tests for utils/logging.py: configure_logging and get_logger."""
from __future__ import annotations

import logging
import sys

import pytest
import structlog

from shipwright.utils.logging import configure_logging, get_logger


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("level", "expected"),
    [("DEBUG", logging.DEBUG), ("info", logging.INFO), ("WARNING", logging.WARNING)],
)
def test_configure_logging_sets_root_level(level: str, expected: int) -> None:
    configure_logging(level, json=False)
    assert logging.getLogger().level == expected


def test_configure_logging_invalid_level_falls_back_to_info() -> None:
    configure_logging("NOTAREAL_LEVEL", json=True)
    assert logging.getLogger().level == logging.INFO


def test_configure_logging_writes_to_stderr() -> None:
    configure_logging("INFO", json=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)
    assert handlers[0].stream is sys.stderr


def test_configure_logging_is_idempotent() -> None:
    configure_logging("INFO")
    configure_logging("INFO")
    assert len(logging.getLogger().handlers) == 1


def test_configure_logging_quiets_transport_loggers() -> None:
    configure_logging("DEBUG", json=False)
    for name in ("websockets", "httpx", "httpcore"):
        assert logging.getLogger(name).level == logging.WARNING


# ---------------------------------------------------------------------------
# get_logger
# ---------------------------------------------------------------------------


def test_get_logger_can_log_with_context() -> None:
    configure_logging("WARNING", json=False)
    logger = get_logger("shipwright.tests")
    logger.info("build_event", project="demo", seq=1)
    logger.warning("build_event_dropped", project="demo", seq=2)


def test_configure_logging_binds_service_name() -> None:
    configure_logging("INFO", service="worker")
    assert structlog.contextvars.get_contextvars() == {"service": "worker"}
    configure_logging("INFO")
    assert structlog.contextvars.get_contextvars() == {}
