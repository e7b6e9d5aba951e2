"""
spec-reconciler — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-17

Purpose
- Validate session JSON-lines logging with redaction, correlation metadata and
  structlog routing.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation and isolation between concurrent tasks.
- structlog events landing in the session file with their fields.
- Shutdown drains the queue and is idempotent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from spec_reconciler.observability.logging import (
    LOG_FILENAME,
    ROOT_LOGGER_NAME,
    LoggingSettings,
    correlation_scope,
    get_active_logging,
    get_correlation_context,
    parse_log_level,
    redact,
    setup_logging,
    shutdown_logging,
    to_json_value,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_session_log_file_layout(tmp_path: Path) -> None:
    handle = setup_logging(LoggingSettings(session_id="ses_abc", log_dir=tmp_path))

    assert handle.log_path == tmp_path / "ses_abc" / LOG_FILENAME
    assert get_active_logging() is handle
    assert handle.dropped_records == 0


def test_json_logging_redacts_secrets_and_keeps_correlation(tmp_path: Path) -> None:
    handle = setup_logging(LoggingSettings(session_id="ses_1", log_dir=tmp_path))
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.tests")

    with correlation_scope(scope_id="scope-1", node_id="a.md#a"):
        logger.info(
            "payload token=tok-FAKE and key sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )
    shutdown_logging()

    (event,) = _read_json_lines(handle.log_path)
    assert event["session_id"] == "ses_1"
    assert event["scope_id"] == "scope-1"
    assert event["node_id"] == "a.md#a"
    assert "tok-FAKE" not in str(event["message"])
    assert "sk-FAKE" not in str(event["message"])
    assert event["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle = setup_logging(
        LoggingSettings(session_id="ses_2", log_dir=tmp_path, redact_secrets=False)
    )
    logging.getLogger(ROOT_LOGGER_NAME).warning("token=visible")
    shutdown_logging()

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "token=visible"
    assert event["level"] == "WARNING"


def test_structlog_events_reach_the_session_file(tmp_path: Path) -> None:
    handle = setup_logging(LoggingSettings(session_id="ses_3", log_dir=tmp_path))
    logger = structlog.get_logger(f"{ROOT_LOGGER_NAME}.decisions")

    with correlation_scope(session_id="ses_3"):
        logger.info("scope_settled", scope_id="scope-9", attempts=2)
        logger.debug("too_quiet")
    shutdown_logging()

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "scope_settled"
    assert event["fields"] == {"attempts": 2, "scope_id": "scope-9"}


def test_level_filters_records(tmp_path: Path) -> None:
    handle = setup_logging(LoggingSettings(session_id="ses_4", log_dir=tmp_path, level="ERROR"))
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.warning("dropped")
    logger.error("kept")
    shutdown_logging()

    assert [event["message"] for event in _read_json_lines(handle.log_path)] == ["kept"]


async def test_correlation_is_isolated_between_tasks() -> None:
    seen: dict[str, dict[str, str]] = {}

    async def work(scope_id: str) -> None:
        with correlation_scope(scope_id=scope_id):
            await asyncio.sleep(0)
            seen[scope_id] = get_correlation_context()

    with correlation_scope(session_id="ses_x"):
        await asyncio.gather(work("one"), work("two"))

    assert seen["one"] == {"scope_id": "one", "session_id": "ses_x"}
    assert seen["two"] == {"scope_id": "two", "session_id": "ses_x"}
    assert get_correlation_context() == {}


def test_correlation_scope_none_removes_field() -> None:
    with correlation_scope(session_id="ses", scope_id="s1"):
        with correlation_scope(scope_id=None, node_id="  "):
            assert get_correlation_context() == {"session_id": "ses"}
        assert get_correlation_context()["scope_id"] == "s1"


def test_setup_replaces_previous_session(tmp_path: Path) -> None:
    first = setup_logging(LoggingSettings(session_id="ses_a", log_dir=tmp_path))
    second = setup_logging(LoggingSettings(session_id="ses_b", log_dir=tmp_path))
    logging.getLogger(ROOT_LOGGER_NAME).info("only second")
    shutdown_logging()
    shutdown_logging()

    assert _read_json_lines(first.log_path) == []
    assert [event["session_id"] for event in _read_json_lines(second.log_path)] == ["ses_b"]
    assert get_active_logging() is None


def test_invalid_settings(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="session_id"):
        setup_logging(LoggingSettings(session_id="  ", log_dir=tmp_path))
    with pytest.raises(ValueError, match="queue_size"):
        setup_logging(LoggingSettings(session_id="ses", log_dir=tmp_path, queue_size=0))
    with pytest.raises(ValueError, match="unsupported logging level"):
        parse_log_level("LOUD")


def test_redact_and_json_value_helpers(tmp_path: Path) -> None:
    assert redact("use Bearer abc.def now") == "use Bearer ***REDACTED*** now"
    assert redact({"api_key": "x", "items": ["password=1"]}) == {
        "api_key": "***REDACTED***",
        "items": ["password=***REDACTED***"],
    }
    assert parse_log_level("debug") == logging.DEBUG
    assert to_json_value({"p": tmp_path / "x", "s": {2, 1}, "f": float("inf")}) == {
        "p": (tmp_path / "x").as_posix(),
        "s": [1, 2],
        "f": "inf",
    }
