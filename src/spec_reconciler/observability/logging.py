"""
spec-reconciler — structured session logging

File: src/spec_reconciler/observability/logging.py
Last updated: 2026-10-17

Purpose
- Queue-backed JSON-lines logging for one reconciliation session.
- Route ``structlog`` decision events through the same stdlib sink.

Functional requirements
- One log file per session under ``<log_dir>/<session_id>/reconciler.jsonl``.
- Correlation fields (session, scope, node, request) come from ``contextvars`` so
  concurrent scopes never mix their identifiers.
- Secrets are redacted from messages and structured fields unless disabled.

Non-functional requirements
- Logging never blocks the event loop; a full queue drops records and counts them.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

ROOT_LOGGER_NAME: Final[str] = "spec_reconciler"
LOG_FILENAME: Final[str] = "reconciler.jsonl"
_REDACTED: Final[str] = "***REDACTED***"
_QUEUE_SIZE: Final[int] = 4096

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "session_id",
    "scope_id",
    "node_id",
    "request_id",
    "capability",
)

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "credential",
)
_SECRET_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_RE: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_PROVIDER_KEY_RE: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")

# Attributes every LogRecord carries; anything else on a record is a structured field.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "spec_reconciler_correlation", default=()
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE: SessionLogging | None = None
_ATEXIT_HOOKED = False


@dataclass(frozen=True, slots=True)
class LoggingSettings:
    session_id: str
    log_dir: Path | str = Path(".specrec/logs")
    level: int | str = "INFO"
    log_to_stdout: bool = False
    redact_secrets: bool = True
    queue_size: int = _QUEUE_SIZE


# ---------------------------------------------------------------------------
# Correlation context
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for every record emitted inside the block.

    ``None`` removes a field that an outer scope bound.
    """
    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        elif value.strip():
            state[key] = value.strip()
    token = _CORRELATION.set(tuple(sorted(state.items())))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def redact(value: JSONValue, *, key: str | None = None) -> JSONValue:
    if key is not None and any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
        return _REDACTED
    if isinstance(value, str):
        text = _SECRET_ASSIGNMENT_RE.sub(
            lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED}", value
        )
        text = _BEARER_RE.sub(f"Bearer {_REDACTED}", text)
        return _PROVIDER_KEY_RE.sub(_REDACTED, text)
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {item_key: redact(item, key=item_key) for item_key, item in value.items()}
    return value


def _no_redaction(value: JSONValue) -> JSONValue:
    return value


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Captures correlation at emit time and drops records when the queue is full."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread has no access to this task's contextvars.
        record.correlation = get_correlation_context()
        prepared: logging.LogRecord = super().prepare(record)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self._dropped += 1


class JsonLineFormatter(logging.Formatter):
    """One canonical JSON object per record."""

    def __init__(self, *, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": str(self._redactor(record.getMessage())),
            "session_id": self._session_id,
        }
        correlation = getattr(record, "correlation", None)
        if isinstance(correlation, Mapping):
            for key, value in sorted(correlation.items()):
                event[str(key)] = str(value)

        fields = {
            key: to_json_value(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key != "correlation" and not key.startswith("_")
        }
        if fields:
            event["fields"] = self._redactor(fields)
        if record.exc_info is not None:
            event["exception"] = str(self._redactor(self.formatException(record.exc_info)))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class SessionLogging:
    """Active logging setup; ``close()`` drains the queue and closes sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
        log_queue: queue.Queue[Any],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._queue = log_queue
        self._closed = False
        self._lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._queue.unfinished_tasks > 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_logging(settings: LoggingSettings) -> SessionLogging:
    """Install session logging on the ``spec_reconciler`` logger and configure structlog."""

    global _ACTIVE, _ATEXIT_HOOKED
    shutdown_logging()

    session_id = settings.session_id.strip()
    if not session_id:
        raise ValueError("session_id must not be empty")
    if settings.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = parse_log_level(settings.level)

    session_dir = Path(settings.log_dir) / session_id
    session_dir.mkdir(parents=True, exist_ok=True)
    log_path = session_dir / LOG_FILENAME

    formatter = JsonLineFormatter(
        session_id=session_id,
        redactor=redact if settings.redact_secrets else _no_redaction,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if settings.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=settings.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    configure_structlog()

    handle = SessionLogging(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
        log_queue=log_queue,
    )
    with _ACTIVE_LOCK:
        _ACTIVE = handle
    if not _ATEXIT_HOOKED:
        atexit.register(shutdown_logging)
        _ATEXIT_HOOKED = True
    return handle


def configure_structlog() -> None:
    """Send structlog events to stdlib logging so they land in the session file."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging() -> None:
    global _ACTIVE
    with _ACTIVE_LOCK:
        handle = _ACTIVE
        _ACTIVE = None
    if handle is not None:
        handle.close()


def get_active_logging() -> SessionLogging | None:
    with _ACTIVE_LOCK:
        return _ACTIVE


def parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def to_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_json_value(item) for item in value), key=repr)
    return repr(value)


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "ROOT_LOGGER_NAME",
    "JsonLineFormatter",
    "LoggingSettings",
    "SessionLogging",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging",
    "get_correlation_context",
    "parse_log_level",
    "redact",
    "setup_logging",
    "shutdown_logging",
    "to_json_value",
]
