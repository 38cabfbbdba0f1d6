"""
planboard - structured logging

File: src/planboard/observability/logging.py
Last updated: 2026-10-19

Purpose
- Write one JSON object per log line to ``<log_dir>/<session>/planboard.jsonl``.
- Carry draft/action/audit correlation ids into every record emitted inside a
  ``correlation_scope``.
- Route structlog events from the planner, applier and audit log into the same sink.

Behavior
- Records go through a bounded queue drained by a listener thread; a full queue drops
  the record and counts it instead of blocking a draft apply.
- Secret-looking keys and ``key=value`` / bearer fragments are masked unless
  ``observability.redact_secrets`` is off.
- Starting a new session shuts down the previous one.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import re
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

LOG_FILENAME: Final[str] = "planboard.jsonl"
REDACTED: Final[str] = "***REDACTED***"
CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "correlation_id",
    "draft_id",
    "action_id",
    "audit_id",
    "project_id",
    "task_id",
)

_SENSITIVE_KEY = re.compile(
    r"(?i)secret|token|password|passphrase|api_?key|authorization|credential|cookie|private_key"
)
_SENSITIVE_ASSIGNMENT = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord has; anything else on a record came in through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "planboard_correlation", default=()
)

_active_lock = threading.Lock()
_active: LoggingSession | None = None


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def current_correlation() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation ids for records logged inside the block.

    ``None`` unbinds a key for the duration of the block.
    """
    merged = current_correlation()
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation value for {key!r} must not be empty")
        else:
            merged[key] = value.strip()
    token = _correlation.set(tuple(merged.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def redact(value: Any, *, key: str | None = None) -> Any:
    """Mask secrets in a JSON-shaped value."""
    if key is not None and _SENSITIVE_KEY.search(key):
        return REDACTED
    if isinstance(value, str):
        masked = _SENSITIVE_ASSIGNMENT.sub(lambda m: f"{m[1]}{m[2]}{REDACTED}", value)
        return _BEARER.sub(f"Bearer {REDACTED}", masked)
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {name: redact(item, key=name) for name, item in value.items()}
    return value


def _jsonable(value: object) -> object:
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if isinstance(value, Path) else repr(value)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redact_secrets: bool) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": self._session_id,
        }
        event.update(getattr(record, "correlation", {}))
        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extras:
            event["fields"] = json.loads(json.dumps(extras, default=_jsonable))
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        if self._redact_secrets:
            event = redact(event)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that never blocks; overflow is counted in ``dropped``."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread has no context; capture it on the emitting thread.
        record.correlation = {**current_correlation(), **getattr(record, "correlation", {})}
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                record.correlation[key] = value.strip()
                delattr(record, key)
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self.dropped += 1


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    log_dir: Path | str = Path("logs")
    logger_name: str = "planboard"
    level: int | str = "INFO"
    log_format: str = "json"
    log_to_stdout: bool = False
    redact_secrets: bool = True
    queue_size: int = 4096

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, session_id: str) -> LoggingConfig:
        """Read ``[observability]`` and ``paths.log_dir`` from an effective config."""
        obs = config.get("observability", {})
        return cls(
            session_id=session_id,
            log_dir=config.get("paths", {}).get("log_dir", "logs"),
            level=obs.get("log_level", "INFO"),
            log_format=obs.get("log_format", "json"),
            log_to_stdout=bool(obs.get("log_to_stdout", False)),
            redact_secrets=bool(obs.get("redact_secrets", True)),
        )


class LoggingSession:
    """An active logging setup; ``shutdown`` drains the queue and closes the file."""

    def __init__(
        self,
        config: LoggingConfig,
        *,
        logger: logging.Logger,
        log_path: Path,
        handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: list[logging.Handler],
    ) -> None:
        self.config = config
        self.logger = logger
        self.log_path = log_path
        self._handler = handler
        self._listener = listener
        self._sinks = sinks
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listener.stop()
        self.logger.removeHandler(self._handler)
        for sink in self._sinks:
            sink.close()


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return resolved


def start_logging(config: LoggingConfig) -> LoggingSession:
    """Start a queue-backed JSON-lines session, replacing any active one."""
    global _active

    session_id = config.session_id.strip()
    if not session_id or Path(session_id).name != session_id:
        raise ValueError(f"session_id must be a plain non-empty name, got {config.session_id!r}")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    if config.log_format not in {"json", "text"}:
        raise ValueError(f"log_format must be 'json' or 'text', got {config.log_format!r}")
    level = _level(config.level)

    shutdown_logging()

    log_path = Path(config.log_dir) / session_id / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter: logging.Formatter = (
        _JsonLinesFormatter(session_id=session_id, redact_secrets=config.redact_secrets)
        if config.log_format == "json"
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()
    logger.addHandler(handler)

    session = LoggingSession(
        config, logger=logger, log_path=log_path, handler=handler, listener=listener, sinks=sinks
    )
    with _active_lock:
        _active = session
    return session


def setup_logging(config: Mapping[str, Any], *, session_id: str) -> LoggingSession:
    """Start a session from an effective planboard config and route structlog into it."""
    session = start_logging(LoggingConfig.from_config(config, session_id=session_id))
    configure_structlog()
    return session


def active_session() -> LoggingSession | None:
    with _active_lock:
        return _active


def shutdown_logging() -> None:
    global _active
    with _active_lock:
        session, _active = _active, None
    if session is not None:
        session.shutdown()


def configure_structlog() -> None:
    """Send structlog events through stdlib logging.

    The event name becomes the message and bound key/value pairs land in ``fields``.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


atexit.register(shutdown_logging)


__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "REDACTED",
    "LoggingConfig",
    "LoggingSession",
    "active_session",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "redact",
    "setup_logging",
    "shutdown_logging",
    "start_logging",
]
