"""
repo-fleet — run logging.

Purpose
- One JSON object per line for every record of the ``repo_fleet`` logger tree,
  written to ``<log_dir>/<run_id>/repo-fleet.jsonl`` and/or stderr.
- Correlation fields (``run_id``, ``repository``, ``platform``) bound through
  context variables and copied onto records before they cross the queue.

Behavior
- Records go through a bounded queue to a listener thread; a full queue drops
  the record and counts it instead of blocking the run.
- Credentials are masked in messages, extra fields and tracebacks.
- ``structlog`` renders through stdlib logging so both reach the same sinks.
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
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from repo_fleet.constants import LOG_LEVEL_NAMES, ROOT_LOGGER_NAME

LOG_FILENAME: Final[str] = "repo-fleet.jsonl"
MASK: Final[str] = "***REDACTED***"

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "repository", "platform")
_CORRELATION_ATTR: Final[str] = "repo_fleet_correlation"

_SENSITIVE_KEY = re.compile(
    r"(?i)(secret|token|password|passphrase|api_?key|authorization|credential|cookie|private_key)"
)
_TEXT_RULES: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(
            r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*[^\s,;]+"
        ),
        rf"\1\2{MASK}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {MASK}"),
    (re.compile(r"(?i)(https?://)[^/\s:@]+:[^/\s@]+@"), rf"\1{MASK}@"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), MASK),
    (re.compile(r"\bglpat-[A-Za-z0-9_-]{20,}\b"), MASK),
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", _CORRELATION_ATTR}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "repo_fleet_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how verbosely a run logs."""

    run_id: str
    log_dir: Path | str | None = None
    level: int | str = "INFO"
    logger_name: str = ROOT_LOGGER_NAME
    queue_size: int = 4096
    log_to_stderr: bool = True


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Copies the caller's correlation fields onto the record; never blocks."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Context vars are not visible from the listener thread.
        fields = get_correlation_context()
        if fields:
            setattr(record, _CORRELATION_ATTR, fields)
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _DrainingQueueListener(logging.handlers.QueueListener):
    def enqueue_sentinel(self) -> None:
        # Wait for room so a full queue cannot lose the stop marker.
        self.queue.put(self._sentinel)


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_text(record.getMessage()),
            "run_id": self._run_id,
        }
        event.update(getattr(record, _CORRELATION_ATTR, None) or {})
        for key in _CORRELATION_KEYS:
            value = record.__dict__.get(key)
            if isinstance(value, str) and value.strip():
                event[key] = value.strip()

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
            and key not in _CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = redact_fields(extras)
        if record.exc_info:
            event["exception"] = redact_text(self.formatException(record.exc_info))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """Live logging setup; ``shutdown`` drains the queue and restores the logger."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _CorrelatingQueueHandler,
        listener: _DrainingQueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._restore = (logger.level, logger.propagate)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.logger.removeHandler(self._queue_handler)
            # stop() processes everything already queued before returning.
            self._listener.stop()
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self.logger.setLevel(self._restore[0])
            self.logger.propagate = self._restore[1]


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Replace any active setup with one configured by ``config``."""

    level = parse_log_level(config.level)
    run_id = str(config.run_id).strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")

    formatter = _JsonLineFormatter(run_id)
    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        log_path = Path(config.log_dir) / run_id / LOG_FILENAME
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    # The active setup is replaced only once every sink exists.
    shutdown_logging()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = _DrainingQueueListener(log_queue, *sinks, respect_handler_level=True)

    logger = logging.getLogger(config.logger_name)
    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    # Problem collection needs WARNING and above whatever the sink level is.
    logger.setLevel(min(level, logging.WARNING))
    logger.propagate = False
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle`` (default: the active setup); safe to call repeatedly."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is None:
            return
        if _active is target:
            _active = None
    target.shutdown()


def configure_structlog() -> None:
    """Route ``structlog`` events through stdlib logging so they share sinks and collectors."""

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


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[tuple[tuple[str, str], ...]]:
    """Bind (or unbind, with ``None``) correlation fields; returns a reset token."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        elif not str(value).strip():
            raise ValueError(f"correlation field {key!r} must not be empty")
        else:
            state[key] = str(value).strip()
    return _correlation.set(tuple(state.items()))


def reset_correlation_fields(token: contextvars.Token[tuple[tuple[str, str], ...]]) -> None:
    _correlation.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(token)


def parse_log_level(value: int | str) -> int:
    """Level number for ``value``; names are case-insensitive."""

    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().upper() in LOG_LEVEL_NAMES:
        return logging.getLevelName(value.strip().upper())
    raise ValueError(
        f"unsupported logging level {value!r}; expected one of: {', '.join(LOG_LEVEL_NAMES)}"
    )


def redact_text(text: str) -> str:
    """Mask credential-looking substrings of free text."""

    for pattern, replacement in _TEXT_RULES:
        text = pattern.sub(replacement, text)
    return text


def redact_fields(value: object, *, key: str | None = None) -> Any:
    """JSON-safe copy of ``value`` with sensitive keys and strings masked."""

    if key is not None and not key.lower().endswith("_env") and _SENSITIVE_KEY.search(key):
        return MASK
    if isinstance(value, str):
        return redact_text(value)
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(k): redact_fields(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact_fields(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return redact_text(repr(value))


__all__ = [
    "LOG_LEVEL_NAMES",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "parse_log_level",
    "redact_fields",
    "redact_text",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
