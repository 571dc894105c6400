"""Centralized logging configuration.

Both human-friendly text logs and structured JSON logs are supported. Workflow
operations push ``correlation_id``/``tenant_id``/``job_id`` into a context
variable so every log line emitted while a job is being processed carries them.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from infra.config import get_settings

request_ctx: ContextVar[dict[str, Any] | None] = ContextVar("request_ctx", default=None)

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
        "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
        "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
    }
)


def set_request_context(**kwargs: Any) -> None:
    """Set context values that will be included in all subsequent log entries."""
    current = dict(request_ctx.get() or {})
    current.update({k: v for k, v in kwargs.items() if v is not None})
    request_ctx.set(current)


def clear_request_context() -> None:
    """Clear the request context."""
    request_ctx.set({})


def get_request_context() -> dict[str, Any]:
    """Get a copy of the current request context."""
    ctx = request_ctx.get()
    return dict(ctx) if ctx else {}


@contextmanager
def request_context(**kwargs: Any) -> Iterator[dict[str, Any]]:
    """Scope context values to a block and restore the previous context afterwards."""
    token = request_ctx.set({**get_request_context(), **{k: v for k, v in kwargs.items() if v is not None}})
    try:
        yield get_request_context()
    finally:
        request_ctx.reset(token)


def _utc_iso8601() -> str:
    # Example: 2026-01-24T18:03:12.123Z
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """
    JSON formatter:
      - message escaped via json.dumps, output is always valid JSON
      - `extra={...}` keys and the request context are merged in
      - exception text included when present
    """

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": _utc_iso8601(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS and key not in base:
                base[key] = value

        for key, value in self._extra_fields.items():
            base.setdefault(key, value)

        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)

        for key, value in get_request_context().items():
            base.setdefault(key, value)

        return json.dumps(base, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-friendly logs with UTC timestamps and the correlation id when set."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        correlation_id = get_request_context().get("correlation_id")
        if correlation_id:
            return f"{text} | correlation_id={correlation_id}"
        return text


class StructuredLogger:
    """
    Event-style logger with automatic context injection.

    Usage:
        logger = StructuredLogger(__name__)
        set_request_context(tenant_id="acme", job_id="...")
        logger.info("remediation_completed", resource_id="bucket-a")
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event: str, *, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.log(level, event, extra={"event": event, **kwargs}, exc_info=exc_info)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event, **kwargs)

    def exception(self, event: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception attached."""
        self._log(logging.ERROR, event, exc_info=True, **kwargs)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json_logs: bool = False
    override_root_handlers: bool = False
    extra_fields: Mapping[str, Any] | None = None


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> None:
    """
    Central logging setup.

    Env vars:
      - REMEDIATION_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default INFO)
      - REMEDIATION_LOG_JSON:  1/0 (default 0)
      - REMEDIATION_LOG_OVERRIDE: 1/0 (default 0)
         If 1, replaces any pre-configured root handlers.
         If 0, only configures logging if root has no handlers.
    """
    config = get_settings(reload=True).logging

    cfg = LoggingConfig(
        level=(level or config.level).upper(),
        json_logs=json_logs if json_logs is not None else bool(config.json_logs),
        override_root_handlers=override_root_handlers
        if override_root_handlers is not None
        else bool(config.override_root_handlers),
        extra_fields=extra_fields,
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if cfg.json_logs:
        handler.setFormatter(JsonFormatter(extra_fields=cfg.extra_fields))
    else:
        handler.setFormatter(TextFormatter())

    if cfg.override_root_handlers:
        for existing in list(root.handlers):
            root.removeHandler(existing)
        root.addHandler(handler)
    elif not root.handlers:
        root.addHandler(handler)

    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
