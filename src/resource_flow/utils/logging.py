"""Logging configuration helpers with Structlog integration.

Key Responsibilities:
    - Configure standard library logging with JSON formatting and field scrubbing
    - Configure Structlog so pipeline events render as JSON lines
    - Redact sensitive message headers (``Authorization`` and friends) wherever
      they appear in an event, including nested header mappings
    - Expose helpers for binding per-submission correlation identifiers

Collaborators:
    - Upstream: Applications and test suites call ``configure_logging`` once;
      the orchestrator binds a correlation id for every submission
    - Downstream: ``LoggingSettings`` from ``AppSettings``, ``logging`` and
      ``structlog``

Side Effects:
    - Configures global logging handlers
    - Binds correlation IDs via context variables

Thread Safety:
    - Logging configuration should be invoked once during process startup
    - Correlation ID helpers rely on ``contextvars`` and are safe per thread
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Iterable, Mapping
from contextvars import ContextVar, Token
from typing import Any

import structlog

from resource_flow.config.settings import LoggingSettings, get_settings

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

REDACTED = "***"

# Attributes every ``LogRecord`` carries; anything else came from ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _redact(value: Any, fields: frozenset[str]) -> Any:
    """Replace values of sensitive keys, descending into mappings and lists."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in fields else _redact(item, fields)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item, fields) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """Formats log records as single line JSON objects."""

    def __init__(self, *, scrub_fields: Iterable[str] | None = None) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")
        self._fields = frozenset(field.lower() for field in scrub_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES}
        payload: dict[str, Any] = {
            **_redact(extra, self._fields),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "time": self.formatTime(record, self.datefmt),
        }
        correlation_id = _correlation_id.get()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def _structlog_scrubber(
    scrub_fields: Iterable[str] | None,
) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    """Structlog processor redacting sensitive keys and adding the correlation id."""
    fields = frozenset(field.lower() for field in scrub_fields or ())

    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        correlation_id = _correlation_id.get()
        if correlation_id:
            event_dict.setdefault("correlation_id", correlation_id)
        return _redact(event_dict, fields)

    return processor


def _level_value(level: int | str) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    settings: LoggingSettings | None = None,
) -> None:
    """Configure stdlib and Structlog output as JSON lines on stdout.

    ``settings`` defaults to the ``logging`` section of the application
    settings (``RF_LOGGING__LEVEL`` and friends); an explicit ``level``
    overrides the configured level.
    """
    settings = settings or get_settings().logging
    level_value = _level_value(level if level is not None else settings.level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(scrub_fields=settings.scrub_fields))

    # pytest's capture handlers stay attached so caplog keeps seeing records.
    handlers: list[logging.Handler] = [
        existing
        for existing in logging.getLogger().handlers
        if type(existing).__module__.startswith("_pytest.")
    ]
    for existing in handlers:
        existing.setFormatter(JsonFormatter(scrub_fields=settings.scrub_fields))
    logging.basicConfig(level=level_value, handlers=[*handlers, handler], force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _structlog_scrubber(settings.scrub_fields),
            structlog.processors.JSONRenderer(sort_keys=True, default=str),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def bind_correlation_id(value: str) -> Token[str | None]:
    """Bind a correlation identifier to the current execution context.

    Returns:
        Context variable token that can be used to restore the previous value.
    """
    token = _correlation_id.set(value)
    structlog.contextvars.bind_contextvars(correlation_id=value)
    return token


def reset_correlation_id(token: Token[str | None] | None) -> None:
    """Restore the correlation id that was bound before ``token``."""
    if token is not None:
        _correlation_id.reset(token)
    previous = _correlation_id.get()
    if previous:
        structlog.contextvars.bind_contextvars(correlation_id=previous)
    else:
        structlog.contextvars.unbind_contextvars("correlation_id")


def get_correlation_id() -> str | None:
    return _correlation_id.get()


__all__ = [
    "JsonFormatter",
    "bind_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "reset_correlation_id",
]
