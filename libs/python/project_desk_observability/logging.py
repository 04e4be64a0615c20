"""Structured JSON logging shared by every Project Desk process."""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator


_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("project_desk_log_context", default={})
_CONFIGURED: ContextVar[bool] = ContextVar("project_desk_log_configured", default=False)


class ContextFilter(logging.Filter):
    """Copy fields bound with :func:`log_context` onto each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - inherited docstring
        context = _LOG_CONTEXT.get()
        if context:
            record.observability_context = context
            for key, value in context.items():
                setattr(record, key, value)
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, ids and lifecycle fields promoted to the top level."""

    _RESERVED = {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        "observability_context",
    }

    _WHITELIST = {
        "service",
        "project_id",
        "user_id",
        "reference",
        "request_id",
        "milestone",
        "phase",
        "tier_id",
        "mode",
        "route",
        "method",
        "status_code",
        "latency_ms",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "observability_context", {})
        if isinstance(context, dict):
            for key, value in context.items():
                if value is not None:
                    payload.setdefault(key, _coerce(value))

        for key in self._WHITELIST:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = _coerce(value)

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in payload or key.startswith("_"):
                continue
            value = _coerce(value)
            if self._is_json_safe(value):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)

    @staticmethod
    def _is_json_safe(value: Any) -> bool:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return False
        return True


def _coerce(value: Any) -> Any:
    # Ids, money and enum members show up constantly in lifecycle logs.
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def setup_logging(
    service_name: str,
    level: str | int | None = None,
    *,
    capture_warnings: bool | None = None,
) -> None:
    """Configure JSON logging for the current process.

    Safe to call repeatedly; later calls only adjust the level. ``level``
    defaults to ``PROJECT_DESK_LOG_LEVEL`` or ``INFO``.
    """

    resolved_level = level or os.getenv("PROJECT_DESK_LOG_LEVEL", "INFO").upper()
    handlers = ["default"]
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "project_desk_observability.logging.JsonFormatter",
            }
        },
        "filters": {
            "context": {
                "()": "project_desk_observability.logging.ContextFilter",
                "service_name": service_name,
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "json",
                "filters": ["context"],
            }
        },
        "root": {
            "level": resolved_level,
            "handlers": handlers,
        },
        "loggers": {
            "uvicorn": {"handlers": handlers, "level": resolved_level, "propagate": False},
            "uvicorn.error": {"handlers": handlers, "level": resolved_level, "propagate": False},
            "uvicorn.access": {"handlers": handlers, "level": resolved_level, "propagate": False},
            "httpx": {"handlers": handlers, "level": "WARNING", "propagate": False},
        },
    }

    logging.config.dictConfig(config)

    if capture_warnings is None:
        capture_env = os.getenv("PROJECT_DESK_CAPTURE_WARNINGS")
        capture = capture_env.lower() in {"1", "true", "t", "yes", "y"} if capture_env else False
    else:
        capture = capture_warnings

    if capture:
        logging.captureWarnings(True)

    if not _CONFIGURED.get():
        _CONFIGURED.set(True)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily bind fields that every log line inside the block carries."""

    current = _LOG_CONTEXT.get()
    updated = dict(current)
    for key, value in kwargs.items():
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    token = _LOG_CONTEXT.set(updated)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> Dict[str, Any]:
    """Snapshot of the bound fields, for handing to background work."""

    return dict(_LOG_CONTEXT.get())
