"""
Structured logging for the balance engine.

JSON logs (or console output with LOG_FORMAT=console) with an ISO timestamp,
level, event_type and keyword context. Single-user operations wrap their work in
user_log_context(user_id) so engine, store and retry logs all carry user_id
without passing it to every call.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()
LOG_LEVEL_VALUE = logging.getLevelName(LOG_LEVEL)
if not isinstance(LOG_LEVEL_VALUE, int):
    LOG_LEVEL_VALUE = logging.INFO


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type; keep message if present."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def configure_structlog() -> None:
    """Configure structlog once at import."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
    ]
    if LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("balance_adjusted", user_id=7, freedom=55, security=60)
    Output (JSON): {"event_type": "balance_adjusted", "user_id": 7, ..., "level": "info", "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)


@contextmanager
def user_log_context(user_id: int) -> Iterator[None]:
    """Bind user_id to every log line emitted on this thread until the block exits."""
    with structlog.contextvars.bound_contextvars(user_id=user_id):
        yield
