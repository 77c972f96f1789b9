"""Structured logging helpers shared across the application."""

from __future__ import annotations

import contextvars
import logging
from typing import Any
from uuid import uuid4

_OPERATION_ID: contextvars.ContextVar[str] = contextvars.ContextVar(
    "workspace_operation_id",
    default="-",
)
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def start_operation() -> str:
    """Tag subsequent events in this context with a fresh operation id."""
    operation_id = uuid4().hex
    _OPERATION_ID.set(operation_id)
    return operation_id


def get_operation_id() -> str:
    return _OPERATION_ID.get()


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    exc_info: Any | None = None,
    **fields: Any,
) -> None:
    """Emit a structured log event with the current operation id.

    ``None`` fields are dropped. Fields that would shadow a ``LogRecord``
    attribute are emitted with a ``field_`` prefix.
    """
    payload: dict[str, Any] = {
        "event": event,
        "operation_id": get_operation_id(),
    }
    for key, value in fields.items():
        if value is None:
            continue
        payload[f"field_{key}" if key in _RECORD_ATTRIBUTES else key] = value
    logger.log(level, event, extra=payload, exc_info=exc_info)
