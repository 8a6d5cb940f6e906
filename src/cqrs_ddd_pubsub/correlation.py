"""Correlation ID context: flows from consumed messages into published ones."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_correlation_id: ContextVar[uuid.UUID | None] = ContextVar(
    "pubsub_correlation_id", default=None
)


def get_correlation_id() -> uuid.UUID | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: uuid.UUID | str | None) -> None:
    """Set correlation ID in context; strings are parsed as UUIDs."""
    if isinstance(correlation_id, str):
        correlation_id = uuid.UUID(correlation_id)
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> uuid.UUID:
    return uuid.uuid4()
