"""Diagnostics: consumer spans (optional [opentelemetry]) and retrieval counters
(optional [prometheus]).

Without the extras installed, :class:`TelemetryDiagnostics` degrades to no-ops,
the same as :class:`NullDiagnostics`.
"""

from __future__ import annotations

import contextlib
import logging
import weakref
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from collections.abc import Iterator
    from uuid import UUID

logger = logging.getLogger("cqrs_ddd.pubsub.diagnostics")

_RETRIEVED_COUNTERS: weakref.WeakKeyDictionary[Any, Any] = weakref.WeakKeyDictionary()


class NullDiagnostics:
    """Diagnostics that record nothing."""

    @contextlib.contextmanager
    def start_consumer_span(self, topic_name: str) -> Iterator[None]:  # noqa: ARG002
        yield None

    def annotate_message(
        self,
        span: Any,
        queue_url: str,
        message_id: UUID,
        correlation_id: UUID | None,
        raw_payload: str,
    ) -> None:
        return None

    def record_batch_retrieved(self, count: int, topic_raw_name: str) -> None:
        return None


def _retrieved_counter(registry: Any) -> Any:
    """One counter per prometheus registry; re-registering raises in prometheus."""
    try:
        from prometheus_client import REGISTRY, Counter
    except ImportError:
        return None
    target = registry if registry is not None else REGISTRY
    counter = _RETRIEVED_COUNTERS.get(target)
    if counter is None:
        counter = Counter(
            "pubsub_messages_retrieved",
            "Messages retrieved from queues",
            ["topic"],
            registry=target,
        )
        _RETRIEVED_COUNTERS[target] = counter
    return counter


class TelemetryDiagnostics:
    """OpenTelemetry spans per consumed message and a Prometheus retrieval counter.

    Metric: ``pubsub_messages_retrieved_total{topic}``.
    """

    def __init__(self, *, prometheus_registry: Any = None) -> None:
        self._tracer = None
        try:
            trace_api = cast(
                "Any", __import__("opentelemetry.trace", fromlist=["trace"])
            )
            self._tracer = trace_api.get_tracer("cqrs-ddd-pubsub", "0.1.0")
        except ImportError:
            logger.debug("opentelemetry not installed, consumer spans disabled")
        self._counter = _retrieved_counter(prometheus_registry)

    @contextlib.contextmanager
    def start_consumer_span(self, topic_name: str) -> Iterator[Any]:
        if self._tracer is None:
            yield None
            return
        with self._tracer.start_as_current_span(f"pubsub.consume {topic_name}") as span:
            span.set_attribute("messaging.destination.name", topic_name)
            span.set_attribute("messaging.operation", "process")
            yield span

    def annotate_message(
        self,
        span: Any,
        queue_url: str,
        message_id: UUID,
        correlation_id: UUID | None,
        raw_payload: str,
    ) -> None:
        if span is None:
            return
        span.set_attribute("messaging.url", queue_url)
        span.set_attribute("messaging.message.id", str(message_id))
        if correlation_id is not None:
            span.set_attribute(
                "messaging.message.conversation_id", str(correlation_id)
            )
        span.set_attribute("messaging.message.body.size", len(raw_payload))

    def record_batch_retrieved(self, count: int, topic_raw_name: str) -> None:
        if self._counter is None or count <= 0:
            return
        try:
            self._counter.labels(topic=topic_raw_name).inc(count)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to emit retrieval counter", exc_info=True)
