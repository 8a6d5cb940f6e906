"""Explicit registration of consumers and producers.

Usage::

    builder = PubSubBuilder()
    builder.map_topic("orders", OrderPlaced).with_consumer(OrderHandler).configure(
        polling_interval=1.0, max_concurrency=4
    ).with_timeout(30)
    builder.map_topic("invoices", InvoiceIssued)  # producer only
    registry = builder.build()
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .naming import NameOverride

logger = logging.getLogger("cqrs_ddd.pubsub.registry")


@dataclass(frozen=True)
class ConsumerConfig:
    """Polling and dispatch settings of one consumer."""

    max_concurrency: int = 1
    polling_interval: float = 1.0
    consume_timeout: float | None = None
    name_override: NameOverride | None = None

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be >= 1")
        if self.polling_interval < 0:
            raise ConfigurationError("polling_interval must be >= 0")
        if self.consume_timeout is not None and self.consume_timeout <= 0:
            raise ConfigurationError("consume_timeout must be > 0")


@dataclass(frozen=True)
class ConsumerDescriber:
    """Registered consumer: topic key, handler and message type."""

    topic_key: str
    handler_type: Any
    message_type: type[Any] | None = None
    config: ConsumerConfig = field(default_factory=ConsumerConfig)

    @property
    def name_override(self) -> NameOverride | None:
        return self.config.name_override


@dataclass(frozen=True)
class ProducerDescriber:
    topic_key: str
    message_type: type[Any] | None = None
    name_override: NameOverride | None = None


@dataclass(frozen=True)
class PubSubRegistry:
    """Ordered, immutable collection of describers consumed by the engine."""

    consumers: tuple[ConsumerDescriber, ...] = ()
    producers: tuple[ProducerDescriber, ...] = ()

    def is_empty(self) -> bool:
        return not self.consumers and not self.producers

    def validate(self) -> None:
        """Raise ConfigurationError if a consumer topic key is registered twice."""
        counts = Counter(d.topic_key for d in self.consumers)
        duplicated = sorted(key for key, count in counts.items() if count > 1)
        if duplicated:
            raise ConfigurationError(
                f"Duplicated topic definition: {', '.join(duplicated)}"
            )

    def producer_for(self, topic_key: str) -> ProducerDescriber | None:
        return next((p for p in self.producers if p.topic_key == topic_key), None)


class TopicMapping:
    """Fluent registration of one topic returned by :meth:`PubSubBuilder.map_topic`."""

    def __init__(
        self,
        topic_key: str,
        message_type: type[Any] | None,
        name_override: NameOverride | None,
    ) -> None:
        self.topic_key = topic_key
        self.message_type = message_type
        self.name_override = name_override
        self._handler: Any = None
        self._config = ConsumerConfig(name_override=name_override)

    def with_consumer(self, handler: Any) -> TopicMapping:
        """Attach a handler: an async callable or a class with ``handle``."""
        if not callable(handler) and not callable(getattr(handler, "handle", None)):
            raise ConfigurationError(
                f"Consumer of '{self.topic_key}' must be callable or define handle()"
            )
        self._handler = handler
        return self

    def configure(
        self,
        polling_interval: float | None = None,
        max_concurrency: int | None = None,
    ) -> TopicMapping:
        """Override polling interval and concurrency of the consumer."""
        changes: dict[str, Any] = {}
        if polling_interval is not None:
            changes["polling_interval"] = polling_interval
        if max_concurrency is not None:
            changes["max_concurrency"] = max_concurrency
        self._config = replace(self._config, **changes)
        return self

    def with_timeout(self, consume_timeout: float) -> TopicMapping:
        """Set the consume timeout, also applied as the queue visibility timeout."""
        self._config = replace(self._config, consume_timeout=consume_timeout)
        return self

    def producer(self) -> ProducerDescriber:
        """Describe this mapping as a producer."""
        return ProducerDescriber(self.topic_key, self.message_type, self.name_override)

    def consumer(self) -> ConsumerDescriber | None:
        """Describe this mapping as a consumer, or None without a handler."""
        if self._handler is None:
            return None
        return ConsumerDescriber(
            self.topic_key, self._handler, self.message_type, self._config
        )


def _override_of(producer: ProducerDescriber) -> NameOverride | None:
    override = producer.name_override
    return override if override is not None and override.has_values() else None


class PubSubBuilder:
    """Collects topic mappings in registration order."""

    def __init__(self) -> None:
        self._mappings: list[TopicMapping] = []

    def map_topic(
        self,
        topic_key: str,
        message_type: type[Any] | None = None,
        name_override: NameOverride | None = None,
    ) -> TopicMapping:
        """Register *topic_key*; every mapping is also a producer of its topic."""
        if not topic_key or not topic_key.strip():
            raise ConfigurationError("Topic key must be a non-empty string")
        mapping = TopicMapping(topic_key, message_type, name_override)
        self._mappings.append(mapping)
        return mapping

    def build(self) -> PubSubRegistry:
        """Freeze the mappings into a registry.

        Raises:
            ConfigurationError: If two mappings of one topic carry different
                name overrides.
        """
        consumers = tuple(
            c for c in (m.consumer() for m in self._mappings) if c is not None
        )
        producers: dict[str, ProducerDescriber] = {}
        for mapping in self._mappings:
            producer = mapping.producer()
            known = producers.setdefault(mapping.topic_key, producer)
            if _override_of(known) != _override_of(producer):
                raise ConfigurationError(
                    f"Conflicting name overrides for topic '{mapping.topic_key}'"
                )
        registry = PubSubRegistry(consumers, tuple(producers.values()))
        logger.debug(
            "Built registry with %d consumers and %d producers",
            len(registry.consumers),
            len(registry.producers),
        )
        return registry
