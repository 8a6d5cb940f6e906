"""TopicPublisher: encode and publish messages to registered topics."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from .codec import EnvelopeCodec
from .correlation import generate_correlation_id, get_correlation_id
from .naming import resolve

if TYPE_CHECKING:
    from .config import PubSubConfig
    from .naming import NameOverride, TopicId
    from .ports import IBrokerProvisioning, ITopicPublisher
    from .registry import PubSubRegistry

logger = logging.getLogger("cqrs_ddd.pubsub.publisher")


class TopicPublisher:
    """Publishes payload envelopes to topics resolved from topic keys.

    Topic ARNs are looked up once per topic name and kept for the process
    lifetime.
    """

    def __init__(
        self,
        config: PubSubConfig,
        broker: IBrokerProvisioning,
        transport: ITopicPublisher,
        *,
        registry: PubSubRegistry | None = None,
        codec: EnvelopeCodec | None = None,
    ) -> None:
        self._config = config
        self._broker = broker
        self._transport = transport
        self._registry = registry
        self._codec = codec or EnvelopeCodec()
        self._topic_arns: dict[str, str] = {}

    def _topic_id(self, topic_key: str, override: NameOverride | None) -> TopicId:
        if override is None and self._registry is not None:
            producer = self._registry.producer_for(topic_key)
            if producer is not None:
                override = producer.name_override
        return resolve(topic_key, self._config.naming, override)

    async def _topic_arn(self, topic: TopicId) -> str:
        arn = self._topic_arns.get(topic.topic_name)
        if arn is None:
            arn = await self._broker.ensure_topic(topic)
            self._topic_arns[topic.topic_name] = arn
        return arn

    async def publish(
        self,
        topic_key: str,
        message: Any,
        *,
        correlation_id: uuid.UUID | None = None,
        name_override: NameOverride | None = None,
    ) -> uuid.UUID:
        """Publish *message* and return the envelope message id.

        The correlation id defaults to the one of the message being handled,
        or a new one outside of a handler.

        Raises:
            SerializationError: If *message* cannot be encoded.
        """
        topic = self._topic_id(topic_key, name_override)
        message_id = uuid.uuid4()
        correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        body = self._codec.encode_payload(
            message, correlation_id=correlation_id, message_id=message_id
        )
        topic_arn = await self._topic_arn(topic)
        backend_id = await self._transport.publish(topic_arn, body)
        logger.debug(
            "Published %s to %s (backend id %s, correlation %s)",
            message_id,
            topic.topic_name,
            backend_id,
            correlation_id,
        )
        return message_id
