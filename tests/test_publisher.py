"""End-to-end publish/consume tests over the in-memory broker."""

from __future__ import annotations

import json
import uuid

import pytest
from pydantic import BaseModel

from cqrs_ddd_pubsub.config import PubSubConfig
from cqrs_ddd_pubsub.correlation import set_correlation_id
from cqrs_ddd_pubsub.envelope import MessageEnvelope
from cqrs_ddd_pubsub.exceptions import SerializationError
from cqrs_ddd_pubsub.memory import InMemoryBroker
from cqrs_ddd_pubsub.naming import NameOverride
from cqrs_ddd_pubsub.provisioning import ProvisioningOrchestrator
from cqrs_ddd_pubsub.publisher import TopicPublisher
from cqrs_ddd_pubsub.queues import QueueResolver
from cqrs_ddd_pubsub.registry import ConsumerDescriber, PubSubBuilder
from cqrs_ddd_pubsub.scheduler import ConsumerWorker


class Unserializable(BaseModel):
    value: object


@pytest.fixture
def publisher(config: PubSubConfig, broker: InMemoryBroker) -> TopicPublisher:
    return TopicPublisher(config, broker, broker)


@pytest.mark.asyncio
async def test_published_message_reaches_consumer(
    broker: InMemoryBroker,
    queues: QueueResolver,
    orchestrator: ProvisioningOrchestrator,
    config: PubSubConfig,
    publisher: TopicPublisher,
) -> None:
    await orchestrator.ensure_queue_exists("orders")
    correlation_id = uuid.uuid4()
    received: list[MessageEnvelope] = []

    async def handler(envelope: MessageEnvelope) -> None:
        received.append(envelope)

    message_id = await publisher.publish(
        "orders", {"orderId": 42}, correlation_id=correlation_id
    )
    worker = ConsumerWorker(
        ConsumerDescriber("orders", handler),
        config=config,
        queues=queues,
        client=broker,
    )
    await worker.run_once()

    envelope = received[0]
    assert envelope.payload == {"orderId": 42}
    assert envelope.correlation_id == correlation_id
    assert envelope.message_id == message_id
    assert envelope.topic_arn == broker.topics["orders"]
    assert envelope.retry_number == 0


@pytest.mark.asyncio
async def test_correlation_id_defaults_to_context(
    broker: InMemoryBroker, publisher: TopicPublisher
) -> None:
    correlation_id = uuid.uuid4()
    set_correlation_id(correlation_id)
    try:
        await publisher.publish("orders", {})
    finally:
        set_correlation_id(None)

    _, (_, body) = next(c for c in broker.calls if c[0] == "publish")
    assert json.loads(body)["CorrelationId"] == str(correlation_id)


@pytest.mark.asyncio
async def test_correlation_id_is_generated_outside_handlers(
    broker: InMemoryBroker, publisher: TopicPublisher
) -> None:
    await publisher.publish("orders", {})
    _, (_, body) = next(c for c in broker.calls if c[0] == "publish")
    assert uuid.UUID(json.loads(body)["CorrelationId"])


@pytest.mark.asyncio
async def test_topic_arn_is_resolved_once(
    broker: InMemoryBroker, publisher: TopicPublisher
) -> None:
    await publisher.publish("orders", {"n": 1})
    await publisher.publish("orders", {"n": 2})
    assert broker.call_count("ensure_topic") == 1
    assert broker.call_count("publish") == 2


@pytest.mark.asyncio
async def test_registry_producer_override_is_applied(
    config: PubSubConfig, broker: InMemoryBroker
) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders", name_override=NameOverride(prefix="qa"))
    publisher = TopicPublisher(config, broker, broker, registry=builder.build())

    await publisher.publish("orders", {})
    assert "qa_orders" in broker.topics

    await publisher.publish("orders", {}, name_override=NameOverride.raw_names())
    assert "orders" in broker.topics


@pytest.mark.asyncio
async def test_unserializable_payload_is_not_published(
    broker: InMemoryBroker, publisher: TopicPublisher
) -> None:
    with pytest.raises(SerializationError):
        await publisher.publish("orders", Unserializable(value=object()))
    assert broker.call_count("publish") == 0
