"""Tests for PubSubHost bootstrap and start."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from cqrs_ddd_pubsub.aws import AwsBroker, AwsKeyManagement
from cqrs_ddd_pubsub.config import PubSubConfig
from cqrs_ddd_pubsub.envelope import MessageEnvelope
from cqrs_ddd_pubsub.exceptions import ConfigurationError, ProvisioningError
from cqrs_ddd_pubsub.host import PubSubHost
from cqrs_ddd_pubsub.memory import InMemoryBroker, InMemoryKeyManagement
from cqrs_ddd_pubsub.ports import IBroker, IKeyManagement
from cqrs_ddd_pubsub.registry import PubSubBuilder, PubSubRegistry


async def _noop(envelope: MessageEnvelope) -> None:
    return None


def _host(
    builder: PubSubBuilder,
    broker: InMemoryBroker,
    kms: InMemoryKeyManagement | None = None,
    **config: Any,
) -> PubSubHost:
    return PubSubHost(
        PubSubConfig(long_polling_wait_seconds=0, **config),
        builder.build(),
        broker,
        kms or InMemoryKeyManagement(),
        queue_wait_interval=0.01,
        queue_wait_timeout=0.5,
        drain_timeout=1,
    )


@pytest.mark.asyncio
async def test_bootstrap_provisions_registered_topics(broker: InMemoryBroker) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop).with_timeout(45)
    builder.map_topic("invoices")
    host = _host(builder, broker, source="billing")

    result = await host.bootstrap()

    assert result.ok
    assert set(result.consumers) == {"orders"}
    assert set(result.producers) == {"orders", "invoices"}
    assert {"billing_orders", "dead_letter_billing_orders"} <= set(broker.queues)
    assert "billing_invoices" in broker.rules
    assert broker.queues["billing_orders"].attributes["VisibilityTimeout"] == "45"


@pytest.mark.asyncio
async def test_bootstrap_twice_is_idempotent(broker: InMemoryBroker) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    host = _host(builder, broker)

    await host.bootstrap()
    await host.bootstrap()

    created = [c[1][0] for c in broker.calls if c[0] == "create_queue"]
    assert created.count("orders") == 1
    assert broker.call_count("create_rule") == 1


@pytest.mark.asyncio
async def test_duplicate_topics_fail_before_any_backend_call(
    broker: InMemoryBroker,
) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    builder.map_topic("orders").with_consumer(_noop)
    host = _host(builder, broker)

    with pytest.raises(ConfigurationError, match="Duplicated topic definition"):
        await host.bootstrap()
    assert broker.calls == []


@pytest.mark.asyncio
async def test_empty_registry_skips_bootstrap(broker: InMemoryBroker) -> None:
    host = _host(PubSubBuilder(), broker)
    result = await host.bootstrap()
    assert result.skipped
    assert broker.calls == []

    assert (await host.run(asyncio.Event())).skipped


@pytest.mark.asyncio
async def test_localstack_mode_creates_missing_key(broker: InMemoryBroker) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    kms = InMemoryKeyManagement(key_id=None)
    host = _host(builder, broker, kms, localstack_mode=True)

    result = await host.bootstrap()

    assert result.ok
    assert kms.created == 1
    assert broker.queues["orders"].attributes["KmsMasterKeyId"] == kms.key_id


@pytest.mark.asyncio
async def test_missing_key_outside_localstack_fails_per_topic(
    broker: InMemoryBroker,
) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    builder.map_topic("invoices")
    host = _host(builder, broker, InMemoryKeyManagement(key_id=None))

    result = await host.bootstrap()

    assert result.failed_topics("consumer") == {"orders"}
    assert result.producers == ("orders", "invoices")
    with pytest.raises(ProvisioningError):
        result.raise_for_failures()


@pytest.mark.asyncio
async def test_bootstrap_observes_stop_event() -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    host = PubSubHost(
        PubSubConfig(long_polling_wait_seconds=0),
        builder.build(),
        InMemoryBroker(never_visible=True),
        InMemoryKeyManagement(),
        queue_wait_interval=0.01,
        queue_wait_timeout=10,
    )
    stop = asyncio.Event()
    task = asyncio.create_task(host.bootstrap(stop))
    await asyncio.sleep(0.05)
    stop.set()

    result = await asyncio.wait_for(task, timeout=1)
    assert result.skipped


@pytest.mark.asyncio
async def test_run_publishes_and_consumes_until_stopped(
    broker: InMemoryBroker,
) -> None:
    received: asyncio.Queue[Any] = asyncio.Queue()

    async def handler(envelope: MessageEnvelope) -> None:
        await received.put(envelope.payload)

    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(handler).configure(polling_interval=0.01)
    host = _host(builder, broker)
    stop = asyncio.Event()

    task = asyncio.create_task(host.run(stop))
    while "orders" not in broker.queues or not broker.subscriptions:
        await asyncio.sleep(0.01)
    await host.publisher.publish("orders", {"orderId": 42})

    payload = await asyncio.wait_for(received.get(), timeout=1)
    stop.set()
    result = await asyncio.wait_for(task, timeout=2)

    assert payload == {"orderId": 42}
    assert result.ok
    assert broker.pending("orders") == 0


@pytest.mark.asyncio
async def test_start_skips_consumers_that_failed_provisioning(
    broker: InMemoryBroker,
) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    host = _host(builder, broker, InMemoryKeyManagement(key_id=None))
    result = await host.bootstrap()

    stop = asyncio.Event()
    stop.set()
    await host.start(stop, result)

    assert host.scheduler.workers == []


@pytest.mark.asyncio
async def test_clear_cache_forces_lookup(broker: InMemoryBroker) -> None:
    builder = PubSubBuilder()
    builder.map_topic("orders").with_consumer(_noop)
    host = _host(builder, broker)
    await host.bootstrap()
    assert "orders" in host.cache

    host.clear_cache()
    assert len(host.cache) == 0


def test_memory_backends_satisfy_the_host_ports(broker: InMemoryBroker) -> None:
    assert isinstance(broker, IBroker)
    assert isinstance(InMemoryKeyManagement(), IKeyManagement)


def test_for_aws_wires_aws_adapters() -> None:
    session = MagicMock()
    config = PubSubConfig(
        region="eu-west-1",
        service_url="http://localhost:4566",
        kms_key_alias="alias/test",
    )
    host = PubSubHost.for_aws(config, PubSubRegistry(), session=session)

    assert isinstance(host.publisher._broker, AwsBroker)
    assert isinstance(host.queues._kms, AwsKeyManagement)
    connection = host.queues._kms._connection
    assert connection._region == "eu-west-1"
    assert connection._endpoint_url == "http://localhost:4566"
