"""Pytest fixtures for pub/sub tests."""

from __future__ import annotations

import pytest

from cqrs_ddd_pubsub.cache import QueueMetadataCache
from cqrs_ddd_pubsub.config import PubSubConfig
from cqrs_ddd_pubsub.memory import InMemoryBroker, InMemoryKeyManagement
from cqrs_ddd_pubsub.provisioning import ProvisioningOrchestrator
from cqrs_ddd_pubsub.queues import QueueResolver


@pytest.fixture
def config() -> PubSubConfig:
    return PubSubConfig(retries_before_dead_letter=3, long_polling_wait_seconds=0)


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def kms() -> InMemoryKeyManagement:
    return InMemoryKeyManagement()


@pytest.fixture
def cache() -> QueueMetadataCache:
    return QueueMetadataCache()


@pytest.fixture
def queues(
    broker: InMemoryBroker,
    kms: InMemoryKeyManagement,
    config: PubSubConfig,
    cache: QueueMetadataCache,
) -> QueueResolver:
    return QueueResolver(broker, kms, config, cache)


@pytest.fixture
def orchestrator(
    config: PubSubConfig,
    broker: InMemoryBroker,
    kms: InMemoryKeyManagement,
    queues: QueueResolver,
) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(
        config,
        broker,
        kms,
        queues,
        queue_wait_interval=0.01,
        queue_wait_timeout=0.5,
    )
