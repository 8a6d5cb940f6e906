"""Collaborator ports: broker provisioning, queue client, publisher, KMS, diagnostics.

Backend packages provide concrete adapters (``aws``, ``memory``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from uuid import UUID

    from .naming import TopicId


@runtime_checkable
class IBrokerProvisioning(Protocol):
    """Port for creating and inspecting topics, routing rules and queues."""

    async def rule_exists(self, topic: TopicId) -> bool:
        """Return True if the routing rule for *topic* exists."""
        ...

    async def create_rule(self, topic: TopicId) -> None:
        """Create the routing rule for *topic*."""
        ...

    async def put_target(self, topic: TopicId, topic_arn: str) -> None:
        """Attach the topic ARN as a target of the routing rule."""
        ...

    async def ensure_topic(self, topic: TopicId) -> str:
        """Create the topic if absent (idempotent) and return its ARN."""
        ...

    async def create_queue(
        self,
        queue_name: str,
        attributes: dict[str, str],
        tags: dict[str, str] | None = None,
    ) -> str:
        """Create a queue (idempotent for identical attributes); return its URL."""
        ...

    async def get_queue_attributes(self, queue_url: str) -> dict[str, str]:
        """Return at least ``QueueArn`` and ``VisibilityTimeout``."""
        ...

    async def set_queue_attributes(
        self, queue_url: str, attributes: dict[str, str]
    ) -> None: ...

    async def list_queues(self, prefix: str) -> list[str]:
        """Return URLs of queues whose name starts with *prefix*."""
        ...

    async def subscribe(self, topic_arn: str, queue_arn: str) -> None:
        """Subscribe the queue to the topic."""
        ...


@runtime_checkable
class IQueueClient(Protocol):
    """Port for pulling and acknowledging messages."""

    async def receive_messages(
        self,
        queue_url: str,
        *,
        max_messages: int,
        wait_seconds: int,
    ) -> list[dict[str, Any]]:
        """Long-poll *queue_url*; return raw records.

        Each record has ``MessageId``, ``ReceiptHandle``, ``Body`` and
        ``Attributes`` (including ``ApproximateReceiveCount``).
        """
        ...

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None: ...


@runtime_checkable
class ITopicPublisher(Protocol):
    """Port for publishing an encoded payload envelope to a topic."""

    async def publish(self, topic_arn: str, message: str) -> str:
        """Publish and return the backend message id."""
        ...


@runtime_checkable
class IBroker(IBrokerProvisioning, IQueueClient, ITopicPublisher, Protocol):
    """A backend serving provisioning, consumption and publishing at once."""


@runtime_checkable
class IKeyManagement(Protocol):
    """Port for the encryption key used by queues."""

    async def get_key_id(self) -> str | None: ...

    async def create_key(self) -> str: ...


@runtime_checkable
class IDiagnostics(Protocol):
    """Port for tracing/metrics around receive and dispatch."""

    def start_consumer_span(self, topic_name: str) -> AbstractContextManager[Any]:
        """Open a span for consuming one message; use as a context manager."""
        ...

    def annotate_message(
        self,
        span: Any,
        queue_url: str,
        message_id: UUID,
        correlation_id: UUID | None,
        raw_payload: str,
    ) -> None: ...

    def record_batch_retrieved(self, count: int, topic_raw_name: str) -> None: ...
