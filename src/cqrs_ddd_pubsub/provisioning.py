"""ProvisioningOrchestrator: idempotent topic/queue/dead-letter setup."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import ProvisioningError, ProvisioningFailure
from .naming import resolve

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from .config import PubSubConfig
    from .naming import NameOverride, TopicId
    from .ports import IBrokerProvisioning, IKeyManagement
    from .queues import QueueResolver
    from .registry import ConsumerDescriber, ProducerDescriber

logger = logging.getLogger("cqrs_ddd.pubsub.provisioning")


@dataclass(frozen=True)
class BootstrapResult:
    """Aggregate outcome of a provisioning fan-out."""

    consumers: tuple[str, ...] = ()
    producers: tuple[str, ...] = ()
    failures: tuple[ProvisioningFailure, ...] = ()
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.skipped

    def failed_topics(self, role: str) -> set[str]:
        return {f.topic_key for f in self.failures if f.role == role}

    def raise_for_failures(self) -> None:
        if self.failures:
            details = "; ".join(str(f) for f in self.failures)
            raise ProvisioningError(
                f"Provisioning failed for {len(self.failures)} topic(s): {details}",
                failures=list(self.failures),
            )


@dataclass
class _Outcome:
    ready: list[str] = field(default_factory=list)
    failures: list[ProvisioningFailure] = field(default_factory=list)


class ProvisioningOrchestrator:
    """Makes backend topics, rules and queues match the registered describers.

    Every operation is check-then-create and safe to re-run; two processes
    racing on the same topic rely on the backend treating identical creation
    calls as no-ops.
    """

    def __init__(
        self,
        config: PubSubConfig,
        broker: IBrokerProvisioning,
        kms: IKeyManagement,
        queues: QueueResolver,
        *,
        queue_wait_interval: float = 2.0,
        queue_wait_timeout: float = 300.0,
    ) -> None:
        self._config = config
        self._broker = broker
        self._kms = kms
        self._queues = queues
        self._queue_wait_interval = queue_wait_interval
        self._queue_wait_timeout = queue_wait_timeout

    def topic_id(self, topic_key: str, override: NameOverride | None = None) -> TopicId:
        topic_id = resolve(topic_key, self._config.naming, override)
        if override is not None and override.has_values():
            default = resolve(topic_key, self._config.naming)
            logger.info(
                "Overriding name from '%s' to '%s'",
                default.queue_name,
                topic_id.queue_name,
            )
        return topic_id

    # ── Topics ───────────────────────────────────────────────────

    async def ensure_topic(
        self, topic_key: str, override: NameOverride | None = None
    ) -> None:
        await self.ensure_topic_exists(self.topic_id(topic_key, override))

    async def ensure_topic_exists(self, topic: TopicId) -> None:
        """Create the routing rule and topic unless the rule already exists.

        Raises:
            ProvisioningError: If the topic is missing and auto-create is off.
        """
        if await self._broker.rule_exists(topic):
            logger.info("Rule %s already exists", topic.topic_name)
            return

        logger.info(
            "Setting topic '%s' up: Region=%s", topic.event_name, self._config.region
        )
        if not self._config.auto_create_new_topic:
            raise ProvisioningError(
                f"Topic '{topic.topic_name}' for '{topic.event_name}' does not exist",
                topic=topic.topic_name,
            )

        await self._broker.create_rule(topic)
        topic_arn = await self._broker.ensure_topic(topic)
        await self._broker.put_target(topic, topic_arn)

    # ── Queues ───────────────────────────────────────────────────

    async def ensure_queue_exists(
        self, topic_key: str, override: NameOverride | None = None
    ) -> None:
        """Create queue, dead-letter queue and subscription if the queue is absent.

        Raises:
            ProvisioningError: On missing encryption key or if the new queue
                does not become visible within the wait timeout.
        """
        topic = self.topic_id(topic_key, override)
        logger.info(
            "Setting queue '%s' up: Region=%s", topic.queue_name, self._config.region
        )
        if await self._queues.queue_exists(topic.queue_name):
            return

        topic_arn = await self._broker.ensure_topic(topic)
        queue = await self._queues.create_queue(topic.queue_name)
        logger.info(
            "Subscribing %s[%s] on %s[%s]",
            topic.queue_name,
            queue.arn,
            topic.topic_name,
            topic_arn,
        )
        await self._broker.subscribe(topic_arn, queue.arn)
        await self._wait_for_queue(topic.queue_name)

    async def _wait_for_queue(self, queue_name: str) -> None:
        try:
            await asyncio.wait_for(
                self._poll_queue(queue_name), timeout=self._queue_wait_timeout
            )
        except asyncio.TimeoutError as e:
            raise ProvisioningError(
                f"Queue '{queue_name}' not available after "
                f"{self._queue_wait_timeout}s",
                topic=queue_name,
            ) from e

    async def _poll_queue(self, queue_name: str) -> None:
        while not await self._queues.queue_exists(queue_name):
            logger.info("Waiting for queue %s to be available", queue_name)
            await asyncio.sleep(self._queue_wait_interval)
        logger.info("Queue %s available", queue_name)

    async def update_queue_attr(
        self,
        topic_key: str,
        new_timeout: float | None,
        override: NameOverride | None = None,
    ) -> bool:
        """Apply *new_timeout* as visibility timeout when it changed.

        Fractional seconds round up so the message stays hidden for the whole
        consume timeout.
        """
        if new_timeout is None:
            return False
        topic = self.topic_id(topic_key, override)
        return await self._queues.update_visibility_timeout(
            topic.queue_name, math.ceil(new_timeout)
        )

    # ── Encryption key ───────────────────────────────────────────

    async def ensure_encryption_key(self) -> str:
        """Return the queue encryption key id, creating the key if absent."""
        key_id = await self._kms.get_key_id()
        if key_id is not None:
            return key_id
        logger.info("Creating encryption key %s", self._config.kms_key_alias)
        try:
            return await self._kms.create_key()
        except Exception as e:
            raise ProvisioningError(f"Unable to create encryption key: {e}") from e

    # ── Fan-out ──────────────────────────────────────────────────

    async def provision(
        self,
        consumers: Sequence[ConsumerDescriber],
        producers: Sequence[ProducerDescriber],
    ) -> BootstrapResult:
        """Provision every describer concurrently; collect per-topic failures."""
        logger.info(
            "Setting up %d consumers and %d producers", len(consumers), len(producers)
        )
        consumer_outcome, producer_outcome = await asyncio.gather(
            self._fan_out(
                "consumer", [(d.topic_key, self._setup_consumer(d)) for d in consumers]
            ),
            self._fan_out(
                "producer",
                [
                    (d.topic_key, self.ensure_topic(d.topic_key, d.name_override))
                    for d in producers
                ],
            ),
        )
        return BootstrapResult(
            consumers=tuple(consumer_outcome.ready),
            producers=tuple(producer_outcome.ready),
            failures=tuple(consumer_outcome.failures + producer_outcome.failures),
        )

    async def _setup_consumer(self, describer: ConsumerDescriber) -> None:
        logger.info(
            "Consumer of %s with %s",
            describer.topic_key,
            getattr(describer.handler_type, "__name__", describer.handler_type),
        )
        override = describer.name_override
        await self.ensure_topic(describer.topic_key, override)
        await self.ensure_queue_exists(describer.topic_key, override)
        await self.update_queue_attr(
            describer.topic_key, describer.config.consume_timeout, override
        )

    async def _fan_out(
        self, role: str, jobs: list[tuple[str, Awaitable[None]]]
    ) -> _Outcome:
        outcome = _Outcome()
        results = await asyncio.gather(
            *(job for _, job in jobs), return_exceptions=True
        )
        for (topic_key, _), result in zip(jobs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    "Provisioning of %s '%s' failed: %s",
                    role,
                    topic_key,
                    result,
                    exc_info=result,
                )
                outcome.failures.append(ProvisioningFailure(role, topic_key, result))
            else:
                outcome.ready.append(topic_key)
        return outcome
