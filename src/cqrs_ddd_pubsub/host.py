"""PubSubHost: explicit bootstrap/start entry point."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .cache import QueueMetadataCache
from .codec import EnvelopeCodec
from .dead_letter import DeadLetterReader
from .diagnostics import NullDiagnostics
from .provisioning import BootstrapResult, ProvisioningOrchestrator
from .publisher import TopicPublisher
from .queues import QueueResolver
from .scheduler import ConsumerScheduler, until_stopped

if TYPE_CHECKING:
    from collections.abc import Callable

    from aiobotocore.session import AioSession

    from .config import PubSubConfig
    from .ports import IBroker, IDiagnostics, IKeyManagement
    from .registry import PubSubRegistry

logger = logging.getLogger("cqrs_ddd.pubsub.host")


class PubSubHost:
    """Wires naming, provisioning, consumption and publishing together.

    ``broker`` serves provisioning, consumption and publishing
    (:class:`~cqrs_ddd_pubsub.ports.IBroker`), as
    :class:`~cqrs_ddd_pubsub.aws.AwsBroker` and
    :class:`~cqrs_ddd_pubsub.memory.InMemoryBroker` do.

    Usage::

        host = PubSubHost.for_aws(config, builder.build())
        stop = asyncio.Event()
        await host.run(stop)
    """

    def __init__(
        self,
        config: PubSubConfig,
        registry: PubSubRegistry,
        broker: IBroker,
        kms: IKeyManagement,
        *,
        diagnostics: IDiagnostics | None = None,
        cache: QueueMetadataCache | None = None,
        handler_factory: Callable[[type[Any]], Any] | None = None,
        queue_wait_interval: float = 2.0,
        queue_wait_timeout: float = 300.0,
        drain_timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.registry = registry
        self.cache = cache if cache is not None else QueueMetadataCache()
        codec = EnvelopeCodec()

        self.queues = QueueResolver(broker, kms, config, self.cache)
        self.orchestrator = ProvisioningOrchestrator(
            config,
            broker,
            kms,
            self.queues,
            queue_wait_interval=queue_wait_interval,
            queue_wait_timeout=queue_wait_timeout,
        )
        self.scheduler = ConsumerScheduler(
            config,
            self.queues,
            broker,
            codec=codec,
            diagnostics=diagnostics or NullDiagnostics(),
            handler_factory=handler_factory,
            drain_timeout=drain_timeout,
        )
        self.publisher = TopicPublisher(
            config, broker, broker, registry=registry, codec=codec
        )
        self.dead_letters = DeadLetterReader(config, self.queues, broker, codec=codec)

    @classmethod
    def for_aws(
        cls,
        config: PubSubConfig,
        registry: PubSubRegistry,
        *,
        session: AioSession | None = None,
        **kwargs: Any,
    ) -> PubSubHost:
        """Build a host backed by aiobotocore clients for ``config.region``."""
        from .aws import AWSConnectionManager, AwsBroker, AwsKeyManagement

        connection = AWSConnectionManager(
            region_name=config.region,
            endpoint_url=config.service_url,
            session=session,
        )
        return cls(
            config,
            registry,
            AwsBroker(connection),
            AwsKeyManagement(connection, key_alias=config.kms_key_alias),
            **kwargs,
        )

    async def bootstrap(
        self, stop_event: asyncio.Event | None = None
    ) -> BootstrapResult:
        """Validate registrations and provision every topic and queue.

        Raises:
            ConfigurationError: On duplicate consumer topics, before any
                backend call.
            ProvisioningError: If the encryption key cannot be set up in
                localstack mode.
        """
        self.registry.validate()
        config = self.config
        logger.info(
            "Naming config: Source=%s; Prefix=%s; Suffix=%s",
            config.source,
            config.prefix,
            config.suffix,
        )
        if self.registry.is_empty():
            logger.info("No configured consumers or producers. Skipping configuration")
            return BootstrapResult(skipped=True)

        if config.localstack_mode:
            await self.orchestrator.ensure_encryption_key()

        result = await until_stopped(
            self.orchestrator.provision(
                self.registry.consumers, self.registry.producers
            ),
            stop_event,
        )
        if result is None:
            logger.info("Bootstrap cancelled")
            return BootstrapResult(skipped=True)
        if result.failures:
            logger.error(
                "Bootstrap finished with %d failed topic(s)", len(result.failures)
            )
        return result

    async def start(
        self, stop_event: asyncio.Event, result: BootstrapResult | None = None
    ) -> None:
        """Run consumers until *stop_event* is set.

        With a bootstrap *result*, consumers whose provisioning failed are
        not started.
        """
        consumers = list(self.registry.consumers)
        if result is not None:
            failed = result.failed_topics("consumer")
            consumers = [d for d in consumers if d.topic_key not in failed]
        await self.scheduler.start(consumers, stop_event)

    async def run(self, stop_event: asyncio.Event) -> BootstrapResult:
        """Bootstrap, then consume until *stop_event* is set."""
        result = await self.bootstrap(stop_event)
        if result.skipped:
            return result
        await self.start(stop_event, result)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
