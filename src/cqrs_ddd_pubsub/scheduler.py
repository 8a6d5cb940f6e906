"""ConsumerScheduler: one polling loop per consumer with bounded dispatch."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from inspect import isawaitable
from typing import TYPE_CHECKING, Any, TypeVar

from .codec import DecodeResult, EnvelopeCodec
from .correlation import set_correlation_id
from .diagnostics import NullDiagnostics
from .exceptions import (
    ConfigurationError,
    DeserializationError,
    DispatchTimeoutError,
    HandlerError,
    ProvisioningError,
    PubSubError,
)
from .naming import resolve

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from .config import PubSubConfig
    from .envelope import MessageEnvelope
    from .ports import IDiagnostics, IQueueClient
    from .queues import QueueResolver
    from .registry import ConsumerDescriber

logger = logging.getLogger("cqrs_ddd.pubsub.scheduler")

T = TypeVar("T")


class ConsumerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


class _Outcome(str, enum.Enum):
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class BatchOutcome:
    """Counts of one poll/dispatch iteration; ``errors`` keeps the details."""

    received: int = 0
    acknowledged: int = 0
    failed: int = 0
    timed_out: int = 0
    malformed: int = 0
    errors: tuple[PubSubError, ...] = ()


async def until_stopped(
    awaitable: Awaitable[T], stop_event: asyncio.Event | None
) -> T | None:
    """Await *awaitable*, abandoning it (returning None) once *stop_event* is set."""
    if stop_event is None:
        return await awaitable
    work = asyncio.ensure_future(awaitable)
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if work.done():
            return work.result()
        return None
    finally:
        for future in (work, stopper):
            if not future.done():
                future.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await future


async def _sleep_until_stopped(seconds: float, stop_event: asyncio.Event) -> None:
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)


def _default_handler_factory(handler_cls: type[Any]) -> Any:
    return handler_cls()


class ConsumerWorker:
    """Polling loop of one consumer.

    States cycle ``IDLE -> POLLING -> DISPATCHING -> IDLE`` until the stop
    event is set, then ``STOPPED``. At most ``max_concurrency`` handler calls
    are in flight; a batch is fully dispatched before the next poll.
    """

    def __init__(
        self,
        describer: ConsumerDescriber,
        *,
        config: PubSubConfig,
        queues: QueueResolver,
        client: IQueueClient,
        codec: EnvelopeCodec | None = None,
        diagnostics: IDiagnostics | None = None,
        handler_factory: Callable[[type[Any]], Any] | None = None,
    ) -> None:
        self.describer = describer
        self.topic = resolve(
            describer.topic_key, config.naming, describer.name_override
        )
        self.state = ConsumerState.IDLE
        self._config = config
        self._queues = queues
        self._client = client
        self._codec = codec or EnvelopeCodec()
        self._diagnostics = diagnostics or NullDiagnostics()
        self._semaphore = asyncio.Semaphore(describer.config.max_concurrency)
        self._handler = self._bind_handler(
            describer.handler_type, handler_factory or _default_handler_factory
        )
        timeout = describer.config.consume_timeout
        if timeout is None:
            timeout = config.message_timeout_seconds or None
        self._consume_timeout = timeout

    @staticmethod
    def _bind_handler(
        handler_type: Any, factory: Callable[[type[Any]], Any]
    ) -> Callable[[Any], Any]:
        target = handler_type
        if isinstance(handler_type, type):
            target = factory(handler_type)
        handle = getattr(target, "handle", None)
        if callable(handle):
            return handle
        if callable(target):
            return target
        raise ConfigurationError(
            "Handler must be a callable or have a handle() method"
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll and dispatch until *stop_event* is set."""
        logger.info(
            "Consumer of %s started on queue %s (max_concurrency=%d)",
            self.topic.raw_name,
            self.topic.queue_name,
            self.describer.config.max_concurrency,
        )
        try:
            while not stop_event.is_set():
                try:
                    outcome = await self.run_once(stop_event)
                except Exception:
                    logger.exception(
                        "Consumer of %s failed to poll %s",
                        self.topic.raw_name,
                        self.topic.queue_name,
                    )
                    outcome = None
                if outcome is None or outcome.received == 0:
                    await _sleep_until_stopped(
                        self.describer.config.polling_interval, stop_event
                    )
        finally:
            self.state = ConsumerState.STOPPED
            logger.info("Consumer of %s stopped", self.topic.raw_name)

    async def run_once(self, stop_event: asyncio.Event | None = None) -> BatchOutcome:
        """Run a single poll/dispatch iteration (useful in tests)."""
        self.state = ConsumerState.POLLING
        queue = await self._queues.get_queue(self.topic.queue_name)
        if queue is None:
            self.state = ConsumerState.IDLE
            raise ProvisioningError(
                f"Unable to get '{self.topic.queue_name}' data",
                topic=self.topic.queue_name,
            )

        records = await until_stopped(
            self._client.receive_messages(
                queue.url,
                max_messages=self._config.queue_max_receive_count,
                wait_seconds=self._config.long_polling_wait_seconds,
            ),
            stop_event,
        )
        if not records:
            self.state = ConsumerState.IDLE
            return BatchOutcome()

        results = self._codec.decode_batch(records, queue.url)
        self._diagnostics.record_batch_retrieved(
            sum(1 for r in results if r.ok), self.topic.raw_name
        )

        self.state = ConsumerState.DISPATCHING
        try:
            dispatched = await asyncio.gather(*(self._dispatch(r) for r in results))
        finally:
            self.state = ConsumerState.IDLE

        counts = {kind: 0 for kind in _Outcome}
        errors: list[PubSubError] = []
        for kind, error in dispatched:
            counts[kind] += 1
            if error is not None:
                errors.append(error)
        return BatchOutcome(
            received=len(records),
            acknowledged=counts[_Outcome.ACKNOWLEDGED],
            failed=counts[_Outcome.FAILED],
            timed_out=counts[_Outcome.TIMED_OUT],
            malformed=counts[_Outcome.MALFORMED],
            errors=tuple(errors),
        )

    async def _dispatch(
        self, result: DecodeResult
    ) -> tuple[_Outcome, PubSubError | None]:
        if result.envelope is None:
            logger.error(
                "Malformed message %s on %s left for redelivery",
                result.record.get("MessageId"),
                self.topic.queue_name,
            )
            return _Outcome.MALFORMED, result.error

        envelope = result.envelope
        async with self._semaphore:
            with self._diagnostics.start_consumer_span(self.topic.topic_name) as span:
                self._diagnostics.annotate_message(
                    span,
                    envelope.queue_url,
                    envelope.message_id,
                    envelope.correlation_id,
                    envelope.raw_message,
                )
                return await self._handle(envelope)

    async def _handle(
        self, envelope: MessageEnvelope
    ) -> tuple[_Outcome, PubSubError | None]:
        message_id = str(envelope.message_id)
        try:
            message = self._codec.hydrate(envelope, self.describer.message_type)
        except DeserializationError as e:
            return _Outcome.MALFORMED, e

        set_correlation_id(envelope.correlation_id)
        try:
            await asyncio.wait_for(self._invoke(message), timeout=self._consume_timeout)
        except asyncio.TimeoutError:
            timeout_error = DispatchTimeoutError(message_id, self._consume_timeout or 0)
            logger.warning(
                "%s on %s (retry %d); leaving for redelivery",
                timeout_error,
                self.topic.queue_name,
                envelope.retry_number,
            )
            return _Outcome.TIMED_OUT, timeout_error
        except Exception as e:
            logger.exception(
                "Error handling message %s on %s (retry %d, correlation %s)",
                message_id,
                self.topic.queue_name,
                envelope.retry_number,
                envelope.correlation_id,
            )
            return _Outcome.FAILED, HandlerError(message_id, e)

        try:
            await self._client.delete_message(
                envelope.queue_url, envelope.receipt_handle
            )
        except Exception as e:
            logger.exception(
                "Unable to acknowledge message %s on %s",
                message_id,
                self.topic.queue_name,
            )
            return _Outcome.FAILED, HandlerError(message_id, e)
        return _Outcome.ACKNOWLEDGED, None

    async def _invoke(self, message: MessageEnvelope) -> None:
        result = self._handler(message)
        if isawaitable(result):
            await result


class ConsumerScheduler:
    """Runs one :class:`ConsumerWorker` per registered consumer.

    On stop, loops stop pulling new batches and in-flight dispatches are
    given ``drain_timeout`` seconds to finish before being cancelled.
    """

    def __init__(
        self,
        config: PubSubConfig,
        queues: QueueResolver,
        client: IQueueClient,
        *,
        codec: EnvelopeCodec | None = None,
        diagnostics: IDiagnostics | None = None,
        handler_factory: Callable[[type[Any]], Any] | None = None,
        drain_timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._queues = queues
        self._client = client
        self._codec = codec or EnvelopeCodec()
        self._diagnostics = diagnostics or NullDiagnostics()
        self._handler_factory = handler_factory
        self._drain_timeout = drain_timeout
        self.workers: list[ConsumerWorker] = []

    def worker_for(self, describer: ConsumerDescriber) -> ConsumerWorker:
        return ConsumerWorker(
            describer,
            config=self._config,
            queues=self._queues,
            client=self._client,
            codec=self._codec,
            diagnostics=self._diagnostics,
            handler_factory=self._handler_factory,
        )

    async def start(
        self, consumers: Sequence[ConsumerDescriber], stop_event: asyncio.Event
    ) -> None:
        """Run all consumer loops until *stop_event* is set and they drain."""
        if not consumers:
            logger.info("No consumers to start")
            return

        self.workers = [self.worker_for(d) for d in consumers]
        tasks = [
            asyncio.create_task(w.run(stop_event), name=f"consumer:{w.topic.raw_name}")
            for w in self.workers
        ]
        runner = asyncio.gather(*tasks, return_exceptions=True)
        waiter = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not runner.done():
                logger.info("Stopping consumers, draining in-flight dispatches")
                try:
                    await asyncio.wait_for(
                        asyncio.shield(runner), timeout=self._drain_timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Consumers did not drain within %ss, cancelling",
                        self._drain_timeout,
                    )
        finally:
            waiter.cancel()
            if not runner.done():
                runner.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await runner
        logger.info("All consumers stopped")
