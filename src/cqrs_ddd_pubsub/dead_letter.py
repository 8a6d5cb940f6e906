"""DeadLetterReader: inspect messages the backend moved to dead-letter queues."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import DecodeResult, EnvelopeCodec
from .exceptions import ProvisioningError
from .naming import resolve

if TYPE_CHECKING:
    from .config import PubSubConfig
    from .envelope import MessageEnvelope
    from .naming import NameOverride
    from .ports import IQueueClient
    from .queues import QueueResolver

logger = logging.getLogger("cqrs_ddd.pubsub.dead_letter")


class DeadLetterReader:
    """Reads ``dead_letter_<queue>`` without acknowledging.

    Received messages become visible again after the dead-letter queue's
    visibility timeout unless :meth:`delete` is called.
    """

    def __init__(
        self,
        config: PubSubConfig,
        queues: QueueResolver,
        client: IQueueClient,
        *,
        codec: EnvelopeCodec | None = None,
    ) -> None:
        self._config = config
        self._queues = queues
        self._client = client
        self._codec = codec or EnvelopeCodec()

    async def receive(
        self, topic_key: str, override: NameOverride | None = None
    ) -> list[DecodeResult]:
        topic = resolve(topic_key, self._config.naming, override)
        queue = await self._queues.get_queue(topic.queue_name, dead_letter=True)
        if queue is None:
            raise ProvisioningError(
                f"Unable to get '{topic.dead_letter_queue_name}' data",
                topic=topic.dead_letter_queue_name,
            )
        records = await self._client.receive_messages(
            queue.url,
            max_messages=self._config.queue_max_receive_count,
            wait_seconds=0,
        )
        results = self._codec.decode_batch(records, queue.url)
        logger.info(
            "Read %d dead letters from %s", len(results), topic.dead_letter_queue_name
        )
        return results

    async def delete(self, envelope: MessageEnvelope) -> None:
        await self._client.delete_message(envelope.queue_url, envelope.receipt_handle)
