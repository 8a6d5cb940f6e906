"""QueueResolver: queue lookup, creation and attribute updates over the cache."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from .cache import QueueInfo, QueueMetadataCache
from .exceptions import ProvisioningError
from .naming import dead_letter_name

if TYPE_CHECKING:
    from .config import PubSubConfig
    from .ports import IBrokerProvisioning, IKeyManagement

logger = logging.getLogger("cqrs_ddd.pubsub.provisioning")

QUEUE_POLICY = json.dumps(
    {
        "Id": "SQSEventsPolicy",
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "Allow_SQS_Services",
                "Action": "sqs:*",
                "Effect": "Allow",
                "Resource": "arn:aws:sqs:*",
                "Principal": {"AWS": "*"},
            }
        ],
    },
    separators=(",", ":"),
)


def redrive_policy(dead_letter_arn: str, max_receive_count: int) -> str:
    """Compact JSON redrive policy; ``maxReceiveCount`` is a string."""
    return json.dumps(
        {
            "deadLetterTargetArn": dead_letter_arn,
            "maxReceiveCount": str(max_receive_count),
        },
        separators=(",", ":"),
    )


class QueueResolver:
    """Resolves queue names to :class:`QueueInfo` and creates queues.

    Shares its :class:`QueueMetadataCache` with the provisioning orchestrator
    and the consumer scheduler.
    """

    def __init__(
        self,
        broker: IBrokerProvisioning,
        kms: IKeyManagement,
        config: PubSubConfig,
        cache: QueueMetadataCache | None = None,
    ) -> None:
        self._broker = broker
        self._kms = kms
        self._config = config
        self.cache = cache if cache is not None else QueueMetadataCache()

    async def get_queue_info(self, queue_url: str) -> QueueInfo:
        """Build :class:`QueueInfo` from the backend attributes of *queue_url*."""
        attributes = await self._broker.get_queue_attributes(queue_url)
        logger.debug("Queue attributes of %s: %s", queue_url, attributes)
        return QueueInfo(
            url=queue_url,
            arn=attributes["QueueArn"],
            visibility_timeout=int(attributes.get("VisibilityTimeout", 0)),
        )

    async def get_queue(
        self, queue_name: str, *, dead_letter: bool = False
    ) -> QueueInfo | None:
        """Return the cached or looked-up queue, or None when it does not exist."""
        name = dead_letter_name(queue_name) if dead_letter else queue_name
        return await self.cache.get_or_resolve(name, lambda: self._lookup(name))

    async def _lookup(self, queue_name: str) -> QueueInfo | None:
        urls = await self._broker.list_queues(queue_name)
        url = next(
            (u for u in urls if u.rstrip("/").rsplit("/", 1)[-1] == queue_name),
            None,
        )
        if url is None:
            return None
        return await self.get_queue_info(url)

    async def queue_exists(self, queue_name: str, *, dead_letter: bool = False) -> bool:
        """Return True if the queue (or its dead-letter queue) exists."""
        return await self.get_queue(queue_name, dead_letter=dead_letter) is not None

    async def create_queue(self, queue_name: str) -> QueueInfo:
        """Create *queue_name* and its dead-letter queue.

        Raises:
            ProvisioningError: If no encryption key is available.
        """
        logger.info("Creating queue: %s", queue_name)
        key_id = await self._kms.get_key_id()
        if key_id is None:
            raise ProvisioningError(
                "Default KMS encryption key id not found", topic=queue_name
            )

        dead_letter = await self._create_dead_letter_queue(queue_name, key_id)
        config = self._config
        attributes = {
            "RedrivePolicy": redrive_policy(
                dead_letter.arn, config.retries_before_dead_letter
            ),
            "Policy": QUEUE_POLICY,
            "KmsMasterKeyId": key_id,
            "VisibilityTimeout": str(config.message_timeout_seconds),
            "DelaySeconds": str(config.message_delay_seconds),
            "MessageRetentionPeriod": str(config.message_retention_seconds),
        }
        url = await self._broker.create_queue(
            queue_name, attributes, tags=dict(config.tags) or None
        )
        return await self.get_queue_info(url)

    async def _create_dead_letter_queue(
        self, queue_name: str, key_id: str
    ) -> QueueInfo:
        name = dead_letter_name(queue_name)
        logger.info("Creating dead letter queue: %s", name)
        url = await self._broker.create_queue(
            name, {"Policy": QUEUE_POLICY, "KmsMasterKeyId": key_id}
        )
        return await self.get_queue_info(url)

    async def update_visibility_timeout(self, queue_name: str, seconds: int) -> bool:
        """Set the queue visibility timeout if it differs from the cached one.

        Returns True when a backend update was issued.
        """
        queue = await self.get_queue(queue_name)
        if queue is None or queue.visibility_timeout == seconds:
            return False

        logger.info(
            "Updating queue %s visibility timeout %ss -> %ss",
            queue_name,
            queue.visibility_timeout,
            seconds,
        )
        await self._broker.set_queue_attributes(
            queue.url, {"VisibilityTimeout": str(seconds)}
        )
        self.cache.put(queue_name, queue.with_visibility_timeout(seconds))
        return True
