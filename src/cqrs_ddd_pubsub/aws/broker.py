"""AwsBroker: EventBridge rules, SNS topics and SQS queues over aiobotocore."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..naming import TopicId
    from .connection import AWSConnectionManager

logger = logging.getLogger("cqrs_ddd.pubsub.aws")

RECEIVE_ATTRIBUTES = ["ApproximateReceiveCount"]


class AwsBroker:
    """Implements the provisioning, queue client and topic publisher ports.

    Routing rules live on the default EventBridge bus and match events whose
    ``detail-type`` is the topic's event name; their target is the SNS topic
    of the same name, to which queues subscribe.
    """

    def __init__(self, connection: AWSConnectionManager) -> None:
        self._connection = connection

    # ── EventBridge ──────────────────────────────────────────────

    async def rule_exists(self, topic: TopicId) -> bool:
        """Return True if a rule named exactly like the topic exists."""
        events = await self._connection.get_client("events")
        out = await events.list_rules(NamePrefix=topic.topic_name)
        return any(r.get("Name") == topic.topic_name for r in out.get("Rules", []))

    async def create_rule(self, topic: TopicId) -> None:
        """Create an enabled rule matching the topic's event name as ``detail-type``."""
        events = await self._connection.get_client("events")
        pattern = json.dumps({"detail-type": [topic.event_name]})
        await events.put_rule(
            Name=topic.topic_name,
            EventPattern=pattern,
            State="ENABLED",
        )
        logger.info("Rule %s created for %s", topic.topic_name, topic.event_name)

    async def put_target(self, topic: TopicId, topic_arn: str) -> None:
        """Route the rule to the SNS topic at *topic_arn*."""
        events = await self._connection.get_client("events")
        await events.put_targets(
            Rule=topic.topic_name,
            Targets=[{"Id": topic.topic_name, "Arn": topic_arn}],
        )

    # ── SNS ──────────────────────────────────────────────────────

    async def ensure_topic(self, topic: TopicId) -> str:
        """Create the SNS topic (a no-op when it exists) and return its ARN."""
        sns = await self._connection.get_client("sns")
        out = await sns.create_topic(Name=topic.topic_name)
        return str(out["TopicArn"])

    async def subscribe(self, topic_arn: str, queue_arn: str) -> None:
        """Subscribe the SQS queue at *queue_arn* to the SNS topic."""
        sns = await self._connection.get_client("sns")
        await sns.subscribe(
            TopicArn=topic_arn,
            Protocol="sqs",
            Endpoint=queue_arn,
            ReturnSubscriptionArn=True,
        )

    async def publish(self, topic_arn: str, message: str) -> str:
        """Publish *message* to the SNS topic and return the SNS message id."""
        sns = await self._connection.get_client("sns")
        out = await sns.publish(TopicArn=topic_arn, Message=message)
        return str(out["MessageId"])

    # ── SQS ──────────────────────────────────────────────────────

    async def create_queue(
        self,
        queue_name: str,
        attributes: dict[str, str],
        tags: dict[str, str] | None = None,
    ) -> str:
        """Create the SQS queue; *tags* are sent only when given."""
        sqs = await self._connection.get_client("sqs")
        kwargs: dict[str, Any] = {"QueueName": queue_name, "Attributes": attributes}
        if tags:
            kwargs["tags"] = tags
        out = await sqs.create_queue(**kwargs)
        return str(out["QueueUrl"])

    async def get_queue_attributes(self, queue_url: str) -> dict[str, str]:
        """Fetch ``QueueArn`` and ``VisibilityTimeout`` of the queue."""
        sqs = await self._connection.get_client("sqs")
        out = await sqs.get_queue_attributes(
            QueueUrl=queue_url,
            AttributeNames=["QueueArn", "VisibilityTimeout"],
        )
        return dict(out.get("Attributes", {}))

    async def set_queue_attributes(
        self, queue_url: str, attributes: dict[str, str]
    ) -> None:
        """Set *attributes* on the queue."""
        sqs = await self._connection.get_client("sqs")
        await sqs.set_queue_attributes(QueueUrl=queue_url, Attributes=attributes)

    async def list_queues(self, prefix: str) -> list[str]:
        """Return the URLs of queues whose name starts with *prefix*."""
        sqs = await self._connection.get_client("sqs")
        out = await sqs.list_queues(QueueNamePrefix=prefix, MaxResults=1000)
        return list(out.get("QueueUrls", []))

    async def receive_messages(
        self,
        queue_url: str,
        *,
        max_messages: int,
        wait_seconds: int,
    ) -> list[dict[str, Any]]:
        """Long-poll the queue, requesting the receive count of each message."""
        sqs = await self._connection.get_client("sqs")
        out = await sqs.receive_message(
            QueueUrl=queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
            AttributeNames=RECEIVE_ATTRIBUTES,
        )
        return list(out.get("Messages", []))

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Acknowledge the message behind *receipt_handle*."""
        sqs = await self._connection.get_client("sqs")
        await sqs.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
