"""In-memory broker for testing: topics, rules, queues with redrive semantics."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..envelope import BrokerEnvelope
from ..naming import dead_letter_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..naming import TopicId

_ACCOUNT = "000000000000"
_REGION = "local"


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    receive_count: int = 0
    receipt_handle: str = ""
    invisible_until: float = 0.0


@dataclass
class _Queue:
    name: str
    url: str
    arn: str
    attributes: dict[str, str]
    tags: dict[str, str] = field(default_factory=dict)
    messages: list[_StoredMessage] = field(default_factory=list)
    hidden_lookups: int = 0
    arrived: asyncio.Event = field(default_factory=asyncio.Event)


class InMemoryBroker:
    """Implements provisioning, queue client and topic publisher ports in memory.

    ``hidden_lookups`` makes each new queue invisible to that many
    :meth:`list_queues` calls (eventual consistency); ``never_visible`` keeps
    new queues invisible forever. Every call is recorded in :attr:`calls`.
    """

    def __init__(
        self,
        *,
        hidden_lookups: int = 0,
        never_visible: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.rules: dict[str, str] = {}
        self.targets: dict[str, list[str]] = {}
        self.topics: dict[str, str] = {}
        self.subscriptions: dict[str, set[str]] = {}
        self.queues: dict[str, _Queue] = {}
        self._hidden_lookups = hidden_lookups
        self._never_visible = never_visible
        self._clock = clock

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def call_count(self, name: str) -> int:
        """Number of recorded calls named *name*."""
        return sum(1 for call, _ in self.calls if call == name)

    # ── Rules / topics ───────────────────────────────────────────

    async def rule_exists(self, topic: TopicId) -> bool:
        """Return True if the rule was created."""
        self._record("rule_exists", topic.topic_name)
        return topic.topic_name in self.rules

    async def create_rule(self, topic: TopicId) -> None:
        """Record the rule with the topic's event name."""
        self._record("create_rule", topic.topic_name)
        self.rules.setdefault(topic.topic_name, topic.event_name)

    async def put_target(self, topic: TopicId, topic_arn: str) -> None:
        """Attach *topic_arn* to the rule once."""
        self._record("put_target", topic.topic_name, topic_arn)
        targets = self.targets.setdefault(topic.topic_name, [])
        if topic_arn not in targets:
            targets.append(topic_arn)

    async def ensure_topic(self, topic: TopicId) -> str:
        """Return the topic ARN, creating the topic on first use."""
        self._record("ensure_topic", topic.topic_name)
        return self.topics.setdefault(
            topic.topic_name, f"arn:aws:sns:{_REGION}:{_ACCOUNT}:{topic.topic_name}"
        )

    async def subscribe(self, topic_arn: str, queue_arn: str) -> None:
        """Subscribe the queue; publishing then copies messages into it."""
        self._record("subscribe", topic_arn, queue_arn)
        self.subscriptions.setdefault(topic_arn, set()).add(queue_arn)

    async def publish(self, topic_arn: str, message: str) -> str:
        """Wrap *message* in a broker envelope; enqueue it on subscribed queues."""
        self._record("publish", topic_arn, message)
        message_id = uuid.uuid4()
        body = BrokerEnvelope(
            message_id=message_id, message=message, topic_arn=topic_arn
        ).model_dump_json(by_alias=True)
        for queue in self.queues.values():
            if queue.arn in self.subscriptions.get(topic_arn, set()):
                self._enqueue(queue, body)
        return str(message_id)

    # ── Queues ───────────────────────────────────────────────────

    async def create_queue(
        self,
        queue_name: str,
        attributes: dict[str, str],
        tags: dict[str, str] | None = None,
    ) -> str:
        """Create the queue or return the URL of the existing one."""
        self._record("create_queue", queue_name, dict(attributes))
        existing = self.queues.get(queue_name)
        if existing is not None:
            return existing.url
        queue = _Queue(
            name=queue_name,
            url=f"https://sqs.{_REGION}.amazonaws.com/{_ACCOUNT}/{queue_name}",
            arn=f"arn:aws:sqs:{_REGION}:{_ACCOUNT}:{queue_name}",
            attributes={"VisibilityTimeout": "30", **attributes},
            tags=dict(tags or {}),
            hidden_lookups=self._hidden_lookups,
        )
        self.queues[queue_name] = queue
        return queue.url

    def _by_url(self, queue_url: str) -> _Queue:
        for queue in self.queues.values():
            if queue.url == queue_url:
                return queue
        raise KeyError(f"Queue {queue_url} does not exist")

    async def get_queue_attributes(self, queue_url: str) -> dict[str, str]:
        """Return the queue attributes including ``QueueArn``."""
        self._record("get_queue_attributes", queue_url)
        queue = self._by_url(queue_url)
        return {"QueueArn": queue.arn, **queue.attributes}

    async def set_queue_attributes(
        self, queue_url: str, attributes: dict[str, str]
    ) -> None:
        """Merge *attributes* into the queue attributes."""
        self._record("set_queue_attributes", queue_url, dict(attributes))
        self._by_url(queue_url).attributes.update(attributes)

    async def list_queues(self, prefix: str) -> list[str]:
        """Return the URLs of visible queues whose name starts with *prefix*."""
        self._record("list_queues", prefix)
        urls = []
        for name, queue in self.queues.items():
            if not name.startswith(prefix):
                continue
            if self._never_visible:
                continue
            if queue.hidden_lookups > 0:
                queue.hidden_lookups -= 1
                continue
            urls.append(queue.url)
        return urls

    # ── Messages ─────────────────────────────────────────────────

    def _enqueue(self, queue: _Queue, body: str, message_id: str | None = None) -> None:
        queue.messages.append(
            _StoredMessage(message_id=message_id or str(uuid.uuid4()), body=body)
        )
        queue.arrived.set()

    def send(self, queue_name: str, body: str) -> None:
        """Put a raw body straight into *queue_name* (test helper)."""
        self._enqueue(self.queues[queue_name], body)

    def pending(self, queue_name: str) -> int:
        """Number of messages stored in *queue_name*, visible or not."""
        return len(self.queues[queue_name].messages)

    def _redrive(self, queue: _Queue, message: _StoredMessage) -> bool:
        policy = queue.attributes.get("RedrivePolicy")
        if not policy:
            return False
        parsed = json.loads(policy)
        if message.receive_count < int(parsed["maxReceiveCount"]):
            return False
        target_arn = parsed["deadLetterTargetArn"]
        target = next((q for q in self.queues.values() if q.arn == target_arn), None)
        if target is None:
            return False
        queue.messages.remove(message)
        target.messages.append(
            _StoredMessage(message_id=message.message_id, body=message.body)
        )
        return True

    def _visible(self, queue: _Queue, limit: int) -> list[_StoredMessage]:
        now = self._clock()
        out: list[_StoredMessage] = []
        for message in list(queue.messages):
            if len(out) >= limit:
                break
            if message.invisible_until > now:
                continue
            if self._redrive(queue, message):
                continue
            out.append(message)
        return out

    async def receive_messages(
        self,
        queue_url: str,
        *,
        max_messages: int,
        wait_seconds: int,
    ) -> list[dict[str, Any]]:
        """Return up to *max_messages* visible records within *wait_seconds*."""
        self._record("receive_messages", queue_url)
        queue = self._by_url(queue_url)
        batch = self._visible(queue, max_messages)
        if not batch and wait_seconds > 0:
            queue.arrived.clear()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(queue.arrived.wait(), timeout=wait_seconds)
            batch = self._visible(queue, max_messages)

        visibility = int(queue.attributes.get("VisibilityTimeout", "30"))
        records = []
        for message in batch:
            message.receive_count += 1
            message.receipt_handle = str(uuid.uuid4())
            message.invisible_until = self._clock() + visibility
            records.append(
                {
                    "MessageId": message.message_id,
                    "ReceiptHandle": message.receipt_handle,
                    "Body": message.body,
                    "Attributes": {
                        "ApproximateReceiveCount": str(message.receive_count)
                    },
                }
            )
        return records

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Remove the message currently leased under *receipt_handle*."""
        self._record("delete_message", queue_url, receipt_handle)
        queue = self._by_url(queue_url)
        queue.messages = [
            m for m in queue.messages if m.receipt_handle != receipt_handle
        ]

    def dead_letters(self, queue_name: str) -> int:
        """Number of messages redriven to the dead-letter queue of *queue_name*."""
        return len(self.queues[dead_letter_name(queue_name)].messages)


class InMemoryKeyManagement:
    """Key management holding a single optional key id."""

    def __init__(self, key_id: str | None = "local-key") -> None:
        self.key_id = key_id
        self.created = 0

    async def get_key_id(self) -> str | None:
        """Return the held key id, if any."""
        return self.key_id

    async def create_key(self) -> str:
        """Create a fresh key id and count the creation."""
        self.created += 1
        self.key_id = str(uuid.uuid4())
        return self.key_id
