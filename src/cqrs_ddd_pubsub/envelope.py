"""Wire envelopes and the decoded MessageEnvelope.

Wire format (compact JSON, field names as shown)::

    outer: {"MessageId": <uuid>, "Message": <inner JSON string>, "TopicArn": <str|null>}
    inner: {"MessageId": <uuid|null>, "CorrelationId": <uuid|null>,
            "DateTime": <timestamp>, "Payload": <raw JSON>}
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BrokerEnvelope(BaseModel):
    """Outer envelope as delivered by the topic to a subscribed queue."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_id: uuid.UUID = Field(alias="MessageId")
    message: str = Field(alias="Message")
    topic_arn: str | None = Field(default=None, alias="TopicArn")


class PayloadEnvelope(BaseModel):
    """Inner envelope carrying the application payload and tracing ids."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_id: uuid.UUID | None = Field(default=None, alias="MessageId")
    correlation_id: uuid.UUID | None = Field(default=None, alias="CorrelationId")
    date_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="DateTime"
    )
    payload: Any = Field(default=None, alias="Payload")


class MessageEnvelope(BaseModel):
    """Decoded inbound message, consumed once by a handler dispatch."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    message_id: uuid.UUID
    correlation_id: uuid.UUID | None = None
    timestamp: datetime
    payload: Any = None
    retry_number: int = Field(default=0, description="Receive count minus one")
    queue_url: str = ""
    topic_arn: str | None = None
    receipt_handle: str = ""
    raw_message: str = ""

    def with_payload(self, payload: Any) -> MessageEnvelope:
        return self.model_copy(update={"payload": payload})
