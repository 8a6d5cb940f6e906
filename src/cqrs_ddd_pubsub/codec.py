"""EnvelopeCodec: two-layer envelope encoding and broker record decoding."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from .envelope import BrokerEnvelope, MessageEnvelope, PayloadEnvelope
from .exceptions import DeserializationError, SerializationError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

logger = logging.getLogger("cqrs_ddd.pubsub.codec")

RECEIVE_COUNT_ATTRIBUTE = "ApproximateReceiveCount"


@dataclass(frozen=True)
class DecodeResult:
    """Per-record outcome of :meth:`EnvelopeCodec.decode_batch`."""

    record: dict[str, Any]
    envelope: MessageEnvelope | None = None
    error: DeserializationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str | None:
        """Failing stage (``envelope``, ``payload``, ``hydration``) or None."""
        return self.error.stage if self.error is not None else None


def _normalize_payload(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (bytes, bytearray)):
        return json.loads(payload.decode("utf-8"))
    return payload


def receive_count(record: dict[str, Any]) -> int:
    """Backend receive count of *record*; 0 when absent or unparsable."""
    raw = (record.get("Attributes") or {}).get(RECEIVE_COUNT_ATTRIBUTE)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


class EnvelopeCodec:
    """Encode outbound payloads and decode inbound broker records."""

    def encode_payload(
        self,
        payload: Any,
        *,
        correlation_id: uuid.UUID | None = None,
        message_id: uuid.UUID | None = None,
        timestamp: datetime | None = None,
    ) -> str:
        """Return the inner envelope JSON for *payload*.

        Pydantic models are dumped in JSON mode; ``bytes`` are taken as raw
        JSON text.
        """
        try:
            fields: dict[str, Any] = {
                "message_id": message_id or uuid.uuid4(),
                "correlation_id": correlation_id,
                "payload": _normalize_payload(payload),
            }
            if timestamp is not None:
                fields["date_time"] = timestamp
            inner = PayloadEnvelope(**fields)
            return inner.model_dump_json(by_alias=True)
        except (
            PydanticSerializationError,
            ValidationError,
            UnicodeDecodeError,
            ValueError,
            TypeError,
        ) as e:
            raise SerializationError(str(e)) from e

    def encode(
        self,
        payload: Any,
        *,
        topic_arn: str | None = None,
        correlation_id: uuid.UUID | None = None,
        message_id: uuid.UUID | None = None,
    ) -> str:
        """Return the outer broker envelope JSON wrapping the inner envelope."""
        inner = self.encode_payload(
            payload, correlation_id=correlation_id, message_id=message_id
        )
        outer = BrokerEnvelope(
            message_id=uuid.uuid4(), message=inner, topic_arn=topic_arn
        )
        return outer.model_dump_json(by_alias=True)

    def decode(self, record: dict[str, Any], queue_url: str) -> MessageEnvelope:
        """Decode one raw broker record.

        Raises:
            DeserializationError: If the outer or inner envelope is malformed.
                The failure is logged at CRITICAL before raising.
        """
        body = record.get("Body", "")
        record_id = record.get("MessageId")
        stage = "envelope"
        try:
            outer = BrokerEnvelope.model_validate_json(body)
            logger.debug("Received %s payload: %s", queue_url, outer.message)
            stage = "payload"
            inner = PayloadEnvelope.model_validate_json(outer.message)
        except (ValidationError, ValueError, TypeError) as e:
            logger.critical("Bad Message: %s", body, exc_info=True)
            raise DeserializationError(
                f"Unable to decode {stage} of message {record_id}: {e}",
                message_id=record_id,
                body=body if isinstance(body, str) else None,
                stage=stage,
            ) from e

        return MessageEnvelope(
            message_id=inner.message_id or outer.message_id,
            correlation_id=inner.correlation_id,
            timestamp=inner.date_time,
            payload=inner.payload,
            # Carried forward unchanged: first receive is 0, a missing count is -1.
            retry_number=receive_count(record) - 1,
            queue_url=queue_url,
            topic_arn=outer.topic_arn,
            receipt_handle=record.get("ReceiptHandle", ""),
            raw_message=outer.message,
        )

    def decode_batch(
        self, records: Iterable[dict[str, Any]], queue_url: str
    ) -> list[DecodeResult]:
        """Decode every record, keeping failures alongside successes."""
        results: list[DecodeResult] = []
        for record in records:
            try:
                results.append(
                    DecodeResult(record=record, envelope=self.decode(record, queue_url))
                )
            except DeserializationError as e:
                results.append(DecodeResult(record=record, error=e))
        return results

    def hydrate(
        self, envelope: MessageEnvelope, message_type: type[Any] | None
    ) -> MessageEnvelope:
        """Return *envelope* with its payload validated into *message_type*.

        Payloads are left as parsed JSON when *message_type* is None or not a
        pydantic model.
        """
        if message_type is None or not (
            isinstance(message_type, type) and issubclass(message_type, BaseModel)
        ):
            return envelope
        try:
            return envelope.with_payload(message_type.model_validate(envelope.payload))
        except ValidationError as e:
            logger.critical(
                "Payload of message %s does not match %s",
                envelope.message_id,
                message_type.__name__,
                exc_info=True,
            )
            raise DeserializationError(
                str(e),
                message_id=str(envelope.message_id),
                body=envelope.raw_message,
                stage="hydration",
            ) from e
