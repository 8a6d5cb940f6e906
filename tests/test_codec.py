"""Tests for EnvelopeCodec encode/decode."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import pytest
from pydantic import BaseModel

from cqrs_ddd_pubsub.codec import EnvelopeCodec, receive_count
from cqrs_ddd_pubsub.exceptions import DeserializationError, SerializationError

QUEUE_URL = "https://sqs.local/000000000000/orders"


class OrderPlaced(BaseModel):
    order_id: int


def _record(body: str, count: Any = "1") -> dict[str, Any]:
    record: dict[str, Any] = {
        "MessageId": str(uuid.uuid4()),
        "ReceiptHandle": "rh-1",
        "Body": body,
    }
    if count is not None:
        record["Attributes"] = {"ApproximateReceiveCount": count}
    return record


@pytest.fixture
def codec() -> EnvelopeCodec:
    return EnvelopeCodec()


def test_encode_produces_two_layer_envelope(codec: EnvelopeCodec) -> None:
    correlation_id = uuid.uuid4()
    body = codec.encode(
        {"orderId": 42}, topic_arn="arn:topic", correlation_id=correlation_id
    )
    outer = json.loads(body)
    assert set(outer) == {"MessageId", "Message", "TopicArn"}
    inner = json.loads(outer["Message"])
    assert inner["Payload"] == {"orderId": 42}
    assert inner["CorrelationId"] == str(correlation_id)
    assert "DateTime" in inner
    assert uuid.UUID(inner["MessageId"])


def test_encode_accepts_models_and_raw_json_bytes(codec: EnvelopeCodec) -> None:
    inner = json.loads(codec.encode_payload(OrderPlaced(order_id=7)))
    assert inner["Payload"] == {"order_id": 7}

    inner = json.loads(codec.encode_payload(b'{"a": [1, 2]}'))
    assert inner["Payload"] == {"a": [1, 2]}


def test_encode_rejects_invalid_raw_json(codec: EnvelopeCodec) -> None:
    with pytest.raises(SerializationError):
        codec.encode_payload(b"not json")


def test_decode_round_trip_fields(codec: EnvelopeCodec) -> None:
    correlation_id = uuid.uuid4()
    message_id = uuid.uuid4()
    body = codec.encode(
        {"orderId": 42},
        topic_arn="arn:topic",
        correlation_id=correlation_id,
        message_id=message_id,
    )
    envelope = codec.decode(_record(body, count="3"), QUEUE_URL)
    assert envelope.message_id == message_id
    assert envelope.correlation_id == correlation_id
    assert envelope.payload == {"orderId": 42}
    assert envelope.retry_number == 2
    assert envelope.queue_url == QUEUE_URL
    assert envelope.topic_arn == "arn:topic"
    assert envelope.receipt_handle == "rh-1"
    assert json.loads(envelope.raw_message)["Payload"] == {"orderId": 42}


@pytest.mark.parametrize(
    "count, expected", [("1", 0), ("3", 2), ("0", -1), (None, -1), ("x", -1)]
)
def test_retry_number_is_receive_count_minus_one(
    codec: EnvelopeCodec, count: Any, expected: int
) -> None:
    envelope = codec.decode(_record(codec.encode({}), count=count), QUEUE_URL)
    assert envelope.retry_number == expected


def test_receive_count_reads_attribute() -> None:
    assert receive_count({"Attributes": {"ApproximateReceiveCount": "5"}}) == 5
    assert receive_count({}) == 0


def test_decode_rejects_malformed_outer_and_logs_critical(
    codec: EnvelopeCodec, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.CRITICAL, logger="cqrs_ddd.pubsub.codec"):
        with pytest.raises(DeserializationError) as exc_info:
            codec.decode(_record("{not json"), QUEUE_URL)
    assert exc_info.value.stage == "envelope"
    assert exc_info.value.body == "{not json"
    assert any("Bad Message" in r.message for r in caplog.records)


def test_decode_rejects_malformed_inner(codec: EnvelopeCodec) -> None:
    body = json.dumps({"MessageId": str(uuid.uuid4()), "Message": "garbage"})
    with pytest.raises(DeserializationError) as exc_info:
        codec.decode(_record(body), QUEUE_URL)
    assert exc_info.value.stage == "payload"


def test_decode_falls_back_to_outer_message_id(codec: EnvelopeCodec) -> None:
    outer_id = uuid.uuid4()
    body = json.dumps(
        {"MessageId": str(outer_id), "Message": json.dumps({"Payload": {"x": 1}})}
    )
    envelope = codec.decode(_record(body), QUEUE_URL)
    assert envelope.message_id == outer_id
    assert envelope.correlation_id is None
    assert envelope.topic_arn is None


def test_decode_batch_keeps_going_past_bad_records(codec: EnvelopeCodec) -> None:
    good = _record(codec.encode({"n": 1}))
    bad = _record("nope")
    results = codec.decode_batch([good, bad, good], QUEUE_URL)
    assert [r.ok for r in results] == [True, False, True]
    assert results[1].kind == "envelope"
    assert results[1].envelope is None
    assert results[0].envelope is not None
    assert results[0].kind is None


def test_hydrate_validates_into_message_type(codec: EnvelopeCodec) -> None:
    envelope = codec.decode(_record(codec.encode({"order_id": 3})), QUEUE_URL)
    hydrated = codec.hydrate(envelope, OrderPlaced)
    assert hydrated.payload == OrderPlaced(order_id=3)
    assert codec.hydrate(envelope, None) is envelope


def test_hydrate_rejects_mismatched_payload(codec: EnvelopeCodec) -> None:
    envelope = codec.decode(_record(codec.encode({"other": 1})), QUEUE_URL)
    with pytest.raises(DeserializationError) as exc_info:
        codec.hydrate(envelope, OrderPlaced)
    assert exc_info.value.stage == "hydration"
