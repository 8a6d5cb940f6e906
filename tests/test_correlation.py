from __future__ import annotations

import uuid

from cqrs_ddd_pubsub.correlation import (
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def test_set_accepts_strings_and_uuids() -> None:
    value = uuid.uuid4()
    try:
        set_correlation_id(str(value))
        assert get_correlation_id() == value
        other = generate_correlation_id()
        set_correlation_id(other)
        assert get_correlation_id() == other
    finally:
        set_correlation_id(None)
    assert get_correlation_id() is None
