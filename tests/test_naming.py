"""Tests for topic/queue name resolution."""

from __future__ import annotations

import pytest

from cqrs_ddd_pubsub.exceptions import ConfigurationError
from cqrs_ddd_pubsub.naming import (
    NameOverride,
    NamingConfig,
    TopicId,
    dead_letter_name,
    resolve,
)

NAMING = NamingConfig(source="billing", prefix="dev", suffix="v1")


def test_resolve_joins_non_empty_parts() -> None:
    topic = resolve("orders", NAMING)
    assert topic == TopicId(
        topic_name="dev_billing_orders_v1",
        queue_name="dev_billing_orders_v1",
        raw_name="orders",
        event_name="dev.billing.orders.v1",
    )


def test_resolve_without_global_naming() -> None:
    topic = resolve("orders", NamingConfig())
    assert topic.queue_name == "orders"
    assert topic.event_name == "orders"
    assert topic.dead_letter_queue_name == "dead_letter_orders"


def test_resolve_is_deterministic() -> None:
    override = NameOverride(prefix="qa")
    assert resolve("orders", NAMING, override) == resolve("orders", NAMING, override)


def test_override_replaces_only_given_parts() -> None:
    topic = resolve("orders", NAMING, NameOverride(prefix="qa"))
    assert topic.queue_name == "qa_billing_orders_v1"

    topic = resolve("orders", NAMING, NameOverride(suffix=""))
    assert topic.queue_name == "dev_billing_orders"


@pytest.mark.parametrize(
    "naming",
    [
        NamingConfig(source="s", prefix="p", suffix="x"),
        NamingConfig(prefix="only-prefix"),
        NamingConfig(),
    ],
)
def test_raw_override_forces_empty_prefix_and_suffix(naming: NamingConfig) -> None:
    topic = resolve("orders", naming, NameOverride.raw_names())
    expected = "_".join(p for p in (naming.source, "orders") if p)
    assert topic.queue_name == expected
    assert topic.topic_name == expected


def test_raw_flag_wins_over_override_values() -> None:
    topic = resolve("orders", NAMING, NameOverride(prefix="qa", suffix="z", raw=True))
    assert topic.queue_name == "billing_orders"


def test_invalid_characters_are_replaced() -> None:
    topic = resolve("orders.created", NamingConfig())
    assert topic.queue_name == "orders_created"
    assert topic.event_name == "orders.created"
    assert topic.raw_name == "orders.created"


@pytest.mark.parametrize("key", ["", "   "])
def test_empty_topic_key_raises(key: str) -> None:
    with pytest.raises(ConfigurationError, match="non-empty"):
        resolve(key, NAMING)


def test_has_values() -> None:
    assert not NameOverride().has_values()
    assert NameOverride(prefix="").has_values()
    assert NameOverride.raw_names().has_values()


def test_dead_letter_name() -> None:
    assert dead_letter_name("orders") == "dead_letter_orders"
