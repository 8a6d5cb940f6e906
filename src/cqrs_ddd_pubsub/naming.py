"""Deterministic topic/queue name resolution.

Naming contract (every provisioning and consumption step relies on it)::

    topic_name = queue_name = "_".join(non-empty [prefix, source, key, suffix])
    event_name = ".".join(non-empty [prefix, source, key, suffix])
    raw_name   = key

Characters outside ``[A-Za-z0-9_-]`` in the joined queue/topic name are
replaced with ``_`` so the result is a valid SQS/SNS resource name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .exceptions import ConfigurationError

DEAD_LETTER_PREFIX = "dead_letter_"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class NameOverride:
    """Per-registration override of the global prefix/suffix.

    ``None`` falls back to the global value; ``raw=True`` forces both to
    empty strings regardless of the global naming config.
    """

    prefix: str | None = None
    suffix: str | None = None
    raw: bool = False

    @classmethod
    def raw_names(cls) -> NameOverride:
        return cls(prefix="", suffix="", raw=True)

    def has_values(self) -> bool:
        return self.raw or self.prefix is not None or self.suffix is not None


@dataclass(frozen=True)
class NamingConfig:
    """Process-wide naming used when no override is given."""

    source: str = ""
    prefix: str = ""
    suffix: str = ""


@dataclass(frozen=True)
class TopicId:
    """Resolved identity of a logical topic."""

    topic_name: str
    queue_name: str
    raw_name: str
    event_name: str

    @property
    def dead_letter_queue_name(self) -> str:
        return dead_letter_name(self.queue_name)


def dead_letter_name(queue_name: str) -> str:
    """Return the dead-letter queue name for *queue_name*."""
    return f"{DEAD_LETTER_PREFIX}{queue_name}"


def resolve(
    topic_key: str,
    naming: NamingConfig,
    override: NameOverride | None = None,
) -> TopicId:
    """Resolve *topic_key* into a :class:`TopicId`.

    Raises:
        ConfigurationError: If *topic_key* is empty.
    """
    if not topic_key or not topic_key.strip():
        raise ConfigurationError("Topic key must be a non-empty string")

    if override is not None and override.raw:
        prefix, suffix = "", ""
    else:
        prefix = naming.prefix
        suffix = naming.suffix
        if override is not None:
            if override.prefix is not None:
                prefix = override.prefix
            if override.suffix is not None:
                suffix = override.suffix

    parts = [p for p in (prefix, naming.source, topic_key, suffix) if p]
    name = _INVALID_CHARS.sub("_", "_".join(parts))
    return TopicId(
        topic_name=name,
        queue_name=name,
        raw_name=topic_key,
        event_name=".".join(parts),
    )
