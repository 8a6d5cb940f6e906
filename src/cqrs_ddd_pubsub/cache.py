"""QueueMetadataCache: process-lifetime view of queue URL/ARN/visibility timeout."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("cqrs_ddd.pubsub.cache")


@dataclass(frozen=True)
class QueueInfo:
    """Backend metadata for one queue. Replaced wholesale, never mutated."""

    url: str
    arn: str
    visibility_timeout: int

    def with_visibility_timeout(self, seconds: int) -> QueueInfo:
        return replace(self, visibility_timeout=seconds)


class QueueMetadataCache:
    """Map of resolved queue name to :class:`QueueInfo`.

    No time-based expiry: entries live until :meth:`clear`. Each stored entry
    carries the generation at which its resolution started; a write from an
    older resolution never replaces a newer one, and resolutions that started
    before a :meth:`clear` are discarded. Every read-compare-write runs
    without an ``await`` in between, so it is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[int, QueueInfo]] = {}
        self._generation = itertools.count(1)
        self._floor = 0

    def get(self, queue_name: str) -> QueueInfo | None:
        entry = self._entries.get(queue_name)
        return entry[1] if entry is not None else None

    def put(self, queue_name: str, info: QueueInfo) -> None:
        """Store *info* unconditionally as the newest value."""
        self._entries[queue_name] = (next(self._generation), info)

    async def get_or_resolve(
        self,
        queue_name: str,
        resolver: Callable[[], Awaitable[QueueInfo | None]],
    ) -> QueueInfo | None:
        """Return the cached entry or await *resolver* and cache its result.

        ``None`` results are not cached, so a missing queue is looked up
        again on the next call.
        """
        cached = self._entries.get(queue_name)
        if cached is not None:
            return cached[1]

        stamp = next(self._generation)
        info = await resolver()
        if info is None:
            return None
        self._store_if_newer(queue_name, stamp, info)
        return info

    def _store_if_newer(self, queue_name: str, stamp: int, info: QueueInfo) -> None:
        if stamp <= self._floor:
            logger.debug("Dropping resolution of %s started before clear", queue_name)
            return
        current = self._entries.get(queue_name)
        if current is not None and current[0] > stamp:
            return
        self._entries[queue_name] = (stamp, info)

    def clear(self) -> None:
        """Drop all entries; the next lookup goes to the backend."""
        self._floor = next(self._generation)
        self._entries.clear()

    def __contains__(self, queue_name: object) -> bool:
        return queue_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
