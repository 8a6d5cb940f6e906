"""In-memory backend for tests and local runs."""

from __future__ import annotations

from .broker import InMemoryBroker, InMemoryKeyManagement

__all__ = ["InMemoryBroker", "InMemoryKeyManagement"]
