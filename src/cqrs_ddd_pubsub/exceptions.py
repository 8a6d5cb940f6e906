"""Pub/sub exceptions for cqrs-ddd-pubsub."""

from __future__ import annotations

from dataclasses import dataclass


class PubSubError(Exception):
    """Root exception for the pub/sub layer."""


class ConfigurationError(PubSubError):
    """Raised when registrations or naming inputs are invalid.

    Always raised before any provisioning call is made.
    """


@dataclass(frozen=True)
class ProvisioningFailure:
    """One describer whose provisioning failed."""

    role: str
    topic_key: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.role} '{self.topic_key}': {self.error}"


class ProvisioningError(PubSubError):
    """Raised when a topic, queue or encryption key cannot be set up.

    Carries the resolved ``topic`` name when a single resource is concerned,
    or the list of ``failures`` when aggregating a bootstrap run.
    """

    def __init__(
        self,
        message: str,
        *,
        topic: str | None = None,
        failures: list[ProvisioningFailure] | None = None,
    ) -> None:
        self.topic = topic
        self.failures = failures or []
        super().__init__(message)


class EnvelopeError(PubSubError):
    """Base class for envelope encoding/decoding errors."""


class SerializationError(EnvelopeError):
    """Raised when an outbound payload cannot be encoded."""


class DeserializationError(EnvelopeError):
    """Raised when an inbound broker record cannot be decoded."""

    def __init__(
        self,
        message: str,
        *,
        message_id: str | None = None,
        body: str | None = None,
        stage: str = "envelope",
    ) -> None:
        self.message_id = message_id
        self.body = body
        self.stage = stage
        super().__init__(message)


class DispatchTimeoutError(PubSubError):
    """A handler exceeded its consume timeout; the message stays unacknowledged."""

    def __init__(self, message_id: str, timeout: float) -> None:
        self.message_id = message_id
        self.timeout = timeout
        super().__init__(f"Dispatch of message {message_id} exceeded {timeout}s")


class HandlerError(PubSubError):
    """A handler raised; the message stays unacknowledged for redelivery."""

    def __init__(self, message_id: str, cause: BaseException) -> None:
        self.message_id = message_id
        self.cause = cause
        super().__init__(f"Handler failed for message {message_id}: {cause}")
