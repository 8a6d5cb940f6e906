"""Typed pub/sub over managed topics and queues: naming, provisioning,
polling consumers and the two-layer message envelope."""

from __future__ import annotations

from .cache import QueueInfo, QueueMetadataCache
from .codec import DecodeResult, EnvelopeCodec
from .config import PubSubConfig
from .correlation import get_correlation_id, set_correlation_id
from .dead_letter import DeadLetterReader
from .diagnostics import NullDiagnostics, TelemetryDiagnostics
from .envelope import BrokerEnvelope, MessageEnvelope, PayloadEnvelope
from .exceptions import (
    ConfigurationError,
    DeserializationError,
    DispatchTimeoutError,
    EnvelopeError,
    HandlerError,
    ProvisioningError,
    ProvisioningFailure,
    PubSubError,
    SerializationError,
)
from .host import PubSubHost
from .naming import NameOverride, NamingConfig, TopicId, resolve
from .provisioning import BootstrapResult, ProvisioningOrchestrator
from .publisher import TopicPublisher
from .queues import QueueResolver
from .registry import (
    ConsumerConfig,
    ConsumerDescriber,
    ProducerDescriber,
    PubSubBuilder,
    PubSubRegistry,
)
from .scheduler import BatchOutcome, ConsumerScheduler, ConsumerState, ConsumerWorker

__all__ = [
    "BatchOutcome",
    "BootstrapResult",
    "BrokerEnvelope",
    "ConfigurationError",
    "ConsumerConfig",
    "ConsumerDescriber",
    "ConsumerScheduler",
    "ConsumerState",
    "ConsumerWorker",
    "DeadLetterReader",
    "DecodeResult",
    "DeserializationError",
    "DispatchTimeoutError",
    "EnvelopeCodec",
    "EnvelopeError",
    "HandlerError",
    "MessageEnvelope",
    "NameOverride",
    "NamingConfig",
    "NullDiagnostics",
    "PayloadEnvelope",
    "ProducerDescriber",
    "ProvisioningError",
    "ProvisioningFailure",
    "ProvisioningOrchestrator",
    "PubSubBuilder",
    "PubSubConfig",
    "PubSubError",
    "PubSubHost",
    "PubSubRegistry",
    "QueueInfo",
    "QueueMetadataCache",
    "QueueResolver",
    "SerializationError",
    "TelemetryDiagnostics",
    "TopicId",
    "TopicPublisher",
    "get_correlation_id",
    "resolve",
    "set_correlation_id",
]
