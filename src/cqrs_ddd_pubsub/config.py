"""PubSubConfig: process-wide settings for naming, provisioning and polling."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .naming import NamingConfig


class PubSubConfig(BaseModel):
    """Immutable configuration.

    Accepts both snake_case field names and the camelCase keys used in
    external config files (``autoCreateNewTopic``, ``serviceUrl``, …).
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )

    source: str = ""
    prefix: str = ""
    suffix: str = ""
    localstack_mode: bool = False
    auto_create_new_topic: bool = True
    retries_before_dead_letter: int = Field(default=5, ge=1, le=1000)
    message_timeout_seconds: int = Field(default=30, ge=0, le=43200)
    message_delay_seconds: int = Field(default=0, ge=0, le=900)
    message_retention_days: int = Field(default=4, ge=1, le=14)
    queue_max_receive_count: int = Field(
        default=10, ge=1, le=10, description="Max messages per receive call"
    )
    long_polling_wait_seconds: int = Field(default=20, ge=0, le=20)
    service_url: str | None = None
    region: str = "us-east-1"
    kms_key_alias: str = "alias/cqrs-ddd-pubsub"
    tags: dict[str, str] = Field(default_factory=dict)

    @property
    def naming(self) -> NamingConfig:
        return NamingConfig(source=self.source, prefix=self.prefix, suffix=self.suffix)

    @property
    def message_retention_seconds(self) -> int:
        return self.message_retention_days * 86400
