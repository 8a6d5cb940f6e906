"""AwsKeyManagement: queue encryption key lookup/creation by alias."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .connection import AWSConnectionManager

logger = logging.getLogger("cqrs_ddd.pubsub.aws")

_NOT_FOUND = "NotFoundException"


class AwsKeyManagement:
    """Resolves the queue encryption key through ``key_alias``."""

    def __init__(
        self,
        connection: AWSConnectionManager,
        *,
        key_alias: str = "alias/cqrs-ddd-pubsub",
    ) -> None:
        self._connection = connection
        self._key_alias = key_alias

    async def get_key_id(self) -> str | None:
        """Return the key id behind the alias, or None when the alias is unknown."""
        kms = await self._connection.get_client("kms")
        try:
            out = await kms.describe_key(KeyId=self._key_alias)
        except Exception as e:
            err = getattr(e, "response", {}) or {}
            if err.get("Error", {}).get("Code") == _NOT_FOUND:
                return None
            raise
        return str(out["KeyMetadata"]["KeyId"])

    async def create_key(self) -> str:
        """Create a key and register the alias for it; return the new key id."""
        kms = await self._connection.get_client("kms")
        out = await kms.create_key(Description="cqrs-ddd-pubsub queue encryption key")
        key_id = str(out["KeyMetadata"]["KeyId"])
        await kms.create_alias(AliasName=self._key_alias, TargetKeyId=key_id)
        logger.info("Created KMS key %s as %s", key_id, self._key_alias)
        return key_id
