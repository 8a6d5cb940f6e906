"""AWS client management: one shared aiobotocore client per service."""

from __future__ import annotations

from typing import Any

from aiobotocore.session import AioSession


class AWSConnectionManager:
    """Manages aiobotocore clients for SQS, SNS, EventBridge and KMS.

    Clients are created lazily and shared; they are safe for concurrent use.
    """

    def __init__(
        self,
        region_name: str = "us-east-1",
        *,
        endpoint_url: str | None = None,
        session: AioSession | None = None,
        **client_kwargs: Any,
    ) -> None:
        """Configure region, optional endpoint override (localstack) and session."""
        self._region = region_name
        self._endpoint_url = endpoint_url
        self._session = session or AioSession()
        self._client_kwargs = client_kwargs
        self._clients: dict[str, Any] = {}
        self._client_cms: dict[str, Any] = {}

    async def get_client(self, service: str) -> Any:
        """Return the shared client for *service*; create if needed."""
        client = self._clients.get(service)
        if client is None:
            kwargs = dict(self._client_kwargs)
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            client_cm = self._session.create_client(
                service,
                region_name=self._region,
                **kwargs,
            )
            client = await client_cm.__aenter__()
            self._client_cms[service] = client_cm
            self._clients[service] = client
        return client

    async def close(self) -> None:
        """Close every open client."""
        cms = list(self._client_cms.values())
        self._client_cms.clear()
        self._clients.clear()
        for client_cm in cms:
            await client_cm.__aexit__(None, None, None)

    async def health_check(self) -> bool:
        """Return True if we can list queues (lightweight check)."""
        try:
            client = await self.get_client("sqs")
            await client.list_queues(MaxResults=1)
            return True
        except Exception:  # noqa: BLE001
            return False
