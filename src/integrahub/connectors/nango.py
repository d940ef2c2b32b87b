"""Nango client for OAuth tokens held on behalf of tenants."""

from __future__ import annotations

from typing import Any

import httpx

from integrahub.config import Settings
from integrahub.connectors.base import CredentialExchangeError, build_client


class NangoConnector:
    """Read connection credentials and proxy provider API calls through Nango.

    Args:
        base_url: Nango server URL.
        secret_key: Nango secret key.
        timeout: Seconds allowed per HTTP operation.
        transport: Optional httpx transport (tests).
    """

    platform = "nango"

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> NangoConnector:
        return cls(
            base_url=settings.nango_url,
            secret_key=settings.nango_secret_key,
            timeout=settings.credential_exchange_timeout,
        )

    def _client(self) -> httpx.AsyncClient:
        return build_client(
            self.timeout,
            self._transport,
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )

    async def get_token(self, connection_id: str, provider_config_key: str) -> str | None:
        """Return the access token Nango holds for a connection, if any.

        Raises:
            CredentialExchangeError: If Nango cannot be queried.
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"/connection/{connection_id}",
                    params={"provider_config_key": provider_config_key},
                )
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CredentialExchangeError(
                provider_config_key, f"token lookup for {connection_id} failed: {exc}"
            ) from exc
        return (body.get("credentials") or {}).get("access_token")

    async def proxy_get(
        self,
        connection_id: str,
        provider_config_key: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET a provider API path through the Nango proxy.

        Raises:
            CredentialExchangeError: If the proxied call fails.
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"/proxy{path}",
                    params=params,
                    headers={
                        "Connection-Id": connection_id,
                        "Provider-Config-Key": provider_config_key,
                    },
                )
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CredentialExchangeError(
                provider_config_key, f"proxy GET {path} failed: {exc}"
            ) from exc
