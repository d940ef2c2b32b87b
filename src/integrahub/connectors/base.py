"""Shared plumbing for credential exchange connectors."""

from __future__ import annotations

import httpx


class CredentialExchangeError(Exception):
    """A third-party platform rejected or failed a credential call."""

    def __init__(self, platform: str, message: str) -> None:
        self.platform = platform
        super().__init__(f"{platform}: {message}")


def build_client(
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs,
) -> httpx.AsyncClient:
    """Create an AsyncClient bounded by ``timeout`` seconds per operation.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """
    return httpx.AsyncClient(timeout=timeout, transport=transport, **kwargs)
