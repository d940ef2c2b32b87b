"""GitHub OAuth and GitHub App credential exchange.

A GitHub connect needs three things from GitHub: a user token exchanged
from the OAuth ``code`` (validated against ``GET /user``), an installation
token minted with the App's private key, and the repositories the
installation can see.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any
from urllib.parse import parse_qs

import httpx
import jwt

from integrahub.config import Settings
from integrahub.connectors.base import CredentialExchangeError, build_client

logger = logging.getLogger(__name__)

GITHUB_OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"

_REPOS_PER_PAGE = 100
# GitHub rejects App JWTs valid for more than 10 minutes.
_APP_JWT_TTL_SECONDS = 540


class GitHubConnector:
    """Credential exchange against github.com for the GitHub App.

    Args:
        app_id: GitHub App id, used as the JWT issuer.
        client_id: OAuth client id of the App.
        client_secret: OAuth client secret of the App.
        private_key: PEM private key of the App.
        timeout: Seconds allowed per HTTP operation.
        transport: Optional httpx transport (tests).
    """

    platform = "github"

    def __init__(
        self,
        app_id: str,
        client_id: str,
        client_secret: str,
        private_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.app_id = app_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.private_key = private_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GitHubConnector:
        """Build a connector from settings, decoding a base64 private key if flagged."""
        private_key = settings.github_private_key
        if settings.github_private_key_base64 and private_key:
            private_key = base64.b64decode(private_key).decode("ascii")
        return cls(
            app_id=settings.github_app_id,
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            private_key=private_key,
            timeout=settings.credential_exchange_timeout,
        )

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return build_client(self.timeout, self._transport, **kwargs)

    async def exchange_code(self, code: str) -> str:
        """Exchange an OAuth ``code`` for a user access token.

        Raises:
            CredentialExchangeError: If GitHub returns no token.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    GITHUB_OAUTH_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CredentialExchangeError(self.platform, f"code exchange failed: {exc}") from exc

        fields = parse_qs(response.text)
        if "error" in fields or not fields.get("access_token"):
            error = fields.get("error", ["missing access_token"])[0]
            raise CredentialExchangeError(self.platform, f"code exchange rejected: {error}")
        return fields["access_token"][0]

    async def validate_token(self, token: str) -> None:
        """Check the token against the authenticated-user endpoint.

        Raises:
            CredentialExchangeError: If GitHub does not accept the token.
        """
        try:
            async with self._client(base_url=GITHUB_API_URL) as client:
                response = await client.get(
                    "/user", headers={"Authorization": f"token {token}"}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CredentialExchangeError(self.platform, f"invalid user token: {exc}") from exc

    def _app_jwt(self) -> str:
        now = int(time.time())
        try:
            return jwt.encode(
                {"iat": now - 60, "exp": now + _APP_JWT_TTL_SECONDS, "iss": self.app_id},
                self.private_key,
                algorithm="RS256",
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise CredentialExchangeError(self.platform, f"cannot sign App JWT: {exc}") from exc

    async def get_install_token(self, install_id: str) -> str:
        """Return an installation access token for a GitHub App installation.

        Raises:
            CredentialExchangeError: If the installation cannot be authenticated.
        """
        app_jwt = self._app_jwt()
        try:
            async with self._client(base_url=GITHUB_API_URL) as client:
                response = await client.post(
                    f"/app/installations/{install_id}/access_tokens",
                    headers={
                        "Authorization": f"Bearer {app_jwt}",
                        "Accept": "application/vnd.github+json",
                    },
                )
                response.raise_for_status()
                token = response.json().get("token")
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            raise CredentialExchangeError(
                self.platform, f"installation {install_id} token failed: {exc}"
            ) from exc
        if not token:
            raise CredentialExchangeError(
                self.platform, f"installation {install_id} returned no token"
            )
        return token

    async def list_installed_repositories(self, install_token: str) -> list[dict[str, Any]]:
        """List every repository the installation can access.

        Returns:
            Repository dicts shaped for the GitHub settings document.
        """
        repos: list[dict[str, Any]] = []
        page = 1
        try:
            async with self._client(base_url=GITHUB_API_URL) as client:
                while True:
                    response = await client.get(
                        "/installation/repositories",
                        params={"per_page": _REPOS_PER_PAGE, "page": page},
                        headers={
                            "Authorization": f"token {install_token}",
                            "Accept": "application/vnd.github+json",
                        },
                    )
                    response.raise_for_status()
                    batch = response.json().get("repositories", [])
                    repos.extend(_repository_to_settings(repo) for repo in batch)
                    if len(batch) < _REPOS_PER_PAGE:
                        break
                    page += 1
        except (
            httpx.HTTPError,
            ValueError,
            KeyError,
            TypeError,
            AttributeError,
        ) as exc:
            raise CredentialExchangeError(
                self.platform, f"listing installed repositories failed: {exc}"
            ) from exc

        logger.info("Installation exposes %d repositories", len(repos))
        return repos


def _repository_to_settings(repo: dict[str, Any]) -> dict[str, Any]:
    return {
        "url": repo["html_url"],
        "name": repo["name"],
        "createdAt": repo.get("created_at"),
        "owner": (repo.get("owner") or {}).get("login"),
        "fork": repo.get("fork", False),
        "private": repo.get("private", False),
        "cloneUrl": repo.get("clone_url"),
    }
