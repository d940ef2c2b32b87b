"""Pydantic v2 request schemas for the integration connect/onboard API.

One request model per platform flow. Response data uses the generic
JSONAPIResource type with integration attributes mapped inline.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from integrahub.models.integration import PlatformType


class GithubConnectRequest(BaseModel):
    """GitHub App installation callback.

    ``setup_action`` is ``install`` for a completed installation or
    ``request`` when an organization owner still has to approve it.
    """

    code: str | None = None
    install_id: str
    setup_action: str = "install"


class DiscordConnectRequest(BaseModel):
    guild_id: str = Field(..., min_length=1)


class LinkedInOnboardRequest(BaseModel):
    organization_id: str = Field(..., min_length=1)


class RedditOnboardRequest(BaseModel):
    subreddits: list[str] = Field(..., min_length=1)


class DevtoConnectRequest(BaseModel):
    users: list[str] = Field(default_factory=list)
    organizations: list[str] = Field(default_factory=list)


class GitConnectRequest(BaseModel):
    remotes: list[str] = Field(default_factory=list)


class HackerNewsConnectRequest(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)


class SlackCallbackRequest(BaseModel):
    """Data captured by the Slack OAuth callback."""

    token: str | None = None
    integration_identifier: str | None = None
    settings: dict[str, Any] | None = None


class TwitterCallbackRequest(BaseModel):
    """Data captured by the Twitter OAuth callback.

    ``hashtags`` accepts a list or a comma-separated string.
    """

    profile_id: str
    token: str
    refresh_token: str | None = None
    hashtags: list[str] | str | None = None


class StackOverflowConnectRequest(BaseModel):
    tags: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class DiscourseConnectRequest(BaseModel):
    api_key: str
    api_username: str
    forum_hostname: str
    webhook_secret: str | None = None


class ImportIntegrationRequest(BaseModel):
    """Import a pre-built integration row, deduplicated by ``import_hash``."""

    import_hash: str | None = None
    platform: PlatformType
    status: str | None = None
    token: str | None = None
    refresh_token: str | None = None
    integration_identifier: str | None = None
    settings: dict[str, Any] | None = None
