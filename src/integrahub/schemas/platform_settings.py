"""Per-platform settings documents stored in ``Integration.settings``.

The column holds a loosely typed JSON object. Each platform has its own
pydantic model describing that object; :data:`SETTINGS_DOCUMENTS` maps a
platform to its model so the store can stay generic while flows build and
read settings with field-level validation.

Documents are stored with camelCase keys (``updateMemberAttributes``,
``inUse``) because workers consume them as-is.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from integrahub.models.integration import PlatformType


class SettingsDocument(BaseModel):
    """Base for all settings documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemberSettingsDocument(SettingsDocument):
    """Settings for platforms whose workers emit member data."""

    update_member_attributes: bool = True


class GithubRepository(SettingsDocument):
    url: str
    name: str
    created_at: str | None = None
    owner: str | None = None
    fork: bool = False
    private: bool = False
    clone_url: str | None = None


class GithubSettings(MemberSettingsDocument):
    repos: list[GithubRepository] = Field(default_factory=list)


class DiscordSettings(MemberSettingsDocument):
    channels: list[dict[str, Any]] = Field(default_factory=list)


class LinkedInOrganization(SettingsDocument):
    id: int | str
    name: str | None = None
    profile_picture_url: str | None = None
    in_use: bool = False


class LinkedInSettings(MemberSettingsDocument):
    organizations: list[LinkedInOrganization] = Field(default_factory=list)

    def find_organization(self, organization_id: int | str) -> LinkedInOrganization | None:
        """Return the organization whose id matches, comparing as strings."""
        for organization in self.organizations:
            if str(organization.id) == str(organization_id):
                return organization
        return None


class RedditSettings(MemberSettingsDocument):
    subreddits: list[str] = Field(default_factory=list)


class DevtoSettings(MemberSettingsDocument):
    users: list[str] = Field(default_factory=list)
    organizations: list[str] = Field(default_factory=list)
    articles: list[dict[str, Any]] = Field(default_factory=list)


class GitSettings(SettingsDocument):
    remotes: list[str] = Field(default_factory=list)


class HackerNewsSettings(MemberSettingsDocument):
    keywords: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)


class SlackSettings(MemberSettingsDocument):
    """Slack settings; extra keys from the OAuth callback are preserved."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    channels: list[dict[str, Any]] | None = None


class TwitterSettings(MemberSettingsDocument):
    followers: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)


class StackOverflowSettings(MemberSettingsDocument):
    tags: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class DiscourseSettings(MemberSettingsDocument):
    api_key: str
    api_username: str
    forum_hostname: str
    webhook_secret: str | None = None


SETTINGS_DOCUMENTS: dict[PlatformType, type[SettingsDocument]] = {
    PlatformType.GITHUB: GithubSettings,
    PlatformType.DISCORD: DiscordSettings,
    PlatformType.LINKEDIN: LinkedInSettings,
    PlatformType.REDDIT: RedditSettings,
    PlatformType.SLACK: SlackSettings,
    PlatformType.TWITTER: TwitterSettings,
    PlatformType.STACKOVERFLOW: StackOverflowSettings,
    PlatformType.DISCOURSE: DiscourseSettings,
    PlatformType.HACKERNEWS: HackerNewsSettings,
    PlatformType.DEVTO: DevtoSettings,
    PlatformType.GIT: GitSettings,
}


def parse_settings(platform: PlatformType | str, raw: dict[str, Any] | None) -> SettingsDocument:
    """Validate a stored settings object against its platform's document model.

    Raises:
        KeyError: If the platform has no registered document.
        pydantic.ValidationError: If ``raw`` does not fit the document.
    """
    document_cls = SETTINGS_DOCUMENTS[PlatformType(platform)]
    return document_cls.model_validate(raw or {})


def dump_settings(document: SettingsDocument) -> dict[str, Any]:
    """Serialize a settings document into the stored JSON shape."""
    return document.model_dump(by_alias=True, exclude_none=True)
