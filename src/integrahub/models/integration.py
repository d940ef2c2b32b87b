import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from integrahub.models.base import AuditMixin, Base, TenantMixin, UUIDPrimaryKeyMixin


class PlatformType(str, enum.Enum):
    """External services a tenant can connect."""

    GITHUB = "github"
    DISCORD = "discord"
    LINKEDIN = "linkedin"
    REDDIT = "reddit"
    SLACK = "slack"
    TWITTER = "twitter"
    STACKOVERFLOW = "stackoverflow"
    DISCOURSE = "discourse"
    HACKERNEWS = "hackernews"
    DEVTO = "devto"
    GIT = "git"


class IntegrationStatus(str, enum.Enum):
    """Lifecycle status of an integration."""

    WAITING_APPROVAL = "waiting-approval"
    PENDING_ACTION = "pending-action"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"


class Integration(Base, UUIDPrimaryKeyMixin, TenantMixin, AuditMixin):
    """A tenant's connection to one external platform."""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "platform", name="uq_integration_tenant_platform"),
    )

    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), server_default="in-progress", nullable=False
    )
    token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    integration_identifier: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict, nullable=False
    )
    limit_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    limit_last_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    import_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
