import enum

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from integrahub.models.base import AuditMixin, Base, TenantMixin, UUIDPrimaryKeyMixin


class IntegrationRunState(str, enum.Enum):
    """Run states. Only PENDING is ever written by the orchestrator."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IntegrationRun(Base, UUIDPrimaryKeyMixin, TenantMixin, AuditMixin):
    """One onboarding or refresh attempt for an integration."""

    __tablename__ = "integration_runs"

    integration_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    onboarding: Mapped[bool] = mapped_column(
        Boolean, server_default="false", nullable=False
    )
    state: Mapped[str] = mapped_column(
        String(20), server_default="pending", nullable=False
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
