"""Integrations and integration runs schema.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Changes:
- Create integrations table, unique per (tenant_id, platform)
- Create integration_runs table
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create integrations and integration_runs tables."""

    # 1. Integrations -- one row per tenant and platform
    op.create_table(
        "integrations",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=False), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), server_default="in-progress", nullable=False),
        sa.Column("token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("integration_identifier", sa.String(255), nullable=True),
        sa.Column("settings", JSONB(), server_default="{}", nullable=False),
        sa.Column("limit_count", sa.Integer(), nullable=True),
        sa.Column("limit_last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("import_hash", sa.String(255), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("tenant_id", "platform", name="uq_integration_tenant_platform"),
    )
    op.create_index("ix_integrations_tenant_id", "integrations", ["tenant_id"])

    # 2. Integration runs -- state past 'pending' is owned by the run worker
    op.create_table(
        "integration_runs",
        sa.Column("id", UUID(as_uuid=False), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=False), nullable=False),
        sa.Column(
            "integration_id",
            UUID(as_uuid=False),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("onboarding", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("state", sa.String(20), server_default="pending", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_integration_runs_tenant_id", "integration_runs", ["tenant_id"])
    op.create_index(
        "ix_integration_runs_integration_id", "integration_runs", ["integration_id"]
    )


def downgrade() -> None:
    """Drop integration_runs and integrations tables."""
    op.drop_index("ix_integration_runs_integration_id", table_name="integration_runs")
    op.drop_index("ix_integration_runs_tenant_id", table_name="integration_runs")
    op.drop_table("integration_runs")
    op.drop_index("ix_integrations_tenant_id", table_name="integrations")
    op.drop_table("integrations")
