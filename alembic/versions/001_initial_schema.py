"""Initial schema: organizations, users, brokers, deals, activity logs, sync logs.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Tenant isolation is application-level: every tenant-owned table carries
organization_id and every query filters on it. activity_logs is scoped
through its deal.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── organizations ───────────────────────────────────────────────────

    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("company_id", sa.String(255), nullable=True),
        sa.Column("crm_type", sa.String(20), nullable=False, server_default="none"),
        sa.Column("crm_config", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_organizations_crm_type", "organizations", ["crm_type"])

    # ── users ───────────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="gestor"),
        sa.Column("auth_provider", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    # ── brokers ─────────────────────────────────────────────────────────

    op.create_table(
        "brokers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("crm_external_id", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_brokers_org_external_id", "brokers", ["organization_id", "crm_external_id"])
    op.create_index("ix_brokers_org_email", "brokers", ["organization_id", "email"])

    # ── deals ───────────────────────────────────────────────────────────

    op.create_table(
        "deals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("broker_id", sa.Uuid(), sa.ForeignKey("brokers.id"), nullable=True),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("client_phone", sa.String(50), nullable=True),
        sa.Column("client_email", sa.String(255), nullable=True),
        sa.Column("property_title", sa.Text(), nullable=True),
        sa.Column("property_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="New"),
        sa.Column("sentiment", sa.String(50), nullable=False, server_default="Neutral"),
        sa.Column("smart_summary", sa.Text(), nullable=True),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("potential_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("stage", sa.String(100), nullable=True),
        sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("potential_commission", sa.Numeric(12, 2), nullable=True),
        sa.Column("exclusivity", sa.JSON(), nullable=True),
        sa.Column("origin", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_deals_org_external_id", "deals", ["organization_id", "external_id"])
    op.create_index("ix_deals_org_property_title", "deals", ["organization_id", "property_title"])
    op.create_index("ix_deals_org_created_at", "deals", ["organization_id", "created_at"])

    # ── activity_logs ───────────────────────────────────────────────────

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("deal_id", sa.Uuid(), sa.ForeignKey("deals.id"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_activity_logs_deal_id", "activity_logs", ["deal_id"])
    op.create_index(
        "ix_activity_logs_type_external", "activity_logs", ["type", "external_id"]
    )

    # ── sync_logs ───────────────────────────────────────────────────────

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sync_logs_org_started_at", "sync_logs", ["organization_id", "started_at"])
    op.create_index("ix_sync_logs_status", "sync_logs", ["status"])


def downgrade() -> None:
    op.drop_table("sync_logs")
    op.drop_table("activity_logs")
    op.drop_table("deals")
    op.drop_table("brokers")
    op.drop_table("users")
    op.drop_table("organizations")
