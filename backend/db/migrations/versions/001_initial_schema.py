"""
Initial schema - all 9 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Merchants
    op.create_table(
        "merchants",
        sa.Column("merchant_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("domain", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 2. Campaigns
    op.create_table(
        "campaigns",
        sa.Column("campaign_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("merchant_id", UUID(as_uuid=True), sa.ForeignKey("merchants.merchant_id"), nullable=False),
        sa.Column("subject", sa.Text, nullable=False),
        sa.Column("tag", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tag_note", sa.Text),
        sa.Column("first_seen_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("tag BETWEEN 0 AND 4", name="ck_campaign_tag"),
    )
    op.create_index("ix_campaigns_merchant", "campaigns", ["merchant_id"])

    # 3. Campaign emails (touch store)
    op.create_table(
        "campaign_emails",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("received_at", sa.DateTime, nullable=False),
        sa.Column("worker_name", sa.String(100), nullable=False, server_default="global"),
    )
    op.create_index("ix_campaign_emails_campaign", "campaign_emails", ["campaign_id"])
    op.create_index("ix_campaign_emails_recipient", "campaign_emails", ["recipient"])
    op.create_index("ix_campaign_emails_worker_received", "campaign_emails", ["worker_name", "received_at"])

    # 4. Analysis projects
    op.create_table(
        "analysis_projects",
        sa.Column("project_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("merchant_id", UUID(as_uuid=True), sa.ForeignKey("merchants.merchant_id"), nullable=False),
        sa.Column("worker_name", sa.String(100)),
        sa.Column("worker_names", sa.JSON),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("note", sa.Text),
        sa.Column("last_analysis_time", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'paused', 'archived')", name="ck_analysis_project_status"),
    )
    op.create_index("ix_analysis_projects_merchant", "analysis_projects", ["merchant_id"])

    # 5. Entry campaigns
    op.create_table(
        "project_entry_campaigns",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("is_confirmed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("candidate_reason", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "campaign_id", name="uq_entry_campaign_per_project"),
    )
    op.create_index("ix_project_entry_campaigns_project", "project_entry_campaigns", ["project_id"])

    # 6. Attributions
    op.create_table(
        "project_attributions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("first_entry_campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "recipient", name="uq_attribution_per_project"),
    )
    op.create_index("ix_project_attributions_project", "project_attributions", ["project_id"])

    # 7. Touch events
    op.create_table(
        "project_touch_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("received_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("project_id", "recipient", "campaign_id", name="uq_touch_event_per_campaign"),
        sa.CheckConstraint("seq >= 1", name="ck_touch_event_seq"),
    )
    op.create_index("ix_project_touch_events_recipient", "project_touch_events", ["project_id", "recipient"])
    op.create_index("ix_project_touch_events_seq", "project_touch_events", ["project_id", "recipient", "seq"])

    # 8. Path edges
    op.create_table(
        "project_path_edges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("to_campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("user_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "from_campaign_id", "to_campaign_id", name="uq_path_edge_per_project"),
    )
    op.create_index("ix_project_path_edges_from", "project_path_edges", ["project_id", "from_campaign_id"])

    # 9. Project campaign tags
    op.create_table(
        "project_campaign_tags",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID(as_uuid=True), sa.ForeignKey("campaigns.campaign_id"), nullable=False),
        sa.Column("tag", sa.Integer, nullable=False),
        sa.Column("tag_note", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "campaign_id", name="uq_campaign_tag_per_project"),
        sa.CheckConstraint("tag BETWEEN 0 AND 4", name="ck_project_campaign_tag"),
    )


def downgrade() -> None:
    for table in (
        "project_campaign_tags",
        "project_path_edges",
        "project_touch_events",
        "project_attributions",
        "project_entry_campaigns",
        "analysis_projects",
        "campaign_emails",
        "campaigns",
        "merchants",
    ):
        op.drop_table(table)
