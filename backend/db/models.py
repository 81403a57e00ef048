"""
Campaign Path Analytics Database Models

9 tables for per-project campaign path analysis.
Every project-level table is partitioned by project_id and cascades from
analysis_projects.

Tables:
  Collected data (1-3):
  1. merchants                - Sender domains
  2. campaigns                - Distinct campaigns per merchant (+ default value tag)
  3. campaign_emails          - Touch store: recipient received campaign at time

  Projects (4-9):
  4. analysis_projects        - Analysis scope (merchant + worker filter + watermark)
  5. project_entry_campaigns  - Campaigns that may start a recipient path
  6. project_attributions     - Recipients qualified by an entry campaign
  7. project_touch_events     - Gapless, time-ordered per-recipient sequences
  8. project_path_edges       - Aggregated seq n -> n+1 transitions
  9. project_campaign_tags    - Project-level overrides of campaign value tags
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

# Value tags: 0 = untagged, 1 = valuable, 2 = high value, 3/4 = operator-defined
VALUABLE_TAGS = (1, 2)
HIGH_VALUE_TAG = 2

# ─── 1. Merchants ──────────────────────────────────────────────────────────


class Merchant(Base):
    __tablename__ = "merchants"

    merchant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    domain = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaigns = relationship("Campaign", back_populates="merchant")


# ─── 2. Campaigns ──────────────────────────────────────────────────────────


class Campaign(Base):
    __tablename__ = "campaigns"

    campaign_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(GUID(), ForeignKey("merchants.merchant_id"), nullable=False)
    subject = Column(Text, nullable=False)
    tag = Column(Integer, nullable=False, default=0)  # merchant-level default tag
    tag_note = Column(Text)
    first_seen_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_seen_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_campaigns_merchant", "merchant_id"),
        CheckConstraint("tag BETWEEN 0 AND 4", name="ck_campaign_tag"),
    )

    merchant = relationship("Merchant", back_populates="campaigns")


# ─── 3. Campaign Emails (touch store) ──────────────────────────────────────


class CampaignEmail(Base):
    __tablename__ = "campaign_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    recipient = Column(String(320), nullable=False)
    received_at = Column(DateTime, nullable=False)
    worker_name = Column(String(100), nullable=False, default="global")

    __table_args__ = (
        Index("ix_campaign_emails_campaign", "campaign_id"),
        Index("ix_campaign_emails_recipient", "recipient"),
        Index("ix_campaign_emails_worker_received", "worker_name", "received_at"),
    )


# ─── 4. Analysis Projects ──────────────────────────────────────────────────


class AnalysisProject(Base):
    __tablename__ = "analysis_projects"

    project_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    merchant_id = Column(GUID(), ForeignKey("merchants.merchant_id"), nullable=False)
    worker_name = Column(String(100))
    worker_names = Column(JSON)  # list[str]; takes precedence over worker_name
    status = Column(String(20), nullable=False, default="active")
    note = Column(Text)
    last_analysis_time = Column(DateTime, nullable=True)  # NULL = never analyzed
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_analysis_projects_merchant", "merchant_id"),
        CheckConstraint("status IN ('active', 'paused', 'archived')", name="ck_analysis_project_status"),
    )


# ─── 5. Entry Campaigns ────────────────────────────────────────────────────


class EntryCampaign(Base):
    __tablename__ = "project_entry_campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(GUID(), ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    is_confirmed = Column(Boolean, nullable=False, default=False)
    candidate_reason = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "campaign_id", name="uq_entry_campaign_per_project"),
        Index("ix_project_entry_campaigns_project", "project_id"),
    )


# ─── 6. Attributions ───────────────────────────────────────────────────────


class ProjectAttribution(Base):
    __tablename__ = "project_attributions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(GUID(), ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False)
    recipient = Column(String(320), nullable=False)
    first_entry_campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "recipient", name="uq_attribution_per_project"),
        Index("ix_project_attributions_project", "project_id"),
    )


# ─── 7. Touch Events ───────────────────────────────────────────────────────


class TouchEvent(Base):
    __tablename__ = "project_touch_events"

    # Autoincrement id doubles as the stable tiebreaker for equal received_at
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(GUID(), ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False)
    recipient = Column(String(320), nullable=False)
    campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    seq = Column(Integer, nullable=False)
    received_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "recipient", "campaign_id", name="uq_touch_event_per_campaign"),
        Index("ix_project_touch_events_recipient", "project_id", "recipient"),
        Index("ix_project_touch_events_seq", "project_id", "recipient", "seq"),
        CheckConstraint("seq >= 1", name="ck_touch_event_seq"),
    )


# ─── 8. Path Edges ─────────────────────────────────────────────────────────


class PathEdge(Base):
    __tablename__ = "project_path_edges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(GUID(), ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False)
    from_campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    to_campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    user_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "from_campaign_id", "to_campaign_id", name="uq_path_edge_per_project"),
        Index("ix_project_path_edges_from", "project_id", "from_campaign_id"),
    )


# ─── 9. Project Campaign Tags ──────────────────────────────────────────────


class ProjectCampaignTag(Base):
    __tablename__ = "project_campaign_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(GUID(), ForeignKey("analysis_projects.project_id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(GUID(), ForeignKey("campaigns.campaign_id"), nullable=False)
    tag = Column(Integer, nullable=False)
    tag_note = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "campaign_id", name="uq_campaign_tag_per_project"),
        CheckConstraint("tag BETWEEN 0 AND 4", name="ck_project_campaign_tag"),
    )
