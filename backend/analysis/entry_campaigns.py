"""
Entry Campaign Registry — campaigns that may start a recipient path.

Each project can flag any number of its merchant's campaigns as entry
points. Only confirmed entries anchor paths; unconfirmed rows are
candidates awaiting review (candidate_reason says why they were proposed).
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.errors import CampaignNotFoundError
from analysis.projects import get_project
from db.models import Campaign, EntryCampaign

logger = structlog.get_logger()


@dataclass(frozen=True)
class EntryCampaignInfo:
    campaign_id: uuid.UUID
    subject: str
    is_confirmed: bool
    candidate_reason: str | None
    created_at: datetime


async def set_entry(
    db: AsyncSession,
    project_id: uuid.UUID,
    campaign_id: uuid.UUID,
    confirmed: bool = False,
    candidate_reason: str | None = None,
) -> EntryCampaign:
    """Create or update the entry flag of a campaign within a project."""
    await get_project(db, project_id)
    if await db.get(Campaign, campaign_id) is None:
        raise CampaignNotFoundError(campaign_id)

    result = await db.execute(
        select(EntryCampaign).where(
            EntryCampaign.project_id == project_id,
            EntryCampaign.campaign_id == campaign_id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = EntryCampaign(
            project_id=project_id,
            campaign_id=campaign_id,
            is_confirmed=confirmed,
            candidate_reason=candidate_reason,
            created_at=datetime.utcnow(),
        )
        db.add(entry)
    else:
        entry.is_confirmed = confirmed
        if candidate_reason is not None:
            entry.candidate_reason = candidate_reason

    await db.flush()
    logger.info(
        "entry_campaign.set",
        project_id=str(project_id),
        campaign_id=str(campaign_id),
        confirmed=confirmed,
    )
    return entry


async def remove_entry(db: AsyncSession, project_id: uuid.UUID, campaign_id: uuid.UUID) -> bool:
    result = await db.execute(
        delete(EntryCampaign)
        .where(
            EntryCampaign.project_id == project_id,
            EntryCampaign.campaign_id == campaign_id,
        )
    )
    await db.flush()
    return bool(result.rowcount)


async def list_entries(db: AsyncSession, project_id: uuid.UUID) -> list[EntryCampaignInfo]:
    """All entry campaigns of a project with subjects, newest first."""
    result = await db.execute(
        select(EntryCampaign, Campaign.subject)
        .outerjoin(Campaign, Campaign.campaign_id == EntryCampaign.campaign_id)
        .where(EntryCampaign.project_id == project_id)
        .order_by(EntryCampaign.created_at.desc(), EntryCampaign.id.desc())
    )
    return [
        EntryCampaignInfo(
            campaign_id=entry.campaign_id,
            subject=subject or "",
            is_confirmed=bool(entry.is_confirmed),
            candidate_reason=entry.candidate_reason,
            created_at=entry.created_at,
        )
        for entry, subject in result.all()
    ]


async def confirmed_entry_ids(db: AsyncSession, project_id: uuid.UUID) -> set[uuid.UUID]:
    result = await db.execute(
        select(EntryCampaign.campaign_id).where(
            EntryCampaign.project_id == project_id,
            EntryCampaign.is_confirmed.is_(True),
        )
    )
    return set(result.scalars().all())
