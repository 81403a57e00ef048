"""
Project-level campaign value tags.

Campaigns carry a merchant-level default tag (campaigns.tag). A project may
override it per campaign; the override always wins inside that project.
Tags 1 (valuable) and 2 (high value) drive conversion reporting.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.errors import CampaignNotFoundError, InvalidInputError
from analysis.projects import get_project
from db.models import VALUABLE_TAGS, Campaign, ProjectCampaignTag

MIN_TAG = 0
MAX_TAG = 4


@dataclass(frozen=True)
class ProjectTagInfo:
    project_id: uuid.UUID
    campaign_id: uuid.UUID
    subject: str
    tag: int
    tag_note: str | None
    is_valuable: bool
    updated_at: datetime


def is_valuable_tag(tag: int | None) -> bool:
    return tag in VALUABLE_TAGS


def validate_tag(tag: int) -> int:
    if isinstance(tag, bool) or not isinstance(tag, int) or not MIN_TAG <= tag <= MAX_TAG:
        raise InvalidInputError(f"Invalid tag value {tag!r}. Must be {MIN_TAG}-{MAX_TAG}.")
    return tag


def _to_info(row: ProjectCampaignTag, subject: str | None) -> ProjectTagInfo:
    return ProjectTagInfo(
        project_id=row.project_id,
        campaign_id=row.campaign_id,
        subject=subject or "",
        tag=row.tag,
        tag_note=row.tag_note,
        is_valuable=is_valuable_tag(row.tag),
        updated_at=row.updated_at,
    )


async def set_project_campaign_tag(
    db: AsyncSession,
    project_id: uuid.UUID,
    campaign_id: uuid.UUID,
    tag: int,
    note: str | None = None,
) -> ProjectTagInfo:
    await get_project(db, project_id)
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError(campaign_id)
    validate_tag(tag)

    now = datetime.utcnow()
    result = await db.execute(
        select(ProjectCampaignTag).where(
            ProjectCampaignTag.project_id == project_id,
            ProjectCampaignTag.campaign_id == campaign_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = ProjectCampaignTag(
            project_id=project_id,
            campaign_id=campaign_id,
            tag=tag,
            tag_note=note,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
    else:
        row.tag = tag
        row.tag_note = note
        row.updated_at = now

    await db.flush()
    return _to_info(row, campaign.subject)


async def get_project_campaign_tag(
    db: AsyncSession, project_id: uuid.UUID, campaign_id: uuid.UUID
) -> ProjectTagInfo | None:
    result = await db.execute(
        select(ProjectCampaignTag, Campaign.subject)
        .join(Campaign, Campaign.campaign_id == ProjectCampaignTag.campaign_id)
        .where(
            ProjectCampaignTag.project_id == project_id,
            ProjectCampaignTag.campaign_id == campaign_id,
        )
    )
    row = result.one_or_none()
    return _to_info(*row) if row else None


async def list_project_campaign_tags(db: AsyncSession, project_id: uuid.UUID) -> list[ProjectTagInfo]:
    result = await db.execute(
        select(ProjectCampaignTag, Campaign.subject)
        .join(Campaign, Campaign.campaign_id == ProjectCampaignTag.campaign_id)
        .where(ProjectCampaignTag.project_id == project_id)
        .order_by(ProjectCampaignTag.updated_at.desc(), ProjectCampaignTag.id.desc())
    )
    return [_to_info(row, subject) for row, subject in result.all()]


async def remove_project_campaign_tag(db: AsyncSession, project_id: uuid.UUID, campaign_id: uuid.UUID) -> bool:
    result = await db.execute(
        delete(ProjectCampaignTag)
        .where(
            ProjectCampaignTag.project_id == project_id,
            ProjectCampaignTag.campaign_id == campaign_id,
        )
    )
    await db.flush()
    return bool(result.rowcount)


async def effective_campaign_tag(db: AsyncSession, project_id: uuid.UUID, campaign_id: uuid.UUID) -> int:
    override = await get_project_campaign_tag(db, project_id, campaign_id)
    if override is not None:
        return override.tag
    campaign = await db.get(Campaign, campaign_id)
    return int(campaign.tag or 0) if campaign else 0


async def effective_tags(db: AsyncSession, project_id: uuid.UUID) -> dict[uuid.UUID, int]:
    """Effective tag of every campaign of the project's merchant."""
    project = await get_project(db, project_id)

    overrides_result = await db.execute(
        select(ProjectCampaignTag.campaign_id, ProjectCampaignTag.tag).where(
            ProjectCampaignTag.project_id == project_id
        )
    )
    overrides = {row.campaign_id: row.tag for row in overrides_result.all()}

    campaigns_result = await db.execute(
        select(Campaign.campaign_id, Campaign.tag).where(Campaign.merchant_id == project.merchant_id)
    )
    return {
        row.campaign_id: overrides.get(row.campaign_id, row.tag or 0)
        for row in campaigns_result.all()
    }
