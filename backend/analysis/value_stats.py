"""Valuable-campaign reach and conversion for a project."""

import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.attribution import attribution_stats
from analysis.value_tags import effective_tags, is_valuable_tag
from db.models import HIGH_VALUE_TAG, ProjectAttribution, TouchEvent


@dataclass(frozen=True)
class ValuableStats:
    valuable_campaign_count: int  # tag 1 or 2
    high_value_campaign_count: int  # tag 2
    valuable_user_reach: int
    valuable_conversion_rate: float  # percent, 2 dp


def conversion_rate(reached: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(100 * reached / total, 2)


async def compute_stats(db: AsyncSession, project_id: uuid.UUID) -> ValuableStats:
    tags = await effective_tags(db, project_id)
    valuable_ids = {campaign_id for campaign_id, tag in tags.items() if is_valuable_tag(tag)}
    high_value_count = sum(1 for tag in tags.values() if tag == HIGH_VALUE_TAG)

    total_attributed = (await attribution_stats(db, project_id)).total_attributed

    reach = 0
    if valuable_ids and total_attributed:
        result = await db.execute(
            select(func.count(func.distinct(TouchEvent.recipient)))
            .join(
                ProjectAttribution,
                (ProjectAttribution.project_id == TouchEvent.project_id)
                & (ProjectAttribution.recipient == TouchEvent.recipient),
            )
            .where(
                TouchEvent.project_id == project_id,
                TouchEvent.campaign_id.in_(valuable_ids),
            )
        )
        reach = int(result.scalar() or 0)

    return ValuableStats(
        valuable_campaign_count=len(valuable_ids),
        high_value_campaign_count=high_value_count,
        valuable_user_reach=reach,
        valuable_conversion_rate=conversion_rate(reach, total_attributed),
    )
