"""
Attribution Manager — which entry campaign first qualified each recipient.

Attribution rows are insert-or-ignore: the first attribution for a
(project, recipient) wins and is never overwritten.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ProjectAttribution, TouchEvent


@dataclass(frozen=True)
class AttributionStats:
    total_attributed: int
    total_events: int


async def attribute(
    db: AsyncSession,
    project_id: uuid.UUID,
    recipient: str,
    entry_campaign_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Record the recipient's first entry campaign. Returns False if already attributed."""
    if await is_attributed(db, project_id, recipient):
        return False

    db.add(
        ProjectAttribution(
            project_id=project_id,
            recipient=recipient,
            first_entry_campaign_id=entry_campaign_id,
            created_at=now or datetime.utcnow(),
        )
    )
    await db.flush()
    return True


async def is_attributed(db: AsyncSession, project_id: uuid.UUID, recipient: str) -> bool:
    result = await db.execute(
        select(ProjectAttribution.id)
        .where(
            ProjectAttribution.project_id == project_id,
            ProjectAttribution.recipient == recipient,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_attributions(db: AsyncSession, project_id: uuid.UUID) -> list[ProjectAttribution]:
    result = await db.execute(
        select(ProjectAttribution)
        .where(ProjectAttribution.project_id == project_id)
        .order_by(ProjectAttribution.created_at, ProjectAttribution.id)
    )
    return list(result.scalars().all())


async def attributed_recipients(db: AsyncSession, project_id: uuid.UUID) -> set[str]:
    result = await db.execute(select(ProjectAttribution.recipient).where(ProjectAttribution.project_id == project_id))
    return set(result.scalars().all())


async def attribution_stats(db: AsyncSession, project_id: uuid.UUID) -> AttributionStats:
    users = await db.execute(select(func.count(ProjectAttribution.id)).where(ProjectAttribution.project_id == project_id))
    events = await db.execute(select(func.count(TouchEvent.id)).where(TouchEvent.project_id == project_id))
    return AttributionStats(
        total_attributed=int(users.scalar() or 0),
        total_events=int(events.scalar() or 0),
    )
