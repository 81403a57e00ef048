"""
Touch Store queries.

Reads (campaign, recipient, received_at) rows from campaign_emails, always
restricted to the project's merchant and data-source filter.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.projects import effective_worker_names
from db.models import AnalysisProject, Campaign, CampaignEmail


@dataclass(frozen=True)
class Touch:
    """A single recipient/campaign contact from the upstream data source."""

    touch_id: int
    campaign_id: uuid.UUID
    recipient: str
    received_at: datetime


async def fetch_touches(
    db: AsyncSession,
    project: AnalysisProject,
    *,
    campaign_ids: Iterable[uuid.UUID] | None = None,
    since: datetime | None = None,
) -> list[Touch]:
    """
    Touches visible to a project, ordered by (received_at, touch id).

    `campaign_ids` narrows to a campaign set (an empty set yields nothing);
    `since` keeps only rows with received_at strictly after the cutoff.
    """
    stmt = (
        select(CampaignEmail.id, CampaignEmail.campaign_id, CampaignEmail.recipient, CampaignEmail.received_at)
        .join(Campaign, Campaign.campaign_id == CampaignEmail.campaign_id)
        .where(Campaign.merchant_id == project.merchant_id)
    )

    workers = effective_worker_names(project)
    if workers:
        stmt = stmt.where(CampaignEmail.worker_name.in_(workers))

    if campaign_ids is not None:
        ids = list(campaign_ids)
        if not ids:
            return []
        stmt = stmt.where(CampaignEmail.campaign_id.in_(ids))

    if since is not None:
        stmt = stmt.where(CampaignEmail.received_at > since)

    result = await db.execute(stmt.order_by(CampaignEmail.received_at, CampaignEmail.id))
    return [
        Touch(
            touch_id=row.id,
            campaign_id=row.campaign_id,
            recipient=row.recipient,
            received_at=row.received_at,
        )
        for row in result.all()
    ]


def earliest_touch_per_recipient(touches: Iterable[Touch]) -> dict[str, Touch]:
    """First touch per recipient; input order breaks received_at ties."""
    anchors: dict[str, Touch] = {}
    for touch in touches:
        current = anchors.get(touch.recipient)
        if current is None or touch.received_at < current.received_at:
            anchors[touch.recipient] = touch
    return anchors
