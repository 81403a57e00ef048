"""
Path Graph Builder — weighted campaign transitions.

An edge (A, B) counts the recipients whose sequence has A at some seq n
and B at seq n+1. Edges are fully derived from project_touch_events and
are only ever written by rebuild().

rebuild() deletes and re-inserts a project's edges inside the caller's
transaction, so readers in other transactions see either the previous
graph or the new one once the caller commits.
"""

import uuid
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from itertools import pairwise

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from analysis.attribution import attribution_stats
from analysis.entry_campaigns import confirmed_entry_ids
from analysis.sequencer import UserEvent, group_by_recipient, list_project_events
from analysis.value_tags import effective_tags, is_valuable_tag
from db.models import HIGH_VALUE_TAG, Campaign, PathEdge

logger = structlog.get_logger()


@dataclass(frozen=True)
class PathEdgeInfo:
    from_campaign_id: uuid.UUID
    from_subject: str
    to_campaign_id: uuid.UUID
    to_subject: str
    user_count: int


@dataclass(frozen=True)
class CampaignLevelStat:
    campaign_id: uuid.UUID
    subject: str
    level: int
    user_count: int
    coverage: float  # % of attributed recipients
    is_entry: bool
    tag: int
    is_valuable: bool


def count_transitions(events: Iterable[UserEvent]) -> Counter:
    """Count consecutive-seq transitions; events must be ordered by (recipient, seq)."""
    counts: Counter = Counter()
    for _recipient, user_events in group_by_recipient(events):
        for current, following in pairwise(user_events):
            if following.seq == current.seq + 1:
                counts[(current.campaign_id, following.campaign_id)] += 1
    return counts


async def rebuild(db: AsyncSession, project_id: uuid.UUID, *, now: datetime | None = None) -> int:
    """Replace the project's edges with counts derived from its events. Returns edge count."""
    counts = count_transitions(await list_project_events(db, project_id))

    await db.execute(delete(PathEdge).where(PathEdge.project_id == project_id))
    stamp = now or datetime.utcnow()
    db.add_all(
        PathEdge(
            project_id=project_id,
            from_campaign_id=from_id,
            to_campaign_id=to_id,
            user_count=count,
            updated_at=stamp,
        )
        for (from_id, to_id), count in sorted(counts.items())
    )
    await db.flush()

    logger.info(
        "path_graph.rebuilt",
        project_id=str(project_id),
        edges=len(counts),
        transitions=sum(counts.values()),
    )
    return len(counts)


async def list_path_edges(db: AsyncSession, project_id: uuid.UUID) -> list[PathEdgeInfo]:
    """Edges with campaign subjects, heaviest first."""
    from_campaign = aliased(Campaign)
    to_campaign = aliased(Campaign)
    result = await db.execute(
        select(PathEdge, from_campaign.subject, to_campaign.subject)
        .outerjoin(from_campaign, from_campaign.campaign_id == PathEdge.from_campaign_id)
        .outerjoin(to_campaign, to_campaign.campaign_id == PathEdge.to_campaign_id)
        .where(PathEdge.project_id == project_id)
        .order_by(PathEdge.user_count.desc(), PathEdge.id)
    )
    return [
        PathEdgeInfo(
            from_campaign_id=edge.from_campaign_id,
            from_subject=from_subject or "",
            to_campaign_id=edge.to_campaign_id,
            to_subject=to_subject or "",
            user_count=edge.user_count,
        )
        for edge, from_subject, to_subject in result.all()
    ]


def _tag_priority(tag: int) -> int:
    if tag == HIGH_VALUE_TAG:
        return 0
    if is_valuable_tag(tag):
        return 1
    return 2


def sort_level_stats(stats: Sequence[CampaignLevelStat]) -> list[CampaignLevelStat]:
    """Order by level, then high-value before valuable before the rest, then user count desc."""
    return sorted(stats, key=lambda stat: (stat.level, _tag_priority(stat.tag), -stat.user_count))


async def level_stats(db: AsyncSession, project_id: uuid.UUID) -> list[CampaignLevelStat]:
    """How many attributed recipients saw each campaign at each path position."""
    events = await list_project_events(db, project_id)
    totals = await attribution_stats(db, project_id)
    tags = await effective_tags(db, project_id)
    entries = await confirmed_entry_ids(db, project_id)

    recipients_at: dict[tuple[int, uuid.UUID], set[str]] = defaultdict(set)
    for event in events:
        recipients_at[(event.seq, event.campaign_id)].add(event.recipient)

    campaign_ids = {campaign_id for _, campaign_id in recipients_at}
    subjects: dict[uuid.UUID, str] = {}
    if campaign_ids:
        result = await db.execute(
            select(Campaign.campaign_id, Campaign.subject).where(Campaign.campaign_id.in_(campaign_ids))
        )
        subjects = {row.campaign_id: row.subject for row in result.all()}

    stats = []
    for (level, campaign_id), recipients in recipients_at.items():
        tag = tags.get(campaign_id, 0)
        user_count = len(recipients)
        coverage = round(100 * user_count / totals.total_attributed, 2) if totals.total_attributed else 0.0
        stats.append(
            CampaignLevelStat(
                campaign_id=campaign_id,
                subject=subjects.get(campaign_id, ""),
                level=level,
                user_count=user_count,
                coverage=coverage,
                is_entry=campaign_id in entries,
                tag=tag,
                is_valuable=is_valuable_tag(tag),
            )
        )
    return sort_level_stats(stats)
