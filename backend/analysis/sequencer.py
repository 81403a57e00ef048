"""
Event Sequencer — gapless, time-ordered touch sequences per recipient.

For a fixed (project, recipient) the stored seq values are always exactly
1..N, sorting by seq equals sorting by received_at, and each campaign
appears at most once, carrying its earliest received_at.

Insertion is an ordered-list insert expressed as a range update plus a
single-row insert in the caller's transaction:

    seq(new)  = 1 + count(events with received_at <= new.received_at)
    seq(e)   += 1 for every event with received_at > new.received_at

Equal received_at values keep arrival order: an inserted event, or one
moved to an earlier time, lands after the events already stored at that
instant. Seq order among ties therefore need not follow id order.

The sequencer knows nothing about entry campaigns; the orchestrator only
submits touches at or after a recipient's anchor.
"""

import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from itertools import groupby

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TouchEvent


@dataclass(frozen=True)
class TouchResult:
    seq: int
    is_new: bool


@dataclass(frozen=True)
class UserEvent:
    event_id: int
    recipient: str
    campaign_id: uuid.UUID
    seq: int
    received_at: datetime


def _to_user_event(row: TouchEvent) -> UserEvent:
    return UserEvent(
        event_id=row.id,
        recipient=row.recipient,
        campaign_id=row.campaign_id,
        seq=row.seq,
        received_at=row.received_at,
    )


async def _count_at_or_before(
    db: AsyncSession,
    project_id: uuid.UUID,
    recipient: str,
    received_at: datetime,
    *,
    exclude_id: int | None = None,
) -> int:
    stmt = select(func.count(TouchEvent.id)).where(
        TouchEvent.project_id == project_id,
        TouchEvent.recipient == recipient,
        TouchEvent.received_at <= received_at,
    )
    if exclude_id is not None:
        stmt = stmt.where(TouchEvent.id != exclude_id)
    result = await db.execute(stmt)
    return int(result.scalar() or 0)


async def record_touch(
    db: AsyncSession,
    project_id: uuid.UUID,
    recipient: str,
    campaign_id: uuid.UUID,
    received_at: datetime,
) -> TouchResult:
    """
    Insert a touch into the recipient's sequence.

    Re-submitting an existing (project, recipient, campaign) returns the
    stored seq with is_new=False. If the re-submitted touch is earlier
    than the stored one, the event moves to the earlier time first.
    """
    result = await db.execute(
        select(TouchEvent).where(
            TouchEvent.project_id == project_id,
            TouchEvent.recipient == recipient,
            TouchEvent.campaign_id == campaign_id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        if received_at < existing.received_at:
            return TouchResult(seq=await _move_earlier(db, existing, received_at), is_new=False)
        return TouchResult(seq=existing.seq, is_new=False)

    seq = 1 + await _count_at_or_before(db, project_id, recipient, received_at)

    await db.execute(
        update(TouchEvent)
        .where(
            TouchEvent.project_id == project_id,
            TouchEvent.recipient == recipient,
            TouchEvent.received_at > received_at,
        )
        .values(seq=TouchEvent.seq + 1)
    )
    db.add(
        TouchEvent(
            project_id=project_id,
            recipient=recipient,
            campaign_id=campaign_id,
            seq=seq,
            received_at=received_at,
        )
    )
    await db.flush()
    return TouchResult(seq=seq, is_new=True)


async def _move_earlier(db: AsyncSession, event: TouchEvent, received_at: datetime) -> int:
    """Relocate an event to an earlier received_at, keeping 1..N contiguous."""
    old_seq = event.seq
    new_seq = 1 + await _count_at_or_before(db, event.project_id, event.recipient, received_at, exclude_id=event.id)

    # Events now falling between the new and the old position move down one slot.
    await db.execute(
        update(TouchEvent)
        .where(
            TouchEvent.project_id == event.project_id,
            TouchEvent.recipient == event.recipient,
            TouchEvent.id != event.id,
            TouchEvent.received_at > received_at,
            TouchEvent.seq < old_seq,
        )
        .values(seq=TouchEvent.seq + 1)
    )
    event.seq = new_seq
    event.received_at = received_at
    await db.flush()
    return new_seq


async def get_user_events(db: AsyncSession, project_id: uuid.UUID, recipient: str) -> list[UserEvent]:
    result = await db.execute(
        select(TouchEvent)
        .where(TouchEvent.project_id == project_id, TouchEvent.recipient == recipient)
        .order_by(TouchEvent.seq, TouchEvent.id)
    )
    return [_to_user_event(row) for row in result.scalars().all()]


async def get_max_seq(db: AsyncSession, project_id: uuid.UUID, recipient: str) -> int:
    result = await db.execute(
        select(func.max(TouchEvent.seq)).where(
            TouchEvent.project_id == project_id,
            TouchEvent.recipient == recipient,
        )
    )
    return int(result.scalar() or 0)


async def list_project_events(db: AsyncSession, project_id: uuid.UUID) -> list[UserEvent]:
    """Every event of a project ordered by (recipient, seq)."""
    result = await db.execute(
        select(TouchEvent)
        .where(TouchEvent.project_id == project_id)
        .order_by(TouchEvent.recipient, TouchEvent.seq, TouchEvent.id)
    )
    return [_to_user_event(row) for row in result.scalars().all()]


async def anchor_times(db: AsyncSession, project_id: uuid.UUID) -> dict[str, datetime]:
    """received_at of each recipient's seq=1 event."""
    result = await db.execute(
        select(TouchEvent.recipient, TouchEvent.received_at).where(
            TouchEvent.project_id == project_id,
            TouchEvent.seq == 1,
        )
    )
    return {row.recipient: row.received_at for row in result.all()}


def group_by_recipient(events: Iterable[UserEvent]) -> Iterator[tuple[str, list[UserEvent]]]:
    """Group events already ordered by recipient."""
    for recipient, group in groupby(events, key=lambda event: event.recipient):
        yield recipient, list(group)
