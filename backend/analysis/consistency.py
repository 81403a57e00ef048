"""
Sequence consistency validation and repair.

validate() reports invariant violations as data; it never raises. repair()
is explicit: it resequences flagged recipients by received_at, keeping the
stored seq order among equal timestamps, and rebuilds the path graph when
anything changed.
"""

import uuid
from dataclasses import dataclass, field
from itertools import pairwise

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.path_graph import rebuild
from analysis.sequencer import UserEvent, group_by_recipient, list_project_events
from db.models import TouchEvent

logger = structlog.get_logger()

ISSUE_GAP = "gap"
ISSUE_DUPLICATE = "duplicate"
ISSUE_ORDER = "order"


@dataclass(frozen=True)
class SequenceIssue:
    recipient: str
    issue_type: str
    details: str


@dataclass
class SequenceValidation:
    valid: bool
    total_recipients: int
    recipients_with_issues: int
    issues: list[SequenceIssue] = field(default_factory=list)


@dataclass(frozen=True)
class SequenceRepair:
    recipients_fixed: int
    events_reordered: int
    path_edges_rebuilt: bool


def _contiguity_issue(recipient: str, events: list[UserEvent]) -> SequenceIssue | None:
    for expected, event in enumerate(events, start=1):
        if event.seq == expected:
            continue
        if event.seq > expected:
            return SequenceIssue(recipient, ISSUE_GAP, f"Gap in seq: expected {expected}, got {event.seq}")
        return SequenceIssue(
            recipient,
            ISSUE_DUPLICATE,
            f"Duplicate or out-of-order seq: expected {expected}, got {event.seq}",
        )
    return None


def _order_issue(recipient: str, events: list[UserEvent]) -> SequenceIssue | None:
    for current, following in pairwise(events):
        if current.received_at > following.received_at:
            return SequenceIssue(
                recipient,
                ISSUE_ORDER,
                f"Time order mismatch: seq {current.seq} ({current.received_at.isoformat()}) "
                f"> seq {following.seq} ({following.received_at.isoformat()})",
            )
    return None


def check_recipient(recipient: str, events: list[UserEvent]) -> list[SequenceIssue]:
    """Issues for one recipient; events must be ordered by seq."""
    issues = []
    for check in (_contiguity_issue, _order_issue):
        issue = check(recipient, events)
        if issue is not None:
            issues.append(issue)
    return issues


async def validate(db: AsyncSession, project_id: uuid.UUID) -> SequenceValidation:
    issues: list[SequenceIssue] = []
    flagged: set[str] = set()
    total = 0

    for recipient, events in group_by_recipient(await list_project_events(db, project_id)):
        total += 1
        recipient_issues = check_recipient(recipient, events)
        if recipient_issues:
            flagged.add(recipient)
            issues.extend(recipient_issues)

    return SequenceValidation(
        valid=not issues,
        total_recipients=total,
        recipients_with_issues=len(flagged),
        issues=issues,
    )


async def repair(db: AsyncSession, project_id: uuid.UUID) -> SequenceRepair:
    recipients_fixed = 0
    events_reordered = 0

    for recipient, events in group_by_recipient(await list_project_events(db, project_id)):
        if not check_recipient(recipient, events):
            continue
        # Stable sort: ties on received_at keep their stored seq order.
        in_time_order = sorted(events, key=lambda event: event.received_at)
        moves = [
            (event.event_id, position)
            for position, event in enumerate(in_time_order, start=1)
            if event.seq != position
        ]
        if not moves:
            continue

        recipients_fixed += 1
        events_reordered += len(moves)
        for event_id, position in moves:
            await db.execute(update(TouchEvent).where(TouchEvent.id == event_id).values(seq=position))
        logger.info("sequence.repaired", project_id=str(project_id), recipient=recipient, moved=len(moves))

    path_edges_rebuilt = False
    if recipients_fixed:
        await db.flush()
        await rebuild(db, project_id)
        path_edges_rebuilt = True

    return SequenceRepair(
        recipients_fixed=recipients_fixed,
        events_reordered=events_reordered,
        path_edges_rebuilt=path_edges_rebuilt,
    )
