"""
Path Analysis Orchestrator — full and incremental passes per project.

State machine over analysis_projects.last_analysis_time:

    NULL  --full pass-->  t  --incremental pass (cutoff t)-->  t' (>= t)
    t     --force full-->  NULL  --full pass-->  t''

Full pass:
  1. Confirmed entry campaigns; none -> advance watermark, stop.
  2. Each recipient's earliest entry touch is their anchor.
  3. Attribute the recipient and record the anchor as seq 1.
  4. Record every later non-entry touch of anchored recipients in
     received_at order; touches before the anchor are dropped.
  5. Rebuild the path graph.
  6. Watermark = wall-clock completion time (not max received_at).

Incremental pass (cutoff t): same steps restricted to touches with
received_at > t. Already-attributed recipients are never re-anchored and
may legitimately re-touch an entry campaign later in their path; only
newly anchored recipients skip entry-campaign touches.

A pass runs in one transaction holding the project row lock. It commits
once at the end and rolls back on failure, so a failed pass never
advances the watermark and a retry re-processes the same window.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.attribution import attribute, attributed_recipients
from analysis.entry_campaigns import confirmed_entry_ids
from analysis.errors import InvalidInputError
from analysis.path_graph import rebuild
from analysis.projects import clear_analysis_data, get_project, set_last_analysis_time
from analysis.sequencer import anchor_times, record_touch
from analysis.touch_store import Touch, earliest_touch_per_recipient, fetch_touches
from core.config import get_settings

logger = structlog.get_logger()

T = TypeVar("T")

PHASE_INITIALIZING = "initializing"
PHASE_ENTRY_TOUCHES = "processing_entry_touches"
PHASE_EVENTS = "building_events"
PHASE_PATHS = "building_paths"
PHASE_COMPLETE = "complete"


@dataclass(frozen=True)
class AnalysisProgress:
    phase: str
    progress: int  # 0-100
    message: str
    processed: int | None = None
    total: int | None = None


@dataclass(frozen=True)
class AnalysisResult:
    project_id: uuid.UUID
    is_incremental: bool
    new_users_added: int
    events_created: int
    edges_updated: int
    duration_ms: int
    analyzed_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "project_id": str(self.project_id),
            "is_incremental": self.is_incremental,
            "new_users_added": self.new_users_added,
            "events_created": self.events_created,
            "edges_updated": self.edges_updated,
            "duration_ms": self.duration_ms,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


ProgressCallback = Callable[[AnalysisProgress], None]


class _Pass:
    """Counters and progress reporting for one running pass."""

    def __init__(self, project_id: uuid.UUID, *, incremental: bool, on_progress: ProgressCallback | None):
        self.project_id = project_id
        self.incremental = incremental
        self.on_progress = on_progress
        self.new_users = 0
        self.events = 0
        self.edges = 0
        self.started = time.monotonic()

    def report(self, phase: str, progress: int, message: str, processed: int | None = None, total: int | None = None):
        if self.on_progress is not None:
            self.on_progress(AnalysisProgress(phase, progress, message, processed, total))

    async def in_batches(
        self,
        items: Sequence[T],
        handler: Callable[[T], Awaitable[None]],
        *,
        phase: str,
        start: int,
        span: int,
        label: str,
    ) -> None:
        """Run handler over items, reporting progress and yielding between batches."""
        batch_size = get_settings().path_analysis_batch_size
        if batch_size <= 0:
            raise InvalidInputError(f"path_analysis_batch_size must be positive, got {batch_size}")

        total = len(items)
        if total == 0:
            self.report(phase, start + span, f"{label} (0/0)", 0, 0)
            return

        for offset in range(0, total, batch_size):
            for item in items[offset : offset + batch_size]:
                await handler(item)
            processed = min(offset + batch_size, total)
            self.report(phase, start + round(span * processed / total), f"{label} ({processed}/{total})", processed, total)
            await asyncio.sleep(0)

    def result(self, analyzed_at: datetime) -> AnalysisResult:
        return AnalysisResult(
            project_id=self.project_id,
            is_incremental=self.incremental,
            new_users_added=self.new_users,
            events_created=self.events,
            edges_updated=self.edges,
            duration_ms=int((time.monotonic() - self.started) * 1000),
            analyzed_at=analyzed_at,
        )


async def _record_anchors(db: AsyncSession, run: _Pass, anchors: dict[str, Touch], *, start: int, span: int) -> None:
    async def _anchor(touch: Touch) -> None:
        if await attribute(db, run.project_id, touch.recipient, touch.campaign_id):
            run.new_users += 1
        recorded = await record_touch(db, run.project_id, touch.recipient, touch.campaign_id, touch.received_at)
        if recorded.is_new:
            run.events += 1

    ordered = sorted(anchors.values(), key=lambda touch: (touch.received_at, touch.touch_id))
    await run.in_batches(ordered, _anchor, phase=PHASE_ENTRY_TOUCHES, start=start, span=span, label="Entry touches")


async def _record_path_touches(db: AsyncSession, run: _Pass, touches: list[Touch], *, start: int, span: int) -> None:
    async def _record(touch: Touch) -> None:
        recorded = await record_touch(db, run.project_id, touch.recipient, touch.campaign_id, touch.received_at)
        if recorded.is_new:
            run.events += 1

    await run.in_batches(touches, _record, phase=PHASE_EVENTS, start=start, span=span, label="Path touches")


def _watermark(now: datetime | None, floor: datetime | None = None) -> datetime:
    analyzed_at = now or datetime.utcnow()
    if floor is not None and analyzed_at < floor:
        return floor
    return analyzed_at


async def _full_pass(db: AsyncSession, run: _Pass, now: datetime | None) -> AnalysisResult:
    project = await get_project(db, run.project_id, for_update=True)
    run.report(PHASE_INITIALIZING, 0, "Initializing full analysis")

    entry_ids = await confirmed_entry_ids(db, run.project_id)
    if not entry_ids:
        analyzed_at = _watermark(now)
        await set_last_analysis_time(db, run.project_id, analyzed_at)
        return run.result(analyzed_at)

    await clear_analysis_data(db, run.project_id)

    run.report(PHASE_ENTRY_TOUCHES, 5, "Processing entry campaign touches")
    anchors = earliest_touch_per_recipient(await fetch_touches(db, project, campaign_ids=entry_ids))
    await _record_anchors(db, run, anchors, start=5, span=35)

    run.report(PHASE_EVENTS, 40, "Building recipient event sequences")
    touches = [
        touch
        for touch in await fetch_touches(db, project)
        if touch.recipient in anchors
        and touch.campaign_id not in entry_ids
        and touch.received_at >= anchors[touch.recipient].received_at
    ]
    await _record_path_touches(db, run, touches, start=40, span=40)

    run.report(PHASE_PATHS, 80, "Building path edges")
    run.edges = await rebuild(db, run.project_id)

    analyzed_at = _watermark(now)
    await set_last_analysis_time(db, run.project_id, analyzed_at)
    return run.result(analyzed_at)


async def _incremental_pass(db: AsyncSession, run: _Pass, since: datetime, now: datetime | None) -> AnalysisResult:
    project = await get_project(db, run.project_id, for_update=True)
    run.report(PHASE_INITIALIZING, 0, "Initializing incremental analysis")

    entry_ids = await confirmed_entry_ids(db, run.project_id)
    if not entry_ids:
        analyzed_at = _watermark(now, since)
        await set_last_analysis_time(db, run.project_id, analyzed_at)
        return run.result(analyzed_at)

    existing = await attributed_recipients(db, run.project_id)

    run.report(PHASE_ENTRY_TOUCHES, 5, "Processing new entry campaign touches")
    new_entry_touches = await fetch_touches(db, project, campaign_ids=entry_ids, since=since)
    new_anchors = earliest_touch_per_recipient(
        touch for touch in new_entry_touches if touch.recipient not in existing
    )
    await _record_anchors(db, run, new_anchors, start=5, span=30)

    run.report(PHASE_EVENTS, 35, "Processing new touches")
    anchored_at = await anchor_times(db, run.project_id)
    tracked = existing | set(new_anchors)
    touches = []
    for touch in await fetch_touches(db, project, since=since):
        if touch.recipient not in tracked:
            continue
        if touch.recipient in new_anchors and touch.campaign_id in entry_ids:
            continue
        anchor_at = anchored_at.get(touch.recipient)
        if anchor_at is not None and touch.received_at < anchor_at:
            continue
        touches.append(touch)
    await _record_path_touches(db, run, touches, start=35, span=45)

    run.report(PHASE_PATHS, 80, "Rebuilding path edges")
    run.edges = await rebuild(db, run.project_id)

    analyzed_at = _watermark(now, since)
    await set_last_analysis_time(db, run.project_id, analyzed_at)
    return run.result(analyzed_at)


async def _run(db: AsyncSession, run: _Pass, body: Callable[[], Awaitable[AnalysisResult]]) -> AnalysisResult:
    kind = "incremental" if run.incremental else "full"
    logger.info(f"path_analysis.{kind}.started", project_id=str(run.project_id))
    try:
        result = await body()
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error(
            "path_analysis.failed",
            project_id=str(run.project_id),
            kind=kind,
            error=str(exc),
            exc_info=True,
        )
        raise

    run.report(
        PHASE_COMPLETE,
        100,
        f"Analysis complete: {result.new_users_added} new users, "
        f"{result.events_created} events, {result.edges_updated} path edges",
    )
    logger.info(f"path_analysis.{kind}.completed", **result.as_dict())
    return result


async def run_full_analysis(
    db: AsyncSession,
    project_id: uuid.UUID,
    *,
    on_progress: ProgressCallback | None = None,
    now: datetime | None = None,
) -> AnalysisResult:
    """Recompute all derived state of a project from scratch."""
    run = _Pass(project_id, incremental=False, on_progress=on_progress)
    return await _run(db, run, lambda: _full_pass(db, run, now))


async def run_incremental_analysis(
    db: AsyncSession,
    project_id: uuid.UUID,
    since: datetime,
    *,
    on_progress: ProgressCallback | None = None,
    now: datetime | None = None,
) -> AnalysisResult:
    """Extend derived state with touches received after `since`."""
    run = _Pass(project_id, incremental=True, on_progress=on_progress)
    return await _run(db, run, lambda: _incremental_pass(db, run, since, now))


async def analyze_project(
    db: AsyncSession,
    project_id: uuid.UUID,
    *,
    on_progress: ProgressCallback | None = None,
    now: datetime | None = None,
) -> AnalysisResult:
    """Full pass for a never-analyzed project, incremental otherwise."""
    project = await get_project(db, project_id)
    if project.last_analysis_time is None:
        return await run_full_analysis(db, project_id, on_progress=on_progress, now=now)
    return await run_incremental_analysis(
        db, project_id, project.last_analysis_time, on_progress=on_progress, now=now
    )


async def force_full_analysis(
    db: AsyncSession,
    project_id: uuid.UUID,
    *,
    on_progress: ProgressCallback | None = None,
    now: datetime | None = None,
) -> AnalysisResult:
    """Reset the watermark and recompute; a failed pass restores the previous state."""
    run = _Pass(project_id, incremental=False, on_progress=on_progress)

    async def _body() -> AnalysisResult:
        await get_project(db, project_id, for_update=True)
        await set_last_analysis_time(db, project_id, None)
        return await _full_pass(db, run, now)

    return await _run(db, run, _body)
