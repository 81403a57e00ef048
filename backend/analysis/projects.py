"""
Analysis project registry helpers.

A project is the isolation unit for path analysis: a merchant, an optional
set of collection workers whose touches are visible, and the
last_analysis_time watermark that drives incremental passes.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.errors import ProjectNotFoundError
from db.models import (
    AnalysisProject,
    EntryCampaign,
    PathEdge,
    ProjectAttribution,
    ProjectCampaignTag,
    TouchEvent,
)

logger = structlog.get_logger()

# Derived tables wiped by a full re-analysis; entry campaigns and tags survive.
ANALYSIS_TABLES = (PathEdge, TouchEvent, ProjectAttribution)


def effective_worker_names(project: AnalysisProject) -> list[str] | None:
    """Worker names whose touches the project can see, or None for no filter."""
    if project.worker_names:
        return list(project.worker_names)
    if project.worker_name:
        return [project.worker_name]
    return None


async def get_project(db: AsyncSession, project_id: uuid.UUID, *, for_update: bool = False) -> AnalysisProject:
    """Load a project or raise ProjectNotFoundError."""
    stmt = select(AnalysisProject).where(AnalysisProject.project_id == project_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    project = result.scalar_one_or_none()
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


async def get_last_analysis_time(db: AsyncSession, project_id: uuid.UUID) -> datetime | None:
    project = await get_project(db, project_id)
    return project.last_analysis_time


async def set_last_analysis_time(db: AsyncSession, project_id: uuid.UUID, analyzed_at: datetime | None) -> None:
    await db.execute(
        update(AnalysisProject)
        .where(AnalysisProject.project_id == project_id)
        .values(last_analysis_time=analyzed_at)
    )


async def clear_analysis_data(db: AsyncSession, project_id: uuid.UUID) -> None:
    """Delete attributions, events and edges of one project."""
    for model in ANALYSIS_TABLES:
        await db.execute(delete(model).where(model.project_id == project_id))
    await db.flush()


async def delete_project(db: AsyncSession, project_id: uuid.UUID) -> dict[str, int]:
    """
    Delete a project and every row it owns.

    Children are removed explicitly so the cascade does not depend on the
    backend enforcing ON DELETE CASCADE (SQLite needs a pragma for that).
    Other projects' rows are never touched.
    """
    project = await get_project(db, project_id)

    removed: dict[str, int] = {}
    for model in (*ANALYSIS_TABLES, EntryCampaign, ProjectCampaignTag):
        result = await db.execute(delete(model).where(model.project_id == project_id))
        removed[model.__tablename__] = result.rowcount or 0

    await db.delete(project)
    await db.flush()

    logger.info("project.deleted", project_id=str(project_id), **removed)
    return removed
