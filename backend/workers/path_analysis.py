"""
Path Analysis Workers — run project analyses off the request path.

  1. analyze_project: full pass on first run, incremental afterwards
  2. force_full_analysis: reset the watermark and recompute everything

At most one analysis runs per project: a non-blocking Redis lock keyed by
project id guards the pass, and the orchestrator additionally holds the
project row lock for the length of its transaction. A second trigger while
the lock is held is skipped, not queued.
"""

import asyncio
import uuid

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockNotOwnedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

LOCK_KEY = "path-analysis:{project_id}"


def _run_analysis(task, project_id: str, *, force_full: bool) -> dict:
    from analysis.errors import InvalidInputError
    from analysis.orchestrator import analyze_project, force_full_analysis
    from core.config import get_settings

    run_id = task.request.id or "manual"
    try:
        project_uuid = uuid.UUID(str(project_id))
    except ValueError as exc:
        raise InvalidInputError(f"Invalid project id: {project_id!r}") from exc

    analyze = force_full_analysis if force_full else analyze_project

    async def _analyze():
        settings = get_settings()
        engine = create_async_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)
        try:
            redis = aioredis.from_url(settings.redis_url)
        except Exception:
            await engine.dispose()
            raise
        try:
            lock = redis.lock(
                LOCK_KEY.format(project_id=project_uuid),
                timeout=settings.path_analysis_lock_timeout_seconds,
                blocking=False,
            )
            if not await lock.acquire():
                logger.info("path_analysis.lock_busy", project_id=str(project_uuid), run_id=run_id)
                return {
                    "status": "skipped",
                    "reason": "analysis_in_progress",
                    "project_id": str(project_uuid),
                    "run_id": run_id,
                }
            try:
                async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
                async with async_session() as db:
                    result = await analyze(db, project_uuid)
                return {"status": "success", "run_id": run_id, "force_full": force_full, **result.as_dict()}
            finally:
                try:
                    await lock.release()
                except LockNotOwnedError:
                    # Lock timed out mid-pass; the pass outcome stands.
                    logger.warning(
                        "path_analysis.lock_expired",
                        project_id=str(project_uuid),
                        run_id=run_id,
                        timeout_seconds=settings.path_analysis_lock_timeout_seconds,
                    )
        finally:
            await engine.dispose()
            await redis.aclose()

    try:
        return asyncio.run(_analyze())
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "path_analysis.task_failed",
            project_id=str(project_uuid),
            force_full=force_full,
            error=str(exc),
            exc_info=True,
        )
        raise


@celery_app.task(
    name="workers.path_analysis.analyze_project",
    bind=True,
    acks_late=True,
)
def analyze_project(self, project_id: str):
    """Analyze one project: full pass if never analyzed, incremental otherwise."""
    return _run_analysis(self, project_id, force_full=False)


@celery_app.task(
    name="workers.path_analysis.force_full_analysis",
    bind=True,
    acks_late=True,
)
def force_full_analysis(self, project_id: str):
    """Discard derived data of one project and rebuild it from the touch store."""
    return _run_analysis(self, project_id, force_full=True)
