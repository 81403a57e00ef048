import asyncio
import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest
from redis.exceptions import LockNotOwnedError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.path_analysis import analyze_project, force_full_analysis

PROJECT_ID = "00000000-0000-0000-0000-000000000301"


class _FakeLock:
    def __init__(self, busy: bool, expired: bool = False):
        self.busy = busy
        self.expired = expired
        self.released = False

    async def acquire(self):
        return not self.busy

    async def release(self):
        if self.expired:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.released = True


class _FakeRedis:
    def __init__(self, busy: bool = False, expired: bool = False):
        self.lock_obj = _FakeLock(busy, expired)
        self.lock_calls: list[tuple[str, dict]] = []
        self.closed = False

    def lock(self, name, **kwargs):
        self.lock_calls.append((name, kwargs))
        return self.lock_obj

    async def aclose(self):
        self.closed = True


@pytest.fixture
def worker_db(tmp_path, monkeypatch):
    from db.models import AnalysisProject, Campaign, CampaignEmail, EntryCampaign, Merchant

    db_path = tmp_path / "paths.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    merchant_id = uuid.uuid4()
    welcome, newsletter = uuid.uuid4(), uuid.uuid4()

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add(Merchant(merchant_id=merchant_id, domain="shop.example.com"))
            db.add_all(
                [
                    Campaign(campaign_id=welcome, merchant_id=merchant_id, subject="Welcome"),
                    Campaign(campaign_id=newsletter, merchant_id=merchant_id, subject="Newsletter"),
                ]
            )
            db.add(AnalysisProject(project_id=uuid.UUID(PROJECT_ID), name="Funnel", merchant_id=merchant_id))
            db.add(EntryCampaign(project_id=uuid.UUID(PROJECT_ID), campaign_id=welcome, is_confirmed=True))
            db.add_all(
                [
                    CampaignEmail(campaign_id=welcome, recipient="a@example.com", received_at=datetime(2026, 1, 1)),
                    CampaignEmail(campaign_id=newsletter, recipient="a@example.com", received_at=datetime(2026, 1, 2)),
                ]
            )
            await db.commit()

    asyncio.run(_seed())

    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(
            database_url=db_url,
            database_echo=False,
            redis_url="redis://localhost:6379/15",
            path_analysis_lock_timeout_seconds=60,
        ),
    )

    async def _watermark():
        async with session_factory() as db:
            result = await db.execute(
                select(AnalysisProject.last_analysis_time).where(
                    AnalysisProject.project_id == uuid.UUID(PROJECT_ID)
                )
            )
            return result.scalar_one()

    yield SimpleNamespace(watermark=lambda: asyncio.run(_watermark()))

    asyncio.run(engine.dispose())


def test_analyze_project_runs_full_then_incremental(worker_db, monkeypatch):
    fake = _FakeRedis()
    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", lambda url: fake)

    first = analyze_project.run(project_id=PROJECT_ID)
    assert first["status"] == "success"
    assert first["is_incremental"] is False
    assert first["new_users_added"] == 1
    assert first["events_created"] == 2
    assert first["edges_updated"] == 1
    assert worker_db.watermark() is not None

    second = analyze_project.run(project_id=PROJECT_ID)
    assert second["is_incremental"] is True
    assert second["events_created"] == 0

    name, kwargs = fake.lock_calls[0]
    assert name == f"path-analysis:{PROJECT_ID}"
    assert kwargs == {"timeout": 60, "blocking": False}
    assert fake.lock_obj.released is True
    assert fake.closed is True


def test_busy_lock_skips_analysis(worker_db, monkeypatch):
    fake = _FakeRedis(busy=True)
    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", lambda url: fake)

    result = force_full_analysis.run(project_id=PROJECT_ID)

    assert result["status"] == "skipped"
    assert result["reason"] == "analysis_in_progress"
    assert fake.lock_obj.released is False
    assert worker_db.watermark() is None


def test_expired_lock_keeps_committed_pass(worker_db, monkeypatch):
    fake = _FakeRedis(expired=True)
    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", lambda url: fake)

    result = analyze_project.run(project_id=PROJECT_ID)

    assert result["status"] == "success"
    assert result["events_created"] == 2
    assert worker_db.watermark() is not None
    assert fake.closed is True


def test_engine_failure_opens_no_redis_client(worker_db, monkeypatch):
    def _broken_engine(*args, **kwargs):
        raise RuntimeError("database unavailable")

    def _unexpected_redis(url):
        raise AssertionError("redis client opened without an engine")

    monkeypatch.setattr("workers.path_analysis.create_async_engine", _broken_engine)
    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", _unexpected_redis)

    with pytest.raises(RuntimeError, match="database unavailable"):
        analyze_project.run(project_id=PROJECT_ID)


def test_force_full_analysis_recomputes(worker_db, monkeypatch):
    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", lambda url: _FakeRedis())

    analyze_project.run(project_id=PROJECT_ID)
    result = force_full_analysis.run(project_id=PROJECT_ID)

    assert result["status"] == "success"
    assert result["force_full"] is True
    assert result["is_incremental"] is False
    assert result["new_users_added"] == 1


def test_invalid_project_id_is_rejected(worker_db, monkeypatch):
    from analysis.errors import InvalidInputError

    monkeypatch.setattr("workers.path_analysis.aioredis.from_url", lambda url: _FakeRedis())

    with pytest.raises(InvalidInputError):
        analyze_project.run(project_id="not-a-uuid")
