"""
Tests for project scoping: touch visibility, watermark helpers and deletion.
"""

import uuid
from datetime import datetime

import pytest

from analysis.errors import ProjectNotFoundError
from analysis.orchestrator import run_full_analysis
from analysis.projects import (
    delete_project,
    effective_worker_names,
    get_last_analysis_time,
    get_project,
    set_last_analysis_time,
)
from analysis.sequencer import list_project_events
from analysis.touch_store import Touch, earliest_touch_per_recipient, fetch_touches
from analysis.value_tags import list_project_campaign_tags, set_project_campaign_tag
from db.models import AnalysisProject


def at(day: int) -> datetime:
    return datetime(2026, 1, day)


class TestEffectiveWorkerNames:
    def test_list_wins_over_single_name(self):
        project = AnalysisProject(worker_name="global", worker_names=["eu", "us"])
        assert effective_worker_names(project) == ["eu", "us"]

    def test_single_name(self):
        assert effective_worker_names(AnalysisProject(worker_name="eu")) == ["eu"]

    def test_no_filter(self):
        assert effective_worker_names(AnalysisProject(worker_names=[])) is None


class TestEarliestTouch:
    def test_first_of_equal_times_wins(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        touches = [
            Touch(1, a, "x@example.com", at(2)),
            Touch(2, b, "x@example.com", at(2)),
            Touch(3, b, "y@example.com", at(1)),
        ]
        anchors = earliest_touch_per_recipient(touches)
        assert anchors["x@example.com"].touch_id == 1
        assert anchors["y@example.com"].touch_id == 3


@pytest.mark.asyncio
class TestFetchTouches:
    async def test_merchant_campaigns_and_cutoff(self, test_db, seeded, add_touch):
        c = seeded["campaigns"]
        await add_touch(c["welcome"], "a@example.com", at(3))
        await add_touch(c["newsletter"], "a@example.com", at(1))
        await add_touch(c["foreign"], "a@example.com", at(2))
        project = await get_project(test_db, seeded["project_id"])

        touches = await fetch_touches(test_db, project)
        assert [t.campaign_id for t in touches] == [c["newsletter"], c["welcome"]]

        assert [t.campaign_id for t in await fetch_touches(test_db, project, since=at(1))] == [c["welcome"]]
        assert await fetch_touches(test_db, project, campaign_ids=[]) == []
        assert len(await fetch_touches(test_db, project, campaign_ids=[c["welcome"]])) == 1


@pytest.mark.asyncio
class TestProjectLifecycle:
    async def test_watermark_helpers(self, test_db, seeded):
        pid = seeded["project_id"]
        assert await get_last_analysis_time(test_db, pid) is None

        await set_last_analysis_time(test_db, pid, at(5))
        assert await get_last_analysis_time(test_db, pid) == at(5)

    async def test_unknown_project(self, test_db, seeded):
        with pytest.raises(ProjectNotFoundError):
            await get_project(test_db, uuid.uuid4())

    async def test_delete_removes_only_that_project(self, test_db, seeded, add_touch, confirm_entry):
        pid, other, c = seeded["project_id"], seeded["other_project_id"], seeded["campaigns"]
        for project_id in (pid, other):
            await confirm_entry(project_id, c["welcome"])
            await set_project_campaign_tag(test_db, project_id, c["discount"], 1)
        await test_db.commit()
        await add_touch(c["welcome"], "a@example.com", at(1))
        await add_touch(c["discount"], "a@example.com", at(2))

        await run_full_analysis(test_db, pid, now=at(10))
        await run_full_analysis(test_db, other, now=at(10))

        removed = await delete_project(test_db, pid)
        await test_db.commit()

        assert removed == {
            "project_path_edges": 1,
            "project_touch_events": 2,
            "project_attributions": 1,
            "project_entry_campaigns": 1,
            "project_campaign_tags": 1,
        }
        with pytest.raises(ProjectNotFoundError):
            await get_project(test_db, pid)
        assert await list_project_events(test_db, pid) == []

        assert len(await list_project_events(test_db, other)) == 2
        assert len(await list_project_campaign_tags(test_db, other)) == 1
