"""
Tests for project-level campaign tags and valuable-campaign statistics.
"""

import uuid
from datetime import datetime

import pytest
from sqlalchemy import update

from analysis.attribution import attribute
from analysis.errors import CampaignNotFoundError, InvalidInputError, ProjectNotFoundError
from analysis.sequencer import record_touch
from analysis.value_stats import compute_stats, conversion_rate
from analysis.value_tags import (
    effective_campaign_tag,
    get_project_campaign_tag,
    list_project_campaign_tags,
    remove_project_campaign_tag,
    set_project_campaign_tag,
    validate_tag,
)
from db.models import Campaign


def at(day: int) -> datetime:
    return datetime(2026, 1, day)


class TestValidateTag:
    @pytest.mark.parametrize("tag", [0, 1, 2, 3, 4])
    def test_accepts_range(self, tag):
        assert validate_tag(tag) == tag

    @pytest.mark.parametrize("tag", [-1, 5, True, "1", 1.0])
    def test_rejects_out_of_range_and_non_ints(self, tag):
        with pytest.raises(InvalidInputError):
            validate_tag(tag)


class TestConversionRate:
    def test_zero_total_is_zero(self):
        assert conversion_rate(0, 0) == 0.0

    def test_rounded_percentage(self):
        assert conversion_rate(1, 3) == 33.33


@pytest.mark.asyncio
class TestProjectCampaignTags:
    async def test_set_update_and_remove(self, test_db, seeded):
        pid, c = seeded["project_id"], seeded["campaigns"]

        created = await set_project_campaign_tag(test_db, pid, c["discount"], 1, note="converts")
        assert created.is_valuable is True
        assert created.subject == "Your exclusive discount"

        updated = await set_project_campaign_tag(test_db, pid, c["discount"], 3)
        assert updated.tag == 3
        assert updated.tag_note is None
        assert updated.is_valuable is False
        assert len(await list_project_campaign_tags(test_db, pid)) == 1

        assert await remove_project_campaign_tag(test_db, pid, c["discount"]) is True
        assert await remove_project_campaign_tag(test_db, pid, c["discount"]) is False
        assert await get_project_campaign_tag(test_db, pid, c["discount"]) is None

    async def test_override_wins_over_campaign_default(self, test_db, seeded):
        pid, other, c = seeded["project_id"], seeded["other_project_id"], seeded["campaigns"]
        await test_db.execute(update(Campaign).where(Campaign.campaign_id == c["promo"]).values(tag=2))

        await set_project_campaign_tag(test_db, pid, c["promo"], 0)

        assert await effective_campaign_tag(test_db, pid, c["promo"]) == 0
        assert await effective_campaign_tag(test_db, other, c["promo"]) == 2
        assert await effective_campaign_tag(test_db, pid, c["newsletter"]) == 0

    async def test_validation_errors(self, test_db, seeded):
        pid, c = seeded["project_id"], seeded["campaigns"]

        with pytest.raises(InvalidInputError):
            await set_project_campaign_tag(test_db, pid, c["promo"], 7)
        with pytest.raises(ProjectNotFoundError):
            await set_project_campaign_tag(test_db, uuid.uuid4(), c["promo"], 1)
        with pytest.raises(CampaignNotFoundError):
            await set_project_campaign_tag(test_db, pid, uuid.uuid4(), 1)


@pytest.mark.asyncio
class TestValuableStats:
    async def test_reach_and_conversion(self, test_db, seeded):
        pid, c = seeded["project_id"], seeded["campaigns"]
        await test_db.execute(update(Campaign).where(Campaign.campaign_id == c["reminder"]).values(tag=1))
        await set_project_campaign_tag(test_db, pid, c["discount"], 2)

        paths = {
            "a@example.com": [c["welcome"], c["discount"]],
            "b@example.com": [c["welcome"], c["reminder"], c["discount"]],
            "c@example.com": [c["welcome"], c["newsletter"]],
            "d@example.com": [c["welcome"]],
        }
        for recipient, campaign_ids in paths.items():
            await attribute(test_db, pid, recipient, campaign_ids[0])
            for day, campaign_id in enumerate(campaign_ids, start=1):
                await record_touch(test_db, pid, recipient, campaign_id, at(day))

        stats = await compute_stats(test_db, pid)

        assert stats.valuable_campaign_count == 2
        assert stats.high_value_campaign_count == 1
        assert stats.valuable_user_reach == 2
        assert stats.valuable_conversion_rate == 50.0

    async def test_empty_project(self, test_db, seeded):
        stats = await compute_stats(test_db, seeded["project_id"])

        assert stats.valuable_user_reach == 0
        assert stats.valuable_conversion_rate == 0.0
