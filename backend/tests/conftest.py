"""
Test Configuration — Fixtures for async DB and seeded campaign data.

Each test gets its own in-memory SQLite database. The analysis passes
commit and roll back for real, so tests share no transaction scaffolding.
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.models import AnalysisProject, Campaign, CampaignEmail, Merchant
from db.session import Base

# Use in-memory SQLite for tests. StaticPool keeps a single connection so
# every session of a test sees the same database.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

MERCHANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
OTHER_MERCHANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")


@pytest.fixture
async def test_engine():
    """Create a fresh database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(test_db):
    """
    One merchant with five campaigns and two projects over the same data.

    Campaign keys: welcome and promo are typical entries, the rest are
    follow-ups. A second merchant owns one campaign that must stay invisible.
    """
    test_db.add_all(
        [
            Merchant(merchant_id=MERCHANT_ID, domain="shop.example.com", display_name="Example Shop"),
            Merchant(merchant_id=OTHER_MERCHANT_ID, domain="other.example.com", display_name="Other Shop"),
        ]
    )
    await test_db.flush()

    campaigns = {}
    for key, subject in [
        ("welcome", "Welcome to Example Shop"),
        ("promo", "Spring promo: 20% off"),
        ("newsletter", "Weekly newsletter"),
        ("discount", "Your exclusive discount"),
        ("reminder", "Items left in your cart"),
    ]:
        campaign = Campaign(campaign_id=uuid.uuid4(), merchant_id=MERCHANT_ID, subject=subject)
        test_db.add(campaign)
        campaigns[key] = campaign.campaign_id

    foreign = Campaign(campaign_id=uuid.uuid4(), merchant_id=OTHER_MERCHANT_ID, subject="Other welcome")
    test_db.add(foreign)
    campaigns["foreign"] = foreign.campaign_id

    project_id = uuid.uuid4()
    other_project_id = uuid.uuid4()
    test_db.add_all(
        [
            AnalysisProject(project_id=project_id, name="Onboarding funnel", merchant_id=MERCHANT_ID),
            AnalysisProject(project_id=other_project_id, name="Promo funnel", merchant_id=MERCHANT_ID),
        ]
    )
    await test_db.commit()

    return {
        "merchant_id": MERCHANT_ID,
        "project_id": project_id,
        "other_project_id": other_project_id,
        "campaigns": campaigns,
    }


@pytest.fixture
def add_touch(test_db):
    """Insert and commit a campaign_emails row: add_touch(campaign_id, recipient, received_at, worker_name=...)."""
    async def _add(campaign_id, recipient, received_at, worker_name="global"):
        row = CampaignEmail(
            campaign_id=campaign_id,
            recipient=recipient,
            received_at=received_at,
            worker_name=worker_name,
        )
        test_db.add(row)
        await test_db.commit()
        return row.id

    return _add


@pytest.fixture
def confirm_entry(test_db):
    """Confirm a campaign as an entry of a project and commit."""
    from analysis.entry_campaigns import set_entry

    async def _confirm(project_id, campaign_id):
        await set_entry(test_db, project_id, campaign_id, confirmed=True)
        await test_db.commit()

    return _confirm
