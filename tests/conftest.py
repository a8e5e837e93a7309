"""
Test configuration and fixtures for the Waitlist Ranking API.

Every test gets its own SQLite database file through ``aiosqlite``, so ranking
tests run against real SQL (partial unique index, two-phase position writes)
with full isolation.
"""

import os
import tempfile
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mktemp(suffix='.db')}"

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="waitlist-logs-"))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from app.features.campaigns.models.campaign import Campaign, CampaignReferralSettings  # noqa: E402
from app.features.waitlist.models.entrant import Entrant  # noqa: E402
from app.features.waitlist.services.entrant_repository import EntrantRepository  # noqa: E402
from app.features.waitlist.utils.referral_code_generator import generate_referral_code  # noqa: E402
from app.platform.db.models import Base  # noqa: E402


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app):
    with TestClient(test_app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ranking.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_campaign(db):
    async def _make(slug: str = "launch", referral: Optional[Dict] = None, **fields) -> Campaign:
        """Campaign plus (optionally) its referral settings row."""
        campaign = Campaign(name=fields.pop("name", slug.title()), slug=slug, **fields)
        db.add(campaign)
        await db.flush()
        if referral is not None:
            db.add(CampaignReferralSettings(campaign_id=campaign.id, **referral))
        await db.commit()
        return campaign

    return _make


@pytest.fixture
def seed_entrants(db):
    async def _seed(campaign: Campaign, count: int, start: int = 1) -> List[Entrant]:
        """``count`` live entrants at consecutive positions starting from ``start``."""
        entrants = []
        for offset in range(count):
            position = start + offset
            entrant = Entrant(
                campaign_id=campaign.id,
                email=f"{campaign.slug}-{position}@example.com",
                first_name=f"Entrant{position}",
                position=position,
                original_position=position,
                referral_code=generate_referral_code(),
            )
            db.add(entrant)
            entrants.append(entrant)
        await db.commit()
        return entrants

    return _seed


@pytest.fixture
def live_positions(session_factory):
    """Reads through a fresh session so nothing cached in the test's session leaks in."""

    async def _read(campaign_id: str) -> Dict[str, int]:
        async with session_factory() as session:
            rows = await EntrantRepository(session).list_live_ordered(campaign_id)
            return {row.id: row.position for row in rows}

    return _read
