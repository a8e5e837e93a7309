from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.features.waitlist.exceptions import (
    CapacityExceeded,
    DeadlineExceeded,
    EntrantNotFound,
    InvariantViolation,
)
from app.features.waitlist.models.entrant import EntrantStatus
from app.features.waitlist.routes.moderation import router as moderation_router
from app.features.waitlist.routes.waitlist import router as waitlist_router
from app.features.waitlist.schemas.waitlist import (
    LeaderboardEntry,
    PositionChange,
    PublicPosition,
    RecomputeResult,
)
from app.platform.db.session import get_db
from app.platform.exceptions import add_exception_handlers

ROUTES = "app.features.waitlist.routes.waitlist"
ADMIN_ROUTES = "app.features.waitlist.routes.moderation"


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    add_exception_handlers(app)
    app.include_router(waitlist_router)
    app.include_router(moderation_router)

    async def override_get_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def ac(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def make_entrant(**overrides):
    fields = dict(
        id="e-1",
        campaign_id="c-1",
        email="alice@example.com",
        first_name="Alice",
        last_name=None,
        position=4,
        original_position=4,
        referral_code="AB12CD34",
        referred_by_id=None,
        source="direct",
        referral_count=0,
        verified_referral_count=0,
        email_verified=False,
        status=EntrantStatus.pending,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.mark.asyncio
async def test_join_waitlist_success(ac):
    with patch(f"{ROUTES}.CampaignService") as campaigns, patch(f"{ROUTES}.RankingEngine") as engine, patch(
        f"{ROUTES}.ReferralCodeRegistry"
    ) as registry:
        campaigns.return_value.ensure_accepting_signups = AsyncMock(return_value=SimpleNamespace(slug="launch"))
        engine.return_value.register_signup = AsyncMock(return_value=make_entrant())
        registry.return_value.build_link = MagicMock(return_value="https://w.example/join/launch?ref=AB12CD34")
        registry.return_value.channel_codes = AsyncMock(return_value={"twitter": "AB12CD34_TW"})

        response = await ac.post(
            "/campaigns/c-1/signups",
            json={"email": "alice@example.com", "first_name": "Alice", "referral_code": "ZZZZZZZZ"},
        )

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["message"] == "Successfully added to waitlist"
    assert payload["data"]["position"] == 4
    assert payload["data"]["entrant"]["referral_code"] == "AB12CD34"
    assert payload["data"]["referral_link"].endswith("?ref=AB12CD34")
    assert payload["data"]["referral_codes"] == {"twitter": "AB12CD34_TW"}

    draft = engine.return_value.register_signup.await_args.args[1]
    assert draft.referral_code == "ZZZZZZZZ"


@pytest.mark.asyncio
async def test_join_waitlist_full_campaign(ac):
    with patch(f"{ROUTES}.CampaignService") as campaigns, patch(f"{ROUTES}.RankingEngine") as engine:
        campaigns.return_value.ensure_accepting_signups = AsyncMock(side_effect=CapacityExceeded())
        engine.return_value.register_signup = AsyncMock()

        response = await ac.post("/campaigns/c-1/signups", json={"email": "alice@example.com"})

    assert response.status_code == 403
    assert response.json()["error"] == "capacity_exceeded"
    engine.return_value.register_signup.assert_not_awaited()


@pytest.mark.asyncio
async def test_join_waitlist_rejects_bad_email(ac):
    response = await ac.post("/campaigns/c-1/signups", json={"email": "not-an-email"})

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"


@pytest.mark.asyncio
async def test_verify_entrant_returns_reward(ac):
    reward = RecomputeResult(
        campaign_id="c-1",
        referred_id="e-2",
        applied=True,
        referrer_id="e-1",
        movers=[PositionChange(entrant_id="e-1", old_position=10, new_position=8)],
        shifted=2,
    )
    with patch(f"{ROUTES}.RankingEngine") as engine:
        engine.return_value.handle_entrant_verified = AsyncMock(return_value=reward)
        response = await ac.post("/entrants/e-2/verify")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["entrant_id"] == "e-2"
    assert data["reward"]["movers"] == [{"entrant_id": "e-1", "old_position": 10, "new_position": 8}]


@pytest.mark.asyncio
async def test_verify_unknown_entrant_is_404(ac):
    with patch(f"{ROUTES}.RankingEngine") as engine:
        engine.return_value.handle_entrant_verified = AsyncMock(side_effect=EntrantNotFound())
        response = await ac.post("/entrants/missing/verify")

    assert response.status_code == 404
    assert response.json()["message"] == "Entrant not found"


@pytest.mark.asyncio
async def test_get_position(ac):
    public = PublicPosition(position=3, original_position=9, referral_count=2, referral_code="AB12CD34")
    with patch(f"{ROUTES}.RankingEngine") as engine:
        engine.return_value.get_public_position = AsyncMock(return_value=public)
        response = await ac.get("/entrants/e-1/position")

    assert response.status_code == 200
    assert response.json()["data"] == public.model_dump()


@pytest.mark.asyncio
async def test_leaderboard_passes_limit(ac):
    entries = [LeaderboardEntry(entrant_id="e-1", first_name="Alice", position=1, referral_count=5)]
    with patch(f"{ROUTES}.CampaignService") as campaigns, patch(f"{ROUTES}.RankingEngine") as engine:
        campaigns.return_value.get_campaign = AsyncMock()
        engine.return_value.get_leaderboard = AsyncMock(return_value=entries)
        response = await ac.get("/campaigns/c-1/leaderboard", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["data"][0]["referral_count"] == 5
    engine.return_value.get_leaderboard.assert_awaited_once_with("c-1", 5)


@pytest.mark.asyncio
async def test_apply_reward_timeout_is_504(ac):
    with patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        engine.return_value.apply_referral_reward = AsyncMock(side_effect=DeadlineExceeded())
        response = await ac.post("/campaigns/c-1/entrants/e-2/reward")

    assert response.status_code == 504
    assert response.json()["error"] == "deadline_exceeded"


@pytest.mark.asyncio
async def test_apply_reward_noop_reports_reason(ac):
    result = RecomputeResult(campaign_id="c-1", referred_id="e-2", applied=False, reason="already_applied")
    with patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        engine.return_value.apply_referral_reward = AsyncMock(return_value=result)
        response = await ac.post("/campaigns/c-1/entrants/e-2/reward")

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Referral reward not applied"
    assert payload["data"]["reason"] == "already_applied"


@pytest.mark.asyncio
async def test_invariant_violation_is_500(ac):
    with patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        engine.return_value.apply_referral_reward = AsyncMock(side_effect=InvariantViolation("dup at 8"))
        response = await ac.post("/campaigns/c-1/entrants/e-2/reward")

    assert response.status_code == 500
    assert response.json()["error"] == "invariant_violation"


@pytest.mark.asyncio
async def test_recompute(ac):
    with patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        engine.return_value.recompute = AsyncMock(return_value=3)
        response = await ac.post("/campaigns/c-1/recompute")

    assert response.status_code == 200
    assert response.json()["data"] == {"campaign_id": "c-1", "updated": 3}


@pytest.mark.asyncio
async def test_list_entrants_builds_filter(ac):
    with patch(f"{ADMIN_ROUTES}.CampaignService") as campaigns, patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        campaigns.return_value.get_campaign = AsyncMock()
        engine.return_value.list_entrants = AsyncMock(return_value=([make_entrant()], 1))
        response = await ac.get(
            "/campaigns/c-1/entrants",
            params={"status": "pending", "verified": "false", "search": "alice", "limit": 10},
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["email"] == "alice@example.com"

    args = engine.return_value.list_entrants.await_args
    flt = args.args[1]
    assert len(flt.filters) == 3
    assert args.kwargs == {"limit": 10, "offset": 0}


@pytest.mark.asyncio
async def test_block_and_remove(ac):
    with patch(f"{ADMIN_ROUTES}.RankingEngine") as engine:
        engine.return_value.block_entrant = AsyncMock()
        engine.return_value.remove_entrant = AsyncMock()

        blocked = await ac.post("/entrants/e-1/block")
        removed = await ac.delete("/entrants/e-1")

    assert blocked.status_code == 200
    assert blocked.json()["message"] == "Entrant blocked"
    assert removed.status_code == 200
    engine.return_value.remove_entrant.assert_awaited_once_with("e-1")
