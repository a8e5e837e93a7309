import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.features.campaigns.models.campaign import CampaignStatus
from app.platform.db.session import get_db

REFERRAL_SETTINGS = {
    "enabled": True,
    "verified_only": True,
    "referrer_positions_to_jump": 2,
    "sharing_channels": "twitter",
}


@pytest_asyncio.fixture
async def api(test_app, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    test_app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client
    test_app.dependency_overrides.pop(get_db, None)


async def join(api, campaign_id, email, ref=None):
    body = {"email": email, "first_name": email.split("@")[0]}
    if ref:
        body["referral_code"] = ref
    return await api.post(f"/api/v1/campaigns/{campaign_id}/signups", json=body)


@pytest.mark.asyncio
async def test_referral_flow_end_to_end(api, make_campaign, seed_entrants):
    campaign = await make_campaign(slug="spring", referral=REFERRAL_SETTINGS)
    await seed_entrants(campaign, 4)

    first = await join(api, campaign.id, "ann@example.com")
    assert first.status_code == 201
    ann = first.json()["data"]
    assert ann["position"] == 5
    assert ann["referral_link"].endswith(f"/join/spring?ref={ann['entrant']['referral_code']}")
    assert ann["referral_codes"] == {"twitter": f"{ann['entrant']['referral_code']}_TW"}

    second = await join(api, campaign.id, "bob@example.com", ref=ann["referral_codes"]["twitter"])
    bob = second.json()["data"]["entrant"]
    assert bob["position"] == 6
    assert bob["source"] == "twitter"
    assert bob["referred_by_id"] == ann["entrant"]["id"]

    verified = await api.post(f"/api/v1/entrants/{bob['id']}/verify")
    assert verified.status_code == 200
    reward = verified.json()["data"]["reward"]
    assert reward["applied"] is True
    assert reward["movers"][0]["new_position"] == 3

    replay = await api.post(f"/api/v1/entrants/{bob['id']}/verify")
    assert replay.json()["data"]["reward"] is None

    position = await api.get(f"/api/v1/entrants/{ann['entrant']['id']}/position")
    assert position.json()["data"] == {
        "position": 3,
        "original_position": 5,
        "referral_count": 1,
        "referral_code": ann["entrant"]["referral_code"],
    }

    board = await api.get(f"/api/v1/campaigns/{campaign.id}/leaderboard", params={"limit": 1})
    assert [entry["entrant_id"] for entry in board.json()["data"]] == [ann["entrant"]["id"]]


@pytest.mark.asyncio
async def test_duplicate_signup_is_409(api, make_campaign):
    campaign = await make_campaign()
    await join(api, campaign.id, "dup@example.com")

    response = await join(api, campaign.id, "dup@example.com")

    assert response.status_code == 409
    assert response.json()["error"] == "already_exists"


@pytest.mark.asyncio
async def test_signup_capacity_and_status_checks(api, make_campaign):
    full = await make_campaign(slug="full", max_signups=1)
    paused = await make_campaign(slug="paused", status=CampaignStatus.paused)

    assert (await join(api, full.id, "one@example.com")).status_code == 201
    over = await join(api, full.id, "two@example.com")
    assert over.status_code == 403
    assert over.json()["error"] == "capacity_exceeded"

    closed = await join(api, paused.id, "late@example.com")
    assert closed.status_code == 403
    assert closed.json()["error"] == "campaign_inactive"

    missing = await join(api, "no-such-campaign", "x@example.com")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_moderation_then_recompute(api, make_campaign, seed_entrants, live_positions):
    campaign = await make_campaign()
    seeded = await seed_entrants(campaign, 4)

    assert (await api.post(f"/api/v1/entrants/{seeded[0].id}/block")).status_code == 200
    assert (await api.delete(f"/api/v1/entrants/{seeded[2].id}")).status_code == 200
    assert (await api.delete(f"/api/v1/entrants/{seeded[2].id}")).status_code == 404

    listing = await api.get(f"/api/v1/campaigns/{campaign.id}/entrants", params={"status": "blocked"})
    assert [item["id"] for item in listing.json()["data"]["items"]] == [seeded[0].id]

    recompute = await api.post(f"/api/v1/campaigns/{campaign.id}/recompute")
    assert recompute.json()["data"] == {"campaign_id": campaign.id, "updated": 2}
    assert await live_positions(campaign.id) == {seeded[1].id: 1, seeded[3].id: 2}
