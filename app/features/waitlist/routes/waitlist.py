from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.campaigns.services.campaign import CampaignService
from app.features.waitlist.schemas.waitlist import EntrantOut, SignupIn, SignupOut
from app.features.waitlist.services.ranking_engine import RankingEngine
from app.features.waitlist.services.referral_codes import ReferralCodeRegistry
from app.platform.db.session import get_db
from app.platform.response import api_response
from app.platform.schemas import ErrorResponse

router = APIRouter(tags=["Waitlist"])


@router.post(
    "/campaigns/{campaign_id}/signups",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Join a campaign's waitlist",
    responses={code: {"model": ErrorResponse} for code in (403, 404, 409)},
)
async def join_waitlist(campaign_id: str, signup_in: SignupIn, db: AsyncSession = Depends(get_db)):
    """
    Register a new entrant at the back of the queue.

    An unknown referral code does not fail the signup; the entrant is simply
    recorded as a direct signup.
    """
    campaign = await CampaignService(db).ensure_accepting_signups(campaign_id)

    engine = RankingEngine(db)
    entrant = await engine.register_signup(campaign_id, signup_in)

    codes = ReferralCodeRegistry(db)
    payload = SignupOut(
        entrant=EntrantOut.model_validate(entrant),
        position=entrant.position,
        referral_link=codes.build_link(campaign.slug, entrant.referral_code),
        referral_codes=await codes.channel_codes(entrant.id),
    )
    return api_response(
        data=payload,
        message="Successfully added to waitlist",
        status_code=status.HTTP_201_CREATED,
    )


@router.post(
    "/entrants/{entrant_id}/verify",
    response_model=dict,
    summary="Mark an entrant's email as verified",
)
async def verify_entrant(entrant_id: str, db: AsyncSession = Depends(get_db)):
    """
    Verification Notifier hook. Replaying it for an already verified entrant
    is a no-op.
    """
    engine = RankingEngine(db)
    reward = await engine.handle_entrant_verified(entrant_id)
    return api_response(
        data={"entrant_id": entrant_id, "reward": reward},
        message="Entrant verified",
    )


@router.get(
    "/entrants/{entrant_id}/position",
    response_model=dict,
    summary="Public view of an entrant's place in line",
)
async def get_position(entrant_id: str, db: AsyncSession = Depends(get_db)):
    engine = RankingEngine(db)
    position = await engine.get_public_position(entrant_id)
    return api_response(data=position, message="Position retrieved")


@router.get(
    "/campaigns/{campaign_id}/leaderboard",
    response_model=dict,
    summary="Top referrers of a campaign",
)
async def get_leaderboard(
    campaign_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
):
    await CampaignService(db).get_campaign(campaign_id)
    engine = RankingEngine(db)
    entries = await engine.get_leaderboard(campaign_id, limit)
    return api_response(data=entries, message="Leaderboard retrieved")
