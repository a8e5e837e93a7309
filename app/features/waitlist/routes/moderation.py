from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.campaigns.services.campaign import CampaignService
from app.features.waitlist.models.entrant import EntrantStatus
from app.features.waitlist.schemas.waitlist import EntrantOut, RecomputeSummary
from app.features.waitlist.services.filters import build_filter
from app.features.waitlist.services.ranking_engine import RankingEngine
from app.platform.db.session import get_db
from app.platform.response import api_response
from app.platform.schemas import ErrorResponse

router = APIRouter(tags=["Waitlist Admin"])


@router.post(
    "/campaigns/{campaign_id}/entrants/{entrant_id}/reward",
    response_model=dict,
    summary="Apply the referral reward for a referred entrant",
    responses={code: {"model": ErrorResponse} for code in (404, 409, 504)},
)
async def apply_reward(campaign_id: str, entrant_id: str, db: AsyncSession = Depends(get_db)):
    engine = RankingEngine(db)
    result = await engine.apply_referral_reward(campaign_id, entrant_id)
    message = "Referral reward applied" if result.applied else "Referral reward not applied"
    return api_response(data=result, message=message)


@router.post(
    "/campaigns/{campaign_id}/recompute",
    response_model=dict,
    summary="Re-derive dense positions for a campaign",
)
async def recompute_positions(campaign_id: str, db: AsyncSession = Depends(get_db)):
    engine = RankingEngine(db)
    updated = await engine.recompute(campaign_id)
    return api_response(
        data=RecomputeSummary(campaign_id=campaign_id, updated=updated),
        message="Positions recomputed",
    )


@router.get(
    "/campaigns/{campaign_id}/entrants",
    response_model=dict,
    summary="List and search a campaign's entrants",
)
async def list_entrants(
    campaign_id: str,
    entrant_status: Optional[EntrantStatus] = Query(default=None, alias="status"),
    verified: Optional[bool] = Query(default=None),
    referred_by: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=255),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    await CampaignService(db).get_campaign(campaign_id)

    flt = build_filter(status=entrant_status, verified=verified, referred_by=referred_by, search=search)
    engine = RankingEngine(db)
    rows, total = await engine.list_entrants(campaign_id, flt, limit=limit, offset=offset)
    return api_response(
        data={
            "items": [EntrantOut.model_validate(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        },
        message="Entrants retrieved",
    )


@router.post(
    "/entrants/{entrant_id}/block",
    response_model=dict,
    summary="Block an entrant",
)
async def block_entrant(entrant_id: str, db: AsyncSession = Depends(get_db)):
    """Blocked entrants keep their row but drop out of ranking until the next recompute closes the gap."""
    engine = RankingEngine(db)
    await engine.block_entrant(entrant_id)
    return api_response(data={"entrant_id": entrant_id}, message="Entrant blocked")


@router.delete(
    "/entrants/{entrant_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Soft-delete an entrant",
)
async def remove_entrant(entrant_id: str, db: AsyncSession = Depends(get_db)):
    engine = RankingEngine(db)
    await engine.remove_entrant(entrant_id)
    return api_response(data={"entrant_id": entrant_id}, message="Entrant removed")
