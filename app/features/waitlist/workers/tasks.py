"""
Celery tasks for the waitlist ranking engine.

The engine is async; each task drives it with ``asyncio.run`` on a fresh
event loop and a session from ``get_async_db``.
"""

import asyncio
from typing import Any, Dict, Optional

from app.features.campaigns.services.campaign import CampaignService
from app.features.waitlist.exceptions import DeadlineExceeded, NotFound, PositionConflict
from app.features.waitlist.services.ranking_engine import RankingEngine
from app.platform.async_db_helper import get_async_db
from app.platform.celery_app import celery_app
from app.platform.db.session import engine as db_engine
from app.platform.logger import get_logger

logger = get_logger(__name__)


def _run(coro):
    """Run ``coro`` on a new loop; pooled connections are bound to it, so drop them after."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await db_engine.dispose()

    return asyncio.run(_wrapped())


async def _process_verified(entrant_id: str) -> Optional[Dict[str, Any]]:
    async with get_async_db() as db:
        result = await RankingEngine(db).handle_entrant_verified(entrant_id)
        return result.model_dump() if result is not None else None


async def _recompute(campaign_id: str) -> int:
    async with get_async_db() as db:
        return await RankingEngine(db).recompute(campaign_id)


async def _recompute_active() -> Dict[str, int]:
    async with get_async_db() as db:
        campaign_ids = await CampaignService(db).list_active_ids()
        engine = RankingEngine(db)
        summary = {}
        for campaign_id in campaign_ids:
            summary[campaign_id] = await engine.recompute(campaign_id)
        return summary


@celery_app.task(
    bind=True,
    name="app.features.waitlist.workers.tasks.process_entrant_verified",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(PositionConflict, DeadlineExceeded),
    retry_backoff=True,
)
def process_entrant_verified(self, entrant_id: str) -> Optional[Dict[str, Any]]:
    """
    Verification Notifier entry point for out-of-band email confirmation.

    Replays are safe: the engine ignores entrants that are already verified.
    """
    logger.info(f"Processing verification for entrant {entrant_id}")
    try:
        return _run(_process_verified(entrant_id))
    except NotFound as e:
        logger.warning(f"Verification for entrant {entrant_id} dropped: {e.message}")
        return None


@celery_app.task(
    bind=True,
    name="app.features.waitlist.workers.tasks.recompute_campaign_positions",
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(PositionConflict,),
    retry_backoff=True,
)
def recompute_campaign_positions(self, campaign_id: str) -> Dict[str, Any]:
    updated = _run(_recompute(campaign_id))
    return {"campaign_id": campaign_id, "updated": updated}


@celery_app.task(
    bind=True,
    name="app.features.waitlist.workers.tasks.recompute_active_campaigns",
)
def recompute_active_campaigns(self) -> Dict[str, int]:
    """Periodic drift repair for every active campaign. Runs via Celery Beat."""
    summary = _run(_recompute_active())
    repaired = {cid: n for cid, n in summary.items() if n}
    if repaired:
        logger.warning(f"Recompute repaired drift in {len(repaired)} campaign(s): {repaired}")
    else:
        logger.info(f"Recompute found {len(summary)} active campaign(s) already dense")
    return summary
