from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.campaigns.models.campaign import Campaign, CampaignStatus
from app.features.waitlist.exceptions import (
    CampaignNotAcceptingSignups,
    CampaignNotFound,
    CapacityExceeded,
)
from app.features.waitlist.services.entrant_repository import EntrantRepository
from app.platform.logger import get_logger

logger = get_logger(__name__)


class CampaignService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_campaign(self, campaign_id: str) -> Campaign:
        result = await self.db.execute(select(Campaign).where(Campaign.id == campaign_id))
        campaign = result.scalars().first()
        if not campaign:
            raise CampaignNotFound()
        return campaign

    async def list_active_ids(self) -> List[str]:
        result = await self.db.execute(
            select(Campaign.id).where(Campaign.status == CampaignStatus.active)
        )
        return list(result.scalars().all())

    async def ensure_accepting_signups(self, campaign_id: str) -> Campaign:
        """
        Gate in front of the ranking engine: the campaign must exist, be
        active, and have room left under ``max_signups``.
        """
        campaign = await self.get_campaign(campaign_id)
        if campaign.status != CampaignStatus.active:
            raise CampaignNotAcceptingSignups()

        if campaign.max_signups is not None:
            live = await EntrantRepository(self.db).live_count(campaign_id)
            if live >= campaign.max_signups:
                logger.info(f"Campaign {campaign_id} is full ({live}/{campaign.max_signups})")
                raise CapacityExceeded()
        return campaign
