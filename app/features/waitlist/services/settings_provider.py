from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.campaigns.models.campaign import CampaignReferralSettings
from app.features.waitlist.schemas.waitlist import ReferralSettings


def parse_channels(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


class ReferralSettingsProvider:
    """Read-only access to a campaign's referral configuration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, campaign_id: str) -> ReferralSettings:
        """Settings for ``campaign_id``; campaigns without a row get disabled defaults."""
        result = await self.db.execute(
            select(CampaignReferralSettings).where(CampaignReferralSettings.campaign_id == campaign_id)
        )
        row = result.scalars().first()
        if row is None:
            return ReferralSettings()

        return ReferralSettings(
            enabled=row.enabled,
            points_per_referral=row.points_per_referral,
            verified_only=row.verified_only,
            positions_to_jump=max(row.positions_to_jump, 0),
            referrer_positions_to_jump=max(row.referrer_positions_to_jump, 0),
            referred_jump_enabled=row.referred_jump_enabled,
            sharing_channels=parse_channels(row.sharing_channels),
        )
