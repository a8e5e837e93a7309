from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.waitlist.exceptions import EntrantNotFound, ReferralCodeExhausted
from app.features.waitlist.models.entrant import Entrant, EntrantChannelCode
from app.features.waitlist.utils.referral_code_generator import (
    build_referral_link,
    channel_codes_for,
    generate_referral_code,
)
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


class ReferralCodeRegistry:
    """Issues referral codes and resolves them back to their owning entrant."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def code_taken(self, code: str) -> bool:
        result = await self.db.execute(
            select(
                or_(
                    exists().where(Entrant.referral_code == code),
                    exists().where(EntrantChannelCode.code == code),
                )
            )
        )
        return bool(result.scalar())

    async def generate(self) -> str:
        """
        New code that is free at the time of the check.

        The unique constraint still guards the insert; a lost race surfaces
        as a conflict and the signup is retried with a fresh code.
        """
        for attempt in range(1, settings.REFERRAL_CODE_MAX_ATTEMPTS + 1):
            code = generate_referral_code(settings.REFERRAL_CODE_LENGTH)
            if not await self.code_taken(code):
                return code
            logger.warning(f"Referral code collision on attempt {attempt}, regenerating")
        raise ReferralCodeExhausted()

    async def resolve(self, code: str) -> Tuple[Entrant, Optional[str]]:
        """
        Owning entrant of ``code`` plus the sharing channel it was issued for
        (``None`` for the entrant's main code).
        """
        result = await self.db.execute(
            select(Entrant, EntrantChannelCode.channel)
            .join(EntrantChannelCode, EntrantChannelCode.entrant_id == Entrant.id)
            .where(EntrantChannelCode.code == code, Entrant.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is not None:
            return row[0], row[1]

        result = await self.db.execute(
            select(Entrant)
            .where(Entrant.referral_code == code, Entrant.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        entrant = result.scalars().first()
        if entrant is None:
            raise EntrantNotFound("Referral code not found")
        return entrant, None

    async def issue_channel_codes(self, entrant: Entrant, channels: Iterable[str]) -> Dict[str, str]:
        codes = channel_codes_for(entrant.referral_code, channels)
        for channel, code in codes.items():
            self.db.add(EntrantChannelCode(entrant_id=entrant.id, channel=channel, code=code))
        if codes:
            await self.db.flush()
        return codes

    async def channel_codes(self, entrant_id: str) -> Dict[str, str]:
        result = await self.db.execute(
            select(EntrantChannelCode.channel, EntrantChannelCode.code)
            .where(EntrantChannelCode.entrant_id == entrant_id)
            .order_by(EntrantChannelCode.channel)
        )
        return {row.channel: row.code for row in result}

    @staticmethod
    def build_link(campaign_slug: str, referral_code: str) -> str:
        return build_referral_link(settings.LANDING_PAGE_URL, campaign_slug, referral_code)
