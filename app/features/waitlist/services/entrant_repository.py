from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.campaigns.models.campaign import Campaign
from app.features.waitlist.exceptions import CampaignNotFound, EntrantNotFound, PositionConflict
from app.features.waitlist.models.entrant import Entrant, EntrantStatus
from app.features.waitlist.services.filters import EntrantFilter
from app.platform.logger import get_logger

logger = get_logger(__name__)


def live_entrants(campaign_id: str):
    return and_(
        Entrant.campaign_id == campaign_id,
        Entrant.deleted_at.is_(None),
        Entrant.status != EntrantStatus.blocked,
    )


# Canonical tie-break order for any two entrants that would otherwise compare equal
CANONICAL_ORDER = (Entrant.position.asc(), Entrant.created_at.asc(), Entrant.id.asc())


class EntrantRepository:
    """
    Persistence for waitlist entrants.

    Every write here is a single SQL statement (or a pair for position
    swaps) and never a fetch-then-save, so concurrent callers cannot lose
    updates. Transactions are owned by the caller.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Point lookups ───────────────────────────

    async def find_by_id(self, entrant_id: str) -> Optional[Entrant]:
        """Any row with this id, soft-deleted or blocked included."""
        result = await self.db.execute(
            select(Entrant)
            .where(Entrant.id == entrant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_by_id(self, entrant_id: str) -> Entrant:
        entrant = await self.find_by_id(entrant_id)
        if entrant is None or entrant.deleted_at is not None:
            raise EntrantNotFound()
        return entrant

    async def get_by_referral_code(self, referral_code: str) -> Entrant:
        result = await self.db.execute(
            select(Entrant)
            .where(Entrant.referral_code == referral_code, Entrant.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        entrant = result.scalars().first()
        if entrant is None:
            raise EntrantNotFound("Referral code not found")
        return entrant

    async def find_by_email(self, campaign_id: str, email: str) -> Optional[Entrant]:
        result = await self.db.execute(
            select(Entrant).where(
                Entrant.campaign_id == campaign_id,
                Entrant.email == email.strip().lower(),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_by_email(self, campaign_id: str, email: str) -> Entrant:
        entrant = await self.find_by_email(campaign_id, email)
        if entrant is None or entrant.deleted_at is not None:
            raise EntrantNotFound()
        return entrant

    async def lock_campaign(self, campaign_id: str) -> Campaign:
        """Row lock on the campaign; serializes position writers across processes."""
        result = await self.db.execute(
            select(Campaign).where(Campaign.id == campaign_id).with_for_update()
        )
        campaign = result.scalars().first()
        if campaign is None:
            raise CampaignNotFound()
        return campaign

    # ── Ordered / ranged reads ──────────────────

    async def list_live_ordered(self, campaign_id: str) -> Sequence[Entrant]:
        result = await self.db.execute(
            select(Entrant)
            .where(live_entrants(campaign_id))
            .order_by(*CANONICAL_ORDER)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def window(self, campaign_id: str, lo: int, hi: int) -> Dict[str, int]:
        """``{entrant_id: position}`` for live entrants with ``lo <= position <= hi``."""
        result = await self.db.execute(
            select(Entrant.id, Entrant.position).where(
                live_entrants(campaign_id),
                Entrant.position.between(lo, hi),
            )
        )
        return {row.id: row.position for row in result}

    async def tail_position(self, campaign_id: str) -> int:
        """
        Next free slot at the back of the queue.

        Equals ``live_count + 1`` while positions are dense; after a soft
        delete left a gap it stays past the highest live position so it can
        never collide with one.
        """
        result = await self.db.execute(
            select(func.coalesce(func.max(Entrant.position), 0)).where(live_entrants(campaign_id))
        )
        return int(result.scalar_one()) + 1

    async def live_count(self, campaign_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Entrant.id)).where(live_entrants(campaign_id))
        )
        return int(result.scalar_one())

    async def find_duplicate_positions(self, campaign_id: str, lo: int, hi: int) -> List[int]:
        result = await self.db.execute(
            select(Entrant.position)
            .where(live_entrants(campaign_id), Entrant.position.between(lo, hi))
            .group_by(Entrant.position)
            .having(func.count(Entrant.id) > 1)
        )
        return list(result.scalars().all())

    async def leaderboard(self, campaign_id: str, limit: int) -> Sequence[Entrant]:
        result = await self.db.execute(
            select(Entrant)
            .where(live_entrants(campaign_id))
            .order_by(Entrant.referral_count.desc(), Entrant.position.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def list_entrants(
        self, campaign_id: str, flt: EntrantFilter, limit: int = 50, offset: int = 0
    ) -> Tuple[Sequence[Entrant], int]:
        base = and_(
            Entrant.campaign_id == campaign_id,
            Entrant.deleted_at.is_(None),
            flt.clause(),
        )
        total = await self.db.execute(select(func.count(Entrant.id)).where(base))
        rows = await self.db.execute(
            select(Entrant)
            .where(base)
            .order_by(*CANONICAL_ORDER)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return rows.scalars().all(), int(total.scalar_one())

    # ── Writes ──────────────────────────────────

    async def insert(self, entrant: Entrant) -> Entrant:
        self.db.add(entrant)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            # Lost a race for the tail slot or the referral code
            raise PositionConflict("Signup collided with a concurrent write") from exc
        return entrant

    async def bulk_set_positions(self, campaign_id: str, changes: Dict[str, int]) -> None:
        """
        Atomically move every ``entrant_id -> new_position`` pair.

        Rows are first parked at their negated positions so the live
        ``(campaign_id, position)`` unique index never sees a transient
        duplicate, then assigned their targets. Any id that is not a live
        entrant of ``campaign_id`` aborts the whole write.
        """
        if not changes:
            return
        ids = list(changes)
        try:
            parked = await self.db.execute(
                update(Entrant)
                .where(live_entrants(campaign_id), Entrant.id.in_(ids))
                .values(position=-Entrant.position)
                .execution_options(synchronize_session=False)
            )
            if parked.rowcount != len(ids):
                raise PositionConflict(
                    f"Expected {len(ids)} live entrants in campaign {campaign_id}, matched {parked.rowcount}"
                )
            await self.db.execute(
                update(Entrant)
                .where(Entrant.campaign_id == campaign_id, Entrant.id.in_(ids))
                .values(position=case(changes, value=Entrant.id))
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as exc:
            raise PositionConflict("Position write collided with a concurrent write") from exc

    async def increment_counters(
        self, entrant_id: str, referral: bool = False, verified_referral: bool = False
    ) -> None:
        values = {}
        if referral:
            values["referral_count"] = Entrant.referral_count + 1
        if verified_referral:
            values["verified_referral_count"] = Entrant.verified_referral_count + 1
        if not values:
            return
        result = await self.db.execute(
            update(Entrant)
            .where(Entrant.id == entrant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EntrantNotFound()

    async def claim_reward(self, entrant_id: str) -> bool:
        """Set the one-shot reward flag. False when it was already set."""
        result = await self.db.execute(
            update(Entrant)
            .where(Entrant.id == entrant_id, Entrant.referral_reward_applied.is_(False))
            .values(referral_reward_applied=True, reward_applied_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_verified(self, entrant_id: str) -> bool:
        """Flip ``email_verified`` once. False when already verified (or deleted)."""
        result = await self.db.execute(
            update(Entrant)
            .where(
                Entrant.id == entrant_id,
                Entrant.deleted_at.is_(None),
                Entrant.email_verified.is_(False),
            )
            .values(email_verified=True, verified_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        await self.db.execute(
            update(Entrant)
            .where(Entrant.id == entrant_id, Entrant.status == EntrantStatus.pending)
            .values(status=EntrantStatus.verified)
            .execution_options(synchronize_session=False)
        )
        return True

    async def block(self, entrant_id: str) -> None:
        result = await self.db.execute(
            update(Entrant)
            .where(Entrant.id == entrant_id, Entrant.deleted_at.is_(None))
            .values(status=EntrantStatus.blocked)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EntrantNotFound()

    async def soft_delete(self, entrant_id: str) -> None:
        """Mark deleted; the position gap stays until the next recompute."""
        result = await self.db.execute(
            update(Entrant)
            .where(Entrant.id == entrant_id, Entrant.deleted_at.is_(None))
            .values(deleted_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EntrantNotFound()
