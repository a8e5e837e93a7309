"""
Waitlist ranking engine.

Owns every write to the ``position`` column outside of plain moderation:
tail assignment at signup, localized promotion when a referral reward is
applied, and the full ``recompute`` repair path.

All position writes for a campaign run under that campaign's lock, inside a
single transaction that also carries the counter increments, so an event is
either fully visible or not at all.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.waitlist.exceptions import (
    DeadlineExceeded,
    EntrantAlreadyExists,
    EntrantNotFound,
    InvariantViolation,
    PositionConflict,
)
from app.features.waitlist.models.entrant import Entrant
from app.features.waitlist.schemas.waitlist import (
    LeaderboardEntry,
    PositionChange,
    PublicPosition,
    RecomputeResult,
    ReferralSettings,
    SignupIn,
)
from app.features.waitlist.services.campaign_locks import CampaignLockRegistry, campaign_locks
from app.features.waitlist.services.entrant_repository import EntrantRepository
from app.features.waitlist.services.filters import EntrantFilter
from app.features.waitlist.services.referral_codes import ReferralCodeRegistry
from app.features.waitlist.services.settings_provider import ReferralSettingsProvider
from app.features.waitlist.utils.positions import dense_ranks, plan_moves, window_bounds
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# PostgreSQL serialization failure / deadlock detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}


def is_conflict_error(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


def is_transient_error(exc: DBAPIError) -> bool:
    return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))


class RankingEngine:
    def __init__(self, db: AsyncSession, locks: CampaignLockRegistry = campaign_locks):
        self.db = db
        self.locks = locks
        self.entrants = EntrantRepository(db)
        self.codes = ReferralCodeRegistry(db)
        self.referral_settings = ReferralSettingsProvider(db)

    # ─────────────────────────────────────────────────────────────
    # Transaction / retry plumbing
    # ─────────────────────────────────────────────────────────────

    async def _serialized(self, campaign_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` in its own transaction under the campaign lock.

        Conflicts are retried with exponential backoff and a fresh read;
        a transient database error is retried once. Anything else rolls back
        and propagates unchanged.
        """
        conflicts = 0
        transient_retried = False
        while True:
            try:
                async with self.locks.get(campaign_id):
                    try:
                        await self.entrants.lock_campaign(campaign_id)
                        result = await operation()
                        await self.db.commit()
                        return result
                    except BaseException:
                        await self.db.rollback()
                        raise
            except (PositionConflict, DBAPIError) as exc:
                if isinstance(exc, DBAPIError) and not is_conflict_error(exc):
                    if transient_retried or not is_transient_error(exc):
                        raise
                    transient_retried = True
                    logger.warning(f"Transient database error on campaign {campaign_id}, retrying once: {exc}")
                    await asyncio.sleep(settings.RANKING_RETRY_BACKOFF_SECONDS)
                    continue

                conflicts += 1
                if conflicts > settings.RANKING_MAX_CONFLICT_RETRIES:
                    logger.error(f"Giving up on campaign {campaign_id} after {conflicts} conflicts")
                    if isinstance(exc, PositionConflict):
                        raise
                    raise PositionConflict() from exc
                delay = settings.RANKING_RETRY_BACKOFF_SECONDS * 2 ** (conflicts - 1)
                logger.warning(
                    f"Position conflict on campaign {campaign_id} (attempt {conflicts}), retrying in {delay:.3f}s"
                )
                await asyncio.sleep(delay)

    async def _with_deadline(self, work: Awaitable[T], timeout: Optional[float]) -> T:
        timeout = settings.RANKING_DEADLINE_SECONDS if timeout is None else timeout
        try:
            return await asyncio.wait_for(work, timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"Ranking operation exceeded its {timeout}s deadline and was rolled back")
            raise DeadlineExceeded() from exc

    # ─────────────────────────────────────────────────────────────
    # Signup
    # ─────────────────────────────────────────────────────────────

    async def register_signup(self, campaign_id: str, draft: SignupIn) -> Entrant:
        """
        Insert a new entrant at the tail of the campaign's queue.

        Capacity is checked by the caller. When the campaign rewards referrals
        without waiting for verification, the referrer is rewarded right away.
        """
        entrant_id = await self._serialized(campaign_id, lambda: self._insert_signup(campaign_id, draft))
        entrant = await self.entrants.get_by_id(entrant_id)

        if entrant.referred_by_id:
            cfg = await self.referral_settings.get(campaign_id)
            if cfg.enabled and not cfg.verified_only:
                await self.apply_referral_reward(campaign_id, entrant_id)
                entrant = await self.entrants.get_by_id(entrant_id)

        logger.info(f"Entrant {entrant.id} joined campaign {campaign_id} at position {entrant.position}")
        return entrant

    async def _insert_signup(self, campaign_id: str, draft: SignupIn) -> str:
        email = draft.email.strip().lower()
        if await self.entrants.find_by_email(campaign_id, email) is not None:
            raise EntrantAlreadyExists()

        referred_by_id, source = await self._attribute_referral(campaign_id, draft.referral_code)
        code = await self.codes.generate()
        position = await self.entrants.tail_position(campaign_id)

        entrant = Entrant(
            campaign_id=campaign_id,
            email=email,
            first_name=draft.first_name,
            last_name=draft.last_name,
            position=position,
            original_position=position,
            referral_code=code,
            referred_by_id=referred_by_id,
            source=source,
            referral_count=0,
            verified_referral_count=0,
        )
        await self.entrants.insert(entrant)

        cfg = await self.referral_settings.get(campaign_id)
        if cfg.sharing_channels:
            await self.codes.issue_channel_codes(entrant, cfg.sharing_channels)
        return entrant.id

    async def _attribute_referral(self, campaign_id: str, code: Optional[str]):
        if not code:
            return None, "direct"
        try:
            referrer, channel = await self.codes.resolve(code.strip().upper())
        except EntrantNotFound:
            logger.info(f"Unknown referral code {code!r} on campaign {campaign_id}, treating as direct signup")
            return None, "direct"
        if referrer.campaign_id != campaign_id or not referrer.is_live:
            logger.info(f"Referral code {code!r} is not usable on campaign {campaign_id}, treating as direct signup")
            return None, "direct"
        return referrer.id, channel or "referral"

    # ─────────────────────────────────────────────────────────────
    # Referral rewards
    # ─────────────────────────────────────────────────────────────

    async def apply_referral_reward(
        self, campaign_id: str, referred_id: str, timeout: Optional[float] = None
    ) -> RecomputeResult:
        """
        Reward the referrer of ``referred_id``.

        Idempotent: the referred entrant's one-shot flag is claimed in the
        same transaction, so a replay returns ``applied=False`` with
        ``reason="already_applied"`` and changes nothing.
        """
        result = await self._with_deadline(
            self._serialized(campaign_id, lambda: self._reward(campaign_id, referred_id)),
            timeout,
        )
        if result.applied:
            logger.info(
                f"Referral reward applied on campaign {campaign_id}: "
                f"{[(m.entrant_id, m.old_position, m.new_position) for m in result.movers]}, shifted {result.shifted}"
            )
        else:
            logger.info(f"Referral reward for {referred_id} skipped: {result.reason}")
        return result

    async def _reward(self, campaign_id: str, referred_id: str) -> RecomputeResult:
        outcome = RecomputeResult(campaign_id=campaign_id, referred_id=referred_id, applied=False)

        referred = await self.entrants.get_by_id(referred_id)
        if referred.campaign_id != campaign_id:
            raise EntrantNotFound()
        if not referred.is_live:
            outcome.reason = "referred_unavailable"
            return outcome
        if not referred.referred_by_id:
            outcome.reason = "not_referred"
            return outcome

        cfg = await self.referral_settings.get(campaign_id)
        if not cfg.enabled:
            outcome.reason = "referrals_disabled"
            return outcome
        if cfg.verified_only and not referred.email_verified:
            outcome.reason = "referred_not_verified"
            return outcome

        # Weak reference: a deleted, blocked or foreign referrer earns nothing
        referrer = await self.entrants.find_by_id(referred.referred_by_id)
        if referrer is None or not referrer.is_live or referrer.campaign_id != campaign_id:
            outcome.reason = "referrer_unavailable"
            return outcome
        outcome.referrer_id = referrer.id

        if not await self.entrants.claim_reward(referred.id):
            outcome.reason = "already_applied"
            return outcome

        await self.entrants.increment_counters(
            referrer.id, referral=True, verified_referral=referred.email_verified
        )

        outcome.movers, outcome.shifted = await self._promote(
            campaign_id, self._moves_for(cfg, referrer, referred)
        )
        outcome.applied = True
        return outcome

    @staticmethod
    def _moves_for(cfg: ReferralSettings, referrer: Entrant, referred: Entrant):
        moves = [(referrer.id, referrer.position, cfg.referrer_positions_to_jump)]
        if cfg.referred_jump_enabled and cfg.positions_to_jump > 0:
            moves.append((referred.id, referred.position, cfg.positions_to_jump))
        return moves

    async def _promote(self, campaign_id: str, moves) -> Tuple[List[PositionChange], int]:
        """
        Plan and persist the moves in order.

        Returns what happened to each mover and how many other entrants were
        pushed back to make room.
        """
        lo, hi = window_bounds([(position, jump) for _, position, jump in moves])
        window = await self.entrants.window(campaign_id, lo, hi)
        for entrant_id, position, _ in moves:
            if window.get(entrant_id) != position:
                raise PositionConflict(f"Entrant {entrant_id} moved while planning")

        changed, movers = plan_moves(window, [(entrant_id, jump) for entrant_id, _, jump in moves])
        if changed:
            await self.entrants.bulk_set_positions(campaign_id, changed)
            await self._verify_unique(campaign_id, lo, hi)

        mover_ids = {entrant_id for entrant_id, _, _ in movers}
        shifted = sum(1 for entrant_id in changed if entrant_id not in mover_ids)
        return [
            PositionChange(entrant_id=entrant_id, old_position=old, new_position=new)
            for entrant_id, old, new in movers
        ], shifted

    async def _verify_unique(self, campaign_id: str, lo: int, hi: int) -> None:
        duplicates = await self.entrants.find_duplicate_positions(campaign_id, lo, hi)
        if duplicates:
            logger.error(f"Duplicate live positions {duplicates} in campaign {campaign_id} after bulk write")
            raise InvariantViolation(f"Duplicate positions {duplicates} in campaign {campaign_id}")

    # ─────────────────────────────────────────────────────────────
    # Verification notifier
    # ─────────────────────────────────────────────────────────────

    async def handle_entrant_verified(
        self, entrant_id: str, timeout: Optional[float] = None
    ) -> Optional[RecomputeResult]:
        """
        React to ``EntrantVerified``. Replays are no-ops and return ``None``.

        On the first verification: a referral already rewarded at signup only
        gains its verified count; otherwise the reward is applied now.
        """
        entrant = await self.entrants.get_by_id(entrant_id)
        campaign_id = entrant.campaign_id
        return await self._with_deadline(
            self._serialized(campaign_id, lambda: self._verified(campaign_id, entrant_id)),
            timeout,
        )

    async def _verified(self, campaign_id: str, entrant_id: str) -> Optional[RecomputeResult]:
        if not await self.entrants.mark_verified(entrant_id):
            logger.info(f"Entrant {entrant_id} already verified, ignoring event")
            return None

        entrant = await self.entrants.get_by_id(entrant_id)
        if not entrant.referred_by_id:
            return None

        if entrant.referral_reward_applied:
            referrer = await self.entrants.find_by_id(entrant.referred_by_id)
            if referrer is not None and referrer.is_live:
                await self.entrants.increment_counters(referrer.id, verified_referral=True)
            else:
                logger.info(f"Referrer of {entrant_id} is gone, verified count not credited")
            return None

        return await self._reward(campaign_id, entrant_id)

    # ─────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────

    async def recompute(self, campaign_id: str) -> int:
        """Re-derive dense ranks 1..N from canonical order. Returns rows changed."""
        updated = await self._serialized(campaign_id, lambda: self._recompute(campaign_id))
        logger.info(f"Recomputed campaign {campaign_id}: {updated} positions changed")
        return updated

    async def _recompute(self, campaign_id: str) -> int:
        ordered = await self.entrants.list_live_ordered(campaign_id)
        ranks = dense_ranks(entrant.id for entrant in ordered)
        changed = {e.id: ranks[e.id] for e in ordered if e.position != ranks[e.id]}
        await self.entrants.bulk_set_positions(campaign_id, changed)
        return len(changed)

    async def block_entrant(self, entrant_id: str) -> None:
        """Moderation: drop out of ranking, keep the row. No renumbering."""
        await self.entrants.block(entrant_id)
        await self.db.commit()
        logger.info(f"Entrant {entrant_id} blocked")

    async def remove_entrant(self, entrant_id: str) -> None:
        """Soft delete; the gap closes on the next recompute."""
        await self.entrants.soft_delete(entrant_id)
        await self.db.commit()
        logger.info(f"Entrant {entrant_id} removed")

    # ─────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────

    async def get_public_position(self, entrant_id: str) -> PublicPosition:
        entrant = await self.entrants.get_by_id(entrant_id)
        return PublicPosition.model_validate(entrant)

    async def get_leaderboard(self, campaign_id: str, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        limit = limit or settings.LEADERBOARD_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.LEADERBOARD_MAX_LIMIT))
        rows = await self.entrants.leaderboard(campaign_id, limit)
        return [
            LeaderboardEntry(
                entrant_id=row.id,
                first_name=row.first_name,
                position=row.position,
                referral_count=row.referral_count,
            )
            for row in rows
        ]

    async def list_entrants(
        self, campaign_id: str, flt: EntrantFilter, limit: int = 50, offset: int = 0
    ) -> Tuple[Sequence[Entrant], int]:
        return await self.entrants.list_entrants(campaign_id, flt, limit=limit, offset=offset)
