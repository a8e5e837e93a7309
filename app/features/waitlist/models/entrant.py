import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)

from app.platform.db.base import BaseModel

# Rows that take part in ranking. Kept as SQL text so the partial index and
# the repository queries agree on one definition.
LIVE_ROWS_SQL = "deleted_at IS NULL AND status <> 'blocked'"


class EntrantStatus(enum.Enum):
    pending = "pending"
    verified = "verified"
    blocked = "blocked"


class Entrant(BaseModel):
    """
    One waitlist signup within a campaign.

    ``position`` is dense and unique over the live rows of a campaign (not
    deleted, not blocked). ``referred_by_id`` is a weak reference: no foreign
    key, the referrer may have been deleted since.
    """
    __tablename__ = "entrants"

    campaign_id = Column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    position = Column(Integer, nullable=False)
    original_position = Column(Integer, nullable=False)

    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    referred_by_id = Column(String(36), nullable=True, index=True)
    source = Column(String(50), default="direct", nullable=False)

    referral_count = Column(Integer, default=0, nullable=False)
    verified_referral_count = Column(Integer, default=0, nullable=False)

    email_verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # One-shot replay guard for the referral reward, distinct from email_verified
    referral_reward_applied = Column(Boolean, default=False, nullable=False)
    reward_applied_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(Enum(EntrantStatus), default=EntrantStatus.pending, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "email", name="uq_entrants_campaign_email"),
        Index(
            "uq_entrants_campaign_live_position",
            "campaign_id",
            "position",
            unique=True,
            postgresql_where=text(LIVE_ROWS_SQL),
            sqlite_where=text(LIVE_ROWS_SQL),
        ),
        Index("ix_entrants_canonical_order", "campaign_id", "position", "created_at", "id"),
    )

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None and self.status != EntrantStatus.blocked


class EntrantChannelCode(BaseModel):
    """Per sharing-channel referral code, e.g. ``AB12CD34_TW``."""
    __tablename__ = "entrant_channel_codes"

    entrant_id = Column(
        String(36), ForeignKey("entrants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    channel = Column(String(50), nullable=False)
    code = Column(String(40), unique=True, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("entrant_id", "channel", name="uq_entrant_channel"),
    )
