import enum

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class CampaignStatus(enum.Enum):
    draft = "draft"
    active = "active"
    paused = "paused"
    completed = "completed"


class Campaign(BaseModel):
    """
    A waitlist campaign. Entrants are partitioned and ranked per campaign.

    The row doubles as the campaign's lock target: ranking writes take
    ``SELECT ... FOR UPDATE`` on it before touching positions.
    """
    __tablename__ = "campaigns"

    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(Enum(CampaignStatus), default=CampaignStatus.active, nullable=False)
    max_signups = Column(Integer, nullable=True)  # None = unlimited

    referral_settings = relationship(
        "CampaignReferralSettings",
        back_populates="campaign",
        uselist=False,
        cascade="all, delete-orphan",
    )


class CampaignReferralSettings(BaseModel):
    __tablename__ = "campaign_referral_settings"

    campaign_id = Column(
        String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    enabled = Column(Boolean, default=True, nullable=False)
    points_per_referral = Column(Integer, default=1, nullable=False)
    verified_only = Column(Boolean, default=True, nullable=False)
    positions_to_jump = Column(Integer, default=0, nullable=False)  # referred side
    referrer_positions_to_jump = Column(Integer, default=1, nullable=False)
    referred_jump_enabled = Column(Boolean, default=False, nullable=False)
    sharing_channels = Column(String(255), default="", nullable=False)  # comma separated: "twitter,email"

    campaign = relationship("Campaign", back_populates="referral_settings")
