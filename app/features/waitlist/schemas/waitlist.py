from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from app.features.waitlist.models.entrant import EntrantStatus
from app.platform.schemas import APIResponse


class SignupIn(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    referral_code: Optional[str] = Field(default=None, max_length=40)


class EntrantOut(BaseModel):
    id: str
    campaign_id: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: int
    original_position: int
    referral_code: str
    referred_by_id: Optional[str] = None
    source: str
    referral_count: int
    verified_referral_count: int
    email_verified: bool
    status: EntrantStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SignupOut(BaseModel):
    entrant: EntrantOut
    position: int
    referral_link: str
    referral_codes: Dict[str, str] = {}


class PublicPosition(BaseModel):
    position: int
    original_position: int
    referral_count: int
    referral_code: str

    class Config:
        from_attributes = True


class LeaderboardEntry(BaseModel):
    entrant_id: str
    first_name: Optional[str] = None
    position: int
    referral_count: int


class PositionChange(BaseModel):
    entrant_id: str
    old_position: int
    new_position: int


class RecomputeResult(BaseModel):
    """Outcome of one referral reward application."""

    campaign_id: str
    referred_id: str
    applied: bool
    reason: Optional[str] = None
    referrer_id: Optional[str] = None
    movers: List[PositionChange] = []
    shifted: int = 0


class RecomputeSummary(BaseModel):
    campaign_id: str
    updated: int


class ReferralSettings(BaseModel):
    """Read-only view of a campaign's referral configuration."""

    enabled: bool = False
    points_per_referral: int = 0
    verified_only: bool = True
    positions_to_jump: int = 0
    referrer_positions_to_jump: int = 0
    referred_jump_enabled: bool = False
    sharing_channels: List[str] = []

    class Config:
        from_attributes = True


class SignupResponse(APIResponse[SignupOut]):
    pass


class PublicPositionResponse(APIResponse[PublicPosition]):
    pass
