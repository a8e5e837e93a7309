# Import every model so Base.metadata is complete for create_all and migrations.
from app.features.campaigns.models.campaign import Campaign, CampaignReferralSettings  # noqa: F401
from app.features.waitlist.models.entrant import Entrant, EntrantChannelCode  # noqa: F401
from app.platform.db.base import Base  # noqa: F401
