"""
Waitlist ranking domain exceptions.

Each error carries a stable ``code`` tag and the HTTP status the platform
exception handler renders it with.
"""

from fastapi import status


class RankingError(Exception):
    """Base exception for waitlist ranking errors"""

    code = "ranking_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Waitlist ranking error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(RankingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class EntrantNotFound(NotFound):
    default_message = "Entrant not found"


class CampaignNotFound(NotFound):
    default_message = "Campaign not found"


class PositionConflict(RankingError):
    """Raised when a concurrent position mutation collided with ours"""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Concurrent position update, please retry"


class InvariantViolation(RankingError):
    """Raised when post-write verification finds duplicate live positions"""

    code = "invariant_violation"
    default_message = "Waitlist positions are inconsistent"


class CapacityExceeded(RankingError):
    code = "capacity_exceeded"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This waitlist is full"


class CampaignNotAcceptingSignups(RankingError):
    code = "campaign_inactive"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This campaign is not accepting signups"


class EntrantAlreadyExists(RankingError):
    code = "already_exists"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Email already registered for this campaign"


class ReferralCodeExhausted(RankingError):
    code = "referral_code_exhausted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Could not generate a unique referral code"


class DeadlineExceeded(RankingError):
    code = "deadline_exceeded"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "Ranking update timed out and was rolled back"
