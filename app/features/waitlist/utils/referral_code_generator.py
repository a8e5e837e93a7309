import base64
import secrets
from typing import Dict, Iterable

CHANNEL_SUFFIXES = {
    "email": "EM",
    "twitter": "TW",
    "facebook": "FB",
    "linkedin": "LI",
    "whatsapp": "WA",
}


def generate_referral_code(length: int = 8) -> str:
    """Short, URL-safe, upper-cased code. Uniqueness is checked by the caller."""
    if length <= 0:
        length = 8
    raw = base64.urlsafe_b64encode(secrets.token_bytes(length)).decode("ascii").rstrip("=")
    return raw[:length].upper()


def channel_codes_for(referral_code: str, channels: Iterable[str]) -> Dict[str, str]:
    """Map each known sharing channel to ``<referral_code>_<SUFFIX>``; unknown channels are skipped."""
    codes = {}
    for channel in channels:
        channel = channel.strip().lower()
        suffix = CHANNEL_SUFFIXES.get(channel)
        if suffix:
            codes[channel] = f"{referral_code}_{suffix}"
    return codes


def build_referral_link(base_url: str, campaign_slug: str, referral_code: str) -> str:
    return f"{base_url.rstrip('/')}/join/{campaign_slug}?ref={referral_code}"
