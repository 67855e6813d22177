from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

BACK_TOKENS = {"0", "back"}
MENU_TOKENS = {"00", "menu"}

DEFAULT_TRUSTED_MEDIA_PREFIX = "https://api.twilio.com/"


@dataclass(frozen=True)
class NormalizedMessage:
    text: str
    lower: str
    is_back: bool
    is_menu_reset: bool
    has_media: bool
    media_count: int = 0
    media_url: Optional[str] = None


def _coerce_count(value) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def is_trusted_media_url(url: Optional[str], trusted_prefix: str = DEFAULT_TRUSTED_MEDIA_PREFIX) -> bool:
    """Only accept https media served from the provider's own host."""
    if not url or not isinstance(url, str):
        return False
    candidate = url.strip()
    if not candidate.startswith(trusted_prefix):
        return False
    try:
        parts = urlsplit(candidate)
        trusted = urlsplit(trusted_prefix)
    except ValueError:
        return False
    if parts.scheme != "https" or parts.username or parts.password:
        return False
    return parts.hostname is not None and parts.hostname == trusted.hostname


def normalize(
    raw_body: Optional[str],
    media_count=0,
    media_url: Optional[str] = None,
    trusted_media_prefix: str = DEFAULT_TRUSTED_MEDIA_PREFIX,
) -> NormalizedMessage:
    """Classify an inbound chat message. Never raises."""
    text = raw_body.strip() if isinstance(raw_body, str) else ""
    lower = text.lower()
    count = _coerce_count(media_count)
    url = media_url.strip() if isinstance(media_url, str) and media_url.strip() else None

    return NormalizedMessage(
        text=text,
        lower=lower,
        is_back=lower in BACK_TOKENS,
        is_menu_reset=lower in MENU_TOKENS,
        has_media=count > 0 and is_trusted_media_url(url, trusted_media_prefix),
        media_count=count,
        media_url=url,
    )
