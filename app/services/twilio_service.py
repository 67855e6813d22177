import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Optional

import httpx

from app.config import ConfigurationError
from app.logging_config import get_logger, mask_address

logger = get_logger("twilio_service")

MAX_MESSAGE_LENGTH = 4000
WHATSAPP_PREFIX = "whatsapp:"


@dataclass
class DeliveryResult:
    ok: bool
    message_ids: list = field(default_factory=list)
    error: Optional[str] = None

    @staticmethod
    def success(message_ids: list) -> "DeliveryResult":
        return DeliveryResult(ok=True, message_ids=message_ids)

    @staticmethod
    def failure(error: str, message_ids: Optional[list] = None) -> "DeliveryResult":
        return DeliveryResult(ok=False, message_ids=message_ids or [], error=error)


def chunk_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into provider-sized parts, preferring line then word boundaries."""
    if limit <= 0:
        raise ValueError("limit must be positive")
    if not text:
        return []

    chunks = []
    remaining = text
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = window.rfind("\n")
        if cut < limit // 2:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks


def format_whatsapp_address(address: str) -> str:
    address = address.strip()
    return address if address.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{address}"


def compute_signature(auth_token: str, url: str, params: dict) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(auth_token: str, signature: Optional[str], url: str, params: dict) -> bool:
    """Check the X-Twilio-Signature header of a webhook request."""
    if not auth_token or not signature:
        return False
    expected = compute_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


class TwilioService:
    """Outbound WhatsApp messages through the Twilio REST API."""

    BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(self, account_sid: str, auth_token: str, from_address: str, base_url: Optional[str] = None):
        if not account_sid:
            raise ConfigurationError("TWILIO_ACCOUNT_SID")
        if not auth_token:
            raise ConfigurationError("TWILIO_AUTH_TOKEN")
        if not from_address:
            raise ConfigurationError("TWILIO_WHATSAPP_FROM")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_address = format_whatsapp_address(from_address)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    @classmethod
    def from_settings(cls, config) -> "TwilioService":
        return cls(
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            from_address=config.twilio_whatsapp_from,
            base_url=config.twilio_api_base_url,
        )

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"

    def send_to_user(self, address: str, text: str) -> DeliveryResult:
        """Send text to a user, one API call per chunk. Stops at the first failed chunk."""
        if not address or not address.strip():
            return DeliveryResult.failure("missing recipient")
        chunks = chunk_message(text)
        if not chunks:
            return DeliveryResult.failure("empty message")

        to_address = format_whatsapp_address(address)
        sent = []
        try:
            with httpx.Client(timeout=15.0, auth=(self.account_sid, self.auth_token)) as client:
                for chunk in chunks:
                    response = client.post(
                        self.messages_url,
                        data={"From": self.from_address, "To": to_address, "Body": chunk},
                    )
                    if response.status_code >= 400:
                        error = f"Twilio API {response.status_code}: {response.text[:300]}"
                        logger.error(f"Send to {mask_address(address)} failed: {error}")
                        return DeliveryResult.failure(error, sent)
                    sent.append(response.json().get("sid"))
        except httpx.HTTPError as e:
            logger.error(f"Send to {mask_address(address)} failed: {e}")
            return DeliveryResult.failure(str(e), sent)

        logger.info(
            f"Sent {len(sent)} message(s) to {mask_address(address)}",
            extra={"context": {"chunks": len(chunks)}},
        )
        return DeliveryResult.success(sent)

    def fetch_media(self, url: str) -> tuple[bytes, str]:
        """Download provider-hosted media with account credentials. Raises httpx errors."""
        with httpx.Client(timeout=30.0, auth=(self.account_sid, self.auth_token), follow_redirects=True) as client:
            response = client.get(url)
            response.raise_for_status()
            content_type = response.headers.get("content-type", "application/octet-stream")
            return response.content, content_type
