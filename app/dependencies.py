import hmac
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.config import ConfigurationError, settings
from app.database import get_db
from app.logging_config import get_logger
from app.services.conversation_store import SqlConversationStore
from app.services.notification_service import BackgroundSubmissionDispatcher
from app.services.twilio_service import TwilioService

logger = get_logger("dependencies")


def get_store(db: Session = Depends(get_db)) -> SqlConversationStore:
    return SqlConversationStore(db)


def get_submission_dispatcher(background_tasks: BackgroundTasks) -> BackgroundSubmissionDispatcher:
    return BackgroundSubmissionDispatcher(background_tasks)


def get_messenger() -> TwilioService:
    try:
        return TwilioService.from_settings(settings)
    except ConfigurationError as e:
        logger.error(f"Messenger not configured: {e}")
        raise HTTPException(status_code=500, detail="Server misconfigured")


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    authorization: Optional[str] = Header(None),
) -> None:
    """Operator token from X-Admin-Token or an Authorization bearer header."""
    provided = x_admin_token
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    _require_admin_token(provided)
