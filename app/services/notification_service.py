"""Admin e-mail for final submissions (details + payment evidence received)."""

from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import ConfigurationError, Settings, require, settings
from app.database import SessionLocal
from app.logging_config import get_logger
from app.services.conversation_store import ConversationStore, SqlConversationStore
from app.services.state_machine import ServiceType, parse_service_type

logger = get_logger("notification_service")

SERVICE_LABELS = {
    ServiceType.LIFE_FORECAST: "Life Forecast",
    ServiceType.DESTINY_READINGS: "Destiny Readings",
}

MISSING = "—"


class NotificationError(Exception):
    pass


class SendGridNotifier:
    """Plain-text e-mail through the SendGrid v3 API."""

    API_URL = "https://api.sendgrid.com/v3/mail/send"
    SENDER_NAME = "Life Forecast Bot"

    def __init__(self, api_key: str, from_email: str, to_email: str):
        if not api_key:
            raise ConfigurationError("SENDGRID_API_KEY")
        if not from_email:
            raise ConfigurationError("SENDGRID_FROM_EMAIL")
        if not to_email:
            raise ConfigurationError("ADMIN_NOTIFICATION_EMAIL")
        self.api_key = api_key
        self.from_email = from_email
        self.to_email = to_email

    @classmethod
    def from_settings(cls, config: Settings) -> "SendGridNotifier":
        return cls(
            api_key=require(config, "sendgrid_api_key"),
            from_email=require(config, "sendgrid_from_email"),
            to_email=require(config, "admin_notification_email"),
        )

    def send(self, subject: str, body: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": self.to_email}]}],
            "from": {"email": self.from_email, "name": self.SENDER_NAME},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        try:
            with httpx.Client(timeout=15.0) as client:
                response = client.post(
                    self.API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"SendGrid request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(f"SendGrid {response.status_code}: {response.text[:300]}")


def build_submission_email(submission, user, conversation, payment, dashboard_url: Optional[str] = None) -> tuple[str, str]:
    service_type = parse_service_type(getattr(user, "service_type", None))
    service_label = SERVICE_LABELS[service_type]
    full_name = getattr(conversation, "full_name", None) or MISSING
    phone = getattr(user, "phone", None) or MISSING
    evidence_url = getattr(payment, "screenshot_url", None) or MISSING
    dashboard = dashboard_url.rstrip("/") if dashboard_url else MISSING

    body = "\n".join(
        [
            "New final submission (details + payment evidence received).",
            "",
            f"Service type: {service_label}",
            f"User name: {full_name}",
            f"Phone / WhatsApp: {phone}",
            f"Plan: {getattr(user, 'selected_plan', None) or MISSING}",
            f"Payment evidence URL: {evidence_url}",
            f"Submission ID: {submission.id}",
            f"Created at: {submission.created_at}",
            f"Dashboard: {dashboard}",
        ]
    )
    subject = f"[{service_label}] New submission: {full_name} ({phone})"
    return subject, body


def notify_admin_of_submission(
    store: ConversationStore,
    notifier: SendGridNotifier,
    submission_id,
    dashboard_url: Optional[str] = None,
) -> bool:
    """
    Send the admin e-mail for one submission and commit the outcome.

    Returns True when the submission is notified, or another sender holds the
    claim on it. Delivery failures release the claim, are recorded on the row
    and are never raised.
    """
    submission = store.get_submission(submission_id)
    if not submission:
        logger.warning(f"Submission {submission_id} not found")
        return False
    if submission.admin_notified:
        return True
    if not store.claim_submission_notification(submission.id):
        logger.info(f"Submission {submission.id} already claimed by another sender")
        return True
    store.commit()

    user = store.get_user_by_id(submission.user_id)
    conversation = store.get_conversation_by_user_id(submission.user_id)
    payment = store.get_payment_by_id(submission.payment_id)
    subject, body = build_submission_email(submission, user, conversation, payment, dashboard_url)

    try:
        notifier.send(subject, body)
    except NotificationError as e:
        store.record_submission_failure(submission.id, str(e))
        store.commit()
        logger.error(
            f"Admin notification failed for submission {submission.id}",
            extra={"context": {"error": str(e), "attempts": submission.notify_attempts}},
        )
        return False

    store.mark_submission_notified(submission.id)
    store.commit()
    logger.info(
        f"Admin notified of submission {submission.id}",
        extra={"context": {"phone": getattr(user, "phone", None)}},
    )
    return True


def process_pending_submissions(
    store: ConversationStore,
    notifier: SendGridNotifier,
    max_attempts: int,
    dashboard_url: Optional[str] = None,
    limit: int = 20,
) -> dict:
    results = {"processed": 0, "notified": 0, "failed": 0}
    for submission in store.list_pending_submissions(max_attempts=max_attempts, limit=limit):
        results["processed"] += 1
        if notify_admin_of_submission(store, notifier, submission.id, dashboard_url):
            results["notified"] += 1
        else:
            results["failed"] += 1
    return results


def deliver_submission_notification(
    submission_id,
    session_factory: Callable[[], Session] = SessionLocal,
    config: Settings = settings,
) -> bool:
    """Background entry point: own session, never raises."""
    try:
        notifier = SendGridNotifier.from_settings(config)
    except ConfigurationError as e:
        logger.warning(f"Admin notification skipped for submission {submission_id}: {e}")
        return False

    db = session_factory()
    try:
        return notify_admin_of_submission(SqlConversationStore(db), notifier, submission_id, config.dashboard_base_url)
    except Exception as e:
        db.rollback()
        logger.error(f"Admin notification crashed for submission {submission_id}: {e}")
        return False
    finally:
        db.close()


class SubmissionDispatcher:
    """Receives submission ids once the bot has committed them."""

    def dispatch(self, submission_id) -> None:
        raise NotImplementedError


class BackgroundSubmissionDispatcher(SubmissionDispatcher):
    """Schedules delivery on FastAPI background tasks, after the response is sent."""

    def __init__(self, background_tasks, session_factory: Callable[[], Session] = SessionLocal, config: Settings = settings):
        self.background_tasks = background_tasks
        self.session_factory = session_factory
        self.config = config

    def dispatch(self, submission_id) -> None:
        self.background_tasks.add_task(
            deliver_submission_notification,
            submission_id,
            self.session_factory,
            self.config,
        )
