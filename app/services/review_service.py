"""
Operator actions on a user: verify, reject, complete, send the reading outcome.

Every action commits its state change first and only then talks to the user.
A failed delivery never rolls the change back; it is recorded on the row and
reported through `ReviewOutcome.delivered`.
"""

from dataclasses import dataclass
from typing import Optional

from app.logging_config import get_logger, mask_address
from app.services import prompts
from app.services.conversation_store import (
    REJECTION_REASONS,
    REJECTION_UNDERPAID,
    ConversationStore,
    RejectionPayload,
)
from app.services.state_machine import (
    ConversationStep,
    InvalidTransitionError,
    UserStatus,
    parse_service_type,
    parse_user_status,
    reject_submission,
)
from app.services.twilio_service import DeliveryResult

logger = get_logger("review_service")

PLAN_PRICES_GHS = {
    "1 Year": 1800,
    "3 Years": 3000,
    "5 Years": 4200,
}

MAX_NOTE_LENGTH = 500


class ReviewError(Exception):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INVALID_PAYLOAD = "invalid_payload"
    ALREADY_SENT = "already_sent"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class ReviewOutcome:
    committed: bool
    delivered: bool
    delivery_error: Optional[str] = None


def expected_amount_for_plan(plan: Optional[str]) -> Optional[float]:
    return PLAN_PRICES_GHS.get(plan) if plan else None


class ReviewService:
    def __init__(self, store: ConversationStore, messenger):
        self.store = store
        self.messenger = messenger

    def _get_user(self, user_id):
        user = self.store.get_user_by_id(user_id)
        if not user:
            raise ReviewError(ReviewError.NOT_FOUND, "User not found")
        return user

    def _get_payment(self, user_id):
        payment = self.store.get_latest_payment_by_user_id(user_id)
        if not payment:
            raise ReviewError(ReviewError.INVALID_STATE, "No payment evidence on file")
        return payment

    def _set_status(self, user_id, status: UserStatus, rejection: bool = False) -> None:
        try:
            self.store.update_user_status(user_id, status=status, rejection=rejection)
        except InvalidTransitionError as e:
            raise ReviewError(ReviewError.INVALID_STATE, str(e)) from e

    def _deliver(self, address: str, text: str) -> DeliveryResult:
        try:
            return self.messenger.send_to_user(address, text)
        except Exception as e:
            logger.error(f"Messenger raised for {mask_address(address)}: {e}")
            return DeliveryResult.failure(str(e))

    def _commit(self) -> None:
        try:
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

    def verify(self, user_id) -> ReviewOutcome:
        user = self._get_user(user_id)
        payment = self._get_payment(user_id)

        self._set_status(user_id, UserStatus.VERIFIED)
        self.store.verify_latest_payment(user_id)
        self.store.set_conversation_step(user_id, ConversationStep.VERIFIED_NOTIFIED)
        self._commit()
        logger.info(f"Payment verified for user {user_id}", extra={"context": {"payment_id": str(payment.id)}})

        text = prompts.payment_verified_text(parse_service_type(user.service_type))
        result = self._deliver(user.phone, text)
        self.store.mark_payment_notified(payment.id, error=None if result.ok else result.error)
        self._commit()
        return ReviewOutcome(committed=True, delivered=result.ok, delivery_error=result.error)

    def reject(
        self,
        user_id,
        reason: str,
        note: Optional[str] = None,
        received_amount_ghs: Optional[float] = None,
        expected_amount_ghs: Optional[float] = None,
    ) -> ReviewOutcome:
        if reason not in REJECTION_REASONS:
            raise ReviewError(ReviewError.INVALID_PAYLOAD, f"Unknown rejection reason: {reason}")
        if note is not None and len(note) > MAX_NOTE_LENGTH:
            raise ReviewError(ReviewError.INVALID_PAYLOAD, "Note is too long")

        user = self._get_user(user_id)
        payment = self._get_payment(user_id)

        payload = RejectionPayload(reason=reason, note=note or None)
        if reason == REJECTION_UNDERPAID:
            expected = expected_amount_ghs or expected_amount_for_plan(user.selected_plan)
            if not expected or expected <= 0:
                raise ReviewError(ReviewError.INVALID_PAYLOAD, "Missing or invalid plan")
            if not received_amount_ghs or received_amount_ghs <= 0:
                raise ReviewError(ReviewError.INVALID_PAYLOAD, "Missing received amount")
            payload.received_amount_ghs = received_amount_ghs
            payload.expected_amount_ghs = expected
            text = prompts.render_underpaid_notice(expected, received_amount_ghs)
        else:
            text = prompts.PAYMENT_REJECTED_INVALID

        try:
            status = reject_submission(parse_user_status(user.status))
        except InvalidTransitionError as e:
            raise ReviewError(ReviewError.INVALID_STATE, str(e)) from e
        self._set_status(user_id, status, rejection=True)
        self.store.reject_payment(user_id, payload)
        self.store.set_conversation_step(user_id, ConversationStep.PAYMENT_ISSUE_MENU)
        self._commit()
        logger.info(f"Payment rejected for user {user_id}", extra={"context": {"reason": reason}})

        result = self._deliver(user.phone, text)
        self.store.record_payment_notify_error(payment.id, None if result.ok else result.error)
        self._commit()
        if not result.ok:
            logger.error(f"Rejection notice not delivered to user {user_id}: {result.error}")
        return ReviewOutcome(committed=True, delivered=result.ok, delivery_error=result.error)

    def complete(self, user_id) -> ReviewOutcome:
        user = self._get_user(user_id)
        current = parse_user_status(user.status)
        if current not in (UserStatus.VERIFIED, UserStatus.COMPLETED):
            raise ReviewError(ReviewError.INVALID_STATE, f"Cannot complete a user in status {current.value}")

        self._set_status(user_id, UserStatus.COMPLETED)
        self.store.set_conversation_step(user_id, ConversationStep.COMPLETED)
        self._commit()
        logger.info(f"User {user_id} completed")

        result = self._deliver(user.phone, prompts.completed_text(parse_service_type(user.service_type)))
        self.store.record_user_notify_error(user_id, None if result.ok else result.error)
        self._commit()
        if not result.ok:
            logger.error(f"Completion notice not delivered to user {user_id}: {result.error}")
        return ReviewOutcome(committed=True, delivered=result.ok, delivery_error=result.error)

    def send_reading_outcome(self, user_id, text: str, force_resend: bool = False) -> ReviewOutcome:
        body = (text or "").strip()
        if not body:
            raise ReviewError(ReviewError.INVALID_PAYLOAD, "Reading text is required")

        user = self._get_user(user_id)
        current = parse_user_status(user.status)
        if current not in (UserStatus.VERIFIED, UserStatus.COMPLETED):
            raise ReviewError(ReviewError.INVALID_STATE, f"Cannot send a reading to a user in status {current.value}")
        if user.reading_sent and not force_resend:
            raise ReviewError(ReviewError.ALREADY_SENT, "Reading already sent; set force_resend to send again")

        claimed = self.store.claim_reading_send(user_id)
        if not claimed and not force_resend:
            self.store.rollback()
            raise ReviewError(ReviewError.ALREADY_SENT, "Reading already sent; set force_resend to send again")

        self._set_status(user_id, UserStatus.COMPLETED)
        self.store.set_conversation_step(user_id, ConversationStep.COMPLETED)
        self._commit()

        result = self._deliver(user.phone, body)
        self.store.record_reading_outcome(
            user_id,
            body,
            error=None if result.ok else result.error,
            release_claim=claimed,
        )
        self._commit()
        if result.ok:
            logger.info(f"Reading sent to user {user_id}", extra={"context": {"resend": force_resend}})
        else:
            logger.error(f"Reading not delivered to user {user_id}: {result.error}")
        return ReviewOutcome(committed=True, delivered=result.ok, delivery_error=result.error)
