from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging_config import get_logger, mask_address
from app.models import Conversation, Payment, PaymentEvidence, Submission, User
from app.services.state_machine import (
    ConversationStep,
    ServiceType,
    UserStatus,
    parse_user_status,
    transition,
)

logger = get_logger("conversation_store")

REJECTION_INVALID_PROOF = "INVALID_PROOF"
REJECTION_UNDERPAID = "UNDERPAID"
REJECTION_REASONS = {REJECTION_INVALID_PROOF, REJECTION_UNDERPAID}


class ConcurrentUpdateError(Exception):
    def __init__(self, conversation_id, expected_version: int):
        self.conversation_id = conversation_id
        self.expected_version = expected_version
        super().__init__(f"Conversation {conversation_id} moved past version {expected_version}")


@dataclass
class RejectionPayload:
    reason: str
    note: Optional[str] = None
    received_amount_ghs: Optional[float] = None
    expected_amount_ghs: Optional[float] = None


class ConversationStore(ABC):
    """Persistence contract of the bot and the review workflow.

    Implementations stage writes; `commit`/`rollback` close the unit of work.
    """

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def get_or_create_user_by_address(self, address: str) -> User:
        pass

    @abstractmethod
    def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    def get_conversation_by_user_id(self, user_id: UUID) -> Optional[Conversation]:
        pass

    @abstractmethod
    def create_conversation(self, user_id: UUID, step: ConversationStep = ConversationStep.WELCOME) -> Conversation:
        pass

    @abstractmethod
    def update_conversation(
        self,
        conversation_id: UUID,
        expected_version: int,
        *,
        current_step: ConversationStep,
        navigation: list,
        service_type: Optional[ServiceType] = None,
        profile_updates: Optional[dict] = None,
    ) -> None:
        """Compare-and-swap write; raises ConcurrentUpdateError if the row moved."""

    @abstractmethod
    def set_conversation_step(self, user_id: UUID, step: ConversationStep) -> Optional[Conversation]:
        pass

    @abstractmethod
    def update_user_status(
        self,
        user_id: UUID,
        status: Optional[UserStatus] = None,
        selected_plan: Optional[str] = None,
        service_type: Optional[ServiceType] = None,
        rejection: bool = False,
    ) -> User:
        pass

    @abstractmethod
    def create_or_overwrite_payment(self, user_id: UUID, screenshot_url: str, service_type: ServiceType) -> Payment:
        pass

    @abstractmethod
    def get_latest_payment_by_user_id(self, user_id: UUID) -> Optional[Payment]:
        pass

    @abstractmethod
    def get_payment_by_id(self, payment_id: UUID) -> Optional[Payment]:
        pass

    @abstractmethod
    def verify_latest_payment(self, user_id: UUID) -> Optional[Payment]:
        pass

    @abstractmethod
    def reject_payment(self, user_id: UUID, payload: RejectionPayload) -> Optional[Payment]:
        pass

    @abstractmethod
    def mark_payment_notified(self, payment_id: UUID, error: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def record_payment_notify_error(self, payment_id: UUID, error: Optional[str]) -> None:
        pass

    @abstractmethod
    def create_submission(self, user_id: UUID, conversation_id: UUID, payment_id: UUID) -> Submission:
        pass

    @abstractmethod
    def get_submission(self, submission_id: UUID) -> Optional[Submission]:
        pass

    @abstractmethod
    def claim_submission_notification(self, submission_id: UUID) -> bool:
        """Mark the submission as being notified unless someone else already did."""
        pass

    @abstractmethod
    def mark_submission_notified(self, submission_id: UUID) -> None:
        pass

    @abstractmethod
    def record_submission_failure(self, submission_id: UUID, error: str) -> None:
        pass

    @abstractmethod
    def list_pending_submissions(self, max_attempts: int, limit: int = 20) -> list[Submission]:
        pass

    @abstractmethod
    def list_users(self, status: Optional[UserStatus] = None, service_type: Optional[ServiceType] = None) -> list[User]:
        pass

    @abstractmethod
    def list_unverified_payments(self, service_type: Optional[ServiceType] = None) -> list[tuple[Payment, User]]:
        pass

    @abstractmethod
    def record_reading_outcome(self, user_id: UUID, text: str, error: Optional[str] = None, release_claim: bool = False) -> User:
        pass

    @abstractmethod
    def claim_reading_send(self, user_id: UUID) -> bool:
        """Flag the reading as sent if it was not; False when another send got there first."""
        pass

    @abstractmethod
    def record_user_notify_error(self, user_id: UUID, error: Optional[str]) -> None:
        pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SqlConversationStore(ConversationStore):
    """ConversationStore over a SQLAlchemy session. Flushes, never commits on its own."""

    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # === USERS ===

    def get_or_create_user_by_address(self, address: str) -> User:
        user = self.db.query(User).filter(User.phone == address).first()
        if user:
            return user

        user = User(
            phone=address,
            status=UserStatus.NEW.value,
            service_type=ServiceType.LIFE_FORECAST.value,
            created_at=_now(),
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # Another delivery of the first message created the row first.
            self.db.rollback()
            user = self.db.query(User).filter(User.phone == address).one()
            return user

        logger.info(f"Created user {user.id} for {mask_address(address)}")
        return user

    def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def update_user_status(
        self,
        user_id: UUID,
        status: Optional[UserStatus] = None,
        selected_plan: Optional[str] = None,
        service_type: Optional[ServiceType] = None,
        rejection: bool = False,
    ) -> User:
        user = self.get_user_by_id(user_id)
        if not user:
            raise LookupError(f"User {user_id} not found")

        if status is not None:
            user.status = transition(parse_user_status(user.status), status, rejection=rejection).value
        if selected_plan is not None:
            user.selected_plan = selected_plan
        if service_type is not None:
            user.service_type = service_type.value
        user.updated_at = _now()
        self.db.flush()
        return user

    def list_users(self, status: Optional[UserStatus] = None, service_type: Optional[ServiceType] = None) -> list[User]:
        query = self.db.query(User)
        if status is not None:
            query = query.filter(User.status == status.value)
        if service_type is not None:
            query = query.filter(User.service_type == service_type.value)
        return query.order_by(User.created_at.desc()).all()

    def record_reading_outcome(
        self, user_id: UUID, text: str, error: Optional[str] = None, release_claim: bool = False
    ) -> User:
        user = self.get_user_by_id(user_id)
        if not user:
            raise LookupError(f"User {user_id} not found")

        now = _now()
        user.reading_outcome_text = text
        user.reading_send_count = (user.reading_send_count or 0) + 1
        if error:
            user.reading_send_error = error
            if release_claim:
                user.reading_sent = False
                user.reading_sent_at = None
        else:
            user.reading_sent = True
            user.reading_sent_at = now
            user.reading_send_error = None
        user.updated_at = now
        self.db.flush()
        return user

    def claim_reading_send(self, user_id: UUID) -> bool:
        # Row lock on the conditional update serialises racing senders.
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.reading_sent == False)  # noqa: E712
            .values(reading_sent=True, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(User, user_id)
        return result.rowcount == 1

    def record_user_notify_error(self, user_id: UUID, error: Optional[str]) -> None:
        user = self.get_user_by_id(user_id)
        if not user:
            return
        user.notify_error = error[:1000] if error else None
        user.updated_at = _now()
        self.db.flush()

    def _expire_cached(self, model, row_id: UUID) -> None:
        cached = self.db.get(model, row_id)
        if cached is not None:
            self.db.expire(cached)

    # === CONVERSATIONS ===

    def get_conversation_by_user_id(self, user_id: UUID) -> Optional[Conversation]:
        return self.db.query(Conversation).filter(Conversation.user_id == user_id).first()

    def create_conversation(self, user_id: UUID, step: ConversationStep = ConversationStep.WELCOME) -> Conversation:
        conversation = Conversation(
            user_id=user_id,
            current_step=step.value,
            service_type=ServiceType.LIFE_FORECAST.value,
            navigation_stack=[],
            version=0,
            created_at=_now(),
        )
        self.db.add(conversation)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConcurrentUpdateError(None, 0) from e
        return conversation

    def update_conversation(
        self,
        conversation_id: UUID,
        expected_version: int,
        *,
        current_step: ConversationStep,
        navigation: list,
        service_type: Optional[ServiceType] = None,
        profile_updates: Optional[dict] = None,
    ) -> None:
        values = {
            "current_step": current_step.value,
            "navigation_stack": [ConversationStep(step).value for step in navigation],
            "version": Conversation.version + 1,
            "updated_at": _now(),
        }
        if service_type is not None:
            values["service_type"] = service_type.value
        if profile_updates:
            values.update(profile_updates)

        result = self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateError(conversation_id, expected_version)

        self._expire_cached(Conversation, conversation_id)

    def set_conversation_step(self, user_id: UUID, step: ConversationStep) -> Optional[Conversation]:
        conversation = self.get_conversation_by_user_id(user_id)
        if not conversation:
            return None
        conversation.current_step = step.value
        conversation.navigation_stack = []
        conversation.version = (conversation.version or 0) + 1
        conversation.updated_at = _now()
        self.db.flush()
        return conversation

    # === PAYMENTS ===

    def create_or_overwrite_payment(self, user_id: UUID, screenshot_url: str, service_type: ServiceType) -> Payment:
        now = _now()
        payment = self.get_latest_payment_by_user_id(user_id)
        if payment is None:
            payment = Payment(user_id=user_id, created_at=now)
            self.db.add(payment)

        payment.screenshot_url = screenshot_url
        payment.service_type = service_type.value
        payment.verified = False
        payment.rejection_reason = None
        payment.rejection_note = None
        payment.received_amount_ghs = None
        payment.expected_amount_ghs = None
        payment.payment_verified_notified = False
        payment.payment_verified_notified_at = None
        payment.notify_error = None
        payment.updated_at = now
        self.db.flush()

        evidence = PaymentEvidence(
            payment_id=payment.id,
            user_id=user_id,
            screenshot_url=screenshot_url,
            service_type=service_type.value,
            created_at=now,
        )
        self.db.add(evidence)
        self.db.flush()
        payment.latest_evidence_id = evidence.id
        self.db.flush()
        return payment

    def get_latest_payment_by_user_id(self, user_id: UUID) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.user_id == user_id).first()

    def get_payment_by_id(self, payment_id: UUID) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def verify_latest_payment(self, user_id: UUID) -> Optional[Payment]:
        payment = self.get_latest_payment_by_user_id(user_id)
        if not payment:
            return None
        payment.verified = True
        payment.rejection_reason = None
        payment.rejection_note = None
        payment.received_amount_ghs = None
        payment.expected_amount_ghs = None
        payment.updated_at = _now()
        self.db.flush()
        return payment

    def reject_payment(self, user_id: UUID, payload: RejectionPayload) -> Optional[Payment]:
        if payload.reason not in REJECTION_REASONS:
            raise ValueError(f"Unknown rejection reason: {payload.reason}")

        payment = self.get_latest_payment_by_user_id(user_id)
        if not payment:
            return None
        payment.verified = False
        payment.rejection_reason = payload.reason
        payment.rejection_note = payload.note
        if payload.reason == REJECTION_UNDERPAID:
            payment.received_amount_ghs = payload.received_amount_ghs
            payment.expected_amount_ghs = payload.expected_amount_ghs
        else:
            payment.received_amount_ghs = None
            payment.expected_amount_ghs = None
        payment.updated_at = _now()
        self.db.flush()
        return payment

    def mark_payment_notified(self, payment_id: UUID, error: Optional[str] = None) -> None:
        payment = self.get_payment_by_id(payment_id)
        if not payment:
            return
        if error:
            payment.notify_error = error
        else:
            payment.payment_verified_notified = True
            payment.payment_verified_notified_at = _now()
            payment.notify_error = None
        self.db.flush()

    def record_payment_notify_error(self, payment_id: UUID, error: Optional[str]) -> None:
        payment = self.get_payment_by_id(payment_id)
        if not payment:
            return
        payment.notify_error = error[:1000] if error else None
        payment.updated_at = _now()
        self.db.flush()

    def list_unverified_payments(self, service_type: Optional[ServiceType] = None) -> list[tuple[Payment, User]]:
        query = self.db.query(Payment, User).join(User, User.id == Payment.user_id).filter(Payment.verified == False)  # noqa: E712
        if service_type is not None:
            query = query.filter(Payment.service_type == service_type.value)
        return [(payment, user) for payment, user in query.order_by(Payment.updated_at.desc()).all()]

    # === SUBMISSIONS ===

    def create_submission(self, user_id: UUID, conversation_id: UUID, payment_id: UUID) -> Submission:
        payment = self.get_payment_by_id(payment_id)
        evidence_id = payment.latest_evidence_id if payment else None

        if evidence_id is not None:
            existing = (
                self.db.query(Submission)
                .filter(Submission.payment_id == payment_id, Submission.evidence_id == evidence_id)
                .first()
            )
            if existing:
                logger.info(f"Submission {existing.id} already covers evidence {evidence_id}")
                return existing

        submission = Submission(
            user_id=user_id,
            conversation_id=conversation_id,
            payment_id=payment_id,
            evidence_id=evidence_id,
            admin_notified=False,
            notify_attempts=0,
            created_at=_now(),
        )
        self.db.add(submission)
        self.db.flush()
        return submission

    def get_submission(self, submission_id: UUID) -> Optional[Submission]:
        return self.db.query(Submission).filter(Submission.id == submission_id).first()

    def claim_submission_notification(self, submission_id: UUID) -> bool:
        result = self.db.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.admin_notified == False)  # noqa: E712
            .values(admin_notified=True)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(Submission, submission_id)
        return result.rowcount == 1

    def mark_submission_notified(self, submission_id: UUID) -> None:
        submission = self.get_submission(submission_id)
        if not submission:
            return
        submission.admin_notified = True
        submission.admin_notified_at = _now()
        submission.notify_error = None
        self.db.flush()

    def record_submission_failure(self, submission_id: UUID, error: str) -> None:
        submission = self.get_submission(submission_id)
        if not submission:
            return
        submission.admin_notified = False
        submission.notify_attempts = (submission.notify_attempts or 0) + 1
        submission.notify_error = error[:1000]
        self.db.flush()

    def list_pending_submissions(self, max_attempts: int, limit: int = 20) -> list[Submission]:
        return (
            self.db.query(Submission)
            .filter(Submission.admin_notified == False, Submission.notify_attempts < max_attempts)  # noqa: E712
            .order_by(Submission.created_at)
            .limit(limit)
            .all()
        )
