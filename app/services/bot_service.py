from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.config import settings
from app.logging_config import get_logger, mask_address
from app.services.conversation_flow import ConversationSnapshot, Transition, advance
from app.services.conversation_store import ConcurrentUpdateError, ConversationStore
from app.services.normalizer import normalize
from app.services.profile import CollectedProfile
from app.services.state_machine import parse_service_type, parse_step, parse_user_status

logger = get_logger("bot_service")

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class InboundEvent:
    from_address: str
    body_text: Optional[str] = None
    media_count: int = 0
    media_url: Optional[str] = None


@dataclass
class BotReply:
    reply_text: str
    user_id: Optional[UUID] = None
    step: Optional[str] = None
    submission_id: Optional[UUID] = None


def build_snapshot(user, conversation) -> ConversationSnapshot:
    return ConversationSnapshot(
        step=parse_step(conversation.current_step),
        navigation=tuple(parse_step(step) for step in (conversation.navigation_stack or [])),
        service_type=parse_service_type(conversation.service_type),
        profile=CollectedProfile.from_row(conversation),
        user_status=parse_user_status(user.status),
        user_service_type=parse_service_type(user.service_type),
    )


class ConversationBot:
    """Runs one inbound chat message through the state machine and persists the outcome."""

    def __init__(
        self,
        store: ConversationStore,
        submission_dispatcher=None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        trusted_media_prefix: Optional[str] = None,
    ):
        self.store = store
        self.submission_dispatcher = submission_dispatcher
        self.max_attempts = max(max_attempts, 1)
        self.trusted_media_prefix = trusted_media_prefix or settings.trusted_media_prefix

    def handle_incoming(self, event: InboundEvent) -> BotReply:
        address = (event.from_address or "").strip()
        if not address:
            raise ValueError("from_address is required")

        message = normalize(
            event.body_text,
            media_count=event.media_count,
            media_url=event.media_url,
            trusted_media_prefix=self.trusted_media_prefix,
        )

        for attempt in range(1, self.max_attempts + 1):
            try:
                reply = self._process(address, message)
            except ConcurrentUpdateError as e:
                self.store.rollback()
                logger.warning(
                    f"Conversation changed underneath message from {mask_address(address)}",
                    extra={"context": {"attempt": attempt, "conversation_id": e.conversation_id}},
                )
                if attempt == self.max_attempts:
                    raise
                continue
            except Exception:
                self.store.rollback()
                raise

            self.store.commit()
            self._dispatch(reply.submission_id)
            return reply

        raise RuntimeError("unreachable")

    def _process(self, address: str, message) -> BotReply:
        user = self.store.get_or_create_user_by_address(address)
        conversation = self.store.get_conversation_by_user_id(user.id)
        if conversation is None:
            conversation = self.store.create_conversation(user.id)

        snapshot = build_snapshot(user, conversation)
        result = advance(snapshot, message)
        submission_id = self._apply(user, conversation, snapshot, result)

        if result.next_step is not None and result.next_step != snapshot.step:
            logger.info(
                f"Step {snapshot.step.value} -> {result.next_step.value}",
                extra={"context": {"user_id": str(user.id), "status": user.status}},
            )

        step = result.next_step or snapshot.step
        return BotReply(reply_text=result.reply, user_id=user.id, step=step.value, submission_id=submission_id)

    def _apply(self, user, conversation, snapshot: ConversationSnapshot, result: Transition) -> Optional[UUID]:
        # Conversation first: its version check guards every other write.
        if result.mutates_conversation:
            self.store.update_conversation(
                conversation.id,
                conversation.version,
                current_step=result.next_step,
                navigation=result.navigation or [],
                service_type=result.service_type,
                profile_updates=result.profile_updates,
            )

        if result.mutates_user:
            self.store.update_user_status(
                user.id,
                status=result.user_status,
                selected_plan=result.selected_plan,
                service_type=result.service_type,
            )

        if result.payment_screenshot_url:
            self.store.create_or_overwrite_payment(
                user.id,
                result.payment_screenshot_url,
                result.service_type or snapshot.service_type,
            )

        if not result.finalize_submission:
            return None

        payment = self.store.get_latest_payment_by_user_id(user.id)
        if not payment:
            logger.warning(f"Profile complete without payment evidence for user {user.id}")
            return None
        submission = self.store.create_submission(user.id, conversation.id, payment.id)
        return submission.id

    def _dispatch(self, submission_id: Optional[UUID]) -> None:
        if submission_id is None or self.submission_dispatcher is None:
            return
        try:
            self.submission_dispatcher.dispatch(submission_id)
        except Exception as e:
            logger.error(f"Failed to schedule admin notification for submission {submission_id}: {e}")
