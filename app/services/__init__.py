from app.services.bot_service import BotReply, ConversationBot, InboundEvent
from app.services.conversation_store import ConcurrentUpdateError, ConversationStore, SqlConversationStore
from app.services.review_service import ReviewError, ReviewOutcome, ReviewService
from app.services.state_machine import (
    ConversationStep,
    InvalidTransitionError,
    ServiceType,
    UserStatus,
    can_transition,
    promote,
    reject_submission,
    transition,
)
