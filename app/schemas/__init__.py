from app.schemas.admin import ActionResponse, ProfileResponse, ReadingOutcomeRequest, RejectRequest
from app.schemas.message import MessageRequest, MessageResponse

__all__ = [
    "MessageRequest",
    "MessageResponse",
    "RejectRequest",
    "ReadingOutcomeRequest",
    "ActionResponse",
    "ProfileResponse",
]
