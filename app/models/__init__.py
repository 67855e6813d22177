from app.models.conversation import Conversation
from app.models.payment import Payment
from app.models.payment_evidence import PaymentEvidence
from app.models.submission import Submission
from app.models.user import User

__all__ = [
    "User",
    "Conversation",
    "Payment",
    "PaymentEvidence",
    "Submission",
]
