import uuid

from sqlalchemy import TIMESTAMP, Column, ForeignKey, Text, Uuid

from app.database import Base


class PaymentEvidence(Base):
    """Append-only log of every screenshot a user sent; payments keeps only the latest."""

    __tablename__ = "payment_evidence"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    screenshot_url = Column(Text, nullable=False)
    service_type = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
