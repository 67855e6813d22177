import uuid

from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    screenshot_url = Column(Text, nullable=False)
    latest_evidence_id = Column(Uuid(as_uuid=True))
    verified = Column(Boolean, nullable=False, default=False)
    service_type = Column(Text, nullable=False, default="life_forecast")
    rejection_reason = Column(Text)  # INVALID_PROOF, UNDERPAID
    rejection_note = Column(Text)
    received_amount_ghs = Column(Numeric(10, 2, asdecimal=False))
    expected_amount_ghs = Column(Numeric(10, 2, asdecimal=False))
    payment_verified_notified = Column(Boolean, nullable=False, default=False)
    payment_verified_notified_at = Column(TIMESTAMP(timezone=True))
    notify_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    user = relationship("User", back_populates="payments")
