import uuid

from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Integer, Text, Uuid

from app.database import Base


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False)
    evidence_id = Column(Uuid(as_uuid=True))
    admin_notified = Column(Boolean, nullable=False, default=False)
    admin_notified_at = Column(TIMESTAMP(timezone=True))
    notify_attempts = Column(Integer, nullable=False, default=0)
    notify_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
