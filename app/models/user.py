import uuid

from sqlalchemy import TIMESTAMP, Boolean, Column, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(Text, nullable=False, unique=True)
    status = Column(Text, nullable=False, default="NEW")  # NEW, AWAITING_PAYMENT, PAYMENT_SUBMITTED, VERIFIED, COMPLETED
    selected_plan = Column(Text)  # 1 Year, 3 Years, 5 Years
    service_type = Column(Text, nullable=False, default="life_forecast")  # life_forecast, destiny_readings
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True))
    reading_sent = Column(Boolean, nullable=False, default=False)
    reading_sent_at = Column(TIMESTAMP(timezone=True))
    reading_send_error = Column(Text)
    reading_outcome_text = Column(Text)
    reading_send_count = Column(Integer, nullable=False, default=0)
    notify_error = Column(Text)  # last failed status message (rejection, completion)

    conversation = relationship("Conversation", back_populates="user", uselist=False)
    payments = relationship("Payment", back_populates="user")
