import uuid

from sqlalchemy import JSON, TIMESTAMP, Column, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    current_step = Column(Text, nullable=False, default="WELCOME")
    service_type = Column(Text, nullable=False, default="life_forecast")
    navigation_stack = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    version = Column(Integer, nullable=False, default=0)  # bumped on every bot write

    # Collected profile
    full_name = Column(Text)
    dob = Column(Text)  # DD/MM/YYYY
    birth_time_type = Column(Text)  # Exact, Approximate, Unknown
    birth_time_value = Column(Text)
    birth_place = Column(Text)
    current_location = Column(Text)
    gender = Column(Text)  # Male, Female

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True))

    user = relationship("User", back_populates="conversation")
