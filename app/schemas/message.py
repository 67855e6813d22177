from typing import Optional

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    from_address: str = Field(min_length=1)
    body_text: Optional[str] = None
    media_count: int = Field(default=0, ge=0)
    media_url: Optional[str] = None


class MessageResponse(BaseModel):
    reply_text: str
