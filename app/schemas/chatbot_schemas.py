from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime

from app.enums import ChatbotRole


class ChatbotTurnRequest(BaseModel):
    """Request payload for a chatbot turn."""

    text: str = Field(
        ...,
        min_length=1,
        max_length=8000,
        description="Message to send to the YamiFit chatbot",
        examples=["What should I eat before a morning run?"]
    )
    locale: Optional[Literal["en", "ar"]] = Field(None, description="UI language; `ar` asks for Arabic replies")

    class Config:
        extra = "forbid"


class ChatbotMessageView(BaseModel):
    id: str
    role: ChatbotRole
    content: str
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class ChatbotTurnResponse(BaseModel):
    user_msg: ChatbotMessageView
    assistant_msg: ChatbotMessageView
    history: List[ChatbotMessageView]


class PurgeResponse(BaseModel):
    purged: int


class CleanupResponse(BaseModel):
    deleted: int
    timestamp: str
