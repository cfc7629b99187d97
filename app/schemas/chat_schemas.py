from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional
from datetime import datetime

from app.enums import MessageRole, MessageType


class AttachmentView(BaseModel):
    storage_key: str
    file_name: str
    mime: str
    bytes: int

    class Config:
        from_attributes = True


class ChatMessageView(BaseModel):
    id: str
    pair_key: str
    sender_id: str
    role: MessageRole
    message_type: MessageType
    body: Optional[str] = None
    attachment: Optional[AttachmentView] = None
    created_at: datetime
    read_at: Optional[datetime] = None
    cursor: str = Field(..., description="Pass as `before`/`after` to page from this message")


class SendMessageRequest(BaseModel):
    with_: str = Field(..., alias="with", min_length=1, max_length=25, description="Peer (coach or client) id")
    body: Optional[str] = Field(None, description="Text, or the caption when an attachment is sent")
    attachment_key: Optional[str] = Field(None, max_length=64)
    message_type: Optional[MessageType] = None

    class Config:
        extra = "forbid"
        populate_by_name = True

    @field_validator("body")
    @classmethod
    def strip_body(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


class MarkReadRequest(BaseModel):
    with_: str = Field(..., alias="with", min_length=1, max_length=25)
    up_to_id: str = Field(..., min_length=1, max_length=25)

    class Config:
        extra = "forbid"
        populate_by_name = True


class MarkReadResponse(BaseModel):
    updated: int


class UnreadCountsResponse(BaseModel):
    counts: Dict[str, int]


class ConversationView(BaseModel):
    id: str
    pair_key: str
    client_id: str
    coach_id: str
    peer_id: str
    last_message_at: Optional[datetime] = None
    unread: int = 0


class UploadAttachmentResponse(BaseModel):
    storage_key: str
    file_name: str
    mime: str
    bytes: int
