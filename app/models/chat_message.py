from sqlalchemy import Column, String, ForeignKey, DateTime, Text, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.database.base import Base
import cuid


class ChatMessage(Base):
    """
    Client <-> coach chat message. Append-only: only read_at changes after insert.
    Ordered per pair by (created_at, id).
    """
    __tablename__ = "chat_messages"

    id = Column(String(25), primary_key=True, index=True, default=lambda: cuid.cuid())
    conversation_id = Column(String(25), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    pair_key = Column(String(64), nullable=False)
    sender_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(10), nullable=False)  # client, coach

    message_type = Column(String(10), default="text", nullable=False)  # text, image, file
    body = Column(Text, nullable=True)
    attachment_key = Column(
        String(64),
        ForeignKey("chat_attachments.storage_key"),
        nullable=True,
        unique=True,
    )

    created_at = Column(DateTime, nullable=False)
    read_at = Column(DateTime, nullable=True)

    attachment = relationship("ChatAttachment", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "body IS NOT NULL OR attachment_key IS NOT NULL",
            name="chk_chat_message_has_content",
        ),
        Index("ix_chat_messages_pair_order", "pair_key", "created_at", "id"),
        Index("ix_chat_messages_pair_unread", "pair_key", "role", "read_at"),
    )

    def __repr__(self):
        return f"<ChatMessage {self.id} {self.pair_key} ({self.role})>"
