from sqlalchemy import Column, String, ForeignKey, DateTime, Text, CheckConstraint, Index
from app.database.base import Base


class ChatbotMessage(Base):
    """
    AI chatbot turn half. Rows are visible only while expires_at > now;
    expired rows are removed lazily on append and by the scheduled sweep.
    """
    __tablename__ = "chatbot_messages"

    # "<turn cuid>-0" for the user half, "<turn cuid>-1" for the assistant half
    id = Column(String(32), primary_key=True)
    user_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)

    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="chk_chatbot_message_role"),
        CheckConstraint("length(content) <= 8000", name="chk_chatbot_message_length"),
        Index("ix_chatbot_messages_user_created", "user_id", "created_at"),
        Index("ix_chatbot_messages_user_expires", "user_id", "expires_at"),
        Index("ix_chatbot_messages_expires", "expires_at"),
    )
