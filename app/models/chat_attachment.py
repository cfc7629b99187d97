from sqlalchemy import Column, String, ForeignKey, DateTime, BigInteger
from app.core.clock import utc_now
from app.database.base import Base


class ChatAttachment(Base):
    """Metadata of an uploaded chat file; bytes live in the blob store under storage_key."""

    __tablename__ = "chat_attachments"

    storage_key = Column(String(64), primary_key=True)
    owner_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    mime = Column(String(127), nullable=False)
    bytes = Column(BigInteger, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
