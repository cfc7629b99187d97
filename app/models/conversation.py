from sqlalchemy import Column, String, ForeignKey, DateTime, CheckConstraint
from app.core.clock import utc_now
from app.database.base import Base
import cuid


def make_pair_key(client_id: str, coach_id: str) -> str:
    """Canonical key of the unordered {client, coach} pair."""
    first, second = sorted((client_id, coach_id))
    return f"{first}:{second}"


class Conversation(Base):
    """
    One row per client/coach pair. Message writers lock this row, which
    linearizes inserts per pair and lets created_at stay strictly increasing.
    """
    __tablename__ = "conversations"

    id = Column(String(25), primary_key=True, index=True, default=lambda: cuid.cuid())
    pair_key = Column(String(64), unique=True, nullable=False, index=True)
    client_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    last_message_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("client_id != coach_id", name="chk_conversation_client_not_coach"),
    )
