from sqlalchemy import Column, String, ForeignKey, DateTime, CheckConstraint, Index, text
from app.core.clock import utc_now
from app.database.base import Base
import cuid


class CoachAssignment(Base):
    """
    Client -> coach assignment. At most one active row per client.
    Switching coach ends the previous row and inserts a new one.
    """
    __tablename__ = "coach_assignments"

    id = Column(String(25), primary_key=True, index=True, default=lambda: cuid.cuid())
    client_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(10), default="active", nullable=False)  # active, ended
    assigned_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    ended_reason = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("client_id != coach_id", name="chk_assignment_client_not_coach"),
        CheckConstraint(
            "(status = 'active' AND ended_at IS NULL) OR (status = 'ended' AND ended_at IS NOT NULL)",
            name="chk_assignment_ended_at_with_status",
        ),
        # Single-coach rule
        Index(
            "uq_coach_assignments_active_client",
            "client_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_coach_assignments_coach_status", "coach_id", "status"),
    )

    def __repr__(self):
        return f"<CoachAssignment {self.client_id} -> {self.coach_id} ({self.status})>"
