from sqlalchemy import Column, String, ForeignKey, DateTime, Boolean, Integer, Text, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.core.clock import utc_now
from app.database.base import Base


class CoachProfile(Base):
    """
    Public coach card plus the capacity counters used by coach selection.

    active_clients mirrors the number of active CoachAssignment rows for the coach;
    it is only changed in the same transaction as an assignment transition.
    """
    __tablename__ = "coach_profiles"

    coach_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)

    is_available = Column(Boolean, default=True, nullable=False)
    max_clients = Column(Integer, default=10, nullable=False)
    active_clients = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    coach = relationship("User", back_populates="coach_profile")

    __table_args__ = (
        CheckConstraint("active_clients >= 0", name="chk_coach_active_clients_non_negative"),
        CheckConstraint("active_clients <= max_clients", name="chk_coach_active_clients_capacity"),
        Index("ix_coach_profiles_listing", "is_available", "active_clients", "coach_id"),
    )

    def __repr__(self):
        return f"<CoachProfile {self.coach_id} ({self.active_clients}/{self.max_clients})>"
