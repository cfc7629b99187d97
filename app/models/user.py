from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from app.core.clock import utc_now
from app.database.base import Base
import cuid


class User(Base):
    """Identity row backing a Principal. Owned by the identity provider (Clerk)."""

    __tablename__ = "users"

    id = Column(String(25), primary_key=True, index=True, default=lambda: cuid.cuid())
    email = Column(String(255), unique=True, index=True, nullable=True)
    clerk_id = Column(String(255), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    type = Column(String(20), nullable=False, default="user")  # user, coach, meal_provider, admin
    plan = Column(String(10), nullable=False, default="BASIC")  # BASIC, PRO

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    coach_profile = relationship("CoachProfile", back_populates="coach", uselist=False, cascade="all, delete-orphan")
