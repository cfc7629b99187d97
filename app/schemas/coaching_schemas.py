from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.enums import AssignmentStatus


class CoachProfileView(BaseModel):
    """Coach card as shown in the coach picker."""

    coach_id: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    is_available: bool
    max_clients: int
    active_clients: int
    accepting_clients: bool = Field(
        ...,
        description="Derived: is_available and active_clients < max_clients"
    )

    class Config:
        from_attributes = True


class CoachProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    bio: Optional[str] = Field(None, max_length=4000)
    is_available: Optional[bool] = None
    max_clients: Optional[int] = Field(None, ge=1, le=500)

    class Config:
        extra = "forbid"


class AssignmentView(BaseModel):
    id: str
    client_id: str
    coach_id: str
    status: AssignmentStatus
    assigned_at: datetime
    ended_at: Optional[datetime] = None
    ended_reason: Optional[str] = None

    class Config:
        from_attributes = True


class SelectCoachRequest(BaseModel):
    coach_id: str = Field(..., min_length=1, max_length=25, description="Coach to assign to the caller")

    class Config:
        extra = "forbid"


class SelectCoachResponse(BaseModel):
    assignment: AssignmentView
    ended_previous: Optional[AssignmentView] = None


class EndAssignmentResponse(BaseModel):
    assignment: AssignmentView
