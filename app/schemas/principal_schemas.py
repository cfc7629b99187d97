from pydantic import BaseModel
from typing import Optional

from app.enums import Plan, Role


class PrincipalView(BaseModel):
    id: str
    role: Role
    plan: Plan

    class Config:
        from_attributes = True


class PrincipalUpdate(BaseModel):
    role: Optional[Role] = None
    plan: Optional[Plan] = None

    class Config:
        extra = "forbid"
