from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.api.v1.controllers.coach_controller import CoachController
from app.schemas.coaching_schemas import AssignmentView, CoachProfileUpdate, CoachProfileView

router = APIRouter(prefix="/coaches", tags=["Coaches"])


@router.get(
    "/available",
    summary="List coaches accepting clients",
    response_model=List[CoachProfileView]
)
async def list_available_coaches(
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(get_principal)
):
    """Available coaches with free capacity, least loaded first."""
    return await CoachController.list_available(db)


@router.put(
    "/me",
    summary="Create or update my coach profile",
    response_model=CoachProfileView
)
async def update_my_profile(
    payload: CoachProfileUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await CoachController.update_my_profile(principal, db, payload)


@router.get(
    "/me/clients",
    summary="My active clients",
    response_model=List[AssignmentView]
)
async def my_clients(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await CoachController.my_clients(principal, db)


@router.get(
    "/{coach_id}",
    summary="Get a coach profile",
    response_model=CoachProfileView
)
async def get_coach(
    coach_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await CoachController.get_profile(principal, db, coach_id)
