from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.clock import StorageClock, get_clock
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.services.presence_bus import PresenceBus, get_presence_bus
from app.api.v1.controllers.assignment_controller import AssignmentController
from app.schemas.coaching_schemas import (
    AssignmentView,
    EndAssignmentResponse,
    SelectCoachRequest,
    SelectCoachResponse,
)

router = APIRouter(prefix="/assignment", tags=["Coach Assignment"])


@router.get(
    "/current",
    summary="Current coach assignment",
    description="Returns the active assignment of `client_id` (defaults to the caller), or null.",
    response_model=Optional[AssignmentView]
)
async def current_assignment(
    client_id: Optional[str] = Query(None, max_length=25),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await AssignmentController.current(principal, db, client_id)


@router.post(
    "/select",
    summary="Select a coach",
    description="Requires a PRO plan. Switching coaches is allowed once the cooldown has elapsed.",
    response_model=SelectCoachResponse
)
async def select_coach(
    payload: SelectCoachRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock),
    bus: PresenceBus = Depends(get_presence_bus)
):
    return await AssignmentController.select(principal, db, payload, clock, bus)


@router.post(
    "/end",
    summary="Leave my current coach",
    response_model=EndAssignmentResponse
)
async def end_assignment(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock),
    bus: PresenceBus = Depends(get_presence_bus)
):
    return await AssignmentController.end(principal, db, clock, bus)
