from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock
from app.core.identity import Principal
from app.schemas.coaching_schemas import (
    AssignmentView,
    EndAssignmentResponse,
    SelectCoachRequest,
    SelectCoachResponse,
)
from app.services.assignment_service import AssignmentService
from app.services.presence_bus import PresenceBus


class AssignmentController:
    """Controller for the caller's coach assignment."""

    @staticmethod
    async def current(
        principal: Principal,
        db: AsyncSession,
        client_id: Optional[str] = None,
    ) -> Optional[AssignmentView]:
        assignment = await AssignmentService.current_assignment(db, principal, client_id)
        return AssignmentView.model_validate(assignment) if assignment else None

    @staticmethod
    async def select(
        principal: Principal,
        db: AsyncSession,
        payload: SelectCoachRequest,
        clock: StorageClock,
        bus: PresenceBus,
    ) -> SelectCoachResponse:
        result = await AssignmentService.select_coach(db, principal, payload.coach_id, clock=clock, bus=bus)
        return SelectCoachResponse(
            assignment=AssignmentView.model_validate(result.assignment),
            ended_previous=AssignmentView.model_validate(result.ended_previous) if result.ended_previous else None,
        )

    @staticmethod
    async def end(
        principal: Principal,
        db: AsyncSession,
        clock: StorageClock,
        bus: PresenceBus,
    ) -> EndAssignmentResponse:
        assignment = await AssignmentService.end_assignment(db, principal, clock=clock, bus=bus)
        return EndAssignmentResponse(assignment=AssignmentView.model_validate(assignment))
