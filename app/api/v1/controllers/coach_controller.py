from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import Principal
from app.schemas.coaching_schemas import AssignmentView, CoachProfileUpdate, CoachProfileView
from app.services.assignment_service import AssignmentService
from app.policies import row_policies as policy
from app.core.logger import get_logger

logger = get_logger("coach_controller")


class CoachController:
    """Controller for the coach directory and coach self-service."""

    @staticmethod
    async def list_available(db: AsyncSession) -> List[CoachProfileView]:
        coaches = await AssignmentService.list_available_coaches(db)
        logger.debug(f"{len(coaches)} coach(es) accepting clients")
        return coaches

    @staticmethod
    async def get_profile(principal: Principal, db: AsyncSession, coach_id: str) -> CoachProfileView:
        return await AssignmentService.get_coach_profile(db, principal, coach_id)

    @staticmethod
    async def update_my_profile(
        principal: Principal,
        db: AsyncSession,
        payload: CoachProfileUpdate,
    ) -> CoachProfileView:
        policy.require(principal.is_coach, "Only coaches have a coach profile")
        return await AssignmentService.upsert_coach_profile(db, principal, payload)

    @staticmethod
    async def my_clients(principal: Principal, db: AsyncSession) -> List[AssignmentView]:
        policy.require(principal.is_coach or principal.is_admin, "Only coaches have clients")
        assignments = await AssignmentService.list_coach_clients(db, principal)
        return [AssignmentView.model_validate(a) for a in assignments]
