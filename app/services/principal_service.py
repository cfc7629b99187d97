from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import Principal, principal_from_user
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.enums import Role
from app.exceptions.errors import InvalidRequest, NotFound
from app.models import CoachProfile, User
from app.policies import row_policies as policy
from app.schemas.principal_schemas import PrincipalUpdate
from app.services.assignment_service import AssignmentService

logger = get_logger("principal_service")


class PrincipalService:
    """Admin changes to a principal's role and plan."""

    @staticmethod
    async def update_principal(
        db: AsyncSession,
        principal: Principal,
        user_id: str,
        payload: PrincipalUpdate,
    ) -> Principal:
        policy.require(principal.is_admin, "Only admins can change roles and plans")
        data = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not data:
            raise InvalidRequest("Nothing to update")

        async def work(session: AsyncSession) -> Principal:
            user = (await session.execute(
                select(User).where(User.id == user_id).with_for_update()
            )).scalar_one_or_none()
            if user is None or user.is_deleted:
                raise NotFound("User not found")

            previous_role = Role(user.type)
            if "role" in data:
                user.type = data["role"].value
            if "plan" in data:
                user.plan = data["plan"].value

            new_role = Role(user.type)
            if new_role == Role.COACH and previous_role != Role.COACH:
                await AssignmentService.ensure_coach_profile(session, user.id)
            elif previous_role == Role.COACH and new_role != Role.COACH:
                # Existing clients keep their assignment; nobody new can pick this coach
                profile = await session.get(CoachProfile, user.id)
                if profile is not None:
                    profile.is_available = False

            await session.flush()
            return principal_from_user(user)

        updated = await run_transaction(db, work, operation="update principal")
        logger.info(f"Admin {principal.id} set {user_id} to role={updated.role.value} plan={updated.plan.value}")
        return updated
