from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import Principal
from app.schemas.principal_schemas import PrincipalUpdate, PrincipalView
from app.services.principal_service import PrincipalService


class AdminController:
    """Controller for admin-only principal management."""

    @staticmethod
    async def update_principal(
        principal: Principal,
        db: AsyncSession,
        user_id: str,
        payload: PrincipalUpdate,
    ) -> PrincipalView:
        updated = await PrincipalService.update_principal(db, principal, user_id, payload)
        return PrincipalView(id=updated.id, role=updated.role, plan=updated.plan)
