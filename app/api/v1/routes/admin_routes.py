from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.api.v1.controllers.admin_controller import AdminController
from app.schemas.principal_schemas import PrincipalUpdate, PrincipalView

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.patch(
    "/principals/{user_id}",
    summary="Change a user's role or plan",
    description="Promoting a user to coach creates their coach profile.",
    response_model=PrincipalView
)
async def update_principal(
    user_id: str,
    payload: PrincipalUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await AdminController.update_principal(principal, db, user_id, payload)
