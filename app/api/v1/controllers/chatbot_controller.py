import hmac
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock, utc_now
from app.core.config import settings
from app.core.identity import Principal
from app.exceptions.errors import Forbidden, Unauthenticated
from app.schemas.chatbot_schemas import (
    ChatbotMessageView,
    ChatbotTurnRequest,
    ChatbotTurnResponse,
    CleanupResponse,
    PurgeResponse,
)
from app.services.chatbot_assistant import ChatbotAssistant
from app.services.chatbot_log_service import ChatbotLogService
from app.core.logger import get_logger

logger = get_logger("chatbot_controller")


class ChatbotController:
    """Controller for the YamiFit AI chatbot."""

    @staticmethod
    async def turn(
        principal: Principal,
        db: AsyncSession,
        payload: ChatbotTurnRequest,
        assistant: ChatbotAssistant,
        clock: StorageClock,
    ) -> ChatbotTurnResponse:
        user_msg, assistant_msg, history = await ChatbotLogService.take_turn(
            db,
            principal,
            payload.text,
            locale=payload.locale,
            assistant=assistant,
            clock=clock,
        )
        return ChatbotTurnResponse(
            user_msg=ChatbotMessageView.model_validate(user_msg),
            assistant_msg=ChatbotMessageView.model_validate(assistant_msg),
            history=[ChatbotMessageView.model_validate(m) for m in history],
        )

    @staticmethod
    async def history(
        principal: Principal,
        db: AsyncSession,
        limit: Optional[int],
        clock: StorageClock,
    ) -> List[ChatbotMessageView]:
        rows = await ChatbotLogService.history(db, principal, limit=limit, clock=clock)
        return [ChatbotMessageView.model_validate(m) for m in rows]

    @staticmethod
    async def purge(principal: Principal, db: AsyncSession) -> PurgeResponse:
        return PurgeResponse(purged=await ChatbotLogService.purge_all_for_user(db, principal))

    @staticmethod
    async def cleanup(db: AsyncSession, secret: Optional[str], clock: StorageClock) -> CleanupResponse:
        """Sweep entry point for the external scheduler."""
        if not settings.CLEANUP_SECRET:
            logger.error("CLEANUP_SECRET is not configured; refusing chatbot cleanup")
            raise Forbidden("Cleanup is not configured")
        if not secret:
            raise Unauthenticated("Missing cleanup secret")
        if not hmac.compare_digest(secret.encode(), settings.CLEANUP_SECRET.encode()):
            logger.warning("Chatbot cleanup called with a wrong secret")
            raise Forbidden("Invalid cleanup secret")

        deleted = await ChatbotLogService.scheduled_sweep(db, clock=clock)
        return CleanupResponse(deleted=deleted, timestamp=utc_now().isoformat())
