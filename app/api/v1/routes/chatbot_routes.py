from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.clock import StorageClock, get_clock
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.services.chatbot_assistant import ChatbotAssistant, get_chatbot_assistant
from app.api.v1.controllers.chatbot_controller import ChatbotController
from app.schemas.chatbot_schemas import (
    ChatbotMessageView,
    ChatbotTurnRequest,
    ChatbotTurnResponse,
    CleanupResponse,
    PurgeResponse,
)

router = APIRouter(prefix="/chatbot", tags=["AI Chatbot"])


@router.post(
    "/turn",
    summary="Chat with the YamiFit assistant",
    description="History is kept for 24 hours, then deleted.",
    response_model=ChatbotTurnResponse
)
async def chatbot_turn(
    payload: ChatbotTurnRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    assistant: ChatbotAssistant = Depends(get_chatbot_assistant),
    clock: StorageClock = Depends(get_clock)
):
    return await ChatbotController.turn(principal, db, payload, assistant, clock)


@router.get(
    "/history",
    summary="My chatbot history",
    response_model=List[ChatbotMessageView]
)
async def chatbot_history(
    limit: Optional[int] = Query(None, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock)
):
    return await ChatbotController.history(principal, db, limit, clock)


@router.delete(
    "/history",
    summary="Clear my chatbot history",
    response_model=PurgeResponse
)
async def clear_chatbot_history(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await ChatbotController.purge(principal, db)


@router.post(
    "/cleanup",
    summary="Delete expired chatbot messages",
    description="Called hourly by the scheduler with the `X-Cleanup-Secret` header.",
    response_model=CleanupResponse
)
async def chatbot_cleanup(
    x_cleanup_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    clock: StorageClock = Depends(get_clock)
):
    return await ChatbotController.cleanup(db, x_cleanup_secret, clock)
