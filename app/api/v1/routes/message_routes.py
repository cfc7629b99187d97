from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.clock import StorageClock, get_clock
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.services.presence_bus import PresenceBus, get_presence_bus
from app.services.conversation_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.api.v1.controllers.message_controller import MessageController
from app.schemas.chat_schemas import (
    ChatMessageView,
    ConversationView,
    MarkReadRequest,
    MarkReadResponse,
    SendMessageRequest,
    UnreadCountsResponse,
)

router = APIRouter(tags=["Coach Chat"])


@router.get(
    "/conversations",
    summary="My conversations",
    response_model=List[ConversationView]
)
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await MessageController.conversations(principal, db)


@router.get(
    "/conversations/{conversation_id}/messages",
    summary="Messages of a conversation by id",
    description="Same paging as `GET /messages`; lets admins read any pair.",
    response_model=List[ChatMessageView]
)
async def conversation_messages(
    conversation_id: str,
    before: Optional[str] = Query(None),
    after: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await MessageController.list_messages(
        principal, db, conversation_id=conversation_id, before=before, after=after, limit=limit
    )


@router.get(
    "/messages/unread",
    summary="Unread counts per counterpart",
    response_model=UnreadCountsResponse
)
async def unread_counts(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await MessageController.unread(principal, db)


@router.get(
    "/messages",
    summary="Page through messages with a coach or client",
    description="Newest first. Pass a message `cursor` as `before` for older pages, "
                "or as `after` to backfill (oldest first) after reconnecting.",
    response_model=List[ChatMessageView]
)
async def list_messages(
    with_: str = Query(..., alias="with", max_length=25),
    before: Optional[str] = Query(None),
    after: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
):
    return await MessageController.list_messages(
        principal, db, peer_id=with_, before=before, after=after, limit=limit
    )


@router.post(
    "/messages",
    summary="Send a message",
    status_code=201,
    response_model=ChatMessageView
)
async def send_message(
    payload: SendMessageRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock),
    bus: PresenceBus = Depends(get_presence_bus)
):
    return await MessageController.send(principal, db, payload, clock, bus)


@router.post(
    "/messages/read",
    summary="Mark messages as read",
    response_model=MarkReadResponse
)
async def mark_read(
    payload: MarkReadRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock),
    bus: PresenceBus = Depends(get_presence_bus)
):
    return await MessageController.mark_read(principal, db, payload, clock, bus)
