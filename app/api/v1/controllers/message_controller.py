from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock
from app.core.identity import Principal
from app.schemas.chat_schemas import (
    ChatMessageView,
    ConversationView,
    MarkReadRequest,
    MarkReadResponse,
    SendMessageRequest,
    UnreadCountsResponse,
)
from app.services.conversation_service import ConversationService, message_view
from app.services.presence_bus import PresenceBus


class MessageController:
    """Controller for coach <-> client chat."""

    @staticmethod
    async def conversations(principal: Principal, db: AsyncSession) -> List[ConversationView]:
        return await ConversationService.list_conversations(db, principal)

    @staticmethod
    async def list_messages(
        principal: Principal,
        db: AsyncSession,
        peer_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        before: Optional[str] = None,
        after: Optional[str] = None,
        limit: int = 50,
    ) -> List[ChatMessageView]:
        messages = await ConversationService.list_messages(
            db,
            principal,
            peer_id=peer_id,
            conversation_id=conversation_id,
            before=before,
            after=after,
            limit=limit,
        )
        return [message_view(m) for m in messages]

    @staticmethod
    async def send(
        principal: Principal,
        db: AsyncSession,
        payload: SendMessageRequest,
        clock: StorageClock,
        bus: PresenceBus,
    ) -> ChatMessageView:
        message = await ConversationService.send_message(
            db,
            principal,
            payload.with_,
            body=payload.body,
            attachment_key=payload.attachment_key,
            message_type=payload.message_type,
            clock=clock,
            bus=bus,
        )
        return message_view(message)

    @staticmethod
    async def mark_read(
        principal: Principal,
        db: AsyncSession,
        payload: MarkReadRequest,
        clock: StorageClock,
        bus: PresenceBus,
    ) -> MarkReadResponse:
        updated = await ConversationService.mark_read(db, principal, payload.with_, payload.up_to_id, clock=clock, bus=bus)
        return MarkReadResponse(updated=updated)

    @staticmethod
    async def unread(principal: Principal, db: AsyncSession) -> UnreadCountsResponse:
        return UnreadCountsResponse(counts=await ConversationService.unread_counts(db, principal))
