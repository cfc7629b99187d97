"""
EphemeralChatbotLog: per-user AI chatbot history with a 24h lifetime.

Three layers keep expired rows invisible and eventually gone:
reads filter on expires_at > now, each append first deletes the caller's
expired rows, and an operator-triggered sweep deletes everyone's.
"""

import asyncio
from datetime import timedelta
from typing import List, Optional, Tuple

import cuid
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock, storage_clock
from app.core.config import settings
from app.core.identity import Principal
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.enums import ChatbotRole
from app.exceptions.errors import AssistantUnavailable, HistoryUnavailable, InvalidRequest
from app.models import ChatbotMessage
from app.policies import row_policies as policy
from app.services.chatbot_assistant import ChatbotAssistant, chatbot_assistant

logger = get_logger("chatbot_log_service")


class ChatbotLogService:
    """Service for the ephemeral chatbot log."""

    @staticmethod
    async def append_turn(
        db: AsyncSession,
        principal: Principal,
        user_text: str,
        assistant_text: str,
        clock: StorageClock = storage_clock,
    ) -> Tuple[ChatbotMessage, ChatbotMessage]:
        """
        Persist both halves of a turn atomically.

        Raises HistoryUnavailable (carrying the assistant text) when the write
        fails, so the caller can still show the answer.
        """
        for text in (user_text, assistant_text):
            if not text or len(text) > settings.CHATBOT_MAX_CONTENT_CHARS:
                raise InvalidRequest(f"Chatbot content must be 1-{settings.CHATBOT_MAX_CONTENT_CHARS} characters")

        turn_id = cuid.cuid()

        async def work(session: AsyncSession) -> Tuple[ChatbotMessage, ChatbotMessage]:
            now = await clock.now(session)
            await session.execute(
                delete(ChatbotMessage)
                .where(ChatbotMessage.user_id == principal.id, ChatbotMessage.expires_at <= now)
                .execution_options(synchronize_session=False)
            )

            expires_at = now + timedelta(hours=settings.CHATBOT_TTL_HOURS)
            user_msg = ChatbotMessage(
                id=f"{turn_id}-0",
                user_id=principal.id,
                role=ChatbotRole.USER.value,
                content=user_text,
                created_at=now,
                expires_at=expires_at,
            )
            assistant_msg = ChatbotMessage(
                id=f"{turn_id}-1",
                user_id=principal.id,
                role=ChatbotRole.ASSISTANT.value,
                content=assistant_text,
                created_at=now,
                expires_at=expires_at,
            )
            for row in (user_msg, assistant_msg):
                policy.require(policy.can_access_chatbot_message(principal, row))
            session.add_all([user_msg, assistant_msg])
            await session.flush()
            return user_msg, assistant_msg

        try:
            return await run_transaction(db, work, operation="append chatbot turn")
        except Exception as exc:
            logger.error(f"Could not store chatbot turn for {principal.id}: {exc!r}")
            raise HistoryUnavailable(assistant_text=assistant_text) from exc

    @staticmethod
    async def history(
        db: AsyncSession,
        principal: Principal,
        limit: Optional[int] = None,
        clock: StorageClock = storage_clock,
    ) -> List[ChatbotMessage]:
        """Visible messages oldest first; `limit` keeps the most recent N."""
        if limit is not None and limit < 1:
            raise InvalidRequest("limit must be positive")

        async def work(session: AsyncSession) -> List[ChatbotMessage]:
            now = await clock.now(session)
            query = select(ChatbotMessage).where(
                policy.chatbot_scope(principal),
                ChatbotMessage.expires_at > now,
            )
            if limit is None:
                result = await session.execute(
                    query.order_by(ChatbotMessage.created_at.asc(), ChatbotMessage.id.asc())
                )
                return list(result.scalars().all())

            result = await session.execute(
                query.order_by(ChatbotMessage.created_at.desc(), ChatbotMessage.id.desc()).limit(limit)
            )
            return list(reversed(result.scalars().all()))

        return await run_transaction(db, work, write=False, operation="chatbot history")

    @staticmethod
    async def purge_all_for_user(db: AsyncSession, principal: Principal) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                delete(ChatbotMessage)
                .where(policy.chatbot_scope(principal))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        purged = await run_transaction(db, work, operation="purge chatbot history")
        logger.info(f"Purged {purged} chatbot message(s) for {principal.id}")
        return purged

    @staticmethod
    async def scheduled_sweep(db: AsyncSession, clock: StorageClock = storage_clock) -> int:
        """Delete every expired row. Operator-only; callers authenticate with the cleanup secret."""

        async def work(session: AsyncSession) -> int:
            now = await clock.now(session)
            result = await session.execute(
                delete(ChatbotMessage)
                .where(ChatbotMessage.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        deleted = await run_transaction(db, work, operation="chatbot sweep")
        logger.info(f"Chatbot sweep deleted {deleted} expired message(s)")
        return deleted

    @staticmethod
    async def take_turn(
        db: AsyncSession,
        principal: Principal,
        text: str,
        locale: Optional[str] = None,
        assistant: ChatbotAssistant = chatbot_assistant,
        clock: StorageClock = storage_clock,
    ) -> Tuple[ChatbotMessage, ChatbotMessage, List[ChatbotMessage]]:
        """Ask the assistant, then record the turn. Nothing is stored if the assistant fails."""
        text = (text or "").strip()
        if not text:
            raise InvalidRequest("Message cannot be empty")

        context = await ChatbotLogService.history(db, principal, limit=settings.CHATBOT_CONTEXT_MESSAGES, clock=clock)

        try:
            answer = await asyncio.wait_for(
                assistant.reply(context, text, locale),
                settings.CHATBOT_MODEL_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            logger.error(f"Assistant call failed for {principal.id}: {exc!r}")
            raise AssistantUnavailable() from exc
        if not answer:
            logger.error(f"Assistant returned an empty answer for {principal.id}")
            raise AssistantUnavailable()

        user_msg, assistant_msg = await ChatbotLogService.append_turn(db, principal, text, answer, clock=clock)
        try:
            history = await ChatbotLogService.history(db, principal, clock=clock)
        except Exception as exc:
            # The turn is committed; answer with it rather than lose the reply
            logger.warning(f"History reload failed for {principal.id} after storing the turn: {exc!r}")
            history = [user_msg, assistant_msg]
        return user_msg, assistant_msg, history
