"""
ConversationStore: persisted client <-> coach chat.

Writes to one pair are serialized by touching the pair's Conversation row
first, which takes a row lock on PostgreSQL and the write lock on SQLite.
Under that lock created_at is forced strictly above the pair's previous
message, so (created_at, id) is a total order per pair and keyset pages are
stable under concurrent inserts.
"""

import base64
import binascii
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock, storage_clock
from app.core.config import settings
from app.core.identity import Principal
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.enums import AssignmentStatus, EventType, MessageRole, MessageType, Role
from app.exceptions.errors import AttachmentRejected, Forbidden, InvalidRequest, NoCoach, NotFound
from app.models import ChatAttachment, ChatMessage, CoachAssignment, Conversation, make_pair_key
from app.policies import row_policies as policy
from app.schemas.chat_schemas import AttachmentView, ChatMessageView, ConversationView
from app.services.presence_bus import Event, PresenceBus, presence_bus

logger = get_logger("conversation_service")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
ORDER_STEP = timedelta(microseconds=1)

Cursor = Tuple[datetime, str]


def encode_cursor(created_at: datetime, message_id: str) -> str:
    raw = f"{created_at.isoformat()}|{message_id}".encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        created_raw, message_id = base64.urlsafe_b64decode(padded.encode()).decode().split("|", 1)
        return datetime.fromisoformat(created_raw), message_id
    except (ValueError, UnicodeDecodeError, binascii.Error):
        raise InvalidRequest("Malformed cursor")


def message_view(message: ChatMessage) -> ChatMessageView:
    return ChatMessageView(
        id=message.id,
        pair_key=message.pair_key,
        sender_id=message.sender_id,
        role=MessageRole(message.role),
        message_type=MessageType(message.message_type),
        body=message.body,
        attachment=AttachmentView.model_validate(message.attachment) if message.attachment else None,
        created_at=message.created_at,
        read_at=message.read_at,
        cursor=encode_cursor(message.created_at, message.id),
    )


def message_payload(message: ChatMessage) -> dict:
    return message_view(message).model_dump(mode="json")


def derive_message_type(attachment: Optional[ChatAttachment]) -> MessageType:
    if attachment is None:
        return MessageType.TEXT
    if attachment.mime.startswith("image/"):
        return MessageType.IMAGE
    return MessageType.FILE


def role_in_pair(principal: Principal, conversation: Conversation) -> MessageRole:
    if principal.id == conversation.client_id:
        return MessageRole.CLIENT
    if principal.id == conversation.coach_id:
        return MessageRole.COACH
    raise Forbidden("You are not part of this conversation")


def addressed_to(principal_id: str):
    """Messages written by the other side of any pair `principal_id` belongs to."""
    return or_(
        and_(Conversation.client_id == principal_id, ChatMessage.role == MessageRole.COACH.value),
        and_(Conversation.coach_id == principal_id, ChatMessage.role == MessageRole.CLIENT.value),
    )


async def _has_active_assignment(session: AsyncSession, client_id: str, coach_id: str) -> bool:
    result = await session.execute(
        select(CoachAssignment.id).where(
            CoachAssignment.client_id == client_id,
            CoachAssignment.coach_id == coach_id,
            CoachAssignment.status == AssignmentStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none() is not None


async def _conversation_for_peer(session: AsyncSession, principal: Principal, peer_id: str) -> Conversation:
    if peer_id == principal.id:
        raise InvalidRequest("Cannot open a conversation with yourself")
    conversation = (await session.execute(
        select(Conversation).where(Conversation.pair_key == make_pair_key(principal.id, peer_id))
    )).scalar_one_or_none()
    if conversation is None:
        raise NotFound("Conversation not found")
    policy.require(policy.can_read_conversation(principal, conversation))
    return conversation


class ConversationService:
    """Service for coach chat messages, read receipts and unread counters."""

    @staticmethod
    async def send_message(
        db: AsyncSession,
        principal: Principal,
        peer_id: str,
        body: Optional[str] = None,
        attachment_key: Optional[str] = None,
        message_type: Optional[MessageType] = None,
        clock: StorageClock = storage_clock,
        bus: PresenceBus = presence_bus,
    ) -> ChatMessage:
        if peer_id == principal.id:
            raise InvalidRequest("Cannot message yourself")
        if body is not None and len(body) > settings.MAX_MESSAGE_BODY_CHARS:
            raise InvalidRequest(f"Message too long (max {settings.MAX_MESSAGE_BODY_CHARS} characters)")
        if body is None and attachment_key is None:
            raise InvalidRequest("Message must have a body or an attachment")

        pair_key = make_pair_key(principal.id, peer_id)

        async def work(session: AsyncSession) -> ChatMessage:
            now = await clock.now(session)

            # Serialize writers of this pair before reading its last timestamp
            await session.execute(
                update(Conversation)
                .where(Conversation.pair_key == pair_key)
                .values(pair_key=Conversation.pair_key)
                .execution_options(synchronize_session=False)
            )
            conversation = (await session.execute(
                select(Conversation).where(Conversation.pair_key == pair_key)
            )).scalar_one_or_none()

            if conversation is None:
                if principal.role != Role.USER:
                    raise Forbidden("No conversation with this user")
                if not await _has_active_assignment(session, principal.id, peer_id):
                    raise NoCoach()
                conversation = Conversation(
                    pair_key=pair_key,
                    client_id=principal.id,
                    coach_id=peer_id,
                    created_at=now,
                )
                session.add(conversation)
                await session.flush()

            policy.require(policy.can_write_message(principal, conversation, principal.id))
            role = role_in_pair(principal, conversation)
            if role == MessageRole.CLIENT and not await _has_active_assignment(
                session, conversation.client_id, conversation.coach_id
            ):
                raise NoCoach()

            attachment = None
            if attachment_key is not None:
                attachment = await session.get(ChatAttachment, attachment_key)
                if attachment is None:
                    raise AttachmentRejected("unknown_key", "Attachment not found; upload it first")
                if attachment.owner_id != principal.id:
                    raise AttachmentRejected("not_owner", "You can only send your own uploads")
                already_used = (await session.execute(
                    select(ChatMessage.id).where(ChatMessage.attachment_key == attachment_key)
                )).scalar_one_or_none()
                if already_used is not None:
                    raise AttachmentRejected("already_used", "This attachment was already sent")

            derived_type = derive_message_type(attachment)
            if message_type is not None and message_type != derived_type:
                raise InvalidRequest(f"message_type must be '{derived_type.value}' for this content")

            created_at = now
            if conversation.last_message_at is not None and created_at <= conversation.last_message_at:
                created_at = conversation.last_message_at + ORDER_STEP

            message = ChatMessage(
                conversation_id=conversation.id,
                pair_key=pair_key,
                sender_id=principal.id,
                role=role.value,
                message_type=derived_type.value,
                body=body,
                attachment_key=attachment_key,
                created_at=created_at,
            )
            message.attachment = attachment
            session.add(message)
            conversation.last_message_at = created_at
            await session.flush()
            return message

        message = await run_transaction(db, work, retry_on_conflict=True, operation="send message")
        logger.info(f"Message {message.id} in {pair_key} from {principal.id} ({message.message_type})")
        await bus.publish(
            ConversationService._members(pair_key),
            Event(EventType.MESSAGE_CREATED, message_payload(message), pair_key=pair_key),
        )
        return message

    @staticmethod
    async def list_messages(
        db: AsyncSession,
        principal: Principal,
        peer_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        before: Optional[str] = None,
        after: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[ChatMessage]:
        """
        Newest-first page, or with `after` an oldest-first page of messages
        strictly after the cursor (used for reconnection backfill).
        """
        if before and after:
            raise InvalidRequest("Use either `before` or `after`, not both")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        before_cursor = decode_cursor(before) if before else None
        after_cursor = decode_cursor(after) if after else None

        async def work(session: AsyncSession) -> List[ChatMessage]:
            if conversation_id is not None:
                conversation = await session.get(Conversation, conversation_id)
                if conversation is None:
                    raise NotFound("Conversation not found")
                policy.require(policy.can_read_conversation(principal, conversation))
            else:
                conversation = await _conversation_for_peer(session, principal, peer_id)

            query = select(ChatMessage).where(ChatMessage.pair_key == conversation.pair_key)
            if after_cursor is not None:
                created_at, message_id = after_cursor
                query = query.where(or_(
                    ChatMessage.created_at > created_at,
                    and_(ChatMessage.created_at == created_at, ChatMessage.id > message_id),
                )).order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            else:
                if before_cursor is not None:
                    created_at, message_id = before_cursor
                    query = query.where(or_(
                        ChatMessage.created_at < created_at,
                        and_(ChatMessage.created_at == created_at, ChatMessage.id < message_id),
                    ))
                query = query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())

            result = await session.execute(query.limit(limit))
            messages = list(result.scalars().unique().all())
            for message in messages:
                policy.require(policy.can_read_message(principal, message, conversation))
            return messages

        return await run_transaction(db, work, write=False, operation="list messages")

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        principal: Principal,
        peer_id: str,
        up_to_id: str,
        clock: StorageClock = storage_clock,
        bus: PresenceBus = presence_bus,
    ) -> int:
        """Mark the other side's messages up to `up_to_id` as read. Idempotent."""

        async def work(session: AsyncSession) -> Tuple[str, List[ChatMessage]]:
            now = await clock.now(session)
            conversation = await _conversation_for_peer(session, principal, peer_id)
            caller_role = role_in_pair(principal, conversation)
            other_role = MessageRole.COACH if caller_role == MessageRole.CLIENT else MessageRole.CLIENT

            target = (await session.execute(
                select(ChatMessage).where(
                    ChatMessage.id == up_to_id,
                    ChatMessage.pair_key == conversation.pair_key,
                )
            )).scalar_one_or_none()
            if target is None:
                raise NotFound("Message not found")

            unread_ids = (await session.execute(
                select(ChatMessage.id).where(
                    ChatMessage.pair_key == conversation.pair_key,
                    ChatMessage.role == other_role.value,
                    ChatMessage.read_at.is_(None),
                    or_(
                        ChatMessage.created_at < target.created_at,
                        and_(ChatMessage.created_at == target.created_at, ChatMessage.id <= target.id),
                    ),
                )
            )).scalars().all()
            if not unread_ids:
                return conversation.pair_key, []

            await session.execute(
                update(ChatMessage)
                .where(ChatMessage.id.in_(unread_ids), ChatMessage.read_at.is_(None))
                .values(read_at=now)
                .execution_options(synchronize_session=False)
            )
            updated = (await session.execute(
                select(ChatMessage)
                .where(ChatMessage.id.in_(unread_ids))
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
                .execution_options(populate_existing=True)
            )).scalars().unique().all()
            return conversation.pair_key, list(updated)

        pair_key, updated = await run_transaction(db, work, operation="mark read")
        if updated:
            logger.info(f"{principal.id} read {len(updated)} message(s) in {pair_key}")
            members = ConversationService._members(pair_key)
            for message in updated:
                await bus.publish(members, Event(EventType.MESSAGE_READ, message_payload(message), pair_key=pair_key))
        return len(updated)

    @staticmethod
    async def unread_counts(db: AsyncSession, principal: Principal) -> Dict[str, int]:
        """Unread messages addressed to the principal, keyed by counterpart id."""

        async def work(session: AsyncSession) -> Dict[str, int]:
            conversations = await ConversationService._member_conversations(session, principal)
            counts = {ConversationService._peer_of(principal, c): 0 for c in conversations}

            rows = (await session.execute(
                select(Conversation.client_id, Conversation.coach_id, func.count(ChatMessage.id))
                .join(ChatMessage, ChatMessage.conversation_id == Conversation.id)
                .where(
                    or_(Conversation.client_id == principal.id, Conversation.coach_id == principal.id),
                    addressed_to(principal.id),
                    ChatMessage.read_at.is_(None),
                )
                .group_by(Conversation.id, Conversation.client_id, Conversation.coach_id)
            )).all()
            for client_id, coach_id, count in rows:
                peer_id = coach_id if client_id == principal.id else client_id
                counts[peer_id] = count
            return counts

        return await run_transaction(db, work, write=False, operation="unread counts")

    @staticmethod
    async def list_conversations(db: AsyncSession, principal: Principal) -> List[ConversationView]:
        async def work(session: AsyncSession) -> List[ConversationView]:
            conversations = await ConversationService._member_conversations(session, principal)
            unread = dict((await session.execute(
                select(ChatMessage.conversation_id, func.count(ChatMessage.id))
                .join(Conversation, ChatMessage.conversation_id == Conversation.id)
                .where(
                    or_(Conversation.client_id == principal.id, Conversation.coach_id == principal.id),
                    addressed_to(principal.id),
                    ChatMessage.read_at.is_(None),
                )
                .group_by(ChatMessage.conversation_id)
            )).all())
            return [
                ConversationView(
                    id=c.id,
                    pair_key=c.pair_key,
                    client_id=c.client_id,
                    coach_id=c.coach_id,
                    peer_id=ConversationService._peer_of(principal, c),
                    last_message_at=c.last_message_at,
                    unread=unread.get(c.id, 0),
                )
                for c in conversations
            ]

        return await run_transaction(db, work, write=False, operation="list conversations")

    @staticmethod
    async def _member_conversations(session: AsyncSession, principal: Principal) -> List[Conversation]:
        result = await session.execute(
            select(Conversation)
            .where(or_(Conversation.client_id == principal.id, Conversation.coach_id == principal.id))
            .order_by(
                Conversation.last_message_at.is_(None),
                Conversation.last_message_at.desc(),
                Conversation.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    @staticmethod
    def _peer_of(principal: Principal, conversation: Conversation) -> str:
        return conversation.coach_id if conversation.client_id == principal.id else conversation.client_id

    @staticmethod
    def _members(pair_key: str) -> List[str]:
        return pair_key.split(":", 1)
