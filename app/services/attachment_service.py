from typing import Optional, Tuple

import cuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock, storage_clock
from app.core.config import settings
from app.core.identity import Principal
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.exceptions.errors import AttachmentRejected, NotFound
from app.models import ChatAttachment, ChatMessage, Conversation
from app.policies import row_policies as policy
from app.utils.file_utils import LocalBlobStore, blob_store, sanitize_file_name

logger = get_logger("attachment_service")


def normalize_mime(mime: Optional[str]) -> str:
    return (mime or "").split(";", 1)[0].strip().lower()


def validate_attachment(mime: str, size: int) -> None:
    if size <= 0:
        raise AttachmentRejected("empty", "Attachment is empty")
    if size > settings.MAX_ATTACHMENT_BYTES:
        raise AttachmentRejected(
            "too_large",
            f"Attachment exceeds the {settings.MAX_ATTACHMENT_BYTES} byte limit",
        )
    if mime not in settings.ATTACHMENT_MIME_ALLOWLIST:
        raise AttachmentRejected("mime_not_allowed", f"File type {mime or 'unknown'} is not allowed")


class AttachmentService:
    """Uploads and guarded downloads of chat attachments."""

    @staticmethod
    async def upload(
        db: AsyncSession,
        principal: Principal,
        data: bytes,
        mime: str,
        file_name: Optional[str] = None,
        clock: StorageClock = storage_clock,
        store: LocalBlobStore = blob_store,
    ) -> ChatAttachment:
        mime = normalize_mime(mime)
        validate_attachment(mime, len(data))

        storage_key = cuid.cuid()
        await store.put(storage_key, data)

        async def work(session: AsyncSession) -> ChatAttachment:
            attachment = ChatAttachment(
                storage_key=storage_key,
                owner_id=principal.id,
                file_name=sanitize_file_name(file_name),
                mime=mime,
                bytes=len(data),
                created_at=await clock.now(session),
            )
            session.add(attachment)
            await session.flush()
            return attachment

        try:
            attachment = await run_transaction(db, work, operation="store attachment metadata")
        except Exception:
            # No metadata row means nobody can reference the blob; drop it
            await store.delete(storage_key)
            raise

        logger.info(f"Attachment {storage_key} uploaded by {principal.id} ({mime}, {len(data)} bytes)")
        return attachment

    @staticmethod
    async def fetch(
        db: AsyncSession,
        principal: Principal,
        storage_key: str,
        store: LocalBlobStore = blob_store,
    ) -> Tuple[ChatAttachment, bytes]:
        async def work(session: AsyncSession) -> ChatAttachment:
            attachment = await session.get(ChatAttachment, storage_key)
            if attachment is None:
                raise NotFound("Attachment not found")
            if attachment.owner_id == principal.id or principal.is_admin:
                return attachment

            conversation = (await session.execute(
                select(Conversation)
                .join(ChatMessage, ChatMessage.conversation_id == Conversation.id)
                .where(ChatMessage.attachment_key == storage_key)
            )).scalar_one_or_none()
            if conversation is None:
                raise NotFound("Attachment not found")
            policy.require(policy.can_read_conversation(principal, conversation))
            return attachment

        attachment = await run_transaction(db, work, write=False, operation="fetch attachment")
        try:
            data = await store.get(storage_key)
        except FileNotFoundError:
            logger.error(f"Blob missing for attachment {storage_key}")
            raise NotFound("Attachment content not found")
        return attachment, data
