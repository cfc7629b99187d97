from urllib.parse import quote
from fastapi import UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock
from app.core.config import settings
from app.core.identity import Principal
from app.exceptions.errors import AttachmentRejected
from app.schemas.chat_schemas import UploadAttachmentResponse
from app.services.attachment_service import AttachmentService
from app.utils.file_utils import LocalBlobStore


class AttachmentController:
    """Controller for chat attachment upload and download."""

    @staticmethod
    async def upload(
        principal: Principal,
        db: AsyncSession,
        file: UploadFile,
        clock: StorageClock,
        store: LocalBlobStore,
    ) -> UploadAttachmentResponse:
        # Read one byte past the limit so oversize bodies without Content-Length are still caught
        data = await file.read(settings.MAX_ATTACHMENT_BYTES + 1)
        if len(data) > settings.MAX_ATTACHMENT_BYTES:
            raise AttachmentRejected("too_large", f"Attachment exceeds the {settings.MAX_ATTACHMENT_BYTES} byte limit")

        attachment = await AttachmentService.upload(
            db,
            principal,
            data,
            file.content_type,
            file_name=file.filename,
            clock=clock,
            store=store,
        )
        return UploadAttachmentResponse(
            storage_key=attachment.storage_key,
            file_name=attachment.file_name,
            mime=attachment.mime,
            bytes=attachment.bytes,
        )

    @staticmethod
    async def download(
        principal: Principal,
        db: AsyncSession,
        storage_key: str,
        store: LocalBlobStore,
    ) -> Response:
        attachment, data = await AttachmentService.fetch(db, principal, storage_key, store=store)
        return Response(
            content=data,
            media_type=attachment.mime,
            headers={
                "Content-Disposition": f"inline; filename*=UTF-8''{quote(attachment.file_name)}",
                "Cache-Control": "private, max-age=3600",
            },
        )
