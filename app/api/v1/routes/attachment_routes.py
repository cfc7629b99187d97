from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.core.clock import StorageClock, get_clock
from app.core.identity import Principal
from app.middlewares.identity_gate import get_principal
from app.utils.file_utils import LocalBlobStore, get_blob_store
from app.api.v1.controllers.attachment_controller import AttachmentController
from app.schemas.chat_schemas import UploadAttachmentResponse

router = APIRouter(prefix="/attachments", tags=["Chat Attachments"])


@router.post(
    "",
    summary="Upload a chat attachment",
    description="Returns a single-use `storage_key` to reference from `POST /messages`.",
    status_code=201,
    response_model=UploadAttachmentResponse
)
async def upload_attachment(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    clock: StorageClock = Depends(get_clock),
    store: LocalBlobStore = Depends(get_blob_store)
):
    return await AttachmentController.upload(principal, db, file, clock, store)


@router.get(
    "/{storage_key}",
    summary="Download a chat attachment"
)
async def download_attachment(
    storage_key: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    store: LocalBlobStore = Depends(get_blob_store)
):
    return await AttachmentController.download(principal, db, storage_key, store)
