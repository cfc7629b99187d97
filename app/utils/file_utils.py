"""
Blob storage for chat attachments.

Blobs are addressed by an opaque storage key; metadata and access control
live in the chat_attachments table. The local implementation writes one
file per key under ATTACHMENT_STORAGE_DIR.
"""

import os
import re
from pathlib import Path
from typing import Optional

from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.logger import get_logger

logger = get_logger("blob_store")

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")


def sanitize_file_name(name: Optional[str]) -> str:
    """Keep a display-safe base name; never used as a storage path."""
    base = os.path.basename(name or "").strip()
    base = _UNSAFE_NAME_CHARS.sub("_", base)[:255]
    return base or "attachment"


class LocalBlobStore:
    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.ATTACHMENT_STORAGE_DIR)

    def _path(self, storage_key: str) -> Path:
        if not _KEY_PATTERN.match(storage_key):
            raise ValueError(f"Invalid storage key: {storage_key!r}")
        return self.root / storage_key[:2] / storage_key

    def _write(self, storage_key: str, data: bytes) -> None:
        path = self._path(storage_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    def _read(self, storage_key: str) -> bytes:
        with open(self._path(storage_key), "rb") as f:
            return f.read()

    def _delete(self, storage_key: str) -> None:
        path = self._path(storage_key)
        if path.exists():
            path.unlink()

    async def put(self, storage_key: str, data: bytes) -> None:
        await run_in_threadpool(self._write, storage_key, data)
        logger.debug(f"Stored blob {storage_key} ({len(data)} bytes)")

    async def get(self, storage_key: str) -> bytes:
        return await run_in_threadpool(self._read, storage_key)

    async def delete(self, storage_key: str) -> None:
        await run_in_threadpool(self._delete, storage_key)


blob_store = LocalBlobStore()


def get_blob_store() -> LocalBlobStore:
    return blob_store
