# app/middlewares/upload_limit.py

from typing import List
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.exceptions.errors import AttachmentRejected, InvalidRequest
from app.core.logger import get_logger

logger = get_logger("upload_limit_middleware")

# Multipart framing (boundaries, part headers) on top of the file itself
MULTIPART_OVERHEAD = 16 * 1024


class LimitUploadSizeMiddleware(BaseHTTPMiddleware):
    """Rejects oversized uploads from Content-Length before the body is read."""

    def __init__(self, app, max_upload_size: int, paths: List[str] = None):
        super().__init__(app)
        self.max_upload_size = max_upload_size
        self.paths = paths or []

    async def dispatch(self, request: Request, call_next):
        if request.method != "POST" or not any(request.url.path.startswith(p) for p in self.paths):
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                return InvalidRequest("Invalid Content-Length header").to_response()
            logger.debug(f"[LimitUploadSize] Content-Length={size} bytes, Max={self.max_upload_size} bytes")
            if size > self.max_upload_size + MULTIPART_OVERHEAD:
                logger.warning(f"Upload of {size} bytes rejected on {request.url.path}")
                return AttachmentRejected(
                    "too_large",
                    f"Attachment exceeds the {self.max_upload_size} byte limit",
                ).to_response()
        return await call_next(request)
