"""
Attachment uploads to the todo API's public bucket.

Object paths are random and never reused; the server refuses overwrites.
"""

from __future__ import annotations

import mimetypes
import secrets
from pathlib import PurePosixPath

import httpx
import structlog

from .errors import UploadError
from .gateway import error_detail
from .session import SessionContext

log = structlog.get_logger()

IMAGE_BUCKET = "todo-images"
UPLOAD_PATH = "/api/v1/storage"
PUBLIC_PATH = "/storage/v1/object/public"


def random_object_path(file_name: str, folder: str = IMAGE_BUCKET) -> str:
    """``<folder>/<random token>.<ext>``, keeping the original extension if any."""
    suffix = PurePosixPath(file_name).suffix.lower()
    return f"{folder}/{secrets.token_urlsafe(16)}{suffix}"


class AttachmentUploader:
    def __init__(
        self,
        http: httpx.AsyncClient,
        session_context: SessionContext,
        bucket: str = IMAGE_BUCKET,
    ):
        self._http = http
        self._session_context = session_context
        self._bucket = bucket

    def public_url(self, object_path: str) -> str:
        base = str(self._http.base_url).rstrip("/")
        return f"{base}{PUBLIC_PATH}/{self._bucket}/{object_path}"

    async def upload(
        self,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        """Upload ``data`` under a fresh random path and return its public URL."""
        session = self._session_context.require()
        if not data:
            raise UploadError("File is empty")

        object_path = random_object_path(file_name)
        content_type = (
            content_type
            or mimetypes.guess_type(file_name)[0]
            or "application/octet-stream"
        )
        try:
            response = await self._http.put(
                f"{UPLOAD_PATH}/{self._bucket}/{object_path}",
                content=data,
                headers={**session.auth_headers, "Content-Type": content_type},
            )
        except httpx.HTTPError as exc:
            log.warning("upload.request_failed", path=object_path, error=str(exc))
            raise UploadError(f"Network error: {exc}") from exc

        if response.is_error:
            log.warning("upload.rejected", path=object_path, status=response.status_code)
            raise UploadError(error_detail(response), status_code=response.status_code)

        url = self.public_url(object_path)
        log.info("upload.stored", path=object_path, size=len(data))
        return url
