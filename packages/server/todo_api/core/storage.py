"""
Object storage for todo attachments.

Buckets are directories under ``settings.storage_dir``. Objects are written once
under a client-chosen path and served publicly; nothing here deletes them.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from fastapi import HTTPException
from starlette.concurrency import run_in_threadpool

from todo_api.core.config import get_settings

log = structlog.get_logger()
settings = get_settings()

PUBLIC_BUCKETS = {"todo-images"}


def _bucket_root(bucket: str) -> Path:
    if bucket not in PUBLIC_BUCKETS:
        raise HTTPException(status_code=404, detail="Bucket not found")
    return Path(settings.storage_dir).resolve() / bucket


def resolve_object_path(bucket: str, object_path: str) -> Path:
    """Map an object path onto the bucket directory, rejecting traversal."""
    root = _bucket_root(bucket)
    parts = [p for p in object_path.split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise HTTPException(status_code=400, detail="Invalid object path")
    target = root.joinpath(*parts).resolve()
    if not target.is_relative_to(root):
        raise HTTPException(status_code=400, detail="Invalid object path")
    return target


def put_object(bucket: str, object_path: str, data: bytes) -> Path:
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="Upload too large")

    target = resolve_object_path(bucket, object_path)
    if target.exists():
        raise HTTPException(status_code=409, detail="Object already exists")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    log.info("storage.object_stored", bucket=bucket, path=object_path, size=len(data))
    return target


async def store_object(bucket: str, object_path: str, data: bytes) -> Path:
    """Write an object off the event loop."""
    return await run_in_threadpool(put_object, bucket, object_path, data)


def public_url(bucket: str, object_path: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/storage/v1/object/public/{bucket}/{object_path.lstrip('/')}"
