"""
Attachment storage endpoints.

- PUT /api/v1/storage/{bucket}/{path}: upload raw bytes under a client-chosen path
- GET /storage/v1/object/public/{bucket}/{path}: public download
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse

from todo_api.core.auth import AuthenticatedUser, require_user
from todo_api.core.storage import public_url, resolve_object_path, store_object

router = APIRouter()


@router.put("/{bucket}/{object_path:path}", status_code=201)
async def upload_object(
    bucket: str,
    object_path: str,
    request: Request,
    auth: AuthenticatedUser = Depends(require_user),
):
    """Store the request body. Existing objects are never overwritten (409)."""
    data = await request.body()
    await store_object(bucket, object_path, data)
    return {"key": f"{bucket}/{object_path}", "public_url": public_url(bucket, object_path)}


# Public downloads, no session required.
public_router = APIRouter()


@public_router.get("/object/public/{bucket}/{object_path:path}")
async def get_public_object(bucket: str, object_path: str):
    target = resolve_object_path(bucket, object_path)
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Object not found")
    return FileResponse(target)
