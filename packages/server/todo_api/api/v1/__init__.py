"""
API v1 Router
"""

from fastapi import APIRouter
from . import events, storage, todos

router = APIRouter()

router.include_router(todos.router, prefix="/todos", tags=["Todos"])
router.include_router(events.router, prefix="/events", tags=["Events"])
router.include_router(storage.router, prefix="/storage", tags=["Storage"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/todos",
            "/events/stream",
            "/storage/{bucket}/{path}",
        ],
    }
