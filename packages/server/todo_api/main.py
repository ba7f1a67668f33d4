"""
Todo API Server

Entry point for the FastAPI application.
"""

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from todo_api.core.config import get_settings
from todo_api.core.database import init_db
from todo_api.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from todo_api.core.redis import close_redis
from todo_api.api.v1 import router as api_v1_router
from todo_api.api.v1.auth import router as auth_router
from todo_api.api.v1.storage import public_router as public_storage_router

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Todos",
        description="Personal task records with a live change feed.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (order matters: outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    )

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(api_v1_router, prefix="/api/v1")
    app.include_router(public_storage_router, prefix="/storage/v1", tags=["Storage"])

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        await init_db()
        log.info("Todo API starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Todo API shutting down")
        await close_redis()

    return app


app = create_app()


def run() -> None:
    """CLI entry point: serve the API with uvicorn."""
    uvicorn.run(
        "todo_api.main:app",
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
