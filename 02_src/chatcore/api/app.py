"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import preview, storage


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or Application()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        await application.start()
        yield
        await application.stop()

    fastapi_app = FastAPI(
        title="Field Chat API",
        description="Document previews and signed storage downloads for field chat",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Preview requests come from mobile clients and embedded web views
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
        max_age=86400,
    )

    fastapi_app.state.application = application
    fastapi_app.include_router(preview.create_preview_router(application))
    fastapi_app.include_router(storage.create_storage_router(application))

    return fastapi_app
