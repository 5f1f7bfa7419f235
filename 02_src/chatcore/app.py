"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .backend import LocalBackend
from .client import ChatClient
from .config import ChatSettings, load_settings, resolve_db_path
from .logging_config import get_logger
from .preview import PreviewRenderService
from .realtime.priority import AlertHandler

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    @property
    def preview_service(self) -> PreviewRenderService:
        """Server-side preview renderer."""
        ...

    @property
    def backend(self) -> LocalBackend:
        """Backend data service."""
        ...


class Application:
    """Lifecycle root: the backend, the preview service and every client session."""

    def __init__(self, db_path: str | None = None, settings: ChatSettings | None = None):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or load_settings()

        # Components (will be initialized in start())
        self._backend: LocalBackend | None = None
        self._preview_service: PreviewRenderService | None = None
        self._clients: list[ChatClient] = []

    @property
    def settings(self) -> ChatSettings:
        return self._settings

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Backend (no dependencies)
        self._backend = LocalBackend(self._db_path, base_url=self._settings.backend_url)
        await self._backend.init()
        logger.info("Backend initialized")

        # 2. Preview service (service-role backend access)
        self._preview_service = PreviewRenderService(self._backend.admin(), self._settings)
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for client in self._clients:
            await client.close()
        self._clients.clear()
        if self._backend:
            await self._backend.close()
            logger.info("Backend closed")

    async def connect(self, user_id: str, notify: AlertHandler | None = None) -> ChatClient:
        """Sign a user in, open their teams' priority channels and return the session."""
        session = self.backend.client()
        session.sign_in(user_id)
        client = ChatClient(session, self._settings, notify=notify)
        client.priority.watch_teams(await self.backend.team_ids_for(user_id))
        self._clients.append(client)
        return client

    async def disconnect(self, client: ChatClient) -> None:
        """Close one client session."""
        if client in self._clients:
            self._clients.remove(client)
        await client.close()

    @property
    def backend(self) -> LocalBackend:
        """Get backend instance."""
        if not self._backend:
            raise RuntimeError("Application not started")
        return self._backend

    @property
    def preview_service(self) -> PreviewRenderService:
        """Get preview service instance."""
        if not self._preview_service:
            raise RuntimeError("Application not started")
        return self._preview_service
