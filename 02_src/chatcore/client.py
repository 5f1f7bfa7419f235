"""Client-side session: conversations, priority alerts and previews."""

from typing import Protocol

import httpx

from .attachments import AttachmentResolver
from .backend import IBackend
from .config import ChatSettings
from .conversation import ConversationController, ConversationView
from .logging_config import get_logger
from .models import ConversationRef, Message, PriorityAlert, PreviewResult
from .preview import AttachmentPreviewer, DocumentPreviewBuilder, RemoteDocumentPreviewClient
from .realtime import PriorityAlertMonitor, RealtimeChannelManager
from .realtime.priority import AlertHandler
from .repository import MessageRepository
from .retry import RetryPolicy

logger = get_logger(__name__)


async def _ignore_alert(alert: PriorityAlert) -> None:
    logger.info("Priority alert without a notifier: %s", alert.submission_id)


class IChatClient(Protocol):
    """Messaging surface of one signed-in user."""

    async def open_conversation(self, ref: ConversationRef) -> ConversationView:
        """Open (or reopen) a conversation and return its live view."""
        ...

    def close_conversation(self, ref: ConversationRef) -> None:
        """Close a conversation's view and subscription."""
        ...

    async def preview(self, message: Message) -> PreviewResult:
        """Preview a message's attachment."""
        ...

    async def close(self) -> None:
        """Release every subscription and HTTP client."""
        ...


class ChatClient:
    """Wires the client-side components for one backend session."""

    def __init__(
        self,
        backend: IBackend,
        settings: ChatSettings | None = None,
        *,
        notify: AlertHandler | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._settings = settings or ChatSettings()
        self._backend = backend

        # 1. Attachment resolution and message access
        self.resolver = AttachmentResolver(backend, self._settings)
        self.repository = MessageRepository(backend, self.resolver)

        # 2. Realtime: conversation channels and the shell's priority channels
        self.channels = RealtimeChannelManager(backend.feed)
        self.priority = PriorityAlertMonitor(backend.feed, notify or _ignore_alert)

        # 3. Previews
        self._local_preview = DocumentPreviewBuilder(self._settings, client=http_client)
        self._remote_preview = RemoteDocumentPreviewClient(
            self._settings.backend_url,
            backend.get_access_token,
            policy=retry_policy,
            client=http_client,
            settings=self._settings,
        )
        self.previewer = AttachmentPreviewer(self._local_preview, self._remote_preview)

        self._controllers: dict[str, ConversationController] = {}

    def controller(self, ref: ConversationRef) -> ConversationController | None:
        return self._controllers.get(ref.channel_name)

    async def open_conversation(self, ref: ConversationRef) -> ConversationView:
        """Open a conversation, closing any earlier controller for it."""
        self.close_conversation(ref)
        controller = ConversationController(self.repository, self.channels, ref)
        self._controllers[ref.channel_name] = controller
        try:
            return await controller.open()
        except Exception:
            self._controllers.pop(ref.channel_name, None)
            controller.close()
            raise

    def close_conversation(self, ref: ConversationRef) -> None:
        """Close a conversation. Unknown conversations are ignored."""
        controller = self._controllers.pop(ref.channel_name, None)
        if controller is not None:
            controller.close()

    async def preview(self, message: Message) -> PreviewResult:
        """Preview a message's attachment."""
        return await self.previewer.preview_message(message)

    async def close(self) -> None:
        """Release every subscription and HTTP client."""
        for controller in list(self._controllers.values()):
            controller.close()
        self._controllers.clear()
        self.channels.close_all()
        self.priority.close_all()
        await self._local_preview.close()
        await self._remote_preview.close()
        logger.info("Chat client closed")
