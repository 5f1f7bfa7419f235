"""Field chat core: realtime team and direct messaging with attachment previews."""

from .app import Application, IApplication
from .attachments import AttachmentResolver, IAttachmentResolver
from .backend import ChangeFeed, IBackend, LocalBackend
from .client import ChatClient, IChatClient
from .config import ChatSettings, load_settings
from .conversation import ConversationController, ConversationView
from .errors import (
    ChatError,
    NetworkFailure,
    NotAuthenticated,
    PreviewUnavailable,
    ResourceTooLarge,
    RetryExhausted,
    Unauthorized,
    ValidationFailure,
)
from .models import (
    AttachmentMeta,
    ChangeEvent,
    DirectConversationRef,
    DirectMessage,
    EventType,
    Message,
    MessageAttachment,
    OutgoingAttachment,
    PreviewResult,
    PriorityAlert,
    SubmissionThreadRef,
    TeamChatRef,
    TeamMessage,
)
from .preview import (
    AttachmentPreviewer,
    DocumentPreviewBuilder,
    PreviewRenderService,
    RemoteDocumentPreviewClient,
)
from .realtime import (
    CancellableSubscription,
    PriorityAlertMonitor,
    RealtimeChannelManager,
    SubscriptionRegistry,
)
from .repository import IMessageRepository, MessageRepository
from .retry import RetryPolicy

__all__ = [
    # Application
    "Application",
    "IApplication",
    "ChatClient",
    "IChatClient",
    "ChatSettings",
    "load_settings",
    # Models
    "AttachmentMeta",
    "ChangeEvent",
    "DirectConversationRef",
    "DirectMessage",
    "EventType",
    "Message",
    "MessageAttachment",
    "OutgoingAttachment",
    "PreviewResult",
    "PriorityAlert",
    "SubmissionThreadRef",
    "TeamChatRef",
    "TeamMessage",
    # Errors
    "ChatError",
    "NetworkFailure",
    "NotAuthenticated",
    "PreviewUnavailable",
    "ResourceTooLarge",
    "RetryExhausted",
    "Unauthorized",
    "ValidationFailure",
    # Components
    "IBackend",
    "LocalBackend",
    "ChangeFeed",
    "IAttachmentResolver",
    "AttachmentResolver",
    "IMessageRepository",
    "MessageRepository",
    "CancellableSubscription",
    "SubscriptionRegistry",
    "RealtimeChannelManager",
    "PriorityAlertMonitor",
    "ConversationController",
    "ConversationView",
    "DocumentPreviewBuilder",
    "RemoteDocumentPreviewClient",
    "AttachmentPreviewer",
    "PreviewRenderService",
    "RetryPolicy",
]
