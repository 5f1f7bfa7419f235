"""Core data models for the messaging core."""

from .conversation import (
    ConversationRef,
    DirectConversationRef,
    SubmissionThreadRef,
    TeamChatRef,
)
from .messages import (
    AttachmentKind,
    AttachmentMeta,
    DirectMessage,
    Message,
    MessageAttachment,
    OutgoingAttachment,
    TeamMessage,
    order_key,
)
from .preview import MessagePreviewRef, PreviewResult
from .realtime import ChangeEvent, EventType, PriorityAlert

__all__ = [
    # Messages
    "AttachmentKind",
    "AttachmentMeta",
    "DirectMessage",
    "Message",
    "MessageAttachment",
    "OutgoingAttachment",
    "TeamMessage",
    "order_key",
    # Conversations
    "ConversationRef",
    "DirectConversationRef",
    "SubmissionThreadRef",
    "TeamChatRef",
    # Realtime
    "ChangeEvent",
    "EventType",
    "PriorityAlert",
    # Preview
    "MessagePreviewRef",
    "PreviewResult",
]
