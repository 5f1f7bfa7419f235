"""Conversation channels over the change feed."""

from typing import Awaitable, Callable

from ..backend import DIRECT_MESSAGES, SUBMISSION_MESSAGES, IChangeFeed
from ..logging_config import get_logger
from ..models import (
    ChangeEvent,
    ConversationRef,
    DirectConversationRef,
    DirectMessage,
    EventType,
    Message,
    SubmissionThreadRef,
    TeamChatRef,
    TeamMessage,
)
from ..repository import row_to_message
from .subscription import CancellableSubscription, SubscriptionErrorHandler, SubscriptionRegistry

logger = get_logger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]


def normalize_change(payload: dict) -> ChangeEvent | None:
    """Turn a raw change-feed payload into a ChangeEvent.

    Returns None for payloads that are not about a message table or carry an
    unknown event type.
    """
    table = payload.get("table")
    if table not in (SUBMISSION_MESSAGES, DIRECT_MESSAGES):
        return None
    try:
        event_type = EventType(payload.get("eventType"))
    except ValueError:
        logger.warning("Unknown change event type: %s", payload.get("eventType"))
        return None

    new_row = payload.get("new") or {}
    old_row = payload.get("old") or {}
    new = _to_message(table, new_row)
    old = _to_message(table, old_row)

    if event_type == EventType.DELETE:
        if old is None and not old_row.get("id"):
            return None
        return ChangeEvent(event_type=event_type, old=old, row_id=old_row.get("id"))
    if new is None:
        return None
    return ChangeEvent(event_type=event_type, new=new, old=old)


def _to_message(table: str, row: dict) -> Message | None:
    if not row:
        return None
    try:
        return row_to_message(table, row)
    except KeyError:
        # Partial row, e.g. a DELETE carrying only the primary key
        return None
    except (ValueError, TypeError) as e:
        logger.warning(
            "Discarding malformed %s row",
            table,
            extra={"context": {"row_id": row.get("id"), "error": str(e)}},
        )
        return None


def server_filter(ref: ConversationRef) -> str:
    """Equality filter the change feed applies server-side."""
    if isinstance(ref, SubmissionThreadRef):
        return f"submission_id=eq.{ref.submission_id}"
    return f"team_id=eq.{ref.team_id}"


def table_for_ref(ref: ConversationRef) -> str:
    return DIRECT_MESSAGES if isinstance(ref, DirectConversationRef) else SUBMISSION_MESSAGES


def belongs_to(ref: ConversationRef, message: Message) -> bool:
    """Client-side visibility predicate of a conversation."""
    if isinstance(ref, DirectConversationRef):
        return (
            isinstance(message, DirectMessage)
            and message.team_id == ref.team_id
            and message.involves(ref.viewer_id, ref.peer_id)
        )
    if isinstance(ref, SubmissionThreadRef):
        return isinstance(message, TeamMessage) and message.submission_id == ref.submission_id
    if isinstance(ref, TeamChatRef):
        return (
            isinstance(message, TeamMessage)
            and message.team_id == ref.team_id
            and message.is_team_chat
        )
    return False


def is_visible(ref: ConversationRef, event: ChangeEvent) -> bool:
    """Whether an event concerns the conversation."""
    if event.event_type == EventType.DELETE:
        # A key-only DELETE cannot be checked; removing an unknown id is a no-op
        return event.old is None or belongs_to(ref, event.old)
    return event.new is not None and belongs_to(ref, event.new)


class RealtimeChannelManager:
    """One subscription per conversation channel."""

    def __init__(self, feed: IChangeFeed, registry: SubscriptionRegistry | None = None):
        self._feed = feed
        self._registry = registry or SubscriptionRegistry()

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    def subscribe(
        self,
        ref: ConversationRef,
        on_event: EventHandler,
        on_error: SubscriptionErrorHandler | None = None,
    ) -> CancellableSubscription:
        """Open the conversation's channel, replacing an existing one."""

        async def deliver(payload: dict) -> None:
            event = normalize_change(payload)
            if event is None:
                return
            if not is_visible(ref, event):
                logger.debug(
                    "Discarded %s for %s on %s",
                    event.event_type.value,
                    event.message_id,
                    ref.channel_name,
                )
                return
            await on_event(event)

        subscription = CancellableSubscription(
            self._feed,
            ref.channel_name,
            table_for_ref(ref),
            deliver,
            filter=server_filter(ref),
            on_error=on_error,
        )
        self._registry.register(ref.channel_name, subscription)
        return subscription.open()

    def release(self, subscription: CancellableSubscription) -> None:
        """Close a subscription handed out by subscribe()."""
        self._registry.release(subscription)

    def unsubscribe(self, ref: ConversationRef) -> bool:
        """Close the conversation's channel, if open."""
        return self._registry.close(ref.channel_name)

    def close_all(self) -> None:
        """Close every conversation channel."""
        self._registry.close_all()
