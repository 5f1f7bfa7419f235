"""ConversationController: optimistic sends merged with the change feed."""

import asyncio
import dataclasses
import uuid
from datetime import datetime, timezone

from ..attachments import guess_kind
from ..errors import ChatError, ValidationFailure
from ..logging_config import get_logger
from ..models import (
    ChangeEvent,
    ConversationRef,
    DirectConversationRef,
    DirectMessage,
    EventType,
    Message,
    OutgoingAttachment,
    SubmissionThreadRef,
    TeamMessage,
)
from ..realtime import CancellableSubscription, RealtimeChannelManager
from ..repository import IMessageRepository
from .view import ConversationView


def placeholder_body(attachment: OutgoingAttachment) -> str:
    """Body used when an attachment is sent without text."""
    kind = attachment.kind or guess_kind(None, attachment.file_name)
    return "Shared a photo" if kind == "image" else "Shared a file"


class ConversationController:
    """Owns one conversation's view and its realtime subscription."""

    def __init__(
        self,
        repository: IMessageRepository,
        channels: RealtimeChannelManager,
        ref: ConversationRef,
    ):
        self._repository = repository
        self._channels = channels
        self._ref = ref
        self._log = get_logger(__name__, channel=ref.channel_name)
        self._view = ConversationView(ref)
        self._subscription: CancellableSubscription | None = None
        self._viewer_id: str | None = None
        self._closed = False
        self._loading = False
        # Updates to rows the history query has not returned yet
        self._pending_updates: dict[str, Message] = {}

    @property
    def ref(self) -> ConversationRef:
        return self._ref

    @property
    def view(self) -> ConversationView:
        return self._view

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> ConversationView:
        """Subscribe, load bounded history and return the live view.

        The channel opens before the history query so nothing committed in
        between is missed. History is merged by id, then updates that arrived
        for rows not yet in the view are applied on top.
        """
        self._viewer_id = await self._repository.current_user_id()
        if self._closed:
            return self._view
        if isinstance(self._ref, DirectConversationRef) and self._ref.viewer_id != self._viewer_id:
            raise ValidationFailure("Direct conversation does not belong to the signed-in user")

        self._subscription = self._channels.subscribe(
            self._ref, self._handle_event, self._handle_channel_error
        )
        self._view.live = True
        self._loading = True
        try:
            history = await self._repository.fetch_history(self._ref)
        except ChatError as e:
            self._view.error = e.message
            self.close()
            raise
        finally:
            self._loading = False
        if self._closed:
            return self._view

        self._view.merge(history)
        self._apply_pending_updates()
        self._log.info("Opened conversation", extra={"context": {"messages": len(history)}})
        return self._view

    async def send(self, body: str, attachment: OutgoingAttachment | None = None) -> Message:
        """Insert a provisional message, persist it and reconcile by id.

        On failure the provisional entry is removed and the error re-raised.
        """
        if self._closed:
            raise ValidationFailure("Conversation is closed")
        if self._viewer_id is None:
            raise ValidationFailure("Conversation is not open")

        body = (body or "").strip()
        if not body:
            if attachment is None:
                raise ValidationFailure("Message body is empty")
            body = placeholder_body(attachment)

        provisional = self._build(str(uuid.uuid4()), body)
        self._view.insert(provisional)

        try:
            stored_attachment = None
            if attachment is not None:
                stored_attachment = await self._repository.upload_attachment(
                    self._ref.team_id, provisional.id, attachment
                )
            outgoing = dataclasses.replace(
                provisional, attachment=stored_attachment, provisional=False
            )
            stored = await self._repository.persist(outgoing)
        except asyncio.CancelledError:
            self._rollback(provisional.id, None)
            raise
        except Exception as e:
            self._rollback(provisional.id, e)
            raise

        if not self._closed:
            self._view.error = None
            self._view.replace(stored)
        return stored

    async def edit(self, message_id: str, body: str) -> Message:
        """Change the body of one of the viewer's messages."""
        message = self._require(message_id)
        body = (body or "").strip()
        if not body:
            raise ValidationFailure("Message body is empty")
        updated = await self._repository.update_body(message, body)
        if not self._closed:
            self._view.replace(updated)
        return updated

    async def delete(self, message_id: str) -> None:
        """Delete one of the viewer's messages."""
        message = self._require(message_id)
        await self._repository.delete(message)
        if not self._closed:
            self._view.remove(message_id)

    def close(self) -> None:
        """Release the subscription. Later callbacks are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._view.closed = True
        self._view.live = False
        self._pending_updates.clear()
        if self._subscription is not None:
            self._channels.release(self._subscription)
            self._subscription = None
        self._log.debug("Closed conversation")

    async def _handle_event(self, event: ChangeEvent) -> None:
        """Merge one change-feed event into the view."""
        if self._closed:
            return

        if event.event_type == EventType.DELETE:
            if event.message_id:
                self._view.remove(event.message_id)
            return

        incoming = event.new
        if incoming is None:
            return
        if event.event_type == EventType.INSERT and incoming.id in self._view:
            return
        if (
            event.event_type == EventType.UPDATE
            and incoming.id not in self._view
            and not self._loading
        ):
            return

        hydrated = await self._repository.hydrate(incoming)
        if self._closed:
            return
        if event.event_type == EventType.INSERT:
            self._view.insert(hydrated)
        elif hydrated.id in self._view:
            self._view.replace(hydrated)
        elif self._loading:
            self._pending_updates[hydrated.id] = hydrated

    def _apply_pending_updates(self) -> None:
        pending, self._pending_updates = self._pending_updates, {}
        for message in pending.values():
            self._view.replace(message)

    def _handle_channel_error(self, error: Exception) -> None:
        self._log.warning("Live updates stopped: %s", error)
        if not self._closed:
            self._view.live = False
            self._view.error = str(error)

    def _rollback(self, message_id: str, error: Exception | None) -> None:
        if self._closed:
            return
        self._view.remove(message_id, deleted=False)
        if error is not None:
            self._view.error = str(error)
            self._log.warning("Send failed: %s", error)

    def _require(self, message_id: str) -> Message:
        message = self._view.get(message_id)
        if message is None or message.provisional:
            raise ValidationFailure(f"Unknown message: {message_id}")
        return message

    def _build(self, message_id: str, body: str) -> Message:
        now = datetime.now(timezone.utc)
        ref = self._ref
        if isinstance(ref, DirectConversationRef):
            return DirectMessage(
                id=message_id,
                team_id=ref.team_id,
                sender_id=self._viewer_id,
                recipient_id=ref.peer_id,
                body=body,
                created_at=now,
                provisional=True,
            )
        thread = isinstance(ref, SubmissionThreadRef)
        return TeamMessage(
            id=message_id,
            team_id=ref.team_id,
            sender_id=self._viewer_id,
            body=body,
            created_at=now,
            internal=not thread,
            submission_id=ref.submission_id if thread else None,
            provisional=True,
        )
