"""Message repository over both message tables."""

import asyncio
import re
from contextlib import contextmanager
from typing import Iterator, Protocol

from ..attachments import IAttachmentResolver, guess_kind, sanitize_file_name
from ..attachments.kinds import MIME_BY_KIND
from ..backend import (
    DIRECT_MESSAGES,
    SUBMISSION_MESSAGES,
    AnyOf,
    BackendError,
    BackendUnavailable,
    Eq,
    Filter,
    IBackend,
    IsNull,
)
from ..backend.base import Row
from ..config import CHAT_BUCKET
from ..errors import (
    ChatError,
    NetworkFailure,
    NotAuthenticated,
    Unauthorized,
    ValidationFailure,
)
from ..logging_config import get_logger
from ..models import (
    ConversationRef,
    DirectConversationRef,
    DirectMessage,
    Message,
    MessageAttachment,
    OutgoingAttachment,
    SubmissionThreadRef,
    TeamChatRef,
    TeamMessage,
    order_key,
)
from .rows import message_to_row, row_to_message, table_for

logger = get_logger(__name__)

# Device-local references that must be uploaded before they can be persisted
_TRANSIENT_SCHEMES = re.compile(r"^(file|content|blob|data|ph|assets-library):", re.IGNORECASE)


def translate_backend_error(error: BackendError) -> ChatError:
    """Map a backend error onto the messaging error taxonomy."""
    if isinstance(error, BackendUnavailable):
        return NetworkFailure(error.message)
    if error.status == 401:
        return NotAuthenticated(error.message)
    if error.status == 403 or error.code == "42501":
        return Unauthorized(error.message)
    if error.status is None or error.status >= 500:
        return NetworkFailure(error.message)
    return ValidationFailure(error.message)


@contextmanager
def backend_errors() -> Iterator[None]:
    """Re-raise backend errors as ChatErrors."""
    try:
        yield
    except BackendError as e:
        raise translate_backend_error(e) from e


def history_query(ref: ConversationRef) -> tuple[str, list[Filter]]:
    """Table and filters selecting one conversation's messages."""
    if isinstance(ref, DirectConversationRef):
        pair = AnyOf(
            groups=(
                (Eq("sender_id", ref.viewer_id), Eq("recipient_id", ref.peer_id)),
                (Eq("sender_id", ref.peer_id), Eq("recipient_id", ref.viewer_id)),
            )
        )
        return DIRECT_MESSAGES, [Eq("team_id", ref.team_id), pair]
    if isinstance(ref, SubmissionThreadRef):
        return SUBMISSION_MESSAGES, [Eq("submission_id", ref.submission_id)]
    if isinstance(ref, TeamChatRef):
        return SUBMISSION_MESSAGES, [
            Eq("team_id", ref.team_id),
            Eq("is_internal", True),
            IsNull("submission_id"),
        ]
    raise TypeError(f"Unknown conversation reference: {ref!r}")


class IMessageRepository(Protocol):
    """Query/insert façade over team and direct messages."""

    async def current_user_id(self) -> str:
        """Signed-in user id."""
        ...

    async def fetch_history(self, ref: ConversationRef, limit: int | None = None) -> list[Message]:
        """Latest messages of a conversation, ascending, attachments hydrated."""
        ...

    async def persist(self, message: Message) -> Message:
        """Insert a message and return the authoritative record."""
        ...

    async def upload_attachment(
        self, team_id: str, message_id: str, outgoing: OutgoingAttachment
    ) -> MessageAttachment:
        """Upload local bytes and return a durable attachment reference."""
        ...

    async def update_body(self, message: Message, body: str) -> Message:
        """Edit a message body."""
        ...

    async def delete(self, message: Message) -> None:
        """Delete a message."""
        ...

    async def hydrate(self, message: Message) -> Message:
        """Resolve the attachment of one message."""
        ...

    def to_message(self, table: str, row: Row) -> Message:
        """Convert a backend row."""
        ...


class MessageRepository:
    """Translates between Message models and backend rows."""

    def __init__(self, backend: IBackend, resolver: IAttachmentResolver):
        self._backend = backend
        self._resolver = resolver

    async def current_user_id(self) -> str:
        """Signed-in user id, NotAuthenticated otherwise."""
        with backend_errors():
            user_id = await self._backend.get_user_id()
        if not user_id:
            raise NotAuthenticated("Not authenticated")
        return user_id

    async def fetch_history(self, ref: ConversationRef, limit: int | None = None) -> list[Message]:
        """Latest `limit` messages of a conversation in ascending order."""
        table, filters = history_query(ref)
        limit = ref.history_limit if limit is None else limit

        with backend_errors():
            rows = await self._backend.select(table, filters, descending=True, limit=limit)

        messages = sorted((row_to_message(table, row) for row in rows), key=order_key)
        hydrated = await asyncio.gather(*[self._resolver.hydrate(m) for m in messages])
        logger.debug("Fetched %d messages for %s", len(hydrated), ref.channel_name)
        return list(hydrated)

    async def persist(self, message: Message) -> Message:
        """Insert a message with its client id and return the stored record."""
        self._validate(message)
        table = table_for(message)

        with backend_errors():
            row = await self._backend.insert(table, message_to_row(message))

        stored = row_to_message(table, row)
        return await self._resolver.hydrate(stored)

    async def upload_attachment(
        self, team_id: str, message_id: str, outgoing: OutgoingAttachment
    ) -> MessageAttachment:
        """Upload to the chat bucket under the message's folder."""
        if not outgoing.data:
            raise ValidationFailure("Attachment is empty")

        safe_name = sanitize_file_name(outgoing.file_name)
        kind = outgoing.kind or guess_kind(None, safe_name)
        content_type = outgoing.content_type
        if content_type == "application/octet-stream":
            content_type = MIME_BY_KIND.get(kind, content_type)

        key = f"teams/{team_id}/messages/{message_id}/{safe_name}"
        with backend_errors():
            stored_key = await self._backend.upload(CHAT_BUCKET, key, outgoing.data, content_type)
        return MessageAttachment(storage_ref=stored_key, kind=kind)

    async def update_body(self, message: Message, body: str) -> Message:
        """Edit a message body; team messages are marked revised."""
        values: Row = {"body": body}
        if isinstance(message, TeamMessage):
            values["is_revised"] = True
        table = table_for(message)
        with backend_errors():
            row = await self._backend.update(table, message.id, values)
        return await self._resolver.hydrate(row_to_message(table, row))

    async def delete(self, message: Message) -> None:
        """Delete a message."""
        with backend_errors():
            await self._backend.delete(table_for(message), message.id)

    async def hydrate(self, message: Message) -> Message:
        """Resolve the attachment of one message."""
        return await self._resolver.hydrate(message)

    def to_message(self, table: str, row: Row) -> Message:
        """Convert a backend row."""
        return row_to_message(table, row)

    @staticmethod
    def _validate(message: Message) -> None:
        if not message.id:
            raise ValidationFailure("Message id is required")
        if not message.body and message.attachment is None:
            raise ValidationFailure("Message body is empty")
        if isinstance(message, DirectMessage) and not message.recipient_id:
            raise ValidationFailure("Direct message has no recipient")
        if message.attachment and _TRANSIENT_SCHEMES.match(message.attachment.storage_ref):
            raise ValidationFailure(
                "Attachment must be uploaded before sending: "
                f"{message.attachment.storage_ref}"
            )
