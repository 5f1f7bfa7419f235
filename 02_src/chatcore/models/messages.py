"""Message-related data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Union

AttachmentKind = Literal["image", "pdf", "excel", "word", "powerpoint", "csv", "file"]


@dataclass
class MessageAttachment:
    """Stored attachment reference as persisted on a message row."""

    storage_ref: str  # storage key (preferred) or legacy absolute URL
    kind: str | None = None  # type hint as stored, e.g. "image", "csv"


@dataclass
class AttachmentMeta:
    """A fetchable attachment, derived at read time and never persisted."""

    url: str
    kind: AttachmentKind
    name: str


@dataclass
class TeamMessage:
    """A message in team chat or in a per-submission discussion thread."""

    id: str
    team_id: str
    sender_id: str
    body: str
    created_at: datetime
    internal: bool = True
    submission_id: str | None = None
    attachment: MessageAttachment | None = None
    is_revised: bool = False
    updated_at: datetime | None = None
    attachment_meta: AttachmentMeta | None = None
    provisional: bool = False

    @property
    def is_team_chat(self) -> bool:
        """Visible on the team-chat surface."""
        return self.internal and self.submission_id is None

    @property
    def attachment_unavailable(self) -> bool:
        return self.attachment is not None and self.attachment_meta is None


@dataclass
class DirectMessage:
    """A 1:1 message between two members of the same team."""

    id: str
    team_id: str
    sender_id: str
    recipient_id: str
    body: str
    created_at: datetime
    attachment: MessageAttachment | None = None
    attachment_meta: AttachmentMeta | None = None
    provisional: bool = False

    @property
    def participants(self) -> frozenset[str]:
        """Unordered participant pair."""
        return frozenset({self.sender_id, self.recipient_id})

    def involves(self, viewer_id: str, peer_id: str) -> bool:
        """True when the message is between exactly these two users."""
        return (self.sender_id == viewer_id and self.recipient_id == peer_id) or (
            self.sender_id == peer_id and self.recipient_id == viewer_id
        )

    @property
    def attachment_unavailable(self) -> bool:
        return self.attachment is not None and self.attachment_meta is None


Message = Union[TeamMessage, DirectMessage]


def order_key(message: Message) -> tuple[datetime, str]:
    """Presentation order: ascending created_at, tiebreak by id."""
    return (message.created_at, message.id)


@dataclass
class OutgoingAttachment:
    """Local bytes picked by the user, not yet uploaded."""

    file_name: str
    data: bytes
    content_type: str = "application/octet-stream"
    kind: str | None = None
