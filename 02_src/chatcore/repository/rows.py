"""Mapping between backend rows and Message models."""

from datetime import datetime, timezone

from ..backend import DIRECT_MESSAGES, SUBMISSION_MESSAGES
from ..backend.base import Row
from ..models import DirectMessage, Message, MessageAttachment, TeamMessage


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a wire timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _attachment(ref: str | None, kind: str | None) -> MessageAttachment | None:
    if not ref:
        return None
    return MessageAttachment(storage_ref=ref, kind=kind)


def row_to_team_message(row: Row) -> TeamMessage:
    """submission_messages row -> TeamMessage."""
    return TeamMessage(
        id=row["id"],
        team_id=row["team_id"],
        sender_id=row["sender_id"],
        body=row.get("body") or "",
        created_at=parse_timestamp(row.get("created_at")) or datetime.now(timezone.utc),
        internal=bool(row.get("is_internal")),
        submission_id=row.get("submission_id"),
        attachment=_attachment(row.get("attachment_path"), row.get("attachment_type")),
        is_revised=bool(row.get("is_revised")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def row_to_direct_message(row: Row) -> DirectMessage:
    """direct_messages row -> DirectMessage."""
    return DirectMessage(
        id=row["id"],
        team_id=row["team_id"],
        sender_id=row["sender_id"],
        recipient_id=row["recipient_id"],
        body=row.get("body") or "",
        created_at=parse_timestamp(row.get("created_at")) or datetime.now(timezone.utc),
        attachment=_attachment(row.get("attachment_url"), row.get("attachment_type")),
    )


def row_to_message(table: str, row: Row) -> Message:
    """Convert a row of either message table."""
    if table == SUBMISSION_MESSAGES:
        return row_to_team_message(row)
    if table == DIRECT_MESSAGES:
        return row_to_direct_message(row)
    raise ValueError(f"Not a message table: {table}")


def table_for(message: Message) -> str:
    """Backend table storing this kind of message."""
    return DIRECT_MESSAGES if isinstance(message, DirectMessage) else SUBMISSION_MESSAGES


def message_to_row(message: Message) -> Row:
    """Insert row for a message. created_at is left to the server."""
    attachment = message.attachment
    if isinstance(message, DirectMessage):
        return {
            "id": message.id,
            "team_id": message.team_id,
            "sender_id": message.sender_id,
            "recipient_id": message.recipient_id,
            "body": message.body,
            "attachment_url": attachment.storage_ref if attachment else None,
            "attachment_type": attachment.kind if attachment else None,
        }
    return {
        "id": message.id,
        "team_id": message.team_id,
        "submission_id": message.submission_id,
        "sender_id": message.sender_id,
        "body": message.body,
        "is_internal": message.internal,
        "attachment_path": attachment.storage_ref if attachment else None,
        "attachment_type": attachment.kind if attachment else None,
        "is_revised": message.is_revised,
    }
