"""Message repository module."""

from .messages import (
    IMessageRepository,
    MessageRepository,
    backend_errors,
    history_query,
    translate_backend_error,
)
from .rows import message_to_row, parse_timestamp, row_to_message, table_for

__all__ = [
    "IMessageRepository",
    "MessageRepository",
    "backend_errors",
    "history_query",
    "message_to_row",
    "parse_timestamp",
    "row_to_message",
    "table_for",
    "translate_backend_error",
]
