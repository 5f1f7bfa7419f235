"""Realtime change-feed data models."""

from dataclasses import dataclass
from enum import Enum

from .messages import Message


class EventType(str, Enum):
    """Row-level change kinds delivered by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A normalized change-feed event for one message row."""

    event_type: EventType
    new: Message | None = None
    old: Message | None = None
    row_id: str | None = None  # set when `old` only carried the primary key

    @property
    def message_id(self) -> str | None:
        """Id of the affected row, taken from whichever side is present."""
        if self.new is not None:
            return self.new.id
        if self.old is not None:
            return self.old.id
        return self.row_id


@dataclass
class PriorityAlert:
    """A submission flagged as high priority."""

    submission_id: str
    team_id: str
    store: str | None = None
    created_by: str | None = None
    priority: int | None = None
