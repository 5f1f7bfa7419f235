"""Ordered, deduplicated message list of one conversation."""

from typing import Callable

from ..models import ConversationRef, Message, order_key

ViewListener = Callable[["ConversationView"], None]


class ConversationView:
    """Messages keyed by id, presented ascending by (created_at, id)."""

    def __init__(self, ref: ConversationRef):
        self.ref = ref
        self.live = False
        self.closed = False
        self.error: str | None = None
        self._messages: dict[str, Message] = {}
        self._deleted: set[str] = set()
        self._listeners: list[ViewListener] = []

    @property
    def messages(self) -> list[Message]:
        """Ordered snapshot of the conversation."""
        return sorted(self._messages.values(), key=order_key)

    def get(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def add_listener(self, listener: ViewListener) -> None:
        """Call `listener` after every change to the list."""
        self._listeners.append(listener)

    def insert(self, message: Message) -> bool:
        """Add a message unless its id is present or was deleted."""
        if message.id in self._messages or message.id in self._deleted:
            return False
        self._messages[message.id] = message
        self._changed()
        return True

    def replace(self, message: Message) -> bool:
        """Replace the message with the same id; unknown ids are dropped."""
        if message.id not in self._messages:
            return False
        self._messages[message.id] = message
        self._changed()
        return True

    def remove(self, message_id: str, *, deleted: bool = True) -> Message | None:
        """Remove by id. A deleted id is never re-inserted."""
        if deleted:
            self._deleted.add(message_id)
        removed = self._messages.pop(message_id, None)
        if removed is not None:
            self._changed()
        return removed

    def merge(self, messages: list[Message]) -> None:
        """Insert every message not already present."""
        changed = False
        for message in messages:
            if message.id not in self._messages and message.id not in self._deleted:
                self._messages[message.id] = message
                changed = True
        if changed:
            self._changed()

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)
