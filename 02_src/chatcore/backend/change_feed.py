"""In-process change feed for the local backend."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..logging_config import get_logger
from .base import ChangeHandler, ErrorHandler, FeedHandle, Row

logger = get_logger(__name__)


def parse_filter(filter: str | None) -> tuple[str, str] | None:
    """Parse a `column=eq.value` filter. Only equality is supported."""
    if not filter:
        return None
    column, sep, rest = filter.partition("=")
    if not sep or not rest.startswith("eq."):
        raise ValueError(f"Unsupported change-feed filter: {filter}")
    return column.strip(), rest[3:]


def _as_filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


@dataclass
class _Subscriber:
    handle: FeedHandle
    handler: ChangeHandler
    on_error: ErrorHandler | None
    predicate: tuple[str, str] | None

    def matches(self, row: Row) -> bool:
        if self.predicate is None:
            return True
        column, expected = self.predicate
        return column in row and _as_filter_value(row[column]) == expected


class ChangeFeed:
    """Pub/sub of row changes keyed by table name plus an equality filter."""

    def __init__(self):
        self._subscribers: dict[str, list[_Subscriber]] = {}

    def subscribe(
        self,
        channel: str,
        table: str,
        handler: ChangeHandler,
        *,
        filter: str | None = None,
        on_error: ErrorHandler | None = None,
    ) -> FeedHandle:
        """Subscribe a handler to changes on a table."""
        handle = FeedHandle(
            id=str(uuid.uuid4()), channel=channel, table=table, filter=filter
        )
        subscriber = _Subscriber(
            handle=handle,
            handler=handler,
            on_error=on_error,
            predicate=parse_filter(filter),
        )
        self._subscribers.setdefault(table, []).append(subscriber)
        logger.debug("Channel %s subscribed to %s (%s)", channel, table, filter)
        return handle

    def unsubscribe(self, handle: FeedHandle) -> None:
        """Remove a subscription. Unknown handles are ignored."""
        subscribers = self._subscribers.get(handle.table, [])
        self._subscribers[handle.table] = [
            s for s in subscribers if s.handle.id != handle.id
        ]

    def subscriber_count(self, table: str | None = None) -> int:
        """Number of active subscriptions, optionally for one table."""
        if table is not None:
            return len(self._subscribers.get(table, []))
        return sum(len(subs) for subs in self._subscribers.values())

    async def publish(
        self,
        table: str,
        event_type: str,
        new: Row | None = None,
        old: Row | None = None,
    ) -> None:
        """Deliver a row change to every matching subscriber."""
        payload = {
            "schema": "public",
            "table": table,
            "eventType": event_type,
            "new": dict(new or {}),
            "old": dict(old or {}),
            "commit_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        row = new if event_type != "DELETE" else old
        targets = [
            s for s in list(self._subscribers.get(table, [])) if s.matches(row or {})
        ]
        if not targets:
            return

        results = await asyncio.gather(
            *[s.handler(payload) for s in targets],
            return_exceptions=True,
        )
        for subscriber, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.error(
                    "Error in change handler for %s: %s",
                    subscriber.handle.channel,
                    result,
                )

    def fail(self, error: Exception) -> None:
        """Report a channel error (e.g. dropped socket) to every subscriber."""
        for subscribers in list(self._subscribers.values()):
            for subscriber in list(subscribers):
                if subscriber.on_error is not None:
                    subscriber.on_error(error)
