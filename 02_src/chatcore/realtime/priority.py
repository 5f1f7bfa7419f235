"""Application-shell priority alerts on submissions."""

from typing import Awaitable, Callable, Iterable

from ..backend import SUBMISSIONS, IChangeFeed
from ..logging_config import get_logger
from ..models import EventType, PriorityAlert
from .subscription import CancellableSubscription, SubscriptionRegistry

logger = get_logger(__name__)

HIGH_PRIORITY = 1

AlertHandler = Callable[[PriorityAlert], Awaitable[None]]


def priority_alert(payload: dict) -> PriorityAlert | None:
    """Alert for an INSERT/UPDATE that flags a submission as high priority."""
    if payload.get("eventType") not in (EventType.INSERT.value, EventType.UPDATE.value):
        return None
    row = payload.get("new") or {}
    try:
        priority = int(row.get("priority_level"))
    except (TypeError, ValueError):
        return None
    if priority != HIGH_PRIORITY or not row.get("id"):
        return None
    return PriorityAlert(
        submission_id=row["id"],
        team_id=row.get("team_id", ""),
        store=row.get("store_location"),
        created_by=row.get("created_by"),
        priority=priority,
    )


class PriorityAlertMonitor:
    """One `priority-<team>` channel per team; each submission alerts once."""

    def __init__(self, feed: IChangeFeed, notify: AlertHandler):
        self._feed = feed
        self._notify = notify
        self._registry = SubscriptionRegistry()
        self._alerted: dict[str, set[str]] = {}

    @staticmethod
    def channel_name(team_id: str) -> str:
        return f"priority-{team_id}"

    @property
    def teams(self) -> list[str]:
        prefix = self.channel_name("")
        return [key[len(prefix) :] for key in self._registry.keys()]

    def watch(self, team_id: str) -> CancellableSubscription:
        """Open (or reopen) the team's channel."""
        channel = self.channel_name(team_id)

        async def deliver(payload: dict) -> None:
            alert = priority_alert(payload)
            alerted = self._alerted.setdefault(team_id, set())
            if alert is None or alert.submission_id in alerted:
                return
            alerted.add(alert.submission_id)
            logger.info(
                "Priority submission",
                extra={"context": {"team_id": team_id, "submission_id": alert.submission_id}},
            )
            await self._notify(alert)

        subscription = CancellableSubscription(
            self._feed,
            channel,
            SUBMISSIONS,
            deliver,
            filter=f"team_id=eq.{team_id}",
        )
        self._registry.register(channel, subscription)
        return subscription.open()

    def watch_teams(self, team_ids: Iterable[str]) -> None:
        """Watch exactly these teams, closing channels of the others."""
        wanted = set(team_ids)
        for team_id in self.teams:
            if team_id not in wanted:
                self.unwatch(team_id)
        for team_id in wanted:
            subscription = self._registry.get(self.channel_name(team_id))
            if subscription is None or not subscription.active:
                self.watch(team_id)

    def unwatch(self, team_id: str) -> bool:
        """Close the team's channel and forget its alerted submissions."""
        self._alerted.pop(team_id, None)
        return self._registry.close(self.channel_name(team_id))

    def close_all(self) -> None:
        """Close every priority channel."""
        self._registry.close_all()
        self._alerted.clear()
