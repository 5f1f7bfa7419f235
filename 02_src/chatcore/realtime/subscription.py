"""Cancellable change-feed subscriptions and their registry."""

from typing import Awaitable, Callable

from ..backend import FeedHandle, IChangeFeed
from ..logging_config import get_logger

logger = get_logger(__name__)

PayloadHandler = Callable[[dict], Awaitable[None]]
SubscriptionErrorHandler = Callable[[Exception], None]


class CancellableSubscription:
    """One change-feed subscription with a synchronous close().

    Every delivery checks the cancelled flag first, so a callback that was
    already in flight when the subscription closed does nothing.
    """

    def __init__(
        self,
        feed: IChangeFeed,
        channel: str,
        table: str,
        handler: PayloadHandler,
        *,
        filter: str | None = None,
        on_error: SubscriptionErrorHandler | None = None,
    ):
        self._feed = feed
        self._channel = channel
        self._table = table
        self._handler = handler
        self._filter = filter
        self._on_error = on_error
        self._handle: FeedHandle | None = None
        self._cancelled = False

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._cancelled

    def open(self) -> "CancellableSubscription":
        """Subscribe to the feed. Opening twice is a no-op."""
        if self._cancelled:
            raise RuntimeError(f"Subscription {self._channel} is closed")
        if self._handle is None:
            self._handle = self._feed.subscribe(
                self._channel,
                self._table,
                self._deliver,
                filter=self._filter,
                on_error=self._fail,
            )
            logger.info(
                "Subscribed to channel",
                extra={"context": {"channel": self._channel, "table": self._table}},
            )
        return self

    def close(self) -> None:
        """Unsubscribe synchronously. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._feed.unsubscribe(self._handle)
            self._handle = None
        logger.debug("Closed channel %s", self._channel)

    async def _deliver(self, payload: dict) -> None:
        if self._cancelled:
            return
        try:
            await self._handler(payload)
        except Exception as e:
            logger.error("Error delivering on %s: %s", self._channel, e, exc_info=True)
            self._fail(e)

    def _fail(self, error: Exception) -> None:
        if self._cancelled:
            return
        logger.warning("Channel %s failed: %s", self._channel, error)
        self.close()
        if self._on_error is not None:
            self._on_error(error)


class SubscriptionRegistry:
    """Subscriptions keyed by channel name, owned by one lifecycle root."""

    def __init__(self):
        self._subscriptions: dict[str, CancellableSubscription] = {}

    def register(self, key: str, subscription: CancellableSubscription) -> CancellableSubscription:
        """Register a subscription, closing any previous one under the same key."""
        previous = self._subscriptions.get(key)
        if previous is not None and previous is not subscription:
            previous.close()
        self._subscriptions[key] = subscription
        return subscription

    def get(self, key: str) -> CancellableSubscription | None:
        return self._subscriptions.get(key)

    def close(self, key: str) -> bool:
        """Close and forget one subscription. Returns whether it existed."""
        subscription = self._subscriptions.pop(key, None)
        if subscription is None:
            return False
        subscription.close()
        return True

    def release(self, subscription: CancellableSubscription) -> None:
        """Close a subscription, forgetting it only if it is still the registered one."""
        if self._subscriptions.get(subscription.channel) is subscription:
            del self._subscriptions[subscription.channel]
        subscription.close()

    def close_all(self) -> None:
        """Close every registered subscription."""
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()

    def keys(self) -> list[str]:
        return list(self._subscriptions)

    def __contains__(self, key: str) -> bool:
        return key in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)
