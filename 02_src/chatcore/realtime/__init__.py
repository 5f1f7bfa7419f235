"""Realtime subscription module."""

from .channels import (
    RealtimeChannelManager,
    belongs_to,
    is_visible,
    normalize_change,
    server_filter,
)
from .priority import PriorityAlertMonitor, priority_alert
from .subscription import CancellableSubscription, SubscriptionRegistry

__all__ = [
    "CancellableSubscription",
    "PriorityAlertMonitor",
    "RealtimeChannelManager",
    "SubscriptionRegistry",
    "belongs_to",
    "is_visible",
    "normalize_change",
    "priority_alert",
    "server_filter",
]
