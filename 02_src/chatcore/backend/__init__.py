"""Backend data service interfaces and the local implementation."""

from .base import (
    DIRECT_MESSAGES,
    SUBMISSION_MESSAGES,
    SUBMISSIONS,
    AnyOf,
    BackendError,
    BackendUnavailable,
    Eq,
    FeedHandle,
    Filter,
    IAuth,
    IBackend,
    IChangeFeed,
    IObjectStorage,
    ITableService,
    IsNull,
)
from .change_feed import ChangeFeed, parse_filter
from .local import LocalBackend

__all__ = [
    "DIRECT_MESSAGES",
    "SUBMISSION_MESSAGES",
    "SUBMISSIONS",
    "AnyOf",
    "BackendError",
    "BackendUnavailable",
    "ChangeFeed",
    "Eq",
    "FeedHandle",
    "Filter",
    "IAuth",
    "IBackend",
    "IChangeFeed",
    "IObjectStorage",
    "ITableService",
    "IsNull",
    "LocalBackend",
    "parse_filter",
]
