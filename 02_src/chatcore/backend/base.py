"""Backend data service interfaces.

The backend is an external collaborator: a row-oriented table API with
row-level authorization, a realtime change feed keyed by table plus an
equality filter, object storage with signed URLs, and bearer-token auth.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Union

SUBMISSION_MESSAGES = "submission_messages"
DIRECT_MESSAGES = "direct_messages"
SUBMISSIONS = "submissions"

Row = dict[str, Any]
ChangeHandler = Callable[[dict], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


class BackendError(Exception):
    """Error reported by the backend data service."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class BackendUnavailable(BackendError):
    """The backend could not be reached."""


@dataclass(frozen=True)
class Eq:
    """column = value"""

    column: str
    value: Any


@dataclass(frozen=True)
class IsNull:
    """column IS NULL"""

    column: str


@dataclass(frozen=True)
class AnyOf:
    """OR of AND-groups, e.g. the participant-pair predicate."""

    groups: tuple[tuple["Filter", ...], ...]


Filter = Union[Eq, IsNull, AnyOf]


@dataclass(frozen=True)
class FeedHandle:
    """Opaque handle of one change-feed subscription."""

    id: str
    channel: str
    table: str
    filter: str | None = field(default=None)


class ITableService(Protocol):
    """Row-oriented table API with row-level authorization."""

    async def select(
        self,
        table: str,
        filters: list[Filter],
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Select rows ordered by (created_at, id)."""
        ...

    async def get(self, table: str, row_id: str) -> Row | None:
        """Get one row by primary key."""
        ...

    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row and return it as stored."""
        ...

    async def update(self, table: str, row_id: str, values: Row) -> Row:
        """Update a row and return it as stored."""
        ...

    async def delete(self, table: str, row_id: str) -> Row | None:
        """Delete a row and return the removed row."""
        ...


class IObjectStorage(Protocol):
    """Object storage addressed by bucket + key."""

    async def upload(
        self, bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        """Store an object and return its key."""
        ...

    def get_public_url(self, bucket: str, key: str) -> str:
        """Public (unsigned) URL of an object."""
        ...

    async def create_signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str | None:
        """Time-bounded URL for an object, or None when it cannot be issued."""
        ...

    async def download(self, bucket: str, key: str) -> bytes:
        """Read an object's bytes."""
        ...


class IAuth(Protocol):
    """Session access for the signed-in user."""

    async def get_user_id(self) -> str | None:
        """Id of the signed-in user, or None."""
        ...

    async def get_access_token(self) -> str | None:
        """Bearer credential of the current session, or None."""
        ...

    async def user_for_token(self, token: str) -> str | None:
        """Resolve a bearer credential to a user id."""
        ...


class IChangeFeed(Protocol):
    """Server-pushed INSERT/UPDATE/DELETE notifications."""

    def subscribe(
        self,
        channel: str,
        table: str,
        handler: ChangeHandler,
        *,
        filter: str | None = None,
        on_error: ErrorHandler | None = None,
    ) -> FeedHandle:
        """Subscribe to changes on a table, optionally `column=eq.value` filtered."""
        ...

    def unsubscribe(self, handle: FeedHandle) -> None:
        """Stop delivering to a subscription."""
        ...


class IBackend(ITableService, IObjectStorage, IAuth, Protocol):
    """The full backend data service."""

    @property
    def feed(self) -> IChangeFeed:
        """Realtime change feed."""
        ...
