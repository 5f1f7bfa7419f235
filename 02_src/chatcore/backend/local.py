"""SQLite implementation of the backend data service.

Mirrors the hosted backend closely enough for development and tests:
row-level policies on every table, server-assigned timestamps, a change feed
fed by every write, and signed storage URLs.
"""

import secrets
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import quote

import aiosqlite

from ..config import resolve_db_path
from ..logging_config import get_logger
from .base import (
    DIRECT_MESSAGES,
    SUBMISSION_MESSAGES,
    SUBMISSIONS,
    AnyOf,
    BackendError,
    BackendUnavailable,
    Eq,
    Filter,
    IsNull,
    Row,
)
from .change_feed import ChangeFeed

logger = get_logger(__name__)


@dataclass(frozen=True)
class _TableSpec:
    columns: tuple[str, ...]
    required: tuple[str, ...]
    owner_column: str
    booleans: tuple[str, ...] = ()
    participant_columns: tuple[str, ...] = ()


_TABLES: dict[str, _TableSpec] = {
    SUBMISSION_MESSAGES: _TableSpec(
        columns=(
            "id",
            "team_id",
            "submission_id",
            "sender_id",
            "body",
            "is_internal",
            "attachment_path",
            "attachment_type",
            "is_revised",
            "created_at",
            "updated_at",
        ),
        required=("id", "team_id", "sender_id", "body"),
        owner_column="sender_id",
        booleans=("is_internal", "is_revised"),
    ),
    DIRECT_MESSAGES: _TableSpec(
        columns=(
            "id",
            "created_at",
            "team_id",
            "sender_id",
            "recipient_id",
            "body",
            "attachment_url",
            "attachment_type",
        ),
        required=("id", "team_id", "sender_id", "recipient_id", "body"),
        owner_column="sender_id",
        participant_columns=("sender_id", "recipient_id"),
    ),
    SUBMISSIONS: _TableSpec(
        columns=(
            "id",
            "team_id",
            "created_by",
            "store_location",
            "priority_level",
            "created_at",
        ),
        required=("id", "team_id", "created_by"),
        owner_column="created_by",
    ),
}


@dataclass
class _SharedState:
    """Server-side state shared by every client of one local backend."""

    conn: aiosqlite.Connection | None = None
    feed: ChangeFeed = field(default_factory=ChangeFeed)
    tokens: dict[str, str] = field(default_factory=dict)
    signed: dict[str, tuple[str, str, datetime]] = field(default_factory=dict)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalBackend:
    """aiosqlite-backed backend data service."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        base_url: str = "http://localhost:8000",
        service_role: bool = False,
        _state: _SharedState | None = None,
    ):
        self._db_path = resolve_db_path(db_path)
        self._base_url = base_url.rstrip("/")
        self._service_role = service_role
        self._state = _state or _SharedState()
        self._session_user: str | None = None
        self._session_token: str | None = None
        self.offline = False

    async def init(self) -> None:
        """Open the database and create tables."""
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await conn.executescript(schema_sql)
        await conn.commit()
        self._state.conn = conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._state.conn:
            await self._state.conn.close()
            self._state.conn = None

    def client(self) -> "LocalBackend":
        """A new anonymous client of the same backend."""
        return LocalBackend(self._db_path, base_url=self._base_url, _state=self._state)

    def admin(self) -> "LocalBackend":
        """A service-role client that bypasses row-level policies."""
        return LocalBackend(
            self._db_path, base_url=self._base_url, service_role=True, _state=self._state
        )

    @property
    def feed(self) -> ChangeFeed:
        """Realtime change feed."""
        return self._state.feed

    @property
    def base_url(self) -> str:
        return self._base_url

    # Auth
    def sign_in(self, user_id: str) -> str:
        """Start a session for a user and return its bearer token."""
        token = secrets.token_urlsafe(24)
        self._state.tokens[token] = user_id
        self._session_user = user_id
        self._session_token = token
        return token

    def sign_out(self) -> None:
        """End the current session."""
        if self._session_token:
            self._state.tokens.pop(self._session_token, None)
        self._session_user = None
        self._session_token = None

    async def get_user_id(self) -> str | None:
        """Id of the signed-in user, or None."""
        self._check_online()
        return self._session_user

    async def get_access_token(self) -> str | None:
        """Bearer credential of the current session, or None."""
        self._check_online()
        return self._session_token

    async def user_for_token(self, token: str) -> str | None:
        """Resolve a bearer credential to a user id."""
        self._check_online()
        return self._state.tokens.get(token)

    # Teams
    async def create_team(self, team_id: str, name: str, members: list[str] | None = None) -> None:
        """Create a team with its members."""
        conn = self._connection()
        await conn.execute(
            "INSERT OR REPLACE INTO teams (id, name) VALUES (?, ?)", (team_id, name)
        )
        for user_id in members or []:
            await conn.execute(
                "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)",
                (team_id, user_id),
            )
        await conn.commit()

    async def add_member(self, team_id: str, user_id: str) -> None:
        """Add a user to a team."""
        conn = self._connection()
        await conn.execute(
            "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)",
            (team_id, user_id),
        )
        await conn.commit()

    async def is_team_member(self, team_id: str, user_id: str) -> bool:
        """Check team membership."""
        self._check_online()
        cursor = await self._connection().execute(
            "SELECT 1 FROM team_members WHERE team_id = ? AND user_id = ?",
            (team_id, user_id),
        )
        return await cursor.fetchone() is not None

    async def team_ids_for(self, user_id: str) -> list[str]:
        """Teams the user belongs to."""
        self._check_online()
        cursor = await self._connection().execute(
            "SELECT team_id FROM team_members WHERE user_id = ? ORDER BY team_id", (user_id,)
        )
        return [row[0] for row in await cursor.fetchall()]

    # Tables
    async def select(
        self,
        table: str,
        filters: list[Filter],
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Select rows visible to the caller, ordered by (created_at, id)."""
        spec = self._table(table)
        user_id = self._require_session()

        conditions: list[str] = []
        params: list = []
        for flt in filters:
            clause, clause_params = self._compile(spec, flt)
            conditions.append(clause)
            params.extend(clause_params)

        if user_id is not None:
            conditions.append(
                "team_id IN (SELECT team_id FROM team_members WHERE user_id = ?)"
            )
            params.append(user_id)
            if spec.participant_columns:
                conditions.append(
                    "(" + " OR ".join(f"{c} = ?" for c in spec.participant_columns) + ")"
                )
                params.extend([user_id] * len(spec.participant_columns))

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        direction = "DESC" if descending else "ASC"
        query = f"""
            SELECT {', '.join(spec.columns)}
            FROM {table}
            {where_clause}
            ORDER BY created_at {direction}, id {direction}
        """
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._connection().execute(query, params)
        rows = await cursor.fetchall()
        return [self._from_db(spec, row) for row in rows]

    async def get(self, table: str, row_id: str) -> Row | None:
        """Get one visible row by primary key."""
        rows = await self.select(table, [Eq("id", row_id)], limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row, publish INSERT and return the stored row."""
        spec = self._table(table)
        user_id = self._require_session()
        self._check_columns(table, spec, row)

        values = dict(row)
        values.setdefault("id", str(uuid.uuid4()))
        now = _now()
        values.setdefault("created_at", now)
        if "updated_at" in spec.columns:
            values.setdefault("updated_at", now)
        for column in spec.booleans:
            values.setdefault(column, False)

        for column in spec.required:
            if values.get(column) is None:
                raise BackendError(
                    f'null value in column "{column}" of relation "{table}" '
                    "violates not-null constraint",
                    status=400,
                    code="23502",
                )

        if user_id is not None:
            await self._check_write_policy(table, spec, values, user_id)

        columns = [c for c in spec.columns if c in values]
        placeholders = ", ".join("?" for _ in columns)
        try:
            await self._connection().execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                [self._to_db(spec, c, values[c]) for c in columns],
            )
        except sqlite3.IntegrityError as e:
            raise BackendError(
                f'duplicate key value violates unique constraint "{table}_pkey"',
                status=409,
                code="23505",
            ) from e
        await self._connection().commit()

        stored = await self._fetch(table, spec, values["id"])
        await self._state.feed.publish(table, "INSERT", new=stored)
        return stored

    async def update(self, table: str, row_id: str, values: Row) -> Row:
        """Update a row owned by the caller and publish UPDATE."""
        spec = self._table(table)
        user_id = self._require_session()
        self._check_columns(table, spec, values)

        old = await self._fetch(table, spec, row_id)
        if old is None:
            raise BackendError("Row not found", status=404, code="PGRST116")
        if user_id is not None and old.get(spec.owner_column) != user_id:
            raise self._policy_denied(table)

        changes = {k: v for k, v in values.items() if k != "id"}
        if "updated_at" in spec.columns:
            changes["updated_at"] = _now()
        if changes:
            assignments = ", ".join(f"{c} = ?" for c in changes)
            await self._connection().execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                [self._to_db(spec, c, v) for c, v in changes.items()] + [row_id],
            )
            await self._connection().commit()

        stored = await self._fetch(table, spec, row_id)
        await self._state.feed.publish(table, "UPDATE", new=stored, old=old)
        return stored

    async def delete(self, table: str, row_id: str) -> Row | None:
        """Delete a row owned by the caller and publish DELETE."""
        spec = self._table(table)
        user_id = self._require_session()

        old = await self._fetch(table, spec, row_id)
        if old is None:
            return None
        if user_id is not None and old.get(spec.owner_column) != user_id:
            raise self._policy_denied(table)

        await self._connection().execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
        await self._connection().commit()
        await self._state.feed.publish(table, "DELETE", old=old)
        return old

    # Storage
    async def upload(
        self, bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        """Store an object (upsert) and return its key."""
        self._require_session()
        await self._connection().execute(
            """
            INSERT OR REPLACE INTO storage_objects (bucket, key, data, content_type, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (bucket, key, data, content_type, _now()),
        )
        await self._connection().commit()
        return key

    def get_public_url(self, bucket: str, key: str) -> str:
        """Public (unsigned) URL of an object."""
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{quote(key)}"

    async def create_signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str | None:
        """Signed URL for an existing object, None when it does not exist."""
        self._require_session()
        if await self._object(bucket, key) is None:
            return None

        token = secrets.token_urlsafe(24)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        self._state.signed[token] = (bucket, key, expires_at)
        return f"{self._base_url}/storage/v1/object/sign/{bucket}/{quote(key)}?token={token}"

    async def download(self, bucket: str, key: str) -> bytes:
        """Read an object's bytes."""
        self._require_session()
        found = await self._object(bucket, key)
        if found is None:
            raise BackendError("Object not found", status=404, code="not_found")
        return found[0]

    async def read_signed_object(self, bucket: str, key: str, token: str) -> tuple[bytes, str] | None:
        """Bytes and content type behind a signed URL, None if invalid or expired."""
        grant = self._state.signed.get(token)
        if grant is None:
            return None
        granted_bucket, granted_key, expires_at = grant
        if (granted_bucket, granted_key) != (bucket, key):
            return None
        if expires_at <= datetime.now(timezone.utc):
            self._state.signed.pop(token, None)
            return None
        return await self._object(bucket, key)

    # Internals
    def _connection(self) -> aiosqlite.Connection:
        self._check_online()
        if not self._state.conn:
            raise RuntimeError("Backend not initialized")
        return self._state.conn

    def _check_online(self) -> None:
        if self.offline:
            raise BackendUnavailable("Network request failed", code="network")

    def _require_session(self) -> str | None:
        """Acting user id, None for the service role."""
        self._check_online()
        if self._service_role:
            return None
        if not self._session_user:
            raise BackendError("JWT required", status=401, code="PGRST301")
        return self._session_user

    @staticmethod
    def _table(table: str) -> _TableSpec:
        if table not in _TABLES:
            raise BackendError(
                f"relation \"public.{table}\" does not exist", status=404, code="42P01"
            )
        return _TABLES[table]

    @staticmethod
    def _check_columns(table: str, spec: _TableSpec, row: Row) -> None:
        for column in row:
            if column not in spec.columns:
                raise BackendError(
                    f"Could not find the '{column}' column of '{table}' in the schema cache",
                    status=400,
                    code="PGRST204",
                )

    @staticmethod
    def _policy_denied(table: str) -> BackendError:
        return BackendError(
            f'new row violates row-level security policy for table "{table}"',
            status=403,
            code="42501",
        )

    async def _check_write_policy(
        self, table: str, spec: _TableSpec, values: Row, user_id: str
    ) -> None:
        if values.get(spec.owner_column) != user_id:
            raise self._policy_denied(table)
        if not await self.is_team_member(values["team_id"], user_id):
            raise self._policy_denied(table)

    def _compile(self, spec: _TableSpec, flt: Filter) -> tuple[str, list]:
        if isinstance(flt, Eq):
            self._check_filter_column(spec, flt.column)
            return f"{flt.column} = ?", [self._to_db(spec, flt.column, flt.value)]
        if isinstance(flt, IsNull):
            self._check_filter_column(spec, flt.column)
            return f"{flt.column} IS NULL", []
        if isinstance(flt, AnyOf):
            parts: list[str] = []
            params: list = []
            for group in flt.groups:
                compiled = [self._compile(spec, inner) for inner in group]
                parts.append("(" + " AND ".join(c for c, _ in compiled) + ")")
                for _, inner_params in compiled:
                    params.extend(inner_params)
            return "(" + " OR ".join(parts) + ")", params
        raise TypeError(f"Unsupported filter: {flt!r}")

    @staticmethod
    def _check_filter_column(spec: _TableSpec, column: str) -> None:
        if column not in spec.columns:
            raise BackendError(f"column does not exist: {column}", status=400, code="42703")

    @staticmethod
    def _to_db(spec: _TableSpec, column: str, value):
        if column in spec.booleans and value is not None:
            return int(bool(value))
        return value

    @staticmethod
    def _from_db(spec: _TableSpec, row: aiosqlite.Row) -> Row:
        data = dict(row)
        for column in spec.booleans:
            if column in data and data[column] is not None:
                data[column] = bool(data[column])
        return data

    async def _fetch(self, table: str, spec: _TableSpec, row_id: str) -> Row | None:
        cursor = await self._connection().execute(
            f"SELECT {', '.join(spec.columns)} FROM {table} WHERE id = ?", (row_id,)
        )
        row = await cursor.fetchone()
        return self._from_db(spec, row) if row else None

    async def _object(self, bucket: str, key: str) -> tuple[bytes, str] | None:
        cursor = await self._connection().execute(
            "SELECT data, content_type FROM storage_objects WHERE bucket = ? AND key = ?",
            (bucket, key),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return bytes(row[0]), row[1]
