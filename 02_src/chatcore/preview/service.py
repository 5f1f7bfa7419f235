"""Server-side rendering behind the document-preview endpoint."""

import io
from dataclasses import dataclass
from typing import Any, Protocol

from ..attachments import normalize_attachment_type, office_embed_url, parse_storage_url
from ..attachments.kinds import TABULAR_KINDS, is_http_url
from ..backend import DIRECT_MESSAGES, SUBMISSION_MESSAGES, BackendError, IBackend
from ..config import CHAT_BUCKET, LEGACY_CSV_BUCKET, PREVIEW_SIGNED_URL_TTL_SECONDS, ChatSettings
from ..logging_config import get_logger
from .tables import csv_grid, excel_grid, render_table

logger = get_logger(__name__)

MIN_ROWS, MAX_ROWS = 5, 500
MIN_COLS, MAX_COLS = 5, 60


class PreviewRequestError(Exception):
    """Error answered to the caller as `{"error": ...}` with an HTTP status."""

    def __init__(self, error: str, status: int = 500):
        super().__init__(error)
        self.error = error
        self.status = status


class IPreviewBackend(IBackend, Protocol):
    """Service-role backend access needed by the renderer."""

    async def is_team_member(self, team_id: str, user_id: str) -> bool:
        """Check team membership."""
        ...


@dataclass
class AttachmentTarget:
    """Where an attachment lives and how to present it."""

    team_id: str
    attachment_type: str
    bucket: str
    path: str

    @property
    def title(self) -> str:
        return f"Attachment ({self.attachment_type.upper()})"


def clamp(value: Any, low: int, high: int) -> int:
    """Clamp a loosely typed number; anything non-numeric becomes `low`."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if number != number:
        return low
    return int(max(low, min(high, number)))


def default_bucket(attachment_type: str) -> str:
    return LEGACY_CSV_BUCKET if attachment_type == "csv" else CHAT_BUCKET


class PreviewRenderService:
    """Resolves a message attachment and renders it for a team member."""

    def __init__(self, backend: IPreviewBackend, settings: ChatSettings | None = None):
        self._backend = backend
        self._settings = settings or ChatSettings()

    async def render(self, token: str | None, body: dict[str, Any]) -> dict[str, Any]:
        """Handle one preview request.

        Raises PreviewRequestError for every failure the caller should see.
        """
        if not token:
            raise PreviewRequestError("missing_bearer_token", 401)
        user_id = await self._backend.user_for_token(token)
        if not user_id:
            raise PreviewRequestError("unauthorized", 401)

        max_rows = clamp(body.get("max_rows", self._settings.preview_max_rows), MIN_ROWS, MAX_ROWS)
        max_cols = clamp(body.get("max_cols", self._settings.preview_max_cols), MIN_COLS, MAX_COLS)

        try:
            target = await self.resolve_target(body)
            if not await self._backend.is_team_member(target.team_id, user_id):
                raise PreviewRequestError("forbidden", 403)

            signed_url = await self._backend.create_signed_url(
                target.bucket, target.path, PREVIEW_SIGNED_URL_TTL_SECONDS
            )
            if not signed_url:
                raise PreviewRequestError("create_signed_url_failed")

            meta: dict[str, Any] = {
                "team_id": target.team_id,
                "bucket": target.bucket,
                "path": target.path,
                "attachment_type": target.attachment_type,
            }

            if target.attachment_type not in TABULAR_KINDS:
                embed = (
                    office_embed_url(signed_url)
                    if target.attachment_type in ("word", "powerpoint")
                    else None
                )
                return {
                    "ok": True,
                    "mode": "url",
                    "url": signed_url,
                    "office_embed_url": embed,
                    "title": target.title,
                    "meta": meta,
                }

            data = await self._backend.download(target.bucket, target.path)
            title = target.title
            if target.attachment_type == "csv":
                grid = csv_grid(data, max_rows, max_cols)
            else:
                sheet, grid = excel_grid(io.BytesIO(data), max_rows, max_cols)
                title = f"{title} - {sheet}"
        except BackendError as e:
            logger.error("Preview backend error: %s", e.message)
            raise PreviewRequestError(e.message) from e

        meta.update({"max_rows": max_rows, "max_cols": max_cols})
        return {
            "ok": True,
            "mode": "html",
            "html": render_table(title, grid, max_rows, max_cols),
            "url": signed_url,
            "title": title,
            "meta": meta,
        }

    async def resolve_target(self, body: dict[str, Any]) -> AttachmentTarget:
        """Locate the attachment by message identity, or by team and path."""
        kind = str(body.get("kind") or "").strip()
        message_id = str(body.get("id") or "").strip()

        if kind and message_id:
            if kind == "submission_message":
                table, column = SUBMISSION_MESSAGES, "attachment_path"
            elif kind == "direct_message":
                table, column = DIRECT_MESSAGES, "attachment_url"
            else:
                raise PreviewRequestError("invalid_kind")

            row = await self._backend.get(table, message_id)
            if not row:
                raise PreviewRequestError("message_not_found")
            attachment_type = normalize_attachment_type(row.get("attachment_type"))
            raw_path = str(row.get(column) or "").strip()
            if not raw_path:
                raise PreviewRequestError("missing_attachment")

            if is_http_url(raw_path):
                location = parse_storage_url(raw_path, self._settings.storage_host_suffixes)
                if location is None:
                    raise PreviewRequestError("attachment_url_not_supported")
                return AttachmentTarget(row["team_id"], attachment_type, location.bucket, location.key)
            return AttachmentTarget(
                row["team_id"], attachment_type, default_bucket(attachment_type), raw_path
            )

        team_id = str(body.get("team_id") or "").strip()
        path = str(body.get("path") or "").strip()
        attachment_type = normalize_attachment_type(body.get("attachment_type") or "file")
        bucket = str(body.get("bucket") or default_bucket(attachment_type)).strip()
        if not team_id:
            raise PreviewRequestError("team_id required")
        if not path:
            raise PreviewRequestError("path required")
        return AttachmentTarget(team_id, attachment_type, bucket, path)
