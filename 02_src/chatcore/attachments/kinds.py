"""Attachment kind inference and file-name helpers."""

import re
from urllib.parse import quote, unquote, urlparse

from ..config import OFFICE_VIEWER_URL
from ..models import AttachmentKind

TABULAR_KINDS = frozenset({"csv", "excel"})

MIME_BY_KIND: dict[str, str] = {
    "image": "image/jpeg",
    "pdf": "application/pdf",
    "csv": "text/csv",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "word": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "powerpoint": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "file": "application/octet-stream",
}

_EXTENSIONS: tuple[tuple[tuple[str, ...], AttachmentKind], ...] = (
    ((".pdf",), "pdf"),
    ((".csv",), "csv"),
    ((".xlsx", ".xls"), "excel"),
    ((".docx", ".doc"), "word"),
    ((".pptx", ".ppt"), "powerpoint"),
    ((".png", ".jpg", ".jpeg", ".gif", ".webp"), "image"),
)

_TYPE_ALIASES: dict[str, AttachmentKind] = {
    "csv": "csv",
    "excel": "excel",
    "xlsx": "excel",
    "spreadsheet": "excel",
    "image": "image",
    "photo": "image",
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "pdf": "pdf",
    "word": "word",
    "doc": "word",
    "docx": "word",
    "powerpoint": "powerpoint",
    "ppt": "powerpoint",
    "pptx": "powerpoint",
}


def guess_kind(type_hint: str | None, name: str | None = None) -> AttachmentKind:
    """Explicit type hint first, then the file extension."""
    hint = (type_hint or "").strip().lower()
    if hint in ("image", "pdf", "csv", "excel"):
        return hint  # type: ignore[return-value]

    lowered = (name or "").lower()
    for extensions, kind in _EXTENSIONS:
        if lowered.endswith(extensions):
            return kind
    return "file"


def normalize_attachment_type(value: object) -> AttachmentKind:
    """Map a stored attachment_type (including loose aliases) to a kind."""
    return _TYPE_ALIASES.get(str(value or "").strip().lower(), "file")


def guess_file_name(ref: str | None) -> str:
    """Last path segment of a URL or storage key, without query string."""
    if not ref:
        return "attachment"
    path = urlparse(ref).path if is_http_url(ref) else ref.split("?")[0]
    segments = [s for s in path.split("/") if s]
    if not segments:
        return "attachment"
    return unquote(segments[-1]) or "attachment"


def sanitize_file_name(name: str) -> str:
    """Filesystem and storage-key safe name."""
    cleaned = (name or "").strip() or "attachment"
    return re.sub(r"[^a-z0-9_.-]+", "-", cleaned, flags=re.IGNORECASE)[:120]


def is_http_url(value: str) -> bool:
    return bool(re.match(r"^https?:", (value or "").strip(), flags=re.IGNORECASE))


def office_embed_url(url: str) -> str:
    """Third-party office viewer pre-loaded with a fetchable URL."""
    return f"{OFFICE_VIEWER_URL}?src={quote(url, safe='')}"
