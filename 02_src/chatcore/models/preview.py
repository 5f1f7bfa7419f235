"""Document preview data models."""

from dataclasses import dataclass
from typing import Literal

PreviewMode = Literal["html", "url", "download"]
PreviewSource = Literal["submission_message", "direct_message"]


@dataclass
class PreviewResult:
    """Outcome of previewing an attachment.

    `html` carries a self-contained table, `url` a viewer URL (with an
    optional office embed URL), `download` means the preview failed and the
    UI should offer share/download instead.
    """

    mode: PreviewMode
    title: str
    html: str | None = None
    url: str | None = None
    office_embed_url: str | None = None
    local_path: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class MessagePreviewRef:
    """Identity of the message owning an attachment."""

    kind: PreviewSource
    id: str
