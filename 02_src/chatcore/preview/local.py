"""On-device document previews from downloaded bytes."""

import uuid
from pathlib import Path

import httpx

from ..attachments import sanitize_file_name
from ..attachments.kinds import TABULAR_KINDS
from ..config import ChatSettings
from ..errors import NetworkFailure, PreviewUnavailable, ResourceTooLarge
from ..logging_config import get_logger
from ..models import AttachmentMeta, PreviewResult
from .tables import csv_grid, excel_grid, render_table

logger = get_logger(__name__)


class DocumentPreviewBuilder:
    """Downloads an attachment to scratch storage and renders a bounded table."""

    def __init__(
        self,
        settings: ChatSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings or ChatSettings()
        self._client = client
        self._owns_client = client is None

    async def close(self) -> None:
        """Close the HTTP client if this builder created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def build(self, meta: AttachmentMeta) -> PreviewResult:
        """Render CSV/Excel attachments; other kinds are PreviewUnavailable."""
        if meta.kind not in TABULAR_KINDS:
            raise PreviewUnavailable(f"No preview builder for kind={meta.kind}")

        max_rows = self._settings.preview_max_rows
        max_cols = self._settings.preview_max_cols
        path = await self.download(meta)

        try:
            if meta.kind == "csv":
                title = meta.name
                grid = csv_grid(path.read_bytes(), max_rows, max_cols)
            else:
                sheet, grid = excel_grid(path, max_rows, max_cols)
                title = f"{meta.name} - {sheet}"
        except PreviewUnavailable:
            path.unlink(missing_ok=True)
            raise

        logger.debug("Built local preview of %s (%d rows)", meta.name, len(grid))
        return PreviewResult(
            mode="html",
            title=title,
            html=render_table(title, grid, max_rows, max_cols),
            url=meta.url,
            local_path=str(path),
        )

    async def download(self, meta: AttachmentMeta) -> Path:
        """Stream the attachment into the scratch directory, enforcing the size cap."""
        limit = self._settings.preview_max_bytes
        scratch = Path(self._settings.preview_scratch_dir)
        scratch.mkdir(parents=True, exist_ok=True)
        path = scratch / f"{uuid.uuid4().hex}-{sanitize_file_name(meta.name)}"

        try:
            async with self._get_client().stream("GET", meta.url) as response:
                if response.status_code >= 400:
                    raise PreviewUnavailable(
                        f"Download failed ({response.status_code}) for {meta.name}"
                    )
                declared = _declared_length(response, meta.name)
                if declared > limit:
                    raise _too_large(declared, limit)

                size = 0
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > limit:
                            raise _too_large(size, limit)
                        f.write(chunk)
        except httpx.HTTPError as e:
            path.unlink(missing_ok=True)
            raise NetworkFailure(f"Download failed for {meta.name}: {e}") from e
        except (PreviewUnavailable, ResourceTooLarge):
            path.unlink(missing_ok=True)
            raise

        return path

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._settings.preview_timeout, follow_redirects=True
            )
            self._owns_client = True
        return self._client


def _too_large(size: int, limit: int) -> ResourceTooLarge:
    return ResourceTooLarge(
        f"File is too large to preview ({round(size / 1024)}KB). Use Share/Download instead.",
        size=size,
        limit=limit,
    )


def _declared_length(response: httpx.Response, name: str) -> int:
    header = response.headers.get("content-length")
    if not header:
        return 0
    try:
        return int(header)
    except ValueError:
        raise PreviewUnavailable(f"Invalid Content-Length {header!r} for {name}") from None
