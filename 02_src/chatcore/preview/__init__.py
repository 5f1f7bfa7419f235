"""Document preview module."""

from .local import DocumentPreviewBuilder
from .previewer import AttachmentPreviewer, preview_ref_for
from .remote import RemoteDocumentPreviewClient, coerce_response
from .service import PreviewRenderService, PreviewRequestError, clamp
from .tables import bounded_grid, csv_grid, excel_grid, render_table

__all__ = [
    "AttachmentPreviewer",
    "DocumentPreviewBuilder",
    "PreviewRenderService",
    "PreviewRequestError",
    "RemoteDocumentPreviewClient",
    "bounded_grid",
    "clamp",
    "coerce_response",
    "csv_grid",
    "excel_grid",
    "preview_ref_for",
    "render_table",
]
