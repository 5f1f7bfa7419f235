"""Routes attachment previews to the remote or local path."""

from ..attachments import office_embed_url
from ..attachments.kinds import TABULAR_KINDS
from ..errors import ChatError, PreviewUnavailable
from ..logging_config import get_logger
from ..models import AttachmentMeta, DirectMessage, Message, MessagePreviewRef, PreviewResult
from .local import DocumentPreviewBuilder
from .remote import RemoteDocumentPreviewClient

logger = get_logger(__name__)


def preview_ref_for(message: Message) -> MessagePreviewRef:
    """Identity the preview endpoint uses to look up a message's attachment."""
    kind = "direct_message" if isinstance(message, DirectMessage) else "submission_message"
    return MessagePreviewRef(kind=kind, id=message.id)


class AttachmentPreviewer:
    """Remote preview when the owning message is known, local otherwise.

    Failures never propagate: they become a `download` result so the UI can
    offer share/download instead.
    """

    def __init__(
        self,
        local: DocumentPreviewBuilder,
        remote: RemoteDocumentPreviewClient | None = None,
    ):
        self._local = local
        self._remote = remote

    async def preview(
        self, meta: AttachmentMeta, source: MessagePreviewRef | None = None
    ) -> PreviewResult:
        """Preview an attachment, optionally identified by its message."""
        try:
            if source is not None and self._remote is not None:
                return await self._remote.fetch(source)
            return await self._preview_without_identity(meta)
        except ChatError as e:
            logger.warning(
                "Preview failed, offering download",
                extra={"context": {"name": meta.name, "kind": meta.kind, "error": e.message}},
            )
            return PreviewResult(mode="download", title=meta.name, url=meta.url, error=e.message)

    async def preview_message(self, message: Message) -> PreviewResult:
        """Preview the attachment of a persisted message."""
        meta = message.attachment_meta
        if meta is None:
            return PreviewResult(mode="download", title="attachment", error="Attachment unavailable")
        source = None if message.provisional else preview_ref_for(message)
        return await self.preview(meta, source)

    async def _preview_without_identity(self, meta: AttachmentMeta) -> PreviewResult:
        if meta.kind in TABULAR_KINDS:
            return await self._local.build(meta)
        if not meta.url:
            raise PreviewUnavailable(f"No URL for {meta.name}")
        if meta.kind in ("word", "powerpoint"):
            return PreviewResult(
                mode="url",
                title=meta.name,
                url=meta.url,
                office_embed_url=office_embed_url(meta.url),
            )
        return PreviewResult(mode="url", title=meta.name, url=meta.url)
