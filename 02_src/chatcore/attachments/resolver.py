"""Attachment URL resolution."""

import dataclasses
from dataclasses import dataclass
from typing import Protocol, TypeVar
from urllib.parse import parse_qs, unquote, urlparse

from ..backend import BackendError, IObjectStorage
from ..config import ChatSettings
from ..logging_config import get_logger
from ..models import AttachmentMeta, Message, MessageAttachment
from .kinds import guess_file_name, guess_kind, is_http_url

logger = get_logger(__name__)

M = TypeVar("M", bound=Message)


@dataclass(frozen=True)
class StorageLocation:
    """Bucket and key recovered from a storage URL."""

    bucket: str
    key: str
    has_token: bool = False


def parse_storage_url(url: str, host_suffixes: tuple[str, ...]) -> StorageLocation | None:
    """Recover bucket/key from `/storage/v1/object/<mode>/<bucket>/<key>` URLs."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if not any(host == s or host.endswith("." + s) for s in host_suffixes):
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if "object" not in parts:
        return None
    index = parts.index("object")
    if len(parts) < index + 4:
        return None

    bucket = parts[index + 2]
    key = unquote("/".join(parts[index + 3 :]))
    if not bucket or not key:
        return None
    return StorageLocation(
        bucket=bucket, key=key, has_token="token" in parse_qs(parsed.query)
    )


class IAttachmentResolver(Protocol):
    """Turns stored attachment references into fetchable URLs."""

    async def resolve(self, stored: str | None) -> str | None:
        """Fetchable, time-bounded URL for a stored reference, or None."""
        ...

    async def hydrate(self, message: M) -> M:
        """Copy of the message with attachment_meta filled in."""
        ...


class AttachmentResolver:
    """Signed-URL resolution with a candidate-bucket fallback chain."""

    def __init__(self, storage: IObjectStorage, settings: ChatSettings | None = None):
        self._storage = storage
        self._settings = settings or ChatSettings()

    async def resolve(self, stored: str | None) -> str | None:
        """Fetchable, time-bounded URL for a stored reference, or None.

        A stored URL at a recognized storage host without a token is only a
        hint: its bucket/key are re-derived and signed again, since tokens
        expire. Unrecognized hosts pass through. Anything else is a bare key
        tried against each candidate bucket in order.
        """
        if not stored:
            return None
        stored = stored.strip()

        if is_http_url(stored):
            location = parse_storage_url(stored, self._settings.storage_host_suffixes)
            if location and not location.has_token:
                signed = await self._sign(location.bucket, location.key)
                if signed:
                    return signed
            return stored

        for bucket in self._settings.attachment_buckets:
            signed = await self._sign(bucket, stored)
            if signed:
                return signed

        logger.info(
            "Attachment not found in any bucket",
            extra={"context": {"key": stored}},
        )
        return None

    async def describe(self, attachment: MessageAttachment | None) -> AttachmentMeta | None:
        """AttachmentMeta for a stored attachment, None when unavailable."""
        if attachment is None:
            return None
        url = await self.resolve(attachment.storage_ref)
        if not url:
            return None
        name = guess_file_name(attachment.storage_ref)
        return AttachmentMeta(url=url, kind=guess_kind(attachment.kind, name), name=name)

    async def hydrate(self, message: M) -> M:
        """Copy of the message with attachment_meta filled in."""
        if message.attachment is None:
            return message
        meta = await self.describe(message.attachment)
        return dataclasses.replace(message, attachment_meta=meta)

    async def _sign(self, bucket: str, key: str) -> str | None:
        try:
            return await self._storage.create_signed_url(
                bucket, key, self._settings.signed_url_ttl_seconds
            )
        except BackendError as e:
            logger.warning(
                "Signed URL request failed for %s/%s: %s",
                bucket,
                key,
                e.message,
            )
            return None
