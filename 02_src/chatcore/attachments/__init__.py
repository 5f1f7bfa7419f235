"""Attachment resolution module."""

from .kinds import (
    guess_file_name,
    guess_kind,
    normalize_attachment_type,
    office_embed_url,
    sanitize_file_name,
)
from .resolver import AttachmentResolver, IAttachmentResolver, StorageLocation, parse_storage_url

__all__ = [
    "AttachmentResolver",
    "IAttachmentResolver",
    "StorageLocation",
    "guess_file_name",
    "guess_kind",
    "normalize_attachment_type",
    "office_embed_url",
    "parse_storage_url",
    "sanitize_file_name",
]
