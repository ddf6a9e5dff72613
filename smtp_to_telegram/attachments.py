# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Attachment classification for forwarding to Telegram.

Each MIME part is either sent as a photo (JPEG and PNG under the photo
size limit), sent as a document (anything under the document size limit)
or discarded.  Discarded parts are still listed in the message text but
their content is never uploaded.
"""

import mimetypes
import os
from dataclasses import dataclass
from enum import Enum


#: Placeholder type that triggers a guess from the file extension.
OCTET_STREAM = "application/octet-stream"

#: Content types Telegram renders as photos.  GIF would lose animation and
#: BMP is shown as a file anyway, so both are forwarded as documents.
PHOTO_CONTENT_TYPES = frozenset({"image/jpeg", "image/png"})


class AttachmentType(Enum):
    """How an attachment is uploaded to Telegram."""

    DOCUMENT = "document"
    PHOTO = "photo"


@dataclass(frozen=True)
class FormattedAttachment:
    """A file to upload after the text message.

    Attributes:
        filename: File name sent with the upload.
        caption: Caption shown under the file.
        content: Raw file bytes.
        file_type: Upload as a document or as a photo.
    """

    filename: str
    caption: str
    content: bytes
    file_type: AttachmentType


def guess_content_type(content_type: str, filename: str) -> str:
    """Resolve the effective content type of a part.

    The declared type is used as is unless it is the generic
    ``application/octet-stream``, in which case the type is guessed from
    the file extension.  If the extension is unknown the declared type is
    kept.
    """
    if content_type != OCTET_STREAM:
        return content_type
    extension = os.path.splitext(filename)[1]
    if not extension:
        return content_type
    guessed, _ = mimetypes.guess_type(f"attachment{extension}", strict=False)
    return guessed or content_type


def is_photo(content_type: str) -> bool:
    """Return True if Telegram should receive this type as a photo."""
    return content_type in PHOTO_CONTENT_TYPES


def classify(
    content_type: str,
    filename: str,
    content_length: int,
    max_photo_size: int,
    max_document_size: int,
) -> AttachmentType | None:
    """Decide how a part is forwarded.

    A size limit of 0 disables that kind of upload (only empty content
    still fits).  Images over the photo limit fall back to documents.

    Args:
        content_type: Declared content type of the part.
        filename: File name, used to guess the type of octet-stream parts.
        content_length: Size of the part content in bytes.
        max_photo_size: Photo size limit in bytes.
        max_document_size: Document size limit in bytes.

    Returns:
        The upload type, or None if the part is discarded.
    """
    effective_type = guess_content_type(content_type, filename)
    if is_photo(effective_type) and content_length <= max_photo_size:
        return AttachmentType.PHOTO
    if content_length <= max_document_size:
        return AttachmentType.DOCUMENT
    return None
