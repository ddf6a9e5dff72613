# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""MIME parsing of received email.

Turns the raw ``DATA`` bytes of an SMTP transaction into a ``ParsedEmail``:
decoded subject, plain text and HTML bodies, and the remaining MIME leaf
parts sorted into inline parts, attachments and parts that fit neither.
Sender and recipients come from the SMTP envelope, not from the headers.
"""

import logging
from dataclasses import dataclass
from email import message_from_bytes
from email.header import decode_header
from email.message import Message
from email.policy import Compat32
from email.utils import collapse_rfc2231_value
from enum import Enum

from smtp_to_telegram.html_to_text import html_to_text


logger = logging.getLogger(__name__)


class _Utf8HeaderPolicy(Compat32):
    """compat32 that reads raw 8-bit header bytes as UTF-8 (RFC 6532).

    Plain compat32 wraps such headers in an ``unknown-8bit`` ``Header``
    whose text is replacement characters, which also garbles file name
    parameters.
    """

    def header_fetch_parse(self, name, value):
        if isinstance(value, str) and not _is_encodable(value):
            value = value.encode("utf-8", "surrogateescape").decode(
                "utf-8", errors="replace"
            )
        return super().header_fetch_parse(name, value)


_POLICY = _Utf8HeaderPolicy()


class ParseError(Exception):
    """Raised when a message cannot be parsed at all."""


class PartCategory(Enum):
    """Where a MIME part was placed by the parser."""

    INLINE = "inline"
    ATTACHMENT = "attachment"
    OTHER = "other"


@dataclass(frozen=True)
class EmailPart:
    """A MIME leaf part other than the message bodies.

    Attributes:
        category: Inline part, attachment or unplaced part.
        filename: Decoded file name, empty if the part has none.
        content_type: Media type without parameters, e.g. ``image/png``.
        content: Transfer-decoded content.
    """

    category: PartCategory
    filename: str
    content_type: str
    content: bytes


@dataclass(frozen=True)
class ParsedEmail:
    """A received message after MIME parsing.

    Attributes:
        from_addr: Envelope sender (``MAIL FROM``).
        to: Envelope recipients joined with ``", "``.
        subject: Decoded ``Subject`` header.
        plain_text: Plain text body.  Derived from the HTML body when the
            message has no ``text/plain`` body.
        html_text: HTML body, empty if there is none.
        parts: Inline parts, attachments and other parts in MIME order.
        raw: The message as received.
        errors: Parser defects found in the message.
    """

    from_addr: str
    to: str
    subject: str
    plain_text: str
    html_text: str
    parts: tuple[EmailPart, ...]
    raw: bytes
    errors: tuple[str, ...] = ()

    def parts_in(self, category: PartCategory) -> list[EmailPart]:
        """Return the parts of one category in MIME order."""
        return [p for p in self.parts if p.category == category]


def decode_header_value(raw: str) -> str:
    """Decode an RFC 2047 encoded header value into a Unicode string.

    Encoded words in unknown charsets are decoded as UTF-8 with
    replacement characters.
    """
    if not raw:
        return ""

    decoded_parts: list[str] = []
    for data, charset in decode_header(raw):
        if isinstance(data, bytes):
            if charset is None and not raw.isascii():
                # decode_header returns unencoded words as raw-unicode-escape.
                decoded_parts.append(data.decode("raw-unicode-escape"))
            else:
                decoded_parts.append(_decode_bytes(data, charset))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def decode_subject(message: Message) -> str:
    """Decode the Subject header from an email message.

    Args:
        message: Parsed email message.

    Returns:
        Decoded subject string, or empty string if not present.
    """
    return decode_header_value(str(message.get("Subject", "")))


def parse_email(raw: bytes, mail_from: str, rcpt_tos: list[str]) -> ParsedEmail:
    """Parse raw message bytes received over SMTP.

    The first ``text/plain`` and ``text/html`` leaves that are not
    attachments become the bodies; further body-like leaves of the same
    type are appended to them.  Every other leaf becomes an ``EmailPart``:

    - ``Content-Disposition: attachment`` makes an attachment
    - ``Content-Disposition: inline`` or a ``Content-ID`` makes an inline
      part
    - any other part with a file name is an attachment
    - everything else is an "other" part

    Args:
        raw: Message bytes from the ``DATA`` command.
        mail_from: Envelope sender.
        rcpt_tos: Envelope recipients.

    Returns:
        Parsed message.

    Raises:
        ParseError: If the message is empty or cannot be parsed.
    """
    if not raw or not raw.strip():
        raise ParseError("empty message")

    try:
        message = message_from_bytes(raw, policy=_POLICY)
    except (TypeError, ValueError, LookupError) as e:
        raise ParseError(f"cannot parse message: {e}") from e

    plain_chunks: list[str] = []
    html_chunks: list[str] = []
    parts: list[EmailPart] = []

    for leaf in _iter_leaves(message):
        content_type = leaf.get_content_type()
        filename = _part_filename(leaf)
        disposition = leaf.get_content_disposition()

        if (
            content_type in ("text/plain", "text/html")
            and not filename
            and disposition != "attachment"
        ):
            text = _decode_text(leaf)
            if content_type == "text/plain":
                plain_chunks.append(text)
            else:
                html_chunks.append(text)
            continue

        if disposition == "attachment":
            category = PartCategory.ATTACHMENT
        elif disposition == "inline" or leaf.get("Content-ID"):
            category = PartCategory.INLINE
        elif filename:
            category = PartCategory.ATTACHMENT
        else:
            category = PartCategory.OTHER

        content = _part_content(leaf)
        logger.debug(
            "MIME part: %s %r (%s) %d bytes",
            category.value,
            filename,
            content_type,
            len(content),
        )
        parts.append(
            EmailPart(
                category=category,
                filename=filename,
                content_type=content_type,
                content=content,
            )
        )

    html_text = "\n".join(html_chunks)
    plain_text = "\n".join(plain_chunks)
    if not plain_text and html_text:
        plain_text = html_to_text(html_text)
        logger.debug(
            "No text/plain body, derived %d chars from HTML", len(plain_text)
        )

    errors = tuple(
        f"{type(defect).__name__}: {defect}"
        for part in message.walk()
        for defect in part.defects
    )

    return ParsedEmail(
        from_addr=mail_from,
        to=", ".join(rcpt_tos),
        subject=decode_subject(message),
        plain_text=plain_text,
        html_text=html_text,
        parts=tuple(parts),
        raw=raw,
        errors=errors,
    )


def _iter_leaves(part: Message):
    """Yield non-multipart parts depth first.

    An attached ``message/rfc822`` is a single leaf; its own parts are
    not descended into.
    """
    if part.get_content_maintype() == "multipart" and part.is_multipart():
        for child in part.get_payload():
            yield from _iter_leaves(child)
    else:
        yield part


def _part_filename(part: Message) -> str:
    """Return the decoded file name of a part.

    Falls back to the ``name`` parameter of ``Content-Type`` used by
    older mailers.
    """
    filename = part.get_filename()
    if filename is None:
        name = part.get_param("name")
        if name is None:
            return ""
        filename = collapse_rfc2231_value(name)  # type: ignore[arg-type]
    return decode_header_value(str(filename))


def _part_content(part: Message) -> bytes:
    """Return the transfer-decoded content of a leaf part."""
    if part.is_multipart():
        # message/rfc822: forward the embedded message as is.
        return b"".join(
            m.as_bytes() for m in part.get_payload() if isinstance(m, Message)
        )
    payload = part.get_payload(decode=True)
    if not isinstance(payload, bytes):
        return b""
    # SMTP puts CRLF on the wire; text sent unencoded had LF originally.
    if (
        part.get_content_maintype() == "text"
        and part.get("Content-Transfer-Encoding", "").lower() != "base64"
    ):
        payload = payload.replace(b"\r\n", b"\n")
    return payload


def _decode_text(part: Message) -> str:
    return _decode_bytes(_part_content(part), part.get_content_charset())


def _decode_bytes(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        logger.debug("Unknown charset %r, decoding as UTF-8", charset)
        return data.decode("utf-8", errors="replace")


def _is_encodable(value: str) -> bool:
    """Return False if ``value`` carries surrogate-escaped raw bytes."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True
