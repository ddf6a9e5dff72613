# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Rendering of a parsed email into a Telegram message.

The message text comes from the configured template::

    From: {from}\\nSubject: {subject}\\n\\n{body}\\n\\n{attachments_details}

``{attachments_details}`` lists every MIME part with what happens to it::

    Attachments:
    - 🔗 logo.png (image/png) 3.2kB, sending...
    - 📎 report.pdf (application/pdf) 12.5MB, discarded

Text longer than ``message_length_to_send_as_file`` code points is sent
with a truncated body, and the complete rendering follows as a
``full_message.txt`` document.

Two units are in play and must not be mixed up: ``visible_length`` counts
code points (what Telegram limits message text by) and ``storage_size``
counts UTF-8 bytes (what upload limits apply to).
"""

import logging
import re
from dataclasses import dataclass

from smtp_to_telegram.attachments import (
    AttachmentType,
    FormattedAttachment,
    classify,
    guess_content_type,
)
from smtp_to_telegram.config import TelegramConfig
from smtp_to_telegram.parsing import EmailPart, ParsedEmail, PartCategory
from smtp_to_telegram.units import human_size


logger = logging.getLogger(__name__)

#: Appended to a truncated body.
BODY_TRUNCATED = "\n\n[truncated]"

FULL_MESSAGE_FILENAME = "full_message.txt"
FULL_MESSAGE_CAPTION = "Full message"

ACTION_SENDING = "sending..."
ACTION_DISCARDED = "discarded"

# Unicode White_Space. Unlike str.isspace() it excludes the \x1c-\x1f
# information separators.
_WHITESPACE = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

_MARKERS = {
    PartCategory.INLINE: "🔗",
    PartCategory.ATTACHMENT: "📎",
    PartCategory.OTHER: "❔",
}

# The literal two-character escape "\n" and the placeholders, matched in a
# single pass so substituted values are never scanned again.
_TEMPLATE_TOKEN = re.compile(
    r"\\n|\{(?:from|to|subject|body|attachments_details)\}"
)


class FormatError(Exception):
    """Raised when a message cannot be rendered for Telegram."""


class MessageTooLargeError(FormatError):
    """Raised when a message is too long to send even as a file."""


class TruncationError(RuntimeError):
    """Raised when truncated text still exceeds the length threshold.

    This is a bug in the truncation arithmetic, not a property of the
    message, so it is not a ``FormatError``.
    """


@dataclass(frozen=True)
class FormattedEmail:
    """A message ready for delivery.

    Attributes:
        from_addr: Envelope sender.
        to: Envelope recipients.
        subject: Decoded subject.
        text: Final message text (template applied, possibly truncated).
        html: HTML body, kept only for filter evaluation.
        attachments: Files to send after the text, in order.
    """

    from_addr: str
    to: str
    subject: str
    text: str
    html: str
    attachments: tuple[FormattedAttachment, ...] = ()


def visible_length(text: str) -> int:
    """Length of text in Unicode code points."""
    return len(text)


def storage_size(text: str) -> int:
    """Size of text in bytes once encoded as UTF-8."""
    return len(text.encode("utf-8"))


def trim(text: str) -> str:
    """Strip leading and trailing Unicode White_Space."""
    return text.strip(_WHITESPACE)


def render_template(
    template: str,
    *,
    from_addr: str,
    to: str,
    subject: str,
    body: str,
    attachments_details: str,
) -> str:
    """Substitute placeholders and ``\\n`` escapes in one literal pass.

    The body is stripped before substitution and the result is stripped
    after it.
    """
    values = {
        "\\n": "\n",
        "{from}": from_addr,
        "{to}": to,
        "{subject}": subject,
        "{body}": trim(body),
        "{attachments_details}": attachments_details,
    }
    return trim(_TEMPLATE_TOKEN.sub(lambda m: values[m.group(0)], template))


def format_message(
    template: str,
    threshold: int,
    *,
    from_addr: str,
    to: str,
    subject: str,
    body: str,
    attachments_details: str,
) -> tuple[str, str]:
    """Render the full message text and, if needed, a truncated one.

    Args:
        template: Message template.
        threshold: Max message length in code points.
        from_addr: Value of ``{from}``.
        to: Value of ``{to}``.
        subject: Value of ``{subject}``.
        body: Value of ``{body}``.
        attachments_details: Value of ``{attachments_details}``.

    Returns:
        ``(full, truncated)``.  ``truncated`` is empty when the full text
        fits within the threshold.

    Raises:
        TruncationError: If the truncated text exceeds the threshold.
    """

    def render(body_value: str) -> str:
        return render_template(
            template,
            from_addr=from_addr,
            to=to,
            subject=subject,
            body=body_value,
            attachments_details=attachments_details,
        )

    full = render(body)
    if visible_length(full) <= threshold:
        return full, ""

    # The leading dot keeps trim() from eating the marker's newlines.
    overhead = visible_length(render(trim(f".{BODY_TRUNCATED}")))
    if overhead >= threshold:
        logger.debug(
            "Template overhead (%d) reaches the threshold (%d), "
            "cutting the full text",
            overhead,
            threshold,
        )
        return full, full[:threshold]

    max_body_length = threshold - overhead
    truncated_body = trim(trim(body)[:max_body_length] + BODY_TRUNCATED)
    truncated = render(truncated_body)
    if visible_length(truncated) > threshold:
        raise TruncationError(
            f"Unexpected length of truncated message: "
            f"{visible_length(truncated)} > {threshold} "
            f"(max body length {max_body_length})"
        )
    return full, truncated


def format_email(parsed: ParsedEmail, config: TelegramConfig) -> FormattedEmail:
    """Render a parsed email for delivery.

    Args:
        parsed: Parsed message.
        config: Template, length threshold and attachment limits.

    Returns:
        The message text with the attachments to send.

    Raises:
        MessageTooLargeError: If the text must be sent as a file but is
            larger than ``forwarded_attachment_max_size``.
        TruncationError: On a truncation arithmetic bug.
    """
    text = parsed.plain_text
    plain_text_bytes = parsed.plain_text.encode("utf-8")
    details: list[str] = []
    attachments: list[FormattedAttachment] = []

    for category in (PartCategory.INLINE, PartCategory.ATTACHMENT):
        for part in parsed.parts_in(category):
            if part.content == plain_text_bytes:
                continue
            if (
                not text
                and part.content_type == "text/plain"
                and not part.filename
            ):
                text = part.content.decode("utf-8", errors="replace")
                continue
            line, attachment = _format_part(part, config)
            details.append(line)
            if attachment is not None:
                attachments.append(attachment)

    for part in parsed.parts_in(PartCategory.OTHER):
        details.append(
            _detail_line(
                part,
                guess_content_type(part.content_type, part.filename),
                ACTION_DISCARDED,
            )
        )

    for error in parsed.errors:
        logger.error("Envelope error: %s", error)

    if not text:
        text = parsed.raw.decode("utf-8", errors="replace")

    attachments_details = ""
    if details:
        attachments_details = "Attachments:\n" + "\n".join(details)

    full, truncated = format_message(
        config.message_template,
        config.message_length_to_send_as_file,
        from_addr=parsed.from_addr,
        to=parsed.to,
        subject=parsed.subject,
        body=text,
        attachments_details=attachments_details,
    )

    if truncated:
        full_size = storage_size(full)
        if full_size > config.forwarded_attachment_max_size:
            raise MessageTooLargeError(
                f"The message length ({full_size}) is larger than "
                f"`forwarded-attachment-max-size` "
                f"({config.forwarded_attachment_max_size})"
            )
        logger.info(
            "Message text truncated to %d chars, sending full text as %s",
            visible_length(truncated),
            FULL_MESSAGE_FILENAME,
        )
        attachments.insert(
            0,
            FormattedAttachment(
                filename=FULL_MESSAGE_FILENAME,
                caption=FULL_MESSAGE_CAPTION,
                content=full.encode("utf-8"),
                file_type=AttachmentType.DOCUMENT,
            ),
        )

    return FormattedEmail(
        from_addr=parsed.from_addr,
        to=parsed.to,
        subject=parsed.subject,
        text=truncated or full,
        html=parsed.html_text,
        attachments=tuple(attachments),
    )


def _format_part(
    part: EmailPart, config: TelegramConfig
) -> tuple[str, FormattedAttachment | None]:
    content_type = guess_content_type(part.content_type, part.filename)
    file_type = classify(
        part.content_type,
        part.filename,
        len(part.content),
        config.forwarded_attachment_max_photo_size,
        config.forwarded_attachment_max_size,
    )
    if file_type is None:
        return _detail_line(part, content_type, ACTION_DISCARDED), None

    attachment = FormattedAttachment(
        filename=part.filename,
        caption=part.filename,
        content=part.content,
        file_type=file_type,
    )
    return _detail_line(part, content_type, ACTION_SENDING), attachment


def _detail_line(part: EmailPart, content_type: str, action: str) -> str:
    return (
        f"- {_MARKERS[part.category]} {part.filename} ({content_type}) "
        f"{human_size(len(part.content))}, {action}"
    )
