# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for message rendering and truncation."""

import logging
from collections.abc import Callable
from unittest.mock import patch

import pytest

from smtp_to_telegram.attachments import AttachmentType, FormattedAttachment
from smtp_to_telegram.config import TelegramConfig
from smtp_to_telegram.formatting import (
    BODY_TRUNCATED,
    FULL_MESSAGE_CAPTION,
    FULL_MESSAGE_FILENAME,
    FormatError,
    FormattedEmail,
    MessageTooLargeError,
    TruncationError,
    format_email,
    format_message,
    render_template,
    storage_size,
    trim,
    visible_length,
)
from smtp_to_telegram.parsing import (
    EmailPart,
    ParsedEmail,
    PartCategory,
    parse_email,
)


TEMPLATE = (
    "From: {from}\\nTo: {to}\\nSubject: {subject}\\n\\n{body}"
    "\\n\\n{attachments_details}"
)

HEADER = "From: from@test\nTo: to@test\nSubject: Test subj\n\n"

OCTET = "application/octet-stream"


def _render(raw: bytes, config: TelegramConfig) -> FormattedEmail:
    return format_email(parse_email(raw, "from@test", ["to@test"]), config)


def _parsed(**overrides) -> ParsedEmail:
    kwargs = {
        "from_addr": "from@test",
        "to": "to@test",
        "subject": "",
        "plain_text": "",
        "html_text": "",
        "parts": (),
        "raw": b"raw message",
    }
    kwargs.update(overrides)
    return ParsedEmail(**kwargs)


def _multipart(body: str, *attachments: tuple[str, str, str]) -> bytes:
    """Build a multipart message; attachments are (name, type, base64)."""
    lines = [
        "Subject: Test subj",
        'Content-Type: multipart/mixed; boundary="b"',
        "",
        "--b",
        "Content-Type: text/plain; charset=UTF-8",
        "",
        body,
    ]
    for name, content_type, data in attachments:
        lines += [
            "--b",
            f'Content-Type: {content_type}; name="{name}"',
            f'Content-Disposition: attachment; filename="{name}"',
            "Content-Transfer-Encoding: base64",
            "",
            data,
        ]
    lines += ["--b--", ""]
    return "\r\n".join(lines).encode("utf-8")


@pytest.fixture
def config(
    make_telegram_config: Callable[..., TelegramConfig],
) -> Callable[..., TelegramConfig]:
    """Telegram config with attachment forwarding disabled by default."""

    def _make(**overrides) -> TelegramConfig:
        kwargs = {
            "message_template": TEMPLATE,
            "forwarded_attachment_max_size": 0,
            "forwarded_attachment_max_photo_size": 0,
        }
        kwargs.update(overrides)
        return make_telegram_config(**kwargs)

    return _make


class TestUnits:
    """Code points and bytes are counted separately."""

    def test_ascii(self) -> None:
        assert visible_length("abc") == 3
        assert storage_size("abc") == 3

    def test_multibyte(self) -> None:
        assert visible_length("é😀") == 2
        assert storage_size("é😀") == 6


class TestRenderTemplate:
    """Tests for render_template."""

    def _render(self, template: str, **values: str) -> str:
        defaults = {
            "from_addr": "from@test",
            "to": "to@test",
            "subject": "",
            "body": "",
            "attachments_details": "",
        }
        defaults.update(values)
        return render_template(template, **defaults)

    def test_newline_escape(self) -> None:
        assert self._render("a\\nb") == "a\nb"

    def test_placeholders(self) -> None:
        assert (
            self._render("{from} -> {to}: {subject}", subject="Hi")
            == "from@test -> to@test: Hi"
        )

    def test_values_not_rescanned(self) -> None:
        """Substituted values keep placeholders and escapes literally."""
        assert (
            self._render("{subject}|{body}", subject="{body}", body="a\\nb")
            == "{body}|a\\nb"
        )

    def test_unknown_placeholder_kept(self) -> None:
        assert self._render("{date} {body}", body="x") == "{date} x"

    def test_body_and_result_stripped(self) -> None:
        assert self._render("\\n[{body}]\\n\\n", body="  hi \n") == "[hi]"

    def test_separators_not_stripped(self) -> None:
        """Only Unicode White_Space is stripped from the body."""
        assert self._render("{body}", body="\x1chi\x1f") == "\x1chi\x1f"


class TestTrim:
    """Tests for trim."""

    def test_unicode_spaces(self) -> None:
        assert trim("\u3000\xa0\t hi \u2028\x85") == "hi"

    def test_information_separators_kept(self) -> None:
        assert trim("\x1c\x1d hi \x1e\x1f") == "\x1c\x1d hi \x1e\x1f"


class TestFormatMessage:
    """Tests for format_message."""

    def _format(self, template: str, threshold: int, body: str):
        return format_message(
            template,
            threshold,
            from_addr="from@test",
            to="to@test",
            subject="Test subj",
            body=body,
            attachments_details="",
        )

    def test_fits(self) -> None:
        full, truncated = self._format("{body}", 5, "hello")
        assert full == "hello"
        assert truncated == ""

    def test_one_over(self) -> None:
        """A body just over the limit gets the marker."""
        body = "x" * 30
        full, truncated = self._format("{body}", 29, body)
        assert full == body
        assert truncated == "x" * 15 + BODY_TRUNCATED
        assert visible_length(truncated) == 28

    def test_multibyte_not_split(self) -> None:
        """Truncation counts code points."""
        full, truncated = self._format("{body}", 20, "😀" * 100)
        assert full == "😀" * 100
        assert truncated == "😀" * 6 + BODY_TRUNCATED
        assert visible_length(truncated) == 19
        assert storage_size(truncated) == 6 * 4 + 13

    def test_overhead_reaches_threshold(self) -> None:
        """Without room for a body the full text is cut."""
        full, truncated = self._format(TEMPLATE, 12, "Hello_" * 60)
        assert full == HEADER + "Hello_" * 60
        assert truncated == "From: from@t"

    @pytest.mark.parametrize("threshold", [50, 62, 63, 100, 400])
    def test_never_exceeds_threshold(self, threshold: int) -> None:
        _, truncated = self._format(TEMPLATE, threshold, "Hé_😀" * 120)
        assert visible_length(truncated) <= threshold

    def test_truncation_error(self) -> None:
        """A truncated rendering over the threshold is an internal error."""
        with patch(
            "smtp_to_telegram.formatting.render_template",
            side_effect=["x" * 50, "y" * 5, "z" * 30],
        ):
            with pytest.raises(TruncationError, match="30 > 20"):
                self._format("{body}", 20, "x" * 50)

    def test_truncation_error_is_not_format_error(self) -> None:
        assert not issubclass(TruncationError, FormatError)


class TestFormatEmail:
    """Tests for format_email."""

    def test_simple(self, config) -> None:
        result = _render(b"hi", config())
        assert result.text == "From: from@test\nTo: to@test\nSubject: \n\nhi"
        assert result.attachments == ()
        assert result.from_addr == "from@test"
        assert result.to == "to@test"

    def test_custom_template(self, config) -> None:
        result = _render(
            b"hi", config(message_template="Subject: {subject}\\n\\n{body}")
        )
        assert result.text == "Subject: \n\nhi"

    def test_encoded_content(self, config, encoded_message: bytes) -> None:
        result = _render(encoded_message, config())
        assert (
            result.text == "From: from@test\nTo: to@test\nSubject: 😎\n\n💩"
        )

    def test_latin1(self, config, latin1_message: bytes) -> None:
        result = _render(latin1_message, config())
        assert result.text == (
            "From: from@test\nTo: to@test\n"
            "Subject: Anna-Véronique\n\nAnna-Véronique"
        )

    def test_attachment_details_discarded(
        self, config, mixed_message: bytes
    ) -> None:
        """Zero limits list every part as discarded and upload nothing."""
        result = _render(mixed_message, config())
        assert result.text == HEADER + (
            "Text body\n"
            "\n"
            "Attachments:\n"
            "- 🔗 inline.jpg (image/jpeg) 3B, discarded\n"
            "- 📎 hey.txt (text/plain) 2B, discarded\n"
            "- 📎 attachment.jpg (image/jpeg) 3B, discarded"
        )
        assert result.attachments == ()
        assert result.html == "<p>HTML body</p>"

    def test_attachments_sending(self, config, mixed_message: bytes) -> None:
        result = _render(
            mixed_message,
            config(
                forwarded_attachment_max_size=1024,
                forwarded_attachment_max_photo_size=1024,
            ),
        )
        assert result.text == HEADER + (
            "Text body\n"
            "\n"
            "Attachments:\n"
            "- 🔗 inline.jpg (image/jpeg) 3B, sending...\n"
            "- 📎 hey.txt (text/plain) 2B, sending...\n"
            "- 📎 attachment.jpg (image/jpeg) 3B, sending..."
        )
        assert result.attachments == (
            FormattedAttachment(
                "inline.jpg", "inline.jpg", b"JPG", AttachmentType.PHOTO
            ),
            FormattedAttachment(
                "hey.txt", "hey.txt", b"hi", AttachmentType.DOCUMENT
            ),
            FormattedAttachment(
                "attachment.jpg",
                "attachment.jpg",
                b"JPG",
                AttachmentType.PHOTO,
            ),
        )

    def test_photo_over_limit_sent_as_document(self, config) -> None:
        raw = _multipart("Text body", ("a.jpg", "image/jpeg", "SlBH"))
        result = _render(
            raw,
            config(
                forwarded_attachment_max_size=1024,
                forwarded_attachment_max_photo_size=2,
            ),
        )
        (attachment,) = result.attachments
        assert attachment.file_type == AttachmentType.DOCUMENT

    def test_aggressively_truncated(self, config) -> None:
        raw = b"Subject: Test subj\r\n\r\n" + b"Hello_" * 60
        result = _render(
            raw,
            config(
                message_length_to_send_as_file=12,
                forwarded_attachment_max_size=1024,
            ),
        )
        assert result.text == "From: from@t"
        assert result.attachments == (
            FormattedAttachment(
                FULL_MESSAGE_FILENAME,
                FULL_MESSAGE_CAPTION,
                (HEADER + "Hello_" * 60).encode("utf-8"),
                AttachmentType.DOCUMENT,
            ),
        )

    def test_properly_truncated(self, config) -> None:
        raw = b"Subject: Test subj\r\n\r\n" + b"Hello_" * 60
        result = _render(
            raw,
            config(
                message_length_to_send_as_file=100,
                forwarded_attachment_max_size=1024,
            ),
        )
        assert result.text == HEADER + (
            "Hello_Hello_Hello_Hello_Hello_Hello_He\n\n[truncated]"
        )
        (full_message,) = result.attachments
        assert full_message.filename == FULL_MESSAGE_FILENAME
        assert full_message.content == (HEADER + "Hello_" * 60).encode()

    def test_truncated_with_attachments(self, config) -> None:
        """The full message goes ahead of the real attachments."""
        raw = _multipart(
            "Hel lo" * 60, ("attachment.jpg", "image/jpeg", "SlBH")
        )
        result = _render(
            raw,
            config(
                message_length_to_send_as_file=150,
                forwarded_attachment_max_size=1024,
                forwarded_attachment_max_photo_size=1024,
            ),
        )
        details = (
            "Attachments:\n"
            "- 📎 attachment.jpg (image/jpeg) 3B, sending..."
        )
        assert result.text == HEADER + (
            "Hel loHel loHel loHel loHel\n\n[truncated]\n\n" + details
        )
        assert result.attachments == (
            FormattedAttachment(
                FULL_MESSAGE_FILENAME,
                FULL_MESSAGE_CAPTION,
                (HEADER + "Hel lo" * 60 + "\n\n" + details).encode("utf-8"),
                AttachmentType.DOCUMENT,
            ),
            FormattedAttachment(
                "attachment.jpg",
                "attachment.jpg",
                b"JPG",
                AttachmentType.PHOTO,
            ),
        )

    def test_too_large_for_file(self, config) -> None:
        """Text over both the threshold and the file limit is rejected."""
        raw = b"Subject: Test subj\r\n\r\n" + b"Hello_" * 60
        with pytest.raises(
            MessageTooLargeError,
            match=(
                r"The message length \(408\) is larger than "
                r"`forwarded-attachment-max-size` \(100\)"
            ),
        ):
            _render(
                raw,
                config(
                    message_length_to_send_as_file=12,
                    forwarded_attachment_max_size=100,
                ),
            )

    def test_size_limit_counts_bytes(self, config) -> None:
        """The file limit applies to the UTF-8 size of the full text."""
        parsed = _parsed(plain_text="é" * 30)
        with pytest.raises(MessageTooLargeError, match=r"\(60\)"):
            format_email(
                parsed,
                config(
                    message_template="{body}",
                    message_length_to_send_as_file=20,
                    forwarded_attachment_max_size=59,
                ),
            )

    def test_mutt_message(self, config, mutt_message: bytes) -> None:
        result = _render(
            mutt_message,
            config(
                forwarded_attachment_max_size=1024,
                forwarded_attachment_max_photo_size=1024,
            ),
        )
        assert result.text == (
            "From: from@test\nTo: to@test\nSubject: test\n\n"
            "Sun 29 Aug 2021 09:30:10 PM MSK\n\n"
            "Attachments:\n"
            "- 📎 tt (text/plain) 5B, sending..."
        )
        assert result.attachments == (
            FormattedAttachment(
                "tt", "tt", b"hoho\n", AttachmentType.DOCUMENT
            ),
        )

    def test_mailx_message(self, config, mailx_message: bytes) -> None:
        """A nameless text attachment becomes the body."""
        result = _render(
            mailx_message,
            config(
                forwarded_attachment_max_size=1024,
                forwarded_attachment_max_photo_size=1024,
            ),
        )
        assert result.text == (
            "From: from@test\nTo: to@test\nSubject: test\n\n"
            "Sun 29 Aug 2021 09:30:23 PM MSK\n\n"
            "Attachments:\n"
            "- 📎 ./tt (application/octet-stream) 5B, sending..."
        )
        assert result.attachments == (
            FormattedAttachment(
                "./tt", "./tt", b"hoho\n", AttachmentType.DOCUMENT
            ),
        )

    def test_part_equal_to_body_skipped(self, config) -> None:
        parsed = _parsed(
            plain_text="same",
            parts=(
                EmailPart(PartCategory.INLINE, "a.txt", "text/plain", b"same"),
            ),
        )
        result = format_email(parsed, config(message_template="{body}"))
        assert result.text == "same"
        assert result.attachments == ()

    def test_only_first_text_part_becomes_body(self, config) -> None:
        parsed = _parsed(
            parts=(
                EmailPart(PartCategory.ATTACHMENT, "", "text/plain", b"one"),
                EmailPart(PartCategory.ATTACHMENT, "", "text/plain", b"two"),
            ),
        )
        result = format_email(
            parsed,
            config(
                message_template="{body}\\n{attachments_details}",
                forwarded_attachment_max_size=1024,
            ),
        )
        assert result.text == (
            "one\nAttachments:\n- 📎  (text/plain) 3B, sending..."
        )

    def test_other_parts_always_discarded(self, config) -> None:
        parsed = _parsed(
            plain_text="body",
            parts=(
                EmailPart(PartCategory.OTHER, "x.bin", OCTET, b"1234"),
            ),
        )
        result = format_email(
            parsed,
            config(
                message_template="{attachments_details}",
                forwarded_attachment_max_size=1024,
            ),
        )
        assert result.text == (
            "Attachments:\n- ❔ x.bin (application/octet-stream) 4B, discarded"
        )
        assert result.attachments == ()

    def test_octet_stream_type_guessed(self, config) -> None:
        parsed = _parsed(
            plain_text="body",
            parts=(
                EmailPart(PartCategory.ATTACHMENT, "pic.png", OCTET, b"PNG"),
            ),
        )
        result = format_email(
            parsed,
            config(
                message_template="{attachments_details}",
                forwarded_attachment_max_photo_size=1024,
            ),
        )
        assert result.text == (
            "Attachments:\n- 📎 pic.png (image/png) 3B, sending..."
        )
        (attachment,) = result.attachments
        assert attachment.file_type == AttachmentType.PHOTO

    def test_raw_fallback(self, config) -> None:
        """Without any text the raw message is the body."""
        result = format_email(
            _parsed(raw=b"raw \xff message"),
            config(message_template="{body}"),
        )
        assert result.text == "raw � message"

    def test_envelope_errors_logged(
        self, config, caplog: pytest.LogCaptureFixture
    ) -> None:
        parsed = _parsed(plain_text="body", errors=("SomeDefect: broken",))
        with caplog.at_level(logging.ERROR):
            format_email(parsed, config())
        assert "Envelope error: SomeDefect: broken" in caplog.text

