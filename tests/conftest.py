# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test modules."""

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from smtp_to_telegram.config import (
    ServerConfig,
    SmtpConfig,
    TelegramConfig,
)
from smtp_to_telegram.dotenv_loader import reset_dotenv_state
from smtp_to_telegram.logging import SecretFilter


#: Bot token used throughout the tests.
BOT_TOKEN = "123456:ABC-test-token"


@pytest.fixture(autouse=True)
def _reset_global_state() -> Iterator[None]:
    """Reset process-wide secret and dotenv state around each test."""
    SecretFilter.clear_secrets()
    reset_dotenv_state()
    yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()


@pytest.fixture
def make_telegram_config() -> Callable[..., TelegramConfig]:
    """Factory for TelegramConfig with test defaults.

    Keyword arguments override individual fields.
    """

    def _make(**overrides: Any) -> TelegramConfig:
        kwargs: dict[str, Any] = {
            "chat_ids": "42",
            "bot_token": BOT_TOKEN,
            "api_prefix": "http://telegram.test/",
        }
        kwargs.update(overrides)
        return TelegramConfig(**kwargs)

    return _make


@pytest.fixture
def make_server_config(
    make_telegram_config: Callable[..., TelegramConfig],
) -> Callable[..., ServerConfig]:
    """Factory for ServerConfig.

    Accepts ``smtp`` and ``telegram`` dicts of field overrides.
    """

    def _make(
        smtp: dict[str, Any] | None = None,
        telegram: dict[str, Any] | None = None,
    ) -> ServerConfig:
        smtp_kwargs: dict[str, Any] = {"primary_host": "relay.test"}
        smtp_kwargs.update(smtp or {})
        return ServerConfig(
            smtp=SmtpConfig(**smtp_kwargs),
            telegram=make_telegram_config(**(telegram or {})),
        )

    return _make


def _crlf(*lines: str) -> bytes:
    return "\r\n".join(lines).encode("utf-8")


@pytest.fixture
def mixed_message() -> bytes:
    """Text and HTML bodies with an inline image and two attachments."""
    return _crlf(
        "From: from@test",
        "To: to@test",
        "Subject: Test subj",
        "MIME-Version: 1.0",
        'Content-Type: multipart/mixed; boundary="mixed"',
        "",
        "--mixed",
        'Content-Type: multipart/related; boundary="related"',
        "",
        "--related",
        'Content-Type: multipart/alternative; boundary="alt"',
        "",
        "--alt",
        "Content-Type: text/plain; charset=UTF-8",
        "",
        "Text body",
        "--alt",
        "Content-Type: text/html; charset=UTF-8",
        "",
        "<p>HTML body</p>",
        "--alt--",
        "",
        "--related",
        'Content-Type: image/jpeg; name="inline.jpg"',
        'Content-Disposition: inline; filename="inline.jpg"',
        "Content-ID: <inline.jpg>",
        "Content-Transfer-Encoding: base64",
        "",
        "SlBH",
        "--related--",
        "",
        "--mixed",
        'Content-Type: text/plain; charset=UTF-8; name="hey.txt"',
        'Content-Disposition: attachment; filename="hey.txt"',
        "Content-Transfer-Encoding: base64",
        "",
        "aGk=",
        "--mixed",
        'Content-Type: image/jpeg; name="attachment.jpg"',
        'Content-Disposition: attachment; filename="attachment.jpg"',
        "Content-Transfer-Encoding: base64",
        "",
        "SlBH",
        "--mixed--",
        "",
    )


@pytest.fixture
def mutt_message() -> bytes:
    """Plain text body with a text attachment, as sent by mutt."""
    return _crlf(
        "Received: from USER by HOST with local (Exim 4.92)",
        "\t(envelope-from <from@test>)",
        "\tid 111111-000000-OS",
        "\tfor to@test; Sun, 29 Aug 2021 21:30:10 +0300",
        "Date: Sun, 29 Aug 2021 21:30:10 +0300",
        "From: from@test",
        "To: to@test",
        "Subject: test",
        "Message-ID: <20210829183010.11111111@HOST>",
        "MIME-Version: 1.0",
        'Content-Type: multipart/mixed; boundary="TB36FDmn/VVEgNH/"',
        "Content-Disposition: inline",
        "User-Agent: Mutt/1.10.1 (2018-07-13)",
        "",
        "",
        "--TB36FDmn/VVEgNH/",
        "Content-Type: text/plain; charset=us-ascii",
        "Content-Disposition: inline",
        "",
        "Sun 29 Aug 2021 09:30:10 PM MSK",
        "",
        "--TB36FDmn/VVEgNH/",
        "Content-Type: text/plain; charset=us-ascii",
        "Content-Disposition: attachment; filename=tt",
        "",
        "hoho",
        "",
        "--TB36FDmn/VVEgNH/--",
        "",
    )


@pytest.fixture
def mailx_message() -> bytes:
    """Body sent as a nameless attachment, as GNU mailutils does."""
    return _crlf(
        "Received: from USER by HOST with local (Exim 4.92)",
        "\t(envelope-from <from@test>)",
        "\tid 111111-000000-Bj",
        "\tfor to@test; Sun, 29 Aug 2021 21:30:23 +0300",
        "MIME-Version: 1.0",
        "Content-Type: multipart/mixed; "
        'boundary="1493203554-1630261823=:345292"',
        "Subject: test",
        "To: to@test",
        "X-Mailer: mail (GNU Mailutils 3.5)",
        "Message-Id: <2222222-000000-Bj@HOST>",
        "From: from@test",
        "Date: Sun, 29 Aug 2021 21:30:23 +0300",
        "",
        "--1493203554-1630261823=:345292",
        "Content-Type: text/plain; charset=UTF-8",
        "Content-Disposition: attachment",
        "Content-Transfer-Encoding: 8bit",
        "Content-ID: <20210829213023.345292.1@HOST>",
        "",
        "Sun 29 Aug 2021 09:30:23 PM MSK",
        "",
        "--1493203554-1630261823=:345292",
        'Content-Type: application/octet-stream; name="tt"',
        'Content-Disposition: attachment; filename="./tt"',
        "Content-Transfer-Encoding: base64",
        "Content-ID: <20210829213023.345292.1@HOST>",
        "",
        "aG9obwo=",
        "--1493203554-1630261823=:345292--",
        "",
    )


@pytest.fixture
def latin1_message() -> bytes:
    """ISO-8859-1 subject and base64 body."""
    return _crlf(
        "Date: Sat, 27 Nov 2021 17:31:21 +0100",
        "From: qBittorrent_notification@example.com",
        "Subject: =?ISO-8859-1?Q?Anna-V=E9ronique?=",
        "To: to@test",
        "MIME-Version: 1.0",
        "Content-Type: text/plain; charset=ISO-8859-1",
        "Content-Transfer-Encoding: base64",
        "",
        "QW5uYS1W6XJvbmlxdWUK",
        "",
    )


@pytest.fixture
def encoded_message() -> bytes:
    """UTF-8 encoded-word subject and quoted-printable body."""
    return _crlf(
        "Subject: =?UTF-8?B?8J+Yjg==?=",
        "Content-Type: text/plain; charset=UTF-8",
        "Content-Transfer-Encoding: quoted-printable",
        "",
        "=F0=9F=92=A9",
        "",
    )
