# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Fixtures for end-to-end tests.

Each test gets a real SMTP listener on a free port and a fake Bot API, so
mail sent with ``smtplib`` travels the whole relay path.
"""

from collections.abc import Callable, Generator
from typing import Any

import pytest
from fake_bot_api import FakeBotApi, find_free_port

from smtp_to_telegram.config import ServerConfig, SmtpConfig, TelegramConfig
from smtp_to_telegram.relay import EmailRelay
from smtp_to_telegram.server import RelayServer


def pytest_collection_modifyitems(items):
    """Mark every test in this directory as an integration test."""
    for item in items:
        if "tests/integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def bot_api() -> Generator[FakeBotApi]:
    api = FakeBotApi()
    api.start()
    try:
        yield api
    finally:
        api.stop()


@pytest.fixture
def start_relay(
    bot_api: FakeBotApi,
) -> Generator[Callable[..., RelayServer]]:
    """Factory starting a relay wired to the fake Bot API.

    Accepts ``smtp`` and ``telegram`` dicts of config overrides; the
    listen address and ``api_prefix`` are filled in.
    """
    servers: list[RelayServer] = []

    def _start(
        smtp: dict[str, Any] | None = None,
        telegram: dict[str, Any] | None = None,
    ) -> RelayServer:
        smtp_kwargs: dict[str, Any] = {
            "listen": f"127.0.0.1:{find_free_port()}",
            "primary_host": "relay.test",
            "shutdown_timeout_seconds": 5,
        }
        smtp_kwargs.update(smtp or {})
        telegram_kwargs: dict[str, Any] = {
            "chat_ids": "42,142",
            "bot_token": "42:ZZZ",
            "api_prefix": bot_api.api_prefix,
            "api_timeout_seconds": 5,
            "forwarded_attachment_max_size": 0,
            "forwarded_attachment_max_photo_size": 0,
            "forwarded_attachment_respect_errors": True,
        }
        telegram_kwargs.update(telegram or {})
        config = ServerConfig(
            smtp=SmtpConfig(**smtp_kwargs),
            telegram=TelegramConfig(**telegram_kwargs),
        )

        server = RelayServer(config, EmailRelay.from_config(config))
        server.start()
        servers.append(server)
        return server

    try:
        yield _start
    finally:
        for server in servers:
            server.stop()
