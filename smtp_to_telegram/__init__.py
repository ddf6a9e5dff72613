# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SMTP to Telegram relay.

Receives email over SMTP and forwards it to Telegram chats:
- Filter rules and a sender blacklist reject unwanted mail (filters,
  blacklist)
- Messages are rendered with a template and truncated to Telegram's
  message length, with the full text attached as a file (formatting)
- Attachments are forwarded as photos or documents (attachments)
- Delivery uses the Telegram Bot API (telegram, delivery)
"""

from smtp_to_telegram.config import (
    ConfigError,
    ServerConfig,
    SmtpConfig,
    TelegramConfig,
)
from smtp_to_telegram.filters import FilterConfigError, FilterEngine
from smtp_to_telegram.relay import (
    BlacklistedError,
    EmailRelay,
    FilteredError,
    RejectedError,
)


__all__ = [
    "BlacklistedError",
    "ConfigError",
    "EmailRelay",
    "FilterConfigError",
    "FilterEngine",
    "FilteredError",
    "RejectedError",
    "ServerConfig",
    "SmtpConfig",
    "TelegramConfig",
]
