# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for the relay with bot token redaction.

The Telegram bot token is part of every Bot API URL, so any log line that
echoes a request URL or an HTTP client error would leak it.  The token is
registered with ``SecretFilter`` when the configuration is built and is
replaced with ``[REDACTED]`` in every record passing through the root
handler.

Usage:
    # In the entry point
    from smtp_to_telegram.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Sending message to chat %s", chat_id)
"""

import logging
import re
from typing import ClassVar


#: Default record format for the stream handler.
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Secrets are process-wide (class level): registering the bot token once
    covers every handler this filter is attached to.

    Example:
        SecretFilter.register_secret("123456:ABC-DEF")
        handler.addFilter(SecretFilter())
        logger.info("POST %s", "https://api.telegram.org/bot123456:ABC-DEF/")
        # Output: "POST https://api.telegram.org/bot[REDACTED]/"
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact registered secrets from the record message and args.

        Args:
            record: The log record to filter.

        Returns:
            Always True (records are rewritten, never dropped).
        """
        pattern = self._pattern
        if pattern is None:
            return True
        record.msg = pattern.sub("[REDACTED]", str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: _redact(pattern, value)
                    for key, value in record.args.items()
                }
            else:
                record.args = tuple(
                    _redact(pattern, arg) for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty strings are ignored.
        """
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all registered secrets. Used by tests."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        # Longest first so a secret containing another is redacted whole.
        if cls._secrets:
            ordered = sorted(cls._secrets, key=len, reverse=True)
            cls._pattern = re.compile("|".join(re.escape(s) for s in ordered))
        else:
            cls._pattern = None


def _redact(pattern: re.Pattern[str], value: object) -> object:
    if isinstance(value, str):
        return pattern.sub("[REDACTED]", value)
    # Exceptions and URL objects are rendered lazily; redact their text now.
    text = str(value)
    if pattern.search(text):
        return pattern.sub("[REDACTED]", text)
    return value


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure the root logger for the relay.

    Replaces any existing root handlers with a single stream handler.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses DEFAULT_FORMAT.
        add_secret_filter: Whether to attach SecretFilter to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)

    # aiosmtpd logs every SMTP command and httpx every request at INFO;
    # keep them for --debug only.
    if level > logging.DEBUG:
        logging.getLogger("mail.log").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
