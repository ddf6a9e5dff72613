# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-message relay pipeline.

Each message received over SMTP goes through these stages::

    blacklist -> parse -> format -> filter -> deliver

Any stage can reject the message.  A rejection is raised as
``RejectedError`` whose message is returned to the SMTP client after
``554 Error:``.  Returning normally means the message was delivered.
"""

import logging

from smtp_to_telegram.blacklist import Blacklist
from smtp_to_telegram.config import ServerConfig
from smtp_to_telegram.delivery import deliver
from smtp_to_telegram.filters import FilterEngine
from smtp_to_telegram.formatting import FormatError, format_email
from smtp_to_telegram.parsing import ParseError, parse_email
from smtp_to_telegram.telegram import (
    DeliveryError,
    TelegramClient,
    escape_multiline,
)


logger = logging.getLogger(__name__)


class RejectedError(Exception):
    """Raised when a message is not relayed.

    The message is a single line safe to send to the SMTP client.
    """

    def __init__(self, message: str) -> None:
        super().__init__(escape_multiline(message))


class BlacklistedError(RejectedError):
    """Raised when the envelope sender is blacklisted."""

    def __init__(self, sender: str) -> None:
        super().__init__(f"sender {sender} is blacklisted")
        self.sender = sender


class FilteredError(RejectedError):
    """Raised when a filter rule matches the message."""

    def __init__(self, rule_name: str) -> None:
        super().__init__(f"email rejected by filter rule '{rule_name}'")
        self.rule_name = rule_name


class EmailRelay:
    """Relays received messages to Telegram.

    Instances are shared by all SMTP worker threads.  The only state that
    changes after construction is the rule set inside ``filter_engine``,
    which is swapped atomically on reload.

    Args:
        config: Server configuration.
        filter_engine: Active filter rules.
        blacklist: Blocked senders.
        client: Bot API client.
    """

    def __init__(
        self,
        config: ServerConfig,
        filter_engine: FilterEngine,
        blacklist: Blacklist,
        client: TelegramClient,
    ) -> None:
        self.config = config
        self.filter_engine = filter_engine
        self.blacklist = blacklist
        self.client = client

    @classmethod
    def from_config(cls, config: ServerConfig) -> "EmailRelay":
        """Build a relay with rules, blacklist and client from config.

        Raises:
            FilterConfigError: If the filter rules file is invalid.
        """
        filter_engine = FilterEngine()
        filter_engine.load(config.smtp.filter_rules_file)
        return cls(
            config=config,
            filter_engine=filter_engine,
            blacklist=Blacklist.from_file(config.smtp.blacklist_file),
            client=TelegramClient(
                api_prefix=config.telegram.api_prefix,
                bot_token=config.telegram.bot_token,
                timeout_seconds=config.telegram.api_timeout_seconds,
            ),
        )

    def process(self, raw: bytes, mail_from: str, rcpt_tos: list[str]) -> None:
        """Relay one message.

        Args:
            raw: Message bytes from ``DATA``.
            mail_from: Envelope sender.
            rcpt_tos: Envelope recipients.

        Raises:
            RejectedError: If the message is not relayed.
            TruncationError: On a truncation arithmetic bug.
        """
        if self.blacklist.is_blacklisted(mail_from):
            logger.info(
                "Rejecting email from blacklisted sender: %s", mail_from
            )
            raise BlacklistedError(mail_from)

        try:
            parsed = parse_email(raw, mail_from, rcpt_tos)
        except ParseError as e:
            logger.warning(
                "Rejecting unparsable email from %s: %s", mail_from, e
            )
            raise RejectedError(
                f"Error occurred during email parsing: {e}"
            ) from e

        try:
            message = format_email(parsed, self.config.telegram)
        except FormatError as e:
            logger.warning("Rejecting email from %s: %s", mail_from, e)
            raise RejectedError(str(e)) from e

        matched, rule_name = self.filter_engine.evaluate(
            message.from_addr,
            message.to,
            message.subject,
            message.text,
            message.html,
        )
        if matched:
            logger.info(
                "Rejecting email from %s (subject %r): matched filter rule %r",
                mail_from,
                message.subject,
                rule_name,
            )
            raise FilteredError(rule_name)

        try:
            deliver(message, self.config.telegram, self.client)
        except DeliveryError as e:
            logger.warning("Delivery of email from %s failed: %s", mail_from, e)
            raise RejectedError(str(e)) from e

        logger.info(
            "Relayed email from %s to %s (subject %r)",
            mail_from,
            message.to,
            message.subject,
        )
