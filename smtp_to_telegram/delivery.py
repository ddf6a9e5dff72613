# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Delivery of a formatted email to every configured chat.

Chats are served one after another.  In each chat the text goes first and
the attachments follow as replies to it.  A failed text send rejects the
whole email and later chats are not tried.  A failed attachment rejects
the email only when ``forwarded_attachment_respect_errors`` is set;
otherwise it is logged and the remaining attachments are still sent.
"""

import logging

from smtp_to_telegram.config import TelegramConfig
from smtp_to_telegram.formatting import FormattedEmail
from smtp_to_telegram.telegram import DeliveryError, TelegramClient


logger = logging.getLogger(__name__)


def deliver(
    message: FormattedEmail,
    config: TelegramConfig,
    client: TelegramClient,
) -> None:
    """Send a formatted email to all chats in ``config.chat_ids``.

    Raises:
        DeliveryError: If a text message could not be sent, or an
            attachment could not be sent and errors are respected.
    """
    for chat_id in config.chat_id_list:
        sent = client.send_message(chat_id, message.text)

        for attachment in message.attachments:
            try:
                client.send_attachment(attachment, chat_id, sent)
            except DeliveryError as e:
                if config.forwarded_attachment_respect_errors:
                    raise
                logger.error("Ignoring attachment sending error: %s", e)

        logger.info(
            "Delivered message from %s to chat %s (%d attachment(s))",
            message.from_addr,
            chat_id,
            len(message.attachments),
        )
