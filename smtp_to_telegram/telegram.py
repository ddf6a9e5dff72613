# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Telegram Bot API client.

Only the three methods the relay needs are implemented: ``sendMessage``
for the text and ``sendDocument`` / ``sendPhoto`` for attachments, which
are sent as replies to the text message.

Requests go through ``httpx``, so ``HTTP_PROXY`` and ``HTTPS_PROXY`` from
the environment are honoured.  The bot token is part of every request URL;
error messages never contain it (see ``sanitize_bot_token``).
"""

import json
import logging
from dataclasses import dataclass

import httpx

from smtp_to_telegram.attachments import AttachmentType, FormattedAttachment


logger = logging.getLogger(__name__)

_TOKEN_PLACEHOLDER = "***"

_UPLOAD_METHODS = {
    AttachmentType.DOCUMENT: ("sendDocument", "document"),
    AttachmentType.PHOTO: ("sendPhoto", "photo"),
}


class DeliveryError(Exception):
    """Raised when a Bot API call fails.

    The message is safe to return to the SMTP client: it contains no
    newlines and no bot token.
    """


@dataclass(frozen=True)
class TelegramMessage:
    """A message accepted by ``sendMessage``."""

    message_id: int


def escape_multiline(data: bytes | str) -> str:
    r"""Escape CR and LF as ``\r`` and ``\n`` so text fits on one line."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return data.replace("\r", "\\r").replace("\n", "\\n")


def sanitize_bot_token(text: str, bot_token: str) -> str:
    """Replace every occurrence of the bot token with ``***``."""
    if not bot_token:
        return text
    return text.replace(bot_token, _TOKEN_PLACEHOLDER)


def method_url(api_prefix: str, bot_token: str, method: str) -> str:
    """Return the URL of a Bot API method."""
    return f"{api_prefix}bot{bot_token}/{method}"


def build_upload_request(
    attachment: FormattedAttachment,
    chat_id: str,
    reply_to_message_id: int,
    *,
    api_prefix: str,
    bot_token: str,
) -> httpx.Request:
    """Build a silent ``multipart/form-data`` upload replying to a message.

    The body is encoded eagerly so that encoding problems surface here
    rather than halfway through sending.

    Args:
        attachment: File to upload.
        chat_id: Destination chat.
        reply_to_message_id: Text message the file replies to.
        api_prefix: Bot API URL prefix ending with ``/``.
        bot_token: Bot token.

    Returns:
        The request, with its body already read.

    Raises:
        DeliveryError: If a field cannot be encoded.
    """
    method, file_field = _UPLOAD_METHODS[attachment.file_type]
    try:
        request = httpx.Request(
            "POST",
            method_url(api_prefix, bot_token, method),
            params={"disable_notification": "true"},
            data={
                "chat_id": chat_id,
                "reply_to_message_id": str(reply_to_message_id),
                "caption": attachment.caption,
            },
            files={
                file_field: (
                    attachment.filename,
                    attachment.content,
                    "application/octet-stream",
                )
            },
        )
        request.read()
    except UnicodeEncodeError as e:
        raise DeliveryError(
            sanitize_bot_token(
                f"Cannot encode {method} request for "
                f"{attachment.filename!r}: {e}",
                bot_token,
            )
        ) from e
    return request


class TelegramClient:
    """Synchronous Bot API client.

    Args:
        api_prefix: API URL prefix ending with ``/``.
        bot_token: Bot token.
        timeout_seconds: Timeout of each request.
    """

    def __init__(
        self, api_prefix: str, bot_token: str, timeout_seconds: float
    ) -> None:
        self._api_prefix = api_prefix
        self._bot_token = bot_token
        self._timeout = timeout_seconds

    def send_message(self, chat_id: str, text: str) -> TelegramMessage:
        """Send a text message with link previews disabled.

        Raises:
            DeliveryError: On network errors, non-200 responses or an
                unexpected response body.
        """
        url = method_url(self._api_prefix, self._bot_token, "sendMessage")
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(
                    url,
                    params={"disable_web_page_preview": "true"},
                    data={"chat_id": chat_id, "text": text},
                )
        except httpx.HTTPError as e:
            raise self._error(f"sendMessage request failed: {e}") from e
        payload = self._check_status(response)

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise self._error(
                f"Error parsing json body of sendMessage: {e}"
            ) from e
        if not isinstance(data, dict) or data.get("ok") is not True:
            raise self._error(f"ok != true: {escape_multiline(payload)}")

        result = data.get("result")
        message_id = None
        if isinstance(result, dict):
            message_id = result.get("message_id")
        if not isinstance(message_id, int) or isinstance(message_id, bool):
            raise self._error(
                f"Error parsing json body of sendMessage: no message_id in "
                f"{escape_multiline(payload)}"
            )
        logger.debug("Sent message %d to chat %s", message_id, chat_id)
        return TelegramMessage(message_id=message_id)

    def send_attachment(
        self,
        attachment: FormattedAttachment,
        chat_id: str,
        reply_to: TelegramMessage,
    ) -> None:
        """Upload a file as a silent reply to a sent text message.

        Raises:
            DeliveryError: If the request cannot be built or the upload
                fails.
        """
        request = build_upload_request(
            attachment,
            chat_id,
            reply_to.message_id,
            api_prefix=self._api_prefix,
            bot_token=self._bot_token,
        )
        method = _UPLOAD_METHODS[attachment.file_type][0]
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.send(request)
        except httpx.HTTPError as e:
            raise self._error(f"{method} request failed: {e}") from e
        self._check_status(response)
        logger.debug(
            "Sent %s %r (%d bytes) to chat %s",
            attachment.file_type.value,
            attachment.filename,
            len(attachment.content),
            chat_id,
        )

    def _check_status(self, response: httpx.Response) -> bytes:
        """Return the response body, or raise on a non-200 status."""
        if response.status_code != 200:
            raise self._error(
                f"Non-200 response from Telegram: ({response.status_code}) "
                f"{escape_multiline(response.content)}"
            )
        return response.content

    def _error(self, message: str) -> DeliveryError:
        return DeliveryError(
            sanitize_bot_token(escape_multiline(message), self._bot_token)
        )
