# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading for ``!env`` config values.

The bot token and chat IDs are usually kept out of the YAML file and
referenced with ``!env ST_TELEGRAM_BOT_TOKEN``.  Those variables may come
from the process environment or from ``.env`` files, read in this order:

1. ``~/.config/smtp_to_telegram/.env`` (XDG config directory)
2. ``.env`` in the current working directory

Variables already present in the environment are never overwritten, so
the XDG file wins over the working-directory file and the real
environment wins over both.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once() -> None:
    """Load .env files on first call; later calls do nothing."""
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    from smtp_to_telegram.config import get_dotenv_path

    for env_file in (get_dotenv_path(), Path.cwd() / ".env"):
        if env_file.exists():
            load_dotenv(env_file)
            logger.debug("Loaded .env from %s", env_file)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the loaded flag. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
