# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the SMTP to Telegram relay.

Server configuration is loaded from a YAML file.  The default location
follows the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/smtp_to_telegram/config.yaml``
    (typically ``~/.config/smtp_to_telegram/config.yaml``)

``!env`` tags resolve values from environment variables, so secrets such as
the bot token can stay out of the file::

    telegram:
      chat_ids: !env ST_TELEGRAM_CHAT_IDS
      bot_token: !env ST_TELEGRAM_BOT_TOKEN

The file has three sections: ``smtp`` (listener settings), ``filters``
(paths of the filter rules file and the sender blacklist) and ``telegram``
(Bot API access, message template and attachment limits).  Byte sizes
accept human-readable values such as ``10m`` or ``512k``.
"""

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, overload

import yaml
from platformdirs import user_config_path

from smtp_to_telegram.dotenv_loader import load_dotenv_once
from smtp_to_telegram.logging import SecretFilter
from smtp_to_telegram.units import parse_size


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "smtp_to_telegram"

#: Default message template.  ``\n`` is a literal backslash-n escape that
#: is expanded when the template is rendered.
DEFAULT_MESSAGE_TEMPLATE = (
    "From: {from}\\nTo: {to}\\nSubject: {subject}\\n\\n{body}"
    "\\n\\n{attachments_details}"
)

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/smtp_to_telegram/config.yaml``.
    """
    return user_config_path(_APP_NAME) / "config.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve[T](value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve[T](
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve[T](value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``,
            ``Path``).
        default: Default when value is absent or empty.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent or empty.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None or resolved == "":
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _resolve_size(value: object, *, name: str, default: int) -> int:
    """Resolve a byte size written as ``10m``, ``512k`` or a plain number."""
    if isinstance(value, int) and not isinstance(value, bool):
        raw: str | int | None = value
    else:
        raw = _raw_resolve(value)
    if raw is None or raw == "":
        return default
    try:
        return parse_size(raw)
    except ValueError as e:
        raise ConfigError(f"Config '{name}': {e}") from e


def _resolve_string_list(value: object, *, required: str = "") -> list[str]:
    """Resolve a list of strings from a YAML list or a comma-separated string.

    Each element may be an ``!env`` tag; a single ``!env`` tag may also
    hold a comma-separated list.

    Args:
        value: Raw value from YAML.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent or empty.

    Returns:
        List of stripped, non-empty strings.
    """
    if isinstance(value, list):
        items = [_raw_resolve(item) for item in value]
    else:
        resolved = _raw_resolve(value)
        items = resolved.split(",") if resolved is not None else []

    result = [item.strip() for item in items if item and item.strip()]

    if required and not result:
        if isinstance(value, _EnvVar):
            raise ConfigError(
                f"Required config '{required}': environment variable "
                f"'{value.var_name}' is not set"
            )
        raise ConfigError(f"Required config '{required}' is missing")

    return result


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


# ---------------------------------------------------------------------------
# Configuration objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpConfig:
    """SMTP listener settings.

    Attributes:
        listen: ``host:port`` to listen on.
        primary_host: Host name announced in the SMTP greeting.
        allowed_hosts: Recipient domains accepted in ``RCPT TO``.  A
            single ``"."`` accepts any domain.
        max_envelope_size: Max size of an incoming message in bytes.
        workers: Number of threads processing received messages.
        shutdown_timeout_seconds: Grace period for in-flight messages on
            shutdown.
        filter_rules_file: YAML file with ``filter_rules``.  None disables
            rule filtering.
        blacklist_file: Text file with blacklisted senders or domains, one
            per line.  None disables the blacklist.
    """

    listen: str = "127.0.0.1:2525"
    primary_host: str = field(default_factory=socket.gethostname)
    allowed_hosts: tuple[str, ...] = (".",)
    max_envelope_size: int = 50_000_000
    workers: int = 3
    shutdown_timeout_seconds: int = 60
    filter_rules_file: Path | None = None
    blacklist_file: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        host, sep, port = self.listen.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ConfigError(
                f"SMTP listen address must be host:port: {self.listen!r}"
            )
        if self.workers < 1:
            raise ConfigError(f"SMTP workers must be >= 1: {self.workers}")
        if self.shutdown_timeout_seconds < 1:
            raise ConfigError(
                f"Shutdown timeout must be >= 1s: "
                f"{self.shutdown_timeout_seconds}"
            )
        if self.max_envelope_size < 1:
            raise ConfigError(
                f"Max envelope size must be >= 1 byte: "
                f"{self.max_envelope_size}"
            )

    @property
    def host(self) -> str:
        """Host part of ``listen`` (brackets stripped for IPv6)."""
        return self.listen.rpartition(":")[0].strip("[]")

    @property
    def port(self) -> int:
        """Port part of ``listen``."""
        return int(self.listen.rpartition(":")[2])

    def accepts_any_host(self) -> bool:
        """Return True if every recipient domain is accepted."""
        return "." in self.allowed_hosts


@dataclass(frozen=True)
class TelegramConfig:
    """Bot API access, message formatting and attachment limits.

    Attributes:
        chat_ids: Comma-separated destination chat IDs.
        bot_token: Bot token (auto-redacted in logs).
        api_prefix: Bot API URL prefix, ending with ``/``.
        api_timeout_seconds: Timeout of every Bot API request.
        message_template: Template with ``{from}``, ``{to}``,
            ``{subject}``, ``{body}``, ``{attachments_details}`` and
            literal ``\\n`` escapes.
        forwarded_attachment_max_size: Max size of a forwarded document
            in bytes; 0 disables document forwarding.
        forwarded_attachment_max_photo_size: Max size of a forwarded photo
            in bytes; 0 disables photo forwarding.
        forwarded_attachment_respect_errors: Reject the whole email when
            an attachment could not be forwarded.
        message_length_to_send_as_file: Messages longer than this many
            characters are sent truncated, followed by the full text as
            ``full_message.txt``.
    """

    chat_ids: str
    bot_token: str
    api_prefix: str = "https://api.telegram.org/"
    api_timeout_seconds: float = 30.0
    message_template: str = DEFAULT_MESSAGE_TEMPLATE
    forwarded_attachment_max_size: int = 10_000_000
    forwarded_attachment_max_photo_size: int = 10_000_000
    forwarded_attachment_respect_errors: bool = False
    message_length_to_send_as_file: int = 4095

    def __post_init__(self) -> None:
        """Validate configuration and register the bot token as a secret.

        Raises:
            ConfigError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.bot_token)

        if not self.chat_id_list:
            raise ConfigError("At least one Telegram chat ID is required")
        if self.api_timeout_seconds <= 0:
            raise ConfigError(
                f"Telegram API timeout must be > 0: {self.api_timeout_seconds}"
            )
        if self.forwarded_attachment_max_size < 0:
            raise ConfigError("forwarded_attachment_max_size must be >= 0")
        if self.forwarded_attachment_max_photo_size < 0:
            raise ConfigError(
                "forwarded_attachment_max_photo_size must be >= 0"
            )
        if self.message_length_to_send_as_file < 0:
            raise ConfigError("message_length_to_send_as_file must be >= 0")

    @property
    def chat_id_list(self) -> list[str]:
        """Destination chat IDs in configured order."""
        return [c.strip() for c in self.chat_ids.split(",") if c.strip()]


@dataclass(frozen=True)
class ServerConfig:
    """Complete relay configuration.

    Attributes:
        smtp: SMTP listener and filter file settings.
        telegram: Bot API and formatting settings.
    """

    smtp: SmtpConfig
    telegram: TelegramConfig

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ServerConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  ``.env`` files are loaded first.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/smtp_to_telegram/config.yaml`` (XDG).

        Returns:
            ServerConfig instance.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.info(
            "Config loaded from %s: listen=%s, %d chat(s)",
            config_path,
            config.smtp.listen,
            len(config.telegram.chat_id_list),
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "ServerConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        smtp = _section(raw, "smtp")
        filters = _section(raw, "filters")
        telegram = _section(raw, "telegram")

        allowed_hosts = _resolve_string_list(smtp.get("allowed_hosts"))

        smtp_kwargs: dict[str, Any] = {}
        primary_host = _resolve(smtp.get("primary_host"), str)
        if primary_host:
            smtp_kwargs["primary_host"] = primary_host

        smtp_config = SmtpConfig(
            listen=_resolve(smtp.get("listen"), str, default="127.0.0.1:2525"),
            allowed_hosts=tuple(h.lower() for h in allowed_hosts) or (".",),
            max_envelope_size=_resolve_size(
                smtp.get("max_envelope_size"),
                name="smtp.max_envelope_size",
                default=50_000_000,
            ),
            workers=_resolve(smtp.get("workers"), int, default=3),
            shutdown_timeout_seconds=_resolve(
                smtp.get("shutdown_timeout"), int, default=60
            ),
            filter_rules_file=_resolve(filters.get("rules_file"), Path),
            blacklist_file=_resolve(filters.get("blacklist_file"), Path),
            **smtp_kwargs,
        )

        telegram_config = TelegramConfig(
            chat_ids=",".join(
                _resolve_string_list(
                    telegram.get("chat_ids"), required="telegram.chat_ids"
                )
            ),
            bot_token=_resolve(
                telegram.get("bot_token"), str, required="telegram.bot_token"
            ),
            api_prefix=_resolve(
                telegram.get("api_prefix"),
                str,
                default="https://api.telegram.org/",
            ),
            api_timeout_seconds=_resolve(
                telegram.get("api_timeout_seconds"), float, default=30.0
            ),
            message_template=_resolve(
                telegram.get("message_template"),
                str,
                default=DEFAULT_MESSAGE_TEMPLATE,
            ),
            forwarded_attachment_max_size=_resolve_size(
                telegram.get("forwarded_attachment_max_size"),
                name="telegram.forwarded_attachment_max_size",
                default=10_000_000,
            ),
            forwarded_attachment_max_photo_size=_resolve_size(
                telegram.get("forwarded_attachment_max_photo_size"),
                name="telegram.forwarded_attachment_max_photo_size",
                default=10_000_000,
            ),
            forwarded_attachment_respect_errors=_resolve(
                telegram.get("forwarded_attachment_respect_errors"),
                bool,
                default=False,
            ),
            message_length_to_send_as_file=_resolve(
                telegram.get("message_length_to_send_as_file"),
                int,
                default=4095,
            ),
        )

        return cls(smtp=smtp_config, telegram=telegram_config)
