# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SMTP server and service entry point.

The SMTP protocol runs on an aiosmtpd ``Controller`` (its own thread and
event loop).  Each message received with ``DATA`` is handed to
``EmailRelay.process`` on a worker thread pool, so slow Bot API calls
never block the SMTP event loop.  The SMTP client gets ``250 OK`` once
the message is delivered, or ``554 Error: <reason>`` if it was rejected.

Signals:
- ``SIGINT`` / ``SIGTERM``: stop accepting mail, let in-flight messages
  finish within ``smtp.shutdown_timeout`` and exit
- ``SIGHUP``: reload the filter rules file
"""

import argparse
import asyncio
import concurrent.futures
import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path

from aiosmtpd.controller import Controller
from aiosmtpd.smtp import SMTP, Envelope, Session

from smtp_to_telegram.config import ConfigError, ServerConfig
from smtp_to_telegram.filters import FilterConfigError
from smtp_to_telegram.logging import configure_logging
from smtp_to_telegram.relay import EmailRelay, RejectedError


logger = logging.getLogger(__name__)

RCPT_REJECTED = "550 5.7.1 Recipient domain not allowed"


class RelayHandler:
    """aiosmtpd handler that relays each received message.

    Args:
        relay: Message pipeline.
        allowed_hosts: Accepted recipient domains (lowercase); ``"."``
            accepts any domain.
        submit: Runs a callable on the worker pool and returns its future.
    """

    def __init__(
        self,
        relay: EmailRelay,
        allowed_hosts: tuple[str, ...],
        submit: Callable[..., concurrent.futures.Future],
    ) -> None:
        self.relay = relay
        self.allowed_hosts = allowed_hosts
        self._submit = submit

    def is_recipient_allowed(self, address: str) -> bool:
        """Return True if mail for this address is accepted."""
        if "." in self.allowed_hosts:
            return True
        _, at, domain = address.rpartition("@")
        return bool(at) and domain.lower() in self.allowed_hosts

    async def handle_RCPT(
        self,
        server: SMTP,
        session: Session,
        envelope: Envelope,
        address: str,
        rcpt_options: list[str],
    ) -> str:
        if not self.is_recipient_allowed(address):
            logger.info("Rejecting recipient %s: domain not allowed", address)
            return RCPT_REJECTED
        envelope.rcpt_tos.append(address)
        return "250 OK"

    async def handle_DATA(
        self, server: SMTP, session: Session, envelope: Envelope
    ) -> str:
        raw = envelope.original_content or b""
        mail_from = envelope.mail_from or ""
        rcpt_tos = list(envelope.rcpt_tos)
        logger.debug(
            "Received %d bytes from %s for %s",
            len(raw),
            mail_from,
            ", ".join(rcpt_tos),
        )

        future = self._submit(self.relay.process, raw, mail_from, rcpt_tos)
        try:
            await asyncio.wrap_future(future)
        except RejectedError as e:
            return f"554 Error: {e}"
        except Exception:
            logger.exception(
                "Unexpected error processing email from %s", mail_from
            )
            raise
        return "250 OK"


class RelayServer:
    """SMTP listener with a worker pool for message processing.

    Args:
        config: Server configuration.
        relay: Message pipeline.
    """

    def __init__(self, config: ServerConfig, relay: EmailRelay) -> None:
        self.config = config
        self.relay = relay

        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._controller: Controller | None = None
        self._pending_futures: set[concurrent.futures.Future] = set()
        self._futures_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._stopped = False

    def start(self) -> None:
        """Start the worker pool and the SMTP listener.

        Raises:
            OSError: If the listen address cannot be bound.
        """
        smtp = self.config.smtp
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=smtp.workers, thread_name_prefix="relay"
        )
        handler = RelayHandler(
            self.relay, smtp.allowed_hosts, self._submit_tracked
        )
        controller = Controller(
            handler,
            hostname=smtp.host,
            port=smtp.port,
            server_hostname=smtp.primary_host,
            data_size_limit=smtp.max_envelope_size,
            enable_SMTPUTF8=True,
        )
        try:
            controller.start()
        except BaseException:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise
        self._controller = controller
        logger.info(
            "SMTP server listening on %s as %s (%d worker(s))",
            smtp.listen,
            smtp.primary_host,
            smtp.workers,
        )

    def _submit_tracked(
        self, fn: Callable[..., None], *args: object
    ) -> concurrent.futures.Future:
        """Submit work to the pool and track it until it completes."""
        if self._executor is None:
            raise RuntimeError("Server is not started")
        future = self._executor.submit(fn, *args)
        with self._futures_lock:
            self._pending_futures.add(future)
        future.add_done_callback(self._discard_future)
        return future

    def _discard_future(self, future: concurrent.futures.Future) -> None:
        with self._futures_lock:
            self._pending_futures.discard(future)

    def reload_filters(self) -> bool:
        """Reload the filter rules file.

        Returns:
            True on success.  On failure the previous rules stay active.
        """
        path = self.config.smtp.filter_rules_file
        try:
            self.relay.filter_engine.load(path)
        except FilterConfigError as e:
            logger.error("Filter rules reload failed, keeping old rules: %s", e)
            return False
        logger.info("Filter rules reloaded from %s", path)
        return True

    def request_shutdown(self) -> None:
        """Make ``wait`` return; safe to call from a signal handler."""
        self._shutdown_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested.

        Returns:
            True if shutdown was requested, False on timeout.
        """
        return self._shutdown_event.wait(timeout)

    def stop(self) -> bool:
        """Stop accepting mail and wait for in-flight messages.

        The listening socket is closed first so open sessions can still
        receive the result of their message.  The event loop is stopped
        once the workers are done or the shutdown timeout has passed.

        Returns:
            True if every in-flight message finished within the shutdown
            timeout.
        """
        if self._stopped:
            return True
        self._stopped = True
        self._shutdown_event.set()

        logger.info("Stopping SMTP server...")
        controller = self._controller
        if controller is not None and controller.server is not None:
            controller.loop.call_soon_threadsafe(controller.server.close)

        completed = True
        if self._executor is not None:
            with self._futures_lock:
                futures_copy = set(self._pending_futures)

            timeout = self.config.smtp.shutdown_timeout_seconds
            if futures_copy:
                logger.info(
                    "Waiting for %d in-flight message(s) (timeout: %ds)...",
                    len(futures_copy),
                    timeout,
                )
                _, not_done = concurrent.futures.wait(
                    futures_copy, timeout=timeout
                )
                if not_done:
                    logger.error(
                        "graceful shutdown timed out: %d message(s) still "
                        "in flight",
                        len(not_done),
                    )
                    completed = False

            self._executor.shutdown(wait=False, cancel_futures=True)

        if controller is not None:
            controller.stop()

        logger.info("SMTP server stopped")
        return completed


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=startup error,
        3=shutdown timed out).
    """
    parser = argparse.ArgumentParser(
        description="SMTP to Telegram relay",
        epilog="Receives email over SMTP and forwards it to Telegram chats.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to config.yaml"
            " (default: ~/.config/smtp_to_telegram/config.yaml)"
        ),
    )
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    logger.info("SMTP to Telegram relay starting...")

    try:
        config = ServerConfig.from_yaml(config_path=args.config)
        relay = EmailRelay.from_config(config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    server = RelayServer(config, relay)
    try:
        server.start()
    except Exception as e:
        logger.exception("Failed to start SMTP server: %s", e)
        return 2

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, initiating shutdown...", signum)
        server.request_shutdown()

    def reload_handler(signum: int, frame: object) -> None:
        """Handle reload signal."""
        logger.info("Received signal %d, reloading filter rules...", signum)
        server.reload_filters()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGHUP, reload_handler)

    try:
        server.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

    if not server.stop():
        return 3
    return 0
