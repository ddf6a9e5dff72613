# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Sender blacklist.

A plain text file with one email address or domain per line::

    # known spammers
    spam@example.com
    spammer.net

Matching is case-insensitive.  A domain entry blocks every address at
that domain (the part after the last ``@``); subdomains are not implied.
"""

import logging
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Blacklist:
    """Set of blocked addresses and domains (lowercase)."""

    entries: frozenset[str] = frozenset()

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_lines(cls, lines: list[str]) -> "Blacklist":
        """Build a blacklist, skipping blank lines and ``#`` comments."""
        entries = set()
        for line in lines:
            entry = line.strip().lower()
            if entry and not entry.startswith("#"):
                entries.add(entry)
        return cls(entries=frozenset(entries))

    @classmethod
    def from_file(cls, path: Path | str | None) -> "Blacklist":
        """Load a blacklist file.

        A missing or unreadable file is logged and yields an empty list,
        so a typo in the path does not keep the relay from starting.

        Args:
            path: Blacklist file.  None or empty means no blacklist.
        """
        if not path:
            return cls()
        try:
            lines = Path(path).read_text().splitlines()
        except OSError as e:
            logger.warning("Failed to read blacklist file %s: %s", path, e)
            return cls()

        blacklist = cls.from_lines(lines)
        logger.info(
            "Loaded %d blacklisted emails/domains from %s",
            len(blacklist),
            path,
        )
        return blacklist

    def is_blacklisted(self, address: str) -> bool:
        """Return True if the address or its domain is blacklisted."""
        if not self.entries:
            return False

        address = address.strip().lower()
        if not address:
            return False
        if address in self.entries:
            return True

        _, at, domain = address.rpartition("@")
        return bool(at and domain and domain in self.entries)
