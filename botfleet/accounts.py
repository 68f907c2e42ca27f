"""Persistent list of authenticated account names.

One name per line. Read once at startup to decide which bots to spawn;
appended to by an auth-flow bot after its first successful login.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class AccountStore:
    """Newline-delimited account file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def ensure_exists(self) -> None:
        """Create an empty account file if none exists."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n", encoding="utf-8")
        logger.info("Created empty account file %s", self.path)

    def read(self) -> list[str]:
        """Return stored account names, skipping blank lines.

        A missing or unreadable file yields an empty list.
        """
        try:
            data = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Error reading account file %s: %s", self.path, e)
            return []
        return [line.strip() for line in data.splitlines() if line.strip()]

    def append(self, name: str) -> None:
        """Record a newly authenticated account name.

        A hand-edited file whose last line lacks a newline gets one first,
        so the new name never joins the previous one.
        """
        prefix = ""
        if self.path.exists():
            with open(self.path, "rb") as f:
                f.seek(0, 2)
                if f.tell() > 0:
                    f.seek(-1, 2)
                    if f.read(1) != b"\n":
                        prefix = "\n"
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(prefix + name + "\n")
        logger.info("Saved account %s to %s", name, self.path)
