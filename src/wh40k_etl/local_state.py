"""wh40k_etl.local_state

Persist the marker of the most recently applied dataset to a small text
file outside the database, so it survives the schema being dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from wh40k_etl.normalize import format_marker, parse_marker

log = logging.getLogger(__name__)

LOCAL_MARKER_FILE = "last_update.local"


class LocalState:
    """Read/write the local marker file (a single ISO-8601 timestamp)."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def in_dir(cls, data_dir: Path) -> LocalState:
        return cls(data_dir / LOCAL_MARKER_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> datetime | None:
        """Return the stored marker, or None when absent or unreadable."""
        if not self._path.exists():
            return None
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            log.warning("Failed to read local update marker %s: %s", self._path, exc)
            return None
        marker = parse_marker(raw)
        if marker is None:
            log.warning("Ignoring unparseable local update marker %r", raw.strip())
        return marker

    def write(self, marker: datetime) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(format_marker(marker), encoding="utf-8")
        log.info("Local update marker set to %s", format_marker(marker))
