"""Timestamp markers stored next to each artifact.

An artifact ``report.pdf`` may carry two sibling files:

- ``report.pdf.created``    epoch milliseconds of the first write
- ``report.pdf.downloaded`` epoch milliseconds of the last completed download

Markers are the only persisted lifecycle state; everything the scheduler keeps
in memory is rebuilt from them after a restart.
"""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CREATED_SUFFIX = ".created"
DOWNLOADED_SUFFIX = ".downloaded"
MARKER_SUFFIXES = (CREATED_SUFFIX, DOWNLOADED_SUFFIX)

# Content that is not a decimal number reads as the epoch, i.e. "expired".
UNPARSEABLE_TIMESTAMP = 0

_TIMESTAMP_RE = re.compile(r"^\s*(\d+)")


def now_ms() -> int:
    return int(time.time() * 1000)


def is_marker_name(name: str) -> bool:
    return name.endswith(MARKER_SUFFIXES)


def created_marker(path: Path) -> Path:
    path = Path(path)
    return path.with_name(path.name + CREATED_SUFFIX)


def downloaded_marker(path: Path) -> Path:
    path = Path(path)
    return path.with_name(path.name + DOWNLOADED_SUFFIX)


def marker_paths(path: Path) -> tuple[Path, Path]:
    return created_marker(path), downloaded_marker(path)


def artifact_for_marker(marker_path: Path) -> Path:
    """Strip the marker suffix: ``a.pdf.downloaded`` -> ``a.pdf``."""
    marker_path = Path(marker_path)
    for suffix in MARKER_SUFFIXES:
        if marker_path.name.endswith(suffix):
            return marker_path.with_name(marker_path.name[: -len(suffix)])
    raise ValueError(f"Not a marker file: {marker_path}")


def parse_timestamp(text: str) -> int:
    match = _TIMESTAMP_RE.match(text or "")
    if not match:
        return UNPARSEABLE_TIMESTAMP
    return int(match.group(1))


class MarkerStore:
    """Reads and writes ``.created`` / ``.downloaded`` markers.

    Writes are best-effort: a failed write is logged and the caller carries on,
    since a missing created marker falls back to the file's mtime and a missing
    downloaded marker only costs the grace timer on restart.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock

    def now(self) -> int:
        return self._clock()

    def record_created(self, path: Path) -> bool:
        ok = self._write(created_marker(path), self._clock())
        if ok:
            logger.info("Created marker written for %s", Path(path).name)
        return ok

    def record_downloaded(self, path: Path, timestamp_ms: Optional[int] = None) -> bool:
        ts = self._clock() if timestamp_ms is None else timestamp_ms
        return self._write(downloaded_marker(path), ts)

    def created_at(self, path: Path) -> Optional[int]:
        return self.read_timestamp(created_marker(path))

    def downloaded_at(self, path: Path) -> Optional[int]:
        return self.read_timestamp(downloaded_marker(path))

    def read_timestamp(self, marker_path: Path) -> Optional[int]:
        """Return the marker's timestamp, or None if it is missing or unreadable."""
        try:
            text = Path(marker_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read marker %s: %s", marker_path, exc)
            return None
        ts = parse_timestamp(text)
        if ts == UNPARSEABLE_TIMESTAMP and text.strip() != str(UNPARSEABLE_TIMESTAMP):
            logger.warning("Unparseable marker %s, treating as expired", marker_path)
        return ts

    def _write(self, marker_path: Path, timestamp_ms: int) -> bool:
        try:
            marker_path.write_text(str(int(timestamp_ms)), encoding="utf-8")
            return True
        except OSError as exc:
            logger.warning("Failed to write marker %s: %s", marker_path, exc)
            return False
