from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .markers import MarkerStore, marker_paths

logger = logging.getLogger(__name__)

IMMEDIATE_DELETE = 0

TimerFactory = Callable[..., Any]


@dataclass
class _Pending:
    token: object
    timer: Any
    delay_ms: int


def _normalize(path: Path | str) -> Path:
    return Path(path).resolve()


class DeletionScheduler:
    """Deferred, path-keyed artifact deletion.

    Holds at most one timer per path. Re-arming a path replaces its timer and
    the replaced timer becomes a no-op even if it is already firing. The lock
    only guards the timer map; file removal happens outside it.

    ``timer_factory`` must accept ``(interval_seconds, function, args=...)``
    and return an object with ``start()``/``cancel()`` and a ``daemon``
    attribute, like ``threading.Timer``.
    """

    def __init__(
        self,
        markers: MarkerStore,
        root: Optional[Path] = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._markers = markers
        self._root = _normalize(root) if root is not None else None
        self._timer_factory = timer_factory
        self._timers: dict[Path, _Pending] = {}
        self._lock = threading.Lock()

    def arm(self, path: Path | str, delay_ms: int, record_download: bool = True) -> None:
        """Schedule ``delete_now(path)`` in ``delay_ms``, superseding any earlier timer.

        ``record_download`` refreshes the ``.downloaded`` marker to "now". Hydration
        passes False so a restart does not push the original download time forward.
        """
        path = _normalize(path)
        delay_ms = max(IMMEDIATE_DELETE, int(delay_ms))

        self.cancel(path)
        if record_download:
            self._markers.record_downloaded(path)

        token = object()
        timer = self._timer_factory(delay_ms / 1000.0, self._fire, args=(path, token))
        timer.daemon = True

        with self._lock:
            previous = self._timers.get(path)
            self._timers[path] = _Pending(token=token, timer=timer, delay_ms=delay_ms)
        if previous is not None:
            # Another arm() for the same path slipped in between cancel() and here.
            previous.timer.cancel()
        timer.start()
        logger.debug("Deletion of %s armed in %sms", path, delay_ms)

    def cancel(self, path: Path | str) -> bool:
        path = _normalize(path)
        with self._lock:
            pending = self._timers.pop(path, None)
        if pending is None:
            return False
        pending.timer.cancel()
        return True

    def delete_now(self, path: Path | str) -> bool:
        """Remove the artifact, its markers and its folder if that is now empty.

        Idempotent: anything already gone counts as done. Never raises.
        Returns True if the artifact file itself was removed by this call.
        """
        path = _normalize(path)
        self.cancel(path)
        return self._remove(path)

    def is_pending(self, path: Path | str) -> bool:
        with self._lock:
            return _normalize(path) in self._timers

    def pending(self) -> dict[Path, int]:
        """Snapshot of armed paths and the delay (ms) each was armed with."""
        with self._lock:
            return {p: entry.delay_ms for p, entry in self._timers.items()}

    def shutdown(self) -> None:
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for entry in entries:
            entry.timer.cancel()
        if entries:
            logger.info("Cancelled %d pending deletion(s) on shutdown", len(entries))

    def _fire(self, path: Path, token: object) -> None:
        with self._lock:
            current = self._timers.get(path)
            if current is None or current.token is not token:
                # Superseded or cancelled after the timer had already started firing.
                return
            del self._timers[path]
        self._remove(path)

    def _remove(self, path: Path) -> bool:
        removed = False
        try:
            path.unlink()
            removed = True
            logger.info("Deleted file %s", path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path, exc)

        for marker in marker_paths(path):
            try:
                marker.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.error("Failed to delete marker %s: %s", marker, exc)

        self._remove_empty_parent(path.parent)
        return removed

    def _remove_empty_parent(self, folder: Path) -> None:
        if self._root is not None and folder == self._root:
            return
        try:
            folder.rmdir()
        except FileNotFoundError:
            return
        except OSError:
            # Not empty (possibly refilled concurrently) or not removable; leave it.
            return
        logger.info("Removed empty request folder %s", folder)
