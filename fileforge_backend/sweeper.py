from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .markers import MarkerStore, artifact_for_marker, is_marker_name
from .scheduler import DeletionScheduler

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deleted_files: int = 0
    removed_dirs: int = 0
    orphan_markers: int = 0
    skipped_dirs: int = 0


class TtlSweeper:
    """Enforces the absolute retention ceiling over the whole output tree.

    Download state is ignored: an artifact older than ``ttl_ms`` goes, whether
    or not a grace timer is pending for it. Age comes from the ``.created``
    marker, falling back to the file's mtime when the marker is missing.
    """

    def __init__(
        self,
        root: Path,
        scheduler: DeletionScheduler,
        markers: MarkerStore,
        ttl_ms: int,
        interval_ms: int,
    ) -> None:
        self.root = Path(root).resolve()
        self.ttl_ms = ttl_ms
        self.interval_ms = interval_ms
        self._scheduler = scheduler
        self._markers = markers

    def sweep(self) -> SweepResult:
        result = SweepResult()
        if not self.root.is_dir():
            return result
        now = self._markers.now()
        self._walk(self.root, now, result)
        if result.deleted_files or result.removed_dirs or result.orphan_markers:
            logger.info(
                "TTL sweep: %d file(s), %d folder(s), %d orphan marker(s) removed",
                result.deleted_files,
                result.removed_dirs,
                result.orphan_markers,
            )
        return result

    async def run_forever(self) -> None:
        # First pass happens during hydration; this loop only handles the repeats.
        while True:
            await asyncio.sleep(max(1.0, self.interval_ms / 1000.0))
            try:
                await asyncio.to_thread(self.sweep)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("TTL sweep failed; retrying next interval")

    def _walk(self, directory: Path, now: int, result: SweepResult) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("TTL: skipping unreadable folder %s: %s", directory, exc)
            result.skipped_dirs += 1
            return

        for entry in entries:
            full = Path(entry.path)
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=False)
            except OSError:
                continue

            if is_dir:
                self._walk(full, now, result)
                self._remove_if_empty(full, result)
            elif is_file:
                if is_marker_name(entry.name):
                    self._drop_if_orphan(full, result)
                    continue
                self._expire_if_old(full, now, result)

    def _expire_if_old(self, path: Path, now: int, result: SweepResult) -> None:
        created_at = self._markers.created_at(path)
        if created_at is None:
            try:
                created_at = int(path.stat().st_mtime * 1000)
            except FileNotFoundError:
                return
            except OSError as exc:
                logger.warning("TTL: cannot stat %s: %s", path, exc)
                return

        age = now - created_at
        if age >= self.ttl_ms:
            logger.info("TTL: deleting %s (age %.0fs)", path, age / 1000)
            if self._scheduler.delete_now(path):
                result.deleted_files += 1
                # delete_now drops the request folder itself once it is empty.
                parent = path.parent
                if parent != self.root and not parent.exists():
                    result.removed_dirs += 1

    def _drop_if_orphan(self, marker: Path, result: SweepResult) -> None:
        if artifact_for_marker(marker).exists():
            return
        try:
            marker.unlink()
            result.orphan_markers += 1
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("TTL: failed to remove orphan marker %s: %s", marker, exc)

    def _remove_if_empty(self, folder: Path, result: SweepResult) -> None:
        try:
            folder.rmdir()
        except OSError:
            # Already gone, or still has content.
            return
        result.removed_dirs += 1
        logger.info("TTL: removed empty folder %s", folder)
