from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .markers import DOWNLOADED_SUFFIX, MarkerStore, artifact_for_marker
from .scheduler import DeletionScheduler
from .sweeper import SweepResult, TtlSweeper

logger = logging.getLogger(__name__)


@dataclass
class HydrationResult:
    resumed: int = 0
    expired: int = 0
    orphans: int = 0
    skipped_dirs: int = 0
    sweep: SweepResult = field(default_factory=SweepResult)


class Hydrator:
    """Rebuilds pending grace-period timers from ``.downloaded`` markers on startup.

    Timers die with the process, so after a restart every downloaded artifact is
    either deleted right away (its grace period ran out while we were down) or
    re-armed for whatever is left of it. The markers themselves are not touched,
    so a second restart still measures from the original download.
    """

    def __init__(
        self,
        root: Path,
        scheduler: DeletionScheduler,
        sweeper: TtlSweeper,
        markers: MarkerStore,
        grace_ms: int,
    ) -> None:
        self.root = Path(root).resolve()
        self.grace_ms = grace_ms
        self._scheduler = scheduler
        self._sweeper = sweeper
        self._markers = markers

    def hydrate(self) -> HydrationResult:
        logger.info("Hydrating deletion scheduler from %s", self.root)
        result = HydrationResult()
        if not self.root.is_dir():
            return result

        self._walk(self.root, result)
        result.sweep = self._sweeper.sweep()

        logger.info(
            "Hydration done: %d resumed, %d expired, %d orphan marker(s)",
            result.resumed,
            result.expired,
            result.orphans,
        )
        return result

    def _walk(self, directory: Path, result: HydrationResult) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Hydration: skipping unreadable folder %s: %s", directory, exc)
            result.skipped_dirs += 1
            return

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    self._walk(Path(entry.path), result)
                elif entry.is_file(follow_symlinks=False) and entry.name.endswith(DOWNLOADED_SUFFIX):
                    self._restore(Path(entry.path), result)
            except OSError as exc:
                logger.warning("Hydration: skipping %s: %s", entry.path, exc)

    def _restore(self, marker: Path, result: HydrationResult) -> None:
        artifact = artifact_for_marker(marker)
        if not artifact.exists():
            try:
                marker.unlink()
            except FileNotFoundError:
                pass
            result.orphans += 1
            logger.info("Hydration: dropped orphan marker %s", marker)
            return

        downloaded_at = self._markers.read_timestamp(marker)
        if downloaded_at is None:
            # Vanished or unreadable between listing and reading; the TTL sweep covers it.
            return

        remaining = self.grace_ms - (self._markers.now() - downloaded_at)
        if remaining <= 0:
            self._scheduler.delete_now(artifact)
            result.expired += 1
        else:
            self._scheduler.arm(artifact, remaining, record_download=False)
            result.resumed += 1
