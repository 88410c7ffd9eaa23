from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .hydrator import HydrationResult, Hydrator
from .markers import MarkerStore, is_marker_name, marker_paths, now_ms
from .scheduler import IMMEDIATE_DELETE, DeletionScheduler, TimerFactory
from .security import is_downloadable_name, normalize_request_id, safe_join
from .sweeper import TtlSweeper
from .workspace import RequestWorkspace, WorkspaceProvisioner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactInfo:
    name: str
    size: int
    expires_in_ms: Optional[int]


class ArtifactLifecycle:
    """Everything the request layer needs to manage generated files.

    Build one per process and share it; it owns the only in-memory state (the
    scheduler's timer map) and the background sweep task.
    """

    def __init__(
        self,
        upload_root: Path,
        output_root: Path,
        grace_ms: int,
        ttl_ms: int,
        sweep_interval_ms: int,
        clock: Callable[[], int] = now_ms,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.grace_ms = grace_ms
        self.markers = MarkerStore(clock=clock)
        self.provisioner = WorkspaceProvisioner(upload_root, output_root)
        self.output_root = self.provisioner.output_root
        self.scheduler = DeletionScheduler(self.markers, root=self.output_root, timer_factory=timer_factory)
        self.sweeper = TtlSweeper(self.output_root, self.scheduler, self.markers, ttl_ms, sweep_interval_ms)
        self.hydrator = Hydrator(self.output_root, self.scheduler, self.sweeper, self.markers, grace_ms)
        self._sweep_task: Optional[asyncio.Task] = None

    # Startup / shutdown

    async def startup(self) -> HydrationResult:
        self.provisioner.upload_root.mkdir(parents=True, exist_ok=True)
        self.output_root.mkdir(parents=True, exist_ok=True)
        result = await asyncio.to_thread(self.hydrator.hydrate)
        self._sweep_task = asyncio.create_task(self.sweeper.run_forever())
        return result

    async def shutdown(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.scheduler.shutdown()

    # Workspaces

    def provision_workspace(self) -> RequestWorkspace:
        return self.provisioner.provision()

    def release_workspace(self, ws: RequestWorkspace) -> None:
        self.provisioner.release(ws)

    # Artifacts

    def record_created(self, path: Path) -> None:
        self.markers.record_created(path)

    def write_output(self, output_dir: Path, name: str, data: bytes) -> Path:
        """Write a new artifact and its created marker; returns the path actually used.

        Existing artifacts are never overwritten: if ``name`` is taken the file
        is written as ``<stem>-1<suffix>``, ``<stem>-2<suffix>`` and so on.
        """
        folder = Path(output_dir)
        # The sweep removes empty request folders, possibly mid-request.
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / name
        stem, suffix = path.stem, path.suffix
        n = 0
        while True:
            # A leftover marker still belongs to someone else's artifact.
            if not any(m.exists() for m in marker_paths(path)):
                try:
                    with open(path, "xb") as fh:
                        fh.write(data)
                except FileExistsError:
                    pass
                else:
                    self.record_created(path)
                    return path
            n += 1
            path = folder / f"{stem}-{n}{suffix}"

    def arm_deletion_after_download(self, path: Path) -> None:
        self.scheduler.arm(path, self.grace_ms)
        logger.info("Scheduled deletion of %s in %ss", path, self.grace_ms // 1000)

    def invalidate(self, path: Path) -> None:
        """Drop a source artifact that a derived artifact has replaced."""
        self.scheduler.arm(path, IMMEDIATE_DELETE)

    def output_dir_for(self, request_id: str) -> Path:
        return safe_join(self.output_root, normalize_request_id(request_id))

    def resolve_output(self, request_id: str, filename: str) -> Path:
        """Locate a downloadable artifact; ValueError/FileNotFoundError if there is none."""
        if not is_downloadable_name(filename):
            raise ValueError("Invalid filename")
        path = safe_join(self.output_dir_for(request_id), filename)
        if not path.is_file():
            raise FileNotFoundError(filename)
        return path

    def list_artifacts(self, request_id: str) -> list[Path]:
        folder = self.output_dir_for(request_id)
        if not folder.is_dir():
            return []
        return sorted(p for p in folder.iterdir() if p.is_file() and not is_marker_name(p.name))

    def describe_outputs(self, request_id: str) -> list[ArtifactInfo]:
        now = self.markers.now()
        infos: list[ArtifactInfo] = []
        for path in self.list_artifacts(request_id):
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            downloaded_at = self.markers.downloaded_at(path)
            expires_in = None
            if downloaded_at is not None:
                expires_in = max(0, downloaded_at + self.grace_ms - now)
            infos.append(ArtifactInfo(name=path.name, size=size, expires_in_ms=expires_in))
        return infos
