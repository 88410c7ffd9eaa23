"""
FileForge - Test Configuration and Fixtures
"""
import os
import tempfile
from pathlib import Path

import pytest

# Keep the import-time config away from the project's real data folders.
_SCRATCH = Path(tempfile.mkdtemp(prefix="fileforge-tests-"))
os.environ.setdefault("FILEFORGE_UPLOADS_ROOT", str(_SCRATCH / "uploads"))
os.environ.setdefault("FILEFORGE_OUTPUTS_ROOT", str(_SCRATCH / "outputs"))
os.environ.setdefault("FILEFORGE_LOG_DIR", str(_SCRATCH / "logs"))

from fileforge_backend.lifecycle import ArtifactLifecycle
from fileforge_backend.markers import MarkerStore
from fileforge_backend.scheduler import DeletionScheduler
from fileforge_backend.sweeper import TtlSweeper

from helpers import HOUR_MS, MINUTE_MS, FakeTimeline

GRACE_MS = 10 * MINUTE_MS
TTL_MS = 24 * HOUR_MS


@pytest.fixture
def timeline() -> FakeTimeline:
    return FakeTimeline()


@pytest.fixture
def upload_root(tmp_path: Path) -> Path:
    root = (tmp_path / "uploads").resolve()
    root.mkdir()
    return root


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    root = (tmp_path / "outputs").resolve()
    root.mkdir()
    return root


@pytest.fixture
def markers(timeline: FakeTimeline) -> MarkerStore:
    return MarkerStore(clock=timeline)


@pytest.fixture
def scheduler(markers: MarkerStore, output_root: Path, timeline: FakeTimeline) -> DeletionScheduler:
    return DeletionScheduler(markers, root=output_root, timer_factory=timeline.timer)


@pytest.fixture
def sweeper(output_root: Path, scheduler: DeletionScheduler, markers: MarkerStore) -> TtlSweeper:
    return TtlSweeper(output_root, scheduler, markers, ttl_ms=TTL_MS, interval_ms=HOUR_MS)


@pytest.fixture
def lifecycle(upload_root: Path, output_root: Path, timeline: FakeTimeline) -> ArtifactLifecycle:
    return ArtifactLifecycle(
        upload_root=upload_root,
        output_root=output_root,
        grace_ms=GRACE_MS,
        ttl_ms=TTL_MS,
        sweep_interval_ms=HOUR_MS,
        clock=timeline,
        timer_factory=timeline.timer,
    )
