from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestWorkspace:
    request_id: str
    upload_dir: Path
    output_dir: Path


class WorkspaceProvisioner:
    """Hands every request its own ``uploads/<id>`` and ``outputs/<id>`` folders.

    Only the upload side is cleaned up here. The output folder outlives the
    request so its artifacts can be downloaded; the scheduler and the TTL sweep
    decide when it goes.
    """

    def __init__(self, upload_root: Path, output_root: Path) -> None:
        self.upload_root = Path(upload_root).resolve()
        self.output_root = Path(output_root).resolve()

    def provision(self) -> RequestWorkspace:
        # OSError propagates: a request without a workspace cannot proceed.
        request_id = str(uuid.uuid4())
        ws = RequestWorkspace(
            request_id=request_id,
            upload_dir=self.upload_root / request_id,
            output_dir=self.output_root / request_id,
        )
        ws.upload_dir.mkdir(parents=True, exist_ok=True)
        ws.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created temp workspace for request %s", request_id)
        return ws

    def release(self, ws: RequestWorkspace) -> None:
        if not ws.upload_dir.exists():
            return
        try:
            shutil.rmtree(ws.upload_dir)
            logger.info("Cleaned up workspace for request %s", ws.request_id)
        except OSError as exc:
            logger.error("Failed to cleanup workspace %s: %s", ws.request_id, exc)
