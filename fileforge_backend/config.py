from __future__ import annotations

import os
from pathlib import Path


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _root_from_env(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    root = Path(raw) if raw and raw.strip() else default
    root = root.resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


# Per-request scratch space; each request's folder is deleted when its response ends.
# Override with env var FILEFORGE_UPLOADS_ROOT.
UPLOADS_ROOT = _root_from_env("FILEFORGE_UPLOADS_ROOT", _PROJECT_ROOT / "data" / "uploads")

# Generated artifacts, one folder per request, plus their .created/.downloaded markers.
# Override with env var FILEFORGE_OUTPUTS_ROOT.
OUTPUTS_ROOT = _root_from_env("FILEFORGE_OUTPUTS_ROOT", _PROJECT_ROOT / "data" / "outputs")

# How long a downloaded artifact stays available after the download completed.
DOWNLOAD_GRACE_MS = int(float(os.environ.get("FILEFORGE_DOWNLOAD_GRACE_SECONDS", "600")) * 1000)

# Absolute retention ceiling for any artifact, downloaded or not.
TTL_MS = int(float(os.environ.get("FILEFORGE_TTL_HOURS", "24")) * 3600 * 1000)

# How often the background sweep enforces the retention ceiling.
SWEEP_INTERVAL_MS = int(float(os.environ.get("FILEFORGE_SWEEP_INTERVAL_SECONDS", "3600")) * 1000)

# Upload limits (best-effort; also enforced by proxy/browser typically).
MAX_UPLOAD_BYTES = int(os.environ.get("FILEFORGE_MAX_UPLOAD_BYTES", str(500 * 1024 * 1024)))  # 500MB
MAX_UPLOAD_FILES = int(os.environ.get("FILEFORGE_MAX_UPLOAD_FILES", "50"))

LOG_DIR = Path(os.environ.get("FILEFORGE_LOG_DIR") or (_PROJECT_ROOT / "logs"))
LOG_LEVEL = os.environ.get("FILEFORGE_LOG_LEVEL", "INFO")

BUNDLE_FILENAME = "bundle.zip"

# Default part size for /api/split-pdf when the client sends none.
DEFAULT_SPLIT_CHUNK_MB = float(os.environ.get("FILEFORGE_SPLIT_CHUNK_MB", "7"))
