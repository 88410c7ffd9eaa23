from __future__ import annotations

import re
import uuid
from pathlib import Path

from .markers import is_marker_name


_REQUEST_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_UNSAFE_FILENAME_CHARS_RE = re.compile(r'[/\\?%*:|"<>]')


def normalize_request_id(request_id: str) -> str:
    """Validate a request id and return its canonical lowercase form.

    Request ids name folders under the output root, so anything that is not a
    plain UUID is rejected before it gets near the filesystem.
    """
    if not isinstance(request_id, str):
        raise ValueError("Invalid request id")
    request_id = request_id.strip()
    if not _REQUEST_ID_RE.match(request_id):
        raise ValueError("Invalid request id")
    return str(uuid.UUID(request_id))


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name or name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def is_downloadable_name(name: str) -> bool:
    """Artifacts can be downloaded; their lifecycle markers cannot."""
    return is_safe_basename(name) and not is_marker_name(name)


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def sanitize_filename(name: str, fallback: str = "output") -> str:
    """Turn a user-supplied name into something safe to write to disk."""
    base = _UNSAFE_FILENAME_CHARS_RE.sub(" ", name or fallback)
    base = re.sub(r"\s+", " ", base).strip().strip(".")
    return base or fallback
