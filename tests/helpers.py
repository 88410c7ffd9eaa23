"""Test doubles (a controllable clock whose timers fire only when time is advanced) and file builders."""
from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Optional

from PyPDF2 import PdfReader, PdfWriter

from fileforge_backend.markers import created_marker, downloaded_marker, now_ms

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


class ManualTimer:
    """Stand-in for threading.Timer driven by a FakeTimeline."""

    def __init__(self, timeline: "FakeTimeline", interval, function, args=None, kwargs=None):
        self.timeline = timeline
        self.interval = interval
        self.due_ms = timeline.now + round(interval * 1000)
        self.function = function
        self.args = tuple(args or ())
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.function(*self.args, **self.kwargs)


class FakeTimeline:
    """Clock (epoch ms) plus timer factory; ``advance`` fires due timers in order."""

    def __init__(self, start_ms: Optional[int] = None):
        self.now = now_ms() if start_ms is None else start_ms
        self.timers: list[ManualTimer] = []

    def __call__(self) -> int:
        return self.now

    def timer(self, interval, function, args=None, kwargs=None) -> ManualTimer:
        t = ManualTimer(self, interval, function, args=args, kwargs=kwargs)
        self.timers.append(t)
        return t

    def active(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def advance(self, ms: int) -> None:
        target = self.now + ms
        while True:
            due = sorted((t for t in self.active() if t.due_ms <= target), key=lambda t: t.due_ms)
            if not due:
                break
            timer = due[0]
            self.now = max(self.now, timer.due_ms)
            timer.fire()
        self.now = target

    def run_pending(self) -> None:
        self.advance(0)


def make_artifact(
    folder: Path,
    name: str = "a.pdf",
    data: bytes = b"%PDF-1.4 test",
    created_ms: Optional[int] = None,
    downloaded_ms: Optional[int] = None,
) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    path.write_bytes(data)
    if created_ms is not None:
        created_marker(path).write_text(str(created_ms), encoding="utf-8")
    if downloaded_ms is not None:
        downloaded_marker(path).write_text(str(downloaded_ms), encoding="utf-8")
    return path


def deny_listing(monkeypatch, folder_name: str) -> None:
    """Make ``os.scandir`` fail with PermissionError for folders called ``folder_name``."""
    real_scandir = os.scandir

    def scandir(path="."):
        if Path(path).name == folder_name:
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)


def make_pdf(widths=(100, 200, 300), height: float = 400, password: Optional[str] = None) -> bytes:
    """Blank PDF with one page per width, so page order can be read back from the media boxes."""
    writer = PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=height)
    if password is not None:
        writer.encrypt(password)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def page_widths(data: bytes) -> list[float]:
    return [float(p.mediabox.width) for p in PdfReader(io.BytesIO(data)).pages]
