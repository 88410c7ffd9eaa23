"""Transformations that turn uploaded inputs into artifacts.

Each one is deterministic for a given input and either produces its output or
raises TransformError. They know nothing about markers or deletion; callers
register whatever they write with the lifecycle manager.
"""
from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Iterable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright


class TransformError(Exception):
    """A transformation could not produce its output."""


async def render_pdf(html: str) -> bytes:
    """Print HTML to an A4 PDF with selectable text using headless Chromium."""
    try:
        async with async_playwright() as p:
            browser = await p.chromium.launch()
            try:
                page = await browser.new_page()
                await page.set_content(html or "", wait_until="networkidle")

                # Wait for web fonts if the document pulls any in.
                try:
                    await page.evaluate(
                        """async () => { if (document.fonts && document.fonts.ready) { await document.fonts.ready; } }"""
                    )
                except PlaywrightError:
                    pass

                return await page.pdf(
                    format="A4",
                    print_background=True,
                    margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
                )
            finally:
                await browser.close()
    except PlaywrightError as exc:
        raise TransformError(f"PDF rendering failed: {exc}") from exc


def zip_single_file(source: Path) -> bytes:
    """ZIP archive holding just ``source``, stored under its basename."""
    source = Path(source)
    if not source.is_file():
        raise TransformError(f"Input not found: {source.name}")
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.write(source, arcname=source.name)
    except OSError as exc:
        raise TransformError(f"Could not zip {source.name}: {exc}") from exc
    return buf.getvalue()


def build_bundle(files: Iterable[Path]) -> bytes:
    """Zip several artifacts into one archive, flat, keyed by basename."""
    files = [Path(f) for f in files]
    if not files:
        raise TransformError("Nothing to bundle")
    seen: set[str] = set()
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for f in sorted(files, key=lambda p: p.name):
                if f.name in seen:
                    continue
                seen.add(f.name)
                zf.write(f, arcname=f.name)
    except OSError as exc:
        raise TransformError(f"Could not build bundle: {exc}") from exc
    return buf.getvalue()
