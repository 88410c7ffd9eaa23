"""PDF page operations: merge, size-bounded split, reorder, password removal.

All functions take and return raw bytes and raise TransformError when the
input cannot be processed.
"""
from __future__ import annotations

import io
import logging
from typing import Iterable, List, Sequence

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError

from .transforms import TransformError

logger = logging.getLogger(__name__)


def _load(data: bytes, label: str = "PDF") -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data), strict=False)
    except Exception as exc:
        raise TransformError(f"{label} could not be read: {exc}") from exc
    if reader.is_encrypted:
        raise TransformError(f"{label} is password protected")
    return reader


def _write(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def _pages_to_bytes(reader: PdfReader, indices: Iterable[int]) -> bytes:
    writer = PdfWriter()
    for idx in indices:
        writer.add_page(reader.pages[idx])
    return _write(writer)


def page_sizes(data: bytes) -> List[dict]:
    """Width/height in points for every page, in document order."""
    reader = _load(data)
    return [
        {"width": float(page.mediabox.width), "height": float(page.mediabox.height)}
        for page in reader.pages
    ]


def merge_pdfs(documents: Sequence[bytes]) -> bytes:
    """Concatenate documents page by page, in the order given."""
    if not documents:
        raise TransformError("No PDF files provided")
    writer = PdfWriter()
    for i, data in enumerate(documents, start=1):
        reader = _load(data, label=f"PDF #{i}")
        try:
            for page in reader.pages:
                writer.add_page(page)
        except Exception as exc:
            raise TransformError(f"PDF #{i} could not be merged: {exc}") from exc
    return _write(writer)


def split_pdf(data: bytes, max_chunk_bytes: int) -> List[bytes]:
    """Cut a document into consecutive parts of at most ``max_chunk_bytes`` each.

    A single page larger than the limit still becomes its own part.
    """
    if max_chunk_bytes <= 0:
        raise TransformError("Chunk size must be positive")
    reader = _load(data)
    total = len(reader.pages)
    if total == 0:
        raise TransformError("PDF has no pages")

    logger.info("Splitting PDF (%d pages, %.2f MB)", total, len(data) / 1024 / 1024)

    chunks: List[bytes] = []
    current: List[int] = []
    current_bytes = b""
    try:
        for idx in range(total):
            candidate = _pages_to_bytes(reader, current + [idx])
            if current and len(candidate) > max_chunk_bytes:
                chunks.append(current_bytes)
                current = [idx]
                current_bytes = _pages_to_bytes(reader, current)
            else:
                current.append(idx)
                current_bytes = candidate
        chunks.append(current_bytes)
    except TransformError:
        raise
    except Exception as exc:
        raise TransformError(f"PDF could not be split: {exc}") from exc

    for n, chunk in enumerate(chunks, start=1):
        logger.info("Chunk #%d: %.2f MB", n, len(chunk) / 1024 / 1024)
    return chunks


def reorder_pages(data: bytes, order: Sequence[int]) -> bytes:
    """Build a new document from zero-based page indices; repeats and omissions allowed."""
    if not order:
        raise TransformError("Order is empty")
    reader = _load(data)
    total = len(reader.pages)
    for idx in order:
        if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0 or idx >= total:
            raise TransformError(f"Invalid page index in order: {idx}")
    try:
        return _pages_to_bytes(reader, order)
    except Exception as exc:
        raise TransformError(f"PDF could not be reordered: {exc}") from exc


def remove_password(data: bytes, password: str) -> bytes:
    if not password:
        raise TransformError("Password is required")
    try:
        reader = PdfReader(io.BytesIO(data), strict=False)
    except Exception as exc:
        raise TransformError(f"PDF could not be read: {exc}") from exc
    if not reader.is_encrypted:
        raise TransformError("PDF is not password protected")

    try:
        unlocked = reader.decrypt(password)
    except (PdfReadError, NotImplementedError) as exc:
        raise TransformError(f"PDF could not be decrypted: {exc}") from exc
    if not unlocked:
        raise TransformError("Incorrect password.")

    try:
        return _pages_to_bytes(reader, range(len(reader.pages)))
    except Exception as exc:
        raise TransformError(f"PDF could not be decrypted: {exc}") from exc
