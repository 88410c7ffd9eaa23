"""Attachment responses that report whether the client received every byte.

Starlette's FileResponse runs its background task even when the client went
away mid-transfer, so it cannot tell a finished download from an aborted one.
This response streams the file itself and calls ``on_complete`` only after the
last chunk was handed to the server without a disconnect being seen.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

from fastapi.responses import Response

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


class CompletedDownloadResponse(Response):
    def __init__(
        self,
        path: Path,
        filename: str,
        on_complete: Callable[[], None],
        headers: Optional[dict] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.path = Path(path)
        self.on_complete = on_complete
        self.chunk_size = chunk_size
        size = self.path.stat().st_size
        media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        all_headers = {
            "content-length": str(size),
            "content-disposition": _content_disposition(filename),
        }
        all_headers.update(headers or {})
        super().__init__(content=None, headers=all_headers, media_type=media_type)

    async def __call__(self, scope, receive, send) -> None:
        await send({"type": "http.response.start", "status": self.status_code, "headers": self.raw_headers})
        if scope.get("method", "GET").upper() == "HEAD":
            return

        stream = asyncio.ensure_future(self._stream(send))
        watch = asyncio.ensure_future(self._wait_for_disconnect(receive))
        try:
            await asyncio.wait({stream, watch}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (stream, watch):
                if not task.done():
                    task.cancel()
            await asyncio.gather(stream, watch, return_exceptions=True)

        if stream.cancelled():
            logger.info("Download of %s aborted by client", self.path.name)
            return
        exc = stream.exception()
        if exc is not None:
            raise exc
        if stream.result():
            await asyncio.to_thread(self.on_complete)

    async def _stream(self, send) -> bool:
        with open(self.path, "rb") as fh:
            while True:
                chunk = await asyncio.to_thread(fh.read, self.chunk_size)
                more = len(chunk) == self.chunk_size
                try:
                    await send({"type": "http.response.body", "body": chunk, "more_body": more})
                except OSError as exc:
                    logger.info("Download of %s aborted: %s", self.path.name, exc)
                    return False
                if not more:
                    return True

    async def _wait_for_disconnect(self, receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
