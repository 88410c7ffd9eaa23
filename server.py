from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fileforge_backend.config import (
    BUNDLE_FILENAME,
    DEFAULT_SPLIT_CHUNK_MB,
    DOWNLOAD_GRACE_MS,
    LOG_DIR,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    MAX_UPLOAD_FILES,
    OUTPUTS_ROOT,
    SWEEP_INTERVAL_MS,
    TTL_MS,
    UPLOADS_ROOT,
)
from fileforge_backend.downloads import CompletedDownloadResponse
from fileforge_backend.lifecycle import ArtifactLifecycle
from fileforge_backend.logging_config import setup_logging
from fileforge_backend.pdf_tools import merge_pdfs, page_sizes, remove_password, reorder_pages, split_pdf
from fileforge_backend.security import safe_join, sanitize_filename
from fileforge_backend.transforms import TransformError, build_bundle, render_pdf, zip_single_file
from fileforge_backend.workspace import RequestWorkspace


logger = logging.getLogger("fileforge_backend.server")


class PdfRequest(BaseModel):
    html: str
    filename: str = "document.pdf"


class ReorganizeBuildRequest(BaseModel):
    request_id: str
    source: str
    order: List[int]
    filename: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Restore pending deletions and purge anything past retention before serving.
    setup_logging(LOG_DIR, LOG_LEVEL)
    lifecycle = ArtifactLifecycle(
        upload_root=UPLOADS_ROOT,
        output_root=OUTPUTS_ROOT,
        grace_ms=DOWNLOAD_GRACE_MS,
        ttl_ms=TTL_MS,
        sweep_interval_ms=SWEEP_INTERVAL_MS,
    )
    await lifecycle.startup()
    app.state.lifecycle = lifecycle
    try:
        yield
    finally:
        await lifecycle.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_lifecycle(request: Request) -> ArtifactLifecycle:
    return request.app.state.lifecycle


async def request_workspace(
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> AsyncIterator[RequestWorkspace]:
    """Fresh uploads/outputs folders for this request; uploads go away afterwards."""
    ws = lifecycle.provision_workspace()
    try:
        yield ws
    finally:
        lifecycle.release_workspace(ws)


def _file_entry(request_id: str, path: Path) -> dict:
    return {
        "name": path.name,
        "url": f"/outputs/{request_id}/{path.name}",
        "size": path.stat().st_size,
    }


async def _read_upload(upload: UploadFile) -> bytes:
    data = await upload.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    return data


def _upload_stem(upload: UploadFile, fallback: str) -> str:
    return sanitize_filename(Path(Path(upload.filename or "").name).stem, fallback=fallback)


@app.get("/api/health")
async def health() -> JSONResponse:
    logger.info("Health check OK")
    return JSONResponse({"ok": True})


@app.post("/api/pdf")
async def render_pdf_artifact(
    payload: PdfRequest,
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Print the provided HTML to a PDF artifact."""
    name = sanitize_filename(payload.filename, fallback="document.pdf")
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"

    try:
        pdf_bytes = await render_pdf(payload.html or "")
    except TransformError as e:
        logger.error("[pdf] req=%s failed: %s", ws.request_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    out_path = lifecycle.write_output(ws.output_dir, name, pdf_bytes)
    logger.info("[pdf] req=%s out=%s size=%d", ws.request_id, out_path.name, len(pdf_bytes))
    return JSONResponse({"request_id": ws.request_id, "file": _file_entry(ws.request_id, out_path)})


@app.post("/api/convert-to-zip")
async def convert_to_zip(
    files: List[UploadFile] = File(...),
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Zip each uploaded file into its own archive."""
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail="Too many files")

    results = []
    for upload in files:
        name = sanitize_filename(Path(upload.filename or "").name, fallback="upload")
        data = await _read_upload(upload)

        src = safe_join(ws.upload_dir, name)
        src.write_bytes(data)
        try:
            zipped = await asyncio.to_thread(zip_single_file, src)
        except TransformError as e:
            logger.error("[convert-to-zip] req=%s failed: %s", ws.request_id, e)
            raise HTTPException(status_code=500, detail=str(e))

        zip_path = lifecycle.write_output(ws.output_dir, f"{name}.zip", zipped)
        results.append(_file_entry(ws.request_id, zip_path))

    logger.info("[convert-to-zip] req=%s files=%d", ws.request_id, len(results))
    return JSONResponse({"request_id": ws.request_id, "files": results})


@app.post("/api/pdf/merge")
async def merge_pdf(
    pdfs: List[UploadFile] = File(...),
    filename: str = Form(""),
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Concatenate the uploaded PDFs, in upload order, into one document."""
    if len(pdfs) < 2:
        raise HTTPException(status_code=400, detail="Please upload at least 2 PDF files.")
    if len(pdfs) > MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail="Too many files")

    documents = [await _read_upload(f) for f in pdfs]
    base = sanitize_filename(filename.strip() or _upload_stem(pdfs[0], "merged"), fallback="merged")
    logger.info("[merge-pdf] start: req=%s files=%d out=%s.pdf", ws.request_id, len(documents), base)

    try:
        merged = await asyncio.to_thread(merge_pdfs, documents)
    except TransformError as e:
        logger.error("[merge-pdf] req=%s failed: %s", ws.request_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    out_path = lifecycle.write_output(ws.output_dir, f"{base}.pdf", merged)
    logger.info("[merge-pdf] complete: req=%s size=%dB", ws.request_id, len(merged))
    return JSONResponse({"request_id": ws.request_id, "file": _file_entry(ws.request_id, out_path)})


@app.post("/api/split-pdf")
async def split_pdf_route(
    pdf: UploadFile = File(...),
    chunk_size_mb: Optional[float] = Form(None),
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Cut a PDF into consecutive parts no larger than ``chunk_size_mb`` each."""
    chunk_mb = chunk_size_mb if chunk_size_mb is not None else DEFAULT_SPLIT_CHUNK_MB
    if chunk_mb <= 0:
        raise HTTPException(status_code=400, detail="chunk_size_mb must be positive")

    data = await _read_upload(pdf)
    base = _upload_stem(pdf, "document")
    try:
        parts = await asyncio.to_thread(split_pdf, data, int(chunk_mb * 1024 * 1024))
    except TransformError as e:
        logger.error("[split-pdf] req=%s failed: %s", ws.request_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    results = []
    for i, part in enumerate(parts, start=1):
        out_path = lifecycle.write_output(ws.output_dir, f"{base}_part{i}.pdf", part)
        results.append(_file_entry(ws.request_id, out_path))

    logger.info("[split-pdf] req=%s parts=%d", ws.request_id, len(results))
    return JSONResponse({"request_id": ws.request_id, "files": results})


@app.post("/api/pdf/remove-password")
async def remove_pdf_password(
    pdf: UploadFile = File(...),
    password: str = Form(""),
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    if not password:
        raise HTTPException(status_code=400, detail="Password is required")

    data = await _read_upload(pdf)
    base = _upload_stem(pdf, "document")
    try:
        unlocked = await asyncio.to_thread(remove_password, data, password)
    except TransformError as e:
        logger.error("[pdf-unlock] req=%s failed: %s", ws.request_id, e)
        raise HTTPException(status_code=400, detail=str(e))

    out_path = lifecycle.write_output(ws.output_dir, f"{base}_unlocked.pdf", unlocked)
    logger.info("[pdf-unlock] complete: req=%s out=%s", ws.request_id, out_path.name)
    return JSONResponse({"request_id": ws.request_id, "file": _file_entry(ws.request_id, out_path)})


@app.post("/api/pdf/reorganize/init")
async def reorganize_init(
    pdf: UploadFile = File(...),
    ws: RequestWorkspace = Depends(request_workspace),
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Keep the uploaded PDF as the source artifact for a later rebuild and describe its pages.

    The source lives under outputs so it outlasts this request; a build
    supersedes it, and until then the retention sweep covers it.
    """
    data = await _read_upload(pdf)
    base = _upload_stem(pdf, "document")
    try:
        sizes = await asyncio.to_thread(page_sizes, data)
    except TransformError as e:
        logger.error("[pdf-reorg-init] req=%s failed: %s", ws.request_id, e)
        raise HTTPException(status_code=400, detail=str(e))

    source = lifecycle.write_output(ws.output_dir, f"{base}_original.pdf", data)
    pages = [{"page_index": i, "width": s["width"], "height": s["height"]} for i, s in enumerate(sizes)]
    logger.info("[pdf-reorg-init] req=%s pages=%d", ws.request_id, len(pages))
    return JSONResponse(
        {
            "request_id": ws.request_id,
            "filename": base,
            "source": source.name,
            "total_pages": len(pages),
            "pages": pages,
        }
    )


@app.post("/api/pdf/reorganize/build")
async def reorganize_build(
    payload: ReorganizeBuildRequest,
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Write the source's pages in the requested order; the source is then deleted."""
    if not payload.order:
        raise HTTPException(status_code=400, detail="order must be a non-empty array of page indices")
    try:
        source = lifecycle.resolve_output(payload.request_id, payload.source)
    except (ValueError, FileNotFoundError):
        raise HTTPException(status_code=404, detail="Original PDF not found for this request")

    request_id = source.parent.name
    base = sanitize_filename((payload.filename or "").strip() or "reordered", fallback="reordered")
    logger.info("[pdf-reorg-build] req=%s pages=%d out=%s.pdf", request_id, len(payload.order), base)

    try:
        data = await asyncio.to_thread(source.read_bytes)
        rebuilt = await asyncio.to_thread(reorder_pages, data, payload.order)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Original PDF not found for this request")
    except TransformError as e:
        logger.error("[pdf-reorg-build] req=%s failed: %s", request_id, e)
        raise HTTPException(status_code=400, detail=str(e))

    out_path = lifecycle.write_output(source.parent, f"{base}.pdf", rebuilt)
    lifecycle.invalidate(source)
    logger.info("[pdf-reorg-build] complete: req=%s out=%s", request_id, out_path.name)
    return JSONResponse({"request_id": request_id, "file": _file_entry(request_id, out_path)})


@app.post("/api/outputs/{request_id}/bundle")
async def bundle_outputs(
    request_id: str,
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """Replace a request's artifacts with a single ZIP of all of them.

    The individual files are superseded by the bundle and removed right away.
    """
    try:
        folder = lifecycle.output_dir_for(request_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")

    sources = lifecycle.list_artifacts(request_id)
    if not sources:
        raise HTTPException(status_code=404, detail="No outputs to bundle")

    try:
        zipped = await asyncio.to_thread(build_bundle, sources)
    except TransformError as e:
        logger.error("[bundle] req=%s failed: %s", request_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    bundle = lifecycle.write_output(folder, BUNDLE_FILENAME, zipped)
    for src in sources:
        lifecycle.invalidate(src)

    logger.info("[bundle] req=%s files=%d out=%s", request_id, len(sources), bundle.name)
    return JSONResponse({"request_id": folder.name, "file": _file_entry(folder.name, bundle)})


@app.get("/api/outputs/{request_id}")
async def list_outputs(
    request_id: str,
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    try:
        infos = lifecycle.describe_outputs(request_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    files = [{"name": i.name, "size": i.size, "expires_in_ms": i.expires_in_ms} for i in infos]
    return JSONResponse({"files": files})


@app.get("/outputs/{request_id}/{filename}")
async def download_output(
    request_id: str,
    filename: str,
    lifecycle: ArtifactLifecycle = Depends(get_lifecycle),
) -> CompletedDownloadResponse:
    """Serve an artifact as an attachment.

    The grace-period deletion is armed only once the last byte went out; a
    transfer the client abandons leaves the artifact to the retention sweep.
    """
    try:
        path = lifecycle.resolve_output(request_id, filename)
        return CompletedDownloadResponse(
            path,
            filename=path.name,
            on_complete=lambda: lifecycle.arm_deletion_after_download(path),
            headers={"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"},
        )
    except (ValueError, FileNotFoundError):
        logger.warning("Download requested for missing file: %s/%s", request_id, filename)
        raise HTTPException(status_code=404, detail="File not found")


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "4000"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
