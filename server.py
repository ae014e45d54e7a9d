from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from file2md_backend.config import (
    ARTIFACT_URL_PATH,
    DOWNLOADS_URL_PREFIX,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    OUTPUT_ROOT,
    RETENTION_SECONDS,
    SWEEP_INTERVAL_SECONDS,
    WORK_ROOT,
)
from file2md_backend.converter import DocumentConverter, MarkItDownConverter
from file2md_backend.errors import ArtifactError, ValidationError
from file2md_backend.orchestrator import ConversionService, UploadFlags, parse_flag, validate_upload
from file2md_backend.resolver import ArtifactResolver, content_type_for
from file2md_backend.schemas import CleanupResponse, ErrorResponse
from file2md_backend.store import ArtifactStore, DiskOutputWriter, OutputWriter, select_output_writer
from file2md_backend.sweeper import OpportunisticSweeper, sweep
from file2md_backend.tasks import BackgroundRunner


BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"

logger = logging.getLogger("file2md")

# Paths that never trigger a traffic-piggybacked sweep.
_SWEEP_EXCLUDED_PREFIXES = ("/cleanup", "/api/cleanup", DOWNLOADS_URL_PREFIX, "/favicon.ico")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


def create_app(
    work_root: Path = WORK_ROOT,
    output_root: Path = OUTPUT_ROOT,
    converter: Optional[DocumentConverter] = None,
    writer: Optional[OutputWriter] = None,
    runner: Optional[BackgroundRunner] = None,
    retention_seconds: float = RETENTION_SECONDS,
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
) -> FastAPI:
    store = ArtifactStore(work_root, output_root)
    store.ensure_roots()
    writer = writer or select_output_writer(output_root=store.output_root)
    runner = runner or BackgroundRunner()
    service = ConversionService(store, writer, converter or MarkItDownConverter())
    resolver = ArtifactResolver(store, retention_seconds, runner)
    sweep_dirs = [store.work_root, store.output_root]
    sweeper = OpportunisticSweeper(sweep_dirs, retention_seconds, sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # No scheduler process: one pass at startup, later passes ride on traffic.
        try:
            await run_in_threadpool(sweeper.run)
        except Exception:
            logger.exception("Startup cleanup failed")
        try:
            yield
        finally:
            runner.shutdown(wait=False)

    app = FastAPI(title="file2md", lifespan=lifespan)
    app.state.store = store
    app.state.writer = writer
    app.state.runner = runner
    app.state.sweeper = sweeper
    app.state.resolver = resolver

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _opportunistic_sweep(request: Request, call_next):
        path = request.url.path or ""
        if not path.startswith(_SWEEP_EXCLUDED_PREFIXES):
            sweeper.maybe_run(runner)
        return await call_next(request)

    @app.exception_handler(ArtifactError)
    async def _artifact_error(request: Request, exc: ArtifactError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "mode": writer.mode}

    @app.post("/convert")
    @app.post("/api/convert")
    async def convert(
        file: Optional[UploadFile] = File(None),
        preserveLayout: Optional[str] = Form(None),
        extractImages: Optional[str] = Form(None),
        extractCharts: Optional[str] = Form(None),
    ) -> JSONResponse:
        if file is None:
            raise ValidationError("No file provided")

        # Size is known from the multipart headers; check it before reading or staging.
        validate_upload(file.filename, file.content_type, file.size, max_upload_bytes)
        data = await file.read(max_upload_bytes + 1)
        if len(data) > max_upload_bytes:
            raise ValidationError.too_large(max_upload_bytes)

        flags = UploadFlags(
            preserve_layout=parse_flag(preserveLayout, False),
            extract_images=parse_flag(extractImages, True),
            extract_charts=parse_flag(extractCharts, True),
        )
        try:
            response = await service.convert_upload(file.filename, data, flags)
        except ArtifactError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure converting %s", file.filename)
            return _error(500, f"Server error: {e}")
        return JSONResponse(jsonable_encoder(response.model_dump(by_alias=True)))

    @app.get(ARTIFACT_URL_PATH)
    @app.get("/api/serve-artifact")
    @app.get("/api/serve-image")
    async def serve_artifact(
        path: Optional[str] = Query(None),
        session: Optional[str] = Query(None),
    ):
        if not path or not session:
            return _error(400, "Missing parameters")
        resolved = await run_in_threadpool(resolver.resolve, session, path)
        return FileResponse(
            resolved,
            media_type=content_type_for(resolved.name),
            headers={
                "Cache-Control": "public, max-age=3600",
                "X-Content-Type-Options": "nosniff",
            },
        )

    @app.post("/cleanup")
    @app.post("/api/cleanup")
    async def cleanup() -> JSONResponse:
        try:
            removed = await run_in_threadpool(sweep, sweep_dirs, retention_seconds)
        except Exception as e:
            logger.exception("Cleanup failed")
            return _error(500, str(e))
        logger.info("Manual cleanup removed %d entries", removed)
        return JSONResponse(CleanupResponse(message=f"Cleaned up {removed} old files").model_dump())

    if isinstance(writer, DiskOutputWriter):
        app.mount(DOWNLOADS_URL_PREFIX, StaticFiles(directory=str(writer.output_root)), name="downloads")
    if STATIC_DIR.is_dir():
        # Define API routes above, then mount the front end at '/'.
        app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True), name="static")

    return app


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
