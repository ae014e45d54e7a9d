from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from .archive import pack_archive
from .config import ALLOWED_UPLOAD_EXTS, ALLOWED_UPLOAD_MIME_TYPES, ARTIFACT_URL_PATH, MAX_UPLOAD_BYTES
from .converter import ConversionResult, ConvertOptions, DocumentConverter
from .errors import ArtifactError, ConversionError, PackagingError, ValidationError
from .markdown_images import replace_images_with_notice, rewrite_image_references
from .schemas import ConvertResponse, ConvertStats
from .security import sanitize_upload_filename, strip_extension
from .session import new_session_id
from .store import ArtifactStore, OutputWriter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadFlags:
    preserve_layout: bool = False
    extract_images: bool = True
    extract_charts: bool = True


def parse_flag(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = str(value).strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return default


def validate_upload(
    filename: str | None,
    content_type: str | None,
    size: int | None,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> None:
    """Reject bad uploads before anything touches the filesystem."""
    if not filename and not size:
        raise ValidationError("No file provided")
    if size is not None and size > max_bytes:
        raise ValidationError.too_large(max_bytes)

    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in ALLOWED_UPLOAD_MIME_TYPES:
        return
    ext = Path(filename or "").suffix.lower()
    if ext in ALLOWED_UPLOAD_EXTS:
        return
    raise ValidationError("Unsupported file type")


def _processing_time_ms(metadata: dict, started: float) -> int:
    value = metadata.get("processingTime") if isinstance(metadata, dict) else None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return int((time.perf_counter() - started) * 1000)


def build_stats(input_bytes: int, result: ConversionResult, processing_time_ms: int | None) -> ConvertStats:
    markdown_bytes = len((result.markdown or "").encode("utf-8"))
    return ConvertStats(
        input_bytes=input_bytes,
        markdown_bytes=markdown_bytes,
        compression_ratio=round(markdown_bytes / input_bytes, 2) if input_bytes > 0 else None,
        image_count=len(result.images),
        chart_count=len(result.charts),
        processing_time_ms=processing_time_ms,
    )


class ConversionService:
    """Upload -> staged input -> converter -> images/archive -> response."""

    def __init__(
        self,
        store: ArtifactStore,
        writer: OutputWriter,
        converter: DocumentConverter,
        artifact_url_path: str = ARTIFACT_URL_PATH,
    ) -> None:
        self.store = store
        self.writer = writer
        self.converter = converter
        self.artifact_url_path = artifact_url_path

    async def _cleanup(self, session_id: str, failed: bool = False) -> None:
        # A failed request also drops its public image mirror; nothing will link to it.
        op = self.store.purge if failed else self.store.cleanup
        outcome = await asyncio.to_thread(op, session_id)
        if not outcome.ok:
            logger.warning("Partial cleanup for session %s: %s", session_id, outcome.skipped)

    async def convert_upload(self, filename: str | None, data: bytes, flags: UploadFlags) -> ConvertResponse:
        started = time.perf_counter()
        session_id = new_session_id()
        safe_name = sanitize_upload_filename(filename)
        original_name = strip_extension(safe_name)
        paths = self.store.paths(session_id)

        try:
            input_path = await asyncio.to_thread(self.store.stage_input, session_id, filename, data)
        except ArtifactError:
            await self._cleanup(session_id, failed=True)
            raise
        logger.info("Converting %s (%d bytes) in session %s", safe_name, len(data), session_id)

        options = ConvertOptions(
            image_dir=paths.image_dir,
            output_dir=paths.image_dir,
            preserve_layout=flags.preserve_layout,
            extract_images=flags.extract_images,
            extract_charts=flags.extract_charts,
        )
        try:
            raw = await asyncio.to_thread(self.converter.convert, input_path, options)
            result = raw if isinstance(raw, ConversionResult) else ConversionResult.from_mapping(raw)
        except Exception as e:
            logger.warning("Conversion failed for session %s: %s", session_id, e)
            await self._cleanup(session_id, failed=True)
            raise ConversionError(f"Conversion failed: {e}") from e

        try:
            if result.images:
                filename_out, download_url, preview = await self._deliver_archive(
                    session_id, original_name, result
                )
            else:
                filename_out = f"{original_name}__{session_id}.md"
                download_url = await asyncio.to_thread(
                    self.writer.write_text, filename_out, result.markdown, "text/markdown"
                )
                preview = result.markdown
        except ArtifactError:
            await self._cleanup(session_id, failed=True)
            raise
        except Exception as e:
            await self._cleanup(session_id, failed=True)
            raise PackagingError(f"Packaging failed: {e}") from e

        # Only after the archive is complete; the packager streams from these files.
        await self._cleanup(session_id)

        return ConvertResponse(
            filename=filename_out,
            has_images=bool(result.images),
            download_url=download_url,
            markdown=preview,
            image_count=len(result.images),
            chart_count=len(result.charts),
            metadata=result.metadata,
            stats=build_stats(len(data), result, _processing_time_ms(result.metadata, started)),
        )

    async def _deliver_archive(
        self, session_id: str, original_name: str, result: ConversionResult
    ) -> tuple[str, str, str]:
        paths = self.store.paths(session_id)

        if self.writer.serves_artifacts:
            # Mirror must be complete before packaging starts reading the same sources.
            outcome = await asyncio.to_thread(self.store.persist_images, session_id, result.images)
            if not outcome.ok:
                logger.warning(
                    "Session %s: %d of %d images not mirrored", session_id, len(outcome.skipped), len(result.images)
                )
            preview = rewrite_image_references(result.markdown, session_id, self.artifact_url_path)
        else:
            preview, replaced = replace_images_with_notice(result.markdown, len(result.images))
            logger.info("Inline output: replaced %d image references for session %s", replaced, session_id)

        filename_out = f"{original_name}__{session_id}.zip"

        def _build(fh) -> None:
            packed = pack_archive(fh, result.markdown, original_name, result.images, image_dir=paths.image_dir)
            if packed.skipped:
                logger.warning("Session %s: %d images missing from archive", session_id, len(packed.skipped))

        download_url = await asyncio.to_thread(self.writer.write_stream, filename_out, "application/zip", _build)
        return filename_out, download_url, preview
