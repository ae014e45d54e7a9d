from __future__ import annotations

import base64
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterable

from .config import (
    DOWNLOADS_URL_PREFIX,
    IMAGE_DIR_SUFFIX,
    IMAGES_SUBDIR,
    IS_SERVERLESS,
    OUTPUT_MODE,
    OUTPUT_ROOT,
    PUBLIC_ROOT,
)
from .converter import ImageArtifact
from .errors import StorageError
from .security import is_safe_basename, safe_join, sanitize_upload_filename
from .session import parse_session_id


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionPaths:
    session_id: str
    work_dir: Path  # private: staged upload
    image_dir: Path  # private: converter writes extracted images here
    public_dir: Path  # public mirror root for this session
    public_images_dir: Path


@dataclass
class StoreOutcome:
    status: str = "success"  # success | partial
    written: list[Path] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def skip(self, item: str) -> None:
        self.skipped.append(item)
        self.status = "partial"

    @property
    def ok(self) -> bool:
        return self.status == "success"


def remove_path(path: Path) -> bool:
    """Delete a file or directory tree; a missing target is not an error."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


class ArtifactStore:
    """Session-scoped temporary files under a private work root and a public output root."""

    def __init__(self, work_root: Path, output_root: Path) -> None:
        self.work_root = Path(work_root).resolve()
        self.output_root = Path(output_root).resolve()

    def ensure_roots(self) -> None:
        self.work_root.mkdir(parents=True, exist_ok=True)
        self.output_root.mkdir(parents=True, exist_ok=True)

    def paths(self, session_id: str) -> SessionPaths:
        sid = parse_session_id(session_id)
        public_dir = self.output_root / f"{sid}{IMAGE_DIR_SUFFIX}"
        return SessionPaths(
            session_id=sid,
            work_dir=self.work_root / sid,
            image_dir=self.work_root / f"{sid}{IMAGE_DIR_SUFFIX}",
            public_dir=public_dir,
            public_images_dir=public_dir / IMAGES_SUBDIR,
        )

    def stage_input(self, session_id: str, filename: str | None, data: bytes) -> Path:
        """Write the raw upload into the session's private work dir.

        Failure here is fatal for the request, so it surfaces as StorageError.
        """
        ps = self.paths(session_id)
        name = sanitize_upload_filename(filename)
        try:
            ps.work_dir.mkdir(parents=True, exist_ok=True)
            dest = safe_join(ps.work_dir, name)
            dest.write_bytes(data)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to stage upload: {e}") from e
        logger.debug("Staged %d bytes for session %s at %s", len(data), ps.session_id, dest)
        return dest

    def persist_images(
        self, session_id: str, images: Iterable[ImageArtifact], dest_dir: Path | None = None
    ) -> StoreOutcome:
        """Copy converter images into the public mirror; one bad image never stops the rest."""
        ps = self.paths(session_id)
        target = dest_dir or ps.public_images_dir
        outcome = StoreOutcome()
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Could not create image dir for session %s: %s", ps.session_id, e)
            for image in images:
                outcome.skip(image.name)
            return outcome

        for image in images:
            name = image.name
            if not image.saved_path or not is_safe_basename(name):
                logger.warning("Skipping image with unusable path %r (session %s)", image.saved_path, ps.session_id)
                outcome.skip(name or str(image.saved_path))
                continue
            try:
                dest = safe_join(target, name)
                # copyfile (not copy2) so mtime reflects this session, not the source.
                shutil.copyfile(image.saved_path, dest)
            except (OSError, ValueError) as e:
                logger.warning("Failed to copy image %s for session %s: %s", name, ps.session_id, e)
                outcome.skip(name)
                continue
            outcome.written.append(dest)
        return outcome

    def cleanup(self, session_id: str) -> StoreOutcome:
        """Delete the private work dir and extraction dir. Safe to call repeatedly."""
        ps = self.paths(session_id)
        outcome = StoreOutcome()
        for path in (ps.work_dir, ps.image_dir):
            try:
                if remove_path(path):
                    outcome.written.append(path)
            except OSError as e:
                logger.warning("Cleanup of %s failed for session %s: %s", path.name, ps.session_id, e)
                outcome.skip(path.name)
        return outcome

    def purge(self, session_id: str) -> StoreOutcome:
        """Delete everything a session owns, including its public image mirror."""
        outcome = self.cleanup(session_id)
        ps = self.paths(session_id)
        try:
            if remove_path(ps.public_dir):
                outcome.written.append(ps.public_dir)
        except OSError as e:
            logger.warning("Purge of public dir failed for session %s: %s", ps.session_id, e)
            outcome.skip(ps.public_dir.name)
        if outcome.written:
            logger.info("Removed expired session %s", ps.session_id)
        return outcome


class OutputWriter(ABC):
    """Strategy for delivering the final markdown or archive to the client."""

    mode: str = ""
    # Whether files written during a request can be fetched by later requests.
    serves_artifacts: bool = False

    @abstractmethod
    def write_text(self, filename: str, text: str, media_type: str = "text/markdown") -> str:
        """Persist text and return the URL the client downloads it from."""

    @abstractmethod
    def write_stream(self, filename: str, media_type: str, build: Callable[[BinaryIO], object]) -> str:
        """Let `build` stream bytes into a file object and return the download URL."""


class DiskOutputWriter(OutputWriter):
    mode = "disk"
    serves_artifacts = True

    def __init__(self, output_root: Path, url_prefix: str = DOWNLOADS_URL_PREFIX) -> None:
        self.output_root = Path(output_root).resolve()
        self.url_prefix = url_prefix.rstrip("/")

    def _target(self, filename: str) -> Path:
        if not is_safe_basename(filename):
            raise StorageError("Invalid output filename")
        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
            return safe_join(self.output_root, filename)
        except (OSError, ValueError) as e:
            raise StorageError(f"Output directory unavailable: {e}") from e

    def _url(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def write_text(self, filename: str, text: str, media_type: str = "text/markdown") -> str:
        dest = self._target(filename)
        try:
            dest.write_text(text or "", encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write {filename}: {e}") from e
        return self._url(filename)

    def write_stream(self, filename: str, media_type: str, build: Callable[[BinaryIO], object]) -> str:
        dest = self._target(filename)
        try:
            with dest.open("wb") as fh:
                build(fh)
        except BaseException:
            # Never leave a half-written download behind.
            try:
                dest.unlink()
            except OSError:
                pass
            raise
        return self._url(filename)


class InlineOutputWriter(OutputWriter):
    """Encodes output as data: URLs for environments without durable shared storage."""

    mode = "inline"
    serves_artifacts = False

    def __init__(self, spool_max_bytes: int = 8 * 1024 * 1024) -> None:
        self.spool_max_bytes = spool_max_bytes

    @staticmethod
    def _data_url(media_type: str, data: bytes) -> str:
        return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"

    def write_text(self, filename: str, text: str, media_type: str = "text/markdown") -> str:
        return self._data_url(media_type, (text or "").encode("utf-8"))

    def write_stream(self, filename: str, media_type: str, build: Callable[[BinaryIO], object]) -> str:
        try:
            spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes)
        except OSError as e:
            raise StorageError(f"Could not allocate buffer for {filename}: {e}") from e
        with spool:
            build(spool)
            spool.seek(0)
            data = spool.read()
        return self._data_url(media_type, data)


def select_output_writer(
    mode: str = OUTPUT_MODE,
    output_root: Path = OUTPUT_ROOT,
    public_root: Path | None = PUBLIC_ROOT,
    serverless: bool = IS_SERVERLESS,
) -> OutputWriter:
    """The single place where disk vs inline delivery is decided."""
    mode = (mode or "auto").strip().lower()
    public_ok = public_root is None or Path(public_root).is_dir()

    if mode == "inline" or serverless or not public_ok:
        if mode == "disk":
            logger.warning("Disk output requested but not available here; using inline output")
        writer: OutputWriter = InlineOutputWriter()
    else:
        writer = DiskOutputWriter(output_root)
    logger.info("Output mode: %s (serverless=%s, public_dir=%s)", writer.mode, serverless, public_ok)
    return writer
