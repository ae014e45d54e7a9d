from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import IMAGE_CONTENT_TYPES, IMAGE_DIR_SUFFIX, IMAGES_SUBDIR, SERVABLE_IMAGE_EXTS
from .errors import ArtifactNotFound, InvalidPath, SessionExpired
from .security import safe_join
from .session import is_session_expired, parse_session_id
from .store import ArtifactStore
from .tasks import BackgroundRunner


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactLayout:
    """One place a session's image may live: <root>/<sid><suffix>/<subdir>/<name>."""

    name: str
    root: Path
    dir_suffix: str = ""
    subdir: str = ""

    def sandbox(self, session_id: str) -> Path:
        return self.root / f"{session_id}{self.dir_suffix}"

    def candidate(self, session_id: str, basename: str) -> Path:
        sandbox = self.sandbox(session_id)
        parts = [self.subdir, basename] if self.subdir else [basename]
        return safe_join(sandbox, *parts)


def default_layouts(work_root: Path, output_root: Path) -> list[ArtifactLayout]:
    # Only the first entry is written by this service. The others are layouts
    # converters have produced in the past; drop them once no such sessions remain.
    return [
        ArtifactLayout("public-mirror", output_root, IMAGE_DIR_SUFFIX, IMAGES_SUBDIR),
        ArtifactLayout("extraction-dir", work_root, IMAGE_DIR_SUFFIX),
        ArtifactLayout("nested-extraction-dir", work_root, IMAGE_DIR_SUFFIX, IMAGES_SUBDIR),
        ArtifactLayout("session-images", work_root, "", IMAGES_SUBDIR),
        ArtifactLayout("session-root", work_root),
    ]


def content_type_for(name: str) -> str:
    return IMAGE_CONTENT_TYPES.get(Path(name).suffix.lower(), "image/png")


class ArtifactResolver:
    def __init__(
        self,
        store: ArtifactStore,
        retention_seconds: float,
        runner: BackgroundRunner,
        layouts: list[ArtifactLayout] | None = None,
    ) -> None:
        self.store = store
        self.retention_ms = int(retention_seconds * 1000)
        self.runner = runner
        self.layouts = layouts or default_layouts(store.work_root, store.output_root)

    def _expire(self, session_id: str) -> None:
        try:
            self.store.purge(session_id)
        except Exception:
            logger.exception("Failed to clean up expired session %s", session_id)

    def resolve(self, session_id: str, requested: str, now: int | None = None) -> Path:
        """Map (session, requested name) to a file inside that session's sandbox.

        Raises InvalidSession, SessionExpired, InvalidPath or ArtifactNotFound.
        """
        sid = parse_session_id(session_id)

        if is_session_expired(sid, self.retention_ms, now=now):
            self.runner.spawn(self._expire, sid)
            raise SessionExpired()

        requested = requested or ""
        basename = Path(requested.replace("\\", "/")).name
        if not basename or basename != requested or ".." in basename:
            raise InvalidPath()

        # Staged uploads share the legacy layouts, so only image names are looked up.
        if Path(basename).suffix.lower() not in SERVABLE_IMAGE_EXTS:
            raise ArtifactNotFound()

        for layout in self.layouts:
            try:
                candidate = layout.candidate(sid, basename)
            except ValueError:
                continue
            if candidate.is_file():
                if layout is not self.layouts[0]:
                    logger.debug("Served %s from legacy layout %s", basename, layout.name)
                return candidate

        raise ArtifactNotFound()
