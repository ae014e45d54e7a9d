"""Contract with the external document-conversion library, plus a MarkItDown-backed default.

Format-specific parsing lives in the collaborator. This module only defines the
shape of what comes back and adapts MarkItDown to that shape.
"""
from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

from .config import ALLOWED_IMAGE_EXTS, IMAGES_SUBDIR
from .security import is_bad_zip_member, safe_join


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvertOptions:
    image_dir: Path
    output_dir: Path
    preserve_layout: bool = False
    extract_images: bool = True
    extract_charts: bool = True


@dataclass(frozen=True)
class ImageArtifact:
    saved_path: str
    logical_name: str | None = None

    @property
    def name(self) -> str:
        return self.logical_name or Path(self.saved_path or "").name


@dataclass(frozen=True)
class ConversionResult:
    markdown: str
    images: tuple[ImageArtifact, ...] = ()
    charts: tuple[Any, ...] = ()
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ConversionResult":
        """Accept the dict-shaped result external converters usually return."""
        images = []
        for item in raw.get("images") or ():
            if isinstance(item, ImageArtifact):
                images.append(item)
            elif isinstance(item, Mapping):
                saved = item.get("savedPath") or item.get("saved_path") or ""
                images.append(ImageArtifact(saved_path=str(saved), logical_name=item.get("name")))
            else:
                images.append(ImageArtifact(saved_path=str(item)))
        metadata = raw.get("metadata")
        return cls(
            markdown=str(raw.get("markdown") or ""),
            images=tuple(images),
            charts=tuple(raw.get("charts") or ()),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


class DocumentConverter(Protocol):
    def convert(self, input_path: Path, options: ConvertOptions) -> ConversionResult:
        ...


# Media folders inside ZIP-based office containers (DOCX, PPTX, XLSX, HWPX).
_MEDIA_PREFIXES = ("word/media/", "ppt/media/", "xl/media/", "bindata/")
_CHART_PREFIXES = ("word/charts/", "ppt/charts/", "xl/charts/")


def extract_container_images(source: Path, image_dir: Path) -> list[ImageArtifact]:
    """Pull embedded media out of a ZIP-based office file into image_dir."""
    if not zipfile.is_zipfile(source):
        return []

    images: list[ImageArtifact] = []
    seen: set[str] = set()
    with zipfile.ZipFile(source) as zf:
        for info in zf.infolist():
            name = info.filename
            if info.is_dir() or not name.lower().startswith(_MEDIA_PREFIXES):
                continue
            if is_bad_zip_member(name):
                logger.warning("Ignoring unsafe media entry %r in %s", name, source.name)
                continue
            basename = Path(name).name
            if Path(basename).suffix.lower() not in ALLOWED_IMAGE_EXTS:
                continue
            if basename in seen:
                basename = f"{len(seen)}_{basename}"
            seen.add(basename)

            image_dir.mkdir(parents=True, exist_ok=True)
            dest = safe_join(image_dir, basename)
            with zf.open(info) as src, dest.open("wb") as out:
                while True:
                    chunk = src.read(64 * 1024)
                    if not chunk:
                        break
                    out.write(chunk)
            images.append(ImageArtifact(saved_path=str(dest), logical_name=basename))
    return images


def list_container_charts(source: Path) -> list[dict]:
    if not zipfile.is_zipfile(source):
        return []
    charts = []
    with zipfile.ZipFile(source) as zf:
        for name in zf.namelist():
            lowered = name.lower()
            if lowered.startswith(_CHART_PREFIXES) and lowered.endswith(".xml") and "/_rels/" not in lowered:
                charts.append({"name": Path(name).stem, "part": name})
    return charts


class MarkItDownConverter:
    """Default collaborator: MarkItDown for text, container media for images."""

    def __init__(self, markitdown: Any = None) -> None:
        self._markitdown = markitdown

    def _converter(self) -> Any:
        if self._markitdown is None:
            from markitdown import MarkItDown

            self._markitdown = MarkItDown()
        return self._markitdown

    def convert(self, input_path: Path, options: ConvertOptions) -> ConversionResult:
        path = Path(input_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path.name}")

        started = time.perf_counter()
        markdown = self._converter().convert(str(path)).markdown or ""

        images: list[ImageArtifact] = []
        if options.extract_images:
            images = extract_container_images(path, options.image_dir)
            if images:
                refs = "\n\n".join(f"![{img.name}]({IMAGES_SUBDIR}/{img.name})" for img in images)
                markdown = f"{markdown.rstrip()}\n\n## Images\n\n{refs}\n"

        charts = list_container_charts(path) if options.extract_charts else []

        metadata = {
            "format": path.suffix.lstrip(".").lower(),
            "sourceBytes": path.stat().st_size,
            "preserveLayout": options.preserve_layout,
            "processingTime": int((time.perf_counter() - started) * 1000),
        }
        return ConversionResult(
            markdown=markdown,
            images=tuple(images),
            charts=tuple(charts),
            metadata=metadata,
        )
