from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable

from .config import IMAGES_SUBDIR
from .converter import ImageArtifact
from .errors import PackagingError
from .security import is_within


logger = logging.getLogger(__name__)


@dataclass
class PackResult:
    entries: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    # Images packed even though they live outside the expected image dir.
    outside_image_dir: list[str] = field(default_factory=list)


def _unique_arcname(basename: str, used: set[str]) -> str:
    arcname = f"{IMAGES_SUBDIR}/{basename}"
    if arcname not in used:
        return arcname
    stem, suffix = Path(basename).stem, Path(basename).suffix
    n = 2
    while f"{IMAGES_SUBDIR}/{stem}_{n}{suffix}" in used:
        n += 1
    return f"{IMAGES_SUBDIR}/{stem}_{n}{suffix}"


def pack_archive(
    dest: BinaryIO,
    markdown_text: str,
    base_name: str,
    images: Iterable[ImageArtifact],
    image_dir: Path | None = None,
) -> PackResult:
    """Stream a ZIP with <base_name>.md and images/<name> entries into dest.

    Images are read from disk entry by entry, so memory stays flat regardless of
    how many there are. An image outside image_dir is still packed but logged.
    """
    result = PackResult()
    used: set[str] = set()
    try:
        with zipfile.ZipFile(dest, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            md_name = f"{base_name or 'document'}.md"
            zf.writestr(md_name, markdown_text or "")
            used.add(md_name)
            result.entries.append(md_name)

            for image in images:
                source = Path(image.saved_path or "")
                if not image.saved_path or not source.name:
                    result.skipped.append(image.name or "")
                    continue
                if image_dir is not None and not is_within(source, image_dir):
                    logger.warning("Image %s is outside the image dir; packing it anyway", source.name)
                    result.outside_image_dir.append(source.name)

                if not source.is_file():
                    logger.warning("Image %s is missing; leaving it out of the archive", source.name)
                    result.skipped.append(image.name)
                    continue

                arcname = _unique_arcname(image.name, used)
                # Errors from here on come from the sink and fail the whole archive.
                zf.write(source, arcname=arcname)
                used.add(arcname)
                result.entries.append(arcname)
    except (OSError, zipfile.BadZipFile, ValueError) as e:
        raise PackagingError(f"Packaging failed: {e}") from e
    return result
