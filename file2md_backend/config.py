from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Mapping


# file2md_backend/ -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Markers set by serverless platforms where /tmp does not survive between invocations.
SERVERLESS_ENV_MARKERS = ("VERCEL", "VERCEL_ENV", "AWS_LAMBDA_FUNCTION_NAME", "K_SERVICE", "NETLIFY")


def is_serverless_environment(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return any((env.get(marker) or "").strip() for marker in SERVERLESS_ENV_MARKERS)


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


IS_SERVERLESS = is_serverless_environment()

# Private working area: staged uploads (<sid>/) and converter image dirs (<sid>-images/).
WORK_ROOT = _env_path(
    "FILE2MD_WORK_ROOT",
    Path(tempfile.gettempdir()) / "file2md" if IS_SERVERLESS else PROJECT_ROOT / "temp",
)

# Public directory; when it is missing the app falls back to inline output.
PUBLIC_ROOT = _env_path("FILE2MD_PUBLIC_ROOT", PROJECT_ROOT / "public")

# Where downloadable files and public image mirrors are written in disk mode.
OUTPUT_ROOT = _env_path("FILE2MD_OUTPUT_ROOT", WORK_ROOT if IS_SERVERLESS else PUBLIC_ROOT / "downloads")
DOWNLOADS_URL_PREFIX = "/downloads"

# auto | disk | inline
OUTPUT_MODE = (os.environ.get("FILE2MD_OUTPUT_MODE") or "auto").strip().lower()

# How long a session's artifacts are kept.
RETENTION_SECONDS = float(os.environ.get("FILE2MD_RETENTION_SECONDS", "3600"))

# Minimum wall-clock gap between two traffic-triggered sweeps.
SWEEP_INTERVAL_SECONDS = float(os.environ.get("FILE2MD_SWEEP_INTERVAL_SECONDS", "1800"))

MAX_UPLOAD_BYTES = int(os.environ.get("FILE2MD_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))  # 50MB

LOG_LEVEL = (os.environ.get("FILE2MD_LOG_LEVEL") or "INFO").strip().upper()

ALLOWED_UPLOAD_MIME_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/x-hwp",
    "application/x-hwpx",
    # HWP files are CFB containers and HWPX files are ZIP containers.
    "application/x-cfb",
    "application/zip",
}
ALLOWED_UPLOAD_EXTS = {".pdf", ".docx", ".xlsx", ".pptx", ".hwp", ".hwpx"}

# Anything else is served as image/png.
IMAGE_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}
ALLOWED_IMAGE_EXTS = set(IMAGE_CONTENT_TYPES) | {".svg", ".emf", ".wmf"}
# SVG can carry script, so it is extracted and archived but never served back.
SERVABLE_IMAGE_EXTS = ALLOWED_IMAGE_EXTS - {".svg"}

IMAGES_SUBDIR = "images"
IMAGE_DIR_SUFFIX = "-images"
ARTIFACT_URL_PATH = "/serve-artifact"
