from __future__ import annotations

import re
from pathlib import Path


_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories, no parent references)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    if ".." in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving user-controlled names.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def is_within(path: Path, base_dir: Path) -> bool:
    try:
        resolved = path.resolve()
        base = base_dir.resolve()
    except OSError:
        return False
    return resolved == base or base in resolved.parents


def sanitize_upload_filename(filename: str | None) -> str:
    """Reduce an uploaded filename to a flat name made of [a-zA-Z0-9.-_]."""
    name = Path((filename or "").replace("\\", "/")).name
    name = _UNSAFE_FILENAME_CHARS_RE.sub("_", name)
    # Leading dots would hide the file or turn it into "..".
    name = name.lstrip(".")
    return name or "upload"


def strip_extension(filename: str) -> str:
    stem, dot, _ext = filename.rpartition(".")
    if not dot or not stem:
        return filename
    return stem


def is_bad_zip_member(name: str) -> bool:
    # Zip Slip defenses.
    if not name or name.strip() == "":
        return True
    if name.startswith("/") or name.startswith("\\"):
        return True
    if ":" in name:
        # block drive letters / weird schemes
        return True
    parts = Path(name.replace("\\", "/")).parts
    if any(p == ".." for p in parts):
        return True
    return False
