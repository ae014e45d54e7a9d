from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import urlencode

from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import ALLOWED_IMAGE_EXTS, ARTIFACT_URL_PATH, IMAGES_SUBDIR


_MD_IMG_RE = re.compile(r"(?P<head>!\[(?P<alt>[^\]]*)\]\()(?P<url>[^)\s]+)(?P<rest>[^)]*\))")
_HTML_IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)

IMAGE_UNAVAILABLE_NOTICE = (
    "\n\n---\n"
    "**Image Not Available**\n\n"
    "*This image cannot be displayed in the preview. Download the ZIP file to view all images.*\n\n"
    "---\n\n"
)


def artifact_url(session_id: str, name: str, base_path: str = ARTIFACT_URL_PATH) -> str:
    return f"{base_path}?{urlencode({'session': session_id, 'path': name})}"


def _local_image_name(url: str) -> str | None:
    """Basename of a relative images/... reference, or None for anything else."""
    u = (url or "").strip()
    lowered = u.lower()
    if lowered.startswith(("http://", "https://", "data:", "/")):
        return None
    if lowered.startswith("./"):
        u, lowered = u[2:], lowered[2:]
    if not lowered.startswith(f"{IMAGES_SUBDIR}/"):
        return None
    core = u.split("?", 1)[0].split("#", 1)[0]
    name = Path(core).name
    return name or None


def _is_image_url(url: str) -> bool:
    core = (url or "").split("?", 1)[0].split("#", 1)[0]
    return Path(core).suffix.lower() in ALLOWED_IMAGE_EXTS


def _parse_img_tag(fragment: str) -> Tag | None:
    soup = BeautifulSoup(fragment, "html.parser")
    tag = soup.find("img")
    return tag if isinstance(tag, Tag) else None


def rewrite_image_references(markdown_text: str, session_id: str, base_path: str = ARTIFACT_URL_PATH) -> str:
    """Point images/<name> references (markdown and <img>) at the artifact endpoint."""
    if not markdown_text:
        return markdown_text or ""

    def _md_sub(m: re.Match) -> str:
        name = _local_image_name(m.group("url"))
        if not name:
            return m.group(0)
        return f"{m.group('head')}{artifact_url(session_id, name, base_path)}{m.group('rest')}"

    def _html_sub(m: re.Match) -> str:
        tag = _parse_img_tag(m.group(0))
        if tag is None:
            return m.group(0)
        name = _local_image_name(str(tag.get("src") or ""))
        if not name:
            return m.group(0)
        tag["src"] = artifact_url(session_id, name, base_path)
        return str(tag)

    text = _MD_IMG_RE.sub(_md_sub, markdown_text)
    return _HTML_IMG_RE.sub(_html_sub, text)


def replace_images_with_notice(markdown_text: str, image_count: int) -> tuple[str, int]:
    """Swap every local image reference for a notice and prepend a preview banner.

    Used when the images cannot be served back to the browser. Returns the new
    text and the number of references replaced.
    """
    text = markdown_text or ""
    replaced = 0

    def _md_sub(m: re.Match) -> str:
        nonlocal replaced
        url = m.group("url")
        if url.lower().startswith(("http://", "https://")):
            return m.group(0)
        if _local_image_name(url) is None and not _is_image_url(url):
            return m.group(0)
        replaced += 1
        return IMAGE_UNAVAILABLE_NOTICE

    def _html_sub(m: re.Match) -> str:
        nonlocal replaced
        tag = _parse_img_tag(m.group(0))
        src = str(tag.get("src") or "") if tag is not None else ""
        if src.lower().startswith(("http://", "https://")):
            return m.group(0)
        if _local_image_name(src) is None and not _is_image_url(src):
            return m.group(0)
        replaced += 1
        return IMAGE_UNAVAILABLE_NOTICE

    text = _MD_IMG_RE.sub(_md_sub, text)
    text = _HTML_IMG_RE.sub(_html_sub, text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()

    if image_count > 0:
        banner = (
            "> **Preview Notice**  \n"
            f"> This document contains **{image_count} image(s)** that cannot be displayed in the web preview.  \n"
            "> **Download the ZIP file** below to access the complete document with all images.\n\n"
            "---\n\n"
        )
        text = banner + text
    return text, replaced
