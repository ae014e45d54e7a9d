from __future__ import annotations

import re
import secrets
import string
import time

from .errors import InvalidSession


# Downstream expiry checks parse the numeric prefix, so keep this exact shape.
SESSION_ID_RE = re.compile(r"^\d+-[A-Za-z0-9]+$")
_SESSION_ARTIFACT_RE = re.compile(r"^(\d+-[A-Za-z0-9]+)(?:-images)?$")

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 10


def now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id(now: int | None = None) -> str:
    """Mint `<epochMillis>-<random suffix>`; never reuses an id because the suffix is fresh."""
    stamp = now_ms() if now is None else int(now)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{stamp}-{suffix}"


def parse_session_id(session_id: str) -> str:
    """Validate a session id strictly so forged tokens never reach the filesystem."""
    if not isinstance(session_id, str):
        raise InvalidSession()
    session_id = session_id.strip()
    if not SESSION_ID_RE.match(session_id):
        raise InvalidSession()
    return session_id


def session_created_at_ms(session_id: str) -> int:
    sid = parse_session_id(session_id)
    return int(sid.split("-", 1)[0])


def session_age_ms(session_id: str, now: int | None = None) -> int:
    current = now_ms() if now is None else int(now)
    return current - session_created_at_ms(session_id)


def is_session_expired(session_id: str, retention_ms: int, now: int | None = None) -> bool:
    return session_age_ms(session_id, now) > retention_ms


def session_id_prefix(name: str) -> str | None:
    """Return the session id of a directory the store creates, if name is one.

    Only exact `<sid>` and `<sid>-images` names match. Output files are named
    `<name>__<sid>.zip` from the upload filename and never match.
    """
    match = _SESSION_ARTIFACT_RE.match(name or "")
    if not match:
        return None
    return match.group(1)
