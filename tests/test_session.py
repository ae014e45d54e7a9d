import pytest

from file2md_backend.errors import InvalidSession
from file2md_backend.session import (
    SESSION_ID_RE,
    SUFFIX_LENGTH,
    is_session_expired,
    new_session_id,
    parse_session_id,
    session_created_at_ms,
    session_id_prefix,
)


RETENTION_MS = 60 * 60 * 1000


def test_new_session_id_matches_format():
    sid = new_session_id(now=1700000000123)
    assert SESSION_ID_RE.match(sid)
    stamp, suffix = sid.split("-")
    assert stamp == "1700000000123"
    assert len(suffix) >= 6 and len(suffix) == SUFFIX_LENGTH


def test_ids_minted_in_same_millisecond_are_distinct():
    ids = {new_session_id(now=1700000000000) for _ in range(2000)}
    assert len(ids) == 2000


def test_created_at_is_derived_from_prefix():
    assert session_created_at_ms("1700000000123-abc123") == 1700000000123


@pytest.mark.parametrize(
    "bad",
    ["", "abc", "123", "-abc", "123-", "12a-abc", "123-ab/c", "123-../x", "123-abc-images", None, 42],
)
def test_parse_rejects_malformed_ids(bad):
    with pytest.raises(InvalidSession):
        parse_session_id(bad)


def test_parse_strips_whitespace():
    assert parse_session_id("  123-abc ") == "123-abc"


def test_expiry_boundary():
    created = 1700000000000
    sid = f"{created}-abcdef"
    assert not is_session_expired(sid, RETENTION_MS, now=created + RETENTION_MS - 1)
    assert not is_session_expired(sid, RETENTION_MS, now=created + RETENTION_MS)
    assert is_session_expired(sid, RETENTION_MS, now=created + RETENTION_MS + 1)


def test_session_id_prefix_of_artifact_names():
    assert session_id_prefix("1700000000000-abc123") == "1700000000000-abc123"
    assert session_id_prefix("1700000000000-abc123-images") == "1700000000000-abc123"
    assert session_id_prefix("report__1700000000000-abc123.zip") is None
    assert session_id_prefix("99999999999999-a__1700000000000-abc123.md") is None
    assert session_id_prefix("1700000000000-abc123-images-old") is None
    assert session_id_prefix("notes.txt") is None
