import uuid
from pathlib import Path

import pytest

from clipboard_backend.security import (
    api_key_matches,
    is_authorized,
    is_safe_basename,
    new_item_id,
    normalize_item_id,
    safe_join,
    sanitize_filename,
)


class TestItemIds:
    def test_new_ids_are_unique_uuid4(self):
        ids = {new_item_id() for _ in range(200)}
        assert len(ids) == 200
        for item_id in ids:
            assert uuid.UUID(item_id).version == 4

    def test_normalize_lowercases_and_strips(self):
        raw = " 6F9619FF-8B86-4D11-B42D-00C04FC964FF "
        assert normalize_item_id(raw) == "6f9619ff-8b86-4d11-b42d-00c04fc964ff"

    @pytest.mark.parametrize("bad", ["", "abc", "../etc/passwd", "6f9619ff8b864d11b42d00c04fc964ff", None])
    def test_normalize_rejects_non_canonical(self, bad):
        with pytest.raises(ValueError):
            normalize_item_id(bad)


class TestFilenames:
    def test_sanitize_keeps_simple_names(self):
        assert sanitize_filename("report.pdf") == "report.pdf"

    def test_sanitize_strips_directories(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("C:\\Users\\me\\notes.txt") == "notes.txt"

    def test_sanitize_replaces_odd_characters(self):
        assert sanitize_filename("résumé;rm -rf.txt") == "r_sum__rm -rf.txt"

    def test_sanitize_empty_falls_back(self):
        assert sanitize_filename(None) == "file"
        assert sanitize_filename("...") == "file"

    def test_sanitize_truncates_but_keeps_extension(self):
        name = sanitize_filename("a" * 300 + ".tar", max_chars=50)
        assert len(name) == 50
        assert name.endswith(".tar")

    def test_is_safe_basename(self):
        assert is_safe_basename("a.txt")
        assert not is_safe_basename("dir/a.txt")
        assert not is_safe_basename("..")
        assert not is_safe_basename("")

    def test_safe_join_blocks_traversal(self, tmp_path: Path):
        assert safe_join(tmp_path, "a.txt") == (tmp_path / "a.txt").resolve()
        with pytest.raises(ValueError):
            safe_join(tmp_path, "..", "outside.txt")


class TestAuthorization:
    def test_key_match(self):
        assert api_key_matches("secret", "secret")
        assert not api_key_matches("Secret", "secret")
        assert not api_key_matches(None, "secret")
        assert not api_key_matches("", "")

    @pytest.mark.parametrize(
        "channels",
        [
            {"header_key": "secret"},
            {"query_key": "secret"},
            {"cookie_key": "secret"},
        ],
    )
    def test_every_channel_grants_the_same_access(self, channels):
        assert is_authorized("secret", **channels)

    def test_missing_or_wrong_key_denied(self):
        assert not is_authorized("secret")
        assert not is_authorized("secret", header_key="nope")
