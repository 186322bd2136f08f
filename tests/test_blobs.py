"""
Unit tests for the on-disk blob store.
"""
import io
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from clipboard_backend.blobs import BlobStore
from clipboard_backend.errors import NotFound, PayloadTooLarge


def test_put_and_read(blobs: BlobStore):
    ref = blobs.put(b"hello", "greeting.txt")
    assert ref.endswith("-greeting.txt")
    assert "/" not in ref
    assert blobs.read(ref) == b"hello"
    assert blobs.exists(ref)


def test_put_fileobj_streams_in_chunks(tmp_path: Path):
    blobs = BlobStore(tmp_path / "blobs", chunk_size=3)
    ref = blobs.put_fileobj(io.BytesIO(b"0123456789"), "digits.bin", max_bytes=10)
    assert blobs.read(ref) == b"0123456789"


def test_put_fileobj_over_limit_leaves_nothing(blobs: BlobStore):
    with pytest.raises(PayloadTooLarge):
        blobs.put_fileobj(io.BytesIO(b"x" * 100), "big.bin", max_bytes=10)
    assert list(blobs.root.iterdir()) == []


def test_read_missing_raises_not_found(blobs: BlobStore):
    with pytest.raises(NotFound):
        blobs.read("00000000-0000-4000-8000-000000000000-missing.txt")


def test_invalid_refs_never_resolve(blobs: BlobStore):
    for ref in ("../escape.txt", "sub/dir.txt", "..", "x.part"):
        assert not blobs.exists(ref)
        with pytest.raises(NotFound):
            blobs.read(ref)
        assert blobs.delete_if_exists(ref) is False


class TestDeleteIfExists:
    def test_removes_existing_blob(self, blobs: BlobStore):
        ref = blobs.put(b"data", "a.txt")
        assert blobs.delete_if_exists(ref) is True
        assert not blobs.exists(ref)

    def test_missing_blob_is_not_an_error(self, blobs: BlobStore, caplog):
        ref = blobs.put(b"data", "a.txt")
        blobs.delete_if_exists(ref)
        with caplog.at_level(logging.WARNING, logger="clipboard_backend.blobs"):
            assert blobs.delete_if_exists(ref) is False
        assert [r for r in caplog.records if r.levelno >= logging.WARNING] == []

    def test_other_io_errors_are_logged_and_swallowed(self, blobs: BlobStore, caplog):
        ref = blobs.put(b"data", "a.txt")
        with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
            with caplog.at_level(logging.WARNING, logger="clipboard_backend.blobs"):
                assert blobs.delete_if_exists(ref) is False
        assert any("Failed to delete blob" in r.getMessage() for r in caplog.records)
        assert blobs.exists(ref)
