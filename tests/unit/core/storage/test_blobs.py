"""Tests for the local blob store and storage path rules."""

from __future__ import annotations

import pytest

from youphoria.core.storage.blobs import (
    BlobStorageError,
    BlobStore,
    LocalBlobStore,
    build_storage_path,
    safe_file_name,
)


class TestStoragePath:
    def test_path_is_user_namespaced(self):
        path = build_storage_path("user-1", "labs.pdf", now_ms=1700000000000, nonce="a1b2c3d4")
        assert path == "user-1/1700000000000-a1b2c3d4-labs.pdf"

    def test_same_name_same_millisecond_gets_distinct_paths(self):
        first = build_storage_path("user-1", "labs.pdf", now_ms=1700000000000)
        second = build_storage_path("user-1", "labs.pdf", now_ms=1700000000000)
        assert first != second
        assert first.startswith("user-1/1700000000000-") and first.endswith("-labs.pdf")

    def test_unsafe_characters_replaced(self):
        assert safe_file_name("my labs (Jan).pdf") == "my_labs_Jan_.pdf"

    def test_directories_stripped(self):
        assert safe_file_name("../../etc/passwd") == "passwd"
        assert safe_file_name("C:\\Users\\me\\scan.png") == "scan.png"

    def test_empty_name_gets_placeholder(self):
        assert safe_file_name("...") == "upload"


class TestLocalBlobStore:
    def test_put_get_delete(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        store.put("u1/1-a.txt", b"hello", "text/plain")
        assert store.exists("u1/1-a.txt")
        assert store.get("u1/1-a.txt") == b"hello"
        store.delete("u1/1-a.txt")
        assert not store.exists("u1/1-a.txt")

    def test_delete_missing_is_noop(self, tmp_path):
        LocalBlobStore(tmp_path).delete("u1/never-written.txt")

    def test_read_missing_raises(self, tmp_path):
        with pytest.raises(BlobStorageError):
            LocalBlobStore(tmp_path).get("u1/missing.txt")

    def test_path_escape_rejected(self, tmp_path):
        store = LocalBlobStore(tmp_path / "root")
        with pytest.raises(BlobStorageError, match="escapes"):
            store.put("../outside.txt", b"x", "text/plain")

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(LocalBlobStore(tmp_path), BlobStore)
