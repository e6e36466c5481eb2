"""Blob storage for uploaded documents, namespaced per user.

Paths look like ``{user_id}/{epoch_ms}-{nonce}-{safe_file_name}``. ``LocalBlobStore``
keeps them under a root directory on disk.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BlobStorageError(Exception):
    """Raised when a blob cannot be written, read or removed."""


def safe_file_name(file_name: str) -> str:
    """Strip directories and characters that don't belong in a storage key."""
    name = Path(file_name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned[:120] or "upload"


def build_storage_path(
    user_id: str,
    file_name: str,
    *,
    now_ms: int | None = None,
    nonce: str | None = None,
) -> str:
    """A fresh key per upload; the nonce keeps same-name uploads in one millisecond apart."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    nonce = nonce or uuid.uuid4().hex[:8]
    return f"{safe_file_name(user_id)}/{ts}-{nonce}-{safe_file_name(file_name)}"


@runtime_checkable
class BlobStore(Protocol):
    """Minimal object-store interface used by the ingestion pipeline."""

    def put(self, path: str, data: bytes, content_type: str) -> None: ...

    def get(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...


class LocalBlobStore:
    """Filesystem-backed blob store rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root not in target.parents:
            raise BlobStorageError(f"Blob path escapes storage root: {path}")
        return target

    def put(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise BlobStorageError(f"Failed to write blob {path}: {exc}") from exc
        logger.debug("Stored blob %s (%d bytes, %s)", path, len(data), content_type)

    def get(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as exc:
            raise BlobStorageError(f"Failed to read blob {path}: {exc}") from exc

    def delete(self, path: str) -> None:
        """Remove a blob; deleting a missing blob is a no-op."""
        try:
            self._resolve(path).unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStorageError(f"Failed to delete blob {path}: {exc}") from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()
