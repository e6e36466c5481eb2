"""Fernet field encryption for sensitive payloads at rest.

Connected-app credentials and the structured data extracted from uploaded
documents are encrypted before they reach SQLite. Scalar health records
stay in plaintext columns so range queries and deduplication can use
indexes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """JSON-in, token-out wrapper around a Fernet key.

    Usage::

        encryptor = FieldEncryptor(key=settings.encryption_key)
        token = encryptor.encrypt({"access_token": "..."})
        encryptor.decrypt(token)  # {"access_token": "..."}
    """

    def __init__(self, key: str) -> None:
        """
        Args:
            key: A Fernet key string (see :meth:`generate_key`).

        Raises:
            EncryptionError: If the key is empty or malformed.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, data: Any) -> str | None:
        """Serialize ``data`` to compact JSON and encrypt it.

        ``None`` is stored as SQL NULL rather than an encrypted ``null``.

        Raises:
            EncryptionError: If the value is not JSON-serializable.
        """
        if data is None:
            return None
        try:
            plaintext = json.dumps(data, separators=(",", ":"), default=str).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str | None) -> Any:
        """Decrypt a token produced by :meth:`encrypt`.

        Raises:
            EncryptionError: If the token is corrupt or was made with another key.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decrypted payload is not JSON: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
