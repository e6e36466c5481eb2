"""Shared test fixtures for Youphoria Health tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("BLOB_STORAGE_PATH", str(tmp_path / "blobs"))

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from youphoria.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from youphoria.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def health_repository(health_db, field_encryptor):
    """Create a HealthRepository backed by in-memory SQLite."""
    from youphoria.core.storage.repository import HealthRepository

    return HealthRepository(health_db, field_encryptor)


@pytest.fixture
def conversation_repository(health_db):
    from youphoria.core.storage.chat_repository import ConversationRepository

    return ConversationRepository(health_db)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from youphoria.core.audit.logger import AuditLogger

    return AuditLogger(health_db)


@pytest.fixture
def blob_store(tmp_path):
    from youphoria.core.storage.blobs import LocalBlobStore

    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def dedup_engine(health_repository):
    from youphoria.domains.health.domain_logic.deduplication import DeduplicationEngine

    return DeduplicationEngine(health_repository)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    from youphoria.core.llm.providers.mock import MockProvider

    return MockProvider("Here is a look at your data.")


@pytest.fixture
def llm_client(mock_provider):
    from youphoria.core.llm.client import LLMClient

    return LLMClient(mock_provider, timeout_seconds=5.0)

