"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Youphoria health server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Server
    # Loopback by default: the HTTP API trusts the X-User-Id header and has no
    # auth layer of its own.
    youphoria_host: str = "127.0.0.1"
    youphoria_port: int = 8001
    youphoria_log_level: str = "info"
    youphoria_allow_insecure_bind: bool = False

    # Chat / extraction model
    llm_provider: Literal["gemini", "anthropic", "openai", "mock"] = "gemini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    llm_timeout_seconds: float = 60.0

    # Storage (health data bank + uploaded blobs)
    db_path: str = "~/.youphoria/health.db"
    blob_storage_path: str = "~/.youphoria/uploads"
    encryption_key: str = ""

    # HTTP surface
    cors_origins: str = "http://localhost:3000,http://localhost:19006"
    rate_limit_window_ms: int = 900_000
    rate_limit_max_requests: int = 100

    # File ingestion
    max_upload_bytes: int = 10 * 1024 * 1024
    extraction_timeout_seconds: float = 90.0
    extraction_min_confidence: float = 0.5

    # Chat + retrieval
    chat_history_window: int = 20
    rag_max_records: int = 200
    rag_default_window_days: int = 30

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
