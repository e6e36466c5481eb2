"""Youphoria Health server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery (`fastmcp run src/youphoria/core/server/app.py:mcp`)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastmcp import FastMCP

from youphoria.core.audit.logger import AuditLogger
from youphoria.core.config.settings import Settings, get_settings
from youphoria.core.llm.client import LLMClient
from youphoria.core.llm.provider import LLMProvider, create_provider
from youphoria.core.server.http_api import register_http_routes
from youphoria.core.storage.blobs import BlobStorageError, BlobStore, LocalBlobStore
from youphoria.core.storage.chat_repository import ConversationRepository
from youphoria.core.storage.database import HealthDatabase
from youphoria.core.storage.encryption import FieldEncryptor
from youphoria.core.storage.repository import HealthRepository, UserDataDeletion
from youphoria.domains.health.chat.orchestrator import ChatOrchestrator
from youphoria.domains.health.domain_logic.deduplication import DeduplicationEngine
from youphoria.domains.health.ingestion.extraction import ExtractionService, LLMExtractionService
from youphoria.domains.health.ingestion.pipeline import FileIngestionPipeline
from youphoria.domains.health.rag.retriever import HealthContextRetriever
from youphoria.domains.health.sync_service import SyncService
from youphoria.domains.health.tools.data_tools import register_data_tools
from youphoria.domains.health.tools.health_tools import register_health_tools
from youphoria.domains.health.tools.import_tools import register_import_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Youphoria Health"
SERVER_VERSION = "0.1.0"


@dataclass
class Services:
    """Everything the HTTP routes and MCP tools call into, built once per app."""

    settings: Settings
    database: HealthDatabase
    repository: HealthRepository
    conversations: ConversationRepository
    audit: AuditLogger
    blob_store: BlobStore
    llm_client: LLMClient
    dedup: DeduplicationEngine
    sync: SyncService
    ingestion: FileIngestionPipeline
    retriever: HealthContextRetriever
    chat: ChatOrchestrator

    def delete_user_data(self, user_id: str) -> UserDataDeletion:
        """Delete every row stored for ``user_id``, then purge their upload blobs."""
        deletion = self.repository.delete_all_user_data(user_id)
        for path in deletion.storage_paths:
            try:
                self.blob_store.delete(path)
            except BlobStorageError as exc:
                logger.error("Could not purge blob %s: %s", path, exc)
        self.audit.log_data_delete(
            operation="user.delete_all_data",
            user_id=user_id,
            count=deletion.total,
            metadata={"blobs": len(deletion.storage_paths)},
        )
        return deletion


def _select_provider(settings: Settings) -> LLMProvider:
    if settings.llm_provider == "mock":
        provider_name, api_key, model = "mock", "", ""
    elif settings.llm_provider == "gemini":
        api_key, model = settings.gemini_api_key, settings.gemini_model
        provider_name = "gemini" if api_key else "mock"
    elif settings.llm_provider == "anthropic":
        api_key, model = settings.anthropic_api_key, settings.anthropic_model
        provider_name = "anthropic" if api_key else "mock"
    elif settings.llm_provider == "openai":
        api_key, model = settings.openai_api_key, settings.openai_model
        provider_name = "openai" if api_key else "mock"
    else:  # pragma: no cover
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")

    if provider_name == "mock" and settings.llm_provider != "mock":
        logger.warning(
            "No API key configured for provider '%s'; falling back to mock provider",
            settings.llm_provider,
        )
    return create_provider(provider_name=provider_name, api_key=api_key, model=model)


def build_services(
    settings: Settings,
    *,
    provider_override: LLMProvider | None = None,
    database_override: HealthDatabase | None = None,
    blob_store_override: BlobStore | None = None,
    extraction_service_override: ExtractionService | None = None,
) -> Services:
    """Wire storage, model client and domain services from ``settings``."""
    # --- Storage (health data bank) ---
    if database_override is not None:
        database = database_override
    else:
        database = HealthDatabase(settings.db_path)
    database.initialize()
    logger.info("Health data bank ready: %s (schema v%d)", settings.db_path, database.get_schema_version())

    encryption_key = settings.encryption_key
    if not encryption_key:
        encryption_key = FieldEncryptor.generate_key()
        logger.warning(
            "No ENCRYPTION_KEY configured; using an ephemeral key. "
            "Encrypted fields written now will be unreadable after a restart."
        )
    repository = HealthRepository(database, FieldEncryptor(encryption_key))
    conversations = ConversationRepository(database)
    audit = AuditLogger(database)

    blob_store = blob_store_override or LocalBlobStore(settings.blob_storage_path)

    # --- Model client ---
    provider = provider_override or _select_provider(settings)
    llm_client = LLMClient(provider, timeout_seconds=settings.llm_timeout_seconds)
    logger.info("LLM provider: %s", llm_client.provider_name)

    # --- Domain services ---
    dedup = DeduplicationEngine(repository)
    retriever = HealthContextRetriever(
        repository,
        max_records=settings.rag_max_records,
        default_window_days=settings.rag_default_window_days,
    )
    extraction = extraction_service_override or LLMExtractionService(
        llm_client, timeout_seconds=settings.extraction_timeout_seconds,
    )
    return Services(
        settings=settings,
        database=database,
        repository=repository,
        conversations=conversations,
        audit=audit,
        blob_store=blob_store,
        llm_client=llm_client,
        dedup=dedup,
        sync=SyncService(repository, dedup),
        ingestion=FileIngestionPipeline(
            repository,
            blob_store,
            extraction,
            dedup,
            audit_logger=audit,
            max_upload_bytes=settings.max_upload_bytes,
            min_confidence=settings.extraction_min_confidence,
        ),
        retriever=retriever,
        chat=ChatOrchestrator(
            conversations,
            retriever,
            llm_client,
            audit_logger=audit,
            history_window=settings.chat_history_window,
        ),
    )


def create_app(
    *,
    settings: Settings | None = None,
    provider_override: LLMProvider | None = None,
    database_override: HealthDatabase | None = None,
    blob_store_override: BlobStore | None = None,
    extraction_service_override: ExtractionService | None = None,
) -> FastMCP:
    """Create and configure the Youphoria Health server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the health data bank and blob store
    3. Selects the LLM provider (mock when no key is configured)
    4. Builds the sync, ingestion, retrieval and chat services
    5. Registers the MCP tools and the /api/v1 HTTP routes
    """
    settings = settings or get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Youphoria wellness server. Answers questions about the user's own "
            "health data with retrieval-augmented chat, imports Apple Health and "
            "Strong exports, and keeps one canonical value per metric and time "
            "bucket across overlapping sources. Wellness guidance only; no diagnoses."
        ),
    )

    services = build_services(
        settings,
        provider_override=provider_override,
        database_override=database_override,
        blob_store_override=blob_store_override,
        extraction_service_override=extraction_service_override,
    )

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "llm_provider": services.llm_client.provider_name,
            "schema_version": services.database.get_schema_version(),
            "audit_events": services.audit.count_events(),
        }

    register_health_tools(server, services)
    register_import_tools(server, services)
    register_data_tools(server, services)
    logger.info("MCP tools registered")

    register_http_routes(server, services)

    return server


# Module-level instance for FastMCP discovery (`fastmcp run ...app.py:mcp`).
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
