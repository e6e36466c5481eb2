"""JSON HTTP API mounted on the FastMCP server as custom Starlette routes.

Every response uses the ``{success, data|error}`` envelope. Known errors map
to their status code and public message; anything unexpected is logged with
its traceback and answered with a generic 500.
"""

from __future__ import annotations

import functools
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastmcp import FastMCP
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from youphoria.core.errors import (
    GENERIC_SERVER_MESSAGE,
    ExternalServiceError,
    Result,
    ValidationError,
    YouphoriaError,
)
from youphoria.core.server.session import RequestSession
from youphoria.core.storage.blobs import BlobStorageError
from youphoria.core.storage.database import DatabaseError
from youphoria.core.storage.encryption import EncryptionError
from youphoria.core.storage.models import ConnectedSource, parse_timestamp, to_utc_iso
from youphoria.core.storage.repository import RepositoryError
from youphoria.domains.health.domain_logic.metric_registry import (
    SOURCE_APP_TYPES,
    is_known_source,
    source_tier,
)
from youphoria.domains.health.domain_logic.normalizer import RawHealthEvent, RawHealthRecord

if TYPE_CHECKING:
    from youphoria.core.server.app import Services

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
API_VERSION = "1.0.0"
MAX_LIST_LIMIT = 1000

Handler = Callable[[Request], Awaitable[Response]]


# ----------------------------------------------------------------------
# Envelope helpers
# ----------------------------------------------------------------------


def ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": data}, status_code=status_code)


def error_response(exc: YouphoriaError) -> JSONResponse:
    return JSONResponse({"success": False, "error": exc.to_dict()}, status_code=exc.status_code)


def result_response(result: Result, serialize: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    if result.success:
        return JSONResponse(result.to_envelope(serialize), status_code=status_code)
    assert result.error is not None
    return JSONResponse(result.to_envelope(serialize), status_code=result.error.status_code)


def guarded(handler: Handler) -> Handler:
    """Translate exceptions raised by a route handler into envelopes."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except YouphoriaError as exc:
            if exc.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return error_response(exc)
        except (RepositoryError, DatabaseError, EncryptionError, BlobStorageError) as exc:
            logger.error("%s %s storage failure: %s", request.method, request.url.path, exc)
            return error_response(ExternalServiceError(str(exc)))
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return JSONResponse(
                {"success": False, "error": {"code": "internal_error", "message": GENERIC_SERVER_MESSAGE}},
                status_code=500,
            )

    return wrapper


# ----------------------------------------------------------------------
# Request parsing
# ----------------------------------------------------------------------


async def read_json(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _int_param(request: Request, name: str, default: int, *, maximum: int = MAX_LIST_LIMIT) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValidationError(f"{name} must be positive")
    return min(value, maximum)


def _bool_param(request: Request, name: str, default: bool = False) -> bool:
    raw = request.query_params.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _timestamp_param(request: Request, name: str) -> str | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return to_utc_iso(parse_timestamp(raw))
    except ValueError as exc:
        raise ValidationError(f"{name} is not an ISO 8601 timestamp") from exc


def _required_str(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise ValidationError(f"{keys[0]} is required")


def _raw_record(item: Any, source_app: str, index: int) -> RawHealthRecord:
    if not isinstance(item, dict):
        raise ValidationError(f"records[{index}] must be an object")
    if "value" not in item:
        raise ValidationError(f"records[{index}].value is required")
    return RawHealthRecord(
        source_app=source_app,
        field_name=_required_str(item, "fieldName", "field_name", "metricType"),
        value=item["value"],
        recorded_at=_required_str(item, "recordedAt", "recorded_at"),
        unit=item.get("unit") or "",
        source_device=item.get("sourceDevice") or item.get("source_device"),
        description=item.get("description"),
        metadata=item.get("metadata") or {},
    )


def _raw_event(item: Any, source_app: str, index: int) -> RawHealthEvent:
    if not isinstance(item, dict):
        raise ValidationError(f"events[{index}] must be an object")
    return RawHealthEvent(
        source_app=source_app,
        event_type=_required_str(item, "eventType", "event_type"),
        start_time=_required_str(item, "startTime", "start_time"),
        end_time=item.get("endTime") or item.get("end_time"),
        title=item.get("title") or "",
        description=item.get("description"),
        metrics=item.get("metrics") or {},
        source_device=item.get("sourceDevice") or item.get("source_device"),
    )


def _list_field(payload: dict[str, Any], name: str) -> list[Any]:
    value = payload.get(name) or []
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be a list")
    return value


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------


def register_http_routes(server: FastMCP, services: Services) -> None:
    """Register the ``/health`` and ``/api/v1`` routes on ``server``."""
    started_at = time.monotonic()

    def route(path: str, *methods: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            wrapped = guarded(handler)
            server.custom_route(path, methods=list(methods))(wrapped)
            return wrapped

        return decorator

    @route("/health", "GET")
    async def health(request: Request) -> Response:
        return ok({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(time.monotonic() - started_at, 1),
            "llm_provider": services.llm_client.provider_name,
        })

    @route(API_PREFIX, "GET")
    async def api_info(request: Request) -> Response:
        return ok({
            "name": "Youphoria API",
            "version": API_VERSION,
            "endpoints": {
                "chat": f"{API_PREFIX}/chat",
                "upload": f"{API_PREFIX}/upload",
                "health_data": f"{API_PREFIX}/health",
                "sources": f"{API_PREFIX}/sources",
                "users": f"{API_PREFIX}/users",
                "health": "/health",
                "mcp": "/mcp",
            },
        })

    # --- Chat ---------------------------------------------------------

    @route(f"{API_PREFIX}/chat/message", "POST")
    async def send_message(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        message = payload.get("message")
        if not isinstance(message, str):
            raise ValidationError("message is required")
        result = await services.chat.send_message(
            session.user_id, message, payload.get("conversationId") or payload.get("conversation_id"),
        )
        return result_response(result, lambda r: r.to_dict())

    @route(f"{API_PREFIX}/chat/conversations", "GET")
    async def list_conversations(request: Request) -> Response:
        session = RequestSession.from_request(request)
        conversations = services.chat.list_conversations(
            session.user_id, limit=_int_param(request, "limit", 50),
        )
        return ok([c.to_dict() for c in conversations])

    @route(f"{API_PREFIX}/chat/conversations", "POST")
    async def create_conversation(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        conversation = services.chat.create_conversation(session.user_id, payload.get("title"))
        return ok(conversation.to_dict(), status_code=201)

    @route(f"{API_PREFIX}/chat/conversations/{{conversation_id}}", "GET")
    async def get_conversation(request: Request) -> Response:
        session = RequestSession.from_request(request)
        conversation, messages = services.chat.get_conversation(
            session.user_id, request.path_params["conversation_id"],
        )
        return ok({**conversation.to_dict(), "messages": [m.to_dict() for m in messages]})

    @route(f"{API_PREFIX}/chat/conversations/{{conversation_id}}", "PATCH")
    async def rename_conversation(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        title = payload.get("title")
        conversation = services.chat.rename_conversation(
            session.user_id, request.path_params["conversation_id"], title if isinstance(title, str) else "",
        )
        return ok(conversation.to_dict())

    @route(f"{API_PREFIX}/chat/conversations/{{conversation_id}}", "DELETE")
    async def delete_conversation(request: Request) -> Response:
        session = RequestSession.from_request(request)
        conversation_id = request.path_params["conversation_id"]
        services.chat.delete_conversation(session.user_id, conversation_id)
        return ok({"id": conversation_id, "deleted": True})

    # --- Uploads ------------------------------------------------------

    @route(f"{API_PREFIX}/upload/file", "POST")
    async def upload_file(request: Request) -> Response:
        session = RequestSession.from_request(request)
        async with request.form(max_files=1) as form:
            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                raise ValidationError("No file provided; send multipart field 'file'")
            file_bytes = await upload.read()
            file_name = upload.filename or ""
            mime_type = upload.content_type or "application/octet-stream"

        result = await services.ingestion.ingest(file_bytes, file_name, mime_type, session.user_id)
        return result_response(result, lambda r: r.to_dict(), status_code=201)

    @route(f"{API_PREFIX}/upload/files", "GET")
    async def list_uploads(request: Request) -> Response:
        session = RequestSession.from_request(request)
        files = services.ingestion.list_files(session.user_id, limit=_int_param(request, "limit", 50))
        return ok([f.to_dict() for f in files])

    @route(f"{API_PREFIX}/upload/files/{{file_id}}", "GET")
    async def get_upload(request: Request) -> Response:
        session = RequestSession.from_request(request)
        uploaded = services.ingestion.get_file(session.user_id, request.path_params["file_id"])
        return ok(uploaded.to_dict(include_data=True))

    @route(f"{API_PREFIX}/upload/files/{{file_id}}", "DELETE")
    async def delete_upload(request: Request) -> Response:
        session = RequestSession.from_request(request)
        uploaded = services.ingestion.delete_file(session.user_id, request.path_params["file_id"])
        return ok({"id": uploaded.id, "file_name": uploaded.file_name, "deleted": True})

    # --- Health data --------------------------------------------------

    @route(f"{API_PREFIX}/health/sync", "POST")
    async def sync_health_data(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        source_app = _required_str(payload, "sourceApp", "source_app")
        records = [_raw_record(item, source_app, i) for i, item in enumerate(_list_field(payload, "records"))]
        events = [_raw_event(item, source_app, i) for i, item in enumerate(_list_field(payload, "events"))]
        result = services.sync.sync(session.user_id, source_app, records, events)
        return result_response(result, lambda r: r.to_dict())

    @route(f"{API_PREFIX}/health/records", "GET")
    async def get_health_records(request: Request) -> Response:
        session = RequestSession.from_request(request)
        metric_type = request.query_params.get("metricType")
        records = services.repository.get_health_records(
            session.user_id,
            metric_types=[m.strip() for m in metric_type.split(",") if m.strip()] if metric_type else None,
            since=_timestamp_param(request, "since"),
            until=_timestamp_param(request, "until"),
            canonical_only=_bool_param(request, "canonicalOnly"),
            limit=_int_param(request, "limit", 100),
        )
        return ok([r.to_dict() for r in records])

    @route(f"{API_PREFIX}/health/deduplicate", "POST")
    async def deduplicate(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        source_app = _required_str(payload, "sourceApp", "source_app")
        metric_types = _list_field(payload, "metricTypes")
        result = services.dedup.run_deduplication_check(
            session.user_id, source_app, [str(m) for m in metric_types] or None,
        )
        if "*" in result.failures:
            raise ExternalServiceError(f"Deduplication failed: {result.failures['*']}")
        return ok(result.to_dict())

    @route(f"{API_PREFIX}/health/context", "GET")
    async def health_context(request: Request) -> Response:
        session = RequestSession.from_request(request)
        query = (request.query_params.get("q") or "").strip()
        if not query:
            raise ValidationError("q is required")
        context = services.retriever.retrieve_context(session.user_id, query)
        return ok(context.to_dict())

    # --- Sources ------------------------------------------------------

    @route(f"{API_PREFIX}/sources", "GET")
    async def list_sources(request: Request) -> Response:
        session = RequestSession.from_request(request)
        sources = services.repository.get_connected_sources(session.user_id)
        return ok([s.to_dict() for s in sources])

    @route(f"{API_PREFIX}/sources", "PUT")
    async def connect_source(request: Request) -> Response:
        payload = await read_json(request)
        session = RequestSession.from_request(request, payload)
        app_name = _required_str(payload, "appName", "app_name", "sourceApp")
        if not is_known_source(app_name):
            raise ValidationError(f"Unknown source app: {app_name}")
        credentials = payload.get("credentials")
        if credentials is not None and not isinstance(credentials, dict):
            raise ValidationError("credentials must be an object")
        source = services.repository.upsert_connected_source(ConnectedSource(
            id="",
            user_id=session.user_id,
            app_name=app_name,
            app_type=SOURCE_APP_TYPES[source_tier(app_name)],
            credentials=credentials,
            is_active=bool(payload.get("isActive", True)),
        ))
        return ok(source.to_dict())

    # --- Account data -------------------------------------------------

    @route(f"{API_PREFIX}/users/me/data", "DELETE")
    async def delete_my_data(request: Request) -> Response:
        session = RequestSession.from_request(request)
        deletion = services.delete_user_data(session.user_id)
        return ok({
            "records": deletion.records,
            "events": deletion.events,
            "sources": deletion.sources,
            "conversations": deletion.conversations,
            "uploaded_files": deletion.uploaded_files,
            "total": deletion.total,
        })

    logger.info("HTTP API routes registered under %s", API_PREFIX)
