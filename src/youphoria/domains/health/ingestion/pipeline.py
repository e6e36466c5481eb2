"""File ingestion pipeline: upload → blob → extraction → records → dedup.

Order of operations for one upload:

1. validate (user, non-empty, size limit, MIME allow-list); nothing is
   stored for a rejected file
2. write the blob to ``{user_id}/{epoch_ms}-{safe_name}``
3. prepare content and call the extraction service
4. reject answers below the confidence threshold
5. map extracted metrics onto canonical records (source ``File Upload``)
6. store the file row and its records in one transaction
7. run deduplication for the affected metric types

Any failure after step 2 deletes the blob again, so a failed upload leaves
nothing behind. A deduplication failure does not fail the upload.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timezone
from typing import Any

from youphoria.core.audit.logger import AuditLogger
from youphoria.core.errors import (
    ExternalServiceError,
    LowConfidenceExtractionError,
    NotFoundError,
    Result,
    ValidationError,
    YouphoriaError,
)
from youphoria.core.storage.blobs import BlobStorageError, BlobStore, build_storage_path
from youphoria.core.storage.models import UploadedFile, parse_timestamp, to_utc_iso
from youphoria.core.storage.repository import HealthRepository, RepositoryError
from youphoria.domains.health.domain_logic.deduplication import DeduplicationEngine, DeduplicationResult
from youphoria.domains.health.domain_logic.metric_registry import SourceApp
from youphoria.domains.health.domain_logic.normalizer import (
    NormalizationFailure,
    RawHealthRecord,
    normalize_batch,
)
from youphoria.domains.health.ingestion.content import prepare_content, validate_upload
from youphoria.domains.health.ingestion.extraction import (
    ExtractedHealthData,
    ExtractionService,
    categorize_data,
)

logger = logging.getLogger(__name__)

UPLOAD_SOURCE = SourceApp.FILE_UPLOAD.value

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_MIN_CONFIDENCE = 0.5


@dataclass
class IngestedFile:
    """What a successful upload produced."""

    file: UploadedFile
    records_created: int = 0
    records_existing: int = 0
    unmapped_metrics: list[NormalizationFailure] = field(default_factory=list)
    dedup: DeduplicationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file.to_dict(include_data=True),
            "records_created": self.records_created,
            "records_existing": self.records_existing,
            "unmapped_metrics": [
                {"field_name": f.field_name, "reason": f.error.code} for f in self.unmapped_metrics
            ],
            "deduplication": self.dedup.to_dict() if self.dedup else None,
        }


IngestionResult = Result[IngestedFile]


def _range_bound(value: str | None, *, end: bool) -> str | None:
    """Widen a YYYY-MM-DD bound to a full UTC timestamp; keep explicit times."""
    if not value:
        return None
    try:
        parsed = parse_timestamp(value)
    except (TypeError, ValueError):
        return None
    if len(value.strip()) <= 10:
        day_edge = dt_time(23, 59, 59, 999000) if end else dt_time(0, 0)
        parsed = datetime.combine(parsed.date(), day_edge, tzinfo=timezone.utc)
    return to_utc_iso(parsed)


def _date_range(data: ExtractedHealthData) -> tuple[str | None, str | None]:
    start = data.date_range.start if data.date_range else None
    end = data.date_range.end if data.date_range else None
    if not (start and end):
        dates = sorted(e.date for e in data.entries if e.date)
        if dates:
            start, end = start or dates[0], end or dates[-1]
    return _range_bound(start, end=False), _range_bound(end, end=True)


def derive_raw_records(data: ExtractedHealthData, file_name: str) -> list[RawHealthRecord]:
    """One raw record per extracted metric that has a date to attach to."""
    fallback = data.date_range.start if data.date_range else None
    raws: list[RawHealthRecord] = []
    for entry in data.entries:
        recorded_at = entry.date or fallback
        if not recorded_at:
            continue
        for name, value in entry.metrics.items():
            raws.append(RawHealthRecord(
                source_app=UPLOAD_SOURCE,
                field_name=name,
                value=value,
                recorded_at=recorded_at,
                description=entry.notes,
                metadata={"uploaded_file": file_name, "entry_category": entry.category},
            ))
    return raws


class FileIngestionPipeline:
    """Ingests uploaded documents and manages the stored uploads."""

    def __init__(
        self,
        repository: HealthRepository,
        blob_store: BlobStore,
        extraction_service: ExtractionService,
        dedup_engine: DeduplicationEngine,
        *,
        audit_logger: AuditLogger | None = None,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ) -> None:
        self._repo = repository
        self._blobs = blob_store
        self._extractor = extraction_service
        self._dedup = dedup_engine
        self._audit = audit_logger
        self.max_upload_bytes = max_upload_bytes
        self.min_confidence = min_confidence

    async def ingest(
        self,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        user_id: str,
    ) -> IngestionResult:
        if not user_id:
            return Result.fail(ValidationError("user_id is required"))
        try:
            validate_upload(file_bytes, file_name, mime_type, max_bytes=self.max_upload_bytes)
        except ValidationError as exc:
            logger.info("Rejected upload %s: %s", file_name, exc)
            return Result.fail(exc)

        storage_path = build_storage_path(user_id, file_name)
        try:
            self._blobs.put(storage_path, file_bytes, mime_type)
        except BlobStorageError as exc:
            logger.error("Could not store upload %s: %s", file_name, exc)
            return Result.fail(ExternalServiceError(f"Blob write failed: {exc}"))

        start = time.monotonic()
        try:
            ingested = await self._extract_and_store(
                file_bytes, file_name, mime_type, user_id, storage_path,
            )
        except YouphoriaError as exc:
            self._discard_blob(storage_path)
            logger.warning("Upload %s failed (%s): %s", file_name, exc.code, exc)
            self._audit_ingest(user_id, file_name, start, status="failure", error_type=type(exc).__name__)
            return Result.fail(exc)
        except Exception:
            self._discard_blob(storage_path)
            raise

        self._audit_ingest(user_id, file_name, start, resource_id=ingested.file.id)
        return Result.ok(ingested)

    async def _extract_and_store(
        self,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        user_id: str,
        storage_path: str,
    ) -> IngestedFile:
        content = prepare_content(file_bytes, file_name, mime_type)

        extract_start = time.monotonic()
        try:
            data = await self._extractor.extract(content, file_name)
        finally:
            self._audit_disclosure(user_id, file_name, file_bytes, extract_start)

        if data.confidence < self.min_confidence:
            raise LowConfidenceExtractionError(data.confidence, self.min_confidence)

        batch = normalize_batch(derive_raw_records(data, file_name), user_id)
        range_start, range_end = _date_range(data)
        uploaded = UploadedFile(
            id="",
            user_id=user_id,
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=len(file_bytes),
            storage_path=storage_path,
            extracted_data=data.to_dict(),
            extraction_confidence=data.confidence,
            data_categories=categorize_data(data),
            date_range_start=range_start,
            date_range_end=range_end,
            summary=data.summary or None,
        )

        try:
            file_id, summary = self._repo.save_uploaded_file(uploaded, batch.records)
            stored = self._repo.get_uploaded_file(user_id, file_id)
        except RepositoryError as exc:
            raise ExternalServiceError(f"Failed to store upload: {exc}") from exc
        assert stored is not None

        dedup = None
        if summary.inserted:
            metric_types = sorted({r.metric_type for r in batch.records})
            dedup = self._dedup.run_deduplication_check(user_id, UPLOAD_SOURCE, metric_types)
            if not dedup.success:
                logger.warning("Deduplication after upload %s had failures: %s", file_id, dedup.failures)

        logger.info(
            "Ingested %s as %s: %d records (%d already present, %d unmapped)",
            file_name, file_id, summary.inserted, summary.skipped, len(batch.failures),
        )
        return IngestedFile(
            file=stored,
            records_created=summary.inserted,
            records_existing=summary.skipped,
            unmapped_metrics=batch.failures,
            dedup=dedup,
        )

    # ------------------------------------------------------------------
    # Stored uploads
    # ------------------------------------------------------------------

    def list_files(self, user_id: str, *, limit: int = 50) -> list[UploadedFile]:
        return self._repo.get_uploaded_files(user_id, limit=limit)

    def get_file(self, user_id: str, file_id: str) -> UploadedFile:
        uploaded = self._repo.get_uploaded_file(user_id, file_id)
        if uploaded is None:
            raise NotFoundError(f"Uploaded file {file_id} not found")
        return uploaded

    def delete_file(self, user_id: str, file_id: str) -> UploadedFile:
        """Remove the blob, then the row. Records derived from the file are kept.

        Raises:
            NotFoundError: The file does not exist or belongs to someone else.
        """
        uploaded = self.get_file(user_id, file_id)
        try:
            self._blobs.delete(uploaded.storage_path)
        except BlobStorageError as exc:
            logger.error("Could not remove blob for upload %s: %s", file_id, exc)
        self._repo.delete_uploaded_file(user_id, file_id)
        if self._audit is not None:
            self._audit.log_data_delete(
                operation="upload.delete", user_id=user_id, resource_id=file_id, count=1,
            )
        return uploaded

    # ------------------------------------------------------------------

    def _discard_blob(self, storage_path: str) -> None:
        try:
            self._blobs.delete(storage_path)
        except BlobStorageError as exc:
            logger.error("Orphaned upload blob %s: %s", storage_path, exc)

    def _audit_disclosure(self, user_id: str, file_name: str, file_bytes: bytes, start: float) -> None:
        if self._audit is None:
            return
        self._audit.log_llm_disclosure(
            operation="upload.extract",
            user_id=user_id,
            llm_provider=getattr(self._extractor, "provider_name", "unknown"),
            input_data={"file_name": file_name, "size_bytes": len(file_bytes)},
            duration_ms=(time.monotonic() - start) * 1000,
        )

    def _audit_ingest(
        self,
        user_id: str,
        file_name: str,
        start: float,
        *,
        resource_id: str | None = None,
        status: str = "success",
        error_type: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_operation(
            "upload.ingest",
            user_id=user_id,
            input_data={"file_name": file_name},
            resource_id=resource_id,
            duration_ms=(time.monotonic() - start) * 1000,
            status=status,
            error_type=error_type,
        )
