"""Sync service: raw source batch → normalized, stored, deduplicated."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from youphoria.core.errors import ExternalServiceError, Result, ValidationError
from youphoria.core.storage.models import ConnectedSource, HealthEvent, utc_now_iso
from youphoria.core.storage.repository import HealthRepository, RepositoryError
from youphoria.domains.health.domain_logic.deduplication import DeduplicationEngine, DeduplicationResult
from youphoria.domains.health.domain_logic.metric_registry import (
    SOURCE_APP_TYPES,
    is_known_source,
    source_tier,
)
from youphoria.domains.health.domain_logic.normalizer import (
    NormalizationFailure,
    RawHealthEvent,
    RawHealthRecord,
    normalize_batch,
    normalize_event,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    source_app: str
    inserted: int = 0
    skipped: int = 0
    failures: list[NormalizationFailure] = field(default_factory=list)
    events_inserted: int = 0
    events_skipped: int = 0
    event_failures: list[dict[str, Any]] = field(default_factory=list)
    dedup: DeduplicationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_app": self.source_app,
            "records": {
                "inserted": self.inserted,
                "skipped": self.skipped,
                "failed": len(self.failures),
                "failures": [f.to_dict() for f in self.failures],
            },
            "events": {
                "inserted": self.events_inserted,
                "skipped": self.events_skipped,
                "failed": len(self.event_failures),
                "failures": self.event_failures,
            },
            "deduplication": self.dedup.to_dict() if self.dedup else None,
        }


class SyncService:
    """Runs one source's batch through normalize → store → dedup.

    Records that cannot be mapped are reported in the result and the rest
    of the batch is still stored. Storage failures fail the whole call.
    """

    def __init__(self, repository: HealthRepository, dedup_engine: DeduplicationEngine) -> None:
        self._repo = repository
        self._dedup = dedup_engine

    def sync(
        self,
        user_id: str,
        source_app: str,
        raw_records: Sequence[RawHealthRecord] = (),
        raw_events: Sequence[RawHealthEvent] = (),
    ) -> Result[SyncResult]:
        if not user_id:
            return Result.fail(ValidationError("user_id is required"))
        if not is_known_source(source_app):
            return Result.fail(ValidationError(f"Unknown source app: {source_app}"))

        result = SyncResult(source_app=source_app)

        batch = normalize_batch(list(raw_records), user_id)
        result.failures = batch.failures

        events: list[HealthEvent] = []
        for index, raw in enumerate(raw_events):
            try:
                events.append(normalize_event(raw, user_id))
            except ValidationError as exc:
                logger.warning("Skipping %s event %d from %s: %s", raw.event_type, index, source_app, exc)
                result.event_failures.append({"index": index, "error": exc.to_dict()})

        try:
            summary = self._repo.upsert_health_records(batch.records)
            event_summary = self._repo.upsert_health_events(events)
            self._repo.upsert_connected_source(ConnectedSource(
                id="",
                user_id=user_id,
                app_name=source_app,
                app_type=SOURCE_APP_TYPES[source_tier(source_app)],
                last_sync=utc_now_iso(),
            ))
        except RepositoryError as exc:
            logger.error("Sync from %s failed to store: %s", source_app, exc)
            return Result.fail(ExternalServiceError(f"Failed to store {source_app} data: {exc}"))

        result.inserted, result.skipped = summary.inserted, summary.skipped
        result.events_inserted, result.events_skipped = event_summary.inserted, event_summary.skipped

        metric_types = sorted({r.metric_type for r in batch.records})
        if metric_types:
            result.dedup = self._dedup.run_deduplication_check(user_id, source_app, metric_types)

        logger.info(
            "Synced %s: %d inserted, %d unchanged, %d rejected, %d events",
            source_app, result.inserted, result.skipped, len(result.failures), result.events_inserted,
        )
        return Result.ok(result)
