"""RAG context retriever: the user's own canonical data relevant to a query."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from youphoria.core.storage.encryption import EncryptionError
from youphoria.core.storage.models import HealthEvent, HealthRecord, UploadedFile, to_utc_iso
from youphoria.core.storage.repository import HealthRepository, RepositoryError
from youphoria.domains.health.domain_logic.metric_registry import (
    METRIC_DEFINITIONS,
    DataCategory,
    MetricType,
)
from youphoria.domains.health.rag.formatter import format_health_context
from youphoria.domains.health.rag.query_analyzer import QueryAnalysis, analyze_query

logger = logging.getLogger(__name__)

MAX_EVENTS = 20
MAX_FILES = 5

# Event types and upload tags that belong with each metric category.
CATEGORY_EVENT_TYPES: dict[DataCategory, tuple[str, ...]] = {
    DataCategory.ACTIVITY: ("workout",),
    DataCategory.WORKOUT: ("workout", "strength_training"),
    DataCategory.SLEEP: ("sleep_session",),
    DataCategory.NUTRITION: ("meal",),
    DataCategory.MENTAL_HEALTH: ("meditation",),
}
CATEGORY_FILE_TAGS: dict[DataCategory, tuple[str, ...]] = {
    DataCategory.ACTIVITY: ("exercise_log", "exercise"),
    DataCategory.WORKOUT: ("exercise_log", "exercise"),
    DataCategory.SLEEP: ("sleep_log", "sleep"),
    DataCategory.NUTRITION: ("nutrition_log", "nutrition"),
    DataCategory.HEART: ("vitals",),
    DataCategory.VITALS: ("vitals",),
    DataCategory.BODY_MEASUREMENT: ("vitals", "medical_report"),
    DataCategory.LAB_RESULTS: ("lab_results", "medical", "medical_report"),
}


def related_event_types(metrics: list[MetricType]) -> list[str]:
    types: set[str] = set()
    for metric in metrics:
        types.update(CATEGORY_EVENT_TYPES.get(METRIC_DEFINITIONS[metric].category, ()))
    return sorted(types)


def related_file_tags(metrics: list[MetricType]) -> set[str]:
    tags: set[str] = set()
    for metric in metrics:
        tags.update(CATEGORY_FILE_TAGS.get(METRIC_DEFINITIONS[metric].category, ()))
    return tags


@dataclass
class HealthContext:
    """Prompt-ready health data plus a description of what was included."""

    has_health_data: bool = False
    text: str = ""
    records: list[HealthRecord] = field(default_factory=list)
    events: list[HealthEvent] = field(default_factory=list)
    files: list[UploadedFile] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_health_data": self.has_health_data,
            "context": self.text,
            "metadata": self.metadata,
        }


def _time_range_metadata(analysis: QueryAnalysis) -> dict[str, str]:
    return {
        "start": to_utc_iso(analysis.time_range.start),
        "end": to_utc_iso(analysis.time_range.end),
        "description": analysis.time_range.description,
    }


class HealthContextRetriever:
    """Builds the health-data block for a chat turn.

    Reads only canonical records. When the query names metrics, only events
    and uploads related to those metrics are included, and ``has_health_data``
    reflects the requested metrics' records alone. Storage failures degrade
    to an empty context so the chat can still answer.
    """

    def __init__(
        self,
        repository: HealthRepository,
        *,
        max_records: int = 200,
        default_window_days: int = 30,
    ) -> None:
        self._repo = repository
        self.max_records = max_records
        self.default_window_days = default_window_days

    def retrieve_context(self, user_id: str, query: str, *, now: datetime | None = None) -> HealthContext:
        analysis = analyze_query(query, now=now, default_window_days=self.default_window_days)
        metadata: dict[str, Any] = {
            "has_health_data": False,
            "needs_health_data": analysis.needs_health_data,
            "data_types": [],
            "time_range": _time_range_metadata(analysis),
            "metrics_requested": [m.value for m in analysis.metrics],
            "metrics_included": [],
            "metrics_missing": [],
            "record_count": 0,
            "truncated": False,
        }
        if not analysis.needs_health_data:
            return HealthContext(metadata=metadata)

        since = metadata["time_range"]["start"]
        until = metadata["time_range"]["end"]
        requested = [m.value for m in analysis.metrics] or None

        try:
            records = self._repo.get_health_records(
                user_id,
                metric_types=requested,
                since=since,
                until=until,
                canonical_only=True,
                limit=self.max_records + 1,
            )
            events = self._repo.get_health_events(
                user_id,
                since=since,
                until=until,
                event_types=related_event_types(analysis.metrics) if requested else None,
                limit=MAX_EVENTS,
            )
            if requested:
                tags = related_file_tags(analysis.metrics)
                candidates = self._repo.get_uploaded_files(user_id, since=since, until=until)
                files = [f for f in candidates if tags.intersection(f.data_categories)][:MAX_FILES]
            else:
                files = self._repo.get_uploaded_files(user_id, since=since, until=until, limit=MAX_FILES)
        except (RepositoryError, EncryptionError) as exc:
            logger.error("Health context retrieval failed, answering without data: %s", exc)
            metadata["retrieval_error"] = True
            return HealthContext(metadata=metadata)

        truncated = len(records) > self.max_records
        records = records[: self.max_records]

        included = sorted({r.metric_type for r in records})
        data_types = sorted({r.data_category for r in records})
        if events:
            data_types.append("events")
        if files:
            data_types.append("uploaded_files")

        has_data = bool(records) if requested else bool(records or events or files)
        metadata.update(
            has_health_data=has_data,
            data_types=data_types,
            metrics_included=included,
            metrics_missing=[m for m in (requested or []) if m not in included],
            record_count=len(records),
            truncated=truncated,
        )
        text = format_health_context(records, events, files, analysis.time_range, truncated=truncated)

        logger.info(
            "Retrieved health context (%s): %d records, %d events, %d files",
            analysis.time_range.description, len(records), len(events), len(files),
        )
        return HealthContext(
            has_health_data=has_data,
            text=text,
            records=records,
            events=events,
            files=files,
            metadata=metadata,
        )
