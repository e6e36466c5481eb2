"""Data models for the health persistence layer.

All timestamps are stored as fixed-width UTC ISO 8601 strings (millisecond
precision) so SQL range filters and ``ORDER BY`` compare correctly as text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from youphoria.core.storage.event_metrics import EventMetrics, GenericEventMetrics


def to_utc_iso(dt: datetime) -> str:
    """Render a datetime as UTC ISO 8601; naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into an aware datetime.

    Raises:
        TypeError: If the value is neither a string nor a datetime.
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        dt = value
    elif not isinstance(value, str):
        raise TypeError(f"expected an ISO 8601 string, got {type(value).__name__}")
    else:
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now_iso() -> str:
    return to_utc_iso(datetime.now(timezone.utc))


@dataclass
class HealthRecord:
    """One normalized scalar observation in canonical units.

    ``is_canonical`` is provisional at insert time; the deduplication engine
    settles it once every overlapping source has been stored.
    """

    id: str
    user_id: str
    metric_type: str
    value: float
    unit: str
    recorded_at: str  # UTC ISO 8601
    source_app: str
    data_category: str = ""
    source_device: str | None = None
    quality_score: float = 0.5
    is_canonical: bool = True
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    synced_at: str = ""
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric_type": self.metric_type,
            "data_category": self.data_category,
            "value": self.value,
            "unit": self.unit,
            "recorded_at": self.recorded_at,
            "source_app": self.source_app,
            "source_device": self.source_device,
            "quality_score": self.quality_score,
            "is_canonical": self.is_canonical,
            "description": self.description,
            "metadata": self.metadata,
            "synced_at": self.synced_at,
        }


@dataclass
class HealthEvent:
    """A bounded activity (workout, meal, sleep session) with typed metrics."""

    id: str
    user_id: str
    event_type: str
    start_time: str
    end_time: str | None = None
    title: str = ""
    description: str | None = None
    metrics: EventMetrics = field(default_factory=GenericEventMetrics)
    source_app: str = ""
    source_device: str | None = None
    quality_score: float = 0.5
    created_at: str = ""

    def __post_init__(self) -> None:
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError(
                f"Event end_time {self.end_time} precedes start_time {self.start_time}"
            )

    @property
    def duration_minutes(self) -> float | None:
        if self.end_time is None:
            return None
        delta = parse_timestamp(self.end_time) - parse_timestamp(self.start_time)
        return delta.total_seconds() / 60

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "title": self.title,
            "description": self.description,
            "metrics": self.metrics.model_dump(exclude_none=True),
            "source_app": self.source_app,
            "quality_score": self.quality_score,
        }


@dataclass
class ConnectedSource:
    """Connection state for one external app. ``credentials`` is opaque."""

    id: str
    user_id: str
    app_name: str
    app_type: str = "other"
    credentials: dict[str, Any] | None = None
    is_active: bool = True
    connected_at: str = ""
    last_sync: str | None = None

    def to_dict(self) -> dict[str, Any]:
        # Credentials never leave the data bank
        return {
            "id": self.id,
            "app_name": self.app_name,
            "app_type": self.app_type,
            "is_active": self.is_active,
            "connected_at": self.connected_at,
            "last_sync": self.last_sync,
        }


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: str = ""
    updated_at: str = ""  # newest message, or created_at when empty
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": self.message_count,
        }


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str  # 'user' | 'assistant'
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass
class UploadedFile:
    """An uploaded document and what was extracted from it.

    ``extracted_data`` is stored encrypted at rest.
    """

    id: str
    user_id: str
    file_name: str
    mime_type: str
    size_bytes: int
    storage_path: str
    extracted_data: dict[str, Any] | None = None
    extraction_confidence: float | None = None
    data_categories: list[str] = field(default_factory=list)
    date_range_start: str | None = None
    date_range_end: str | None = None
    summary: str | None = None
    created_at: str = ""

    def to_dict(self, *, include_data: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "extraction_confidence": self.extraction_confidence,
            "data_categories": self.data_categories,
            "date_range": {"start": self.date_range_start, "end": self.date_range_end},
            "summary": self.summary,
            "created_at": self.created_at,
        }
        if include_data:
            result["extracted_data"] = self.extracted_data
        return result
