"""Normalizer: raw source records → canonical ``HealthRecord``.

``normalize`` is a pure transform: registry lookup, unit conversion,
quality scoring, provisional canonical flag. Persistence is the caller's
job. ``normalize_batch`` wraps it so one unmappable record is skipped
and reported instead of failing the whole batch.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from youphoria.core.errors import NormalizationError, ValidationError, YouphoriaError
from youphoria.core.storage.event_metrics import parse_event_metrics
from youphoria.core.storage.models import HealthEvent, HealthRecord, parse_timestamp, to_utc_iso
from youphoria.domains.health.domain_logic.metric_registry import (
    conversion_for,
    lookup,
    quality_score_for,
)

logger = logging.getLogger(__name__)


@dataclass
class RawHealthRecord:
    """A record as reported by a source, before any mapping."""

    source_app: str
    field_name: str
    value: Any
    recorded_at: str | datetime
    unit: str = ""
    source_device: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizationFailure:
    index: int
    source_app: str
    field_name: str
    error: YouphoriaError

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "source_app": self.source_app,
            "field_name": self.field_name,
            "error": self.error.to_dict(),
        }


@dataclass
class NormalizationBatch:
    records: list[HealthRecord] = field(default_factory=list)
    failures: list[NormalizationFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


def _coerce_value(value: Any) -> float:
    # bool is an int subclass; True is not a measurement
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Value {value!r} is not numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Value {value!r} is not numeric") from exc
    if not math.isfinite(number):
        raise ValidationError(f"Value {value!r} is not finite")
    return number


def normalize(raw: RawHealthRecord, user_id: str) -> HealthRecord:
    """Map one raw record onto the canonical schema.

    Raises:
        UnknownMetricError: The (source, field) pair is not registered.
        UnitMismatchError: The unit cannot be converted to the canonical unit.
        ValidationError: Missing user, non-numeric value, bad timestamp or
            metadata that is not a mapping.
    """
    if not user_id:
        raise ValidationError("user_id is required")

    entry = lookup(raw.source_app, raw.field_name)
    value = _coerce_value(raw.value)

    unit = entry.source_unit if entry.fixed_unit or not raw.unit else raw.unit
    conversion = conversion_for(entry.metric_type, unit)

    try:
        recorded_at = to_utc_iso(parse_timestamp(raw.recorded_at))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unparsable timestamp {raw.recorded_at!r}") from exc

    if not isinstance(raw.metadata, dict):
        raise ValidationError("metadata must be an object")
    metadata = dict(raw.metadata)
    metadata.setdefault("source_field", raw.field_name)
    if conversion.factor != 1.0 or conversion.offset != 0.0:
        metadata["original_value"] = value
        metadata["original_unit"] = unit

    return HealthRecord(
        id="",
        user_id=user_id,
        metric_type=entry.metric_type.value,
        data_category=entry.definition.category.value,
        value=conversion.apply(value),
        unit=entry.definition.canonical_unit,
        recorded_at=recorded_at,
        source_app=raw.source_app,
        source_device=raw.source_device,
        quality_score=quality_score_for(raw.source_app, estimated=bool(metadata.get("estimated"))),
        is_canonical=True,
        description=raw.description,
        metadata=metadata,
    )


def normalize_batch(raws: list[RawHealthRecord], user_id: str) -> NormalizationBatch:
    """Normalize many records, collecting failures instead of raising."""
    batch = NormalizationBatch()
    for index, raw in enumerate(raws):
        try:
            batch.records.append(normalize(raw, user_id))
        except (NormalizationError, ValidationError) as exc:
            logger.warning(
                "Skipping record %d from %s (%s): %s",
                index, raw.source_app, raw.field_name, exc,
            )
            batch.failures.append(
                NormalizationFailure(index, raw.source_app, raw.field_name, exc)
            )
    if batch.failures:
        logger.info(
            "Normalized %d/%d records (%d skipped)",
            len(batch.records), len(raws), len(batch.failures),
        )
    return batch


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass
class RawHealthEvent:
    """A bounded activity as reported by a source."""

    source_app: str
    event_type: str
    start_time: str | datetime
    end_time: str | datetime | None = None
    title: str = ""
    description: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    source_device: str | None = None


def normalize_event(raw: RawHealthEvent, user_id: str) -> HealthEvent:
    """Validate an event's times and typed metrics.

    Raises:
        ValidationError: Bad timestamps, end before start, or metrics that
            do not fit the schema for ``event_type``.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if not raw.event_type:
        raise ValidationError("event_type is required")
    try:
        start = to_utc_iso(parse_timestamp(raw.start_time))
        end = to_utc_iso(parse_timestamp(raw.end_time)) if raw.end_time else None
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unparsable event time: {exc}") from exc
    if end is not None and end < start:
        raise ValidationError(f"Event ends ({end}) before it starts ({start})")
    try:
        metrics = parse_event_metrics(raw.event_type, raw.metrics)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid metrics for {raw.event_type} event: {exc.error_count()} error(s)"
        ) from exc

    return HealthEvent(
        id="",
        user_id=user_id,
        event_type=raw.event_type,
        start_time=start,
        end_time=end,
        title=raw.title or raw.event_type.replace("_", " ").title(),
        description=raw.description,
        metrics=metrics,
        source_app=raw.source_app,
        source_device=raw.source_device,
        quality_score=quality_score_for(raw.source_app),
    )
