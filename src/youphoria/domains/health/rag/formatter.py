"""Render retrieved health data as compact text for the chat prompt."""

from __future__ import annotations

import statistics
from collections import defaultdict
from typing import Sequence

from youphoria.core.storage.models import HealthEvent, HealthRecord, UploadedFile
from youphoria.domains.health.domain_logic.metric_registry import METRIC_DEFINITIONS
from youphoria.domains.health.rag.query_analyzer import TimeRange

# windows this short list every value, not just the summary
DETAIL_WINDOW_DAYS = 3
MAX_FILE_ENTRIES = 10

_DEFINITIONS_BY_NAME = {m.value: d for m, d in METRIC_DEFINITIONS.items()}


def _fmt(value: float) -> str:
    if abs(value) >= 1000:
        return f"{value:,.0f}"
    if value == int(value):
        return str(int(value))
    return f"{value:.1f}"


def _when(timestamp: str, *, day_only: bool) -> str:
    # stored timestamps are fixed-width UTC ISO strings
    return timestamp[:10] if day_only else f"{timestamp[:10]} {timestamp[11:16]}"


def _metric_lines(metric_type: str, records: list[HealthRecord], detailed: bool) -> list[str]:
    definition = _DEFINITIONS_BY_NAME.get(metric_type)
    name = definition.display_name if definition else metric_type
    cumulative = definition.is_cumulative if definition else False
    unit = records[0].unit
    values = [r.value for r in records]
    latest = max(records, key=lambda r: r.recorded_at)

    parts = [f"{len(values)} {'days' if cumulative else 'readings'}"]
    if cumulative:
        parts.append(f"total {_fmt(sum(values))}")
        parts.append(f"daily avg {_fmt(statistics.mean(values))}")
    else:
        parts.append(f"avg {_fmt(statistics.mean(values))}")
    if len(values) > 1:
        parts.append(f"range {_fmt(min(values))}-{_fmt(max(values))}")
    parts.append(f"latest {_fmt(latest.value)} on {_when(latest.recorded_at, day_only=cumulative)}")

    lines = [f"- {name} ({unit}): {', '.join(parts)}"]
    if detailed:
        for record in sorted(records, key=lambda r: r.recorded_at):
            lines.append(
                f"  • {_when(record.recorded_at, day_only=cumulative)}: "
                f"{_fmt(record.value)} {unit} ({record.source_app})"
            )
    return lines


def _event_line(event: HealthEvent) -> str:
    details: list[str] = []
    metrics = event.metrics.model_dump(exclude_none=True) if event.metrics is not None else {}
    for key in ("activity_type", "duration_minutes", "duration_hours", "distance_mi",
                "active_calories_kcal", "total_volume_lbs", "total_sets", "calories_kcal"):
        if key in metrics and metrics[key] not in ("", 0, None):
            value = metrics[key]
            details.append(f"{key.replace('_', ' ')} {_fmt(value) if isinstance(value, (int, float)) else value}")
    duration = event.duration_minutes
    if duration is not None and "duration_minutes" not in metrics and "duration_hours" not in metrics:
        details.append(f"{_fmt(duration)} min")
    suffix = f": {', '.join(details)}" if details else ""
    return f"- {_when(event.start_time, day_only=False)} {event.title or event.event_type}{suffix}"


def _file_lines(uploaded: UploadedFile) -> list[str]:
    span = ""
    if uploaded.date_range_start:
        span = f", {uploaded.date_range_start[:10]} to {(uploaded.date_range_end or uploaded.date_range_start)[:10]}"
    categories = ", ".join(uploaded.data_categories) or "uncategorized"
    lines = [f"- {uploaded.file_name} ({categories}{span}): {uploaded.summary or 'no summary'}"]
    entries = (uploaded.extracted_data or {}).get("entries") or []
    for entry in entries[:MAX_FILE_ENTRIES]:
        metrics = ", ".join(f"{k}={v}" for k, v in (entry.get("metrics") or {}).items())
        lines.append(f"  • {entry.get('date') or 'undated'}: {metrics}")
    if len(entries) > MAX_FILE_ENTRIES:
        lines.append(f"  • ...{len(entries) - MAX_FILE_ENTRIES} more entries")
    return lines


def format_health_context(
    records: Sequence[HealthRecord],
    events: Sequence[HealthEvent],
    files: Sequence[UploadedFile],
    time_range: TimeRange,
    *,
    truncated: bool = False,
) -> str:
    if not (records or events or files):
        return ""

    lines = [
        f"Time period: {time_range.description} "
        f"({time_range.start.date().isoformat()} to {time_range.end.date().isoformat()})",
    ]
    detailed = time_range.days <= DETAIL_WINDOW_DAYS

    if records:
        by_metric: dict[str, list[HealthRecord]] = defaultdict(list)
        for record in records:
            by_metric[record.metric_type].append(record)
        lines.extend(["", "Health metrics:"])
        for metric_type in sorted(by_metric):
            lines.extend(_metric_lines(metric_type, by_metric[metric_type], detailed))
        if truncated:
            lines.append("(Older readings in this period were omitted.)")

    if events:
        lines.extend(["", "Activities:"])
        lines.extend(_event_line(event) for event in events)

    if files:
        lines.extend(["", "Uploaded documents:"])
        for uploaded in files:
            lines.extend(_file_lines(uploaded))

    return "\n".join(lines)
