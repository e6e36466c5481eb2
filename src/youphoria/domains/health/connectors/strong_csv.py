"""Strong app CSV export parser.

Strong (strength training log) exports one row per set::

    Date,Workout Name,Duration,Exercise Name,Set Order,Weight,Reps,Distance,Seconds,Notes,Workout Notes,RPE

Rows sharing ``Date`` + ``Workout Name`` form one workout. Each workout becomes
a ``strength_training`` event carrying the full set list, plus:

- daily ``training_volume``, ``sets`` and ``reps`` totals (UTC midnight),
- one ``weight_lifted`` and ``one_rep_max`` record per exercise, stamped at
  the estimated time that exercise started within the workout.

Timestamps without an offset are taken as UTC.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from youphoria.core.errors import ValidationError
from youphoria.domains.health.domain_logic.metric_registry import MetricType, SourceApp, conversion_for
from youphoria.domains.health.domain_logic.normalizer import RawHealthEvent, RawHealthRecord

logger = logging.getLogger(__name__)

SOURCE = SourceApp.STRONG.value

REQUIRED_COLUMNS = ("Date", "Workout Name", "Exercise Name", "Weight", "Reps")

# Strong does not export per-set timestamps
MINUTES_PER_SET = 3

_DURATION_RE = re.compile(r"(?:(\d+)\s*h)?\s*(?:(\d+)\s*m(?:in)?)?", re.IGNORECASE)


class StrongCsvError(ValidationError):
    """Raised when a file is not a Strong export."""


@dataclass
class _Set:
    order: int
    weight_lbs: float | None
    reps: int | None
    distance: float | None
    seconds: float | None
    notes: str | None


@dataclass
class _Workout:
    start: datetime
    name: str
    duration_minutes: float | None = None
    notes: str | None = None
    exercises: dict[str, list[_Set]] = field(default_factory=dict)


@dataclass
class StrongExport:
    records: list[RawHealthRecord] = field(default_factory=list)
    events: list[RawHealthEvent] = field(default_factory=list)
    skipped_rows: int = 0

    def summary(self) -> dict[str, Any]:
        return {
            "records": len(self.records),
            "events": len(self.events),
            "skipped_rows": self.skipped_rows,
        }


def _parse_start(value: str) -> datetime:
    value = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _number(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def _parse_duration(value: str | None) -> float | None:
    """'1h 5m' → 65.0; bare numbers are seconds, as newer exports write them."""
    if not value or not value.strip():
        return None
    value = value.strip()
    if value.replace(".", "", 1).isdigit():
        return round(float(value) / 60, 2)
    match = _DURATION_RE.fullmatch(value)
    if not match or not any(match.groups()):
        return None
    hours, minutes = (int(g) if g else 0 for g in match.groups())
    return float(hours * 60 + minutes)


def _estimated_1rm(weight: float, reps: int) -> float:
    """Epley formula."""
    if reps <= 1:
        return weight
    return weight * (1 + reps / 30)


def _read_workouts(text: str, weight_unit: str) -> tuple[list[_Workout], int]:
    # Strong writes ';' in some locales
    dialect = csv.excel
    try:
        dialect = csv.Sniffer().sniff(text[:2048], delimiters=",;")
    except csv.Error:
        pass
    reader = csv.DictReader(io.StringIO(text), dialect=dialect)
    missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
    if missing:
        raise StrongCsvError(f"Not a Strong export; missing columns: {', '.join(missing)}")

    to_lbs = conversion_for(MetricType.WEIGHT_LIFTED, weight_unit)
    workouts: dict[tuple[datetime, str], _Workout] = {}
    skipped = 0

    for row in reader:
        exercise = (row.get("Exercise Name") or "").strip()
        try:
            start = _parse_start(row["Date"])
            weight = _number(row.get("Weight"))
            reps_raw = _number(row.get("Reps"))
            distance = _number(row.get("Distance"))
            seconds = _number(row.get("Seconds"))
        except (TypeError, ValueError):
            skipped += 1
            continue
        if not exercise or (weight is None and reps_raw is None and seconds is None):
            skipped += 1
            continue

        name = (row.get("Workout Name") or "Workout").strip()
        workout = workouts.get((start, name))
        if workout is None:
            workout = workouts[(start, name)] = _Workout(
                start=start,
                name=name,
                duration_minutes=_parse_duration(row.get("Duration")),
                notes=(row.get("Workout Notes") or "").strip() or None,
            )

        sets = workout.exercises.setdefault(exercise, [])
        order_raw = (row.get("Set Order") or "").strip()
        # warm-up and drop sets are exported as letters
        order = int(order_raw) if order_raw.isdigit() else len(sets) + 1
        sets.append(_Set(
            order=max(order, 1),
            weight_lbs=round(to_lbs.apply(weight), 3) if weight is not None else None,
            reps=int(reps_raw) if reps_raw is not None else None,
            distance=distance,
            seconds=seconds,
            notes=(row.get("Notes") or "").strip() or None,
        ))

    return sorted(workouts.values(), key=lambda w: w.start), skipped


def parse_strong_csv(content: str | bytes, *, weight_unit: str = "lbs") -> StrongExport:
    """Parse a Strong CSV export.

    Args:
        content: The CSV text (bytes are decoded as UTF-8).
        weight_unit: Unit of the ``Weight`` column, as set in the Strong app.

    Raises:
        StrongCsvError: If required columns are missing.
        UnitMismatchError: If ``weight_unit`` is not a weight unit.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    workouts, skipped = _read_workouts(content, weight_unit)
    result = StrongExport(skipped_rows=skipped)

    daily: dict[datetime, dict[str, float]] = defaultdict(lambda: defaultdict(float))

    for workout in workouts:
        exercises_payload: list[dict[str, Any]] = []
        total_volume = 0.0
        total_sets = 0
        total_reps = 0
        offset_sets = 0

        for exercise, sets in workout.exercises.items():
            exercise_start = workout.start + timedelta(minutes=offset_sets * MINUTES_PER_SET)
            offset_sets += len(sets)

            heaviest = None
            best_1rm = None
            for s in sets:
                total_sets += 1
                if s.reps:
                    total_reps += s.reps
                if s.weight_lbs is not None and s.reps:
                    total_volume += s.weight_lbs * s.reps
                    estimate = _estimated_1rm(s.weight_lbs, s.reps)
                    best_1rm = estimate if best_1rm is None else max(best_1rm, estimate)
                if s.weight_lbs is not None:
                    heaviest = s.weight_lbs if heaviest is None else max(heaviest, s.weight_lbs)

            exercises_payload.append({
                "name": exercise,
                "sets": [
                    {
                        "set_order": s.order,
                        "weight_lbs": s.weight_lbs,
                        "reps": s.reps,
                        "distance": s.distance,
                        "seconds": s.seconds,
                        "notes": s.notes,
                    }
                    for s in sets
                ],
            })

            meta = {"exercise": exercise, "workout_name": workout.name}
            if heaviest:
                result.records.append(RawHealthRecord(
                    source_app=SOURCE, field_name="weight", value=heaviest, unit="lbs",
                    recorded_at=exercise_start, description=exercise, metadata=dict(meta),
                ))
            if best_1rm:
                result.records.append(RawHealthRecord(
                    source_app=SOURCE, field_name="estimated_1rm", value=round(best_1rm, 1), unit="lbs",
                    recorded_at=exercise_start, description=exercise,
                    metadata={**meta, "formula": "epley", "estimated": True},
                ))

        day = workout.start.replace(hour=0, minute=0, second=0, microsecond=0)
        daily[day]["volume"] += total_volume
        daily[day]["sets"] += total_sets
        daily[day]["reps"] += total_reps
        daily[day]["workouts"] += 1

        duration = workout.duration_minutes or float(total_sets * MINUTES_PER_SET)
        result.events.append(RawHealthEvent(
            source_app=SOURCE,
            event_type="strength_training",
            start_time=workout.start,
            end_time=workout.start + timedelta(minutes=duration),
            title=workout.name,
            description=workout.notes,
            metrics={
                "workout_name": workout.name,
                "exercises": exercises_payload,
                "total_volume_lbs": round(total_volume, 1),
                "total_sets": total_sets,
                "total_reps": total_reps,
                "notes": workout.notes,
            },
        ))

    for day, totals in sorted(daily.items()):
        meta = {"aggregation": "daily_total", "workouts": int(totals["workouts"])}
        result.records.extend([
            RawHealthRecord(SOURCE, "volume", round(totals["volume"], 1), day, unit="lbs", metadata=dict(meta)),
            RawHealthRecord(SOURCE, "sets", totals["sets"], day, unit="count", metadata=dict(meta)),
            RawHealthRecord(SOURCE, "reps", totals["reps"], day, unit="count", metadata=dict(meta)),
        ])

    logger.info(
        "Parsed Strong export: %d workouts, %d records, %d skipped rows",
        len(result.events), len(result.records), skipped,
    )
    return result
