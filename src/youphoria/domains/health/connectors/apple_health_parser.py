"""Apple Health XML export parser.

Parses the ``export.xml`` file produced by Apple Health (iOS → Share → Export
Health Data), or the ``export.zip`` that wraps it, into raw records and
events ready for the normalizer. Uses iterparse so multi-gigabyte exports
never sit in memory.

Shapes produced:

- Quantity samples for point-in-time metrics (heart rate, weight, ...) are
  passed through one record per sample.
- Cumulative metrics (steps, distance, energy, ...) are summed into one
  daily total per UTC day, stamped at midnight UTC. The phone and the watch
  both report steps, so per-day totals are kept per device and the largest
  wins rather than adding them together.
- Sleep analysis samples become a nightly ``sleep_duration`` total plus one
  ``sleep_session`` event per night.
- Mindful sessions become daily ``mindful_minutes`` plus ``meditation``
  events.
- ``Workout`` elements become ``workout`` events.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import IO, Any

from youphoria.core.errors import UnitMismatchError, ValidationError
from youphoria.domains.health.domain_logic.metric_registry import (
    METRIC_DEFINITIONS,
    SOURCE_VOCABULARIES,
    MetricType,
    SourceApp,
    conversion_for,
)
from youphoria.domains.health.domain_logic.normalizer import RawHealthEvent, RawHealthRecord

logger = logging.getLogger(__name__)

SOURCE = SourceApp.APPLE_HEALTH.value

_SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"
_MINDFUL = "HKCategoryTypeIdentifierMindfulSession"

_ASLEEP_STAGES = {
    "HKCategoryValueSleepAnalysisAsleep": None,
    "HKCategoryValueSleepAnalysisAsleepUnspecified": None,
    "HKCategoryValueSleepAnalysisAsleepCore": "core",
    "HKCategoryValueSleepAnalysisAsleepDeep": "deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "rem",
}
_IN_BED = "HKCategoryValueSleepAnalysisInBed"
_AWAKE = "HKCategoryValueSleepAnalysisAwake"

_WORKOUT_PREFIX = "HKWorkoutActivityType"


class AppleHealthParseError(ValidationError):
    """Raised when an Apple Health export cannot be read."""


@dataclass
class AppleHealthExport:
    """Everything pulled out of one export, before normalization."""

    records: list[RawHealthRecord] = field(default_factory=list)
    events: list[RawHealthEvent] = field(default_factory=list)
    skipped_types: dict[str, int] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        return {
            "records": len(self.records),
            "events": len(self.events),
            "skipped_types": dict(self.skipped_types),
        }


def _parse_date(date_str: str) -> datetime:
    """Parse Apple Health date format: '2025-12-01 08:30:00 -0500'."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        parsed = datetime.fromisoformat(date_str)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _utc_day(dt: datetime) -> datetime:
    """Midnight UTC of the day ``dt`` falls on."""
    utc = dt.astimezone(timezone.utc)
    return utc.replace(hour=0, minute=0, second=0, microsecond=0)


def _float_attr(elem: ET.Element, name: str) -> float | None:
    raw = elem.get(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _convert(metric_type: MetricType, value: float | None, unit: str | None) -> float | None:
    if value is None:
        return None
    try:
        return round(conversion_for(metric_type, unit or "").apply(value), 3)
    except UnitMismatchError:
        logger.debug("Dropping %s value with unit %r", metric_type.value, unit)
        return None


def _open_export(path: Path) -> IO[bytes]:
    if zipfile.is_zipfile(path):
        archive = zipfile.ZipFile(path)
        members = [n for n in archive.namelist() if n.endswith("export.xml")]
        if not members:
            archive.close()
            raise AppleHealthParseError(f"No export.xml inside {path.name}")
        return archive.open(members[0])
    return path.open("rb")


class _Accumulator:
    """Collects samples while the XML is streamed."""

    def __init__(self, since: datetime | None) -> None:
        self.since = since
        self.result = AppleHealthExport()
        self.skipped: dict[str, int] = defaultdict(int)
        # (hk_type, day, device) -> (sum, unit, count)
        self.daily: dict[tuple[str, datetime, str], list[Any]] = {}
        # (night, device) -> stats
        self.nights: dict[tuple[datetime, str], dict[str, Any]] = {}
        # (day, device) -> minutes
        self.mindful: dict[tuple[datetime, str], float] = defaultdict(float)

    def wanted(self, dt: datetime) -> bool:
        return self.since is None or dt >= self.since

    # -- records -----------------------------------------------------

    def quantity(self, elem: ET.Element) -> None:
        hk_type = elem.get("type", "")
        mapping = SOURCE_VOCABULARIES[SOURCE].get(hk_type)
        if mapping is None:
            self.skipped[hk_type] += 1
            return
        start = _parse_date(elem.get("startDate", ""))
        if not self.wanted(start):
            return
        value = _float_attr(elem, "value")
        if value is None:
            return
        unit = elem.get("unit", "")
        device = elem.get("sourceName") or None

        if METRIC_DEFINITIONS[mapping.metric_type].is_cumulative:
            key = (hk_type, _utc_day(start), device or "")
            bucket = self.daily.setdefault(key, [0.0, unit, 0])
            bucket[0] += value
            bucket[2] += 1
            return

        self.result.records.append(RawHealthRecord(
            source_app=SOURCE,
            field_name=hk_type,
            value=value,
            unit=unit,
            recorded_at=start,
            source_device=device,
        ))

    def sleep(self, elem: ET.Element) -> None:
        start = _parse_date(elem.get("startDate", ""))
        end = _parse_date(elem.get("endDate", ""))
        if not self.wanted(start) or end < start:
            return
        hours = (end - start).total_seconds() / 3600
        value = elem.get("value", "")
        # a night belongs to the day the user woke up
        key = (_utc_day(end), elem.get("sourceName") or "")
        night = self.nights.setdefault(key, {
            "start": start, "end": end, "asleep": 0.0, "in_bed": 0.0, "stages": defaultdict(float),
        })
        night["start"] = min(night["start"], start)
        night["end"] = max(night["end"], end)
        if value in _ASLEEP_STAGES:
            night["asleep"] += hours
            stage = _ASLEEP_STAGES[value]
            if stage:
                night["stages"][stage] += hours
        elif value == _IN_BED:
            night["in_bed"] += hours
        elif value == _AWAKE:
            night["stages"]["awake"] += hours

    def mindful_session(self, elem: ET.Element) -> None:
        start = _parse_date(elem.get("startDate", ""))
        end = _parse_date(elem.get("endDate", ""))
        if not self.wanted(start) or end < start:
            return
        minutes = (end - start).total_seconds() / 60
        device = elem.get("sourceName") or ""
        self.mindful[(_utc_day(start), device)] += minutes
        self.result.events.append(RawHealthEvent(
            source_app=SOURCE,
            event_type="meditation",
            start_time=start,
            end_time=end,
            title="Mindful session",
            metrics={"duration_minutes": round(minutes, 2)},
            source_device=device or None,
        ))

    def workout(self, elem: ET.Element) -> None:
        start = _parse_date(elem.get("startDate", ""))
        if not self.wanted(start):
            return
        end_raw = elem.get("endDate")
        end = _parse_date(end_raw) if end_raw else None
        activity = elem.get("workoutActivityType", "").removeprefix(_WORKOUT_PREFIX)

        duration = _convert(MetricType.EXERCISE_MINUTES, _float_attr(elem, "duration"), elem.get("durationUnit"))
        distance = _convert(MetricType.DISTANCE, _float_attr(elem, "totalDistance"), elem.get("totalDistanceUnit"))
        energy = _convert(
            MetricType.ACTIVE_CALORIES, _float_attr(elem, "totalEnergyBurned"), elem.get("totalEnergyBurnedUnit"),
        )

        avg_hr = max_hr = None
        # iOS 16+ moves totals into WorkoutStatistics children
        for stat in elem.iter("WorkoutStatistics"):
            stat_type = stat.get("type", "")
            total = _float_attr(stat, "sum")
            if stat_type.endswith("ActiveEnergyBurned") and energy is None:
                energy = _convert(MetricType.ACTIVE_CALORIES, total, stat.get("unit"))
            elif stat_type.startswith("HKQuantityTypeIdentifierDistance") and distance is None:
                distance = _convert(MetricType.DISTANCE, total, stat.get("unit"))
            elif stat_type.endswith("HeartRate"):
                avg_hr = _float_attr(stat, "average")
                max_hr = _float_attr(stat, "maximum")

        if duration is None and end is not None:
            duration = round((end - start).total_seconds() / 60, 2)

        metrics: dict[str, Any] = {"activity_type": activity.lower()}
        if duration is not None:
            metrics["duration_minutes"] = duration
        if distance is not None:
            metrics["distance_mi"] = distance
        if energy is not None:
            metrics["active_calories_kcal"] = energy
        if avg_hr is not None:
            metrics["avg_heart_rate_bpm"] = round(avg_hr, 1)
        if max_hr is not None:
            metrics["max_heart_rate_bpm"] = round(max_hr, 1)

        self.result.events.append(RawHealthEvent(
            source_app=SOURCE,
            event_type="workout",
            start_time=start,
            end_time=end,
            title=activity or "Workout",
            metrics=metrics,
            source_device=elem.get("sourceName") or None,
        ))

    # -- finish ------------------------------------------------------

    def finish(self) -> AppleHealthExport:
        self._flush_daily_totals()
        self._flush_sleep()
        self._flush_mindful()
        self.result.skipped_types = dict(self.skipped)
        return self.result

    def _flush_daily_totals(self) -> None:
        best: dict[tuple[str, datetime], tuple[str, list[Any]]] = {}
        for (hk_type, day, device), bucket in self.daily.items():
            current = best.get((hk_type, day))
            if current is None or bucket[0] > current[1][0]:
                best[(hk_type, day)] = (device, bucket)
        for (hk_type, day), (device, (total, unit, count)) in sorted(best.items()):
            self.result.records.append(RawHealthRecord(
                source_app=SOURCE,
                field_name=hk_type,
                value=round(total, 3),
                unit=unit,
                recorded_at=day,
                source_device=device or None,
                metadata={"aggregation": "daily_total", "sample_count": count},
            ))

    def _flush_sleep(self) -> None:
        best: dict[datetime, tuple[str, dict[str, Any]]] = {}
        for (night, device), stats in self.nights.items():
            current = best.get(night)
            if current is None or stats["asleep"] > current[1]["asleep"]:
                best[night] = (device, stats)
        for night, (device, stats) in sorted(best.items()):
            asleep = round(stats["asleep"], 3)
            if asleep > 0:
                self.result.records.append(RawHealthRecord(
                    source_app=SOURCE,
                    field_name=_SLEEP,
                    value=asleep,
                    unit="hours",
                    recorded_at=night,
                    source_device=device or None,
                    metadata={"aggregation": "nightly_total"},
                ))
            self.result.events.append(RawHealthEvent(
                source_app=SOURCE,
                event_type="sleep_session",
                start_time=stats["start"],
                end_time=stats["end"],
                title="Sleep",
                metrics={
                    "duration_hours": asleep,
                    "in_bed_hours": round(stats["in_bed"], 3),
                    "stages": {k: round(v, 3) for k, v in stats["stages"].items()},
                },
                source_device=device or None,
            ))

    def _flush_mindful(self) -> None:
        best: dict[datetime, tuple[str, float]] = {}
        for (day, device), minutes in self.mindful.items():
            if day not in best or minutes > best[day][1]:
                best[day] = (device, minutes)
        for day, (device, minutes) in sorted(best.items()):
            self.result.records.append(RawHealthRecord(
                source_app=SOURCE,
                field_name=_MINDFUL,
                value=round(minutes, 2),
                unit="min",
                recorded_at=day,
                source_device=device or None,
                metadata={"aggregation": "daily_total"},
            ))


def parse_apple_health_export(
    export_path: str | Path,
    since: datetime | None = None,
) -> AppleHealthExport:
    """Parse an Apple Health export.xml (or export.zip).

    Args:
        export_path: Path to ``export.xml`` or the zip produced by the Health app.
        since: Only samples starting at or after this instant are kept.

    Raises:
        AppleHealthParseError: If the file is missing or not valid XML.
    """
    path = Path(export_path).expanduser()
    if not path.is_file():
        raise AppleHealthParseError(f"Export file not found: {path}")
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    acc = _Accumulator(since)
    try:
        with _open_export(path) as stream:
            for _, elem in ET.iterparse(stream, events=("end",)):
                tag = elem.tag
                try:
                    if tag == "Record":
                        rec_type = elem.get("type", "")
                        if rec_type == _SLEEP:
                            acc.sleep(elem)
                        elif rec_type == _MINDFUL:
                            acc.mindful_session(elem)
                        elif rec_type.startswith("HKQuantityTypeIdentifier"):
                            acc.quantity(elem)
                        else:
                            acc.skipped[rec_type] += 1
                    elif tag == "Workout":
                        acc.workout(elem)
                    else:
                        continue
                except (ValueError, TypeError):
                    logger.debug("Skipping malformed %s element", tag)
                elem.clear()
    except ET.ParseError as exc:
        raise AppleHealthParseError(f"Invalid XML: {exc}") from exc
    except (OSError, zipfile.BadZipFile) as exc:
        raise AppleHealthParseError(f"Cannot read export: {exc}") from exc

    result = acc.finish()
    logger.info(
        "Parsed Apple Health export: %d records, %d events, %d unmapped types",
        len(result.records), len(result.events), len(result.skipped_types),
    )
    return result


def lookback_cutoff(days: int, *, now: datetime | None = None) -> datetime:
    """UTC cutoff ``days`` before ``now``."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)
