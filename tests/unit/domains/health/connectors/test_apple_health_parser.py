"""Tests for the Apple Health export.xml parser."""

from __future__ import annotations

import zipfile
from datetime import datetime, timezone

import pytest

from youphoria.domains.health.connectors import (
    AppleHealthParseError,
    lookback_cutoff,
    parse_apple_health_export,
)
from youphoria.domains.health.domain_logic.normalizer import normalize_batch

HK = "HKQuantityTypeIdentifier"

EXPORT_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<HealthData locale="en_US">
 <ExportDate value="2026-02-03 09:00:00 -0500"/>
 <Record type="{HK}StepCount" sourceName="iPhone" unit="count" value="4000"
         startDate="2026-02-01 09:00:00 +0000" endDate="2026-02-01 10:00:00 +0000"/>
 <Record type="{HK}StepCount" sourceName="iPhone" unit="count" value="3000"
         startDate="2026-02-01 15:00:00 +0000" endDate="2026-02-01 16:00:00 +0000"/>
 <Record type="{HK}StepCount" sourceName="Apple Watch" unit="count" value="6500"
         startDate="2026-02-01 09:00:00 +0000" endDate="2026-02-01 16:00:00 +0000"/>
 <Record type="{HK}BodyMass" sourceName="Scale" unit="kg" value="82.5"
         startDate="2026-02-01 07:15:00 +0000" endDate="2026-02-01 07:15:00 +0000"/>
 <Record type="{HK}HeartRate" sourceName="Apple Watch" unit="count/min" value="61"
         startDate="2026-02-01 07:20:00 +0000" endDate="2026-02-01 07:20:00 +0000">
  <MetadataEntry key="HKMetadataKeyHeartRateMotionContext" value="1"/>
 </Record>
 <Record type="{HK}OxygenSaturation" sourceName="Apple Watch" unit="%" value="0.97"
         startDate="2026-02-01 03:00:00 +0000" endDate="2026-02-01 03:00:00 +0000"/>
 <Record type="{HK}AudioExposure" sourceName="iPhone" unit="dBASPL" value="70"
         startDate="2026-02-01 03:00:00 +0000" endDate="2026-02-01 03:00:00 +0000"/>
 <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
         value="HKCategoryValueSleepAnalysisInBed"
         startDate="2026-01-31 22:30:00 +0000" endDate="2026-02-01 06:30:00 +0000"/>
 <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
         value="HKCategoryValueSleepAnalysisAsleepCore"
         startDate="2026-01-31 23:00:00 +0000" endDate="2026-02-01 03:00:00 +0000"/>
 <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
         value="HKCategoryValueSleepAnalysisAsleepDeep"
         startDate="2026-02-01 03:00:00 +0000" endDate="2026-02-01 04:30:00 +0000"/>
 <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
         value="HKCategoryValueSleepAnalysisAsleepREM"
         startDate="2026-02-01 04:30:00 +0000" endDate="2026-02-01 06:00:00 +0000"/>
 <Record type="HKCategoryTypeIdentifierMindfulSession" sourceName="Apple Watch"
         startDate="2026-02-01 12:00:00 +0000" endDate="2026-02-01 12:10:00 +0000"/>
 <Workout workoutActivityType="HKWorkoutActivityTypeRunning" duration="30" durationUnit="min"
          sourceName="Apple Watch"
          startDate="2026-02-01 17:00:00 +0000" endDate="2026-02-01 17:30:00 +0000">
  <WorkoutStatistics type="{HK}DistanceWalkingRunning" sum="5" unit="km"/>
  <WorkoutStatistics type="{HK}ActiveEnergyBurned" sum="320" unit="kcal"/>
  <WorkoutStatistics type="{HK}HeartRate" average="148.26" maximum="171" unit="count/min"/>
 </Workout>
</HealthData>
"""


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "export.xml"
    path.write_text(EXPORT_XML, encoding="utf-8")
    return path


def _records_of(export, hk_type):
    return [r for r in export.records if r.field_name == hk_type]


class TestParseRecords:
    def test_daily_steps_take_largest_device_total(self, export_file):
        export = parse_apple_health_export(export_file)
        [steps] = _records_of(export, f"{HK}StepCount")
        assert steps.value == 7000
        assert steps.source_device == "iPhone"
        assert steps.recorded_at == datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert steps.metadata == {"aggregation": "daily_total", "sample_count": 2}

    def test_point_samples_pass_through(self, export_file):
        export = parse_apple_health_export(export_file)
        [weight] = _records_of(export, f"{HK}BodyMass")
        assert weight.value == 82.5
        assert weight.unit == "kg"
        assert weight.source_device == "Scale"

    def test_unmapped_types_counted(self, export_file):
        export = parse_apple_health_export(export_file)
        assert export.skipped_types == {f"{HK}AudioExposure": 1}
        assert export.summary()["skipped_types"] == {f"{HK}AudioExposure": 1}

    def test_sleep_night_keyed_by_wake_day(self, export_file):
        export = parse_apple_health_export(export_file)
        [sleep] = _records_of(export, "HKCategoryTypeIdentifierSleepAnalysis")
        assert sleep.value == 7.0
        assert sleep.recorded_at == datetime(2026, 2, 1, tzinfo=timezone.utc)

        [session] = [e for e in export.events if e.event_type == "sleep_session"]
        assert session.metrics["in_bed_hours"] == 8.0
        assert session.metrics["stages"] == {"core": 4.0, "deep": 1.5, "rem": 1.5}

    def test_mindful_session(self, export_file):
        export = parse_apple_health_export(export_file)
        [mindful] = _records_of(export, "HKCategoryTypeIdentifierMindfulSession")
        assert mindful.value == 10.0
        assert any(e.event_type == "meditation" for e in export.events)

    def test_workout_with_statistics(self, export_file):
        export = parse_apple_health_export(export_file)
        [workout] = [e for e in export.events if e.event_type == "workout"]
        assert workout.title == "Running"
        assert workout.metrics["activity_type"] == "running"
        assert workout.metrics["duration_minutes"] == 30
        assert workout.metrics["distance_mi"] == pytest.approx(3.107, abs=0.001)
        assert workout.metrics["active_calories_kcal"] == 320
        assert workout.metrics["avg_heart_rate_bpm"] == 148.3
        assert workout.metrics["max_heart_rate_bpm"] == 171

    def test_everything_normalizes(self, export_file):
        export = parse_apple_health_export(export_file)
        batch = normalize_batch(export.records, "user-1")
        assert batch.success
        by_type = {r.metric_type: r for r in batch.records}
        assert by_type["oxygen_saturation"].value == pytest.approx(97.0)
        assert by_type["weight"].value == pytest.approx(181.881, abs=0.001)
        assert by_type["sleep_duration"].unit == "hours"


class TestSinceFilter:
    def test_samples_before_cutoff_dropped(self, export_file):
        export = parse_apple_health_export(
            export_file, since=datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc),
        )
        assert _records_of(export, f"{HK}BodyMass") == []
        [steps] = _records_of(export, f"{HK}StepCount")
        assert steps.value == 3000

    def test_lookback_cutoff(self):
        now = datetime(2026, 2, 10, tzinfo=timezone.utc)
        assert lookback_cutoff(7, now=now) == datetime(2026, 2, 3, tzinfo=timezone.utc)


class TestInputs:
    def test_zip_export(self, tmp_path):
        archive = tmp_path / "export.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("apple_health_export/export.xml", EXPORT_XML)
        export = parse_apple_health_export(archive)
        assert _records_of(export, f"{HK}BodyMass")

    def test_zip_without_export_xml(self, tmp_path):
        archive = tmp_path / "export.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("readme.txt", "nothing here")
        with pytest.raises(AppleHealthParseError, match="No export.xml"):
            parse_apple_health_export(archive)

    def test_missing_file(self, tmp_path):
        with pytest.raises(AppleHealthParseError, match="not found"):
            parse_apple_health_export(tmp_path / "nope.xml")

    def test_invalid_xml(self, tmp_path):
        path = tmp_path / "export.xml"
        path.write_text("<HealthData><Record", encoding="utf-8")
        with pytest.raises(AppleHealthParseError, match="Invalid XML"):
            parse_apple_health_export(path)
