"""Tests for the normalizer: raw source records to canonical records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from youphoria.core.errors import UnitMismatchError, UnknownMetricError, ValidationError
from youphoria.core.storage.event_metrics import StrengthTrainingMetrics
from youphoria.domains.health.domain_logic.metric_registry import MetricType, conversion_for
from youphoria.domains.health.domain_logic.normalizer import (
    RawHealthEvent,
    RawHealthRecord,
    normalize,
    normalize_batch,
    normalize_event,
)


def _raw(**overrides) -> RawHealthRecord:
    defaults = dict(
        source_app="Health Connect",
        field_name="Weight",
        value=82.5,
        unit="kg",
        recorded_at="2026-02-01T08:30:00Z",
    )
    defaults.update(overrides)
    return RawHealthRecord(**defaults)


class TestNormalize:
    def test_kg_weight_converted_to_lbs(self):
        record = normalize(_raw(), "user-1")
        assert record.metric_type == "weight"
        assert record.unit == "lbs"
        assert record.value == pytest.approx(181.88, abs=0.01)
        assert record.metadata["original_value"] == 82.5
        assert record.metadata["original_unit"] == "kg"
        assert record.quality_score == 1.0
        assert record.is_canonical is True

    def test_round_trip_within_tolerance(self):
        record = normalize(_raw(value=73.123456), "user-1")
        back = conversion_for(MetricType.WEIGHT, "kg").invert(record.value)
        assert abs(back - 73.123456) < 1e-6

    def test_source_default_unit_used_when_missing(self):
        record = normalize(_raw(unit=""), "user-1")
        assert record.unit == "lbs"
        assert record.value == pytest.approx(181.88, abs=0.01)

    def test_fixed_unit_overrides_declared_percent(self):
        record = normalize(
            _raw(
                source_app="Apple Health",
                field_name="HKQuantityTypeIdentifierOxygenSaturation",
                value=0.97,
                unit="%",
            ),
            "user-1",
        )
        assert record.value == pytest.approx(97.0)
        assert record.unit == "%"

    def test_timestamp_converted_to_utc(self):
        record = normalize(_raw(recorded_at="2026-02-01T08:30:00-05:00"), "user-1")
        assert record.recorded_at == "2026-02-01T13:30:00.000+00:00"

    def test_datetime_input(self):
        tz = timezone(timedelta(hours=2))
        record = normalize(_raw(recorded_at=datetime(2026, 2, 1, 10, 0, tzinfo=tz)), "user-1")
        assert record.recorded_at == "2026-02-01T08:00:00.000+00:00"

    def test_zero_is_a_valid_value(self):
        record = normalize(_raw(field_name="Steps", value=0, unit="count"), "user-1")
        assert record.value == 0.0

    def test_numeric_string_accepted(self):
        assert normalize(_raw(field_name="Steps", value="1234", unit=""), "user-1").value == 1234.0

    @pytest.mark.parametrize("value", ["abc", None, True, float("nan"), float("inf")])
    def test_non_numeric_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize(_raw(value=value), "user-1")

    def test_unknown_metric(self):
        with pytest.raises(UnknownMetricError):
            normalize(_raw(field_name="Mana"), "user-1")

    def test_unit_mismatch(self):
        with pytest.raises(UnitMismatchError):
            normalize(_raw(unit="mi"), "user-1")

    def test_bad_timestamp(self):
        with pytest.raises(ValidationError, match="timestamp"):
            normalize(_raw(recorded_at="yesterday"), "user-1")

    def test_metadata_must_be_a_mapping(self):
        with pytest.raises(ValidationError, match="metadata"):
            normalize(_raw(metadata="oops"), "user-1")

    def test_numeric_timestamp_rejected(self):
        with pytest.raises(ValidationError, match="timestamp"):
            normalize(_raw(recorded_at=1738400000), "user-1")

    def test_user_required(self):
        with pytest.raises(ValidationError):
            normalize(_raw(), "")

    def test_estimated_flag_lowers_quality(self):
        record = normalize(
            _raw(source_app="Strong", field_name="estimated_1rm", value=225, unit="lbs",
                 metadata={"estimated": True}),
            "user-1",
        )
        assert record.quality_score == 0.5
        assert record.metric_type == "one_rep_max"


class TestNormalizeBatch:
    def test_bad_records_skipped_and_reported(self):
        batch = normalize_batch(
            [_raw(), _raw(field_name="Mana"), _raw(value="heavy")],
            "user-1",
        )
        assert len(batch.records) == 1
        assert not batch.success
        assert [f.index for f in batch.failures] == [1, 2]
        assert batch.failures[0].to_dict()["error"]["code"] == "unknown_metric"

    def test_malformed_fields_reported_not_raised(self):
        batch = normalize_batch([_raw(metadata="oops"), _raw(), _raw(recorded_at=1738400000)], "user-1")
        assert len(batch.records) == 1
        assert [f.index for f in batch.failures] == [0, 2]
        assert {f.error.code for f in batch.failures} == {"validation_error"}

    def test_empty_batch(self):
        batch = normalize_batch([], "user-1")
        assert batch.success
        assert batch.records == []


class TestNormalizeEvent:
    def test_typed_metrics(self):
        event = normalize_event(
            RawHealthEvent(
                source_app="Strong",
                event_type="strength_training",
                start_time="2026-02-01T17:00:00Z",
                end_time="2026-02-01T18:00:00Z",
                metrics={"workout_name": "Push Day", "total_sets": 12},
            ),
            "user-1",
        )
        assert isinstance(event.metrics, StrengthTrainingMetrics)
        assert event.title == "Strength Training"
        assert event.quality_score == 0.95

    def test_end_before_start(self):
        with pytest.raises(ValidationError, match="before it starts"):
            normalize_event(
                RawHealthEvent(
                    source_app="Apple Health",
                    event_type="workout",
                    start_time="2026-02-01T18:00:00Z",
                    end_time="2026-02-01T17:00:00Z",
                ),
                "user-1",
            )

    def test_numeric_end_time_rejected(self):
        with pytest.raises(ValidationError, match="Unparsable event time"):
            normalize_event(
                RawHealthEvent(
                    source_app="Strong",
                    event_type="strength_training",
                    start_time="2026-02-01T17:00:00Z",
                    end_time=1738400000,
                ),
                "user-1",
            )

    def test_metrics_outside_schema(self):
        with pytest.raises(ValidationError, match="Invalid metrics"):
            normalize_event(
                RawHealthEvent(
                    source_app="Apple Health",
                    event_type="workout",
                    start_time="2026-02-01T17:00:00Z",
                    metrics={"distance_mi": -3},
                ),
                "user-1",
            )

    def test_unknown_event_type_accepts_generic_metrics(self):
        event = normalize_event(
            RawHealthEvent(
                source_app="Manual Entry",
                event_type="sauna",
                start_time="2026-02-01T17:00:00Z",
                metrics={"temperature_f": 180},
            ),
            "user-1",
        )
        assert event.metrics.model_dump() == {"temperature_f": 180}
