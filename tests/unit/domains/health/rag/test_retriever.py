"""Tests for health context retrieval and prompt formatting."""

from __future__ import annotations

from datetime import datetime, timezone

from youphoria.core.storage.event_metrics import WorkoutMetrics
from youphoria.core.storage.models import HealthEvent, HealthRecord, UploadedFile
from youphoria.domains.health.rag.formatter import format_health_context
from youphoria.domains.health.rag.query_analyzer import TimeRange
from youphoria.domains.health.rag.retriever import HealthContextRetriever

NOW = datetime(2026, 2, 11, 15, 0, tzinfo=timezone.utc)


def _steps(day: str, value: float, **overrides) -> HealthRecord:
    fields = dict(
        id="",
        user_id="user-1",
        metric_type="steps",
        data_category="activity",
        value=value,
        unit="count",
        recorded_at=f"{day}T00:00:00.000+00:00",
        source_app="Apple Health",
        quality_score=1.0,
    )
    fields.update(overrides)
    return HealthRecord(**fields)


def _seed_steps(repo) -> None:
    repo.upsert_health_records([
        _steps("2026-02-09", 9000),
        _steps("2026-02-10", 8000),
        _steps("2026-02-10", 7999, source_app="Fitbit", is_canonical=False),
        _steps("2026-01-01", 12000),
    ])


class TestRetrieveContext:
    def test_no_data_for_user(self, health_repository):
        retriever = HealthContextRetriever(health_repository)
        context = retriever.retrieve_context("user-1", "show me my steps last week", now=NOW)
        assert context.has_health_data is False
        assert context.text == ""
        assert context.metadata["needs_health_data"] is True
        assert context.metadata["metrics_missing"] == ["steps"]
        assert context.metadata["time_range"]["description"] == "last 7 days"

    def test_canonical_records_in_window(self, health_repository):
        _seed_steps(health_repository)
        retriever = HealthContextRetriever(health_repository)
        context = retriever.retrieve_context("user-1", "show me my steps last week", now=NOW)

        assert context.has_health_data
        assert [r.value for r in context.records] == [8000, 9000]
        assert context.metadata["metrics_included"] == ["steps"]
        assert context.metadata["data_types"] == ["activity"]
        assert "Steps (count): 2 days, total 17,000, daily avg 8,500" in context.text
        assert "Fitbit" not in context.text

    def test_small_talk_skips_retrieval(self, health_repository):
        _seed_steps(health_repository)
        context = HealthContextRetriever(health_repository).retrieve_context("user-1", "Hi!", now=NOW)
        assert not context.has_health_data
        assert context.metadata["needs_health_data"] is False
        assert context.records == []

    def test_other_users_data_invisible(self, health_repository):
        _seed_steps(health_repository)
        context = HealthContextRetriever(health_repository).retrieve_context(
            "user-2", "show me my steps last week", now=NOW,
        )
        assert not context.has_health_data

    def test_truncation_flagged(self, health_repository):
        _seed_steps(health_repository)
        health_repository.upsert_health_records([_steps("2026-02-08", 10000)])
        retriever = HealthContextRetriever(health_repository, max_records=2)
        context = retriever.retrieve_context("user-1", "show me my steps last week", now=NOW)
        assert context.metadata["truncated"] is True
        assert context.metadata["record_count"] == 2
        assert "omitted" in context.text

    def test_events_and_files_included(self, health_repository):
        health_repository.upsert_health_events([HealthEvent(
            id="", user_id="user-1", event_type="workout",
            start_time="2026-02-10T07:00:00.000+00:00", end_time="2026-02-10T07:30:00.000+00:00",
            title="Morning run", metrics=WorkoutMetrics(activity_type="running", distance_mi=3.1),
            source_app="Apple Health",
        )])
        health_repository.save_uploaded_file(UploadedFile(
            id="", user_id="user-1", file_name="labs.pdf", mime_type="application/pdf",
            size_bytes=10, storage_path="user-1/1-labs.pdf",
            extracted_data={"entries": [{"date": "2026-02-05", "metrics": {"ldl_mg_dl": 130}}]},
            data_categories=["lab_results"],
            date_range_start="2026-02-05T00:00:00.000+00:00",
            date_range_end="2026-02-05T23:59:59.999+00:00",
            summary="Lipid panel",
        ))
        context = HealthContextRetriever(health_repository).retrieve_context(
            "user-1", "how was my health last week", now=NOW,
        )
        assert context.has_health_data
        assert context.metadata["data_types"] == ["events", "uploaded_files"]
        assert "Morning run: activity type running, distance mi 3.1, 30 min" in context.text
        assert "labs.pdf (lab_results, 2026-02-05 to 2026-02-05): Lipid panel" in context.text
        assert "ldl_mg_dl=130" in context.text

    def test_metric_query_ignores_unrelated_events_and_files(self, health_repository):
        health_repository.upsert_health_events([
            HealthEvent(
                id="", user_id="user-1", event_type="workout",
                start_time="2026-02-10T07:00:00.000+00:00", end_time="2026-02-10T07:30:00.000+00:00",
                title="Morning run", metrics=WorkoutMetrics(activity_type="running"),
                source_app="Apple Health",
            ),
            HealthEvent(
                id="", user_id="user-1", event_type="meal",
                start_time="2026-02-10T12:00:00.000+00:00", title="Lunch", source_app="MyFitnessPal",
            ),
        ])
        health_repository.save_uploaded_file(UploadedFile(
            id="", user_id="user-1", file_name="labs.pdf", mime_type="application/pdf",
            size_bytes=10, storage_path="user-1/1-labs.pdf",
            data_categories=["lab_results"],
            date_range_start="2026-02-05T00:00:00.000+00:00",
            date_range_end="2026-02-05T23:59:59.999+00:00",
        ))
        context = HealthContextRetriever(health_repository).retrieve_context(
            "user-1", "show me my steps last week", now=NOW,
        )

        assert context.has_health_data is False
        assert context.metadata["has_health_data"] is False
        assert context.records == []
        assert context.metadata["metrics_missing"] == ["steps"]
        assert [e.title for e in context.events] == ["Morning run"]
        assert context.files == []

    def test_metric_query_includes_related_upload(self, health_repository):
        health_repository.save_uploaded_file(UploadedFile(
            id="", user_id="user-1", file_name="labs.pdf", mime_type="application/pdf",
            size_bytes=10, storage_path="user-1/1-labs.pdf",
            data_categories=["lab_results", "medical"],
            date_range_start="2026-02-05T00:00:00.000+00:00",
            date_range_end="2026-02-05T23:59:59.999+00:00",
            summary="Lipid panel",
        ))
        context = HealthContextRetriever(health_repository).retrieve_context(
            "user-1", "what was my ldl cholesterol last week", now=NOW,
        )
        assert [f.file_name for f in context.files] == ["labs.pdf"]

    def test_storage_failure_degrades_to_empty_context(self, health_repository, health_db):
        health_db.connection.execute("DROP TABLE health_records")
        context = HealthContextRetriever(health_repository).retrieve_context(
            "user-1", "show me my steps last week", now=NOW,
        )
        assert not context.has_health_data
        assert context.metadata["retrieval_error"] is True


class TestFormatter:
    def test_empty(self):
        assert format_health_context([], [], [], TimeRange(NOW, NOW, "today")) == ""

    def test_short_window_lists_each_reading(self):
        readings = [
            HealthRecord(
                id=str(i), user_id="user-1", metric_type="heart_rate", data_category="heart",
                value=v, unit="bpm", recorded_at=f"2026-02-11T0{i}:15:00.000+00:00",
                source_app="Apple Health",
            )
            for i, v in enumerate([61.0, 64.5], start=8)
        ]
        text = format_health_context(
            readings, [], [], TimeRange(datetime(2026, 2, 11, tzinfo=timezone.utc), NOW, "today"),
        )
        assert text.startswith("Time period: today (2026-02-11 to 2026-02-11)")
        assert "- Heart rate (bpm): 2 readings, avg 62.8, range 61-64.5, latest 64.5 on 2026-02-11 09:15" in text
        assert "  • 2026-02-11 08:15: 61 bpm (Apple Health)" in text
