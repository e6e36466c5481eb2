"""Tests for the extraction schema, categorization and model-backed service."""

from __future__ import annotations

import asyncio

import pytest

from youphoria.core.errors import ExternalServiceError
from youphoria.core.llm.client import LLMClient
from youphoria.core.llm.provider import Attachment
from youphoria.core.llm.providers.mock import MockProvider
from youphoria.domains.health.ingestion.content import PreparedContent
from youphoria.domains.health.ingestion.extraction import (
    ExtractedHealthData,
    LLMExtractionService,
    build_extraction_prompt,
    categorize_data,
)


def _run(coro):
    return asyncio.run(coro)


class TestExtractedHealthData:
    @pytest.mark.parametrize("raw, expected", [(0.8, 0.8), (85, 0.85), (250, 1.0), (-1, 0.0), (None, 0.0)])
    def test_confidence_normalized(self, raw, expected):
        assert ExtractedHealthData.model_validate({"confidence": raw}).confidence == pytest.approx(expected)

    def test_unknown_data_type_becomes_other(self):
        assert ExtractedHealthData.model_validate({"dataType": "horoscope"}).data_type == "other"

    def test_aliases_round_trip(self):
        data = ExtractedHealthData.model_validate({"dataType": "sleep_log", "dateRange": {"start": "2026-01-01"}})
        dumped = data.to_dict()
        assert dumped["dataType"] == "sleep_log"
        assert dumped["dateRange"]["start"] == "2026-01-01"


class TestCategorizeData:
    def test_tags_from_type_entries_and_metric_names(self):
        data = ExtractedHealthData.model_validate({
            "dataType": "exercise_log",
            "entries": [
                {"category": "exercise", "metrics": {"steps": 9000}},
                {"category": "other", "metrics": {"protein_g": 120, "heart_rate_bpm": 64}},
            ],
        })
        assert categorize_data(data) == ["exercise_log", "exercise", "nutrition", "vitals"]

    def test_other_is_never_a_tag(self):
        assert categorize_data(ExtractedHealthData()) == []


class TestPrompt:
    def test_text_content_inlined(self):
        prompt = build_extraction_prompt(PreparedContent("CSV spreadsheet", text="Row 1: 9000"), "steps.csv")
        assert "Row 1: 9000" in prompt
        assert "Document: steps.csv" in prompt

    def test_binary_content_referenced(self):
        content = PreparedContent("PDF document", attachment=Attachment(b"%PDF", "application/pdf"))
        assert "attached" in build_extraction_prompt(content, "labs.pdf")


class TestLLMExtractionService:
    def test_parses_fenced_json(self):
        provider = MockProvider('```json\n{"dataType": "vitals", "entries": [], "confidence": 0.9}\n```')
        service = LLMExtractionService(LLMClient(provider))
        data = _run(service.extract(PreparedContent("text file", text="BP 120/80"), "bp.txt"))
        assert data.data_type == "vitals"
        assert service.provider_name == "mock"

    def test_guardrails_not_applied_to_extraction(self):
        provider = MockProvider('{"summary": "Notes say you definitely have low iron", "confidence": 0.9}')
        service = LLMExtractionService(LLMClient(provider))
        data = _run(service.extract(PreparedContent("text file", text="iron"), "notes.txt"))
        assert "definitely" in data.summary

    def test_malformed_output(self):
        service = LLMExtractionService(LLMClient(MockProvider("Sorry, I can't help.")))
        with pytest.raises(ExternalServiceError, match="malformed"):
            _run(service.extract(PreparedContent("text file", text="x"), "x.txt"))

    def test_schema_violation(self):
        service = LLMExtractionService(LLMClient(MockProvider('{"entries": "many"}')))
        with pytest.raises(ExternalServiceError):
            _run(service.extract(PreparedContent("text file", text="x"), "x.txt"))
