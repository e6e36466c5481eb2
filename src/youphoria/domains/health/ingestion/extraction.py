"""Document extraction: ask a model for structured health data in a file."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from youphoria.core.errors import ExternalServiceError
from youphoria.core.llm.client import LLMClient
from youphoria.core.llm.response import parse_json_payload
from youphoria.domains.health.ingestion.content import PreparedContent

logger = logging.getLogger(__name__)

DATA_TYPES = (
    "lab_results", "nutrition_log", "exercise_log", "medical_report", "sleep_log", "vitals", "other",
)


class DateRange(BaseModel):
    start: str | None = None
    end: str | None = None


class ExtractedEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str | None = None
    category: str = "other"
    metrics: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None


class ExtractedHealthData(BaseModel):
    """Structured output of the extraction model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data_type: str = Field(default="other", alias="dataType")
    date_range: DateRange | None = Field(default=None, alias="dateRange")
    entries: list[ExtractedEntry] = Field(default_factory=list)
    summary: str = ""
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return 0.0
        number = float(value)
        # some models answer on a 0-100 scale
        if number > 1.0:
            number = number / 100.0 if number <= 100.0 else 1.0
        return max(0.0, number)

    @field_validator("data_type", mode="before")
    @classmethod
    def _known_data_type(cls, value: Any) -> str:
        return value if value in DATA_TYPES else "other"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


_CATEGORY_HINTS: dict[str, tuple[str, ...]] = {
    "exercise": ("steps", "distance", "calories_burned", "active_calories", "exercise", "workout"),
    "nutrition": ("protein", "carbs", "carbohydrates", "fat", "nutrition", "calories"),
    "sleep": ("sleep", "rem", "deep"),
    "vitals": ("heart_rate", "blood_pressure", "systolic", "diastolic", "temperature", "spo2"),
    "medical": ("lab", "test", "glucose", "cholesterol", "ldl", "hdl", "a1c", "tsh"),
}


def categorize_data(data: ExtractedHealthData) -> list[str]:
    """Category tags for filtering: data type, entry categories, metric-name hints."""
    categories: list[str] = []

    def add(category: str) -> None:
        if category and category != "other" and category not in categories:
            categories.append(category)

    add(data.data_type)
    for entry in data.entries:
        add(entry.category)
        names = [name.lower() for name in entry.metrics]
        for category, hints in _CATEGORY_HINTS.items():
            if any(hint in name for name in names for hint in hints):
                add(category)
    return categories


EXTRACTION_SYSTEM_PROMPT = """\
You read health and wellness documents and return their contents as JSON. \
You never add commentary, markdown or values that are not in the document."""

_OUTPUT_FORMAT = """\
Respond with a single JSON object and nothing else:
{
  "dataType": "lab_results|nutrition_log|exercise_log|medical_report|sleep_log|vitals|other",
  "dateRange": {"start": "YYYY-MM-DD", "end": "YYYY-MM-DD"},
  "entries": [
    {
      "date": "YYYY-MM-DD",
      "category": "nutrition|exercise|sleep|vitals|medical|other",
      "metrics": {"metric_name_unit": 0},
      "notes": "relevant text from the document"
    }
  ],
  "summary": "what the document contains, including row counts and date span",
  "confidence": 0.0
}

Rules:
- One entry per date (or per distinct measurement when there is no date).
- Dates in YYYY-MM-DD whatever the source format.
- Metric values are numbers. Put the unit in the metric name, for example \
"steps", "weight_lbs", "weight_kg", "heart_rate_bpm", "distance_mi", "water_fl_oz", \
"glucose_mg_dl", "ldl_mg_dl", "hdl_mg_dl", "total_cholesterol_mg_dl", "a1c_pct", \
"systolic_mmhg", "diastolic_mmhg", "sleep_hours".
- A range such as "120-140" becomes two metrics ("..._low", "..._high").
- confidence: 0.9 or more for clearly structured data, 0.7-0.8 for readable but \
loosely structured data, 0.5-0.6 for partially readable data, lower when unsure \
the document holds health data at all."""


def build_extraction_prompt(content: PreparedContent, file_name: str) -> str:
    lines = [
        f"Extract every health and wellness data point from this {content.description}.",
        "",
        f"Document: {file_name}",
        f"Type: {content.description}",
    ]
    if content.is_binary:
        lines.append("The document is attached. Read all text, tables and figures in it.")
    else:
        lines.extend(["Content:", content.text])
    lines.extend(["", _OUTPUT_FORMAT])
    return "\n".join(lines)


class ExtractionService(Protocol):
    """Turns prepared file content into structured health data.

    Implementations raise ``ExternalServiceError`` for any failure to get a
    usable answer (network, timeout, malformed output).
    """

    async def extract(self, content: PreparedContent, file_name: str) -> ExtractedHealthData: ...


class LLMExtractionService:
    """``ExtractionService`` backed by the configured chat model."""

    def __init__(self, llm_client: LLMClient, *, timeout_seconds: float = 90.0) -> None:
        self._llm = llm_client
        self._timeout = timeout_seconds

    @property
    def provider_name(self) -> str:
        return self._llm.provider_name

    async def extract(self, content: PreparedContent, file_name: str) -> ExtractedHealthData:
        result = await self._llm.complete(
            EXTRACTION_SYSTEM_PROMPT,
            build_extraction_prompt(content, file_name),
            attachment=content.attachment,
            max_tokens=8192,
            temperature=0.1,
            timeout_seconds=self._timeout,
            purpose="extraction",
            apply_guardrails=False,
        )
        try:
            payload = parse_json_payload(result.content)
            data = ExtractedHealthData.model_validate(payload)
        except (ValueError, PydanticValidationError) as exc:
            logger.error("Extraction output for %s was not valid JSON: %s", file_name, exc)
            raise ExternalServiceError("Extraction service returned malformed output") from exc

        logger.info(
            "Extracted %s from %s: %d entries, confidence=%.2f",
            data.data_type, file_name, len(data.entries), data.confidence,
        )
        return data
