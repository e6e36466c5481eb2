"""Typed metric payloads for health events, keyed by ``event_type``.

Each known event type has its own schema; anything else falls back to
``GenericEventMetrics`` which accepts numeric/string fields only.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class _Metrics(BaseModel):
    model_config = ConfigDict(extra="forbid")


class WorkoutMetrics(_Metrics):
    activity_type: str = ""
    duration_minutes: float | None = Field(default=None, ge=0)
    distance_mi: float | None = Field(default=None, ge=0)
    active_calories_kcal: float | None = Field(default=None, ge=0)
    avg_heart_rate_bpm: float | None = Field(default=None, ge=0)
    max_heart_rate_bpm: float | None = Field(default=None, ge=0)
    elevation_gain_ft: float | None = None


class StrengthSet(_Metrics):
    set_order: int = Field(default=1, ge=1)
    weight_lbs: float | None = Field(default=None, ge=0)
    reps: int | None = Field(default=None, ge=0)
    distance: float | None = Field(default=None, ge=0)
    seconds: float | None = Field(default=None, ge=0)
    notes: str | None = None


class StrengthExercise(_Metrics):
    name: str
    sets: list[StrengthSet] = Field(default_factory=list)

    @property
    def max_weight_lbs(self) -> float | None:
        weights = [s.weight_lbs for s in self.sets if s.weight_lbs is not None]
        return max(weights) if weights else None


class StrengthTrainingMetrics(_Metrics):
    workout_name: str = ""
    exercises: list[StrengthExercise] = Field(default_factory=list)
    total_volume_lbs: float = Field(default=0.0, ge=0)
    total_sets: int = Field(default=0, ge=0)
    total_reps: int = Field(default=0, ge=0)
    notes: str | None = None


class MealMetrics(_Metrics):
    meal_type: str = ""
    calories_kcal: float | None = Field(default=None, ge=0)
    protein_g: float | None = Field(default=None, ge=0)
    carbohydrates_g: float | None = Field(default=None, ge=0)
    fat_g: float | None = Field(default=None, ge=0)
    foods: list[str] = Field(default_factory=list)


class SleepSessionMetrics(_Metrics):
    duration_hours: float | None = Field(default=None, ge=0)
    in_bed_hours: float | None = Field(default=None, ge=0)
    stages: dict[str, float] = Field(default_factory=dict)


class MeditationMetrics(_Metrics):
    duration_minutes: float | None = Field(default=None, ge=0)
    technique: str = ""


class GenericEventMetrics(BaseModel):
    model_config = ConfigDict(extra="allow")


EventMetrics = Union[
    WorkoutMetrics,
    StrengthTrainingMetrics,
    MealMetrics,
    SleepSessionMetrics,
    MeditationMetrics,
    GenericEventMetrics,
]

EVENT_METRIC_MODELS: dict[str, type[BaseModel]] = {
    "workout": WorkoutMetrics,
    "strength_training": StrengthTrainingMetrics,
    "meal": MealMetrics,
    "sleep_session": SleepSessionMetrics,
    "meditation": MeditationMetrics,
}


def parse_event_metrics(event_type: str, payload: dict[str, Any] | None) -> EventMetrics:
    """Validate ``payload`` against the schema registered for ``event_type``.

    Raises:
        pydantic.ValidationError: If the payload does not fit the schema.
    """
    model = EVENT_METRIC_MODELS.get(event_type, GenericEventMetrics)
    return model.model_validate(payload or {})
