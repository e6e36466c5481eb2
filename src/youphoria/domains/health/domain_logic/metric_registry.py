"""Metric registry: source vocabularies → canonical metric taxonomy.

The registry is closed. Every (source app, field) pair a connector may emit
is listed here; anything else is rejected with ``UnknownMetricError`` rather
than passed through. Lookups are pure and deterministic.

Conversion direction is always *source unit → canonical unit*, applied once
at ingestion. Stored values are never re-converted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from youphoria.core.errors import UnitMismatchError, UnknownMetricError


class DataCategory(str, Enum):
    ACTIVITY = "activity"
    HEART = "heart"
    BODY_MEASUREMENT = "body_measurement"
    SLEEP = "sleep"
    VITALS = "vitals"
    NUTRITION = "nutrition"
    WORKOUT = "workout"
    MENTAL_HEALTH = "mental_health"
    LAB_RESULTS = "lab_results"


class Bucketing(str, Enum):
    """Granularity at which two records count as the same observation."""

    MINUTE = "minute"  # instantaneous readings
    DAY = "day"  # cumulative daily totals


class MetricType(str, Enum):
    # Activity
    STEPS = "steps"
    DISTANCE = "distance"
    ACTIVE_CALORIES = "active_calories"
    EXERCISE_MINUTES = "exercise_minutes"
    FLIGHTS_CLIMBED = "flights_climbed"
    ELEVATION_GAIN = "elevation_gain"
    # Heart
    HEART_RATE = "heart_rate"
    RESTING_HEART_RATE = "resting_heart_rate"
    HRV = "heart_rate_variability"
    # Body
    WEIGHT = "weight"
    HEIGHT = "height"
    BMI = "bmi"
    BODY_FAT_PERCENTAGE = "body_fat_percentage"
    # Sleep
    SLEEP_DURATION = "sleep_duration"
    # Vitals
    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    OXYGEN_SATURATION = "oxygen_saturation"
    BODY_TEMPERATURE = "body_temperature"
    RESPIRATORY_RATE = "respiratory_rate"
    BLOOD_GLUCOSE = "blood_glucose"
    # Nutrition
    DIETARY_CALORIES = "dietary_calories"
    PROTEIN = "protein"
    CARBOHYDRATES = "carbohydrates"
    FAT = "fat"
    FIBER = "fiber"
    SUGAR = "sugar"
    SODIUM = "sodium"
    WATER = "water"
    # Strength training
    WEIGHT_LIFTED = "weight_lifted"
    TRAINING_VOLUME = "training_volume"
    SETS = "sets"
    REPS = "reps"
    ONE_REP_MAX = "one_rep_max"
    # Mental health
    MINDFUL_MINUTES = "mindful_minutes"
    STRESS_LEVEL = "stress_level"
    MOOD = "mood"
    # Lab results
    TSH = "tsh"
    TOTAL_CHOLESTEROL = "total_cholesterol"
    LDL_CHOLESTEROL = "ldl_cholesterol"
    HDL_CHOLESTEROL = "hdl_cholesterol"
    TRIGLYCERIDES = "triglycerides"
    HBA1C = "hba1c"
    VITAMIN_D = "vitamin_d"
    FERRITIN = "ferritin"


class SourceApp(str, Enum):
    APPLE_HEALTH = "Apple Health"
    GOOGLE_FIT = "Google Fit"
    HEALTH_CONNECT = "Health Connect"
    FITBIT = "Fitbit"
    GARMIN = "Garmin"
    WHOOP = "Whoop"
    OURA = "Oura"
    STRAVA = "Strava"
    STRONG = "Strong"
    MYFITNESSPAL = "MyFitnessPal"
    MANUAL_ENTRY = "Manual Entry"
    FILE_UPLOAD = "File Upload"


class SourceTier(str, Enum):
    DEVICE = "device"
    SPECIALIZED = "specialized"
    MANUAL = "manual"
    ESTIMATE = "estimate"


QUALITY_SCORES: dict[SourceTier, float] = {
    SourceTier.DEVICE: 1.0,
    SourceTier.SPECIALIZED: 0.95,
    SourceTier.MANUAL: 0.7,
    SourceTier.ESTIMATE: 0.5,
}

SOURCE_TIERS: dict[str, SourceTier] = {
    SourceApp.APPLE_HEALTH.value: SourceTier.DEVICE,
    SourceApp.GOOGLE_FIT.value: SourceTier.DEVICE,
    SourceApp.HEALTH_CONNECT.value: SourceTier.DEVICE,
    SourceApp.FITBIT.value: SourceTier.DEVICE,
    SourceApp.GARMIN.value: SourceTier.DEVICE,
    SourceApp.WHOOP.value: SourceTier.DEVICE,
    SourceApp.OURA.value: SourceTier.DEVICE,
    SourceApp.STRAVA.value: SourceTier.SPECIALIZED,
    SourceApp.STRONG.value: SourceTier.SPECIALIZED,
    SourceApp.MYFITNESSPAL.value: SourceTier.MANUAL,
    SourceApp.MANUAL_ENTRY.value: SourceTier.MANUAL,
    SourceApp.FILE_UPLOAD.value: SourceTier.MANUAL,
}

# Connection type reported for ConnectedSource.app_type
SOURCE_APP_TYPES: dict[SourceTier, str] = {
    SourceTier.DEVICE: "health_platform",
    SourceTier.SPECIALIZED: "fitness_app",
    SourceTier.MANUAL: "manual",
    SourceTier.ESTIMATE: "other",
}


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricDefinition:
    """Canonical description of one metric type."""

    metric_type: MetricType
    display_name: str
    category: DataCategory
    canonical_unit: str
    bucketing: Bucketing
    keywords: tuple[str, ...] = ()

    @property
    def is_cumulative(self) -> bool:
        return self.bucketing is Bucketing.DAY


def _d(
    metric_type: MetricType,
    display_name: str,
    category: DataCategory,
    unit: str,
    bucketing: Bucketing,
    *keywords: str,
) -> MetricDefinition:
    return MetricDefinition(metric_type, display_name, category, unit, bucketing, keywords)


_A, _H, _B, _S = DataCategory.ACTIVITY, DataCategory.HEART, DataCategory.BODY_MEASUREMENT, DataCategory.SLEEP
_V, _N, _W = DataCategory.VITALS, DataCategory.NUTRITION, DataCategory.WORKOUT
_M, _L = DataCategory.MENTAL_HEALTH, DataCategory.LAB_RESULTS
_MIN, _DAY = Bucketing.MINUTE, Bucketing.DAY

METRIC_DEFINITIONS: dict[MetricType, MetricDefinition] = {
    d.metric_type: d
    for d in (
        _d(MetricType.STEPS, "Steps", _A, "count", _DAY, "step", "steps", "walked", "walking"),
        _d(MetricType.DISTANCE, "Distance", _A, "mi", _DAY, "distance", "miles", "how far", "ran", "km"),
        _d(MetricType.ACTIVE_CALORIES, "Active calories", _A, "kcal", _DAY,
           "active calories", "calories burned", "burned", "energy"),
        _d(MetricType.EXERCISE_MINUTES, "Exercise minutes", _A, "min", _DAY,
           "exercise", "exercise minutes", "active minutes", "workout time"),
        _d(MetricType.FLIGHTS_CLIMBED, "Flights climbed", _A, "count", _DAY, "flights", "stairs"),
        _d(MetricType.ELEVATION_GAIN, "Elevation gain", _A, "ft", _DAY, "elevation", "climb"),
        _d(MetricType.HEART_RATE, "Heart rate", _H, "bpm", _MIN, "heart rate", "heartrate", "pulse", "bpm"),
        _d(MetricType.RESTING_HEART_RATE, "Resting heart rate", _H, "bpm", _MIN, "resting heart rate", "rhr"),
        _d(MetricType.HRV, "Heart rate variability", _H, "ms", _MIN, "hrv", "heart rate variability"),
        _d(MetricType.WEIGHT, "Weight", _B, "lbs", _MIN, "weight", "weigh", "pounds", "lbs"),
        _d(MetricType.HEIGHT, "Height", _B, "in", _MIN, "height", "tall"),
        _d(MetricType.BMI, "BMI", _B, "count", _MIN, "bmi", "body mass index"),
        _d(MetricType.BODY_FAT_PERCENTAGE, "Body fat", _B, "%", _MIN, "body fat", "fat percentage"),
        _d(MetricType.SLEEP_DURATION, "Sleep", _S, "hours", _DAY, "sleep", "slept", "sleeping", "rest"),
        _d(MetricType.BLOOD_PRESSURE_SYSTOLIC, "Systolic blood pressure", _V, "mmHg", _MIN,
           "blood pressure", "systolic", "bp"),
        _d(MetricType.BLOOD_PRESSURE_DIASTOLIC, "Diastolic blood pressure", _V, "mmHg", _MIN,
           "blood pressure", "diastolic", "bp"),
        _d(MetricType.OXYGEN_SATURATION, "Blood oxygen", _V, "%", _MIN, "oxygen", "spo2", "o2", "saturation"),
        _d(MetricType.BODY_TEMPERATURE, "Body temperature", _V, "degF", _MIN, "temperature", "fever", "temp"),
        _d(MetricType.RESPIRATORY_RATE, "Respiratory rate", _V, "breaths/min", _MIN,
           "respiratory", "breathing rate", "breaths"),
        _d(MetricType.BLOOD_GLUCOSE, "Blood glucose", _V, "mg/dL", _MIN, "glucose", "blood sugar"),
        _d(MetricType.DIETARY_CALORIES, "Calories eaten", _N, "kcal", _DAY,
           "calories", "calorie intake", "ate", "eating", "food", "nutrition", "diet"),
        _d(MetricType.PROTEIN, "Protein", _N, "g", _DAY, "protein"),
        _d(MetricType.CARBOHYDRATES, "Carbohydrates", _N, "g", _DAY, "carbs", "carbohydrates"),
        _d(MetricType.FAT, "Fat", _N, "g", _DAY, "dietary fat", "fat intake", "fats"),
        _d(MetricType.FIBER, "Fiber", _N, "g", _DAY, "fiber", "fibre"),
        _d(MetricType.SUGAR, "Sugar", _N, "g", _DAY, "sugar intake", "sugars"),
        _d(MetricType.SODIUM, "Sodium", _N, "mg", _DAY, "sodium", "salt"),
        _d(MetricType.WATER, "Water", _N, "fl_oz", _DAY, "water", "hydration", "drink", "drank"),
        _d(MetricType.WEIGHT_LIFTED, "Weight lifted", _W, "lbs", _MIN, "lifted", "lifting"),
        _d(MetricType.TRAINING_VOLUME, "Training volume", _W, "lbs", _DAY,
           "volume", "training volume", "strength", "workout", "gym"),
        _d(MetricType.SETS, "Sets", _W, "count", _DAY, "sets"),
        _d(MetricType.REPS, "Reps", _W, "count", _DAY, "reps", "repetitions"),
        _d(MetricType.ONE_REP_MAX, "Estimated one-rep max", _W, "lbs", _MIN, "1rm", "one rep max", "max lift", "pr"),
        _d(MetricType.MINDFUL_MINUTES, "Mindful minutes", _M, "min", _DAY, "mindful", "meditation", "meditate"),
        _d(MetricType.STRESS_LEVEL, "Stress level", _M, "score", _MIN, "stress", "stressed", "anxiety"),
        _d(MetricType.MOOD, "Mood", _M, "score", _MIN, "mood", "feeling", "happy", "sad"),
        _d(MetricType.TSH, "TSH", _L, "mIU/L", _MIN, "tsh", "thyroid"),
        _d(MetricType.TOTAL_CHOLESTEROL, "Total cholesterol", _L, "mg/dL", _MIN, "cholesterol"),
        _d(MetricType.LDL_CHOLESTEROL, "LDL cholesterol", _L, "mg/dL", _MIN, "ldl", "cholesterol"),
        _d(MetricType.HDL_CHOLESTEROL, "HDL cholesterol", _L, "mg/dL", _MIN, "hdl", "cholesterol"),
        _d(MetricType.TRIGLYCERIDES, "Triglycerides", _L, "mg/dL", _MIN, "triglycerides", "lipid"),
        _d(MetricType.HBA1C, "HbA1c", _L, "%", _MIN, "a1c", "hba1c", "hemoglobin a1c"),
        _d(MetricType.VITAMIN_D, "Vitamin D", _L, "ng/mL", _MIN, "vitamin d"),
        _d(MetricType.FERRITIN, "Ferritin", _L, "ng/mL", _MIN, "ferritin", "iron"),
    )
}


# ---------------------------------------------------------------------------
# Units and conversions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnitConversion:
    """Linear conversion ``canonical = value * factor + offset``."""

    from_unit: str
    to_unit: str
    factor: float = 1.0
    offset: float = 0.0

    def apply(self, value: float) -> float:
        return value * self.factor + self.offset

    def invert(self, value: float) -> float:
        return (value - self.offset) / self.factor


_UNIT_ALIASES: dict[str, str] = {
    "kg": "kg", "kgs": "kg", "kilogram": "kg", "kilograms": "kg",
    "g": "g", "gram": "g", "grams": "g",
    "mg": "mg", "milligram": "mg", "milligrams": "mg",
    "lb": "lbs", "lbs": "lbs", "pound": "lbs", "pounds": "lbs",
    "km": "km", "kilometer": "km", "kilometers": "km", "kilometre": "km", "kilometres": "km",
    "m": "m", "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "mi": "mi", "mile": "mi", "miles": "mi",
    "ft": "ft", "foot": "ft", "feet": "ft",
    "cm": "cm", "centimeter": "cm", "centimeters": "cm",
    "in": "in", "inch": "in", "inches": "in",
    "degc": "degC", "°c": "degC", "c": "degC", "celsius": "degC",
    "degf": "degF", "°f": "degF", "f": "degF", "fahrenheit": "degF",
    "kcal": "kcal", "cal": "kcal", "calories": "kcal", "kilocalories": "kcal",
    "kj": "kJ", "kilojoules": "kJ",
    "ml": "mL", "milliliter": "mL", "milliliters": "mL",
    "l": "L", "liter": "L", "liters": "L", "litre": "L",
    "fl_oz": "fl_oz", "fl oz": "fl_oz", "floz": "fl_oz", "fl_oz_us": "fl_oz", "oz": "oz",
    "s": "s", "sec": "s", "secs": "s", "second": "s", "seconds": "s",
    "min": "min", "mins": "min", "minute": "min", "minutes": "min",
    "h": "hours", "hr": "hours", "hrs": "hours", "hour": "hours", "hours": "hours",
    "bpm": "bpm", "beats/min": "bpm", "count/min": "count/min",
    "breaths/min": "breaths/min", "brpm": "breaths/min",
    "ms": "ms", "millisecond": "ms", "milliseconds": "ms",
    "%": "%", "percent": "%", "pct": "%", "fraction": "fraction",
    "mmhg": "mmHg",
    "mg/dl": "mg/dL", "mmol/l": "mmol/L",
    "miu/l": "mIU/L", "uiu/ml": "mIU/L", "µiu/ml": "mIU/L", "mu/l": "mIU/L",
    "ng/ml": "ng/mL", "nmol/l": "nmol/L", "ug/l": "ng/mL",
    "count": "count", "steps": "count", "kg/m^2": "count", "kg/m2": "count",
    "score": "score", "reps": "count", "sets": "count",
}

# Units that denote the same quantity as a canonical unit without scaling.
_EQUIVALENT_UNITS: dict[str, frozenset[str]] = {
    "bpm": frozenset({"count/min"}),
    "breaths/min": frozenset({"count/min"}),
    "score": frozenset({"count"}),
}

_CONVERSIONS: dict[tuple[str, str], UnitConversion] = {
    (c.from_unit, c.to_unit): c
    for c in (
        UnitConversion("kg", "lbs", 2.20462),
        UnitConversion("g", "lbs", 0.00220462),
        UnitConversion("km", "mi", 0.621371),
        UnitConversion("m", "mi", 0.000621371),
        UnitConversion("ft", "mi", 1 / 5280),
        UnitConversion("m", "ft", 3.28084),
        UnitConversion("cm", "in", 0.393701),
        UnitConversion("m", "in", 39.3701),
        UnitConversion("ft", "in", 12.0),
        UnitConversion("degC", "degF", 1.8, 32.0),
        UnitConversion("kJ", "kcal", 0.239006),
        UnitConversion("mL", "fl_oz", 0.033814),
        UnitConversion("L", "fl_oz", 33.814),
        UnitConversion("s", "min", 1 / 60),
        UnitConversion("hours", "min", 60.0),
        UnitConversion("s", "hours", 1 / 3600),
        UnitConversion("min", "hours", 1 / 60),
        UnitConversion("fraction", "%", 100.0),
        UnitConversion("mg", "g", 0.001),
        UnitConversion("g", "mg", 1000.0),
    )
}

# Substance-specific conversions (molar units depend on the analyte).
_METRIC_CONVERSIONS: dict[tuple[MetricType, str], UnitConversion] = {
    (MetricType.BLOOD_GLUCOSE, "mmol/L"): UnitConversion("mmol/L", "mg/dL", 18.0182),
    (MetricType.TOTAL_CHOLESTEROL, "mmol/L"): UnitConversion("mmol/L", "mg/dL", 38.67),
    (MetricType.LDL_CHOLESTEROL, "mmol/L"): UnitConversion("mmol/L", "mg/dL", 38.67),
    (MetricType.HDL_CHOLESTEROL, "mmol/L"): UnitConversion("mmol/L", "mg/dL", 38.67),
    (MetricType.TRIGLYCERIDES, "mmol/L"): UnitConversion("mmol/L", "mg/dL", 88.57),
    (MetricType.VITAMIN_D, "nmol/L"): UnitConversion("nmol/L", "ng/mL", 0.4),
    (MetricType.WATER, "oz"): UnitConversion("oz", "fl_oz", 1.0),
    (MetricType.HBA1C, "fraction"): UnitConversion("fraction", "%", 100.0),
}


def canonical_unit_token(unit: str) -> str:
    """Normalize a unit spelling (``"Kilograms"``, ``"count/min"``) to its token."""
    key = unit.strip().lower()
    return _UNIT_ALIASES.get(key, unit.strip())


def conversion_for(metric_type: MetricType, unit: str) -> UnitConversion:
    """Return the conversion from ``unit`` to the metric's canonical unit.

    Raises:
        UnitMismatchError: If no converter exists for this metric and unit.
    """
    canonical = METRIC_DEFINITIONS[metric_type].canonical_unit
    token = canonical_unit_token(unit) if unit else canonical

    if token == canonical or token in _EQUIVALENT_UNITS.get(canonical, frozenset()):
        return UnitConversion(token, canonical)

    specific = _METRIC_CONVERSIONS.get((metric_type, token))
    if specific is not None:
        return specific

    generic = _CONVERSIONS.get((token, canonical))
    if generic is not None:
        return generic

    raise UnitMismatchError(metric_type.value, unit, canonical)


# ---------------------------------------------------------------------------
# Source vocabularies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceField:
    """How one source-specific field maps onto a canonical metric.

    ``unit`` is the unit the source reports in when the record carries none.
    ``fixed_unit`` marks fields whose declared unit is known to be wrong
    (Apple Health writes fractional percentages with a ``%`` unit).
    """

    metric_type: MetricType
    unit: str | None = None
    fixed_unit: bool = False


_HK = "HKQuantityTypeIdentifier"

_APPLE_HEALTH: dict[str, SourceField] = {
    f"{_HK}StepCount": SourceField(MetricType.STEPS, "count"),
    f"{_HK}DistanceWalkingRunning": SourceField(MetricType.DISTANCE, "km"),
    f"{_HK}DistanceCycling": SourceField(MetricType.DISTANCE, "km"),
    f"{_HK}ActiveEnergyBurned": SourceField(MetricType.ACTIVE_CALORIES, "kcal"),
    f"{_HK}AppleExerciseTime": SourceField(MetricType.EXERCISE_MINUTES, "min"),
    f"{_HK}FlightsClimbed": SourceField(MetricType.FLIGHTS_CLIMBED, "count"),
    f"{_HK}HeartRate": SourceField(MetricType.HEART_RATE, "count/min"),
    f"{_HK}RestingHeartRate": SourceField(MetricType.RESTING_HEART_RATE, "count/min"),
    f"{_HK}HeartRateVariabilitySDNN": SourceField(MetricType.HRV, "ms"),
    f"{_HK}BodyMass": SourceField(MetricType.WEIGHT, "lb"),
    f"{_HK}Height": SourceField(MetricType.HEIGHT, "in"),
    f"{_HK}BodyMassIndex": SourceField(MetricType.BMI, "count"),
    f"{_HK}BodyFatPercentage": SourceField(MetricType.BODY_FAT_PERCENTAGE, "fraction", fixed_unit=True),
    f"{_HK}BloodPressureSystolic": SourceField(MetricType.BLOOD_PRESSURE_SYSTOLIC, "mmHg"),
    f"{_HK}BloodPressureDiastolic": SourceField(MetricType.BLOOD_PRESSURE_DIASTOLIC, "mmHg"),
    f"{_HK}OxygenSaturation": SourceField(MetricType.OXYGEN_SATURATION, "fraction", fixed_unit=True),
    f"{_HK}BodyTemperature": SourceField(MetricType.BODY_TEMPERATURE, "degF"),
    f"{_HK}RespiratoryRate": SourceField(MetricType.RESPIRATORY_RATE, "count/min"),
    f"{_HK}BloodGlucose": SourceField(MetricType.BLOOD_GLUCOSE, "mg/dL"),
    f"{_HK}DietaryEnergyConsumed": SourceField(MetricType.DIETARY_CALORIES, "kcal"),
    f"{_HK}DietaryProtein": SourceField(MetricType.PROTEIN, "g"),
    f"{_HK}DietaryCarbohydrates": SourceField(MetricType.CARBOHYDRATES, "g"),
    f"{_HK}DietaryFatTotal": SourceField(MetricType.FAT, "g"),
    f"{_HK}DietaryFiber": SourceField(MetricType.FIBER, "g"),
    f"{_HK}DietarySugar": SourceField(MetricType.SUGAR, "g"),
    f"{_HK}DietarySodium": SourceField(MetricType.SODIUM, "mg"),
    f"{_HK}DietaryWater": SourceField(MetricType.WATER, "mL"),
    # Category types: the parser aggregates these into durations
    "HKCategoryTypeIdentifierSleepAnalysis": SourceField(MetricType.SLEEP_DURATION, "hours"),
    "HKCategoryTypeIdentifierMindfulSession": SourceField(MetricType.MINDFUL_MINUTES, "min"),
}

_HEALTH_CONNECT: dict[str, SourceField] = {
    "Steps": SourceField(MetricType.STEPS, "count"),
    "Distance": SourceField(MetricType.DISTANCE, "m"),
    "ActiveCaloriesBurned": SourceField(MetricType.ACTIVE_CALORIES, "kcal"),
    "ExerciseSession": SourceField(MetricType.EXERCISE_MINUTES, "min"),
    "FloorsClimbed": SourceField(MetricType.FLIGHTS_CLIMBED, "count"),
    "ElevationGained": SourceField(MetricType.ELEVATION_GAIN, "m"),
    "HeartRate": SourceField(MetricType.HEART_RATE, "bpm"),
    "RestingHeartRate": SourceField(MetricType.RESTING_HEART_RATE, "bpm"),
    "HeartRateVariabilityRmssd": SourceField(MetricType.HRV, "ms"),
    "Weight": SourceField(MetricType.WEIGHT, "kg"),
    "Height": SourceField(MetricType.HEIGHT, "m"),
    "BodyFat": SourceField(MetricType.BODY_FAT_PERCENTAGE, "%"),
    "SleepSession": SourceField(MetricType.SLEEP_DURATION, "hours"),
    "BloodPressureSystolic": SourceField(MetricType.BLOOD_PRESSURE_SYSTOLIC, "mmHg"),
    "BloodPressureDiastolic": SourceField(MetricType.BLOOD_PRESSURE_DIASTOLIC, "mmHg"),
    "OxygenSaturation": SourceField(MetricType.OXYGEN_SATURATION, "%"),
    "BodyTemperature": SourceField(MetricType.BODY_TEMPERATURE, "degC"),
    "RespiratoryRate": SourceField(MetricType.RESPIRATORY_RATE, "breaths/min"),
    "BloodGlucose": SourceField(MetricType.BLOOD_GLUCOSE, "mmol/L"),
    "Hydration": SourceField(MetricType.WATER, "L"),
    "Nutrition.energy": SourceField(MetricType.DIETARY_CALORIES, "kcal"),
    "Nutrition.protein": SourceField(MetricType.PROTEIN, "g"),
}

_MYFITNESSPAL: dict[str, SourceField] = {
    "calories": SourceField(MetricType.DIETARY_CALORIES, "kcal"),
    "protein": SourceField(MetricType.PROTEIN, "g"),
    "carbohydrates": SourceField(MetricType.CARBOHYDRATES, "g"),
    "carbs": SourceField(MetricType.CARBOHYDRATES, "g"),
    "fat": SourceField(MetricType.FAT, "g"),
    "fiber": SourceField(MetricType.FIBER, "g"),
    "sugar": SourceField(MetricType.SUGAR, "g"),
    "sodium": SourceField(MetricType.SODIUM, "mg"),
    "water": SourceField(MetricType.WATER, "fl_oz"),
    "weight": SourceField(MetricType.WEIGHT, "lbs"),
}

_STRAVA: dict[str, SourceField] = {
    "distance": SourceField(MetricType.DISTANCE, "m"),
    "moving_time": SourceField(MetricType.EXERCISE_MINUTES, "s"),
    "total_elevation_gain": SourceField(MetricType.ELEVATION_GAIN, "m"),
    "average_heartrate": SourceField(MetricType.HEART_RATE, "bpm"),
    "calories": SourceField(MetricType.ACTIVE_CALORIES, "kcal"),
}

_STRONG: dict[str, SourceField] = {
    "weight": SourceField(MetricType.WEIGHT_LIFTED, "lbs"),
    "reps": SourceField(MetricType.REPS, "count"),
    "sets": SourceField(MetricType.SETS, "count"),
    "volume": SourceField(MetricType.TRAINING_VOLUME, "lbs"),
    "estimated_1rm": SourceField(MetricType.ONE_REP_MAX, "lbs"),
}

# Free-form vocabulary used by manual entry and document extraction: every
# canonical name plus common spellings. Unit defaults to canonical.
_FREEFORM_ALIASES: dict[str, MetricType] = {
    "weight": MetricType.WEIGHT,
    "body_weight": MetricType.WEIGHT,
    "heart_rate": MetricType.HEART_RATE,
    "pulse": MetricType.HEART_RATE,
    "resting_hr": MetricType.RESTING_HEART_RATE,
    "hrv": MetricType.HRV,
    "systolic": MetricType.BLOOD_PRESSURE_SYSTOLIC,
    "diastolic": MetricType.BLOOD_PRESSURE_DIASTOLIC,
    "spo2": MetricType.OXYGEN_SATURATION,
    "temperature": MetricType.BODY_TEMPERATURE,
    "glucose": MetricType.BLOOD_GLUCOSE,
    "fasting_glucose": MetricType.BLOOD_GLUCOSE,
    "calories": MetricType.DIETARY_CALORIES,
    "carbs": MetricType.CARBOHYDRATES,
    "sleep": MetricType.SLEEP_DURATION,
    "sleep_hours": MetricType.SLEEP_DURATION,
    "cholesterol": MetricType.TOTAL_CHOLESTEROL,
    "ldl": MetricType.LDL_CHOLESTEROL,
    "hdl": MetricType.HDL_CHOLESTEROL,
    "a1c": MetricType.HBA1C,
    "hemoglobin_a1c": MetricType.HBA1C,
    "vitamin_d_25_oh": MetricType.VITAMIN_D,
    "stress": MetricType.STRESS_LEVEL,
    "meditation_minutes": MetricType.MINDFUL_MINUTES,
}

_FREEFORM: dict[str, SourceField] = {
    **{m.value: SourceField(m) for m in MetricType},
    **{alias: SourceField(m) for alias, m in _FREEFORM_ALIASES.items()},
}

SOURCE_VOCABULARIES: dict[str, dict[str, SourceField]] = {
    SourceApp.APPLE_HEALTH.value: _APPLE_HEALTH,
    SourceApp.HEALTH_CONNECT.value: _HEALTH_CONNECT,
    SourceApp.GOOGLE_FIT.value: _HEALTH_CONNECT,
    SourceApp.MYFITNESSPAL.value: _MYFITNESSPAL,
    SourceApp.STRAVA.value: _STRAVA,
    SourceApp.STRONG.value: _STRONG,
    SourceApp.MANUAL_ENTRY.value: _FREEFORM,
    SourceApp.FILE_UPLOAD.value: _FREEFORM,
}

_FREEFORM_SOURCES = {SourceApp.MANUAL_ENTRY.value, SourceApp.FILE_UPLOAD.value}

# Free-form names often carry their unit: "weight_lbs", "glucose_mg_dl".
_UNIT_SUFFIXES: dict[str, str] = {
    "mg_dl": "mg/dL", "mmol_l": "mmol/L", "ng_ml": "ng/mL", "miu_l": "mIU/L",
    "fl_oz": "fl_oz", "lbs": "lbs", "lb": "lbs", "kg": "kg", "mi": "mi", "km": "km",
    "bpm": "bpm", "oz": "oz", "kcal": "kcal", "hours": "hours", "hrs": "hours",
    "min": "min", "minutes": "min", "ml": "mL", "mg": "mg", "g": "g", "ms": "ms",
    "pct": "%", "percent": "%", "in": "in", "cm": "cm",
    "mmhg": "mmHg", "0_10": "score", "fahrenheit": "degF", "celsius": "degC",
    "percentage": "%",
}


def split_unit_suffix(key: str) -> tuple[str, str | None]:
    """``"weight_lbs"`` → ``("weight", "lbs")``; keys without a unit suffix pass through."""
    for suffix in sorted(_UNIT_SUFFIXES, key=len, reverse=True):
        if key.endswith("_" + suffix) and len(key) > len(suffix) + 1:
            return key[: -len(suffix) - 1], _UNIT_SUFFIXES[suffix]
    return key, None


def normalize_field_key(name: str) -> str:
    """``"LDL Cholesterol"`` → ``"ldl_cholesterol"`` for free-form vocabularies."""
    return re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")


@dataclass(frozen=True)
class RegistryEntry:
    """Result of a registry lookup."""

    source_app: str
    field_name: str
    definition: MetricDefinition
    source_unit: str
    fixed_unit: bool = False

    @property
    def metric_type(self) -> MetricType:
        return self.definition.metric_type


def lookup(source_app: str, field_name: str) -> RegistryEntry:
    """Resolve a source-specific field to its canonical metric.

    Raises:
        UnknownMetricError: If the pair is not registered.
    """
    vocabulary = SOURCE_VOCABULARIES.get(source_app)
    if vocabulary is None:
        raise UnknownMetricError(source_app, field_name)

    suffix_unit: str | None = None
    if source_app in _FREEFORM_SOURCES:
        key = normalize_field_key(field_name)
        mapping = vocabulary.get(key)
        if mapping is None:
            base, suffix_unit = split_unit_suffix(key)
            mapping = vocabulary.get(base) if suffix_unit else None
    else:
        mapping = vocabulary.get(field_name)
    if mapping is None:
        raise UnknownMetricError(source_app, field_name)

    definition = METRIC_DEFINITIONS[mapping.metric_type]
    return RegistryEntry(
        source_app=source_app,
        field_name=field_name,
        definition=definition,
        source_unit=suffix_unit or mapping.unit or definition.canonical_unit,
        fixed_unit=mapping.fixed_unit,
    )


def is_known_source(source_app: str) -> bool:
    return source_app in SOURCE_TIERS


def source_tier(source_app: str) -> SourceTier:
    """Tier for a source; unknown sources are treated as estimates."""
    return SOURCE_TIERS.get(source_app, SourceTier.ESTIMATE)


def quality_score_for(source_app: str, *, estimated: bool = False) -> float:
    if estimated:
        return QUALITY_SCORES[SourceTier.ESTIMATE]
    return QUALITY_SCORES[source_tier(source_app)]


def metric_types_for_source(source_app: str) -> set[MetricType]:
    """All metric types a source's vocabulary can produce."""
    return {m.metric_type for m in SOURCE_VOCABULARIES.get(source_app, {}).values()}


def metrics_for_category(category: DataCategory) -> list[MetricType]:
    return [m for m, d in METRIC_DEFINITIONS.items() if d.category is category]


@dataclass
class KeywordMatch:
    """Metrics mentioned in free text, with the keywords that matched."""

    metric_types: list[MetricType] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


def match_metric_keywords(text: str) -> KeywordMatch:
    """Find metric types whose keywords appear as whole words in ``text``."""
    lowered = text.lower()
    match = KeywordMatch()
    for metric_type, definition in METRIC_DEFINITIONS.items():
        for keyword in definition.keywords:
            if re.search(r"\b" + re.escape(keyword) + r"\b", lowered):
                if metric_type not in match.metric_types:
                    match.metric_types.append(metric_type)
                if keyword not in match.keywords:
                    match.keywords.append(keyword)
    return match
