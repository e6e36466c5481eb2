"""Query analysis: does a chat message need health data, for when, for what.

All windows are computed in UTC.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from youphoria.domains.health.domain_logic.metric_registry import MetricType, match_metric_keywords

DEFAULT_WINDOW_DAYS = 30
RECENT_WINDOW_DAYS = 7

_HEALTH_KEYWORDS = (
    # activity and body
    "steps", "sleep", "heart rate", "calories", "weight", "exercise", "workout",
    "distance", "activity", "nutrition", "protein", "carbs", "water", "hydration",
    "hrv", "variability", "flights", "stairs", "lifting", "strength",
    # labs
    "blood work", "bloodwork", "lab results", "lab test", "labs", "test results",
    "cholesterol", "glucose", "a1c", "hemoglobin", "thyroid", "tsh", "vitamin",
    "lipid", "metabolic", "panel", "biomarker", "ferritin", "iron",
    # question shapes
    "how much", "how many", "how long", "how often", "what was", "what were",
    "did i", "have i", "am i",
    # analysis
    "average", "total", "summary", "trend", "pattern", "compare", "progress",
    "improvement", "change", "difference",
    # time
    "today", "yesterday", "week", "month", "days", "recently", "lately",
    "health", "fitness", "wellness", "performance", "recovery",
)

_DATA_QUESTION = re.compile(r"^(how|what|did|have|show|tell|give|display|list)\b", re.IGNORECASE)
_LAST_N = re.compile(r"\b(?:last|past|previous)\s+(\d+)\s+(day|week|month)s?\b")


@dataclass
class TimeRange:
    start: datetime
    end: datetime
    description: str

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400


@dataclass
class QueryAnalysis:
    needs_health_data: bool
    time_range: TimeRange
    metrics: list[MetricType] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    explicit_time: bool = False


def needs_health_data(query: str) -> bool:
    lowered = query.lower()
    if any(keyword in lowered for keyword in _HEALTH_KEYWORDS):
        return True
    return bool(_DATA_QUESTION.match(query.strip())) and len(lowered) > 20


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _subtract_months(dt: datetime, months: int) -> datetime:
    month_index = dt.year * 12 + (dt.month - 1) - months
    year, month = divmod(month_index, 12)
    # clamp day so March 31 minus one month is Feb 28/29
    day = min(dt.day, calendar.monthrange(year, month + 1)[1])
    return dt.replace(year=year, month=month + 1, day=day)


def parse_time_reference(query: str, now: datetime | None = None) -> TimeRange | None:
    """Map a time phrase in ``query`` to a UTC window, or None if there is none."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    today = _start_of_day(now)
    lowered = query.lower()

    if "today" in lowered:
        return TimeRange(today, now, "today")
    if "yesterday" in lowered:
        start = today - timedelta(days=1)
        return TimeRange(start, today - timedelta(microseconds=1000), "yesterday")
    if "this week" in lowered:
        return TimeRange(today - timedelta(days=today.weekday()), now, "this week")
    if re.search(r"\b(last|past|previous) week\b", lowered):
        return TimeRange(now - timedelta(days=7), now, "last 7 days")
    if "this month" in lowered:
        return TimeRange(today.replace(day=1), now, "this month")
    if re.search(r"\b(last|past|previous) month\b", lowered):
        first_this_month = today.replace(day=1)
        start = _subtract_months(first_this_month, 1)
        return TimeRange(start, first_this_month - timedelta(microseconds=1000), "last month")

    match = _LAST_N.search(lowered)
    if match:
        count, unit = int(match.group(1)), match.group(2)
        if unit == "day":
            start = now - timedelta(days=count)
        elif unit == "week":
            start = now - timedelta(weeks=count)
        else:
            start = _subtract_months(now, count)
        return TimeRange(start, now, f"last {count} {unit}s")

    if re.search(r"\b(recent|recently|lately|currently)\b", lowered):
        return TimeRange(now - timedelta(days=RECENT_WINDOW_DAYS), now, f"last {RECENT_WINDOW_DAYS} days")
    return None


def analyze_query(
    query: str,
    *,
    now: datetime | None = None,
    default_window_days: int = DEFAULT_WINDOW_DAYS,
) -> QueryAnalysis:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    needed = needs_health_data(query)
    explicit = parse_time_reference(query, now) if needed else None
    window = explicit or TimeRange(
        now - timedelta(days=default_window_days), now, f"last {default_window_days} days",
    )
    match = match_metric_keywords(query) if needed else None
    return QueryAnalysis(
        needs_health_data=needed,
        time_range=window,
        metrics=match.metric_types if match else [],
        keywords=match.keywords if match else [],
        explicit_time=explicit is not None,
    )
