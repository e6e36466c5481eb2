"""Deduplication engine: pick one canonical record per (user, metric, bucket).

Several connected sources often report the same observation. After each
sync batch the engine re-resolves, for every time bucket of the affected
metric types, which record is authoritative.

Precedence, first difference wins:

1. higher ``quality_score``
2. later ``synced_at`` (most recently synced source)
3. lower ``source_app`` name
4. later ``recorded_at``, then lower ``id`` (total order within one source)

The assignment depends only on stored record fields, never on the current
flags, so a second run with no new data changes nothing.

Buckets are UTC minutes for instantaneous metrics and UTC calendar days for
cumulative ones. Each metric type is resolved and written independently; a
failure on one is reported and the others still run. There is no
application-level lock, so two concurrent runs for the same user can
interleave their per-metric transactions.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timezone
from functools import cmp_to_key
from typing import Any, Iterable

from youphoria.core.storage.models import HealthRecord, parse_timestamp
from youphoria.core.storage.repository import HealthRepository, RepositoryError
from youphoria.domains.health.domain_logic.metric_registry import (
    METRIC_DEFINITIONS,
    Bucketing,
    MetricType,
)

logger = logging.getLogger(__name__)


@dataclass
class DeduplicationResult:
    promoted: int = 0
    demoted: int = 0
    buckets: int = 0
    metric_types: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "promoted": self.promoted,
            "demoted": self.demoted,
            "buckets": self.buckets,
            "metric_types": self.metric_types,
            "failures": self.failures,
        }


def bucket_key(record: HealthRecord, bucketing: Bucketing) -> str:
    """UTC minute (``2026-02-01T08:30``) or UTC day (``2026-02-01``)."""
    dt = parse_timestamp(record.recorded_at).astimezone(timezone.utc)
    if bucketing is Bucketing.DAY:
        return dt.strftime("%Y-%m-%d")
    return dt.strftime("%Y-%m-%dT%H:%M")


def _compare(a: HealthRecord, b: HealthRecord) -> int:
    """Negative when ``a`` takes precedence over ``b``."""
    if a.quality_score != b.quality_score:
        return -1 if a.quality_score > b.quality_score else 1
    if a.synced_at != b.synced_at:
        return -1 if a.synced_at > b.synced_at else 1
    if a.source_app != b.source_app:
        return -1 if a.source_app < b.source_app else 1
    if a.recorded_at != b.recorded_at:
        return -1 if a.recorded_at > b.recorded_at else 1
    if a.id != b.id:
        return -1 if a.id < b.id else 1
    return 0


_precedence = cmp_to_key(_compare)


def select_canonical(records: Iterable[HealthRecord]) -> HealthRecord:
    """Return the record that wins the tie-break among ``records``."""
    return min(records, key=_precedence)


class DeduplicationEngine:
    """Resolves canonical flags against the health repository."""

    def __init__(self, repository: HealthRepository) -> None:
        self._repo = repository

    def run_deduplication_check(
        self,
        user_id: str,
        source_app: str,
        metric_types: Iterable[str] | None = None,
    ) -> DeduplicationResult:
        """Re-resolve canonical records after ``source_app`` synced.

        Args:
            user_id: Owner of the records.
            source_app: The source whose sync triggered the check.
            metric_types: Metric types to resolve. Empty or ``None`` means
                every metric type ``source_app`` has contributed.

        Returns:
            Counts of promoted/demoted records plus per-metric failures.
        """
        result = DeduplicationResult()

        types = [str(getattr(m, "value", m)) for m in (metric_types or [])]
        if not types:
            try:
                types = self._repo.get_source_metric_types(user_id, source_app)
            except RepositoryError as exc:
                logger.error("Could not list metric types for %s: %s", source_app, exc)
                result.failures["*"] = str(exc)
                return result

        for metric_type in sorted(set(types)):
            try:
                promoted, demoted, buckets = self._resolve_metric(user_id, metric_type)
            except (RepositoryError, ValueError) as exc:
                logger.error("Deduplication failed for %s: %s", metric_type, exc)
                result.failures[metric_type] = str(exc)
                continue
            result.promoted += promoted
            result.demoted += demoted
            result.buckets += buckets
            result.metric_types.append(metric_type)

        logger.info(
            "Deduplication after %s sync: %d metric types, %d buckets, %d promoted, %d demoted, %d failed",
            source_app, len(result.metric_types), result.buckets,
            result.promoted, result.demoted, len(result.failures),
        )
        return result

    def _resolve_metric(self, user_id: str, metric_type: str) -> tuple[int, int, int]:
        definition = METRIC_DEFINITIONS[MetricType(metric_type)]
        records = self._repo.get_health_records(
            user_id, metric_types=[metric_type], newest_first=False
        )

        buckets: dict[str, list[HealthRecord]] = defaultdict(list)
        for record in records:
            buckets[bucket_key(record, definition.bucketing)].append(record)

        to_promote: list[str] = []
        to_demote: list[str] = []
        for members in buckets.values():
            winner = select_canonical(members)
            for record in members:
                if record.id == winner.id:
                    if not record.is_canonical:
                        to_promote.append(record.id)
                elif record.is_canonical:
                    to_demote.append(record.id)

        if to_promote or to_demote:
            self._repo.set_canonical_flags(user_id, metric_type, to_promote, to_demote)

        return len(to_promote), len(to_demote), len(buckets)
