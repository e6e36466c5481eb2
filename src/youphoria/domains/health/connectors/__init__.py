"""Source export connectors: files from a source app → raw records and events.

Connectors only parse. Normalization, storage and deduplication happen in
``SyncService``.
"""

from youphoria.domains.health.connectors.apple_health_parser import (
    AppleHealthExport,
    AppleHealthParseError,
    lookback_cutoff,
    parse_apple_health_export,
)
from youphoria.domains.health.connectors.strong_csv import StrongCsvError, StrongExport, parse_strong_csv

__all__ = [
    "AppleHealthExport",
    "AppleHealthParseError",
    "StrongCsvError",
    "StrongExport",
    "lookback_cutoff",
    "parse_apple_health_export",
    "parse_strong_csv",
]
