"""MCP tools that import source exports into the health data bank.

Each import parses the export, then hands the raw batch to ``SyncService``
(normalize → store → deduplicate), exactly like ``POST /api/v1/health/sync``.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from youphoria.core.errors import YouphoriaError
from youphoria.domains.health.connectors import (
    lookback_cutoff,
    parse_apple_health_export,
    parse_strong_csv,
)
from youphoria.domains.health.connectors.apple_health_parser import SOURCE as APPLE_HEALTH
from youphoria.domains.health.connectors.strong_csv import SOURCE as STRONG

if TYPE_CHECKING:
    from youphoria.core.server.app import Services
    from youphoria.domains.health.sync_service import SyncResult

logger = logging.getLogger(__name__)


def _error(exc: YouphoriaError) -> str:
    return json.dumps({"status": "error", "error": exc.to_dict()})


def _sync_payload(sync: SyncResult, parsed: dict, elapsed_ms: float) -> str:
    return json.dumps({
        "status": "imported",
        "parsed": parsed,
        **sync.to_dict(),
        "duration_ms": round(elapsed_ms, 1),
    })


def register_import_tools(mcp: FastMCP, services: Services) -> None:
    """Register source import tools on the MCP server."""

    @mcp.tool
    async def import_apple_health_export(
        ctx: Context,
        user_id: str,
        export_path: str,
        days: int = 0,
    ) -> str:
        """Import an Apple Health export (export.xml or export.zip).

        Daily totals (steps, energy, distance), point samples (heart rate,
        weight, HRV, ...), sleep nights and workouts are imported. Apple
        Health ranks as a device source, so its values win deduplication
        against app and manual entries for the same time bucket.

        Args:
            user_id: Whose data bank to import into.
            export_path: Path to the export file on the server.
            days: Only import the last N days. 0 imports everything.
        """
        if days < 0:
            return json.dumps({"status": "error", "message": "days must be 0 or positive."})

        start_time = time.monotonic()
        try:
            export = parse_apple_health_export(export_path, since=lookback_cutoff(days) if days else None)
        except YouphoriaError as exc:
            logger.warning("Apple Health import failed: %s", exc)
            return _error(exc)

        result = services.sync.sync(user_id, APPLE_HEALTH, export.records, export.events)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        if not result.success:
            assert result.error is not None
            return _error(result.error)
        assert result.data is not None
        return _sync_payload(result.data, export.summary(), elapsed_ms)

    @mcp.tool
    async def import_strong_csv(
        ctx: Context,
        user_id: str,
        csv_path: str = "",
        csv_content: str = "",
        weight_unit: str = "lbs",
    ) -> str:
        """Import a Strong workout export (CSV).

        Each workout becomes a strength-training event with its exercises
        and sets. Daily training volume, sets and reps plus the heaviest
        set and estimated one-rep max per exercise become health records.

        Args:
            user_id: Whose data bank to import into.
            csv_path: Path to the CSV on the server. Either this or csv_content.
            csv_content: The CSV text itself.
            weight_unit: Weight unit used in the export ('lbs' or 'kg').
        """
        if bool(csv_path) == bool(csv_content):
            return json.dumps({
                "status": "error",
                "message": "Provide exactly one of csv_path or csv_content.",
            })

        start_time = time.monotonic()
        if csv_path:
            try:
                csv_content = Path(csv_path).expanduser().read_text(encoding="utf-8-sig")
            except OSError as exc:
                return json.dumps({"status": "error", "message": f"Cannot read {csv_path}: {exc.strerror}"})

        try:
            export = parse_strong_csv(csv_content, weight_unit=weight_unit)
        except YouphoriaError as exc:
            logger.warning("Strong import failed: %s", exc)
            return _error(exc)

        result = services.sync.sync(user_id, STRONG, export.records, export.events)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        if not result.success:
            assert result.error is not None
            return _error(result.error)
        assert result.data is not None
        return _sync_payload(result.data, export.summary(), elapsed_ms)
