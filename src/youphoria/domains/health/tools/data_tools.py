"""MCP tools for data stewardship: deduplication, deletion, audit trail.

Deletions are audit-logged; the audit trail itself holds no health data.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from youphoria.core.server.app import Services

logger = logging.getLogger(__name__)


def register_data_tools(mcp: FastMCP, services: Services) -> None:
    """Register data management tools on the MCP server."""

    @mcp.tool
    async def run_deduplication(
        ctx: Context,
        user_id: str,
        source_app: str,
        metric_types: list[str] | None = None,
    ) -> str:
        """Re-resolve which record is canonical where sources overlap.

        For each metric type, records in the same time bucket (UTC minute,
        or UTC day for daily totals) are compared and exactly one is marked
        canonical: highest quality, then most recently synced.

        Args:
            user_id: Whose records to resolve.
            source_app: The source that just synced, e.g. 'Apple Health'.
            metric_types: Metric types to resolve. Empty means every metric
                type this source has contributed.
        """
        start_time = time.monotonic()
        result = services.dedup.run_deduplication_check(user_id, source_app, metric_types or None)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        return json.dumps({
            "status": "ok" if result.success else "partial",
            **result.to_dict(),
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def delete_all_health_data(
        ctx: Context,
        user_id: str,
        confirm: str = "",
    ) -> str:
        """Permanently delete ALL data stored for a user.

        Removes health records, events, connected sources, conversations
        and uploaded files (including the stored documents). It cannot be
        undone.

        Args:
            user_id: Whose data to delete.
            confirm: Must be exactly 'DELETE_ALL' to proceed. Safety gate.
        """
        if confirm != "DELETE_ALL":
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To delete all health data, call this tool with "
                    "confirm='DELETE_ALL'. This action cannot be undone."
                ),
            })

        start_time = time.monotonic()
        deletion = services.delete_user_data(user_id)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        return json.dumps({
            "status": "all_deleted",
            "records_deleted": deletion.records,
            "events_deleted": deletion.events,
            "sources_deleted": deletion.sources,
            "conversations_deleted": deletion.conversations,
            "files_deleted": deletion.uploaded_files,
            "duration_ms": round(elapsed_ms, 1),
            "message": "All health data has been permanently deleted.",
        })

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        user_id: str,
        limit: int = 20,
    ) -> str:
        """View recent data access events and how often data reached an external model.

        Args:
            user_id: Whose audit trail to show.
            limit: Maximum number of recent events to list (default: 20).
        """
        events = services.audit.get_events(user_id=user_id, limit=max(1, min(limit, 200)))
        return json.dumps({
            "status": "ok",
            "total_events": services.audit.count_events(user_id=user_id),
            "llm_disclosures": services.audit.count_disclosures(user_id=user_id),
            "recent_events": [
                {
                    "timestamp": event.get("timestamp"),
                    "action": event.get("action"),
                    "operation": event.get("operation"),
                    "llm_provider": event.get("llm_provider"),
                    "llm_disclosed": bool(event.get("llm_disclosed")),
                    "status": event.get("status"),
                    "duration_ms": event.get("duration_ms"),
                }
                for event in events
            ],
            "note": (
                "This audit trail contains no health data. It records operations "
                "and whether data was sent to an external model."
            ),
        }, indent=2)
