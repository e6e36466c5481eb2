"""MCP tools for chatting about, and retrieving, the user's own health data.

``ask_health_assistant`` runs the same turn as ``POST /api/v1/chat/message``:
retrieve canonical health context, call the model, persist both messages.
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


def register_health_tools(mcp: FastMCP, services: Services) -> None:
    """Register chat and retrieval tools on the MCP server."""

    @mcp.tool
    async def ask_health_assistant(
        ctx: Context,
        user_id: str,
        message: str,
        conversation_id: str = "",
    ) -> str:
        """Ask the wellness assistant a question about your health data.

        The answer is grounded in your canonical health records for the
        period the question refers to (default: last 30 days). Wellness
        guidance only, never a diagnosis.

        Args:
            user_id: Whose data to use and whose conversation to append to.
            message: The question or message (max 10,000 characters).
            conversation_id: Continue an existing conversation. Empty starts a new one.
        """
        start_time = time.monotonic()
        result = await services.chat.send_message(user_id, message, conversation_id or None)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if not result.success:
            assert result.error is not None
            payload = {
                "status": "error",
                "error": result.error.to_dict(),
                "duration_ms": round(elapsed_ms, 1),
            }
            if result.data is not None:
                payload["reply"] = result.data.reply
                payload["conversation_id"] = result.data.conversation_id
            return json.dumps(payload)

        chat = result.data
        assert chat is not None
        return json.dumps({
            "status": "ok",
            "conversation_id": chat.conversation_id,
            "reply": chat.reply,
            "health_context": chat.context_metadata,
            "model": chat.model,
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def get_health_context(
        ctx: Context,
        user_id: str,
        query: str,
    ) -> str:
        """Show the health data the assistant would use to answer a question.

        Args:
            user_id: Whose data to read.
            query: A natural-language question, e.g. "how did I sleep last week?".
        """
        if not query.strip():
            return json.dumps({"status": "error", "message": "query is required"})
        context = services.retriever.retrieve_context(user_id, query)
        return json.dumps({"status": "ok", **context.to_dict()}, indent=2)
