"""ATLAS knowledge-base client.

ATLAS is the organization's historical knowledge (past deals, customer
history, meeting notes) exposed as an MCP server.  The server's query tool
has had several names over time, so it is located by name on first use and
remembered afterwards.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from sales_intel.config import ATLAS_MCP_ARGS, ATLAS_MCP_COMMAND, MCP_INIT_TIMEOUT_SECONDS
from sales_intel.services.mcp_client import McpToolClient, McpToolError

logger = logging.getLogger(__name__)

_PREFERRED_TOOL_NAMES = ("query", "query_atlas", "Query_ATLAS")


def _pick_query_tool(names: list[str]) -> str | None:
    for preferred in _PREFERRED_TOOL_NAMES:
        if preferred in names:
            return preferred
    for name in names:
        lowered = name.lower()
        if "query" in lowered or "atlas" in lowered:
            return name
    return None


def _normalize_results(value: Any) -> list[Any]:
    """Coerce whatever the server returned into a list of result records."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ("results", "documents", "data"):
            if isinstance(value.get(key), list):
                return value[key]
        return [value]
    text = str(value).strip()
    return [{"content": text}] if text else []


class KnowledgeBase:
    """Free-text search over ATLAS returning the top-N relevant records."""

    def __init__(self, client: McpToolClient) -> None:
        self._client = client
        self._tool_name: str | None = None
        self._lock = threading.Lock()

    def _resolve_tool_name(self) -> str:
        with self._lock:
            if self._tool_name is None:
                names = [t.name for t in self._client.list_tools()]
                picked = _pick_query_tool(names)
                if picked is None:
                    raise McpToolError(
                        f"ATLAS query tool not found. Available tools: {', '.join(names) or 'none'}"
                    )
                logger.info("Using ATLAS tool: %s", picked)
                self._tool_name = picked
            return self._tool_name

    def query(self, query: str) -> dict[str, Any]:
        """Run *query* and return ``{"results": [...], "count": n}``."""
        if not query or not query.strip():
            raise ValueError("query must be a non-empty string")
        raw = self._client.call_tool(self._resolve_tool_name(), {"query": query})
        results = _normalize_results(raw)
        return {"results": results, "count": len(results)}


def build_knowledge_base() -> KnowledgeBase:
    """Knowledge base wired to the configured ATLAS MCP server."""
    return KnowledgeBase(
        McpToolClient(
            "atlas", ATLAS_MCP_COMMAND, ATLAS_MCP_ARGS, init_timeout=MCP_INIT_TIMEOUT_SECONDS,
        )
    )
