"""Tool Executor: carries out one tool call requested by the model.

``execute`` always returns a JSON string.  A failing backend is reported to
the model as ``{"success": false, "error": ...}`` so it can try another
query or tool; the loop never crashes on a tool failure.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from sales_intel.events import ProgressCallback, ProgressEvent
from sales_intel.services.firecrawl_client import FirecrawlClient, FirecrawlError
from sales_intel.services.hubspot_client import HubSpotClient
from sales_intel.services.knowledge_base import KnowledgeBase
from sales_intel.services.mcp_client import McpToolClient
from sales_intel.services.metrics import metrics
from sales_intel.tools.registry import (
    AgentTool,
    CrmTool,
    FinishTool,
    KnowledgeBaseTool,
    ToolRegistry,
    WebScrapeTool,
    WebSearchTool,
)

logger = logging.getLogger(__name__)


def _to_json(value: Any) -> str:
    return json.dumps(value, default=str)


def _service_for(tool: AgentTool) -> str:
    match tool:
        case KnowledgeBaseTool():
            return "atlas"
        case WebScrapeTool() | WebSearchTool():
            return "firecrawl"
        case CrmTool():
            return "hubspot"
        case _:
            return "agent"


class ToolExecutor:
    """Dispatches tool calls for one run over the run's :class:`ToolRegistry`."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        knowledge_base: KnowledgeBase,
        crm_rest: HubSpotClient,
        crm_tools_client: McpToolClient | None = None,
        web_client: FirecrawlClient | None = None,
        progress: ProgressCallback,
    ) -> None:
        self._registry = registry
        self._kb = knowledge_base
        self._crm_rest = crm_rest
        self._crm_mcp = crm_tools_client
        self._web = web_client
        self._progress = progress

    def execute(self, name: str, args: dict[str, Any] | None) -> str:
        """Run tool *name* with *args*; returns the JSON result string.

        Progress events are emitted outside the error handling so that a
        cancellation raised by the progress callback still unwinds the loop.
        """
        args = args or {}
        tool = self._registry.get(name)
        if tool is None:
            logger.warning("Model requested unknown tool %r", name)
            return _to_json({"success": False, "error": f"Unknown tool: {name}"})

        self._progress(ProgressEvent(
            "tool_call", f"Calling {name}", {"tool": name, "input": args},
        ))

        t0 = time.perf_counter()
        error: str | None = None
        result: Any = None
        try:
            result = self._dispatch(tool, args)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            metrics.record_failure(
                _service_for(tool), name, error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            logger.warning("Tool %s failed: %s", name, error)
        duration_ms = round((time.perf_counter() - t0) * 1000)

        if error is not None:
            self._progress(ProgressEvent(
                "tool_result", f"{name} failed: {error}",
                {"tool": name, "input": args, "duration": duration_ms,
                 "error": error, "status": "error"},
            ))
            return _to_json({"success": False, "error": error})

        self._progress(ProgressEvent(
            "tool_result", f"{name} completed in {duration_ms}ms",
            {"tool": name, "input": args, "duration": duration_ms,
             "result": result, "status": "success"},
        ))
        return _to_json(result)

    # ── Dispatch ─────────────────────────────────────────────────────

    def _dispatch(self, tool: AgentTool, args: dict[str, Any]) -> Any:
        match tool:
            case FinishTool():
                return {"acknowledged": True, "message": "Ready to provide final analysis"}
            case KnowledgeBaseTool():
                return self._kb.query(str(args.get("query", "")))
            case WebScrapeTool():
                return self._require_web().scrape(str(args["url"]))
            case WebSearchTool():
                results = self._require_web().search(
                    str(args["query"]), limit=int(args.get("limit") or 5),
                )
                return {"results": results, "count": len(results)}
            case CrmTool(source="rest"):
                return self._call_crm_rest(tool, args)
            case CrmTool():
                if self._crm_mcp is None:
                    raise RuntimeError("HubSpot MCP tool server is not configured")
                return self._crm_mcp.call_tool(tool.remote_name, args)
        raise TypeError(f"Unsupported tool kind: {type(tool).__name__}")

    def _require_web(self) -> FirecrawlClient:
        if self._web is None:
            raise FirecrawlError("Web research is not configured")
        return self._web

    def _call_crm_rest(self, tool: CrmTool, args: dict[str, Any]) -> Any:
        if tool.remote_name == "hubspot-search-objects":
            return self._crm_rest.search_objects(
                str(args["objectType"]),
                query=args.get("query"),
                filter_groups=args.get("filterGroups"),
                properties=args.get("properties"),
                limit=int(args.get("limit") or 10),
            )
        if tool.remote_name == "hubspot-list-associations":
            results = self._crm_rest.list_associations(
                str(args["objectType"]), str(args["objectId"]), str(args["toObjectType"]),
            )
            return {"results": results, "count": len(results)}
        raise ValueError(f"No REST handler for CRM tool {tool.remote_name}")
