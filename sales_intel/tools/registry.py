"""Tool registry: the closed set of tool kinds the model may call in one run.

Tool kinds
──────────
* :class:`KnowledgeBaseTool` — ``query_atlas``, always present
* :class:`WebScrapeTool` / :class:`WebSearchTool` — optional, removed when
  the web backend is unconfigured or does not answer the availability check
* :class:`FinishTool` — ``finish_analysis``, the loop-termination sentinel
* :class:`CrmTool` — one per CRM tool discovered on the MCP tool server,
  flattened into the ``hubspot_`` namespace; if discovery fails, a static
  pair of REST-backed fallbacks (search objects, list associations)

Every kind is resolved here, once, at the start of a run; the executor then
dispatches with ``match`` on the kind instead of inspecting name prefixes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from sales_intel.events import ProgressCallback, ProgressEvent
from sales_intel.services.firecrawl_client import FirecrawlClient
from sales_intel.services.mcp_client import McpToolClient, McpToolError

logger = logging.getLogger(__name__)

CRM_PREFIX = "hubspot_"
FINISH_TOOL_NAME = "finish_analysis"
MAX_TOOL_NAME_LENGTH = 64

# Discovered CRM tools that must never be offered to the model.
EXCLUDED_CRM_TOOLS = frozenset({"hubspot-generate-feedback-link"})


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_anthropic(self) -> dict[str, Any]:
        """Tool definition in the Anthropic Messages API shape."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema or {"type": "object", "properties": {}},
        }


@dataclass(frozen=True)
class KnowledgeBaseTool(ToolSpec):
    pass


@dataclass(frozen=True)
class WebScrapeTool(ToolSpec):
    pass


@dataclass(frozen=True)
class WebSearchTool(ToolSpec):
    pass


@dataclass(frozen=True)
class FinishTool(ToolSpec):
    pass


@dataclass(frozen=True)
class CrmTool(ToolSpec):
    """A CRM tool; ``remote_name`` is its hyphenated wire name.

    ``source`` is ``"mcp"`` for discovered tools and ``"rest"`` for the
    static fallbacks served by the CRM REST client.
    """

    remote_name: str = ""
    source: Literal["mcp", "rest"] = "mcp"


AgentTool = KnowledgeBaseTool | WebScrapeTool | WebSearchTool | FinishTool | CrmTool


# ── Core tool definitions ───────────────────────────────────────────

QUERY_ATLAS = KnowledgeBaseTool(
    name="query_atlas",
    description=(
        "Search the ATLAS knowledge base. ATLAS contains previous deals and their "
        "outcomes, customer and company history, meeting notes, industry insights, "
        "sales patterns and competitor information. Call it several times with "
        "different, specific queries."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": (
                    "The search query. Be specific, e.g. \"deals won in construction "
                    "over $50k\" or \"meeting notes with Acme Corp\"."
                ),
            },
        },
        "required": ["query"],
    },
)

SCRAPE_WEBSITE = WebScrapeTool(
    name="scrape_website",
    description="Fetch a web page and return its main content as markdown.",
    input_schema={
        "type": "object",
        "properties": {"url": {"type": "string", "description": "Absolute URL to scrape"}},
        "required": ["url"],
    },
)

SEARCH_WEB = WebSearchTool(
    name="search_web",
    description="Search the public web for recent news and information.",
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "limit": {"type": "number", "description": "Maximum results (default 5)"},
        },
        "required": ["query"],
    },
)

FINISH_ANALYSIS = FinishTool(
    name=FINISH_TOOL_NAME,
    description=(
        "Call this when you have gathered enough information and are ready to "
        "provide your final intelligence analysis."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "Brief summary of what you investigated and key findings",
            },
        },
        "required": ["summary"],
    },
)

FALLBACK_CRM_TOOLS: tuple[CrmTool, ...] = (
    CrmTool(
        name="hubspot_search_objects",
        description="Search HubSpot for objects (deals, companies, contacts) with filters",
        input_schema={
            "type": "object",
            "properties": {
                "objectType": {"type": "string", "description": "deals, companies or contacts"},
                "query": {"type": "string", "description": "Text search query"},
                "filterGroups": {"type": "array", "description": "Filter groups for advanced filtering"},
                "properties": {"type": "array", "description": "Properties to return"},
                "limit": {"type": "number", "description": "Max results to return"},
            },
            "required": ["objectType"],
        },
        remote_name="hubspot-search-objects",
        source="rest",
    ),
    CrmTool(
        name="hubspot_list_associations",
        description="Get associations between HubSpot objects (e.g. contacts for a deal)",
        input_schema={
            "type": "object",
            "properties": {
                "objectType": {"type": "string", "description": "Source object type"},
                "objectId": {"type": "string", "description": "Source object ID"},
                "toObjectType": {"type": "string", "description": "Target object type"},
            },
            "required": ["objectType", "objectId", "toObjectType"],
        },
        remote_name="hubspot-list-associations",
        source="rest",
    ),
)


def crm_tool_name(remote_name: str) -> str:
    """Flatten a wire name such as ``hubspot-list-objects`` into
    ``hubspot_list_objects`` (one prefix, underscores, max 64 chars)."""
    base = remote_name.strip().lower()
    for prefix in ("hubspot-", "hubspot_"):
        if base.startswith(prefix):
            base = base[len(prefix):]
            break
    sanitized = re.sub(r"[^a-z0-9_]", "_", base)
    return f"{CRM_PREFIX}{sanitized}"[:MAX_TOOL_NAME_LENGTH]


class ToolRegistry:
    """Ordered, name-unique collection of the tools for one run."""

    def __init__(self) -> None:
        self._tools: dict[str, AgentTool] = {}

    def add(self, tool: AgentTool) -> bool:
        if tool.name in self._tools:
            logger.warning("Skipping duplicate tool name %r", tool.name)
            return False
        self._tools[tool.name] = tool
        return True

    def get(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    @property
    def tools(self) -> list[AgentTool]:
        return list(self._tools.values())

    def to_anthropic(self) -> list[dict[str, Any]]:
        return [tool.to_anthropic() for tool in self._tools.values()]


class ToolRegistryBuilder:
    """Assembles a :class:`ToolRegistry` for a run."""

    def __init__(
        self,
        *,
        crm_tools_client: McpToolClient | None,
        web_client: FirecrawlClient | None = None,
    ) -> None:
        self._crm = crm_tools_client
        self._web = web_client

    def build(self, progress: ProgressCallback, *, include_web_tools: bool = False) -> ToolRegistry:
        registry = ToolRegistry()
        registry.add(QUERY_ATLAS)

        if include_web_tools:
            if self._web is not None and self._web.is_available():
                registry.add(SCRAPE_WEBSITE)
                registry.add(SEARCH_WEB)
            else:
                progress(ProgressEvent(
                    "thinking", "Web research unavailable, web tools removed",
                    {"removed": [SCRAPE_WEBSITE.name, SEARCH_WEB.name]},
                ))

        registry.add(FINISH_ANALYSIS)
        self._add_crm_tools(registry, progress)

        logger.info("Tool registry built with %d tools", len(registry))
        progress(ProgressEvent(
            "thinking", f"Agent initialized with {len(registry)} tools", {"tools": registry.names},
        ))
        return registry

    def _add_crm_tools(self, registry: ToolRegistry, progress: ProgressCallback) -> None:
        progress(ProgressEvent("thinking", "Discovering available HubSpot MCP tools..."))
        try:
            if self._crm is None:
                raise McpToolError("HubSpot MCP tool server is not configured")
            discovered = self._crm.list_tools()
            if not discovered:
                raise McpToolError("HubSpot MCP tool server advertised no tools")
        except McpToolError as exc:
            self._add_fallback_crm_tools(registry, progress, str(exc))
            return

        loaded: list[str] = []
        for descriptor in discovered:
            if descriptor.name in EXCLUDED_CRM_TOOLS:
                continue
            tool = CrmTool(
                name=crm_tool_name(descriptor.name),
                description=descriptor.description,
                input_schema=descriptor.input_schema,
                remote_name=descriptor.name,
                source="mcp",
            )
            if registry.add(tool):
                loaded.append(descriptor.name)

        if not loaded:
            self._add_fallback_crm_tools(
                registry, progress,
                f"none of the {len(discovered)} advertised HubSpot MCP tools are usable",
            )
            return

        progress(ProgressEvent(
            "thinking", f"Loaded {len(loaded)} HubSpot MCP tools", {"tools": loaded},
        ))

    @staticmethod
    def _add_fallback_crm_tools(registry: ToolRegistry, progress: ProgressCallback, reason: str) -> None:
        """The run is never left without CRM access; REST-backed tools stand in."""
        logger.warning("CRM tool discovery failed, using fallback tools: %s", reason)
        added = [tool.name for tool in FALLBACK_CRM_TOOLS if registry.add(tool)]
        progress(ProgressEvent(
            "thinking", "HubSpot MCP not available, using fallback tools",
            {"error": reason, "tools": added},
        ))
