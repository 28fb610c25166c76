"""Tests for the tool executor."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from sales_intel.jobs.store import JobCancelledError
from sales_intel.services.hubspot_client import HubSpotAPIError
from sales_intel.services.mcp_client import McpToolError
from sales_intel.tools.executor import ToolExecutor
from sales_intel.tools.registry import (
    FALLBACK_CRM_TOOLS,
    FINISH_ANALYSIS,
    QUERY_ATLAS,
    SCRAPE_WEBSITE,
    SEARCH_WEB,
    CrmTool,
    ToolRegistry,
)

LIST_OBJECTS = CrmTool(
    name="hubspot_list_objects",
    description="List objects",
    remote_name="hubspot-list-objects",
    source="mcp",
)


def _registry(*tools) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.add(tool)
    return registry


@pytest.fixture
def backends():
    return {
        "knowledge_base": MagicMock(),
        "crm_rest": MagicMock(),
        "crm_tools_client": MagicMock(),
        "web_client": MagicMock(),
    }


def _executor(backends, progress, *tools) -> ToolExecutor:
    tools = tools or (QUERY_ATLAS, FINISH_ANALYSIS, LIST_OBJECTS, *FALLBACK_CRM_TOOLS,
                      SCRAPE_WEBSITE, SEARCH_WEB)
    return ToolExecutor(_registry(*tools), progress=progress, **backends)


class TestDispatch:
    def test_knowledge_base_query(self, backends, progress_events):
        backends["knowledge_base"].query.return_value = {"results": [1, 2], "count": 2}
        out = _executor(backends, progress_events).execute("query_atlas", {"query": "renewals"})
        assert json.loads(out) == {"results": [1, 2], "count": 2}
        backends["knowledge_base"].query.assert_called_once_with("renewals")

    def test_finish_is_acknowledged_without_backend_calls(self, backends, progress_events):
        out = json.loads(_executor(backends, progress_events).execute(
            "finish_analysis", {"summary": "done"},
        ))
        assert out["acknowledged"] is True
        for backend in backends.values():
            assert not backend.method_calls

    def test_discovered_crm_tool_uses_wire_name(self, backends, progress_events):
        backends["crm_tools_client"].call_tool.return_value = {"results": []}
        _executor(backends, progress_events).execute("hubspot_list_objects", {"objectType": "deals"})
        backends["crm_tools_client"].call_tool.assert_called_once_with(
            "hubspot-list-objects", {"objectType": "deals"},
        )

    def test_fallback_search_goes_to_rest_client(self, backends, progress_events):
        backends["crm_rest"].search_objects.return_value = {"total": 0, "results": []}
        _executor(backends, progress_events).execute(
            "hubspot_search_objects", {"objectType": "deals", "query": "acme", "limit": 5},
        )
        backends["crm_rest"].search_objects.assert_called_once_with(
            "deals", query="acme", filter_groups=None, properties=None, limit=5,
        )
        backends["crm_tools_client"].call_tool.assert_not_called()

    def test_fallback_associations(self, backends, progress_events):
        backends["crm_rest"].list_associations.return_value = [{"toObjectId": 1}]
        out = json.loads(_executor(backends, progress_events).execute(
            "hubspot_list_associations",
            {"objectType": "deals", "objectId": "1", "toObjectType": "contacts"},
        ))
        assert out == {"results": [{"toObjectId": 1}], "count": 1}

    def test_web_search(self, backends, progress_events):
        backends["web_client"].search.return_value = [{"url": "https://acme.test"}]
        out = json.loads(_executor(backends, progress_events).execute("search_web", {"query": "acme"}))
        assert out["count"] == 1
        backends["web_client"].search.assert_called_once_with("acme", limit=5)


class TestFailuresBecomeData:
    def test_unknown_tool(self, backends, progress_events):
        out = json.loads(_executor(backends, progress_events).execute("drop_tables", {}))
        assert out == {"success": False, "error": "Unknown tool: drop_tables"}
        assert progress_events.events == []

    def test_backend_error_returned_as_payload(self, backends, progress_events):
        backends["crm_tools_client"].call_tool.side_effect = McpToolError("server gone")
        out = json.loads(_executor(backends, progress_events).execute("hubspot_list_objects", {}))
        assert out == {"success": False, "error": "server gone"}

    def test_missing_argument_returned_as_payload(self, backends, progress_events):
        out = json.loads(_executor(backends, progress_events).execute("scrape_website", {}))
        assert out["success"] is False

    def test_rest_error_returned_as_payload(self, backends, progress_events):
        backends["crm_rest"].list_associations.side_effect = HubSpotAPIError("Client error 404")
        out = json.loads(_executor(backends, progress_events).execute(
            "hubspot_list_associations", {"objectType": "deals", "objectId": "1", "toObjectType": "x"},
        ))
        assert out["error"] == "Client error 404"

    def test_missing_crm_server(self, backends, progress_events):
        backends["crm_tools_client"] = None
        out = json.loads(_executor(backends, progress_events).execute("hubspot_list_objects", {}))
        assert out["success"] is False


class TestProgressEvents:
    def test_call_and_result_events(self, backends, progress_events):
        backends["knowledge_base"].query.return_value = {"results": [], "count": 0}
        _executor(backends, progress_events).execute("query_atlas", {"query": "q"})

        call, result = progress_events.events
        assert call.type == "tool_call"
        assert call.data == {"tool": "query_atlas", "input": {"query": "q"}}
        assert result.type == "tool_result"
        assert result.data["status"] == "success"
        assert result.data["result"] == {"results": [], "count": 0}
        assert isinstance(result.data["duration"], int)

    def test_error_event_carries_message(self, backends, progress_events):
        backends["knowledge_base"].query.side_effect = McpToolError("timeout")
        _executor(backends, progress_events).execute("query_atlas", {"query": "q"})
        result = progress_events.events[-1]
        assert result.data["status"] == "error"
        assert result.data["error"] == "timeout"

    def test_cancellation_from_progress_propagates(self, backends):
        def _cancelled(event):
            raise JobCancelledError("cancelled")

        with pytest.raises(JobCancelledError):
            _executor(backends, _cancelled).execute("query_atlas", {"query": "q"})
        backends["knowledge_base"].query.assert_not_called()
