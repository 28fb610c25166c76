"""Synchronous facade over an MCP (Model Context Protocol) tool server.

The CRM tool catalogue and the ATLAS knowledge base are both hosted as MCP
servers reached over the stdio transport.  The agent loop is synchronous, so
every call here opens a short-lived session inside ``asyncio.run``:

    1. spawn the server subprocess (``stdio_client``)
    2. ``session.initialize()`` bounded by ``init_timeout``
    3. ``list_tools()`` or ``call_tool()``
    4. tear the session down

Any failure along the way surfaces as :class:`McpToolError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from sales_intel.services.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT_SECONDS = 120.0


class McpToolError(Exception):
    """Raised when an MCP server cannot be reached or a tool call fails."""


@dataclass(frozen=True)
class McpToolDescriptor:
    """A tool as advertised by an MCP server's ``list_tools``."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


def _content_to_value(content: list[Any]) -> Any:
    """Join the text parts of an MCP result and decode JSON when possible."""
    parts: list[str] = []
    for item in content or []:
        text = getattr(item, "text", None)
        parts.append(text if text is not None else str(item))
    joined = "\n".join(parts)
    try:
        return json.loads(joined)
    except (TypeError, ValueError):
        return joined


class McpToolClient:
    """One configured MCP server (command + args + env)."""

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str],
        *,
        env: dict[str, str] | None = None,
        init_timeout: float = 30.0,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self.name = name
        self._params = StdioServerParameters(
            command=command,
            args=args,
            env={**os.environ, **(env or {})},
        )
        self._init_timeout = init_timeout
        self._call_timeout = call_timeout

    # ── Session plumbing ─────────────────────────────────────────────

    async def _with_session(self, fn: Callable[[ClientSession], Awaitable[T]]) -> T:
        async with stdio_client(self._params) as (read_stream, write_stream):
            async with ClientSession(read_stream, write_stream) as session:
                await asyncio.wait_for(session.initialize(), timeout=self._init_timeout)
                return await asyncio.wait_for(fn(session), timeout=self._call_timeout)

    def _run(self, operation: str, fn: Callable[[ClientSession], Awaitable[T]]) -> T:
        t0 = time.perf_counter()
        try:
            result = asyncio.run(self._with_session(fn))
        except McpToolError:
            raise
        except Exception as exc:
            metrics.record_failure(
                self.name, operation, error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise McpToolError(f"{self.name} MCP {operation} failed: {exc}") from exc
        metrics.record_success(self.name, operation, latency_ms=(time.perf_counter() - t0) * 1000)
        return result

    # ── Public API ───────────────────────────────────────────────────

    def list_tools(self) -> list[McpToolDescriptor]:
        """Discover the tools this server exposes."""

        async def _list(session: ClientSession) -> list[McpToolDescriptor]:
            response = await session.list_tools()
            return [
                McpToolDescriptor(
                    name=tool.name,
                    description=tool.description or f"{self.name} tool: {tool.name}",
                    input_schema=dict(tool.inputSchema or {}),
                )
                for tool in response.tools
            ]

        tools = self._run("list_tools", _list)
        logger.info("%s MCP: discovered %d tools", self.name, len(tools))
        return tools

    def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Invoke *tool_name* and return its decoded result.

        Raises :class:`McpToolError` if the server reports ``isError``.
        """

        async def _call(session: ClientSession) -> Any:
            return await session.call_tool(tool_name, arguments)

        result = self._run(f"call_tool:{tool_name}", _call)
        value = _content_to_value(result.content)
        if result.isError:
            raise McpToolError(f"{tool_name} returned an error: {value}")
        return value
