"""LangGraph-based intelligence agent.

Architecture:
  One run of the agent is a bounded tool-calling loop built as a LangGraph
  StateGraph with four nodes:

    1. **agent**      — Claude call with the run's tools bound; counts an
                        iteration and records the reasoning text
    2. **tools**      — executes every tool call of the last turn, in order,
                        and answers each one with a ToolMessage of the same id
    3. **finalize**   — one extra call that supplies the output schema and
                        asks for the JSON answer only (not an iteration)
    4. **exhausted**  — the iteration cap was reached without finishing

  Routing:
    agent → (tool calls?)       → tools → (finish called?) → finalize → END
                                        → (cap reached?)   → exhausted → END
                                        → agent (loop)
    agent → (final text?)       → END
    agent → (empty answer?)     → finalize → END
    agent → (model error?)      → END

  Termination is enforced by the iteration cap alone; ``recursion_limit`` is
  set just above what the cap allows so LangGraph never cuts a run short.

  Memory:
    Conversations are not checkpointed.  Each run starts from the entity
    snapshot and only its effects (progress events, final result) survive.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from sales_intel.config import (
    ANTHROPIC_API_KEY,
    FIRECRAWL_API_KEY,
    HUBSPOT_ACCESS_TOKEN,
    HUBSPOT_MCP_ARGS,
    HUBSPOT_MCP_COMMAND,
    MCP_INIT_TIMEOUT_SECONDS,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
)
from sales_intel.context import EntityContext
from sales_intel.events import ProgressCallback, ProgressEvent
from sales_intel.jobs.retry import is_retryable_error
from sales_intel.parsing import extract_intelligence
from sales_intel.prompts import (
    WEB_TOOL_ENTITY_TYPES,
    build_final_request,
    build_initial_message,
    with_web_tools,
)
from sales_intel.services.firecrawl_client import FirecrawlClient
from sales_intel.services.hubspot_client import HubSpotClient, get_hubspot_client
from sales_intel.services.knowledge_base import KnowledgeBase, build_knowledge_base
from sales_intel.services.mcp_client import McpToolClient
from sales_intel.services.metrics import metrics
from sales_intel.tools.executor import ToolExecutor
from sales_intel.tools.registry import FINISH_TOOL_NAME, SCRAPE_WEBSITE, SEARCH_WEB, ToolRegistryBuilder

logger = logging.getLogger(__name__)

_DISPLAY_TEXT_LIMIT = 500
_CONTINUE_PROMPT = (
    "Your previous response was cut off. Continue your investigation, "
    "or call finish_analysis if you have enough information."
)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer so each node appends to
    the conversation.  ``outcome`` is empty while the loop is running and
    becomes ``done``, ``failed`` or ``exhausted`` when it stops.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    iterations: int
    tool_calls: int
    finished: bool
    intelligence: dict[str, Any] | None
    parse_tier: str | None
    error: str | None
    retryable: bool
    outcome: str


@dataclass(frozen=True)
class AgentResult:
    """What one agent run reports back to the job runner."""

    success: bool
    outcome: str
    iterations: int
    tool_calls: int
    intelligence: dict[str, Any] | None = None
    parse_tier: str | None = None
    error: str | None = None
    retryable: bool = False


@dataclass
class ToolBackends:
    """The external systems a run's tools are served by."""

    knowledge_base: KnowledgeBase
    crm_rest: HubSpotClient
    crm_tools_client: McpToolClient | None = None
    web_client: FirecrawlClient | None = None


# ── Builders ────────────────────────────────────────────────────────


def build_llm() -> ChatAnthropic:
    """Build the Claude model the agent reasons with (tools are bound per run)."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=MODEL_MAX_TOKENS,
    )


def build_default_backends() -> ToolBackends:
    """Tool backends wired to the configured services."""
    return ToolBackends(
        knowledge_base=build_knowledge_base(),
        crm_rest=get_hubspot_client(),
        crm_tools_client=McpToolClient(
            "hubspot",
            HUBSPOT_MCP_COMMAND,
            HUBSPOT_MCP_ARGS,
            env={"PRIVATE_APP_ACCESS_TOKEN": HUBSPOT_ACCESS_TOKEN},
            init_timeout=MCP_INIT_TIMEOUT_SECONDS,
        ),
        web_client=FirecrawlClient() if FIRECRAWL_API_KEY else None,
    )


# ── Message helpers ─────────────────────────────────────────────────


def _text_blocks(message: AIMessage) -> list[str]:
    """The text content blocks of a model turn, in order."""
    content = message.content
    if isinstance(content, str):
        return [content] if content.strip() else []
    texts = []
    for block in content:
        if isinstance(block, str):
            text = block
        elif isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text", "")
        else:
            continue
        if text.strip():
            texts.append(text)
    return texts


def _stop_reason(message: AIMessage) -> str | None:
    metadata = message.response_metadata or {}
    return metadata.get("stop_reason") or metadata.get("finish_reason")


def _truncate(text: str, limit: int = _DISPLAY_TEXT_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


# ── Agent ───────────────────────────────────────────────────────────


class IntelligenceAgent:
    """Runs the tool-calling loop for one entity.

    The LLM is passed in unbound; each run binds the tools its registry
    resolved, so a run whose web backend is down never sees the web tools.
    """

    def __init__(self, llm: BaseChatModel, backends: ToolBackends) -> None:
        self._llm = llm
        self._backends = backends

    def run(
        self,
        context: EntityContext,
        *,
        system_prompt: str,
        max_iterations: int,
        progress: ProgressCallback,
    ) -> AgentResult:
        """Analyze *context*; model failures are reported, never raised.

        Exceptions raised by *progress* (cancellation) propagate to the caller.
        """
        entity_type = context.entity_type
        max_iterations = max(1, int(max_iterations))
        backends = self._backends

        registry = ToolRegistryBuilder(
            crm_tools_client=backends.crm_tools_client,
            web_client=backends.web_client,
        ).build(progress, include_web_tools=entity_type in WEB_TOOL_ENTITY_TYPES)
        if SCRAPE_WEBSITE.name in registry or SEARCH_WEB.name in registry:
            system_prompt = with_web_tools(system_prompt)
        executor = ToolExecutor(
            registry,
            knowledge_base=backends.knowledge_base,
            crm_rest=backends.crm_rest,
            crm_tools_client=backends.crm_tools_client,
            web_client=backends.web_client,
            progress=progress,
        )
        llm_with_tools = self._llm.bind_tools(registry.to_anthropic())

        graph = _build_graph(
            llm_with_tools,
            executor,
            entity_type=entity_type,
            system_prompt=system_prompt,
            max_iterations=max_iterations,
            progress=progress,
        )
        initial: AgentState = {
            "messages": [HumanMessage(content=build_initial_message(context))],
            "iterations": 0,
            "tool_calls": 0,
            "finished": False,
            "intelligence": None,
            "parse_tier": None,
            "error": None,
            "retryable": False,
            "outcome": "",
        }
        final = graph.invoke(initial, config={"recursion_limit": 2 * max_iterations + 5})

        result = AgentResult(
            success=final["outcome"] == "done" and final["intelligence"] is not None,
            outcome=final["outcome"],
            iterations=final["iterations"],
            tool_calls=final["tool_calls"],
            intelligence=final["intelligence"],
            parse_tier=final["parse_tier"],
            error=final["error"],
            retryable=final["retryable"],
        )
        if result.success:
            progress(ProgressEvent(
                "complete", "Analysis complete",
                {"iterations": result.iterations, "toolCalls": result.tool_calls,
                 "parseTier": result.parse_tier},
            ))
        logger.info(
            "%s %s agent finished: %s after %d iterations, %d tool calls",
            entity_type, context.entity_id, result.outcome, result.iterations, result.tool_calls,
        )
        return result


# ── Graph assembly ───────────────────────────────────────────────────


def _build_graph(
    llm_with_tools: Any,
    executor: ToolExecutor,
    *,
    entity_type: str,
    system_prompt: str,
    max_iterations: int,
    progress: ProgressCallback,
):
    system = SystemMessage(content=system_prompt)

    def _model_failure(exc: Exception, operation: str, iterations: int, elapsed: float) -> dict:
        metrics.record_failure(
            "anthropic", operation, error_type=type(exc).__name__, latency_ms=elapsed,
        )
        message = str(exc) or type(exc).__name__
        retryable = is_retryable_error(exc)
        logger.warning("Model call failed (retryable=%s): %s", retryable, message)
        progress(ProgressEvent(
            "error", f"Agent error: {message}",
            {"error": message, "iteration": iterations, "retryable": retryable},
        ))
        return {"outcome": "failed", "error": message, "retryable": retryable}

    # ── Node: agent ──────────────────────────────────────────────────

    def agent_node(state: AgentState) -> dict:
        iterations = state["iterations"] + 1
        progress(ProgressEvent(
            "thinking", f"Iteration {iterations}: Agent is analyzing...",
            {"iteration": iterations},
        ))
        t0 = time.perf_counter()
        try:
            response = llm_with_tools.invoke([system] + state["messages"])
        except Exception as exc:
            update = _model_failure(exc, "agent_turn", iterations, (time.perf_counter() - t0) * 1000)
            return {"iterations": iterations, **update}
        metrics.record_success("anthropic", "agent_turn", latency_ms=(time.perf_counter() - t0) * 1000)

        texts = _text_blocks(response)
        for text in texts:
            progress(ProgressEvent(
                "response", "Agent reasoning", {"text": _truncate(text), "fullText": text},
            ))
        full_text = "\n\n".join(texts)
        tool_calls = response.tool_calls or []
        update: dict[str, Any] = {"messages": [response], "iterations": iterations}

        if tool_calls:
            called = [call["name"] for call in tool_calls]
            update["tool_calls"] = state["tool_calls"] + sum(
                1 for name in called if name != FINISH_TOOL_NAME
            )
            if FINISH_TOOL_NAME in called:
                update["finished"] = True
                # The closing turn may already carry the answer; if so the
                # final JSON request is skipped.
                parsed = extract_intelligence(entity_type, full_text, allow_fallback=False)
                if parsed.intelligence is not None:
                    update["intelligence"] = parsed.intelligence
                    update["parse_tier"] = parsed.tier
            return update

        if _stop_reason(response) == "max_tokens":
            update["messages"] = [response, HumanMessage(content=_CONTINUE_PROMPT)]
            return update

        if not full_text:
            update["finished"] = True
            return update

        parsed = extract_intelligence(entity_type, full_text)
        update.update({
            "intelligence": parsed.intelligence,
            "parse_tier": parsed.tier,
            "finished": True,
            "outcome": "done",
        })
        return update

    # ── Node: tools ──────────────────────────────────────────────────

    def tools_node(state: AgentState) -> dict:
        last = state["messages"][-1]
        results = []
        for call in last.tool_calls:
            content = executor.execute(call["name"], call.get("args") or {})
            results.append(ToolMessage(content=content, tool_call_id=call["id"], name=call["name"]))
        update: dict[str, Any] = {"messages": results}
        if state["finished"] and state["intelligence"] is not None:
            update["outcome"] = "done"
        return update

    # ── Node: finalize ───────────────────────────────────────────────

    def finalize_node(state: AgentState) -> dict:
        progress(ProgressEvent(
            "thinking", "Requesting final structured analysis...",
            {"iterations": state["iterations"], "toolCalls": state["tool_calls"]},
        ))
        request = HumanMessage(content=build_final_request(entity_type))
        t0 = time.perf_counter()
        try:
            response = llm_with_tools.invoke([system] + state["messages"] + [request])
        except Exception as exc:
            return _model_failure(exc, "final_answer", state["iterations"], (time.perf_counter() - t0) * 1000)
        metrics.record_success("anthropic", "final_answer", latency_ms=(time.perf_counter() - t0) * 1000)

        text = "\n\n".join(_text_blocks(response))
        parsed = extract_intelligence(entity_type, text)
        return {
            "messages": [request, response],
            "intelligence": parsed.intelligence,
            "parse_tier": parsed.tier,
            "outcome": "done",
        }

    # ── Node: exhausted ──────────────────────────────────────────────

    def exhausted_node(state: AgentState) -> dict:
        message = f"Agent reached maximum iterations ({max_iterations}) without completing"
        progress(ProgressEvent(
            "error", message,
            {"iterations": state["iterations"], "toolCalls": state["tool_calls"]},
        ))
        return {
            "outcome": "exhausted",
            "error": f"Agent reached maximum iterations ({max_iterations})",
        }

    # ── Conditional edges ────────────────────────────────────────────

    def _next_turn(state: AgentState) -> str:
        if state["finished"]:
            return "finalize"
        if state["iterations"] >= max_iterations:
            return "exhausted"
        return "agent"

    def after_agent(state: AgentState) -> str:
        if state["outcome"]:
            return END
        last = state["messages"][-1]
        if isinstance(last, AIMessage) and last.tool_calls:
            return "tools"
        return _next_turn(state)

    def after_tools(state: AgentState) -> str:
        if state["outcome"]:
            return END
        return _next_turn(state)

    graph = StateGraph(AgentState)
    graph.add_node("agent", agent_node)
    graph.add_node("tools", tools_node)
    graph.add_node("finalize", finalize_node)
    graph.add_node("exhausted", exhausted_node)

    graph.set_entry_point("agent")
    routes = {
        "agent": "agent", "tools": "tools", "finalize": "finalize",
        "exhausted": "exhausted", END: END,
    }
    graph.add_conditional_edges("agent", after_agent, routes)
    graph.add_conditional_edges("tools", after_tools, routes)
    graph.add_edge("finalize", END)
    graph.add_edge("exhausted", END)
    return graph.compile()
