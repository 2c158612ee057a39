"""Tool-augmented conversation loop built on LangGraph.

Architecture:
  A two-node StateGraph turns one user message into a final answer:

    1. **chatbot**  calls the completion service with the system prompt,
                    the running messages and the user's visible tools
    2. **tools**    dispatches every tool call in the last response
                    concurrently through the ToolRegistry

  Routing:
    chatbot → (tool calls and iterations < max?) → tools → chatbot (loop)
            → (otherwise)                         → END

  ``iterations`` counts tool rounds.  Once it reaches the bound the loop
  ends even if the model is still asking for tools, and the answer is
  whatever text that last response carried (possibly empty).  A model that
  asks for tools every time gets max rounds and max + 1 completion calls.

  Tool failures never leave the tools node; they come back to the model as
  error-flagged tool results.  A failing completion call raises
  :class:`CompletionServiceError` out of :meth:`Orchestrator.run`.

  The graph holds no session state.  Callers pass prior turns in and own
  persistence of the result.
"""

from __future__ import annotations

import asyncio
import logging
import operator
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from src.config import MAX_OUTPUT_TOKENS, MAX_TOOL_ITERATIONS, MODEL_NAME
from src.services.metrics import metrics
from src.tools.registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


class CompletionServiceError(Exception):
    """The completion service call failed; fatal to the current turn."""


@dataclass(frozen=True)
class ToolInvocation:
    """One tool call made during a turn and what it returned."""

    id: str
    name: str
    input: dict[str, Any]
    result: ToolResult


@dataclass
class ImageAttachment:
    media_type: str
    data: str = field(repr=False)  # base64


@dataclass
class OrchestrationResult:
    text: str
    input_tokens: int
    output_tokens: int
    tools_used: list[str]
    iterations: int
    invocations: list[ToolInvocation]
    hit_iteration_limit: bool = False


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """State flowing through the graph for a single user turn.

    ``messages`` uses ``add_messages`` so each node appends.  Token counts
    and invocation records are summed across iterations with
    ``operator.add``.  ``system_prompt``, ``tools`` and ``context`` are set
    once at the start of the turn and only read afterwards.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    iterations: int
    input_tokens: Annotated[int, operator.add]
    output_tokens: Annotated[int, operator.add]
    invocations: Annotated[list[ToolInvocation], operator.add]
    system_prompt: str
    tools: list[dict[str, Any]]
    context: ToolContext


# ── LLM builder ─────────────────────────────────────────────────────


def build_llm(api_key: str) -> ChatAnthropic:
    """Construct the completion client once per process."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=api_key,
        max_tokens=MAX_OUTPUT_TOKENS,
    )


# ── Message helpers ─────────────────────────────────────────────────


def extract_text(message: BaseMessage) -> str:
    """Join the text blocks of a response; tool-use blocks are skipped."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "\n".join(p for p in parts if p)


def build_user_message(text: str, images: Sequence[ImageAttachment] = ()) -> HumanMessage:
    if not images:
        return HumanMessage(content=text)
    blocks: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {"type": "base64", "media_type": img.media_type, "data": img.data},
        }
        for img in images
    ]
    blocks.append({"type": "text", "text": text})
    return HumanMessage(content=blocks)


def history_to_messages(history: Sequence[dict[str, str]]) -> list[BaseMessage]:
    """Prior turns as LangChain messages.  Unknown roles are dropped."""
    messages: list[BaseMessage] = []
    for turn in history:
        role, content = turn.get("role"), turn.get("content") or ""
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "assistant":
            messages.append(AIMessage(content=content))
    return messages


# ── Node: chatbot ───────────────────────────────────────────────────


def _make_chatbot_node(llm: BaseChatModel, model_name: str):
    """Create the completion node around an injected chat model."""

    async def chatbot_node(state: AgentState) -> dict:
        runnable = llm.bind_tools(state["tools"]) if state["tools"] else llm
        logger.debug(
            "chatbot after %d tool rounds (%d tools visible)",
            state["iterations"], len(state["tools"]),
        )
        system = SystemMessage(content=state["system_prompt"])
        t0 = time.perf_counter()
        try:
            response = await runnable.ainvoke([system] + state["messages"])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "llm_invoke",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise CompletionServiceError(f"Completion request failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "llm_invoke", latency_ms=elapsed)

        usage = getattr(response, "usage_metadata", None) or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        metrics.record_token_usage(
            model_name, input_tokens=input_tokens, output_tokens=output_tokens,
        )
        return {
            "messages": [response],
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
        }

    return chatbot_node


# ── Node: tools ─────────────────────────────────────────────────────


def _make_tools_node(registry: ToolRegistry):
    """Create the node that runs every requested tool call concurrently."""

    async def tools_node(state: AgentState) -> dict:
        calls = state["messages"][-1].tool_calls
        ctx = state["context"]

        async def _run(call: dict[str, Any]) -> tuple[str, ToolResult]:
            return call["id"], await registry.dispatch(ctx, call["name"], call["args"])

        # Pair by id; completion order does not matter.
        results = dict(await asyncio.gather(*(_run(call) for call in calls)))

        messages = []
        invocations = []
        for call in calls:
            result = results[call["id"]]
            messages.append(
                ToolMessage(
                    content=result.to_content(),
                    tool_call_id=call["id"],
                    name=call["name"],
                    status="success" if result.success else "error",
                )
            )
            invocations.append(
                ToolInvocation(id=call["id"], name=call["name"], input=call["args"], result=result)
            )
        return {
            "messages": messages,
            "invocations": invocations,
            "iterations": state["iterations"] + 1,
        }

    return tools_node


# ── Graph assembly ───────────────────────────────────────────────────


class Orchestrator:
    """Runs the bounded completion/tool loop for one user message at a time.

    One instance is built at startup and shared; all per-turn state lives
    in the graph state passed to :meth:`run`.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        registry: ToolRegistry,
        *,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        model_name: str = MODEL_NAME,
    ) -> None:
        self.registry = registry
        self.max_iterations = max_iterations
        self._graph = self._build_graph(llm, model_name)

    def should_use_tools(self, state: AgentState) -> str:
        """Go to tools while the model asks for them and the bound allows."""
        last_message = state["messages"][-1]
        if not getattr(last_message, "tool_calls", None):
            return END
        if state["iterations"] >= self.max_iterations:
            logger.warning(
                "Tool loop stopped at the %d-iteration limit", self.max_iterations,
            )
            return END
        return "tools"

    def _build_graph(self, llm: BaseChatModel, model_name: str):
        graph = StateGraph(AgentState)
        graph.add_node("chatbot", _make_chatbot_node(llm, model_name))
        graph.add_node("tools", _make_tools_node(self.registry))
        graph.set_entry_point("chatbot")
        graph.add_conditional_edges(
            "chatbot", self.should_use_tools, {"tools": "tools", END: END},
        )
        graph.add_edge("tools", "chatbot")
        return graph.compile()

    async def run(
        self,
        *,
        message: str,
        history: Sequence[dict[str, str]],
        system_prompt: str,
        tools: Sequence[ToolDefinition],
        context: ToolContext,
        images: Sequence[ImageAttachment] = (),
    ) -> OrchestrationResult:
        """Drive the loop to a final answer.

        Raises:
            CompletionServiceError: the completion service call failed.
        """
        initial: AgentState = {
            "messages": history_to_messages(history) + [build_user_message(message, images)],
            "iterations": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "invocations": [],
            "system_prompt": system_prompt,
            "tools": [t.to_anthropic() for t in tools],
            "context": context,
        }
        final = await self._graph.ainvoke(
            initial, config={"recursion_limit": 2 * self.max_iterations + 6},
        )

        last = final["messages"][-1]
        invocations = final["invocations"]
        return OrchestrationResult(
            text=extract_text(last),
            input_tokens=final["input_tokens"],
            output_tokens=final["output_tokens"],
            tools_used=list(dict.fromkeys(inv.name for inv in invocations)),
            iterations=final["iterations"],
            invocations=invocations,
            hit_iteration_limit=bool(getattr(last, "tool_calls", None)),
        )
