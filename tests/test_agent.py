"""Tests for the bounded completion/tool loop.

Covers:
  - Routing between the chatbot and tools nodes
  - The 10-round tool bound
  - Concurrent tool dispatch paired back to calls by id
  - Error-flagged tool results
  - Completion failures surfacing as CompletionServiceError
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END

from src.agent import (
    CompletionServiceError,
    ImageAttachment,
    Orchestrator,
    build_user_message,
    extract_text,
    history_to_messages,
)
from src.tools.gmail import GET_EMAIL, SEARCH_EMAILS
from src.tools.registry import ToolContext, ToolRegistry, ToolResult

# ── Helpers ──────────────────────────────────────────────────────────


def _context() -> ToolContext:
    return ToolContext(user_id="user-1", tokens=MagicMock(), http=MagicMock())


def _registry(search=None, get=None) -> ToolRegistry:
    async def default_search(ctx, args):
        return ToolResult.ok({"emails": [], "total": 0, "query": args["query"]})

    async def default_get(ctx, args):
        return ToolResult.ok({"id": args["emailId"]})

    registry = ToolRegistry()
    registry.register(SEARCH_EMAILS, search or default_search)
    registry.register(GET_EMAIL, get or default_get)
    return registry


async def _run(orchestrator: Orchestrator, message: str = "Hello", **kwargs):
    defaults = {
        "history": [],
        "system_prompt": "You are a test assistant.",
        "tools": [SEARCH_EMAILS, GET_EMAIL],
        "context": _context(),
    }
    defaults.update(kwargs)
    return await orchestrator.run(message=message, **defaults)


# ── Routing ──────────────────────────────────────────────────────────


class TestShouldUseTools:
    def _orchestrator(self, scripted_llm, max_iterations=10):
        llm = scripted_llm(lambda n, msgs: AIMessage(content="unused"))
        return Orchestrator(llm, _registry(), max_iterations=max_iterations)

    def test_routes_to_tools_when_tool_calls_present(self, scripted_llm):
        msg = AIMessage(
            content="",
            tool_calls=[{"name": "search_emails", "args": {"query": "x"}, "id": "1"}],
        )
        state = {"messages": [msg], "iterations": 1}
        assert self._orchestrator(scripted_llm).should_use_tools(state) == "tools"

    def test_routes_to_end_without_tool_calls(self, scripted_llm):
        state = {"messages": [AIMessage(content="Done")], "iterations": 1}
        assert self._orchestrator(scripted_llm).should_use_tools(state) == END

    def test_routes_to_end_at_iteration_limit(self, scripted_llm):
        msg = AIMessage(
            content="",
            tool_calls=[{"name": "search_emails", "args": {"query": "x"}, "id": "1"}],
        )
        state = {"messages": [msg], "iterations": 3}
        assert self._orchestrator(scripted_llm, max_iterations=3).should_use_tools(state) == END


# ── Loop behaviour ───────────────────────────────────────────────────


class TestOrchestratorRun:
    async def test_plain_answer_uses_one_completion(self, scripted_llm, ai_text):
        llm = scripted_llm(lambda n, msgs: ai_text("Hi there!"))
        result = await _run(Orchestrator(llm, _registry()))

        assert result.text == "Hi there!"
        assert result.iterations == 0
        assert result.invocations == []
        assert result.tools_used == []
        assert result.input_tokens == 20
        assert result.output_tokens == 8
        assert result.hit_iteration_limit is False

    async def test_system_prompt_and_history_precede_the_new_message(self, scripted_llm, ai_text):
        llm = scripted_llm(lambda n, msgs: ai_text("ok"))
        history = [
            {"role": "user", "content": "What's on today?"},
            {"role": "assistant", "content": "Two meetings."},
        ]
        await _run(Orchestrator(llm, _registry()), "And tomorrow?", history=history)

        sent = llm.calls[0]
        assert isinstance(sent[0], SystemMessage)
        assert sent[0].content == "You are a test assistant."
        assert [type(m) for m in sent[1:]] == [HumanMessage, AIMessage, HumanMessage]
        assert sent[-1].content == "And tomorrow?"

    async def test_tool_round_trip(self, scripted_llm, ai_tool_calls, ai_text):
        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(("search_emails", {"query": "is:unread"}))
            return ai_text("You have no unread email.")

        llm = scripted_llm(respond)
        result = await _run(Orchestrator(llm, _registry()))

        assert result.text == "You have no unread email."
        assert result.iterations == 1
        assert result.tools_used == ["search_emails"]
        assert len(result.invocations) == 1
        assert result.invocations[0].input == {"query": "is:unread"}
        assert result.invocations[0].result.success is True
        assert result.input_tokens == 30
        assert result.output_tokens == 13

    async def test_stops_after_ten_tool_rounds(self, scripted_llm, ai_tool_calls):
        llm = scripted_llm(
            lambda n, msgs: ai_tool_calls(("search_emails", {"query": f"q{n}"}), text=f"step {n}")
        )
        result = await _run(Orchestrator(llm, _registry()))

        assert len(llm.calls) == 11
        assert result.iterations == 10
        # The eleventh response still asks for a tool, which is never run.
        assert len(result.invocations) == 10
        assert [inv.input["query"] for inv in result.invocations] == [f"q{n}" for n in range(1, 11)]
        assert result.hit_iteration_limit is True
        assert result.text == "step 11"
        assert result.tools_used == ["search_emails"]

    async def test_custom_iteration_bound(self, scripted_llm, ai_tool_calls):
        llm = scripted_llm(lambda n, msgs: ai_tool_calls(("search_emails", {"query": "x"})))
        result = await _run(Orchestrator(llm, _registry(), max_iterations=3))

        assert len(llm.calls) == 4
        assert len(result.invocations) == 3
        assert result.text == ""

    async def test_tools_run_concurrently_and_pair_by_id(
        self, scripted_llm, ai_tool_calls, ai_text,
    ):
        started: list[str] = []

        async def slow_search(ctx, args):
            started.append("search")
            await asyncio.sleep(0.05)
            return ToolResult.ok("slow result")

        async def fast_get(ctx, args):
            started.append("get")
            return ToolResult.ok("fast result")

        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(
                    ("search_emails", {"query": "invoices"}),
                    ("get_email", {"emailId": "m-1"}),
                )
            return ai_text("done")

        llm = scripted_llm(respond)
        result = await _run(Orchestrator(llm, _registry(search=slow_search, get=fast_get)))

        second_call = llm.calls[1]
        request, first_result, second_result = second_call[-3:]
        search_id, get_id = (c["id"] for c in request.tool_calls)

        assert isinstance(first_result, ToolMessage)
        assert first_result.tool_call_id == search_id
        assert first_result.content == "slow result"
        assert second_result.tool_call_id == get_id
        assert second_result.content == "fast result"
        assert sorted(started) == ["get", "search"]
        assert [inv.id for inv in result.invocations] == [search_id, get_id]
        assert result.tools_used == ["search_emails", "get_email"]

    async def test_failed_tool_is_flagged_and_loop_continues(
        self, scripted_llm, ai_tool_calls, ai_text,
    ):
        async def failing_get(ctx, args):
            return ToolResult.fail("Email not found")

        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(("get_email", {"emailId": "missing"}))
            return ai_text("I couldn't find that email.")

        llm = scripted_llm(respond)
        result = await _run(Orchestrator(llm, _registry(get=failing_get)))

        tool_message = llm.calls[1][-1]
        assert tool_message.status == "error"
        assert tool_message.content == "Error: Email not found"
        assert result.text == "I couldn't find that email."
        assert result.invocations[0].result.success is False

    async def test_raising_tool_becomes_error_result(self, scripted_llm, ai_tool_calls, ai_text):
        async def exploding_get(ctx, args):
            raise RuntimeError("socket closed")

        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(("get_email", {"emailId": "m-1"}))
            return ai_text("Something went wrong.")

        llm = scripted_llm(respond)
        await _run(Orchestrator(llm, _registry(get=exploding_get)))

        tool_message = llm.calls[1][-1]
        assert tool_message.status == "error"
        assert "unexpected error" in tool_message.content
        assert "socket closed" not in tool_message.content

    async def test_unknown_tool_is_reported_to_the_model(
        self, scripted_llm, ai_tool_calls, ai_text,
    ):
        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(("delete_everything", {}))
            return ai_text("I can't do that.")

        llm = scripted_llm(respond)
        result = await _run(Orchestrator(llm, _registry()))

        tool_message = llm.calls[1][-1]
        assert tool_message.status == "error"
        assert tool_message.content == "Error: Unknown tool: delete_everything"
        assert result.text == "I can't do that."

    async def test_completion_failure_raises(self, scripted_llm):
        def respond(n, msgs):
            raise RuntimeError("overloaded")

        llm = scripted_llm(respond)
        with pytest.raises(CompletionServiceError):
            await _run(Orchestrator(llm, _registry()))

    async def test_no_visible_tools_skips_binding(self, scripted_llm, ai_text):
        llm = scripted_llm(lambda n, msgs: ai_text("Connect something in Settings."))
        result = await _run(Orchestrator(llm, _registry()), tools=[])

        assert llm.bound_tools is None
        assert result.text == "Connect something in Settings."

    async def test_visible_tools_are_bound_in_anthropic_shape(self, scripted_llm, ai_text):
        llm = scripted_llm(lambda n, msgs: ai_text("ok"))
        await _run(Orchestrator(llm, _registry()), tools=[SEARCH_EMAILS])

        assert llm.bound_tools == [SEARCH_EMAILS.to_anthropic()]
        assert set(llm.bound_tools[0]) == {"name", "description", "input_schema"}


# ── Message helpers ──────────────────────────────────────────────────


class TestMessageHelpers:
    def test_extract_text_skips_tool_use_blocks(self):
        msg = AIMessage(content=[
            {"type": "text", "text": "Let me check."},
            {"type": "tool_use", "id": "t1", "name": "search_emails", "input": {}},
            {"type": "text", "text": "Found it."},
        ])
        assert extract_text(msg) == "Let me check.\nFound it."

    def test_user_message_with_images_puts_text_last(self):
        msg = build_user_message(
            "What's in this?", [ImageAttachment(media_type="image/png", data="aGVsbG8=")],
        )
        assert msg.content[0]["type"] == "image"
        assert msg.content[0]["source"] == {
            "type": "base64", "media_type": "image/png", "data": "aGVsbG8=",
        }
        assert msg.content[-1] == {"type": "text", "text": "What's in this?"}

    def test_user_message_without_images_is_plain_text(self):
        assert build_user_message("hi").content == "hi"

    def test_history_drops_unknown_roles(self):
        messages = history_to_messages([
            {"role": "user", "content": "a"},
            {"role": "system", "content": "ignore me"},
            {"role": "assistant", "content": "b"},
        ])
        assert [type(m) for m in messages] == [HumanMessage, AIMessage]
