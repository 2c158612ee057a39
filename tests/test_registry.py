"""Tests for the tool registry: catalog totality, visibility and dispatch."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from src.services.http_client import ProviderAPIError
from src.services.providers import Provider
from src.tools.asana import CREATE_ASANA_TASK
from src.tools.capabilities import CapabilitySnapshot
from src.tools.catalog import build_registry
from src.tools.registry import (
    RegistryError,
    ToolName,
    ToolRegistry,
    ToolResult,
    clamp_limit,
    provider_failure,
)

ALL_SCOPES = {
    Provider.GOOGLE: (
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/calendar",
    ),
    Provider.ASANA: ("default",),
    Provider.FIREFLIES: (),
}


class TestCatalog:
    def test_every_tool_name_has_a_handler(self):
        registry = build_registry()
        assert len(registry.list_tools(CapabilitySnapshot(ALL_SCOPES))) == len(ToolName) == 14

    def test_validate_reports_missing_handlers(self):
        registry = ToolRegistry()

        async def handler(ctx, args):
            return ToolResult.ok("ok")

        registry.register(CREATE_ASANA_TASK, handler)
        with pytest.raises(RegistryError, match="search_emails"):
            registry.validate()

    def test_duplicate_registration_is_rejected(self):
        registry = ToolRegistry()

        async def handler(ctx, args):
            return ToolResult.ok("ok")

        registry.register(CREATE_ASANA_TASK, handler)
        with pytest.raises(RegistryError):
            registry.register(CREATE_ASANA_TASK, handler)


class TestVisibility:
    def test_nothing_connected_shows_no_tools(self):
        assert build_registry().list_tools(CapabilitySnapshot()) == []

    def test_asana_only(self):
        tools = build_registry().list_tools(CapabilitySnapshot({Provider.ASANA: ("default",)}))
        assert [t.name.value for t in tools] == [
            "list_asana_tasks", "get_asana_task", "create_asana_task", "complete_asana_task",
        ]

    def test_google_calendar_scope_without_gmail(self):
        snapshot = CapabilitySnapshot({
            Provider.GOOGLE: ("https://www.googleapis.com/auth/calendar.events",),
        })
        names = {t.name.value for t in build_registry().list_tools(snapshot)}
        assert names == {
            "list_calendar_events",
            "get_calendar_event",
            "create_calendar_event",
            "update_calendar_event",
        }

    def test_catalog_order_is_stable(self):
        tools = build_registry().list_tools(CapabilitySnapshot(ALL_SCOPES))
        assert [t.name for t in tools] == list(ToolName)


class TestDispatch:
    @pytest.fixture
    def registry(self):
        return build_registry()

    async def test_unknown_tool(self, registry, make_context):
        result = await registry.dispatch(make_context(), "launch_rockets", {})
        assert result.success is False
        assert result.error == "Unknown tool: launch_rockets"

    async def test_non_object_input(self, registry, make_context):
        result = await registry.dispatch(make_context(), "get_email", "abc")
        assert result.success is False
        assert "Invalid input" in result.error

    async def test_missing_required_input(self, registry, make_context, mock_tokens):
        result = await registry.dispatch(make_context(), "send_email", {"to": "a@b.com"})
        assert result.success is False
        assert result.error == "Missing required input: subject, body"
        mock_tokens.get_valid_access_token.assert_not_awaited()

    async def test_handler_exception_is_contained(self, registry, make_context, mock_tokens):
        mock_tokens.get_valid_access_token.side_effect = RuntimeError("db down")
        result = await registry.dispatch(make_context(), "get_asana_task", {"taskId": "1"})
        assert result.success is False
        assert result.error == "An unexpected error occurred while running get_asana_task"

    async def test_records_tool_metrics(self, registry, make_context):
        with patch("src.tools.registry.metrics") as mock_metrics:
            await registry.dispatch(make_context(), "get_asana_task", {"taskId": "1"})
        call = mock_metrics.record_tool_call.call_args
        assert call.args == ("get_asana_task",)
        assert call.kwargs["success"] is False


class TestToolResult:
    def test_error_content(self):
        assert ToolResult.fail("nope").to_content() == "Error: nope"

    def test_string_content_passes_through(self):
        assert ToolResult.ok("# Heading").to_content() == "# Heading"

    def test_structured_content_is_json(self):
        content = ToolResult.ok({"total": 2}).to_content()
        assert json.loads(content) == {"total": 2}


class TestHelpers:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, 10), ("25", 25), (500, 50), (0, 1), ("lots", 10)],
    )
    def test_clamp_limit(self, value, expected):
        assert clamp_limit(value, default=10, maximum=50) == expected

    def test_auth_failure_asks_to_reconnect(self):
        result = provider_failure(ProviderAPIError("x", 401), label="Asana", action="list tasks")
        assert result.error == "Asana rejected the request. Please reconnect Asana in Settings."

    def test_not_found_uses_custom_message(self):
        result = provider_failure(
            ProviderAPIError("x", 404), label="Gmail", action="get", not_found="Email not found",
        )
        assert result.error == "Email not found"

    def test_server_error_hides_details(self):
        result = provider_failure(
            ProviderAPIError("internal trace", 503), label="Gmail", action="search emails",
        )
        assert result.error == "Failed to search emails"
