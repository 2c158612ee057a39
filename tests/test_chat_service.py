"""End-to-end chat turns through ChatService with a scripted model.

The database is real (in-memory SQLite), provider HTTP goes to an
``httpx.MockTransport``, and only the completion client is faked.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.agent import CompletionServiceError, Orchestrator
from src.services.chat_service import (
    ChatService,
    ChatTurn,
    ServiceNotConfiguredError,
    SessionNotFoundError,
)
from src.services.providers import Provider
from src.services.session_store import AssistantSettings
from src.services.token_store import TokenStore
from src.tools.catalog import build_registry


def _asana_api(created: list[dict]):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer asana-access"
        if request.method == "GET" and request.url.path == "/api/1.0/users/me":
            return httpx.Response(200, json={
                "data": {
                    "gid": "me-1",
                    "email": "alex@example.com",
                    "workspaces": [{"gid": "ws-1", "name": "Northwind"}],
                },
            })
        if request.method == "POST" and request.url.path == "/api/1.0/tasks":
            body = json.loads(request.content)["data"]
            created.append(body)
            return httpx.Response(201, json={
                "data": {
                    "gid": "task-42",
                    "name": body["name"],
                    "due_on": body.get("due_on"),
                    "permalink_url": "https://app.asana.com/0/0/task-42",
                },
            })
        return httpx.Response(404)

    return handler


@pytest.fixture
def build_service(credentials, sessions, settings_store):
    def _build(llm, handler=None):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler or (lambda r: httpx.Response(404))),
        )
        tokens = TokenStore(credentials, http)
        orchestrator = Orchestrator(llm, build_registry()) if llm is not None else None
        return ChatService(
            orchestrator=orchestrator,
            sessions=sessions,
            settings=settings_store,
            tokens=tokens,
            http=http,
        )

    return _build


class TestChatTurn:
    async def test_create_asana_task_scenario(
        self, build_service, credentials, sessions, scripted_llm, ai_tool_calls, ai_text,
    ):
        await credentials.upsert(
            "user-1", Provider.ASANA, access_token="asana-access", scopes=["default"],
        )

        def respond(n, msgs):
            if n == 1:
                return ai_tool_calls(
                    ("create_asana_task", {"name": "Review Q3 budget", "dueDate": "2025-03-14"}),
                )
            return ai_text('Created "Review Q3 budget", due March 14.')

        created: list[dict] = []
        llm = scripted_llm(respond)
        service = build_service(llm, _asana_api(created))

        reply = await service.handle_message(
            "user-1", ChatTurn(message="Add a task to review the Q3 budget by Friday"),
        )

        assert reply.content == 'Created "Review Q3 budget", due March 14.'
        assert reply.tools_used == ["create_asana_task"]
        assert created == [{
            "name": "Review Q3 budget",
            "workspace": "ws-1",
            "assignee": "me",
            "due_on": "2025-03-14",
        }]

        tool_message = llm.calls[1][-1]
        assert tool_message.status == "success"
        payload = json.loads(tool_message.content)
        assert payload["id"] == "task-42"
        assert payload["message"] == 'Task "Review Q3 budget" created successfully'

        # Only Asana is connected, so only Asana tools were offered.
        assert {t["name"] for t in llm.bound_tools} == {
            "list_asana_tasks", "get_asana_task", "create_asana_task", "complete_asana_task",
        }

        detail = await sessions.get_session("user-1", reply.session_id)
        assert detail.title == "Add a task to review the Q3 budget by Friday"
        assert [m.role for m in detail.messages] == ["user", "assistant"]
        assert detail.messages[1].tools_used == ["create_asana_task"]
        assert detail.messages[1].tokens_in == 30

    async def test_no_integrations_prompt_and_no_tools(self, build_service, scripted_llm, ai_text):
        llm = scripted_llm(lambda n, msgs: ai_text("Please connect an integration."))
        reply = await build_service(llm).handle_message("user-1", ChatTurn(message="Hi"))

        assert llm.bound_tools is None
        system_prompt = llm.calls[0][0].content
        assert "No integrations are currently connected" in system_prompt
        assert reply.tools_used == []

    async def test_settings_shape_the_system_prompt(
        self, build_service, settings_store, scripted_llm, ai_text,
    ):
        await settings_store.save("user-1", AssistantSettings(
            assistant_name="Jarvis", assistant_personality="Be brief.", timezone="Europe/Lisbon",
        ))
        llm = scripted_llm(lambda n, msgs: ai_text("ok"))
        await build_service(llm).handle_message("user-1", ChatTurn(message="Hi"))

        system_prompt = llm.calls[0][0].content
        assert system_prompt.startswith("You are Jarvis")
        assert "Europe/Lisbon" in system_prompt
        assert system_prompt.endswith("Be brief.")

    async def test_continuing_a_session_appends(
        self, build_service, sessions, scripted_llm, ai_text,
    ):
        llm = scripted_llm(lambda n, msgs: ai_text(f"answer {n}"))
        service = build_service(llm)

        first = await service.handle_message("user-1", ChatTurn(message="one"))
        second = await service.handle_message(
            "user-1",
            ChatTurn(
                message="two",
                history=[
                    {"role": "user", "content": "one"},
                    {"role": "assistant", "content": "answer 1"},
                ],
                session_id=first.session_id,
            ),
        )

        assert second.session_id == first.session_id
        detail = await sessions.get_session("user-1", first.session_id)
        assert [m.content for m in detail.messages] == ["one", "answer 1", "two", "answer 2"]

    async def test_foreign_session_is_not_found(
        self, build_service, sessions, scripted_llm, ai_text,
    ):
        other = await sessions.create_session("someone-else", "private")
        llm = scripted_llm(lambda n, msgs: ai_text("never"))

        with pytest.raises(SessionNotFoundError):
            await build_service(llm).handle_message(
                "user-1", ChatTurn(message="hi", session_id=other),
            )
        assert llm.calls == []

    async def test_missing_model_is_not_configured(self, build_service):
        with pytest.raises(ServiceNotConfiguredError):
            await build_service(None).handle_message("user-1", ChatTurn(message="hi"))

    async def test_completion_failure_propagates(self, build_service, scripted_llm):
        def respond(n, msgs):
            raise RuntimeError("529 overloaded")

        with pytest.raises(CompletionServiceError):
            await build_service(scripted_llm(respond)).handle_message(
                "user-1", ChatTurn(message="hi"),
            )

    async def test_failed_save_still_returns_the_answer(
        self, build_service, sessions, scripted_llm, ai_text,
    ):
        llm = scripted_llm(lambda n, msgs: ai_text("Here you go."))
        service = build_service(llm)
        sessions.append_message = AsyncMock(side_effect=RuntimeError("disk full"))

        reply = await service.handle_message("user-1", ChatTurn(message="hi"))

        assert reply.content == "Here you go."
        assert reply.session_id
