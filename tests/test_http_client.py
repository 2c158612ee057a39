"""Tests for the shared provider HTTP client (retries and error mapping)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.services.http_client import ProviderAPIError, ProviderClient


class _ExampleClient(ProviderClient):
    service = "example"
    base_url = "https://api.example.com/v1"


def _client(handler) -> _ExampleClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _ExampleClient(http, "access-123")


@pytest.fixture
def no_sleep():
    with patch("src.services.http_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestRequest:
    async def test_sends_bearer_token_and_decodes_json(self, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://api.example.com/v1/things?limit=5"
            assert request.headers["Authorization"] == "Bearer access-123"
            return httpx.Response(200, json={"items": [1, 2]})

        assert await _client(handler)._request("GET", "/things", params={"limit": 5}) == {
            "items": [1, 2],
        }
        no_sleep.assert_not_awaited()

    async def test_empty_body_returns_none(self, no_sleep):
        result = await _client(lambda r: httpx.Response(204))._request("DELETE", "/things/1")
        assert result is None

    async def test_client_error_is_not_retried(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"error": "not found"})

        with pytest.raises(ProviderAPIError) as exc_info:
            await _client(handler)._request("GET", "/things/missing")

        assert exc_info.value.status_code == 404
        assert len(calls) == 1
        no_sleep.assert_not_awaited()

    async def test_server_errors_retry_with_backoff(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(ProviderAPIError) as exc_info:
            await _client(handler)._request("GET", "/things")

        assert exc_info.value.status_code == 503
        assert len(calls) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    async def test_recovers_after_timeout(self, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"ok": True})

        assert await _client(handler)._request("GET", "/things") == {"ok": True}
        assert len(attempts) == 3

    async def test_persistent_connection_errors_raise_without_status(self, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderAPIError) as exc_info:
            await _client(handler)._request("GET", "/things")
        assert exc_info.value.status_code is None

    async def test_absolute_urls_bypass_base(self, no_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "other.example.org"
            return httpx.Response(200, json={})

        await _client(handler)._request("POST", "https://other.example.org/graphql", json_body={})


class TestNonIdempotentRequests:
    async def test_post_is_not_repeated_after_read_timeout(self, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"id": "m-2"})

        with pytest.raises(ProviderAPIError) as exc_info:
            await _client(handler)._request("POST", "/messages", json_body={"raw": "x"})

        assert exc_info.value.status_code is None
        assert len(attempts) == 1
        no_sleep.assert_not_awaited()

    async def test_post_retries_when_connection_was_never_made(self, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"id": "m-1"})

        assert await _client(handler)._request("POST", "/messages", json_body={}) == {"id": "m-1"}
        assert len(attempts) == 2

    async def test_post_server_error_is_not_retried(self, no_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(ProviderAPIError) as exc_info:
            await _client(handler)._request("POST", "/tasks", json_body={})

        assert exc_info.value.status_code == 502
        assert len(calls) == 1

    async def test_read_only_post_can_opt_into_retries(self, no_sleep):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"data": {}})

        result = await _client(handler)._request(
            "POST", "/graphql", json_body={"query": "{ user { email } }"}, idempotent=True,
        )
        assert result == {"data": {}}
        assert len(attempts) == 2
