"""Tests for the Graph HTTP client."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from offboard.core.retry import RetryConfig
from offboard.directory.client import GraphClient, GraphError, TransientGraphError

pytestmark = pytest.mark.asyncio

BASE_URL = "https://graph.test/v1.0"


def make_client(handler) -> GraphClient:
    return GraphClient(
        "secret-token",
        base_url=BASE_URL,
        retry_config=RetryConfig(
            max_attempts=3,
            backoff_base=0.01,
            jitter=False,
            retryable_exceptions=(TransientGraphError,),
        ),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def sleep():
    with patch("offboard.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


class TestGraphClient:
    """Tests for GraphClient.request and helpers."""

    async def test_sends_bearer_token(self):
        """Should authenticate every call with the access token."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "u1"})

        async with make_client(handler) as graph:
            body = await graph.get("/users/u1")

        assert body == {"id": "u1"}
        assert seen[0].headers["Authorization"] == "Bearer secret-token"
        assert seen[0].url.path == "/v1.0/users/u1"

    async def test_no_content_returns_none(self):
        """Should return None for 204 responses."""
        async with make_client(lambda request: httpx.Response(204)) as graph:
            assert await graph.patch("/users/u1", {"accountEnabled": False}) is None

    async def test_client_error_is_not_retried(self, sleep):
        """Should raise GraphError with status and code for 4xx responses."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                403,
                json={"error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges"}},
            )

        async with make_client(handler) as graph:
            with pytest.raises(GraphError) as exc_info:
                await graph.delete("/groups/g1/members/u1/$ref")

        error = exc_info.value
        assert not isinstance(error, TransientGraphError)
        assert error.status_code == 403
        assert error.code == "Authorization_RequestDenied"
        assert "Insufficient privileges" in str(error)
        assert len(calls) == 1
        sleep.assert_not_awaited()

    async def test_throttling_is_retried_with_retry_after(self, sleep):
        """Should wait for Retry-After on 429 and then succeed."""
        responses = [
            httpx.Response(429, headers={"Retry-After": "2"}, json={"error": {"code": "TooManyRequests"}}),
            httpx.Response(200, json={"value": []}),
        ]

        async with make_client(lambda request: responses.pop(0)) as graph:
            assert await graph.get("/users/u1/licenseDetails") == {"value": []}

        sleep.assert_awaited_once_with(2.0)

    async def test_server_errors_exhaust_retries(self, sleep):
        """Should raise TransientGraphError after the last attempt."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="Service Unavailable")

        async with make_client(handler) as graph:
            with pytest.raises(TransientGraphError) as exc_info:
                await graph.post("/users/u1/revokeSignInSessions")

        assert exc_info.value.status_code == 503
        assert len(calls) == 3

    async def test_transport_errors_are_retried(self, sleep):
        """Should treat timeouts and connection failures as transient."""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            if len(attempts) == 2:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as graph:
            assert await graph.get("/organization") == {"ok": True}

        assert len(attempts) == 3

    async def test_get_all_follows_next_link(self):
        """Should collect every page of a collection."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("$skiptoken") == "page2":
                return httpx.Response(200, json={"value": [{"id": "g3"}]})
            return httpx.Response(
                200,
                json={
                    "value": [{"id": "g1"}, {"id": "g2"}],
                    "@odata.nextLink": f"{BASE_URL}/users/u1/memberOf?$skiptoken=page2",
                },
            )

        async with make_client(handler) as graph:
            items = await graph.get_all("/users/u1/memberOf", params={"$select": "id"})

        assert [i["id"] for i in items] == ["g1", "g2", "g3"]
