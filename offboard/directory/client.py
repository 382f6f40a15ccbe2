"""Async HTTP client for the Microsoft Graph directory API.

Every call has a bounded timeout. Throttling (429), server errors (5xx) and
transport failures are retried with exponential backoff before surfacing as
an error; other non-2xx responses raise GraphError immediately.
"""

from typing import Any

import httpx

from offboard.config import get_config, get_settings
from offboard.core.logging import get_logger
from offboard.core.retry import RetryConfig, retry_with_backoff

logger = get_logger(__name__)


class GraphError(Exception):
    """A directory API call failed."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class TransientGraphError(GraphError):
    """Throttling, 5xx or network failure; safe to retry."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code, code)
        self.retry_after = retry_after


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_from_response(method: str, path: str, response: httpx.Response) -> GraphError:
    code = None
    message = response.reason_phrase or "error"
    try:
        error = response.json().get("error", {})
        code = error.get("code")
        message = error.get("message") or message
    except ValueError:
        pass

    text = f"{method} {path} returned {response.status_code}: {message}"
    if response.status_code == 429 or response.status_code >= 500:
        return TransientGraphError(
            text,
            status_code=response.status_code,
            code=code,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    return GraphError(text, status_code=response.status_code, code=code)


class GraphClient:
    """Thin wrapper over httpx.AsyncClient scoped to one access token.

    Use as an async context manager so the connection pool is closed:

        async with GraphClient(token) as graph:
            await graph.patch(f"/users/{user_id}", {"accountEnabled": False})
    """

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        directory = get_config().directory

        self.retry_config = retry_config or RetryConfig(
            max_attempts=directory.max_attempts,
            backoff_base=directory.backoff_base,
            backoff_max=directory.backoff_max,
            retryable_exceptions=(TransientGraphError,),
        )
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.graph_base_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout or settings.graph_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Send one request, retrying transient failures.

        Returns the decoded JSON body, or None for empty responses (204).
        """

        async def _send() -> dict[str, Any] | None:
            try:
                response = await self._client.request(method, path, json=json, params=params)
            except httpx.TimeoutException as e:
                raise TransientGraphError(f"{method} {path} timed out") from e
            except httpx.TransportError as e:
                raise TransientGraphError(f"{method} {path} failed: {e}") from e

            if response.is_success:
                if response.status_code == 204 or not response.content:
                    return None
                return response.json()
            raise _error_from_response(method, path, response)

        return await retry_with_backoff(
            _send,
            config=self.retry_config,
            operation_name=f"graph:{method} {path}",
        )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("GET", path, params=params) or {}

    async def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any] | None:
        return await self.request("POST", path, json=json)

    async def patch(self, path: str, json: dict[str, Any]) -> dict[str, Any] | None:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> None:
        await self.request("DELETE", path)

    async def get_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """GET a collection, following @odata.nextLink until exhausted."""
        items: list[dict[str, Any]] = []
        next_path: str | None = path
        next_params = params

        while next_path:
            page = await self.get(next_path, params=next_params)
            items.extend(page.get("value", []))
            # nextLink is absolute and already carries the query
            next_path = page.get("@odata.nextLink")
            next_params = None

        return items
