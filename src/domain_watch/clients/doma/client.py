"""Async HTTP client for the Doma event poll API.

The poll API hands out pages of domain lifecycle events strictly after a
cursor, expects the consumer to acknowledge the high-water mark once the
page is stored, and supports rewinding the server-side cursor with a
reset call. This client follows the same shape as the other API clients:
async context manager, typed exceptions raised at the HTTP boundary.
"""

from collections.abc import Sequence
from typing import Any

import httpx

from domain_watch.clients.doma.exceptions import (
    DomaAPIError,
    DomaAuthenticationError,
    DomaConnectionError,
    DomaPermissionError,
    DomaRateLimitError,
    DomaValidationError,
)
from domain_watch.clients.doma.models import PollPage
from domain_watch.core.config import get_config

_HTTP_BAD_REQUEST = 400
_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429

_STATUS_ERRORS: dict[int, type[DomaAPIError]] = {
    _HTTP_BAD_REQUEST: DomaValidationError,
    _HTTP_UNAUTHORIZED: DomaAuthenticationError,
    _HTTP_FORBIDDEN: DomaPermissionError,
    _HTTP_TOO_MANY_REQUESTS: DomaRateLimitError,
}


class DomaClient:
    """Async HTTP client for the Doma ``/poll`` endpoints.

    Args:
        api_key: Doma API key with the EVENTS permission.
        base_url: Base URL for the Doma API.
        timeout: Request timeout in seconds.

    """

    BASE_URL = "https://api-testnet.doma.xyz/v1"

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the Doma client.

        Args:
            api_key: Doma API key.
            base_url: Base URL for the Doma API.
            timeout: Request timeout in seconds.

        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http_client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls) -> "DomaClient":
        """Create a client from the ``doma`` configuration section.

        Returns:
            Configured DomaClient instance.

        Raises:
            ValueError: If the API key is not configured.

        """
        config = get_config()
        api_key = config.get("doma.api_key")
        if not api_key:
            raise ValueError("doma.api_key not configured (set DOMA_API_KEY)")

        return cls(
            api_key=api_key,
            base_url=config.get("doma.base_url", cls.BASE_URL),
            timeout=float(config.get("doma.timeout", 10.0)),
        )

    async def poll(
        self,
        *,
        after: int | None = None,
        limit: int = 100,
        event_types: Sequence[str] = (),
        finalized_only: bool = True,
    ) -> PollPage:
        """Fetch the next page of events strictly after ``after``.

        Args:
            after: Cursor; omit to start from the server-side position.
            limit: Maximum number of events in the page.
            event_types: Event types to request; empty means all types.
            finalized_only: Only return events from finalized blocks.

        Returns:
            The parsed ``PollPage``.

        Raises:
            DomaAPIError: When the API returns an error or is unreachable.

        """
        params: dict[str, Any] = {
            "limit": limit,
            "finalizedOnly": finalized_only,
        }
        if event_types:
            params["eventTypes"] = list(event_types)
        if after is not None:
            params["after"] = after
        data = await self._request("GET", "/poll", params=params)
        return PollPage.from_response(data)

    async def ack(self, event_id: int) -> None:
        """Acknowledge that every event up to ``event_id`` has been stored.

        Args:
            event_id: High-water mark of the stored page.

        Raises:
            DomaAPIError: When the API returns an error or is unreachable.

        """
        await self._request("POST", f"/poll/ack/{event_id}")

    async def reset(self, event_id: int) -> None:
        """Rewind the server-side poll cursor to ``event_id``.

        Args:
            event_id: Event identifier to resume after.

        Raises:
            DomaAPIError: When the API returns an error or is unreachable.

        """
        await self._request("POST", f"/poll/reset/{event_id}")

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send an authenticated request and return parsed JSON.

        Args:
            method: HTTP method.
            path: Request path relative to base_url.
            params: Query parameters.

        Returns:
            Parsed JSON response, or ``None`` for an empty body.

        Raises:
            DomaConnectionError: When no response was received.
            DomaAPIError: When the API returns an error response.

        """
        url = f"{self.base_url}{path}"
        headers = {"Api-Key": self.api_key, "Accept": "application/json"}
        try:
            response = await self._http_client.request(
                method, url, params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            raise DomaConnectionError(msg=f"HTTP request failed: {exc}") from exc

        if response.status_code >= _HTTP_BAD_REQUEST:
            self._handle_error(response)

        if not response.content:
            return None
        result: Any = response.json()
        return result

    @staticmethod
    def _handle_error(response: httpx.Response) -> None:
        """Raise the typed DomaAPIError matching an error response.

        Args:
            response: HTTP response with a non-2xx status code.

        Raises:
            DomaValidationError: For 400 errors.
            DomaAuthenticationError: For 401 errors.
            DomaPermissionError: For 403 errors.
            DomaRateLimitError: For 429 errors.
            DomaAPIError: For other errors.

        """
        try:
            data = response.json()
            msg: str = data.get("message", f"HTTP {response.status_code}")
        except Exception:
            msg = f"HTTP {response.status_code}"
        error_cls = _STATUS_ERRORS.get(response.status_code, DomaAPIError)
        raise error_cls(msg=msg, status_code=response.status_code)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> "DomaClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()
