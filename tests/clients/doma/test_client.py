"""Tests for the Doma poll API client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from domain_watch.clients.doma.client import DomaClient
from domain_watch.clients.doma.exceptions import (
    DomaAPIError,
    DomaAuthenticationError,
    DomaConnectionError,
    DomaPermissionError,
    DomaRateLimitError,
    DomaValidationError,
)

_BASE_URL = "https://api.test.doma.xyz/v1"


def _mock_response(status_code: int = 200, body: object = None) -> MagicMock:
    """Build a fake httpx response."""
    response = MagicMock()
    response.status_code = status_code
    response.content = b"" if body is None else b"{}"
    response.json.return_value = body
    return response


class TestDomaClient:
    """Test suite for DomaClient."""

    @pytest.fixture
    def client(self) -> DomaClient:
        """Create a DomaClient instance."""
        return DomaClient(api_key="test-key", base_url=f"{_BASE_URL}/")

    def test_initialization_strips_trailing_slash(self, client: DomaClient) -> None:
        """Normalise the base URL."""
        assert client.api_key == "test-key"
        assert client.base_url == _BASE_URL

    def test_from_config(self) -> None:
        """Build the client from the doma config section."""
        with patch("domain_watch.clients.doma.client.get_config") as mock_get_config:
            mock_get_config.return_value.get.side_effect = lambda k, default=None: {
                "doma.api_key": "cfg-key",
                "doma.base_url": _BASE_URL,
                "doma.timeout": 5,
            }.get(k, default)
            client = DomaClient.from_config()
        assert client.api_key == "cfg-key"
        assert client.base_url == _BASE_URL

    def test_from_config_requires_api_key(self) -> None:
        """Raise ValueError when no API key is configured."""
        with patch("domain_watch.clients.doma.client.get_config") as mock_get_config:
            mock_get_config.return_value.get.return_value = ""
            with pytest.raises(ValueError, match="doma.api_key not configured"):
                DomaClient.from_config()

    @pytest.mark.asyncio
    async def test_poll_sends_parameters_and_parses_page(self, client: DomaClient) -> None:
        """Send cursor, limit, types and auth header; parse the page."""
        body = {"events": [{"id": 11}, {"id": 12}], "lastId": 12, "hasMoreEvents": True}
        mock_request = AsyncMock(return_value=_mock_response(body=body))
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = mock_request
            page = await client.poll(after=10, limit=2, event_types=["NAME_TOKEN_MINTED"])

        assert page.last_id == 12
        assert page.has_more_events is True
        args = mock_request.call_args
        assert args.args == ("GET", f"{_BASE_URL}/poll")
        assert args.kwargs["params"] == {
            "limit": 2,
            "finalizedOnly": True,
            "eventTypes": ["NAME_TOKEN_MINTED"],
            "after": 10,
        }
        assert args.kwargs["headers"]["Api-Key"] == "test-key"

    @pytest.mark.asyncio
    async def test_poll_without_cursor_omits_after(self, client: DomaClient) -> None:
        """Let the server choose the position when no cursor is stored."""
        mock_request = AsyncMock(return_value=_mock_response(body={"events": []}))
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = mock_request
            await client.poll()
        assert "after" not in mock_request.call_args.kwargs["params"]
        assert "eventTypes" not in mock_request.call_args.kwargs["params"]

    @pytest.mark.asyncio
    async def test_ack_and_reset_paths(self, client: DomaClient) -> None:
        """Post to the ack and reset endpoints."""
        mock_request = AsyncMock(return_value=_mock_response())
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = mock_request
            await client.ack(12)
            await client.reset(5)
        urls = [call.args for call in mock_request.call_args_list]
        assert urls == [
            ("POST", f"{_BASE_URL}/poll/ack/12"),
            ("POST", f"{_BASE_URL}/poll/reset/5"),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error_cls"),
        [
            (400, DomaValidationError),
            (401, DomaAuthenticationError),
            (403, DomaPermissionError),
            (429, DomaRateLimitError),
            (500, DomaAPIError),
        ],
    )
    async def test_error_status_mapping(
        self, client: DomaClient, status: int, error_cls: type[DomaAPIError]
    ) -> None:
        """Map error statuses to typed exceptions."""
        response = _mock_response(status_code=status, body={"message": "nope"})
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = AsyncMock(return_value=response)
            with pytest.raises(error_cls, match="nope") as exc_info:
                await client.poll()
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, client: DomaClient) -> None:
        """Fall back to the status code when the error body is not JSON."""
        response = _mock_response(status_code=502)
        response.json.side_effect = ValueError("no json")
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = AsyncMock(return_value=response)
            with pytest.raises(DomaAPIError, match="HTTP 502"):
                await client.ack(1)

    @pytest.mark.asyncio
    async def test_network_failure_raises_connection_error(self, client: DomaClient) -> None:
        """Wrap transport errors in DomaConnectionError."""
        with patch.object(client, "_http_client") as mock_http:
            mock_http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(DomaConnectionError, match="HTTP request failed"):
                await client.poll()

    @pytest.mark.asyncio
    async def test_context_manager_closes_http_client(self) -> None:
        """Close the HTTP client on exit."""
        client = DomaClient(api_key="k")
        with patch.object(client, "_http_client") as mock_http:
            mock_http.aclose = AsyncMock()
            async with client as entered:
                assert entered is client
            mock_http.aclose.assert_awaited_once()
