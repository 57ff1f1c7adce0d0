"""Tests for the Doma exception hierarchy."""

import pytest

from domain_watch.clients.doma.exceptions import (
    FATAL_ERRORS,
    DomaAPIError,
    DomaAuthenticationError,
    DomaConnectionError,
    DomaError,
    DomaPermissionError,
    DomaRateLimitError,
    DomaValidationError,
)

_STATUS_UNAUTHORIZED = 401


class TestDomaAPIError:
    """Test suite for DomaAPIError."""

    def test_inherits_from_base(self) -> None:
        """DomaAPIError is a DomaError."""
        assert issubclass(DomaAPIError, DomaError)

    def test_attributes(self) -> None:
        """Store msg and status_code."""
        error = DomaAPIError(msg="Invalid key", status_code=_STATUS_UNAUTHORIZED)
        assert error.msg == "Invalid key"
        assert error.status_code == _STATUS_UNAUTHORIZED
        assert str(error) == "[401] Invalid key"

    def test_without_status_code(self) -> None:
        """Format as the bare message when no response arrived."""
        error = DomaConnectionError(msg="timed out")
        assert error.status_code is None
        assert str(error) == "timed out"


class TestFatalErrors:
    """Classification of errors that retrying cannot fix."""

    @pytest.mark.parametrize(
        "error_cls", [DomaValidationError, DomaAuthenticationError, DomaPermissionError]
    )
    def test_fatal(self, error_cls: type[DomaAPIError]) -> None:
        """Bad request, unauthorized and forbidden are fatal."""
        assert issubclass(error_cls, FATAL_ERRORS)

    @pytest.mark.parametrize("error_cls", [DomaRateLimitError, DomaConnectionError, DomaAPIError])
    def test_transient(self, error_cls: type[DomaAPIError]) -> None:
        """Rate limits, network failures and server errors are transient."""
        assert not issubclass(error_cls, FATAL_ERRORS)
