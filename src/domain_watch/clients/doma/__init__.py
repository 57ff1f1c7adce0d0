"""Doma poll API client for domain lifecycle events."""

from domain_watch.clients.doma.client import DomaClient
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
from domain_watch.clients.doma.models import PollPage

__all__ = [
    "FATAL_ERRORS",
    "DomaAPIError",
    "DomaAuthenticationError",
    "DomaClient",
    "DomaConnectionError",
    "DomaError",
    "DomaPermissionError",
    "DomaRateLimitError",
    "DomaValidationError",
    "PollPage",
]
