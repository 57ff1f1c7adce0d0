"""Exception hierarchy for Doma poll API errors.

A base exception class with an API error that carries the HTTP status
code, specialised per status so the poller can tell errors that retrying
cannot fix (bad request, unauthorized, forbidden) from transient ones.
"""


class DomaError(Exception):
    """Base exception for all Doma client errors."""


class DomaAPIError(DomaError):
    """Error returned by (or while calling) the Doma API.

    Args:
        msg: Human-readable description of the error.
        status_code: HTTP status code, or ``None`` when no response arrived.

    """

    def __init__(self, msg: str, status_code: int | None = None) -> None:
        """Initialize Doma API error.

        Args:
            msg: Human-readable description of the error.
            status_code: HTTP status code from the API response.

        """
        super().__init__(f"[{status_code}] {msg}" if status_code is not None else msg)
        self.msg = msg
        self.status_code = status_code


class DomaValidationError(DomaAPIError):
    """Malformed request (400): parameters or event types were rejected."""


class DomaAuthenticationError(DomaAPIError):
    """Invalid or missing API key (401)."""


class DomaPermissionError(DomaAPIError):
    """API key lacks the EVENTS permission (403)."""


class DomaRateLimitError(DomaAPIError):
    """Rate limit exceeded (429)."""


class DomaConnectionError(DomaAPIError):
    """Network failure or timeout before any response was received."""


FATAL_ERRORS: tuple[type[DomaAPIError], ...] = (
    DomaValidationError,
    DomaAuthenticationError,
    DomaPermissionError,
)
