"""Exception classes for the time-series database client."""

from typing import Any, Optional


class ClientError(Exception):
    """Base exception for all client errors."""
    pass


class ConfigValidationError(ClientError, ValueError):
    """Client configuration is invalid."""
    pass


class TransportError(ClientError):
    """
    The server could not be reached (DNS, connection, TLS, timeout).

    The underlying httpx exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class UnexpectedStatus(ClientError):
    """The server answered with a status other than the expected one."""

    def __init__(self, status_code: int, body: str = "", expected: int = 200):
        self.status_code = status_code
        self.body = body
        self.expected = expected
        super().__init__(
            f"API returned {status_code} as status when {expected} was expected: {body}"
        )


class MalformedPage(ClientError):
    """A decoded page does not have the shape the cursor was configured for."""
    pass


class MultiStatusPartialFailure(ClientError):
    """
    A multi-series write partially failed (HTTP 207).

    Attributes:
        status_code: Always 207
        multi_status: Decoded per-item status document from the server
    """

    def __init__(self, status_code: int, multi_status: Any):
        self.status_code = status_code
        self.multi_status = multi_status
        super().__init__(f"Multi-status response ({status_code}): {multi_status}")
