"""Typed failures raised by the external service clients."""


class PortError(Exception):
    """Base error for any capability port or gateway call."""

    def __init__(self, port: str, message: str):
        super().__init__(f"[{port}] {message}")
        self.port = port
        self.message = message


class RateLimitError(PortError):
    """HTTP 429 or quota exhausted."""


class AuthenticationError(PortError):
    """Rejected credentials (HTTP 401/403)."""


class MalformedResponseError(PortError):
    """Response body did not have the expected shape."""


class PortTimeoutError(PortError):
    """The request did not complete in time."""


class PortUnavailableError(PortError):
    """Network failure or 5xx answer."""


class NotConfiguredError(PortError):
    """The client has no credentials."""


class ContentViolationError(PortError):
    """The service refused the prompt on content-policy grounds."""


def error_for_status(port: str, status: int, body: str) -> PortError:
    """Map an unexpected HTTP status to the matching error type."""
    message = f"HTTP {status}: {body[:300]}"
    if status == 429:
        return RateLimitError(port, message)
    if status in (401, 403):
        return AuthenticationError(port, message)
    if status >= 500:
        return PortUnavailableError(port, message)
    return MalformedResponseError(port, message)


# Failures worth another attempt after a pause.
TRANSIENT_ERRORS = (RateLimitError, PortTimeoutError, PortUnavailableError)
