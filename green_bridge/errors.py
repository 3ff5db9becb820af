"""
Provider Error Types.

Structured exceptions for Green API failures. Pollers decide their backoff
from the exception class, never from the message text.
"""

from __future__ import annotations

from typing import Mapping, Optional

MIN_RETRY_AFTER_SECONDS = 1
MAX_RETRY_AFTER_SECONDS = 3600
MAX_BODY_CHARS = 500


class ProviderError(RuntimeError):
    """
    Base class for every failure talking to the provider.

    Attributes:
        operation: Provider operation name (e.g. "receiveNotification")
        status_code: HTTP status code, when a response was received
        body: Response body text (truncated), when a response was received
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        self.message = message
        self.body = _truncate(body) if body else None

        prefix = f"{operation} failed"
        if status_code is not None:
            prefix += f" ({status_code})"
        super().__init__(f"{prefix}: {message}")


class TransportError(ProviderError):
    """Network unreachable, DNS failure or timeout."""


class ProtocolError(ProviderError):
    """Unexpected payload shape or JSON parse failure."""


class ProviderHTTPError(ProviderError):
    """Non-success HTTP status from the provider."""

    def is_rate_limit(self) -> bool:
        return self.status_code == 429

    def is_server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class RateLimitError(ProviderHTTPError):
    """HTTP 429. Never to be read as a state change."""

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = 429,
        body: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(operation, message, status_code=status_code, body=body)
        self.retry_after = retry_after


class ServerError(ProviderHTTPError):
    """HTTP 5xx."""


def _truncate(body: str) -> str:
    return body[:MAX_BODY_CHARS] + ("..." if len(body) > MAX_BODY_CHARS else "")


def parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    """
    Parse a Retry-After header given in seconds.

    Returns the clamped number of seconds, or None when absent or not numeric.
    """
    if not headers:
        return None
    headers_lower = {k.lower(): v for k, v in headers.items()}
    raw = headers_lower.get("retry-after")
    if not raw:
        return None
    try:
        seconds = int(str(raw).strip())
    except ValueError:
        return None
    return max(MIN_RETRY_AFTER_SECONDS, min(seconds, MAX_RETRY_AFTER_SECONDS))


def error_for_status(
    operation: str,
    status_code: int,
    body: str = "",
    headers: Optional[Mapping[str, str]] = None,
) -> ProviderHTTPError:
    """Build the error class matching an HTTP status."""
    message = (body or "").strip() or f"HTTP {status_code}"
    if status_code == 429:
        return RateLimitError(
            operation,
            message,
            status_code=status_code,
            body=body,
            retry_after=parse_retry_after(headers),
        )
    if status_code >= 500:
        return ServerError(operation, message, status_code=status_code, body=body)
    return ProviderHTTPError(operation, message, status_code=status_code, body=body)
