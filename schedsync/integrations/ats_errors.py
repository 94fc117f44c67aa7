"""
Typed errors for ATS (iCIMS) API calls.
Every error carries status_code and is_retryable so the retry loop never
has to inspect messages.
"""
import json
from typing import Optional

DEFAULT_RETRY_AFTER_MS = 60_000


class AtsError(Exception):
    """Base ATS error. Unclassified 4xx responses land here (not retryable)."""

    def __init__(self, message: str, status_code: Optional[int] = None, is_retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_retryable = is_retryable


class RateLimitError(AtsError):
    def __init__(self, message: str, retry_after_ms: int = DEFAULT_RETRY_AFTER_MS):
        super().__init__(message, 429, True)
        self.retry_after_ms = retry_after_ms


class AuthError(AtsError):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message, status_code, False)


class NotFoundError(AtsError):
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found: {resource_id}", 404, False)
        self.resource_type = resource_type
        self.resource_id = resource_id


class BadRequestError(AtsError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, 400, False)
        self.details = details


class ServerError(AtsError):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message, status_code, True)


class NetworkError(AtsError):
    """Connection refused, reset, DNS, timeouts - anything before a status line."""

    def __init__(self, message: str):
        super().__init__(message, None, True)


class UnrecognizedResponseError(AtsError):
    """A 2xx body that matches none of the response shapes we know."""

    def __init__(self, message: str):
        super().__init__(message, None, False)


def classify_error(
    status_code: int,
    body: Optional[str] = None,
    retry_after: Optional[str] = None,
) -> AtsError:
    """Map a non-2xx response to the matching AtsError subclass."""
    message = f"ATS API error: {status_code}"
    details = None

    if body:
        try:
            parsed = json.loads(body)
        except ValueError:
            if len(body) < 200:
                message = body
        else:
            if isinstance(parsed, dict):
                message = str(parsed.get("error") or parsed.get("message") or message)
                details = parsed

    if status_code == 400:
        return BadRequestError(message, details)
    if status_code == 401:
        return AuthError("Unauthorized: Invalid or expired API key", 401)
    if status_code == 403:
        return AuthError("Forbidden: Insufficient permissions", 403)
    if status_code == 404:
        return NotFoundError("resource", "unknown")
    if status_code == 429:
        return RateLimitError(message, parse_retry_after(retry_after))
    if status_code >= 500:
        return ServerError(message, status_code)
    return AtsError(message, status_code, False)


def parse_retry_after(header: Optional[str]) -> int:
    """Retry-After in seconds -> milliseconds. Missing or junk values give the 60s default."""
    if header:
        try:
            seconds = int(header.strip())
        except ValueError:
            return DEFAULT_RETRY_AFTER_MS
        if seconds > 0:
            return seconds * 1000
    return DEFAULT_RETRY_AFTER_MS
