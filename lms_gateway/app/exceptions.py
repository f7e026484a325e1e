"""Custom exceptions for the LMS gateway."""

from typing import Optional


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    Subclasses set ``status_code`` and ``error_code`` so that handlers can
    render a consistent ``{"error": ..., "message": ...}`` body.
    """
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class RateLimitExceededError(GatewayException):
    """A client has used up the token bucket for a traffic class.

    Maps to HTTP 429 Too Many Requests. The body is fixed so clients can
    match on the error code; the retry hint travels in ``Retry-After``.
    """
    status_code = 429
    error_code = "TOO_MANY_REQUESTS"

    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded. Please try again later.")

    @property
    def headers(self) -> dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(self.retry_after)}


class BucketNotFoundError(GatewayException):
    """Raised when an admin operation names a bucket key that does not exist.

    Maps to HTTP 404 Not Found.
    """
    status_code = 404
    error_code = "BUCKET_NOT_FOUND"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No rate limit bucket for key '{key}'")
