"""
Error taxonomy for SentimentAI.

Every expected failure carries the HTTP status and a machine-readable reason
so the API layer can map it without inspecting messages.
"""

from __future__ import annotations


class SentimentError(Exception):
    """Base class for all expected failures."""
    status_code = 500
    reason = "internal"

    def __init__(self, message: str = "Internal server error"):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class Unauthorized(SentimentError):
    """Missing or unknown API key."""
    status_code = 401
    reason = "unauthorized"

    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message)


class Forbidden(SentimentError):
    """Valid API key, but the resource belongs to another user."""
    status_code = 403
    reason = "forbidden"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(SentimentError):
    status_code = 404
    reason = "not_found"

    def __init__(self, message: str = "File not found"):
        super().__init__(message)


class InvalidInput(SentimentError):
    status_code = 400
    reason = "invalid_input"


class AlreadyAnalyzed(SentimentError):
    """The file has already been analyzed. Not retryable."""
    status_code = 409
    reason = "already_analyzed"

    def __init__(self, key: str):
        self.key = key
        super().__init__("File already analyzed")


class QuotaExceeded(SentimentError):
    """Monthly request quota is used up."""
    status_code = 429
    reason = "quota_exceeded"

    def __init__(self, user_id: str, used: int, limit: int):
        self.user_id = user_id
        self.used = used
        self.limit = limit
        super().__init__("Monthly quota exceeded")


class UpstreamUnavailable(SentimentError):
    """The inference server is unreachable or reports unhealthy."""
    status_code = 503
    reason = "upstream_unavailable"

    def __init__(self, message: str = "Local sentiment analysis model is not available"):
        super().__init__(message)


class UpstreamError(SentimentError):
    """The inference server is up but failed to analyze the video."""
    status_code = 502
    reason = "upstream_error"

    def __init__(self, message: str = "Video analysis failed", status: int | None = None):
        self.status = status
        super().__init__(message)


class StorageError(SentimentError):
    """A blob store or record store write failed."""
    status_code = 500
    reason = "internal"


class Internal(SentimentError):
    """Unexpected failure. Never carries internal detail to the caller."""

    def __init__(self):
        super().__init__("Internal server error")
