"""Domain errors raised by the shared engine.

Each error carries the HTTP status the API maps it to, so routers can
branch on the class instead of parsing messages.
"""

from __future__ import annotations


class CastCueError(Exception):
    """Base class for errors the engine raises on purpose."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        self.message = message
        super().__init__(message)


# ==================== Not found ====================


class NotFoundError(CastCueError):
    status_code = 404
    error_code = "NOT_FOUND"


class DraftNotFoundError(NotFoundError):
    error_code = "DRAFT_NOT_FOUND"


class StreamNotFoundError(NotFoundError):
    error_code = "STREAM_NOT_FOUND"


class LinkNotFoundError(NotFoundError):
    error_code = "LINK_NOT_FOUND"


# ==================== Policy ====================


class PolicyDeniedError(CastCueError):
    """An explicit rejection callers are expected to branch on."""

    status_code = 403
    error_code = "POLICY_DENIED"


class RedirectTargetDeniedError(PolicyDeniedError):
    error_code = "REDIRECT_TARGET_DENIED"

    def __init__(self, target_url: str) -> None:
        self.target_url = target_url
        super().__init__(f"Redirect target not allowed: {target_url}")


# ==================== Upstream / capacity ====================


class UpstreamError(CastCueError):
    """Platform API timeout, transport failure or 5xx. Retry on the next trigger."""

    status_code = 502
    error_code = "UPSTREAM_UNAVAILABLE"


class ShortCodeExhaustedError(CastCueError):
    error_code = "SHORT_CODE_EXHAUSTED"

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Failed to generate a unique short code after {attempts} attempts")
