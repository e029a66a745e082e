from __future__ import annotations

from typing import Any, Optional


class LivenessError(RuntimeError):
    """Base class for every failure surfaced to liveness callers."""

    def __init__(self, message: str, *, diagnostic: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic


class MalformedInputError(LivenessError):
    """Raised when a request is missing fields or carries invalid base64 video."""


class PayloadTooLargeError(LivenessError):
    """Raised when decoded video exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Video payload exceeds max size ({size} > {limit} bytes)")
        self.size = size
        self.limit = limit


class TransportError(LivenessError):
    """Raised when the remote streaming call fails or ends early.

    `diagnostic` holds the raw payload the remote returned, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        diagnostic: Any = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, diagnostic=diagnostic)
        self.status_code = status_code


class SessionServiceError(LivenessError):
    """Raised when creating a session or fetching its result fails."""


class InvalidResultError(LivenessError):
    """Raised when an analysis result has a malformed confidence or status."""
