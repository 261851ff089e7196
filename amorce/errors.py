from __future__ import annotations

from typing import Any, Optional


class AmorceError(Exception):
    """Base class for every error raised by the SDK."""


class ConfigurationError(AmorceError):
    """Caller mistake detected before any I/O (bad URL, missing service_id)."""


class SecurityError(AmorceError):
    """Key loading, parsing or signing failure."""


class ValidationError(AmorceError):
    """Malformed protocol structure (bad priority, missing signature, bad body)."""


class NetworkError(AmorceError):
    """The retry budget ran out without a usable response.

    ``status_code`` and ``body`` hold the last retryable response when the
    failures were HTTP statuses; both are None when every attempt failed at
    the connection level (the original exception is chained as ``__cause__``).
    """

    def __init__(self, message: str, attempts: int, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code
        self.body = body


class APIError(AmorceError):
    """The server explicitly rejected the request with a non-retryable status."""

    def __init__(
        self,
        status_code: int,
        message: str,
        body: str = "",
        error_code: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.error_code = error_code
        self.request_id = request_id
        self.details = details
