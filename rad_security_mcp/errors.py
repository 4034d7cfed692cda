from __future__ import annotations

from typing import Any


class RadSecurityError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(RadSecurityError):
    """Caller supplied structurally invalid input."""


class NotFoundError(RadSecurityError):
    """A requested resource (or every resource of a batch) could not be resolved."""


class AuthError(RadSecurityError):
    """Credentials are missing or the token exchange failed."""


class UpstreamError(RadSecurityError):
    def __init__(self, status: int, payload: Any, message: str | None = None):
        super().__init__(message or f"RAD Security API error {status}: {payload}")
        self.status = status
        self.payload = payload


class RadQLError(UpstreamError):
    """An upstream failure rewritten with actionable RadQL guidance."""

    def __init__(self, message: str, original: UpstreamError):
        super().__init__(original.status, original.payload, message=message)
        self.original = original


class RunTimeoutError(RadSecurityError, TimeoutError):
    def __init__(self, message: str, elapsed: float, last_status: str | None):
        super().__init__(message)
        self.elapsed = elapsed
        self.last_status = last_status
