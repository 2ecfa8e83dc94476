"""Custom exception hierarchy for paysync."""

from __future__ import annotations


class PaySyncError(Exception):
    """Base exception for all paysync errors."""


class ConfigError(PaySyncError):
    """Invalid or missing configuration."""


class TransportError(PaySyncError):
    """HTTP-level failure (network, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ApiError(PaySyncError):
    """The backend answered with an application-level error."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class AuthenticationError(ApiError):
    """No identity token available, or the backend rejected it (401/403)."""


class PushChannelError(PaySyncError):
    """Push channel unavailable (not connected, broker refused, send failed).

    Never fatal: registrations are queued and the pull fallback takes over.
    """


class PayloadError(PaySyncError):
    """A push or pull payload failed shape validation."""
