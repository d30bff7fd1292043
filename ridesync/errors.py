"""Custom exception hierarchy and failure classification for ridesync."""

from __future__ import annotations

from typing import Any

import httpx

RETRYABLE_STATUS_CODES = frozenset({502, 503, 504})


class RideSyncError(Exception):
    """Base exception for ridesync failures."""


class ApiError(RideSyncError):
    """Raised when the backend answers with an error status or `success: false`."""

    def __init__(
        self,
        status: int,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.status = status
        self.message = message
        self.payload = payload or {}
        if message:
            super().__init__(f'status={status}: {message}')
        else:
            super().__init__(f'status={status}')

    @property
    def requires_verification(self) -> bool:
        return bool(self.payload.get('requiresVerification'))

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUS_CODES


class AuthError(ApiError):
    """Raised for 401/403 responses (expired or rejected credentials)."""


class TransportError(RideSyncError):
    """Raised when network or protocol-level failures occur."""

    def __init__(self, original: Exception) -> None:
        self.original = original
        super().__init__(str(original) or type(original).__name__)

    @property
    def is_timeout(self) -> bool:
        return isinstance(self.original, httpx.TimeoutException)

    @property
    def retryable(self) -> bool:
        return isinstance(self.original, (httpx.TransportError, TimeoutError, ConnectionError))


class StorageError(RideSyncError):
    """Raised when the durable key-value store fails to read or write."""

    def __init__(self, operation: str, key: str | None, original: Exception) -> None:
        self.operation = operation
        self.key = key
        self.original = original
        target = f' {key!r}' if key is not None else ''
        super().__init__(f'{operation}{target} failed: {original}')


class FetchCancelled(RideSyncError):
    """Raised by the retry executor when its cancel token has been set."""


def is_retryable(exc: BaseException) -> bool:
    """Return True for transient failures: 502/503/504, connection errors, timeouts."""
    if isinstance(exc, (ApiError, TransportError)):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError))


def user_message(exc: BaseException) -> str:
    """Human-readable description of a failure, suitable for a banner."""
    if isinstance(exc, ApiError):
        if exc.status == 502:
            return (
                'Server is temporarily unavailable. This might be due to a cold start. '
                'Please try again in a few seconds.'
            )
        if exc.status == 503:
            return 'Service is temporarily unavailable. Please try again in a moment.'
        return exc.message or f'Request failed with status {exc.status}.'
    if isinstance(exc, TransportError):
        if exc.is_timeout:
            return 'Request timed out. The server might be starting up. Please try again.'
        return 'Network error. Please check your internet connection.'
    return 'Something went wrong. Please try again.'
