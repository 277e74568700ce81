"""Errors raised by the Glide record client."""

from typing import Optional

from app.constants.error_types import SyncErrorType, classify_status_code


class GlideApiError(Exception):
    """Non-2xx response or unusable payload from the Glide API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        error_type: Optional[SyncErrorType] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        default_type, default_retryable = classify_status_code(status_code) if status_code else (SyncErrorType.API_ERROR, False)
        self.error_type = error_type or default_type
        self.retryable = default_retryable if retryable is None else retryable


class GlideAuthError(GlideApiError):
    """Invalid API key or app permissions (401/403)."""


class GlideRateLimitError(GlideApiError):
    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message, status_code=429, body=body, error_type=SyncErrorType.RATE_LIMIT, retryable=True)


class GlideNetworkError(GlideApiError):
    """Transport failure; timeouts are flagged but stay retryable."""

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(message, error_type=SyncErrorType.NETWORK_ERROR, retryable=True)
        self.timeout = timeout
