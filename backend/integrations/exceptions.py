"""Typed exception hierarchy for bank provider errors.

Every bank client translates transport-level failures into one of these
classes so the sync engine can reason about failures without knowing
which bank (or which HTTP library) produced them.
"""

from integrations.provider_protocol import ErrorCategory


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which bank failed.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.provider_name = provider_name
        self.status_code = status_code
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderAuthError(ProviderError):
    """The bank rejected an authorization code or client credentials.

    Raised by ``authenticate`` for any non-2xx response. ``status_code``
    lets callers tell "retry later" (429/5xx) from "credentials invalid".
    """

    category = ErrorCategory.AUTH


class ProviderAuthExpiredError(ProviderAuthError):
    """Access or refresh token is no longer valid (HTTP 401).

    Requires the user to re-authorize; never retried automatically.
    """

    category = ErrorCategory.AUTH_EXPIRED


class ProviderForbiddenError(ProviderAuthError):
    """Token is valid but lacks the required consent or scope (HTTP 403)."""

    category = ErrorCategory.FORBIDDEN


class ProviderRateLimitError(ProviderError):
    """Too many requests (HTTP 429)."""

    category = ErrorCategory.RATE_LIMITED

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, provider_name, status_code=429)


class ProviderUnavailableError(ProviderError):
    """Bank outage: HTTP 5xx, DNS failures, refused connections."""

    category = ErrorCategory.UNAVAILABLE

    @property
    def retriable(self) -> bool:
        return True


class ProviderTimeoutError(ProviderUnavailableError):
    """The bank did not answer within the configured timeout."""

    category = ErrorCategory.TIMEOUT


class ProviderUnknownError(ProviderError):
    """Anything else: unexpected status codes, malformed payloads."""

    category = ErrorCategory.UNKNOWN

    def __init__(
        self,
        reason: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.reason = reason
        super().__init__(reason, provider_name, status_code=status_code)
