# eld_integration_hub/errors.py
"""
Exception hierarchy for the ELD integration core.

Every failure the core can raise internally is an ELDError. Service methods
catch these at their boundary and convert them into ServiceResult objects,
so the hosting application never has to handle raw exceptions.

Design Decisions:
-----------------
- AuthError is an APIError so it still carries the HTTP status, but it is NOT
  a TransientAPIError: retrying a 401 with the same token cannot succeed.
  The orchestrator refreshes the token instead.

- RateLimitError is transient, so the HTTP client retries it within the
  provider's Retry-After budget. When the budget is exceeded the error
  propagates with its RateLimitInfo intact, letting callers defer.

- RecordValidationError and MappingError are per-record errors. They are
  counted and skipped by the sync orchestrator; they never abort a pass.
"""

from typing import Final

from eld_integration_hub.models.shared_request_models import RateLimitInfo

__all__: list[str] = [
    'APIError',
    'AuthError',
    'ELDError',
    'MappingError',
    'OAuthStateError',
    'ProviderNotFoundError',
    'RateLimitError',
    'RecordValidationError',
    'TransientAPIError',
    'UnsupportedCapabilityError',
]

HTTP_STATUS_UNAUTHORIZED: Final[int] = 401
HTTP_STATUS_RATE_LIMITED: Final[int] = 429


# =============================================================================
# Base
# =============================================================================


class ELDError(Exception):
    """
    Root of the ELD error hierarchy.

    Attributes:
        code: Short machine-readable error code (e.g., 'AUTH_ERROR').
    """

    default_code: str = 'ELD_ERROR'

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code: str = code or self.default_code


# =============================================================================
# Provider API Errors
# =============================================================================


class APIError(ELDError):
    """
    Raised for non-2xx provider responses and unusable response bodies.

    Attributes:
        status_code: HTTP status code if available, None for transport errors.
        response_body: Raw (truncated) response body for debugging.
    """

    default_code = 'API_ERROR'

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code
        self.response_body: str | None = response_body


class TransientAPIError(APIError):
    """
    Raised for errors that are worth retrying.

    This includes timeouts, connection errors, and server errors (5xx).
    """

    default_code = 'TRANSIENT_API_ERROR'


class RateLimitError(TransientAPIError):
    """
    Raised when a provider rate limit is exceeded (HTTP 429).

    Attributes:
        rate_limit_info: Parsed rate limit headers including retry_after_seconds.
    """

    default_code = 'RATE_LIMITED'

    def __init__(self, rate_limit_info: RateLimitInfo) -> None:
        super().__init__(
            f'Rate limit exceeded, retry after {rate_limit_info.retry_after_seconds}s',
            status_code=HTTP_STATUS_RATE_LIMITED,
        )
        self.rate_limit_info: RateLimitInfo = rate_limit_info

    @property
    def retry_after_seconds(self) -> float:
        """Seconds the provider asked callers to wait."""
        return self.rate_limit_info.retry_after_seconds


class AuthError(APIError):
    """Raised for invalid or expired credentials, codes, or tokens."""

    default_code = 'AUTH_ERROR'

    def __init__(
        self,
        message: str = 'Invalid or expired credentials',
        status_code: int | None = HTTP_STATUS_UNAUTHORIZED,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, response_body=response_body)


# =============================================================================
# Record-Level Errors
# =============================================================================


class RecordValidationError(ELDError):
    """
    Raised when a provider record cannot be converted to canonical shape.

    Attributes:
        external_id: Provider identifier of the offending record, if known.
    """

    default_code = 'VALIDATION_ERROR'

    def __init__(self, message: str, external_id: str | None = None) -> None:
        super().__init__(message)
        self.external_id: str | None = external_id


class MappingError(ELDError):
    """Raised when an external id has no resolvable local entity."""

    default_code = 'MAPPING_ERROR'

    def __init__(self, entity_type: str, external_id: str) -> None:
        super().__init__(f'No local {entity_type} mapped for external id {external_id!r}')
        self.entity_type: str = entity_type
        self.external_id: str = external_id


# =============================================================================
# Registry / Flow Errors
# =============================================================================


class UnsupportedCapabilityError(ELDError):
    """Raised when an adapter is asked for a capability it does not declare."""

    default_code = 'UNSUPPORTED_CAPABILITY'

    def __init__(self, provider_id: str, capability: str) -> None:
        super().__init__(f'Provider {provider_id!r} does not support {capability!r}')
        self.provider_id: str = provider_id
        self.capability: str = capability


class ProviderNotFoundError(ELDError):
    """
    Raised when a provider id is not in the registry.

    Attributes:
        provider: The provider id that was not found.
        available_providers: Valid provider ids.
    """

    default_code = 'UNKNOWN_PROVIDER'

    def __init__(self, provider: str, available_providers: list[str]) -> None:
        super().__init__(
            f"Provider '{provider}' not found. "
            f'Available: {", ".join(sorted(available_providers))}'
        )
        self.provider: str = provider
        self.available_providers: list[str] = available_providers


class OAuthStateError(ELDError):
    """Raised when an OAuth state parameter is malformed or too old."""

    default_code = 'INVALID_STATE'
