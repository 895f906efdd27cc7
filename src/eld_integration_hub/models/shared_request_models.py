# eld_integration_hub/models/shared_request_models.py
"""
Provider-agnostic request specification models.

This module defines the contract between EndpointDefinitions (which build
request specs) and the ProviderHttpClient (which executes them). The client
never needs to know about provider-specific auth patterns or pagination.
"""

import logging
from enum import Enum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    'DEFAULT_RETRY_AFTER_SECONDS',
    'HTTPMethod',
    'RateLimitInfo',
    'RequestSpec',
]

logger: logging.Logger = logging.getLogger(__name__)

# Providers that omit Retry-After on a 429 are treated as asking for a minute.
DEFAULT_RETRY_AFTER_SECONDS: Final[float] = 60.0


class HTTPMethod(str, Enum):
    """Supported HTTP methods for provider API requests."""

    GET = 'GET'
    POST = 'POST'
    PATCH = 'PATCH'
    PUT = 'PUT'
    DELETE = 'DELETE'


class RequestSpec(BaseModel):
    """
    Complete specification for an HTTP request.

    The EndpointDefinition (or an adapter, for one-off calls such as token
    exchange) builds the spec; the client executes it and maps the response
    status onto the error hierarchy.

    Attributes:
        url: Complete URL ready for HTTP request.
        method: HTTP method.
        headers: All headers including authentication.
        query_params: Serialized query parameters (all strings).
        body: JSON request body, or None.
        form_body: Form-encoded request body (OAuth token endpoints), or None.
        timeout: Tuple of (connect_timeout, read_timeout) in seconds.
        allow_not_found: Return None on HTTP 404 instead of raising.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    url: str
    method: HTTPMethod = HTTPMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    query_params: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] | None = None
    form_body: dict[str, str] | None = None

    timeout: tuple[float, float] = Field(
        default=(10.0, 30.0),
        description='(connect_timeout, read_timeout) in seconds',
    )
    allow_not_found: bool = False


class RateLimitInfo(BaseModel):
    """
    Rate limit metadata extracted from HTTP response headers.

    Attributes:
        retry_after_seconds: Seconds the provider asked us to wait.
        limit: Maximum requests allowed in the rate limit window.
        remaining: Requests remaining in current window.
        reset_at_unix: Unix timestamp when the rate limit resets.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    retry_after_seconds: float = DEFAULT_RETRY_AFTER_SECONDS
    limit: int | None = None
    remaining: int | None = None
    reset_at_unix: int | None = None

    @classmethod
    def from_response_headers(cls, headers: dict[str, str]) -> 'RateLimitInfo':
        """
        Extract rate limit information from HTTP response headers.

        Header lookup is case-insensitive. Unparseable values fall back to
        defaults rather than masking the 429 with a parsing error.

        Args:
            headers: HTTP response headers dictionary.

        Returns:
            RateLimitInfo with parsed values; retry_after_seconds defaults to
            60 when Retry-After is missing or not numeric.
        """
        normalized_headers: dict[str, str] = {
            key.lower(): value for key, value in headers.items()
        }

        retry_after_raw: str | None = normalized_headers.get('retry-after')
        limit_raw: str | None = normalized_headers.get('x-ratelimit-limit')
        remaining_raw: str | None = normalized_headers.get('x-ratelimit-remaining')
        reset_raw: str | None = normalized_headers.get('x-ratelimit-reset')

        return cls(
            retry_after_seconds=_parse_float(
                retry_after_raw, DEFAULT_RETRY_AFTER_SECONDS
            ),
            limit=_parse_int(limit_raw),
            remaining=_parse_int(remaining_raw),
            reset_at_unix=_parse_int(reset_raw),
        )

    @property
    def is_exhausted(self) -> bool:
        """Check if rate limit is completely exhausted."""
        return self.remaining is not None and self.remaining <= 0


def _parse_float(raw_value: str | None, default: float) -> float:
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        logger.debug('Ignoring non-numeric Retry-After header: %r', raw_value)
        return default


def _parse_int(raw_value: str | None) -> int | None:
    if raw_value is None:
        return None
    try:
        return int(raw_value)
    except ValueError:
        return None
