# eld_integration_hub/client.py
"""
Provider-agnostic HTTP client for ELD APIs.

This client executes RequestSpec objects without knowing anything about the
provider that created them. URL construction, authentication headers,
record extraction and pagination all live in the EndpointDefinition; the
adapters build one-off specs (OAuth token exchange) themselves.

Status Mapping:
---------------
- 401: AuthError (not retried; the caller refreshes the token)
- 429: RateLimitError carrying Retry-After (default 60s)
- 5xx, timeouts, connection errors: TransientAPIError
- 404 on a spec with allow_not_found: None
- any other non-2xx: APIError

Retry Behavior:
---------------
Transient failures are retried with tenacity. Rate limits wait exactly as
long as the provider asked; other failures back off exponentially. A
Retry-After longer than `max_retry_after_seconds` stops retrying at once so
the sync orchestrator can defer the pass instead of blocking a worker.
"""

import logging
import time
from collections.abc import Callable, Iterator
from ssl import SSLContext
from types import TracebackType
from typing import Any, Final, Self

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.stop import stop_base

from eld_integration_hub.common import build_truststore_ssl_context
from eld_integration_hub.config import HttpConfig
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    RateLimitError,
    TransientAPIError,
)
from eld_integration_hub.models import (
    EndpointDefinition,
    PaginationState,
    ParsedResponse,
    RateLimitInfo,
    RawRecord,
    RequestCredentials,
    RequestSpec,
)

__all__: list[str] = ['ProviderHttpClient']

logger: logging.Logger = logging.getLogger(__name__)

HTTP_STATUS_NO_CONTENT: Final[int] = 204
HTTP_STATUS_UNAUTHORIZED: Final[int] = 401
HTTP_STATUS_NOT_FOUND: Final[int] = 404
HTTP_STATUS_RATE_LIMITED: Final[int] = 429
HTTP_STATUS_SERVER_ERROR_MIN: Final[int] = 500
HTTP_STATUS_SERVER_ERROR_MAX: Final[int] = 599

# Hard ceiling on pages per fetch_all call; a provider that keeps returning
# cursors forever must not hang a sync worker.
MAX_PAGES_PER_FETCH: Final[int] = 10_000

RESPONSE_BODY_LOG_LIMIT: Final[int] = 500


# =============================================================================
# Custom Retry Strategies
# =============================================================================


def _wait_for_rate_limit_or_exponential(
    multiplier: float,
    max_seconds: float,
) -> Callable[[RetryCallState], float]:
    """
    Build a wait strategy that honors Retry-After for rate limits.

    Args:
        multiplier: Base of the exponential backoff in seconds.
        max_seconds: Cap on a single exponential wait.

    Returns:
        Tenacity wait callable.
    """

    def wait(retry_state: RetryCallState) -> float:
        exception: BaseException | None = (
            retry_state.outcome.exception() if retry_state.outcome else None
        )

        if isinstance(exception, RateLimitError):
            return exception.retry_after_seconds

        exponential_wait: float = multiplier * (2 ** (retry_state.attempt_number - 1))
        return min(exponential_wait, max_seconds)

    return wait


class stop_when_retry_after_exceeds(stop_base):  # noqa: N801
    """Stop immediately when a provider asks for a wait longer than the budget."""

    def __init__(self, max_retry_after_seconds: float) -> None:
        self.max_retry_after_seconds: float = max_retry_after_seconds

    def __call__(self, retry_state: RetryCallState) -> bool:
        exception: BaseException | None = (
            retry_state.outcome.exception() if retry_state.outcome else None
        )
        if isinstance(exception, RateLimitError):
            return exception.retry_after_seconds > self.max_retry_after_seconds
        return False


# =============================================================================
# HTTP Client
# =============================================================================


class ProviderHttpClient:
    """
    Executes RequestSpecs and drives endpoint pagination.

    One instance is created per adapter (and therefore per connection), so
    concurrent syncs of different connections never share mutable state.

    Example:
        >>> with ProviderHttpClient(HttpConfig()) as client:
        ...     records = client.fetch_all(MotiveEndpoints.VEHICLES, credentials)
    """

    def __init__(
        self,
        http_config: HttpConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the client.

        Args:
            http_config: Retry, TLS and pooling settings. Defaults apply when
                None.
            http_client: Pre-built httpx.Client (tests pass one wired to an
                httpx.MockTransport). When None, one is built from
                http_config and owned by this instance.
            sleep: Function used to wait between retries.

        Raises:
            RuntimeError: If use_truststore is set and truststore is missing.
        """
        self._config: HttpConfig = http_config or HttpConfig()
        self._sleep: Callable[[float], None] = sleep
        self._owns_http_client: bool = http_client is None

        if http_client is None:
            http_client = httpx.Client(
                verify=self._build_ssl_context(),
                limits=httpx.Limits(
                    max_keepalive_connections=self._config.pool_connections,
                    max_connections=self._config.pool_maxsize,
                ),
            )
        self._http_client: httpx.Client = http_client

    def _build_ssl_context(self) -> SSLContext | bool | str:
        if self._config.use_truststore:
            logger.debug('Building SSLContext from OS truststore')
            return build_truststore_ssl_context()
        return self._config.verify_ssl

    def _build_retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(TransientAPIError),
            wait=_wait_for_rate_limit_or_exponential(
                self._config.backoff_multiplier,
                self._config.backoff_max_seconds,
            ),
            stop=(
                stop_after_attempt(self._config.max_attempts)
                | stop_when_retry_after_exceeds(self._config.max_retry_after_seconds)
            ),
            sleep=self._sleep,
            reraise=True,
        )

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying httpx.Client if this instance created it."""
        if self._owns_http_client:
            self._http_client.close()
            logger.debug('ProviderHttpClient closed')

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Fetch Methods
    # -------------------------------------------------------------------------

    def fetch_page(
        self,
        endpoint: EndpointDefinition,
        credentials: RequestCredentials,
        pagination_state: PaginationState | None = None,
        **params: Any,
    ) -> ParsedResponse:
        """
        Fetch and parse a single page from any endpoint.

        Args:
            endpoint: Self-describing endpoint definition.
            credentials: Base URL, token and timeout.
            pagination_state: State from the previous page; None for the first.
            **params: Path and query parameters for the endpoint.

        Returns:
            ParsedResponse with raw records and the next pagination state.

        Raises:
            AuthError: On HTTP 401.
            RateLimitError: When rate limited beyond the retry budget.
            TransientAPIError: After exhausting retries.
            APIError: For other non-2xx responses or unparseable bodies.
        """
        request_spec: RequestSpec = endpoint.build_request_spec(
            credentials=credentials,
            pagination_state=pagination_state,
            **params,
        )
        response_json: Any = self.send(request_spec)
        return endpoint.parse_response(response_json)

    def iter_pages(
        self,
        endpoint: EndpointDefinition,
        credentials: RequestCredentials,
        **params: Any,
    ) -> Iterator[ParsedResponse]:
        """
        Yield every page of an endpoint until pagination is exhausted.

        Stops early, with a warning, if the provider repeats a cursor or the
        page ceiling is reached.
        """
        pagination_state: PaginationState | None = None
        seen_page_params: set[tuple[tuple[str, str], ...]] = set()
        page_count: int = 0
        total_items: int = 0

        while True:
            response: ParsedResponse = self.fetch_page(
                endpoint, credentials, pagination_state=pagination_state, **params
            )

            page_count += 1
            total_items += response.item_count

            logger.debug(
                'Page %d: %d items (running total: %d)',
                page_count,
                response.item_count,
                total_items,
            )

            yield response

            if not response.has_more:
                break

            page_key: tuple[tuple[str, str], ...] = tuple(
                sorted(
                    (key, str(value))
                    for key, value in response.pagination.next_page_params.items()
                )
            )
            if page_key in seen_page_params:
                logger.warning(
                    'Provider repeated pagination params %r for %r; stopping',
                    page_key,
                    endpoint.endpoint_path,
                )
                break
            if page_count >= MAX_PAGES_PER_FETCH:
                logger.warning(
                    'Page ceiling (%d) reached for %r; stopping',
                    MAX_PAGES_PER_FETCH,
                    endpoint.endpoint_path,
                )
                break

            seen_page_params.add(page_key)
            pagination_state = response.pagination

        logger.debug(
            'Pagination complete for %r: %d items across %d pages',
            endpoint.build_resource_path(**_path_params_only(endpoint, params)),
            total_items,
            page_count,
        )

    def fetch_all(
        self,
        endpoint: EndpointDefinition,
        credentials: RequestCredentials,
        **params: Any,
    ) -> list[RawRecord]:
        """
        Fetch every record of an endpoint into a single list.

        Adapters always return fully materialized lists, so this is the
        method they use.
        """
        records: list[RawRecord] = []
        for page in self.iter_pages(endpoint, credentials, **params):
            records.extend(page.items)
        return records

    def fetch_one(
        self,
        endpoint: EndpointDefinition,
        credentials: RequestCredentials,
        **params: Any,
    ) -> RawRecord | None:
        """Fetch a single resource; None when the provider returns 404."""
        items: list[RawRecord] = self.fetch_page(endpoint, credentials, **params).items
        return items[0] if items else None

    # -------------------------------------------------------------------------
    # HTTP Execution Layer
    # -------------------------------------------------------------------------

    def send(self, request_spec: RequestSpec) -> Any:
        """
        Execute a request with retries and return the decoded JSON body.

        Returns:
            Decoded JSON, or None for an allowed 404 or an empty body.
        """
        retrying: Retrying = self._build_retrying()
        return retrying(self._send_once, request_spec)

    def _send_once(self, request_spec: RequestSpec) -> Any:
        response: httpx.Response = self._send_http_request(request_spec)
        return self._handle_response(response, request_spec)

    def _send_http_request(self, request_spec: RequestSpec) -> httpx.Response:
        """
        Send the HTTP request, converting transport errors to TransientAPIError.
        """
        connect_timeout, read_timeout = request_spec.timeout
        timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=connect_timeout,
            pool=connect_timeout,
        )

        try:
            return self._http_client.request(
                method=request_spec.method.value,
                url=request_spec.url,
                params=request_spec.query_params,
                headers=request_spec.headers,
                json=request_spec.body,
                data=request_spec.form_body,
                timeout=timeout,
            )
        except httpx.TimeoutException as error:
            logger.warning('Request timeout: %s', request_spec.url)
            raise TransientAPIError(f'Request timeout: {error}') from error
        except httpx.RequestError as error:
            logger.warning('Connection error: %s - %s', request_spec.url, error)
            raise TransientAPIError(f'Connection error: {error}') from error

    def _handle_response(
        self,
        response: httpx.Response,
        request_spec: RequestSpec,
    ) -> Any:
        """
        Map the response status onto the error hierarchy and decode JSON.

        Raises:
            AuthError: On 401.
            RateLimitError: On 429.
            TransientAPIError: On 5xx.
            APIError: On other non-2xx statuses or invalid JSON.
        """
        status_code: int = response.status_code

        if status_code == HTTP_STATUS_UNAUTHORIZED:
            logger.warning('Unauthorized response from %s', request_spec.url)
            raise AuthError(
                response_body=response.text[:RESPONSE_BODY_LOG_LIMIT],
            )

        if status_code == HTTP_STATUS_RATE_LIMITED:
            rate_limit_info: RateLimitInfo = RateLimitInfo.from_response_headers(
                dict(response.headers)
            )
            logger.warning(
                'Rate limited by %s: retry after %.1fs',
                request_spec.url,
                rate_limit_info.retry_after_seconds,
            )
            raise RateLimitError(rate_limit_info)

        if HTTP_STATUS_SERVER_ERROR_MIN <= status_code <= HTTP_STATUS_SERVER_ERROR_MAX:
            logger.warning(
                'Server error %d: %s',
                status_code,
                response.text[:200],
            )
            raise TransientAPIError(
                f'Server error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:RESPONSE_BODY_LOG_LIMIT],
            )

        if status_code == HTTP_STATUS_NOT_FOUND and request_spec.allow_not_found:
            logger.debug('Not found (allowed): %s', request_spec.url)
            return None

        if not response.is_success:
            logger.error(
                'Client error %d: %s',
                status_code,
                response.text[:RESPONSE_BODY_LOG_LIMIT],
            )
            raise APIError(
                f'API error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:RESPONSE_BODY_LOG_LIMIT],
            )

        if status_code == HTTP_STATUS_NO_CONTENT or not response.content:
            return None

        try:
            return response.json()
        except ValueError as parse_error:
            raise APIError(
                f'Invalid JSON in response: {parse_error}',
                status_code=status_code,
                response_body=response.text[:RESPONSE_BODY_LOG_LIMIT],
            ) from parse_error


def _path_params_only(
    endpoint: EndpointDefinition, params: dict[str, Any]
) -> dict[str, Any]:
    names: set[str] = {spec.name for spec in endpoint.path_parameters}
    return {key: value for key, value in params.items() if key in names}
