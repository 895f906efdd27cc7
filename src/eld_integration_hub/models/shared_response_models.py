# eld_integration_hub/models/shared_response_models.py
"""
Shared abstractions for provider endpoint definitions.

Every provider endpoint (Motive, Samsara, Terminal) is described by an
EndpointDefinition that knows how to build its URL and query string, how to
find the list of records inside a response body, and how to compute the
pagination state for the next page. The HTTP client drives the loop; the
adapters only ever see fully materialized lists of raw records.

Key Components:
    - PaginationState: Provider-agnostic container for "next page" logic.
    - ParsedResponse: One page of raw records plus its pagination state.
    - RequestCredentials: Base URL, bearer token and timeout for a request.
    - EndpointDefinition: Abstract base all provider definitions inherit from.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date, datetime
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from eld_integration_hub.models.shared_request_models import HTTPMethod, RequestSpec

__all__: list[str] = [
    'EndpointDefinition',
    'PaginationState',
    'ParameterType',
    'ParsedResponse',
    'PathParameterSpec',
    'QueryParameterSpec',
    'RawRecord',
    'RequestCredentials',
    'extract_record_list',
]

logger: logging.Logger = logging.getLogger(__name__)

# A provider record before normalization.
RawRecord = dict[str, Any]


# =============================================================================
# Parameter Specifications
# =============================================================================


class ParameterType(str, Enum):
    """How a parameter value is rendered into the URL."""

    STRING = 'string'
    INTEGER = 'integer'
    DATE = 'date'
    DATETIME = 'datetime'
    BOOLEAN = 'boolean'
    STRING_LIST = 'string_list'


class PathParameterSpec(BaseModel):
    """A `{name}` placeholder in an endpoint path."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    name: str
    parameter_type: ParameterType = ParameterType.STRING


class QueryParameterSpec(BaseModel):
    """
    A query-string parameter an endpoint accepts.

    Adapters pass values under `name`; `api_name` renames the key on the wire
    (Motive's `start_date` vs Samsara's `startTime`, for instance).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    name: str
    parameter_type: ParameterType
    required: bool = False
    api_name: str | None = Field(
        default=None,
        description='Wire name of the parameter when it differs from name',
    )

    def get_api_parameter_name(self) -> str:
        return self.name if self.api_name is None else self.api_name


# =============================================================================
# Pagination State Container
# =============================================================================


class PaginationState(BaseModel):
    """
    Where the next page of a listing starts.

    Motive pages by number while Samsara and Terminal hand back a cursor; both
    reduce to extra query parameters merged into the next request.

    Attributes:
        has_next_page: False once the listing is exhausted.
        next_page_params: Query parameters for the next request, e.g.
                          {'page_no': 2, 'per_page': 100} (Motive),
                          {'after': '...'} (Samsara), {'cursor': '...'} (Terminal).
        current_page: Page number last requested (page-number pagination).
        current_cursor: Cursor last requested (cursor pagination).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    has_next_page: bool
    next_page_params: dict[str, int | str] = Field(default_factory=dict)
    current_page: int | None = None
    current_cursor: str | None = None

    @classmethod
    def finished(cls) -> Self:
        return cls(has_next_page=False)

    @classmethod
    def first_page(cls, per_page: int = 100) -> Self:
        """State that requests page 1 of a numbered listing."""
        return cls(
            has_next_page=True,
            next_page_params={'page_no': 1, 'per_page': per_page},
            current_page=0,
        )

    @classmethod
    def initial_cursor(cls) -> Self:
        """State for the first request of a cursor listing; it sends no cursor."""
        return cls(has_next_page=True)

    @classmethod
    def next_cursor(cls, cursor_param: str, cursor_token: str) -> Self:
        return cls(
            has_next_page=True,
            next_page_params={cursor_param: cursor_token},
            current_cursor=cursor_token,
        )


# =============================================================================
# Parsed Response Container
# =============================================================================


class ParsedResponse(BaseModel):
    """Raw records of one page together with the state for the page after it."""

    model_config = ConfigDict(extra='forbid')

    items: list[RawRecord]
    pagination: PaginationState

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def has_more(self) -> bool:
        return self.pagination.has_next_page


# =============================================================================
# Request Credentials
# =============================================================================


class RequestCredentials(BaseModel):
    """
    Per-request connection settings for a provider.

    Attributes:
        base_url: API base URL (no trailing slash).
        access_token: Bearer token (SecretStr so it never leaks into logs).
        timeout: Tuple of (connect_timeout, read_timeout) in seconds.
        extra_headers: Additional provider-specific headers.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    base_url: str
    access_token: SecretStr | None = None
    timeout: tuple[float, float] = (10.0, 30.0)
    extra_headers: dict[str, str] = Field(default_factory=dict)

    def auth_headers(self) -> dict[str, str]:
        """Build the Authorization and Accept headers for a request."""
        headers: dict[str, str] = {'Accept': 'application/json'}
        if self.access_token is not None:
            headers['Authorization'] = f'Bearer {self.access_token.get_secret_value()}'
        headers.update(self.extra_headers)
        return headers


# =============================================================================
# Abstract Endpoint Definition
# =============================================================================


class EndpointDefinition(ABC, BaseModel):
    """
    One provider API listing or lookup, described as data.

    Subclasses per provider add how records sit in the body and how the next
    page is requested. The client never branches on provider:

        spec = endpoint.build_request_spec(credentials, pagination_state, **params)
        parsed = endpoint.parse_response(response_json)

    Attributes:
        endpoint_path: Path relative to the base URL; may hold {placeholders}.
        http_method: Request verb.
        description: Short label used in logs.
        path_parameters: Placeholders the path needs filled.
        query_parameters: Query parameters the endpoint accepts.
        fixed_query_params: Parameters sent unchanged on every request.
        is_paginated: True when the listing spans several pages.
        allow_not_found: A 404 means "no records" rather than an error.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    endpoint_path: str
    http_method: HTTPMethod = HTTPMethod.GET
    description: str

    path_parameters: tuple[PathParameterSpec, ...] = Field(default_factory=tuple)
    query_parameters: tuple[QueryParameterSpec, ...] = Field(default_factory=tuple)
    fixed_query_params: dict[str, str] = Field(default_factory=dict)

    is_paginated: bool
    allow_not_found: bool = False

    @field_validator('endpoint_path')
    @classmethod
    def normalize_endpoint_path(cls, endpoint_path: str) -> str:
        if not endpoint_path:
            raise ValueError('endpoint_path cannot be empty')
        return endpoint_path if endpoint_path.startswith('/') else f'/{endpoint_path}'

    @field_validator('path_parameters', 'query_parameters', mode='before')
    @classmethod
    def freeze_parameter_specs(cls, value: Any) -> tuple[Any, ...]:
        return tuple(value)

    # -------------------------------------------------------------------------
    # URL Construction
    # -------------------------------------------------------------------------

    def build_resource_path(self, **path_params: Any) -> str:
        """
        Fill the path placeholders, e.g. '/vehicles/{vehicle_id}' -> '/vehicles/42'.

        The relative path is also what the client logs.

        Raises:
            ValueError: A declared placeholder has no value.
        """
        resolved_path: str = self.endpoint_path

        for placeholder in self.path_parameters:
            try:
                raw_value: Any = path_params[placeholder.name]
            except KeyError:
                raise ValueError(
                    f'Missing required path parameter: {placeholder.name}'
                ) from None
            resolved_path = resolved_path.replace(
                '{' + placeholder.name + '}',
                self._serialize_parameter_value(raw_value, placeholder.parameter_type),
            )

        return resolved_path

    def build_url(self, base_url: str, **path_params: Any) -> str:
        return base_url + self.build_resource_path(**path_params)

    def build_query_params(
        self,
        pagination_state: PaginationState | None = None,
        **user_params: Any,
    ) -> dict[str, str]:
        """
        Render the query string as a flat str -> str mapping.

        Layering order is fixed parameters, then the pagination parameters,
        then declared user parameters. Values of None are dropped and so are
        parameters the endpoint does not declare.

        Raises:
            ValueError: A required parameter was not supplied.

        Example:
            >>> hos_logs.build_query_params(start_date=date(2024, 5, 1), driver_ids=['7', '9'])
            {'start_date': '2024-05-01', 'driver_ids': '7,9'}
        """
        query_params: dict[str, str] = dict(self.fixed_query_params)

        if pagination_state is not None:
            query_params.update(
                (key, str(value)) for key, value in pagination_state.next_page_params.items()
            )

        for declared in self.query_parameters:
            if declared.name not in user_params:
                if declared.required:
                    raise ValueError(f'Missing required query parameter: {declared.name}')
                continue

            supplied: Any = user_params[declared.name]
            if supplied is None:
                continue
            query_params[declared.get_api_parameter_name()] = self._serialize_parameter_value(
                supplied, declared.parameter_type
            )

        return query_params

    def build_request_spec(
        self,
        credentials: RequestCredentials,
        pagination_state: PaginationState | None = None,
        **params: Any,
    ) -> RequestSpec:
        """
        Build a complete request specification ready for HTTP execution.

        Args:
            credentials: Base URL, bearer token and timeout.
            pagination_state: Pagination state for subsequent pages; None
                requests the first page.
            **params: Path parameters and query parameters combined.

        Returns:
            RequestSpec ready for HTTP client execution.
        """
        path_param_names: set[str] = {spec.name for spec in self.path_parameters}
        path_params: dict[str, Any] = {
            key: value for key, value in params.items() if key in path_param_names
        }
        query_params_input: dict[str, Any] = {
            key: value for key, value in params.items() if key not in path_param_names
        }

        effective_pagination: PaginationState | None = pagination_state
        if effective_pagination is None and self.is_paginated:
            effective_pagination = self.get_initial_pagination_state()

        url: str = self.build_url(credentials.base_url, **path_params)
        query_params: dict[str, str] = self.build_query_params(
            pagination_state=effective_pagination,
            **query_params_input,
        )

        logger.debug(
            'Built request: %s %s params=%r',
            self.http_method.value,
            url,
            list(query_params.keys()),
        )

        return RequestSpec(
            url=url,
            method=self.http_method,
            headers=credentials.auth_headers(),
            query_params=query_params,
            timeout=credentials.timeout,
            allow_not_found=self.allow_not_found,
        )

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def _serialize_parameter_value(
        self,
        value: Any,
        parameter_type: ParameterType,
    ) -> str:
        serializers: dict[ParameterType, Callable[[Any], str]] = {
            ParameterType.DATE: _render_date,
            ParameterType.DATETIME: _render_datetime,
            ParameterType.BOOLEAN: _render_boolean,
            ParameterType.STRING_LIST: _render_string_list,
        }
        return serializers.get(parameter_type, str)(value)

    # -------------------------------------------------------------------------
    # Response Parsing (Provider-Specific)
    # -------------------------------------------------------------------------

    @abstractmethod
    def parse_response(self, response_json: Any) -> ParsedResponse:
        """Split a decoded body (None after an allowed 404) into records and next-page state."""
        raise NotImplementedError

    @abstractmethod
    def get_initial_pagination_state(self) -> PaginationState:
        """State for the first request; already finished for single-page endpoints."""
        raise NotImplementedError


def extract_record_list(response_json: Any, items_key: str | None) -> list[RawRecord]:
    """
    Pull the record list out of a response body.

    Args:
        response_json: Decoded JSON body.
        items_key: Top-level key holding the list, or None when the body is
            the list itself.

    Returns:
        Only the dict entries of the list; anything else is dropped.
    """
    if response_json is None:
        return []

    container: Any = response_json
    if items_key is not None:
        container = response_json.get(items_key) if isinstance(response_json, dict) else None

    if not isinstance(container, list):
        return []

    return [item for item in container if isinstance(item, dict)]  # pyright: ignore[reportUnknownVariableType]


# =============================================================================
# Value Rendering
# =============================================================================


def _render_date(value: Any) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat() if isinstance(value, date) else str(value)


def _render_datetime(value: Any) -> str:
    """ISO-8601, with UTC written as a trailing Z."""
    if not isinstance(value, datetime):
        return str(value)
    rendered: str = value.isoformat()
    return rendered[:-6] + 'Z' if rendered.endswith('+00:00') else rendered


def _render_boolean(value: Any) -> str:
    return 'true' if value else 'false'


def _render_string_list(value: Any) -> str:
    """Comma-joined for list or tuple input."""
    if isinstance(value, (list, tuple)):
        return ','.join(map(str, value))  # pyright: ignore[reportUnknownArgumentType]
    return str(value)
