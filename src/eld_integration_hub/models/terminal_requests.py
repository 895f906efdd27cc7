# eld_integration_hub/models/terminal_requests.py
"""
Unified endpoint definitions for the Terminal aggregator API.

Terminal fronts hundreds of ELD providers behind one normalized API. List
responses put records under 'results' (older endpoints use 'data') and return
an opaque 'next' cursor; some endpoints call it 'cursor'. The cursor goes
back out as the 'cursor' query parameter.
"""

import logging
from typing import Any

from pydantic import ConfigDict, Field

from eld_integration_hub.models.shared_request_models import HTTPMethod
from eld_integration_hub.models.shared_response_models import (
    EndpointDefinition,
    PaginationState,
    ParameterType,
    ParsedResponse,
    PathParameterSpec,
    QueryParameterSpec,
    RawRecord,
    extract_record_list,
)

__all__: list[str] = ['TerminalEndpointDefinition', 'TerminalEndpoints']

logger: logging.Logger = logging.getLogger(__name__)

_TIME_RANGE_PARAMETERS: tuple[QueryParameterSpec, ...] = (
    QueryParameterSpec(
        name='start_time',
        parameter_type=ParameterType.DATETIME,
        api_name='startTime',
    ),
    QueryParameterSpec(
        name='end_time',
        parameter_type=ParameterType.DATETIME,
        api_name='endTime',
    ),
)

_DRIVER_FILTER: QueryParameterSpec = QueryParameterSpec(
    name='driver_id',
    parameter_type=ParameterType.STRING,
    api_name='driverId',
)
_VEHICLE_FILTER: QueryParameterSpec = QueryParameterSpec(
    name='vehicle_id',
    parameter_type=ParameterType.STRING,
    api_name='vehicleId',
)


class TerminalEndpointDefinition(EndpointDefinition):
    """
    Terminal-specific endpoint definition with cursor pagination.

    Attributes:
        items_keys: Candidate response keys for the record list, tried in
                    order. None means the body is a single resource.
        page_limit: Page size requested through the 'limit' parameter.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    items_keys: tuple[str, ...] | None = ('results', 'data')
    page_limit: int = Field(default=100, ge=1)

    def parse_response(self, response_json: Any) -> ParsedResponse:
        """
        Parse a Terminal response page into a uniform ParsedResponse.

        Args:
            response_json: Raw JSON from the Terminal API (None after an
                allowed 404).

        Returns:
            ParsedResponse with extracted records and pagination state.
        """
        items: list[RawRecord] = self._extract_items(response_json)
        pagination_state: PaginationState = self._compute_pagination_state(
            response_json
        )

        logger.debug(
            'Parsed %d items from %r, has_more=%r',
            len(items),
            self.endpoint_path,
            pagination_state.has_next_page,
        )

        return ParsedResponse(items=items, pagination=pagination_state)

    def _extract_items(self, response_json: Any) -> list[RawRecord]:
        if not isinstance(response_json, dict):
            return extract_record_list(response_json, None)

        if self.items_keys is None:
            return [response_json]  # pyright: ignore[reportUnknownVariableType]

        for key in self.items_keys:
            if key in response_json:
                return extract_record_list(response_json, key)

        return []

    def _compute_pagination_state(self, response_json: Any) -> PaginationState:
        if not self.is_paginated or not isinstance(response_json, dict):
            return PaginationState.finished()

        next_token: Any = response_json.get('next') or response_json.get('cursor')  # pyright: ignore[reportUnknownMemberType]
        if next_token:
            return PaginationState(
                has_next_page=True,
                next_page_params={'cursor': str(next_token), 'limit': self.page_limit},  # pyright: ignore[reportUnknownArgumentType]
                current_cursor=str(next_token),  # pyright: ignore[reportUnknownArgumentType]
            )

        return PaginationState.finished()

    def get_initial_pagination_state(self) -> PaginationState:
        """First page carries only the page size; no cursor yet."""
        if not self.is_paginated:
            return PaginationState.finished()

        return PaginationState(
            has_next_page=True,
            next_page_params={'limit': self.page_limit},
        )


# =============================================================================
# Terminal Endpoint Registry
# =============================================================================


class TerminalEndpoints:
    """
    Registry of Terminal API endpoint definitions.

    Paths are relative to https://api.withterminal.com/tsp/v1.
    """

    CURRENT_CONNECTION: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/connections/current',
        description='Details of the connection the token belongs to',
        is_paginated=False,
        items_keys=None,
        allow_not_found=True,
    )

    UPDATE_CONNECTION: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/connections/current',
        http_method=HTTPMethod.PATCH,
        description='Update settings of the current connection',
        is_paginated=False,
        items_keys=None,
    )

    VEHICLES: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/vehicles',
        description='List all vehicles',
        is_paginated=True,
    )

    VEHICLE: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/vehicles/{vehicle_id}',
        description='A single vehicle',
        path_parameters=(PathParameterSpec(name='vehicle_id'),),
        is_paginated=False,
        items_keys=None,
        allow_not_found=True,
    )

    LATEST_VEHICLE_LOCATIONS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/vehicles/locations',
        description='Latest known location of every vehicle',
        is_paginated=True,
    )

    VEHICLE_LOCATION_HISTORY: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/vehicles/{vehicle_id}/locations',
        description='Historical breadcrumbs for one vehicle',
        path_parameters=(PathParameterSpec(name='vehicle_id'),),
        query_parameters=_TIME_RANGE_PARAMETERS,
        is_paginated=True,
        allow_not_found=True,
    )

    DRIVERS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/drivers',
        description='List all drivers',
        is_paginated=True,
    )

    DRIVER: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/drivers/{driver_id}',
        description='A single driver',
        path_parameters=(PathParameterSpec(name='driver_id'),),
        is_paginated=False,
        items_keys=None,
        allow_not_found=True,
    )

    HOS_AVAILABLE_TIME: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/hos/available-time',
        description='Remaining drive, shift and cycle time per driver',
        is_paginated=True,
    )

    HOS_LOGS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/hos/logs',
        description='Duty status changes in a time range',
        query_parameters=(*_TIME_RANGE_PARAMETERS, _DRIVER_FILTER),
        is_paginated=True,
    )

    HOS_DAILY_LOGS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/hos/daily-logs',
        description='Per-driver daily duty totals',
        query_parameters=(
            QueryParameterSpec(
                name='start_date',
                parameter_type=ParameterType.DATE,
                api_name='startDate',
            ),
            QueryParameterSpec(
                name='end_date',
                parameter_type=ParameterType.DATE,
                api_name='endDate',
            ),
            _DRIVER_FILTER,
        ),
        is_paginated=True,
    )

    IFTA_SUMMARY: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/ifta/summary',
        description='Monthly jurisdiction mileage per vehicle',
        query_parameters=(
            QueryParameterSpec(
                name='start_month',
                parameter_type=ParameterType.STRING,
                required=True,
                api_name='startMonth',
            ),
            QueryParameterSpec(
                name='end_month',
                parameter_type=ParameterType.STRING,
                required=True,
                api_name='endMonth',
            ),
            _VEHICLE_FILTER,
        ),
        is_paginated=True,
    )

    SAFETY_EVENTS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/safety/events',
        description='Safety events and fault codes',
        query_parameters=(*_TIME_RANGE_PARAMETERS, _VEHICLE_FILTER, _DRIVER_FILTER),
        is_paginated=True,
    )

    REQUEST_SYNC: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/syncs',
        http_method=HTTPMethod.POST,
        description='Ask Terminal to pull fresh data from the upstream provider',
        is_paginated=False,
        items_keys=None,
    )

    SYNC: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/syncs/{sync_id}',
        description='Status of one sync job',
        path_parameters=(PathParameterSpec(name='sync_id'),),
        is_paginated=False,
        items_keys=None,
        allow_not_found=True,
    )

    SYNCS: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/syncs',
        description='Recent sync jobs',
        is_paginated=True,
    )

    PASSTHROUGH: TerminalEndpointDefinition = TerminalEndpointDefinition(
        endpoint_path='/passthrough',
        http_method=HTTPMethod.POST,
        description='Raw request forwarded to the underlying provider',
        query_parameters=(
            QueryParameterSpec(
                name='path',
                parameter_type=ParameterType.STRING,
                required=True,
            ),
        ),
        is_paginated=False,
        items_keys=None,
    )

    @classmethod
    def get_all_endpoints(cls) -> dict[str, TerminalEndpointDefinition]:
        """Return all endpoint definitions as a dictionary."""
        return {
            name: value
            for name, value in vars(cls).items()
            if isinstance(value, TerminalEndpointDefinition)
        }
