# eld_integration_hub/models/samsara_requests.py
"""
Unified endpoint definitions for the Samsara API.

Samsara uses cursor pagination: every list response carries a
'pagination' object with 'endCursor' and 'hasNextPage', and the cursor is
sent back as the 'after' query parameter.
"""

import logging
from typing import Any

from pydantic import ConfigDict

from eld_integration_hub.models.shared_response_models import (
    EndpointDefinition,
    PaginationState,
    ParameterType,
    ParsedResponse,
    QueryParameterSpec,
    RawRecord,
    extract_record_list,
)

__all__: list[str] = ['SamsaraEndpointDefinition', 'SamsaraEndpoints']

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

_VEHICLE_IDS_PARAMETER: QueryParameterSpec = QueryParameterSpec(
    name='vehicle_ids',
    parameter_type=ParameterType.STRING_LIST,
    api_name='vehicleIds',
)


class SamsaraEndpointDefinition(EndpointDefinition):
    """
    A Samsara endpoint; pages follow `pagination.endCursor` via the `after` parameter.

    Attributes:
        items_key: Response key holding the record list ('data' everywhere
                   Samsara has been observed).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    items_key: str = 'data'

    def parse_response(self, response_json: Any) -> ParsedResponse:
        """
        Parse a Samsara response page into a uniform ParsedResponse.

        Args:
            response_json: Raw JSON from the Samsara API.

        Returns:
            ParsedResponse with extracted records and pagination state.
        """
        items: list[RawRecord] = extract_record_list(response_json, self.items_key)
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

    def _compute_pagination_state(self, response_json: Any) -> PaginationState:
        """
        Extract pagination state from a Samsara response.

        Returns:
            PaginationState with the 'after' cursor if another page exists.
        """
        if not self.is_paginated:
            return PaginationState.finished()

        pagination_info: Any = (
            response_json.get('pagination') if isinstance(response_json, dict) else None
        )

        if not isinstance(pagination_info, dict):
            logger.warning(
                'Expected pagination metadata for %s but found none',
                self.endpoint_path,
            )
            return PaginationState.finished()

        if not pagination_info.get('hasNextPage'):  # pyright: ignore[reportUnknownMemberType]
            return PaginationState.finished()

        end_cursor: Any = pagination_info.get('endCursor')  # pyright: ignore[reportUnknownMemberType]
        if end_cursor:
            return PaginationState.next_cursor('after', str(end_cursor))  # pyright: ignore[reportUnknownArgumentType]

        return PaginationState.finished()

    def get_initial_pagination_state(self) -> PaginationState:
        """The first Samsara request carries no `after` cursor."""
        if not self.is_paginated:
            return PaginationState.finished()

        return PaginationState.initial_cursor()


# =============================================================================
# Samsara Endpoint Registry
# =============================================================================


class SamsaraEndpoints:
    """
    Samsara endpoints used by the adapter, as class attributes.

    Usage:
        >>> endpoint = SamsaraEndpoints.VEHICLE_STATS
        >>> spec = endpoint.build_request_spec(credentials, types='gps')
    """

    VEHICLES: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/vehicles',
        description='List all vehicles in the organization',
        query_parameters=(
            QueryParameterSpec(name='limit', parameter_type=ParameterType.INTEGER),
        ),
        is_paginated=True,
    )

    DRIVERS: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/drivers',
        description='List all drivers in the organization',
        is_paginated=True,
    )

    VEHICLE_STATS: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/vehicles/stats',
        description='Latest stats snapshot (gps, faultCodes...) per vehicle',
        query_parameters=(
            QueryParameterSpec(
                name='types',
                parameter_type=ParameterType.STRING_LIST,
                required=True,
            ),
            _VEHICLE_IDS_PARAMETER,
        ),
        is_paginated=True,
    )

    VEHICLE_STATS_HISTORY: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/vehicles/stats/history',
        description='Historical stats (gps, fuelPercents...) per vehicle',
        query_parameters=(
            QueryParameterSpec(
                name='types',
                parameter_type=ParameterType.STRING_LIST,
                required=True,
            ),
            _VEHICLE_IDS_PARAMETER,
            *_TIME_RANGE_PARAMETERS,
        ),
        is_paginated=True,
    )

    HOS_LOGS: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/hos/logs',
        description='Duty status logs for all drivers in a time range',
        query_parameters=_TIME_RANGE_PARAMETERS,
        is_paginated=True,
    )

    IFTA_JURISDICTION_REPORT: SamsaraEndpointDefinition = SamsaraEndpointDefinition(
        endpoint_path='/fleet/reports/ifta/jurisdiction',
        description='Per-vehicle IFTA jurisdiction mileage report',
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
        ),
        is_paginated=False,
    )

    @classmethod
    def get_all_endpoints(cls) -> dict[str, SamsaraEndpointDefinition]:
        """Endpoint definitions keyed by attribute name."""
        return {
            name: value
            for name, value in vars(cls).items()
            if isinstance(value, SamsaraEndpointDefinition)
        }
