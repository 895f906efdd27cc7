# eld_integration_hub/models/motive_requests.py
"""
Unified endpoint definitions for the Motive API.

This module provides self-describing endpoint objects that encapsulate all
knowledge required to interact with an endpoint: URL construction, request
parameters, record extraction, and pagination handling.

Motive paginates with 'page_no' and 'per_page'. Its list responses do not
reliably report a total, so a page is taken to be the last one as soon as it
comes back with fewer than 'per_page' records.
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
    QueryParameterSpec,
    RawRecord,
    extract_record_list,
)

__all__: list[str] = ['MotiveEndpointDefinition', 'MotiveEndpoints']

logger: logging.Logger = logging.getLogger(__name__)

_DATE_RANGE_PARAMETERS: tuple[QueryParameterSpec, ...] = (
    QueryParameterSpec(name='start_date', parameter_type=ParameterType.DATE),
    QueryParameterSpec(name='end_date', parameter_type=ParameterType.DATE),
)


# =============================================================================
# Motive-Specific Endpoint Definition
# =============================================================================


class MotiveEndpointDefinition(EndpointDefinition):
    """
    Motive-specific endpoint definition with page-number pagination.

    Attributes:
        items_key: Top-level response key holding the record list
                   (e.g., 'vehicles', 'hos_logs').
        item_wrapper_key: Some Motive lists wrap each record in a single-key
                          object ({'vehicle': {...}}). When set, the wrapper is
                          removed so adapters always see the bare record.
        max_per_page: Maximum results per page (Motive caps at 100).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    items_key: str | None
    item_wrapper_key: str | None = None
    max_per_page: int = Field(default=100, ge=1, le=100)

    def parse_response(self, response_json: Any) -> ParsedResponse:
        """
        Parse a Motive response page into a uniform ParsedResponse.

        Args:
            response_json: Raw JSON from the Motive API.

        Returns:
            ParsedResponse with extracted records and pagination state.
        """
        if self.items_key is None and isinstance(response_json, dict):
            items: list[RawRecord] = [response_json]  # pyright: ignore[reportUnknownVariableType]
        else:
            items = [
                self._unwrap(record)
                for record in extract_record_list(response_json, self.items_key)
            ]

        pagination_state: PaginationState = self._compute_pagination_state(
            response_json, len(items)
        )

        logger.debug(
            'Parsed %d items from %r, has_more=%r',
            len(items),
            self.endpoint_path,
            pagination_state.has_next_page,
        )

        return ParsedResponse(items=items, pagination=pagination_state)

    def _unwrap(self, record: RawRecord) -> RawRecord:
        if self.item_wrapper_key is None:
            return record
        inner: Any = record.get(self.item_wrapper_key)
        return inner if isinstance(inner, dict) else record  # pyright: ignore[reportUnknownVariableType]

    def _compute_pagination_state(
        self,
        response_json: Any,
        item_count: int,
    ) -> PaginationState:
        """
        Derive the next page from the current page's size.

        A full page means there may be more; anything shorter is the end.
        """
        if not self.is_paginated or item_count < self.max_per_page:
            return PaginationState.finished()

        current_page: int = _read_page_number(response_json)

        return PaginationState(
            has_next_page=True,
            next_page_params={
                'page_no': current_page + 1,
                'per_page': self.max_per_page,
            },
            current_page=current_page,
        )

    def get_initial_pagination_state(self) -> PaginationState:
        """
        Get initial pagination state for Motive endpoints.

        Returns:
            PaginationState with page_no=1 for paginated endpoints,
            or finished state for non-paginated endpoints.
        """
        if not self.is_paginated:
            return PaginationState.finished()

        return PaginationState.first_page(per_page=self.max_per_page)


def _read_page_number(response_json: Any) -> int:
    """Read the echoed page number, defaulting to 1 when Motive omits it."""
    if isinstance(response_json, dict):
        pagination: Any = response_json.get('pagination')
        if isinstance(pagination, dict):
            page_no: Any = pagination.get('page_no')  # pyright: ignore[reportUnknownMemberType]
            if isinstance(page_no, int):
                return page_no
    return 1


# =============================================================================
# Motive Endpoint Registry
# =============================================================================


class MotiveEndpoints:
    """
    Registry of all Motive API endpoint definitions.

    Paths are relative to the versioned base URL
    (https://api.gomotive.com/v1).

    Usage:
        >>> endpoint = MotiveEndpoints.VEHICLES
        >>> spec = endpoint.build_request_spec(credentials)
        >>> # ... make HTTP request ...
        >>> parsed = endpoint.parse_response(response_json)
    """

    CURRENT_USER: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/users/me',
        description='Authenticated user with company details',
        is_paginated=False,
        items_key=None,
    )

    VEHICLES: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/vehicles',
        description='List all vehicles in the fleet',
        is_paginated=True,
        items_key='vehicles',
        item_wrapper_key='vehicle',
    )

    DRIVERS: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/users',
        description='List all users with the driver role',
        fixed_query_params={'role': 'driver'},
        is_paginated=True,
        items_key='users',
        item_wrapper_key='user',
    )

    VEHICLE_LOCATIONS: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/vehicle_locations',
        description='Current location of every vehicle, or history when filtered',
        query_parameters=(
            QueryParameterSpec(
                name='vehicle_ids',
                parameter_type=ParameterType.STRING_LIST,
            ),
            *_DATE_RANGE_PARAMETERS,
        ),
        is_paginated=True,
        items_key='vehicle_locations',
        item_wrapper_key='vehicle_location',
    )

    HOS_LOGS: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/hos_logs',
        description='Duty status changes for all drivers in a date range',
        query_parameters=_DATE_RANGE_PARAMETERS,
        is_paginated=True,
        items_key='hos_logs',
        item_wrapper_key='hos_log',
    )

    IFTA_TRIPS: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/ifta/trips',
        description='Trips with per-jurisdiction distance breakdown',
        query_parameters=_DATE_RANGE_PARAMETERS,
        is_paginated=True,
        items_key='ifta_trips',
        item_wrapper_key='ifta_trip',
    )

    IFTA_SUMMARY: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/ifta/summary',
        description='Pre-aggregated jurisdiction mileage per vehicle',
        query_parameters=_DATE_RANGE_PARAMETERS,
        is_paginated=False,
        items_key='ifta_summary',
    )

    FAULT_CODES: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/fault_codes',
        description='Engine fault codes reported by vehicle gateways',
        query_parameters=_DATE_RANGE_PARAMETERS,
        is_paginated=True,
        items_key='fault_codes',
        item_wrapper_key='fault_code',
    )

    FUEL_PURCHASES: MotiveEndpointDefinition = MotiveEndpointDefinition(
        endpoint_path='/fuel_purchases',
        description='Fuel card and manually entered fuel purchases',
        query_parameters=_DATE_RANGE_PARAMETERS,
        is_paginated=True,
        items_key='fuel_purchases',
        item_wrapper_key='fuel_purchase',
    )

    @classmethod
    def get_all_endpoints(cls) -> dict[str, MotiveEndpointDefinition]:
        """Return all endpoint definitions as a dictionary."""
        return {
            name: value
            for name, value in vars(cls).items()
            if isinstance(value, MotiveEndpointDefinition)
        }
