# eld_integration_hub/common/__init__.py

from eld_integration_hub.common.geo import (
    bounding_box,
    extract_state,
    haversine_km,
    haversine_miles,
    jurisdiction_name,
)
from eld_integration_hub.common.logger import setup_logger
from eld_integration_hub.common.quarters import (
    Quarter,
    parse_quarter,
    previous_quarter,
    quarter_date_range,
    quarter_for_date,
)
from eld_integration_hub.common.truststore_context import build_truststore_ssl_context

__all__: list[str] = [
    'Quarter',
    'bounding_box',
    'build_truststore_ssl_context',
    'extract_state',
    'haversine_km',
    'haversine_miles',
    'jurisdiction_name',
    'parse_quarter',
    'previous_quarter',
    'quarter_date_range',
    'quarter_for_date',
    'setup_logger',
]
