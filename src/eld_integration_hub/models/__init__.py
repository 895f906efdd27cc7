# eld_integration_hub/models/__init__.py

from eld_integration_hub.models.canonical import (
    METERS_TO_MILES,
    Driver,
    DutyStatus,
    FaultCode,
    FaultSeverity,
    FuelPurchase,
    GPSLocation,
    HOSAvailableTime,
    HOSDailySummary,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    JurisdictionMileage,
    Vehicle,
    classify_fault_severity,
    normalize_duty_status,
)
from eld_integration_hub.models.motive_requests import (
    MotiveEndpointDefinition,
    MotiveEndpoints,
)
from eld_integration_hub.models.results import (
    AutoMatchSummary,
    MatchOutcome,
    ServiceResult,
    SyncPassResult,
    SyncRunSummary,
)
from eld_integration_hub.models.samsara_requests import (
    SamsaraEndpointDefinition,
    SamsaraEndpoints,
)
from eld_integration_hub.models.shared_request_models import (
    HTTPMethod,
    RateLimitInfo,
    RequestSpec,
)
from eld_integration_hub.models.shared_response_models import (
    EndpointDefinition,
    PaginationState,
    ParsedResponse,
    RawRecord,
    RequestCredentials,
)
from eld_integration_hub.models.terminal_requests import (
    TerminalEndpointDefinition,
    TerminalEndpoints,
)

__all__: list[str] = [
    'METERS_TO_MILES',
    'AutoMatchSummary',
    'Driver',
    'DutyStatus',
    'EndpointDefinition',
    'FaultCode',
    'FaultSeverity',
    'FuelPurchase',
    'GPSLocation',
    'HOSAvailableTime',
    'HOSDailySummary',
    'HOSLog',
    'HTTPMethod',
    'IFTAJurisdictionSummary',
    'IFTATrip',
    'JurisdictionMileage',
    'MatchOutcome',
    'MotiveEndpointDefinition',
    'MotiveEndpoints',
    'PaginationState',
    'ParsedResponse',
    'RateLimitInfo',
    'RawRecord',
    'RequestCredentials',
    'RequestSpec',
    'SamsaraEndpointDefinition',
    'SamsaraEndpoints',
    'ServiceResult',
    'SyncPassResult',
    'SyncRunSummary',
    'TerminalEndpointDefinition',
    'TerminalEndpoints',
    'Vehicle',
    'classify_fault_severity',
    'normalize_duty_status',
]
