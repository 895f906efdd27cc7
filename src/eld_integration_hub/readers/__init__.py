# eld_integration_hub/readers/__init__.py

from eld_integration_hub.readers.base import NO_ACTIVE_CONNECTION, ReaderBase
from eld_integration_hub.readers.diagnostics import (
    DiagnosticsReader,
    DiagnosticsReport,
    DiagnosticsSummary,
    FaultView,
)
from eld_integration_hub.readers.gps import (
    FleetLocations,
    GpsDashboard,
    GpsReader,
    VehicleLocationHistory,
    VehicleLocationView,
    history_dataframe,
)
from eld_integration_hub.readers.hos import (
    DriverHosDetails,
    DriverHosStatus,
    HosComplianceReport,
    HosDashboard,
    HosReader,
    HosStatusReport,
)

__all__: list[str] = [
    'NO_ACTIVE_CONNECTION',
    'DiagnosticsReader',
    'DiagnosticsReport',
    'DiagnosticsSummary',
    'DriverHosDetails',
    'DriverHosStatus',
    'FaultView',
    'FleetLocations',
    'GpsDashboard',
    'GpsReader',
    'HosComplianceReport',
    'HosDashboard',
    'HosReader',
    'HosStatusReport',
    'ReaderBase',
    'VehicleLocationHistory',
    'VehicleLocationView',
    'history_dataframe',
]
