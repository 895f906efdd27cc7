# eld_integration_hub/storage/__init__.py

from eld_integration_hub.storage.database import (
    build_engine,
    build_session_factory,
    create_schema,
)
from eld_integration_hub.storage.tables import (
    FLEET_WIDE_VEHICLE_KEY,
    Base,
    DriverMileageCrossing,
    DriverMileageTrip,
    ELDConnection,
    EntityMapping,
    FaultCodeRecord,
    FuelPurchaseRecord,
    HosDailyLogRecord,
    HosLogRecord,
    IftaMileageRecord,
    IftaTripRecord,
    LocalDriver,
    LocalVehicle,
    SyncJob,
    VehicleLocationRecord,
)
from eld_integration_hub.storage.upsert import insert_ignore, upsert

__all__: list[str] = [
    'FLEET_WIDE_VEHICLE_KEY',
    'Base',
    'DriverMileageCrossing',
    'DriverMileageTrip',
    'ELDConnection',
    'EntityMapping',
    'FaultCodeRecord',
    'FuelPurchaseRecord',
    'HosDailyLogRecord',
    'HosLogRecord',
    'IftaMileageRecord',
    'IftaTripRecord',
    'LocalDriver',
    'LocalVehicle',
    'SyncJob',
    'VehicleLocationRecord',
    'build_engine',
    'build_session_factory',
    'create_schema',
    'insert_ignore',
    'upsert',
]
