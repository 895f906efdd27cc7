# eld_integration_hub/storage/tables.py
"""
Relational schema for connections, mappings and synced ELD data.

Two groups of tables live here:

- ELD tables (prefixed `eld_`) are owned by the integration core. Every
  synced row carries its connection_id and a natural idempotency key with a
  unique constraint, so repeated syncs upsert in place.

- Host tables (`vehicles`, `drivers`, `driver_mileage_*`,
  `ifta_trip_records`) belong to the hosting application. Only the columns
  the core reads or writes are modelled.

Design Decisions:
-----------------
- Primary keys are string UUIDs generated client-side, so ids are known
  before flush and portable between SQLite and PostgreSQL.

- All timestamps go through UTCDateTime: aware UTC in, aware UTC out, even
  on SQLite which stores naive values.

- Connection deletion cascades are performed explicitly by the connection
  manager in dependency order; foreign keys here document the relationship
  and use ON DELETE CASCADE as a backstop on databases that enforce it.
"""

from datetime import UTC, date, datetime
from typing import Any, Final
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Dialect,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

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
    'UTCDateTime',
    'VehicleLocationRecord',
    'new_id',
    'utc_now',
]

# Stands in for external_vehicle_id on fleet-wide IFTA rows so the unique
# key still applies (NULLs never conflict).
FLEET_WIDE_VEHICLE_KEY: Final[str] = '*'


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetimes on every backend."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base for every table the core touches."""

    type_annotation_map = {datetime: UTCDateTime, dict[str, Any]: JSON, list[str]: JSON}


# =============================================================================
# Connections & Mappings
# =============================================================================


class ELDConnection(Base):
    """One owner's authorization with one provider."""

    __tablename__ = 'eld_connections'
    __table_args__ = (UniqueConstraint('owner_id', 'provider_id', name='uq_eld_connection_owner_provider'),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    provider_id: Mapped[str] = mapped_column(String(32))
    access_token: Mapped[str | None] = mapped_column(Text)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    token_expires_at: Mapped[datetime | None]
    status: Mapped[str] = mapped_column(String(20), default='active', index=True)
    company_name: Mapped[str | None] = mapped_column(String(255))
    external_connection_id: Mapped[str | None] = mapped_column(String(128), index=True)
    sync_frequency_minutes: Mapped[int] = mapped_column(Integer, default=60)
    last_sync_at: Mapped[datetime | None]
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)


class EntityMapping(Base):
    """Link between a provider's external id and a local vehicle or driver."""

    __tablename__ = 'eld_entity_mappings'
    __table_args__ = (
        UniqueConstraint(
            'connection_id', 'entity_type', 'external_id', name='uq_eld_mapping_external'
        ),
        Index('ix_eld_mapping_local', 'connection_id', 'entity_type', 'local_id'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    entity_type: Mapped[str] = mapped_column(String(16))
    external_id: Mapped[str] = mapped_column(String(128))
    external_name: Mapped[str | None] = mapped_column(String(255))
    local_id: Mapped[str] = mapped_column(String(36))
    match_method: Mapped[str] = mapped_column(String(16))
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    match_details: Mapped[dict[str, Any]] = mapped_column(default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)


class SyncJob(Base):
    """One sync_all run for a connection."""

    __tablename__ = 'eld_sync_jobs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE'), index=True
    )
    status: Mapped[str] = mapped_column(String(16), default='running')
    domains: Mapped[list[str]] = mapped_column(default=list)
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict[str, Any]] = mapped_column(default=dict)
    started_at: Mapped[datetime] = mapped_column(default=utc_now)
    completed_at: Mapped[datetime | None]


# =============================================================================
# Synced Records
# =============================================================================


class VehicleLocationRecord(Base):
    __tablename__ = 'eld_vehicle_locations'
    __table_args__ = (
        UniqueConstraint(
            'connection_id', 'external_vehicle_id', 'recorded_at', name='uq_eld_location_point'
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_vehicle_id: Mapped[str] = mapped_column(String(128))
    vehicle_id: Mapped[str | None] = mapped_column(String(36), index=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    heading: Mapped[float | None] = mapped_column(Float)
    speed_mph: Mapped[float | None] = mapped_column(Float)
    address: Mapped[str | None] = mapped_column(Text)
    odometer_miles: Mapped[float | None] = mapped_column(Float)
    recorded_at: Mapped[datetime]


class HosLogRecord(Base):
    __tablename__ = 'eld_hos_logs'
    __table_args__ = (
        UniqueConstraint('connection_id', 'external_id', name='uq_eld_hos_log'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_id: Mapped[str] = mapped_column(String(128))
    external_driver_id: Mapped[str] = mapped_column(String(128))
    driver_id: Mapped[str | None] = mapped_column(String(36), index=True)
    external_vehicle_id: Mapped[str | None] = mapped_column(String(128))
    vehicle_id: Mapped[str | None] = mapped_column(String(36))
    duty_status: Mapped[str] = mapped_column(String(16))
    raw_status: Mapped[str | None] = mapped_column(String(64))
    start_time: Mapped[datetime]
    end_time: Mapped[datetime | None]
    duration_minutes: Mapped[float | None] = mapped_column(Float)
    location: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)


class HosDailyLogRecord(Base):
    __tablename__ = 'eld_hos_daily_logs'
    __table_args__ = (
        UniqueConstraint(
            'connection_id', 'external_driver_id', 'log_date', name='uq_eld_hos_daily_log'
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_driver_id: Mapped[str] = mapped_column(String(128))
    driver_id: Mapped[str | None] = mapped_column(String(36), index=True)
    log_date: Mapped[date] = mapped_column(Date)
    driving_minutes: Mapped[int] = mapped_column(Integer, default=0)
    on_duty_minutes: Mapped[int] = mapped_column(Integer, default=0)
    off_duty_minutes: Mapped[int] = mapped_column(Integer, default=0)
    sleeper_minutes: Mapped[int] = mapped_column(Integer, default=0)
    has_violation: Mapped[bool] = mapped_column(Boolean, default=False)
    violations: Mapped[list[str]] = mapped_column(default=list)
    # Remaining clocks as last reported by providers that expose them.
    drive_minutes_remaining: Mapped[int | None] = mapped_column(Integer)
    shift_minutes_remaining: Mapped[int | None] = mapped_column(Integer)
    cycle_minutes_remaining: Mapped[int | None] = mapped_column(Integer)
    current_duty_status: Mapped[str | None] = mapped_column(String(16))


class IftaMileageRecord(Base):
    __tablename__ = 'eld_ifta_mileage'
    __table_args__ = (
        UniqueConstraint(
            'connection_id',
            'external_vehicle_id',
            'jurisdiction',
            'period',
            name='uq_eld_ifta_mileage',
        ),
        Index('ix_eld_ifta_quarter', 'connection_id', 'quarter'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_vehicle_id: Mapped[str] = mapped_column(String(128))
    vehicle_id: Mapped[str | None] = mapped_column(String(36))
    jurisdiction: Mapped[str] = mapped_column(String(3))
    period: Mapped[str] = mapped_column(String(7))
    quarter: Mapped[str] = mapped_column(String(7))
    miles: Mapped[float] = mapped_column(Float, default=0.0)
    fuel_gallons: Mapped[float | None] = mapped_column(Float)
    synced_at: Mapped[datetime] = mapped_column(default=utc_now)


class FaultCodeRecord(Base):
    __tablename__ = 'eld_fault_codes'
    __table_args__ = (
        UniqueConstraint('connection_id', 'external_id', name='uq_eld_fault_code'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_id: Mapped[str] = mapped_column(String(128))
    external_vehicle_id: Mapped[str] = mapped_column(String(128))
    vehicle_id: Mapped[str | None] = mapped_column(String(36), index=True)
    code: Mapped[str] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(16))
    source: Mapped[str | None] = mapped_column(String(32))
    first_observed_at: Mapped[datetime | None]
    last_observed_at: Mapped[datetime | None]
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1)
    resolved_at: Mapped[datetime | None]


class FuelPurchaseRecord(Base):
    __tablename__ = 'eld_fuel_purchases'
    __table_args__ = (
        UniqueConstraint('connection_id', 'external_id', name='uq_eld_fuel_purchase'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey('eld_connections.id', ondelete='CASCADE')
    )
    external_id: Mapped[str] = mapped_column(String(128))
    external_vehicle_id: Mapped[str | None] = mapped_column(String(128))
    vehicle_id: Mapped[str | None] = mapped_column(String(36))
    external_driver_id: Mapped[str | None] = mapped_column(String(128))
    driver_id: Mapped[str | None] = mapped_column(String(36))
    purchased_at: Mapped[datetime]
    jurisdiction: Mapped[str | None] = mapped_column(String(3))
    gallons: Mapped[float] = mapped_column(Float)
    price_per_gallon: Mapped[float | None] = mapped_column(Float)
    total_cost: Mapped[float | None] = mapped_column(Float)
    vendor: Mapped[str | None] = mapped_column(String(255))
    is_estimated: Mapped[bool] = mapped_column(Boolean, default=False)


# =============================================================================
# Host Application Tables
# =============================================================================


class LocalVehicle(Base):
    __tablename__ = 'vehicles'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    vin: Mapped[str | None] = mapped_column(String(32))
    license_plate: Mapped[str | None] = mapped_column(String(32))
    license_state: Mapped[str | None] = mapped_column(String(3))
    make: Mapped[str | None] = mapped_column(String(64))
    model: Mapped[str | None] = mapped_column(String(64))
    year: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str | None] = mapped_column(String(32))
    eld_external_id: Mapped[str | None] = mapped_column(String(128))
    eld_provider: Mapped[str | None] = mapped_column(String(32))
    last_known_location: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    last_location_at: Mapped[datetime | None]


class LocalDriver(Base):
    __tablename__ = 'drivers'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    first_name: Mapped[str | None] = mapped_column(String(128))
    last_name: Mapped[str | None] = mapped_column(String(128))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(32))
    license_number: Mapped[str | None] = mapped_column(String(64))
    license_state: Mapped[str | None] = mapped_column(String(3))
    status: Mapped[str | None] = mapped_column(String(32))
    eld_external_id: Mapped[str | None] = mapped_column(String(128))
    eld_provider: Mapped[str | None] = mapped_column(String(32))

    @property
    def full_name(self) -> str:
        return f'{self.first_name or ""} {self.last_name or ""}'.strip()


class DriverMileageTrip(Base):
    """A manually logged trip from the State Mileage Tracker."""

    __tablename__ = 'driver_mileage_trips'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    vehicle_id: Mapped[str | None] = mapped_column(String(36))
    status: Mapped[str] = mapped_column(String(16), default='active')
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)


class DriverMileageCrossing(Base):
    """An odometer reading taken when a manual trip entered a jurisdiction."""

    __tablename__ = 'driver_mileage_crossings'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trip_id: Mapped[str] = mapped_column(
        ForeignKey('driver_mileage_trips.id', ondelete='CASCADE'), index=True
    )
    state: Mapped[str] = mapped_column(String(3))
    odometer: Mapped[float] = mapped_column(Float)
    crossed_at: Mapped[datetime]


class IftaTripRecord(Base):
    """A row of the host's IFTA trip ledger."""

    __tablename__ = 'ifta_trip_records'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    quarter: Mapped[str] = mapped_column(String(7))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    start_jurisdiction: Mapped[str] = mapped_column(String(3))
    end_jurisdiction: Mapped[str] = mapped_column(String(3))
    total_miles: Mapped[float] = mapped_column(Float, default=0.0)
    gallons: Mapped[float] = mapped_column(Float, default=0.0)
    fuel_cost: Mapped[float] = mapped_column(Float, default=0.0)
    is_eld_data: Mapped[bool] = mapped_column(Boolean, default=False)
    eld_connection_id: Mapped[str | None] = mapped_column(String(36))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)
