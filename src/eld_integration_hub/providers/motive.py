# eld_integration_hub/providers/motive.py
"""
Motive (formerly KeepTruckin) adapter.

Motive exposes dedicated IFTA endpoints: per-trip jurisdiction breakdowns
and a pre-aggregated summary. List endpoints page with page_no/per_page and
wrap each record in a single-key object, which the endpoint definitions
unwrap.

API documentation: https://developer.gomotive.com
"""

import logging
from datetime import date, datetime
from typing import Any, ClassVar

from eld_integration_hub.errors import APIError, AuthError, RecordValidationError
from eld_integration_hub.models import (
    Driver,
    FaultCode,
    FuelPurchase,
    GPSLocation,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    JurisdictionMileage,
    MotiveEndpoints,
    RawRecord,
    Vehicle,
    classify_fault_severity,
    normalize_duty_status,
)
from eld_integration_hub.providers.base import (
    ConnectionVerification,
    ELDProvider,
    ProviderCapability,
    nested,
    parse_timestamp,
    require_timestamp,
    string_id,
)

__all__: list[str] = ['MotiveProvider']

logger: logging.Logger = logging.getLogger(__name__)


class MotiveProvider(ELDProvider):
    """Adapter for the Motive v1 API."""

    provider_id: ClassVar[str] = 'motive'
    display_name: ClassVar[str] = 'Motive (KeepTruckin)'
    description: ClassVar[str] = 'Largest ELD provider, with dedicated IFTA endpoints.'
    docs_url: ClassVar[str] = 'https://developer.gomotive.com'
    capabilities: ClassVar[frozenset[ProviderCapability]] = frozenset(
        {
            ProviderCapability.VEHICLES,
            ProviderCapability.DRIVERS,
            ProviderCapability.GPS,
            ProviderCapability.GPS_HISTORY,
            ProviderCapability.HOS,
            ProviderCapability.IFTA,
            ProviderCapability.IFTA_TRIPS,
            ProviderCapability.IFTA_SUMMARY,
            ProviderCapability.FAULT_CODES,
            ProviderCapability.FUEL_PURCHASES,
            ProviderCapability.WEBHOOKS,
        }
    )

    DEFAULT_BASE_URL: ClassVar[str] = 'https://api.gomotive.com/v1'
    AUTHORIZE_URL: ClassVar[str] = 'https://api.gomotive.com/oauth/authorize'
    TOKEN_URL: ClassVar[str] = 'https://api.gomotive.com/oauth/token'
    DEFAULT_SCOPES: ClassVar[tuple[str, ...]] = (
        'vehicles.read',
        'drivers.read',
        'hos.read',
        'ifta.read',
        'locations.read',
        'fault_codes.read',
        'fuel_purchases.read',
    )

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def verify_connection(self) -> ConnectionVerification:
        """Probe /users/me; the company name comes from the user's company."""
        try:
            record: RawRecord | None = self._fetch_one(MotiveEndpoints.CURRENT_USER)
        except (AuthError, APIError) as error:
            logger.warning('Motive connection verification failed: %s', error)
            return ConnectionVerification(valid=False, error_message=str(error))

        user: Any = nested(record or {}, 'user') or record or {}
        return ConnectionVerification(
            valid=True,
            company_name=nested(user, 'company', 'name') or 'Unknown',
            provider_label='Motive',
            external_connection_id=string_id(nested(user, 'company', 'id')),
        )

    # -------------------------------------------------------------------------
    # Fleet Entities
    # -------------------------------------------------------------------------

    def _fetch_vehicles(self) -> list[Vehicle]:
        return self._convert(
            self._fetch(MotiveEndpoints.VEHICLES), _to_vehicle, 'vehicles'
        )

    def _fetch_drivers(self) -> list[Driver]:
        return self._convert(self._fetch(MotiveEndpoints.DRIVERS), _to_driver, 'drivers')

    # -------------------------------------------------------------------------
    # GPS
    # -------------------------------------------------------------------------

    def _fetch_current_locations(self) -> list[GPSLocation]:
        return self._convert(
            self._fetch(MotiveEndpoints.VEHICLE_LOCATIONS),
            _to_location,
            'locations',
        )

    def _fetch_location_history(
        self,
        start: datetime,
        end: datetime,
        external_vehicle_id: str | None,
    ) -> list[GPSLocation]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.VEHICLE_LOCATIONS,
            vehicle_ids=[external_vehicle_id] if external_vehicle_id else None,
            start_date=start,
            end_date=end,
        )
        return self._convert(records, _to_location, 'location history points')

    # -------------------------------------------------------------------------
    # HOS
    # -------------------------------------------------------------------------

    def _fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.HOS_LOGS, start_date=start, end_date=end
        )
        return self._convert(records, _to_hos_log, 'HOS logs')

    # -------------------------------------------------------------------------
    # IFTA
    # -------------------------------------------------------------------------

    def _fetch_ifta_trips(self, start: date, end: date) -> list[IFTATrip]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.IFTA_TRIPS, start_date=start, end_date=end
        )
        return self._convert(records, _to_ifta_trip, 'IFTA trips')

    def _fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.IFTA_SUMMARY, start_date=start, end_date=end
        )
        summaries: list[IFTAJurisdictionSummary] = []
        for group in self._convert(records, _to_ifta_summaries, 'IFTA summaries'):
            summaries.extend(group)
        return summaries

    # -------------------------------------------------------------------------
    # Diagnostics & Fuel
    # -------------------------------------------------------------------------

    def _fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.FAULT_CODES, start_date=start, end_date=end
        )
        return self._convert(records, _to_fault_code, 'fault codes')

    def _fetch_fuel_purchases(self, start: datetime, end: datetime) -> list[FuelPurchase]:
        records: list[RawRecord] = self._fetch(
            MotiveEndpoints.FUEL_PURCHASES, start_date=start, end_date=end
        )
        return self._convert(records, _to_fuel_purchase, 'fuel purchases')


# =============================================================================
# Record Conversion
# =============================================================================


def _required_id(record: RawRecord, *keys: str) -> str:
    value: str | None = string_id(nested(record, *keys))
    if value is None:
        raise RecordValidationError(f'Missing {".".join(keys)}')
    return value


def _to_vehicle(record: RawRecord) -> Vehicle:
    year: Any = record.get('year')
    return Vehicle(
        external_id=_required_id(record, 'id'),
        name=record.get('number') or record.get('name'),
        vin=record.get('vin'),
        license_plate=record.get('license_plate_number'),
        license_state=record.get('license_plate_state'),
        make=record.get('make'),
        model=record.get('model'),
        year=int(year) if year else None,
        status=record.get('status') or 'active',
        odometer_miles=record.get('current_odometer'),
    )


def _to_driver(record: RawRecord) -> Driver:
    return Driver(
        external_id=_required_id(record, 'id'),
        first_name=record.get('first_name') or '',
        last_name=record.get('last_name') or '',
        email=record.get('email'),
        phone=record.get('phone'),
        license_number=record.get('driver_license_number'),
        license_state=record.get('driver_license_state'),
        status=record.get('status') or 'active',
    )


def _to_location(record: RawRecord) -> GPSLocation:
    return GPSLocation(
        external_vehicle_id=_required_id(record, 'vehicle', 'id'),
        latitude=record['latitude'],
        longitude=record['longitude'],
        recorded_at=require_timestamp(record.get('located_at'), 'located_at'),
        heading=record.get('bearing'),
        speed_mph=record.get('speed'),
        address=record.get('description'),
        odometer_miles=record.get('odometer'),
    )


def _to_hos_log(record: RawRecord) -> HOSLog:
    driver_id: str = _required_id(record, 'driver', 'id')
    start_time: datetime = require_timestamp(record.get('start_time'), 'start_time')
    duration_seconds: Any = record.get('duration')
    raw_status: str | None = record.get('status')

    return HOSLog(
        external_id=string_id(record.get('id')) or f'{driver_id}:{start_time.isoformat()}',
        external_driver_id=driver_id,
        external_vehicle_id=string_id(nested(record, 'vehicle', 'id')),
        duty_status=normalize_duty_status(raw_status),
        raw_status=raw_status,
        start_time=start_time,
        end_time=parse_timestamp(record.get('end_time')),
        duration_minutes=round(duration_seconds / 60) if duration_seconds else None,
        location=nested(record, 'location', 'name'),
        notes=record.get('notes'),
    )


def _jurisdiction_entries(details: Any) -> list[JurisdictionMileage]:
    """Sum repeated jurisdictions; Motive splits a state crossed twice."""
    miles_by_jurisdiction: dict[str, float] = {}
    for detail in details or []:
        jurisdiction: Any = detail.get('jurisdiction') if isinstance(detail, dict) else None
        if not jurisdiction:
            continue
        code: str = str(jurisdiction).upper()
        miles_by_jurisdiction[code] = miles_by_jurisdiction.get(code, 0.0) + float(
            detail.get('distance') or 0.0
        )
    return [
        JurisdictionMileage(jurisdiction=code, miles=miles)
        for code, miles in miles_by_jurisdiction.items()
    ]


def _to_ifta_trip(record: RawRecord) -> IFTATrip:
    start_time: datetime | None = parse_timestamp(record.get('start_time'))
    end_time: datetime | None = parse_timestamp(record.get('end_time'))
    return IFTATrip(
        external_id=_required_id(record, 'id'),
        external_vehicle_id=_required_id(record, 'vehicle', 'id'),
        start_date=start_time.date() if start_time else None,
        end_date=end_time.date() if end_time else None,
        jurisdictions=_jurisdiction_entries(record.get('jurisdiction_details')),
    )


def _to_ifta_summaries(record: RawRecord) -> list[IFTAJurisdictionSummary]:
    vehicle_id: str | None = string_id(nested(record, 'vehicle', 'id'))
    return [
        IFTAJurisdictionSummary(
            jurisdiction=entry.jurisdiction,
            total_miles=entry.miles,
            external_vehicle_id=vehicle_id,
        )
        for entry in _jurisdiction_entries(record.get('jurisdiction_breakdown'))
    ]


def _to_fault_code(record: RawRecord) -> FaultCode:
    code: str = str(record.get('code') or 'UNKNOWN')
    return FaultCode(
        external_id=_required_id(record, 'id'),
        external_vehicle_id=_required_id(record, 'vehicle', 'id'),
        code=code,
        severity=classify_fault_severity(record.get('severity'), code),
        description=record.get('description'),
        source=record.get('source') or 'engine',
        first_observed_at=parse_timestamp(record.get('first_observed_at')),
        last_observed_at=parse_timestamp(record.get('last_observed_at')),
        is_active=record.get('is_active') is not False,
    )


def _to_fuel_purchase(record: RawRecord) -> FuelPurchase:
    return FuelPurchase(
        external_id=_required_id(record, 'id'),
        external_vehicle_id=string_id(nested(record, 'vehicle', 'id')),
        external_driver_id=string_id(nested(record, 'driver', 'id')),
        purchased_at=require_timestamp(record.get('transaction_date'), 'transaction_date'),
        jurisdiction=record.get('state'),
        gallons=record.get('gallons') or 0.0,
        price_per_gallon=record.get('price_per_gallon'),
        total_cost=record.get('total_cost'),
        vendor=record.get('merchant_name'),
    )
