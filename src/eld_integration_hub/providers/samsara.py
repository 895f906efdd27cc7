# eld_integration_hub/providers/samsara.py
"""
Samsara adapter.

Samsara reports distances in meters and nests most telemetry under
/fleet/vehicles/stats, keyed by stat type ('gps', 'faultCodes',
'fuelPercents'). Every list is cursor-paginated.

Two features are derived rather than read directly:

- IFTA mileage falls back to GPS history when the jurisdiction report is
  unavailable: consecutive breadcrumbs are joined with the haversine
  distance, and each leg's miles go to the state parsed from the later
  point's reverse-geocoded address.
- Fuel purchases are estimated from fuel-level jumps, since Samsara has no
  purchase endpoint.

API documentation: https://developers.samsara.com
"""

import logging
from datetime import date, datetime
from typing import Any, ClassVar, Final

from eld_integration_hub.common import extract_state, haversine_miles
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    RateLimitError,
    RecordValidationError,
)
from eld_integration_hub.models import (
    METERS_TO_MILES,
    Driver,
    FaultCode,
    FuelPurchase,
    GPSLocation,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    JurisdictionMileage,
    RawRecord,
    SamsaraEndpoints,
    Vehicle,
    classify_fault_severity,
    normalize_duty_status,
)
from eld_integration_hub.providers.base import (
    ConnectionVerification,
    ELDProvider,
    ProviderCapability,
    day_bounds,
    nested,
    parse_timestamp,
    require_timestamp,
    string_id,
)

__all__: list[str] = ['SamsaraProvider']

logger: logging.Logger = logging.getLogger(__name__)

# A fill-up shows as a fuel level jump of more than this many percentage
# points between consecutive readings.
FUEL_FILL_THRESHOLD_PERCENT: Final[float] = 10.0
ASSUMED_TANK_GALLONS: Final[float] = 50.0


class SamsaraProvider(ELDProvider):
    """Adapter for the Samsara REST API."""

    provider_id: ClassVar[str] = 'samsara'
    display_name: ClassVar[str] = 'Samsara'
    description: ClassVar[str] = 'Second-largest ELD provider with real-time GPS feeds.'
    docs_url: ClassVar[str] = 'https://developers.samsara.com'
    capabilities: ClassVar[frozenset[ProviderCapability]] = frozenset(
        {
            ProviderCapability.VEHICLES,
            ProviderCapability.DRIVERS,
            ProviderCapability.GPS,
            ProviderCapability.GPS_FEED,
            ProviderCapability.GPS_HISTORY,
            ProviderCapability.HOS,
            ProviderCapability.IFTA,
            ProviderCapability.IFTA_SUMMARY,
            ProviderCapability.FAULT_CODES,
            ProviderCapability.FUEL_PURCHASES,
            ProviderCapability.WEBHOOKS,
        }
    )

    DEFAULT_BASE_URL: ClassVar[str] = 'https://api.samsara.com'
    AUTHORIZE_URL: ClassVar[str] = 'https://api.samsara.com/oauth2/authorize'
    TOKEN_URL: ClassVar[str] = 'https://api.samsara.com/oauth2/token'
    DEFAULT_SCOPES: ClassVar[tuple[str, ...]] = (
        'vehicles:read',
        'drivers:read',
        'vehicle_stats:read',
        'hos:read',
        'ifta:read',
    )

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def verify_connection(self) -> ConnectionVerification:
        """Probe /fleet/vehicles with limit=1; Samsara exposes no org name here."""
        try:
            self._client.fetch_page(
                SamsaraEndpoints.VEHICLES, self._credentials(), limit=1
            )
        except (AuthError, APIError) as error:
            logger.warning('Samsara connection verification failed: %s', error)
            return ConnectionVerification(valid=False, error_message=str(error))

        return ConnectionVerification(
            valid=True,
            company_name='Samsara Organization',
            provider_label='Samsara',
        )

    # -------------------------------------------------------------------------
    # Fleet Entities
    # -------------------------------------------------------------------------

    def _fetch_vehicles(self) -> list[Vehicle]:
        return self._convert(
            self._fetch(SamsaraEndpoints.VEHICLES), _to_vehicle, 'vehicles'
        )

    def _fetch_drivers(self) -> list[Driver]:
        return self._convert(self._fetch(SamsaraEndpoints.DRIVERS), _to_driver, 'drivers')

    # -------------------------------------------------------------------------
    # GPS
    # -------------------------------------------------------------------------

    def _fetch_current_locations(self) -> list[GPSLocation]:
        records: list[RawRecord] = self._fetch(SamsaraEndpoints.VEHICLE_STATS, types='gps')
        return self._convert(records, _to_current_location, 'locations')

    def _fetch_location_history(
        self,
        start: datetime,
        end: datetime,
        external_vehicle_id: str | None,
    ) -> list[GPSLocation]:
        records: list[RawRecord] = self._fetch(
            SamsaraEndpoints.VEHICLE_STATS_HISTORY,
            types='gps',
            vehicle_ids=[external_vehicle_id] if external_vehicle_id else None,
            start_time=start,
            end_time=end,
        )
        locations: list[GPSLocation] = []
        for batch in self._convert(records, _to_location_history, 'location histories'):
            locations.extend(batch)
        return locations

    # -------------------------------------------------------------------------
    # HOS
    # -------------------------------------------------------------------------

    def _fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        records: list[RawRecord] = self._fetch(
            SamsaraEndpoints.HOS_LOGS, start_time=start, end_time=end
        )
        return self._convert(records, _to_hos_log, 'HOS logs')

    # -------------------------------------------------------------------------
    # IFTA
    # -------------------------------------------------------------------------

    def _fetch_ifta_trips(self, start: date, end: date) -> list[IFTATrip]:
        """
        Jurisdiction report rows as one synthetic trip per vehicle.

        Falls back to GPS-derived mileage when the report fails for any
        reason other than authentication or rate limiting.
        """
        try:
            records: list[RawRecord] = self._fetch(
                SamsaraEndpoints.IFTA_JURISDICTION_REPORT, start_date=start, end_date=end
            )
        except (AuthError, RateLimitError):
            raise
        except APIError as error:
            logger.warning(
                'Samsara IFTA report unavailable (%s); computing mileage from GPS',
                error,
            )
            return self.calculate_ifta_from_gps(start, end)

        return self._convert(
            records,
            lambda record: _report_to_trip(record, start, end),
            'IFTA reports',
        )

    def _fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        summaries: list[IFTAJurisdictionSummary] = []
        for trip in self._fetch_ifta_trips(start, end):
            summaries.extend(
                IFTAJurisdictionSummary(
                    jurisdiction=entry.jurisdiction,
                    total_miles=entry.miles,
                    external_vehicle_id=trip.external_vehicle_id,
                    fuel_gallons=entry.fuel_gallons,
                )
                for entry in trip.jurisdictions
            )
        return summaries

    def calculate_ifta_from_gps(self, start: date, end: date) -> list[IFTATrip]:
        """
        Derive per-vehicle jurisdiction miles from GPS breadcrumbs.

        Legs whose end point has no parseable state are not attributed.
        Vehicles whose history cannot be fetched are skipped with a warning.
        """
        start_time, end_time = day_bounds(start, end)
        trips: list[IFTATrip] = []

        for vehicle in self._fetch_vehicles():
            try:
                history: list[GPSLocation] = self._fetch_location_history(
                    start_time, end_time, vehicle.external_id
                )
            except (AuthError, RateLimitError):
                raise
            except APIError as error:
                logger.warning(
                    'Skipping GPS IFTA for vehicle %r: %s', vehicle.external_id, error
                )
                continue

            jurisdictions: list[JurisdictionMileage] = jurisdiction_miles_from_points(
                history
            )
            if not jurisdictions:
                continue

            trips.append(
                IFTATrip(
                    external_id=f'gps:{vehicle.external_id}:{start.isoformat()}',
                    external_vehicle_id=vehicle.external_id,
                    start_date=start,
                    end_date=end,
                    jurisdictions=jurisdictions,
                )
            )

        logger.info('Computed GPS-based IFTA mileage for %d vehicles', len(trips))
        return trips

    # -------------------------------------------------------------------------
    # Diagnostics & Fuel
    # -------------------------------------------------------------------------

    def _fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        # Fault codes are a current snapshot; the window is not a filter here.
        records: list[RawRecord] = self._fetch(
            SamsaraEndpoints.VEHICLE_STATS, types='faultCodes'
        )
        faults: list[FaultCode] = []
        for batch in self._convert(records, _to_fault_codes, 'fault code snapshots'):
            faults.extend(batch)
        return faults

    def _fetch_fuel_purchases(self, start: datetime, end: datetime) -> list[FuelPurchase]:
        records: list[RawRecord] = self._fetch(
            SamsaraEndpoints.VEHICLE_STATS_HISTORY,
            types='fuelPercents',
            start_time=start,
            end_time=end,
        )
        purchases: list[FuelPurchase] = []
        for batch in self._convert(records, estimate_fuel_purchases, 'fuel level histories'):
            purchases.extend(batch)
        return purchases


# =============================================================================
# Derived Data
# =============================================================================


def jurisdiction_miles_from_points(points: list[GPSLocation]) -> list[JurisdictionMileage]:
    """
    Attribute haversine leg distances to states parsed from addresses.

    Points are ordered by time first.
    """
    ordered: list[GPSLocation] = sorted(points, key=lambda point: point.recorded_at)
    miles_by_state: dict[str, float] = {}

    for previous, current in zip(ordered, ordered[1:], strict=False):
        state: str | None = extract_state(current.address)
        if state is None:
            continue
        miles_by_state[state] = miles_by_state.get(state, 0.0) + haversine_miles(
            previous.latitude, previous.longitude, current.latitude, current.longitude
        )

    return [
        JurisdictionMileage(jurisdiction=state, miles=miles)
        for state, miles in sorted(miles_by_state.items())
        if miles > 0
    ]


def estimate_fuel_purchases(record: RawRecord) -> list[FuelPurchase]:
    """
    Infer fill-ups from a vehicle's fuel level series.

    A jump of more than FUEL_FILL_THRESHOLD_PERCENT points is a purchase of
    (delta% x 50 gallons).
    """
    vehicle_id: str | None = string_id(record.get('id'))
    if vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')

    purchases: list[FuelPurchase] = []
    previous_level: float | None = None

    for reading in record.get('fuelPercents') or []:
        level: Any = reading.get('value')
        if level is None:
            continue
        current_level: float = float(level)

        if previous_level is not None and current_level > previous_level + FUEL_FILL_THRESHOLD_PERCENT:
            purchased_at: datetime = require_timestamp(reading.get('time'), 'time')
            purchases.append(
                FuelPurchase(
                    external_id=f'est:{vehicle_id}:{purchased_at.isoformat()}',
                    external_vehicle_id=vehicle_id,
                    purchased_at=purchased_at,
                    gallons=(current_level - previous_level) * ASSUMED_TANK_GALLONS / 100,
                    is_estimated=True,
                )
            )
        previous_level = current_level

    return purchases


# =============================================================================
# Record Conversion
# =============================================================================


def _meters_to_miles(meters: Any) -> float | None:
    return float(meters) * METERS_TO_MILES if meters else None


def _to_vehicle(record: RawRecord) -> Vehicle:
    external_id: str | None = string_id(record.get('id'))
    if external_id is None:
        raise RecordValidationError('Missing vehicle id')
    year: Any = record.get('year')
    return Vehicle(
        external_id=external_id,
        name=record.get('name'),
        vin=record.get('vin'),
        license_plate=record.get('licensePlate'),
        make=record.get('make'),
        model=record.get('model'),
        year=int(year) if year else None,
        status='active' if record.get('vehicleRegulationMode') == 'regulated' else 'inactive',
        odometer_miles=_meters_to_miles(record.get('odometerMeters')),
    )


def _to_driver(record: RawRecord) -> Driver:
    external_id: str | None = string_id(record.get('id'))
    if external_id is None:
        raise RecordValidationError('Missing driver id')
    first_name, _, last_name = str(record.get('name') or '').strip().partition(' ')
    return Driver(
        external_id=external_id,
        first_name=first_name,
        last_name=last_name.strip(),
        email=record.get('email'),
        phone=record.get('phone'),
        license_number=record.get('licenseNumber'),
        license_state=record.get('licenseState'),
        status='active' if record.get('driverActivationStatus') == 'active' else 'inactive',
    )


def _gps_point(vehicle_id: str, gps: RawRecord) -> GPSLocation:
    return GPSLocation(
        external_vehicle_id=vehicle_id,
        latitude=gps['latitude'],
        longitude=gps['longitude'],
        recorded_at=require_timestamp(gps.get('time'), 'time'),
        heading=gps.get('headingDegrees'),
        speed_mph=gps.get('speedMilesPerHour'),
        address=nested(gps, 'reverseGeo', 'formattedLocation'),
        odometer_miles=_meters_to_miles(gps.get('odometerMeters')),
    )


def _to_current_location(record: RawRecord) -> GPSLocation | None:
    vehicle_id: str | None = string_id(record.get('id'))
    if vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')
    gps: Any = record.get('gps')
    # The snapshot endpoint returns a single object; some versions a list.
    if isinstance(gps, list):
        gps = gps[0] if gps else None
    if not isinstance(gps, dict):
        return None
    return _gps_point(vehicle_id, gps)  # pyright: ignore[reportUnknownArgumentType]


def _to_location_history(record: RawRecord) -> list[GPSLocation]:
    vehicle_id: str | None = string_id(record.get('id'))
    if vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')
    return [_gps_point(vehicle_id, gps) for gps in record.get('gps') or []]


def _to_hos_log(record: RawRecord) -> HOSLog:
    driver_id: str | None = string_id(nested(record, 'driver', 'id'))
    if driver_id is None:
        raise RecordValidationError('Missing driver id')
    start_time: datetime = require_timestamp(
        record.get('logStartTime') or record.get('startTime'), 'logStartTime'
    )
    duration_ms: Any = record.get('durationMs')
    raw_status: str | None = record.get('hosStatusType')

    return HOSLog(
        external_id=string_id(record.get('id')) or f'{driver_id}:{start_time.isoformat()}',
        external_driver_id=driver_id,
        external_vehicle_id=string_id(nested(record, 'vehicle', 'id')),
        duty_status=normalize_duty_status(raw_status),
        raw_status=raw_status,
        start_time=start_time,
        end_time=parse_timestamp(record.get('logEndTime') or record.get('endTime')),
        duration_minutes=round(duration_ms / 60000) if duration_ms else None,
        location=nested(record, 'location', 'name'),
        notes=record.get('remark'),
    )


def _report_to_trip(record: RawRecord, start: date, end: date) -> IFTATrip:
    vehicle_id: str | None = string_id(nested(record, 'vehicle', 'id'))
    if vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')

    jurisdictions: list[JurisdictionMileage] = [
        JurisdictionMileage(
            jurisdiction=entry['jurisdiction'],
            miles=float(entry.get('totalDistanceMiles') or 0.0),
            fuel_gallons=entry.get('totalFuelConsumedGallons'),
        )
        for entry in record.get('jurisdictions') or []
        if entry.get('jurisdiction')
    ]
    return IFTATrip(
        external_id=f'report:{vehicle_id}:{start.isoformat()}',
        external_vehicle_id=vehicle_id,
        start_date=start,
        end_date=end,
        jurisdictions=jurisdictions,
    )


def _to_fault_codes(record: RawRecord) -> list[FaultCode]:
    vehicle_id: str | None = string_id(record.get('id'))
    if vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')

    faults: list[FaultCode] = []
    for snapshot in record.get('faultCodes') or []:
        observed_at: datetime | None = parse_timestamp(snapshot.get('time'))
        for fault in snapshot.get('faultCodes') or []:
            code: str = str(fault.get('faultCode') or fault.get('dtcShortCode') or 'UNKNOWN')
            faults.append(
                FaultCode(
                    external_id=string_id(fault.get('txId')) or f'{vehicle_id}:{code}',
                    external_vehicle_id=vehicle_id,
                    code=code,
                    severity=classify_fault_severity(fault.get('severity'), code),
                    description=fault.get('description'),
                    source=fault.get('source') or 'engine',
                    first_observed_at=observed_at,
                    last_observed_at=observed_at,
                    is_active=fault.get('isActive') is not False,
                )
            )
    return faults
