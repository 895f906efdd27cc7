# eld_integration_hub/providers/terminal.py
"""
Terminal aggregator adapter.

Terminal (withterminal.com) re-exposes hundreds of ELD providers behind one
normalized REST surface. Instead of OAuth, a fleet links its provider
through Terminal Link; the resulting public token is exchanged once for a
connection token that never expires.

Besides the canonical fetches, the adapter exposes Terminal's own surface
(connection settings, single-resource lookups, sync jobs, passthrough) as
raw-record methods, since those have no canonical counterpart.

Design Decisions:
-----------------
- Requests authenticate with the connection token when one is installed,
  and with the secret key (client_secret) otherwise.

- Single-resource endpoints treat 404 as "no such resource" and return None.

- Location history is per vehicle. Without a vehicle filter the adapter
  walks every vehicle.
"""

import logging
from datetime import date, datetime
from typing import Any, ClassVar
from urllib.parse import urlencode

from pydantic import SecretStr

from eld_integration_hub.errors import (
    APIError,
    AuthError,
    RecordValidationError,
    TransientAPIError,
)
from eld_integration_hub.models import (
    Driver,
    DutyStatus,
    FaultCode,
    GPSLocation,
    HOSAvailableTime,
    HOSDailySummary,
    HOSLog,
    HTTPMethod,
    IFTAJurisdictionSummary,
    RawRecord,
    RequestCredentials,
    RequestSpec,
    TerminalEndpointDefinition,
    TerminalEndpoints,
    Vehicle,
    classify_fault_severity,
    normalize_duty_status,
)
from eld_integration_hub.providers.base import (
    ConnectionVerification,
    ELDProvider,
    ProviderCapability,
    TokenSet,
    nested,
    parse_timestamp,
    require_timestamp,
    string_id,
)

__all__: list[str] = ['TerminalProvider']

logger: logging.Logger = logging.getLogger(__name__)


class TerminalProvider(ELDProvider):
    """Adapter for the Terminal unified telematics API."""

    provider_id: ClassVar[str] = 'terminal'
    display_name: ClassVar[str] = 'Terminal (200+ ELD providers)'
    description: ClassVar[str] = 'Aggregator giving access to hundreds of ELD providers.'
    docs_url: ClassVar[str] = 'https://docs.withterminal.com'
    capabilities: ClassVar[frozenset[ProviderCapability]] = frozenset(
        {
            ProviderCapability.VEHICLES,
            ProviderCapability.DRIVERS,
            ProviderCapability.GPS,
            ProviderCapability.GPS_HISTORY,
            ProviderCapability.HOS,
            ProviderCapability.HOS_AVAILABLE_TIME,
            ProviderCapability.HOS_DAILY_LOGS,
            ProviderCapability.IFTA,
            ProviderCapability.IFTA_SUMMARY,
            ProviderCapability.FAULT_CODES,
            ProviderCapability.WEBHOOKS,
            ProviderCapability.SYNC_JOBS,
            ProviderCapability.PASSTHROUGH,
        }
    )

    DEFAULT_BASE_URL: ClassVar[str] = 'https://api.withterminal.com/tsp/v1'
    AUTHORIZE_URL: ClassVar[str] = 'https://link.withterminal.com/'
    DEFAULT_TIMEOUT: ClassVar[tuple[float, float]] = (30.0, 30.0)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def _credentials(self) -> RequestCredentials:
        token: str | None = self.access_token or self.client_secret
        return RequestCredentials(
            base_url=self.base_url,
            access_token=SecretStr(token) if token else None,
            timeout=self.request_timeout,
        )

    def get_authorization_url(self, redirect_uri: str, state: str) -> str:
        """
        Build the Terminal Link URL.

        client_id holds the publishable key.

        Raises:
            AuthError: If no publishable key is configured.
        """
        if not self.client_id:
            raise AuthError(
                'Publishable key is required for Terminal. Set client_id in config '
                'or via TERMINAL_CLIENT_ID.',
                status_code=None,
            )
        query: str = urlencode(
            {'key': self.client_id, 'redirectUrl': redirect_uri, 'state': state}
        )
        return f'{self.AUTHORIZE_URL}?{query}'

    def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> TokenSet:
        """
        Exchange a Link public token for a connection token.

        Uses the secret key; redirect_uri is accepted for interface parity.

        Raises:
            AuthError: If Terminal rejects the public token.
        """
        if not self.client_secret:
            raise AuthError('Secret key is required for Terminal', status_code=None)

        request_spec = RequestSpec(
            url=f'{self.base_url}/public-token',
            method=HTTPMethod.POST,
            headers={
                'Accept': 'application/json',
                'Authorization': f'Bearer {self.client_secret}',
            },
            body={'publicToken': code},
            timeout=self.request_timeout,
        )
        try:
            payload: Any = self._client.send(request_spec)
        except (AuthError, TransientAPIError):
            raise
        except APIError as error:
            raise AuthError(
                f'Public token exchange failed: HTTP {error.status_code}',
                status_code=error.status_code,
                response_body=error.response_body,
            ) from error

        token: Any = payload.get('token') if isinstance(payload, dict) else None
        if not token:
            raise AuthError('Public token exchange failed: no token in response', status_code=None)

        tokens = TokenSet(access_token=SecretStr(str(token)), expires=False)
        self._install_tokens(tokens)
        logger.info('Exchanged Terminal public token for a connection token')
        return tokens

    def refresh_access_token(self) -> TokenSet:
        """
        Connection tokens do not expire; return the installed token.

        Raises:
            AuthError: If no connection token is installed.
        """
        if not self.access_token:
            raise AuthError('No connection token available', status_code=None)
        return TokenSet(access_token=SecretStr(self.access_token), expires=False)

    def verify_connection(self) -> ConnectionVerification:
        """Probe /connections/current for the linked company."""
        try:
            connection: RawRecord | None = self.get_connection()
        except APIError as error:
            logger.warning('Terminal connection verification failed: %s', error)
            return ConnectionVerification(valid=False, error_message=str(error))

        if connection is None:
            return ConnectionVerification(valid=False, error_message='Connection not found')

        return ConnectionVerification(
            valid=True,
            company_name=nested(connection, 'company', 'name')
            or connection.get('companyName')
            or 'Unknown',
            provider_label=nested(connection, 'provider', 'name') or 'Terminal',
            external_connection_id=string_id(connection.get('id')),
        )

    # -------------------------------------------------------------------------
    # Terminal API Surface (raw records)
    # -------------------------------------------------------------------------

    def get_connection(self) -> RawRecord | None:
        """Details of the connection the token belongs to."""
        return self._fetch_one(TerminalEndpoints.CURRENT_CONNECTION)

    def update_connection(self, settings: dict[str, Any]) -> RawRecord | None:
        """PATCH the current connection's settings."""
        return self._send_body(TerminalEndpoints.UPDATE_CONNECTION, settings)

    def get_vehicle(self, vehicle_id: str) -> RawRecord | None:
        """A single vehicle, or None when Terminal does not know it."""
        return self._fetch_one(TerminalEndpoints.VEHICLE, vehicle_id=vehicle_id)

    def get_driver(self, driver_id: str) -> RawRecord | None:
        """A single driver, or None when Terminal does not know it."""
        return self._fetch_one(TerminalEndpoints.DRIVER, driver_id=driver_id)

    def request_sync(self, data_types: list[str] | None = None) -> RawRecord | None:
        """Ask Terminal to pull fresh data from the upstream provider."""
        self._require(ProviderCapability.SYNC_JOBS)
        return self._send_body(TerminalEndpoints.REQUEST_SYNC, {'dataTypes': data_types or []})

    def get_sync_status(self, sync_id: str) -> RawRecord | None:
        self._require(ProviderCapability.SYNC_JOBS)
        return self._fetch_one(TerminalEndpoints.SYNC, sync_id=sync_id)

    def list_syncs(self) -> list[RawRecord]:
        self._require(ProviderCapability.SYNC_JOBS)
        return self._fetch(TerminalEndpoints.SYNCS)

    def passthrough(
        self,
        method: HTTPMethod | str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """
        Forward a raw request to the underlying provider.

        Args:
            method: HTTP method Terminal should use upstream.
            path: Provider API path.
            body: Optional JSON body for the upstream request.

        Returns:
            The provider's raw JSON response.
        """
        self._require(ProviderCapability.PASSTHROUGH)
        request_spec: RequestSpec = TerminalEndpoints.PASSTHROUGH.build_request_spec(
            self._credentials(), path=path
        )
        request_spec = request_spec.model_copy(
            update={'method': HTTPMethod(str(method).upper()), 'body': body}
        )
        return self._client.send(request_spec)

    def _send_body(
        self,
        endpoint: TerminalEndpointDefinition,
        body: dict[str, Any],
    ) -> RawRecord | None:
        request_spec: RequestSpec = endpoint.build_request_spec(self._credentials())
        payload: Any = self._client.send(request_spec.model_copy(update={'body': body}))
        return payload if isinstance(payload, dict) else None

    # -------------------------------------------------------------------------
    # Fleet Entities
    # -------------------------------------------------------------------------

    def _fetch_vehicles(self) -> list[Vehicle]:
        return self._convert(
            self._fetch(TerminalEndpoints.VEHICLES), _to_vehicle, 'vehicles'
        )

    def _fetch_drivers(self) -> list[Driver]:
        return self._convert(self._fetch(TerminalEndpoints.DRIVERS), _to_driver, 'drivers')

    # -------------------------------------------------------------------------
    # GPS
    # -------------------------------------------------------------------------

    def _fetch_current_locations(self) -> list[GPSLocation]:
        return self._convert(
            self._fetch(TerminalEndpoints.LATEST_VEHICLE_LOCATIONS),
            _to_location,
            'locations',
        )

    def _fetch_location_history(
        self,
        start: datetime,
        end: datetime,
        external_vehicle_id: str | None,
    ) -> list[GPSLocation]:
        vehicle_ids: list[str] = (
            [external_vehicle_id]
            if external_vehicle_id
            else [vehicle.external_id for vehicle in self._fetch_vehicles()]
        )

        locations: list[GPSLocation] = []
        for vehicle_id in vehicle_ids:
            records: list[RawRecord] = self._fetch(
                TerminalEndpoints.VEHICLE_LOCATION_HISTORY,
                vehicle_id=vehicle_id,
                start_time=start,
                end_time=end,
            )
            locations.extend(
                self._convert(
                    records,
                    lambda record, vid=vehicle_id: _to_location(record, vid),
                    'location history points',
                )
            )
        return locations

    # -------------------------------------------------------------------------
    # HOS
    # -------------------------------------------------------------------------

    def _fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        records: list[RawRecord] = self._fetch(
            TerminalEndpoints.HOS_LOGS, start_time=start, end_time=end
        )
        return self._convert(records, _to_hos_log, 'HOS logs')

    def _fetch_hos_available_time(self) -> list[HOSAvailableTime]:
        return self._convert(
            self._fetch(TerminalEndpoints.HOS_AVAILABLE_TIME),
            _to_available_time,
            'HOS available time',
        )

    def _fetch_hos_daily_logs(self, start: date, end: date) -> list[HOSDailySummary]:
        records: list[RawRecord] = self._fetch(
            TerminalEndpoints.HOS_DAILY_LOGS, start_date=start, end_date=end
        )
        return self._convert(records, _to_daily_summary, 'HOS daily logs')

    # -------------------------------------------------------------------------
    # IFTA
    # -------------------------------------------------------------------------

    def _fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        records: list[RawRecord] = self._fetch(
            TerminalEndpoints.IFTA_SUMMARY,
            start_month=start.strftime('%Y-%m'),
            end_month=end.strftime('%Y-%m'),
        )
        return self._convert(records, _to_ifta_summary, 'IFTA summaries')

    # -------------------------------------------------------------------------
    # Safety Events
    # -------------------------------------------------------------------------

    def _fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        records: list[RawRecord] = self._fetch(
            TerminalEndpoints.SAFETY_EVENTS, start_time=start, end_time=end
        )
        return self._convert(records, _to_fault_code, 'safety events')


# =============================================================================
# Record Conversion
# =============================================================================


def _id_of(record: RawRecord, flat_key: str, object_key: str) -> str | None:
    """Terminal sends either 'vehicleId' or a nested {'vehicle': {'id'}}."""
    return string_id(record.get(flat_key)) or string_id(nested(record, object_key, 'id'))


def _to_vehicle(record: RawRecord) -> Vehicle:
    external_id: str | None = string_id(record.get('id'))
    if external_id is None:
        raise RecordValidationError('Missing vehicle id')

    plate: Any = record.get('licensePlate')
    plate_number: Any = plate.get('number') if isinstance(plate, dict) else plate
    plate_state: Any = plate.get('state') if isinstance(plate, dict) else None
    year: Any = record.get('year')

    return Vehicle(
        external_id=external_id,
        name=record.get('name'),
        vin=record.get('vin'),
        license_plate=plate_number,
        license_state=plate_state,
        make=record.get('make'),
        model=record.get('model'),
        year=int(year) if year else None,
        status=str(record.get('status') or 'active').lower(),
    )


def _to_driver(record: RawRecord) -> Driver:
    external_id: str | None = string_id(record.get('id'))
    if external_id is None:
        raise RecordValidationError('Missing driver id')
    return Driver(
        external_id=external_id,
        first_name=record.get('firstName') or '',
        last_name=record.get('lastName') or '',
        email=record.get('email'),
        phone=record.get('phone'),
        license_number=nested(record, 'license', 'number'),
        license_state=nested(record, 'license', 'state'),
        status=str(record.get('status') or 'active').lower(),
    )


def _to_location(record: RawRecord, vehicle_id: str | None = None) -> GPSLocation:
    external_vehicle_id: str | None = _id_of(record, 'vehicleId', 'vehicle') or vehicle_id
    if external_vehicle_id is None:
        raise RecordValidationError('Missing vehicle id')
    coordinates: Any = record.get('location') or record
    return GPSLocation(
        external_vehicle_id=external_vehicle_id,
        latitude=coordinates['latitude'],
        longitude=coordinates['longitude'],
        recorded_at=require_timestamp(
            record.get('locatedAt') or record.get('time'), 'locatedAt'
        ),
        heading=record.get('heading'),
        speed_mph=record.get('speed'),
        address=record.get('address') or record.get('formattedAddress'),
    )


def _to_hos_log(record: RawRecord) -> HOSLog:
    driver_id: str | None = _id_of(record, 'driverId', 'driver')
    if driver_id is None:
        raise RecordValidationError('Missing driver id')
    start_time: datetime = require_timestamp(
        record.get('startedAt') or record.get('startTime'), 'startedAt'
    )
    end_time: datetime | None = parse_timestamp(
        record.get('endedAt') or record.get('endTime')
    )
    raw_status: str | None = record.get('status') or record.get('dutyStatus')

    return HOSLog(
        external_id=string_id(record.get('id')) or f'{driver_id}:{start_time.isoformat()}',
        external_driver_id=driver_id,
        external_vehicle_id=_id_of(record, 'vehicleId', 'vehicle'),
        duty_status=normalize_duty_status(raw_status),
        raw_status=raw_status,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=(end_time - start_time).total_seconds() / 60 if end_time else None,
        location=nested(record, 'location', 'address') or record.get('address'),
        notes=record.get('remark') or record.get('notes'),
    )


def _to_available_time(record: RawRecord) -> HOSAvailableTime:
    driver_id: str | None = _id_of(record, 'driverId', 'driver')
    if driver_id is None:
        raise RecordValidationError('Missing driver id')
    return HOSAvailableTime(
        external_driver_id=driver_id,
        drive_minutes_remaining=int(record.get('driveMinutes') or 0),
        shift_minutes_remaining=int(record.get('shiftMinutes') or 0),
        cycle_minutes_remaining=int(record.get('cycleMinutes') or 0),
        break_required=bool(record.get('breakRequired')),
        duty_status=normalize_duty_status(record.get('dutyStatus'))
        if record.get('dutyStatus')
        else DutyStatus.UNKNOWN,
    )


def _to_daily_summary(record: RawRecord) -> HOSDailySummary:
    driver_id: str | None = _id_of(record, 'driverId', 'driver')
    if driver_id is None:
        raise RecordValidationError('Missing driver id')
    log_date: Any = record.get('date') or record.get('logDate')
    if not log_date:
        raise RecordValidationError('Missing daily log date', external_id=driver_id)
    violations: list[str] = [
        str(violation.get('type') if isinstance(violation, dict) else violation)
        for violation in record.get('violations') or []
    ]
    return HOSDailySummary(
        external_driver_id=driver_id,
        log_date=date.fromisoformat(str(log_date)[:10]),
        drive_minutes=int(record.get('driveMinutes') or 0),
        on_duty_minutes=int(record.get('onDutyMinutes') or 0),
        off_duty_minutes=int(record.get('offDutyMinutes') or 0),
        sleeper_minutes=int(record.get('sleeperMinutes') or 0),
        has_violation=bool(violations) or bool(record.get('hasViolation')),
        violations=violations,
        certified_at=parse_timestamp(record.get('certifiedAt')),
    )


def _to_ifta_summary(record: RawRecord) -> IFTAJurisdictionSummary:
    jurisdiction: Any = record.get('jurisdiction')
    if not jurisdiction:
        raise RecordValidationError('Missing jurisdiction')
    month: Any = record.get('month')
    return IFTAJurisdictionSummary(
        jurisdiction=jurisdiction,
        total_miles=float(record.get('distanceMiles') or record.get('distance') or 0.0),
        external_vehicle_id=_id_of(record, 'vehicleId', 'vehicle'),
        period=str(month)[:7] if month else None,
        fuel_gallons=record.get('fuelGallons'),
    )


def _to_fault_code(record: RawRecord) -> FaultCode:
    external_id: str | None = string_id(record.get('id'))
    vehicle_id: str | None = _id_of(record, 'vehicleId', 'vehicle')
    if external_id is None or vehicle_id is None:
        raise RecordValidationError('Missing safety event or vehicle id', external_id)

    event_type: str | None = record.get('type')
    code: str = str(record.get('code') or event_type or 'UNKNOWN')
    started_at: datetime | None = parse_timestamp(record.get('startedAt'))
    ended_at: datetime | None = parse_timestamp(record.get('endedAt'))

    return FaultCode(
        external_id=external_id,
        external_vehicle_id=vehicle_id,
        code=code,
        severity=classify_fault_severity(record.get('severity'), event_type or code),
        description=record.get('description'),
        source='safety_event',
        first_observed_at=started_at,
        last_observed_at=ended_at or started_at,
        is_active=ended_at is None,
    )
