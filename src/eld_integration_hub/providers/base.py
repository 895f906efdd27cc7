# eld_integration_hub/providers/base.py
"""
Abstract ELD provider adapter.

An adapter turns one provider's API into canonical records. It owns the
provider's OAuth flow, its endpoint definitions, and the field mapping from
provider payloads to `models.canonical`; the ProviderHttpClient underneath
handles transport, retries and pagination.

Design Decisions:
-----------------
- Public fetch methods are templates: they check the declared capability,
  then delegate to a `_fetch_*` hook. An adapter that does not override a
  hook raises UnsupportedCapabilityError, and so does one that overrides it
  without declaring the capability.

- Fetches always return fully materialized lists. Malformed individual
  records are dropped with a WARNING rather than failing the whole fetch.

- Adapters are cheap per-connection objects holding that connection's
  token state. They are never shared across connections.

Usage:
------
    provider = registry.create_provider(
        'motive',
        access_token='...',
        refresh_token='...',
    )
    with provider:
        vehicles = provider.fetch_vehicles()
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from types import TracebackType
from typing import Any, ClassVar, Final, Self
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError

from eld_integration_hub.client import ProviderHttpClient
from eld_integration_hub.config import HttpConfig, ProviderConfig
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    RecordValidationError,
    TransientAPIError,
    UnsupportedCapabilityError,
)
from eld_integration_hub.models import (
    Driver,
    EndpointDefinition,
    FaultCode,
    FuelPurchase,
    GPSLocation,
    HOSAvailableTime,
    HOSDailySummary,
    HOSLog,
    HTTPMethod,
    IFTAJurisdictionSummary,
    IFTATrip,
    RawRecord,
    RequestCredentials,
    RequestSpec,
    Vehicle,
)

__all__: list[str] = [
    'ConnectionVerification',
    'ELDProvider',
    'ProviderCapability',
    'TokenSet',
    'day_bounds',
    'nested',
    'parse_timestamp',
    'require_timestamp',
    'string_id',
]

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_REFRESH_HORIZON: Final[timedelta] = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME_SECONDS: Final[int] = 3600


# =============================================================================
# Capability & Result Types
# =============================================================================


class ProviderCapability(str, Enum):
    """Features an adapter may declare."""

    VEHICLES = 'vehicles'
    DRIVERS = 'drivers'
    GPS = 'gps'
    GPS_FEED = 'gps_feed'
    GPS_HISTORY = 'gps_history'
    HOS = 'hos'
    HOS_AVAILABLE_TIME = 'hos_available_time'
    HOS_DAILY_LOGS = 'hos_daily_logs'
    IFTA = 'ifta'
    IFTA_TRIPS = 'ifta_trips'
    IFTA_SUMMARY = 'ifta_summary'
    FAULT_CODES = 'fault_codes'
    FUEL_PURCHASES = 'fuel_purchases'
    WEBHOOKS = 'webhooks'
    SYNC_JOBS = 'sync_jobs'
    PASSTHROUGH = 'passthrough'


class TokenSet(BaseModel):
    """
    Tokens returned by a code exchange or refresh.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Token used to obtain a new access token, if issued.
        expires_in_seconds: Lifetime reported by the provider; None when the
            provider omitted it.
        expires: False for tokens that never expire (aggregator connection
            tokens).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    access_token: SecretStr
    refresh_token: SecretStr | None = None
    expires_in_seconds: int | None = None
    expires: bool = True

    def expires_at(self, now: datetime, default_lifetime_seconds: int) -> datetime | None:
        """Absolute expiry, or None for non-expiring tokens."""
        if not self.expires:
            return None
        lifetime: int = self.expires_in_seconds or default_lifetime_seconds
        return now + timedelta(seconds=lifetime)


class ConnectionVerification(BaseModel):
    """Result of probing a provider with the current token."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    valid: bool
    company_name: str | None = None
    provider_label: str | None = None
    external_connection_id: str | None = None
    error_message: str | None = None


# =============================================================================
# Record Helpers
# =============================================================================


def string_id(value: Any) -> str | None:
    """Provider ids arrive as ints or strings; canonical ids are strings."""
    if value is None or value == '':
        return None
    return str(value)


def nested(record: RawRecord, *keys: str) -> Any:
    """Walk nested dicts, returning None as soon as a key is missing."""
    current: Any = record
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)  # pyright: ignore[reportUnknownMemberType]
    return current


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 timestamp (with or without 'Z') into aware UTC.

    Raises:
        RecordValidationError: If the value is present but unparseable.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed: datetime = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError as error:
            raise RecordValidationError(f'Invalid timestamp: {value!r}') from error
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def require_timestamp(value: Any, field_name: str) -> datetime:
    """Like parse_timestamp, but a missing value is a validation error."""
    parsed: datetime | None = parse_timestamp(value)
    if parsed is None:
        raise RecordValidationError(f'Missing required timestamp {field_name!r}')
    return parsed


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Expand an inclusive date range to [start 00:00, end 23:59:59] UTC."""
    return (
        datetime(start.year, start.month, start.day, tzinfo=UTC),
        datetime(end.year, end.month, end.day, 23, 59, 59, tzinfo=UTC),
    )


# =============================================================================
# Abstract Adapter
# =============================================================================


class ELDProvider(ABC):
    """
    Base class for all ELD provider adapters.

    Subclasses set the class attributes, implement `verify_connection`, and
    override the `_fetch_*` hooks for the capabilities they declare. The
    standard OAuth2 authorization-code flow is implemented here against
    AUTHORIZE_URL and TOKEN_URL; adapters with a different flow override
    the three OAuth methods.

    Attributes:
        provider_id: Registry key ('motive', 'samsara', 'terminal').
        display_name: Human-readable provider name.
        description: One-line description for provider pickers.
        auth_type: Authorization scheme; always 'oauth2' today.
        docs_url: Provider developer documentation.
        capabilities: Declared features; fetches outside them raise.
    """

    provider_id: ClassVar[str]
    display_name: ClassVar[str]
    description: ClassVar[str] = ''
    auth_type: ClassVar[str] = 'oauth2'
    docs_url: ClassVar[str] = ''
    capabilities: ClassVar[frozenset[ProviderCapability]] = frozenset()

    DEFAULT_BASE_URL: ClassVar[str]
    AUTHORIZE_URL: ClassVar[str] = ''
    TOKEN_URL: ClassVar[str] = ''
    DEFAULT_SCOPES: ClassVar[tuple[str, ...]] = ()
    DEFAULT_TIMEOUT: ClassVar[tuple[float, float]] = (10.0, 30.0)

    def __init__(
        self,
        provider_config: ProviderConfig | None = None,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        token_expires_at: datetime | None = None,
        http_config: HttpConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the adapter for one connection.

        Args:
            provider_config: OAuth client settings with credentials already
                resolved (override, then config, then environment).
            access_token: Current access token, if connected.
            refresh_token: Current refresh token, if any.
            token_expires_at: Access token expiry, if known.
            http_config: Retry and transport settings.
            http_client: Injected httpx.Client (tests use MockTransport).
        """
        self._config: ProviderConfig = provider_config or ProviderConfig()
        self.access_token: str | None = access_token
        self.refresh_token: str | None = refresh_token
        self.token_expires_at: datetime | None = token_expires_at
        self._client: ProviderHttpClient = ProviderHttpClient(
            http_config=http_config,
            http_client=http_client,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'{type(self).__name__}(base_url={self.base_url!r})'

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        """API base URL, honoring a configured override."""
        return self._config.base_url or self.DEFAULT_BASE_URL

    @property
    def scopes(self) -> tuple[str, ...]:
        """OAuth scopes, honoring a configured override."""
        if self._config.scopes is not None:
            return tuple(self._config.scopes)
        return self.DEFAULT_SCOPES

    @property
    def request_timeout(self) -> tuple[float, float]:
        """Configured timeout, or the adapter default when none was set."""
        if 'request_timeout' in self._config.model_fields_set:
            return self._config.request_timeout
        return self.DEFAULT_TIMEOUT

    @property
    def client_id(self) -> str | None:
        return self._config.client_id

    @property
    def client_secret(self) -> str | None:
        secret: SecretStr | None = self._config.client_secret
        return secret.get_secret_value() if secret is not None else None

    def supports(self, capability: ProviderCapability | str) -> bool:
        """True when the adapter declares the capability."""
        try:
            return ProviderCapability(capability) in self.capabilities
        except ValueError:
            return False

    def needs_token_refresh(
        self,
        now: datetime | None = None,
        horizon: timedelta = DEFAULT_REFRESH_HORIZON,
    ) -> bool:
        """True when the access token expires within the horizon."""
        if self.token_expires_at is None:
            return False
        current_time: datetime = now or datetime.now(UTC)
        return self.token_expires_at - current_time < horizon

    def _require(self, capability: ProviderCapability) -> None:
        if capability not in self.capabilities:
            raise UnsupportedCapabilityError(self.provider_id, capability.value)

    def _credentials(self) -> RequestCredentials:
        return RequestCredentials(
            base_url=self.base_url,
            access_token=SecretStr(self.access_token) if self.access_token else None,
            timeout=self.request_timeout,
        )

    def _fetch(self, endpoint: EndpointDefinition, **params: Any) -> list[RawRecord]:
        return self._client.fetch_all(endpoint, self._credentials(), **params)

    def _fetch_one(self, endpoint: EndpointDefinition, **params: Any) -> RawRecord | None:
        return self._client.fetch_one(endpoint, self._credentials(), **params)

    def _convert[RecordT](
        self,
        records: Iterable[RawRecord],
        converter: Callable[[RawRecord], RecordT | None],
        record_type: str,
    ) -> list[RecordT]:
        """
        Convert raw records, dropping the malformed ones with a warning.

        A converter returns None to skip a record silently (for example a
        vehicle with no GPS fix yet).
        """
        converted: list[RecordT] = []
        dropped: int = 0
        for record in records:
            try:
                result: RecordT | None = converter(record)
            except (RecordValidationError, ValidationError, KeyError, TypeError, ValueError) as error:
                dropped += 1
                logger.warning(
                    'Dropping malformed %s %s record %r: %s',
                    self.provider_id,
                    record_type,
                    string_id(record.get('id')),
                    error,
                )
                continue
            if result is not None:
                converted.append(result)

        logger.info(
            'Fetched %d %s from %s (%d dropped)',
            len(converted),
            record_type,
            self.provider_id,
            dropped,
        )
        return converted

    # -------------------------------------------------------------------------
    # OAuth2 Authorization-Code Flow
    # -------------------------------------------------------------------------

    def get_authorization_url(self, redirect_uri: str, state: str) -> str:
        """
        Build the provider's consent URL.

        Raises:
            AuthError: If no client id is configured.
        """
        if not self.client_id:
            raise AuthError(
                f'Client ID is required for {self.display_name}. Set it in config '
                f'or via {self.provider_id.upper()}_CLIENT_ID.',
                status_code=None,
            )
        query: str = urlencode(
            {
                'client_id': self.client_id,
                'redirect_uri': redirect_uri,
                'response_type': 'code',
                'scope': ' '.join(self.scopes),
                'state': state,
            }
        )
        return f'{self.AUTHORIZE_URL}?{query}'

    def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        The new tokens are also installed on this adapter.

        Raises:
            AuthError: If the provider rejects the code.
        """
        tokens: TokenSet = self._request_tokens(
            {
                'grant_type': 'authorization_code',
                'code': code,
                'redirect_uri': redirect_uri,
            },
            failure_message='Token exchange failed',
        )
        self._install_tokens(tokens)
        logger.info('Exchanged authorization code for %s tokens', self.provider_id)
        return tokens

    def refresh_access_token(self) -> TokenSet:
        """
        Obtain a new access token with the refresh token.

        The provider may rotate the refresh token; when it does not, the
        current one is kept.

        Raises:
            AuthError: If there is no refresh token or the provider rejects it.
        """
        if not self.refresh_token:
            raise AuthError('No refresh token available', status_code=None)

        issued: TokenSet = self._request_tokens(
            {'grant_type': 'refresh_token', 'refresh_token': self.refresh_token},
            failure_message='Token refresh failed',
        )
        tokens: TokenSet = issued
        if issued.refresh_token is None:
            tokens = issued.model_copy(
                update={'refresh_token': SecretStr(self.refresh_token)}
            )
        self._install_tokens(tokens)
        logger.info('Refreshed %s access token', self.provider_id)
        return tokens

    def _request_tokens(self, form: dict[str, str], failure_message: str) -> TokenSet:
        request_spec = RequestSpec(
            url=self.TOKEN_URL,
            method=HTTPMethod.POST,
            headers={'Accept': 'application/json'},
            form_body={
                **form,
                'client_id': self.client_id or '',
                'client_secret': self.client_secret or '',
            },
            timeout=self.request_timeout,
        )
        try:
            payload: Any = self._client.send(request_spec)
        except TransientAPIError:
            raise
        except APIError as error:
            raise AuthError(
                f'{failure_message}: HTTP {error.status_code}',
                status_code=error.status_code,
                response_body=error.response_body,
            ) from error

        return self._parse_token_payload(payload, failure_message)

    def _parse_token_payload(self, payload: Any, failure_message: str) -> TokenSet:
        if not isinstance(payload, dict) or not payload.get('access_token'):
            raise AuthError(f'{failure_message}: no access_token in response', status_code=None)

        refresh_token: Any = payload.get('refresh_token')  # pyright: ignore[reportUnknownMemberType]
        expires_in: Any = payload.get('expires_in')  # pyright: ignore[reportUnknownMemberType]
        return TokenSet(
            access_token=SecretStr(str(payload['access_token'])),
            refresh_token=SecretStr(str(refresh_token)) if refresh_token else None,
            expires_in_seconds=int(expires_in) if expires_in else None,
        )

    def _install_tokens(self, tokens: TokenSet) -> None:
        self.access_token = tokens.access_token.get_secret_value()
        if tokens.refresh_token is not None:
            self.refresh_token = tokens.refresh_token.get_secret_value()
        self.token_expires_at = tokens.expires_at(
            datetime.now(UTC), DEFAULT_TOKEN_LIFETIME_SECONDS
        )

    @abstractmethod
    def verify_connection(self) -> ConnectionVerification:
        """
        Probe the provider with the current token.

        Must not raise for an invalid or expired token; return
        ConnectionVerification(valid=False) instead.
        """
        raise NotImplementedError('Subclasses must implement verify_connection')

    # -------------------------------------------------------------------------
    # Fetch Templates
    # -------------------------------------------------------------------------

    def fetch_vehicles(self) -> list[Vehicle]:
        """All vehicles in the fleet."""
        self._require(ProviderCapability.VEHICLES)
        return self._fetch_vehicles()

    def fetch_drivers(self) -> list[Driver]:
        """All driver accounts."""
        self._require(ProviderCapability.DRIVERS)
        return self._fetch_drivers()

    def fetch_current_locations(self) -> list[GPSLocation]:
        """Latest known position of each vehicle."""
        self._require(ProviderCapability.GPS)
        return self._fetch_current_locations()

    def fetch_location_history(
        self,
        start: datetime,
        end: datetime,
        external_vehicle_id: str | None = None,
    ) -> list[GPSLocation]:
        """Breadcrumbs in [start, end], optionally for one vehicle."""
        self._require(ProviderCapability.GPS_HISTORY)
        return self._fetch_location_history(start, end, external_vehicle_id)

    def fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        """Duty status changes for all drivers in [start, end]."""
        self._require(ProviderCapability.HOS)
        return self._fetch_hos_logs(start, end)

    def fetch_hos_available_time(self) -> list[HOSAvailableTime]:
        """Remaining HOS clocks per driver."""
        self._require(ProviderCapability.HOS_AVAILABLE_TIME)
        return self._fetch_hos_available_time()

    def fetch_hos_daily_logs(self, start: date, end: date) -> list[HOSDailySummary]:
        """Provider-computed daily duty totals."""
        self._require(ProviderCapability.HOS_DAILY_LOGS)
        return self._fetch_hos_daily_logs(start, end)

    def fetch_ifta_trips(self, start: date, end: date) -> list[IFTATrip]:
        """Trips with their jurisdiction breakdown."""
        self._require(ProviderCapability.IFTA)
        return self._fetch_ifta_trips(start, end)

    def fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        """Provider-aggregated jurisdiction mileage for the period."""
        self._require(ProviderCapability.IFTA)
        return self._fetch_ifta_summary(start, end)

    def fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        """Fault codes (or safety events) observed in [start, end]."""
        self._require(ProviderCapability.FAULT_CODES)
        return self._fetch_fault_codes(start, end)

    def fetch_fuel_purchases(self, start: datetime, end: datetime) -> list[FuelPurchase]:
        """Fuel purchases in [start, end]."""
        self._require(ProviderCapability.FUEL_PURCHASES)
        return self._fetch_fuel_purchases(start, end)

    # -------------------------------------------------------------------------
    # Fetch Hooks (override per capability)
    # -------------------------------------------------------------------------

    def _unsupported(self, capability: ProviderCapability) -> UnsupportedCapabilityError:
        return UnsupportedCapabilityError(self.provider_id, capability.value)

    def _fetch_vehicles(self) -> list[Vehicle]:
        raise self._unsupported(ProviderCapability.VEHICLES)

    def _fetch_drivers(self) -> list[Driver]:
        raise self._unsupported(ProviderCapability.DRIVERS)

    def _fetch_current_locations(self) -> list[GPSLocation]:
        raise self._unsupported(ProviderCapability.GPS)

    def _fetch_location_history(
        self,
        start: datetime,
        end: datetime,
        external_vehicle_id: str | None,
    ) -> list[GPSLocation]:
        raise self._unsupported(ProviderCapability.GPS_HISTORY)

    def _fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        raise self._unsupported(ProviderCapability.HOS)

    def _fetch_hos_available_time(self) -> list[HOSAvailableTime]:
        raise self._unsupported(ProviderCapability.HOS_AVAILABLE_TIME)

    def _fetch_hos_daily_logs(self, start: date, end: date) -> list[HOSDailySummary]:
        raise self._unsupported(ProviderCapability.HOS_DAILY_LOGS)

    def _fetch_ifta_trips(self, start: date, end: date) -> list[IFTATrip]:
        raise self._unsupported(ProviderCapability.IFTA_TRIPS)

    def _fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        raise self._unsupported(ProviderCapability.IFTA_SUMMARY)

    def _fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        raise self._unsupported(ProviderCapability.FAULT_CODES)

    def _fetch_fuel_purchases(self, start: datetime, end: datetime) -> list[FuelPurchase]:
        raise self._unsupported(ProviderCapability.FUEL_PURCHASES)
