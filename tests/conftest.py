"""
Shared pytest fixtures for eld_integration_hub tests.

Every datastore fixture runs on an in-memory SQLite database, and every
service gets a fixed clock so time-dependent behavior is deterministic.
"""

from collections.abc import Callable, Iterator
from datetime import UTC, date, datetime, timedelta
from typing import Any, ClassVar

import httpx
import pytest
from pydantic import SecretStr
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.config import (
    DatabaseConfig,
    ELDHubConfig,
    HttpConfig,
    ProviderConfig,
)
from eld_integration_hub.models import (
    Driver,
    FaultCode,
    FuelPurchase,
    GPSLocation,
    HOSAvailableTime,
    HOSDailySummary,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    Vehicle,
)
from eld_integration_hub.providers import (
    ConnectionVerification,
    ELDProvider,
    ProviderCapability,
)
from eld_integration_hub.storage import (
    ELDConnection,
    EntityMapping,
    LocalDriver,
    LocalVehicle,
    build_engine,
    build_session_factory,
    create_schema,
)

OWNER_ID: str = 'owner-1'
FIXED_NOW: datetime = datetime(2024, 5, 15, 12, 0, tzinfo=UTC)

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def now() -> datetime:
    """A fixed 'current time' shared by services under test."""
    return FIXED_NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def hub_config() -> ELDHubConfig:
    """Configuration with Motive and Samsara credentials and fast retries."""
    return ELDHubConfig(
        providers={
            'motive': ProviderConfig(
                client_id='motive-client',
                client_secret=SecretStr('motive-secret'),
            ),
            'samsara': ProviderConfig(
                client_id='samsara-client',
                client_secret=SecretStr('samsara-secret'),
            ),
            'terminal': ProviderConfig(
                client_id='pk_test',
                client_secret=SecretStr('sk_test'),
            ),
        },
        http=HttpConfig(max_attempts=3, backoff_multiplier=0.01, backoff_max_seconds=0.01),
    )


# =============================================================================
# Datastore Fixtures
# =============================================================================


@pytest.fixture
def engine() -> Iterator[Engine]:
    """In-memory SQLite engine with the full schema."""
    database_engine: Engine = build_engine(DatabaseConfig(url='sqlite://'))
    create_schema(database_engine)
    yield database_engine
    database_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


def seed_connection(
    session_factory: sessionmaker[Session],
    *,
    owner_id: str = OWNER_ID,
    provider_id: str = 'motive',
    status: str = 'active',
    access_token: str | None = 'access-1',
    refresh_token: str | None = 'refresh-1',
    token_expires_at: datetime | None = FIXED_NOW + timedelta(hours=1),
    last_sync_at: datetime | None = None,
    external_connection_id: str | None = None,
    created_at: datetime = FIXED_NOW - timedelta(days=30),
) -> str:
    """Insert an ELDConnection row and return its id."""
    with session_factory.begin() as session:
        row = ELDConnection(
            owner_id=owner_id,
            provider_id=provider_id,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            status=status,
            company_name='Acme Freight',
            external_connection_id=external_connection_id,
            sync_frequency_minutes=60,
            last_sync_at=last_sync_at,
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(row)
        session.flush()
        return row.id


def seed_vehicle(
    session_factory: sessionmaker[Session],
    *,
    owner_id: str = OWNER_ID,
    name: str | None = 'Truck 101',
    vin: str | None = None,
    license_plate: str | None = None,
) -> str:
    with session_factory.begin() as session:
        vehicle = LocalVehicle(owner_id=owner_id, name=name, vin=vin, license_plate=license_plate)
        session.add(vehicle)
        session.flush()
        return vehicle.id


def seed_driver(
    session_factory: sessionmaker[Session],
    *,
    owner_id: str = OWNER_ID,
    first_name: str = 'Dana',
    last_name: str = 'Reyes',
    email: str | None = None,
    phone: str | None = None,
    license_number: str | None = None,
) -> str:
    with session_factory.begin() as session:
        driver = LocalDriver(
            owner_id=owner_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            license_number=license_number,
        )
        session.add(driver)
        session.flush()
        return driver.id


def seed_mapping(
    session_factory: sessionmaker[Session],
    connection_id: str,
    entity_type: str,
    external_id: str,
    local_id: str,
    match_method: str = 'auto',
) -> str:
    with session_factory.begin() as session:
        mapping = EntityMapping(
            connection_id=connection_id,
            entity_type=entity_type,
            external_id=external_id,
            local_id=local_id,
            match_method=match_method,
            confidence=1.0,
            match_details={'matchedBy': 'vin'},
        )
        session.add(mapping)
        session.flush()
        return mapping.id


# =============================================================================
# Provider Fixtures
# =============================================================================


class FakeProvider(ELDProvider):
    """
    In-memory adapter.

    Each fetch returns the matching instance list. Assign an exception to
    `failures[<method name>]` to raise it on the next call only.
    """

    provider_id: ClassVar[str] = 'motive'
    display_name: ClassVar[str] = 'Fake ELD'
    capabilities: ClassVar[frozenset[ProviderCapability]] = frozenset(
        {
            ProviderCapability.VEHICLES,
            ProviderCapability.DRIVERS,
            ProviderCapability.GPS,
            ProviderCapability.HOS,
            ProviderCapability.IFTA,
            ProviderCapability.IFTA_SUMMARY,
            ProviderCapability.FAULT_CODES,
            ProviderCapability.FUEL_PURCHASES,
        }
    )
    DEFAULT_BASE_URL: ClassVar[str] = 'https://eld.test'

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(access_token='access-1', **kwargs)
        self.vehicles: list[Vehicle] = []
        self.drivers: list[Driver] = []
        self.locations: list[GPSLocation] = []
        self.hos_logs: list[HOSLog] = []
        self.available_time: list[HOSAvailableTime] = []
        self.daily_logs: list[HOSDailySummary] = []
        self.ifta_trips: list[IFTATrip] = []
        self.ifta_summaries: list[IFTAJurisdictionSummary] = []
        self.fault_codes: list[FaultCode] = []
        self.fuel_purchases: list[FuelPurchase] = []
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        failure: Exception | None = self.failures.pop(name, None)
        if failure is not None:
            raise failure

    def verify_connection(self) -> ConnectionVerification:
        return ConnectionVerification(valid=True, company_name='Acme Freight')

    def _fetch_vehicles(self) -> list[Vehicle]:
        self._call('vehicles')
        return list(self.vehicles)

    def _fetch_drivers(self) -> list[Driver]:
        self._call('drivers')
        return list(self.drivers)

    def _fetch_current_locations(self) -> list[GPSLocation]:
        self._call('gps')
        return list(self.locations)

    def _fetch_hos_logs(self, start: datetime, end: datetime) -> list[HOSLog]:
        self._call('hos')
        return list(self.hos_logs)

    def _fetch_hos_available_time(self) -> list[HOSAvailableTime]:
        self._call('hos_available_time')
        return list(self.available_time)

    def _fetch_hos_daily_logs(self, start: date, end: date) -> list[HOSDailySummary]:
        self._call('hos_daily_logs')
        return list(self.daily_logs)

    def _fetch_ifta_trips(self, start: date, end: date) -> list[IFTATrip]:
        self._call('ifta_trips')
        return list(self.ifta_trips)

    def _fetch_ifta_summary(self, start: date, end: date) -> list[IFTAJurisdictionSummary]:
        self._call('ifta_summary')
        return list(self.ifta_summaries)

    def _fetch_fault_codes(self, start: datetime, end: datetime) -> list[FaultCode]:
        self._call('fault_codes')
        return list(self.fault_codes)

    def _fetch_fuel_purchases(self, start: datetime, end: datetime) -> list[FuelPurchase]:
        self._call('fuel_purchases')
        return list(self.fuel_purchases)


@pytest.fixture
def fake_provider() -> Iterator[FakeProvider]:
    provider = FakeProvider()
    yield provider
    provider.close()


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    """httpx.Client whose requests are answered by handler."""
    return httpx.Client(transport=httpx.MockTransport(handler))
