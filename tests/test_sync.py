"""
Tests for eld_integration_hub.sync module.

Tests domain passes against an in-memory adapter: mapping resolution,
idempotent upserts, error isolation, the auth refresh retry, and the
pure aggregation helpers.
"""

from collections.abc import Callable, Iterator
from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from conftest import (
    FIXED_NOW,
    OWNER_ID,
    FakeProvider,
    seed_connection,
    seed_driver,
    seed_mapping,
    seed_vehicle,
)
from eld_integration_hub.common.quarters import Quarter
from eld_integration_hub.config import ELDHubConfig
from eld_integration_hub.connections import ConnectionManager
from eld_integration_hub.errors import APIError, AuthError, RateLimitError
from eld_integration_hub.models import (
    DutyStatus,
    FaultCode,
    FaultSeverity,
    FuelPurchase,
    GPSLocation,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    JurisdictionMileage,
    ServiceResult,
    Vehicle,
)
from eld_integration_hub.models.shared_request_models import RateLimitInfo
from eld_integration_hub.reconciliation import IftaReconciliationEngine
from eld_integration_hub.storage import (
    ELDConnection,
    FaultCodeRecord,
    FuelPurchaseRecord,
    HosDailyLogRecord,
    HosLogRecord,
    IftaMileageRecord,
    LocalVehicle,
    SyncJob,
)
from eld_integration_hub.sync import (
    SyncOrchestrator,
    aggregate_daily_totals,
    aggregate_ifta_trips,
    split_evenly,
    spread_ifta_summaries,
)

WINDOW_START: datetime = FIXED_NOW - timedelta(days=7)


@pytest.fixture
def manager(
    session_factory: sessionmaker[Session],
    hub_config: ELDHubConfig,
    clock: Callable[[], datetime],
) -> ConnectionManager:
    return ConnectionManager(session_factory, config=hub_config, clock=clock)


@pytest.fixture
def orchestrator(
    session_factory: sessionmaker[Session],
    manager: ConnectionManager,
    hub_config: ELDHubConfig,
    clock: Callable[[], datetime],
) -> SyncOrchestrator:
    return SyncOrchestrator(session_factory, manager, config=hub_config, clock=clock)


@pytest.fixture
def connection_id(session_factory: sessionmaker[Session]) -> str:
    return seed_connection(session_factory)


@pytest.fixture
def adapter_patch(manager: ConnectionManager, fake_provider: FakeProvider) -> Iterator[None]:
    """Every adapter the manager hands out is the fake provider."""
    with patch.object(
        manager,
        'create_provider_for_connection',
        return_value=ServiceResult.ok(fake_provider),
    ):
        yield


def _count(session_factory: sessionmaker[Session], model: type) -> int:
    with session_factory.begin() as session:
        return session.scalar(select(func.count()).select_from(model)) or 0


def _last_sync(session_factory: sessionmaker[Session], connection_id: str) -> datetime | None:
    with session_factory.begin() as session:
        row = session.get(ELDConnection, connection_id)
        assert row is not None
        return row.last_sync_at


def _hos_log(
    external_id: str,
    driver: str,
    status: DutyStatus,
    start: datetime,
    minutes: float,
) -> HOSLog:
    return HOSLog(
        external_id=external_id,
        external_driver_id=driver,
        duty_status=status,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
    )


def _fault(last_observed: datetime, *, active: bool = True) -> FaultCode:
    return FaultCode(
        external_id='f-1',
        external_vehicle_id='v-1',
        code='P0420',
        severity=FaultSeverity.WARNING,
        first_observed_at=FIXED_NOW - timedelta(days=2),
        last_observed_at=last_observed,
        is_active=active,
    )


# =============================================================================
# sync_all
# =============================================================================


@pytest.mark.usefixtures('adapter_patch')
class TestSyncAll:
    """Test full runs across several domains."""

    def test_vehicles_then_gps(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should map vehicles, then place locations on the mapped ones only."""
        local_id: str = seed_vehicle(session_factory, vin='1FUJGLDR12LM12345')
        fake_provider.vehicles = [Vehicle(external_id='v-1', vin='1FUJGLDR12LM12345')]
        fake_provider.locations = [
            GPSLocation(
                external_vehicle_id='v-1',
                latitude=32.78,
                longitude=-96.8,
                recorded_at=FIXED_NOW - timedelta(minutes=5),
                speed_mph=55.0,
            ),
            GPSLocation(
                external_vehicle_id='v-unknown',
                latitude=35.47,
                longitude=-97.52,
                recorded_at=FIXED_NOW - timedelta(minutes=5),
            ),
        ]

        result = orchestrator.sync_all(connection_id, domains=['vehicles', 'gps'])

        assert result.succeeded
        assert result.data is not None
        vehicles_pass, gps_pass = result.data.passes
        assert vehicles_pass.synced_count == 1
        assert (gps_pass.synced_count, gps_pass.skipped_count) == (1, 1)
        with session_factory.begin() as session:
            vehicle = session.get(LocalVehicle, local_id)
            assert vehicle is not None
            assert vehicle.last_known_location is not None
            assert vehicle.last_known_location['lat'] == 32.78  # noqa: PLR2004
            assert vehicle.last_location_at == FIXED_NOW - timedelta(minutes=5)
        assert _last_sync(session_factory, connection_id) == FIXED_NOW

    def test_resync_is_idempotent(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should upsert on natural keys so a second run adds no rows."""
        seed_mapping(session_factory, connection_id, 'driver', 'd-1', seed_driver(session_factory))
        fake_provider.hos_logs = [
            _hos_log('h-1', 'd-1', DutyStatus.DRIVING, FIXED_NOW - timedelta(hours=5), 120),
        ]

        orchestrator.sync_all(connection_id, domains=['hos'])
        orchestrator.sync_all(connection_id, domains=['hos'])

        assert _count(session_factory, HosLogRecord) == 1
        assert _count(session_factory, HosDailyLogRecord) == 1

    def test_failed_pass_does_not_stop_run(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should keep running later passes and hold back last_sync_at."""
        fake_provider.failures['vehicles'] = APIError('Upstream exploded', status_code=500)

        result = orchestrator.sync_all(connection_id, domains=['vehicles', 'drivers'])

        assert result.error
        assert result.error_message is not None
        assert result.error_message.startswith('1 of 2 domains failed')
        assert result.data is not None
        assert [sync_pass.completed for sync_pass in result.data.passes] == [False, True]
        assert _last_sync(session_factory, connection_id) is None
        with session_factory.begin() as session:
            job = session.scalars(select(SyncJob)).one()
            assert job.status == 'failed'
            assert set(job.details) == {'vehicles', 'drivers'}

    def test_rate_limit_recorded(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should mark the pass rate limited with the provider's wait."""
        fake_provider.failures['gps'] = RateLimitError(RateLimitInfo(retry_after_seconds=30.0))

        result = orchestrator.sync_all(connection_id, domains=['gps'])

        assert result.error
        assert result.data is not None
        assert result.data.rate_limited
        assert result.data.passes[0].retry_after_seconds == 30.0  # noqa: PLR2004
        assert _last_sync(session_factory, connection_id) is None

    def test_auth_error_retried_after_refresh(
        self,
        orchestrator: SyncOrchestrator,
        manager: ConnectionManager,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should refresh tokens once and rerun the pass."""
        fake_provider.failures['vehicles'] = AuthError()

        with patch.object(
            manager, 'refresh_connection_tokens', return_value=ServiceResult.ok(None)
        ) as refresh:
            result = orchestrator.sync_all(connection_id, domains=['vehicles'])

        assert result.succeeded
        refresh.assert_called_once_with(connection_id)
        assert fake_provider.calls.count('vehicles') == 2  # noqa: PLR2004

    def test_auth_error_without_refresh_fails_pass(
        self,
        orchestrator: SyncOrchestrator,
        manager: ConnectionManager,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should fail the pass when the refresh itself fails."""
        fake_provider.failures['vehicles'] = AuthError()

        with patch.object(
            manager,
            'refresh_connection_tokens',
            return_value=ServiceResult.fail('Token refresh failed'),
        ):
            result = orchestrator.sync_all(connection_id, domains=['vehicles'])

        assert result.data is not None
        assert result.data.passes[0].errors[0].startswith('Authentication failed')
        assert fake_provider.calls == ['vehicles']

    def test_unsupported_domain_skipped(
        self,
        orchestrator: SyncOrchestrator,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should skip domains the adapter does not declare."""
        result = orchestrator.sync_all(connection_id, domains=['hos_available_time', 'drivers'])

        assert result.succeeded
        assert result.data is not None
        assert [sync_pass.domain for sync_pass in result.data.passes] == ['drivers']
        assert 'hos_available_time' not in fake_provider.calls

    def test_unknown_connection(self, orchestrator: SyncOrchestrator) -> None:
        result = orchestrator.sync_all('missing')

        assert result.error_message == 'Connection not found'


class TestSyncAllWithoutAdapter:
    """Test runs where no adapter can be built."""

    def test_adapter_failure_aborts_run(
        self,
        orchestrator: SyncOrchestrator,
        manager: ConnectionManager,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should record a failed job and report the reason."""
        with patch.object(
            manager,
            'create_provider_for_connection',
            return_value=ServiceResult.fail('Token refresh failed'),
        ):
            result = orchestrator.sync_all(connection_id)

        assert result.error_message == 'Token refresh failed'
        assert result.data is not None
        assert result.data.passes == []
        with session_factory.begin() as session:
            job = session.scalars(select(SyncJob)).one()
            assert job.status == 'failed'
            assert job.error_message == 'Token refresh failed'


# =============================================================================
# Single Domain Passes
# =============================================================================


class TestHosPass:
    """Test HOS log writes and daily totals."""

    def test_logs_and_daily_totals(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should write mapped drivers' logs and roll them up per day."""
        driver_id: str = seed_driver(session_factory)
        seed_mapping(session_factory, connection_id, 'driver', 'd-1', driver_id)
        morning: datetime = datetime(2024, 5, 14, 8, 0, tzinfo=FIXED_NOW.tzinfo)
        fake_provider.hos_logs = [
            _hos_log('h-1', 'd-1', DutyStatus.DRIVING, morning, 60),
            _hos_log('h-2', 'd-1', DutyStatus.OFF_DUTY, morning + timedelta(hours=1), 30),
            _hos_log('h-3', 'd-unmapped', DutyStatus.DRIVING, morning, 45),
        ]

        result = orchestrator.sync_hos_logs(
            connection_id, WINDOW_START, FIXED_NOW, provider=fake_provider
        )

        assert result.data is not None
        assert (result.data.synced_count, result.data.skipped_count) == (2, 1)
        with session_factory.begin() as session:
            daily = session.scalars(select(HosDailyLogRecord)).one()
            assert daily.driver_id == driver_id
            assert daily.log_date == date(2024, 5, 14)
            assert daily.driving_minutes == 60  # noqa: PLR2004
            assert daily.off_duty_minutes == 30  # noqa: PLR2004

    def test_unsupported_capability_fails(
        self,
        orchestrator: SyncOrchestrator,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should refuse a single pass the adapter cannot serve."""
        result = orchestrator.sync_hos_available_time(connection_id, provider=fake_provider)

        assert result.error_message == 'Fake ELD does not support hos_available_time'


class TestFaultCodePass:
    """Test fault code occurrence tracking."""

    @pytest.fixture
    def mapped_vehicle(self, session_factory: sessionmaker[Session], connection_id: str) -> str:
        vehicle_id: str = seed_vehicle(session_factory)
        seed_mapping(session_factory, connection_id, 'vehicle', 'v-1', vehicle_id)
        return vehicle_id

    def _run(
        self, orchestrator: SyncOrchestrator, connection_id: str, fake_provider: FakeProvider
    ) -> None:
        result = orchestrator.sync_fault_codes(
            connection_id, WINDOW_START, FIXED_NOW, provider=fake_provider
        )
        assert result.succeeded

    def _row(self, session_factory: sessionmaker[Session]) -> FaultCodeRecord:
        with session_factory.begin() as session:
            return session.scalars(select(FaultCodeRecord)).one()

    @pytest.mark.usefixtures('mapped_vehicle')
    def test_same_observation_counted_once(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should not grow occurrence_count when re-syncing the same window."""
        fake_provider.fault_codes = [_fault(FIXED_NOW - timedelta(hours=3))]

        self._run(orchestrator, connection_id, fake_provider)
        self._run(orchestrator, connection_id, fake_provider)

        assert self._row(session_factory).occurrence_count == 1

    @pytest.mark.usefixtures('mapped_vehicle')
    def test_later_observation_and_resolution(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should count a later observation, then record resolution."""
        fake_provider.fault_codes = [_fault(FIXED_NOW - timedelta(hours=3))]
        self._run(orchestrator, connection_id, fake_provider)

        fake_provider.fault_codes = [_fault(FIXED_NOW - timedelta(hours=1))]
        self._run(orchestrator, connection_id, fake_provider)
        assert self._row(session_factory).occurrence_count == 2  # noqa: PLR2004

        fake_provider.fault_codes = [_fault(FIXED_NOW - timedelta(minutes=10), active=False)]
        self._run(orchestrator, connection_id, fake_provider)
        row: FaultCodeRecord = self._row(session_factory)
        assert not row.is_active
        assert row.resolved_at == FIXED_NOW - timedelta(minutes=10)
        assert row.occurrence_count == 2  # noqa: PLR2004

    def test_unmapped_vehicle_skipped(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        fake_provider.fault_codes = [_fault(FIXED_NOW)]

        result = orchestrator.sync_fault_codes(
            connection_id, WINDOW_START, FIXED_NOW, provider=fake_provider
        )

        assert result.data is not None
        assert result.data.skipped_count == 1
        assert _count(session_factory, FaultCodeRecord) == 0


class TestIftaPass:
    """Test quarterly IFTA mileage writes."""

    def test_summaries_spread_into_months(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should spread whole-quarter rows and keep fleet-wide rows."""
        seed_mapping(session_factory, connection_id, 'vehicle', 'v-1', seed_vehicle(session_factory))
        fake_provider.ifta_summaries = [
            IFTAJurisdictionSummary(jurisdiction='TX', total_miles=300.0, external_vehicle_id='v-1'),
            IFTAJurisdictionSummary(jurisdiction='OK', total_miles=90.0, period='2024-05'),
            IFTAJurisdictionSummary(jurisdiction='KS', total_miles=10.0, external_vehicle_id='v-9'),
        ]

        result = orchestrator.sync_ifta_mileage(connection_id, '2024-Q2', provider=fake_provider)

        assert result.data is not None
        assert result.data.synced_count == 4  # noqa: PLR2004
        assert result.data.skipped_count == 3  # noqa: PLR2004
        with session_factory.begin() as session:
            rows = {
                (row.external_vehicle_id, row.jurisdiction, row.period): row.miles
                for row in session.scalars(select(IftaMileageRecord))
            }
            quarters = set(session.scalars(select(IftaMileageRecord.quarter)))
        assert rows == {
            ('v-1', 'TX', '2024-04'): 100.0,
            ('v-1', 'TX', '2024-05'): 100.0,
            ('v-1', 'TX', '2024-06'): 100.0,
            ('*', 'OK', '2024-05'): 90.0,
        }
        assert quarters == {'2024-Q2'}

    def test_uneven_total_reads_back_whole(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should keep the quarter total when it does not divide into three months."""
        seed_mapping(session_factory, connection_id, 'vehicle', 'v-1', seed_vehicle(session_factory))
        fake_provider.ifta_summaries = [
            IFTAJurisdictionSummary(
                jurisdiction='TX', total_miles=100.0, fuel_gallons=10.0, external_vehicle_id='v-1'
            ),
        ]

        orchestrator.sync_ifta_mileage(connection_id, '2024-Q2', provider=fake_provider)

        with session_factory.begin() as session:
            monthly = sorted(
                session.execute(
                    select(IftaMileageRecord.period, IftaMileageRecord.miles)
                ).all()
            )
        assert [miles for _, miles in monthly] == [33.33, 33.33, 33.34]

        engine = IftaReconciliationEngine(session_factory)
        report = engine.get_jurisdiction_mileage(OWNER_ID, '2024-Q2', 'eld')

        assert report.data is not None
        assert report.data.miles_by_jurisdiction() == {'TX': 100.0}

    def test_invalid_quarter(
        self,
        orchestrator: SyncOrchestrator,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        result = orchestrator.sync_ifta_mileage(connection_id, '2024-Q5', provider=fake_provider)

        assert result.error
        assert fake_provider.calls == []


class TestFuelPurchasePass:
    """Test fuel purchase writes."""

    def test_purchase_without_vehicle_kept(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should store purchases that name no vehicle."""
        fake_provider.fuel_purchases = [
            FuelPurchase(
                external_id='fp-1',
                purchased_at=FIXED_NOW - timedelta(days=1),
                gallons=80.5,
                jurisdiction='TX',
            ),
        ]

        result = orchestrator.sync_fuel_purchases(
            connection_id, WINDOW_START, FIXED_NOW, provider=fake_provider
        )

        assert result.succeeded
        with session_factory.begin() as session:
            purchase = session.scalars(select(FuelPurchaseRecord)).one()
            assert purchase.vehicle_id is None
            assert purchase.gallons == 80.5  # noqa: PLR2004


# =============================================================================
# Scheduling & History
# =============================================================================


@pytest.mark.usefixtures('adapter_patch')
class TestSchedulingAndHistory:
    """Test the scheduling sweep and run history."""

    def test_only_due_connections_synced(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: sessionmaker[Session],
    ) -> None:
        """Should sync connections past the threshold and skip fresh ones."""
        due: str = seed_connection(session_factory)
        seed_connection(
            session_factory, owner_id='owner-2', last_sync_at=FIXED_NOW - timedelta(minutes=10)
        )

        result = orchestrator.run_scheduled_sync(threshold_minutes=60)

        assert result.data is not None
        assert result.data.attempted == 1
        assert result.data.runs[0].connection_id == due
        assert result.data.failures == {}

    def test_history_newest_first(
        self,
        orchestrator: SyncOrchestrator,
        connection_id: str,
    ) -> None:
        """Should list runs by start time descending."""
        orchestrator.sync_all(connection_id, domains=['vehicles'], now=FIXED_NOW - timedelta(hours=2))
        orchestrator.sync_all(connection_id, domains=['vehicles'], now=FIXED_NOW)

        history = orchestrator.get_sync_history(connection_id)
        latest = orchestrator.get_latest_sync_status(connection_id)

        assert history.data is not None
        assert [job.started_at for job in history.data] == [
            FIXED_NOW,
            FIXED_NOW - timedelta(hours=2),
        ]
        assert latest.data is not None
        assert latest.data.status == 'completed'
        assert latest.data.domains == ['vehicles']

    def test_no_history(self, orchestrator: SyncOrchestrator) -> None:
        latest = orchestrator.get_latest_sync_status('never-synced')

        assert latest.succeeded
        assert latest.data is None


# =============================================================================
# Aggregation Helpers
# =============================================================================


class TestAggregationHelpers:
    """Test the pure aggregation functions."""

    def test_trips_summed_per_vehicle_and_state(self) -> None:
        trips: list[IFTATrip] = [
            IFTATrip(
                external_id='t-1',
                external_vehicle_id='v-1',
                jurisdictions=[
                    JurisdictionMileage(jurisdiction='TX', miles=50.0, fuel_gallons=8.0),
                    JurisdictionMileage(jurisdiction='OK', miles=25.0),
                ],
            ),
            IFTATrip(
                external_id='t-2',
                external_vehicle_id='v-1',
                jurisdictions=[JurisdictionMileage(jurisdiction='TX', miles=20.0, fuel_gallons=2.0)],
            ),
        ]

        summaries = {s.jurisdiction: s for s in aggregate_ifta_trips(trips)}

        assert summaries['TX'].total_miles == 70.0  # noqa: PLR2004
        assert summaries['TX'].fuel_gallons == 10.0  # noqa: PLR2004
        assert summaries['OK'].fuel_gallons is None

    def test_spread_splits_fuel_and_sums_shared_keys(self) -> None:
        """Should divide whole-quarter fuel by three and merge duplicates."""
        rows = spread_ifta_summaries(
            [
                IFTAJurisdictionSummary(jurisdiction='TX', total_miles=30.0, fuel_gallons=6.0),
                IFTAJurisdictionSummary(jurisdiction='TX', total_miles=5.0, period='2024-01'),
            ],
            Quarter(year=2024, number=1),
        )

        assert rows[('*', 'TX', '2024-01')] == (15.0, 2.0)
        assert rows[('*', 'TX', '2024-03')] == (10.0, 2.0)

    def test_split_evenly_carries_remainder(self) -> None:
        assert split_evenly(100.0, 3, 2) == (33.33, 33.33, 33.34)
        assert split_evenly(10.0, 3, 3) == (3.333, 3.333, 3.334)
        assert split_evenly(30.0, 3, 2) == (10.0, 10.0, 10.0)

    def test_spread_keeps_quarter_total(self) -> None:
        rows = spread_ifta_summaries(
            [IFTAJurisdictionSummary(jurisdiction='OK', total_miles=250.0, fuel_gallons=41.0)],
            Quarter(year=2024, number=3),
        )

        assert sum(miles for miles, _ in rows.values()) == pytest.approx(250.0)
        assert sum(fuel or 0.0 for _, fuel in rows.values()) == pytest.approx(41.0)
        assert rows[('*', 'OK', '2024-09')] == (83.34, 13.666)

    def test_daily_totals_by_status(self) -> None:
        start: datetime = datetime(2024, 5, 14, 6, 0, tzinfo=FIXED_NOW.tzinfo)
        totals = aggregate_daily_totals(
            [
                _hos_log('a', 'd-1', DutyStatus.DRIVING, start, 90),
                _hos_log('b', 'd-1', DutyStatus.DRIVING, start + timedelta(hours=3), 30),
                _hos_log('c', 'd-2', DutyStatus.SLEEPER, start, 480),
            ]
        )

        assert totals[('d-1', date(2024, 5, 14))][DutyStatus.DRIVING] == 120.0  # noqa: PLR2004
        assert totals[('d-2', date(2024, 5, 14))][DutyStatus.SLEEPER] == 480.0  # noqa: PLR2004
