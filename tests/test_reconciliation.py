"""
Tests for eld_integration_hub.reconciliation module.

Tests the pure merge of ELD and manual mileage, crossing arithmetic, and
the engine's loading and import against the datastore.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from conftest import FIXED_NOW, OWNER_ID, seed_connection
from eld_integration_hub.config import ELDHubConfig, ReconciliationConfig
from eld_integration_hub.reconciliation import (
    NO_ELD_FALLBACK_REASON,
    EldMileage,
    IftaReconciliationEngine,
    ManualMileage,
    SourceMileage,
    StateCrossing,
    manual_mileage_from_crossings,
    recommend,
    reconcile,
)
from eld_integration_hub.storage import (
    DriverMileageCrossing,
    DriverMileageTrip,
    IftaMileageRecord,
    IftaTripRecord,
)


def _crossing(trip_id: str, state: str, odometer: float, minutes: int) -> StateCrossing:
    return StateCrossing(
        trip_id=trip_id,
        state=state,
        odometer=odometer,
        crossed_at=FIXED_NOW + timedelta(minutes=minutes),
    )


class TestReconcile:
    """Test the pure merge under each mode."""

    def test_combined_reports_overlap(self) -> None:
        """Should surface shared jurisdictions with ELD minus manual."""
        report = reconcile({'TX': 100.0}, {'TX': 90.0, 'OK': 20.0}, 'combined')

        assert report.miles_by_jurisdiction() == {'OK': 20.0, 'TX': 100.0}
        assert report.total_miles == 120.0  # noqa: PLR2004
        assert [(o.jurisdiction, o.difference) for o in report.overlaps] == [('TX', 10.0)]
        assert report.stats() == {'eld_only': 0, 'manual_only': 1, 'both': 1}

    def test_manual_precedence(self) -> None:
        """Should count the manual figure for overlaps when configured."""
        report = reconcile({'TX': 100.0}, {'TX': 90.0}, 'combined', 'manual')

        assert report.miles_by_jurisdiction() == {'TX': 90.0}
        assert report.overlaps[0].difference == 10.0  # noqa: PLR2004

    def test_eld_mode_falls_back_to_manual(self) -> None:
        """Should flag the fallback instead of returning an empty report."""
        report = reconcile({}, {'KS': 40.0}, 'eld')

        assert report.fallback
        assert report.fallback_reason == NO_ELD_FALLBACK_REASON
        assert report.mode == 'manual'
        assert report.miles_by_jurisdiction() == {'KS': 40.0}

    def test_single_source_modes(self) -> None:
        eld_only = reconcile({'TX': 100.0}, {'OK': 20.0}, 'eld')
        manual_only = reconcile({'TX': 100.0}, {'OK': 20.0}, 'manual')

        assert not eld_only.fallback
        assert eld_only.miles_by_jurisdiction() == {'TX': 100.0}
        assert manual_only.miles_by_jurisdiction() == {'OK': 20.0}

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValueError, match='Invalid data source'):
            reconcile({}, {}, 'average')  # pyright: ignore[reportArgumentType]

    def test_dataframe(self) -> None:
        """Should produce one row per jurisdiction with the difference column."""
        frame = reconcile({'TX': 100.0}, {'TX': 90.0, 'OK': 20.0}, 'combined').to_dataframe()

        assert list(frame['jurisdiction']) == ['OK', 'TX']
        assert list(frame['difference']) == [-20.0, 10.0]
        assert list(frame['overlap']) == [False, True]
        assert frame.loc[1, 'state_name'] == 'Texas'


class TestManualMileage:
    """Test crossing arithmetic."""

    def test_crossings_credit_previous_state(self) -> None:
        """Should credit each odometer delta to the state being left."""
        entries = manual_mileage_from_crossings(
            [
                _crossing('trip-1', 'OK', 1100, 60),
                _crossing('trip-1', 'TX', 1000, 0),
                _crossing('trip-1', 'KS', 1130, 90),
            ]
        )

        assert {entry.jurisdiction: entry.miles for entry in entries} == {'TX': 100.0, 'OK': 30.0}

    def test_non_positive_deltas_ignored(self) -> None:
        entries = manual_mileage_from_crossings(
            [
                _crossing('trip-1', 'TX', 5000, 0),
                _crossing('trip-1', 'OK', 10, 60),
                _crossing('trip-1', 'KS', 40, 90),
            ]
        )

        assert {entry.jurisdiction: entry.miles for entry in entries} == {'OK': 30.0}

    def test_trips_kept_separate(self) -> None:
        """Should never pair crossings from different trips."""
        entries = manual_mileage_from_crossings(
            [
                _crossing('trip-1', 'TX', 0, 0),
                _crossing('trip-1', 'OK', 50, 30),
                _crossing('trip-2', 'TX', 900, 10),
                _crossing('trip-2', 'NM', 925, 40),
            ]
        )

        texas: SourceMileage = next(entry for entry in entries if entry.jurisdiction == 'TX')
        assert texas.miles == 75.0  # noqa: PLR2004
        assert texas.trip_ids == ('trip-1', 'trip-2')


class TestRecommend:
    def test_prefers_eld(self) -> None:
        eld = EldMileage(quarter='2024-Q2', entries=[SourceMileage(jurisdiction='TX', miles=1)])

        assert recommend(eld, ManualMileage(quarter='2024-Q2')).source == 'eld'

    def test_manual_then_none(self) -> None:
        manual = ManualMileage(quarter='2024-Q2', entries=[SourceMileage(jurisdiction='TX', miles=1)])

        assert recommend(EldMileage(quarter='2024-Q2'), manual).source == 'manual'
        assert recommend(EldMileage(quarter='2024-Q2'), ManualMileage(quarter='2024-Q2')).source == (
            'none'
        )


class TestReconciliationEngine:
    """Test loading, reporting and importing against the datastore."""

    @pytest.fixture
    def engine_service(
        self, session_factory: sessionmaker[Session], clock: Callable[[], datetime]
    ) -> IftaReconciliationEngine:
        return IftaReconciliationEngine(session_factory, ELDHubConfig(), clock=clock)

    @pytest.fixture
    def eld_rows(self, session_factory: sessionmaker[Session]) -> str:
        """Q2 2024 ELD mileage: TX over two months plus a fleet-wide OK row."""
        connection_id: str = seed_connection(session_factory, last_sync_at=FIXED_NOW)
        rows: list[tuple[str, str, str, float]] = [
            ('v-1', 'TX', '2024-04', 60.0),
            ('v-2', 'TX', '2024-05', 40.0),
            ('*', 'OK', '2024-06', 20.0),
            ('v-1', 'NM', '2024-01', 500.0),
        ]
        with session_factory.begin() as session:
            session.add_all(
                IftaMileageRecord(
                    connection_id=connection_id,
                    external_vehicle_id=vehicle,
                    jurisdiction=jurisdiction,
                    period=period,
                    quarter='2024-Q2' if period != '2024-01' else '2024-Q1',
                    miles=miles,
                )
                for vehicle, jurisdiction, period, miles in rows
            )
        return connection_id

    @pytest.fixture
    def manual_trip(self, session_factory: sessionmaker[Session]) -> str:
        with session_factory.begin() as session:
            trip = DriverMileageTrip(
                owner_id=OWNER_ID,
                status='completed',
                start_date=date(2024, 5, 1),
                end_date=date(2024, 5, 2),
            )
            session.add(trip)
            session.flush()
            for state, odometer, minutes in (('TX', 1000.0, 0), ('OK', 1090.0, 90), ('KS', 1100.0, 100)):
                session.add(
                    DriverMileageCrossing(
                        trip_id=trip.id,
                        state=state,
                        odometer=odometer,
                        crossed_at=datetime(2024, 5, 1, 8, tzinfo=FIXED_NOW.tzinfo)
                        + timedelta(minutes=minutes),
                    )
                )
            session.add(
                DriverMileageTrip(
                    owner_id=OWNER_ID,
                    status='active',
                    start_date=date(2024, 5, 3),
                )
            )
            return trip.id

    def test_eld_mileage_grouped(
        self, engine_service: IftaReconciliationEngine, eld_rows: str
    ) -> None:
        """Should sum the quarter's months per jurisdiction and list vehicles."""
        result = engine_service.get_eld_mileage(OWNER_ID, '2024-Q2')

        assert result.data is not None
        entries = {entry.jurisdiction: entry for entry in result.data.entries}
        assert set(entries) == {'OK', 'TX'}
        assert entries['TX'].miles == 100.0  # noqa: PLR2004
        assert entries['TX'].vehicles == ('v-1', 'v-2')
        assert entries['TX'].months == ('2024-04', '2024-05')
        assert entries['OK'].vehicles == ()
        assert result.data.connection_id == eld_rows

    @pytest.mark.usefixtures('manual_trip')
    def test_manual_mileage_only_completed_trips(
        self, engine_service: IftaReconciliationEngine
    ) -> None:
        result = engine_service.get_manual_mileage(OWNER_ID, '2024-Q2')

        assert result.data is not None
        assert result.data.trip_count == 1
        assert {e.jurisdiction: e.miles for e in result.data.entries} == {'TX': 90.0, 'OK': 10.0}

    @pytest.mark.usefixtures('eld_rows', 'manual_trip')
    def test_combined_report(self, engine_service: IftaReconciliationEngine) -> None:
        result = engine_service.get_jurisdiction_mileage(OWNER_ID, '2024-Q2', 'combined')

        assert result.data is not None
        assert result.data.quarter == '2024-Q2'
        assert {o.jurisdiction: o.difference for o in result.data.overlaps} == {
            'TX': 10.0,
            'OK': 10.0,
        }
        assert result.data.total_miles == 120.0  # noqa: PLR2004

    def test_default_mode_falls_back(
        self, engine_service: IftaReconciliationEngine, manual_trip: str
    ) -> None:
        """Should use manual data in the default eld mode without ELD rows."""
        result = engine_service.get_jurisdiction_mileage(OWNER_ID, '2024-Q2')

        assert result.data is not None
        assert result.data.fallback
        assert result.data.miles_by_jurisdiction() == {'OK': 10.0, 'TX': 90.0}

    def test_invalid_inputs(self, engine_service: IftaReconciliationEngine) -> None:
        assert engine_service.get_jurisdiction_mileage(OWNER_ID, '2024-Q9').error_message == (
            'Invalid quarter format'
        )
        assert engine_service.get_jurisdiction_mileage(
            OWNER_ID, '2024-Q2', 'average'  # pyright: ignore[reportArgumentType]
        ).error_message == 'Invalid data source'

    def test_manual_precedence_from_config(
        self,
        session_factory: sessionmaker[Session],
        eld_rows: str,
        manual_trip: str,
    ) -> None:
        service = IftaReconciliationEngine(
            session_factory,
            ELDHubConfig(reconciliation=ReconciliationConfig(overlap_precedence='manual')),
        )

        result = service.get_jurisdiction_mileage(OWNER_ID, '2024-Q2', 'combined')

        assert result.data is not None
        assert result.data.miles_by_jurisdiction() == {'OK': 10.0, 'TX': 90.0}

    @pytest.mark.usefixtures('eld_rows')
    def test_import_creates_then_updates(
        self,
        engine_service: IftaReconciliationEngine,
        session_factory: sessionmaker[Session],
    ) -> None:
        """Should write one row per jurisdiction and update it on re-import."""
        first = engine_service.import_eld_mileage_to_ifta(OWNER_ID, '2024-Q2')
        second = engine_service.import_eld_mileage_to_ifta(OWNER_ID, '2024-Q2')

        assert first.data is not None
        assert (first.data.records_created, first.data.records_updated) == (2, 0)
        assert second.data is not None
        assert (second.data.records_created, second.data.records_updated) == (0, 2)
        with session_factory.begin() as session:
            rows = list(session.scalars(select(IftaTripRecord).order_by(IftaTripRecord.start_jurisdiction)))
            assert [(row.start_jurisdiction, row.total_miles) for row in rows] == [
                ('OK', 20.0),
                ('TX', 100.0),
            ]
            assert all(row.start_date == date(2024, 5, 15) for row in rows)
            assert all(row.is_eld_data for row in rows)

    def test_import_without_eld_data(self, engine_service: IftaReconciliationEngine) -> None:
        result = engine_service.import_eld_mileage_to_ifta(OWNER_ID, '2024-Q2')

        assert result.error_message == 'No ELD mileage data available for this quarter'

    @pytest.mark.usefixtures('eld_rows', 'manual_trip')
    def test_summary(self, engine_service: IftaReconciliationEngine) -> None:
        result = engine_service.get_mileage_summary(OWNER_ID, '2024-Q2')

        assert result.data is not None
        assert (result.data.eld_miles, result.data.manual_miles) == (120, 100)
        assert result.data.difference_percent == 20  # noqa: PLR2004
        assert result.data.jurisdiction_count == 2  # noqa: PLR2004
        assert result.data.last_eld_sync == FIXED_NOW
        assert result.data.recommendation.source == 'eld'
