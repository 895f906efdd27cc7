"""
Tests for eld_integration_hub.mapping module.

Tests the tiered matching heuristics, persistence of auto matches, manual
overrides, and auto-creation of local entities.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from conftest import OWNER_ID, seed_connection, seed_driver, seed_mapping, seed_vehicle
from eld_integration_hub.config import ELDHubConfig, SyncConfig
from eld_integration_hub.mapping import (
    DRIVER_MATCH_TIERS,
    INVALID_ENTITY_TYPE,
    VEHICLE_MATCH_TIERS,
    EntityMappingService,
    EntityType,
    MatchCandidate,
    find_match,
)
from eld_integration_hub.models import Driver, Vehicle
from eld_integration_hub.storage import EntityMapping, LocalDriver, LocalVehicle


@pytest.fixture
def service(session_factory: sessionmaker[Session]) -> EntityMappingService:
    return EntityMappingService(session_factory, ELDHubConfig())


@pytest.fixture
def connection_id(session_factory: sessionmaker[Session]) -> str:
    return seed_connection(session_factory)


def _mapping_count(session_factory: sessionmaker[Session]) -> int:
    with session_factory.begin() as session:
        return session.scalar(select(func.count()).select_from(EntityMapping)) or 0


class TestFindMatch:
    """Test the pure matching function."""

    def test_vin_beats_plate(self) -> None:
        """Should use the VIN tier before the plate tier."""
        candidates: list[MatchCandidate] = [
            MatchCandidate(local_id='by-plate', license_plate='ABC123'),
            MatchCandidate(local_id='by-vin', vin='1fujgldr12lm12345'),
        ]
        record = Vehicle(external_id='e1', vin='1FUJGLDR12LM12345', license_plate='abc-123')

        outcome = find_match(record, candidates, VEHICLE_MATCH_TIERS)

        assert outcome.local_id == 'by-vin'
        assert outcome.match_method == 'vin'
        assert outcome.confidence == 1.0

    def test_plate_normalized(self) -> None:
        """Should match plates ignoring case, spaces, and dashes."""
        candidates: list[MatchCandidate] = [
            MatchCandidate(local_id='truck', license_plate='ABC 123'),
        ]
        record = Vehicle(external_id='e1', license_plate='abc-123')

        outcome = find_match(record, candidates, VEHICLE_MATCH_TIERS)

        assert outcome.local_id == 'truck'
        assert outcome.confidence == 0.9  # noqa: PLR2004

    def test_ambiguous_names_return_candidates(self) -> None:
        """Should report every candidate when the deciding tier is not unique."""
        candidates: list[MatchCandidate] = [
            MatchCandidate(local_id='one', name='Truck 7'),
            MatchCandidate(local_id='two', name='truck 7'),
        ]
        record = Vehicle(external_id='e1', name='TRUCK 7')

        outcome = find_match(record, candidates, VEHICLE_MATCH_TIERS)

        assert outcome.local_id is None
        assert outcome.match_method == 'name'
        assert set(outcome.candidate_ids) == {'one', 'two'}

    def test_driver_email_and_phone_tiers(self) -> None:
        """Should fall through license to email, then phone digits."""
        candidates: list[MatchCandidate] = [
            MatchCandidate(local_id='by-email', email='dana@acme.test'),
            MatchCandidate(local_id='by-phone', phone='(555) 010-2000'),
        ]

        by_email = find_match(
            Driver(external_id='d1', email='Dana@Acme.test'), candidates, DRIVER_MATCH_TIERS
        )
        by_phone = find_match(
            Driver(external_id='d2', phone='555.010.2000'), candidates, DRIVER_MATCH_TIERS
        )

        assert (by_email.local_id, by_email.match_method) == ('by-email', 'email')
        assert (by_phone.local_id, by_phone.match_method) == ('by-phone', 'phone')

    def test_excluded_candidates_skipped(self) -> None:
        """Should not match a local entity that is already taken."""
        candidates: list[MatchCandidate] = [MatchCandidate(local_id='taken', vin='VIN1')]

        outcome = find_match(
            Vehicle(external_id='e1', vin='VIN1'), candidates, VEHICLE_MATCH_TIERS, {'taken'}
        )

        assert outcome.local_id is None
        assert outcome.candidate_ids == ()


class TestAutoMatch:
    """Test persisted auto-matching."""

    def test_vehicles_matched_by_vin_and_plate(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should persist unique matches and stamp the local entities."""
        by_vin: str = seed_vehicle(session_factory, name='A', vin='VIN-0001')
        by_plate: str = seed_vehicle(session_factory, name='B', license_plate='TX1234')

        result = service.auto_match_vehicles(
            connection_id,
            [
                Vehicle(external_id='m-1', vin='vin0001'),
                Vehicle(external_id='m-2', license_plate='tx 1234'),
                Vehicle(external_id='m-3', name='Nobody'),
            ],
        )

        assert result.data is not None
        matched: dict[str, str | None] = {
            outcome.external_id: outcome.local_id for outcome in result.data.matched
        }
        assert matched == {'m-1': by_vin, 'm-2': by_plate}
        assert [outcome.external_id for outcome in result.data.unmatched] == ['m-3']
        assert service.get_local_vehicle_id(connection_id, 'm-1').data == by_vin
        with session_factory.begin() as session:
            vehicle = session.get(LocalVehicle, by_vin)
            assert vehicle is not None
            assert vehicle.eld_external_id == 'm-1'
            assert vehicle.eld_provider == 'motive'

    def test_ambiguous_match_not_persisted(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should leave ambiguous records unmapped."""
        seed_driver(session_factory, first_name='Sam', last_name='Lee')
        seed_driver(session_factory, first_name='sam', last_name='lee')

        result = service.auto_match_drivers(
            connection_id, [Driver(external_id='d-1', first_name='Sam', last_name='Lee')]
        )

        assert result.data is not None
        assert len(result.data.ambiguous) == 1
        assert len(result.data.ambiguous[0].candidate_ids) == 2  # noqa: PLR2004
        assert _mapping_count(session_factory) == 0
        assert service.get_local_driver_id(connection_id, 'd-1').error

    def test_rerun_is_idempotent(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should report existing mappings as matched without adding rows."""
        seed_vehicle(session_factory, vin='VIN-0001')
        records: list[Vehicle] = [Vehicle(external_id='m-1', vin='VIN-0001')]

        service.auto_match_vehicles(connection_id, records)
        second = service.auto_match_vehicles(connection_id, records)

        assert second.data is not None
        assert len(second.data.matched) == 1
        assert second.data.matched[0].match_method == 'vin'
        assert _mapping_count(session_factory) == 1

    def test_local_entity_mapped_once(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should not map two external records onto the same local entity."""
        seed_vehicle(session_factory, vin='VIN-0001')

        result = service.auto_match_vehicles(
            connection_id,
            [
                Vehicle(external_id='m-1', vin='VIN-0001'),
                Vehicle(external_id='m-2', vin='VIN-0001'),
            ],
        )

        assert result.data is not None
        assert [outcome.external_id for outcome in result.data.matched] == ['m-1']
        assert [outcome.external_id for outcome in result.data.unmatched] == ['m-2']

    def test_auto_create_unmatched(
        self,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should create local drivers for unmatched records when enabled."""
        service = EntityMappingService(
            session_factory, ELDHubConfig(sync=SyncConfig(auto_create_entities=True))
        )

        result = service.auto_match_drivers(
            connection_id,
            [Driver(external_id='d-9', first_name='Ana', last_name='Ruiz', email='ana@x.test')],
        )

        assert result.data is not None
        assert result.data.unmatched == []
        assert result.data.matched[0].match_method == 'created'
        with session_factory.begin() as session:
            driver = session.scalars(select(LocalDriver).where(LocalDriver.email == 'ana@x.test')).one()
            assert driver.owner_id == OWNER_ID
            assert driver.eld_external_id == 'd-9'

    def test_unknown_connection(self, service: EntityMappingService) -> None:
        result = service.auto_match_vehicles('missing', [Vehicle(external_id='m-1')])

        assert result.error_message == 'Connection not found'


class TestManualMapping:
    """Test manual_map, listing, and deletion."""

    def test_manual_overrides_auto(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should replace the auto mapping's local id and method."""
        auto_local: str = seed_vehicle(session_factory, name='Wrong')
        chosen: str = seed_vehicle(session_factory, name='Right')
        seed_mapping(session_factory, connection_id, 'vehicle', 'm-1', auto_local)

        result = service.manual_map(OWNER_ID, connection_id, 'vehicle', 'm-1', chosen, 'Unit 1')

        assert result.data is not None
        assert result.data.local_id == chosen
        assert result.data.match_method == 'manual'
        assert result.data.match_details == {'matchedBy': 'manual'}
        assert _mapping_count(session_factory) == 1
        assert service.get_external_id(connection_id, EntityType.VEHICLE, chosen).data == 'm-1'

    def test_manual_requires_owned_local(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should refuse to map onto another owner's entity."""
        foreign: str = seed_vehicle(session_factory, owner_id='other-owner')

        result = service.manual_map(OWNER_ID, connection_id, 'vehicle', 'm-1', foreign)

        assert result.error_message == 'Local vehicle not found'

    def test_list_and_delete(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should list mappings by type and delete one by id."""
        mapping_id: str = seed_mapping(session_factory, connection_id, 'driver', 'd-1', 'l-1')
        seed_mapping(session_factory, connection_id, 'vehicle', 'v-1', 'l-2')

        drivers = service.list_mappings(OWNER_ID, connection_id, 'driver').data
        assert drivers is not None
        assert [view.external_id for view in drivers] == ['d-1']

        assert service.delete_mapping('other-owner', mapping_id).error
        assert service.delete_mapping(OWNER_ID, mapping_id).data is True
        assert _mapping_count(session_factory) == 1

    def test_get_unmapped(
        self,
        service: EntityMappingService,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        seed_mapping(session_factory, connection_id, 'vehicle', 'v-1', 'l-1')

        result = service.get_unmapped(
            connection_id,
            'vehicle',
            [Vehicle(external_id='v-1'), Vehicle(external_id='v-2')],
        )

        assert result.data is not None
        assert [record.external_id for record in result.data] == ['v-2']

    def test_unknown_entity_type_fails(
        self,
        service: EntityMappingService,
        connection_id: str,
    ) -> None:
        """Should report an unknown entity type as a failed result."""
        results = [
            service.resolve_local_id(connection_id, 'trailer', 't-1'),
            service.get_external_id(connection_id, 'trailer', 'l-1'),
            service.get_unmapped(connection_id, 'trailer', [Vehicle(external_id='v-1')]),
            service.auto_match(connection_id, 'trailer', [], []),
            service.manual_map(OWNER_ID, connection_id, 'trailer', 't-1', 'l-1'),
            service.list_mappings(OWNER_ID, connection_id, 'trailer'),
        ]

        assert [result.error_message for result in results] == [INVALID_ENTITY_TYPE] * 6
