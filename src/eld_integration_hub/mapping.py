# eld_integration_hub/mapping.py
"""
Entity mapping: provider ids onto the owner's vehicles and drivers.

Every synced record that references a vehicle or driver is resolved through
the mapping table before it is written. A mapping is unique on
(connection_id, entity_type, external_id), so resolving the same external
id twice always yields the same local id.

Design Decisions:
-----------------
- Auto-matching walks a priority-ordered list of tiers. The first tier in
  which the record has a key and at least one candidate decides: exactly
  one candidate is a match, several are ambiguous and nothing is written.

- Persistence is INSERT ... ON CONFLICT DO NOTHING followed by a read-back.
  Whatever row won (ours, a concurrent pass's, or an earlier manual
  mapping) is the one used, so an auto pass can never overwrite a manual
  mapping.

- A local entity already mapped within the connection is excluded from
  auto-matching, keeping mappings one-to-one in practice.

- Stored match_method is 'auto' or 'manual'; the tier that produced an auto
  match is kept in match_details['matchedBy'].

Usage:
------
    service = EntityMappingService(session_factory, config)
    summary = service.auto_match_vehicles(connection_id, vehicles).data
    local_id = service.get_local_vehicle_id(connection_id, '281474').data
"""

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.config import ELDHubConfig
from eld_integration_hub.errors import MappingError
from eld_integration_hub.models import (
    AutoMatchSummary,
    Driver,
    MatchOutcome,
    ServiceResult,
    Vehicle,
)
from eld_integration_hub.storage import (
    ELDConnection,
    EntityMapping,
    LocalDriver,
    LocalVehicle,
    insert_ignore,
    upsert,
)
from eld_integration_hub.storage.tables import new_id, utc_now

__all__: list[str] = [
    'DRIVER_MATCH_TIERS',
    'INVALID_ENTITY_TYPE',
    'VEHICLE_MATCH_TIERS',
    'EntityMappingService',
    'EntityType',
    'MappingView',
    'MatchCandidate',
    'MatchTier',
    'find_match',
    'normalize_digits',
    'normalize_email',
    'normalize_identifier',
    'normalize_name',
]

logger: logging.Logger = logging.getLogger(__name__)

MATCH_METHOD_AUTO: Final[str] = 'auto'
MATCH_METHOD_MANUAL: Final[str] = 'manual'
INVALID_ENTITY_TYPE: Final[str] = 'Invalid entity type'


class EntityType(str, Enum):
    VEHICLE = 'vehicle'
    DRIVER = 'driver'


# =============================================================================
# Normalization
# =============================================================================


def normalize_identifier(value: str | None) -> str:
    """Plates, VINs and license numbers: spaces and dashes dropped, uppercased."""
    if not value:
        return ''
    return re.sub(r'[\s\-]', '', value).upper()


def normalize_name(value: str | None) -> str:
    """Case-folded with internal whitespace collapsed."""
    if not value:
        return ''
    return ' '.join(value.split()).casefold()


def normalize_email(value: str | None) -> str:
    return value.strip().lower() if value else ''


def normalize_digits(value: str | None) -> str:
    return re.sub(r'\D', '', value) if value else ''


# =============================================================================
# Candidates & Tiers
# =============================================================================


class MatchCandidate(BaseModel):
    """
    A local entity eligible for matching.

    Vehicles use vin, license_plate and name; drivers use license_number,
    email, phone and name (the full name).
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    local_id: str
    name: str | None = None
    vin: str | None = None
    license_plate: str | None = None
    license_number: str | None = None
    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_vehicle(cls, vehicle: LocalVehicle) -> 'MatchCandidate':
        return cls(
            local_id=vehicle.id,
            name=vehicle.name,
            vin=vehicle.vin,
            license_plate=vehicle.license_plate,
        )

    @classmethod
    def from_driver(cls, driver: LocalDriver) -> 'MatchCandidate':
        return cls(
            local_id=driver.id,
            name=driver.full_name,
            license_number=driver.license_number,
            email=driver.email,
            phone=driver.phone,
        )


type MatchableRecord = Vehicle | Driver


class MatchTier(BaseModel):
    """One heuristic: how to key the external record and the candidate."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    method: str
    confidence: float
    record_key: Callable[[Any], str]
    candidate_key: Callable[[MatchCandidate], str]


VEHICLE_MATCH_TIERS: Final[tuple[MatchTier, ...]] = (
    MatchTier(
        method='vin',
        confidence=1.0,
        record_key=lambda record: normalize_identifier(record.vin),
        candidate_key=lambda candidate: normalize_identifier(candidate.vin),
    ),
    MatchTier(
        method='license_plate',
        confidence=0.9,
        record_key=lambda record: normalize_identifier(record.license_plate),
        candidate_key=lambda candidate: normalize_identifier(candidate.license_plate),
    ),
    MatchTier(
        method='name',
        confidence=0.7,
        record_key=lambda record: normalize_name(record.name),
        candidate_key=lambda candidate: normalize_name(candidate.name),
    ),
)

DRIVER_MATCH_TIERS: Final[tuple[MatchTier, ...]] = (
    MatchTier(
        method='license',
        confidence=1.0,
        record_key=lambda record: normalize_identifier(record.license_number),
        candidate_key=lambda candidate: normalize_identifier(candidate.license_number),
    ),
    MatchTier(
        method='email',
        confidence=0.95,
        record_key=lambda record: normalize_email(record.email),
        candidate_key=lambda candidate: normalize_email(candidate.email),
    ),
    MatchTier(
        method='phone',
        confidence=0.9,
        record_key=lambda record: normalize_digits(record.phone),
        candidate_key=lambda candidate: normalize_digits(candidate.phone),
    ),
    MatchTier(
        method='name',
        confidence=0.7,
        record_key=lambda record: normalize_name(record.full_name),
        candidate_key=lambda candidate: normalize_name(candidate.name),
    ),
)

_TIERS: Final[dict[EntityType, tuple[MatchTier, ...]]] = {
    EntityType.VEHICLE: VEHICLE_MATCH_TIERS,
    EntityType.DRIVER: DRIVER_MATCH_TIERS,
}


def find_match(
    record: MatchableRecord,
    candidates: Sequence[MatchCandidate],
    tiers: Sequence[MatchTier],
    excluded_ids: Iterable[str] = (),
) -> MatchOutcome:
    """
    Run the tiers against the candidates.

    Returns:
        A MatchOutcome whose local_id is set on a unique match. When the
        deciding tier had several candidates, local_id is None and
        candidate_ids lists them. When no tier matched, both are empty.
    """
    excluded: set[str] = set(excluded_ids)
    available: list[MatchCandidate] = [c for c in candidates if c.local_id not in excluded]

    for tier in tiers:
        key: str = tier.record_key(record)
        if not key:
            continue
        hits: list[MatchCandidate] = [c for c in available if tier.candidate_key(c) == key]
        if len(hits) == 1:
            return MatchOutcome(
                external_id=record.external_id,
                local_id=hits[0].local_id,
                match_method=tier.method,
                confidence=tier.confidence,
            )
        if hits:
            return MatchOutcome(
                external_id=record.external_id,
                match_method=tier.method,
                candidate_ids=tuple(c.local_id for c in hits),
            )

    return MatchOutcome(external_id=record.external_id)


# =============================================================================
# Views
# =============================================================================


class MappingView(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    connection_id: str
    entity_type: EntityType
    external_id: str
    external_name: str | None = None
    local_id: str
    match_method: str
    confidence: float
    match_details: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_row(cls, row: EntityMapping) -> 'MappingView':
        return cls(
            id=row.id,
            connection_id=row.connection_id,
            entity_type=EntityType(row.entity_type),
            external_id=row.external_id,
            external_name=row.external_name,
            local_id=row.local_id,
            match_method=row.match_method,
            confidence=row.confidence,
            match_details=dict(row.match_details or {}),
            created_at=row.created_at,
        )


# =============================================================================
# Service
# =============================================================================


class EntityMappingService:
    """
    Resolves, creates and manages entity mappings for connections.

    Args:
        session_factory: Datastore handle.
        config: Hub configuration; `sync.auto_create_entities` enables
            creating local entities for unmatched records.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ELDHubConfig | None = None,
    ) -> None:
        self._session_factory: sessionmaker[Session] = session_factory
        self._config: ELDHubConfig = config or ELDHubConfig()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_local_id(
        self,
        connection_id: str,
        entity_type: EntityType | str,
        external_id: str,
    ) -> ServiceResult[str]:
        """Local id mapped to an external id; fails when there is none."""
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        with self._session_factory.begin() as session:
            local_id: str | None = session.scalar(
                select(EntityMapping.local_id).where(
                    EntityMapping.connection_id == connection_id,
                    EntityMapping.entity_type == kind.value,
                    EntityMapping.external_id == external_id,
                )
            )
        if local_id is None:
            return ServiceResult.fail(str(MappingError(kind.value, external_id)))
        return ServiceResult.ok(local_id)

    def get_local_vehicle_id(self, connection_id: str, external_id: str) -> ServiceResult[str]:
        return self.resolve_local_id(connection_id, EntityType.VEHICLE, external_id)

    def get_local_driver_id(self, connection_id: str, external_id: str) -> ServiceResult[str]:
        return self.resolve_local_id(connection_id, EntityType.DRIVER, external_id)

    def get_external_id(
        self,
        connection_id: str,
        entity_type: EntityType | str,
        local_id: str,
    ) -> ServiceResult[str]:
        """Reverse lookup: the external id a local entity is mapped from."""
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        with self._session_factory.begin() as session:
            external_id: str | None = session.scalar(
                select(EntityMapping.external_id)
                .where(
                    EntityMapping.connection_id == connection_id,
                    EntityMapping.entity_type == kind.value,
                    EntityMapping.local_id == local_id,
                )
                .order_by(EntityMapping.created_at)
                .limit(1)
            )
        if external_id is None:
            return ServiceResult.fail(f'No {kind.value} mapping for local id {local_id}')
        return ServiceResult.ok(external_id)

    def mapping_index(
        self,
        connection_id: str,
        entity_type: EntityType | str,
    ) -> ServiceResult[dict[str, str]]:
        """All external_id → local_id pairs for a connection, for bulk resolution."""
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        with self._session_factory.begin() as session:
            return ServiceResult.ok(_index(session, connection_id, kind))

    # -------------------------------------------------------------------------
    # Auto-Matching
    # -------------------------------------------------------------------------

    def auto_match(
        self,
        connection_id: str,
        entity_type: EntityType | str,
        external_records: Sequence[MatchableRecord],
        local_candidates: Sequence[MatchCandidate],
    ) -> ServiceResult[AutoMatchSummary]:
        """
        Match external records against candidates and persist unique matches.

        Records that are already mapped count as matched with their existing
        mapping, whatever its method.
        """
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        return self._run_auto_match(connection_id, kind, external_records, local_candidates)

    def auto_match_vehicles(
        self,
        connection_id: str,
        vehicles: Sequence[Vehicle],
    ) -> ServiceResult[AutoMatchSummary]:
        """Auto-match against the owner's vehicles, creating any unmatched when enabled."""
        return self._run_auto_match(
            connection_id,
            EntityType.VEHICLE,
            vehicles,
            create_unmatched=self._config.sync.auto_create_entities,
        )

    def auto_match_drivers(
        self,
        connection_id: str,
        drivers: Sequence[Driver],
    ) -> ServiceResult[AutoMatchSummary]:
        """Auto-match against the owner's drivers, creating any unmatched when enabled."""
        return self._run_auto_match(
            connection_id,
            EntityType.DRIVER,
            drivers,
            create_unmatched=self._config.sync.auto_create_entities,
        )

    def _run_auto_match(
        self,
        connection_id: str,
        kind: EntityType,
        records: Sequence[MatchableRecord],
        candidates: Sequence[MatchCandidate] | None = None,
        *,
        create_unmatched: bool = False,
    ) -> ServiceResult[AutoMatchSummary]:
        """Candidates default to every local entity of the connection's owner."""
        summary: AutoMatchSummary = AutoMatchSummary()
        try:
            with self._session_factory.begin() as session:
                connection: ELDConnection | None = session.get(ELDConnection, connection_id)
                if connection is None:
                    return ServiceResult.fail('Connection not found')
                if candidates is None:
                    candidates = _load_candidates(session, connection.owner_id, kind)
                self._match_into(session, connection, kind, records, candidates, summary)
                if create_unmatched and summary.unmatched:
                    self._create_unmatched(session, connection, kind, records, summary)
        except SQLAlchemyError:
            logger.exception('Auto-match for connection %s failed', connection_id)
            return ServiceResult.fail('Failed to store mappings', data=summary)

        logger.info(
            'Auto-matched %ss for %s: %d matched, %d unmatched, %d ambiguous',
            kind.value,
            connection_id,
            len(summary.matched),
            len(summary.unmatched),
            len(summary.ambiguous),
        )
        return ServiceResult.ok(summary)

    def _match_into(
        self,
        session: Session,
        connection: ELDConnection,
        kind: EntityType,
        records: Sequence[MatchableRecord],
        candidates: Sequence[MatchCandidate],
        summary: AutoMatchSummary,
    ) -> None:
        existing: dict[str, EntityMapping] = {
            row.external_id: row
            for row in session.scalars(
                select(EntityMapping).where(
                    EntityMapping.connection_id == connection.id,
                    EntityMapping.entity_type == kind.value,
                )
            )
        }
        taken: set[str] = {row.local_id for row in existing.values()}

        for record in records:
            mapped: EntityMapping | None = existing.get(record.external_id)
            if mapped is not None:
                summary.matched.append(
                    MatchOutcome(
                        external_id=record.external_id,
                        local_id=mapped.local_id,
                        match_method=str(
                            mapped.match_details.get('matchedBy', mapped.match_method)
                        ),
                        confidence=mapped.confidence,
                    )
                )
                continue

            outcome: MatchOutcome = find_match(record, candidates, _TIERS[kind], taken)
            if outcome.candidate_ids:
                logger.warning(
                    'Ambiguous %s match for %s: %d candidates by %s',
                    kind.value,
                    record.external_id,
                    len(outcome.candidate_ids),
                    outcome.match_method,
                )
                summary.ambiguous.append(outcome)
                continue
            if outcome.local_id is None:
                summary.unmatched.append(outcome)
                continue

            try:
                with session.begin_nested():
                    stored: EntityMapping = _persist_mapping(
                        session,
                        connection,
                        kind,
                        record,
                        outcome.local_id,
                        MATCH_METHOD_AUTO,
                        outcome.confidence or 0.0,
                        outcome.match_method or MATCH_METHOD_AUTO,
                    )
            except SQLAlchemyError as error:
                summary.errors.append(f'{record.external_id}: {error}')
                logger.warning('Failed to store mapping for %s: %s', record.external_id, error)
                continue

            taken.add(stored.local_id)
            existing[record.external_id] = stored
            summary.matched.append(
                outcome.model_copy(update={'local_id': stored.local_id})
            )

    def _create_unmatched(
        self,
        session: Session,
        connection: ELDConnection,
        kind: EntityType,
        records: Sequence[MatchableRecord],
        summary: AutoMatchSummary,
    ) -> None:
        by_external_id: dict[str, MatchableRecord] = {r.external_id: r for r in records}
        still_unmatched: list[MatchOutcome] = []

        for outcome in summary.unmatched:
            record: MatchableRecord = by_external_id[outcome.external_id]
            local_id: str = new_id()
            try:
                with session.begin_nested():
                    if isinstance(record, Vehicle):
                        session.add(
                            LocalVehicle(
                                id=local_id,
                                owner_id=connection.owner_id,
                                name=record.display_name,
                                vin=record.vin,
                                license_plate=record.license_plate,
                                license_state=record.license_state,
                                make=record.make,
                                model=record.model,
                                year=record.year,
                                status=record.status,
                            )
                        )
                    else:
                        session.add(
                            LocalDriver(
                                id=local_id,
                                owner_id=connection.owner_id,
                                first_name=record.first_name,
                                last_name=record.last_name,
                                email=record.email,
                                phone=record.phone,
                                license_number=record.license_number,
                                license_state=record.license_state,
                                status=record.status,
                            )
                        )
                    session.flush()
                    _persist_mapping(
                        session, connection, kind, record, local_id,
                        MATCH_METHOD_AUTO, 1.0, 'created',
                    )
            except SQLAlchemyError as error:
                summary.errors.append(f'{record.external_id}: {error}')
                still_unmatched.append(outcome)
                continue

            logger.info('Created local %s %s for %s', kind.value, local_id, record.external_id)
            summary.matched.append(
                MatchOutcome(
                    external_id=record.external_id,
                    local_id=local_id,
                    match_method='created',
                    confidence=1.0,
                )
            )

        summary.unmatched = still_unmatched

    # -------------------------------------------------------------------------
    # Manual Mapping & Management
    # -------------------------------------------------------------------------

    def manual_map(
        self,
        owner_id: str,
        connection_id: str,
        entity_type: EntityType | str,
        external_id: str,
        local_id: str,
        external_name: str | None = None,
    ) -> ServiceResult[MappingView]:
        """
        Map an external id to a chosen local entity, replacing any auto match.

        Both the connection and the local entity must belong to owner_id.
        """
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        local_model: type[LocalVehicle] | type[LocalDriver] = (
            LocalVehicle if kind is EntityType.VEHICLE else LocalDriver
        )
        now: datetime = utc_now()
        try:
            with self._session_factory.begin() as session:
                connection: ELDConnection | None = session.get(ELDConnection, connection_id)
                if connection is None or connection.owner_id != owner_id:
                    return ServiceResult.fail('Connection not found')
                local: LocalVehicle | LocalDriver | None = session.get(local_model, local_id)
                if local is None or local.owner_id != owner_id:
                    return ServiceResult.fail(f'Local {kind.value} not found')

                upsert(
                    session,
                    EntityMapping,
                    {
                        'id': new_id(),
                        'connection_id': connection_id,
                        'entity_type': kind.value,
                        'external_id': external_id,
                        'external_name': external_name,
                        'local_id': local_id,
                        'match_method': MATCH_METHOD_MANUAL,
                        'confidence': 1.0,
                        'match_details': {'matchedBy': MATCH_METHOD_MANUAL},
                        'created_at': now,
                        'updated_at': now,
                    },
                    index_elements=('connection_id', 'entity_type', 'external_id'),
                    update_columns=(
                        'external_name',
                        'local_id',
                        'match_method',
                        'confidence',
                        'match_details',
                        'updated_at',
                    ),
                )
                local.eld_external_id = external_id
                local.eld_provider = connection.provider_id
                row: EntityMapping = _read_mapping(session, connection_id, kind, external_id)
                view: MappingView = MappingView.from_row(row)
        except SQLAlchemyError:
            logger.exception('Manual mapping of %s failed', external_id)
            return ServiceResult.fail('Failed to store mapping')

        logger.info('Manually mapped %s %s -> %s', kind.value, external_id, local_id)
        return ServiceResult.ok(view)

    def get_unmapped(
        self,
        connection_id: str,
        entity_type: EntityType | str,
        external_records: Sequence[MatchableRecord],
    ) -> ServiceResult[list[MatchableRecord]]:
        """The subset of external_records that have no mapping yet."""
        kind: EntityType | None = _entity_type(entity_type)
        if kind is None:
            return ServiceResult.fail(INVALID_ENTITY_TYPE)
        with self._session_factory.begin() as session:
            mapped: dict[str, str] = _index(session, connection_id, kind)
        return ServiceResult.ok(
            [record for record in external_records if record.external_id not in mapped]
        )

    def list_mappings(
        self,
        owner_id: str,
        connection_id: str,
        entity_type: EntityType | str | None = None,
    ) -> ServiceResult[list[MappingView]]:
        kind: EntityType | None = None
        if entity_type is not None:
            kind = _entity_type(entity_type)
            if kind is None:
                return ServiceResult.fail(INVALID_ENTITY_TYPE)
        with self._session_factory.begin() as session:
            connection: ELDConnection | None = session.get(ELDConnection, connection_id)
            if connection is None or connection.owner_id != owner_id:
                return ServiceResult.fail('Connection not found')
            statement = select(EntityMapping).where(EntityMapping.connection_id == connection_id)
            if kind is not None:
                statement = statement.where(EntityMapping.entity_type == kind.value)
            rows = session.scalars(statement.order_by(EntityMapping.created_at))
            return ServiceResult.ok([MappingView.from_row(row) for row in rows])

    def delete_mapping(self, owner_id: str, mapping_id: str) -> ServiceResult[bool]:
        """Remove one mapping after checking its connection belongs to owner_id."""
        with self._session_factory.begin() as session:
            row: EntityMapping | None = session.get(EntityMapping, mapping_id)
            if row is None:
                return ServiceResult.fail('Mapping not found')
            connection: ELDConnection | None = session.get(ELDConnection, row.connection_id)
            if connection is None or connection.owner_id != owner_id:
                return ServiceResult.fail('Mapping not found')
            session.execute(delete(EntityMapping).where(EntityMapping.id == mapping_id))

        logger.info('Deleted mapping %s', mapping_id)
        return ServiceResult.ok(True)


# =============================================================================
# Internals
# =============================================================================


def _entity_type(value: EntityType | str) -> EntityType | None:
    try:
        return EntityType(value)
    except ValueError:
        return None


def _index(session: Session, connection_id: str, kind: EntityType) -> dict[str, str]:
    rows = session.execute(
        select(EntityMapping.external_id, EntityMapping.local_id).where(
            EntityMapping.connection_id == connection_id,
            EntityMapping.entity_type == kind.value,
        )
    )
    return {external_id: local_id for external_id, local_id in rows}


def _load_candidates(session: Session, owner_id: str, kind: EntityType) -> list[MatchCandidate]:
    if kind is EntityType.VEHICLE:
        return [
            MatchCandidate.from_vehicle(vehicle)
            for vehicle in session.scalars(
                select(LocalVehicle).where(LocalVehicle.owner_id == owner_id)
            )
        ]
    return [
        MatchCandidate.from_driver(driver)
        for driver in session.scalars(select(LocalDriver).where(LocalDriver.owner_id == owner_id))
    ]


def _read_mapping(
    session: Session,
    connection_id: str,
    kind: EntityType,
    external_id: str,
) -> EntityMapping:
    return session.scalars(
        select(EntityMapping)
        .where(
            EntityMapping.connection_id == connection_id,
            EntityMapping.entity_type == kind.value,
            EntityMapping.external_id == external_id,
        )
        .execution_options(populate_existing=True)
    ).one()


def _persist_mapping(
    session: Session,
    connection: ELDConnection,
    kind: EntityType,
    record: MatchableRecord,
    local_id: str,
    match_method: str,
    confidence: float,
    matched_by: str,
) -> EntityMapping:
    """Insert-or-ignore, then read back and stamp the winning local entity."""
    now: datetime = utc_now()
    external_name: str = (
        record.display_name if isinstance(record, Vehicle) else record.full_name
    )
    inserted: bool = insert_ignore(
        session,
        EntityMapping,
        {
            'id': new_id(),
            'connection_id': connection.id,
            'entity_type': kind.value,
            'external_id': record.external_id,
            'external_name': external_name or None,
            'local_id': local_id,
            'match_method': match_method,
            'confidence': confidence,
            'match_details': {'matchedBy': matched_by},
            'created_at': now,
            'updated_at': now,
        },
        index_elements=('connection_id', 'entity_type', 'external_id'),
    )
    stored: EntityMapping = _read_mapping(session, connection.id, kind, record.external_id)

    if inserted:
        local_model: type[LocalVehicle] | type[LocalDriver] = (
            LocalVehicle if kind is EntityType.VEHICLE else LocalDriver
        )
        local: LocalVehicle | LocalDriver | None = session.get(local_model, stored.local_id)
        if local is not None:
            local.eld_external_id = record.external_id
            local.eld_provider = connection.provider_id
    return stored
