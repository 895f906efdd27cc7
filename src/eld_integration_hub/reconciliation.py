# eld_integration_hub/reconciliation.py
"""
IFTA jurisdiction mileage reconciliation.

Two independent sources report miles per jurisdiction for a quarter:

- ELD: the monthly eld_ifta_mileage rows written by the sync orchestrator
  for the owner's primary connection.
- Manual: odometer readings at state-line crossings logged on completed
  trips. Miles between two consecutive crossings belong to the state the
  vehicle was in after the earlier crossing.

`reconcile` merges the two under a mode (eld, manual or combined). It is a
pure function; the engine only loads inputs and persists imports.

Design Decisions:
-----------------
- In `eld` mode an empty ELD view falls back to manual data, flagged with
  `fallback=True` and a reason. A report is never silently empty because
  the preferred source had nothing.

- In `combined` mode jurisdictions reported by both sources are surfaced as
  overlaps with the signed difference (ELD minus manual). Which figure goes
  into the total is `reconciliation.overlap_precedence`, ELD by default.

- Importing ELD mileage writes one ifta_trip_records row per jurisdiction,
  dated the 15th of the quarter's middle month, and updates that row on
  re-import instead of duplicating it.

Usage:
------
    engine = IftaReconciliationEngine(session_factory, config)
    report = engine.get_jurisdiction_mileage(owner_id, '2024-Q3', 'combined')
    for overlap in report.data.overlaps:
        print(overlap.jurisdiction, overlap.difference)
    frame = report.data.to_dataframe()
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Final, Literal, get_args

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.common.geo import jurisdiction_name
from eld_integration_hub.common.quarters import Quarter, QuarterLike, parse_quarter
from eld_integration_hub.config import ELDHubConfig, MileageMode, OverlapPrecedence
from eld_integration_hub.connections import select_primary_connection
from eld_integration_hub.models import ServiceResult
from eld_integration_hub.storage import (
    FLEET_WIDE_VEHICLE_KEY,
    DriverMileageCrossing,
    DriverMileageTrip,
    ELDConnection,
    IftaMileageRecord,
    IftaTripRecord,
)
from eld_integration_hub.storage.tables import utc_now

__all__: list[str] = [
    'EldMileage',
    'IftaImportResult',
    'IftaReconciliationEngine',
    'JurisdictionMiles',
    'JurisdictionReport',
    'ManualMileage',
    'MileageOverlap',
    'MileageSummary',
    'Recommendation',
    'SourceMileage',
    'StateCrossing',
    'manual_mileage_from_crossings',
    'recommend',
    'reconcile',
]

logger: logging.Logger = logging.getLogger(__name__)

INVALID_QUARTER: Final[str] = 'Invalid quarter format'
INVALID_MODE: Final[str] = 'Invalid data source'
NO_ELD_FALLBACK_REASON: Final[str] = 'No ELD data available for this quarter'
NO_ELD_IMPORT_DATA: Final[str] = 'No ELD mileage data available for this quarter'

type RecommendedSource = Literal['eld', 'manual', 'none']


# =============================================================================
# Models
# =============================================================================


class SourceMileage(BaseModel):
    """One source's miles in one jurisdiction."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    jurisdiction: str
    miles: float
    months: tuple[str, ...] = ()
    vehicles: tuple[str, ...] = ()
    trip_ids: tuple[str, ...] = ()

    @property
    def state_name(self) -> str:
        return jurisdiction_name(self.jurisdiction)


class EldMileage(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    quarter: str
    entries: list[SourceMileage] = Field(default_factory=list)
    connection_id: str | None = None
    last_sync_at: datetime | None = None

    @property
    def has_eld(self) -> bool:
        return bool(self.entries)

    @property
    def total_miles(self) -> float:
        return sum(entry.miles for entry in self.entries)


class ManualMileage(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    quarter: str
    entries: list[SourceMileage] = Field(default_factory=list)
    trip_count: int = 0

    @property
    def has_manual(self) -> bool:
        return bool(self.entries)

    @property
    def total_miles(self) -> float:
        return sum(entry.miles for entry in self.entries)


class JurisdictionMiles(BaseModel):
    """A jurisdiction's row in a reconciled report."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    jurisdiction: str
    miles: float
    eld_miles: float = 0.0
    manual_miles: float = 0.0
    sources: tuple[str, ...] = ()
    vehicles: tuple[str, ...] = ()
    months: tuple[str, ...] = ()

    @property
    def state_name(self) -> str:
        return jurisdiction_name(self.jurisdiction)

    @property
    def is_overlap(self) -> bool:
        return len(self.sources) > 1


class MileageOverlap(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    jurisdiction: str
    eld_miles: float
    manual_miles: float
    difference: float


class JurisdictionReport(BaseModel):
    """Reconciled per-jurisdiction mileage for a quarter."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    mode: MileageMode
    rows: list[JurisdictionMiles]
    overlaps: list[MileageOverlap] = Field(default_factory=list)
    quarter: str | None = None
    fallback: bool = False
    fallback_reason: str | None = None

    @property
    def total_miles(self) -> float:
        return sum(row.miles for row in self.rows)

    @property
    def has_overlaps(self) -> bool:
        return bool(self.overlaps)

    def miles_by_jurisdiction(self) -> dict[str, float]:
        return {row.jurisdiction: row.miles for row in self.rows}

    def stats(self) -> dict[str, int]:
        """Jurisdiction counts by source: eld_only, manual_only, both."""
        return {
            'eld_only': sum(1 for row in self.rows if row.sources == ('eld',)),
            'manual_only': sum(1 for row in self.rows if row.sources == ('manual',)),
            'both': len(self.overlaps),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per jurisdiction with both source figures and the difference."""
        columns: list[str] = [
            'jurisdiction',
            'state_name',
            'miles',
            'eld_miles',
            'manual_miles',
            'difference',
            'sources',
            'overlap',
        ]
        frame: pd.DataFrame = pd.DataFrame(
            [
                {
                    'jurisdiction': row.jurisdiction,
                    'state_name': row.state_name,
                    'miles': row.miles,
                    'eld_miles': row.eld_miles,
                    'manual_miles': row.manual_miles,
                    'difference': row.eld_miles - row.manual_miles,
                    'sources': '+'.join(row.sources),
                    'overlap': row.is_overlap,
                }
                for row in self.rows
            ],
            columns=columns,
        )
        return frame.astype({'overlap': bool})


class StateCrossing(BaseModel):
    """An odometer reading taken when a trip entered a state."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    trip_id: str
    state: str
    odometer: float
    crossed_at: datetime


class IftaImportResult(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    records_created: int = 0
    records_updated: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class Recommendation(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    source: RecommendedSource
    reason: str


class MileageSummary(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    quarter: str
    has_eld: bool
    has_manual: bool
    eld_miles: int
    manual_miles: int
    difference: int
    difference_percent: int
    jurisdiction_count: int
    eld_jurisdictions: int
    manual_jurisdictions: int
    last_eld_sync: datetime | None
    recommendation: Recommendation


# =============================================================================
# Pure Functions
# =============================================================================


def manual_mileage_from_crossings(crossings: Iterable[StateCrossing]) -> list[SourceMileage]:
    """
    Miles per jurisdiction from consecutive crossings within each trip.

    The odometer delta between crossing i and i+1 is credited to crossing
    i's state. Non-positive deltas (odometer resets, typos) are ignored.

    Example:
        TX@1000 -> OK@1100 -> KS@1130 credits TX 100 and OK 30.
    """
    by_trip: dict[str, list[StateCrossing]] = defaultdict(list)
    for crossing in crossings:
        by_trip[crossing.trip_id].append(crossing)

    miles: dict[str, float] = defaultdict(float)
    trips: dict[str, set[str]] = defaultdict(set)
    for trip_id, trip_crossings in by_trip.items():
        ordered: list[StateCrossing] = sorted(trip_crossings, key=lambda c: c.crossed_at)
        for current, following in zip(ordered, ordered[1:], strict=False):
            delta: float = following.odometer - current.odometer
            if delta <= 0:
                continue
            state: str = current.state.upper()
            miles[state] += delta
            trips[state].add(trip_id)

    return [
        SourceMileage(jurisdiction=state, miles=total, trip_ids=tuple(sorted(trips[state])))
        for state, total in sorted(miles.items())
    ]


def _as_entries(source: Iterable[SourceMileage] | Mapping[str, float]) -> dict[str, SourceMileage]:
    if isinstance(source, Mapping):
        return {
            jurisdiction.upper(): SourceMileage(jurisdiction=jurisdiction.upper(), miles=miles)
            for jurisdiction, miles in source.items()
        }
    return {entry.jurisdiction: entry for entry in source}


def _single_source_rows(entries: Mapping[str, SourceMileage], source: str) -> list[JurisdictionMiles]:
    return [
        JurisdictionMiles(
            jurisdiction=jurisdiction,
            miles=entry.miles,
            eld_miles=entry.miles if source == 'eld' else 0.0,
            manual_miles=entry.miles if source == 'manual' else 0.0,
            sources=(source,),
            vehicles=entry.vehicles,
            months=entry.months,
        )
        for jurisdiction, entry in sorted(entries.items())
    ]


def reconcile(
    eld: Iterable[SourceMileage] | Mapping[str, float],
    manual: Iterable[SourceMileage] | Mapping[str, float],
    mode: MileageMode,
    precedence: OverlapPrecedence = 'eld',
    *,
    quarter: str | None = None,
) -> JurisdictionReport:
    """
    Merge ELD and manual jurisdiction miles under a mode.

    Args:
        eld: ELD miles, as SourceMileage entries or {jurisdiction: miles}.
        manual: Manual miles, same shapes.
        mode: 'eld', 'manual' or 'combined'.
        precedence: Source whose miles count when both report a jurisdiction.
        quarter: Carried onto the report for display.

    Raises:
        ValueError: For an unknown mode.

    Example:
        >>> report = reconcile({'TX': 100}, {'TX': 90, 'OK': 20}, 'combined')
        >>> report.total_miles, report.overlaps[0].difference
        (120.0, 10.0)
    """
    if mode not in get_args(MileageMode):
        raise ValueError(f'{INVALID_MODE}: {mode!r}')

    eld_entries: dict[str, SourceMileage] = _as_entries(eld)
    manual_entries: dict[str, SourceMileage] = _as_entries(manual)

    if mode == 'eld':
        if not eld_entries:
            return JurisdictionReport(
                mode='manual',
                rows=_single_source_rows(manual_entries, 'manual'),
                quarter=quarter,
                fallback=True,
                fallback_reason=NO_ELD_FALLBACK_REASON,
            )
        return JurisdictionReport(
            mode='eld', rows=_single_source_rows(eld_entries, 'eld'), quarter=quarter
        )

    if mode == 'manual':
        return JurisdictionReport(
            mode='manual', rows=_single_source_rows(manual_entries, 'manual'), quarter=quarter
        )

    rows: list[JurisdictionMiles] = []
    overlaps: list[MileageOverlap] = []
    for jurisdiction in sorted(eld_entries.keys() | manual_entries.keys()):
        eld_entry: SourceMileage | None = eld_entries.get(jurisdiction)
        manual_entry: SourceMileage | None = manual_entries.get(jurisdiction)
        eld_miles: float = eld_entry.miles if eld_entry is not None else 0.0
        manual_miles: float = manual_entry.miles if manual_entry is not None else 0.0

        sources: tuple[str, ...] = tuple(
            name
            for name, entry in (('eld', eld_entry), ('manual', manual_entry))
            if entry is not None
        )
        if len(sources) == 2:  # noqa: PLR2004
            overlaps.append(
                MileageOverlap(
                    jurisdiction=jurisdiction,
                    eld_miles=eld_miles,
                    manual_miles=manual_miles,
                    difference=eld_miles - manual_miles,
                )
            )
            combined: float = eld_miles if precedence == 'eld' else manual_miles
        else:
            combined = eld_miles + manual_miles

        rows.append(
            JurisdictionMiles(
                jurisdiction=jurisdiction,
                miles=combined,
                eld_miles=eld_miles,
                manual_miles=manual_miles,
                sources=sources,
                vehicles=eld_entry.vehicles if eld_entry is not None else (),
                months=eld_entry.months if eld_entry is not None else (),
            )
        )

    return JurisdictionReport(mode='combined', rows=rows, overlaps=overlaps, quarter=quarter)


def recommend(eld: EldMileage, manual: ManualMileage) -> Recommendation:
    """Which source to file with, and why."""
    if eld.has_eld:
        if not manual.has_manual:
            return Recommendation(
                source='eld', reason='ELD data available and recommended for accuracy'
            )
        return Recommendation(
            source='eld',
            reason=(
                'ELD data recommended for GPS-verified accuracy. '
                'Manual data available as fallback.'
            ),
        )
    if manual.has_manual:
        return Recommendation(
            source='manual',
            reason='No ELD data available. Using manual State Mileage Tracker data.',
        )
    return Recommendation(
        source='none',
        reason=(
            'No mileage data available. '
            'Connect an ELD provider or use the State Mileage Tracker.'
        ),
    )


# =============================================================================
# Engine
# =============================================================================


class IftaReconciliationEngine:
    """
    Loads ELD and manual mileage for an owner and reconciles them.

    Args:
        session_factory: Datastore handle.
        config: Hub configuration (default mode and overlap precedence).
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ELDHubConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory: sessionmaker[Session] = session_factory
        self._config: ELDHubConfig = config or ELDHubConfig()
        self._clock: Callable[[], datetime] = clock

    def get_eld_mileage(self, owner_id: str, quarter: QuarterLike) -> ServiceResult[EldMileage]:
        """Synced ELD miles per jurisdiction on the owner's primary connection."""
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError:
            return ServiceResult.fail(INVALID_QUARTER)

        with self._session_factory.begin() as session:
            return ServiceResult.ok(self._load_eld(session, owner_id, parsed))

    def get_manual_mileage(self, owner_id: str, quarter: QuarterLike) -> ServiceResult[ManualMileage]:
        """Miles per jurisdiction from crossings on completed trips overlapping the quarter."""
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError:
            return ServiceResult.fail(INVALID_QUARTER)

        with self._session_factory.begin() as session:
            return ServiceResult.ok(self._load_manual(session, owner_id, parsed))

    def get_jurisdiction_mileage(
        self,
        owner_id: str,
        quarter: QuarterLike,
        mode: MileageMode | None = None,
    ) -> ServiceResult[JurisdictionReport]:
        selected: str = mode or self._config.reconciliation.default_mode
        if selected not in get_args(MileageMode):
            return ServiceResult.fail(INVALID_MODE)
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError:
            return ServiceResult.fail(INVALID_QUARTER)

        with self._session_factory.begin() as session:
            eld: EldMileage = self._load_eld(session, owner_id, parsed)
            manual: ManualMileage = self._load_manual(session, owner_id, parsed)

        report: JurisdictionReport = reconcile(
            eld.entries,
            manual.entries,
            selected,
            self._config.reconciliation.overlap_precedence,
            quarter=str(parsed),
        )
        if report.fallback:
            logger.info('No ELD mileage for %s in %s; using manual data', owner_id, parsed)
        return ServiceResult.ok(report)

    def import_eld_mileage_to_ifta(
        self,
        owner_id: str,
        quarter: QuarterLike,
    ) -> ServiceResult[IftaImportResult]:
        """
        Write ELD miles into ifta_trip_records, one row per jurisdiction.

        Rows from a previous import of the same quarter are updated in place.
        A failure on one jurisdiction is reported and does not stop the rest.
        """
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError:
            return ServiceResult.fail(INVALID_QUARTER)
        quarter_key: str = str(parsed)

        created: int = 0
        updated: int = 0
        errors: list[str] = []
        try:
            with self._session_factory.begin() as session:
                eld: EldMileage = self._load_eld(session, owner_id, parsed)
                if not eld.has_eld:
                    return ServiceResult.fail(NO_ELD_IMPORT_DATA)

                for entry in eld.entries:
                    if entry.miles <= 0:
                        continue
                    try:
                        with session.begin_nested():
                            was_created: bool = _upsert_ifta_trip(
                                session, owner_id, quarter_key, parsed, entry, eld, self._clock()
                            )
                    except SQLAlchemyError as error:
                        logger.warning(
                            'IFTA import for %s failed in %s: %s',
                            owner_id,
                            entry.jurisdiction,
                            error,
                        )
                        errors.append(f'{entry.jurisdiction}: {error.__class__.__name__}')
                        continue
                    if was_created:
                        created += 1
                    else:
                        updated += 1
        except SQLAlchemyError:
            logger.exception('IFTA import for %s in %s failed', owner_id, quarter_key)
            return ServiceResult.fail('Failed to import ELD mileage')

        logger.info(
            'Imported ELD mileage for %s in %s: %d created, %d updated',
            owner_id,
            quarter_key,
            created,
            updated,
        )
        return ServiceResult.ok(
            IftaImportResult(records_created=created, records_updated=updated, errors=errors)
        )

    def get_mileage_summary(self, owner_id: str, quarter: QuarterLike) -> ServiceResult[MileageSummary]:
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError:
            return ServiceResult.fail(INVALID_QUARTER)

        with self._session_factory.begin() as session:
            eld: EldMileage = self._load_eld(session, owner_id, parsed)
            manual: ManualMileage = self._load_manual(session, owner_id, parsed)

        eld_total: float = eld.total_miles
        manual_total: float = manual.total_miles
        jurisdictions: set[str] = {entry.jurisdiction for entry in eld.entries} | {
            entry.jurisdiction for entry in manual.entries
        }
        return ServiceResult.ok(
            MileageSummary(
                quarter=str(parsed),
                has_eld=eld.has_eld,
                has_manual=manual.has_manual,
                eld_miles=round(eld_total),
                manual_miles=round(manual_total),
                difference=round(eld_total - manual_total),
                difference_percent=(
                    round((eld_total - manual_total) / manual_total * 100) if manual_total > 0 else 0
                ),
                jurisdiction_count=len(jurisdictions),
                eld_jurisdictions=len(eld.entries),
                manual_jurisdictions=len(manual.entries),
                last_eld_sync=eld.last_sync_at,
                recommendation=recommend(eld, manual),
            )
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load_eld(self, session: Session, owner_id: str, quarter: Quarter) -> EldMileage:
        connections: list[ELDConnection] = list(
            session.scalars(select(ELDConnection).where(ELDConnection.owner_id == owner_id))
        )
        primary: ELDConnection | None = select_primary_connection(connections)
        if primary is None:
            return EldMileage(quarter=str(quarter))

        rows = session.scalars(
            select(IftaMileageRecord).where(
                IftaMileageRecord.connection_id == primary.id,
                IftaMileageRecord.period.in_(quarter.period_keys()),
            )
        )
        miles: dict[str, float] = defaultdict(float)
        months: dict[str, set[str]] = defaultdict(set)
        vehicles: dict[str, set[str]] = defaultdict(set)
        for row in rows:
            miles[row.jurisdiction] += row.miles or 0.0
            months[row.jurisdiction].add(row.period)
            if row.external_vehicle_id != FLEET_WIDE_VEHICLE_KEY:
                vehicles[row.jurisdiction].add(row.external_vehicle_id)

        return EldMileage(
            quarter=str(quarter),
            entries=[
                SourceMileage(
                    jurisdiction=jurisdiction,
                    miles=round(total, 2),
                    months=tuple(sorted(months[jurisdiction])),
                    vehicles=tuple(sorted(vehicles[jurisdiction])),
                )
                for jurisdiction, total in sorted(miles.items())
            ],
            connection_id=primary.id,
            last_sync_at=primary.last_sync_at,
        )

    def _load_manual(self, session: Session, owner_id: str, quarter: Quarter) -> ManualMileage:
        trip_ids: list[str] = list(
            session.scalars(
                select(DriverMileageTrip.id).where(
                    DriverMileageTrip.owner_id == owner_id,
                    DriverMileageTrip.status == 'completed',
                    DriverMileageTrip.start_date <= quarter.end_date,
                    or_(
                        DriverMileageTrip.end_date.is_(None),
                        DriverMileageTrip.end_date >= quarter.start_date,
                    ),
                )
            )
        )
        if not trip_ids:
            return ManualMileage(quarter=str(quarter))

        crossings: list[StateCrossing] = [
            StateCrossing(
                trip_id=row.trip_id,
                state=row.state,
                odometer=row.odometer,
                crossed_at=row.crossed_at,
            )
            for row in session.scalars(
                select(DriverMileageCrossing)
                .where(DriverMileageCrossing.trip_id.in_(trip_ids))
                .order_by(DriverMileageCrossing.crossed_at)
            )
        ]
        return ManualMileage(
            quarter=str(quarter),
            entries=manual_mileage_from_crossings(crossings),
            trip_count=len(trip_ids),
        )


def _upsert_ifta_trip(
    session: Session,
    owner_id: str,
    quarter_key: str,
    quarter: Quarter,
    entry: SourceMileage,
    eld: EldMileage,
    now: datetime,
) -> bool:
    """Create or refresh the imported row for one jurisdiction. True when created."""
    existing: IftaTripRecord | None = session.scalars(
        select(IftaTripRecord).where(
            IftaTripRecord.owner_id == owner_id,
            IftaTripRecord.quarter == quarter_key,
            IftaTripRecord.start_jurisdiction == entry.jurisdiction,
            IftaTripRecord.end_jurisdiction == entry.jurisdiction,
            IftaTripRecord.is_eld_data.is_(True),
        )
    ).first()

    notes: str = (
        f'ELD-synced mileage for {entry.state_name} ({entry.jurisdiction}). '
        f'Vehicles: {len(entry.vehicles)}. Last sync: {eld.last_sync_at}'
    )
    record: IftaTripRecord = existing or IftaTripRecord(
        owner_id=owner_id,
        quarter=quarter_key,
        start_jurisdiction=entry.jurisdiction,
        end_jurisdiction=entry.jurisdiction,
        is_eld_data=True,
        gallons=0.0,
        fuel_cost=0.0,
        created_at=now,
    )
    record.start_date = quarter.mid_date
    record.end_date = quarter.mid_date
    record.total_miles = round(entry.miles)
    record.eld_connection_id = eld.connection_id
    record.notes = notes
    record.updated_at = now
    if existing is None:
        session.add(record)
    session.flush()
    return existing is None
