# eld_integration_hub/sync.py
"""
Sync orchestration: provider data into the canonical tables.

A sync run drives a sequence of domain passes for one connection. Each pass
fetches through the adapter, resolves external vehicle and driver ids
through the mapping table, and upserts rows on their natural keys.

Design Decisions:
-----------------
- Passes are isolated. A pass catches its own provider and database errors
  and reports them in its SyncPassResult; the run moves on to the next
  domain. Only failing to obtain an adapter aborts a run.

- Per-record work happens inside a SAVEPOINT. One bad row is counted as an
  error and rolled back on its own; the rest of the pass commits.

- An AuthError triggers exactly one token refresh and one retry of that
  pass. The refreshed tokens are installed on the run's adapter, so later
  passes use them too.

- last_sync_at only advances when every pass completed, and then through
  the conditional update in ConnectionManager. A partly failed connection
  stays due for the next scheduling sweep.

- No state is shared between runs beyond the datastore, so distinct
  connections can be synced concurrently from separate threads.

Usage:
------
    orchestrator = SyncOrchestrator(session_factory, connection_manager)
    result = orchestrator.sync_all(connection_id)
    for sync_pass in result.data.passes:
        print(sync_pass.domain, sync_pass.synced_count, sync_pass.errors)
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Final, Self

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.common.quarters import (
    Quarter,
    QuarterLike,
    month_to_quarter,
    parse_quarter,
    quarter_for_date,
)
from eld_integration_hub.config import ELDHubConfig, SyncDomain
from eld_integration_hub.connections import ConnectionManager, ConnectionStatus, ConnectionView
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    ELDError,
    RateLimitError,
    RecordValidationError,
)
from eld_integration_hub.mapping import EntityMappingService, EntityType
from eld_integration_hub.models import (
    AutoMatchSummary,
    DutyStatus,
    FaultCode,
    FuelPurchase,
    GPSLocation,
    HOSAvailableTime,
    HOSDailySummary,
    HOSLog,
    IFTAJurisdictionSummary,
    IFTATrip,
    ServiceResult,
    SyncPassResult,
    SyncRunSummary,
)
from eld_integration_hub.providers import ELDProvider, ProviderCapability
from eld_integration_hub.storage import (
    FLEET_WIDE_VEHICLE_KEY,
    FaultCodeRecord,
    FuelPurchaseRecord,
    HosDailyLogRecord,
    HosLogRecord,
    IftaMileageRecord,
    LocalVehicle,
    SyncJob,
    VehicleLocationRecord,
    upsert,
)
from eld_integration_hub.storage.tables import new_id, utc_now

__all__: list[str] = [
    'DOMAIN_CAPABILITIES',
    'IftaMileageKey',
    'ScheduledSyncReport',
    'SyncJobView',
    'SyncOrchestrator',
    'aggregate_daily_totals',
    'aggregate_ifta_trips',
    'spread_ifta_summaries',
    'split_evenly',
]

logger: logging.Logger = logging.getLogger(__name__)

DOMAIN_CAPABILITIES: Final[dict[str, ProviderCapability]] = {
    'vehicles': ProviderCapability.VEHICLES,
    'drivers': ProviderCapability.DRIVERS,
    'gps': ProviderCapability.GPS,
    'hos': ProviderCapability.HOS,
    'hos_available_time': ProviderCapability.HOS_AVAILABLE_TIME,
    'ifta': ProviderCapability.IFTA,
    'fault_codes': ProviderCapability.FAULT_CODES,
    'fuel_purchases': ProviderCapability.FUEL_PURCHASES,
}

type PassBody = Callable[[ELDProvider, str, SyncPassResult], None]


# =============================================================================
# Result Models
# =============================================================================


class SyncJobView(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    connection_id: str
    status: str
    domains: list[str]
    records_synced: int
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: SyncJob) -> Self:
        return cls(
            id=row.id,
            connection_id=row.connection_id,
            status=row.status,
            domains=list(row.domains or []),
            records_synced=row.records_synced,
            error_message=row.error_message,
            details=dict(row.details or {}),
            started_at=row.started_at,
            completed_at=row.completed_at,
        )


class ScheduledSyncReport(BaseModel):
    """Outcome of one scheduling sweep."""

    model_config = ConfigDict(extra='forbid')

    runs: list[SyncRunSummary] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.runs)


# =============================================================================
# Pure Aggregation Helpers
# =============================================================================

IftaMileageKey = tuple[str, str, str]
"""(external_vehicle_id, jurisdiction, period) natural key of eld_ifta_mileage."""


def aggregate_ifta_trips(trips: Iterable[IFTATrip]) -> list[IFTAJurisdictionSummary]:
    """Sum trip jurisdiction miles (and fuel) per vehicle and jurisdiction."""
    miles: dict[tuple[str, str], float] = defaultdict(float)
    fuel: dict[tuple[str, str], float] = {}
    for trip in trips:
        for entry in trip.jurisdictions:
            key: tuple[str, str] = (trip.external_vehicle_id, entry.jurisdiction)
            miles[key] += entry.miles
            if entry.fuel_gallons is not None:
                fuel[key] = fuel.get(key, 0.0) + entry.fuel_gallons

    return [
        IFTAJurisdictionSummary(
            external_vehicle_id=vehicle_id,
            jurisdiction=jurisdiction,
            total_miles=total,
            fuel_gallons=fuel.get((vehicle_id, jurisdiction)),
        )
        for (vehicle_id, jurisdiction), total in miles.items()
    ]


def split_evenly(total: float, parts: int, places: int) -> tuple[float, ...]:
    """
    Split a total into rounded shares that still add up to it.

    Every share but the last is the rounded even split; the last carries the
    remainder, e.g. 100.0 over three parts gives (33.33, 33.33, 33.34).
    """
    share: float = round(total / parts, places)
    return (share,) * (parts - 1) + (round(total - share * (parts - 1), places),)


def spread_ifta_summaries(
    summaries: Iterable[IFTAJurisdictionSummary],
    quarter: Quarter,
) -> dict[IftaMileageKey, tuple[float, float | None]]:
    """
    Turn summaries into monthly rows keyed by (vehicle, jurisdiction, period).

    Monthly summaries keep their period. Whole-range summaries are spread
    evenly over the quarter's three months. Fleet-wide summaries use
    FLEET_WIDE_VEHICLE_KEY as their vehicle. Rows sharing a key are summed.

    Returns:
        Mapping of key to (miles, fuel_gallons or None).
    """
    rows: dict[IftaMileageKey, tuple[float, float | None]] = {}
    months: tuple[str, str, str] = quarter.period_keys()

    for summary in summaries:
        vehicle_key: str = summary.external_vehicle_id or FLEET_WIDE_VEHICLE_KEY
        if summary.period is not None:
            shares: list[tuple[str, float, float | None]] = [
                (summary.period, summary.total_miles, summary.fuel_gallons)
            ]
        else:
            mile_shares: tuple[float, ...] = split_evenly(summary.total_miles, len(months), 2)
            fuel_shares: tuple[float | None, ...] = (
                split_evenly(summary.fuel_gallons, len(months), 3)
                if summary.fuel_gallons is not None
                else (None,) * len(months)
            )
            shares = list(zip(months, mile_shares, fuel_shares, strict=True))

        for period, miles, gallons in shares:
            key: IftaMileageKey = (vehicle_key, summary.jurisdiction, period)
            previous_miles, previous_fuel = rows.get(key, (0.0, None))
            combined_fuel: float | None = (
                (previous_fuel or 0.0) + gallons
                if gallons is not None
                else previous_fuel
            )
            rows[key] = (previous_miles + miles, combined_fuel)

    return rows


def aggregate_daily_totals(logs: Iterable[HOSLog]) -> dict[tuple[str, date], dict[DutyStatus, float]]:
    """Minutes per duty status for each (external driver, log date)."""
    totals: dict[tuple[str, date], dict[DutyStatus, float]] = defaultdict(
        lambda: defaultdict(float)
    )
    for log in logs:
        key: tuple[str, date] = (log.external_driver_id, log.start_time.date())
        totals[key][log.duty_status] += log.duration_minutes or 0.0
    return totals


# =============================================================================
# Orchestrator
# =============================================================================


class SyncOrchestrator:
    """
    Runs sync passes for connections.

    Args:
        session_factory: Datastore handle.
        connections: Connection manager used for adapters, refresh and
            watermark updates.
        mapping: Entity mapping service; built from session_factory when
            omitted.
        config: Hub configuration (lookback windows, domain order).
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        connections: ConnectionManager,
        mapping: EntityMappingService | None = None,
        config: ELDHubConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config: ELDHubConfig = config or ELDHubConfig()
        self._session_factory: sessionmaker[Session] = session_factory
        self._connections: ConnectionManager = connections
        self._mapping: EntityMappingService = mapping or EntityMappingService(
            session_factory, self._config
        )
        self._clock: Callable[[], datetime] = clock

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def mapping(self) -> EntityMappingService:
        return self._mapping

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def sync_all(
        self,
        connection_id: str,
        domains: Sequence[SyncDomain] | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[SyncRunSummary]:
        """
        Run every requested domain pass the provider supports.

        Returns:
            The run summary. `error` is set when the adapter could not be
            obtained or any pass failed; `data` still carries the summary.
        """
        started_at: datetime = now or self._clock()
        requested: list[str] = list(domains or self._config.sync.domains)

        found: ServiceResult[ConnectionView] = self._connections.get_connection_by_id(connection_id)
        if found.error:
            return ServiceResult.fail(found.error_message or 'Connection not found')

        job_id: str = self._start_job(connection_id, requested, started_at)
        summary: SyncRunSummary = SyncRunSummary(
            connection_id=connection_id, job_id=job_id, started_at=started_at
        )

        acquired: ServiceResult[ELDProvider] = self._connections.create_provider_for_connection(
            connection_id
        )
        if acquired.error or acquired.data is None:
            message: str = acquired.error_message or 'Provider not available'
            logger.error('Sync for connection %s aborted: %s', connection_id, message)
            summary.completed_at = self._clock()
            self._finish_job(job_id, summary, message)
            return ServiceResult.fail(message, data=summary)

        with acquired.data as provider:
            logger.info(
                'Starting sync for connection %s (%s): %s',
                connection_id,
                provider.provider_id,
                ', '.join(requested),
            )
            for domain in requested:
                capability: ProviderCapability | None = DOMAIN_CAPABILITIES.get(domain)
                if capability is None:
                    logger.warning('Ignoring unknown sync domain %r', domain)
                    continue
                if not provider.supports(capability):
                    logger.debug('%s does not support %s; skipping', provider.provider_id, domain)
                    continue
                body: PassBody = self._body_for(domain, started_at)
                summary.passes.append(self._execute(connection_id, domain, body, provider))

        summary.completed_at = self._clock()
        failure: str | None = None
        if not summary.all_completed:
            failed: list[str] = [p.domain for p in summary.passes if not p.completed]
            failure = f'{len(failed)} of {len(summary.passes)} domains failed: ' + '; '.join(
                summary.error_messages()
            )
        self._finish_job(job_id, summary, failure)

        if failure is not None:
            logger.warning('Sync for connection %s incomplete: %s', connection_id, failure)
            return ServiceResult.fail(failure, data=summary)

        self._connections.update_last_sync(connection_id, started_at)
        logger.info(
            'Sync for connection %s complete: %d records in %d passes',
            connection_id,
            summary.total_records,
            len(summary.passes),
        )
        return ServiceResult.ok(summary)

    def run_scheduled_sync(
        self,
        threshold_minutes: int | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[ScheduledSyncReport]:
        """Sync every active connection that is due."""
        due: ServiceResult[list[ConnectionView]] = self._connections.get_connections_needing_sync(
            threshold_minutes, now
        )
        if due.error or due.data is None:
            return ServiceResult.fail(due.error_message or 'Could not list due connections')

        report: ScheduledSyncReport = ScheduledSyncReport()
        for connection in due.data:
            result: ServiceResult[SyncRunSummary] = self.sync_all(connection.id)
            if result.data is not None:
                report.runs.append(result.data)
            if result.error:
                report.failures[connection.id] = result.error_message or 'Sync failed'

        logger.info(
            'Scheduled sync: %d connection(s), %d with failures',
            len(due.data),
            len(report.failures),
        )
        return ServiceResult.ok(report)

    def sync_domain(
        self,
        connection_id: str,
        domain: SyncDomain,
        now: datetime | None = None,
    ) -> ServiceResult[SyncPassResult]:
        """Run one domain pass with its default window (webhook triggers)."""
        capability: ProviderCapability | None = DOMAIN_CAPABILITIES.get(domain)
        if capability is None:
            return ServiceResult.fail(f'Unknown sync domain: {domain}')
        return self._single_pass(
            connection_id, domain, capability, self._body_for(domain, now or self._clock())
        )

    # -------------------------------------------------------------------------
    # Single Domain Passes
    # -------------------------------------------------------------------------

    def sync_vehicles(
        self, connection_id: str, provider: ELDProvider | None = None
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id, 'vehicles', ProviderCapability.VEHICLES, self._sync_vehicles, provider
        )

    def sync_drivers(
        self, connection_id: str, provider: ELDProvider | None = None
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id, 'drivers', ProviderCapability.DRIVERS, self._sync_drivers, provider
        )

    def sync_gps_locations(
        self, connection_id: str, provider: ELDProvider | None = None
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id, 'gps', ProviderCapability.GPS, self._sync_gps, provider
        )

    def sync_hos_logs(
        self,
        connection_id: str,
        start: datetime,
        end: datetime,
        provider: ELDProvider | None = None,
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id,
            'hos',
            ProviderCapability.HOS,
            partial(self._sync_hos, start=start, end=end),
            provider,
        )

    def sync_hos_available_time(
        self,
        connection_id: str,
        provider: ELDProvider | None = None,
        today: date | None = None,
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id,
            'hos_available_time',
            ProviderCapability.HOS_AVAILABLE_TIME,
            partial(self._sync_available_time, today=today or self._clock().date()),
            provider,
        )

    def sync_ifta_mileage(
        self,
        connection_id: str,
        quarter: QuarterLike,
        provider: ELDProvider | None = None,
    ) -> ServiceResult[SyncPassResult]:
        try:
            parsed: Quarter = parse_quarter(quarter)
        except ValueError as error:
            return ServiceResult.fail(str(error))
        return self._single_pass(
            connection_id,
            'ifta',
            ProviderCapability.IFTA,
            partial(self._sync_ifta, quarters=(parsed,)),
            provider,
        )

    def sync_fault_codes(
        self,
        connection_id: str,
        start: datetime,
        end: datetime,
        provider: ELDProvider | None = None,
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id,
            'fault_codes',
            ProviderCapability.FAULT_CODES,
            partial(self._sync_fault_codes, start=start, end=end),
            provider,
        )

    def sync_fuel_purchases(
        self,
        connection_id: str,
        start: datetime,
        end: datetime,
        provider: ELDProvider | None = None,
    ) -> ServiceResult[SyncPassResult]:
        return self._single_pass(
            connection_id,
            'fuel_purchases',
            ProviderCapability.FUEL_PURCHASES,
            partial(self._sync_fuel_purchases, start=start, end=end),
            provider,
        )

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def get_sync_history(self, connection_id: str, limit: int = 10) -> ServiceResult[list[SyncJobView]]:
        """Most recent runs first."""
        with self._session_factory.begin() as session:
            rows = session.scalars(
                select(SyncJob)
                .where(SyncJob.connection_id == connection_id)
                .order_by(SyncJob.started_at.desc())
                .limit(limit)
            )
            return ServiceResult.ok([SyncJobView.from_row(row) for row in rows])

    def get_latest_sync_status(self, connection_id: str) -> ServiceResult[SyncJobView]:
        """The latest run, or None in `data` when the connection never synced."""
        history: ServiceResult[list[SyncJobView]] = self.get_sync_history(connection_id, limit=1)
        if history.error:
            return ServiceResult.fail(history.error_message or 'Could not load sync history')
        if not history.data:
            return ServiceResult.ok(None)
        return ServiceResult.ok(history.data[0])

    # -------------------------------------------------------------------------
    # Pass Execution
    # -------------------------------------------------------------------------

    def _body_for(self, domain: str, now: datetime) -> PassBody:
        sync_config = self._config.sync
        if domain == 'vehicles':
            return self._sync_vehicles
        if domain == 'drivers':
            return self._sync_drivers
        if domain == 'gps':
            return self._sync_gps
        if domain == 'hos':
            return partial(
                self._sync_hos, start=now - timedelta(days=sync_config.hos_lookback_days), end=now
            )
        if domain == 'hos_available_time':
            return partial(self._sync_available_time, today=now.date())
        if domain == 'ifta':
            current: Quarter = quarter_for_date(now.date())
            quarters: tuple[Quarter, ...] = (
                (current, current.previous()) if sync_config.ifta_previous_quarter else (current,)
            )
            return partial(self._sync_ifta, quarters=quarters)
        if domain == 'fault_codes':
            return partial(
                self._sync_fault_codes,
                start=now - timedelta(days=sync_config.fault_code_lookback_days),
                end=now,
            )
        if domain == 'fuel_purchases':
            return partial(
                self._sync_fuel_purchases,
                start=now - timedelta(days=sync_config.fuel_purchase_lookback_days),
                end=now,
            )
        raise ValueError(f'Unknown sync domain: {domain}')

    def _single_pass(
        self,
        connection_id: str,
        domain: str,
        capability: ProviderCapability,
        body: PassBody,
        provider: ELDProvider | None = None,
    ) -> ServiceResult[SyncPassResult]:
        owned: bool = provider is None
        if provider is None:
            acquired: ServiceResult[ELDProvider] = self._connections.create_provider_for_connection(
                connection_id
            )
            if acquired.error or acquired.data is None:
                result: SyncPassResult = SyncPassResult(domain=domain)
                result.mark_failed(acquired.error_message or 'Provider not available')
                return ServiceResult.fail(result.errors[-1], data=result)
            provider = acquired.data

        try:
            if not provider.supports(capability):
                return ServiceResult.fail(
                    f'{provider.display_name} does not support {capability.value}'
                )
            result = self._execute(connection_id, domain, body, provider)
        finally:
            if owned:
                provider.close()

        if result.completed:
            return ServiceResult.ok(result)
        return ServiceResult.fail('; '.join(result.errors), data=result)

    def _execute(
        self,
        connection_id: str,
        domain: str,
        body: PassBody,
        provider: ELDProvider,
    ) -> SyncPassResult:
        """Run a pass body with refresh-and-retry-once on AuthError."""
        result: SyncPassResult = SyncPassResult(domain=domain)
        for attempt in range(2):
            result = SyncPassResult(domain=domain)
            try:
                body(provider, connection_id, result)
            except AuthError as error:
                if attempt == 0 and self._refresh_into(provider, connection_id):
                    logger.warning(
                        '%s pass for %s hit %s; retrying with refreshed token',
                        domain,
                        connection_id,
                        error.code,
                    )
                    continue
                result.mark_failed(f'Authentication failed: {error}')
                if attempt > 0:
                    self._connections.update_connection_status(
                        connection_id, ConnectionStatus.ERROR, f'Authentication failed: {error}'
                    )
            except RateLimitError as error:
                logger.warning(
                    '%s pass for %s rate limited; retry after %ss',
                    domain,
                    connection_id,
                    error.retry_after_seconds,
                )
                result.mark_rate_limited(error.retry_after_seconds)
            except ELDError as error:
                logger.error('%s pass for %s failed: %s', domain, connection_id, error)
                result.mark_failed(str(error))
            except SQLAlchemyError:
                logger.exception('%s pass for %s hit a database error', domain, connection_id)
                result.mark_failed('Database error')
            break

        logger.info(
            '%s pass for %s: %d synced, %d skipped, %d error(s)',
            domain,
            connection_id,
            result.synced_count,
            result.skipped_count,
            len(result.errors),
        )
        return result

    def _refresh_into(self, provider: ELDProvider, connection_id: str) -> bool:
        """Refresh the connection's tokens and install them on provider."""
        refreshed = self._connections.refresh_connection_tokens(connection_id)
        if refreshed.error:
            return False
        fresh: ServiceResult[ELDProvider] = self._connections.create_provider_for_connection(
            connection_id
        )
        if fresh.error or fresh.data is None:
            return False
        with fresh.data as replacement:
            provider.access_token = replacement.access_token
            provider.refresh_token = replacement.refresh_token
            provider.token_expires_at = replacement.token_expires_at
        return True

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def _start_job(self, connection_id: str, domains: list[str], started_at: datetime) -> str:
        job_id: str = new_id()
        with self._session_factory.begin() as session:
            session.add(
                SyncJob(
                    id=job_id,
                    connection_id=connection_id,
                    status='running',
                    domains=domains,
                    started_at=started_at,
                )
            )
        return job_id

    def _finish_job(self, job_id: str, summary: SyncRunSummary, failure: str | None) -> None:
        with self._session_factory.begin() as session:
            job: SyncJob | None = session.get(SyncJob, job_id)
            if job is None:
                return
            job.status = 'failed' if failure is not None else 'completed'
            job.records_synced = summary.total_records
            job.error_message = failure
            job.completed_at = summary.completed_at
            job.details = {
                sync_pass.domain: sync_pass.model_dump(mode='json', exclude={'domain'})
                for sync_pass in summary.passes
            }

    # -------------------------------------------------------------------------
    # Pass Bodies
    # -------------------------------------------------------------------------

    def _record_matches(self, result: SyncPassResult, summary: ServiceResult[AutoMatchSummary]) -> None:
        if summary.error or summary.data is None:
            result.mark_failed(summary.error_message or 'Mapping failed')
            return
        result.synced_count += len(summary.data.matched)
        result.skipped_count += len(summary.data.unmatched) + len(summary.data.ambiguous)
        for message in summary.data.errors:
            result.add_error(message)

    def _sync_vehicles(self, provider: ELDProvider, connection_id: str, result: SyncPassResult) -> None:
        self._record_matches(
            result, self._mapping.auto_match_vehicles(connection_id, provider.fetch_vehicles())
        )

    def _sync_drivers(self, provider: ELDProvider, connection_id: str, result: SyncPassResult) -> None:
        self._record_matches(
            result, self._mapping.auto_match_drivers(connection_id, provider.fetch_drivers())
        )

    def _sync_gps(self, provider: ELDProvider, connection_id: str, result: SyncPassResult) -> None:
        locations: list[GPSLocation] = provider.fetch_current_locations()
        vehicles: dict[str, str] = self._index(connection_id, EntityType.VEHICLE)
        with self._session_factory.begin() as session:
            for location in locations:
                vehicle_id: str | None = vehicles.get(location.external_vehicle_id)
                if vehicle_id is None:
                    result.skipped_count += 1
                    logger.debug('Skipping location for unmapped vehicle %s', location.external_vehicle_id)
                    continue
                self._guarded(session, result, location.external_vehicle_id, partial(
                    _write_location, session, connection_id, vehicle_id, location
                ))

    def _sync_hos(
        self,
        provider: ELDProvider,
        connection_id: str,
        result: SyncPassResult,
        *,
        start: datetime,
        end: datetime,
    ) -> None:
        logs: list[HOSLog] = provider.fetch_hos_logs(start, end)
        daily: list[HOSDailySummary] = (
            provider.fetch_hos_daily_logs(start.date(), end.date())
            if provider.supports(ProviderCapability.HOS_DAILY_LOGS)
            else []
        )
        drivers: dict[str, str] = self._index(connection_id, EntityType.DRIVER)
        vehicles: dict[str, str] = self._index(connection_id, EntityType.VEHICLE)

        with self._session_factory.begin() as session:
            written: list[HOSLog] = []
            for log in logs:
                driver_id: str | None = drivers.get(log.external_driver_id)
                if driver_id is None:
                    result.skipped_count += 1
                    continue
                vehicle_id: str | None = (
                    vehicles.get(log.external_vehicle_id) if log.external_vehicle_id else None
                )
                if self._guarded(session, result, log.external_id, partial(
                    _write_hos_log, session, connection_id, driver_id, vehicle_id, log
                )):
                    written.append(log)

            for (external_driver_id, log_date), minutes in aggregate_daily_totals(written).items():
                self._guarded(session, result, f'{external_driver_id}/{log_date}', partial(
                    _write_daily_totals,
                    session,
                    connection_id,
                    drivers[external_driver_id],
                    external_driver_id,
                    log_date,
                    minutes,
                ), count=False)

            for summary in daily:
                driver_id = drivers.get(summary.external_driver_id)
                if driver_id is None:
                    continue
                self._guarded(session, result, f'{summary.external_driver_id}/{summary.log_date}', partial(
                    _write_daily_summary, session, connection_id, driver_id, summary
                ), count=False)

    def _sync_available_time(
        self,
        provider: ELDProvider,
        connection_id: str,
        result: SyncPassResult,
        *,
        today: date,
    ) -> None:
        clocks: list[HOSAvailableTime] = provider.fetch_hos_available_time()
        drivers: dict[str, str] = self._index(connection_id, EntityType.DRIVER)
        with self._session_factory.begin() as session:
            for clock in clocks:
                driver_id: str | None = drivers.get(clock.external_driver_id)
                if driver_id is None:
                    result.skipped_count += 1
                    continue
                self._guarded(session, result, clock.external_driver_id, partial(
                    _write_available_time, session, connection_id, driver_id, clock, today
                ))

    def _sync_ifta(
        self,
        provider: ELDProvider,
        connection_id: str,
        result: SyncPassResult,
        *,
        quarters: Sequence[Quarter],
    ) -> None:
        vehicles: dict[str, str] = self._index(connection_id, EntityType.VEHICLE)
        for quarter in quarters:
            summaries: list[IFTAJurisdictionSummary] = _fetch_ifta(provider, quarter)
            rows: dict[IftaMileageKey, tuple[float, float | None]] = spread_ifta_summaries(
                summaries, quarter
            )
            now: datetime = self._clock()
            with self._session_factory.begin() as session:
                for (vehicle_key, jurisdiction, period), (miles, gallons) in rows.items():
                    vehicle_id: str | None = None
                    if vehicle_key != FLEET_WIDE_VEHICLE_KEY:
                        vehicle_id = vehicles.get(vehicle_key)
                        if vehicle_id is None:
                            result.skipped_count += 1
                            continue
                    values: dict[str, Any] = {
                        'id': new_id(),
                        'connection_id': connection_id,
                        'external_vehicle_id': vehicle_key,
                        'vehicle_id': vehicle_id,
                        'jurisdiction': jurisdiction,
                        'period': period,
                        'quarter': month_to_quarter(period),
                        'miles': round(miles, 2),
                        'fuel_gallons': round(gallons, 3) if gallons is not None else None,
                        'synced_at': now,
                    }
                    self._guarded(session, result, f'{vehicle_key}/{jurisdiction}/{period}', partial(
                        upsert,
                        session,
                        IftaMileageRecord,
                        values,
                        ('connection_id', 'external_vehicle_id', 'jurisdiction', 'period'),
                    ))
            logger.debug('IFTA %s for %s: %d monthly rows', quarter, connection_id, len(rows))

    def _sync_fault_codes(
        self,
        provider: ELDProvider,
        connection_id: str,
        result: SyncPassResult,
        *,
        start: datetime,
        end: datetime,
    ) -> None:
        faults: list[FaultCode] = provider.fetch_fault_codes(start, end)
        vehicles: dict[str, str] = self._index(connection_id, EntityType.VEHICLE)
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            for fault in faults:
                vehicle_id: str | None = vehicles.get(fault.external_vehicle_id)
                if vehicle_id is None:
                    result.skipped_count += 1
                    continue
                self._guarded(session, result, fault.external_id, partial(
                    _write_fault_code, session, connection_id, vehicle_id, fault, now
                ))

    def _sync_fuel_purchases(
        self,
        provider: ELDProvider,
        connection_id: str,
        result: SyncPassResult,
        *,
        start: datetime,
        end: datetime,
    ) -> None:
        purchases: list[FuelPurchase] = provider.fetch_fuel_purchases(start, end)
        vehicles: dict[str, str] = self._index(connection_id, EntityType.VEHICLE)
        drivers: dict[str, str] = self._index(connection_id, EntityType.DRIVER)
        with self._session_factory.begin() as session:
            for purchase in purchases:
                vehicle_id: str | None = None
                if purchase.external_vehicle_id is not None:
                    vehicle_id = vehicles.get(purchase.external_vehicle_id)
                    if vehicle_id is None:
                        result.skipped_count += 1
                        continue
                driver_id: str | None = (
                    drivers.get(purchase.external_driver_id)
                    if purchase.external_driver_id is not None
                    else None
                )
                self._guarded(session, result, purchase.external_id, partial(
                    _write_fuel_purchase, session, connection_id, vehicle_id, driver_id, purchase
                ))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _index(self, connection_id: str, kind: EntityType) -> dict[str, str]:
        index: ServiceResult[dict[str, str]] = self._mapping.mapping_index(connection_id, kind)
        return index.data or {}

    def _guarded(
        self,
        session: Session,
        result: SyncPassResult,
        record_key: str,
        write: Callable[[], None],
        *,
        count: bool = True,
    ) -> bool:
        """
        Run one record's write in a SAVEPOINT.

        Per-record validation and database errors are recorded on the pass
        and rolled back alone.
        """
        try:
            with session.begin_nested():
                write()
        except (RecordValidationError, ValueError) as error:
            result.add_error(f'Invalid record {record_key}: {error}')
            logger.warning('Invalid record %s in %s pass: %s', record_key, result.domain, error)
            return False
        except SQLAlchemyError as error:
            result.add_error(f'Failed to write {record_key}: {error.__class__.__name__}')
            logger.warning('Failed to write %s in %s pass: %s', record_key, result.domain, error)
            return False
        if count:
            result.synced_count += 1
        return True


# =============================================================================
# Record Writers
# =============================================================================


def _fetch_ifta(provider: ELDProvider, quarter: Quarter) -> list[IFTAJurisdictionSummary]:
    """Provider summary when available, otherwise aggregated trips."""
    summaries: list[IFTAJurisdictionSummary] = []
    if provider.supports(ProviderCapability.IFTA_SUMMARY):
        try:
            summaries = provider.fetch_ifta_summary(quarter.start_date, quarter.end_date)
        except (AuthError, RateLimitError):
            raise
        except APIError as error:
            logger.warning('IFTA summary for %s failed, falling back to trips: %s', quarter, error)

    if not summaries and provider.supports(ProviderCapability.IFTA_TRIPS):
        trips: list[IFTATrip] = provider.fetch_ifta_trips(quarter.start_date, quarter.end_date)
        summaries = aggregate_ifta_trips(trips)
    return summaries


def _write_location(
    session: Session,
    connection_id: str,
    vehicle_id: str,
    location: GPSLocation,
) -> None:
    upsert(
        session,
        VehicleLocationRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_vehicle_id': location.external_vehicle_id,
            'vehicle_id': vehicle_id,
            'latitude': location.latitude,
            'longitude': location.longitude,
            'heading': location.heading,
            'speed_mph': location.speed_mph,
            'address': location.address,
            'odometer_miles': location.odometer_miles,
            'recorded_at': location.recorded_at,
        },
        ('connection_id', 'external_vehicle_id', 'recorded_at'),
    )
    vehicle: LocalVehicle | None = session.get(LocalVehicle, vehicle_id)
    if vehicle is None:
        return
    if vehicle.last_location_at is None or vehicle.last_location_at <= location.recorded_at:
        vehicle.last_known_location = {
            'lat': location.latitude,
            'lng': location.longitude,
            'address': location.address,
            'speed': location.speed_mph,
            'heading': location.heading,
        }
        vehicle.last_location_at = location.recorded_at


def _write_hos_log(
    session: Session,
    connection_id: str,
    driver_id: str,
    vehicle_id: str | None,
    log: HOSLog,
) -> None:
    upsert(
        session,
        HosLogRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_id': log.external_id,
            'external_driver_id': log.external_driver_id,
            'driver_id': driver_id,
            'external_vehicle_id': log.external_vehicle_id,
            'vehicle_id': vehicle_id,
            'duty_status': log.duty_status.value,
            'raw_status': log.raw_status,
            'start_time': log.start_time,
            'end_time': log.end_time,
            'duration_minutes': log.duration_minutes,
            'location': log.location,
            'notes': log.notes,
        },
        ('connection_id', 'external_id'),
    )


_DAILY_KEY: Final[tuple[str, ...]] = ('connection_id', 'external_driver_id', 'log_date')


def _write_daily_totals(
    session: Session,
    connection_id: str,
    driver_id: str,
    external_driver_id: str,
    log_date: date,
    minutes: dict[DutyStatus, float],
) -> None:
    upsert(
        session,
        HosDailyLogRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_driver_id': external_driver_id,
            'driver_id': driver_id,
            'log_date': log_date,
            'driving_minutes': round(minutes.get(DutyStatus.DRIVING, 0.0)),
            'on_duty_minutes': round(minutes.get(DutyStatus.ON_DUTY, 0.0)),
            'off_duty_minutes': round(minutes.get(DutyStatus.OFF_DUTY, 0.0)),
            'sleeper_minutes': round(minutes.get(DutyStatus.SLEEPER, 0.0)),
        },
        _DAILY_KEY,
    )


def _write_daily_summary(
    session: Session,
    connection_id: str,
    driver_id: str,
    summary: HOSDailySummary,
) -> None:
    upsert(
        session,
        HosDailyLogRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_driver_id': summary.external_driver_id,
            'driver_id': driver_id,
            'log_date': summary.log_date,
            'driving_minutes': summary.drive_minutes,
            'on_duty_minutes': summary.on_duty_minutes,
            'off_duty_minutes': summary.off_duty_minutes,
            'sleeper_minutes': summary.sleeper_minutes,
            'has_violation': summary.has_violation,
            'violations': list(summary.violations),
        },
        _DAILY_KEY,
    )


def _write_available_time(
    session: Session,
    connection_id: str,
    driver_id: str,
    clock: HOSAvailableTime,
    today: date,
) -> None:
    upsert(
        session,
        HosDailyLogRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_driver_id': clock.external_driver_id,
            'driver_id': driver_id,
            'log_date': today,
            'drive_minutes_remaining': clock.drive_minutes_remaining,
            'shift_minutes_remaining': clock.shift_minutes_remaining,
            'cycle_minutes_remaining': clock.cycle_minutes_remaining,
            'current_duty_status': clock.duty_status.value,
        },
        _DAILY_KEY,
        update_columns=(
            'driver_id',
            'drive_minutes_remaining',
            'shift_minutes_remaining',
            'cycle_minutes_remaining',
            'current_duty_status',
        ),
    )


def _write_fault_code(
    session: Session,
    connection_id: str,
    vehicle_id: str,
    fault: FaultCode,
    now: datetime,
) -> None:
    """
    Insert a new fault, or fold a re-observation into the existing row.

    occurrence_count only grows when the provider reports a later
    observation, so re-syncing the same window is idempotent.
    """
    existing: FaultCodeRecord | None = session.scalars(
        select(FaultCodeRecord).where(
            FaultCodeRecord.connection_id == connection_id,
            FaultCodeRecord.external_id == fault.external_id,
        )
    ).first()

    if existing is None:
        session.add(
            FaultCodeRecord(
                connection_id=connection_id,
                external_id=fault.external_id,
                external_vehicle_id=fault.external_vehicle_id,
                vehicle_id=vehicle_id,
                code=fault.code,
                description=fault.description,
                severity=fault.severity.value,
                source=fault.source,
                first_observed_at=fault.first_observed_at,
                last_observed_at=fault.last_observed_at,
                is_active=fault.is_active,
                resolved_at=None if fault.is_active else (fault.last_observed_at or now),
            )
        )
        session.flush()
        return

    observed_later: bool = fault.last_observed_at is not None and (
        existing.last_observed_at is None or fault.last_observed_at > existing.last_observed_at
    )
    existing.vehicle_id = vehicle_id
    existing.severity = fault.severity.value
    existing.description = fault.description or existing.description

    if not fault.is_active:
        if existing.is_active:
            existing.is_active = False
            existing.resolved_at = fault.last_observed_at or now
    elif observed_later:
        existing.occurrence_count += 1
        existing.is_active = True
        existing.resolved_at = None
    if observed_later:
        existing.last_observed_at = fault.last_observed_at
    session.flush()


def _write_fuel_purchase(
    session: Session,
    connection_id: str,
    vehicle_id: str | None,
    driver_id: str | None,
    purchase: FuelPurchase,
) -> None:
    upsert(
        session,
        FuelPurchaseRecord,
        {
            'id': new_id(),
            'connection_id': connection_id,
            'external_id': purchase.external_id,
            'external_vehicle_id': purchase.external_vehicle_id,
            'vehicle_id': vehicle_id,
            'external_driver_id': purchase.external_driver_id,
            'driver_id': driver_id,
            'purchased_at': purchase.purchased_at,
            'jurisdiction': purchase.jurisdiction,
            'gallons': purchase.gallons,
            'price_per_gallon': purchase.price_per_gallon,
            'total_cost': purchase.total_cost,
            'vendor': purchase.vendor,
            'is_estimated': purchase.is_estimated,
        },
        ('connection_id', 'external_id'),
    )
