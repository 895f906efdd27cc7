# eld_integration_hub/readers/hos.py
"""
Hours-of-service read models: current driver status, per-driver history,
compliance checks and the dashboard roll-up.

Design Decisions:
-----------------
- A driver's current status and remaining drive time come from today's
  eld_hos_daily_logs row. Provider clocks (drive_minutes_remaining) win;
  otherwise remaining time is derived from the day's totals against the
  11-hour driving limit inside the 14-hour window.

- Drivers are those mapped on the owner's primary connection, not every
  local driver the owner has.

- Violations are read from the daily-log flags the providers report. This
  module does not re-derive FMCSA violations from raw duty events.

Usage:
------
    reader = HosReader(session_factory, config)
    dashboard = reader.get_hos_dashboard(owner_id)
    for driver in dashboard.data.low_on_time:
        print(driver.full_name, driver.available_drive_time)
"""

import logging
from collections import Counter
from datetime import UTC, date, datetime, time, timedelta
from typing import Final

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from eld_integration_hub.models import DutyStatus, ServiceResult, normalize_duty_status
from eld_integration_hub.readers.base import NO_ACTIVE_CONNECTION, ReaderBase
from eld_integration_hub.storage import (
    ELDConnection,
    EntityMapping,
    HosDailyLogRecord,
    HosLogRecord,
    LocalDriver,
)

__all__: list[str] = [
    'DAILY_DRIVE_LIMIT_MINUTES',
    'DAILY_ON_DUTY_WINDOW_MINUTES',
    'DailyLogView',
    'DriverHosDetails',
    'DriverHosStatus',
    'HosComplianceReport',
    'HosDashboard',
    'HosLogEntry',
    'HosReader',
    'HosStatusReport',
    'HosViolation',
    'HosWarning',
    'available_drive_minutes',
    'format_minutes',
    'low_time_severity',
    'normalize_duty_status',
    'status_label',
]

logger: logging.Logger = logging.getLogger(__name__)

DAILY_DRIVE_LIMIT_MINUTES: Final[int] = 11 * 60
DAILY_ON_DUTY_WINDOW_MINUTES: Final[int] = 14 * 60
DEFAULT_DETAIL_DAYS: Final[int] = 7
RECENT_VIOLATIONS_SHOWN: Final[int] = 5

_STATUS_LABELS: Final[dict[DutyStatus, str]] = {
    DutyStatus.DRIVING: 'Driving',
    DutyStatus.ON_DUTY: 'On Duty',
    DutyStatus.OFF_DUTY: 'Off Duty',
    DutyStatus.SLEEPER: 'Sleeper Berth',
    DutyStatus.UNKNOWN: 'Unknown',
}


# =============================================================================
# Pure Helpers
# =============================================================================


def available_drive_minutes(drive_minutes: float, on_duty_minutes: float) -> int:
    """
    Driving time left today.

    Bounded by both the 11-hour driving limit and what remains of the
    14-hour on-duty window (driving plus on-duty-not-driving).

    Example:
        >>> available_drive_minutes(600, 120)
        60
        >>> available_drive_minutes(300, 480)
        60
    """
    by_drive_limit: float = DAILY_DRIVE_LIMIT_MINUTES - drive_minutes
    by_window: float = DAILY_ON_DUTY_WINDOW_MINUTES - (drive_minutes + on_duty_minutes)
    return max(0, round(min(by_drive_limit, by_window)))


def low_time_severity(
    minutes: float | None,
    low_time_minutes: int = 120,
    critical_minutes: int = 30,
) -> str | None:
    """'critical', 'warning', or None when time is ample or unknown."""
    if minutes is None or minutes >= low_time_minutes:
        return None
    return 'critical' if minutes < critical_minutes else 'warning'


def format_minutes(minutes: float | None) -> str:
    """
    Render minutes as 'Xh Ym'.

    Example:
        >>> format_minutes(125)
        '2h 5m'
        >>> format_minutes(None)
        '--:--'
    """
    if minutes is None:
        return '--:--'
    whole: int = int(minutes)
    return f'{whole // 60}h {whole % 60}m'


def status_label(status: DutyStatus | str | None) -> str:
    """Human-readable label for a duty status in any vocabulary."""
    canonical: DutyStatus = (
        status if isinstance(status, DutyStatus) else normalize_duty_status(status)
    )
    return _STATUS_LABELS[canonical]


# =============================================================================
# Read Models
# =============================================================================


class DailyLogView(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    log_date: date
    drive_minutes: int
    on_duty_minutes: int
    off_duty_minutes: int
    sleeper_minutes: int
    has_violation: bool
    violations: list[str] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: HosDailyLogRecord) -> 'DailyLogView':
        return cls(
            log_date=row.log_date,
            drive_minutes=row.driving_minutes,
            on_duty_minutes=row.on_duty_minutes,
            off_duty_minutes=row.off_duty_minutes,
            sleeper_minutes=row.sleeper_minutes,
            has_violation=row.has_violation,
            violations=list(row.violations or []),
        )

    @property
    def drive_time(self) -> str:
        return format_minutes(self.drive_minutes)


class DriverHosStatus(BaseModel):
    """One driver's HOS position today."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    driver_id: str
    external_driver_id: str
    full_name: str
    current_status: DutyStatus
    status_label: str
    available_drive_minutes: int | None
    available_drive_time: str
    shift_minutes_remaining: int | None = None
    cycle_minutes_remaining: int | None = None
    low_time_severity: str | None = None
    daily_log: DailyLogView | None = None


class HosStatusReport(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    connection_id: str
    drivers: list[DriverHosStatus]
    last_sync_at: datetime | None = None


class HosLogEntry(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    start_time: datetime
    end_time: datetime | None
    duty_status: DutyStatus
    status_label: str
    duration_minutes: float | None
    location: str | None
    notes: str | None
    external_vehicle_id: str | None


class DriverHosDetails(BaseModel):
    """Daily logs and duty events for one driver over a date range."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    driver_id: str
    name: str
    start: date
    end: date
    daily_logs: list[DailyLogView]
    log_entries: list[HosLogEntry]
    total_drive_minutes: int
    total_on_duty_minutes: int
    violation_days: int

    @property
    def average_drive_minutes(self) -> int:
        return round(self.total_drive_minutes / (len(self.daily_logs) or 1))


class HosViolation(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    log_date: date
    driver_id: str | None
    driver_name: str
    violations: list[str]
    drive_minutes: int
    on_duty_minutes: int


class HosWarning(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    driver_id: str
    driver_name: str
    remaining_minutes: int
    remaining_time: str
    severity: str


class HosComplianceReport(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    violations: list[HosViolation]
    warnings: list[HosWarning]
    period_start: date
    period_end: date

    @property
    def has_issues(self) -> bool:
        return bool(self.violations or self.warnings)


class HosDashboard(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    total_drivers: int
    status_counts: dict[DutyStatus, int]
    low_on_time: list[DriverHosStatus]
    recent_violations: list[HosViolation]
    violation_count: int
    warning_count: int
    last_sync_at: datetime | None = None

    @property
    def drivers_on_duty(self) -> int:
        """Driving plus on-duty-not-driving."""
        return self.status_counts.get(DutyStatus.DRIVING, 0) + self.status_counts.get(
            DutyStatus.ON_DUTY, 0
        )


# =============================================================================
# Reader
# =============================================================================


class HosReader(ReaderBase):
    """Hours-of-service queries for an owner."""

    def get_all_drivers_hos_status(
        self,
        owner_id: str,
        today: date | None = None,
    ) -> ServiceResult[HosStatusReport]:
        day: date = today or self._clock().date()
        with self._session_factory.begin() as session:
            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            if connection is None:
                return ServiceResult.fail(NO_ACTIVE_CONNECTION)
            drivers: list[DriverHosStatus] = self._driver_statuses(session, connection.id, owner_id, day)
            return ServiceResult.ok(
                HosStatusReport(
                    connection_id=connection.id,
                    drivers=drivers,
                    last_sync_at=connection.last_sync_at,
                )
            )

    def get_driver_hos_details(
        self,
        owner_id: str,
        driver_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> ServiceResult[DriverHosDetails]:
        """Defaults to the last seven days ending today."""
        end_date: date = end or self._clock().date()
        start_date: date = start or end_date - timedelta(days=DEFAULT_DETAIL_DAYS)

        with self._session_factory.begin() as session:
            driver: LocalDriver | None = session.get(LocalDriver, driver_id)
            if driver is None or driver.owner_id != owner_id:
                return ServiceResult.fail('Driver not found')

            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            if connection is None:
                return ServiceResult.fail(NO_ACTIVE_CONNECTION)

            external_id: str | None = self._external_id(session, connection.id, 'driver', driver_id)
            if external_id is None:
                return ServiceResult.fail('Driver not linked to ELD')

            daily_rows = session.scalars(
                select(HosDailyLogRecord)
                .where(
                    HosDailyLogRecord.connection_id == connection.id,
                    HosDailyLogRecord.external_driver_id == external_id,
                    HosDailyLogRecord.log_date >= start_date,
                    HosDailyLogRecord.log_date <= end_date,
                )
                .order_by(HosDailyLogRecord.log_date.desc())
            )
            daily_logs: list[DailyLogView] = [DailyLogView.from_row(row) for row in daily_rows]

            window_start: datetime = datetime.combine(start_date, time.min, tzinfo=UTC)
            window_end: datetime = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=UTC)
            log_rows = session.scalars(
                select(HosLogRecord)
                .where(
                    HosLogRecord.connection_id == connection.id,
                    HosLogRecord.external_driver_id == external_id,
                    HosLogRecord.start_time >= window_start,
                    HosLogRecord.start_time < window_end,
                )
                .order_by(HosLogRecord.start_time.desc())
            )
            entries: list[HosLogEntry] = [_log_entry(row) for row in log_rows]

            return ServiceResult.ok(
                DriverHosDetails(
                    driver_id=driver.id,
                    name=_driver_name(driver),
                    start=start_date,
                    end=end_date,
                    daily_logs=daily_logs,
                    log_entries=entries,
                    total_drive_minutes=sum(log.drive_minutes for log in daily_logs),
                    total_on_duty_minutes=sum(log.on_duty_minutes for log in daily_logs),
                    violation_days=sum(1 for log in daily_logs if log.has_violation),
                )
            )

    def check_hos_compliance(
        self,
        owner_id: str,
        today: date | None = None,
    ) -> ServiceResult[HosComplianceReport]:
        """Flagged days in the lookback window plus drivers low on drive time."""
        day: date = today or self._clock().date()
        period_start: date = day - timedelta(days=self.thresholds.compliance_lookback_days)

        with self._session_factory.begin() as session:
            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            if connection is None:
                return ServiceResult.fail(NO_ACTIVE_CONNECTION)

            drivers: dict[str, LocalDriver] = _mapped_drivers(session, connection.id, owner_id)
            flagged = session.scalars(
                select(HosDailyLogRecord)
                .where(
                    HosDailyLogRecord.connection_id == connection.id,
                    HosDailyLogRecord.has_violation.is_(True),
                    HosDailyLogRecord.log_date >= period_start,
                )
                .order_by(HosDailyLogRecord.log_date.desc())
            )
            violations: list[HosViolation] = []
            for row in flagged:
                local: LocalDriver | None = drivers.get(row.external_driver_id)
                violations.append(
                    HosViolation(
                        log_date=row.log_date,
                        driver_id=local.id if local is not None else None,
                        driver_name=_driver_name(local),
                        violations=list(row.violations or []),
                        drive_minutes=row.driving_minutes,
                        on_duty_minutes=row.on_duty_minutes,
                    )
                )

            statuses: list[DriverHosStatus] = self._driver_statuses(session, connection.id, owner_id, day)

        warnings: list[HosWarning] = [
            HosWarning(
                driver_id=status.driver_id,
                driver_name=status.full_name,
                remaining_minutes=status.available_drive_minutes,
                remaining_time=status.available_drive_time,
                severity=status.low_time_severity,
            )
            for status in statuses
            if status.low_time_severity is not None and status.available_drive_minutes is not None
        ]
        return ServiceResult.ok(
            HosComplianceReport(
                violations=violations,
                warnings=warnings,
                period_start=period_start,
                period_end=day,
            )
        )

    def get_hos_dashboard(
        self,
        owner_id: str,
        today: date | None = None,
    ) -> ServiceResult[HosDashboard]:
        status: ServiceResult[HosStatusReport] = self.get_all_drivers_hos_status(owner_id, today)
        if status.error or status.data is None:
            return ServiceResult.fail(status.error_message or NO_ACTIVE_CONNECTION)
        compliance: ServiceResult[HosComplianceReport] = self.check_hos_compliance(owner_id, today)

        drivers: list[DriverHosStatus] = status.data.drivers
        counts: Counter[DutyStatus] = Counter(driver.current_status for driver in drivers)
        violations: list[HosViolation] = compliance.data.violations if compliance.data else []
        warning_count: int = len(compliance.data.warnings) if compliance.data else 0

        return ServiceResult.ok(
            HosDashboard(
                total_drivers=len(drivers),
                status_counts={duty: counts.get(duty, 0) for duty in DutyStatus},
                low_on_time=[d for d in drivers if d.low_time_severity is not None],
                recent_violations=violations[:RECENT_VIOLATIONS_SHOWN],
                violation_count=len(violations),
                warning_count=warning_count,
                last_sync_at=status.data.last_sync_at,
            )
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _driver_statuses(
        self,
        session: Session,
        connection_id: str,
        owner_id: str,
        day: date,
    ) -> list[DriverHosStatus]:
        drivers: dict[str, LocalDriver] = _mapped_drivers(session, connection_id, owner_id)
        if not drivers:
            return []

        today_rows: dict[str, HosDailyLogRecord] = {
            row.external_driver_id: row
            for row in session.scalars(
                select(HosDailyLogRecord).where(
                    HosDailyLogRecord.connection_id == connection_id,
                    HosDailyLogRecord.log_date == day,
                )
            )
        }
        latest_status: dict[str, str] = _latest_duty_status(session, connection_id, day)

        statuses: list[DriverHosStatus] = []
        for external_id, driver in drivers.items():
            row: HosDailyLogRecord | None = today_rows.get(external_id)
            remaining: int | None = None
            raw_status: str | None = latest_status.get(external_id)
            if row is not None:
                remaining = (
                    row.drive_minutes_remaining
                    if row.drive_minutes_remaining is not None
                    else available_drive_minutes(row.driving_minutes, row.on_duty_minutes)
                )
                raw_status = row.current_duty_status or raw_status

            current: DutyStatus = normalize_duty_status(raw_status)
            statuses.append(
                DriverHosStatus(
                    driver_id=driver.id,
                    external_driver_id=external_id,
                    full_name=_driver_name(driver),
                    current_status=current,
                    status_label=status_label(current),
                    available_drive_minutes=remaining,
                    available_drive_time=format_minutes(remaining),
                    shift_minutes_remaining=row.shift_minutes_remaining if row else None,
                    cycle_minutes_remaining=row.cycle_minutes_remaining if row else None,
                    low_time_severity=low_time_severity(
                        remaining,
                        self.thresholds.hos_low_time_minutes,
                        self.thresholds.hos_critical_minutes,
                    ),
                    daily_log=DailyLogView.from_row(row) if row is not None else None,
                )
            )

        statuses.sort(key=lambda status: status.full_name.casefold())
        return statuses


def _mapped_drivers(session: Session, connection_id: str, owner_id: str) -> dict[str, LocalDriver]:
    """external_driver_id -> the owner's mapped local driver."""
    rows = session.execute(
        select(EntityMapping.external_id, LocalDriver)
        .join(LocalDriver, LocalDriver.id == EntityMapping.local_id)
        .where(
            EntityMapping.connection_id == connection_id,
            EntityMapping.entity_type == 'driver',
            LocalDriver.owner_id == owner_id,
        )
    )
    return {external_id: driver for external_id, driver in rows}


def _latest_duty_status(session: Session, connection_id: str, day: date) -> dict[str, str]:
    """Most recent duty status per driver from events since yesterday."""
    since: datetime = datetime.combine(day - timedelta(days=1), time.min, tzinfo=UTC)
    rows = session.execute(
        select(HosLogRecord.external_driver_id, HosLogRecord.duty_status)
        .where(HosLogRecord.connection_id == connection_id, HosLogRecord.start_time >= since)
        .order_by(HosLogRecord.start_time.desc())
    )
    latest: dict[str, str] = {}
    for external_driver_id, duty_status in rows:
        latest.setdefault(external_driver_id, duty_status)
    return latest


def _driver_name(driver: LocalDriver | None) -> str:
    if driver is None:
        return 'Unknown Driver'
    name: str = ' '.join(part for part in (driver.first_name, driver.last_name) if part)
    return name or 'Unknown Driver'


def _log_entry(row: HosLogRecord) -> HosLogEntry:
    duty: DutyStatus = normalize_duty_status(row.duty_status)
    return HosLogEntry(
        start_time=row.start_time,
        end_time=row.end_time,
        duty_status=duty,
        status_label=status_label(duty),
        duration_minutes=row.duration_minutes,
        location=row.location,
        notes=row.notes,
        external_vehicle_id=row.external_vehicle_id,
    )
