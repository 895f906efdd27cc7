# eld_integration_hub/models/canonical.py
"""
Canonical, provider-agnostic record shapes.

Every adapter converts its provider's payloads into these models before
anything downstream (mapping, sync, readers, reconciliation) sees them, so
the rest of the core never branches on provider vocabulary.

Design Decisions:
-----------------
- All records are frozen with `extra='forbid'`: a record is a value, and a
  typo in a normalizer should fail loudly rather than add a silent field.

- Timestamps are timezone-aware UTC. Naive datetimes coming out of provider
  payloads are assumed to be UTC by the `_coerce_utc` validator.

- Duty status and fault severity are normalized here, not in the readers,
  because adapters need the same classification when they build records.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__: list[str] = [
    'CRITICAL_FAULT_FRAGMENTS',
    'METERS_TO_MILES',
    'WARNING_FAULT_FRAGMENTS',
    'CanonicalRecord',
    'Driver',
    'DutyStatus',
    'FaultCode',
    'FaultSeverity',
    'FuelPurchase',
    'GPSLocation',
    'HOSAvailableTime',
    'HOSDailySummary',
    'HOSLog',
    'IFTAJurisdictionSummary',
    'IFTATrip',
    'JurisdictionMileage',
    'Vehicle',
    'classify_fault_severity',
    'ensure_utc',
    'normalize_duty_status',
]

METERS_TO_MILES: Final[float] = 0.000621371


# =============================================================================
# Enumerations
# =============================================================================


class DutyStatus(str, Enum):
    """Canonical HOS duty status."""

    DRIVING = 'driving'
    ON_DUTY = 'on_duty'
    OFF_DUTY = 'off_duty'
    SLEEPER = 'sleeper'
    UNKNOWN = 'unknown'


class FaultSeverity(str, Enum):
    """Canonical fault code severity, ordered most to least urgent."""

    CRITICAL = 'critical'
    WARNING = 'warning'
    INFO = 'info'

    @property
    def rank(self) -> int:
        """Sort key: 0 for critical, 2 for info."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[FaultSeverity, int] = {
    FaultSeverity.CRITICAL: 0,
    FaultSeverity.WARNING: 1,
    FaultSeverity.INFO: 2,
}

# Provider vocabularies, keyed case-insensitively. Covers Motive
# ('driving', 'on_duty_not_driving'), Samsara ('onDutyDriving'...), Terminal
# ('DRIVING', 'ON_DUTY_NOT_DRIVING'...) and the single-letter log codes.
_DUTY_STATUS_VOCABULARY: dict[str, DutyStatus] = {
    'd': DutyStatus.DRIVING,
    'driving': DutyStatus.DRIVING,
    'ondutydriving': DutyStatus.DRIVING,
    'on': DutyStatus.ON_DUTY,
    'on_duty': DutyStatus.ON_DUTY,
    'onduty': DutyStatus.ON_DUTY,
    'on_duty_not_driving': DutyStatus.ON_DUTY,
    'ondutynotdriving': DutyStatus.ON_DUTY,
    'yard_move': DutyStatus.ON_DUTY,
    'yardmove': DutyStatus.ON_DUTY,
    'off': DutyStatus.OFF_DUTY,
    'off_duty': DutyStatus.OFF_DUTY,
    'offduty': DutyStatus.OFF_DUTY,
    'personal_conveyance': DutyStatus.OFF_DUTY,
    'personalconveyance': DutyStatus.OFF_DUTY,
    'sb': DutyStatus.SLEEPER,
    'sleeper': DutyStatus.SLEEPER,
    'sleeper_berth': DutyStatus.SLEEPER,
    'sleeperberth': DutyStatus.SLEEPER,
}

_CRITICAL_SEVERITY_WORDS: frozenset[str] = frozenset(
    {'critical', 'high', 'emergency', 'mil', 'red'}
)
_WARNING_SEVERITY_WORDS: frozenset[str] = frozenset(
    {'warning', 'medium', 'moderate', 'amber'}
)

CRITICAL_FAULT_FRAGMENTS: Final[tuple[str, ...]] = (
    'ENGINE_FAULT',
    'BRAKE_FAILURE',
    'TRANSMISSION_FAULT',
    'ABS_FAULT',
    'CRITICAL',
    'EMERGENCY',
)
WARNING_FAULT_FRAGMENTS: Final[tuple[str, ...]] = (
    'CHECK_ENGINE',
    'LOW_OIL',
    'LOW_COOLANT',
    'WARNING',
    'MAINTENANCE_DUE',
)


def normalize_duty_status(raw_status: str | None) -> DutyStatus:
    """
    Map any provider duty status code onto the canonical enum.

    Args:
        raw_status: Provider status string in any supported vocabulary.

    Returns:
        The canonical DutyStatus; UNKNOWN for None or unrecognized input.

    Example:
        >>> normalize_duty_status('ON_DUTY_NOT_DRIVING')
        <DutyStatus.ON_DUTY: 'on_duty'>
        >>> normalize_duty_status('SB')
        <DutyStatus.SLEEPER: 'sleeper'>
    """
    if not raw_status:
        return DutyStatus.UNKNOWN
    key: str = raw_status.strip().lower().replace(' ', '_').replace('-', '_')
    return _DUTY_STATUS_VOCABULARY.get(key, DutyStatus.UNKNOWN)


def classify_fault_severity(
    provided_severity: str | None,
    code_or_type: str | None = None,
) -> FaultSeverity:
    """
    Classify a fault's severity.

    A provider-supplied severity string always wins. Only when it is absent
    does the classifier fall back to keyword fragments in the fault code or
    event type.

    Args:
        provided_severity: Severity string from the provider, if any.
        code_or_type: Fault code or safety event type.

    Returns:
        The canonical FaultSeverity (INFO when nothing matches).
    """
    if provided_severity:
        normalized: str = provided_severity.strip().lower()
        if normalized in _CRITICAL_SEVERITY_WORDS:
            return FaultSeverity.CRITICAL
        if normalized in _WARNING_SEVERITY_WORDS:
            return FaultSeverity.WARNING
        return FaultSeverity.INFO

    upper_type: str = (code_or_type or '').upper()
    if any(fragment in upper_type for fragment in CRITICAL_FAULT_FRAGMENTS):
        return FaultSeverity.CRITICAL
    if any(fragment in upper_type for fragment in WARNING_FAULT_FRAGMENTS):
        return FaultSeverity.WARNING
    return FaultSeverity.INFO


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# =============================================================================
# Base Record
# =============================================================================


class CanonicalRecord(BaseModel):
    """Base for all canonical records: frozen, strict, UTC timestamps."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    @field_validator('*', mode='after')
    @classmethod
    def _coerce_utc(cls, value: object) -> object:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


# =============================================================================
# Fleet Entities
# =============================================================================


class Vehicle(CanonicalRecord):
    """A provider vehicle."""

    external_id: str = Field(min_length=1)
    name: str | None = None
    vin: str | None = None
    license_plate: str | None = None
    license_state: str | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = None
    status: str | None = None
    odometer_miles: float | None = None

    @property
    def display_name(self) -> str:
        """Best human label: name, then plate, then external id."""
        return self.name or self.license_plate or self.external_id


class Driver(CanonicalRecord):
    """A provider driver account."""

    external_id: str = Field(min_length=1)
    first_name: str = ''
    last_name: str = ''
    email: str | None = None
    phone: str | None = None
    license_number: str | None = None
    license_state: str | None = None
    status: str | None = None

    @property
    def full_name(self) -> str:
        """First and last name joined, without stray whitespace."""
        return f'{self.first_name} {self.last_name}'.strip()


# =============================================================================
# Telemetry
# =============================================================================


class GPSLocation(CanonicalRecord):
    """
    A point-in-time vehicle position.

    Speed is always miles per hour regardless of provider units.
    """

    external_vehicle_id: str = Field(min_length=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    recorded_at: datetime
    heading: float | None = None
    speed_mph: float | None = None
    address: str | None = None
    odometer_miles: float | None = None


class HOSLog(CanonicalRecord):
    """
    A single duty status change.

    external_id is the provider's log id when it has one; otherwise the
    adapter derives a stable key from driver and start time.
    """

    external_id: str = Field(min_length=1)
    external_driver_id: str = Field(min_length=1)
    duty_status: DutyStatus
    start_time: datetime
    raw_status: str | None = None
    external_vehicle_id: str | None = None
    end_time: datetime | None = None
    duration_minutes: float | None = Field(default=None, ge=0)
    location: str | None = None
    notes: str | None = None


class HOSAvailableTime(CanonicalRecord):
    """Remaining HOS clocks for a driver, as reported by the provider."""

    external_driver_id: str = Field(min_length=1)
    drive_minutes_remaining: int = 0
    shift_minutes_remaining: int = 0
    cycle_minutes_remaining: int = 0
    break_required: bool = False
    duty_status: DutyStatus = DutyStatus.UNKNOWN


class HOSDailySummary(CanonicalRecord):
    """Per-driver per-day duty totals with provider violation flags."""

    external_driver_id: str = Field(min_length=1)
    log_date: date
    drive_minutes: int = 0
    on_duty_minutes: int = 0
    off_duty_minutes: int = 0
    sleeper_minutes: int = 0
    has_violation: bool = False
    violations: list[str] = Field(default_factory=list)
    certified_at: datetime | None = None


# =============================================================================
# IFTA
# =============================================================================


class JurisdictionMileage(CanonicalRecord):
    """Miles (and optionally fuel) attributed to one jurisdiction."""

    jurisdiction: str = Field(min_length=2, max_length=3)
    miles: float = Field(ge=0)
    fuel_gallons: float | None = Field(default=None, ge=0)

    @field_validator('jurisdiction', mode='before')
    @classmethod
    def uppercase_jurisdiction(cls, value: object) -> object:
        """Jurisdiction codes are always stored uppercase."""
        return value.strip().upper() if isinstance(value, str) else value


class IFTATrip(CanonicalRecord):
    """A trip with its per-jurisdiction mileage breakdown."""

    external_id: str = Field(min_length=1)
    external_vehicle_id: str = Field(min_length=1)
    start_date: date | None = None
    end_date: date | None = None
    jurisdictions: list[JurisdictionMileage] = Field(default_factory=list)

    @property
    def total_miles(self) -> float:
        """Sum of jurisdiction miles for the trip."""
        return sum(entry.miles for entry in self.jurisdictions)


class IFTAJurisdictionSummary(CanonicalRecord):
    """
    Provider-computed jurisdiction totals for a reporting period.

    external_vehicle_id is None for fleet-wide summaries. period is the
    'YYYY-MM' month when the provider reports monthly rows; None means the
    figures cover the whole requested range.
    """

    jurisdiction: str = Field(min_length=2, max_length=3)
    total_miles: float = Field(ge=0)
    external_vehicle_id: str | None = None
    period: str | None = Field(default=None, pattern=r'^\d{4}-\d{2}$')
    taxable_miles: float | None = Field(default=None, ge=0)
    fuel_gallons: float | None = Field(default=None, ge=0)

    @field_validator('jurisdiction', mode='before')
    @classmethod
    def uppercase_jurisdiction(cls, value: object) -> object:
        """Jurisdiction codes are always stored uppercase."""
        return value.strip().upper() if isinstance(value, str) else value


# =============================================================================
# Diagnostics & Fuel
# =============================================================================


class FaultCode(CanonicalRecord):
    """An engine fault or safety event reported for a vehicle."""

    external_id: str = Field(min_length=1)
    external_vehicle_id: str = Field(min_length=1)
    code: str
    severity: FaultSeverity
    description: str | None = None
    source: str | None = None
    first_observed_at: datetime | None = None
    last_observed_at: datetime | None = None
    is_active: bool = True


class FuelPurchase(CanonicalRecord):
    """A fuel purchase; is_estimated marks values inferred from fuel level."""

    external_id: str = Field(min_length=1)
    external_vehicle_id: str | None = None
    external_driver_id: str | None = None
    purchased_at: datetime
    jurisdiction: str | None = None
    gallons: float = Field(ge=0)
    price_per_gallon: float | None = None
    total_cost: float | None = None
    vendor: str | None = None
    is_estimated: bool = False
