# eld_integration_hub/readers/diagnostics.py
"""
Vehicle diagnostics: active fault codes across an owner's connections, and
manually clearing a fault.

Active faults sort by severity (critical first) then by most recent
observation, capped at `readers.active_fault_limit`.
"""

import logging
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from sqlalchemy import case, select
from sqlalchemy.exc import SQLAlchemyError

from eld_integration_hub.models import FaultSeverity, ServiceResult, classify_fault_severity
from eld_integration_hub.readers.base import ReaderBase
from eld_integration_hub.storage import ELDConnection, FaultCodeRecord, LocalVehicle

__all__: list[str] = [
    'DiagnosticsReader',
    'DiagnosticsReport',
    'DiagnosticsSummary',
    'FaultView',
    'classify_fault_severity',
]

logger: logging.Logger = logging.getLogger(__name__)

FAULT_NOT_FOUND: str = 'Fault code not found'

_SEVERITY_ORDER = case(
    {severity.value: severity.rank for severity in FaultSeverity},
    value=FaultCodeRecord.severity,
    else_=len(FaultSeverity),
)


class FaultView(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    vehicle_id: str | None
    vehicle_name: str
    license_plate: str | None
    external_vehicle_id: str
    code: str
    description: str | None
    severity: FaultSeverity
    source: str | None
    first_observed_at: datetime | None
    last_observed_at: datetime | None
    occurrence_count: int
    is_active: bool


class DiagnosticsSummary(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    total_faults: int = 0
    critical_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    vehicles_with_faults: int = 0

    @classmethod
    def of(cls, faults: list[FaultView]) -> 'DiagnosticsSummary':
        return cls(
            total_faults=len(faults),
            critical_count=sum(1 for f in faults if f.severity is FaultSeverity.CRITICAL),
            warning_count=sum(1 for f in faults if f.severity is FaultSeverity.WARNING),
            info_count=sum(1 for f in faults if f.severity is FaultSeverity.INFO),
            vehicles_with_faults=len({f.vehicle_id or f.external_vehicle_id for f in faults}),
        )


class DiagnosticsReport(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    fault_codes: list[FaultView]
    summary: DiagnosticsSummary
    last_updated: datetime


class DiagnosticsReader(ReaderBase):
    """Fault code queries for an owner."""

    def get_diagnostics_data(self, owner_id: str) -> ServiceResult[DiagnosticsReport]:
        """
        Active faults with summary counts.

        An owner without any connection gets an empty report rather than an
        error, so dashboards can render unconditionally.
        """
        with self._session_factory.begin() as session:
            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            rows = session.execute(
                select(FaultCodeRecord, LocalVehicle)
                .join(ELDConnection, ELDConnection.id == FaultCodeRecord.connection_id)
                .outerjoin(LocalVehicle, LocalVehicle.id == FaultCodeRecord.vehicle_id)
                .where(ELDConnection.owner_id == owner_id, FaultCodeRecord.is_active.is_(True))
                .order_by(_SEVERITY_ORDER, FaultCodeRecord.last_observed_at.desc())
                .limit(self.thresholds.active_fault_limit)
            )
            faults: list[FaultView] = [
                FaultView(
                    id=fault.id,
                    vehicle_id=fault.vehicle_id,
                    vehicle_name=(vehicle.name if vehicle is not None else None) or 'Unknown Vehicle',
                    license_plate=vehicle.license_plate if vehicle is not None else None,
                    external_vehicle_id=fault.external_vehicle_id,
                    code=fault.code,
                    description=fault.description,
                    severity=classify_fault_severity(fault.severity),
                    source=fault.source,
                    first_observed_at=fault.first_observed_at,
                    last_observed_at=fault.last_observed_at,
                    occurrence_count=fault.occurrence_count,
                    is_active=fault.is_active,
                )
                for fault, vehicle in rows
            ]
            last_updated: datetime = (
                connection.last_sync_at
                if connection is not None and connection.last_sync_at is not None
                else self._clock()
            )

        return ServiceResult.ok(
            DiagnosticsReport(
                fault_codes=faults,
                summary=DiagnosticsSummary.of(faults),
                last_updated=last_updated,
            )
        )

    def clear_fault_code(self, owner_id: str, fault_id: str) -> ServiceResult[bool]:
        """Mark a fault inactive. Only the owning account may clear it."""
        try:
            with self._session_factory.begin() as session:
                fault: FaultCodeRecord | None = session.scalars(
                    select(FaultCodeRecord)
                    .join(ELDConnection, ELDConnection.id == FaultCodeRecord.connection_id)
                    .where(FaultCodeRecord.id == fault_id, ELDConnection.owner_id == owner_id)
                ).first()
                if fault is None:
                    return ServiceResult.fail(FAULT_NOT_FOUND)
                fault.is_active = False
                fault.resolved_at = self._clock()
        except SQLAlchemyError:
            logger.exception('Failed to clear fault code %s', fault_id)
            return ServiceResult.fail('Failed to clear fault code')

        logger.info('Fault code %s cleared by owner %s', fault_id, owner_id)
        return ServiceResult.ok(True)
