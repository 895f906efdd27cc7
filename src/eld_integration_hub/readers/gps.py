# eld_integration_hub/readers/gps.py
"""
GPS read models: fleet positions, per-vehicle history, proximity search and
the map dashboard.

Design Decisions:
-----------------
- Speeds are stored in mph by the sync layer, so no unit conversion happens
  here. The moving threshold is therefore in mph too.

- "Latest position" is the row at each vehicle's maximum recorded_at, found
  with a grouped subquery rather than loading every historical point.

- History statistics are computed in Python from the ordered points;
  `history_dataframe` offers the same points as a pandas DataFrame for
  callers that want to resample or export them.

Usage:
------
    reader = GpsReader(session_factory, config)
    nearby = reader.get_vehicles_near_location(owner_id, 32.78, -96.80, radius_miles=25)
    for hit in nearby.data.vehicles:
        print(hit.location.vehicle_name, hit.distance_miles)
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Final, Protocol

import pandas as pd
from pydantic import BaseModel, ConfigDict
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from eld_integration_hub.common.geo import (
    KM_PER_MILE,
    BoundingBox,
    GeoPoint,
    bounding_box,
    extract_state,
    haversine_km,
    haversine_miles,
)
from eld_integration_hub.models import ServiceResult
from eld_integration_hub.readers.base import NO_ACTIVE_CONNECTION, ReaderBase
from eld_integration_hub.storage import ELDConnection, LocalVehicle, VehicleLocationRecord

__all__: list[str] = [
    'FleetLocations',
    'GpsDashboard',
    'GpsReader',
    'HistoryStatistics',
    'LocationPoint',
    'NearbyVehicle',
    'NearbyVehicles',
    'RegionCount',
    'VehicleLocationHistory',
    'VehicleLocationView',
    'bounding_box',
    'extract_state',
    'haversine_km',
    'haversine_miles',
    'history_dataframe',
    'is_moving',
    'is_stale',
    'latest_per_vehicle',
]

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_HISTORY_HOURS: Final[int] = 24
STOPPED_VEHICLES_SHOWN: Final[int] = 10
UNKNOWN_REGION: Final[str] = 'Unknown'


# =============================================================================
# Pure Helpers
# =============================================================================


class _Positioned(Protocol):
    external_vehicle_id: str
    recorded_at: datetime


def latest_per_vehicle[T: _Positioned](records: Iterable[T]) -> dict[str, T]:
    """Newest record per external vehicle id."""
    latest: dict[str, T] = {}
    for record in records:
        current: T | None = latest.get(record.external_vehicle_id)
        if current is None or record.recorded_at > current.recorded_at:
            latest[record.external_vehicle_id] = record
    return latest


def is_stale(recorded_at: datetime, now: datetime, stale_minutes: int = 30) -> bool:
    """True when a position is older than `stale_minutes`."""
    return now - recorded_at > timedelta(minutes=stale_minutes)


def is_moving(speed_mph: float | None, threshold_mph: float = 5.0) -> bool:
    return speed_mph is not None and speed_mph > threshold_mph


# =============================================================================
# Read Models
# =============================================================================


class VehicleLocationView(BaseModel):
    """A vehicle's latest known position."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    external_vehicle_id: str
    vehicle_id: str | None
    vehicle_name: str
    latitude: float
    longitude: float
    heading: float | None
    speed_mph: float | None
    address: str | None
    recorded_at: datetime
    age_minutes: int
    is_stale: bool
    is_moving: bool

    @property
    def state(self) -> str | None:
        return extract_state(self.address)


class FleetLocations(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    vehicles: list[VehicleLocationView]
    last_sync_at: datetime | None = None

    @property
    def moving_count(self) -> int:
        return sum(1 for vehicle in self.vehicles if vehicle.is_moving)

    @property
    def stale_count(self) -> int:
        return sum(1 for vehicle in self.vehicles if vehicle.is_stale)


class LocationPoint(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    latitude: float
    longitude: float
    recorded_at: datetime
    speed_mph: float | None
    heading: float | None
    address: str | None


class HistoryStatistics(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    total_distance_miles: float
    total_distance_km: float
    max_speed_mph: float
    avg_speed_mph: float


class VehicleLocationHistory(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    vehicle_id: str
    vehicle_name: str
    start: datetime
    end: datetime
    points: list[LocationPoint]
    statistics: HistoryStatistics

    @property
    def start_location(self) -> LocationPoint | None:
        return self.points[0] if self.points else None

    @property
    def end_location(self) -> LocationPoint | None:
        return self.points[-1] if self.points else None

    def to_dataframe(self) -> pd.DataFrame:
        return history_dataframe(self)


class NearbyVehicle(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    location: VehicleLocationView
    distance_km: float
    distance_miles: float


class NearbyVehicles(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    center: GeoPoint
    radius_miles: float
    vehicles: list[NearbyVehicle]


class RegionCount(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    region: str
    count: int
    moving: int


class GpsDashboard(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    total_vehicles: int
    moving_count: int
    stopped_count: int
    stale_count: int
    moving_vehicles: list[VehicleLocationView]
    stopped_vehicles: list[VehicleLocationView]
    regions: list[RegionCount]
    bounds: BoundingBox | None
    last_sync_at: datetime | None = None


def history_dataframe(history: VehicleLocationHistory) -> pd.DataFrame:
    """
    Points as a DataFrame with a UTC `recorded_at` column and the distance
    from the previous point in miles.
    """
    columns: list[str] = [
        'recorded_at',
        'latitude',
        'longitude',
        'speed_mph',
        'heading',
        'address',
    ]
    frame: pd.DataFrame = pd.DataFrame(
        [point.model_dump() for point in history.points], columns=columns
    )
    frame['recorded_at'] = pd.to_datetime(frame['recorded_at'], utc=True)
    frame['speed_mph'] = pd.to_numeric(frame['speed_mph'], errors='coerce')

    segment_miles: list[float] = [0.0]
    for previous, current in zip(history.points, history.points[1:], strict=False):
        segment_miles.append(
            haversine_miles(
                previous.latitude, previous.longitude, current.latitude, current.longitude
            )
        )
    frame['segment_miles'] = segment_miles[: len(frame)]
    return frame


# =============================================================================
# Reader
# =============================================================================


class GpsReader(ReaderBase):
    """Location queries for an owner."""

    def get_all_vehicle_locations(
        self,
        owner_id: str,
        now: datetime | None = None,
    ) -> ServiceResult[FleetLocations]:
        """Latest position of every vehicle on the primary connection, by name."""
        current_time: datetime = now or self._clock()
        with self._session_factory.begin() as session:
            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            if connection is None:
                return ServiceResult.fail(NO_ACTIVE_CONNECTION)

            latest: dict[str, VehicleLocationRecord] = latest_per_vehicle(
                _latest_rows(session, connection.id)
            )
            vehicle_ids: set[str] = {row.vehicle_id for row in latest.values() if row.vehicle_id}
            vehicles: dict[str, LocalVehicle] = (
                {
                    vehicle.id: vehicle
                    for vehicle in session.scalars(
                        select(LocalVehicle).where(
                            LocalVehicle.id.in_(vehicle_ids), LocalVehicle.owner_id == owner_id
                        )
                    )
                }
                if vehicle_ids
                else {}
            )

            views: list[VehicleLocationView] = [
                self._view(row, vehicles.get(row.vehicle_id or ''), current_time)
                for row in latest.values()
            ]
            views.sort(key=lambda view: view.vehicle_name.casefold())
            return ServiceResult.ok(
                FleetLocations(vehicles=views, last_sync_at=connection.last_sync_at)
            )

    def get_vehicle_location_history(
        self,
        owner_id: str,
        vehicle_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ServiceResult[VehicleLocationHistory]:
        """Ordered points with distance and speed statistics; defaults to the last 24h."""
        end_time: datetime = end or self._clock()
        start_time: datetime = start or end_time - timedelta(hours=DEFAULT_HISTORY_HOURS)

        with self._session_factory.begin() as session:
            vehicle: LocalVehicle | None = session.get(LocalVehicle, vehicle_id)
            if vehicle is None or vehicle.owner_id != owner_id:
                return ServiceResult.fail('Vehicle not found')

            connection: ELDConnection | None = self._primary_connection(session, owner_id)
            if connection is None:
                return ServiceResult.fail(NO_ACTIVE_CONNECTION)

            external_id: str | None = self._external_id(session, connection.id, 'vehicle', vehicle_id)
            if external_id is None:
                return ServiceResult.fail('Vehicle not linked to ELD')

            rows = session.scalars(
                select(VehicleLocationRecord)
                .where(
                    VehicleLocationRecord.connection_id == connection.id,
                    VehicleLocationRecord.external_vehicle_id == external_id,
                    VehicleLocationRecord.recorded_at >= start_time,
                    VehicleLocationRecord.recorded_at <= end_time,
                )
                .order_by(VehicleLocationRecord.recorded_at)
            )
            points: list[LocationPoint] = [
                LocationPoint(
                    latitude=row.latitude,
                    longitude=row.longitude,
                    recorded_at=row.recorded_at,
                    speed_mph=row.speed_mph,
                    heading=row.heading,
                    address=row.address,
                )
                for row in rows
            ]
            name: str = _vehicle_name(vehicle)

        return ServiceResult.ok(
            VehicleLocationHistory(
                vehicle_id=vehicle_id,
                vehicle_name=name,
                start=start_time,
                end=end_time,
                points=points,
                statistics=_statistics(points),
            )
        )

    def get_vehicles_near_location(
        self,
        owner_id: str,
        latitude: float,
        longitude: float,
        radius_miles: float | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[NearbyVehicles]:
        """Vehicles within radius_miles of a point, nearest first."""
        radius: float = radius_miles if radius_miles is not None else self.thresholds.default_radius_miles
        fleet: ServiceResult[FleetLocations] = self.get_all_vehicle_locations(owner_id, now)
        if fleet.error or fleet.data is None:
            return ServiceResult.fail(fleet.error_message or NO_ACTIVE_CONNECTION)

        nearby: list[NearbyVehicle] = []
        for view in fleet.data.vehicles:
            distance_km: float = haversine_km(latitude, longitude, view.latitude, view.longitude)
            distance_miles: float = haversine_miles(latitude, longitude, view.latitude, view.longitude)
            if distance_miles <= radius:
                nearby.append(
                    NearbyVehicle(
                        location=view,
                        distance_km=round(distance_km, 1),
                        distance_miles=round(distance_miles, 1),
                    )
                )
        nearby.sort(key=lambda hit: hit.distance_miles)

        return ServiceResult.ok(
            NearbyVehicles(
                center=GeoPoint(lat=latitude, lng=longitude),
                radius_miles=radius,
                vehicles=nearby,
            )
        )

    def get_gps_dashboard(
        self,
        owner_id: str,
        now: datetime | None = None,
    ) -> ServiceResult[GpsDashboard]:
        fleet: ServiceResult[FleetLocations] = self.get_all_vehicle_locations(owner_id, now)
        if fleet.error or fleet.data is None:
            return ServiceResult.fail(fleet.error_message or NO_ACTIVE_CONNECTION)

        vehicles: list[VehicleLocationView] = fleet.data.vehicles
        moving: list[VehicleLocationView] = [v for v in vehicles if v.is_moving]
        stopped: list[VehicleLocationView] = [v for v in vehicles if not v.is_moving]

        region_totals: Counter[str] = Counter()
        region_moving: defaultdict[str, int] = defaultdict(int)
        for vehicle in vehicles:
            region: str = vehicle.state or UNKNOWN_REGION
            region_totals[region] += 1
            if vehicle.is_moving:
                region_moving[region] += 1

        return ServiceResult.ok(
            GpsDashboard(
                total_vehicles=len(vehicles),
                moving_count=len(moving),
                stopped_count=len(stopped),
                stale_count=fleet.data.stale_count,
                moving_vehicles=moving,
                stopped_vehicles=stopped[:STOPPED_VEHICLES_SHOWN],
                regions=[
                    RegionCount(region=region, count=count, moving=region_moving[region])
                    for region, count in region_totals.most_common()
                ],
                bounds=bounding_box((v.latitude, v.longitude) for v in vehicles),
                last_sync_at=fleet.data.last_sync_at,
            )
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _view(
        self,
        row: VehicleLocationRecord,
        vehicle: LocalVehicle | None,
        now: datetime,
    ) -> VehicleLocationView:
        return VehicleLocationView(
            external_vehicle_id=row.external_vehicle_id,
            vehicle_id=vehicle.id if vehicle is not None else None,
            vehicle_name=_vehicle_name(vehicle),
            latitude=row.latitude,
            longitude=row.longitude,
            heading=row.heading,
            speed_mph=row.speed_mph,
            address=row.address,
            recorded_at=row.recorded_at,
            age_minutes=max(0, round((now - row.recorded_at).total_seconds() / 60)),
            is_stale=is_stale(row.recorded_at, now, self.thresholds.gps_stale_minutes),
            is_moving=is_moving(row.speed_mph, self.thresholds.gps_moving_speed_mph),
        )


def _latest_rows(session: Session, connection_id: str) -> list[VehicleLocationRecord]:
    newest = (
        select(
            VehicleLocationRecord.external_vehicle_id,
            func.max(VehicleLocationRecord.recorded_at).label('recorded_at'),
        )
        .where(VehicleLocationRecord.connection_id == connection_id)
        .group_by(VehicleLocationRecord.external_vehicle_id)
        .subquery()
    )
    return list(
        session.scalars(
            select(VehicleLocationRecord)
            .join(
                newest,
                and_(
                    VehicleLocationRecord.external_vehicle_id == newest.c.external_vehicle_id,
                    VehicleLocationRecord.recorded_at == newest.c.recorded_at,
                ),
            )
            .where(VehicleLocationRecord.connection_id == connection_id)
        )
    )


def _vehicle_name(vehicle: LocalVehicle | None) -> str:
    if vehicle is None:
        return 'Unknown Vehicle'
    return vehicle.name or vehicle.license_plate or 'Unknown Vehicle'


def _statistics(points: list[LocationPoint]) -> HistoryStatistics:
    total_km: float = sum(
        haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        for a, b in zip(points, points[1:], strict=False)
    )
    speeds: list[float] = [point.speed_mph or 0.0 for point in points]
    return HistoryStatistics(
        total_distance_miles=round(total_km / KM_PER_MILE, 1),
        total_distance_km=round(total_km, 1),
        max_speed_mph=round(max(speeds, default=0.0)),
        avg_speed_mph=round(sum(speeds) / len(speeds)) if speeds else 0,
    )
