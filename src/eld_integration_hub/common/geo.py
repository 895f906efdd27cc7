# eld_integration_hub/common/geo.py
"""
Geographic helpers shared by adapters, readers and reconciliation.

Covers great-circle distance, map bounding boxes, jurisdiction names, and a
best-effort parse of a US state out of a free-form reverse-geocoded address.
"""

import math
import re
from collections.abc import Iterable
from typing import Final

from pydantic import BaseModel, ConfigDict

__all__: list[str] = [
    'EARTH_RADIUS_KM',
    'EARTH_RADIUS_MILES',
    'KM_PER_MILE',
    'JURISDICTION_NAMES',
    'BoundingBox',
    'GeoPoint',
    'bounding_box',
    'extract_state',
    'haversine_km',
    'haversine_miles',
    'jurisdiction_name',
]

EARTH_RADIUS_KM: Final[float] = 6371.0
EARTH_RADIUS_MILES: Final[float] = 3959.0
KM_PER_MILE: Final[float] = 1.60934

JURISDICTION_NAMES: Final[dict[str, str]] = {
    'AL': 'Alabama', 'AK': 'Alaska', 'AZ': 'Arizona', 'AR': 'Arkansas',
    'CA': 'California', 'CO': 'Colorado', 'CT': 'Connecticut', 'DE': 'Delaware',
    'FL': 'Florida', 'GA': 'Georgia', 'HI': 'Hawaii', 'ID': 'Idaho',
    'IL': 'Illinois', 'IN': 'Indiana', 'IA': 'Iowa', 'KS': 'Kansas',
    'KY': 'Kentucky', 'LA': 'Louisiana', 'ME': 'Maine', 'MD': 'Maryland',
    'MA': 'Massachusetts', 'MI': 'Michigan', 'MN': 'Minnesota', 'MS': 'Mississippi',
    'MO': 'Missouri', 'MT': 'Montana', 'NE': 'Nebraska', 'NV': 'Nevada',
    'NH': 'New Hampshire', 'NJ': 'New Jersey', 'NM': 'New Mexico', 'NY': 'New York',
    'NC': 'North Carolina', 'ND': 'North Dakota', 'OH': 'Ohio', 'OK': 'Oklahoma',
    'OR': 'Oregon', 'PA': 'Pennsylvania', 'RI': 'Rhode Island', 'SC': 'South Carolina',
    'SD': 'South Dakota', 'TN': 'Tennessee', 'TX': 'Texas', 'UT': 'Utah',
    'VT': 'Vermont', 'VA': 'Virginia', 'WA': 'Washington', 'WV': 'West Virginia',
    'WI': 'Wisconsin', 'WY': 'Wyoming', 'DC': 'District of Columbia',
    # Canadian provinces
    'AB': 'Alberta', 'BC': 'British Columbia', 'MB': 'Manitoba',
    'NB': 'New Brunswick', 'NL': 'Newfoundland and Labrador', 'NS': 'Nova Scotia',
    'NT': 'Northwest Territories', 'NU': 'Nunavut', 'ON': 'Ontario',
    'PE': 'Prince Edward Island', 'QC': 'Quebec', 'SK': 'Saskatchewan', 'YT': 'Yukon',
    'MX': 'Mexico',
}  # fmt: skip

_US_STATE_CODES: Final[frozenset[str]] = frozenset(
    code for code in list(JURISDICTION_NAMES)[:51]
)

_STATE_ZIP_PATTERN: Final[re.Pattern[str]] = re.compile(r'\b([A-Z]{2})\s*\d{5}\b')
_STATE_USA_PATTERN: Final[re.Pattern[str]] = re.compile(r'\b([A-Z]{2}),?\s*USA\b')

# Longest names first so 'West Virginia' wins over 'Virginia' and
# 'Arkansas' over 'Kansas'.
_STATE_NAME_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = tuple(
    (re.compile(rf'\b{re.escape(name)}\b'), code)
    for code, name in sorted(
        ((code, JURISDICTION_NAMES[code]) for code in _US_STATE_CODES),
        key=lambda item: len(item[1]),
        reverse=True,
    )
)


class GeoPoint(BaseModel):
    """A latitude/longitude pair."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    lat: float
    lng: float


class BoundingBox(BaseModel):
    """Map bounds for a set of points."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    southwest: GeoPoint
    northeast: GeoPoint
    center: GeoPoint


def _haversine_central_angle(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    d_lat: float = math.radians(lat2 - lat1)
    d_lon: float = math.radians(lon2 - lon1)
    a: float = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometers (R = 6371 km).

    Example:
        >>> round(haversine_km(0, 0, 0, 1), 1)
        111.2
    """
    return EARTH_RADIUS_KM * _haversine_central_angle(lat1, lon1, lat2, lon2)


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in statute miles (R = 3959 mi)."""
    return EARTH_RADIUS_MILES * _haversine_central_angle(lat1, lon1, lat2, lon2)


def bounding_box(points: Iterable[tuple[float, float]]) -> BoundingBox | None:
    """
    Bounds and center of (lat, lng) points.

    Returns:
        BoundingBox, or None when there are no points.
    """
    materialized: list[tuple[float, float]] = list(points)
    if not materialized:
        return None

    latitudes: list[float] = [lat for lat, _ in materialized]
    longitudes: list[float] = [lng for _, lng in materialized]

    min_lat, max_lat = min(latitudes), max(latitudes)
    min_lng, max_lng = min(longitudes), max(longitudes)

    return BoundingBox(
        southwest=GeoPoint(lat=min_lat, lng=min_lng),
        northeast=GeoPoint(lat=max_lat, lng=max_lng),
        center=GeoPoint(lat=(min_lat + max_lat) / 2, lng=(min_lng + max_lng) / 2),
    )


def extract_state(address: str | None) -> str | None:
    """
    Best-effort US state code from a reverse-geocoded address.

    Tries 'ST 12345' first, then 'ST, USA', then a full state name.

    Example:
        >>> extract_state('123 Main St, Dallas, TX 75201')
        'TX'
        >>> extract_state('Interstate 70, Kansas')
        'KS'
    """
    if not address:
        return None

    for pattern in (_STATE_ZIP_PATTERN, _STATE_USA_PATTERN):
        match: re.Match[str] | None = pattern.search(address)
        if match is not None and match.group(1) in _US_STATE_CODES:
            return match.group(1)

    for name_pattern, code in _STATE_NAME_PATTERNS:
        if name_pattern.search(address):
            return code

    return None


def jurisdiction_name(code: str) -> str:
    """Full name of a jurisdiction code; unknown codes are returned as-is."""
    return JURISDICTION_NAMES.get(code.upper(), code)
