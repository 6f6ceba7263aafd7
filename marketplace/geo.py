"""
Geo lookup: postal code -> zone, postal code -> approximate coordinates, haversine distance.

Singapore postal codes are 6 digits; the first two digits are the postal sector.
Tables are static configuration bundled with the engine, not fetched at runtime.
"""
import math
import re
from enum import Enum
from typing import NamedTuple

from marketplace.errors import ValidationFailed

GEO_TABLE_VERSION = "2024.1"

EARTH_RADIUS_KM = 6371
POSTAL_CODE_RE = re.compile(r"^\d{6}$")


class GeoZone(str, Enum):
    CENTRAL = "central"
    WEST = "west"
    NORTH = "north"
    NORTHEAST = "northeast"
    EAST = "east"
    SPECIAL = "special"  # Sentosa, Jurong Island, Tuas


# Sector (first two digits) -> zone. Unlisted sectors resolve to central.
SECTOR_ZONES: dict[str, GeoZone] = {}

_ZONE_SECTORS: dict[GeoZone, tuple[str, ...]] = {
    GeoZone.CENTRAL: (
        "01", "02", "03", "04", "05", "06", "07", "08", "09", "10",
        "14", "15", "16", "17", "18", "19", "20", "21", "22", "23",
        "24", "25", "26", "27", "28", "29", "30", "31", "32", "33",
        "34", "35", "36", "37",
    ),
    GeoZone.WEST: (
        "11", "12", "13", "58", "59", "60", "61", "62", "63", "64",
        "65", "66", "67", "68",
    ),
    GeoZone.NORTH: ("69", "70", "71", "72", "73", "75", "76", "77", "78"),
    GeoZone.NORTHEAST: ("53", "54", "55", "56", "57", "79", "80", "82"),
    GeoZone.EAST: (
        "38", "39", "40", "41", "42", "43", "44", "45", "46", "47",
        "48", "49", "50", "51", "52", "81",
    ),
}
for _zone, _sectors in _ZONE_SECTORS.items():
    for _sector in _sectors:
        SECTOR_ZONES[_sector] = _zone

# Three-digit prefixes carved out as special areas, overriding the sector table.
SPECIAL_AREA_PREFIXES: dict[str, str] = {
    "098": "Sentosa",
    "099": "Sentosa",
    "627": "Jurong Island",
    "628": "Jurong Island",
    "629": "Jurong Island",
    "636": "Tuas",
    "637": "Tuas",
    "638": "Tuas",
}

SPECIAL_AREA_COORDINATES: dict[str, tuple[float, float]] = {
    "Sentosa": (1.2494, 103.8303),
    "Jurong Island": (1.2660, 103.6990),
    "Tuas": (1.3200, 103.6400),
}

# Postal district centroids, keyed by the sectors each district covers.
_DISTRICT_CENTROIDS: tuple[tuple[tuple[str, ...], tuple[float, float]], ...] = (
    (("01", "02", "03", "04", "05", "06"), (1.2830, 103.8510)),
    (("07", "08"), (1.2760, 103.8450)),
    (("14", "15", "16"), (1.2910, 103.8070)),
    (("09", "10"), (1.2650, 103.8220)),
    (("11", "12", "13"), (1.3000, 103.7700)),
    (("17",), (1.2900, 103.8500)),
    (("18", "19"), (1.2990, 103.8570)),
    (("20", "21"), (1.3100, 103.8560)),
    (("22", "23"), (1.3040, 103.8320)),
    (("24", "25", "26", "27"), (1.3200, 103.8050)),
    (("28", "29", "30"), (1.3290, 103.8380)),
    (("31", "32", "33"), (1.3300, 103.8550)),
    (("34", "35", "36", "37"), (1.3350, 103.8800)),
    (("38", "39", "40", "41"), (1.3180, 103.8950)),
    (("42", "43", "44", "45"), (1.3050, 103.9050)),
    (("46", "47", "48"), (1.3240, 103.9300)),
    (("49", "50", "81"), (1.3600, 103.9850)),
    (("51", "52"), (1.3530, 103.9450)),
    (("53", "54", "55", "82"), (1.3600, 103.8850)),
    (("56", "57"), (1.3600, 103.8450)),
    (("58", "59"), (1.3400, 103.7750)),
    (("60", "61", "62", "63", "64"), (1.3400, 103.7050)),
    (("65", "66", "67", "68"), (1.3700, 103.7500)),
    (("69", "70", "71"), (1.4100, 103.7100)),
    (("72", "73"), (1.4300, 103.7700)),
    (("77", "78"), (1.3950, 103.8200)),
    (("75", "76"), (1.4350, 103.8250)),
    (("79", "80"), (1.4000, 103.8700)),
)
SECTOR_COORDINATES: dict[str, tuple[float, float]] = {
    sector: centroid
    for sectors, centroid in _DISTRICT_CENTROIDS
    for sector in sectors
}

# Undirected: every edge is registered both ways.
_ADJACENT_ZONE_PAIRS: tuple[tuple[GeoZone, GeoZone], ...] = (
    (GeoZone.CENTRAL, GeoZone.WEST),
    (GeoZone.CENTRAL, GeoZone.NORTH),
    (GeoZone.CENTRAL, GeoZone.NORTHEAST),
    (GeoZone.CENTRAL, GeoZone.EAST),
    (GeoZone.WEST, GeoZone.NORTH),
    (GeoZone.NORTH, GeoZone.NORTHEAST),
    (GeoZone.NORTHEAST, GeoZone.EAST),
)
ZONE_ADJACENCY: dict[GeoZone, frozenset[GeoZone]] = {
    zone: frozenset(
        {b for a, b in _ADJACENT_ZONE_PAIRS if a == zone}
        | {a for a, b in _ADJACENT_ZONE_PAIRS if b == zone}
    )
    for zone in GeoZone
}


class DistanceResult(NamedTuple):
    km: float
    resolved: bool


def validate_postal_code(postal_code: str) -> str:
    if not isinstance(postal_code, str) or not POSTAL_CODE_RE.match(postal_code):
        raise ValidationFailed(
            "Invalid Singapore postal code",
            {"postalCode": postal_code},
            code="INVALID_POSTAL_CODE",
        )
    return postal_code


def special_area_name(postal_code: str) -> str | None:
    return SPECIAL_AREA_PREFIXES.get(postal_code[:3])


def zone_of(postal_code: str) -> GeoZone:
    """Zone for a 6-digit postal code. Special prefixes win over the sector table."""
    validate_postal_code(postal_code)
    if special_area_name(postal_code) is not None:
        return GeoZone.SPECIAL
    return SECTOR_ZONES.get(postal_code[:2], GeoZone.CENTRAL)


def are_adjacent(a: GeoZone, b: GeoZone) -> bool:
    return b in ZONE_ADJACENCY[a]


def coordinates_of(postal_code: str) -> tuple[float, float] | None:
    """Approximate (lat, lon) for a postal code, or None if the sector is unknown."""
    validate_postal_code(postal_code)
    area = special_area_name(postal_code)
    if area is not None:
        return SPECIAL_AREA_COORDINATES[area]
    return SECTOR_COORDINATES.get(postal_code[:2])


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km, rounded to 1 decimal place."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def distance_between(
    origin_postal: str | None,
    destination_postal: str,
    origin_coordinates: tuple[float, float] | None = None,
) -> DistanceResult:
    """
    Distance from origin to destination. Explicit origin coordinates (merchant lat/long)
    take precedence over the sector lookup. Returns (0.0, resolved=False) when either
    side cannot be placed.
    """
    origin = origin_coordinates
    if origin is None and origin_postal and POSTAL_CODE_RE.match(origin_postal):
        origin = coordinates_of(origin_postal)
    destination = coordinates_of(destination_postal)
    if origin is None or destination is None:
        return DistanceResult(0.0, False)
    return DistanceResult(haversine_km(origin[0], origin[1], destination[0], destination[1]), True)


def is_within_radius(distance: DistanceResult, radius_km: float | None) -> bool:
    """Unknown distance or no radius configured never rejects."""
    if radius_km is None or not distance.resolved:
        return True
    return distance.km <= radius_km
