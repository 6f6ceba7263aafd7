"""
Postal code -> zone lookup, adjacency and haversine distance.
"""
import os
import sys

import pytest

_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from marketplace.errors import ValidationFailed
from marketplace.geo import (
    ZONE_ADJACENCY,
    DistanceResult,
    GeoZone,
    are_adjacent,
    coordinates_of,
    distance_between,
    haversine_km,
    is_within_radius,
    special_area_name,
    validate_postal_code,
    zone_of,
)


@pytest.mark.parametrize(
    "postal_code, zone",
    [
        ("238874", GeoZone.CENTRAL),
        ("018956", GeoZone.CENTRAL),
        ("289899", GeoZone.CENTRAL),
        ("650123", GeoZone.WEST),
        ("730123", GeoZone.NORTH),
        ("560123", GeoZone.NORTHEAST),
        ("520123", GeoZone.EAST),
        ("098123", GeoZone.SPECIAL),
        ("628000", GeoZone.SPECIAL),
        ("637100", GeoZone.SPECIAL),
    ],
)
def test_zone_of(postal_code, zone):
    assert zone_of(postal_code) is zone


def test_special_prefix_overrides_sector():
    # 62xxxx is west, except the Jurong Island carve-out
    assert zone_of("620123") is GeoZone.WEST
    assert zone_of("627123") is GeoZone.SPECIAL
    assert special_area_name("627123") == "Jurong Island"
    assert special_area_name("099010") == "Sentosa"
    assert special_area_name("238874") is None


def test_unlisted_sector_defaults_to_central():
    assert zone_of("740123") is GeoZone.CENTRAL


def test_zone_of_covers_every_sector():
    for prefix in range(100):
        postal_code = f"{prefix:02d}0123"
        zone = zone_of(postal_code)
        assert isinstance(zone, GeoZone)
        assert zone_of(postal_code) is zone
    for prefix in ("098", "099", "627", "628", "629", "636", "637", "638"):
        assert zone_of(prefix + "001") is GeoZone.SPECIAL


@pytest.mark.parametrize("postal_code", ["12345", "1234567", "ABCDEF", "", "12 345"])
def test_malformed_postal_code_rejected(postal_code):
    with pytest.raises(ValidationFailed) as exc:
        validate_postal_code(postal_code)
    assert exc.value.code == "INVALID_POSTAL_CODE"
    assert exc.value.context == {"postalCode": postal_code}


def test_adjacency_is_symmetric():
    for zone, neighbours in ZONE_ADJACENCY.items():
        for other in neighbours:
            assert zone in ZONE_ADJACENCY[other], f"{zone} -> {other} not mirrored"


def test_adjacency_rules():
    assert are_adjacent(GeoZone.CENTRAL, GeoZone.EAST)
    assert are_adjacent(GeoZone.WEST, GeoZone.NORTH)
    assert not are_adjacent(GeoZone.WEST, GeoZone.EAST)
    assert not are_adjacent(GeoZone.CENTRAL, GeoZone.CENTRAL)
    assert ZONE_ADJACENCY[GeoZone.SPECIAL] == frozenset()


def test_haversine():
    assert haversine_km(1.3, 103.8, 1.3, 103.8) == 0.0
    d = haversine_km(1.2836, 103.8515, 1.3290, 103.8380)
    assert 5.0 < d < 5.6
    assert d == round(d, 1)
    assert haversine_km(1.3290, 103.8380, 1.2836, 103.8515) == d


def test_coordinates_of():
    assert coordinates_of("098123") == (1.2494, 103.8303)
    assert coordinates_of("740123") is None


def test_distance_between_uses_sector_centroids():
    result = distance_between("238874", "018956")
    assert result.resolved
    assert 2.5 < result.km < 4.0


def test_distance_between_prefers_explicit_origin():
    result = distance_between("650123", "018956", origin_coordinates=(1.2830, 103.8510))
    assert result == DistanceResult(0.0, True)


def test_distance_unresolved_is_not_zero_km():
    result = distance_between("238874", "740123")
    assert result == DistanceResult(0.0, False)
    assert not distance_between(None, "018956").resolved
    assert not distance_between("bad", "018956").resolved


def test_is_within_radius():
    assert is_within_radius(DistanceResult(3.0, True), 5)
    assert is_within_radius(DistanceResult(5.0, True), 5)
    assert not is_within_radius(DistanceResult(5.1, True), 5)
    assert is_within_radius(DistanceResult(0.0, False), 0.1)
    assert is_within_radius(DistanceResult(40.0, True), None)
