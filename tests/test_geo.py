"""Tests for the geo helpers: haversine, radius filtering, bounds and clustering."""
import math
from types import SimpleNamespace

import pytest

from aquasentra.core.exceptions import ValidationFailed
from aquasentra.domain.services.geo import (
    EARTH_RADIUS_KM,
    BoundingBox,
    cluster_key,
    cluster_precision,
    haversine_km,
    parse_bounds,
    radius_prefilter_box,
    round_coordinate,
    severity_weight,
    within_radius,
)


def point_north_of(lat, lng, distance_km):
    """Point exactly ``distance_km`` due north along the meridian."""
    return lat + math.degrees(distance_km / EARTH_RADIUS_KM), lng


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(34.0194, -118.4912, 34.0194, -118.4912) == pytest.approx(0.0)

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)

    def test_symmetry(self):
        a = haversine_km(34.0194, -118.4912, 33.7701, -118.1937)
        b = haversine_km(33.7701, -118.1937, 34.0194, -118.4912)
        assert a == pytest.approx(b)


class TestWithinRadius:
    def test_boundary_is_inclusive(self):
        lat, lng = point_north_of(34.0194, -118.4912, 10.0)
        item = SimpleNamespace(latitude=lat, longitude=lng)
        assert within_radius(34.0194, -118.4912, 10, [item]) == [item]

    def test_just_outside_is_excluded(self):
        lat, lng = point_north_of(34.0194, -118.4912, 10.01)
        item = SimpleNamespace(latitude=lat, longitude=lng)
        assert within_radius(34.0194, -118.4912, 10, [item]) == []

    def test_custom_key(self):
        rows = [("a", 0.0, 0.0), ("b", 5.0, 5.0)]
        inside = within_radius(0, 0, 1, rows, key=lambda r: (r[1], r[2]))
        assert [r[0] for r in inside] == ["a"]

    def test_empty_input(self):
        assert within_radius(0, 0, 10, []) == []


class TestPrefilterBox:
    def test_box_encloses_circle(self):
        box = radius_prefilter_box(34.0, -118.0, 50)
        north = point_north_of(34.0, -118.0, 50)
        assert box.contains(*north)
        assert box.sw_lat < 34.0 < box.ne_lat
        assert box.sw_lng < -118.0 < box.ne_lng

    def test_antimeridian_falls_back_to_full_longitude(self):
        box = radius_prefilter_box(0.0, 179.95, 50)
        assert box.sw_lng == -180.0 and box.ne_lng == 180.0

    def test_pole_falls_back_to_full_longitude(self):
        box = radius_prefilter_box(89.99, 10.0, 50)
        assert box.ne_lat == 90.0
        assert box.sw_lng == -180.0 and box.ne_lng == 180.0


class TestParseBounds:
    def test_valid(self):
        box = parse_bounds("33.5,-119.0,34.5,-118.0")
        assert box == BoundingBox(33.5, -119.0, 34.5, -118.0)

    @pytest.mark.parametrize("raw", [
        "1,2,3",
        "a,b,c,d",
        "91,0,92,1",
        "0,-181,1,0",
        "10,0,5,1",
        "",
    ])
    def test_invalid(self, raw):
        with pytest.raises(ValidationFailed):
            parse_bounds(raw)


class TestClustering:
    @pytest.mark.parametrize("zoom,expected", [(1, 1), (2, 1), (3, 1), (6, 2), (9, 3), (20, 6)])
    def test_precision(self, zoom, expected):
        assert cluster_precision(zoom) == expected

    def test_round_half_away_from_zero(self):
        assert round_coordinate(0.25, 1) == 0.3
        assert round_coordinate(-0.25, 1) == -0.3
        assert round_coordinate(34.0194, 2) == 34.02

    def test_cluster_key(self):
        assert cluster_key(34.0194, -118.4912, 1) == (34.0, -118.5)


def test_severity_weights():
    assert severity_weight("critical") == 4
    assert severity_weight("high") == 3
    assert severity_weight("medium") == 2
    assert severity_weight("low") == 1
    assert severity_weight("unknown") == 1
