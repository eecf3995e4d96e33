import math

from place_resolver.geo import (
    coord_key,
    encode_geohash,
    haversine_km,
    haversine_m,
    is_valid_coordinate,
    rounded_pair,
)


def test_haversine_is_symmetric():
    a = (14.5995, 120.9842)
    b = (14.5547, 121.0244)
    assert math.isclose(haversine_km(*a, *b), haversine_km(*b, *a))


def test_haversine_identity_is_zero():
    assert haversine_km(14.6186, 121.0567, 14.6186, 121.0567) == 0.0


def test_haversine_manila_to_makati():
    d = haversine_km(14.5995, 120.9842, 14.5547, 121.0244)
    assert 5.0 < d < 8.0
    assert math.isclose(haversine_m(14.5995, 120.9842, 14.5547, 121.0244), d * 1000.0)


def test_is_valid_coordinate_bounds():
    assert is_valid_coordinate(90, 180)
    assert is_valid_coordinate(-90, -180)
    assert not is_valid_coordinate(90.0001, 0)
    assert not is_valid_coordinate(0, -180.5)
    assert not is_valid_coordinate(float("nan"), 0)
    assert not is_valid_coordinate("north", 0)
    assert not is_valid_coordinate(None, 0)


def test_coord_key_rounds_to_four_decimals():
    assert coord_key(14.59951, 120.98419) == "14.5995,120.9842"
    assert rounded_pair(14.59951, 120.98419) == (14.5995, 120.9842)


def test_geohash_precision_is_prefix_stable():
    fine = encode_geohash(14.6, 121.0)
    coarse = encode_geohash(14.6, 121.0, precision=5)
    assert len(fine) == 7
    assert fine.startswith(coarse)
