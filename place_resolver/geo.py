"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Tuple

import geohash2

from . import config

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = EARTH_RADIUS_KM
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def is_valid_coordinate(lat: float, lon: float) -> bool:
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lon_f):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


def round_coord(value: float, precision: int = config.COORD_PRECISION) -> float:
    return round(float(value), precision)


def coord_key(lat: float, lon: float, precision: int = config.COORD_PRECISION) -> str:
    """Fixed-precision string key; ~11 m buckets at 4 decimals."""
    return f"{float(lat):.{precision}f},{float(lon):.{precision}f}"


def rounded_pair(lat: float, lon: float, precision: int = config.COORD_PRECISION) -> Tuple[float, float]:
    return round_coord(lat, precision), round_coord(lon, precision)


def encode_geohash(lat: float, lon: float, precision: int = config.GEOHASH_PRECISION) -> str:
    return geohash2.encode(float(lat), float(lon), precision=precision)
