"""Project configuration.

Loads deployment overrides from resolver_config.json when available,
falling back to sensible defaults. Keep provider request shapes centralized here.
"""
from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- Provider endpoints ---

PHOTON_BASE_URL = os.environ.get("PHOTON_BASE_URL", "https://photon.komoot.io")
NOMINATIM_BASE_URL = os.environ.get("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
OVERPASS_BASE_URL = os.environ.get("OVERPASS_BASE_URL", "https://overpass-api.de/api/interpreter")

USER_AGENT = os.environ.get("PLACE_RESOLVER_USER_AGENT", "SafeTransit/1.0")

# --- Service area (defaults to Metro Manila) ---

SERVICE_AREA_CENTER: Dict[str, float] = {"lat": 14.5995, "lon": 120.9842}
# Nominatim viewbox order: lon_min, lat_max, lon_max, lat_min
SERVICE_AREA_BBOX: Dict[str, float] = {
    "lat_min": 14.30,
    "lat_max": 14.75,
    "lon_min": 120.90,
    "lon_max": 121.15,
}
SERVICE_AREA_COUNTRY_CODES: List[str] = ["ph"]
PROVIDER_LANGUAGE = "en"

PHOTON_SEARCH_LIMIT = 10
NOMINATIM_SEARCH_LIMIT = 5

# --- Resolution ---

DEFAULT_RESULT_LIMIT = 10
LOCAL_COVERAGE_THRESHOLD = 5
LOCAL_SEARCH_RADIUS_KM = 50.0
MIN_QUERY_LENGTH = 2

COORD_PRECISION = 4
DISPLAY_COORD_PRECISION = 6
GEOHASH_PRECISION = 7
GEOHASH_NEARBY_PRECISION = 5

# --- Scoring ---

SCORE_WEIGHT_TEXT = 0.35
SCORE_WEIGHT_PROXIMITY = 0.30
SCORE_WEIGHT_POPULARITY = 0.20
SCORE_WEIGHT_PERSONALIZATION = 0.15

PROXIMITY_MAX_DISTANCE_KM = 20.0
PROXIMITY_NEUTRAL_SCORE = 0.5
POPULARITY_CEILING = 1000
FREQUENT_PLACE_MIN_USES = 3

# --- Road snapping ---

ON_ROAD_RADIUS_M = 20.0


@dataclass(frozen=True)
class SnapRule:
    max_snap_distance_m: float
    strategy: str


SNAP_RULES: Dict[str, SnapRule] = {
    "school": SnapRule(100, "Look for gate/entrance tags"),
    "university": SnapRule(100, "Look for gate/entrance tags"),
    "college": SnapRule(100, "Look for gate/entrance tags"),
    "mall": SnapRule(150, "Prefer main roads, parking"),
    "shopping_centre": SnapRule(150, "Prefer main roads, parking"),
    "supermarket": SnapRule(100, "Prefer parking area"),
    "airport": SnapRule(200, "Validate terminal entrance"),
    "aerodrome": SnapRule(200, "Validate terminal entrance"),
    "station": SnapRule(50, "Check platform/entrance"),
    "railway_station": SnapRule(50, "Check platform/entrance"),
    "subway_entrance": SnapRule(50, "Check platform/entrance"),
    "hospital": SnapRule(100, "Look for emergency/main entrance"),
    "general": SnapRule(50, "Basic road validation"),
}

# --- Pickup points ---

PICKUP_VERIFICATION_THRESHOLD = 3
PICKUP_DEFAULT_LIMIT = 5
PICKUP_NEARBY_RADIUS_M = 100.0
PICKUP_NEARBY_LIMIT = 10

# --- Suggestions ---

SUGGESTION_NEARBY_RADIUS_KM = 5.0
SUGGESTION_TIME_WINDOW_HOURS = 2
WORK_HOURS = (8, 17)

# --- HTTP ---

PROVIDER_TIMEOUT_SECONDS = 5.0
ROAD_SOURCE_TIMEOUT_SECONDS = 5.0
HTTP_RETRY_MAX = 1
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 4.0
AGGREGATE_TIMEOUT_SECONDS: Optional[float] = 8.0

# --- Storage ---

CACHE_DB_PATH = os.environ.get("PLACE_RESOLVER_DB", "places.db")


def compute_bbox(lat: float, lon: float, radius_km: float) -> Dict[str, float]:
    """Compute a bounding box around a center point."""
    delta_lat = radius_km / 111.0
    delta_lon = radius_km / (111.0 * max(0.01, math.cos(math.radians(lat))))
    return {
        "lat_min": lat - delta_lat,
        "lat_max": lat + delta_lat,
        "lon_min": lon - delta_lon,
        "lon_max": lon + delta_lon,
    }


def nominatim_viewbox(bbox: Optional[Dict[str, float]] = None) -> str:
    box = bbox or SERVICE_AREA_BBOX
    return "{:.2f},{:.2f},{:.2f},{:.2f}".format(
        box["lon_min"], box["lat_max"], box["lon_max"], box["lat_min"]
    )


def load_resolver_config(path: Optional[str] = None) -> bool:
    """Load deployment configuration from a JSON file.

    Updates module-level globals with values from the config file. Ranking
    weights are fixed and never read from the file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "resolver_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()

    area = data.get("service_area", {})
    center = area.get("center", {})
    if center.get("lat") is not None and center.get("lon") is not None:
        globals_ref["SERVICE_AREA_CENTER"] = {
            "lat": float(center["lat"]),
            "lon": float(center["lon"]),
        }
        radius = area.get("radius_km")
        if radius is not None:
            globals_ref["SERVICE_AREA_BBOX"] = compute_bbox(
                float(center["lat"]), float(center["lon"]), float(radius)
            )
    bbox = area.get("bbox")
    if bbox:
        globals_ref["SERVICE_AREA_BBOX"] = {k: float(bbox[k]) for k in ("lat_min", "lat_max", "lon_min", "lon_max")}
    countries = area.get("country_codes")
    if countries:
        globals_ref["SERVICE_AREA_COUNTRY_CODES"] = [str(c).lower() for c in countries]

    if data.get("user_agent"):
        globals_ref["USER_AGENT"] = str(data["user_agent"])

    timeouts = data.get("timeouts", {})
    if "provider_seconds" in timeouts:
        globals_ref["PROVIDER_TIMEOUT_SECONDS"] = float(timeouts["provider_seconds"])
    if "road_source_seconds" in timeouts:
        globals_ref["ROAD_SOURCE_TIMEOUT_SECONDS"] = float(timeouts["road_source_seconds"])
    if "aggregate_seconds" in timeouts:
        value = timeouts["aggregate_seconds"]
        globals_ref["AGGREGATE_TIMEOUT_SECONDS"] = float(value) if value is not None else None

    tuning = data.get("tuning", {})
    if "proximity_max_distance_km" in tuning:
        globals_ref["PROXIMITY_MAX_DISTANCE_KM"] = float(tuning["proximity_max_distance_km"])
    if "popularity_ceiling" in tuning:
        globals_ref["POPULARITY_CEILING"] = int(tuning["popularity_ceiling"])
    if "local_coverage_threshold" in tuning:
        globals_ref["LOCAL_COVERAGE_THRESHOLD"] = int(tuning["local_coverage_threshold"])
    if "local_search_radius_km" in tuning:
        globals_ref["LOCAL_SEARCH_RADIUS_KM"] = float(tuning["local_search_radius_km"])

    if data.get("cache_db_path"):
        globals_ref["CACHE_DB_PATH"] = str(data["cache_db_path"])

    return True
