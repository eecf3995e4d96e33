"""Road-snapping coordinate validator.

Pins dropped on a building centroid are moved to the nearest road node within
a category-specific distance so drivers get a reachable pickup spot. The road
source is an Overpass endpoint; if it is down the validator fails open.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple

import requests

from . import config
from .errors import RoadSourceError
from .geo import haversine_m
from .http import HttpClient
from .models import ValidationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoadNode:
    lat: float
    lon: float


class RoadSource(Protocol):
    def nearby_road_nodes(self, lat: float, lon: float, radius_m: float) -> List[RoadNode]:
        ...


def get_validation_rules(category: Optional[str]) -> config.SnapRule:
    normalized = (category or "general").strip().lower().replace("-", "_").replace(" ", "_")
    return config.SNAP_RULES.get(normalized, config.SNAP_RULES["general"])


def build_highway_query(lat: float, lon: float, radius_m: float) -> str:
    timeout = int(config.ROAD_SOURCE_TIMEOUT_SECONDS)
    return (
        f"[out:json][timeout:{timeout}];\n"
        f'(way["highway"](around:{radius_m:g},{lat},{lon}););\n'
        "out geom;"
    )


def parse_road_nodes(data: Any) -> List[RoadNode]:
    if not isinstance(data, dict):
        raise RoadSourceError("Overpass payload is not an object")
    nodes: List[RoadNode] = []
    for element in data.get("elements") or []:
        if element.get("type") != "way":
            continue
        for node in element.get("geometry") or []:
            if node.get("lat") is None or node.get("lon") is None:
                continue
            nodes.append(RoadNode(lat=float(node["lat"]), lon=float(node["lon"])))
    return nodes


class OverpassRoadSource:
    def __init__(self, http_client: Optional[HttpClient] = None, base_url: str = config.OVERPASS_BASE_URL) -> None:
        self.http = http_client or HttpClient(timeout=config.ROAD_SOURCE_TIMEOUT_SECONDS)
        self.base_url = base_url

    def nearby_road_nodes(self, lat: float, lon: float, radius_m: float) -> List[RoadNode]:
        query = build_highway_query(lat, lon, radius_m)
        try:
            data = self.http.post_form(
                self.base_url, {"data": query}, timeout=config.ROAD_SOURCE_TIMEOUT_SECONDS
            )
        except (requests.RequestException, ValueError) as exc:
            raise RoadSourceError(f"Overpass query failed: {exc}") from exc
        try:
            return parse_road_nodes(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise RoadSourceError(f"Malformed Overpass payload: {exc}") from exc


class CoordinateValidator:
    def __init__(self, road_source: RoadSource, on_road_radius_m: float = config.ON_ROAD_RADIUS_M) -> None:
        self.road_source = road_source
        self.on_road_radius_m = on_road_radius_m

    def is_on_road(self, lat: float, lon: float) -> bool:
        # Fail open: an unreachable road source counts as on-road.
        try:
            return bool(self.road_source.nearby_road_nodes(lat, lon, self.on_road_radius_m))
        except RoadSourceError as exc:
            logger.warning("Road check failed for (%s, %s): %s", lat, lon, exc)
            return True

    def nearest_road(self, lat: float, lon: float, max_distance_m: float) -> Optional[Tuple[RoadNode, float]]:
        try:
            nodes = self.road_source.nearby_road_nodes(lat, lon, max_distance_m)
        except RoadSourceError as exc:
            logger.warning("Nearest road lookup failed for (%s, %s): %s", lat, lon, exc)
            return None
        best: Optional[Tuple[RoadNode, float]] = None
        for node in nodes:
            distance = haversine_m(lat, lon, node.lat, node.lon)
            if distance > max_distance_m:
                continue
            if best is None or distance < best[1]:
                best = (node, distance)
        return best

    def validate(self, lat: float, lon: float, category: Optional[str] = None) -> ValidationResult:
        original = ValidationResult(latitude=lat, longitude=lon, adjusted=False, source="original")
        rules = get_validation_rules(category)
        if self.is_on_road(lat, lon):
            return original

        nearest = self.nearest_road(lat, lon, rules.max_snap_distance_m)
        if nearest is None:
            return original

        node, distance = nearest
        logger.info(
            "Snapped %s from (%s, %s) to (%s, %s) - %.1fm",
            category or "location",
            lat,
            lon,
            node.lat,
            node.lon,
            distance,
        )
        return ValidationResult(
            latitude=node.lat,
            longitude=node.lon,
            adjusted=True,
            distance_meters=distance,
            source="road_snapped",
        )
