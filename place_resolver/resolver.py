"""Resolution entry points: text search, reverse lookup, validation and pickup points."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from . import config
from .aggregator import aggregate
from .dedup import merge_candidates
from .errors import LocalStoreError
from .geo import is_valid_coordinate
from .http import HttpClient, RequestMetrics
from .models import (
    LocationHistoryEntry,
    LocationSuggestion,
    PickupPoint,
    Place,
    QueryContext,
    RankedPlace,
    ValidationResult,
)
from .pickup import PickupPointService
from .providers import GeocodingProvider, NominatimProvider, PhotonProvider
from .ranking import load_user_preferences, rank_places
from .reverse import ReverseGeocoder
from .road_snap import CoordinateValidator, OverpassRoadSource, RoadSource
from .store import LocalStore
from .suggestions import get_user_suggestions, suggest_home_work_locations

logger = logging.getLogger(__name__)


def default_providers(metrics: Optional[RequestMetrics] = None) -> List[GeocodingProvider]:
    """Photon first (no hard rate limit), then Nominatim; each with its own session."""
    return [
        PhotonProvider(HttpClient(timeout=config.PROVIDER_TIMEOUT_SECONDS), metrics=metrics),
        NominatimProvider(HttpClient(timeout=config.PROVIDER_TIMEOUT_SECONDS), metrics=metrics),
    ]


def _check_location(location: Optional[Tuple[float, float]]) -> Optional[Tuple[float, float]]:
    if location is None:
        return None
    lat, lon = location
    if not is_valid_coordinate(lat, lon):
        raise ValueError(f"Coordinate out of range: ({lat}, {lon})")
    return float(lat), float(lon)


def _check_limit(limit: int) -> int:
    if int(limit) < 1:
        raise ValueError(f"Limit must be at least 1, got {limit}")
    return int(limit)


class LocationResolver:
    def __init__(
        self,
        store: LocalStore,
        providers: Optional[Sequence[GeocodingProvider]] = None,
        road_source: Optional[RoadSource] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.store = store
        self.metrics = metrics or RequestMetrics()
        self.providers = list(providers) if providers is not None else default_providers(self.metrics)
        self.reverse_geocoder = ReverseGeocoder(store, self.providers)
        self.validator = CoordinateValidator(road_source or OverpassRoadSource())
        self.pickups = PickupPointService(store)

    # --- Text search ---

    def resolve_by_text(
        self,
        query: str,
        user_location: Optional[Tuple[float, float]] = None,
        user_id: Optional[str] = None,
        limit: int = config.DEFAULT_RESULT_LIMIT,
        now: Optional[datetime] = None,
    ) -> List[RankedPlace]:
        text = (query or "").strip()
        if len(text) < config.MIN_QUERY_LENGTH:
            raise ValueError(f"Query must be at least {config.MIN_QUERY_LENGTH} characters")
        location = _check_location(user_location)
        limit = _check_limit(limit)
        moment = now or datetime.now()

        result = aggregate(text, self.store, self.providers, user_location=location, limit=limit)
        merged = merge_candidates(result.local, *result.provider_lists())

        context = QueryContext(
            query=text,
            user_location=location,
            user_id=user_id,
            hour_of_day=moment.hour,
            day_of_week=(moment.weekday() + 1) % 7,
        )
        preferences = load_user_preferences(self.store, user_id)
        ranked = rank_places(merged, context, preferences)
        return ranked[:limit]

    # --- Reverse lookup ---

    def resolve_by_coordinate(self, lat: float, lon: float) -> Place:
        return self.reverse_geocoder.resolve(lat, lon)

    # --- Road snapping ---

    def validate_coordinate(self, lat: float, lon: float, category: Optional[str] = None) -> ValidationResult:
        if not is_valid_coordinate(lat, lon):
            raise ValueError(f"Coordinate out of range: ({lat}, {lon})")
        try:
            return self.validator.validate(lat, lon, category)
        except Exception:
            logger.exception("Coordinate validation error for (%s, %s)", lat, lon)
            return ValidationResult(latitude=lat, longitude=lon, adjusted=False, source="original")

    # --- Pickup points ---

    def get_pickup_points(
        self,
        parent_location_id: str,
        user_location: Optional[Tuple[float, float]] = None,
        limit: int = config.PICKUP_DEFAULT_LIMIT,
    ) -> List[PickupPoint]:
        return self.pickups.get_pickup_points(
            parent_location_id, _check_location(user_location), _check_limit(limit)
        )

    def confirm_pickup_point(self, point_id: str) -> Optional[PickupPoint]:
        return self.pickups.confirm(point_id)

    def record_pickup_use(self, point_id: str) -> bool:
        return self.pickups.record_use(point_id)

    # --- Side effects and personalization ---

    def record_selection(self, place_id: str) -> bool:
        """Bump a place's popularity; failures are logged, never raised."""
        try:
            return self.store.increment_search_count(place_id)
        except LocalStoreError as exc:
            logger.warning("Failed to record selection of %s: %s", place_id, exc)
            return False

    def track_action(self, entry: LocationHistoryEntry) -> bool:
        try:
            self.store.track(entry)
        except LocalStoreError as exc:
            logger.warning("Failed to track %s for user %s: %s", entry.action_type, entry.user_id, exc)
            return False
        return True

    def suggestions(
        self,
        user_id: str,
        current_location: Optional[Tuple[float, float]] = None,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[LocationSuggestion]:
        moment = now or datetime.now()
        return get_user_suggestions(
            self.store, user_id, current_hour=moment.hour, current_location=current_location, limit=limit
        )

    def home_work_suggestions(
        self, user_id: str
    ) -> Tuple[Optional[LocationSuggestion], Optional[LocationSuggestion]]:
        return suggest_home_work_locations(self.store, user_id)
