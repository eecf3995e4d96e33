"""Personalized place suggestions from saved places and visit patterns."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from . import config
from .errors import LocalStoreError
from .models import FrequentLocation, LocationSuggestion

logger = logging.getLogger(__name__)


def is_work_hour(hour: int) -> bool:
    start, end = config.WORK_HOURS
    return start <= hour <= end


def time_based_reason(current_hour: int, typical_hour: Optional[int]) -> str:
    if typical_hour is None:
        return "Frequently visited"
    if abs(current_hour - typical_hour) <= 1:
        return "Usually visit around this time"
    if current_hour < 12:
        return "Often visit in the morning"
    if current_hour < 17:
        return "Often visit in the afternoon"
    return "Often visit in the evening"


def home_work_confidence(loc: FrequentLocation) -> float:
    if loc.visit_count >= 20:
        return 0.9
    if loc.visit_count >= 10:
        return 0.8
    if loc.visit_count >= 5:
        return 0.7
    return 0.6


def _from_frequent(
    loc: FrequentLocation,
    reason: str,
    confidence: float,
    source: str,
    default_name: str = "Frequent location",
) -> LocationSuggestion:
    return LocationSuggestion(
        id=loc.key,
        name=loc.location_name or default_name,
        address=loc.location_address or f"{loc.center_lat}, {loc.center_lon}",
        latitude=loc.center_lat,
        longitude=loc.center_lon,
        reason=reason,
        confidence=confidence,
        source=source,
        distance_km=loc.distance_km,
    )


def get_user_suggestions(
    store,
    user_id: str,
    current_hour: Optional[int] = None,
    current_location: Optional[Tuple[float, float]] = None,
    limit: int = 5,
) -> List[LocationSuggestion]:
    """Saved home/work by time of day, used favorites, then visit patterns."""
    hour = datetime.now().hour if current_hour is None else current_hour
    suggestions: List[LocationSuggestion] = []
    seen = set()

    def add(suggestion: LocationSuggestion) -> None:
        if len(suggestions) >= limit or suggestion.id in seen:
            return
        seen.add(suggestion.id)
        suggestions.append(suggestion)

    try:
        saved = store.get_saved_places(user_id)
        label = "work" if is_work_hour(hour) else "home"
        anchor = next((p for p in saved if p.label == label), None)
        if anchor is not None:
            add(
                LocationSuggestion(
                    id=anchor.id,
                    name=anchor.name,
                    address=anchor.address,
                    latitude=anchor.latitude,
                    longitude=anchor.longitude,
                    reason=f"Your {label} location",
                    confidence=0.95,
                    source="saved",
                )
            )

        favorites = sorted(
            (p for p in saved if p.label == "favorite" and p.use_count > 0),
            key=lambda p: p.use_count,
            reverse=True,
        )[:2]
        for fav in favorites:
            add(
                LocationSuggestion(
                    id=fav.id,
                    name=fav.name,
                    address=fav.address,
                    latitude=fav.latitude,
                    longitude=fav.longitude,
                    reason=f"Visited {fav.use_count} times",
                    confidence=0.8,
                    source="saved",
                )
            )

        if len(suggestions) < limit:
            for loc in store.get_locations_for_time(user_id, hour, limit=limit - len(suggestions)):
                add(_from_frequent(loc, time_based_reason(hour, loc.typical_hour), 0.7, "time_pattern"))

        if len(suggestions) < limit and current_location is not None:
            lat, lon = current_location
            nearby = store.get_frequent_nearby(
                user_id, lat, lon, radius_km=config.SUGGESTION_NEARBY_RADIUS_KM, limit=limit - len(suggestions)
            )
            for loc in nearby:
                add(_from_frequent(loc, "Nearby place you visit often", 0.65, "nearby"))

        if len(suggestions) < limit:
            for loc in store.get_frequent_locations(user_id, limit=limit - len(suggestions)):
                add(_from_frequent(loc, f"You've been here {loc.visit_count} times", 0.6, "frequent"))
    except LocalStoreError as exc:
        logger.warning("Failed to build suggestions for user %s: %s", user_id, exc)
        return []

    return suggestions[:limit]


def suggest_home_work_locations(
    store, user_id: str
) -> Tuple[Optional[LocationSuggestion], Optional[LocationSuggestion]]:
    """Propose home/work from visit patterns when the user has not saved them."""
    try:
        saved = store.get_saved_places(user_id)
        has_home = any(p.label == "home" for p in saved)
        has_work = any(p.label == "work" for p in saved)
        if has_home and has_work:
            return None, None
        likely_home, likely_work = store.detect_home_work_patterns(user_id)
    except LocalStoreError as exc:
        logger.warning("Failed to detect home/work for user %s: %s", user_id, exc)
        return None, None

    home = None
    if not has_home and likely_home is not None:
        home = _from_frequent(
            likely_home,
            f"You visit here often in the evening ({likely_home.visit_count} times)",
            home_work_confidence(likely_home),
            "time_pattern",
            default_name="Detected home location",
        )
    work = None
    if not has_work and likely_work is not None:
        work = _from_frequent(
            likely_work,
            f"You visit here often during work hours ({likely_work.visit_count} times)",
            home_work_confidence(likely_work),
            "time_pattern",
            default_name="Detected work location",
        )
    return home, work
