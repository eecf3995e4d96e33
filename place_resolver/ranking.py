"""Composite ranking: text relevance, proximity, popularity and personalization."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from . import config
from .errors import LocalStoreError
from .geo import haversine_km
from .models import Place, QueryContext, RankedPlace

logger = logging.getLogger(__name__)

WEIGHTS = {
    "text": config.SCORE_WEIGHT_TEXT,
    "proximity": config.SCORE_WEIGHT_PROXIMITY,
    "popularity": config.SCORE_WEIGHT_POPULARITY,
    "personalization": config.SCORE_WEIGHT_PERSONALIZATION,
}

if not math.isclose(math.fsum(WEIGHTS.values()), 1.0):
    raise RuntimeError("Ranking weights must sum to 1.0")


@dataclass(frozen=True)
class UserPreferences:
    saved_ids: FrozenSet[str] = field(default_factory=frozenset)
    frequent_ids: FrozenSet[str] = field(default_factory=frozenset)


NO_PREFERENCES = UserPreferences()


def text_score(place: Place, query: str) -> float:
    if place.text_similarity is not None:
        return place.text_similarity

    name = place.name.lower()
    q = query.strip().lower()
    if name == q:
        return 1.0
    if name.startswith(q):
        return 0.8
    if q in name:
        return 0.6
    if any(word.startswith(q) for word in name.split()):
        return 0.5
    return 0.3


def proximity_score(distance_km: Optional[float], max_distance_km: Optional[float] = None) -> float:
    if distance_km is None:
        return config.PROXIMITY_NEUTRAL_SCORE
    window = config.PROXIMITY_MAX_DISTANCE_KM if max_distance_km is None else max_distance_km
    if distance_km >= window:
        return 0.0
    return max(0.0, 1.0 - distance_km / window)


def popularity_score(search_count: int, ceiling: Optional[int] = None) -> float:
    if search_count is None or search_count <= 0:
        return 0.0
    top = config.POPULARITY_CEILING if ceiling is None else ceiling
    normalized = math.log10(search_count + 1) / math.log10(top)
    return min(normalized, 1.0)


def personalization_score(place_id: str, preferences: UserPreferences) -> float:
    if place_id in preferences.saved_ids:
        return 1.0
    if place_id in preferences.frequent_ids:
        return 0.6
    return 0.0


def composite_score(text: float, proximity: float, popularity: float, personalization: float) -> float:
    score = (
        WEIGHTS["text"] * text
        + WEIGHTS["proximity"] * proximity
        + WEIGHTS["popularity"] * popularity
        + WEIGHTS["personalization"] * personalization
    )
    return min(1.0, max(0.0, score))


def load_user_preferences(store, user_id: Optional[str]) -> UserPreferences:
    """Saved place ids plus ids the user has used more than a few times.

    Lookup failures are logged and yield no personalization.
    """
    if not user_id:
        return NO_PREFERENCES
    try:
        saved = store.get_saved_places(user_id)
        frequent_locations = store.get_frequent_locations(user_id)
    except LocalStoreError as exc:
        logger.warning("Personalization lookup failed for user %s: %s", user_id, exc)
        return NO_PREFERENCES

    threshold = config.FREQUENT_PLACE_MIN_USES
    frequent = {p.id for p in saved if p.use_count > threshold}
    frequent.update(
        loc.location_id
        for loc in frequent_locations
        if loc.location_id and loc.visit_count > threshold
    )
    return UserPreferences(saved_ids=frozenset(p.id for p in saved), frequent_ids=frozenset(frequent))


def attach_distances(places: Iterable[Place], user_location: Tuple[float, float]) -> List[Place]:
    lat, lon = user_location
    out: List[Place] = []
    for place in places:
        if place.distance_km is None:
            place = replace(place, distance_km=haversine_km(lat, lon, place.latitude, place.longitude))
        out.append(place)
    return out


def score_place(place: Place, context: QueryContext, preferences: UserPreferences) -> RankedPlace:
    text = text_score(place, context.query)
    proximity = proximity_score(place.distance_km if context.user_location else None)
    popularity = popularity_score(place.search_count)
    personalization = personalization_score(place.id, preferences) if context.user_id else 0.0
    return RankedPlace(
        place=place,
        text_score=text,
        proximity_score=proximity,
        popularity_score=popularity,
        personalization_score=personalization,
        composite_score=composite_score(text, proximity, popularity, personalization),
    )


def rank_places(
    candidates: Sequence[Place],
    context: QueryContext,
    preferences: UserPreferences = NO_PREFERENCES,
) -> List[RankedPlace]:
    places: Sequence[Place] = candidates
    if context.user_location is not None:
        places = attach_distances(candidates, context.user_location)
    scored = [score_place(place, context, preferences) for place in places]
    # sorted() is stable: equal scores keep merge order.
    return sorted(scored, key=lambda r: -r.composite_score)


def boost_user_places(results: Sequence[RankedPlace], saved_ids: Iterable[str]) -> List[RankedPlace]:
    saved = set(saved_ids)
    users = [r for r in results if r.id in saved]
    others = [r for r in results if r.id not in saved]
    return users + others
