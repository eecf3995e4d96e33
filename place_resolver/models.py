"""Domain records shared by the store, providers and ranking."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .geo import encode_geohash, is_valid_coordinate

PICKUP_POINT_TYPES = ("entrance", "gate", "parking", "platform", "terminal", "main", "side")
SAVED_PLACE_LABELS = ("home", "work", "favorite")
HISTORY_ACTIONS = ("search", "select", "favorite", "navigate")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _check_coordinate(lat: float, lon: float) -> None:
    if not is_valid_coordinate(lat, lon):
        raise ValueError(f"Coordinate out of range: ({lat}, {lon})")


@dataclass(frozen=True)
class Place:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    type: str = "general"
    search_count: int = 0
    created_at: Optional[str] = None
    distance_km: Optional[float] = None
    text_similarity: Optional[float] = None
    source: str = "local"

    def __post_init__(self) -> None:
        _check_coordinate(self.latitude, self.longitude)

    @property
    def geohash(self) -> str:
        return encode_geohash(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        row["geohash"] = self.geohash
        if row["distance_km"] is None:
            del row["distance_km"]
        if row["text_similarity"] is None:
            del row["text_similarity"]
        return row


@dataclass(frozen=True)
class RankedPlace:
    place: Place
    text_score: float
    proximity_score: float
    popularity_score: float
    personalization_score: float
    composite_score: float

    @property
    def id(self) -> str:
        return self.place.id

    def to_dict(self) -> Dict[str, Any]:
        row = self.place.to_dict()
        row.update(
            {
                "text_score": self.text_score,
                "proximity_score": self.proximity_score,
                "popularity_score": self.popularity_score,
                "user_score": self.personalization_score,
                "final_score": self.composite_score,
            }
        )
        return row


@dataclass(frozen=True)
class PickupPoint:
    id: str
    parent_location_id: str
    latitude: float
    longitude: float
    type: str
    name: str
    description: Optional[str] = None
    verified: bool = False
    verified_at: Optional[str] = None
    verified_by: Optional[str] = None
    verification_count: int = 0
    use_count: int = 0
    last_used_at: Optional[str] = None
    accessible: bool = True
    access_notes: Optional[str] = None
    created_at: Optional[str] = None
    distance_meters: Optional[float] = None

    def __post_init__(self) -> None:
        _check_coordinate(self.latitude, self.longitude)
        if self.type not in PICKUP_POINT_TYPES:
            raise ValueError(f"Unknown pickup point type: {self.type}")

    @property
    def geohash(self) -> str:
        return encode_geohash(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        row["geohash"] = self.geohash
        if self.distance_meters is not None:
            row["distance_km"] = round(self.distance_meters / 1000.0, 2)
        return row


@dataclass(frozen=True)
class SavedPlace:
    id: str
    user_id: str
    label: str
    name: str
    address: str
    latitude: float
    longitude: float
    use_count: int = 0
    last_used_at: Optional[str] = None


@dataclass(frozen=True)
class LocationHistoryEntry:
    user_id: str
    action_type: str
    latitude: float
    longitude: float
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    hour_of_day: Optional[int] = None
    day_of_week: Optional[int] = None
    created_at: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        _check_coordinate(self.latitude, self.longitude)
        if self.action_type not in HISTORY_ACTIONS:
            raise ValueError(f"Unknown action type: {self.action_type}")

    @property
    def geohash(self) -> str:
        return encode_geohash(self.latitude, self.longitude)


@dataclass(frozen=True)
class FrequentLocation:
    user_id: str
    geohash: str
    center_lat: float
    center_lon: float
    visit_count: int
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    last_visit: Optional[str] = None
    typical_hour: Optional[int] = None
    typical_day: Optional[int] = None
    distance_km: Optional[float] = None

    @property
    def key(self) -> str:
        return self.location_id or self.geohash


@dataclass(frozen=True)
class QueryContext:
    query: str
    user_location: Optional[Tuple[float, float]] = None
    user_id: Optional[str] = None
    hour_of_day: Optional[int] = None
    day_of_week: Optional[int] = None


@dataclass(frozen=True)
class ValidationResult:
    latitude: float
    longitude: float
    adjusted: bool
    source: str
    distance_meters: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        if row["distance_meters"] is None:
            del row["distance_meters"]
        return row


@dataclass(frozen=True)
class LocationSuggestion:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    reason: str
    confidence: float
    source: str
    distance_km: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        if row["distance_km"] is None:
            del row["distance_km"]
        return row
