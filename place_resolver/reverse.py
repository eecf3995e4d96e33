"""Cache-first reverse geocoding with provider fallback.

States and transitions for a single lookup::

    CACHE_LOOKUP --hit--> DONE
    CACHE_LOOKUP --miss--> PROVIDER(0) --ok--> CACHE_WRITE --> DONE
    PROVIDER(i) --fail--> PROVIDER(i+1) ... --fail--> FALLBACK --> DONE

The pipeline never raises for a valid coordinate: unexpected errors produce
an ``error_fallback`` pin.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from . import config
from .errors import LocalStoreError
from .geo import is_valid_coordinate
from .models import Place
from .providers import GeocodingProvider

logger = logging.getLogger(__name__)

FALLBACK_NAME = "Selected Location"
FALLBACK_TYPE = "pin_drop"


class ReverseState(enum.Enum):
    CACHE_LOOKUP = "cache_lookup"
    PROVIDER = "provider"
    CACHE_WRITE = "cache_write"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass
class ReverseRun:
    latitude: float
    longitude: float
    state: ReverseState = ReverseState.CACHE_LOOKUP
    provider_index: int = 0
    result: Optional[Place] = None


def fallback_pin(lat: float, lon: float, source: str = "fallback") -> Place:
    precision = config.COORD_PRECISION
    display = config.DISPLAY_COORD_PRECISION
    if source == "fallback":
        pin_id = f"coord_{lat:.{precision}f}_{lon:.{precision}f}"
    else:
        pin_id = f"error_{int(time.time() * 1000)}"
    return Place(
        id=pin_id,
        name=FALLBACK_NAME,
        address=f"{lat:.{display}f}, {lon:.{display}f}",
        latitude=lat,
        longitude=lon,
        type=FALLBACK_TYPE,
        source=source,
    )


class ReverseGeocoder:
    def __init__(self, store, providers: Sequence[GeocodingProvider], write_cache: bool = True) -> None:
        self.store = store
        self.providers = list(providers)
        self.write_cache = write_cache

    def resolve(self, lat: float, lon: float) -> Place:
        if not is_valid_coordinate(lat, lon):
            raise ValueError(f"Coordinate out of range: ({lat}, {lon})")
        run = ReverseRun(latitude=float(lat), longitude=float(lon))
        try:
            while run.state is not ReverseState.DONE:
                self.step(run)
        except Exception:
            logger.exception("Reverse geocode failed for (%s, %s)", lat, lon)
            return fallback_pin(run.latitude, run.longitude, source="error_fallback")
        assert run.result is not None
        return run.result

    def step(self, run: ReverseRun) -> None:
        """Advance ``run`` by exactly one transition."""
        if run.state is ReverseState.CACHE_LOOKUP:
            cached = self.store.find_by_coordinates(run.latitude, run.longitude)
            if cached is not None:
                run.result = replace(cached, source="cache")
                run.state = ReverseState.DONE
            else:
                run.state = ReverseState.PROVIDER if self.providers else ReverseState.FALLBACK

        elif run.state is ReverseState.PROVIDER:
            provider = self.providers[run.provider_index]
            found = provider.reverse_lookup(run.latitude, run.longitude)
            if found is not None:
                run.result = replace(found, source=provider.name)
                run.state = ReverseState.CACHE_WRITE
            elif run.provider_index + 1 < len(self.providers):
                run.provider_index += 1
            else:
                run.state = ReverseState.FALLBACK

        elif run.state is ReverseState.CACHE_WRITE:
            if self.write_cache and run.result is not None:
                self._cache(run.result)
            run.state = ReverseState.DONE

        elif run.state is ReverseState.FALLBACK:
            logger.warning("All reverse geocoders failed for (%s, %s)", run.latitude, run.longitude)
            run.result = fallback_pin(run.latitude, run.longitude)
            run.state = ReverseState.DONE

    def _cache(self, place: Place) -> None:
        try:
            self.store.cache_reverse_geocode(place)
        except LocalStoreError as exc:
            logger.warning("Failed to cache reverse geocode result %s: %s", place.id, exc)
