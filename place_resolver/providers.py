"""External geocoder adapters (Photon and Nominatim) behind one contract.

Every adapter returns normalized ``Place`` records. Failures of any kind
(timeout, non-2xx response, malformed payload) are logged and turned into an
empty contribution; callers never see provider exceptions.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from . import config
from .errors import ProviderError
from .http import HttpClient, RequestMetrics
from .models import Place, utc_now_iso

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown Location"


class GeocodingProvider:
    """Capability shared by the local store and each external geocoder."""

    name = "provider"

    def forward_search(self, query: str, limit: int = config.DEFAULT_RESULT_LIMIT) -> List[Place]:
        raise NotImplementedError

    def reverse_lookup(self, lat: float, lon: float) -> Optional[Place]:
        raise NotImplementedError


class HttpGeocodingProvider(GeocodingProvider):
    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        base_url: str = "",
        timeout: Optional[float] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client or HttpClient(timeout=config.PROVIDER_TIMEOUT_SECONDS)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.PROVIDER_TIMEOUT_SECONDS
        self.metrics = metrics

    def forward_search(self, query: str, limit: int = config.DEFAULT_RESULT_LIMIT) -> List[Place]:
        try:
            if self.metrics is not None:
                self.metrics.inc_network(self.name)
            return self._forward(query, limit)
        except Exception as exc:
            self._record_failure("forward search", exc)
            return []

    def reverse_lookup(self, lat: float, lon: float) -> Optional[Place]:
        try:
            if self.metrics is not None:
                self.metrics.inc_network(self.name)
            return self._reverse(lat, lon)
        except Exception as exc:
            self._record_failure("reverse lookup", exc)
            return None

    def _record_failure(self, what: str, exc: Exception) -> None:
        if self.metrics is not None:
            self.metrics.inc_failure(self.name)
        logger.warning("%s %s failed: %s", self.name, what, exc)

    def _forward(self, query: str, limit: int) -> List[Place]:
        raise NotImplementedError

    def _reverse(self, lat: float, lon: float) -> Optional[Place]:
        raise NotImplementedError


class PhotonProvider(HttpGeocodingProvider):
    name = "photon"

    def __init__(self, http_client: Optional[HttpClient] = None, **kwargs: Any) -> None:
        kwargs.setdefault("base_url", config.PHOTON_BASE_URL)
        super().__init__(http_client, **kwargs)

    def _forward(self, query: str, limit: int) -> List[Place]:
        params = build_photon_search_params(query, min(limit, config.PHOTON_SEARCH_LIMIT))
        data = self.http.get_json(f"{self.base_url}/api/", params=params, timeout=self.timeout)
        return parse_photon_features(data, reverse=False)

    def _reverse(self, lat: float, lon: float) -> Optional[Place]:
        params = {"lat": str(lat), "lon": str(lon), "limit": "1", "lang": config.PROVIDER_LANGUAGE}
        data = self.http.get_json(f"{self.base_url}/reverse", params=params, timeout=self.timeout)
        places = parse_photon_features(data, reverse=True)
        return places[0] if places else None


class NominatimProvider(HttpGeocodingProvider):
    name = "nominatim"

    def __init__(self, http_client: Optional[HttpClient] = None, **kwargs: Any) -> None:
        kwargs.setdefault("base_url", config.NOMINATIM_BASE_URL)
        super().__init__(http_client, **kwargs)

    def _forward(self, query: str, limit: int) -> List[Place]:
        params = build_nominatim_search_params(query, min(limit, config.NOMINATIM_SEARCH_LIMIT))
        data = self.http.get_json(f"{self.base_url}/search", params=params, timeout=self.timeout)
        if not isinstance(data, list):
            raise ProviderError("Nominatim search payload is not a list")
        return [parse_nominatim_place(p, source=self.name) for p in data]

    def _reverse(self, lat: float, lon: float) -> Optional[Place]:
        params = {"lat": str(lat), "lon": str(lon), "format": "json", "addressdetails": "1"}
        data = self.http.get_json(f"{self.base_url}/reverse", params=params, timeout=self.timeout)
        if not isinstance(data, dict) or not data.get("display_name"):
            return None
        return parse_nominatim_place(data, source=self.name)


def build_photon_search_params(query: str, limit: int) -> Dict[str, str]:
    center = config.SERVICE_AREA_CENTER
    return {
        "q": query,
        "limit": str(limit),
        "lat": str(center["lat"]),
        "lon": str(center["lon"]),
        "lang": config.PROVIDER_LANGUAGE,
    }


def build_nominatim_search_params(query: str, limit: int) -> Dict[str, str]:
    return {
        "q": query,
        "format": "json",
        "addressdetails": "1",
        "limit": str(limit),
        "countrycodes": ",".join(config.SERVICE_AREA_COUNTRY_CODES),
        "viewbox": config.nominatim_viewbox(),
        "bounded": "0",
    }


# Adapters/mappers for provider response fields

def parse_photon_features(data: Any, reverse: bool = False) -> List[Place]:
    if not isinstance(data, dict):
        raise ProviderError("Photon payload is not an object")
    features = data.get("features") or []
    parsed: List[Place] = []
    now = utc_now_iso()
    for index, feature in enumerate(features):
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") or {}
        coords = (feature.get("geometry") or {}).get("coordinates")
        if not coords or len(coords) < 2:
            continue
        # GeoJSON order is [lon, lat]
        lon, lat = float(coords[0]), float(coords[1])
        name = (
            props.get("name")
            or props.get("street")
            or (props.get("district") if reverse else None)
            or props.get("city")
            or UNKNOWN_LOCATION
        )
        address = photon_address(props) or name
        osm_id = props.get("osm_id") or int(time.time() * 1000)
        place_id = f"photon_{osm_id}" if reverse else f"photon_{osm_id}_{index}"
        parsed.append(
            Place(
                id=place_id,
                name=name,
                address=address,
                latitude=lat,
                longitude=lon,
                type=props.get("type") or props.get("osm_type") or "general",
                search_count=0,
                created_at=now,
                source="photon",
            )
        )
    return parsed


def photon_address(props: Dict[str, Any]) -> str:
    street = props.get("street")
    housenumber = props.get("housenumber")
    if street and housenumber:
        street = f"{housenumber} {street}"
    parts = [
        street,
        props.get("district") or props.get("locality"),
        props.get("city"),
        props.get("country"),
    ]
    return ", ".join(p for p in parts if p)


def parse_nominatim_place(place: Dict[str, Any], source: str = "nominatim") -> Place:
    display_name = place.get("display_name")
    if not display_name:
        raise ProviderError("Nominatim place without display_name")
    return Place(
        id=f"nominatim_{place.get('place_id')}",
        name=nominatim_short_name(place),
        address=display_name,
        latitude=float(place["lat"]),
        longitude=float(place["lon"]),
        type=place.get("type") or "general",
        search_count=0,
        created_at=utc_now_iso(),
        source=source,
    )


def nominatim_short_name(place: Dict[str, Any]) -> str:
    first_part = str(place.get("display_name") or "").split(",")[0].strip()
    address = place.get("address") or {}
    if address:
        building = address.get("building")
        if building and building != first_part:
            return building
        for key in ("amenity", "shop", "tourism", "office"):
            if address.get(key):
                return address[key]
        road = address.get("road")
        if road:
            area = address.get("suburb") or address.get("city") or address.get("municipality")
            if area and area != road:
                return f"{road}, {area}"
            return road
        for key in ("suburb", "city", "municipality"):
            if address.get(key):
                return address[key]
    return first_part
