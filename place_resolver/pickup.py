"""Crowd-verified pickup points (entrances, gates, platforms) attached to a place."""
from __future__ import annotations

import enum
import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from . import config
from .errors import LocalStoreError, PickupPointNotFoundError
from .geo import haversine_m
from .models import PickupPoint, utc_now_iso

logger = logging.getLogger(__name__)

MAX_CONFIRM_ATTEMPTS = 5


class VerificationState(enum.Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


def verification_state(point: PickupPoint) -> VerificationState:
    return VerificationState.VERIFIED if point.verified else VerificationState.UNVERIFIED


def apply_confirmation(
    point: PickupPoint,
    now: str,
    verified_by: str = "user",
    threshold: int = config.PICKUP_VERIFICATION_THRESHOLD,
) -> PickupPoint:
    """Return ``point`` after one more independent confirmation.

    UNVERIFIED -> VERIFIED happens once, when the count first reaches
    ``threshold``; that is the only moment verified_at/verified_by are set.
    VERIFIED only counts further confirmations.
    """
    count = point.verification_count + 1
    state = verification_state(point)
    if state is VerificationState.UNVERIFIED and count >= threshold:
        return replace(
            point,
            verification_count=count,
            verified=True,
            verified_at=now,
            verified_by=verified_by,
        )
    return replace(point, verification_count=count)


def apply_use(point: PickupPoint, now: str) -> PickupPoint:
    return replace(point, use_count=point.use_count + 1, last_used_at=now)


def order_pickup_points(
    points: List[PickupPoint], user_location: Optional[Tuple[float, float]] = None
) -> List[PickupPoint]:
    """Verified first; then nearest to the user, or most used when no location is known."""
    if user_location is None:
        return sorted(points, key=lambda p: (not p.verified, -p.use_count, p.name))
    lat, lon = user_location
    with_distance = [
        replace(p, distance_meters=haversine_m(lat, lon, p.latitude, p.longitude)) for p in points
    ]
    return sorted(with_distance, key=lambda p: (not p.verified, p.distance_meters, -p.use_count))


class PickupPointService:
    def __init__(self, store) -> None:
        self.store = store

    def suggest(
        self,
        parent_location_id: str,
        latitude: float,
        longitude: float,
        point_type: str,
        name: str,
        description: Optional[str] = None,
        accessible: bool = True,
        access_notes: Optional[str] = None,
    ) -> PickupPoint:
        point = PickupPoint(
            id="",
            parent_location_id=parent_location_id,
            latitude=latitude,
            longitude=longitude,
            type=point_type,
            name=name,
            description=description,
            accessible=accessible,
            access_notes=access_notes,
        )
        return self.store.create_pickup_point(point)

    def confirm(self, point_id: str, verified_by: str = "user") -> Optional[PickupPoint]:
        """Record one confirmation; store failures are logged and return None."""
        try:
            for _ in range(MAX_CONFIRM_ATTEMPTS):
                current = self.store.get_pickup_point(point_id)
                if current is None:
                    raise PickupPointNotFoundError(f"Unknown pickup point: {point_id}")
                updated = apply_confirmation(current, utc_now_iso(), verified_by=verified_by)
                if self.store.update_pickup_verification(updated, expected_count=current.verification_count):
                    if updated.verified and not current.verified:
                        logger.info("Pickup point %s verified after %s confirmations", point_id, updated.verification_count)
                    return updated
                logger.debug("Concurrent confirmation on %s; retrying", point_id)
            logger.warning("Gave up confirming pickup point %s after %s attempts", point_id, MAX_CONFIRM_ATTEMPTS)
            return None
        except LocalStoreError as exc:
            logger.warning("Failed to confirm pickup point %s: %s", point_id, exc)
            return None

    def record_use(self, point_id: str) -> bool:
        try:
            recorded = self.store.record_pickup_use(point_id, utc_now_iso())
        except LocalStoreError as exc:
            logger.warning("Failed to record use of pickup point %s: %s", point_id, exc)
            return False
        if not recorded:
            raise PickupPointNotFoundError(f"Unknown pickup point: {point_id}")
        return True

    def get_pickup_points(
        self,
        parent_location_id: str,
        user_location: Optional[Tuple[float, float]] = None,
        limit: int = config.PICKUP_DEFAULT_LIMIT,
    ) -> List[PickupPoint]:
        points = self.store.get_pickup_points_for_location(parent_location_id)
        ordered = order_pickup_points(points, user_location)
        return ordered[:limit] if limit > 0 else ordered

    def find_nearby(
        self,
        lat: float,
        lon: float,
        radius_m: float = config.PICKUP_NEARBY_RADIUS_M,
    ) -> List[PickupPoint]:
        return self.store.find_nearby_pickup_points(lat, lon, radius_m=radius_m)
