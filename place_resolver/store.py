"""SQLite-backed local store for cached places, pickup points and personalization signals."""
from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from . import config
from .errors import LocalStoreError
from .geo import encode_geohash, haversine_km, haversine_m, round_coord
from .models import (
    FrequentLocation,
    LocationHistoryEntry,
    PickupPoint,
    Place,
    SavedPlace,
    utc_now_iso,
)
from .providers import GeocodingProvider

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS locations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        address TEXT NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        geohash TEXT NOT NULL,
        type TEXT,
        search_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_locations_geohash ON locations (geohash)",
    """
    CREATE TABLE IF NOT EXISTS pickup_points (
        id TEXT PRIMARY KEY,
        parent_location_id TEXT NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        geohash TEXT NOT NULL,
        type TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        verified INTEGER NOT NULL DEFAULT 0,
        verified_at TEXT,
        verified_by TEXT,
        verification_count INTEGER NOT NULL DEFAULT 0,
        use_count INTEGER NOT NULL DEFAULT 0,
        last_used_at TEXT,
        accessible INTEGER NOT NULL DEFAULT 1,
        access_notes TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_pickup_parent ON pickup_points (parent_location_id)",
    "CREATE INDEX IF NOT EXISTS idx_pickup_geohash ON pickup_points (geohash)",
    """
    CREATE TABLE IF NOT EXISTS user_saved_places (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        label TEXT NOT NULL,
        name TEXT NOT NULL,
        address TEXT NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        use_count INTEGER NOT NULL DEFAULT 0,
        last_used_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_location_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        location_id TEXT,
        action_type TEXT NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        geohash TEXT NOT NULL,
        location_name TEXT,
        location_address TEXT,
        hour_of_day INTEGER,
        day_of_week INTEGER,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_frequent_locations (
        user_id TEXT NOT NULL,
        geohash TEXT NOT NULL,
        location_id TEXT,
        location_name TEXT,
        location_address TEXT,
        center_lat REAL NOT NULL,
        center_lon REAL NOT NULL,
        visit_count INTEGER NOT NULL DEFAULT 0,
        last_visit TEXT,
        typical_hour INTEGER,
        typical_day INTEGER,
        PRIMARY KEY (user_id, geohash)
    )
    """,
)


class LocalStore(GeocodingProvider):
    """Local place cache; also usable as a geocoding source in its own right."""

    name = "local"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or config.CACHE_DB_PATH
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Cannot open place store {self.db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        with self._guard("init schema"):
            cur = self.conn.cursor()
            for statement in _SCHEMA:
                cur.execute(statement)
            self.conn.commit()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                raise LocalStoreError(f"Place store {operation} failed: {exc}") from exc

    def _write(self, operation: str, sql: str, params: Tuple[Any, ...]) -> int:
        with self._guard(operation):
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur.rowcount

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # --- GeocodingProvider capability ---

    def forward_search(self, query: str, limit: int = config.DEFAULT_RESULT_LIMIT) -> List[Place]:
        return self.search(query, limit)

    def reverse_lookup(self, lat: float, lon: float) -> Optional[Place]:
        return self.find_by_coordinates(lat, lon)

    # --- Places ---

    def search(self, query: str, limit: int = 5) -> List[Place]:
        pattern = f"%{_escape_like(query)}%"
        with self._guard("search"):
            rows = self.conn.execute(
                """
                SELECT * FROM locations
                WHERE name LIKE ? ESCAPE '\\' OR address LIKE ? ESCAPE '\\'
                ORDER BY
                    CASE
                        WHEN lower(name) = lower(?) THEN 0
                        WHEN name LIKE ? ESCAPE '\\' THEN 1
                        ELSE 2
                    END,
                    search_count DESC
                LIMIT ?
                """,
                (pattern, pattern, query, f"{_escape_like(query)}%", int(limit)),
            ).fetchall()
        return [_row_to_place(r) for r in rows]

    def search_with_proximity(
        self,
        query: str,
        lat: float,
        lon: float,
        radius_km: Optional[float] = None,
        limit: int = config.DEFAULT_RESULT_LIMIT,
    ) -> List[Place]:
        if radius_km is None:
            radius_km = config.LOCAL_SEARCH_RADIUS_KM
        pattern = f"%{_escape_like(query)}%"
        bbox = config.compute_bbox(lat, lon, radius_km)
        with self._guard("proximity search"):
            rows = self.conn.execute(
                """
                SELECT * FROM locations
                WHERE (name LIKE ? ESCAPE '\\' OR address LIKE ? ESCAPE '\\')
                  AND latitude BETWEEN ? AND ?
                  AND longitude BETWEEN ? AND ?
                """,
                (pattern, pattern, bbox["lat_min"], bbox["lat_max"], bbox["lon_min"], bbox["lon_max"]),
            ).fetchall()
        candidates: List[Tuple[float, int, Place]] = []
        for row in rows:
            distance = haversine_km(lat, lon, row["latitude"], row["longitude"])
            if distance > radius_km:
                continue
            place = _row_to_place(row, distance_km=distance)
            candidates.append((distance, -place.search_count, place))
        candidates.sort(key=lambda item: (item[0], item[1]))
        return [place for _, _, place in candidates[: int(limit)]]

    def get_location(self, location_id: str) -> Optional[Place]:
        with self._guard("get location"):
            row = self.conn.execute("SELECT * FROM locations WHERE id = ?", (location_id,)).fetchone()
        return _row_to_place(row) if row else None

    def find_by_coordinates(
        self, lat: float, lon: float, precision: int = config.COORD_PRECISION
    ) -> Optional[Place]:
        with self._guard("find by coordinates"):
            row = self.conn.execute(
                """
                SELECT * FROM locations
                WHERE abs(round(latitude, ?) - ?) < 1e-9 AND abs(round(longitude, ?) - ?) < 1e-9
                LIMIT 1
                """,
                (precision, round_coord(lat, precision), precision, round_coord(lon, precision)),
            ).fetchone()
        return _row_to_place(row) if row else None

    def find_by_details(self, name: str, address: str) -> Optional[Place]:
        with self._guard("find by details"):
            row = self.conn.execute(
                "SELECT * FROM locations WHERE name = ? AND address = ? LIMIT 1", (name, address)
            ).fetchone()
        return _row_to_place(row) if row else None

    def create(self, place: Place) -> Place:
        location_id = place.id if place.id and place.source == "local" else uuid.uuid4().hex
        created_at = place.created_at or utc_now_iso()
        self._write(
            "create location",
            """
            INSERT INTO locations (id, name, address, latitude, longitude, geohash, type, search_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                location_id,
                place.name,
                place.address,
                place.latitude,
                place.longitude,
                place.geohash,
                place.type or "general",
                int(place.search_count or 0),
                created_at,
            ),
        )
        return Place(
            id=location_id,
            name=place.name,
            address=place.address,
            latitude=place.latitude,
            longitude=place.longitude,
            type=place.type or "general",
            search_count=int(place.search_count or 0),
            created_at=created_at,
        )

    def cache_reverse_geocode(self, place: Place) -> Place:
        """Insert a provider result unless the coordinate or name+address is already cached."""
        with self._lock:
            existing = self.find_by_coordinates(place.latitude, place.longitude)
            if existing is not None:
                return existing
            existing = self.find_by_details(place.name, place.address)
            if existing is not None:
                return existing
            return self.create(place)

    def increment_search_count(self, location_id: str) -> bool:
        count = self._write(
            "increment search count",
            "UPDATE locations SET search_count = search_count + 1 WHERE id = ?",
            (location_id,),
        )
        return count > 0

    def get_popular(self, limit: int = 5) -> List[Place]:
        with self._guard("popular"):
            rows = self.conn.execute(
                "SELECT * FROM locations ORDER BY search_count DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [_row_to_place(r) for r in rows]

    # --- Pickup points ---

    def create_pickup_point(self, point: PickupPoint) -> PickupPoint:
        point_id = point.id or uuid.uuid4().hex
        now = utc_now_iso()
        created_at = point.created_at or now
        self._write(
            "create pickup point",
            """
            INSERT INTO pickup_points (
                id, parent_location_id, latitude, longitude, geohash, type, name, description,
                verified, verified_at, verified_by, verification_count, use_count, last_used_at,
                accessible, access_notes, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                point_id,
                point.parent_location_id,
                point.latitude,
                point.longitude,
                point.geohash,
                point.type,
                point.name,
                point.description,
                int(point.verified),
                point.verified_at,
                point.verified_by,
                int(point.verification_count),
                int(point.use_count),
                point.last_used_at,
                int(point.accessible),
                point.access_notes,
                created_at,
                now,
            ),
        )
        stored = self.get_pickup_point(point_id)
        if stored is None:
            raise LocalStoreError(f"Pickup point {point_id} vanished after insert")
        return stored

    def get_pickup_point(self, point_id: str) -> Optional[PickupPoint]:
        with self._guard("get pickup point"):
            row = self.conn.execute("SELECT * FROM pickup_points WHERE id = ?", (point_id,)).fetchone()
        return _row_to_pickup(row) if row else None

    def update_pickup_verification(self, point: PickupPoint, expected_count: int) -> bool:
        """Compare-and-set write of the verification fields.

        Only applies when the stored count still equals ``expected_count``,
        so concurrent confirmations never overwrite each other.
        """
        count = self._write(
            "verify pickup point",
            """
            UPDATE pickup_points
            SET verification_count = ?, verified = ?, verified_at = ?, verified_by = ?, updated_at = ?
            WHERE id = ? AND verification_count = ?
            """,
            (
                int(point.verification_count),
                int(point.verified),
                point.verified_at,
                point.verified_by,
                utc_now_iso(),
                point.id,
                int(expected_count),
            ),
        )
        return count > 0

    def record_pickup_use(self, point_id: str, used_at: Optional[str] = None) -> bool:
        count = self._write(
            "record pickup use",
            """
            UPDATE pickup_points
            SET use_count = use_count + 1, last_used_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (used_at or utc_now_iso(), utc_now_iso(), point_id),
        )
        return count > 0

    def get_pickup_points_for_location(self, location_id: str) -> List[PickupPoint]:
        with self._guard("pickup points for location"):
            rows = self.conn.execute(
                """
                SELECT * FROM pickup_points
                WHERE parent_location_id = ?
                ORDER BY verified DESC, use_count DESC, name ASC
                """,
                (location_id,),
            ).fetchall()
        return [_row_to_pickup(r) for r in rows]

    def find_nearby_pickup_points(
        self,
        lat: float,
        lon: float,
        radius_m: float = config.PICKUP_NEARBY_RADIUS_M,
        limit: int = config.PICKUP_NEARBY_LIMIT,
    ) -> List[PickupPoint]:
        # Coarse geohash bucket first, exact distance after.
        prefix = encode_geohash(lat, lon, precision=config.GEOHASH_NEARBY_PRECISION)
        with self._guard("nearby pickup points"):
            rows = self.conn.execute(
                "SELECT * FROM pickup_points WHERE verified = 1 AND geohash LIKE ?",
                (f"{prefix}%",),
            ).fetchall()
        nearby: List[PickupPoint] = []
        for row in rows:
            distance = haversine_m(lat, lon, row["latitude"], row["longitude"])
            if distance <= radius_m:
                nearby.append(_row_to_pickup(row, distance_meters=distance))
        nearby.sort(key=lambda p: p.distance_meters or 0.0)
        return nearby[: int(limit)]

    # --- Personalization signals ---

    def save_place(self, saved: SavedPlace) -> SavedPlace:
        place_id = saved.id or uuid.uuid4().hex
        self._write(
            "save place",
            """
            INSERT INTO user_saved_places (id, user_id, label, name, address, latitude, longitude, use_count, last_used_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                label = excluded.label,
                name = excluded.name,
                address = excluded.address,
                latitude = excluded.latitude,
                longitude = excluded.longitude,
                use_count = excluded.use_count,
                last_used_at = excluded.last_used_at
            """,
            (
                place_id,
                saved.user_id,
                saved.label,
                saved.name,
                saved.address,
                saved.latitude,
                saved.longitude,
                int(saved.use_count),
                saved.last_used_at,
            ),
        )
        return replace(saved, id=place_id)

    def get_saved_places(self, user_id: str) -> List[SavedPlace]:
        with self._guard("saved places"):
            rows = self.conn.execute(
                "SELECT * FROM user_saved_places WHERE user_id = ? ORDER BY use_count DESC",
                (user_id,),
            ).fetchall()
        return [
            SavedPlace(
                id=r["id"],
                user_id=r["user_id"],
                label=r["label"],
                name=r["name"],
                address=r["address"],
                latitude=r["latitude"],
                longitude=r["longitude"],
                use_count=r["use_count"],
                last_used_at=r["last_used_at"],
            )
            for r in rows
        ]

    def track(self, entry: LocationHistoryEntry, now: Optional[datetime] = None) -> None:
        moment = now or datetime.now()
        hour = entry.hour_of_day if entry.hour_of_day is not None else moment.hour
        # Sunday = 0, matching the history table's day_of_week convention.
        day = entry.day_of_week if entry.day_of_week is not None else (moment.weekday() + 1) % 7
        self._write(
            "track history",
            """
            INSERT INTO user_location_history (
                user_id, location_id, action_type, latitude, longitude, geohash,
                location_name, location_address, hour_of_day, day_of_week, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.user_id,
                entry.location_id,
                entry.action_type,
                entry.latitude,
                entry.longitude,
                entry.geohash,
                entry.location_name,
                entry.location_address,
                hour,
                day,
                entry.created_at or utc_now_iso(),
            ),
        )

    def get_recent_history(self, user_id: str, limit: int = 50) -> List[LocationHistoryEntry]:
        with self._guard("recent history"):
            rows = self.conn.execute(
                """
                SELECT * FROM user_location_history
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, int(limit)),
            ).fetchall()
        return [
            LocationHistoryEntry(
                id=r["id"],
                user_id=r["user_id"],
                location_id=r["location_id"],
                action_type=r["action_type"],
                latitude=r["latitude"],
                longitude=r["longitude"],
                location_name=r["location_name"],
                location_address=r["location_address"],
                hour_of_day=r["hour_of_day"],
                day_of_week=r["day_of_week"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def upsert_frequent_location(self, loc: FrequentLocation) -> None:
        """Write hook for the external job that aggregates history into summaries."""
        self._write(
            "upsert frequent location",
            """
            INSERT INTO user_frequent_locations (
                user_id, geohash, location_id, location_name, location_address,
                center_lat, center_lon, visit_count, last_visit, typical_hour, typical_day
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, geohash) DO UPDATE SET
                location_id = excluded.location_id,
                location_name = excluded.location_name,
                location_address = excluded.location_address,
                center_lat = excluded.center_lat,
                center_lon = excluded.center_lon,
                visit_count = excluded.visit_count,
                last_visit = excluded.last_visit,
                typical_hour = excluded.typical_hour,
                typical_day = excluded.typical_day
            """,
            (
                loc.user_id,
                loc.geohash,
                loc.location_id,
                loc.location_name,
                loc.location_address,
                loc.center_lat,
                loc.center_lon,
                int(loc.visit_count),
                loc.last_visit,
                loc.typical_hour,
                loc.typical_day,
            ),
        )

    def get_frequent_locations(self, user_id: str, limit: int = 10) -> List[FrequentLocation]:
        with self._guard("frequent locations"):
            rows = self.conn.execute(
                """
                SELECT * FROM user_frequent_locations
                WHERE user_id = ?
                ORDER BY visit_count DESC, last_visit DESC
                LIMIT ?
                """,
                (user_id, int(limit)),
            ).fetchall()
        return [_row_to_frequent(r) for r in rows]

    def get_locations_for_time(
        self,
        user_id: str,
        hour_of_day: int,
        limit: int = 5,
        window_hours: int = config.SUGGESTION_TIME_WINDOW_HOURS,
    ) -> List[FrequentLocation]:
        with self._guard("locations for time"):
            rows = self.conn.execute(
                """
                SELECT * FROM user_frequent_locations
                WHERE user_id = ? AND typical_hour IS NOT NULL AND abs(typical_hour - ?) <= ?
                ORDER BY visit_count DESC, abs(typical_hour - ?) ASC, last_visit DESC
                LIMIT ?
                """,
                (user_id, int(hour_of_day), int(window_hours), int(hour_of_day), int(limit)),
            ).fetchall()
        return [_row_to_frequent(r) for r in rows]

    def get_frequent_nearby(
        self,
        user_id: str,
        lat: float,
        lon: float,
        radius_km: float = config.SUGGESTION_NEARBY_RADIUS_KM,
        limit: int = 5,
    ) -> List[FrequentLocation]:
        with self._guard("frequent nearby"):
            rows = self.conn.execute(
                "SELECT * FROM user_frequent_locations WHERE user_id = ?", (user_id,)
            ).fetchall()
        nearby: List[FrequentLocation] = []
        for row in rows:
            distance = haversine_km(lat, lon, row["center_lat"], row["center_lon"])
            if distance <= radius_km:
                nearby.append(_row_to_frequent(row, distance_km=distance))
        nearby.sort(key=lambda loc: (-loc.visit_count, loc.distance_km or 0.0))
        return nearby[: int(limit)]

    def detect_home_work_patterns(
        self, user_id: str
    ) -> Tuple[Optional[FrequentLocation], Optional[FrequentLocation]]:
        """Most visited evening/night location and most visited working-hours location."""
        start, end = config.WORK_HOURS
        with self._guard("home/work patterns"):
            home = self.conn.execute(
                """
                SELECT * FROM user_frequent_locations
                WHERE user_id = ? AND (typical_hour > ? OR typical_hour < ?)
                ORDER BY visit_count DESC LIMIT 1
                """,
                (user_id, end, start),
            ).fetchone()
            work = self.conn.execute(
                """
                SELECT * FROM user_frequent_locations
                WHERE user_id = ? AND typical_hour BETWEEN ? AND ?
                ORDER BY visit_count DESC LIMIT 1
                """,
                (user_id, start, end),
            ).fetchone()
        return (
            _row_to_frequent(home) if home else None,
            _row_to_frequent(work) if work else None,
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_place(row: sqlite3.Row, distance_km: Optional[float] = None) -> Place:
    return Place(
        id=row["id"],
        name=row["name"],
        address=row["address"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        type=row["type"] or "general",
        search_count=int(row["search_count"] or 0),
        created_at=row["created_at"],
        distance_km=distance_km,
        source="local",
    )


def _row_to_pickup(row: sqlite3.Row, distance_meters: Optional[float] = None) -> PickupPoint:
    return PickupPoint(
        id=row["id"],
        parent_location_id=row["parent_location_id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        type=row["type"],
        name=row["name"],
        description=row["description"],
        verified=bool(row["verified"]),
        verified_at=row["verified_at"],
        verified_by=row["verified_by"],
        verification_count=int(row["verification_count"] or 0),
        use_count=int(row["use_count"] or 0),
        last_used_at=row["last_used_at"],
        accessible=bool(row["accessible"]),
        access_notes=row["access_notes"],
        created_at=row["created_at"],
        distance_meters=distance_meters,
    )


def _row_to_frequent(row: sqlite3.Row, distance_km: Optional[float] = None) -> FrequentLocation:
    data: Dict[str, Any] = {key: row[key] for key in row.keys()}
    return FrequentLocation(
        user_id=data["user_id"],
        geohash=data["geohash"],
        center_lat=data["center_lat"],
        center_lon=data["center_lon"],
        visit_count=int(data["visit_count"] or 0),
        location_id=data["location_id"],
        location_name=data["location_name"],
        location_address=data["location_address"],
        last_visit=data["last_visit"],
        typical_hour=data["typical_hour"],
        typical_day=data["typical_day"],
        distance_km=distance_km,
    )
