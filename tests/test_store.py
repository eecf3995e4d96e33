from dataclasses import replace
from datetime import datetime

import pytest

from place_resolver.errors import LocalStoreError
from place_resolver.models import FrequentLocation, LocationHistoryEntry, PickupPoint, Place, SavedPlace
from place_resolver.store import LocalStore


def make_place(name, lat=14.6000, lon=121.0000, **kwargs):
    return Place(id="", name=name, address=f"{name}, Metro Manila", latitude=lat, longitude=lon, **kwargs)


def make_pickup(parent_id, name, lat=14.6000, lon=121.0000, **kwargs):
    kwargs.setdefault("type", "entrance")
    return PickupPoint(id="", parent_location_id=parent_id, latitude=lat, longitude=lon, name=name, **kwargs)


@pytest.fixture
def store():
    s = LocalStore(":memory:")
    yield s
    s.close()


def test_create_assigns_id_and_round_trips(store):
    created = store.create(make_place("Rizal Park", type="park"))
    assert created.id
    fetched = store.get_location(created.id)
    assert fetched == created
    assert fetched.source == "local"


def test_create_replaces_provider_ids(store):
    provider_place = Place(
        id="photon_1_0", name="Intramuros", address="Manila", latitude=14.59, longitude=120.97, source="photon"
    )
    assert store.create(provider_place).id != "photon_1_0"


def test_search_orders_exact_then_prefix_then_substring(store):
    store.create(make_place("SM Jollibee Branch", search_count=50))
    store.create(make_place("Jollibee Ortigas", lat=14.59))
    store.create(make_place("Jollibee", lat=14.58))
    store.create(make_place("McDonald's", lat=14.57))

    names = [p.name for p in store.search("jollibee", limit=10)]
    assert names == ["Jollibee", "Jollibee Ortigas", "SM Jollibee Branch"]


def test_search_matches_address_and_treats_wildcards_literally(store):
    store.create(Place(id="", name="Gate 3", address="UP Diliman, Quezon City", latitude=14.65, longitude=121.06))
    assert [p.name for p in store.search("diliman")] == ["Gate 3"]
    assert store.search("%") == []
    assert store.search("_") == []


def test_search_with_proximity_filters_and_sorts_by_distance(store):
    store.create(make_place("Cafe Far", lat=14.70, lon=121.05))
    store.create(make_place("Cafe Near", lat=14.601, lon=121.001))
    store.create(make_place("Cafe Cebu", lat=10.31, lon=123.89))

    results = store.search_with_proximity("cafe", 14.60, 121.00, radius_km=50)

    assert [p.name for p in results] == ["Cafe Near", "Cafe Far"]
    assert results[0].distance_km < results[1].distance_km


def test_find_by_coordinates_uses_four_decimal_rounding(store):
    created = store.create(make_place("Quiapo Church", lat=14.59951, lon=120.98419))
    found = store.find_by_coordinates(14.59949, 120.98421)
    assert found is not None
    assert found.id == created.id
    assert store.find_by_coordinates(14.5990, 120.9842) is None


def test_cache_reverse_geocode_does_not_duplicate(store):
    first = store.cache_reverse_geocode(make_place("Binondo", lat=14.6006, lon=120.9749, source="photon"))
    by_coord = store.cache_reverse_geocode(make_place("Binondo Church", lat=14.6006, lon=120.9749, source="photon"))
    by_details = store.cache_reverse_geocode(make_place("Binondo", lat=14.6100, lon=120.9800, source="nominatim"))

    assert by_coord.id == first.id
    assert by_details.id == first.id
    assert len(store.search("binondo", limit=10)) == 1


def test_increment_search_count_and_popular(store):
    quiet = store.create(make_place("Quiet Place"))
    busy = store.create(make_place("Busy Place", lat=14.61))
    assert store.increment_search_count(busy.id)
    assert store.increment_search_count(busy.id)
    assert store.increment_search_count(quiet.id)
    assert not store.increment_search_count("missing")

    popular = store.get_popular(limit=2)
    assert [p.id for p in popular] == [busy.id, quiet.id]
    assert popular[0].search_count == 2


def test_pickup_point_compare_and_set(store):
    point = store.create_pickup_point(make_pickup("loc1", "Main Gate", type="gate"))
    assert point.id
    assert point.verification_count == 0

    bumped = replace(point, verification_count=1)
    assert store.update_pickup_verification(bumped, expected_count=0)
    assert not store.update_pickup_verification(bumped, expected_count=0)
    assert store.get_pickup_point(point.id).verification_count == 1


def test_record_pickup_use(store):
    point = store.create_pickup_point(make_pickup("loc1", "Side Door", type="side"))
    assert store.record_pickup_use(point.id, "2026-01-01T00:00:00+00:00")
    assert not store.record_pickup_use("missing")
    stored = store.get_pickup_point(point.id)
    assert stored.use_count == 1
    assert stored.last_used_at == "2026-01-01T00:00:00+00:00"


def test_pickup_points_for_location_order(store):
    store.create_pickup_point(make_pickup("mall", "B Entrance", use_count=9))
    store.create_pickup_point(make_pickup("mall", "A Entrance", use_count=9))
    store.create_pickup_point(make_pickup("mall", "Verified Gate", type="gate", verified=True))
    store.create_pickup_point(make_pickup("other", "Elsewhere"))

    names = [p.name for p in store.get_pickup_points_for_location("mall")]
    assert names == ["Verified Gate", "A Entrance", "B Entrance"]


def test_find_nearby_pickup_points_only_returns_verified_within_radius(store):
    store.create_pickup_point(make_pickup("a", "Close Verified", lat=14.6003, lon=121.0003, verified=True))
    store.create_pickup_point(make_pickup("a", "Close Unverified", lat=14.6001, lon=121.0001))
    store.create_pickup_point(make_pickup("b", "Far Verified", lat=14.6100, lon=121.0100, verified=True))

    nearby = store.find_nearby_pickup_points(14.6000, 121.0000, radius_m=100)

    assert [p.name for p in nearby] == ["Close Verified"]
    assert 0 < nearby[0].distance_meters < 100


def test_save_place_upserts(store):
    saved = store.save_place(
        SavedPlace(id="", user_id="u1", label="home", name="Home", address="Sampaloc", latitude=14.61, longitude=120.99)
    )
    assert saved.id
    store.save_place(replace(saved, use_count=6))

    places = store.get_saved_places("u1")
    assert len(places) == 1
    assert places[0].use_count == 6
    assert store.get_saved_places("u2") == []


def test_track_derives_time_fields(store):
    entry = LocationHistoryEntry(user_id="u1", action_type="select", latitude=14.6, longitude=121.0, location_id="x")
    # 2026-03-01 is a Sunday
    store.track(entry, now=datetime(2026, 3, 1, 18, 30))

    history = store.get_recent_history("u1")
    assert len(history) == 1
    assert history[0].hour_of_day == 18
    assert history[0].day_of_week == 0
    assert history[0].location_id == "x"


def frequent(user_id, geohash, visits, hour, lat=14.60, lon=121.00, **kwargs):
    return FrequentLocation(
        user_id=user_id,
        geohash=geohash,
        center_lat=lat,
        center_lon=lon,
        visit_count=visits,
        typical_hour=hour,
        **kwargs,
    )


def test_frequent_location_queries(store):
    store.upsert_frequent_location(frequent("u1", "wdw4f00", 12, 9, location_id="office"))
    store.upsert_frequent_location(frequent("u1", "wdw4f01", 30, 21, lat=14.65, location_id="condo"))
    store.upsert_frequent_location(frequent("u1", "wdw4f02", 4, 13, lat=14.90, location_id="lunch"))

    assert [f.location_id for f in store.get_frequent_locations("u1")] == ["condo", "office", "lunch"]
    assert [f.location_id for f in store.get_locations_for_time("u1", 10)] == ["office"]

    nearby = store.get_frequent_nearby("u1", 14.60, 121.00, radius_km=10)
    assert [f.location_id for f in nearby] == ["condo", "office"]

    home, work = store.detect_home_work_patterns("u1")
    assert home.location_id == "condo"
    assert work.location_id == "office"


def test_upsert_frequent_location_replaces_counts(store):
    store.upsert_frequent_location(frequent("u1", "wdw4f00", 2, 9))
    store.upsert_frequent_location(frequent("u1", "wdw4f00", 3, 10))
    rows = store.get_frequent_locations("u1")
    assert len(rows) == 1
    assert rows[0].visit_count == 3


def test_closed_store_raises_local_store_error():
    s = LocalStore(":memory:")
    s.close()
    with pytest.raises(LocalStoreError):
        s.search("anything")


def test_local_store_is_a_geocoding_source(store):
    created = store.create(make_place("Luneta"))
    assert [p.id for p in store.forward_search("lune")] == [created.id]
    assert store.reverse_lookup(14.6, 121.0).id == created.id
