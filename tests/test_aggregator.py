import threading
import time

import pytest

from place_resolver.aggregator import aggregate, fan_out
from place_resolver.errors import LocalStoreError
from place_resolver.models import Place
from place_resolver.providers import GeocodingProvider
from place_resolver.store import LocalStore


def make_place(place_id, name, lat=14.60, lon=121.00, source="local"):
    return Place(id=place_id, name=name, address=f"{name}, Manila", latitude=lat, longitude=lon, source=source)


class FakeProvider(GeocodingProvider):
    def __init__(self, name, results=None, error=None, delay=0.0):
        self.name = name
        self.results = results or []
        self.error = error
        self.delay = delay
        self.calls = []

    def forward_search(self, query, limit=10):
        self.calls.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


class BrokenStore:
    def search(self, query, limit=5):
        raise LocalStoreError("database is locked")


def seed(store, count, prefix="Jollibee"):
    for i in range(count):
        store.create(make_place("", f"{prefix} {i}", lat=14.60 + i * 0.001))


def test_local_coverage_skips_providers():
    store = LocalStore(":memory:")
    seed(store, 5)
    provider = FakeProvider("photon", [make_place("p", "Jollibee X", source="photon")])

    result = aggregate("jollibee", store, [provider])

    assert result.providers_skipped
    assert len(result.local) == 5
    assert provider.calls == []
    store.close()


def test_insufficient_coverage_queries_all_providers():
    store = LocalStore(":memory:")
    seed(store, 2)
    photon = FakeProvider("photon", [make_place("p1", "Jollibee Ortigas", lat=14.58, source="photon")])
    nominatim = FakeProvider("nominatim", [make_place("n1", "Jollibee Cubao", lat=14.62, source="nominatim")])

    result = aggregate("jollibee", store, [photon, nominatim])

    assert not result.providers_skipped
    assert photon.calls == ["jollibee"]
    assert nominatim.calls == ["jollibee"]
    assert [[p.id for p in items] for items in result.provider_lists()] == [["p1"], ["n1"]]
    store.close()


def test_user_location_uses_proximity_search():
    store = LocalStore(":memory:")
    store.create(make_place("", "Jollibee Near", lat=14.60, lon=121.00))
    store.create(make_place("", "Jollibee Cebu", lat=10.31, lon=123.89))

    result = aggregate("jollibee", store, [], user_location=(14.60, 121.00))

    assert [p.name for p in result.local] == ["Jollibee Near"]
    assert result.local[0].distance_km == pytest.approx(0.0)
    store.close()


def test_failing_provider_contributes_nothing():
    store = LocalStore(":memory:")
    broken = FakeProvider("photon", error=RuntimeError("boom"))
    healthy = FakeProvider("nominatim", [make_place("n1", "Jollibee", source="nominatim")])

    result = aggregate("jollibee", store, [broken, healthy])

    assert result.by_provider["photon"] == []
    assert [p.id for p in result.by_provider["nominatim"]] == ["n1"]
    store.close()


def test_slow_provider_is_treated_as_failed():
    release = threading.Event()

    class HangingProvider(FakeProvider):
        def forward_search(self, query, limit=10):
            release.wait(2.0)
            return [make_place("late", "Late", source="photon")]

    fast = FakeProvider("nominatim", [make_place("n1", "Quick", source="nominatim")])
    started = time.monotonic()
    try:
        results = fan_out([HangingProvider("photon"), fast], "q", 10, timeout=0.2)
    finally:
        release.set()

    assert time.monotonic() - started < 1.5
    assert results["photon"] == []
    assert [p.id for p in results["nominatim"]] == ["n1"]


def test_local_store_failure_propagates():
    provider = FakeProvider("photon")
    with pytest.raises(LocalStoreError):
        aggregate("jollibee", BrokenStore(), [provider])
    assert provider.calls == []
