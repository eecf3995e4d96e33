import json

import pytest

from place_resolver import config
from place_resolver.resolver import default_providers

_OVERRIDABLE = (
    "SERVICE_AREA_CENTER",
    "SERVICE_AREA_BBOX",
    "SERVICE_AREA_COUNTRY_CODES",
    "USER_AGENT",
    "PROVIDER_TIMEOUT_SECONDS",
    "ROAD_SOURCE_TIMEOUT_SECONDS",
    "AGGREGATE_TIMEOUT_SECONDS",
    "PROXIMITY_MAX_DISTANCE_KM",
    "POPULARITY_CEILING",
    "LOCAL_COVERAGE_THRESHOLD",
    "LOCAL_SEARCH_RADIUS_KM",
    "CACHE_DB_PATH",
)


@pytest.fixture
def restore_config(monkeypatch):
    for name in _OVERRIDABLE:
        monkeypatch.setattr(config, name, getattr(config, name))


def test_missing_config_file_returns_false(tmp_path, restore_config):
    assert config.load_resolver_config(str(tmp_path / "absent.json")) is False


def test_config_file_overrides_service_area_and_tuning(tmp_path, restore_config):
    path = tmp_path / "resolver_config.json"
    path.write_text(
        json.dumps(
            {
                "service_area": {"center": {"lat": 10.3157, "lon": 123.8854}, "radius_km": 20, "country_codes": ["PH"]},
                "user_agent": "CebuRides/2.0",
                "timeouts": {"provider_seconds": 3, "aggregate_seconds": None},
                "tuning": {"proximity_max_distance_km": 15, "popularity_ceiling": 500},
                "cache_db_path": "cebu.db",
            }
        ),
        encoding="utf-8",
    )

    assert config.load_resolver_config(str(path)) is True

    assert config.SERVICE_AREA_CENTER == {"lat": 10.3157, "lon": 123.8854}
    assert config.SERVICE_AREA_BBOX["lat_min"] < 10.3157 < config.SERVICE_AREA_BBOX["lat_max"]
    assert config.SERVICE_AREA_COUNTRY_CODES == ["ph"]
    assert config.USER_AGENT == "CebuRides/2.0"
    assert config.PROVIDER_TIMEOUT_SECONDS == 3.0
    assert config.AGGREGATE_TIMEOUT_SECONDS is None
    assert config.PROXIMITY_MAX_DISTANCE_KM == 15.0
    assert config.POPULARITY_CEILING == 500
    assert config.CACHE_DB_PATH == "cebu.db"


def test_config_file_cannot_change_weights(tmp_path, restore_config):
    path = tmp_path / "resolver_config.json"
    path.write_text(json.dumps({"weights": {"text": 1.0}, "SCORE_WEIGHT_TEXT": 1.0}), encoding="utf-8")
    config.load_resolver_config(str(path))
    assert config.SCORE_WEIGHT_TEXT == 0.35


def test_explicit_bbox_wins(tmp_path, restore_config):
    path = tmp_path / "resolver_config.json"
    bbox = {"lat_min": 10.0, "lat_max": 10.5, "lon_min": 123.7, "lon_max": 124.1}
    path.write_text(json.dumps({"service_area": {"bbox": bbox}}), encoding="utf-8")
    config.load_resolver_config(str(path))
    assert config.nominatim_viewbox() == "123.70,10.50,124.10,10.00"


def test_compute_bbox_contains_center():
    box = config.compute_bbox(14.6, 121.0, 50)
    assert box["lat_min"] < 14.6 < box["lat_max"]
    assert box["lon_min"] < 121.0 < box["lon_max"]
    assert box["lat_max"] - box["lat_min"] == pytest.approx(100 / 111.0)


def test_snap_rules_cover_general():
    assert config.SNAP_RULES["general"].max_snap_distance_m == 50


def test_user_agent_override_reaches_default_providers(tmp_path, restore_config):
    path = tmp_path / "resolver_config.json"
    path.write_text(json.dumps({"user_agent": "MyDeployment/2.0"}), encoding="utf-8")
    config.load_resolver_config(str(path))

    providers = default_providers()

    assert [p.http.user_agent for p in providers] == ["MyDeployment/2.0", "MyDeployment/2.0"]
