import json

import pytest

import run
from place_resolver.models import PickupPoint, Place
from place_resolver.store import LocalStore


def test_parse_args_point_option():
    args = run.parse_args(["search", "jollibee", "--near", "14.6,121.0", "--limit", "3"])
    assert args.command == "search"
    assert args.near == (14.6, 121.0)
    assert args.limit == 3
    with pytest.raises(SystemExit):
        run.parse_args(["search", "jollibee", "--near", "north"])


@pytest.fixture
def cli_env(monkeypatch):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)


def test_search_short_query_exits_with_input_error(tmp_path, cli_env, capsys):
    code = run.main(["--db", str(tmp_path / "places.db"), "search", "j"])
    assert code == 2
    assert "at least" in capsys.readouterr().err


def test_search_served_from_local_store(tmp_path, cli_env, capsys):
    db = str(tmp_path / "places.db")
    store = LocalStore(db)
    for i in range(5):
        store.create(Place(id="", name=f"Jollibee {i}", address="Manila", latitude=14.60 + i * 0.01, longitude=121.0))
    store.close()

    assert run.main(["--db", db, "search", "jollibee"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert len(rows) == 5
    assert {"final_score", "text_score", "user_score"} <= set(rows[0])


def test_pickups_command_confirms_and_lists(tmp_path, cli_env, capsys):
    db = str(tmp_path / "places.db")
    store = LocalStore(db)
    point = store.create_pickup_point(
        PickupPoint(
            id="gate-a",
            parent_location_id="mall-1",
            latitude=14.65,
            longitude=121.03,
            type="gate",
            name="Gate A",
            verification_count=2,
        )
    )
    store.close()

    assert run.main(["--db", db, "pickups", "mall-1", "--confirm", point.id]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert rows[0]["id"] == "gate-a"
    assert rows[0]["verified"] is True
    assert rows[0]["verification_count"] == 3


def test_search_rejects_zero_limit(tmp_path, cli_env, capsys):
    code = run.main(["--db", str(tmp_path / "places.db"), "search", "jollibee", "--limit", "0"])
    assert code == 2
    assert "Limit" in capsys.readouterr().err
