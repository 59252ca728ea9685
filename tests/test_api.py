"""API-level tests for the Flask app."""

import os
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app import app
from permille_app import drink_store
from permille_app.commands import CommandContext, CommandRouter, UnknownCommand, build_router
from permille_app.retro import RetroWizard
from permille_app.models import DrinkEvent


@pytest.fixture(autouse=True)
def env_setup(tmp_path, monkeypatch):
    monkeypatch.setenv("DRINKS_DB_PATH", str(tmp_path / "drinks.db"))
    yield


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def create_user(client, name="Matti", weight_kg=80, sex="male"):
    res = client.post("/api/users", json={"display_name": name, "weight_kg": weight_kg, "sex": sex})
    assert res.status_code == 200
    return res.get_json()["user"]["id"]


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.get_json() == {"ok": True}


def test_presets_listed(client):
    items = client.get("/api/presets").get_json()["items"]
    by_key = {item["key"]: item for item in items}
    assert by_key["kalja033"]["grams"] == pytest.approx(12.24, abs=0.01)


def test_create_user_validation(client):
    res = client.post("/api/users", json={"display_name": "X", "weight_kg": 80, "sex": "robot"})
    assert res.status_code == 400
    body = res.get_json()
    assert body["kind"] == "InvalidBiometricProfile"
    assert body["field"] == "sex"

    res = client.post("/api/users", json={"display_name": "X", "sex": "male"})
    assert res.status_code == 400

    res = client.post("/api/users", json={"display_name": "X", "weight_kg": 10, "sex": "male"})
    assert res.status_code == 400


def test_update_user_clamps_weight(client):
    user_id = create_user(client)
    res = client.post(f"/api/users/{user_id}", json={"weight_kg": 999, "sex": "nainen"})
    assert res.status_code == 200
    user = res.get_json()["user"]
    assert user["weight_kg"] == 250.0
    assert user["sex"] == "female"


def test_unknown_user(client):
    assert client.get("/api/users/999/state").status_code == 404
    assert client.post("/api/users/999/drink", json={"preset": "kalja033"}).status_code == 404


def test_drink_and_state_roundtrip(client):
    user_id = create_user(client)
    add = client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja05"})
    assert add.status_code == 200
    body = add.get_json()
    assert body["state"]["permille"] > 0
    assert body["milestones"] == []

    custom = client.post(
        f"/api/users/{user_id}/drink",
        json={"volume_liters": 0.04, "percent": 40, "description": "kossu", "hours_ago": 1},
    )
    assert custom.status_code == 200
    assert custom.get_json()["drink"]["description"] == "kossu"

    state = client.get(f"/api/users/{user_id}/state").get_json()
    assert state["drink_count"] == 2
    assert state["windows"]["12"]["count"] == 2
    assert state["state"]["hours_until_sober"] > 0


def test_drink_rejects_bad_percent(client):
    user_id = create_user(client)
    res = client.post(f"/api/users/{user_id}/drink", json={"volume_liters": 0.5, "percent": 150})
    assert res.status_code == 400
    assert res.get_json()["field"] == "fraction_by_volume"

    res = client.post(f"/api/users/{user_id}/drink", json={"preset": "kossu"})
    assert res.status_code == 400


def test_undo_removes_latest(client):
    user_id = create_user(client)
    client.post(f"/api/users/{user_id}/drink", json={"preset": "shotti40", "hours_ago": 2})
    client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja033"})
    res = client.post(f"/api/users/{user_id}/undo")
    assert res.status_code == 200
    assert res.get_json()["removed"]["description"] == "/kalja033"
    history = client.get(f"/api/users/{user_id}/history").get_json()["items"]
    assert [d["description"] for d in history] == ["/shotti40"]


def test_group_ranking(client):
    drinker = create_user(client, name="Drinker")
    sober = create_user(client, name="Sober")
    for user_id in (drinker, sober):
        assert client.post("/api/groups/5/join", json={"user_id": user_id}).get_json()["joined"] is True
    assert client.post("/api/groups/5/join", json={"user_id": drinker}).get_json()["joined"] is False

    assert client.get("/api/groups/5/ranking").get_json()["items"] == []

    client.post(f"/api/users/{drinker}/drink", json={"preset": "kalja033"})
    items = client.get("/api/groups/5/ranking").get_json()["items"]
    assert [i["display_name"] for i in items] == ["Drinker"]
    assert items[0]["standard_drinks_12h"] == 1.0

    listing = client.get("/api/groups/5/standard-drinks").get_json()["items"]
    assert listing[0]["display_name"] == "Drinker"


def test_hundredth_group_drink_is_a_milestone(client):
    user_id = create_user(client)
    client.post("/api/groups/7/join", json={"user_id": user_id})
    db_path = os.environ["DRINKS_DB_PATH"]
    long_ago = datetime.now(timezone.utc) - timedelta(days=30)
    for _ in range(99):
        drink_store.insert_drink(db_path, user_id=user_id, event=DrinkEvent(12.0, "old", long_ago))

    res = client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja033"})
    milestones = res.get_json()["milestones"]
    assert [m["group_id"] for m in milestones] == [7]
    assert milestones[0]["count"] == 100
    assert milestones[0]["ranking"][0]["display_name"] == "Matti"

    res = client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja033"})
    assert res.get_json()["milestones"] == []


def test_retro_wizard_conversation(client):
    user_id = create_user(client)
    step = client.post(f"/api/users/{user_id}/retro", json={"text": "2"}).get_json()
    assert step["wizard"]["step"] == "drinks"
    step = client.post(f"/api/users/{user_id}/retro", json={"text": "kalja 33 4.7\nshotti 4 40"}).get_json()
    assert len(step["wizard"]["drinks"]) == 2

    done = client.post(f"/api/users/{user_id}/retro", json={"text": "stop"})
    assert done.status_code == 200
    body = done.get_json()
    assert [d["description"] for d in body["drinks"]] == ["kalja", "shotti"]
    first = datetime.fromisoformat(body["drinks"][0]["occurred_at"])
    last = datetime.fromisoformat(body["drinks"][1]["occurred_at"])
    assert last - first == timedelta(hours=2)
    assert body["state"]["permille"] > 0

    restart = client.post(f"/api/users/{user_id}/retro", json={"text": "1"}).get_json()
    assert restart["wizard"]["step"] == "drinks"


def test_retro_wizard_rejects_bad_span(client):
    user_id = create_user(client)
    res = client.post(f"/api/users/{user_id}/retro", json={"text": "25"})
    assert res.status_code == 400
    assert res.get_json()["kind"] == "InvalidTimeSpan"
    reset = client.post(f"/api/users/{user_id}/retro", json={"reset": True}).get_json()
    assert reset["wizard"]["step"] == "span"


def test_retro_batch(client):
    user_id = create_user(client)
    res = client.post(
        f"/api/users/{user_id}/retro/batch",
        json={"span_hours": 3, "drinks": [{"preset": "kalja05"}, {"description": "viini", "volume_liters": 0.16, "percent": 12}]},
    )
    assert res.status_code == 200
    assert len(res.get_json()["drinks"]) == 2

    empty = client.post(f"/api/users/{user_id}/retro/batch", json={"span_hours": 3, "drinks": []})
    assert empty.status_code == 400
    assert empty.get_json()["field"] == "drinks"

    bad = client.post(
        f"/api/users/{user_id}/retro/batch",
        json={"span_hours": 3, "drinks": [{"preset": "kalja05"}, {"volume_liters": 20, "percent": 5}]},
    )
    assert bad.status_code == 400
    state = client.get(f"/api/users/{user_id}/state").get_json()
    assert state["drink_count"] == 2


def test_graph_curve(client):
    user_id = create_user(client)
    client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja05", "hours_ago": 1})
    curve = client.get(f"/api/users/{user_id}/graph?hours_back=2&hours_ahead=2").get_json()["curve"]
    assert curve[0][0] == -2.0
    assert max(p for _, p in curve) > 0


def test_command_endpoint(client):
    user_id = create_user(client)
    res = client.post("/api/command", json={"user_id": user_id, "text": "/kalja033"})
    assert res.status_code == 200
    assert res.get_json()["state"]["permille"] > 0

    res = client.post("/api/command", json={"user_id": user_id, "text": "/viina 38 0.04"})
    assert res.status_code == 200

    client.post("/api/command", json={"user_id": user_id, "group_id": 3, "text": "/moro"})
    ranking = client.post("/api/command", json={"user_id": user_id, "group_id": 3, "text": "/promillet@bot"}).get_json()
    assert ranking["ranking"][0]["display_name"] == "Matti"

    totals = client.post("/api/command", json={"user_id": user_id, "text": "/annokset"}).get_json()
    assert totals["permille"] > 0
    assert totals["unburned_standard_drinks"] > 1
    assert totals["lifetime_standard_drinks"] > 1
    assert totals["hours_until_sober"] > 0

    assert client.post("/api/command", json={"user_id": user_id, "text": "/kahvi"}).status_code == 404
    assert client.post("/api/command", json={"user_id": user_id, "text": "/viina abc 1"}).status_code == 400
    assert client.post("/api/command", json={"text": "/kalja033"}).status_code == 400


def test_router_is_explicit(tmp_path):
    router = CommandRouter()
    router.register("ping", lambda ctx, args: {"pong": args})
    with pytest.raises(ValueError):
        router.register("/ping", lambda ctx, args: {})
    ctx = CommandContext(db_path=str(tmp_path / "x.db"), user_id=1, now=datetime.now(timezone.utc))
    assert router.dispatch(ctx, "/ping a b") == {"pong": ["a", "b"], "command": "ping"}
    with pytest.raises(UnknownCommand):
        router.dispatch(ctx, "")
    assert "kalja033" in build_router().names()
    assert "ping" not in build_router().names()


def test_create_user_rejects_nan_weight(client):
    for weight in ("nan", "inf", "-inf"):
        res = client.post("/api/users", json={"display_name": "Matti", "weight_kg": weight, "sex": "male"})
        assert res.status_code == 400
    update = client.post(f"/api/users/{create_user(client)}", json={"weight_kg": "nan"}).get_json()
    assert update["user"]["weight_kg"] == 80


def test_zero_alcohol_drink_rejected(client):
    user_id = create_user(client)
    res = client.post("/api/command", json={"user_id": user_id, "text": "/viina 0 0.5"})
    assert res.status_code == 400
    assert res.get_json()["field"] == "ethanol_grams"
    res = client.post(f"/api/users/{user_id}/drink", json={"volume_liters": 0.5, "percent": 0})
    assert res.status_code == 400
    assert client.get(f"/api/users/{user_id}/state").get_json()["drink_count"] == 0


def test_group_standard_drinks_command(client):
    matti = create_user(client)
    liisa = create_user(client, name="Liisa", weight_kg=60, sex="female")
    for user_id in (matti, liisa):
        client.post("/api/command", json={"user_id": user_id, "group_id": 3, "text": "/moro"})
    client.post("/api/command", json={"user_id": matti, "group_id": 3, "text": "/kalja033"})
    client.post("/api/command", json={"user_id": liisa, "group_id": 3, "text": "/kalja05"})

    res = client.post("/api/command", json={"user_id": matti, "group_id": 3, "text": "/annokset"})
    assert res.status_code == 200
    listing = res.get_json()["listing"]
    assert [row["display_name"] for row in listing] == ["Liisa", "Matti"]
    assert listing[1]["standard_drinks"] == pytest.approx(1.0, abs=0.01)
    assert listing[1]["standard_drinks_12h"] == 1.0
    assert listing[0]["standard_drinks_24h"] == pytest.approx(1.5, abs=0.1)
    assert "permille" not in res.get_json()


def test_retro_command_through_router(tmp_path):
    now = datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc)
    db_path = str(tmp_path / "retro.db")
    drink_store.init_db(db_path)
    user_id = drink_store.create_user(db_path, display_name="Matti", weight_kg=80, sex="male")["id"]
    router = build_router()
    ctx = CommandContext(db_path=db_path, user_id=user_id, now=now)

    started = router.dispatch(ctx, "/jalkikellotus 2")
    assert started["command"] == "jalkikellotus"
    assert started["wizard"]["step"] == "drinks"

    ctx = replace(ctx, wizard=RetroWizard.from_dict(started["wizard"]))
    listed = router.dispatch(ctx, "kalja 33 4.7\nshotti 4 40")
    assert len(listed["wizard"]["drinks"]) == 2

    ctx = replace(ctx, wizard=RetroWizard.from_dict(listed["wizard"]))
    done = router.dispatch(ctx, "stop")
    assert done["wizard"] is None
    assert [d["description"] for d in done["drinks"]] == ["kalja", "shotti"]
    history = drink_store.fetch_history(db_path, user_id=user_id)
    assert [e.occurred_at for e in history] == [now - timedelta(hours=2), now]
    # only the shot is still unburned at the moment the plan was made
    assert done["state"]["permille"] == round(history[1].ethanol_grams / (80 * 0.75), 3)

    with pytest.raises(UnknownCommand):
        router.dispatch(replace(ctx, wizard=None), "stop")


def test_retro_command_over_api(client):
    user_id = create_user(client)
    step = client.post("/api/command", json={"user_id": user_id, "text": "/jalkikellotus"}).get_json()
    assert step["wizard"]["step"] == "span"
    step = client.post("/api/command", json={"user_id": user_id, "text": "3"}).get_json()
    assert step["wizard"]["span_hours"] == 3
    client.post("/api/command", json={"user_id": user_id, "text": "kalja 50 4.7"})
    done = client.post("/api/command", json={"user_id": user_id, "text": "stop"}).get_json()
    assert done["wizard"] is None
    assert len(done["drinks"]) == 1
    assert client.get(f"/api/users/{user_id}/state").get_json()["drink_count"] == 1
    assert client.post("/api/command", json={"user_id": user_id, "text": "stop"}).status_code == 404


def test_stats(client):
    matti = create_user(client)
    liisa = create_user(client, name="Liisa", weight_kg=60, sex="female")
    create_user(client, name="Pekka")
    client.post("/api/groups/5/join", json={"user_id": liisa})
    client.post("/api/groups/6/join", json={"user_id": matti})
    client.post(f"/api/users/{matti}/drink", json={"preset": "kalja033"})
    client.post(f"/api/users/{matti}/drink", json={"preset": "kalja05"})
    db_path = os.environ["DRINKS_DB_PATH"]
    ten_days_ago = datetime.now(timezone.utc) - timedelta(days=10)
    drink_store.insert_drink(db_path, user_id=liisa, event=DrinkEvent(12.0, "old", ten_days_ago))

    stats = client.get("/api/stats").get_json()
    assert stats["users"] == 3
    assert stats["groups"] == 2
    assert stats["active_users_7d"] == 1
    assert stats["active_users_14d"] == 2
    assert stats["active_groups_7d"] == 1
    assert stats["active_groups_14d"] == 2
    assert [(u["display_name"], u["drink_count"]) for u in stats["top_users"]] == [("Matti", 2), ("Liisa", 1)]


def test_graph_marks_drinks(client):
    user_id = create_user(client)
    client.post(f"/api/users/{user_id}/drink", json={"preset": "kalja05", "hours_ago": 1})
    drinks = client.get(f"/api/users/{user_id}/graph?hours_back=2").get_json()["drinks"]
    assert len(drinks) == 1
    assert drinks[0]["description"] == "/kalja05"
    assert drinks[0]["hours"] == pytest.approx(-1.0, abs=0.01)
    assert drinks[0]["permille"] > 0
