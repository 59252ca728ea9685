"""Permille tracker Flask app.

Run from project root:
    python app.py
"""

import logging
import math
import os
from datetime import timedelta
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request, session as flask_session

from permille_app import calculations, drink_store
from permille_app.commands import (
    CommandContext,
    UnknownCommand,
    build_router,
    commit_retro,
    continue_retro,
    log_drink,
)
from permille_app.drinks import PRESETS, grams_from_preset, event_grams, list_presets
from permille_app.errors import InvalidBiometricProfile, PermilleError, UpstreamUnavailable
from permille_app.graph import curve_data, drink_markers
from permille_app.models import BiometricProfile, DrinkEvent, resolve_sex
from permille_app.ranking import rank_group, standard_drinks_listing
from permille_app.retro import DrinkSpec, RetroWizard, plan_retroactive_drinks
from permille_app.session import Session, utcnow
from permille_app.windows import events_in_window, window_sums

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("APP_SECRET_KEY", "dev-only-change-me")
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=1)

MIN_WEIGHT_KG = 30.0
MAX_WEIGHT_KG = 250.0
MAX_HOURS_AGO = 24.0
HISTORY_HOURS = 48.0
RETRO_KEY_PREFIX = "retro_wizard_"

DEFAULT_DB_PATH = str(Path("instance") / "drinks.db")

router = build_router()


def _db_path() -> str:
    return os.environ.get("DRINKS_DB_PATH", DEFAULT_DB_PATH)


def _ensure_db() -> str:
    db_path = Path(_db_path())
    db_path.parent.mkdir(parents=True, exist_ok=True)
    drink_store.init_db(str(db_path))
    return str(db_path)


def _clamp_float(value: Any, default: float, min_value: float, max_value: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = default
    if not math.isfinite(parsed):
        parsed = default
    return max(min_value, min(max_value, parsed))


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _load_profile(db_path: str, user_id: int) -> BiometricProfile | None:
    profile = drink_store.get_profile(db_path, user_id)
    return profile.validate() if profile is not None else None


def _user_not_found():
    return jsonify({"error": "User not found"}), 404


@app.errorhandler(PermilleError)
def handle_permille_error(exc: PermilleError):
    status = 503 if isinstance(exc, UpstreamUnavailable) else 400
    if isinstance(exc, UnknownCommand):
        status = 404
    return jsonify(exc.to_dict()), status


@app.route("/healthz")
def healthz():
    return jsonify({"ok": True})


@app.route("/api/presets")
def api_presets():
    return jsonify({"items": [{"key": k, "name": n, "grams": round(PRESETS[k].grams, 2)} for k, n in list_presets()]})


@app.route("/api/commands")
def api_commands():
    return jsonify({"items": router.help()})


@app.route("/api/users", methods=["POST"])
def api_users_create():
    db_path = _ensure_db()
    data = request.get_json() or {}
    display_name = str(data.get("display_name", "")).strip()
    if not display_name or len(display_name) > 40:
        return jsonify({"error": "Display name must be 1 to 40 characters"}), 400
    try:
        weight_kg = float(data.get("weight_kg"))
    except (TypeError, ValueError):
        return jsonify({"error": "Weight is required"}), 400
    if not math.isfinite(weight_kg) or weight_kg < MIN_WEIGHT_KG or weight_kg > MAX_WEIGHT_KG:
        return jsonify({"error": "Weight must be between 30 and 250 kg"}), 400
    sex = resolve_sex(data.get("sex"))

    user = drink_store.create_user(db_path, display_name=display_name, weight_kg=weight_kg, sex=sex)
    logger.info("created user %s", user["id"])
    return jsonify({"ok": True, "user": user})


@app.route("/api/users/<int:user_id>")
def api_users_get(user_id: int):
    user = drink_store.get_user(_ensure_db(), user_id)
    if user is None:
        return _user_not_found()
    return jsonify({"user": user})


@app.route("/api/users/<int:user_id>", methods=["POST"])
def api_users_update(user_id: int):
    db_path = _ensure_db()
    user = drink_store.get_user(db_path, user_id)
    if user is None:
        return _user_not_found()
    data = request.get_json() or {}
    display_name = str(data.get("display_name", user["display_name"])).strip()[:40] or user["display_name"]
    weight_kg = _clamp_float(data.get("weight_kg"), user["weight_kg"], MIN_WEIGHT_KG, MAX_WEIGHT_KG)
    sex = resolve_sex(data.get("sex", user["sex"]))
    drink_store.update_user(db_path, user_id=user_id, display_name=display_name, weight_kg=weight_kg, sex=sex)
    return jsonify({"ok": True, "user": drink_store.get_user(db_path, user_id)})


@app.route("/api/users/<int:user_id>/drink", methods=["POST"])
def api_drink(user_id: int):
    db_path = _ensure_db()
    if drink_store.get_user(db_path, user_id) is None:
        return _user_not_found()
    data = request.get_json() or {}
    now = utcnow()
    hours_ago = _clamp_float(data.get("hours_ago"), 0.0, 0.0, MAX_HOURS_AGO)
    at = now - timedelta(hours=hours_ago)

    preset = data.get("preset")
    if preset:
        event = DrinkEvent(grams_from_preset(str(preset)), f"/{preset}", at)
    else:
        try:
            volume_liters = float(data.get("volume_liters"))
            percent = float(data.get("percent"))
        except (TypeError, ValueError):
            return jsonify({"error": "preset or volume_liters and percent are required"}), 400
        grams = event_grams(volume_liters, percent / 100.0)
        description = str(data.get("description", "")).strip()[:80] or f"{volume_liters:g} l {percent:g}%"
        event = DrinkEvent(grams, description, at)

    return jsonify({"ok": True, **log_drink(db_path, user_id, event, now)})


@app.route("/api/users/<int:user_id>/undo", methods=["POST"])
def api_undo(user_id: int):
    db_path = _ensure_db()
    profile = _load_profile(db_path, user_id)
    if profile is None:
        return _user_not_found()
    removed = drink_store.undo_drink(db_path, user_id=user_id)
    history = drink_store.fetch_history(db_path, user_id=user_id)
    state = calculations.compute_current_state(profile, history, utcnow())
    return jsonify({"ok": True, "removed": removed.to_dict() if removed else None, "state": state.to_dict()})


@app.route("/api/users/<int:user_id>/state")
def api_state(user_id: int):
    db_path = _ensure_db()
    profile = _load_profile(db_path, user_id)
    if profile is None:
        return _user_not_found()
    now = utcnow()
    history = drink_store.fetch_history(db_path, user_id=user_id)
    sums = window_sums(history, now)
    return jsonify({
        "state": calculations.compute_current_state(profile, history, now).to_dict(),
        "drink_count": len(history),
        "windows": {
            str(int(h)): {"count": s.count, "grams": round(s.gram_sum, 2)} for h, s in sums.items()
        },
    })


@app.route("/api/users/<int:user_id>/history")
def api_history(user_id: int):
    db_path = _ensure_db()
    if drink_store.get_user(db_path, user_id) is None:
        return _user_not_found()
    now = utcnow()
    hours = _clamp_float(request.args.get("hours"), HISTORY_HOURS, 1.0, 24.0 * 14)
    history = drink_store.fetch_history_since(db_path, user_id=user_id, since=now - timedelta(hours=hours))
    return jsonify({"items": [e.to_dict() for e in events_in_window(history, hours, now)]})


@app.route("/api/users/<int:user_id>/graph")
def api_graph(user_id: int):
    db_path = _ensure_db()
    profile = _load_profile(db_path, user_id)
    if profile is None:
        return _user_not_found()
    model = Session(profile, drink_store.fetch_history(db_path, user_id=user_id))
    hours_back = _clamp_float(request.args.get("hours_back"), 24.0, 1.0, 48.0)
    hours_ahead = _clamp_float(request.args.get("hours_ahead"), 12.0, 0.0, 24.0)
    now = utcnow()
    points = curve_data(model, now=now, hours_back=hours_back, hours_ahead=hours_ahead)
    markers = drink_markers(model, now=now, hours_back=hours_back)
    return jsonify({
        "curve": [[t, round(p, 3)] for t, p in points],
        "drinks": [{"hours": t, "permille": round(p, 3), "description": d} for t, p, d in markers],
    })


def _wizard_key(user_id: int) -> str:
    return f"{RETRO_KEY_PREFIX}{user_id}"


def _load_wizard(user_id: int) -> RetroWizard | None:
    raw = flask_session.get(_wizard_key(user_id))
    return RetroWizard.from_dict(raw) if raw is not None else None


def _store_wizard(user_id: int, wizard: dict | None) -> None:
    if wizard is None:
        flask_session.pop(_wizard_key(user_id), None)
    else:
        flask_session[_wizard_key(user_id)] = wizard


@app.route("/api/users/<int:user_id>/retro", methods=["POST"])
def api_retro_step(user_id: int):
    """One step of the back-fill conversation: span first, then drink lines, then 'stop'."""
    db_path = _ensure_db()
    if _load_profile(db_path, user_id) is None:
        return _user_not_found()
    data = request.get_json() or {}
    if data.get("reset"):
        _store_wizard(user_id, None)
        return jsonify({"ok": True, "wizard": RetroWizard().to_dict()})

    ctx = CommandContext(db_path=db_path, user_id=user_id, now=utcnow(), wizard=_load_wizard(user_id))
    result = continue_retro(ctx, str(data.get("text", "")))
    _store_wizard(user_id, result["wizard"])
    return jsonify({"ok": True, **result})


@app.route("/api/users/<int:user_id>/retro/batch", methods=["POST"])
def api_retro_batch(user_id: int):
    db_path = _ensure_db()
    if _load_profile(db_path, user_id) is None:
        return _user_not_found()
    data = request.get_json() or {}
    raw_drinks = data.get("drinks")
    if not isinstance(raw_drinks, list):
        return jsonify({"error": "drinks must be a list"}), 400
    specs = []
    for raw in raw_drinks:
        if not isinstance(raw, dict):
            return jsonify({"error": "each drink must be an object"}), 400
        if raw.get("preset"):
            specs.append(DrinkSpec.from_preset(str(raw["preset"])))
            continue
        try:
            specs.append(DrinkSpec(
                str(raw.get("description", "")).strip()[:80] or "drink",
                float(raw.get("volume_liters")),
                float(raw.get("percent")) / 100.0,
            ))
        except (TypeError, ValueError):
            return jsonify({"error": "volume_liters and percent must be numbers"}), 400
    try:
        span_hours = float(data.get("span_hours"))
    except (TypeError, ValueError):
        return jsonify({"error": "span_hours is required"}), 400

    now = utcnow()
    events = plan_retroactive_drinks(span_hours, specs, now)
    return jsonify({"ok": True, **commit_retro(db_path, user_id, events, now)})


@app.route("/api/groups/<int:group_id>/join", methods=["POST"])
def api_group_join(group_id: int):
    db_path = _ensure_db()
    data = request.get_json() or {}
    user_id = _optional_int(data.get("user_id"))
    if user_id is None or drink_store.get_user(db_path, user_id) is None:
        return _user_not_found()
    joined = drink_store.join_group(db_path, user_id=user_id, group_id=group_id)
    return jsonify({"ok": True, "joined": joined})


@app.route("/api/groups/<int:group_id>/ranking")
def api_group_ranking(group_id: int):
    members = drink_store.fetch_history_for_group(_ensure_db(), group_id=group_id)
    entries = rank_group(members, utcnow())
    return jsonify({"items": [e.to_dict() for e in entries]})


@app.route("/api/groups/<int:group_id>/standard-drinks")
def api_group_standard_drinks(group_id: int):
    members = drink_store.fetch_history_for_group(_ensure_db(), group_id=group_id)
    rows = standard_drinks_listing(members, utcnow())
    return jsonify({
        "items": [
            {
                "display_name": name,
                "standard_drinks": round(unburned, 2),
                "standard_drinks_12h": round(d12, 1),
                "standard_drinks_24h": round(d24, 1),
            }
            for name, unburned, d12, d24 in rows
        ]
    })


@app.route("/api/command", methods=["POST"])
def api_command():
    db_path = _ensure_db()
    data = request.get_json() or {}
    user_id = _optional_int(data.get("user_id"))
    if user_id is None or drink_store.get_user(db_path, user_id) is None:
        raise InvalidBiometricProfile("User has no profile", field="user_id", value=data.get("user_id"))
    ctx = CommandContext(
        db_path=db_path,
        user_id=user_id,
        now=utcnow(),
        group_id=_optional_int(data.get("group_id")),
        wizard=_load_wizard(user_id),
    )
    result = router.dispatch(ctx, str(data.get("text", "")))
    if "wizard" in result:
        _store_wizard(user_id, result["wizard"])
    return jsonify({"ok": True, **result})


@app.route("/api/stats")
def api_stats():
    return jsonify(drink_store.stats(_ensure_db(), now=utcnow()))


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "0") == "1")
