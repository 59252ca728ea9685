"""Text command routing.

A CommandRouter maps command names to handlers. Build one with
build_router() and pass it to whoever receives the text; there is no
module-level registry. Handlers return plain dicts, the caller decides how
to phrase and deliver them.

The back-fill conversation (/jalkikellotus) is a RetroWizard value. The
caller keeps it between messages, passes it in CommandContext.wizard and
stores whatever comes back under "wizard" (None once finished). Plain text
without a leading slash goes to that wizard.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from permille_app import calculations, drink_store
from permille_app.drinks import PRESETS, event_grams, grams_from_preset, standard_drinks
from permille_app.errors import InvalidBiometricProfile, InvalidDrinkSpecification, PermilleError
from permille_app.milestones import milestones_crossed
from permille_app.models import BiometricProfile, DrinkEvent
from permille_app.ranking import rank_group, standard_drinks_listing
from permille_app.retro import RetroWizard, commit_plan
from permille_app.windows import events_in_window

logger = logging.getLogger(__name__)

HISTORY_HOURS = 48


class UnknownCommand(PermilleError):
    """No handler is registered under the given name."""


@dataclass(frozen=True)
class CommandContext:
    db_path: str
    user_id: int
    now: datetime
    group_id: Optional[int] = None
    wizard: Optional[RetroWizard] = None


Handler = Callable[[CommandContext, List[str]], dict]


class CommandRouter:
    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        self._help: Dict[str, str] = {}

    def register(self, name: str, handler: Handler, help_text: str = "") -> None:
        key = name.lstrip("/").lower()
        if key in self._handlers:
            raise ValueError(f"command already registered: {key}")
        self._handlers[key] = handler
        self._help[key] = help_text

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def help(self) -> List[dict]:
        return [{"command": f"/{name}", "help": self._help[name]} for name in self.names()]

    def dispatch(self, ctx: CommandContext, text: str) -> dict:
        text = str(text or "")
        if ctx.wizard is not None and not text.lstrip().startswith("/"):
            return continue_retro(ctx, text)
        words = text.split()
        if not words:
            raise UnknownCommand("Empty command", field="text")
        # "/cmd@botname" form used in group chats
        name = words[0].lstrip("/").split("@", 1)[0].lower()
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownCommand(f"Unknown command: {words[0]}", field="command", value=words[0])
        logger.debug("dispatching /%s for user %s", name, ctx.user_id)
        result = handler(ctx, words[1:])
        result.setdefault("command", name)
        return result


def _require_profile(db_path: str, user_id: int) -> BiometricProfile:
    profile = drink_store.get_profile(db_path, user_id)
    if profile is None:
        raise InvalidBiometricProfile("User has no profile", field="user_id", value=user_id)
    return profile.validate()


def log_drink(db_path: str, user_id: int, event: DrinkEvent, now: datetime) -> dict:
    """Store one drink, then return the new state and any group milestones hit."""
    profile = _require_profile(db_path, user_id)
    drink_store.insert_drink(db_path, user_id=user_id, event=event)
    history = drink_store.fetch_history(db_path, user_id=user_id)
    counts = drink_store.drink_counts_by_group(db_path, user_id=user_id)
    milestones = []
    for group_id, count in milestones_crossed(counts).items():
        members = drink_store.fetch_history_for_group(db_path, group_id=group_id)
        milestones.append({
            "group_id": group_id,
            "count": count,
            "ranking": [e.to_dict() for e in rank_group(members, now)],
        })
    return {
        "drink": event.to_dict(),
        "state": calculations.compute_current_state(profile, history, now).to_dict(),
        "milestones": milestones,
    }


def commit_retro(db_path: str, user_id: int, events: Sequence[DrinkEvent], now: datetime) -> dict:
    """Store planned back-fill drinks; the state uses the same `now` the plan was made with."""
    profile = _require_profile(db_path, user_id)
    commit_plan(events, lambda e: drink_store.insert_drink(db_path, user_id=user_id, event=e))
    history = drink_store.fetch_history(db_path, user_id=user_id)
    state = calculations.compute_current_state(profile, history, now)
    return {"drinks": [e.to_dict() for e in events], "state": state.to_dict()}


def continue_retro(ctx: CommandContext, text: str) -> dict:
    """Feed one message to the back-fill wizard; commit once it reaches 'done'."""
    wizard = ctx.wizard or RetroWizard()
    if wizard.step == "span":
        wizard = wizard.accept_span(text)
    else:
        wizard = wizard.accept_drinks(text)
    if not wizard.done:
        return {"command": "jalkikellotus", "wizard": wizard.to_dict()}
    result = commit_retro(ctx.db_path, ctx.user_id, wizard.plan(ctx.now), ctx.now)
    result.update({"command": "jalkikellotus", "wizard": None})
    return result


def _start_retro(ctx: CommandContext, args: List[str]) -> dict:
    _require_profile(ctx.db_path, ctx.user_id)
    wizard = RetroWizard()
    if args:
        wizard = wizard.accept_span(args[0])
    return {"wizard": wizard.to_dict()}


def _preset_handler(key: str) -> Handler:
    def handler(ctx: CommandContext, args: List[str]) -> dict:
        event = DrinkEvent(grams_from_preset(key), f"/{key}", ctx.now)
        return log_drink(ctx.db_path, ctx.user_id, event, ctx.now)
    return handler


def _custom_drink(ctx: CommandContext, args: List[str]) -> dict:
    if len(args) < 2:
        raise InvalidDrinkSpecification("Percent and litres are required", field="args", value=args)
    try:
        percent = float(args[0])
        liters = float(args[1])
    except ValueError:
        raise InvalidDrinkSpecification(
            "Percent and litres must be numbers, use a dot as decimal separator",
            field="args",
            value=args,
        )
    grams = event_grams(liters, percent / 100.0)
    event = DrinkEvent(grams, " ".join(["/viina"] + args), ctx.now)
    return log_drink(ctx.db_path, ctx.user_id, event, ctx.now)


def _current_state(ctx: CommandContext, args: List[str]) -> dict:
    if ctx.group_id is not None:
        members = drink_store.fetch_history_for_group(ctx.db_path, group_id=ctx.group_id)
        return {"ranking": [e.to_dict() for e in rank_group(members, ctx.now)]}
    return _private_state(ctx)


def _private_state(ctx: CommandContext) -> dict:
    profile = _require_profile(ctx.db_path, ctx.user_id)
    history = drink_store.fetch_history(ctx.db_path, user_id=ctx.user_id)
    state = calculations.compute_current_state(profile, history, ctx.now)
    out = state.to_dict()
    out["unburned_standard_drinks"] = round(standard_drinks(state.unburned_grams), 2)
    out["lifetime_standard_drinks"] = round(standard_drinks(state.total_grams), 2)
    return out


def _standard_drinks(ctx: CommandContext, args: List[str]) -> dict:
    """Group: unburned standard drinks per member with 12h/24h counts. Private: current level."""
    if ctx.group_id is None:
        return _private_state(ctx)
    members = drink_store.fetch_history_for_group(ctx.db_path, group_id=ctx.group_id)
    return {
        "listing": [
            {
                "display_name": name,
                "standard_drinks": round(unburned, 2),
                "standard_drinks_12h": round(d12, 1),
                "standard_drinks_24h": round(d24, 1),
            }
            for name, unburned, d12, d24 in standard_drinks_listing(members, ctx.now)
        ]
    }


def _recent_drinks(ctx: CommandContext, args: List[str]) -> dict:
    since = ctx.now - timedelta(hours=HISTORY_HOURS)
    history = drink_store.fetch_history_since(ctx.db_path, user_id=ctx.user_id, since=since)
    return {"drinks": [e.to_dict() for e in events_in_window(history, HISTORY_HOURS, ctx.now)]}


def _undo(ctx: CommandContext, args: List[str]) -> dict:
    removed = drink_store.undo_drink(ctx.db_path, user_id=ctx.user_id)
    return {"removed": removed.to_dict() if removed else None}


def _join_group(ctx: CommandContext, args: List[str]) -> dict:
    if ctx.group_id is None:
        raise PermilleError("Use this command in a group", field="group_id")
    joined = drink_store.join_group(ctx.db_path, user_id=ctx.user_id, group_id=ctx.group_id)
    return {"group_id": ctx.group_id, "joined": joined}


def build_router() -> CommandRouter:
    router = CommandRouter()
    for key, preset in PRESETS.items():
        router.register(key, _preset_handler(key), f"/{key} - log one {preset.name}")
    router.register("viina", _custom_drink, "/viina <percent> <litres> - log any drink, e.g. /viina 38 0.5")
    router.register("promillet", _current_state, "/promillet - your permille, or the group leaderboard")
    router.register("annokset", _standard_drinks, "/annokset - unburned standard drinks, per member in a group")
    router.register("otinko", _recent_drinks, "/otinko - drinks logged in the last 48h")
    router.register("undo", _undo, "/undo - remove your latest drink")
    router.register("moro", _join_group, "/moro - join this group's leaderboard")
    router.register("jalkikellotus", _start_retro, "/jalkikellotus - log forgotten drinks over the last hours")
    return router
