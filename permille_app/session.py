"""
Drinking log for one person: profile, drink history, permille helpers.
Times are absolute, timezone-aware datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from permille_app import calculations
from permille_app.drinks import event_grams, grams_from_preset
from permille_app.models import BiometricProfile, BurnState, DrinkEvent


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    profile: BiometricProfile
    _events: List[DrinkEvent] = field(default_factory=list)

    @property
    def events(self) -> List[DrinkEvent]:
        return sorted(self._events, key=lambda e: e.occurred_at)

    def add_event(self, event: DrinkEvent) -> None:
        self._events.append(event)

    def add_preset(self, key: str, at: Optional[datetime] = None) -> DrinkEvent:
        event = DrinkEvent(grams_from_preset(key), key, at or utcnow())
        self.add_event(event)
        return event

    def add_drink(self, volume_liters: float, fraction_by_volume: float, description: str = "", at: Optional[datetime] = None) -> DrinkEvent:
        grams = event_grams(volume_liters, fraction_by_volume)
        event = DrinkEvent(grams, description or f"{volume_liters:g} l {fraction_by_volume * 100:g}%", at or utcnow())
        self.add_event(event)
        return event

    def add_drink_ago(self, hours_ago: float, key: str, now: Optional[datetime] = None) -> DrinkEvent:
        return self.add_preset(key, at=(now or utcnow()) - timedelta(hours=hours_ago))

    def undo(self) -> Optional[DrinkEvent]:
        """Drop the most recent drink."""
        if not self._events:
            return None
        latest = max(self._events, key=lambda e: e.occurred_at)
        self._events.remove(latest)
        return latest

    def state(self, now: Optional[datetime] = None) -> BurnState:
        return calculations.compute_current_state(self.profile, self.events, now or utcnow())

    def permille_now(self, now: Optional[datetime] = None) -> float:
        return calculations.permille_at(self.profile, self.events, now or utcnow())

    def curve(
        self,
        start: datetime,
        end: datetime,
        step_hours: float = 0.25,
    ) -> List[Tuple[float, float]]:
        return calculations.permille_curve(self.profile, self.events, start, end, step_hours=step_hours)
