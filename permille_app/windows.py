"""Trailing-window drink counts and gram sums (12h / 24h / 48h)."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from permille_app.models import DrinkEvent

DEFAULT_WINDOWS_HOURS = (12, 24, 48)


@dataclass(frozen=True)
class WindowSum:
    window_hours: float
    count: int
    gram_sum: float
    earliest: Optional[datetime] = None


def events_in_window(events: Iterable[DrinkEvent], hours: float, now: datetime) -> List[DrinkEvent]:
    """Events with occurred_at strictly after now - hours, oldest first."""
    cutoff = now - timedelta(hours=hours)
    recent = [e for e in events if e.occurred_at > cutoff]
    return sorted(recent, key=lambda e: e.occurred_at)


def window_sum(events: Iterable[DrinkEvent], hours: float, now: datetime) -> WindowSum:
    recent = events_in_window(events, hours, now)
    if not recent:
        return WindowSum(window_hours=hours, count=0, gram_sum=0.0)
    return WindowSum(
        window_hours=hours,
        count=len(recent),
        gram_sum=sum(e.ethanol_grams for e in recent),
        earliest=recent[0].occurred_at,
    )


def window_sums(
    events: Sequence[DrinkEvent],
    now: datetime,
    hours: Iterable[float] = DEFAULT_WINDOWS_HOURS,
) -> Dict[float, WindowSum]:
    return {h: window_sum(events, h, now) for h in hours}
