"""Permille calculations using Widmark-style rise and linear elimination.

Model:
- Rise: permille = grams / (weight_kg * r)
- r = 0.75 (male), 0.66 (female)
- Elimination: weight_kg * r * 0.15 grams per hour (zero-order)

Every drink decays on its own straight line from its own start amount and
the unburned amounts are summed. Overlapping drinks are not pooled into one
compartment; historical numbers depend on this, so keep it.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

from permille_app.models import BiometricProfile, BurnState, DrinkEvent, hours_between

logger = logging.getLogger(__name__)

# Elimination (permille per hour)
ELIMINATION_PER_HOUR = 0.15


def _body_water_kg(profile: BiometricProfile) -> float:
    profile.validate()
    return profile.weight_kg * profile.distribution_ratio


def burn_rate(profile: BiometricProfile) -> float:
    """Grams of ethanol eliminated per hour."""
    return _body_water_kg(profile) * ELIMINATION_PER_HOUR


def total_grams(history: Sequence[DrinkEvent]) -> float:
    return sum(e.ethanol_grams for e in history)


def unburned_grams(profile: BiometricProfile, history: Sequence[DrinkEvent], at: datetime) -> float:
    """Grams still in the body at `at`; drinks after `at` are ignored."""
    rate = burn_rate(profile)
    grams = 0.0
    for event in history:
        if event.occurred_at > at:
            continue
        elapsed = hours_between(event.occurred_at, at)
        grams += max(0.0, event.ethanol_grams - rate * elapsed)
    return grams


def permille_at(profile: BiometricProfile, history: Sequence[DrinkEvent], at: datetime) -> float:
    return unburned_grams(profile, history, at) / _body_water_kg(profile)


def hours_until_sober(profile: BiometricProfile, history: Sequence[DrinkEvent], at: datetime) -> float:
    grams = unburned_grams(profile, history, at)
    if grams <= 0:
        return 0.0
    return grams / burn_rate(profile)


def compute_current_state(profile: BiometricProfile, history: Sequence[DrinkEvent], now: datetime) -> BurnState:
    """Snapshot of unburned grams, permille and time to sober at `now`."""
    rate = burn_rate(profile)
    grams = unburned_grams(profile, history, now)
    state = BurnState(
        total_grams=total_grams(history),
        unburned_grams=grams,
        permille=grams / _body_water_kg(profile),
        hours_until_sober=grams / rate if grams > 0 else 0.0,
        burn_rate_grams_per_hour=rate,
    )
    logger.debug("state for %d drinks at %s: %.3f permille", len(history), now.isoformat(), state.permille)
    return state


def permille_curve(
    profile: BiometricProfile,
    history: Sequence[DrinkEvent],
    start: datetime,
    end: datetime,
    step_hours: float = 0.25,
) -> List[Tuple[float, float]]:
    """Return (hours_from_start, permille) pairs for graphing."""
    if step_hours <= 0:
        raise ValueError("step_hours must be > 0")
    if end < start:
        return []

    span = hours_between(start, end)
    points: List[Tuple[float, float]] = []
    i = 0
    while i * step_hours <= span:
        offset = i * step_hours
        t = start + timedelta(hours=offset)
        points.append((round(offset, 4), permille_at(profile, history, t)))
        i += 1
    return points
