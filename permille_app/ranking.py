"""Group leaderboards built from every member's drink history."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Mapping, Sequence, Tuple, Union

from permille_app import calculations
from permille_app.drinks import standard_drinks
from permille_app.errors import InvalidBiometricProfile
from permille_app.models import BiometricProfile, DrinkEvent
from permille_app.windows import window_sum

logger = logging.getLogger(__name__)

Member = Tuple[BiometricProfile, Sequence[DrinkEvent]]
GroupHistories = Union[Mapping[object, Member], Iterable[Member]]


@dataclass(frozen=True)
class GroupRankingEntry:
    display_name: str
    permille: float
    standard_drinks_12h: float
    standard_drinks_24h: float

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "permille": round(self.permille, 2),
            "standard_drinks_12h": round(self.standard_drinks_12h, 1),
            "standard_drinks_24h": round(self.standard_drinks_24h, 1),
        }


def _members(group_histories: GroupHistories) -> List[Member]:
    if isinstance(group_histories, Mapping):
        return list(group_histories.values())
    return list(group_histories)


def _valid(profile: BiometricProfile) -> bool:
    try:
        profile.validate()
    except InvalidBiometricProfile as exc:
        logger.warning("skipping member %r: %s", profile.display_name, exc)
        return False
    return True


def rank_group(group_histories: GroupHistories, now: datetime) -> List[GroupRankingEntry]:
    """Members currently above 0 permille, highest first.

    Sober members are left out. Ties keep the input order.
    """
    entries: List[GroupRankingEntry] = []
    for profile, history in _members(group_histories):
        if not _valid(profile):
            continue
        permille = calculations.permille_at(profile, history, now)
        if permille == 0:
            continue
        entries.append(
            GroupRankingEntry(
                display_name=profile.display_name,
                permille=permille,
                standard_drinks_12h=standard_drinks(window_sum(history, 12, now).gram_sum),
                standard_drinks_24h=standard_drinks(window_sum(history, 24, now).gram_sum),
            )
        )
    entries.sort(key=lambda e: e.permille, reverse=True)
    return entries


def standard_drinks_listing(group_histories: GroupHistories, now: datetime) -> List[Tuple[str, float, float, float]]:
    """(display_name, unburned standard drinks, 12h drinks, 24h drinks), most unburned first."""
    rows: List[Tuple[str, float, float, float]] = []
    for profile, history in _members(group_histories):
        if not _valid(profile):
            continue
        grams = calculations.unburned_grams(profile, history, now)
        if grams == 0:
            continue
        rows.append((
            profile.display_name,
            standard_drinks(grams),
            standard_drinks(window_sum(history, 12, now).gram_sum),
            standard_drinks(window_sum(history, 24, now).gram_sum),
        ))
    rows.sort(key=lambda r: r[1], reverse=True)
    return rows
