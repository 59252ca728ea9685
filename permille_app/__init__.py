"""
Permille tracker: Widmark-based permille math, group leaderboards and drink back-filling.
Use from project root: python -m permille_app.main
"""

from permille_app.drinks import (
    PRESETS,
    STANDARD_DRINK_GRAMS,
    grams_from_preset,
    list_presets,
    mass_of_ethanol,
)
from permille_app.calculations import (
    burn_rate,
    compute_current_state,
    hours_until_sober,
    permille_at,
    permille_curve,
    unburned_grams,
)
from permille_app.errors import (
    InvalidBiometricProfile,
    InvalidDrinkSpecification,
    InvalidTimeSpan,
    PermilleError,
    UpstreamUnavailable,
)
from permille_app.milestones import check_milestone
from permille_app.models import BiometricProfile, BurnState, DrinkEvent
from permille_app.ranking import GroupRankingEntry, rank_group
from permille_app.retro import DrinkSpec, RetroWizard, plan_retroactive_drinks
from permille_app.session import Session
from permille_app.windows import WindowSum, window_sum

__all__ = [
    "BiometricProfile",
    "BurnState",
    "DrinkEvent",
    "DrinkSpec",
    "GroupRankingEntry",
    "RetroWizard",
    "Session",
    "WindowSum",
    "PermilleError",
    "InvalidBiometricProfile",
    "InvalidDrinkSpecification",
    "InvalidTimeSpan",
    "UpstreamUnavailable",
    "burn_rate",
    "check_milestone",
    "compute_current_state",
    "hours_until_sober",
    "permille_at",
    "permille_curve",
    "unburned_grams",
    "rank_group",
    "plan_retroactive_drinks",
    "window_sum",
    "grams_from_preset",
    "list_presets",
    "mass_of_ethanol",
    "PRESETS",
    "STANDARD_DRINK_GRAMS",
]
