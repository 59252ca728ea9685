"""Value types shared by the permille core."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from permille_app.errors import InvalidBiometricProfile

# Distribution ratio (Widmark r) keyed by sex category.
DISTRIBUTION_RATIOS = {
    "male": 0.75,
    "female": 0.66,
}

# Profiles imported from the older Finnish-language bot store these.
SEX_ALIASES = {
    "mies": "male",
    "nainen": "female",
}


def resolve_sex(sex: Optional[str]) -> str:
    key = str(sex or "").strip().lower()
    key = SEX_ALIASES.get(key, key)
    if key not in DISTRIBUTION_RATIOS:
        raise InvalidBiometricProfile(
            "Sex must be male or female",
            field="sex",
            bound="|".join(DISTRIBUTION_RATIOS),
            value=sex,
        )
    return key


@dataclass(frozen=True)
class BiometricProfile:
    weight_kg: float
    sex: str
    display_name: str = ""

    @property
    def distribution_ratio(self) -> float:
        return DISTRIBUTION_RATIOS[resolve_sex(self.sex)]

    def validate(self) -> "BiometricProfile":
        """Raise InvalidBiometricProfile unless weight and sex are usable."""
        if self.weight_kg is None or not math.isfinite(self.weight_kg) or self.weight_kg <= 0:
            raise InvalidBiometricProfile(
                "Weight must be a positive number of kilograms",
                field="weight_kg",
                bound="> 0",
                value=self.weight_kg,
            )
        resolve_sex(self.sex)
        return self


@dataclass(frozen=True)
class DrinkEvent:
    ethanol_grams: float
    description: str
    occurred_at: datetime

    def to_dict(self) -> dict:
        return {
            "ethanol_grams": round(self.ethanol_grams, 3),
            "description": self.description,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class BurnState:
    total_grams: float
    unburned_grams: float
    permille: float
    hours_until_sober: float
    burn_rate_grams_per_hour: float

    def to_dict(self) -> dict:
        return {
            "total_grams": round(self.total_grams, 2),
            "unburned_grams": round(self.unburned_grams, 2),
            "permille": round(self.permille, 3),
            "hours_until_sober": round(self.hours_until_sober, 2),
            "burn_rate_grams_per_hour": round(self.burn_rate_grams_per_hour, 2),
        }


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0
