"""Drink presets and ethanol mass helpers.

Reference "standard drink" = one 0.33 l can of 4.7% beer (about 12.2 g ethanol).
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from permille_app.errors import InvalidDrinkSpecification

# Ethanol density (g/mL) for volume x ABV -> grams.
ETHANOL_DENSITY = 0.789

MAX_VOLUME_LITERS = 10.0


def mass_of_ethanol(volume_liters: float, fraction_by_volume: float) -> float:
    """Convert litres and ABV (0 to 1) to grams of ethanol."""
    if volume_liters is None or not 0.0 <= volume_liters <= MAX_VOLUME_LITERS:
        raise InvalidDrinkSpecification(
            "Volume must be between 0 and 10 litres",
            field="volume_liters",
            bound="0..10",
            value=volume_liters,
        )
    if fraction_by_volume is None or not 0.0 <= fraction_by_volume <= 1.0:
        raise InvalidDrinkSpecification(
            "Alcohol fraction must be between 0 and 1",
            field="fraction_by_volume",
            bound="0..1",
            value=fraction_by_volume,
        )
    ml = volume_liters * 1000.0
    return ml * fraction_by_volume * ETHANOL_DENSITY


@dataclass(frozen=True)
class Preset:
    """A fixed drink with its ethanol resolved once at import."""

    key: str
    name: str
    volume_liters: float
    abv: float  # e.g. 0.047 for 4.7%
    grams: float


def _preset(key: str, name: str, volume_liters: float, abv: float) -> Preset:
    return Preset(key, name, volume_liters, abv, mass_of_ethanol(volume_liters, abv))


PRESETS: Dict[str, Preset] = {
    p.key: p
    for p in (
        _preset("kalja033", "Beer 0.33 l (4.7%)", 0.33, 0.047),
        _preset("kalja05", "Beer 0.5 l (4.7%)", 0.5, 0.047),
        _preset("shotti40", "Shot 4 cl (40%)", 0.04, 0.40),
        _preset("nelonen", "Long drink 0.33 l (5.5%)", 0.33, 0.055),
    )
}

STANDARD_DRINK_GRAMS = PRESETS["kalja033"].grams


def grams_from_preset(key: str) -> float:
    preset = PRESETS.get(key)
    if preset is None:
        raise InvalidDrinkSpecification(f"Unknown drink preset: {key}", field="preset", value=key)
    return preset.grams


def event_grams(volume_liters: float, fraction_by_volume: float) -> float:
    """Grams for a drink about to be logged; a drink must contain some ethanol."""
    grams = mass_of_ethanol(volume_liters, fraction_by_volume)
    if grams <= 0:
        raise InvalidDrinkSpecification(
            "A drink must contain some alcohol",
            field="ethanol_grams",
            bound="> 0",
            value=grams,
        )
    return grams


def standard_drinks(grams: float) -> float:
    return grams / STANDARD_DRINK_GRAMS


def list_presets() -> List[Tuple[str, str]]:
    """Return list of (key, name) for UI dropdowns."""
    return [(p.key, p.name) for p in PRESETS.values()]
