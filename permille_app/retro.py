"""Back-filling drinks the user forgot to log.

The user declares a span ("the last 3 hours") and lists the drinks; they
are spread evenly over the span, first listed drink earliest.

The conversation that collects span and drinks is a plain value
(RetroWizard) the caller keeps between messages and hands to
plan_retroactive_drinks once it reaches the "done" step.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from permille_app.drinks import PRESETS, event_grams
from permille_app.errors import InvalidDrinkSpecification, InvalidTimeSpan, UpstreamUnavailable
from permille_app.models import DrinkEvent

logger = logging.getLogger(__name__)

MAX_SPAN_HOURS = 24.0

STEP_SPAN = "span"
STEP_DRINKS = "drinks"
STEP_DONE = "done"

STOP_WORD = "stop"


@dataclass(frozen=True)
class DrinkSpec:
    description: str
    volume_liters: float
    fraction_by_volume: float

    @classmethod
    def from_preset(cls, key: str) -> "DrinkSpec":
        preset = PRESETS.get(key)
        if preset is None:
            raise InvalidDrinkSpecification(f"Unknown drink preset: {key}", field="preset", value=key)
        return cls(preset.key, preset.volume_liters, preset.abv)

    def grams(self) -> float:
        return event_grams(self.volume_liters, self.fraction_by_volume)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "volume_liters": self.volume_liters,
            "fraction_by_volume": self.fraction_by_volume,
        }


def validate_span(span_hours: float) -> float:
    if span_hours is None or not 0.0 < span_hours <= MAX_SPAN_HOURS:
        raise InvalidTimeSpan(
            "Span must be more than 0 and at most 24 hours",
            field="span_hours",
            bound="(0, 24]",
            value=span_hours,
        )
    return float(span_hours)


def backdate_offsets(span_hours: float, count: int) -> List[float]:
    """Hours before now for each of `count` drinks.

    A single drink sits at the start of the span, not at now.
    """
    step = span_hours / max(count - 1, 1)
    return [span_hours - step * i for i in range(count)]


def plan_retroactive_drinks(span_hours: float, drink_specs: Sequence[DrinkSpec], now: datetime) -> List[DrinkEvent]:
    """Validate everything, then return the backdated DrinkEvents oldest first."""
    span = validate_span(span_hours)
    if not drink_specs:
        raise InvalidDrinkSpecification("At least one drink is required", field="drinks", bound=">= 1", value=0)

    # Convert all before emitting any so a bad entry rejects the whole batch.
    converted: List[Tuple[str, float]] = [(spec.description, spec.grams()) for spec in drink_specs]

    events = []
    for (description, grams), hours_ago in zip(converted, backdate_offsets(span, len(converted))):
        events.append(DrinkEvent(grams, description, now - timedelta(hours=hours_ago)))
    logger.debug("planned %d backdated drinks over %.2fh", len(events), span)
    return events


def commit_plan(events: Sequence[DrinkEvent], insert: Callable[[DrinkEvent], bool]) -> int:
    """Insert each planned event; raise UpstreamUnavailable on the first failed write.

    Already inserted siblings are not rolled back here.
    """
    inserted = 0
    for event in events:
        if not insert(event):
            raise UpstreamUnavailable(
                f"Storing drink {inserted + 1} of {len(events)} failed",
                field="drinks",
                value=inserted,
            )
        inserted += 1
    return inserted


def parse_drink_line(line: str) -> DrinkSpec:
    """Parse '<name> <centilitres> <percent>', e.g. 'beer 33 4.7'."""
    parts = line.strip().rsplit(maxsplit=2)
    if len(parts) != 3:
        raise InvalidDrinkSpecification(
            "Write drinks as: name centilitres percent", field="line", value=line
        )
    name, cl_raw, pct_raw = parts
    try:
        centiliters = float(cl_raw)
        percent = float(pct_raw)
    except ValueError:
        raise InvalidDrinkSpecification(
            "Centilitres and percent must be numbers, use a dot as decimal separator",
            field="line",
            value=line,
        )
    spec = DrinkSpec(name, centiliters / 100.0, percent / 100.0)
    spec.grams()
    return spec


@dataclass(frozen=True)
class RetroWizard:
    step: str = STEP_SPAN
    span_hours: Optional[float] = None
    drinks: Tuple[DrinkSpec, ...] = field(default_factory=tuple)

    @property
    def done(self) -> bool:
        return self.step == STEP_DONE

    def accept_span(self, text: str) -> "RetroWizard":
        if self.step != STEP_SPAN:
            raise ValueError(f"wizard expects {self.step}, not a span")
        try:
            hours = float(str(text).strip())
        except ValueError:
            raise InvalidTimeSpan("Span must be a number of hours", field="span_hours", bound="(0, 24]", value=text)
        return replace(self, step=STEP_DRINKS, span_hours=validate_span(hours))

    def accept_drinks(self, text: str) -> "RetroWizard":
        """Add one drink per line; a line reading 'stop' finishes the wizard."""
        if self.step != STEP_DRINKS:
            raise ValueError(f"wizard expects {self.step}, not drinks")
        drinks = list(self.drinks)
        step = STEP_DRINKS
        for line in str(text).splitlines():
            if not line.strip():
                continue
            if line.strip().lower() == STOP_WORD:
                step = STEP_DONE
                break
            drinks.append(parse_drink_line(line))
        return replace(self, step=step, drinks=tuple(drinks))

    def plan(self, now: datetime) -> List[DrinkEvent]:
        if not self.done:
            raise ValueError("wizard is not finished")
        return plan_retroactive_drinks(self.span_hours, self.drinks, now)

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "span_hours": self.span_hours,
            "drinks": [d.to_dict() for d in self.drinks],
        }

    @classmethod
    def from_dict(cls, raw) -> "RetroWizard":
        if not isinstance(raw, dict) or raw.get("step") not in (STEP_SPAN, STEP_DRINKS, STEP_DONE):
            return cls()
        drinks = tuple(
            DrinkSpec(str(d["description"]), float(d["volume_liters"]), float(d["fraction_by_volume"]))
            for d in raw.get("drinks") or []
        )
        return cls(step=raw["step"], span_hours=raw.get("span_hours"), drinks=drinks)
