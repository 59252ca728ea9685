"""
Permille tracker CLI demo. Run from project root: python -m permille_app.main
Builds a sample evening, prints current permille and time to sober, and optionally saves a graph.
"""

import argparse
import logging
import sys

from permille_app.graph import curve_data, save_permille_graph
from permille_app.models import BiometricProfile
from permille_app.retro import DrinkSpec, plan_retroactive_drinks
from permille_app.session import Session, utcnow


def main():
    parser = argparse.ArgumentParser(description="Permille tracker: log drinks and view permille over time")
    parser.add_argument("--weight", type=float, default=80.0, help="Body weight (kg)")
    parser.add_argument("--female", action="store_true", help="Female (default male)")
    parser.add_argument("--span", type=float, default=3.0, help="Hours to spread the demo drinks over")
    parser.add_argument("--graph", type=str, metavar="FILE", help="Save permille graph to FILE (e.g. permille.png)")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    profile = BiometricProfile(weight_kg=args.weight, sex="female" if args.female else "male").validate()
    session = Session(profile)
    now = utcnow()

    # Demo evening: three beers and a shot, back-filled over the span.
    specs = [DrinkSpec.from_preset("kalja05")] * 3 + [DrinkSpec.from_preset("shotti40")]
    for event in plan_retroactive_drinks(args.span, specs, now):
        session.add_event(event)
    print(f"Demo session: {len(session.events)} drinks over the last {args.span:g}h")

    state = session.state(now)
    print(f"Weight: {profile.weight_kg:g} kg, permille now: {state.permille:.2f}‰")
    print(f"Unburned: {state.unburned_grams:.1f} g, sober in {state.hours_until_sober:.1f}h")

    curve = curve_data(session, now=now, hours_back=args.span, hours_ahead=8.0)
    print(f"Curve points: {len(curve)} (hours, permille) from -{args.span:g}h to +8h")

    if args.graph:
        try:
            path = save_permille_graph(session, output_path=args.graph, now=now, hours_back=args.span, hours_ahead=8.0)
            print(f"Graph saved: {path}")
        except ImportError:
            print("matplotlib not installed. pip install matplotlib", file=sys.stderr)
            sys.exit(1)

    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
