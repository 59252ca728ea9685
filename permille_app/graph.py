"""
Permille-over-time graph. Produces image file or returns data for web clients.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from permille_app.session import Session, utcnow

DRIVING_LIMIT_PERMILLE = 0.5


def curve_data(
    session: Session,
    now: Optional[datetime] = None,
    hours_back: float = 24.0,
    hours_ahead: float = 12.0,
    step_hours: float = 0.25,
) -> List[Tuple[float, float]]:
    """(hours_relative_to_now, permille); negative hours are in the past."""
    now = now or utcnow()
    start = now - timedelta(hours=hours_back)
    points = session.curve(start, now + timedelta(hours=hours_ahead), step_hours=step_hours)
    return [(round(t - hours_back, 4), p) for t, p in points]


def drink_markers(
    session: Session,
    now: Optional[datetime] = None,
    hours_back: float = 24.0,
) -> List[Tuple[float, float, str]]:
    """(hours_relative_to_now, permille right after the drink, description) per drink on the plot."""
    now = now or utcnow()
    start = now - timedelta(hours=hours_back)
    out = []
    for event in session.events:
        if start <= event.occurred_at <= now:
            hours = (event.occurred_at - now).total_seconds() / 3600.0
            out.append((round(hours, 4), session.permille_now(event.occurred_at), event.description))
    return out


def save_permille_graph(
    session: Session,
    output_path: str = "permille_graph.png",
    now: Optional[datetime] = None,
    hours_back: float = 24.0,
    hours_ahead: float = 12.0,
    title: str = "Permille over time",
) -> str:
    """Draw the curve, one dot per drink and a line where the user is sober again.

    Needs the `graph` extra (matplotlib).
    """
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib is required for save_permille_graph. pip install permille-tracker[graph]")

    now = now or utcnow()
    points = curve_data(session, now=now, hours_back=hours_back, hours_ahead=hours_ahead) or [(0.0, 0.0)]
    times, values = zip(*points)
    markers = drink_markers(session, now=now, hours_back=hours_back)
    sober_in = session.state(now).hours_until_sober

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.plot(times, values, color="#7c3aed", linewidth=2, label="Permille")
    if markers:
        ax.scatter(
            [m[0] for m in markers],
            [m[1] for m in markers],
            color="#f59e0b",
            zorder=3,
            label=f"Drinks ({len(markers)})",
        )
    ax.axhline(y=DRIVING_LIMIT_PERMILLE, color="#dc2626", linestyle=":", linewidth=1, label="0.5‰")
    ax.axvline(x=0, color="#6b7280", linewidth=1, label="Now")
    if 0 < sober_in <= hours_ahead:
        ax.axvline(x=sober_in, color="#16a34a", linestyle="--", linewidth=1, label=f"Sober in {sober_in:.1f}h")
    ax.set_xlim(-hours_back, hours_ahead)
    ax.set_ylim(bottom=0)
    ax.set_xlabel("Hours from now")
    ax.set_ylabel("‰")
    ax.set_title(title)
    ax.legend(loc="upper left", fontsize="small")
    fig.tight_layout()
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=120)
    plt.close(fig)
    return output_path
