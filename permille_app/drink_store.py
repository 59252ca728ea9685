"""SQLite-backed drink log, user profiles and group membership.

Drink times are stored as UTC epoch seconds so ordering and range queries
stay numeric.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from permille_app.errors import UpstreamUnavailable
from permille_app.models import BiometricProfile, DrinkEvent

logger = logging.getLogger(__name__)


@contextmanager
def _connect(db_path: str) -> Iterator[sqlite3.Connection]:
    try:
        with sqlite3.connect(db_path) as conn:
            conn.row_factory = sqlite3.Row
            yield conn
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as exc:
        logger.error("drink store %s failed: %s", db_path, exc)
        raise UpstreamUnavailable("Drink store is unavailable", field="db", value=db_path) from exc


def _to_ts(at: datetime) -> float:
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at.timestamp()


def _from_ts(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc)


def _event(row: sqlite3.Row) -> DrinkEvent:
    return DrinkEvent(row["grams"], row["description"], _from_ts(row["occurred_at"]))


def _profile(row: sqlite3.Row) -> BiometricProfile:
    return BiometricProfile(weight_kg=row["weight_kg"], sex=row["sex"], display_name=row["display_name"])


def init_db(db_path: str) -> None:
    with _connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                display_name TEXT NOT NULL,
                weight_kg REAL NOT NULL,
                sex TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS drinks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                grams REAL NOT NULL,
                description TEXT NOT NULL,
                occurred_at REAL NOT NULL,
                FOREIGN KEY(user_id) REFERENCES users(id)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_drinks_user_time ON drinks(user_id, occurred_at)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                joined_at TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (group_id, user_id),
                FOREIGN KEY(user_id) REFERENCES users(id)
            )
            """
        )
        conn.commit()


def create_user(db_path: str, *, display_name: str, weight_kg: float, sex: str) -> dict[str, Any]:
    with _connect(db_path) as conn:
        cur = conn.execute(
            "INSERT INTO users (display_name, weight_kg, sex) VALUES (?, ?, ?)",
            (display_name.strip(), float(weight_kg), sex),
        )
        conn.commit()
        user_id = int(cur.lastrowid)
    return {"id": user_id, "display_name": display_name.strip(), "weight_kg": float(weight_kg), "sex": sex}


def update_user(db_path: str, *, user_id: int, display_name: str, weight_kg: float, sex: str) -> bool:
    with _connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE users SET display_name = ?, weight_kg = ?, sex = ? WHERE id = ?",
            (display_name.strip(), float(weight_kg), sex, user_id),
        )
        conn.commit()
        return cur.rowcount > 0


def get_user(db_path: str, user_id: int) -> dict[str, Any] | None:
    with _connect(db_path) as conn:
        row = conn.execute(
            "SELECT id, display_name, weight_kg, sex FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
    if row is None:
        return None
    return {"id": row["id"], "display_name": row["display_name"], "weight_kg": row["weight_kg"], "sex": row["sex"]}


def get_profile(db_path: str, user_id: int) -> BiometricProfile | None:
    with _connect(db_path) as conn:
        row = conn.execute(
            "SELECT display_name, weight_kg, sex FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
    return _profile(row) if row is not None else None


def insert_drink(db_path: str, *, user_id: int, event: DrinkEvent) -> bool:
    with _connect(db_path) as conn:
        conn.execute(
            "INSERT INTO drinks (user_id, grams, description, occurred_at) VALUES (?, ?, ?, ?)",
            (user_id, float(event.ethanol_grams), event.description[:200], _to_ts(event.occurred_at)),
        )
        conn.commit()
    return True


def fetch_history(db_path: str, *, user_id: int) -> list[DrinkEvent]:
    with _connect(db_path) as conn:
        rows = conn.execute(
            "SELECT grams, description, occurred_at FROM drinks WHERE user_id = ? ORDER BY occurred_at ASC, id ASC",
            (user_id,),
        ).fetchall()
    return [_event(row) for row in rows]


def fetch_history_since(db_path: str, *, user_id: int, since: datetime) -> list[DrinkEvent]:
    with _connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT grams, description, occurred_at
            FROM drinks
            WHERE user_id = ? AND occurred_at > ?
            ORDER BY occurred_at ASC, id ASC
            """,
            (user_id, _to_ts(since)),
        ).fetchall()
    return [_event(row) for row in rows]


def undo_drink(db_path: str, *, user_id: int) -> DrinkEvent | None:
    """Delete and return the user's most recent drink."""
    with _connect(db_path) as conn:
        row = conn.execute(
            """
            SELECT id, grams, description, occurred_at
            FROM drinks
            WHERE user_id = ?
            ORDER BY occurred_at DESC, id DESC
            LIMIT 1
            """,
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        conn.execute("DELETE FROM drinks WHERE id = ?", (row["id"],))
        conn.commit()
    return _event(row)


def join_group(db_path: str, *, user_id: int, group_id: int) -> bool:
    """Returns False when the user was already a member."""
    try:
        with _connect(db_path) as conn:
            conn.execute(
                "INSERT INTO group_members (group_id, user_id) VALUES (?, ?)",
                (group_id, user_id),
            )
            conn.commit()
    except sqlite3.IntegrityError:
        return False
    return True


def fetch_history_for_group(db_path: str, *, group_id: int) -> dict[int, tuple[BiometricProfile, list[DrinkEvent]]]:
    """{user_id: (profile, history)} for every member, in join order."""
    with _connect(db_path) as conn:
        members = conn.execute(
            """
            SELECT u.id, u.display_name, u.weight_kg, u.sex
            FROM group_members gm
            JOIN users u ON u.id = gm.user_id
            WHERE gm.group_id = ?
            ORDER BY gm.rowid ASC
            """,
            (group_id,),
        ).fetchall()
        drinks = conn.execute(
            """
            SELECT d.user_id, d.grams, d.description, d.occurred_at
            FROM drinks d
            JOIN group_members gm ON gm.user_id = d.user_id
            WHERE gm.group_id = ?
            ORDER BY d.occurred_at ASC, d.id ASC
            """,
            (group_id,),
        ).fetchall()

    out: dict[int, tuple[BiometricProfile, list[DrinkEvent]]] = {
        row["id"]: (_profile(row), []) for row in members
    }
    for row in drinks:
        out[row["user_id"]][1].append(_event(row))
    return out


def drink_counts_by_group(db_path: str, *, user_id: int) -> dict[int, int]:
    """Lifetime drink count of every group the user belongs to."""
    with _connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT gm.group_id AS group_id, COUNT(d.id) AS drink_count
            FROM group_members gm
            LEFT JOIN drinks d ON d.user_id = gm.user_id
            WHERE gm.group_id IN (SELECT group_id FROM group_members WHERE user_id = ?)
            GROUP BY gm.group_id
            """,
            (user_id,),
        ).fetchall()
    return {row["group_id"]: row["drink_count"] for row in rows}


STATS_WINDOWS_DAYS = (7, 14)
TOP_USERS_LIMIT = 10


def stats(db_path: str, *, now: datetime) -> dict[str, Any]:
    """Activity counts for the operator: active users/groups per window, totals, top drinkers."""
    out: dict[str, Any] = {}
    with _connect(db_path) as conn:
        for days in STATS_WINDOWS_DAYS:
            since = _to_ts(now - timedelta(days=days))
            out[f"active_users_{days}d"] = conn.execute(
                "SELECT COUNT(DISTINCT user_id) FROM drinks WHERE occurred_at >= ?",
                (since,),
            ).fetchone()[0]
            out[f"active_groups_{days}d"] = conn.execute(
                """
                SELECT COUNT(DISTINCT gm.group_id)
                FROM drinks d
                JOIN group_members gm ON gm.user_id = d.user_id
                WHERE d.occurred_at >= ?
                """,
                (since,),
            ).fetchone()[0]
        out["users"] = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        out["groups"] = conn.execute("SELECT COUNT(DISTINCT group_id) FROM group_members").fetchone()[0]
        rows = conn.execute(
            """
            SELECT u.id, u.display_name, COUNT(d.id) AS drink_count
            FROM drinks d
            JOIN users u ON u.id = d.user_id
            GROUP BY u.id
            ORDER BY drink_count DESC, u.id ASC
            LIMIT ?
            """,
            (TOP_USERS_LIMIT,),
        ).fetchall()
    out["top_users"] = [
        {"user_id": row["id"], "display_name": row["display_name"], "drink_count": row["drink_count"]}
        for row in rows
    ]
    return out
