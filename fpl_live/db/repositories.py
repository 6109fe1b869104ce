"""Repository classes: one per database table.

Each repository takes a ``db_path`` in ``__init__`` and uses
:func:`fpl_live.db.connection.connect` for every operation.  JSON columns are
encoded and decoded here so callers only ever see plain Python values.
"""

from __future__ import annotations

import json
from pathlib import Path

from fpl_live.db.connection import connect
from fpl_live.paths import DB_PATH


# ---------------------------------------------------------------------------
# LiveStateRepository
# ---------------------------------------------------------------------------

class LiveStateRepository:
    """Key/value store for the ``live_state`` table, scoped by gameweek."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH

    def get(self, gameweek: int, key: str):
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value_json FROM live_state WHERE gameweek=? AND key=?",
                (gameweek, key),
            ).fetchone()
        return json.loads(row["value_json"]) if row else None

    def put(self, gameweek: int, key: str, value) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO live_state (gameweek, key, value_json)
                   VALUES (?, ?, ?)
                   ON CONFLICT(gameweek, key) DO UPDATE SET
                     value_json=excluded.value_json,
                     updated_at=datetime('now')""",
                (gameweek, key, json.dumps(value)),
            )
            conn.commit()

    def latest_gameweek(self) -> int | None:
        """Most recent gameweek with any stored detector state."""
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT MAX(gameweek) FROM live_state").fetchone()
        return row[0] if row and row[0] is not None else None


# ---------------------------------------------------------------------------
# EventLogRepository
# ---------------------------------------------------------------------------

class EventLogRepository:
    """Append/read access to the ``chrono_event`` table.

    :meth:`save_detection` writes the appended events, the truncation and
    the detector's new previous-state in a single transaction, so a crash
    can never leave the log ahead of (or behind) the state it was diffed
    against.
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH

    def get_events(self, gameweek: int, limit: int | None = None) -> list[dict]:
        """Events for *gameweek* in log order (oldest first).

        With *limit*, only the newest ``limit`` events are returned.
        """
        with connect(self.db_path) as conn:
            if limit is None:
                rows = conn.execute(
                    "SELECT payload_json FROM chrono_event WHERE gameweek=? ORDER BY seq",
                    (gameweek,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT payload_json FROM (
                         SELECT seq, payload_json FROM chrono_event
                         WHERE gameweek=? ORDER BY seq DESC LIMIT ?
                       ) ORDER BY seq""",
                    (gameweek, limit),
                ).fetchall()
        return [json.loads(r["payload_json"]) for r in rows]

    def max_seq(self, gameweek: int) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT MAX(seq) FROM chrono_event WHERE gameweek=?", (gameweek,),
            ).fetchone()
        return row[0] or 0

    def save_detection(
        self,
        gameweek: int,
        appended: list[dict],
        keep_from_seq: int,
        state: dict[str, object],
    ) -> None:
        """Persist one detection pass atomically.

        Parameters
        ----------
        gameweek:
            Gameweek the pass belongs to.
        appended:
            Newly appended event dicts (each carrying ``seq``, ``signature``,
            ``type`` and ``fixture_id``).
        keep_from_seq:
            Events with a lower ``seq`` are dropped (log truncation).
        state:
            ``live_state`` key -> value to upsert alongside the events.
        """
        with connect(self.db_path) as conn:
            try:
                conn.execute("BEGIN")
                conn.executemany(
                    """INSERT INTO chrono_event
                       (gameweek, seq, signature, event_type, fixture_id, payload_json)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    [
                        (
                            gameweek, e["seq"], e["signature"], e["type"],
                            e.get("fixture_id"), json.dumps(e),
                        )
                        for e in appended
                    ],
                )
                conn.execute(
                    "DELETE FROM chrono_event WHERE gameweek=? AND seq<?",
                    (gameweek, keep_from_seq),
                )
                for key, value in state.items():
                    conn.execute(
                        """INSERT INTO live_state (gameweek, key, value_json)
                           VALUES (?, ?, ?)
                           ON CONFLICT(gameweek, key) DO UPDATE SET
                             value_json=excluded.value_json,
                             updated_at=datetime('now')""",
                        (gameweek, key, json.dumps(value)),
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def clear_other_gameweeks(self, gameweek: int) -> None:
        """Drop everything the detector stored for gameweeks other than *gameweek*."""
        with connect(self.db_path) as conn:
            conn.execute("DELETE FROM chrono_event WHERE gameweek<>?", (gameweek,))
            conn.execute("DELETE FROM live_state WHERE gameweek<>?", (gameweek,))
            conn.commit()


# ---------------------------------------------------------------------------
# ScoreRepository
# ---------------------------------------------------------------------------

class ScoreRepository:
    """CRUD for the ``manager_score`` table."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH

    def save_score(
        self,
        gameweek: int,
        entry_id: int,
        score: dict,
        player_name: str = "",
        entry_name: str = "",
    ) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO manager_score
                   (gameweek, entry_id, player_name, entry_name, total, net,
                    bench_points, stale, score_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(gameweek, entry_id) DO UPDATE SET
                     player_name=excluded.player_name,
                     entry_name=excluded.entry_name,
                     total=excluded.total,
                     net=excluded.net,
                     bench_points=excluded.bench_points,
                     stale=excluded.stale,
                     score_json=excluded.score_json,
                     updated_at=datetime('now')""",
                (
                    gameweek, entry_id, player_name, entry_name,
                    score.get("total", 0),
                    score.get("net", 0),
                    score.get("bench_points", 0),
                    int(bool(score.get("stale", False))),
                    json.dumps(score),
                ),
            )
            conn.commit()

    def set_official_points(self, gameweek: int, entry_id: int, points: int) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE manager_score SET official_points=? WHERE gameweek=? AND entry_id=?",
                (points, gameweek, entry_id),
            )
            conn.commit()

    def get_score(self, gameweek: int, entry_id: int) -> dict | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM manager_score WHERE gameweek=? AND entry_id=?",
                (gameweek, entry_id),
            ).fetchone()
        return _score_row(row) if row else None

    def get_scores(self, gameweek: int) -> list[dict]:
        """All manager scores for *gameweek*, best net score first."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM manager_score WHERE gameweek=? ORDER BY net DESC, entry_id",
                (gameweek,),
            ).fetchall()
        return [_score_row(r) for r in rows]


def _score_row(row) -> dict:
    d = dict(row)
    d["score"] = json.loads(d.pop("score_json"))
    d["stale"] = bool(d["stale"])
    return d


# ---------------------------------------------------------------------------
# GameweekResultRepository
# ---------------------------------------------------------------------------

class GameweekResultRepository:
    """Reconciliation status per gameweek (``provisional`` or ``final``)."""

    PROVISIONAL = "provisional"
    FINAL = "final"

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH

    def set_status(self, gameweek: int, status: str, details: dict | None = None) -> None:
        if status not in (self.PROVISIONAL, self.FINAL):
            raise ValueError(f"Unknown gameweek result status: {status!r}")
        with connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO gameweek_result (gameweek, status, details_json)
                   VALUES (?, ?, ?)
                   ON CONFLICT(gameweek) DO UPDATE SET
                     status=excluded.status,
                     details_json=excluded.details_json,
                     computed_at=datetime('now')""",
                (gameweek, status, json.dumps(details) if details is not None else None),
            )
            conn.commit()

    def get_status(self, gameweek: int) -> str | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT status FROM gameweek_result WHERE gameweek=?", (gameweek,),
            ).fetchone()
        return row["status"] if row else None

    def get_all(self) -> dict[int, str]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT gameweek, status FROM gameweek_result ORDER BY gameweek",
            ).fetchall()
        return {r["gameweek"]: r["status"] for r in rows}
