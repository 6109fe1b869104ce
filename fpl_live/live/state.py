"""Explicit holder for everything the live pipeline keeps in memory.

One instance is created by ``__main__`` and handed to the tracker, the
scheduler and the Flask app.  Readers get copies; every mutation goes
through a method that takes the lock.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from fpl_live.schemas.upstream import GameweekSnapshot, LeagueEntry


class LiveState:
    def __init__(self):
        self._lock = threading.Lock()
        self._gameweek: int | None = None
        self._snapshot: GameweekSnapshot | None = None
        self._managers: list[LeagueEntry] = []
        self._scores: dict[int, dict] = {}
        self._last_poll_at: datetime | None = None
        self._last_poll: dict = {}

    @property
    def gameweek(self) -> int | None:
        with self._lock:
            return self._gameweek

    @property
    def snapshot(self) -> GameweekSnapshot | None:
        with self._lock:
            return self._snapshot

    def set_snapshot(self, snapshot: GameweekSnapshot) -> bool:
        """Install *snapshot*; returns False when it is older than the live one.

        Reconciling a past gameweek must not replace what readers see.
        """
        with self._lock:
            if self._gameweek is not None and snapshot.gameweek < self._gameweek:
                return False
            if self._gameweek != snapshot.gameweek:
                self._scores = {}
            self._gameweek = snapshot.gameweek
            self._snapshot = snapshot
            return True

    @property
    def managers(self) -> list[LeagueEntry]:
        with self._lock:
            return list(self._managers)

    def set_managers(self, managers: list[LeagueEntry]) -> None:
        with self._lock:
            self._managers = list(managers)

    def score_for(self, gameweek: int, entry_id: int) -> dict | None:
        with self._lock:
            if gameweek != self._gameweek:
                return None
            row = self._scores.get(entry_id)
            return dict(row) if row else None

    def set_scores(self, gameweek: int, scores: dict[int, dict]) -> None:
        with self._lock:
            if gameweek != self._gameweek:
                return
            self._scores.update(scores)

    def scores(self) -> list[dict]:
        """Current scores, best net score first."""
        with self._lock:
            rows = [dict(r) for r in self._scores.values()]
        return sorted(rows, key=lambda r: (-r["score"]["net"], r["entry_id"]))

    def record_poll(self, summary: dict) -> None:
        with self._lock:
            self._last_poll_at = datetime.now(timezone.utc)
            self._last_poll = dict(summary)

    def status(self) -> dict:
        with self._lock:
            return {
                "gameweek": self._gameweek,
                "managers": len(self._managers),
                "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
                "last_poll": dict(self._last_poll),
                "snapshot_at": self._snapshot.captured_at.isoformat() if self._snapshot else None,
            }
