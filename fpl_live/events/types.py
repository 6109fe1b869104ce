"""Chronological event records and their signatures."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from fpl_live.config import event_cfg


class EventType(str, Enum):
    GOAL = "goal"
    ASSIST = "assist"
    PEN_SAVE = "pen_save"
    PEN_MISS = "pen_miss"
    OWN_GOAL = "own_goal"
    RED = "red"
    YELLOW = "yellow"
    CLEAN_SHEET = "clean_sheet"
    TEAM_CLEAN_SHEET = "team_clean_sheet"
    GOALS_CONCEDED = "goals_conceded"
    TEAM_GOALS_CONCEDED = "team_goals_conceded"
    SAVES = "saves"
    BONUS_CHANGE = "bonus_change"
    DEFCON = "defcon"

    @property
    def priority(self) -> int:
        return event_cfg.priority[self.value]


# Upstream explain identifier -> event type
IDENTIFIER_EVENTS: dict[str, EventType] = {
    "goals_scored": EventType.GOAL,
    "assists": EventType.ASSIST,
    "penalties_saved": EventType.PEN_SAVE,
    "penalties_missed": EventType.PEN_MISS,
    "own_goals": EventType.OWN_GOAL,
    "red_cards": EventType.RED,
    "yellow_cards": EventType.YELLOW,
    "saves": EventType.SAVES,
    "defensive_contribution": EventType.DEFCON,
    "clean_sheets": EventType.TEAM_CLEAN_SHEET,
    "goals_conceded": EventType.TEAM_GOALS_CONCEDED,
}

# Awarded per team: every affected player shares one event
TEAM_IDENTIFIERS = frozenset({"clean_sheets", "goals_conceded"})

# One event per point of delta
REPEATING_IDENTIFIERS = frozenset({"saves"})

# Never diffed by the generic pass (bonus has its own pass)
EXCLUDED_IDENTIFIERS = frozenset({"minutes", "bonus", "bps"})

# Event types carrying more than one subject
MULTI_SUBJECT_TYPES = frozenset({
    EventType.TEAM_CLEAN_SHEET,
    EventType.TEAM_GOALS_CONCEDED,
    EventType.BONUS_CHANGE,
})


@dataclass(frozen=True)
class ChronoEvent:
    """One immutable entry of the chronological event log."""

    type: EventType
    fixture_id: int
    player_ids: tuple[int, ...]
    subjects: tuple[str, ...]
    points: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    team_id: int | None = None
    # (player_id, old_bonus, new_bonus) for bonus re-ranking
    changes: tuple[tuple[int, int, int], ...] = ()
    seq: int = 0

    @property
    def subject(self) -> str:
        return ", ".join(self.subjects)

    @property
    def signature(self) -> str:
        if self.type is EventType.BONUS_CHANGE:
            change_set = "-".join(
                f"player{pid}:{old}>{new}" for pid, old, new in sorted(self.changes)
            )
            return f"{self.type.value}_fixture{self.fixture_id}_{change_set}"
        if self.type in MULTI_SUBJECT_TYPES:
            members = "-".join(f"player{pid}" for pid in sorted(self.player_ids))
            return (
                f"{self.type.value}_fixture{self.fixture_id}"
                f"_team{self.team_id}_{members}_{self.points}"
            )
        return (
            f"{self.type.value}_player{self.player_ids[0]}"
            f"_fixture{self.fixture_id}_{self.points}"
        )

    def sort_key(self) -> tuple[int, str]:
        return self.type.priority, self.subject.lower()

    def with_seq(self, seq: int) -> "ChronoEvent":
        return replace(self, seq=seq)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "fixture_id": self.fixture_id,
            "player_ids": list(self.player_ids),
            "subjects": list(self.subjects),
            "subject": self.subject,
            "points": self.points,
            "timestamp": self.timestamp.isoformat(),
            "team_id": self.team_id,
            "changes": [list(c) for c in self.changes],
            "seq": self.seq,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChronoEvent":
        return cls(
            type=EventType(data["type"]),
            fixture_id=int(data["fixture_id"]),
            player_ids=tuple(data.get("player_ids", ())),
            subjects=tuple(data.get("subjects", ())),
            points=int(data.get("points", 0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            team_id=data.get("team_id"),
            changes=tuple(tuple(c) for c in data.get("changes", ())),
            seq=int(data.get("seq", 0)),
        )
