"""Pydantic schemas for upstream FPL API payloads.

Everything the API returns is parsed into these models by
:mod:`fpl_live.data.fpl_api`; nullable upstream quirks (postponed fixtures
without a gameweek, ``null`` booleans, unknown chip strings) are normalised
here so the scoring, event and scheduling layers never see raw JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fpl_live.logging_config import get_logger
from fpl_live.schemas.fpl_rules import ChipType, Position

logger = get_logger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

class Gameweek(BaseModel):
    """One upstream ``event`` (gameweek)."""

    id: int
    deadline_time: datetime
    is_current: bool = False
    is_next: bool = False
    finished: bool = False
    data_checked: bool = False

    @field_validator("is_current", "is_next", "finished", "data_checked", mode="before")
    @classmethod
    def _none_is_false(cls, v):
        return bool(v)

    @field_validator("deadline_time")
    @classmethod
    def _deadline_utc(cls, v: datetime) -> datetime:
        return _utc(v)


class Team(BaseModel):
    id: int
    name: str = ""
    short_name: str = ""


class Element(BaseModel):
    """Player metadata from bootstrap-static."""

    id: int
    web_name: str = "Unknown"
    team: int
    element_type: Position


class Bootstrap(BaseModel):
    """``bootstrap-static`` reduced to gameweeks, teams and players."""

    model_config = ConfigDict(populate_by_name=True)

    gameweeks: list[Gameweek] = Field(default_factory=list, alias="events")
    teams: list[Team] = Field(default_factory=list)
    players: list[Element] = Field(default_factory=list, alias="elements")

    def gameweek(self, gw_id: int) -> Gameweek | None:
        for gw in self.gameweeks:
            if gw.id == gw_id:
                return gw
        return None

    @property
    def current(self) -> Gameweek | None:
        return next((gw for gw in self.gameweeks if gw.is_current), None)

    @property
    def next(self) -> Gameweek | None:
        return next((gw for gw in self.gameweeks if gw.is_next), None)

    def players_by_id(self) -> dict[int, Element]:
        return {p.id: p for p in self.players}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FixtureStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PROVISIONALLY_FINISHED = "provisionally_finished"
    OFFICIALLY_FINISHED = "officially_finished"


class FixtureStatEntry(BaseModel):
    element: int
    value: int = 0


class FixtureStat(BaseModel):
    identifier: str
    h: list[FixtureStatEntry] = Field(default_factory=list)
    a: list[FixtureStatEntry] = Field(default_factory=list)


class Fixture(BaseModel):
    """One real-world match, always attached to a gameweek."""

    id: int
    event: int
    team_h: int
    team_a: int
    kickoff_time: datetime
    started: bool = False
    finished_provisional: bool = False
    finished: bool = False
    minutes: int = 0
    stats: list[FixtureStat] = Field(default_factory=list)

    @field_validator("started", "finished_provisional", "finished", mode="before")
    @classmethod
    def _none_is_false(cls, v):
        return bool(v)

    @field_validator("minutes", mode="before")
    @classmethod
    def _none_is_zero(cls, v):
        return v or 0

    @field_validator("kickoff_time")
    @classmethod
    def _kickoff_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @model_validator(mode="after")
    def _normalise_flags(self) -> "Fixture":
        # officially finished implies provisionally finished implies started
        if self.finished:
            self.finished_provisional = True
        if self.finished_provisional:
            self.started = True
        return self

    @property
    def status(self) -> FixtureStatus:
        if self.finished:
            return FixtureStatus.OFFICIALLY_FINISHED
        if self.finished_provisional:
            return FixtureStatus.PROVISIONALLY_FINISHED
        if self.started:
            return FixtureStatus.IN_PROGRESS
        return FixtureStatus.NOT_STARTED

    @property
    def teams(self) -> tuple[int, int]:
        return self.team_h, self.team_a

    def stat(self, identifier: str) -> list[FixtureStatEntry]:
        """Both sides' entries for *identifier* (e.g. ``"bps"``)."""
        for s in self.stats:
            if s.identifier == identifier:
                return [*s.h, *s.a]
        return []

    @classmethod
    def parse_many(cls, raw: list[dict]) -> list["Fixture"]:
        """Parse a fixtures payload, dropping unscheduled (postponed) rows."""
        fixtures: list[Fixture] = []
        for row in raw or []:
            if not row.get("event") or not row.get("kickoff_time"):
                logger.debug("Skipping unscheduled fixture %s", row.get("id"))
                continue
            fixtures.append(cls.model_validate(row))
        return fixtures


# ---------------------------------------------------------------------------
# Live gameweek
# ---------------------------------------------------------------------------

class ExplainStat(BaseModel):
    identifier: str
    points: int = 0
    value: int = 0


class ExplainFixture(BaseModel):
    fixture: int
    stats: list[ExplainStat] = Field(default_factory=list)


class LiveStats(BaseModel):
    minutes: int = 0
    total_points: int = 0
    bonus: int = 0
    bps: int = 0


class PlayerLiveStat(BaseModel):
    """Per-player live breakdown for one gameweek."""

    id: int
    stats: LiveStats = Field(default_factory=LiveStats)
    explain: list[ExplainFixture] = Field(default_factory=list)

    def official_bonus(self, fixture_id: int) -> int:
        """Bonus already confirmed upstream for *fixture_id*."""
        for fx in self.explain:
            if fx.fixture == fixture_id:
                return sum(s.points for s in fx.stats if s.identifier == "bonus")
        return 0


class LiveGameweek(BaseModel):
    elements: list[PlayerLiveStat] = Field(default_factory=list)

    def by_id(self) -> dict[int, PlayerLiveStat]:
        return {e.id: e for e in self.elements}


# ---------------------------------------------------------------------------
# Manager endpoints
# ---------------------------------------------------------------------------

class Pick(BaseModel):
    element: int
    position: int
    multiplier: int = 1
    is_captain: bool = False
    is_vice_captain: bool = False


class EntryHistory(BaseModel):
    points: int = 0
    total_points: int = 0
    event_transfers_cost: int = 0
    points_on_bench: int = 0


class SquadPicks(BaseModel):
    """A manager's 15 picks for one gameweek, ordered by squad position."""

    active_chip: ChipType | None = None
    picks: list[Pick] = Field(default_factory=list)
    entry_history: EntryHistory = Field(default_factory=EntryHistory)

    @field_validator("active_chip", mode="before")
    @classmethod
    def _parse_chip(cls, v):
        if isinstance(v, ChipType):
            return v
        return ChipType.parse(v)

    @field_validator("entry_history", mode="before")
    @classmethod
    def _history_default(cls, v):
        return v or {}

    @model_validator(mode="after")
    def _order_and_check(self) -> "SquadPicks":
        self.picks = sorted(self.picks, key=lambda p: p.position)
        if sum(1 for p in self.picks if p.is_captain) > 1:
            raise ValueError("More than one captain in picks")
        if sum(1 for p in self.picks if p.is_vice_captain) > 1:
            raise ValueError("More than one vice-captain in picks")
        return self

    @property
    def transfer_cost(self) -> int:
        return self.entry_history.event_transfers_cost


class HistoryRow(BaseModel):
    event: int
    points: int = 0
    total_points: int = 0
    event_transfers: int = 0
    event_transfers_cost: int = 0
    points_on_bench: int = 0


class ChipUse(BaseModel):
    """One played chip from a manager's history."""

    name: ChipType | None = None
    event: int

    @field_validator("name", mode="before")
    @classmethod
    def _parse_chip(cls, v):
        return ChipType.parse(v)


class ManagerHistory(BaseModel):
    current: list[HistoryRow] = Field(default_factory=list)
    chips: list[ChipUse] = Field(default_factory=list)

    def for_gameweek(self, gw: int) -> HistoryRow | None:
        return next((row for row in self.current if row.event == gw), None)


class LeagueEntry(BaseModel):
    entry: int
    player_name: str = ""
    entry_name: str = ""
    rank: int | None = None


class LeagueStandings(BaseModel):
    league_name: str = ""
    entries: list[LeagueEntry] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict) -> "LeagueStandings":
        return cls(
            league_name=(raw.get("league") or {}).get("name", ""),
            entries=(raw.get("standings") or {}).get("results", []),
        )


# ---------------------------------------------------------------------------
# Snapshot handed to the event detector
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GameweekSnapshot:
    """Everything one poll captured for a gameweek.  Never mutated."""

    gameweek: int
    fixtures: list[Fixture]
    live: LiveGameweek
    players: dict[int, Element]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def fixture(self, fixture_id: int) -> Fixture | None:
        return next((f for f in self.fixtures if f.id == fixture_id), None)
