"""Automatic substitution of non-playing starters.

Mirrors how FPL itself resolves a lineup once matches have been played:

1. Bench Boost: nothing is substituted, all 15 players count.
2. The goalkeeper is resolved first, and only against the bench goalkeeper.
3. Outfield starters who did not play are replaced in squad order by the
   first eligible bench outfielder (in bench order) that keeps the formation
   legal, evaluated against the already-adjusted lineup.
4. Players brought on score with multiplier 1.
5. If the captain did not play the vice-captain takes the armband; if
   neither is available nobody is multiplied.

A player "did not play" only when they have zero minutes *and* every fixture
their team has this gameweek has kicked off, so a double-gameweek player is
never removed while their second match is still to come.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fpl_live.schemas.fpl_rules import (
    STARTING_XI,
    ChipType,
    Position,
    captain_multiplier,
)
from fpl_live.schemas.upstream import (
    Element,
    Fixture,
    FixtureStatus,
    PlayerLiveStat,
    SquadPicks,
)
from fpl_live.scoring.formation import (
    formation_counts,
    get_formation_string,
    is_valid_formation,
    simulate_substitution,
)


@dataclass
class LineupSlot:
    """One of the 15 picks with everything the engine needs to judge it."""

    element: Element
    squad_position: int
    is_captain: bool
    is_vice_captain: bool
    minutes: int
    fixtures: list[Fixture]
    is_bench: bool
    sub_in: bool = False
    sub_out: bool = False
    counted: bool = False
    multiplier: int = 0

    @property
    def player_id(self) -> int:
        return self.element.id

    @property
    def position(self) -> Position:
        return self.element.element_type

    @property
    def all_fixtures_started(self) -> bool:
        # A blank-gameweek team has nothing left to play.
        return all(f.status is not FixtureStatus.NOT_STARTED for f in self.fixtures)

    @property
    def did_not_play(self) -> bool:
        return self.minutes == 0 and self.all_fixtures_started

    @property
    def play_status(self) -> str:
        started = any(f.status is not FixtureStatus.NOT_STARTED for f in self.fixtures)
        finished = bool(self.fixtures) and all(
            f.status in (FixtureStatus.PROVISIONALLY_FINISHED, FixtureStatus.OFFICIALLY_FINISHED)
            for f in self.fixtures
        )
        if not started:
            return "not_started"
        if self.minutes > 0:
            return "played" if finished else "playing"
        return "benched" if finished else "not_played_yet"


@dataclass
class LineupResult:
    """Effective lineup after auto-substitution and captaincy fallback."""

    slots: list[LineupSlot]
    auto_subs: list[tuple[int, int]] = field(default_factory=list)
    unfilled: list[int] = field(default_factory=list)
    captain_id: int | None = None
    captain_multiplier: int = 1
    active_chip: ChipType | None = None

    @property
    def effective_starters(self) -> list[LineupSlot]:
        """Players actually making up the XI (bench excluded under Bench Boost)."""
        return [s for s in self.slots if (not s.is_bench and not s.sub_out) or s.sub_in]

    @property
    def formation(self) -> dict[str, int]:
        return formation_counts(s.position for s in self.effective_starters)

    @property
    def formation_string(self) -> str:
        return get_formation_string(self.formation)

    @property
    def short_by(self) -> int:
        """How many starters did not play and could not be replaced."""
        return len(self.unfilled)

    @property
    def is_legal(self) -> bool:
        return is_valid_formation(self.formation)


def team_fixture_map(fixtures: list[Fixture]) -> dict[int, list[Fixture]]:
    """Map team id -> that team's fixtures (two in a double gameweek)."""
    by_team: dict[int, list[Fixture]] = {}
    for f in fixtures:
        for team_id in f.teams:
            by_team.setdefault(team_id, []).append(f)
    return by_team


def build_slots(
    picks: SquadPicks,
    players: dict[int, Element],
    live: dict[int, PlayerLiveStat],
    fixtures: list[Fixture],
) -> list[LineupSlot]:
    """Join picks with metadata, minutes and fixtures.

    Raises ``KeyError`` if a picked player is missing from *players*.
    """
    by_team = team_fixture_map(fixtures)
    slots: list[LineupSlot] = []
    for idx, pick in enumerate(picks.picks):
        element = players[pick.element]
        player_live = live.get(pick.element)
        slots.append(LineupSlot(
            element=element,
            squad_position=pick.position,
            is_captain=pick.is_captain,
            is_vice_captain=pick.is_vice_captain,
            minutes=player_live.stats.minutes if player_live else 0,
            fixtures=by_team.get(element.team, []),
            is_bench=idx >= STARTING_XI,
        ))
    return slots


def _swap(out_slot: LineupSlot, in_slot: LineupSlot, result: LineupResult) -> None:
    out_slot.sub_out = True
    in_slot.sub_in = True
    result.auto_subs.append((out_slot.player_id, in_slot.player_id))


def _resolve_goalkeeper(
    starters: list[LineupSlot],
    bench: list[LineupSlot],
    result: LineupResult,
) -> None:
    keeper = next((s for s in starters if s.position == Position.GKP), None)
    if keeper is None or not keeper.did_not_play:
        return
    reserve = next((b for b in bench if b.position == Position.GKP), None)
    if reserve is None or reserve.sub_in or reserve.did_not_play:
        result.unfilled.append(keeper.player_id)
        return
    _swap(keeper, reserve, result)


def _resolve_outfield(
    starters: list[LineupSlot],
    bench: list[LineupSlot],
    result: LineupResult,
) -> None:
    counts = formation_counts(s.position for s in starters)
    for starter in starters:
        if starter.position == Position.GKP or not starter.did_not_play:
            continue
        for candidate in bench:
            if candidate.position == Position.GKP:
                continue
            if candidate.sub_in or candidate.did_not_play:
                continue
            trial = simulate_substitution(counts, starter.position, candidate.position)
            if trial is not None and is_valid_formation(trial):
                _swap(starter, candidate, result)
                counts = trial
                break
        else:
            result.unfilled.append(starter.player_id)


def _resolve_captaincy(slots: list[LineupSlot], result: LineupResult) -> None:
    multiplier = captain_multiplier(result.active_chip)
    captain = next((s for s in slots if s.is_captain), None)
    vice = next((s for s in slots if s.is_vice_captain), None)

    if captain is not None and captain.counted and not captain.did_not_play:
        chosen = captain
    elif vice is not None and vice.counted and not vice.sub_in and not vice.did_not_play:
        chosen = vice
    else:
        return

    chosen.multiplier = multiplier
    result.captain_id = chosen.player_id
    result.captain_multiplier = multiplier


def resolve_lineup(
    picks: SquadPicks,
    players: dict[int, Element],
    live: dict[int, PlayerLiveStat],
    fixtures: list[Fixture],
) -> LineupResult:
    """Return the effective lineup and captain for one manager's gameweek.

    *fixtures* are the gameweek's fixtures; *live* maps player id to the
    current live stats.  An unfillable gap is left in place and reported in
    :attr:`LineupResult.unfilled`, it is not an error.
    """
    slots = build_slots(picks, players, live, fixtures)
    result = LineupResult(slots=slots, active_chip=picks.active_chip)
    starters = [s for s in slots if not s.is_bench]
    bench = [s for s in slots if s.is_bench]

    if picks.active_chip is ChipType.BENCH_BOOST:
        for s in slots:
            s.counted = True
    else:
        _resolve_goalkeeper(starters, bench, result)
        _resolve_outfield(starters, bench, result)
        for s in slots:
            s.counted = (not s.is_bench and not s.sub_out) or s.sub_in

    for s in slots:
        s.multiplier = 1 if s.counted else 0
    _resolve_captaincy(slots, result)
    return result
