"""Combine the effective lineup, live points and provisional bonus into a score."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from fpl_live.schemas.upstream import (
    Element,
    Fixture,
    FixtureStatus,
    PlayerLiveStat,
    SquadPicks,
)
from fpl_live.scoring.autosub import LineupSlot, resolve_lineup
from fpl_live.scoring.bonus import BonusAllocation, fixture_bonus


@dataclass
class PlayerContribution:
    player_id: int
    name: str
    position: str
    team: int
    is_bench: bool
    is_captain: bool
    is_vice_captain: bool
    sub_in: bool
    sub_out: bool
    minutes: int
    points: int
    provisional_bonus: int
    multiplier: int
    contribution: int
    play_status: str


@dataclass
class ScoreResult:
    """Gross/net score for one manager's gameweek plus its breakdown."""

    total: int
    net: int
    bench_points: int
    transfer_cost: int = 0
    breakdown: list[PlayerContribution] = field(default_factory=list)
    auto_subs: list[tuple[int, int]] = field(default_factory=list)
    unfilled: list[int] = field(default_factory=list)
    formation: str = ""
    captain_id: int | None = None
    active_chip: str | None = None
    stale: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreResult":
        data = dict(data)
        data["breakdown"] = [PlayerContribution(**row) for row in data.get("breakdown", [])]
        data["auto_subs"] = [tuple(pair) for pair in data.get("auto_subs", [])]
        return cls(**data)

    @classmethod
    def placeholder(cls) -> "ScoreResult":
        """Zero-valued result for a manager whose score could not be computed."""
        return cls(total=0, net=0, bench_points=0, stale=True)


def bonus_by_fixture(fixtures: list[Fixture]) -> dict[int, BonusAllocation]:
    """Provisional bonus for every fixture (empty for those not started)."""
    return {f.id: fixture_bonus(f) for f in fixtures}


def provisional_bonus_for(
    slot: LineupSlot,
    player_live: PlayerLiveStat | None,
    bonus: dict[int, BonusAllocation],
) -> int:
    """Bonus not yet folded into the player's live points.

    Only counts fixtures that have started, are not officially finished, and
    for which upstream has not confirmed any bonus for this player.
    """
    total = 0
    for fx in slot.fixtures:
        if fx.status in (FixtureStatus.NOT_STARTED, FixtureStatus.OFFICIALLY_FINISHED):
            continue
        if player_live is not None:
            if player_live.explain:
                official = player_live.official_bonus(fx.id)
            else:
                official = player_live.stats.bonus
            if official:
                continue
        total += bonus.get(fx.id, {}).get(slot.player_id, 0)
    return total


def compute_effective_score(
    picks: SquadPicks,
    players: dict[int, Element],
    live: dict[int, PlayerLiveStat],
    fixtures: list[Fixture],
    bonus: dict[int, BonusAllocation] | None = None,
) -> ScoreResult:
    """Score one manager's gameweek with auto-subs and provisional bonus.

    Parameters
    ----------
    picks:
        The manager's 15 picks and active chip.
    players:
        Bootstrap player metadata keyed by id.
    live:
        Live stats keyed by player id.
    fixtures:
        The gameweek's fixtures.
    bonus:
        Precomputed :func:`bonus_by_fixture` output, shared across managers
        within one poll.  Computed here when omitted.
    """
    if bonus is None:
        bonus = bonus_by_fixture(fixtures)

    lineup = resolve_lineup(picks, players, live, fixtures)

    total = 0
    bench_points = 0
    breakdown: list[PlayerContribution] = []
    for slot in lineup.slots:
        player_live = live.get(slot.player_id)
        points = player_live.stats.total_points if player_live else 0
        prov = provisional_bonus_for(slot, player_live, bonus)
        contribution = (points + prov) * slot.multiplier
        if slot.counted:
            total += contribution
        elif slot.is_bench:
            bench_points += points + prov

        breakdown.append(PlayerContribution(
            player_id=slot.player_id,
            name=slot.element.web_name,
            position=slot.position.short,
            team=slot.element.team,
            is_bench=slot.is_bench,
            is_captain=slot.player_id == lineup.captain_id,
            is_vice_captain=slot.is_vice_captain,
            sub_in=slot.sub_in,
            sub_out=slot.sub_out,
            minutes=slot.minutes,
            points=points,
            provisional_bonus=prov,
            multiplier=slot.multiplier,
            contribution=contribution if slot.counted else 0,
            play_status=slot.play_status,
        ))

    return ScoreResult(
        total=total,
        net=total - picks.transfer_cost,
        bench_points=bench_points,
        transfer_cost=picks.transfer_cost,
        breakdown=breakdown,
        auto_subs=list(lineup.auto_subs),
        unfilled=list(lineup.unfilled),
        formation=lineup.formation_string,
        captain_id=lineup.captain_id,
        active_chip=picks.active_chip.value if picks.active_chip else None,
    )
