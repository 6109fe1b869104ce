"""League-wide summaries built from every manager's season history.

- Weekly losers: the lowest scorer of each finished gameweek.  A tie on
  points goes against the manager who made fewer transfers.
- Chip usage: per manager, each chip's status in both halves of the season.
  A first-half chip expires once the second half starts; second-half chips
  are locked until then.

Histories are fetched concurrently through the cached client.  A manager
whose history cannot be fetched fails the whole summary rather than
producing a loser from partial data.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass

from fpl_live.config import data_cfg, league_cfg
from fpl_live.logging_config import get_logger
from fpl_live.schemas.fpl_rules import ChipType
from fpl_live.schemas.upstream import ChipUse, LeagueEntry, ManagerHistory

logger = get_logger(__name__)

CHIP_ORDER = (
    ChipType.WILDCARD,
    ChipType.FREE_HIT,
    ChipType.BENCH_BOOST,
    ChipType.TRIPLE_CAPTAIN,
)


@dataclass(frozen=True)
class ManagerWeek:
    """One manager's result for one gameweek."""

    entry_id: int
    player_name: str
    entry_name: str
    points: int
    transfers: int

    def to_dict(self) -> dict:
        return asdict(self)


def weekly_loser(rows: list[ManagerWeek]) -> dict | None:
    """Pick the loser of one gameweek, or ``None`` for an empty league.

    ``context`` explains the decision: ``"Lost by N pts"`` for an outright
    loser, ``"Fewer transfers"`` when the transfer count broke a points tie,
    ``"Tiebreaker"`` when even that was level (lowest entry id loses).
    """
    if not rows:
        return None
    ranked = sorted(rows, key=lambda r: (r.points, r.transfers, r.entry_id))
    loser = ranked[0]
    tied = [r for r in ranked if r.points == loser.points]

    if len(tied) == 1:
        above = ranked[1].points if len(ranked) > 1 else loser.points
        margin = above - loser.points
        context = f"Lost by {margin} pt{'' if margin == 1 else 's'}"
    elif tied[0].transfers < tied[1].transfers:
        context = "Fewer transfers"
    else:
        context = "Tiebreaker"
    return {**loser.to_dict(), "context": context}


def chip_status(chips: list[ChipUse], current_gw: int,
                second_half_start: int | None = None) -> dict:
    """Status of every chip in both halves of the season.

    First half: ``used``, else ``expired`` once the second half has started,
    else ``available``.  Second half: ``used``, else ``available`` once it
    has started, else ``locked``.
    """
    split = league_cfg.second_half_start if second_half_start is None else second_half_start
    second_half_open = current_gw >= split
    first_half: dict[str, dict] = {}
    second_half: dict[str, dict] = {}

    for chip in CHIP_ORDER:
        played = [c.event for c in chips if c.name is chip]
        early = next((gw for gw in played if gw < split), None)
        late = next((gw for gw in played if gw >= split), None)

        if early is not None:
            first_half[chip.value] = {"status": "used", "gameweek": early}
        else:
            first_half[chip.value] = {"status": "expired" if second_half_open else "available"}

        if late is not None:
            second_half[chip.value] = {"status": "used", "gameweek": late}
        else:
            second_half[chip.value] = {"status": "available" if second_half_open else "locked"}

    return {"first_half": first_half, "second_half": second_half}


class LeagueInsights:
    """Computes league summaries on demand from the upstream client."""

    def __init__(self, client, league_id: int | None = None,
                 max_workers: int | None = None):
        self.client = client
        self.league_id = league_id or data_cfg.league_id
        self.max_workers = max_workers or data_cfg.max_workers

    def _histories(self) -> tuple[str, list[tuple[LeagueEntry, ManagerHistory]]]:
        standings = self.client.get_league_standings(self.league_id)
        entries = standings.entries
        if not entries:
            return standings.league_name, []
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="league-history") as pool:
            histories = list(pool.map(
                lambda e: self.client.get_manager_history(e.entry), entries,
            ))
        return standings.league_name, list(zip(entries, histories))

    def weekly_losers(self) -> dict:
        """The loser of every finished gameweek, oldest first.

        A manager with no row for a gameweek (joined late) counts as zero
        points and zero transfers.
        """
        bootstrap = self.client.get_bootstrap()
        finished = sorted(gw.id for gw in bootstrap.gameweeks if gw.finished)
        league_name, histories = self._histories()

        losers = []
        for gw in finished:
            rows = []
            for entry, history in histories:
                row = history.for_gameweek(gw)
                rows.append(ManagerWeek(
                    entry_id=entry.entry,
                    player_name=entry.player_name,
                    entry_name=entry.entry_name,
                    points=row.points if row else 0,
                    transfers=row.event_transfers if row else 0,
                ))
            loser = weekly_loser(rows)
            if loser is not None:
                losers.append({"gameweek": gw, **loser})

        logger.debug("Weekly losers computed for %d gameweeks", len(losers))
        return {"league_name": league_name, "losers": losers}

    def chip_usage(self) -> dict:
        """Every manager's chip status as of the current gameweek."""
        bootstrap = self.client.get_bootstrap()
        current = bootstrap.current
        current_gw = current.id if current is not None else 0
        league_name, histories = self._histories()

        managers = [
            {
                "entry_id": entry.entry,
                "player_name": entry.player_name,
                "entry_name": entry.entry_name,
                "chips": chip_status(history.chips, current_gw),
            }
            for entry, history in histories
        ]
        return {
            "league_name": league_name,
            "current_gameweek": current_gw,
            "second_half_start": league_cfg.second_half_start,
            "managers": managers,
        }
