"""Shared test fixtures for fpl_live."""

from datetime import datetime, timedelta, timezone

import pytest

from fpl_live.schemas.fpl_rules import Position
from fpl_live.schemas.upstream import (
    Element,
    Fixture,
    GameweekSnapshot,
    LiveGameweek,
    PlayerLiveStat,
    SquadPicks,
)

KICKOFF = datetime(2025, 9, 13, 14, 0, tzinfo=timezone.utc)

# Squad: 1 GK, 4 DEF, 4 MID, 2 FWD starting; bench GK, DEF, MID, FWD.
# Player n plays for team ((n - 1) % 10) + 1; fixtures pair teams 1v2 ... 9v10.
SQUAD_POSITIONS = {
    1: Position.GKP,
    2: Position.DEF, 3: Position.DEF, 4: Position.DEF, 5: Position.DEF,
    6: Position.MID, 7: Position.MID, 8: Position.MID, 9: Position.MID,
    10: Position.FWD, 11: Position.FWD,
    12: Position.GKP, 13: Position.DEF, 14: Position.MID, 15: Position.FWD,
}


def team_of(player_id: int) -> int:
    return (player_id - 1) % 10 + 1


@pytest.fixture
def players():
    """Bootstrap player metadata for the 15-man test squad."""
    return {
        pid: Element(id=pid, web_name=f"P{pid:02d}", team=team_of(pid), element_type=pos)
        for pid, pos in SQUAD_POSITIONS.items()
    }


@pytest.fixture
def make_fixture():
    """Factory: ``make_fixture(id, home, away, state=..., bps=...)``."""

    def _make(
        fixture_id: int,
        team_h: int,
        team_a: int,
        state: str = "in_progress",
        kickoff: datetime = KICKOFF,
        event: int = 1,
        bps: dict[int, int] | None = None,
    ) -> Fixture:
        flags = {
            "not_started": (False, False, False),
            "in_progress": (True, False, False),
            "provisional": (True, True, False),
            "finished": (True, True, True),
        }[state]
        stats = []
        if bps:
            stats.append({
                "identifier": "bps",
                "h": [{"element": pid, "value": v} for pid, v in bps.items()],
                "a": [],
            })
        return Fixture.model_validate({
            "id": fixture_id,
            "event": event,
            "team_h": team_h,
            "team_a": team_a,
            "kickoff_time": kickoff.isoformat(),
            "started": flags[0],
            "finished_provisional": flags[1],
            "finished": flags[2],
            "stats": stats,
        })

    return _make


@pytest.fixture
def gw_fixtures(make_fixture):
    """Five finished-provisional fixtures covering teams 1-10."""
    return [make_fixture(i + 1, 2 * i + 1, 2 * i + 2, state="provisional") for i in range(5)]


def fixture_id_for_team(team_id: int) -> int:
    return (team_id + 1) // 2


@pytest.fixture
def make_live():
    """Factory: live stats from ``{player: minutes}`` and ``{player: points}``.

    Players not in *minutes* default to 90 minutes and 2 points.
    """

    def _make(
        minutes: dict[int, int] | None = None,
        points: dict[int, int] | None = None,
        bonus: dict[int, int] | None = None,
        explain: dict[int, list[dict]] | None = None,
    ) -> dict[int, PlayerLiveStat]:
        minutes = minutes or {}
        points = points or {}
        bonus = bonus or {}
        explain = explain or {}
        live = {}
        for pid in SQUAD_POSITIONS:
            mins = minutes.get(pid, 90)
            pts = points.get(pid, 2 if mins else 0)
            fixture_id = fixture_id_for_team(team_of(pid))
            live[pid] = PlayerLiveStat.model_validate({
                "id": pid,
                "stats": {
                    "minutes": mins,
                    "total_points": pts,
                    "bonus": bonus.get(pid, 0),
                },
                "explain": [{"fixture": fixture_id, "stats": explain[pid]}] if pid in explain else [],
            })
        return live

    return _make


@pytest.fixture
def make_picks():
    """Factory: picks for the test squad with captain/vice/chip overrides."""

    def _make(captain: int = 8, vice: int = 10, chip: str | None = None, cost: int = 0) -> SquadPicks:
        return SquadPicks.model_validate({
            "active_chip": chip,
            "picks": [
                {
                    "element": pid,
                    "position": pid,
                    "multiplier": (3 if chip == "3xc" else 2) if pid == captain else (1 if pid <= 11 else 0),
                    "is_captain": pid == captain,
                    "is_vice_captain": pid == vice,
                }
                for pid in SQUAD_POSITIONS
            ],
            "entry_history": {"event_transfers_cost": cost},
        })

    return _make


@pytest.fixture
def make_snapshot(players):
    """Factory: a :class:`GameweekSnapshot` from explain rows and fixtures."""

    def _make(
        explain: dict[tuple[int, int], dict[str, int]],
        fixtures: list[Fixture] | None = None,
        gameweek: int = 1,
        at: datetime | None = None,
    ) -> GameweekSnapshot:
        by_player: dict[int, list] = {}
        for (fixture_id, pid), stats in explain.items():
            by_player.setdefault(pid, []).append({
                "fixture": fixture_id,
                "stats": [
                    {"identifier": ident, "points": pts, "value": abs(pts)}
                    for ident, pts in stats.items()
                ],
            })
        live = LiveGameweek.model_validate({
            "elements": [{"id": pid, "explain": rows} for pid, rows in by_player.items()],
        })
        return GameweekSnapshot(
            gameweek=gameweek,
            fixtures=fixtures or [],
            live=live,
            players=players,
            captured_at=at or KICKOFF + timedelta(minutes=30),
        )

    return _make


@pytest.fixture
def tmp_db(tmp_path):
    """Temporary database path for DB tests."""
    return tmp_path / "test_live.db"


@pytest.fixture
def bootstrap_data():
    """Minimal FPL bootstrap-static response."""
    return {
        "events": [
            {"id": 1, "deadline_time": "2025-08-16T10:00:00Z", "data_checked": True,
             "is_current": False, "is_next": False, "finished": True},
            {"id": 2, "deadline_time": "2025-08-23T10:00:00Z", "data_checked": True,
             "is_current": True, "is_next": False, "finished": True},
            {"id": 3, "deadline_time": "2025-08-30T10:00:00Z", "data_checked": False,
             "is_current": False, "is_next": True, "finished": False},
        ],
        "elements": [
            {"id": 1, "web_name": "GK1", "element_type": 1, "team": 1, "now_cost": 45},
        ],
        "teams": [
            {"id": 1, "code": 1, "name": "Team A", "short_name": "TMA", "strength": 4},
        ],
    }
