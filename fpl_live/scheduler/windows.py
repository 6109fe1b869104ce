"""Kickoff windows and the effective-gameweek heuristic."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fpl_live.config import scheduler_cfg
from fpl_live.schemas.upstream import Fixture, FixtureStatus, Gameweek


def match_end_time(kickoff: datetime) -> datetime:
    """Estimated final whistle: 90 min + stoppage + half-time + buffer."""
    return kickoff + timedelta(seconds=scheduler_cfg.match_duration)


@dataclass
class KickoffWindow:
    """Fixtures polled together as one live session."""

    start: datetime
    end: datetime
    fixtures: list[Fixture] = field(default_factory=list)

    @property
    def poll_start(self) -> datetime:
        return self.start - timedelta(seconds=scheduler_cfg.kickoff_lead)

    def contains(self, now: datetime) -> bool:
        return self.poll_start <= now <= self.end

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "poll_start": self.poll_start.isoformat(),
            "fixtures": [f.id for f in self.fixtures],
        }


def group_fixtures_into_windows(fixtures: list[Fixture]) -> list[KickoffWindow]:
    """Merge fixtures whose kickoff is within the threshold of a window's first kickoff.

    The window end is stretched to the latest estimated match end among its
    fixtures.
    """
    threshold = timedelta(seconds=scheduler_cfg.window_threshold)
    windows: list[KickoffWindow] = []
    current: KickoffWindow | None = None
    for fixture in sorted(fixtures, key=lambda f: (f.kickoff_time, f.id)):
        kickoff = fixture.kickoff_time
        if current is not None and kickoff - current.start <= threshold:
            current.fixtures.append(fixture)
            current.end = max(current.end, match_end_time(kickoff))
            continue
        current = KickoffWindow(start=kickoff, end=match_end_time(kickoff), fixtures=[fixture])
        windows.append(current)
    return windows


def all_provisionally_finished(fixtures: list[Fixture]) -> bool:
    return bool(fixtures) and all(
        f.status in (FixtureStatus.PROVISIONALLY_FINISHED, FixtureStatus.OFFICIALLY_FINISHED)
        for f in fixtures
    )


def all_officially_finished(fixtures: list[Fixture]) -> bool:
    return bool(fixtures) and all(
        f.status is FixtureStatus.OFFICIALLY_FINISHED for f in fixtures
    )


def gameweek_done(gameweek: Gameweek, fixtures: list[Fixture]) -> bool:
    """Finished upstream, or every one of its fixtures has at least provisionally ended."""
    own = [f for f in fixtures if f.event == gameweek.id]
    return gameweek.finished or all_provisionally_finished(own)


def resolve_effective_gameweek(
    gameweeks: list[Gameweek],
    fixtures: list[Fixture],
    now: datetime,
) -> int | None:
    """Gameweek the scheduler and tracker should work on.

    Upstream's ``is_current`` flag lags reality: after the last match of a
    gameweek it keeps pointing there even once the next deadline has passed.
    When the current gameweek is done and the next deadline is behind us, the
    next gameweek wins.  Before the season starts (no current gameweek) the
    next one is used.
    """
    current = next((gw for gw in gameweeks if gw.is_current), None)
    upcoming = next((gw for gw in gameweeks if gw.is_next), None)
    if current is None:
        return upcoming.id if upcoming else None
    if upcoming is not None and upcoming.deadline_time <= now and gameweek_done(current, fixtures):
        return upcoming.id
    return current.id
