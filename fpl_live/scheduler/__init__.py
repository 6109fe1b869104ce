"""Adaptive polling: kickoff windows, mode state machine, timers."""

from fpl_live.scheduler.polling import AdaptivePollingScheduler
from fpl_live.scheduler.state_machine import ScheduleMode
from fpl_live.scheduler.timers import TimerRegistry
from fpl_live.scheduler.windows import (
    KickoffWindow,
    group_fixtures_into_windows,
    match_end_time,
    resolve_effective_gameweek,
)

__all__ = [
    "AdaptivePollingScheduler",
    "ScheduleMode",
    "TimerRegistry",
    "KickoffWindow",
    "group_fixtures_into_windows",
    "match_end_time",
    "resolve_effective_gameweek",
]
