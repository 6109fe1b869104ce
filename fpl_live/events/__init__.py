"""Chronological event feed derived by diffing live snapshots."""

from fpl_live.events.detector import (
    DetectorState,
    EventDetector,
    EventLogPersistError,
    build_bonus_state,
    build_player_state,
    detect_events,
    merge_events,
    truncate_log,
)
from fpl_live.events.types import ChronoEvent, EventType

__all__ = [
    "ChronoEvent",
    "EventType",
    "DetectorState",
    "EventDetector",
    "EventLogPersistError",
    "build_player_state",
    "build_bonus_state",
    "detect_events",
    "merge_events",
    "truncate_log",
]
