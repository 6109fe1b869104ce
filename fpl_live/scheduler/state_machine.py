"""Polling mode state machine.

Modes::

    IDLE ─────────┬──> PRE_MATCH ──> LIVE ──> BONUS_CONFIRMATION ──> RESCHEDULING
        └─> LIVE  │                  │ ^                              │
                  └──────────────────┘ └── (next window) ─────────────┘

Every mode may drop into RESCHEDULING; RESCHEDULING settles into IDLE,
PRE_MATCH, LIVE or BONUS_CONFIRMATION.
"""

from __future__ import annotations

from enum import Enum


class ScheduleMode(str, Enum):
    IDLE = "idle"
    PRE_MATCH = "pre_match"
    LIVE = "live"
    BONUS_CONFIRMATION = "bonus_confirmation"
    RESCHEDULING = "rescheduling"


# Valid (from -> {to, ...}) transitions.
_TRANSITIONS: dict[ScheduleMode, set[ScheduleMode]] = {
    ScheduleMode.IDLE: {
        ScheduleMode.PRE_MATCH,
        ScheduleMode.LIVE,
        ScheduleMode.RESCHEDULING,
    },
    ScheduleMode.PRE_MATCH: {ScheduleMode.LIVE, ScheduleMode.RESCHEDULING},
    ScheduleMode.LIVE: {ScheduleMode.BONUS_CONFIRMATION, ScheduleMode.RESCHEDULING},
    ScheduleMode.BONUS_CONFIRMATION: {ScheduleMode.RESCHEDULING},
    ScheduleMode.RESCHEDULING: {
        ScheduleMode.IDLE,
        ScheduleMode.PRE_MATCH,
        ScheduleMode.LIVE,
        ScheduleMode.BONUS_CONFIRMATION,
    },
}


class InvalidTransition(RuntimeError):
    """Raised when the scheduler attempts an illegal mode change."""


def can_transition(from_mode: ScheduleMode, to_mode: ScheduleMode) -> bool:
    """Return True if *from_mode* -> *to_mode* is a valid transition."""
    return to_mode in _TRANSITIONS.get(from_mode, set())


def check_transition(from_mode: ScheduleMode, to_mode: ScheduleMode) -> ScheduleMode:
    """Return *to_mode*, raising :class:`InvalidTransition` if it is not allowed.

    Staying in the same mode is always allowed.
    """
    if from_mode is to_mode or can_transition(from_mode, to_mode):
        return to_mode
    raise InvalidTransition(f"{from_mode.value} -> {to_mode.value}")


def detect_mode(
    *,
    now,
    deadline,
    first_poll_start,
    in_window: bool,
    awaiting_confirmation: bool,
) -> ScheduleMode:
    """Pick the mode a fresh schedule should start in.

    Priority (strongest signal first):
        1. in_window                        -> LIVE
        2. deadline <= now < first poll     -> PRE_MATCH
        3. awaiting_confirmation            -> BONUS_CONFIRMATION
        4. else                             -> IDLE
    """
    if in_window:
        return ScheduleMode.LIVE
    if deadline is not None and first_poll_start is not None and deadline <= now < first_poll_start:
        return ScheduleMode.PRE_MATCH
    if awaiting_confirmation:
        return ScheduleMode.BONUS_CONFIRMATION
    return ScheduleMode.IDLE
