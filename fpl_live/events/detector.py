"""Event Diff Detector.

Compares two consecutive snapshots of per-player, per-fixture explain
breakdowns and emits the discrete events that explain the delta.  New events
are merged into the gameweek's chronological log with occurrence-count
deduplication, so re-processing a stale previous state (after a restart, or
after a failed persist) never re-emits what is already recorded.

State shapes (JSON-safe, persisted in ``live_state``)::

    PlayerState = {"<fixture>:<player>": {"<identifier>": points, ...}, ...}
    BonusState  = {"<fixture>": {"3": [pids], "2": [pids], "1": [pids]}, ...}
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fpl_live.config import event_cfg
from fpl_live.events.types import (
    EXCLUDED_IDENTIFIERS,
    IDENTIFIER_EVENTS,
    REPEATING_IDENTIFIERS,
    TEAM_IDENTIFIERS,
    ChronoEvent,
    EventType,
)
from fpl_live.logging_config import get_logger
from fpl_live.schemas.upstream import Element, Fixture, GameweekSnapshot, LiveGameweek
from fpl_live.scoring.bonus import bonus_holder_sets, fixture_bonus

logger = get_logger(__name__)

PlayerState = dict[str, dict[str, int]]
BonusState = dict[str, dict[str, list[int]]]

PLAYER_STATE_KEY = "player_state"
BONUS_STATE_KEY = "bonus_state"
LOG_SEQ_KEY = "log_seq"


class EventLogPersistError(RuntimeError):
    """The event log could not be written after every retry."""


@dataclass
class DetectorState:
    """Previous-state maps plus the log watermark they were diffed up to."""

    players: PlayerState = field(default_factory=dict)
    bonus: BonusState = field(default_factory=dict)
    # Highest log seq already reflected in ``players``/``bonus``; None = unknown
    log_seq: int | None = None


# ---------------------------------------------------------------------------
# State builders
# ---------------------------------------------------------------------------

def state_key(fixture_id: int, player_id: int) -> str:
    return f"{fixture_id}:{player_id}"


def parse_state_key(key: str) -> tuple[int, int]:
    fixture_id, player_id = key.split(":", 1)
    return int(fixture_id), int(player_id)


def build_player_state(live: LiveGameweek) -> PlayerState:
    """Point-bearing explain entries keyed by ``"fixture:player"``.

    Minutes, bonus and bps never appear; zero-point entries are dropped so a
    stat that is awarded and later removed shows up as a negative delta.
    """
    state: PlayerState = {}
    for element in live.elements:
        for fx in element.explain:
            stats = {
                s.identifier: s.points
                for s in fx.stats
                if s.identifier not in EXCLUDED_IDENTIFIERS and s.points
            }
            if stats:
                state[state_key(fx.fixture, element.id)] = stats
    return state


def build_bonus_state(fixtures: list[Fixture]) -> BonusState:
    """Provisional bonus holder sets for every started fixture."""
    state: BonusState = {}
    for fixture in fixtures:
        allocation = fixture_bonus(fixture)
        if not allocation:
            continue
        holders = bonus_holder_sets(allocation)
        state[str(fixture.id)] = {
            str(tier): sorted(pids) for tier, pids in holders.items()
        }
    return state


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

def _name(players: dict[int, Element], player_id: int) -> str:
    element = players.get(player_id)
    return element.web_name if element else f"Player {player_id}"


def _team(players: dict[int, Element], player_id: int) -> int | None:
    element = players.get(player_id)
    return element.team if element else None


def _player_events(
    previous: PlayerState,
    current: PlayerState,
    players: dict[int, Element],
    timestamp: datetime,
) -> list[ChronoEvent]:
    events: list[ChronoEvent] = []
    # (fixture, team, identifier, delta) -> player ids
    team_buckets: dict[tuple[int, int | None, str, int], list[int]] = defaultdict(list)

    for key in sorted(set(previous) | set(current)):
        fixture_id, player_id = parse_state_key(key)
        old_stats = previous.get(key, {})
        new_stats = current.get(key, {})
        for identifier in sorted(set(old_stats) | set(new_stats)):
            delta = new_stats.get(identifier, 0) - old_stats.get(identifier, 0)
            if not delta:
                continue
            event_type = IDENTIFIER_EVENTS.get(identifier)
            if event_type is None:
                logger.debug("Ignoring unknown identifier %s (%s)", identifier, key)
                continue

            if identifier in TEAM_IDENTIFIERS:
                team_buckets[(fixture_id, _team(players, player_id), identifier, delta)].append(player_id)
                continue

            name = _name(players, player_id)
            if identifier in REPEATING_IDENTIFIERS:
                unit = 1 if delta > 0 else -1
                for _ in range(abs(delta)):
                    events.append(ChronoEvent(
                        type=event_type,
                        fixture_id=fixture_id,
                        player_ids=(player_id,),
                        subjects=(name,),
                        points=unit,
                        timestamp=timestamp,
                        team_id=_team(players, player_id),
                    ))
            else:
                events.append(ChronoEvent(
                    type=event_type,
                    fixture_id=fixture_id,
                    player_ids=(player_id,),
                    subjects=(name,),
                    points=delta,
                    timestamp=timestamp,
                    team_id=_team(players, player_id),
                ))

    for (fixture_id, team_id, identifier, delta), pids in team_buckets.items():
        members = sorted(pids, key=lambda pid: (_name(players, pid).lower(), pid))
        events.append(ChronoEvent(
            type=IDENTIFIER_EVENTS[identifier],
            fixture_id=fixture_id,
            player_ids=tuple(members),
            subjects=tuple(_name(players, pid) for pid in members),
            points=delta,
            timestamp=timestamp,
            team_id=team_id,
        ))
    return events


def _tier_of(holders: dict[str, list[int]]) -> dict[int, int]:
    return {pid: int(tier) for tier, pids in holders.items() for pid in pids}


def _bonus_events(
    previous: BonusState,
    current: BonusState,
    players: dict[int, Element],
    timestamp: datetime,
) -> list[ChronoEvent]:
    events: list[ChronoEvent] = []
    for fixture_key in sorted(current, key=int):
        new_holders = current[fixture_key]
        old_holders = previous.get(fixture_key, {})
        new_sets = {tier: set(pids) for tier, pids in new_holders.items() if pids}
        old_sets = {tier: set(pids) for tier, pids in old_holders.items() if pids}
        if new_sets == old_sets:
            continue

        old_tier = _tier_of(old_holders)
        new_tier = _tier_of(new_holders)
        changes = sorted(
            (pid, old_tier.get(pid, 0), new_tier.get(pid, 0))
            for pid in set(old_tier) | set(new_tier)
            if old_tier.get(pid, 0) != new_tier.get(pid, 0)
        )
        if not changes:
            continue
        ordered = sorted(changes, key=lambda c: (-c[2], _name(players, c[0]).lower()))
        events.append(ChronoEvent(
            type=EventType.BONUS_CHANGE,
            fixture_id=int(fixture_key),
            player_ids=tuple(c[0] for c in ordered),
            subjects=tuple(_name(players, c[0]) for c in ordered),
            points=sum(new - old for _, old, new in changes),
            timestamp=timestamp,
            changes=tuple(changes),
        ))
    return events


def detect_events(
    previous: DetectorState,
    current: DetectorState,
    players: dict[int, Element],
    timestamp: datetime,
) -> list[ChronoEvent]:
    """Candidate events explaining ``previous -> current``, in feed order.

    Ordering is by event-type priority then subject name, independent of the
    order in which differences were found.
    """
    candidates = _player_events(previous.players, current.players, players, timestamp)
    candidates.extend(_bonus_events(previous.bonus, current.bonus, players, timestamp))
    candidates.sort(key=ChronoEvent.sort_key)
    return candidates


# ---------------------------------------------------------------------------
# Log merge
# ---------------------------------------------------------------------------

def merge_events(
    log: list[ChronoEvent],
    candidates: list[ChronoEvent],
    baseline_seq: int | None,
    next_seq: int,
) -> list[ChronoEvent]:
    """Return the candidates that are genuinely new, numbered from *next_seq*.

    A candidate is new when its running occurrence count among *candidates*
    exceeds the number of logged events with the same signature and
    ``seq > baseline_seq``.  With ``baseline_seq=None`` the whole log counts.
    """
    logged = Counter(
        e.signature for e in log if baseline_seq is None or e.seq > baseline_seq
    )
    seen: Counter[str] = Counter()
    appended: list[ChronoEvent] = []
    for event in candidates:
        sig = event.signature
        seen[sig] += 1
        if seen[sig] > logged[sig]:
            appended.append(event.with_seq(next_seq))
            next_seq += 1
    return appended


def truncate_log(log: list[ChronoEvent], limit: int | None = None) -> list[ChronoEvent]:
    """Keep only the newest *limit* events (oldest discarded first)."""
    limit = event_cfg.max_log_events if limit is None else limit
    if len(log) <= limit:
        return log
    return log[-limit:]


# ---------------------------------------------------------------------------
# Stateful detector
# ---------------------------------------------------------------------------

class EventDetector:
    """Owns the previous state and the event log for the active gameweek.

    ``process()`` runs compare -> append -> persist -> swap under one lock, so
    a snapshot is never diffed against a state that is still being updated.

    Parameters
    ----------
    repository:
        An :class:`fpl_live.db.repositories.EventLogRepository`.
    state_repository:
        A :class:`fpl_live.db.repositories.LiveStateRepository`.
    sleep:
        Backoff sleep, injectable for tests.
    """

    def __init__(self, repository, state_repository, sleep=time.sleep):
        self._repo = repository
        self._state_repo = state_repository
        self._sleep = sleep
        self._lock = threading.Lock()
        self._gameweek: int | None = None
        self._state = DetectorState()
        self._log: list[ChronoEvent] = []

    @property
    def gameweek(self) -> int | None:
        return self._gameweek

    def events(self, limit: int | None = None) -> list[ChronoEvent]:
        """Snapshot of the in-memory log, newest last."""
        with self._lock:
            log = list(self._log)
        return log[-limit:] if limit else log

    def _load(self, gameweek: int) -> None:
        """Load the persisted log/state for *gameweek*, clearing older ones."""
        if self._gameweek is not None and self._gameweek != gameweek:
            logger.info(
                "Gameweek transition %s -> %s: clearing event log and state",
                self._gameweek, gameweek,
            )
        self._repo.clear_other_gameweeks(gameweek)
        self._log = [ChronoEvent.from_dict(d) for d in self._repo.get_events(gameweek)]
        self._state = DetectorState(
            players=self._state_repo.get(gameweek, PLAYER_STATE_KEY) or {},
            bonus=self._state_repo.get(gameweek, BONUS_STATE_KEY) or {},
            log_seq=self._state_repo.get(gameweek, LOG_SEQ_KEY),
        )
        self._gameweek = gameweek
        logger.info(
            "Event detector loaded GW%d: %d logged events, %d player states",
            gameweek, len(self._log), len(self._state.players),
        )

    def _persist(self, gameweek: int, appended, log, state: DetectorState) -> None:
        keep_from = log[0].seq if log else 0
        payload = {
            PLAYER_STATE_KEY: state.players,
            BONUS_STATE_KEY: state.bonus,
            LOG_SEQ_KEY: state.log_seq,
        }
        attempts = max(1, event_cfg.persist_retries)

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Event log persist failed (attempt %d/%d): %s; retrying in %.1fs",
                retry_state.attempt_number, attempts,
                retry_state.outcome.exception(), retry_state.next_action.sleep,
            )

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=event_cfg.persist_backoff),
            retry=retry_if_exception_type(sqlite3.Error),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._repo.save_detection(
                        gameweek, [e.to_dict() for e in appended], keep_from, payload,
                    )
        except sqlite3.Error as exc:
            raise EventLogPersistError(
                f"Could not persist {len(appended)} events for GW{gameweek} "
                f"after {attempts} attempts: {exc}"
            ) from exc

    def process(self, snapshot: GameweekSnapshot) -> list[ChronoEvent]:
        """Diff *snapshot* against the previous state and extend the log.

        Returns the events appended by this pass.  Raises
        :class:`EventLogPersistError` if persistence fails after retries; in
        that case the in-memory state is left untouched so the next poll
        recomputes the same deltas.
        """
        with self._lock:
            if self._gameweek != snapshot.gameweek:
                latest = self._gameweek
                if latest is None:
                    latest = self._state_repo.latest_gameweek()
                if latest is not None and snapshot.gameweek < latest:
                    # Reconciling an older gameweek must not wipe the live log
                    logger.info(
                        "Skipping event diff for GW%d, feed is on GW%d",
                        snapshot.gameweek, latest,
                    )
                    return []
                self._load(snapshot.gameweek)

            current = DetectorState(
                players=build_player_state(snapshot.live),
                bonus=build_bonus_state(snapshot.fixtures),
            )
            candidates = detect_events(
                self._state, current, snapshot.players, snapshot.captured_at,
            )
            next_seq = (self._log[-1].seq if self._log else self._repo.max_seq(snapshot.gameweek)) + 1
            appended = merge_events(self._log, candidates, self._state.log_seq, next_seq)

            log = truncate_log(self._log + appended)
            current.log_seq = (log[-1].seq if log else next_seq - 1)
            self._persist(snapshot.gameweek, appended, log, current)

            self._log = log
            self._state = current
            if candidates:
                logger.info(
                    "GW%d: %d candidate events, %d appended (log size %d)",
                    snapshot.gameweek, len(candidates), len(appended), len(log),
                )
            return appended
