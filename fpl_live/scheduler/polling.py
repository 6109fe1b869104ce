"""Adaptive Polling Scheduler.

Decides when the tracker polls:

* ``PRE_MATCH``: deadline passed, first kickoff not yet near, slow loop;
* ``LIVE``: inside a kickoff window, fast loop, with a window-end check
  that extends minute by minute until every started match has ended;
* ``BONUS_CONFIRMATION``: all matches over, polling with backoff until
  upstream marks the gameweek (by id) and all its fixtures finished;
* ``IDLE``: waiting on start/deadline/daily timers.

The morning after a gameweek's last match a final re-check picks up
upstream's overnight score corrections.

Every reschedule cancels all pending timers and stops any polling loop
before installing a new set, so two loops can never run at once.  A callback
that is already running when a reschedule lands carries the schedule
generation it was armed under and re-checks it before arming anything, so
it cannot leave an orphaned timer behind.

Kickoff windows may overlap (a 19:30 and a 20:15 kickoff form two windows);
each window's end is judged on its own fixtures, and the live loop stops
only once no window is open.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from fpl_live.config import scheduler_cfg
from fpl_live.data.fpl_api import FPLClient, UpstreamError
from fpl_live.logging_config import get_logger
from fpl_live.scheduler.state_machine import ScheduleMode, check_transition, detect_mode
from fpl_live.scheduler.timers import TimerRegistry, utc_now
from fpl_live.scheduler.windows import (
    KickoffWindow,
    all_officially_finished,
    all_provisionally_finished,
    group_fixtures_into_windows,
    resolve_effective_gameweek,
)
from fpl_live.schemas.upstream import Fixture, FixtureStatus

if TYPE_CHECKING:
    from fpl_live.live.tracker import LiveTracker

logger = get_logger(__name__)


class AdaptivePollingScheduler:
    """Timer-driven scheduler around a :class:`LiveTracker`.

    Parameters
    ----------
    tracker:
        Runs poll cycles and reconciliation.
    client:
        Used for schedule-level fixture/gameweek reads (always forced).
    timers:
        Registry holding every pending callback, injectable for tests.
    clock:
        Returns the current aware datetime.
    """

    def __init__(
        self,
        tracker: LiveTracker,
        client: FPLClient,
        timers: TimerRegistry | None = None,
        clock=utc_now,
    ):
        self.tracker = tracker
        self.client = client
        self.clock = clock
        self.timers = timers or TimerRegistry(clock=clock)
        self._lock = threading.Lock()
        self._reschedule_lock = threading.Lock()
        self._mode = ScheduleMode.IDLE
        # Bumped by every reschedule; callbacks armed under an older value are dropped
        self._generation = 0
        self._gameweek: int | None = None
        self._windows: list[KickoffWindow] = []
        self._open_windows: list[KickoffWindow] = []
        self._extensions: dict[datetime, int] = {}
        # Polling loop: at most one, guarded by the flag and a generation id
        self._loop_active = False
        self._loop_mode: ScheduleMode | None = None
        self._loop_generation = 0
        self._polls = 0
        # Bonus confirmation bookkeeping, per gameweek id
        self._bonus_since: dict[int, datetime] = {}
        self._bonus_given_up: set[int] = set()

    # ── Mode ────────────────────────────────────────────────────────────

    @property
    def mode(self) -> ScheduleMode:
        with self._lock:
            return self._mode

    def _set_mode(self, mode: ScheduleMode, generation: int | None = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            previous = self._mode
            self._mode = check_transition(previous, mode)
        if previous is not mode:
            logger.info("Scheduler mode %s -> %s", previous.value, mode.value)
        return True

    def _current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _arm(self, generation: int, delay: float, callback, name: str) -> bool:
        """Schedule *callback* unless a reschedule has superseded *generation*."""
        with self._lock:
            if generation != self._generation:
                logger.debug("Dropping %s from a superseded schedule", name)
                return False
            self.timers.schedule(delay, callback, name)
        return True

    def _arm_at(self, generation: int, when: datetime, callback, name: str) -> bool:
        return self._arm(generation, (when - self.clock()).total_seconds(), callback, name)

    # ── Polling loop ────────────────────────────────────────────────────

    def _start_loop(
        self, mode: ScheduleMode, interval: int, reason: str, generation: int | None = None,
    ) -> bool:
        """Start the polling loop; a no-op returning False if one is running."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            if self._loop_active:
                if self._loop_mode is mode:
                    logger.info("Already polling (%s), skipping start", mode.value)
                    return False
                # PRE_MATCH -> LIVE: the new generation retires the old loop
            self._loop_active = True
            self._loop_mode = mode
            self._loop_generation += 1
            loop = self._loop_generation
        logger.info("Starting %s polling every %ds: %s", mode.value, interval, reason)
        self.timers.schedule(0, lambda: self._tick(loop, interval), f"{mode.value}-tick")
        return True

    def _tick(self, loop: int, interval: int) -> None:
        with self._lock:
            if not self._loop_active or loop != self._loop_generation:
                return
            gameweek = self._gameweek
        try:
            self.tracker.poll(gameweek)
            with self._lock:
                self._polls += 1
        except Exception:
            logger.exception("Poll failed")
        # Next tick only once this one has settled
        with self._lock:
            if not self._loop_active or loop != self._loop_generation:
                return
            mode = self._loop_mode
        self.timers.schedule(interval, lambda: self._tick(loop, interval), f"{mode.value}-tick")

    def _halt_loop_locked(self) -> bool:
        if not self._loop_active:
            return False
        self._loop_active = False
        self._loop_mode = None
        self._loop_generation += 1
        return True

    def stop_polling(self, reason: str) -> None:
        with self._lock:
            stopped = self._halt_loop_locked()
        if stopped:
            logger.info("Stopped polling: %s", reason)

    @property
    def live_polling(self) -> bool:
        with self._lock:
            return self._loop_active and self._loop_mode is ScheduleMode.LIVE

    # ── Reschedule ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Kick off the first reschedule on a timer thread."""
        self.timers.schedule(0, self.reschedule, "initial-schedule")

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            self._open_windows = []
        self.timers.cancel_all()
        self.stop_polling("shutdown")
        with self._lock:
            self._mode = ScheduleMode.IDLE

    def _retry_later(self, why: str, generation: int) -> None:
        logger.warning("%s, will retry in %ds", why, scheduler_cfg.retry_delay)
        self._arm(generation, scheduler_cfg.retry_delay, self.reschedule, "retry-schedule")
        self._set_mode(ScheduleMode.IDLE, generation)

    def reschedule(self) -> ScheduleMode:
        """Cancel everything and compute a fresh schedule from upstream data."""
        with self._reschedule_lock:
            with self._lock:
                self._generation += 1
                generation = self._generation
                self._open_windows = []
                self._extensions = {}
            self._set_mode(ScheduleMode.RESCHEDULING)
            self.timers.cancel_all()
            self.stop_polling("reschedule")

            try:
                bootstrap = self.client.get_bootstrap(force=True)
                fixtures = self.client.get_fixtures(force=True)
            except UpstreamError as exc:
                self._retry_later(f"No fixture data ({exc})", generation)
                return self.mode
            if not fixtures:
                self._retry_later("No fixture data", generation)
                return self.mode

            try:
                self.tracker.recover()
            except Exception:
                logger.exception("Recovery pass failed")

            now = self.clock()
            gw_id = resolve_effective_gameweek(bootstrap.gameweeks, fixtures, now)
            gameweek = bootstrap.gameweek(gw_id) if gw_id is not None else None
            gw_fixtures = [f for f in fixtures if f.event == gw_id]
            if gameweek is None or not gw_fixtures:
                self._retry_later(f"No fixtures for gameweek {gw_id}", generation)
                return self.mode

            windows = group_fixtures_into_windows(gw_fixtures)
            active = [w for w in windows if w.contains(now)]
            awaiting = (
                all_provisionally_finished(gw_fixtures)
                and not (gameweek.finished and all_officially_finished(gw_fixtures))
                and gw_id not in self._bonus_given_up
            )
            with self._lock:
                self._gameweek = gw_id
                self._windows = windows

            mode = detect_mode(
                now=now,
                deadline=gameweek.deadline_time,
                first_poll_start=windows[0].poll_start,
                in_window=bool(active),
                awaiting_confirmation=awaiting,
            )
            logger.info(
                "GW%d: %d window(s), %d fixture(s), mode %s",
                gw_id, len(windows), len(gw_fixtures), mode.value,
            )

            if mode is ScheduleMode.LIVE:
                for window in active:
                    self._enter_window(window, gw_id, generation)
            elif mode is ScheduleMode.PRE_MATCH:
                self._set_mode(ScheduleMode.PRE_MATCH, generation)
                self._start_loop(
                    ScheduleMode.PRE_MATCH, scheduler_cfg.pre_match_interval, "deadline passed", generation,
                )
            elif mode is ScheduleMode.BONUS_CONFIRMATION:
                self.start_bonus_confirmation(gw_id, generation)
            else:
                self._set_mode(ScheduleMode.IDLE, generation)

            self._arm_future_timers(windows, now, gw_id, generation)
            self._arm_deadline_timer(bootstrap, gameweek, gw_fixtures, now, generation)
            self._arm_daily_check(windows, now, generation)
            self._arm_morning_after(gw_fixtures, gw_id, now, generation)
            logger.info(
                "%d timer(s) scheduled, next at %s",
                len(self.timers.pending()), self.timers.next_due(),
            )
            return self.mode

    def _arm_future_timers(
        self, windows: list[KickoffWindow], now: datetime, gw_id: int, generation: int,
    ) -> None:
        horizon = now + timedelta(seconds=scheduler_cfg.horizon)
        for window in windows:
            if window.poll_start <= now or window.poll_start > horizon:
                continue
            logger.info(
                "Window: %d match(es) at %s, polling %s -> %s",
                len(window.fixtures), window.start.isoformat(),
                window.poll_start.isoformat(), window.end.isoformat(),
            )
            self._arm_at(
                generation,
                window.poll_start,
                lambda w=window: self._on_window_start(w, gw_id, generation),
                "window-start",
            )

    def _arm_deadline_timer(
        self, bootstrap, gameweek, gw_fixtures: list[Fixture], now: datetime, generation: int,
    ) -> None:
        """Reschedule exactly at the next relevant deadline so PRE_MATCH starts on time."""
        target = None
        if gameweek.deadline_time > now:
            target = gameweek.deadline_time
        elif all_provisionally_finished(gw_fixtures):
            upcoming = next((gw for gw in bootstrap.gameweeks if gw.id > gameweek.id), None)
            if upcoming is not None and upcoming.deadline_time > now:
                target = upcoming.deadline_time
        if target is not None and target - now <= timedelta(seconds=scheduler_cfg.horizon):
            self._arm_at(generation, target, self.reschedule, "deadline")

    def _arm_daily_check(self, windows: list[KickoffWindow], now: datetime, generation: int) -> None:
        upcoming = next((w for w in windows if w.start > now), None)
        if upcoming is not None and upcoming.start - now <= timedelta(seconds=scheduler_cfg.idle_lookahead):
            return
        local = now.astimezone()
        check = local.replace(hour=scheduler_cfg.daily_check_hour, minute=0, second=0, microsecond=0)
        if check <= local:
            check += timedelta(days=1)
        logger.info("Daily fixture check at %s", check.isoformat())
        self._arm_at(generation, check, self.reschedule, "daily-check")

    def morning_after(self, gw_fixtures: list[Fixture]) -> datetime | None:
        """Local ``morning_after_hour`` on the day after the gameweek's last match ends."""
        if not gw_fixtures:
            return None
        last_kickoff = max(f.kickoff_time for f in gw_fixtures)
        last_end = (last_kickoff + timedelta(seconds=scheduler_cfg.match_duration)).astimezone()
        return (last_end + timedelta(days=1)).replace(
            hour=scheduler_cfg.morning_after_hour, minute=0, second=0, microsecond=0,
        )

    def _arm_morning_after(
        self, gw_fixtures: list[Fixture], gw_id: int, now: datetime, generation: int,
    ) -> None:
        check = self.morning_after(gw_fixtures)
        if check is None or check <= now or check - now > timedelta(seconds=scheduler_cfg.horizon):
            return
        logger.info("GW%d morning-after check at %s", gw_id, check.isoformat())
        self._arm_at(
            generation, check, lambda: self._on_morning_after(gw_id, generation), "morning-after",
        )

    def _on_morning_after(self, gw_id: int, generation: int) -> None:
        if not self._current(generation):
            return
        confirmed = False
        try:
            bootstrap = self.client.get_bootstrap(force=True)
            fixtures = self.client.get_fixtures(gw_id, force=True)
            gameweek = bootstrap.gameweek(gw_id)
            confirmed = bool(gameweek and gameweek.finished and all_officially_finished(fixtures))
        except UpstreamError as exc:
            logger.warning("Morning-after check could not reach upstream: %s", exc)

        if not confirmed:
            logger.info("GW%d not final yet, morning-after check again in %ds",
                        gw_id, scheduler_cfg.morning_retry_delay)
            self._arm(
                generation,
                scheduler_cfg.morning_retry_delay,
                lambda: self._on_morning_after(gw_id, generation),
                "morning-after",
            )
            return

        try:
            self.tracker.morning_refresh(gw_id)
        except Exception:
            logger.exception("Morning-after refresh of GW%d failed", gw_id)
        self._arm(generation, scheduler_cfg.reschedule_delay, self.reschedule, "post-morning")

    # ── Live windows ────────────────────────────────────────────────────

    def _enter_window(self, window: KickoffWindow, gw_id: int, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            if window not in self._open_windows:
                self._open_windows.append(window)
            self._extensions[window.start] = 0
        self._set_mode(ScheduleMode.LIVE, generation)
        self._start_loop(
            ScheduleMode.LIVE,
            scheduler_cfg.live_interval,
            f"{len(window.fixtures)} match(es) at {window.start.isoformat()}",
            generation,
        )
        self._arm_at(
            generation,
            window.end,
            lambda: self._on_window_end(window, gw_id, generation),
            "window-end",
        )

    def _on_window_start(self, window: KickoffWindow, gw_id: int, generation: int) -> None:
        if not self._current(generation):
            return
        if self.mode is ScheduleMode.BONUS_CONFIRMATION:
            self.reschedule()
            return
        self._enter_window(window, gw_id, generation)

    def _on_window_end(self, window: KickoffWindow, gw_id: int, generation: int) -> None:
        if not self._current(generation):
            return
        try:
            fixtures = self.client.get_fixtures(gw_id, force=True)
        except UpstreamError as exc:
            logger.warning("Window-end check could not fetch fixtures: %s", exc)
            fixtures = None

        # Only this window's matches decide whether it may close
        own_ids = {f.id for f in window.fixtures}
        still_playing = fixtures is None or any(
            f.id in own_ids and f.status is FixtureStatus.IN_PROGRESS for f in fixtures
        )
        if still_playing:
            with self._lock:
                if generation != self._generation:
                    return
                extensions = self._extensions.get(window.start, 0) + 1
                self._extensions[window.start] = extensions
            if extensions <= scheduler_cfg.max_extensions:
                logger.info("Matches still in progress, extending polling (%d/%d)",
                            extensions, scheduler_cfg.max_extensions)
                self._arm(
                    generation,
                    scheduler_cfg.extension_step,
                    lambda: self._on_window_end(window, gw_id, generation),
                    "window-extension",
                )
                return
            logger.warning("Extension cap reached for window at %s", window.start.isoformat())

        with self._lock:
            if generation != self._generation:
                return
            if window in self._open_windows:
                self._open_windows.remove(window)
            self._extensions.pop(window.start, None)
            still_open = len(self._open_windows)
            stopped = False if still_open else self._halt_loop_locked()
        if still_open:
            logger.info("Window at %s closed, %d window(s) still live", window.start.isoformat(), still_open)
            return
        if stopped:
            logger.info("Stopped polling: window end")

        try:
            self.tracker.poll(gw_id)
        except Exception:
            logger.exception("Final window poll failed")

        nothing_left = fixtures is not None and not any(
            f.status is FixtureStatus.NOT_STARTED for f in fixtures
        )
        if nothing_left:
            self.start_bonus_confirmation(gw_id, generation)
        elif self._set_mode(ScheduleMode.RESCHEDULING, generation):
            self._arm(generation, scheduler_cfg.reschedule_delay, self.reschedule, "post-window")

    # ── Bonus confirmation ──────────────────────────────────────────────

    def start_bonus_confirmation(self, gw_id: int, generation: int | None = None) -> None:
        """Poll *gw_id* with backoff until upstream finalises it."""
        with self._lock:
            if generation is None:
                generation = self._generation
            elif generation != self._generation:
                return
            self._bonus_since.setdefault(gw_id, self.clock())
            self._gameweek = gw_id
        self._set_mode(ScheduleMode.BONUS_CONFIRMATION, generation)
        self._arm(
            generation,
            scheduler_cfg.bonus_fast_interval,
            lambda: self._bonus_check(gw_id, generation),
            "bonus-check",
        )

    def bonus_interval(self, elapsed: float) -> int:
        """Backoff: fast for the first period, slow afterwards."""
        if elapsed < scheduler_cfg.bonus_fast_period:
            return scheduler_cfg.bonus_fast_interval
        return scheduler_cfg.bonus_slow_interval

    def _bonus_check(self, gw_id: int, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            since = self._bonus_since.get(gw_id, self.clock())
        elapsed = (self.clock() - since).total_seconds()

        confirmed = False
        try:
            bootstrap = self.client.get_bootstrap(force=True)
            fixtures = self.client.get_fixtures(gw_id, force=True)
            gameweek = bootstrap.gameweek(gw_id)
            confirmed = bool(gameweek and gameweek.finished and all_officially_finished(fixtures))
        except UpstreamError as exc:
            logger.warning("Bonus confirmation check failed: %s", exc)

        if confirmed:
            logger.info("GW%d confirmed after %.0f min", gw_id, elapsed / 60)
            self._finish_bonus(gw_id, True, generation)
            return
        if elapsed >= scheduler_cfg.bonus_max_wait:
            logger.warning("GW%d not confirmed after %.1f h, giving up", gw_id, elapsed / 3600)
            with self._lock:
                self._bonus_given_up.add(gw_id)
            self._finish_bonus(gw_id, False, generation)
            return

        try:
            self.tracker.poll(gw_id)
        except Exception:
            logger.exception("Bonus confirmation poll failed")
        remaining = scheduler_cfg.bonus_max_wait - elapsed
        delay = min(self.bonus_interval(elapsed), max(remaining, 0))
        self._arm(generation, delay, lambda: self._bonus_check(gw_id, generation), "bonus-check")

    def _finish_bonus(self, gw_id: int, final: bool, generation: int) -> None:
        try:
            self.tracker.reconcile_gameweek(gw_id, final=final)
        except Exception:
            logger.exception("Reconciliation of GW%d failed", gw_id)
        with self._lock:
            self._bonus_since.pop(gw_id, None)
        if self._set_mode(ScheduleMode.RESCHEDULING, generation):
            self._arm(generation, scheduler_cfg.reschedule_delay, self.reschedule, "post-confirmation")

    # ── Introspection ───────────────────────────────────────────────────

    def get_schedule_state(self) -> dict:
        pending = self.timers.pending()
        with self._lock:
            active = self._open_windows[-1] if self._open_windows else None
            return {
                "mode": self._mode.value,
                "gameweek": self._gameweek,
                "active_window": active.to_dict() if active else None,
                "open_windows": [w.to_dict() for w in self._open_windows],
                "windows": [w.to_dict() for w in self._windows],
                "next_transition_at": pending[0].due_at.isoformat() if pending else None,
                "live_polling": self._loop_active and self._loop_mode is ScheduleMode.LIVE,
                "polling_loop": self._loop_mode.value if self._loop_mode else None,
                "extensions": max(self._extensions.values(), default=0),
                "polls": self._polls,
                "pending_timers": [
                    {"name": h.name, "due_at": h.due_at.isoformat()} for h in pending
                ],
            }
