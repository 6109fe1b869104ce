"""One live poll cycle: fetch -> score every manager -> diff events -> persist.

Also owns gameweek reconciliation (a forced full recompute once a gameweek
is over) and the recovery pass that catches up on reconciliations missed
while the process was down.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from fpl_live.config import data_cfg
from fpl_live.data.fpl_api import (
    FPLClient,
    UpstreamError,
    UpstreamNotFound,
    UpstreamUnavailable,
)
from fpl_live.db.repositories import GameweekResultRepository, ScoreRepository
from fpl_live.events.detector import EventDetector, EventLogPersistError
from fpl_live.events.types import ChronoEvent
from fpl_live.live.state import LiveState
from fpl_live.logging_config import get_logger
from fpl_live.scheduler.windows import (
    all_officially_finished,
    gameweek_done,
    resolve_effective_gameweek,
)
from fpl_live.schemas.upstream import GameweekSnapshot, LeagueEntry
from fpl_live.scoring.aggregator import ScoreResult, bonus_by_fixture, compute_effective_score
from fpl_live.scoring.bonus import BonusAllocation

logger = get_logger(__name__)


class LiveTracker:
    """Drives scoring and event detection for the league's managers.

    Parameters
    ----------
    client:
        :class:`FPLClient` used for every upstream read.
    detector:
        The process-wide :class:`EventDetector`.
    state:
        Shared :class:`LiveState`.
    on_events:
        Called with the events appended by each poll (e.g. SSE broadcast).
    """

    def __init__(
        self,
        client: FPLClient,
        detector: EventDetector,
        state: LiveState,
        score_repo: ScoreRepository,
        result_repo: GameweekResultRepository,
        league_id: int | None = None,
        on_events: Callable[[list[ChronoEvent]], None] | None = None,
        max_workers: int | None = None,
    ):
        self.client = client
        self.detector = detector
        self.state = state
        self.score_repo = score_repo
        self.result_repo = result_repo
        self.league_id = league_id or data_cfg.league_id
        self.on_events = on_events
        self.max_workers = max_workers or data_cfg.max_workers

    # ── Snapshot ────────────────────────────────────────────────────────

    def take_snapshot(self, gameweek: int | None = None, force: bool = False) -> GameweekSnapshot:
        """Fetch a fresh snapshot; fall back to the last good one if upstream is down."""
        try:
            bootstrap = self.client.get_bootstrap(force=force)
            fixtures_all = self.client.get_fixtures(force=force)
            if gameweek is None:
                gameweek = resolve_effective_gameweek(
                    bootstrap.gameweeks, fixtures_all, datetime.now(timezone.utc),
                )
            if gameweek is None:
                raise UpstreamNotFound("No current or upcoming gameweek")
            live = self.client.get_live_gameweek(gameweek, force=force)
        except UpstreamUnavailable:
            last = self.state.snapshot
            if last is None or (gameweek is not None and last.gameweek != gameweek):
                raise
            logger.warning("Upstream unavailable, reusing snapshot from %s", last.captured_at)
            return last

        snapshot = GameweekSnapshot(
            gameweek=gameweek,
            fixtures=[f for f in fixtures_all if f.event == gameweek],
            live=live,
            players=bootstrap.players_by_id(),
        )
        if not self.state.set_snapshot(snapshot):
            logger.info("GW%d snapshot kept out of live state (live GW%s)", gameweek, self.state.gameweek)
        return snapshot

    def managers(self) -> list[LeagueEntry]:
        """League entries to score; the last known list if upstream fails."""
        try:
            standings = self.client.get_league_standings(self.league_id)
        except UpstreamError as exc:
            known = self.state.managers
            if not known:
                raise
            logger.warning("League standings unavailable (%s), using %d known managers", exc, len(known))
            return known
        self.state.set_managers(standings.entries)
        return standings.entries

    # ── Scoring ─────────────────────────────────────────────────────────

    def _fallback_score(self, gameweek: int, entry_id: int) -> ScoreResult:
        cached = self.state.score_for(gameweek, entry_id)
        if cached is None:
            cached = self.score_repo.get_score(gameweek, entry_id)
        if cached is not None:
            result = ScoreResult.from_dict(cached["score"])
            result.stale = True
            return result
        return ScoreResult.placeholder()

    def score_manager(
        self,
        entry: LeagueEntry,
        snapshot: GameweekSnapshot,
        bonus: dict[int, BonusAllocation],
        force: bool = False,
    ) -> ScoreResult | None:
        """Score one manager; ``None`` when they have no picks for the gameweek yet."""
        gw = snapshot.gameweek
        try:
            picks = self.client.get_manager_picks(entry.entry, gw, force=force)
            return compute_effective_score(
                picks, snapshot.players, snapshot.live.by_id(), snapshot.fixtures, bonus,
            )
        except UpstreamNotFound:
            logger.info("No GW%d picks yet for entry %d", gw, entry.entry)
            return None
        except UpstreamError as exc:
            logger.warning("Picks for entry %d unavailable (%s), using fallback", entry.entry, exc)
            return self._fallback_score(gw, entry.entry)
        except Exception:
            # One bad squad must not abort the poll for everyone else
            logger.exception("Scoring failed for entry %d in GW%d", entry.entry, gw)
            return self._fallback_score(gw, entry.entry)

    def score_all(self, snapshot: GameweekSnapshot, force: bool = False) -> dict[int, dict]:
        entries = self.managers()
        bonus = bonus_by_fixture(snapshot.fixtures)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(
                lambda e: (e, self.score_manager(e, snapshot, bonus, force=force)), entries,
            ))

        rows: dict[int, dict] = {}
        for entry, result in results:
            if result is None:
                continue
            score = result.to_dict()
            self.score_repo.save_score(
                snapshot.gameweek, entry.entry, score,
                player_name=entry.player_name, entry_name=entry.entry_name,
            )
            rows[entry.entry] = {
                "entry_id": entry.entry,
                "player_name": entry.player_name,
                "entry_name": entry.entry_name,
                "score": score,
            }
        self.state.set_scores(snapshot.gameweek, rows)
        return rows

    # ── Poll ────────────────────────────────────────────────────────────

    def poll(self, gameweek: int | None = None, force: bool = False) -> dict:
        """Run one full poll cycle and return a summary."""
        snapshot = self.take_snapshot(gameweek, force=force)
        rows = self.score_all(snapshot, force=force)

        appended: list[ChronoEvent] = []
        persist_failed = False
        try:
            appended = self.detector.process(snapshot)
        except EventLogPersistError:
            # State was not swapped, the next poll re-derives these events
            logger.exception("GW%d events not persisted", snapshot.gameweek)
            persist_failed = True

        if appended and self.on_events is not None:
            try:
                self.on_events(appended)
            except Exception:
                logger.exception("Event listener failed")

        summary = {
            "gameweek": snapshot.gameweek,
            "managers": len(rows),
            "stale_scores": sum(1 for r in rows.values() if r["score"]["stale"]),
            "new_events": len(appended),
            "persist_failed": persist_failed,
            "snapshot_at": snapshot.captured_at.isoformat(),
        }
        self.state.record_poll(summary)
        logger.info(
            "Poll GW%d: %d managers scored, %d new events",
            snapshot.gameweek, len(rows), len(appended),
        )
        return summary

    # ── Reconciliation ──────────────────────────────────────────────────

    def reconcile_gameweek(self, gameweek: int, final: bool) -> dict:
        """Force a full recompute of *gameweek* and record its result status.

        When *final*, each manager's official points are fetched from their
        history and stored next to the computed score.
        """
        logger.info("Reconciling GW%d (%s)", gameweek, "final" if final else "provisional")
        summary = self.poll(gameweek, force=True)

        mismatches = 0
        if final:
            for entry in self.state.managers:
                try:
                    history = self.client.get_manager_history(entry.entry, force=True)
                except UpstreamError as exc:
                    logger.warning("History for entry %d unavailable: %s", entry.entry, exc)
                    continue
                row = history.for_gameweek(gameweek)
                if row is None:
                    continue
                self.score_repo.set_official_points(gameweek, entry.entry, row.points)
                computed = self.score_repo.get_score(gameweek, entry.entry)
                if computed and computed["score"]["total"] != row.points:
                    mismatches += 1
                    logger.warning(
                        "GW%d entry %d: computed %d, official %d",
                        gameweek, entry.entry, computed["score"]["total"], row.points,
                    )

        status = GameweekResultRepository.FINAL if final else GameweekResultRepository.PROVISIONAL
        self.result_repo.set_status(gameweek, status, {**summary, "mismatches": mismatches})
        return summary

    def morning_refresh(self, gameweek: int) -> list[int]:
        """Re-run the final reconciliation after upstream's overnight corrections.

        Returns the entries whose computed total or official points moved
        since the previous reconciliation.
        """
        def totals() -> dict[int, tuple]:
            return {
                row["entry_id"]: (row["score"].get("total"), row["official_points"])
                for row in self.score_repo.get_scores(gameweek)
            }

        before = totals()
        self.reconcile_gameweek(gameweek, final=True)
        after = totals()

        changed = sorted(e for e, value in after.items() if before.get(e) != value)
        if changed:
            logger.warning("GW%d morning refresh changed %d score(s): %s",
                           gameweek, len(changed), changed)
        else:
            logger.info("GW%d morning refresh: no score changes", gameweek)
        return changed

    def recover(self) -> list[int]:
        """Reconcile completed gameweeks whose derived results are missing or outdated.

        Only gameweeks newer than the last final result are considered; with
        no results at all, only the latest completed gameweek is.  Returns
        the reconciled gameweek ids.
        """
        bootstrap = self.client.get_bootstrap()
        fixtures = self.client.get_fixtures()
        statuses = self.result_repo.get_all()
        finals = [gw for gw, s in statuses.items() if s == GameweekResultRepository.FINAL]
        floor = max(finals) if finals else None

        done = [gw for gw in bootstrap.gameweeks if gameweek_done(gw, fixtures)]
        if floor is None:
            done = done[-1:]
        else:
            done = [gw for gw in done if gw.id > floor]

        reconciled: list[int] = []
        for gw in done:
            own = [f for f in fixtures if f.event == gw.id]
            final = gw.finished and all_officially_finished(own)
            current = statuses.get(gw.id)
            if current == GameweekResultRepository.FINAL:
                continue
            if current == GameweekResultRepository.PROVISIONAL and not final:
                continue
            try:
                self.reconcile_gameweek(gw.id, final=final)
                reconciled.append(gw.id)
            except UpstreamError as exc:
                logger.warning("Recovery of GW%d skipped: %s", gw.id, exc)
        if reconciled:
            logger.info("Recovery pass reconciled GW %s", reconciled)
        return reconciled
