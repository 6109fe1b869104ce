"""FPL API client: fetch, cache and parse data from fantasy.premierleague.com.

Every endpoint goes through a :class:`StaleWhileRevalidateCache`.  Bootstrap
and fixtures are also mirrored to JSON files so a restart during an outage
still has something to serve.

Failures are split into three kinds:

* :class:`UpstreamUnavailable` (timeouts, connection errors, 5xx, HTML
  maintenance pages) marks the shared :class:`UpstreamStatus` as degraded;
  callers get the last good value instead whenever one exists.
* :class:`UpstreamNotFound` (404) is "no data yet", e.g. picks for a
  gameweek whose deadline has not passed.  Never degradation.
* :class:`UpstreamError` is everything else the API refuses.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import requests

from fpl_live.config import cache_cfg, data_cfg
from fpl_live.data.cache import (
    StaleWhileRevalidateCache,
    cache_path,
    read_json_cache,
    write_json_cache,
)
from fpl_live.logging_config import get_logger
from fpl_live.schemas.upstream import (
    Bootstrap,
    Fixture,
    LeagueStandings,
    LiveGameweek,
    ManagerHistory,
    SquadPicks,
)

logger = get_logger(__name__)

# Safety bound on league pagination (50 entries per page upstream)
_MAX_LEAGUE_PAGES = 20


# ── Errors ──────────────────────────────────────────────────────────────

class UpstreamError(Exception):
    """The FPL API did not return usable data."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailable(UpstreamError):
    """Transient failure: timeout, connection error, 5xx or maintenance page."""


class UpstreamNotFound(UpstreamError):
    """The resource does not exist (yet)."""


# ── Process-wide degraded flag ──────────────────────────────────────────

class UpstreamStatus:
    """Thread-safe record of whether upstream is currently degraded."""

    def __init__(self):
        self._lock = threading.Lock()
        self.degraded = False
        self.last_error: str | None = None
        self.last_error_at: datetime | None = None
        self.last_success_at: datetime | None = None

    def mark_degraded(self, message: str) -> None:
        with self._lock:
            if not self.degraded:
                logger.warning("Upstream degraded: %s", message)
            self.degraded = True
            self.last_error = message
            self.last_error_at = datetime.now(timezone.utc)

    def mark_ok(self) -> None:
        with self._lock:
            if self.degraded:
                logger.info("Upstream recovered")
            self.degraded = False
            self.last_success_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "degraded": self.degraded,
                "last_error": self.last_error,
                "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
                "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            }


# ── Client ──────────────────────────────────────────────────────────────

class FPLClient:
    """Typed, cached access to the FPL endpoints the live pipeline needs.

    Parameters
    ----------
    session:
        Anything with a ``requests``-compatible ``get``.  Defaults to a new
        :class:`requests.Session`.
    cache:
        Shared :class:`StaleWhileRevalidateCache`; one is created if omitted.
    status:
        Shared :class:`UpstreamStatus`; one is created if omitted.
    """

    def __init__(
        self,
        session=None,
        cache: StaleWhileRevalidateCache | None = None,
        status: UpstreamStatus | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
    ):
        self.session = session or requests.Session()
        self.cache = cache or StaleWhileRevalidateCache()
        self.status = status or UpstreamStatus()
        self.base_url = (base_url or data_cfg.fpl_api_base).rstrip("/")
        self.timeout = timeout or data_cfg.request_timeout

    # ── Low-level HTTP ──────────────────────────────────────────────────

    def _get_json(self, path: str):
        """GET ``base_url/path`` and decode JSON, classifying failures."""
        url = f"{self.base_url}/{path}"
        logger.debug("Fetching %s", url)
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise self._unavailable(f"Timeout fetching {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise self._unavailable(f"Request to {url} failed: {exc}") from exc

        if resp.status_code == 404:
            raise UpstreamNotFound(f"Not found: {url}", status_code=404)
        if resp.status_code >= 500 or resp.status_code == 429:
            raise self._unavailable(
                f"HTTP {resp.status_code} from {url}", status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise UpstreamError(f"HTTP {resp.status_code} from {url}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            # The game serves an HTML page while it is being updated
            raise self._unavailable(f"Non-JSON response from {url}") from exc
        self.status.mark_ok()
        return data

    def _unavailable(self, message: str, status_code: int | None = None) -> UpstreamUnavailable:
        self.status.mark_degraded(message)
        return UpstreamUnavailable(message, status_code=status_code)

    def _cached(self, key: str, path: str, ttl: int, force: bool = False, mirror: bool = False):
        """Raw JSON for *path* via the SWR cache, with stale fallback.

        With *mirror*, successful loads are written to a JSON file that is
        used when nothing is in memory and upstream is unavailable.
        """
        def loader():
            data = self._get_json(path)
            if mirror:
                write_json_cache(cache_path(f"fpl_api_{key}.json"), data)
            return data

        try:
            if force:
                return self.cache.refresh(key, loader)
            return self.cache.get(key, loader, ttl)
        except UpstreamUnavailable:
            stale = self.cache.peek(key)
            if stale is None and mirror:
                stale = read_json_cache(cache_path(f"fpl_api_{key}.json"))
            if stale is None:
                raise
            logger.warning("Upstream unavailable, serving stale %s", key)
            return stale

    # ── Public endpoints ────────────────────────────────────────────────

    def get_bootstrap(self, force: bool = False) -> Bootstrap:
        raw = self._cached("bootstrap", "bootstrap-static/", cache_cfg.bootstrap, force, mirror=True)
        return Bootstrap.model_validate(raw)

    def get_fixtures(self, gameweek: int | None = None, force: bool = False) -> list[Fixture]:
        """Scheduled fixtures, optionally only those of *gameweek*."""
        raw = self._cached("fixtures", "fixtures/", cache_cfg.fixtures, force, mirror=True)
        fixtures = Fixture.parse_many(raw)
        if gameweek is not None:
            fixtures = [f for f in fixtures if f.event == gameweek]
        return fixtures

    def get_live_gameweek(self, gameweek: int, force: bool = False) -> LiveGameweek:
        raw = self._cached(
            f"event_{gameweek}_live", f"event/{gameweek}/live/", cache_cfg.event_live, force,
        )
        return LiveGameweek.model_validate(raw)

    def get_manager_picks(self, entry_id: int, gameweek: int, force: bool = False) -> SquadPicks:
        """A manager's picks; raises :class:`UpstreamNotFound` before the deadline."""
        raw = self._cached(
            f"picks_{entry_id}_{gameweek}",
            f"entry/{entry_id}/event/{gameweek}/picks/",
            cache_cfg.manager_api,
            force,
        )
        return SquadPicks.model_validate(raw)

    def get_manager_history(self, entry_id: int, force: bool = False) -> ManagerHistory:
        raw = self._cached(
            f"history_{entry_id}", f"entry/{entry_id}/history/", cache_cfg.manager_api, force,
        )
        return ManagerHistory.model_validate(raw)

    def get_league_standings(self, league_id: int | None = None, force: bool = False) -> LeagueStandings:
        """Every entry of a classic league, following pagination."""
        league_id = league_id or data_cfg.league_id
        standings: LeagueStandings | None = None
        for page in range(1, _MAX_LEAGUE_PAGES + 1):
            raw = self._cached(
                f"league_{league_id}_{page}",
                f"leagues-classic/{league_id}/standings/?page_standings={page}",
                cache_cfg.league,
                force,
            )
            parsed = LeagueStandings.from_payload(raw)
            if standings is None:
                standings = parsed
            else:
                standings.entries.extend(parsed.entries)
            if not (raw.get("standings") or {}).get("has_next"):
                break
        return standings
