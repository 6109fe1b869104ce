"""Central configuration: every magic number in one place.

Deployment overrides come from the environment through :class:`EnvSettings`;
everything else is a code constant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSettings(BaseSettings):
    """Environment overrides, validated by pydantic."""

    model_config = SettingsConfigDict(
        env_ignore_empty=True,  # FPL_LEAGUE_ID= behaves like unset
        extra="ignore",
    )

    fpl_api_base: str = Field("https://fantasy.premierleague.com/api", alias="FPL_API_BASE")
    request_timeout: int = Field(10, alias="FPL_API_TIMEOUT")
    league_id: int = Field(619028, alias="FPL_LEAGUE_ID")
    live_interval: int = Field(60, alias="FPL_LIVE_INTERVAL")
    port: int = Field(9874, alias="FPL_LIVE_PORT")
    log_level: str = Field("INFO", alias="FPL_LIVE_LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def _known_level(cls, v: str) -> str:
        name = str(v).upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"unknown log level {v!r}")
        return name


def _env_var(loc: tuple) -> str:
    key = str(loc[0]) if loc else "environment"
    info = EnvSettings.model_fields.get(key)
    return info.alias if info is not None and info.alias else key


@lru_cache(maxsize=1)
def load_env() -> tuple[EnvSettings, tuple[str, ...]]:
    """Parse the environment once.

    Returns the settings and a tuple of problems.  When any variable is
    invalid the defaults are returned and ``validate()`` reports the
    problems, so a typo never silently runs against the default league.
    """
    try:
        return EnvSettings(), ()
    except ValidationError as exc:
        problems = tuple(
            f"{_env_var(err['loc'])} is invalid: {err['msg']}" for err in exc.errors()
        )
        return EnvSettings.model_construct(), problems


def _env() -> EnvSettings:
    return load_env()[0]


# ---------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DataConfig:
    fpl_api_base: str = field(default_factory=lambda: _env().fpl_api_base)
    request_timeout: int = field(default_factory=lambda: _env().request_timeout)
    league_id: int = field(default_factory=lambda: _env().league_id)
    max_workers: int = 8  # Concurrent manager fetches per poll


# ---------------------------------------------------------------------------
# Cache TTLs (seconds)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CacheConfig:
    bootstrap: int = 5 * 60          # 5 minutes
    fixtures: int = 60               # 1 minute
    event_live: int = 30             # 30 seconds
    manager_api: int = 60            # 1 minute
    league: int = 10 * 60            # 10 minutes
    refresh_workers: int = 4         # Background revalidation threads


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SchedulerConfig:
    live_interval: int = field(default_factory=lambda: _env().live_interval)
    pre_match_interval: int = 5 * 60
    kickoff_lead: int = 5 * 60             # Start polling 5 min before kickoff
    window_threshold: int = 30 * 60        # Kickoffs within 30 min share a window
    match_duration: int = 115 * 60         # 90 + stoppage + half-time + buffer
    extension_step: int = 60               # Re-check every minute past window end
    max_extensions: int = 60               # Up to one hour of extension
    bonus_fast_interval: int = 2 * 60
    bonus_slow_interval: int = 5 * 60
    bonus_fast_period: int = 60 * 60       # Fast cadence for the first hour
    bonus_max_wait: int = 8 * 60 * 60
    retry_delay: int = 60 * 60             # No fixture data -> retry in 1 hour
    reschedule_delay: int = 60             # Grace period after a window closes
    horizon: int = 7 * 24 * 60 * 60        # Only arm timers within 7 days
    daily_check_hour: int = 6              # Local hour for the daily fixture check
    morning_after_hour: int = 8            # Local hour for the overnight correction check
    morning_retry_delay: int = 60 * 60     # Gameweek not yet confirmed -> look again
    idle_lookahead: int = 24 * 60 * 60


# ---------------------------------------------------------------------------
# Event feed
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EventConfig:
    max_log_events: int = 500
    persist_retries: int = 3
    persist_backoff: float = 0.5
    # Lower value = shown first within one poll.
    priority: dict[str, int] = field(default_factory=lambda: {
        "goal": 1,
        "assist": 2,
        "pen_save": 3,
        "pen_miss": 4,
        "own_goal": 5,
        "red": 6,
        "yellow": 7,
        "clean_sheet": 8,
        "team_clean_sheet": 8,
        "goals_conceded": 9,
        "team_goals_conceded": 9,
        "saves": 10,
        "bonus_change": 11,
        "defcon": 12,
    })


# ---------------------------------------------------------------------------
# Scoring rules
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ScoringConfig:
    captain_multiplier: int = 2
    triple_captain_multiplier: int = 3
    bonus_tiers: tuple[int, ...] = (3, 2, 1)
    formation_minimums: dict[str, int] = field(default_factory=lambda: {
        "GKP": 1, "DEF": 3, "MID": 2, "FWD": 1,
    })


# ---------------------------------------------------------------------------
# League summaries
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LeagueConfig:
    second_half_start: int = 20  # Chips reset from this gameweek


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = field(default_factory=lambda: _env().port)


# ---------------------------------------------------------------------------
# Singleton instances (importable as `from fpl_live.config import data_cfg, ...`)
# ---------------------------------------------------------------------------
data_cfg = DataConfig()
cache_cfg = CacheConfig()
scheduler_cfg = SchedulerConfig()
event_cfg = EventConfig()
scoring_cfg = ScoringConfig()
league_cfg = LeagueConfig()
server_cfg = ServerConfig()


def validate() -> None:
    """Check the loaded configuration, raising ``ValueError`` with every problem."""
    errors: list[str] = list(load_env()[1])

    if data_cfg.league_id <= 0:
        errors.append("FPL_LEAGUE_ID must be a positive integer")
    if data_cfg.request_timeout <= 0:
        errors.append("FPL_API_TIMEOUT must be a positive integer")
    if not 1 <= server_cfg.port <= 65535:
        errors.append("FPL_LIVE_PORT must be a valid port number (1-65535)")
    if scheduler_cfg.live_interval <= 0:
        errors.append("FPL_LIVE_INTERVAL must be a positive integer")
    if scheduler_cfg.bonus_fast_interval > scheduler_cfg.bonus_slow_interval:
        errors.append("bonus_fast_interval must not exceed bonus_slow_interval")
    if not 0 <= scheduler_cfg.daily_check_hour <= 23:
        errors.append("daily_check_hour must be between 0 and 23")
    if not 0 <= scheduler_cfg.morning_after_hour <= 23:
        errors.append("morning_after_hour must be between 0 and 23")
    if event_cfg.max_log_events <= 0:
        errors.append("max_log_events must be positive")
    if len(scoring_cfg.bonus_tiers) != 3:
        errors.append("bonus_tiers must hold exactly three values")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )
