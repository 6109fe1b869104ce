"""League summaries: weekly losers and chip usage."""

from fpl_live.league.insights import LeagueInsights, ManagerWeek, chip_status, weekly_loser

__all__ = ["LeagueInsights", "ManagerWeek", "chip_status", "weekly_loser"]
