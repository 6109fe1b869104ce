"""Live scoring: formation rules, provisional bonus, auto-subs, aggregation."""

from fpl_live.scoring.aggregator import ScoreResult, bonus_by_fixture, compute_effective_score
from fpl_live.scoring.autosub import LineupResult, resolve_lineup
from fpl_live.scoring.bonus import bonus_holder_sets, calculate_provisional_bonus, fixture_bonus
from fpl_live.scoring.formation import formation_counts, is_valid_formation

__all__ = [
    "compute_effective_score",
    "bonus_by_fixture",
    "ScoreResult",
    "resolve_lineup",
    "LineupResult",
    "calculate_provisional_bonus",
    "fixture_bonus",
    "bonus_holder_sets",
    "formation_counts",
    "is_valid_formation",
]
