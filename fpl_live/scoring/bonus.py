"""Provisional bonus allocation from a fixture's BPS list.

This is the single implementation used by the scoring aggregator, the
per-player breakdown and the event feed, so the three can never disagree.
"""

from __future__ import annotations

from collections.abc import Iterable

from fpl_live.config import scoring_cfg
from fpl_live.schemas.upstream import Fixture, FixtureStatus

BonusAllocation = dict[int, int]
HolderSets = dict[int, frozenset[int]]


def calculate_provisional_bonus(scores: Iterable[tuple[int, int]]) -> BonusAllocation:
    """Allocate 3/2/1 bonus from ``(player_id, bps)`` pairs.

    Players are ranked by score descending.  Every player in a tie group gets
    the bonus for the group's rank, then the rank advances by the size of the
    group, so ``[A30, B30, C28, D10]`` gives ``{A: 3, B: 3, C: 1}``.  Players
    outside the top three ranks are omitted (they get 0).
    """
    tiers = scoring_cfg.bonus_tiers
    ranked = sorted(
        ((pid, bps) for pid, bps in scores if bps),
        key=lambda item: item[1],
        reverse=True,
    )

    allocation: BonusAllocation = {}
    rank = 1
    i = 0
    while i < len(ranked) and rank <= len(tiers):
        score = ranked[i][1]
        group = [pid for pid, bps in ranked[i:] if bps == score]
        for pid in group:
            allocation[pid] = tiers[rank - 1]
        rank += len(group)
        i += len(group)
    return allocation


def fixture_bps(fixture: Fixture) -> list[tuple[int, int]]:
    """Raw ``(player_id, bps)`` list for *fixture*, both sides."""
    return [(entry.element, entry.value) for entry in fixture.stat("bps")]


def fixture_bonus(fixture: Fixture) -> BonusAllocation:
    """Provisional bonus for *fixture*; empty until the match has started."""
    if fixture.status is FixtureStatus.NOT_STARTED:
        return {}
    return calculate_provisional_bonus(fixture_bps(fixture))


def bonus_holder_sets(allocation: BonusAllocation) -> HolderSets:
    """Group an allocation into ``{3: {...}, 2: {...}, 1: {...}}`` holder sets."""
    holders: HolderSets = {}
    for tier in scoring_cfg.bonus_tiers:
        holders[tier] = frozenset(pid for pid, b in allocation.items() if b == tier)
    return holders
