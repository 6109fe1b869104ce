"""Tests for formation rules, provisional bonus, auto-subs and score aggregation."""

from datetime import timedelta

import pytest

from fpl_live.schemas.fpl_rules import ChipType, Position, captain_multiplier
from fpl_live.scoring.aggregator import ScoreResult, compute_effective_score
from fpl_live.scoring.autosub import resolve_lineup
from fpl_live.scoring.bonus import (
    bonus_holder_sets,
    calculate_provisional_bonus,
    fixture_bonus,
)
from fpl_live.scoring.formation import (
    formation_counts,
    get_formation_string,
    is_valid_formation,
    simulate_substitution,
)

from conftest import KICKOFF


# ---------------------------------------------------------------------------
# Formation validator
# ---------------------------------------------------------------------------

class TestFormation:
    def test_minimum_shape_is_valid(self):
        assert is_valid_formation({"GKP": 1, "DEF": 3, "MID": 2, "FWD": 1})

    @pytest.mark.parametrize("counts", [
        {"GKP": 0, "DEF": 4, "MID": 4, "FWD": 2},
        {"GKP": 1, "DEF": 2, "MID": 5, "FWD": 3},
        {"GKP": 1, "DEF": 5, "MID": 1, "FWD": 3},
        {"GKP": 1, "DEF": 5, "MID": 5, "FWD": 0},
    ])
    def test_below_minimum_is_invalid(self, counts):
        assert not is_valid_formation(counts)

    def test_counts_from_positions(self):
        counts = formation_counts([Position.GKP, Position.DEF, Position.DEF, Position.FWD])
        assert counts == {"GKP": 1, "DEF": 2, "MID": 0, "FWD": 1}

    def test_goalkeeper_only_swaps_with_goalkeeper(self):
        counts = {"GKP": 1, "DEF": 4, "MID": 4, "FWD": 2}
        assert simulate_substitution(counts, Position.GKP, Position.DEF) is None
        assert simulate_substitution(counts, Position.MID, Position.GKP) is None

    def test_simulation_does_not_mutate(self):
        counts = {"GKP": 1, "DEF": 4, "MID": 4, "FWD": 2}
        trial = simulate_substitution(counts, Position.MID, Position.DEF)
        assert trial == {"GKP": 1, "DEF": 5, "MID": 3, "FWD": 2}
        assert counts["MID"] == 4

    def test_formation_string(self):
        assert get_formation_string({"GKP": 1, "DEF": 3, "MID": 4, "FWD": 3}) == "3-4-3"


# ---------------------------------------------------------------------------
# Provisional bonus
# ---------------------------------------------------------------------------

class TestProvisionalBonus:
    def test_simple_tie(self):
        # A=1, B=2, C=3, D=4
        result = calculate_provisional_bonus([(1, 30), (2, 30), (3, 28), (4, 10)])
        assert result == {1: 3, 2: 3, 3: 1}

    def test_no_ties(self):
        result = calculate_provisional_bonus([(1, 12), (2, 40), (3, 33), (4, 20)])
        assert result == {2: 3, 3: 2, 4: 1}

    def test_tie_for_second(self):
        result = calculate_provisional_bonus([(1, 30), (2, 28), (3, 28), (4, 20)])
        assert result == {1: 3, 2: 2, 3: 2}

    def test_three_way_tie_for_first(self):
        result = calculate_provisional_bonus([(1, 30), (2, 30), (3, 30), (4, 29)])
        assert result == {1: 3, 2: 3, 3: 3}

    def test_tie_for_third_pays_everyone_tied(self):
        result = calculate_provisional_bonus([(1, 40), (2, 35), (3, 20), (4, 20), (5, 20)])
        assert result == {1: 3, 2: 2, 3: 1, 4: 1, 5: 1}

    def test_zero_scores_ignored(self):
        assert calculate_provisional_bonus([(1, 0), (2, 0)]) == {}

    def test_empty(self):
        assert calculate_provisional_bonus([]) == {}

    def test_values_in_range_and_equal_scores_equal_bonus(self):
        scores = [(pid, (pid * 7) % 13) for pid in range(1, 30)]
        result = calculate_provisional_bonus(scores)
        assert set(result.values()) <= {1, 2, 3}
        by_score: dict[int, set[int]] = {}
        for pid, bps in scores:
            by_score.setdefault(bps, set()).add(result.get(pid, 0))
        assert all(len(values) == 1 for values in by_score.values())

    def test_not_started_fixture_has_no_bonus(self, make_fixture):
        fx = make_fixture(1, 1, 2, state="not_started", bps={1: 30, 2: 20})
        assert fixture_bonus(fx) == {}

    def test_started_fixture_uses_bps(self, make_fixture):
        fx = make_fixture(1, 1, 2, state="in_progress", bps={1: 30, 2: 20, 3: 10})
        assert fixture_bonus(fx) == {1: 3, 2: 2, 3: 1}

    def test_holder_sets(self):
        holders = bonus_holder_sets({1: 3, 2: 3, 3: 1})
        assert holders == {3: frozenset({1, 2}), 2: frozenset(), 1: frozenset({3})}


# ---------------------------------------------------------------------------
# Auto-substitution
# ---------------------------------------------------------------------------

class TestAutoSubstitution:
    def test_everyone_played_no_subs(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(), gw_fixtures)
        assert lineup.auto_subs == []
        assert lineup.unfilled == []
        assert lineup.formation_string == "4-4-2"
        assert lineup.captain_id == 8

    def test_goalkeeper_swapped_for_bench_goalkeeper(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={1: 0}), gw_fixtures)
        assert lineup.auto_subs == [(1, 12)]
        keeper = next(s for s in lineup.slots if s.player_id == 12)
        assert keeper.counted and keeper.multiplier == 1
        # Captaincy untouched
        assert lineup.captain_id == 8

    def test_goalkeeper_gap_left_when_bench_keeper_did_not_play(
        self, players, make_live, make_picks, gw_fixtures,
    ):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={1: 0, 12: 0}), gw_fixtures)
        assert lineup.auto_subs == []
        assert lineup.unfilled == [1]
        assert lineup.short_by == 1

    def test_outfield_uses_first_bench_player_in_order(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0}), gw_fixtures)
        assert lineup.auto_subs == [(6, 13)]
        assert lineup.formation_string == "5-3-2"

    def test_bench_player_skipped_when_formation_would_break(
        self, players, make_live, make_picks, gw_fixtures,
    ):
        # Three defenders out: the third cannot be covered by the bench forward
        live = make_live(minutes={2: 0, 3: 0, 4: 0})
        lineup = resolve_lineup(make_picks(), players, live, gw_fixtures)
        assert lineup.auto_subs == [(2, 13), (3, 14)]
        assert lineup.unfilled == [4]
        assert is_valid_formation(lineup.formation)

    def test_bench_player_who_did_not_play_is_skipped(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0, 13: 0}), gw_fixtures)
        assert lineup.auto_subs == [(6, 14)]

    def test_double_gameweek_starter_not_removed_until_all_fixtures_started(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        # Team 6 (player 6) has a second match that has not kicked off
        second = make_fixture(6, 6, 1, state="not_started", kickoff=KICKOFF + timedelta(days=2))
        fixtures = gw_fixtures + [second]
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0}), fixtures)
        assert lineup.auto_subs == []
        slot = next(s for s in lineup.slots if s.player_id == 6)
        assert not slot.did_not_play
        assert slot.counted

    def test_double_gameweek_substituted_once_both_started(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        second = make_fixture(6, 6, 1, state="in_progress", kickoff=KICKOFF + timedelta(days=2))
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0}), gw_fixtures + [second])
        assert lineup.auto_subs == [(6, 13)]

    def test_not_started_match_keeps_starter(self, players, make_live, make_picks, gw_fixtures, make_fixture):
        fixtures = [f for f in gw_fixtures if f.id != 3] + [make_fixture(3, 5, 6, state="not_started")]
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0}), fixtures)
        assert lineup.auto_subs == []

    def test_blank_gameweek_player_is_substituted(self, players, make_live, make_picks, gw_fixtures):
        fixtures = [f for f in gw_fixtures if f.id != 3]
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={6: 0}), fixtures)
        assert (6, 13) in lineup.auto_subs

    def test_bench_boost_makes_no_substitutions(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(chip="bboost"), players, make_live(minutes={1: 0}), gw_fixtures)
        assert lineup.auto_subs == []
        assert all(s.counted for s in lineup.slots)

    def test_unknown_player_raises(self, players, make_live, make_picks, gw_fixtures):
        del players[15]
        with pytest.raises(KeyError):
            resolve_lineup(make_picks(), players, make_live(), gw_fixtures)

    @pytest.mark.parametrize("absent", [
        {1: 0}, {6: 0}, {2: 0, 3: 0, 4: 0}, {10: 0, 11: 0}, {6: 0, 7: 0, 8: 0, 9: 0},
        {1: 0, 12: 0, 10: 0, 15: 0}, {2: 0, 3: 0, 13: 0, 14: 0, 15: 0},
    ])
    def test_formation_legal_or_gap_reported(self, players, make_live, make_picks, gw_fixtures, absent):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes=absent), gw_fixtures)
        assert lineup.is_legal or lineup.unfilled
        played = [s for s in lineup.effective_starters if s.player_id not in lineup.unfilled]
        assert len(played) + len(lineup.unfilled) == 11


# ---------------------------------------------------------------------------
# Captaincy
# ---------------------------------------------------------------------------

class TestCaptaincy:
    def test_multiplier_by_chip(self):
        assert captain_multiplier(None) == 2
        assert captain_multiplier(ChipType.TRIPLE_CAPTAIN) == 3
        assert captain_multiplier(ChipType.BENCH_BOOST) == 2

    def test_vice_inherits_when_captain_subbed_out(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={8: 0}), gw_fixtures)
        assert (8, 13) in lineup.auto_subs
        assert lineup.captain_id == 10
        vice = next(s for s in lineup.slots if s.player_id == 10)
        assert vice.multiplier == 2

    def test_vice_inherits_triple_captain(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(chip="3xc"), players, make_live(minutes={8: 0}), gw_fixtures)
        assert lineup.captain_id == 10
        assert lineup.captain_multiplier == 3

    def test_captain_without_substitute_still_loses_armband(
        self, players, make_live, make_picks, gw_fixtures,
    ):
        # Bench is empty of eligible players, captain's gap stays unfilled
        live = make_live(minutes={8: 0, 13: 0, 14: 0, 15: 0})
        lineup = resolve_lineup(make_picks(), players, live, gw_fixtures)
        assert 8 in lineup.unfilled
        assert lineup.captain_id == 10

    def test_nobody_multiplied_when_both_unavailable(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={8: 0, 10: 0}), gw_fixtures)
        assert lineup.captain_id is None
        assert all(s.multiplier <= 1 for s in lineup.slots)

    def test_substitute_never_gets_captain_multiplier(self, players, make_live, make_picks, gw_fixtures):
        lineup = resolve_lineup(make_picks(), players, make_live(minutes={8: 0, 10: 0}), gw_fixtures)
        subs_in = [s for s in lineup.slots if s.sub_in]
        assert subs_in and all(s.multiplier == 1 for s in subs_in)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

class TestComputeEffectiveScore:
    def test_baseline(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(make_picks(), players, make_live(), gw_fixtures)
        # 11 starters x 2 + captain bonus 2
        assert result.total == 24
        assert result.bench_points == 8
        assert result.net == 24
        assert len(result.breakdown) == 15

    def test_transfer_cost_reduces_net(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(make_picks(cost=4), players, make_live(), gw_fixtures)
        assert result.total == 24
        assert result.net == 20
        assert result.transfer_cost == 4

    def test_goalkeeper_sub_scores(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(make_picks(), players, make_live(minutes={1: 0}), gw_fixtures)
        assert result.total == 24
        assert result.bench_points == 6
        assert result.auto_subs == [(1, 12)]

    def test_partial_lineup(self, players, make_live, make_picks, gw_fixtures):
        live = make_live(minutes={2: 0, 3: 0, 4: 0})
        result = compute_effective_score(make_picks(), players, live, gw_fixtures)
        assert result.total == 22
        assert result.unfilled == [4]
        assert result.bench_points == 4

    def test_captain_fallback_score(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(make_picks(), players, make_live(minutes={8: 0}), gw_fixtures)
        assert result.captain_id == 10
        assert result.total == 24

    def test_triple_captain_fallback_score(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(
            make_picks(chip="3xc"), players, make_live(minutes={8: 0}), gw_fixtures,
        )
        assert result.total == 26
        assert result.active_chip == "3xc"

    def test_bench_boost_counts_all_fifteen(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(
            make_picks(chip="bboost"), players, make_live(minutes={1: 0}), gw_fixtures,
        )
        assert result.total == 30
        assert result.bench_points == 0

    def test_provisional_bonus_with_captain_multiplier(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        # Players 7 and 8 both play in fixture 4 (teams 7 v 8)
        fixtures = [f for f in gw_fixtures if f.id != 4]
        fixtures.append(make_fixture(4, 7, 8, state="in_progress", bps={8: 30, 7: 25}))
        result = compute_effective_score(make_picks(), players, make_live(), fixtures)
        rows = {r.player_id: r for r in result.breakdown}
        assert rows[8].provisional_bonus == 3
        assert rows[8].contribution == 10
        assert rows[7].provisional_bonus == 2
        assert result.total == 32

    def test_confirmed_bonus_not_double_counted(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        fixtures = [f for f in gw_fixtures if f.id != 4]
        fixtures.append(make_fixture(4, 7, 8, state="provisional", bps={8: 30, 7: 25}))
        live = make_live(points={8: 5}, bonus={8: 3})
        result = compute_effective_score(make_picks(), players, live, fixtures)
        rows = {r.player_id: r for r in result.breakdown}
        assert rows[8].provisional_bonus == 0
        assert rows[7].provisional_bonus == 2

    def test_confirmed_bonus_from_explain(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        fixtures = [f for f in gw_fixtures if f.id != 4]
        fixtures.append(make_fixture(4, 7, 8, state="provisional", bps={8: 30, 7: 25}))
        live = make_live(explain={8: [{"identifier": "bonus", "points": 3, "value": 3}]})
        result = compute_effective_score(make_picks(), players, live, fixtures)
        rows = {r.player_id: r for r in result.breakdown}
        assert rows[8].provisional_bonus == 0

    def test_officially_finished_fixture_adds_no_provisional_bonus(
        self, players, make_live, make_picks, gw_fixtures, make_fixture,
    ):
        fixtures = [f for f in gw_fixtures if f.id != 4]
        fixtures.append(make_fixture(4, 7, 8, state="finished", bps={8: 30, 7: 25}))
        result = compute_effective_score(make_picks(), players, make_live(), fixtures)
        assert result.total == 24

    def test_placeholder_is_stale_zero(self):
        placeholder = ScoreResult.placeholder()
        assert placeholder.total == 0
        assert placeholder.stale is True

    def test_result_survives_json_storage(self, players, make_live, make_picks, gw_fixtures):
        result = compute_effective_score(make_picks(), players, make_live(minutes={6: 0}), gw_fixtures)
        restored = ScoreResult.from_dict(result.to_dict())
        assert restored == result
