"""Tests for metrics_cache.py"""

from battle_stats.services.metrics_cache import MetricsCache, StatsAggregator, battle_points
from battle_stats.services.stat_model import (
    POINTS_PER_FRAG,
    POINTS_PER_TEAM_WIN,
    Battle,
    PlayerStat,
    ServerSnapshot,
    StatModel,
    WinState,
)


def _battle(win, *points):
    players = {f"p{i}": PlayerStat(points=p) for i, p in enumerate(points, start=1)}
    return Battle(win=win, players=players)


class TestMetricsCache:
    """Tests for the memo table itself."""

    def test_get_or_compute_memoizes(self):
        cache = MetricsCache()
        calls = []

        def compute():
            calls.append(1)
            return 42

        assert cache.get_or_compute("k", compute) == 42
        assert cache.get_or_compute("k", compute) == 42
        assert len(calls) == 1
        assert cache.hits == 1 and cache.misses == 1

    def test_invalidate_all(self):
        cache = MetricsCache()
        cache.get_or_compute("a", lambda: 1)
        cache.get_or_compute("b", lambda: 2)
        cache.invalidate_all()
        assert len(cache) == 0
        assert cache.get_or_compute("a", lambda: 3) == 3


class TestAggregates:
    """Tests for the four derived computations."""

    def _model(self):
        model = StatModel()
        model.ensure_battle("a1")
        model.ensure_player("a1", "p1")
        model.ensure_player("a1", "p2")
        model.apply_damage("a1", "p1", 300)
        model.apply_kill("a1", "p2")
        model.ensure_battle("a2")
        model.ensure_player("a2", "p1")
        model.apply_damage("a2", "p1", 100)
        model.replace_battle_result("a2", "p1", damage=100, kills=1, win=WinState.WIN, duration=60)
        return model

    def test_battle_totals(self):
        totals = StatsAggregator(self._model()).battle_totals("a1")
        assert totals.damage == 300
        assert totals.kills == 1
        assert totals.points == 300 + POINTS_PER_FRAG

    def test_battle_totals_for_unknown_arena(self):
        totals = StatsAggregator(StatModel()).battle_totals("missing")
        assert (totals.points, totals.damage, totals.kills) == (0, 0, 0)

    def test_player_totals_across_arenas(self):
        totals = StatsAggregator(self._model()).player_totals("p1")
        assert totals.damage == 400
        assert totals.kills == 1
        assert totals.points == 300 + 100 + POINTS_PER_FRAG

    def test_team_totals(self):
        totals = StatsAggregator(self._model()).team_totals()
        assert totals.battles == 2
        assert totals.wins == 1
        assert totals.damage == 400
        assert totals.kills == 2
        assert totals.points == 400 + 2 * POINTS_PER_FRAG + POINTS_PER_TEAM_WIN

    def test_best_and_worst(self):
        model = StatModel()
        model.battles = {
            "A": _battle(WinState.WIN, 6, 4),
            "B": _battle(WinState.LOSS, 5),
            "C": _battle(WinState.UNKNOWN, -3),
        }
        result = StatsAggregator(model).best_and_worst_battle()
        assert result.best.arena_id == "A"
        assert result.worst.arena_id == "B"
        # Win bonus is added once for the battle, not per player
        assert result.best.points == 10 + POINTS_PER_TEAM_WIN
        assert result.worst.points == 5

    def test_best_and_worst_ties_keep_first(self):
        model = StatModel()
        model.battles = {
            "first": _battle(WinState.LOSS, 7),
            "second": _battle(WinState.DRAW, 7),
        }
        result = StatsAggregator(model).best_and_worst_battle()
        assert result.best.arena_id == "first"
        assert result.worst.arena_id == "first"

    def test_best_and_worst_without_completed_battles(self):
        model = StatModel()
        model.battles = {"C": _battle(WinState.UNKNOWN, 100)}
        result = StatsAggregator(model).best_and_worst_battle()
        assert result.best is None and result.worst is None

    def test_battle_points_bonus(self):
        assert battle_points(_battle(WinState.WIN, 1, 2)) == 3 + POINTS_PER_TEAM_WIN
        assert battle_points(_battle(WinState.DRAW, 1, 2)) == 3


class TestInvalidation:
    """Cached aggregates never outlive a mutation."""

    def test_mutation_forces_recompute(self):
        model = StatModel()
        model.ensure_battle("a1")
        model.ensure_player("a1", "p1")
        aggregator = StatsAggregator(model)
        assert aggregator.battle_totals("a1").damage == 0

        model.apply_damage("a1", "p1", 25)

        assert aggregator.battle_totals("a1").damage == 25

    def test_snapshot_merge_is_reflected_immediately(self):
        model = StatModel()
        model.ensure_battle("old")
        model.ensure_player("old", "p1")
        model.apply_damage("old", "p1", 999)
        aggregator = StatsAggregator(model)
        assert aggregator.team_totals().damage == 999

        model.merge_server_snapshot(ServerSnapshot(
            battles={"new": Battle(players={"p2": PlayerStat(damage=5, points=5)})},
            players_info={},
        ))

        team = aggregator.team_totals()
        assert team.damage == 5
        assert team.battles == 1
        assert aggregator.player_totals("p1").damage == 0

    def test_reset_yields_zero_aggregates(self):
        model = StatModel()
        model.ensure_battle("a1")
        model.ensure_player("a1", "p1")
        model.apply_kill("a1", "p1")
        aggregator = StatsAggregator(model)
        assert aggregator.team_totals().kills == 1

        model.reset()

        team = aggregator.team_totals()
        assert (team.points, team.kills, team.battles) == (0, 0, 0)
        assert aggregator.best_and_worst_battle().best is None

    def test_arena_count_fingerprint_without_revision(self):
        model = StatModel()
        cache = MetricsCache()
        aggregator = StatsAggregator(model, cache)
        assert aggregator.team_totals().battles == 0

        # Bulk replacement that bypasses the model's mutation methods
        model.battles = {"x": Battle()}

        assert aggregator.team_totals().battles == 1
