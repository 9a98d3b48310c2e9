"""Memoized aggregate metrics over the stat model.

Aggregates scan every battle and player and are requested repeatedly by
display code, so results are cached and the whole cache is dropped on any
mutation. Keys that span all arenas also carry the arena count, which turns a
bulk snapshot replacement into a cache miss even without an explicit
invalidation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from .stat_model import POINTS_PER_TEAM_WIN, Battle, StatModel, WinState

logger = logging.getLogger(__name__)


class MetricsCache:
    """Key -> value memo table."""

    def __init__(self):
        self._entries: Dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], Any]) -> Any:
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        value = compute_fn()
        self._entries[key] = value
        return value

    def invalidate_all(self):
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class BattleTotals:
    points: int = 0
    damage: int = 0
    kills: int = 0


@dataclass(frozen=True)
class PlayerTotals:
    points: int = 0
    damage: int = 0
    kills: int = 0


@dataclass(frozen=True)
class TeamTotals:
    points: int = 0
    damage: int = 0
    kills: int = 0
    wins: int = 0
    battles: int = 0


@dataclass(frozen=True)
class BattleScore:
    arena_id: str
    battle: Battle
    points: int


@dataclass(frozen=True)
class BestWorst:
    best: Optional[BattleScore] = None
    worst: Optional[BattleScore] = None


def battle_points(battle: Battle) -> int:
    """Team points for one battle; the win bonus counts once per battle."""
    points = POINTS_PER_TEAM_WIN if battle.win == WinState.WIN else 0
    for player in battle.players.values():
        points += player.points or 0
    return points


class StatsAggregator:
    """Derived metrics for a StatModel, served through a MetricsCache."""

    def __init__(self, model: StatModel, cache: Optional[MetricsCache] = None):
        self.model = model
        self.cache = cache if cache is not None else MetricsCache()
        self._revision = model.revision

    def _fresh_cache(self) -> MetricsCache:
        if self.model.revision != self._revision:
            self.cache.invalidate_all()
            self._revision = self.model.revision
        return self.cache

    def battle_totals(self, arena_id: Optional[str]) -> BattleTotals:
        return self._fresh_cache().get_or_compute(
            ("battle", arena_id), lambda: self._compute_battle_totals(arena_id)
        )

    def player_totals(self, player_id: str) -> PlayerTotals:
        key = ("player", player_id, len(self.model.battles))
        return self._fresh_cache().get_or_compute(key, lambda: self._compute_player_totals(player_id))

    def team_totals(self) -> TeamTotals:
        key = ("team", len(self.model.battles))
        return self._fresh_cache().get_or_compute(key, self._compute_team_totals)

    def best_and_worst_battle(self) -> BestWorst:
        key = ("best_worst", len(self.model.battles))
        return self._fresh_cache().get_or_compute(key, self._compute_best_and_worst)

    def _compute_battle_totals(self, arena_id: Optional[str]) -> BattleTotals:
        points = damage = kills = 0
        battle = self.model.battles.get(arena_id) if arena_id is not None else None
        if battle is not None:
            try:
                for player in battle.players.values():
                    points += player.points or 0
                    damage += player.damage or 0
                    kills += player.kills or 0
            except (TypeError, AttributeError) as e:
                logger.error(f"Error calculating battle totals for {arena_id}: {e}")
        return BattleTotals(points=points, damage=damage, kills=kills)

    def _compute_player_totals(self, player_id: str) -> PlayerTotals:
        points = damage = kills = 0
        try:
            for battle in self.model.battles.values():
                player = battle.players.get(player_id)
                if player:
                    points += player.points or 0
                    damage += player.damage or 0
                    kills += player.kills or 0
        except (TypeError, AttributeError) as e:
            logger.error(f"Error calculating player totals for {player_id}: {e}")
        return PlayerTotals(points=points, damage=damage, kills=kills)

    def _compute_team_totals(self) -> TeamTotals:
        points = damage = kills = wins = battles = 0
        try:
            for battle in self.model.battles.values():
                battles += 1
                if battle.win == WinState.WIN:
                    points += POINTS_PER_TEAM_WIN
                    wins += 1
                for player in battle.players.values():
                    points += player.points or 0
                    damage += player.damage or 0
                    kills += player.kills or 0
        except (TypeError, AttributeError) as e:
            logger.error(f"Error calculating team totals: {e}")
        return TeamTotals(points=points, damage=damage, kills=kills, wins=wins, battles=battles)

    def _compute_best_and_worst(self) -> BestWorst:
        best: Optional[BattleScore] = None
        worst: Optional[BattleScore] = None
        for arena_id, battle in self.model.battles.items():
            if battle.win == WinState.UNKNOWN:
                continue
            try:
                score = BattleScore(arena_id=arena_id, battle=battle, points=battle_points(battle))
            except (TypeError, AttributeError) as e:
                logger.error(f"Error calculating points for battle {arena_id}: {e}")
                continue
            # Strict comparisons keep the first battle on ties
            if best is None or score.points > best.points:
                best = score
            if worst is None or score.points < worst.points:
                worst = score
        return BestWorst(best=best, worst=worst)
