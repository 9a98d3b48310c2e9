"""Authoritative in-memory battle statistics.

Holds the per-arena battle records, the player identity directory and the
session cursor. Every operation here is synchronous and performs no I/O; the
reconciliation engine owns the only instance and serializes access to it on
the event loop.
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional

from ..errors import PrecursorMissing


# Scoring constants
POINTS_PER_DAMAGE = 1
POINTS_PER_FRAG = 400
POINTS_PER_TEAM_WIN = 2000

UNKNOWN_MAP = "Unknown Map"
UNKNOWN_PLAYER = "Unknown Player"
UNKNOWN_VEHICLE = "Unknown Vehicle"


class WinState(IntEnum):
    """Battle outcome as stored on the wire."""
    UNKNOWN = -1
    LOSS = 0
    WIN = 1
    DRAW = 2

    @classmethod
    def parse(cls, value) -> "WinState":
        """Lenient conversion; anything unrecognised is UNKNOWN."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return cls.UNKNOWN
        try:
            return cls(int(value))
        except ValueError:
            return cls.UNKNOWN


def now_ms() -> int:
    return int(time.time() * 1000)


def derive_points(damage: int, kills: int) -> int:
    return damage * POINTS_PER_DAMAGE + kills * POINTS_PER_FRAG


@dataclass
class PlayerStat:
    """One player's contribution to one battle."""
    name: str = UNKNOWN_PLAYER
    damage: int = 0
    kills: int = 0
    points: int = 0
    vehicle: str = UNKNOWN_VEHICLE

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "damage": self.damage,
            "kills": self.kills,
            "points": self.points,
            "vehicle": self.vehicle,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerStat":
        damage = data.get("damage", 0) or 0
        kills = data.get("kills", 0) or 0
        points = data.get("points")
        return cls(
            name=data.get("name") or UNKNOWN_PLAYER,
            damage=damage,
            kills=kills,
            points=points if points is not None else derive_points(damage, kills),
            vehicle=data.get("vehicle") or UNKNOWN_VEHICLE,
        )


@dataclass
class Battle:
    """One arena session, keyed by arena id in StatModel.battles."""
    start_time: int = field(default_factory=now_ms)  # ms since epoch, never updated
    duration: int = 0  # seconds
    win: WinState = WinState.UNKNOWN
    map_name: str = UNKNOWN_MAP
    players: Dict[str, PlayerStat] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "duration": self.duration,
            "win": int(self.win),
            "mapName": self.map_name,
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Battle":
        return cls(
            start_time=data.get("startTime") or now_ms(),
            duration=data.get("duration") or 0,
            win=WinState.parse(data.get("win")),
            map_name=data.get("mapName") or UNKNOWN_MAP,
            players={
                str(pid): PlayerStat.from_dict(p)
                for pid, p in (data.get("players") or {}).items()
            },
        )


@dataclass
class SessionCursor:
    """Where the participant is right now."""
    current_player_id: Optional[str] = None
    current_arena_id: Optional[str] = None
    current_vehicle: Optional[str] = None
    is_in_platoon: bool = False
    is_in_battle: bool = False
    last_update_time: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "currentPlayerId": self.current_player_id,
            "currentArenaId": self.current_arena_id,
            "currentVehicle": self.current_vehicle,
            "isInPlatoon": self.is_in_platoon,
            "isInBattle": self.is_in_battle,
            "lastUpdateTime": self.last_update_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionCursor":
        player_id = data.get("currentPlayerId")
        arena_id = data.get("currentArenaId")
        return cls(
            current_player_id=str(player_id) if player_id is not None else None,
            current_arena_id=str(arena_id) if arena_id is not None else None,
            current_vehicle=data.get("currentVehicle"),
            is_in_platoon=bool(data.get("isInPlatoon", False)),
            is_in_battle=bool(data.get("isInBattle", False)),
            last_update_time=data.get("lastUpdateTime"),
        )


@dataclass
class ServerSnapshot:
    """Normalized remote payload. A None map means the payload did not carry it."""
    battles: Optional[Dict[str, Battle]] = None
    players_info: Optional[Dict[str, str]] = None


class StatModel:
    """Battle statistics plus the session cursor.

    ``revision`` increases on every change to battles or players_info so that
    derived-metric caches can detect mutations they were not told about.
    """

    def __init__(self, current_player_id: Optional[str] = None):
        self.battles: Dict[str, Battle] = {}
        self.players_info: Dict[str, str] = {}
        self.cursor = SessionCursor(current_player_id=current_player_id)
        self.revision = 0

    def _touch(self):
        self.revision += 1

    # ------------------------------------------------------------------
    # Record creation
    # ------------------------------------------------------------------

    def ensure_battle(self, arena_id: str) -> Battle:
        battle = self.battles.get(arena_id)
        if battle is None:
            battle = Battle()
            self.battles[arena_id] = battle
            self._touch()
        return battle

    def ensure_player(self, arena_id: str, player_id: str) -> PlayerStat:
        battle = self.battles.get(arena_id)
        if battle is None:
            raise PrecursorMissing(f"Battle {arena_id} must exist before player {player_id}")
        player = battle.players.get(player_id)
        if player is None:
            player = PlayerStat(
                name=self.players_info.get(player_id) or UNKNOWN_PLAYER,
                vehicle=self.cursor.current_vehicle or UNKNOWN_VEHICLE,
            )
            battle.players[player_id] = player
            self._touch()
        return player

    def get_player(self, arena_id: str, player_id: str) -> PlayerStat:
        battle = self.battles.get(arena_id)
        if battle is None:
            raise PrecursorMissing(f"No battle {arena_id}")
        player = battle.players.get(player_id)
        if player is None:
            raise PrecursorMissing(f"No player {player_id} in battle {arena_id}")
        return player

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def stamp_battle(
        self,
        arena_id: str,
        player_id: str,
        map_name: Optional[str] = None,
        vehicle: Optional[str] = None,
        name: Optional[str] = None,
    ):
        """Record arena metadata and the player's display fields."""
        battle = self.battles.get(arena_id)
        if battle is None:
            raise PrecursorMissing(f"No battle {arena_id}")
        player = self.get_player(arena_id, player_id)
        battle.map_name = map_name or UNKNOWN_MAP
        player.vehicle = vehicle or UNKNOWN_VEHICLE
        if name:
            player.name = name
        self._touch()

    def register_player(self, player_id: str, name: Optional[str], overwrite: bool = True) -> bool:
        """Add a name to the identity directory. Returns True if it changed."""
        if not name:
            return False
        if not overwrite and player_id in self.players_info:
            return False
        if self.players_info.get(player_id) == name:
            return False
        self.players_info[player_id] = name
        self._touch()
        return True

    def apply_damage(self, arena_id: str, player_id: str, amount: int):
        if amount < 0:
            raise ValueError(f"Damage must be non-negative, got {amount}")
        player = self.get_player(arena_id, player_id)
        player.damage += amount
        player.points += amount * POINTS_PER_DAMAGE
        self._touch()

    def apply_kill(self, arena_id: str, player_id: str):
        player = self.get_player(arena_id, player_id)
        player.kills += 1
        player.points += POINTS_PER_FRAG
        self._touch()

    def replace_battle_result(
        self,
        arena_id: str,
        player_id: str,
        damage: Optional[int],
        kills: Optional[int],
        win: Optional[WinState],
        duration: Optional[int],
    ):
        """Overwrite the player's totals with a definitive result.

        ``damage``/``kills`` of None leave the counters alone. ``win`` never
        moves back to UNKNOWN.
        """
        battle = self.battles.get(arena_id)
        if battle is None:
            raise PrecursorMissing(f"No battle {arena_id}")
        player = self.get_player(arena_id, player_id)

        if duration is not None:
            battle.duration = max(0, int(duration))
        if win is not None and win != WinState.UNKNOWN:
            battle.win = win
        if damage is not None and kills is not None:
            player.damage = damage
            player.kills = kills
            player.points = derive_points(damage, kills)
        self._touch()

    def merge_server_snapshot(self, snapshot: ServerSnapshot):
        """Last-writer-wins replacement of whichever maps the snapshot carries."""
        if snapshot.battles is not None:
            self.battles = dict(snapshot.battles)
        if snapshot.players_info is not None:
            self.players_info = dict(snapshot.players_info)
        self._touch()

    def reset(self, current_player_id: Optional[str] = None):
        self.battles = {}
        self.players_info = {}
        self.cursor = SessionCursor(current_player_id=current_player_id)
        self._touch()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def known_player_ids(self) -> List[str]:
        """Numeric ids present in the identity directory."""
        return [pid for pid in self.players_info if str(pid).isdigit()]

    def has_player_record(self, player_id: Optional[str]) -> bool:
        return player_id is not None and player_id in self.known_player_ids()

    # ------------------------------------------------------------------
    # Local persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        state = {
            "BattleStats": {aid: b.to_dict() for aid, b in self.battles.items()},
            "PlayersInfo": dict(self.players_info),
        }
        state.update(self.cursor.to_dict())
        return state

    @classmethod
    def from_state(cls, state: dict) -> "StatModel":
        model = cls()
        model.battles = {
            str(aid): Battle.from_dict(b)
            for aid, b in (state.get("BattleStats") or {}).items()
        }
        model.players_info = {
            str(pid): name for pid, name in (state.get("PlayersInfo") or {}).items()
        }
        model.cursor = SessionCursor.from_dict(state)
        return model
