"""Wire shapes for the remote stats store and the HTTP API.

The store wraps battle and player records inconsistently: any record may sit
one level down under the envelope key. Inbound models unwrap before
validation; outbound bodies always use the wrapped form.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from ..errors import MalformedPayload
from ..services.stat_model import (
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    Battle,
    PlayerStat,
    ServerSnapshot,
    WinState,
    derive_points,
    now_ms,
)

WRAPPER_KEY = "_id"


def unwrap_envelope(value: Any) -> Any:
    """Return the record nested under the envelope key, if there is one."""
    if isinstance(value, dict) and value.get(WRAPPER_KEY):
        return value[WRAPPER_KEY]
    return value


def wrap_envelope(value: Any) -> dict:
    return {WRAPPER_KEY: value}


def _whole(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(value)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

class PlayerRecordIn(BaseModel):
    # Peers write plain JSON numbers; fractions are truncated, not rejected
    model_config = ConfigDict(allow_inf_nan=False)

    name: Optional[str] = None
    damage: Optional[float] = None
    kills: Optional[float] = None
    frags: Optional[float] = None  # legacy alias of kills
    points: Optional[float] = None
    vehicle: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        data = unwrap_envelope(data)
        return {} if data is None else data

    def to_player_stat(self, fallback_name: Optional[str] = None) -> PlayerStat:
        if self.kills is not None:
            kills = _whole(self.kills)
        elif self.frags is not None:
            kills = _whole(self.frags)
        else:
            kills = 0
        damage = _whole(self.damage) or 0
        # Server points are authoritative; never add a frag bonus on top
        points = _whole(self.points) if self.points is not None else derive_points(damage, kills)
        return PlayerStat(
            name=self.name or fallback_name or UNKNOWN_PLAYER,
            damage=damage,
            kills=kills,
            points=points,
            vehicle=self.vehicle or UNKNOWN_VEHICLE,
        )


class BattleRecordIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    startTime: Optional[float] = None
    duration: Optional[float] = None
    win: Any = None
    mapName: Optional[str] = None
    players: Optional[Dict[str, PlayerRecordIn]] = None

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        data = unwrap_envelope(data)
        return {} if data is None else data

    def to_battle(self, names: Dict[str, str]) -> Battle:
        return Battle(
            start_time=_whole(self.startTime) or now_ms(),
            duration=_whole(self.duration) if self.duration is not None else 0,
            win=WinState.parse(self.win),
            map_name=self.mapName or UNKNOWN_MAP,
            players={
                pid: record.to_player_stat(names.get(pid))
                for pid, record in (self.players or {}).items()
            },
        )


class StatsPayload(BaseModel):
    """Body of a getStats / getOtherPlayersStats / statsUpdated message."""
    success: bool = False
    BattleStats: Optional[Dict[str, BattleRecordIn]] = None
    PlayerInfo: Optional[Dict[str, Any]] = None

    def normalized_players_info(self) -> Optional[Dict[str, str]]:
        if self.PlayerInfo is None:
            return None
        players_info = {}
        for pid, entry in self.PlayerInfo.items():
            name = unwrap_envelope(entry)
            if isinstance(name, bool) or not isinstance(name, (str, int, float)):
                raise MalformedPayload(f"PlayerInfo entry for {pid} is not a name: {entry!r}")
            players_info[pid] = str(name)
        return players_info

    def to_snapshot(self, known_names: Optional[Dict[str, str]] = None) -> ServerSnapshot:
        players_info = self.normalized_players_info()
        names = dict(known_names or {})
        if players_info:
            names.update(players_info)

        battles = None
        if self.BattleStats is not None:
            battles = {aid: record.to_battle(names) for aid, record in self.BattleStats.items()}
        return ServerSnapshot(battles=battles, players_info=players_info)


def parse_stats_payload(data: Any) -> StatsPayload:
    if not isinstance(data, dict):
        raise MalformedPayload(f"Stats payload must be an object, got {type(data).__name__}")
    try:
        return StatsPayload.model_validate(data)
    except ValidationError as e:
        raise MalformedPayload(f"Stats payload has unexpected shape: {e}") from e


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

def player_to_wire(player: PlayerStat) -> dict:
    return wrap_envelope({
        "name": player.name or UNKNOWN_PLAYER,
        "damage": player.damage or 0,
        "kills": player.kills or 0,
        "frags": player.kills or 0,
        "points": player.points or 0,
        "vehicle": player.vehicle or UNKNOWN_VEHICLE,
    })


def battle_to_wire(battle: Battle) -> dict:
    return wrap_envelope({
        "startTime": battle.start_time or now_ms(),
        "duration": battle.duration or 0,
        "win": int(battle.win),
        "mapName": battle.map_name or UNKNOWN_MAP,
        "players": {pid: player_to_wire(p) for pid, p in battle.players.items()},
    })


def build_save_body(battles: Dict[str, Battle], players_info: Dict[str, str]) -> dict:
    """Full snapshot in the store's save format."""
    return {
        "BattleStats": {aid: battle_to_wire(b) for aid, b in battles.items()},
        "PlayerInfo": dict(players_info),
    }


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

class BattleTotalsResponse(BaseModel):
    arena_id: str
    points: int
    damage: int
    kills: int


class PlayerTotalsResponse(BaseModel):
    player_id: str
    points: int
    damage: int
    kills: int


class TeamTotalsResponse(BaseModel):
    points: int
    damage: int
    kills: int
    wins: int
    battles: int


class BattleScoreResponse(BaseModel):
    arena_id: str
    points: int
    win: int
    map_name: str
    duration: int


class BestWorstResponse(BaseModel):
    best: Optional[BattleScoreResponse] = None
    worst: Optional[BattleScoreResponse] = None


class SnapshotResponse(BaseModel):
    BattleStats: Dict[str, Any]
    PlayersInfo: Dict[str, str]
    currentPlayerId: Optional[str] = None
    currentArenaId: Optional[str] = None


class CommandResponse(BaseModel):
    status: str
