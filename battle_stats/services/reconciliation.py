"""Reconciliation engine: game events and server data in, model and syncs out.

All handlers run on one asyncio event loop. Mutations never await between
reading and writing the model, so each handler's changes are applied as a
unit and in the order the events arrive.
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..config import Settings, get_settings
from ..errors import ConnectivityUnavailable, MalformedPayload, RemoteRejected, StatsSyncError
from ..schemas.stats import build_save_body, parse_stats_payload
from .debounce import DebounceScheduler
from .feedback import (
    DamageFeedback,
    KillFeedback,
    ParticipationFeedback,
    PlayerFeedback,
    parse_feedback,
)
from .metrics_cache import BattleTotals, BestWorst, MetricsCache, PlayerTotals, StatsAggregator, TeamTotals
from .notifier import STATS_UPDATED, Notifier
from .stat_model import UNKNOWN_VEHICLE, StatModel, WinState, now_ms
from .sync_channel import SyncChannel

logger = logging.getLogger(__name__)

SYNC_SELF = "sync-self"
SYNC_PEERS = "sync-peers"

PREBATTLE_PERIOD = "PREBATTLE"
NO_TEAM = 0
DRAW_TEAM = 0


class GameEventKind(str, Enum):
    """Notifications the game client sends to the engine."""
    IDENTITY = "identity"
    PLATOON_STATUS = "platoonStatus"
    HANGAR_VEHICLE = "hangarVehicle"
    HANGAR_STATUS = "hangarStatus"
    IS_IN_BATTLE = "isInBattle"
    PERIOD = "period"
    ARENA = "arena"
    PLAYER_FEEDBACK = "playerFeedback"
    BATTLE_RESULT = "battleResult"


# Kinds whose payload must be an object when present
_OBJECT_EVENTS = {
    GameEventKind.IDENTITY,
    GameEventKind.HANGAR_VEHICLE,
    GameEventKind.PERIOD,
    GameEventKind.ARENA,
    GameEventKind.PLAYER_FEEDBACK,
    GameEventKind.BATTLE_RESULT,
}


@dataclass
class ObservedIdentity:
    """What the game client currently reports about the participant."""
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    arena_id: Optional[str] = None


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _lookup(mapping: dict, key: str) -> Any:
    """Fetch by string id, tolerating integer keys from a Python caller."""
    if key in mapping:
        return mapping[key]
    if key.isdigit() and int(key) in mapping:
        return mapping[int(key)]
    return None


def _as_count(value: Any, field: str) -> Optional[int]:
    """Whole number from a game payload field. None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedPayload(f"{field} is not a number: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise MalformedPayload(f"{field} is not a number: {value!r}")


def resolve_win(player_team: Any, winner_team: Any) -> Optional[WinState]:
    """Outcome for a player's team. None when the team is unknown."""
    try:
        player_team = int(player_team)
        winner_team = int(winner_team)
    except (TypeError, ValueError):
        return None
    if player_team == NO_TEAM:
        return None
    if player_team == winner_team:
        return WinState.WIN
    if winner_team == DRAW_TEAM:
        return WinState.DRAW
    return WinState.LOSS


class ReconciliationEngine:
    """Owns the stat model, its metric cache and the sync scheduler.

    Construct one per participant and hand it to whatever binds the game
    event source and the real-time channel.
    """

    def __init__(
        self,
        channel: SyncChannel,
        state_store,
        identity: Optional[ObservedIdentity] = None,
        settings: Optional[Settings] = None,
        scheduler: Optional[DebounceScheduler] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.channel = channel
        self.state_store = state_store
        self.identity = identity or ObservedIdentity()
        self.settings = settings or get_settings()
        self.scheduler = scheduler or DebounceScheduler()
        self.notifier = notifier or Notifier()

        saved = state_store.load_state()
        if saved:
            self.model = StatModel.from_state(saved)
            logger.info(f"Restored {len(self.model.battles)} battles from local state")
        else:
            self.model = StatModel(current_player_id=self.identity.player_id)
        self.cache = MetricsCache()
        self.metrics = StatsAggregator(self.model, self.cache)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def is_valid_battle_state(self) -> bool:
        cursor = self.model.cursor
        return bool(cursor.current_arena_id) and bool(cursor.current_player_id)

    def save_state(self):
        self.state_store.save_state(self.model.to_state())

    def publish(self):
        self.notifier.publish(STATS_UPDATED)

    def schedule_sync_self(self):
        self.scheduler.schedule(SYNC_SELF, self.settings.debounce_delay, self.sync_self)

    def schedule_sync_peers(self):
        self.scheduler.schedule(SYNC_PEERS, self.settings.debounce_delay, self.sync_peers)

    async def _random_delay(self):
        await asyncio.sleep(random.uniform(self.settings.random_delay_min, self.settings.random_delay_max))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def battle_totals(self, arena_id: Optional[str] = None) -> BattleTotals:
        return self.metrics.battle_totals(arena_id if arena_id is not None else self.model.cursor.current_arena_id)

    def player_totals(self, player_id: str) -> PlayerTotals:
        return self.metrics.player_totals(player_id)

    def team_totals(self) -> TeamTotals:
        return self.metrics.team_totals()

    def best_and_worst_battle(self) -> BestWorst:
        return self.metrics.best_and_worst_battle()

    def snapshot(self) -> dict:
        return self.model.to_state()

    # ------------------------------------------------------------------
    # Game event ingress
    # ------------------------------------------------------------------

    async def handle_game_event(self, kind: GameEventKind, data: Any = None):
        """Route one game client notification to its handler.

        Raises ValueError for an unknown kind and MalformedPayload when an
        object payload is something else.
        """
        kind = GameEventKind(kind)
        if kind in _OBJECT_EVENTS and data is not None and not isinstance(data, dict):
            raise MalformedPayload(f"{kind.value} payload must be an object, got {type(data).__name__}")

        if kind is GameEventKind.IDENTITY:
            self.update_identity(data)
        elif kind is GameEventKind.PLATOON_STATUS:
            self.handle_platoon_status(bool(data))
        elif kind is GameEventKind.HANGAR_VEHICLE:
            self.handle_hangar_vehicle(data)
        elif kind is GameEventKind.HANGAR_STATUS:
            await self.handle_hangar_status(bool(data))
        elif kind is GameEventKind.IS_IN_BATTLE:
            self.handle_is_in_battle(bool(data))
        elif kind is GameEventKind.PERIOD:
            self.handle_period(data)
        elif kind is GameEventKind.ARENA:
            self.handle_arena(data)
        elif kind is GameEventKind.PLAYER_FEEDBACK:
            self.handle_player_feedback(data)
        elif kind is GameEventKind.BATTLE_RESULT:
            self.handle_battle_result(data)

    def update_identity(self, data: Optional[dict]):
        """Take the participant id, name and arena the game reports. Absent keys are kept."""
        if not data:
            return
        if "playerId" in data:
            self.identity.player_id = _as_id(data["playerId"])
        if "playerName" in data:
            name = data["playerName"]
            self.identity.player_name = str(name) if name else None
        if "arenaId" in data:
            self.identity.arena_id = _as_id(data["arenaId"])

    # ------------------------------------------------------------------
    # Identity and location events
    # ------------------------------------------------------------------

    def handle_platoon_status(self, is_in_platoon: bool):
        self.model.cursor.is_in_platoon = bool(is_in_platoon)
        self.save_state()

    def handle_hangar_vehicle(self, vehicle_info: Optional[dict]):
        if not vehicle_info:
            return
        self.model.cursor.current_vehicle = vehicle_info.get("localizedShortName") or UNKNOWN_VEHICLE

    async def handle_hangar_status(self, is_in_hangar: bool):
        """Back in the hangar: re-seed identity and register a first-time participant."""
        if not is_in_hangar:
            return

        await asyncio.sleep(self.settings.hangar_delay)
        known_ids = self.model.known_player_ids()
        cursor = self.model.cursor
        cursor.current_player_id = _as_id(self.identity.player_id)
        cursor.current_arena_id = None

        if cursor.current_player_id is None:
            return
        if (cursor.is_in_platoon and len(known_ids) > 3) or (not cursor.is_in_platoon and len(known_ids) >= 1):
            return

        if self.model.register_player(cursor.current_player_id, self.identity.player_name):
            self.cache.invalidate_all()

        await self._random_delay()
        self.schedule_sync_self()

    def handle_is_in_battle(self, is_in_battle: bool):
        self.model.cursor.is_in_battle = bool(is_in_battle)

    def handle_period(self, period: Optional[dict]):
        if not period or not self.is_valid_battle_state():
            return
        if period.get("tag") == PREBATTLE_PERIOD:
            self.model.cursor.last_update_time = now_ms()
            self.publish()

    def handle_arena(self, arena_data: Optional[dict]):
        """A battle is loading: create its records and start syncing."""
        if not arena_data:
            return

        cursor = self.model.cursor
        cursor.current_arena_id = _as_id(self.identity.arena_id)
        arena_id = cursor.current_arena_id
        player_id = cursor.current_player_id
        if arena_id is None or player_id is None:
            return

        self.model.ensure_battle(arena_id)
        self.model.ensure_player(arena_id, player_id)
        self.model.stamp_battle(
            arena_id,
            player_id,
            map_name=arena_data.get("localizedName"),
            vehicle=cursor.current_vehicle,
            name=self.identity.player_name,
        )
        self.model.register_player(player_id, self.identity.player_name, overwrite=False)
        self.cache.invalidate_all()

        if self.model.has_player_record(player_id):
            self.schedule_sync_peers()
        self.schedule_sync_self()

    # ------------------------------------------------------------------
    # In-battle feedback
    # ------------------------------------------------------------------

    def handle_player_feedback(self, raw: Optional[dict]):
        feedback = parse_feedback(raw)
        if feedback is None or not self.is_valid_battle_state():
            return
        try:
            self.apply_feedback(feedback)
        except (StatsSyncError, ValueError) as e:
            logger.error(f"Dropping {feedback.kind.value} feedback: {e}")

    def apply_feedback(self, feedback: PlayerFeedback):
        arena_id = self.model.cursor.current_arena_id
        player_id = self.model.cursor.current_player_id

        if isinstance(feedback, DamageFeedback):
            self.model.ensure_battle(arena_id)
            self.model.ensure_player(arena_id, player_id)
            self.model.apply_damage(arena_id, player_id, feedback.damage)
            self.cache.invalidate_all()
            self.schedule_sync_self()
        elif isinstance(feedback, KillFeedback):
            self.model.ensure_battle(arena_id)
            self.model.ensure_player(arena_id, player_id)
            self.model.apply_kill(arena_id, player_id)
            self.cache.invalidate_all()
            self.schedule_sync_self()
        elif isinstance(feedback, ParticipationFeedback):
            # Scored server-side; fetch the peers' updated contributions
            self.schedule_sync_peers()
        else:
            raise TypeError(f"Unhandled feedback variant: {feedback!r}")

    # ------------------------------------------------------------------
    # Battle results
    # ------------------------------------------------------------------

    def handle_battle_result(self, result: Optional[dict]):
        try:
            self.apply_battle_result(result)
        except (StatsSyncError, ValueError) as e:
            logger.error(f"Invalid battle result data: {e}")

    def apply_battle_result(self, result: Optional[dict]):
        """Overwrite the participant's record with the end-of-battle numbers."""
        if not result or not result.get("vehicles") or not result.get("players"):
            raise MalformedPayload("battle result is missing vehicles or players")
        if not isinstance(result["vehicles"], dict) or not isinstance(result["players"], dict):
            raise MalformedPayload("battle result vehicles and players must be objects")

        arena_id = _as_id(result.get("arenaUniqueID"))
        if arena_id is None:
            return
        try:
            player_id = _as_id(result["personal"]["avatar"]["accountDBID"])
        except (KeyError, TypeError):
            raise MalformedPayload("battle result has no personal.avatar.accountDBID")
        if player_id is None:
            raise MalformedPayload("battle result has an empty accountDBID")

        common = result.get("common") or {}
        if not isinstance(common, dict):
            raise MalformedPayload("battle result common section must be an object")
        player_entry = _lookup(result["players"], player_id)
        if not isinstance(player_entry, dict):
            raise MalformedPayload(f"battle result has no player entry for {player_id}")

        damage = kills = None
        for vehicle_records in result["vehicles"].values():
            match = next(
                (
                    v for v in (vehicle_records if isinstance(vehicle_records, list) else [])
                    if isinstance(v, dict) and _as_id(v.get("accountDBID")) == player_id
                ),
                None,
            )
            if match is not None:
                damage = _as_count(match.get("damageDealt"), "damageDealt") or 0
                kills = _as_count(match.get("kills"), "kills") or 0
                break
        duration = _as_count(common.get("duration"), "duration")
        win = resolve_win(player_entry.get("team"), common.get("winnerTeam"))

        # Inputs are validated; only model changes below
        self.model.cursor.current_player_id = player_id
        self.model.ensure_battle(arena_id)
        self.model.ensure_player(arena_id, player_id)
        self.model.replace_battle_result(
            arena_id,
            player_id,
            damage=damage,
            kills=kills,
            win=win,
            duration=duration,
        )
        self.cache.invalidate_all()
        self.schedule_sync_self()

    # ------------------------------------------------------------------
    # Server data
    # ------------------------------------------------------------------

    def handle_server_data(self, data: Any) -> bool:
        """Replace local maps with a server snapshot. Returns True if applied."""
        try:
            payload = parse_stats_payload(data)
            if not payload.success:
                logger.debug("Ignoring unsuccessful server payload")
                return False
            snapshot = payload.to_snapshot(self.model.players_info)
        except MalformedPayload as e:
            logger.warning(f"Discarding server payload: {e}")
            return False

        self.model.merge_server_snapshot(snapshot)
        self.cache.invalidate_all()
        self.publish()
        self.save_state()
        return True

    def _key(self) -> Optional[str]:
        return self.state_store.get_access_key()

    async def _pull_and_apply(self, peers: bool = False) -> bool:
        revision = self.model.revision
        body = await self.channel.pull(self._key(), self.model.cursor.current_player_id, peers=peers)
        if body is None:
            return False
        if self.model.revision != revision:
            # Model was reset or changed while the request was in flight
            logger.info("Discarding server data that predates local changes")
            return False
        return self.handle_server_data(body)

    async def load_from_server(self) -> bool:
        return await self._pull_and_apply()

    async def load_peers_from_server(self) -> bool:
        return await self._pull_and_apply(peers=True)

    def _battles_fingerprint(self) -> str:
        return json.dumps({aid: b.to_dict() for aid, b in self.model.battles.items()}, sort_keys=True)

    async def sync_self(self):
        """Debounced save of this participant's data."""
        before = self._battles_fingerprint()
        body = build_save_body(self.model.battles, self.model.players_info)
        await self.channel.push(self._key(), self.model.cursor.current_player_id, body)
        if self._battles_fingerprint() != before:
            self.publish()
        self.save_state()

    async def sync_peers(self):
        """Debounced fetch of peer data."""
        await self.load_peers_from_server()
        await asyncio.sleep(self.settings.ui_update_delay)
        self.publish()
        self.save_state()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _discard_local(self):
        self.model.reset(current_player_id=_as_id(self.identity.player_id))
        self.cache.invalidate_all()

    async def clear_server_data(self):
        """Wipe remote and local stats. Raises ConnectivityUnavailable when offline."""
        if not self._key() or not self.channel.realtime_connected:
            raise ConnectivityUnavailable("Socket not connected or access key not found for clearing data")

        # Pending syncs would re-upload the data being cleared
        self.scheduler.reset()
        try:
            await self.channel.clear(self._key())
        except RemoteRejected as e:
            logger.error(f"Error clearing data via socket: {e}")
            self.schedule_sync_self()
            return
        except ConnectivityUnavailable as e:
            logger.error(f"Clearing data via socket failed: {e}")
            self.schedule_sync_self()
            raise
        self._discard_local()
        self.publish()
        self.save_state()

    async def refresh_local_data(self):
        """Drop local state and reload it from the remote store."""
        self.scheduler.reset()
        self._discard_local()
        self.state_store.clear_state()
        await asyncio.sleep(self.settings.settle_delay)
        await self.load_from_server()
        await asyncio.sleep(self.settings.settle_delay)
        self.publish()
        self.save_state()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach_realtime(self, realtime):
        """Reload on every connect and apply server-pushed updates."""
        realtime.on("connect", lambda _: self.load_from_server())
        realtime.on(STATS_UPDATED, self.handle_server_data)

    async def aclose(self):
        await self.scheduler.aclose()
