"""Tests for the stats wire schemas."""

import pytest

from battle_stats.errors import MalformedPayload
from battle_stats.schemas.stats import build_save_body, parse_stats_payload, unwrap_envelope
from battle_stats.services.stat_model import (
    POINTS_PER_FRAG,
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    Battle,
    PlayerStat,
    WinState,
)

PLAYER = {"name": "Alpha", "damage": 5, "kills": 1, "points": 405, "vehicle": "T-34"}


def _battle(players):
    return {"startTime": 1700000000000, "duration": 300, "win": 1, "mapName": "Prokhorovka", "players": players}


def _wrap(record):
    return {"_id": record}


class TestNormalization:
    """Envelope unwrapping for battles and players, independently."""

    @pytest.mark.parametrize("wrap_battle", [False, True])
    @pytest.mark.parametrize("wrap_player", [False, True])
    def test_unwraps_any_combination(self, wrap_battle, wrap_player):
        player = _wrap(PLAYER) if wrap_player else PLAYER
        battle = _battle({"p1": player})
        data = {"success": True, "BattleStats": {"a1": _wrap(battle) if wrap_battle else battle}}

        snapshot = parse_stats_payload(data).to_snapshot()

        normalized = snapshot.battles["a1"]
        assert normalized.players["p1"].damage == 5
        assert normalized.players["p1"].name == "Alpha"
        assert normalized.map_name == "Prokhorovka"
        assert normalized.win == WinState.WIN

    def test_player_info_unwrapped(self):
        data = {"success": True, "PlayerInfo": {"1": "Alpha", "2": _wrap("Beta")}}
        snapshot = parse_stats_payload(data).to_snapshot()
        assert snapshot.players_info == {"1": "Alpha", "2": "Beta"}
        assert snapshot.battles is None

    def test_defaults_for_missing_fields(self):
        data = {"success": True, "BattleStats": {"a1": {"players": {"p1": {}}}}}
        battle = parse_stats_payload(data).to_snapshot().battles["a1"]
        assert battle.map_name == UNKNOWN_MAP
        assert battle.duration == 0
        assert battle.win == WinState.UNKNOWN
        assert battle.start_time > 0
        player = battle.players["p1"]
        assert player.name == UNKNOWN_PLAYER
        assert player.vehicle == UNKNOWN_VEHICLE
        assert (player.damage, player.kills, player.points) == (0, 0, 0)

    def test_frags_alias_and_derived_points(self):
        data = {"success": True, "BattleStats": {"a1": {"players": {"p1": {"damage": 10, "frags": 2}}}}}
        player = parse_stats_payload(data).to_snapshot().battles["a1"].players["p1"]
        assert player.kills == 2
        assert player.points == 10 + 2 * POINTS_PER_FRAG

    def test_server_points_take_precedence(self):
        data = {"success": True, "BattleStats": {"a1": {"players": {"p1": {"damage": 10, "kills": 2, "points": 7}}}}}
        player = parse_stats_payload(data).to_snapshot().battles["a1"].players["p1"]
        assert player.points == 7

    def test_fractional_numbers_are_truncated(self):
        data = {
            "success": True,
            "BattleStats": {
                "a1": {"duration": 300.9, "players": {"p1": {"damage": 10.5, "kills": 1.0, "points": 410.5}}},
                "a2": {"players": {"p2": {"damage": 7.8, "frags": 2.2}}},
            },
        }
        battles = parse_stats_payload(data).to_snapshot().battles
        assert battles["a1"].duration == 300
        player = battles["a1"].players["p1"]
        assert (player.damage, player.kills, player.points) == (10, 1, 410)
        other = battles["a2"].players["p2"]
        assert (other.damage, other.kills) == (7, 2)
        assert other.points == 7 + 2 * POINTS_PER_FRAG

    def test_name_falls_back_to_directory(self):
        data = {
            "success": True,
            "BattleStats": {"a1": {"players": {"p1": {}, "p2": {}}}},
            "PlayerInfo": {"p1": "FromPayload"},
        }
        battle = parse_stats_payload(data).to_snapshot({"p2": "Known"}).battles["a1"]
        assert battle.players["p1"].name == "FromPayload"
        assert battle.players["p2"].name == "Known"

    def test_malformed_payloads(self):
        with pytest.raises(MalformedPayload):
            parse_stats_payload(["not", "an", "object"])
        with pytest.raises(MalformedPayload):
            parse_stats_payload({"success": True, "BattleStats": {"a1": {"players": {"p1": {"damage": "lots"}}}}})
        with pytest.raises(MalformedPayload):
            parse_stats_payload({"success": True, "PlayerInfo": {"1": {"nested": True}}}).to_snapshot()

    def test_unwrap_leaves_plain_values(self):
        assert unwrap_envelope({"name": "x"}) == {"name": "x"}
        assert unwrap_envelope("x") == "x"


class TestSaveBody:
    """Outbound bodies always use the wrapped form."""

    def test_wrapped_with_frags_alias(self):
        battles = {
            "a1": Battle(
                start_time=1,
                duration=60,
                win=WinState.LOSS,
                map_name="Ensk",
                players={"p1": PlayerStat(name="Alpha", damage=50, kills=3, points=1250, vehicle="KV-1")},
            )
        }
        body = build_save_body(battles, {"p1": "Alpha"})

        battle = body["BattleStats"]["a1"]["_id"]
        assert battle["win"] == 0
        assert battle["mapName"] == "Ensk"
        player = battle["players"]["p1"]["_id"]
        assert player["kills"] == 3
        assert player["frags"] == 3
        assert player["points"] == 1250
        assert body["PlayerInfo"] == {"p1": "Alpha"}

    def test_save_body_reads_back(self):
        battles = {"a1": Battle(win=WinState.DRAW, players={"p1": PlayerStat(damage=9, kills=0, points=9)})}
        body = build_save_body(battles, {})
        snapshot = parse_stats_payload({"success": True, **body}).to_snapshot()
        assert snapshot.battles["a1"].win == WinState.DRAW
        assert snapshot.battles["a1"].players["p1"].damage == 9
