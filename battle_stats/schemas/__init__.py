from .stats import (
    StatsPayload, PlayerRecordIn, BattleRecordIn,
    parse_stats_payload, build_save_body, unwrap_envelope, wrap_envelope,
    BattleTotalsResponse, PlayerTotalsResponse, TeamTotalsResponse,
    BattleScoreResponse, BestWorstResponse, SnapshotResponse, CommandResponse,
)

__all__ = [
    "StatsPayload", "PlayerRecordIn", "BattleRecordIn",
    "parse_stats_payload", "build_save_body", "unwrap_envelope", "wrap_envelope",
    "BattleTotalsResponse", "PlayerTotalsResponse", "TeamTotalsResponse",
    "BattleScoreResponse", "BestWorstResponse", "SnapshotResponse", "CommandResponse",
]
