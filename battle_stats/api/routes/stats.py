"""Battle statistics routes and the game event ingress."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ...errors import ConnectivityUnavailable, MalformedPayload
from ...schemas.stats import (
    BattleScoreResponse,
    BattleTotalsResponse,
    BestWorstResponse,
    CommandResponse,
    PlayerTotalsResponse,
    SnapshotResponse,
    TeamTotalsResponse,
)
from ...services.metrics_cache import BattleScore
from ...services.reconciliation import GameEventKind, ReconciliationEngine
from ...services.streaming import StreamingHandler

router = APIRouter()


class GameEventRequest(BaseModel):
    """One notification from the game client."""
    kind: GameEventKind
    data: Any = None


def get_engine(request: Request) -> ReconciliationEngine:
    """Dependency for the engine created in the app lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Stats engine not running")
    return engine


def _score_response(score: BattleScore) -> BattleScoreResponse:
    return BattleScoreResponse(
        arena_id=score.arena_id,
        points=score.points,
        win=int(score.battle.win),
        map_name=score.battle.map_name,
        duration=score.battle.duration,
    )


@router.get("", response_model=SnapshotResponse)
async def get_snapshot(engine: ReconciliationEngine = Depends(get_engine)):
    """Full local snapshot."""
    state = engine.snapshot()
    return SnapshotResponse(
        BattleStats=state["BattleStats"],
        PlayersInfo=state["PlayersInfo"],
        currentPlayerId=state["currentPlayerId"],
        currentArenaId=state["currentArenaId"],
    )


@router.get("/team", response_model=TeamTotalsResponse)
async def get_team_totals(engine: ReconciliationEngine = Depends(get_engine)):
    totals = engine.team_totals()
    return TeamTotalsResponse(
        points=totals.points,
        damage=totals.damage,
        kills=totals.kills,
        wins=totals.wins,
        battles=totals.battles,
    )


@router.get("/battles/{arena_id}", response_model=BattleTotalsResponse)
async def get_battle_totals(arena_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    if arena_id not in engine.model.battles:
        raise HTTPException(status_code=404, detail="Battle not found")
    totals = engine.battle_totals(arena_id)
    return BattleTotalsResponse(
        arena_id=arena_id,
        points=totals.points,
        damage=totals.damage,
        kills=totals.kills,
    )


@router.get("/players/{player_id}", response_model=PlayerTotalsResponse)
async def get_player_totals(player_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    totals = engine.player_totals(player_id)
    return PlayerTotalsResponse(
        player_id=player_id,
        points=totals.points,
        damage=totals.damage,
        kills=totals.kills,
    )


@router.get("/best-worst", response_model=BestWorstResponse)
async def get_best_and_worst(engine: ReconciliationEngine = Depends(get_engine)):
    result = engine.best_and_worst_battle()
    return BestWorstResponse(
        best=_score_response(result.best) if result.best else None,
        worst=_score_response(result.worst) if result.worst else None,
    )


@router.get("/events")
async def stream_stats_events(engine: ReconciliationEngine = Depends(get_engine)):
    """Stream statsUpdated notifications using SSE."""
    handler = StreamingHandler(engine.notifier)
    return StreamingResponse(
        handler.stream_updates(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post("/refresh", response_model=CommandResponse)
async def refresh_stats(engine: ReconciliationEngine = Depends(get_engine)):
    """Drop local data and reload it from the remote store."""
    await engine.refresh_local_data()
    return CommandResponse(status="refreshed")


@router.post("/clear", response_model=CommandResponse)
async def clear_stats(engine: ReconciliationEngine = Depends(get_engine)):
    """Wipe remote and local data. Needs the real-time channel."""
    try:
        await engine.clear_server_data()
    except ConnectivityUnavailable:
        raise HTTPException(status_code=503, detail="Not connected")
    return CommandResponse(status="cleared")


@router.post("/game-events", response_model=CommandResponse, status_code=202)
async def post_game_event(event: GameEventRequest, engine: ReconciliationEngine = Depends(get_engine)):
    """Feed one game client notification to the engine."""
    try:
        await engine.handle_game_event(event.kind, event.data)
    except MalformedPayload as e:
        raise HTTPException(status_code=422, detail=str(e))
    return CommandResponse(status="accepted")
