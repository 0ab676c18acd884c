"""
survivor.api.routes.game — Play session endpoints
==================================================

The game client reports camelCase payloads; every counter also accepts
its snake_case name.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import Engine

from survivor.api.deps import (
    get_config,
    get_engine,
    get_ledger,
    get_profile_id,
    raise_for,
)
from survivor.config import SurvivorConfig
from survivor.engine.leaderboard import STREAM_TITLES, parse_stream
from survivor.engine.session import SessionCounters
from survivor.errors import ErrorCode
from survivor.services import leaderboard_service, profile_service, session_service
from survivor.services.score_service import ScoreLedger

router = APIRouter(prefix="/game", tags=["game"])

ProfileId = Annotated[int, Depends(get_profile_id)]


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class StartSessionBody(BaseModel):
    game_mode: str | None = Field(None, validation_alias=_alias("game_mode", "gameMode"))


class CountersBody(BaseModel):
    score: int = Field(
        0, ge=0, validation_alias=_alias("score", "currentScore", "finalScore", "current_score")
    )
    survival_time: float = Field(
        0.0, ge=0, allow_inf_nan=False, validation_alias=_alias("survival_time", "survivalTime")
    )
    kills: int = Field(0, ge=0)
    enemies_spawned: int = Field(
        0, ge=0, validation_alias=_alias("enemies_spawned", "enemiesSpawned")
    )
    damage_dealt: int = Field(0, ge=0, validation_alias=_alias("damage_dealt", "damageDealt"))
    damage_taken: int = Field(0, ge=0, validation_alias=_alias("damage_taken", "damageTaken"))
    wave_reached: int = Field(0, ge=0, validation_alias=_alias("wave_reached", "waveReached"))
    leaderboard_points_earned: int = Field(
        0, ge=0,
        validation_alias=_alias("leaderboard_points_earned", "leaderboardPointsEarned",
                                "leaderboardPoints", "leaderboard_points"),
    )
    skill_points_earned: int = Field(
        0, ge=0,
        validation_alias=_alias("skill_points_earned", "skillPointsEarned",
                                "skillPoints", "skill_points"),
    )

    def to_counters(self) -> SessionCounters:
        return SessionCounters(**self.model_dump())


class ProgressBody(CountersBody):
    session_id: str = Field(validation_alias=_alias("session_id", "sessionId"))

    def to_counters(self) -> SessionCounters:
        return SessionCounters(**self.model_dump(exclude={"session_id"}))


class EndSessionBody(CountersBody):
    session_id: str = Field(validation_alias=_alias("session_id", "sessionId"))
    end_reason: str | None = Field(None, validation_alias=_alias("end_reason", "endReason"))

    def to_counters(self) -> SessionCounters:
        return SessionCounters(**self.model_dump(exclude={"session_id", "end_reason"}))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@router.post("/session/start", status_code=201)
def start_session(
    body: StartSessionBody,
    profile_id: ProfileId,
    engine: Engine = Depends(get_engine),
    cfg: SurvivorConfig = Depends(get_config),
):
    result = session_service.start_session(
        engine, profile_id, body.game_mode or cfg.default_game_mode
    )
    if not result.success:
        raise_for(result.error, result.message)
    return {"session_id": result.session_id, "profile_id": result.profile_id}


@router.post("/progress/save")
def save_progress(
    body: ProgressBody,
    profile_id: ProfileId,
    engine: Engine = Depends(get_engine),
):
    result = session_service.report_progress(
        engine, body.session_id, body.to_counters(), expected_profile_id=profile_id
    )
    if not result.success:
        raise_for(result.error, result.message)
    return {"success": True, "session_id": result.session_id, "applied": result.applied}


@router.post("/session/end")
def end_session(
    body: EndSessionBody,
    profile_id: ProfileId,
    engine: Engine = Depends(get_engine),
    ledger: ScoreLedger = Depends(get_ledger),
    cfg: SurvivorConfig = Depends(get_config),
):
    result = session_service.end_session(
        engine,
        ledger,
        body.session_id,
        body.to_counters(),
        body.end_reason or cfg.default_end_reason,
        expected_profile_id=profile_id,
    )
    if not result.success:
        raise_for(result.error, result.message)
    return {
        "session_id": result.session_id,
        "profile_id": result.profile_id,
        "already_completed": result.already_completed,
        "partial_failure": result.error is ErrorCode.PARTIAL_FAILURE,
        "streams": result.per_stream,
    }


@router.get("/session/active")
def active_session(profile_id: ProfileId, engine: Engine = Depends(get_engine)):
    active = session_service.get_active_session(engine, profile_id)
    if active is None:
        return {"session": None}
    return {
        "session": {
            "session_id": active.session_id,
            "profile_id": active.profile_id,
            "game_mode": active.game_mode,
            "status": active.status,
            "started_at": active.started_at.isoformat(),
            **active.counters.as_columns(),
        }
    }


# ---------------------------------------------------------------------------
# Profile read models
# ---------------------------------------------------------------------------
@router.get("/stats")
def stats(profile_id: ProfileId, engine: Engine = Depends(get_engine)):
    s = profile_service.get_profile_stats(engine, profile_id)
    return {
        "profile_id": s.profile_id,
        "username": s.username,
        "avatar": s.avatar,
        "level": s.level,
        "experience": s.experience,
        "coins": s.coins,
        "skill_points": s.skill_points,
        "current_leaderboard_points": s.current_leaderboard_points,
        "current_skill_points": s.current_skill_points,
        "highest_score": s.highest_score,
        "longest_survival_time": s.longest_survival_time,
        "games_played": s.games_played,
        "total_kills": s.total_kills,
        "total_play_time": s.total_play_time,
        "total_damage_dealt": s.total_damage_dealt,
        "total_damage_taken": s.total_damage_taken,
    }


@router.get("/totals")
def totals(profile_id: ProfileId, engine: Engine = Depends(get_engine)):
    t = profile_service.get_current_totals(engine, profile_id)
    return {
        "leaderboard_points": t.leaderboard_points,
        "skill_points": t.skill_points,
        "highest_score": t.highest_score,
    }


@router.get("/leaderboards/{board}")
def ledger_board(
    board: str,
    limit: int = Query(50, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    cfg: SurvivorConfig = Depends(get_config),
):
    """Top rows of one ledger, addressed by its ledger name (normal, leaderboard, skill)."""
    try:
        stream = parse_stream(board)
    except ValueError:
        raise_for(ErrorCode.NOT_FOUND, f"Unknown leaderboard: {board}")
    entries = leaderboard_service.rank(
        engine, stream, limit, max_limit=cfg.leaderboard_max_limit
    )
    title, _ = STREAM_TITLES[stream]
    return {"board": stream.value, "title": title, "entries": [e.to_dict() for e in entries]}
