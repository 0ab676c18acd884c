"""
survivor.api.routes.leaderboard — Public leaderboard endpoints
===============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from survivor.api.deps import get_config, get_engine, raise_for
from survivor.config import SurvivorConfig
from survivor.constants import DASHBOARD_LEADERBOARD_LIMIT
from survivor.engine.leaderboard import STREAM_TITLES, LeaderboardStream, Timeframe, parse_stream
from survivor.errors import ErrorCode
from survivor.services import leaderboard_service

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


def _board(stream: LeaderboardStream, timeframe: Timeframe, entries) -> dict:
    title, description = STREAM_TITLES[stream]
    return {
        "stream": stream.value,
        "title": title,
        "description": description,
        "timeframe": timeframe.value,
        "entries": [e.to_dict() for e in entries],
    }


# Fixed paths are registered before the ``/{stream}`` catch-all.
@router.get("/all")
def all_boards(
    limit: int = Query(DASHBOARD_LEADERBOARD_LIMIT, ge=1, le=50),
    engine: Engine = Depends(get_engine),
):
    boards = leaderboard_service.rank_all(engine, limit)
    return {
        name: _board(LeaderboardStream(name), Timeframe.ALL, entries)
        for name, entries in boards.items()
    }


@router.get("/recent")
def recent_scores(
    limit: int = Query(20, ge=1, le=50),
    engine: Engine = Depends(get_engine),
):
    entries = leaderboard_service.recent(engine, limit)
    return _board(LeaderboardStream.SCORE, Timeframe.DAILY, entries)


@router.get("/{stream}")
def leaderboard(
    stream: str,
    limit: int | None = Query(None, ge=1, le=100),
    timeframe: Timeframe = Query(Timeframe.ALL),
    engine: Engine = Depends(get_engine),
    cfg: SurvivorConfig = Depends(get_config),
):
    """One board; ``stream`` is score, leaderboard_points, survival or skill."""
    try:
        resolved = parse_stream(stream)
    except ValueError:
        raise_for(ErrorCode.NOT_FOUND, f"Unknown leaderboard: {stream}")
    entries = leaderboard_service.rank(
        engine,
        resolved,
        limit or cfg.leaderboard_default_limit,
        timeframe,
        max_limit=cfg.leaderboard_max_limit,
    )
    return _board(resolved, timeframe, entries)
