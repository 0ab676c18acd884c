"""
survivor.services.leaderboard_service — Leaderboard Queries
============================================================

Builds candidate rows for each stream straight from the ledgers and
hands them to :func:`survivor.engine.leaderboard.assign_ranks`.

* ``score`` — one entry per session (``normal_scores``).
* ``leaderboard_points`` / ``skill`` — one entry per profile; all-time
  boards use the latest running total, windowed boards the points earned
  inside the window.
* ``survival`` — one entry per profile; all-time reads the profile's
  longest survival, windowed boards the best session in the window.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from survivor.constants import (
    DASHBOARD_LEADERBOARD_LIMIT,
    DEFAULT_LEADERBOARD_LIMIT,
    MAX_LEADERBOARD_LIMIT,
)
from survivor.database.engine import storage_boundary
from survivor.database.models import (
    LeaderboardScore,
    NormalScore,
    Profile,
    SkillScore,
    utcnow,
)
from survivor.engine.leaderboard import (
    LeaderboardEntry,
    LeaderboardStream,
    ProfileCard,
    RankedRow,
    Timeframe,
    assign_ranks,
    clamp_limit,
    parse_stream,
    window_start,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def rank(
    engine: Engine,
    stream: LeaderboardStream | str,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
    timeframe: Timeframe | str = Timeframe.ALL,
    *,
    max_limit: int = MAX_LEADERBOARD_LIMIT,
    now: datetime | None = None,
) -> list[LeaderboardEntry]:
    """Top entries for *stream* within *timeframe*.

    Raises
    ------
    ValueError
        If *stream* or *timeframe* is not recognised.
    """
    stream = parse_stream(stream) if isinstance(stream, str) else stream
    timeframe = Timeframe(timeframe)
    limit = clamp_limit(limit, max_limit)
    since = window_start(timeframe, now or utcnow())

    with storage_boundary(f"rank {stream.value}"), Session(engine) as session:
        if stream is LeaderboardStream.SCORE:
            rows = _score_rows(session, since, limit)
        elif stream is LeaderboardStream.SURVIVAL:
            rows = _survival_rows(session, since, limit)
        elif stream is LeaderboardStream.LEADERBOARD_POINTS:
            rows = _accumulated_rows(session, LeaderboardScore, since, limit)
        else:
            rows = _accumulated_rows(session, SkillScore, since, limit)
        cards = _profile_cards(session, {r.profile_id for r in rows})

    entries = assign_ranks(rows, cards, limit)
    logger.debug("Ranked %s/%s: %d entries", stream.value, timeframe.value, len(entries))
    return entries


def rank_all(
    engine: Engine, limit: int = DASHBOARD_LEADERBOARD_LIMIT
) -> dict[str, list[LeaderboardEntry]]:
    """All-time top entries of the score, points and survival boards."""
    return {
        s.value: rank(engine, s, limit)
        for s in (
            LeaderboardStream.SCORE,
            LeaderboardStream.LEADERBOARD_POINTS,
            LeaderboardStream.SURVIVAL,
        )
    }


def recent(
    engine: Engine, limit: int = DEFAULT_LEADERBOARD_LIMIT, *, now: datetime | None = None
) -> list[LeaderboardEntry]:
    """Best single-session scores of the last day."""
    return rank(engine, LeaderboardStream.SCORE, limit, Timeframe.DAILY, now=now)


# ---------------------------------------------------------------------------
# Candidate queries
# ---------------------------------------------------------------------------
def _score_rows(session: Session, since: datetime | None, limit: int) -> list[RankedRow]:
    stmt = select(
        NormalScore.id, NormalScore.profile_id, NormalScore.session_id,
        NormalScore.score, NormalScore.created_at,
    )
    if since is not None:
        stmt = stmt.where(NormalScore.created_at >= since)
    stmt = stmt.order_by(
        NormalScore.score.desc(), NormalScore.created_at.asc(), NormalScore.id.asc()
    ).limit(limit)
    return [
        RankedRow(profile_id=r.profile_id, metric_value=r.score, achieved_at=r.created_at,
                  row_id=r.id, session_id=r.session_id)
        for r in session.execute(stmt)
    ]


def _survival_rows(session: Session, since: datetime | None, limit: int) -> list[RankedRow]:
    if since is None:
        stmt = (
            select(Profile.id, Profile.longest_survival_time, Profile.created_at)
            .where(Profile.longest_survival_time > 0)
            .order_by(Profile.longest_survival_time.desc(), Profile.created_at.asc(),
                      Profile.id.asc())
            .limit(limit)
        )
        return [
            RankedRow(profile_id=r.id, metric_value=r.longest_survival_time,
                      achieved_at=r.created_at, row_id=r.id)
            for r in session.execute(stmt)
        ]

    best = func.max(NormalScore.survival_time).label("best")
    first = func.min(NormalScore.created_at).label("first")
    stmt = (
        select(NormalScore.profile_id, best, first)
        .where(NormalScore.created_at >= since)
        .group_by(NormalScore.profile_id)
        .order_by(best.desc(), first.asc(), NormalScore.profile_id.asc())
        .limit(limit)
    )
    return [
        RankedRow(profile_id=r.profile_id, metric_value=r.best, achieved_at=r.first,
                  row_id=r.profile_id)
        for r in session.execute(stmt)
    ]


def _accumulated_rows(
    session: Session, model: type, since: datetime | None, limit: int
) -> list[RankedRow]:
    if since is None:
        metric = func.max(model.total_accumulated_points).label("metric")
    else:
        metric = func.sum(model.points_earned_this_session).label("metric")
    first = func.min(model.created_at).label("first")

    stmt = select(model.profile_id, metric, first)
    if since is not None:
        stmt = stmt.where(model.created_at >= since)
    stmt = (
        stmt.group_by(model.profile_id)
        .order_by(metric.desc(), first.asc(), model.profile_id.asc())
        .limit(limit)
    )
    return [
        RankedRow(profile_id=r.profile_id, metric_value=r.metric, achieved_at=r.first,
                  row_id=r.profile_id)
        for r in session.execute(stmt)
    ]


def _profile_cards(session: Session, profile_ids: set[int]) -> dict[int, ProfileCard]:
    if not profile_ids:
        return {}
    rows = session.execute(
        select(Profile.id, Profile.username, Profile.level, Profile.avatar)
        .where(Profile.id.in_(profile_ids))
    )
    return {r.id: ProfileCard(username=r.username, level=r.level, avatar=r.avatar) for r in rows}
