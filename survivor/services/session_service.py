"""
survivor.services.session_service — Play Session Lifecycle
===========================================================

start → progress* → end.  Ending a session commits the transition first
and only then hands the final counters to the
:class:`~survivor.services.score_service.ScoreLedger`; a ledger failure
never un-ends a session.

Expected conditions (unknown profile or session) come back as result
dataclasses with an :class:`~survivor.errors.ErrorCode`; storage faults
raise :class:`~survivor.errors.PersistenceError`.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from survivor.constants import DEFAULT_END_REASON, DEFAULT_GAME_MODE
from survivor.database.engine import get_session, storage_boundary
from survivor.database.models import (
    GameSession,
    Profile,
    ProgressSnapshot,
    SessionStatus,
    utcnow,
)
from survivor.engine.session import SessionCounters, SessionOutcome, can_transition
from survivor.errors import ErrorCode

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from survivor.services.score_service import LedgerResult, ScoreLedger

logger = logging.getLogger(__name__)

CounterInput = SessionCounters | Mapping[str, Any] | None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class StartSessionResult:
    success: bool
    session_id: str | None = None
    profile_id: int | None = None
    error: ErrorCode | None = None
    message: str = ""


@dataclass
class ProgressResult:
    """``applied`` is False when the session had already completed."""

    success: bool
    session_id: str
    applied: bool = False
    error: ErrorCode | None = None
    message: str = ""


@dataclass
class EndSessionResult:
    """Outcome of ending a session.

    ``success`` reflects the lifecycle transition only.  Ledger failures
    are reported per stream with ``error = PARTIAL_FAILURE``.
    """

    success: bool
    session_id: str
    profile_id: int | None = None
    ledger: LedgerResult | None = None
    already_completed: bool = False
    error: ErrorCode | None = None
    message: str = ""

    @property
    def per_stream(self) -> dict[str, dict[str, Any]]:
        return self.ledger.to_dict() if self.ledger else {}


@dataclass(frozen=True, slots=True)
class ActiveSession:
    session_id: str
    profile_id: int
    game_mode: str
    status: str
    started_at: datetime
    counters: SessionCounters


def _as_counters(value: CounterInput) -> SessionCounters:
    """Raises ValueError for negative, fractional or non-numeric counters."""
    if isinstance(value, SessionCounters):
        return value
    return SessionCounters.from_mapping(value)


def _owned_session(
    session: Session, session_id: str, expected_profile_id: int | None
) -> GameSession | None:
    game = session.get(GameSession, session_id)
    if game is None:
        return None
    if expected_profile_id is not None and game.profile_id != expected_profile_id:
        return None
    return game


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def start_session(
    engine: Engine, profile_id: int, game_mode: str = DEFAULT_GAME_MODE
) -> StartSessionResult:
    """Open a new in-progress session with zeroed counters."""
    with storage_boundary("start session"), get_session(engine) as session:
        if session.get(Profile, profile_id) is None:
            return StartSessionResult(
                success=False, error=ErrorCode.NOT_FOUND,
                message=f"Profile not found: {profile_id}",
            )
        game = GameSession(
            id=str(uuid.uuid4()),
            profile_id=profile_id,
            game_mode=game_mode or DEFAULT_GAME_MODE,
            status=SessionStatus.IN_PROGRESS.value,
        )
        session.add(game)
        session_id = game.id

    logger.info("Session %s started (profile=%d, mode=%s)", session_id, profile_id, game_mode)
    return StartSessionResult(success=True, session_id=session_id, profile_id=profile_id)


def report_progress(
    engine: Engine,
    session_id: str,
    counters: CounterInput,
    *,
    expected_profile_id: int | None = None,
) -> ProgressResult:
    """Overwrite the live counters and append a progress snapshot.

    Counters are a full snapshot, not a delta.  On a completed session the
    snapshot is still recorded but the final counters are left alone.
    A session owned by another profile than *expected_profile_id* is
    reported as not found.
    """
    try:
        snapshot = _as_counters(counters)
    except ValueError as exc:
        return ProgressResult(success=False, session_id=session_id,
                              error=ErrorCode.VALIDATION_ERROR, message=str(exc))
    with storage_boundary("report progress"), Session(engine) as session:
        game = _owned_session(session, session_id, expected_profile_id)
        if game is None:
            return ProgressResult(
                success=False, session_id=session_id, error=ErrorCode.NOT_FOUND,
                message=f"Session not found: {session_id}",
            )

        session.add(ProgressSnapshot(
            session_id=session_id,
            profile_id=game.profile_id,
            score=snapshot.score,
            leaderboard_points=snapshot.leaderboard_points_earned,
            skill_points=snapshot.skill_points_earned,
            survival_time=snapshot.survival_time,
            kills=snapshot.kills,
            enemies_spawned=snapshot.enemies_spawned,
            damage_dealt=snapshot.damage_dealt,
            damage_taken=snapshot.damage_taken,
            wave_reached=snapshot.wave_reached,
        ))
        applied = session.execute(
            update(GameSession)
            .where(GameSession.id == session_id,
                   GameSession.status == SessionStatus.IN_PROGRESS.value)
            .values(**snapshot.as_columns())
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        session.commit()

    if not applied:
        logger.warning("Progress for completed session %s recorded as snapshot only", session_id)
    return ProgressResult(success=True, session_id=session_id, applied=applied)


def end_session(
    engine: Engine,
    ledger: ScoreLedger,
    session_id: str,
    final_counters: CounterInput = None,
    end_reason: str | None = None,
    *,
    expected_profile_id: int | None = None,
) -> EndSessionResult:
    """Complete a session and record its outcome in all three ledgers.

    Ending an already-completed session doesn't transition again; its
    stored counters are replayed through the ledger, where streams that
    already succeeded report duplicates.
    """
    try:
        counters = _as_counters(final_counters)
    except ValueError as exc:
        return EndSessionResult(success=False, session_id=session_id,
                                error=ErrorCode.VALIDATION_ERROR, message=str(exc))
    with storage_boundary("end session"), Session(engine) as session:
        game = _owned_session(session, session_id, expected_profile_id)
        if game is None:
            return EndSessionResult(
                success=False, session_id=session_id, error=ErrorCode.NOT_FOUND,
                message=f"Session not found: {session_id}",
            )
        profile_id = game.profile_id
        started_at = game.started_at

        ended_at = utcnow()
        transitioned = False
        if can_transition(game.status, SessionStatus.COMPLETED):
            # Compare-and-set on status so concurrent ends finalize once.
            transitioned = session.execute(
                update(GameSession)
                .where(GameSession.id == session_id,
                       GameSession.status == SessionStatus.IN_PROGRESS.value)
                .values(
                    status=SessionStatus.COMPLETED.value,
                    end_reason=end_reason or DEFAULT_END_REASON,
                    ended_at=ended_at,
                    **counters.as_columns(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount == 1
            session.commit()

        if not transitioned:
            session.refresh(game)
            counters = SessionCounters.from_session(game)
            ended_at = game.ended_at

    outcome = SessionOutcome(counters=counters, started_at=started_at, ended_at=ended_at)
    if transitioned:
        logger.info(
            "Session %s completed (profile=%d, score=%d)", session_id, profile_id, counters.score
        )
    else:
        logger.info("Session %s already completed; replaying ledger writes", session_id)

    ledger_result = ledger.record_session_outcome(profile_id, session_id, outcome)
    return EndSessionResult(
        success=True,
        session_id=session_id,
        profile_id=profile_id,
        ledger=ledger_result,
        already_completed=not transitioned,
        error=ledger_result.error,
        message="" if ledger_result.all_succeeded else "Some score streams failed to record",
    )


def get_active_session(engine: Engine, profile_id: int) -> ActiveSession | None:
    """Most recently started in-progress session for *profile_id*, if any."""
    with storage_boundary("load active session"), Session(engine) as session:
        game = session.scalar(
            select(GameSession)
            .where(GameSession.profile_id == profile_id,
                   GameSession.status == SessionStatus.IN_PROGRESS.value)
            .order_by(GameSession.started_at.desc(), GameSession.id.desc())
            .limit(1)
        )
        if game is None:
            return None
        return ActiveSession(
            session_id=game.id,
            profile_id=game.profile_id,
            game_mode=game.game_mode,
            status=game.status,
            started_at=game.started_at,
            counters=SessionCounters.from_session(game),
        )
