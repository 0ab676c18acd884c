"""
survivor.services.score_service — The Three-Stream Score Ledger
================================================================

A completed session is recorded in three independent, append-only
ledgers:

* **normal** — raw outcome plus the personal-best flag; also folds the
  session into the profile's lifetime stats.
* **leaderboard_points** — points earned, stamped with the profile's new
  running total.
* **skill_points** — symmetric, and additionally credits the spendable
  ``skill_points`` balance.

Each stream is its own command with its own transaction and its own
result; :meth:`ScoreLedger.record_session_outcome` fans the three out on a
thread pool and collects them without letting one failure roll back the
others.

Every stream is idempotent on ``session_id``: a retried write finds the
existing record (or trips the unique index) and reports a duplicate
without touching the running totals again.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from survivor.constants import LEADERBOARD_EARNING_RATE, SKILL_EARNING_RATE
from survivor.database.engine import to_persistence_error
from survivor.database.models import (
    LeaderboardScore,
    NormalScore,
    Profile,
    ScoreStream,
    SkillScore,
)
from survivor.engine import locks as lock_fields
from survivor.engine.locks import ProfileLocks, get_default_locks
from survivor.errors import ErrorCode, NotFoundError, PersistenceError, SurvivorError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from survivor.config import SurvivorConfig
    from survivor.engine.session import SessionOutcome

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class StreamResult:
    """Outcome of one ledger stream for one session."""

    stream: ScoreStream
    success: bool
    duplicate: bool = False
    record_id: int | None = None
    is_personal_best: bool | None = None  # normal stream only
    new_total: int | None = None          # accumulated streams only
    error: ErrorCode | None = None
    message: str = ""
    retryable: bool = False

    @classmethod
    def failed(
        cls, stream: ScoreStream, error: ErrorCode, message: str, *, retryable: bool = False
    ) -> StreamResult:
        return cls(stream=stream, success=False, error=error, message=message,
                   retryable=retryable)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "duplicate": self.duplicate,
            "record_id": self.record_id,
        }
        if self.is_personal_best is not None:
            out["is_personal_best"] = self.is_personal_best
        if self.new_total is not None:
            out["new_total"] = self.new_total
        if not self.success:
            out["error"] = self.error.value if self.error else None
            out["message"] = self.message
            out["retryable"] = self.retryable
        return out


@dataclass
class LedgerResult:
    """Per-stream results for one session outcome."""

    profile_id: int
    session_id: str
    streams: dict[ScoreStream, StreamResult] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.streams.values())

    @property
    def failed_streams(self) -> list[ScoreStream]:
        return [s for s, r in self.streams.items() if not r.success]

    @property
    def error(self) -> ErrorCode | None:
        return None if self.all_succeeded else ErrorCode.PARTIAL_FAILURE

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {s.value: r.to_dict() for s, r in self.streams.items()}


# ---------------------------------------------------------------------------
# ScoreLedger
# ---------------------------------------------------------------------------
class ScoreLedger:
    """Writes session outcomes into the three score ledgers.

    Usage::

        ledger = ScoreLedger(engine, max_workers=3, timeout=5.0)
        result = ledger.record_session_outcome(profile_id, session_id, outcome)
        if not result.all_succeeded:
            ...  # safe to call again; finished streams report duplicates
        ledger.close()

    The worker pool is shared by every caller; size it with
    ``ledger_max_workers`` (three streams per concurrent session end).
    """

    def __init__(
        self,
        engine: Engine,
        *,
        locks: ProfileLocks | None = None,
        max_workers: int = 3,
        timeout: float = 5.0,
    ) -> None:
        self.engine = engine
        self.locks = locks or get_default_locks()
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger")

    @classmethod
    def from_config(
        cls, engine: Engine, cfg: SurvivorConfig, locks: ProfileLocks | None = None
    ) -> ScoreLedger:
        return cls(
            engine,
            locks=locks,
            max_workers=cfg.ledger_max_workers,
            timeout=cfg.persistence_timeout_seconds,
        )

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> ScoreLedger:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------
    def record_session_outcome(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> LedgerResult:
        """Run all three stream commands concurrently and collect each result.

        Never raises for a stream failure; a stream that misses the
        persistence deadline is reported as a retryable failure.
        """
        commands: dict[ScoreStream, Callable[..., StreamResult]] = {
            ScoreStream.NORMAL: self.record_normal,
            ScoreStream.LEADERBOARD_POINTS: self.record_leaderboard_points,
            ScoreStream.SKILL_POINTS: self.record_skill_points,
        }
        futures = {
            stream: self._pool.submit(cmd, profile_id, session_id, outcome)
            for stream, cmd in commands.items()
        }

        deadline = time.monotonic() + self.timeout
        result = LedgerResult(profile_id=profile_id, session_id=session_id)
        for stream, future in futures.items():
            try:
                result.streams[stream] = future.result(
                    timeout=max(0.0, deadline - time.monotonic())
                )
            except FuturesTimeout:
                logger.warning(
                    "Ledger stream %s timed out after %.1fs (session=%s)",
                    stream.value, self.timeout, session_id,
                )
                result.streams[stream] = StreamResult.failed(
                    stream, ErrorCode.PERSISTENCE_FAILURE,
                    f"{stream.value} ledger write timed out", retryable=True,
                )

        if result.all_succeeded:
            logger.info("Session %s recorded in all ledgers (profile=%d)", session_id, profile_id)
        else:
            logger.warning(
                "Session %s partially recorded; failed streams: %s",
                session_id, ", ".join(s.value for s in result.failed_streams),
            )
        return result

    # -------------------------------------------------------------------
    # Stream commands
    # -------------------------------------------------------------------
    def record_normal(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        return self._guarded(ScoreStream.NORMAL, self._write_normal,
                             profile_id, session_id, outcome)

    def record_leaderboard_points(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        return self._guarded(ScoreStream.LEADERBOARD_POINTS, self._write_leaderboard_points,
                             profile_id, session_id, outcome)

    def record_skill_points(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        return self._guarded(ScoreStream.SKILL_POINTS, self._write_skill_points,
                             profile_id, session_id, outcome)

    def _guarded(self, stream: ScoreStream, write: Callable[..., StreamResult],
                 *args: Any) -> StreamResult:
        """Run *write* and turn any failure into a failed StreamResult."""
        try:
            return write(*args)
        except NotFoundError as exc:
            return StreamResult.failed(stream, exc.code, str(exc))
        except SurvivorError as exc:
            logger.warning("Ledger stream %s failed: %s", stream.value, exc)
            return StreamResult.failed(stream, exc.code, str(exc), retryable=exc.retryable)
        except SQLAlchemyError as exc:
            logger.exception("Ledger stream %s hit a storage error", stream.value)
            err = to_persistence_error(exc)
            return StreamResult.failed(stream, err.code, str(err), retryable=err.retryable)

    # -- normal ---------------------------------------------------------
    def _write_normal(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        stream = ScoreStream.NORMAL
        c = outcome.counters
        with self.locks.hold(profile_id, lock_fields.HIGHEST_SCORE, lock_fields.LIFETIME_STATS), \
                Session(self.engine) as session:
            existing = _existing(session, NormalScore, session_id)
            if existing is not None:
                return _duplicate(stream, existing)
            _require_profile(session, profile_id)

            # Compare-and-set: only a strictly higher score moves the best.
            is_best = session.execute(
                update(Profile)
                .where(Profile.id == profile_id, Profile.highest_score < c.score)
                .values(highest_score=c.score)
                .execution_options(**_NO_SYNC)
            ).rowcount == 1

            session.execute(
                update(Profile)
                .where(Profile.id == profile_id)
                .values(
                    games_played=Profile.games_played + 1,
                    total_kills=Profile.total_kills + c.kills,
                    total_play_time=Profile.total_play_time + math.floor(c.survival_time),
                    total_damage_dealt=Profile.total_damage_dealt + c.damage_dealt,
                    total_damage_taken=Profile.total_damage_taken + c.damage_taken,
                )
                .execution_options(**_NO_SYNC)
            )
            session.execute(
                update(Profile)
                .where(Profile.id == profile_id,
                       Profile.longest_survival_time < c.survival_time)
                .values(longest_survival_time=c.survival_time)
                .execution_options(**_NO_SYNC)
            )

            record = NormalScore(
                profile_id=profile_id,
                session_id=session_id,
                score=c.score,
                survival_time=c.survival_time,
                kills=c.kills,
                enemies_spawned=c.enemies_spawned,
                damage_dealt=c.damage_dealt,
                damage_taken=c.damage_taken,
                wave_reached=c.wave_reached,
                is_personal_best=is_best,
            )
            record_id = _insert_once(session, record)
            if record_id is None:
                return _duplicate(stream, _existing(session, NormalScore, session_id))
            session.commit()

        if is_best:
            logger.info("New personal best for profile %d: %d", profile_id, c.score)
        return StreamResult(stream=stream, success=True, record_id=record_id,
                            is_personal_best=is_best)

    # -- leaderboard points --------------------------------------------
    def _write_leaderboard_points(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        stream = ScoreStream.LEADERBOARD_POINTS
        points = outcome.leaderboard_points
        with self.locks.hold(profile_id, lock_fields.LEADERBOARD_POINTS), \
                Session(self.engine) as session:
            existing = _existing(session, LeaderboardScore, session_id)
            if existing is not None:
                return _duplicate(stream, existing)

            _accumulate(session, profile_id, {
                Profile.current_leaderboard_points: Profile.current_leaderboard_points + points,
            })
            new_total = session.scalar(
                select(Profile.current_leaderboard_points).where(Profile.id == profile_id)
            )
            record = LeaderboardScore(
                profile_id=profile_id,
                session_id=session_id,
                points_earned_this_session=points,
                total_accumulated_points=new_total,
                survival_time=outcome.survival_time,
                earning_rate=LEADERBOARD_EARNING_RATE,
                session_start_time=outcome.started_at,
                session_end_time=outcome.ended_at,
            )
            record_id = _insert_once(session, record)
            if record_id is None:
                return _duplicate(stream, _existing(session, LeaderboardScore, session_id))
            session.commit()

        return StreamResult(stream=stream, success=True, record_id=record_id,
                            new_total=new_total)

    # -- skill points ---------------------------------------------------
    def _write_skill_points(
        self, profile_id: int, session_id: str, outcome: SessionOutcome
    ) -> StreamResult:
        stream = ScoreStream.SKILL_POINTS
        points = outcome.skill_points
        with self.locks.hold(profile_id, lock_fields.SKILL_POINTS_TOTAL,
                             lock_fields.SKILL_POINTS_BALANCE), \
                Session(self.engine) as session:
            existing = _existing(session, SkillScore, session_id)
            if existing is not None:
                return _duplicate(stream, existing)

            _accumulate(session, profile_id, {
                Profile.current_skill_points: Profile.current_skill_points + points,
                Profile.skill_points: Profile.skill_points + points,
            })
            new_total, available = session.execute(
                select(Profile.current_skill_points, Profile.skill_points)
                .where(Profile.id == profile_id)
            ).one()
            record = SkillScore(
                profile_id=profile_id,
                session_id=session_id,
                points_earned_this_session=points,
                total_accumulated_points=new_total,
                points_available=available,
                survival_time=outcome.survival_time,
                earning_rate=SKILL_EARNING_RATE,
                session_start_time=outcome.started_at,
                session_end_time=outcome.ended_at,
            )
            record_id = _insert_once(session, record)
            if record_id is None:
                return _duplicate(stream, _existing(session, SkillScore, session_id))
            session.commit()

        return StreamResult(stream=stream, success=True, record_id=record_id,
                            new_total=new_total)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _existing(session: Session, model: type, session_id: str):
    return session.scalar(select(model).where(model.session_id == session_id))


def _duplicate(stream: ScoreStream, record) -> StreamResult:
    """Report an already-recorded session from its stored record."""
    if record is None:
        # The insert collided but no record exists: not a duplicate.
        raise PersistenceError(f"{stream.value} record rejected by storage", retryable=False)
    logger.debug("Duplicate %s record skipped: session=%s", stream.value, record.session_id)
    result = StreamResult(stream=stream, success=True, duplicate=True, record_id=record.id)
    if isinstance(record, NormalScore):
        result.is_personal_best = record.is_personal_best
    else:
        result.new_total = record.total_accumulated_points
    return result


def _require_profile(session: Session, profile_id: int) -> None:
    if session.scalar(select(Profile.id).where(Profile.id == profile_id)) is None:
        raise NotFoundError("profile", profile_id)


def _accumulate(session: Session, profile_id: int, values: dict) -> None:
    """Apply ``column = column + delta`` updates in one statement."""
    updated = session.execute(
        update(Profile)
        .where(Profile.id == profile_id)
        .values(values)
        .execution_options(**_NO_SYNC)
    ).rowcount
    if updated == 0:
        raise NotFoundError("profile", profile_id)


def _insert_once(session: Session, record) -> int | None:
    """Flush *record*; on a unique-index collision roll back and return None.

    The rollback also discards the running-total updates made earlier in
    the same transaction, so a racing duplicate never double-counts.
    """
    session.add(record)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        return None
    return record.id
