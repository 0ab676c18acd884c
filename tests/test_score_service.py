"""
tests/test_score_service.py — Integration Tests for the Score Ledger
=====================================================================

Runs the three ledger streams against in-memory SQLite.
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from survivor.database.models import (
    ImmutableRecordError,
    LeaderboardScore,
    NormalScore,
    ScoreStream,
    SkillScore,
)
from survivor.engine.session import SessionCounters, SessionOutcome
from survivor.errors import ErrorCode
from survivor.services.score_service import ScoreLedger, StreamResult
from conftest import load_profile, set_profile


def _outcome(**counters) -> SessionOutcome:
    return SessionOutcome(SessionCounters(**counters))


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


# ---------------------------------------------------------------------------
# Normal stream
# ---------------------------------------------------------------------------
class TestNormalStream:
    def test_first_positive_score_is_personal_best(self, ledger, db_engine, make_profile):
        pid = make_profile()
        result = ledger.record_normal(pid, "s1", _outcome(score=120))
        assert result.success
        assert result.is_personal_best is True
        assert load_profile(db_engine, pid).highest_score == 120

    def test_equal_score_is_not_personal_best(self, ledger, db_engine, make_profile):
        pid = make_profile(highest_score=500)
        result = ledger.record_normal(pid, "s1", _outcome(score=500))
        assert result.is_personal_best is False
        assert load_profile(db_engine, pid).highest_score == 500

    def test_lower_score_keeps_best(self, ledger, db_engine, make_profile):
        pid = make_profile()
        ledger.record_normal(pid, "s1", _outcome(score=900))
        result = ledger.record_normal(pid, "s2", _outcome(score=300))
        assert result.is_personal_best is False
        assert load_profile(db_engine, pid).highest_score == 900

    def test_lifetime_stats_accumulate(self, ledger, db_engine, make_profile):
        pid = make_profile()
        ledger.record_normal(pid, "s1", _outcome(score=10, kills=4, survival_time=61.9,
                                                 damage_dealt=100, damage_taken=20))
        ledger.record_normal(pid, "s2", _outcome(score=5, kills=1, survival_time=30.2,
                                                 damage_dealt=10, damage_taken=5))
        profile = load_profile(db_engine, pid)
        assert profile.games_played == 2
        assert profile.total_kills == 5
        assert profile.total_play_time == 91  # floor per session
        assert profile.total_damage_dealt == 110
        assert profile.total_damage_taken == 25
        assert profile.longest_survival_time == pytest.approx(61.9)

    def test_unknown_profile_fails_stream(self, ledger, db_engine):
        result = ledger.record_normal(404, "s1", _outcome(score=10))
        assert not result.success
        assert result.error is ErrorCode.NOT_FOUND
        assert not result.retryable
        assert _count(db_engine, NormalScore) == 0


# ---------------------------------------------------------------------------
# Accumulated streams
# ---------------------------------------------------------------------------
class TestAccumulatedStreams:
    def test_leaderboard_totals_accumulate(self, ledger, db_engine, make_profile):
        pid = make_profile()
        first = ledger.record_leaderboard_points(pid, "s1",
                                                 _outcome(leaderboard_points_earned=10))
        second = ledger.record_leaderboard_points(pid, "s2",
                                                  _outcome(leaderboard_points_earned=15))
        assert (first.new_total, second.new_total) == (10, 25)
        assert load_profile(db_engine, pid).current_leaderboard_points == 25

        with Session(db_engine) as session:
            totals = session.scalars(
                select(LeaderboardScore.total_accumulated_points).order_by(LeaderboardScore.id)
            ).all()
            rate = session.scalar(select(LeaderboardScore.earning_rate).limit(1))
        assert totals == [10, 25]
        assert rate == 2.0

    def test_skill_points_credit_lifetime_and_balance(self, ledger, db_engine, make_profile):
        pid = make_profile(skill_points=5)
        result = ledger.record_skill_points(pid, "s1", _outcome(skill_points_earned=7))
        assert result.new_total == 7
        profile = load_profile(db_engine, pid)
        assert profile.current_skill_points == 7
        assert profile.skill_points == 12

        with Session(db_engine) as session:
            record = session.scalar(select(SkillScore))
            assert record.points_available == 12
            assert record.earning_rate == 1.0

    def test_unknown_profile_fails_stream(self, ledger, db_engine):
        result = ledger.record_skill_points(404, "s1", _outcome(skill_points_earned=3))
        assert result.error is ErrorCode.NOT_FOUND
        assert _count(db_engine, SkillScore) == 0


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------
class TestIdempotency:
    def test_replayed_outcome_is_not_double_counted(self, ledger, db_engine, make_profile):
        pid = make_profile()
        outcome = _outcome(score=50, kills=2, leaderboard_points_earned=10,
                           skill_points_earned=4)
        ledger.record_session_outcome(pid, "s1", outcome)
        replay = ledger.record_session_outcome(pid, "s1", outcome)

        assert replay.all_succeeded
        assert all(r.duplicate for r in replay.streams.values())
        assert replay.streams[ScoreStream.LEADERBOARD_POINTS].new_total == 10
        profile = load_profile(db_engine, pid)
        assert profile.current_leaderboard_points == 10
        assert profile.current_skill_points == 4
        assert profile.games_played == 1
        assert _count(db_engine, NormalScore) == 1

    def test_duplicate_reports_stored_personal_best(self, ledger, make_profile):
        pid = make_profile()
        ledger.record_normal(pid, "s1", _outcome(score=10))
        again = ledger.record_normal(pid, "s1", _outcome(score=10))
        assert again.duplicate
        assert again.is_personal_best is True

    def test_score_records_are_immutable(self, ledger, db_engine, make_profile):
        pid = make_profile()
        ledger.record_normal(pid, "s1", _outcome(score=10))
        with Session(db_engine) as session:
            record = session.scalar(select(NormalScore))
            record.score = 9999
            with pytest.raises(ImmutableRecordError):
                session.flush()


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------
class TestRecordSessionOutcome:
    def test_all_streams_recorded(self, ledger, db_engine, make_profile):
        pid = make_profile()
        result = ledger.record_session_outcome(
            pid, "s1", _outcome(score=75, leaderboard_points_earned=8, skill_points_earned=3)
        )
        assert result.all_succeeded
        assert result.error is None
        assert set(result.streams) == set(ScoreStream)
        assert result.streams[ScoreStream.NORMAL].is_personal_best is True
        assert result.to_dict()["skill_points"]["new_total"] == 3

    def test_one_failed_stream_does_not_undo_the_others(self, ledger, db_engine,
                                                        make_profile, monkeypatch):
        pid = make_profile()
        monkeypatch.setattr(
            ledger, "record_skill_points",
            lambda *a: StreamResult.failed(ScoreStream.SKILL_POINTS,
                                           ErrorCode.PERSISTENCE_FAILURE, "down",
                                           retryable=True),
        )
        result = ledger.record_session_outcome(
            pid, "s1", _outcome(score=75, leaderboard_points_earned=8, skill_points_earned=3)
        )
        assert result.error is ErrorCode.PARTIAL_FAILURE
        assert result.failed_streams == [ScoreStream.SKILL_POINTS]
        assert load_profile(db_engine, pid).current_leaderboard_points == 8
        assert _count(db_engine, NormalScore) == 1

    def test_slow_stream_times_out_as_retryable(self, db_engine, locks):
        release = threading.Event()
        fast = StreamResult(stream=ScoreStream.NORMAL, success=True)

        with ScoreLedger(db_engine, locks=locks, max_workers=3, timeout=0.2) as ledger:
            ledger.record_normal = lambda *a: fast
            ledger.record_leaderboard_points = lambda *a: fast
            ledger.record_skill_points = lambda *a: release.wait(5) and fast

            result = ledger.record_session_outcome(1, "s1", _outcome())
            release.set()

        timed_out = result.streams[ScoreStream.SKILL_POINTS]
        assert not timed_out.success
        assert timed_out.retryable
        assert timed_out.error is ErrorCode.PERSISTENCE_FAILURE
        assert result.streams[ScoreStream.NORMAL].success

    def test_ledger_built_from_config(self, db_engine, test_config):
        ledger = ScoreLedger.from_config(db_engine, test_config)
        try:
            assert ledger.timeout == test_config.persistence_timeout_seconds
        finally:
            ledger.close()

    def test_is_personal_best_with_seeded_best(self, ledger, db_engine, make_profile):
        pid = make_profile()
        set_profile(db_engine, pid, highest_score=100)
        result = ledger.record_session_outcome(pid, "s1", _outcome(score=101))
        assert result.streams[ScoreStream.NORMAL].is_personal_best is True

    def test_stream_timed_out_in_queue_still_lands_once(self, db_engine, locks,
                                                        make_profile):
        pid = make_profile()
        release, landed = threading.Event(), threading.Event()

        with ScoreLedger(db_engine, locks=locks, max_workers=1, timeout=0.5) as ledger:
            real = ledger.record_leaderboard_points

            def queued_behind_other_work(*args):
                release.wait(5)
                try:
                    return real(*args)
                finally:
                    landed.set()

            ledger.record_leaderboard_points = queued_behind_other_work
            first = ledger.record_session_outcome(pid, "s1",
                                                  _outcome(leaderboard_points_earned=9))
            assert first.streams[ScoreStream.LEADERBOARD_POINTS].retryable

            release.set()
            assert landed.wait(5)
            del ledger.record_leaderboard_points

            retry = ledger.record_session_outcome(pid, "s1",
                                                  _outcome(leaderboard_points_earned=9))

        assert retry.all_succeeded
        assert retry.streams[ScoreStream.LEADERBOARD_POINTS].duplicate
        assert load_profile(db_engine, pid).current_leaderboard_points == 9
