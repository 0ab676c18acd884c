"""
tests/test_leaderboard_service.py — Integration Tests for Leaderboard Queries
==============================================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from survivor.database.models import LeaderboardScore, NormalScore, SkillScore, utcnow
from survivor.engine.session import SessionCounters, SessionOutcome
from survivor.services import leaderboard_service


def _finish(ledger, profile_id: int, session_id: str, **counters) -> None:
    ledger.record_session_outcome(profile_id, session_id,
                                  SessionOutcome(SessionCounters(**counters)))


def _add(engine, *records) -> None:
    with Session(engine) as session:
        session.add_all(records)
        session.commit()


@pytest.fixture
def players(make_profile):
    return [make_profile(f"p{i}", level=i) for i in range(1, 5)]


class TestScoreBoard:
    def test_top_five_strictly_descending(self, db_engine, ledger, players):
        scores = [120, 900, 450, 300, 50, 700, 610]
        for i, score in enumerate(scores):
            _finish(ledger, players[i % len(players)], f"s{i}", score=score)

        entries = leaderboard_service.rank(db_engine, "score", 5, "all")

        assert len(entries) == 5
        assert [e.metric_value for e in entries] == [900, 700, 610, 450, 300]
        assert [e.rank for e in entries] == [1, 2, 3, 4, 5]
        assert all(e.session_id for e in entries)

    def test_entries_carry_profile_card(self, db_engine, ledger, players):
        _finish(ledger, players[2], "s1", score=10)
        [entry] = leaderboard_service.rank(db_engine, "score", 10)
        assert (entry.username, entry.level) == ("p3", 3)

    def test_equal_scores_get_consecutive_ranks(self, db_engine, players):
        now = utcnow()
        _add(db_engine,
             NormalScore(profile_id=players[0], session_id="late", score=100,
                         created_at=now - timedelta(minutes=1)),
             NormalScore(profile_id=players[1], session_id="early", score=100,
                         created_at=now - timedelta(minutes=5)))
        entries = leaderboard_service.rank(db_engine, "score", 10)
        assert [(e.rank, e.session_id) for e in entries] == [(1, "early"), (2, "late")]

    def test_limit_clamped_to_maximum(self, db_engine, ledger, players):
        for i in range(6):
            _finish(ledger, players[0], f"s{i}", score=i)
        assert len(leaderboard_service.rank(db_engine, "score", 500, max_limit=3)) == 3

    def test_daily_window_excludes_old_records(self, db_engine, players):
        now = utcnow()
        _add(db_engine,
             NormalScore(profile_id=players[0], session_id="old", score=999,
                         created_at=now - timedelta(days=3)),
             NormalScore(profile_id=players[1], session_id="new", score=10,
                         created_at=now - timedelta(hours=1)))
        daily = leaderboard_service.rank(db_engine, "score", 10, "daily", now=now)
        weekly = leaderboard_service.rank(db_engine, "score", 10, "weekly", now=now)
        assert [e.session_id for e in daily] == ["new"]
        assert [e.session_id for e in weekly] == ["old", "new"]
        assert leaderboard_service.recent(db_engine, 10, now=now) == daily

    def test_unknown_stream(self, db_engine):
        with pytest.raises(ValueError):
            leaderboard_service.rank(db_engine, "kills", 10)


class TestAccumulatedBoards:
    def test_all_time_uses_running_total(self, db_engine, ledger, players):
        _finish(ledger, players[0], "a1", leaderboard_points_earned=10)
        _finish(ledger, players[0], "a2", leaderboard_points_earned=15)
        _finish(ledger, players[1], "b1", leaderboard_points_earned=20)

        entries = leaderboard_service.rank(db_engine, "leaderboard_points", 10)
        assert [(e.profile_id, e.metric_value) for e in entries] == [
            (players[0], 25), (players[1], 20),
        ]

    def test_window_sums_points_inside_window(self, db_engine, players):
        now = utcnow()

        def record(pid, sid, earned, total, age):
            return LeaderboardScore(profile_id=pid, session_id=sid,
                                    points_earned_this_session=earned,
                                    total_accumulated_points=total, earning_rate=2.0,
                                    created_at=now - age)

        _add(db_engine,
             record(players[0], "a1", 100, 100, timedelta(days=20)),
             record(players[0], "a2", 5, 105, timedelta(days=2)),
             record(players[1], "b1", 30, 30, timedelta(days=1)))

        weekly = leaderboard_service.rank(db_engine, "leaderboard_points", 10, "weekly", now=now)
        monthly = leaderboard_service.rank(db_engine, "leaderboard_points", 10, "monthly",
                                           now=now)
        assert [(e.profile_id, e.metric_value) for e in weekly] == [
            (players[1], 30), (players[0], 5),
        ]
        assert monthly[0].metric_value == 105

    def test_skill_board(self, db_engine, ledger, players):
        _finish(ledger, players[3], "d1", skill_points_earned=9)
        _finish(ledger, players[2], "c1", skill_points_earned=4)
        entries = leaderboard_service.rank(db_engine, "skill", 10)
        assert [e.profile_id for e in entries] == [players[3], players[2]]

    def test_one_entry_per_profile(self, db_engine, players):
        _add(db_engine, *[
            SkillScore(profile_id=players[0], session_id=f"s{i}", points_earned_this_session=1,
                       total_accumulated_points=i + 1, points_available=i + 1,
                       earning_rate=1.0)
            for i in range(4)
        ])
        entries = leaderboard_service.rank(db_engine, "skill", 10)
        assert len(entries) == 1
        assert entries[0].metric_value == 4


class TestSurvivalBoard:
    def test_all_time_reads_longest_survival(self, db_engine, ledger, players):
        _finish(ledger, players[0], "a1", survival_time=120.5)
        _finish(ledger, players[0], "a2", survival_time=60.0)
        _finish(ledger, players[1], "b1", survival_time=300.0)

        entries = leaderboard_service.rank(db_engine, "survival", 10)
        assert [(e.profile_id, e.metric_value) for e in entries] == [
            (players[1], 300.0), (players[0], 120.5),
        ]

    def test_window_uses_best_recent_session(self, db_engine, players):
        now = utcnow()
        _add(db_engine,
             NormalScore(profile_id=players[0], session_id="old", score=1, survival_time=500.0,
                         created_at=now - timedelta(days=10)),
             NormalScore(profile_id=players[0], session_id="new", score=1, survival_time=40.0,
                         created_at=now - timedelta(hours=2)))
        [entry] = leaderboard_service.rank(db_engine, "survival", 10, "daily", now=now)
        assert entry.metric_value == 40.0


class TestRankAll:
    def test_dashboard_boards(self, db_engine, ledger, players):
        _finish(ledger, players[0], "a1", score=10, survival_time=5.0,
                leaderboard_points_earned=3)
        boards = leaderboard_service.rank_all(db_engine, limit=3)
        assert set(boards) == {"score", "leaderboard_points", "survival"}
        assert all(len(rows) == 1 for rows in boards.values())
