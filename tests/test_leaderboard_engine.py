"""
tests/test_leaderboard_engine.py — Unit Tests for Rank Assignment
==================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from survivor.engine.leaderboard import (
    LeaderboardStream,
    ProfileCard,
    RankedRow,
    Timeframe,
    assign_ranks,
    clamp_limit,
    parse_stream,
    window_start,
)

T0 = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def cards() -> dict[int, ProfileCard]:
    return {i: ProfileCard(username=f"p{i}", level=i) for i in range(1, 10)}


class TestParseStream:
    @pytest.mark.parametrize(("raw", "expected"), [
        ("score", LeaderboardStream.SCORE),
        ("normal", LeaderboardStream.SCORE),
        ("scores", LeaderboardStream.SCORE),
        ("leaderboard", LeaderboardStream.LEADERBOARD_POINTS),
        ("leaderboard-points", LeaderboardStream.LEADERBOARD_POINTS),
        ("Survival", LeaderboardStream.SURVIVAL),
        ("skill_points", LeaderboardStream.SKILL),
    ])
    def test_names_and_aliases(self, raw, expected):
        assert parse_stream(raw) is expected

    def test_unknown_stream(self):
        with pytest.raises(ValueError):
            parse_stream("kills")


class TestWindows:
    def test_all_is_unbounded(self):
        assert window_start(Timeframe.ALL, T0) is None

    @pytest.mark.parametrize(("tf", "days"), [("daily", 1), ("weekly", 7), ("monthly", 30)])
    def test_rolling_windows(self, tf, days):
        now = datetime.now(UTC)
        assert window_start(tf, now) == now - timedelta(days=days)

    def test_unknown_timeframe(self):
        with pytest.raises(ValueError):
            window_start("yearly", T0)

    def test_clamp_limit(self):
        assert clamp_limit(500, 100) == 100
        assert clamp_limit(0, 100) == 1
        assert clamp_limit(25, 100) == 25


class TestAssignRanks:
    def test_strictly_descending_with_consecutive_ranks(self, cards):
        rows = [RankedRow(i, metric_value=m, achieved_at=T0, row_id=i)
                for i, m in [(1, 10), (2, 50), (3, 30)]]
        entries = assign_ranks(rows, cards, limit=10)
        assert [e.metric_value for e in entries] == [50, 30, 10]
        assert [e.rank for e in entries] == [1, 2, 3]
        assert entries[0].username == "p2"

    def test_tie_broken_by_earlier_timestamp(self, cards):
        rows = [
            RankedRow(1, 100, T0 + timedelta(minutes=5), row_id=1),
            RankedRow(2, 100, T0, row_id=2),
        ]
        entries = assign_ranks(rows, cards, limit=10)
        assert [e.profile_id for e in entries] == [2, 1]
        assert [e.rank for e in entries] == [1, 2]

    def test_tie_broken_by_lower_id_when_same_time(self, cards):
        rows = [RankedRow(3, 100, T0, row_id=9), RankedRow(4, 100, T0, row_id=4)]
        entries = assign_ranks(rows, cards, limit=10)
        assert [e.profile_id for e in entries] == [4, 3]

    def test_limit_truncates(self, cards):
        rows = [RankedRow(i, i * 10, T0, row_id=i) for i in range(1, 9)]
        entries = assign_ranks(rows, cards, limit=5)
        assert len(entries) == 5
        assert [e.rank for e in entries] == [1, 2, 3, 4, 5]

    def test_unknown_profiles_leave_no_gaps(self, cards):
        rows = [RankedRow(99, 500, T0, row_id=1), RankedRow(1, 10, T0, row_id=2)]
        entries = assign_ranks(rows, cards, limit=10)
        assert [(e.rank, e.profile_id) for e in entries] == [(1, 1)]

    def test_session_id_only_in_per_session_entries(self, cards):
        entries = assign_ranks([RankedRow(1, 5, T0, row_id=1, session_id="s-1")], cards, 1)
        assert entries[0].to_dict()["session_id"] == "s-1"
        entries = assign_ranks([RankedRow(1, 5, T0, row_id=1)], cards, 1)
        assert "session_id" not in entries[0].to_dict()
