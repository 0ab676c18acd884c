"""
tests/test_profile_service.py — Integration Tests for Profile Read Models
==========================================================================
"""

from __future__ import annotations

import pytest

from survivor.constants import STARTING_COINS
from survivor.engine.session import SessionCounters, SessionOutcome
from survivor.errors import NotFoundError
from survivor.services import profile_service


class TestCreateProfile:
    def test_starting_values(self, db_engine):
        pid = profile_service.create_profile(db_engine, "alice", avatar="fox.png")
        stats = profile_service.get_profile_stats(db_engine, pid)
        assert stats.username == "alice"
        assert stats.avatar == "fox.png"
        assert stats.level == 1
        assert stats.coins == STARTING_COINS
        assert stats.skill_points == 0
        assert stats.games_played == 0

    def test_duplicate_username(self, db_engine):
        profile_service.create_profile(db_engine, "alice")
        with pytest.raises(ValueError, match="already taken"):
            profile_service.create_profile(db_engine, "alice")


class TestReadModels:
    def test_unknown_profile(self, db_engine):
        with pytest.raises(NotFoundError):
            profile_service.get_profile_stats(db_engine, 404)
        with pytest.raises(NotFoundError):
            profile_service.get_current_totals(db_engine, 404)

    def test_totals_follow_the_ledger(self, db_engine, ledger, make_profile):
        pid = make_profile(skill_points=40)
        ledger.record_session_outcome(pid, "s1", SessionOutcome(SessionCounters(
            score=250, leaderboard_points_earned=6, skill_points_earned=3,
        )))

        totals = profile_service.get_current_totals(db_engine, pid)
        assert totals.leaderboard_points == 6
        assert totals.skill_points == 3  # lifetime, not the spendable balance
        assert totals.highest_score == 250
        assert profile_service.get_profile_stats(db_engine, pid).skill_points == 43
