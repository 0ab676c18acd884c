"""
tests/test_locks.py — Unit Tests for Per-Profile Write Locks
=============================================================
"""

from __future__ import annotations

import threading
import time

import pytest

from survivor.engine.locks import (
    HIGHEST_SCORE,
    LEADERBOARD_POINTS,
    SKILL_POINTS_BALANCE,
    ProfileLocks,
    get_default_locks,
)
from survivor.errors import ErrorCode, PersistenceError


class TestProfileLocks:
    def test_same_field_is_serialized(self):
        locks = ProfileLocks(timeout=0.1)
        with locks.hold(1, SKILL_POINTS_BALANCE):
            errors: list[PersistenceError] = []

            def contender():
                try:
                    with locks.hold(1, SKILL_POINTS_BALANCE):
                        pass
                except PersistenceError as exc:
                    errors.append(exc)

            t = threading.Thread(target=contender)
            t.start()
            t.join()
        assert len(errors) == 1
        assert errors[0].retryable
        assert errors[0].code is ErrorCode.PERSISTENCE_FAILURE

    def test_different_fields_do_not_block(self):
        locks = ProfileLocks(timeout=0.1)
        with locks.hold(1, HIGHEST_SCORE):
            with locks.hold(1, LEADERBOARD_POINTS):
                pass

    def test_different_profiles_do_not_block(self):
        locks = ProfileLocks(timeout=0.1)
        with locks.hold(1, SKILL_POINTS_BALANCE):
            with locks.hold(2, SKILL_POINTS_BALANCE):
                pass

    def test_released_after_exception(self):
        locks = ProfileLocks(timeout=0.1)
        with pytest.raises(RuntimeError):
            with locks.hold(1, HIGHEST_SCORE):
                raise RuntimeError("boom")
        with locks.hold(1, HIGHEST_SCORE):
            pass

    def test_opposite_order_requests_do_not_deadlock(self):
        locks = ProfileLocks(timeout=2.0)
        done = []

        def worker(fields):
            for _ in range(50):
                with locks.hold(7, *fields):
                    time.sleep(0)
            done.append(fields)

        a = threading.Thread(target=worker, args=((HIGHEST_SCORE, LEADERBOARD_POINTS),))
        b = threading.Thread(target=worker, args=((LEADERBOARD_POINTS, HIGHEST_SCORE),))
        a.start()
        b.start()
        a.join()
        b.join()
        assert len(done) == 2

    def test_registry_tracks_only_pairs_in_use(self):
        locks = ProfileLocks()
        with locks.hold(1, HIGHEST_SCORE, LEADERBOARD_POINTS):
            assert len(locks) == 2
        assert len(locks) == 0

    def test_registry_does_not_grow_with_profiles(self):
        locks = ProfileLocks()
        for profile_id in range(2000):
            with locks.hold(profile_id, HIGHEST_SCORE, SKILL_POINTS_BALANCE):
                pass
        assert len(locks) == 0

    def test_timed_out_waiter_leaves_no_entry_behind(self):
        locks = ProfileLocks(timeout=0.05)
        with locks.hold(1, SKILL_POINTS_BALANCE):
            with pytest.raises(PersistenceError):
                with locks.hold(1, SKILL_POINTS_BALANCE, HIGHEST_SCORE):
                    pass
            assert len(locks) == 1
        assert len(locks) == 0

    def test_lock_survives_while_a_waiter_queues(self):
        locks = ProfileLocks(timeout=2.0)
        entered = threading.Event()

        def waiter():
            with locks.hold(3, HIGHEST_SCORE):
                entered.set()

        with locks.hold(3, HIGHEST_SCORE):
            t = threading.Thread(target=waiter)
            t.start()
            time.sleep(0.05)
            assert not entered.is_set()
        t.join()
        assert entered.is_set()
        assert len(locks) == 0

    def test_default_registry_is_shared(self):
        assert get_default_locks() is get_default_locks()
