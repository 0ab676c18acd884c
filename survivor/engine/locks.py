"""
survivor.engine.locks — Per-Profile Write Serialization
========================================================

Every mutation of a profile's running totals is already an atomic SQL
expression; these locks additionally serialize in-process writers that
touch the same ``(profile_id, field)`` pair, so a session end and a skill
upgrade for one profile never interleave their read-modify-write steps.

Writers touching *different* fields of the same profile (e.g. the three
ledger streams of one session) proceed in parallel.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from survivor.errors import PersistenceError

logger = logging.getLogger(__name__)

# Lock names for the profile columns written by the core
HIGHEST_SCORE = "highest_score"
LIFETIME_STATS = "lifetime_stats"
LEADERBOARD_POINTS = "current_leaderboard_points"
SKILL_POINTS_TOTAL = "current_skill_points"
SKILL_POINTS_BALANCE = "skill_points"


class _LockEntry:
    """A lock plus the number of writers holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ProfileLocks:
    """Registry of :class:`threading.Lock` objects keyed by (profile, field).

    A lock is created when the first writer asks for it and dropped when
    the last writer holding or waiting on it lets go, so the registry only
    ever holds pairs that are in use.  Multiple fields are always acquired
    in sorted order so two writers can never deadlock on each other.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._registry_lock = threading.Lock()
        self._locks: dict[tuple[int, str], _LockEntry] = {}

    def _checkout(self, key: tuple[int, str]) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _LockEntry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: tuple[int, str]) -> None:
        with self._registry_lock:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, profile_id: int, *fields: str) -> Iterator[None]:
        """Hold the locks for *fields* of *profile_id* for the block.

        Raises
        ------
        PersistenceError
            (retryable) if a lock can't be acquired within ``timeout``.
        """
        acquired: list[tuple[tuple[int, str], threading.Lock]] = []
        try:
            for field in sorted(set(fields)):
                key = (profile_id, field)
                lock = self._checkout(key)
                if not lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    logger.warning(
                        "Timed out waiting for profile %d lock %r", profile_id, field
                    )
                    raise PersistenceError(
                        f"Profile {profile_id} is busy ({field}); retry shortly",
                        retryable=True,
                    )
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


# Module-level default used when a caller doesn't wire its own registry
_default_locks: ProfileLocks | None = None
_default_guard = threading.Lock()


def get_default_locks() -> ProfileLocks:
    global _default_locks
    with _default_guard:
        if _default_locks is None:
            _default_locks = ProfileLocks()
        return _default_locks
