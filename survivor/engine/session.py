"""
survivor.engine.session — Session Counters & Lifecycle Transitions
===================================================================

A play session moves ``in_progress → completed`` and never back.
Progress reports and the final report both carry a *full* snapshot of
the session's counters; nothing here is additive.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import TYPE_CHECKING, Any

from survivor.database.models import SessionStatus

if TYPE_CHECKING:
    from survivor.database.models import GameSession

# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),  # terminal
}


def can_transition(current: str, target: str) -> bool:
    return SessionStatus(target) in ALLOWED_TRANSITIONS[SessionStatus(current)]


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------
FRACTIONAL_COUNTERS = frozenset({"survival_time"})


def _whole(name: str, raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    number = float(raw)
    if not number.is_integer():
        raise ValueError(f"{name} must be a whole number, got {raw!r}")
    return int(number)


@dataclass(frozen=True, slots=True)
class SessionCounters:
    """Full snapshot of a session's live counters.

    Missing values default to zero.  Every counter must be a finite,
    non-negative number, and all but ``survival_time`` whole.

    Raises
    ------
    ValueError
        On construction with a negative, non-finite or fractional count.
    """

    score: int = 0
    survival_time: float = 0.0
    kills: int = 0
    enemies_spawned: int = 0
    damage_dealt: int = 0
    damage_taken: int = 0
    wave_reached: int = 0
    leaderboard_points_earned: int = 0
    skill_points_earned: int = 0

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{f.name} must be a number, got {value!r}")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{f.name} must be non-negative, got {value!r}")
            if f.name not in FRACTIONAL_COUNTERS and value != int(value):
                raise ValueError(f"{f.name} must be a whole number, got {value!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> SessionCounters:
        """Build counters from a loose mapping; ``None`` and absent keys → 0.

        Unknown keys are ignored.  Numeric strings are accepted; a
        fractional value for a whole-number counter is rejected, never
        truncated.
        """
        data = data or {}
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if raw is None:
                continue
            values[f.name] = float(raw) if f.name in FRACTIONAL_COUNTERS else _whole(f.name, raw)
        return cls(**values)

    @classmethod
    def from_session(cls, session: GameSession) -> SessionCounters:
        return cls(**{f.name: getattr(session, f.name) for f in fields(cls)})

    def as_columns(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Outcome — what the score ledger consumes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SessionOutcome:
    """Final counters of a completed session plus its time bounds."""

    counters: SessionCounters
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def score(self) -> int:
        return self.counters.score

    @property
    def survival_time(self) -> float:
        return self.counters.survival_time

    @property
    def leaderboard_points(self) -> int:
        return self.counters.leaderboard_points_earned

    @property
    def skill_points(self) -> int:
        return self.counters.skill_points_earned
