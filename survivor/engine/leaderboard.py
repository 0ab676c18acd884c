"""
survivor.engine.leaderboard — Stream Registry, Windows & Rank Assignment
=========================================================================

Pure ranking rules shared by every leaderboard view:

* metric strictly descending;
* ties broken by the earlier timestamp, then the lower row id;
* ranks are 1-based output positions, so equal metrics still receive
  consecutive ranks.

Queries live in :mod:`survivor.services.leaderboard_service`.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from survivor.constants import TIMEFRAME_WINDOWS


class LeaderboardStream(enum.StrEnum):
    """Rankable metrics."""
    SCORE = "score"                            # normal_scores.score, per session
    LEADERBOARD_POINTS = "leaderboard_points"  # leaderboard_scores, per profile
    SURVIVAL = "survival"                      # longest survival, per profile
    SKILL = "skill"                            # skill_scores, per profile


class Timeframe(enum.StrEnum):
    ALL = "all"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Names the game client has historically sent for the three ledgers
STREAM_ALIASES: dict[str, LeaderboardStream] = {
    "normal": LeaderboardStream.SCORE,
    "scores": LeaderboardStream.SCORE,
    "leaderboard": LeaderboardStream.LEADERBOARD_POINTS,
    "leaderboard-points": LeaderboardStream.LEADERBOARD_POINTS,
    "skill_points": LeaderboardStream.SKILL,
}

STREAM_TITLES: dict[LeaderboardStream, tuple[str, str]] = {
    LeaderboardStream.SCORE: (
        "Game Scores", "Highest individual game session scores",
    ),
    LeaderboardStream.LEADERBOARD_POINTS: (
        "Leaderboard Points", "Players ranked by accumulated leaderboard points",
    ),
    LeaderboardStream.SURVIVAL: (
        "Survival Time", "Longest survival times in seconds",
    ),
    LeaderboardStream.SKILL: (
        "Skill Points", "Players ranked by accumulated skill points",
    ),
}


def parse_stream(value: str) -> LeaderboardStream:
    """Resolve a stream name or alias.  Raises ValueError if unknown."""
    key = value.strip().lower()
    if key in STREAM_ALIASES:
        return STREAM_ALIASES[key]
    return LeaderboardStream(key)


def window_start(timeframe: Timeframe | str, now: datetime) -> datetime | None:
    """Earliest record time included by *timeframe*; None means unbounded."""
    window = TIMEFRAME_WINDOWS[Timeframe(timeframe).value]
    return None if window is None else now - window


def clamp_limit(limit: int, max_limit: int) -> int:
    return max(1, min(int(limit), max_limit))


# ---------------------------------------------------------------------------
# Rows & entries
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RankedRow:
    """One candidate row before ranking."""

    profile_id: int
    metric_value: float
    achieved_at: datetime | None
    row_id: int | str
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class ProfileCard:
    username: str
    level: int
    avatar: str | None = None


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    profile_id: int
    username: str
    level: int
    avatar: str | None
    metric_value: float
    session_id: str | None = None

    def to_dict(self) -> dict:
        out = {
            "rank": self.rank,
            "profile_id": self.profile_id,
            "username": self.username,
            "level": self.level,
            "avatar": self.avatar,
            "metric_value": self.metric_value,
        }
        if self.session_id is not None:
            out["session_id"] = self.session_id
        return out


def sort_key(row: RankedRow) -> tuple:
    # Rows without a timestamp sort after timestamped ties.
    return (
        -row.metric_value,
        row.achieved_at is None,
        row.achieved_at or datetime.min,
        str(row.row_id) if isinstance(row.row_id, str) else row.row_id,
    )


def assign_ranks(
    rows: Iterable[RankedRow],
    profiles: Mapping[int, ProfileCard],
    limit: int,
) -> list[LeaderboardEntry]:
    """Order *rows*, truncate to *limit*, and number them 1..k.

    Rows whose profile is missing from *profiles* are dropped before
    numbering so ranks never have gaps.
    """
    entries: list[LeaderboardEntry] = []
    for row in sorted(rows, key=sort_key):
        card = profiles.get(row.profile_id)
        if card is None:
            continue
        entries.append(LeaderboardEntry(
            rank=len(entries) + 1,
            profile_id=row.profile_id,
            username=card.username,
            level=card.level,
            avatar=card.avatar,
            metric_value=row.metric_value,
            session_id=row.session_id,
        ))
        if len(entries) >= limit:
            break
    return entries
