"""
survivor.services.profile_service — Profile Creation & Read Models
===================================================================

Profiles are owned by the surrounding account system; this module only
creates bare progression rows (seeding, tests) and serves the read
models the game client loads on its home screen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survivor.constants import STARTING_COINS, STARTING_LEVEL
from survivor.database.engine import storage_boundary
from survivor.database.models import Profile
from survivor.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProfileStats:
    """Everything the client needs to render a player's progression."""

    profile_id: int
    username: str
    avatar: str | None
    level: int
    experience: int
    coins: int
    skill_points: int
    current_leaderboard_points: int
    current_skill_points: int
    highest_score: int
    longest_survival_time: float
    games_played: int
    total_kills: int
    total_play_time: int
    total_damage_dealt: int
    total_damage_taken: int

    @classmethod
    def from_model(cls, p: Profile) -> ProfileStats:
        return cls(
            profile_id=p.id,
            username=p.username,
            avatar=p.avatar,
            level=p.level,
            experience=p.experience,
            coins=p.coins,
            skill_points=p.skill_points,
            current_leaderboard_points=p.current_leaderboard_points,
            current_skill_points=p.current_skill_points,
            highest_score=p.highest_score,
            longest_survival_time=p.longest_survival_time,
            games_played=p.games_played,
            total_kills=p.total_kills,
            total_play_time=p.total_play_time,
            total_damage_dealt=p.total_damage_dealt,
            total_damage_taken=p.total_damage_taken,
        )


@dataclass(frozen=True, slots=True)
class CurrentTotals:
    profile_id: int
    leaderboard_points: int
    skill_points: int  # lifetime earned
    highest_score: int


def create_profile(engine: Engine, username: str, avatar: str | None = None) -> int:
    """Insert a fresh profile and return its id.

    Raises
    ------
    ValueError
        If *username* is taken.
    """
    with storage_boundary("create profile"), Session(engine) as session:
        profile = Profile(
            username=username,
            avatar=avatar,
            level=STARTING_LEVEL,
            coins=STARTING_COINS,
        )
        session.add(profile)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ValueError(f"Username {username!r} is already taken") from None
        logger.info("Created profile %d (%s)", profile.id, username)
        return profile.id


def get_profile_stats(engine: Engine, profile_id: int) -> ProfileStats:
    """Raises :class:`NotFoundError` for an unknown profile."""
    with storage_boundary("load profile stats"), Session(engine) as session:
        profile = session.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError("profile", profile_id)
        return ProfileStats.from_model(profile)


def get_current_totals(engine: Engine, profile_id: int) -> CurrentTotals:
    """Running ledger totals for one profile."""
    stats = get_profile_stats(engine, profile_id)
    return CurrentTotals(
        profile_id=stats.profile_id,
        leaderboard_points=stats.current_leaderboard_points,
        skill_points=stats.current_skill_points,
        highest_score=stats.highest_score,
    )
