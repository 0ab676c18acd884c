"""
survivor.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- profiles                — Player progression identity + running totals
- game_sessions           — One play attempt each
- game_progress_snapshots — Append-only audit trail of progress reports
- normal_scores           — Raw session outcome per completed session
- leaderboard_scores      — Leaderboard points earned per completed session
- skill_scores            — Skill points earned per completed session
- skills                  — Skill catalog
- skill_effects           — Per-skill stat effects
- skill_prerequisites     — Directed prerequisite edges between skills
- user_skills             — Learned skill levels per profile

The three ``*_scores`` tables are immutable ledgers keyed by ``session_id``;
the unique index doubles as the idempotency key for retried writes.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Survivor ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    """Lifecycle states of a GameSession.  COMPLETED is terminal."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ScoreStream(enum.StrEnum):
    """The three independent ledgers written when a session ends."""
    NORMAL = "normal"
    LEADERBOARD_POINTS = "leaderboard_points"
    SKILL_POINTS = "skill_points"


# ---------------------------------------------------------------------------
# Profiles — one row per player
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    avatar: Mapped[str | None] = mapped_column(String(200), default=None)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coins: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    # Spendable balance (debited by skill upgrades)
    skill_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Running totals maintained by the score ledger
    current_leaderboard_points: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_skill_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    highest_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lifetime stats
    longest_survival_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    games_played: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_kills: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_play_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_damage_dealt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_damage_taken: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    sessions: Mapped[list[GameSession]] = relationship(back_populates="profile")
    skills: Mapped[list[UserSkill]] = relationship(back_populates="profile")

    __table_args__ = (
        Index("ix_profiles_highest_score", "highest_score"),
        Index("ix_profiles_longest_survival", "longest_survival_time"),
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} name={self.username!r} lvl={self.level}>"


# ---------------------------------------------------------------------------
# GameSession — one play attempt
# ---------------------------------------------------------------------------
class GameSession(Base):
    __tablename__ = "game_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    game_mode: Mapped[str] = mapped_column(String(30), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.IN_PROGRESS.value
    )

    # Live counters (overwritten by each progress report)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    survival_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    kills: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    enemies_spawned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    damage_dealt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    damage_taken: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wave_reached: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    leaderboard_points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skill_points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    end_reason: Mapped[str | None] = mapped_column(String(50), default=None)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    profile: Mapped[Profile] = relationship(back_populates="sessions")

    __table_args__ = (
        Index("ix_game_sessions_profile_status", "profile_id", "status", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<GameSession id={self.id} profile={self.profile_id} status={self.status}>"


# ---------------------------------------------------------------------------
# ProgressSnapshot — append-only audit trail
# ---------------------------------------------------------------------------
class ProgressSnapshot(Base):
    """Counters reported mid-session.  Written for analytics, never read
    back by the core."""
    __tablename__ = "game_progress_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False
    )
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, default=0)
    leaderboard_points: Mapped[int] = mapped_column(Integer, default=0)
    skill_points: Mapped[int] = mapped_column(Integer, default=0)
    survival_time: Mapped[float] = mapped_column(Float, default=0.0)
    kills: Mapped[int] = mapped_column(Integer, default=0)
    enemies_spawned: Mapped[int] = mapped_column(Integer, default=0)
    damage_dealt: Mapped[int] = mapped_column(Integer, default=0)
    damage_taken: Mapped[int] = mapped_column(Integer, default=0)
    wave_reached: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_progress_snapshots_session_time", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ProgressSnapshot id={self.id} session={self.session_id}>"


# ---------------------------------------------------------------------------
# NormalScore — raw session outcome
# ---------------------------------------------------------------------------
class NormalScore(Base):
    __tablename__ = "normal_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    survival_time: Mapped[float] = mapped_column(Float, default=0.0)
    kills: Mapped[int] = mapped_column(Integer, default=0)
    enemies_spawned: Mapped[int] = mapped_column(Integer, default=0)
    damage_dealt: Mapped[int] = mapped_column(Integer, default=0)
    damage_taken: Mapped[int] = mapped_column(Integer, default=0)
    wave_reached: Mapped[int] = mapped_column(Integer, default=0)
    is_personal_best: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_normal_scores_score", "score"),
        Index("ix_normal_scores_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<NormalScore id={self.id} profile={self.profile_id} score={self.score}>"


# ---------------------------------------------------------------------------
# LeaderboardScore — accumulated leaderboard points
# ---------------------------------------------------------------------------
class LeaderboardScore(Base):
    __tablename__ = "leaderboard_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    points_earned_this_session: Mapped[int] = mapped_column(Integer, nullable=False)
    total_accumulated_points: Mapped[int] = mapped_column(Integer, nullable=False)
    survival_time: Mapped[float] = mapped_column(Float, default=0.0)
    earning_rate: Mapped[float] = mapped_column(Float, nullable=False)
    session_start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    session_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_leaderboard_scores_profile_total", "profile_id", "total_accumulated_points"),
        Index("ix_leaderboard_scores_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LeaderboardScore id={self.id} profile={self.profile_id} "
            f"total={self.total_accumulated_points}>"
        )


# ---------------------------------------------------------------------------
# SkillScore — accumulated skill points
# ---------------------------------------------------------------------------
class SkillScore(Base):
    __tablename__ = "skill_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    points_earned_this_session: Mapped[int] = mapped_column(Integer, nullable=False)
    total_accumulated_points: Mapped[int] = mapped_column(Integer, nullable=False)
    points_available: Mapped[int] = mapped_column(Integer, nullable=False)
    survival_time: Mapped[float] = mapped_column(Float, default=0.0)
    earning_rate: Mapped[float] = mapped_column(Float, nullable=False)
    session_start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    session_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_skill_scores_profile_total", "profile_id", "total_accumulated_points"),
        Index("ix_skill_scores_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SkillScore id={self.id} profile={self.profile_id} "
            f"total={self.total_accumulated_points}>"
        )


class ImmutableRecordError(RuntimeError):
    """Raised when code attempts to update or delete a score record."""


def _reject_mutation(mapper, connection, target) -> None:
    raise ImmutableRecordError(
        f"{type(target).__name__} rows are append-only (id={target.id})"
    )


for _record_cls in (NormalScore, LeaderboardScore, SkillScore):
    event.listen(_record_cls, "before_update", _reject_mutation)
    event.listen(_record_cls, "before_delete", _reject_mutation)


# ---------------------------------------------------------------------------
# Skill — catalog entry
# ---------------------------------------------------------------------------
class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    skill_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="general")
    icon: Mapped[str | None] = mapped_column(String(100), default=None)
    max_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cost_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.5)
    unlock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    effects: Mapped[list[SkillEffect]] = relationship(
        back_populates="skill", cascade="all, delete-orphan"
    )
    prerequisites: Mapped[list[SkillPrerequisite]] = relationship(
        back_populates="skill",
        cascade="all, delete-orphan",
        foreign_keys="SkillPrerequisite.skill_id",
    )

    def __repr__(self) -> str:
        return f"<Skill id={self.id} skill_id={self.skill_id!r} max={self.max_level}>"


class SkillEffect(Base):
    __tablename__ = "skill_effects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False
    )
    effect_type: Mapped[str] = mapped_column(String(50), nullable=False)
    base_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    per_level_increase: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_percentage: Mapped[bool] = mapped_column(Boolean, default=False)

    skill: Mapped[Skill] = relationship(back_populates="effects")

    def __repr__(self) -> str:
        return f"<SkillEffect skill={self.skill_id} type={self.effect_type!r}>"


class SkillPrerequisite(Base):
    __tablename__ = "skill_prerequisites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False
    )
    required_skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False
    )
    required_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    skill: Mapped[Skill] = relationship(
        back_populates="prerequisites", foreign_keys=[skill_id]
    )
    required_skill: Mapped[Skill] = relationship(foreign_keys=[required_skill_id])

    __table_args__ = (
        UniqueConstraint("skill_id", "required_skill_id", name="uq_skill_prereq_pair"),
    )

    def __repr__(self) -> str:
        return (
            f"<SkillPrerequisite skill={self.skill_id} "
            f"requires={self.required_skill_id}@{self.required_level}>"
        )


# ---------------------------------------------------------------------------
# UserSkill — learned levels per profile
# ---------------------------------------------------------------------------
class UserSkill(Base):
    __tablename__ = "user_skills"

    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    profile: Mapped[Profile] = relationship(back_populates="skills")
    skill: Mapped[Skill] = relationship()

    def __repr__(self) -> str:
        return f"<UserSkill profile={self.profile_id} skill={self.skill_id} lvl={self.level}>"
