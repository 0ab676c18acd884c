"""
survivor.services.skill_service — Skill Catalog Views & Upgrades
=================================================================

Read models over the in-memory :class:`~survivor.engine.skills.SkillGraph`
plus the one write path that spends skill points.

An upgrade re-validates every precondition against freshly read state,
then applies two guarded statements in one transaction:

* ``skill_points = skill_points - :cost WHERE skill_points >= :cost``
* ``level = level + 1 WHERE level = :expected`` (or insert level 1)

If either guard misses, the transaction is rolled back and the caller
gets ``INVALID_UPGRADE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from survivor.database.engine import storage_boundary
from survivor.database.models import Profile, Skill, UserSkill
from survivor.engine import locks as lock_fields
from survivor.engine.locks import ProfileLocks, get_default_locks
from survivor.engine.skills import (
    PrerequisiteEdge,
    ProfileStanding,
    SkillGraph,
    SkillNode,
    UpgradeBlocker,
    UpgradeCheck,
)
from survivor.errors import ErrorCode, InvalidUpgradeError, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Reported when another writer changed the skill level mid-upgrade
STALE_LEVEL = "skill_level_changed"


# ---------------------------------------------------------------------------
# View models
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EffectValue:
    effect_type: str
    is_percentage: bool
    current_value: float
    next_value: float | None  # None once the skill is maxed


@dataclass
class SkillView:
    """A catalog entry, optionally annotated with one profile's progress."""

    skill_id: str
    name: str
    description: str | None
    category: str
    icon: str | None
    max_level: int
    unlock_level: int
    base_cost: int
    cost_multiplier: float
    prerequisites: list[PrerequisiteEdge]
    effects: list[EffectValue]
    current_level: int = 0
    can_upgrade: bool = False
    next_cost: int | None = None
    is_max_level: bool = False
    blockers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "max_level": self.max_level,
            "unlock_level": self.unlock_level,
            "base_cost": self.base_cost,
            "cost_multiplier": self.cost_multiplier,
            "prerequisites": [
                {"skill_id": e.required_skill_id, "required_level": e.required_level}
                for e in self.prerequisites
            ],
            "effects": [
                {
                    "effect_type": e.effect_type,
                    "is_percentage": e.is_percentage,
                    "current_value": e.current_value,
                    "next_value": e.next_value,
                }
                for e in self.effects
            ],
            "current_level": self.current_level,
            "can_upgrade": self.can_upgrade,
            "next_cost": self.next_cost,
            "is_max_level": self.is_max_level,
            "blockers": list(self.blockers),
        }


@dataclass
class UpgradeResult:
    success: bool
    skill_id: str
    new_level: int | None = None
    cost_paid: int | None = None
    remaining_skill_points: int | None = None
    error: ErrorCode | None = None
    message: str = ""
    reasons: list[str] = field(default_factory=list)


def _effects_at(node: SkillNode, level: int) -> list[EffectValue]:
    maxed = level >= node.max_level
    return [
        EffectValue(
            effect_type=e.effect_type,
            is_percentage=e.is_percentage,
            current_value=e.value_at(level),
            next_value=None if maxed else e.value_at(level + 1),
        )
        for e in node.effects
    ]


def _view(node: SkillNode, level: int = 0, check: UpgradeCheck | None = None) -> SkillView:
    view = SkillView(
        skill_id=node.skill_id,
        name=node.name,
        description=node.description,
        category=node.category,
        icon=node.icon,
        max_level=node.max_level,
        unlock_level=node.unlock_level,
        base_cost=node.base_cost,
        cost_multiplier=node.cost_multiplier,
        prerequisites=list(node.prerequisites),
        effects=_effects_at(node, level),
        current_level=level,
        is_max_level=level >= node.max_level,
        next_cost=None if level >= node.max_level else node.cost(level),
    )
    if check is not None:
        view.can_upgrade = check.allowed
        view.blockers = check.reasons()
    return view


# ---------------------------------------------------------------------------
# Catalog reads
# ---------------------------------------------------------------------------
def list_skills(graph: SkillGraph) -> list[SkillView]:
    """The full catalog at level 0, ordered by category then name."""
    return [_view(node) for node in graph]


def list_skills_by_category(graph: SkillGraph) -> dict[str, list[SkillView]]:
    return {
        category: [_view(node) for node in nodes]
        for category, nodes in graph.by_category().items()
    }


def _skill_levels(session: Session, profile_id: int) -> dict[str, int]:
    """``skill_id`` slug → learned level for one profile."""
    rows = session.execute(
        select(Skill.skill_id, UserSkill.level)
        .join(Skill, Skill.id == UserSkill.skill_id)
        .where(UserSkill.profile_id == profile_id)
    ).all()
    return {row.skill_id: row.level for row in rows}


def get_user_skills(engine: Engine, graph: SkillGraph, profile_id: int) -> list[SkillView]:
    """The catalog annotated with *profile_id*'s levels and eligibility.

    Raises :class:`NotFoundError` for an unknown profile.
    """
    with storage_boundary("load user skills"), Session(engine) as session:
        profile = session.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError("profile", profile_id)
        standing = ProfileStanding(level=profile.level, skill_points=profile.skill_points)
        levels = _skill_levels(session, profile_id)

    views = []
    for node in graph:
        level = levels.get(node.skill_id, 0)
        check = graph.check_upgrade(node, level, standing, levels)
        views.append(_view(node, level, check))
    return views


# ---------------------------------------------------------------------------
# Upgrade
# ---------------------------------------------------------------------------
def upgrade_skill(
    engine: Engine,
    graph: SkillGraph,
    profile_id: int,
    skill_id: str,
    *,
    locks: ProfileLocks | None = None,
) -> UpgradeResult:
    """Spend skill points to raise *skill_id* by exactly one level."""
    node = graph.get(skill_id)
    if node is None:
        return UpgradeResult(success=False, skill_id=skill_id, error=ErrorCode.NOT_FOUND,
                             message=f"Skill not found: {skill_id}")
    locks = locks or get_default_locks()

    try:
        with locks.hold(profile_id, lock_fields.SKILL_POINTS_BALANCE), \
                storage_boundary("upgrade skill"), Session(engine) as session:
            profile = session.get(Profile, profile_id)
            if profile is None:
                return UpgradeResult(success=False, skill_id=skill_id,
                                     error=ErrorCode.NOT_FOUND,
                                     message=f"Profile not found: {profile_id}")

            levels = _skill_levels(session, profile_id)
            current = levels.get(skill_id, 0)
            check = graph.check_upgrade(
                node, current,
                ProfileStanding(level=profile.level, skill_points=profile.skill_points),
                levels,
            )
            if not check.allowed:
                raise InvalidUpgradeError(skill_id, check.reasons())
            cost = check.cost

            debited = session.execute(
                update(Profile)
                .where(Profile.id == profile_id, Profile.skill_points >= cost)
                .values(skill_points=Profile.skill_points - cost)
                .execution_options(synchronize_session=False)
            ).rowcount == 1
            if not debited:
                raise InvalidUpgradeError(skill_id, [UpgradeBlocker.INSUFFICIENT_POINTS.value])

            _raise_level(session, profile_id, node, current)
            remaining = session.scalar(
                select(Profile.skill_points).where(Profile.id == profile_id)
            )
            session.commit()
    except InvalidUpgradeError as exc:
        logger.info("Upgrade refused for profile %d: %s", profile_id, exc)
        return UpgradeResult(success=False, skill_id=skill_id,
                             error=ErrorCode.INVALID_UPGRADE, message=str(exc),
                             reasons=exc.reasons)

    logger.info(
        "Profile %d upgraded %s to level %d for %d points",
        profile_id, skill_id, current + 1, cost,
    )
    return UpgradeResult(
        success=True,
        skill_id=skill_id,
        new_level=current + 1,
        cost_paid=cost,
        remaining_skill_points=remaining,
    )


def _raise_level(session: Session, profile_id: int, node: SkillNode, current: int) -> None:
    """Move the learned level from *current* to *current* + 1 or raise."""
    skill_pk = node.pk
    if skill_pk is None:
        skill_pk = session.scalar(select(Skill.id).where(Skill.skill_id == node.skill_id))

    if current == 0:
        session.add(UserSkill(profile_id=profile_id, skill_id=skill_pk, level=1))
        try:
            session.flush()
        except IntegrityError:
            raise InvalidUpgradeError(node.skill_id, [STALE_LEVEL]) from None
        return

    moved = session.execute(
        update(UserSkill)
        .where(UserSkill.profile_id == profile_id,
               UserSkill.skill_id == skill_pk,
               UserSkill.level == current)
        .values(level=current + 1)
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    if not moved:
        raise InvalidUpgradeError(node.skill_id, [STALE_LEVEL])
