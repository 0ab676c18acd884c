"""
survivor.database.seed — Default Skill Catalog Seeder
======================================================

Baseline skill tree seeded on first startup so a fresh deployment has
something to spend skill points on (combat, survival, utility).

Idempotent — only inserts skills whose ``skill_id`` doesn't already
exist.  Skills edited or added by operators are never overwritten.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from survivor.database.models import Skill, SkillEffect, SkillPrerequisite
from survivor.engine.skills import (
    CatalogError,
    PrerequisiteEdge,
    SkillEffectSpec,
    SkillGraph,
    SkillNode,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default skill catalogue
# ---------------------------------------------------------------------------
DEFAULT_SKILLS: tuple[SkillNode, ...] = (
    # Combat
    SkillNode(
        skill_id="marksman", name="Marksman", category="combat", icon="crosshair",
        description="Each shot deals more damage.",
        max_level=5, base_cost=50, cost_multiplier=1.3,
        effects=(SkillEffectSpec("damage", 0.0, 5.0, is_percentage=True),),
    ),
    SkillNode(
        skill_id="rapid_fire", name="Rapid Fire", category="combat", icon="bolt",
        description="Shorter delay between shots.",
        max_level=5, base_cost=100, cost_multiplier=1.5, unlock_level=2,
        effects=(SkillEffectSpec("fire_rate", 0.0, 4.0, is_percentage=True),),
        prerequisites=(PrerequisiteEdge("marksman", 2),),
    ),
    SkillNode(
        skill_id="piercing_rounds", name="Piercing Rounds", category="combat",
        icon="arrow", description="Projectiles pass through additional enemies.",
        max_level=3, base_cost=150, cost_multiplier=1.6, unlock_level=5,
        effects=(SkillEffectSpec("pierce", 0.0, 1.0),),
        prerequisites=(PrerequisiteEdge("rapid_fire", 3),),
    ),
    # Survival
    SkillNode(
        skill_id="toughness", name="Toughness", category="survival", icon="shield",
        description="Raises maximum health.",
        max_level=5, base_cost=50, cost_multiplier=1.3,
        effects=(SkillEffectSpec("max_health", 0.0, 10.0),),
    ),
    SkillNode(
        skill_id="regeneration", name="Regeneration", category="survival", icon="heart",
        description="Slowly recover health over time.",
        max_level=5, base_cost=100, cost_multiplier=1.5, unlock_level=3,
        effects=(SkillEffectSpec("health_regen", 0.5, 0.5),),
        prerequisites=(PrerequisiteEdge("toughness", 2),),
    ),
    SkillNode(
        skill_id="second_wind", name="Second Wind", category="survival", icon="phoenix",
        description="Survive one otherwise fatal hit per game.",
        max_level=1, base_cost=300, cost_multiplier=2.0, unlock_level=8,
        effects=(SkillEffectSpec("revive", 0.0, 1.0),),
        prerequisites=(PrerequisiteEdge("regeneration", 3),),
    ),
    # Utility
    SkillNode(
        skill_id="swift_feet", name="Swift Feet", category="utility", icon="boot",
        description="Move faster.",
        max_level=5, base_cost=50, cost_multiplier=1.3,
        effects=(SkillEffectSpec("move_speed", 0.0, 3.0, is_percentage=True),),
    ),
    SkillNode(
        skill_id="magnet", name="Magnet", category="utility", icon="magnet",
        description="Pick up drops from further away.",
        max_level=4, base_cost=75, cost_multiplier=1.4,
        effects=(SkillEffectSpec("pickup_radius", 0.0, 10.0, is_percentage=True),),
    ),
    SkillNode(
        skill_id="scavenger", name="Scavenger", category="utility", icon="coin",
        description="Earn more points from every kill.",
        max_level=3, base_cost=100, cost_multiplier=1.5, unlock_level=4,
        effects=(SkillEffectSpec("point_bonus", 0.0, 5.0, is_percentage=True),),
        prerequisites=(PrerequisiteEdge("magnet", 2), PrerequisiteEdge("swift_feet", 1)),
    ),
)


# ---------------------------------------------------------------------------
# Catalog writes
# ---------------------------------------------------------------------------
def create_skill(session: Session, node: SkillNode) -> Skill:
    """Insert *node* with its effects and prerequisite edges.

    Prerequisites are resolved by ``skill_id`` against rows already in the
    session, so callers must insert required skills first.  The caller
    owns the transaction.

    Raises
    ------
    CatalogError
        If a prerequisite refers to a skill that doesn't exist.
    """
    skill = Skill(
        skill_id=node.skill_id,
        name=node.name,
        description=node.description,
        category=node.category,
        icon=node.icon,
        max_level=node.max_level,
        base_cost=node.base_cost,
        cost_multiplier=node.cost_multiplier,
        unlock_level=node.unlock_level,
    )
    skill.effects = [
        SkillEffect(
            effect_type=e.effect_type,
            base_value=e.base_value,
            per_level_increase=e.per_level_increase,
            is_percentage=e.is_percentage,
        )
        for e in node.effects
    ]
    session.add(skill)
    session.flush()  # assigns skill.id

    for edge in node.prerequisites:
        required_pk = session.scalar(
            select(Skill.id).where(Skill.skill_id == edge.required_skill_id)
        )
        if required_pk is None:
            raise CatalogError(
                f"Skill {node.skill_id!r} requires unknown skill {edge.required_skill_id!r}"
            )
        session.add(SkillPrerequisite(
            skill_id=skill.id,
            required_skill_id=required_pk,
            required_level=edge.required_level,
        ))
    session.flush()
    return skill


def seed_skill_catalog(engine: Engine, catalog: Iterable[SkillNode] = DEFAULT_SKILLS) -> int:
    """Insert catalog skills that don't yet exist; return how many were added.

    The catalog is validated as a graph before anything is written and
    inserted in prerequisite order.
    """
    graph = SkillGraph(catalog)
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(Skill.skill_id)))
        for skill_id in graph.topological_order():
            if skill_id in existing:
                continue
            create_skill(session, graph.get(skill_id))
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default skills.", inserted)
    return inserted
