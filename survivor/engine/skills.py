"""
survivor.engine.skills — Skill Graph, Cost Curve & Eligibility
===============================================================

The skill catalog is loaded once into an explicit directed graph
(skill → prerequisite edges).  Eligibility checks are graph queries
against a profile's current skill levels.

This module is pure calculation — no database writes.  ``SkillGraph.load``
is the only function that reads from the database.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from survivor.database.models import Skill

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """The skill catalog is malformed (dangling edge, cycle, flat cost curve)."""


class UpgradeBlocker(enum.StrEnum):
    """Preconditions an upgrade can violate, in reporting order."""
    MAX_LEVEL = "max_level_reached"
    INSUFFICIENT_POINTS = "insufficient_skill_points"
    LEVEL_LOCKED = "profile_level_too_low"
    PREREQUISITE_UNMET = "prerequisite_not_met"


# ---------------------------------------------------------------------------
# Cost curve
# ---------------------------------------------------------------------------
def upgrade_cost(base_cost: int, cost_multiplier: float, current_level: int) -> int:
    """Skill points needed to go from *current_level* to *current_level* + 1.

    Uses the exponential formula::

        cost = floor(base_cost * cost_multiplier ** current_level)
    """
    if current_level < 0:
        raise ValueError(f"current_level must be >= 0, got {current_level}")
    return math.floor(base_cost * (cost_multiplier ** current_level))


# ---------------------------------------------------------------------------
# Graph nodes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SkillEffectSpec:
    effect_type: str
    base_value: float
    per_level_increase: float
    is_percentage: bool = False

    def value_at(self, level: int) -> float:
        """Effect magnitude at *level*; unlearned skills contribute nothing."""
        if level <= 0:
            return 0.0
        return self.base_value + level * self.per_level_increase


@dataclass(frozen=True, slots=True)
class PrerequisiteEdge:
    required_skill_id: str
    required_level: int


@dataclass(frozen=True, slots=True)
class SkillNode:
    """Immutable catalog entry, keyed by its ``skill_id`` slug."""

    skill_id: str
    name: str
    max_level: int
    base_cost: int
    cost_multiplier: float
    unlock_level: int = 1
    category: str = "general"
    description: str | None = None
    icon: str | None = None
    effects: tuple[SkillEffectSpec, ...] = ()
    prerequisites: tuple[PrerequisiteEdge, ...] = ()
    pk: int | None = None  # skills.id, when loaded from the database

    def cost(self, current_level: int) -> int:
        return upgrade_cost(self.base_cost, self.cost_multiplier, current_level)


@dataclass(frozen=True, slots=True)
class ProfileStanding:
    """The live profile stats an upgrade is gated on."""

    level: int
    skill_points: int


@dataclass
class UpgradeCheck:
    """Outcome of evaluating every upgrade precondition for one skill."""

    skill_id: str
    current_level: int
    cost: int | None  # None once the skill is maxed
    blockers: list[UpgradeBlocker] = field(default_factory=list)
    unmet_prerequisites: list[PrerequisiteEdge] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.blockers

    @property
    def is_max_level(self) -> bool:
        return UpgradeBlocker.MAX_LEVEL in self.blockers

    def reasons(self) -> list[str]:
        """Human-readable blocker list, prerequisites spelled out."""
        out: list[str] = []
        for blocker in self.blockers:
            if blocker is UpgradeBlocker.PREREQUISITE_UNMET:
                out.extend(
                    f"{blocker.value}:{edge.required_skill_id}>={edge.required_level}"
                    for edge in self.unmet_prerequisites
                )
            else:
                out.append(blocker.value)
        return out


# ---------------------------------------------------------------------------
# SkillGraph
# ---------------------------------------------------------------------------
class SkillGraph:
    """Directed prerequisite graph over the skill catalog.

    Built once at load time; validation rejects edges to unknown skills,
    self-edges, cycles, and cost curves that are not strictly increasing
    across the skill's level range.

    Usage::

        graph = SkillGraph.load(engine)
        node = graph.get("rapid_fire")
        check = graph.check_upgrade(node, current_level=2,
                                    standing=ProfileStanding(level=5, skill_points=300),
                                    skill_levels={"marksman": 3})
    """

    def __init__(self, nodes: Iterable[SkillNode]) -> None:
        self._nodes: dict[str, SkillNode] = {}
        for node in nodes:
            if node.skill_id in self._nodes:
                raise CatalogError(f"Duplicate skill_id {node.skill_id!r}")
            self._nodes[node.skill_id] = node

        # required_skill_id → skill_ids that depend on it
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._nodes}
        for node in self._nodes.values():
            self._validate_node(node)
            for edge in node.prerequisites:
                self._dependents[edge.required_skill_id].append(node.skill_id)

        self._topo_order = self._topological_sort()

    # -------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------
    @classmethod
    def from_models(cls, skills: Sequence[Skill]) -> SkillGraph:
        """Build a graph from ORM rows with effects and prerequisites loaded."""
        slug_by_pk = {s.id: s.skill_id for s in skills}
        nodes = []
        for s in skills:
            edges = []
            for p in s.prerequisites:
                required = slug_by_pk.get(p.required_skill_id)
                if required is None:
                    raise CatalogError(
                        f"Skill {s.skill_id!r} requires unknown skill pk={p.required_skill_id}"
                    )
                edges.append(PrerequisiteEdge(required, p.required_level))
            nodes.append(SkillNode(
                skill_id=s.skill_id,
                name=s.name,
                description=s.description,
                category=s.category,
                icon=s.icon,
                max_level=s.max_level,
                base_cost=s.base_cost,
                cost_multiplier=s.cost_multiplier,
                unlock_level=s.unlock_level,
                effects=tuple(
                    SkillEffectSpec(e.effect_type, e.base_value, e.per_level_increase,
                                    bool(e.is_percentage))
                    for e in s.effects
                ),
                prerequisites=tuple(edges),
                pk=s.id,
            ))
        return cls(nodes)

    @classmethod
    def load(cls, engine: Engine) -> SkillGraph:
        """Read the full catalog and build the graph."""
        with Session(engine) as session:
            skills = session.scalars(
                select(Skill).options(
                    selectinload(Skill.effects),
                    selectinload(Skill.prerequisites),
                )
            ).all()
            graph = cls.from_models(skills)
        logger.info("SkillGraph loaded: %d skills, %d edges", len(graph), graph.edge_count)
        return graph

    def _validate_node(self, node: SkillNode) -> None:
        if node.max_level < 1:
            raise CatalogError(f"Skill {node.skill_id!r} must allow at least one level")
        if node.base_cost < 1:
            raise CatalogError(f"Skill {node.skill_id!r} must cost at least 1 point")
        for edge in node.prerequisites:
            if edge.required_skill_id == node.skill_id:
                raise CatalogError(f"Skill {node.skill_id!r} requires itself")
            if edge.required_skill_id not in self._nodes:
                raise CatalogError(
                    f"Skill {node.skill_id!r} requires unknown skill "
                    f"{edge.required_skill_id!r}"
                )
            required_max = self._nodes[edge.required_skill_id].max_level
            if not 1 <= edge.required_level <= required_max:
                raise CatalogError(
                    f"Skill {node.skill_id!r} requires {edge.required_skill_id!r} at "
                    f"level {edge.required_level}, outside 1..{required_max}"
                )
        costs = [node.cost(level) for level in range(node.max_level)]
        if any(later <= earlier for earlier, later in zip(costs, costs[1:])):
            raise CatalogError(
                f"Skill {node.skill_id!r} cost curve is not strictly increasing: {costs}"
            )

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm; prerequisites come before their dependents."""
        indegree = {sid: len(n.prerequisites) for sid, n in self._nodes.items()}
        ready = deque(sorted(sid for sid, deg in indegree.items() if deg == 0))
        order: list[str] = []
        while ready:
            sid = ready.popleft()
            order.append(sid)
            for dependent in sorted(self._dependents[sid]):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)
        if len(order) != len(self._nodes):
            stuck = sorted(sid for sid, deg in indegree.items() if deg > 0)
            raise CatalogError(f"Prerequisite cycle among skills: {stuck}")
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._nodes

    def __iter__(self) -> Iterator[SkillNode]:
        """Catalog order: category, then name."""
        return iter(sorted(self._nodes.values(), key=lambda n: (n.category, n.name)))

    @property
    def edge_count(self) -> int:
        return sum(len(n.prerequisites) for n in self._nodes.values())

    def get(self, skill_id: str) -> SkillNode | None:
        return self._nodes.get(skill_id)

    def topological_order(self) -> list[str]:
        return list(self._topo_order)

    def by_category(self) -> dict[str, list[SkillNode]]:
        grouped: dict[str, list[SkillNode]] = {}
        for node in self:
            grouped.setdefault(node.category, []).append(node)
        return grouped

    # -------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------
    def check_upgrade(
        self,
        node: SkillNode,
        current_level: int,
        standing: ProfileStanding,
        skill_levels: Mapping[str, int],
    ) -> UpgradeCheck:
        """Evaluate all four upgrade preconditions.

        Every check runs regardless of earlier failures so the caller can
        report the full set of blockers.  Never raises for ineligibility.
        """
        maxed = current_level >= node.max_level
        cost = None if maxed else node.cost(current_level)
        check = UpgradeCheck(skill_id=node.skill_id, current_level=current_level, cost=cost)

        if maxed:
            check.blockers.append(UpgradeBlocker.MAX_LEVEL)
        if cost is not None and standing.skill_points < cost:
            check.blockers.append(UpgradeBlocker.INSUFFICIENT_POINTS)
        if standing.level < node.unlock_level:
            check.blockers.append(UpgradeBlocker.LEVEL_LOCKED)

        check.unmet_prerequisites = [
            edge for edge in node.prerequisites
            if skill_levels.get(edge.required_skill_id, 0) < edge.required_level
        ]
        if check.unmet_prerequisites:
            check.blockers.append(UpgradeBlocker.PREREQUISITE_UNMET)
        return check

    def can_upgrade(
        self,
        node: SkillNode,
        current_level: int,
        standing: ProfileStanding,
        skill_levels: Mapping[str, int],
    ) -> bool:
        return self.check_upgrade(node, current_level, standing, skill_levels).allowed
