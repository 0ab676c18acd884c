"""
survivor.api.routes.skills — Skill catalog & upgrade endpoints
===============================================================
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import Engine

from survivor.api.deps import get_engine, get_locks, get_profile_id, get_skill_graph, raise_for
from survivor.engine.locks import ProfileLocks
from survivor.engine.skills import SkillGraph
from survivor.services import skill_service

router = APIRouter(prefix="/skills", tags=["skills"])

ProfileId = Annotated[int, Depends(get_profile_id)]


class UpgradeBody(BaseModel):
    skill_id: str = Field(min_length=1, validation_alias=AliasChoices("skill_id", "skillId"))


@router.get("")
def list_skills(graph: SkillGraph = Depends(get_skill_graph)):
    return {"skills": [v.to_dict() for v in skill_service.list_skills(graph)]}


@router.get("/categories")
def skills_by_category(graph: SkillGraph = Depends(get_skill_graph)):
    grouped = skill_service.list_skills_by_category(graph)
    return {
        "categories": {
            category: [v.to_dict() for v in views] for category, views in grouped.items()
        }
    }


@router.get("/user")
def user_skills(
    profile_id: ProfileId,
    engine: Engine = Depends(get_engine),
    graph: SkillGraph = Depends(get_skill_graph),
):
    views = skill_service.get_user_skills(engine, graph, profile_id)
    return {"skills": [v.to_dict() for v in views]}


@router.post("/upgrade")
def upgrade(
    body: UpgradeBody,
    profile_id: ProfileId,
    engine: Engine = Depends(get_engine),
    graph: SkillGraph = Depends(get_skill_graph),
    locks: ProfileLocks = Depends(get_locks),
):
    result = skill_service.upgrade_skill(engine, graph, profile_id, body.skill_id, locks=locks)
    if not result.success:
        raise_for(result.error, result.message, reasons=result.reasons)
    return {
        "skill_id": result.skill_id,
        "new_level": result.new_level,
        "cost_paid": result.cost_paid,
        "remaining_skill_points": result.remaining_skill_points,
    }
