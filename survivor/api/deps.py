"""
survivor.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated, NoReturn

from fastapi import Header, HTTPException, status
from sqlalchemy import Engine

from survivor.config import SurvivorConfig, load_config
from survivor.database.engine import create_db_engine
from survivor.engine.locks import ProfileLocks
from survivor.engine.skills import SkillGraph
from survivor.errors import ErrorCode
from survivor.services.score_service import ScoreLedger

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_UPGRADE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.PERSISTENCE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache(maxsize=1)
def get_config() -> SurvivorConfig:
    return load_config(os.getenv("SURVIVOR_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine(statement_timeout_seconds=get_config().persistence_timeout_seconds)


@lru_cache(maxsize=1)
def get_locks() -> ProfileLocks:
    return ProfileLocks(timeout=get_config().profile_lock_timeout_seconds)


@lru_cache(maxsize=1)
def get_skill_graph() -> SkillGraph:
    return SkillGraph.load(get_engine())


@lru_cache(maxsize=1)
def get_ledger() -> ScoreLedger:
    return ScoreLedger.from_config(get_engine(), get_config(), locks=get_locks())


def get_profile_id(
    x_profile_id: Annotated[int | None, Header()] = None,
) -> int:
    """Caller identity, set by the auth gateway in front of the API."""
    if x_profile_id is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing X-Profile-Id header")
    return x_profile_id


def raise_for(code: ErrorCode | None, message: str, **extra) -> NoReturn:
    """Raise the HTTPException matching a service result's error code."""
    detail = {"error": code.value if code else None, "message": message, **extra}
    raise HTTPException(ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR), detail)
