"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine, update
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from survivor.config import SurvivorConfig
from survivor.database.models import Base, Profile
from survivor.database.seed import seed_skill_catalog
from survivor.engine.locks import ProfileLocks
from survivor.engine.skills import SkillGraph
from survivor.services.profile_service import create_profile
from survivor.services.score_service import ScoreLedger


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Survivor tables.

    Uses StaticPool so the ledger's worker thread sees the same in-memory
    database as the test.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """On-disk SQLite with the default catalog, one connection per thread.

    For race tests: concurrent writers really interleave here, serialized
    only by SQLite's file lock (``timeout`` is the busy wait).
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'survivor.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    seed_skill_catalog(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded_engine(db_engine: Engine) -> Engine:
    """``db_engine`` with the default skill catalog loaded."""
    seed_skill_catalog(db_engine)
    return db_engine


@pytest.fixture
def skill_graph(seeded_engine: Engine) -> SkillGraph:
    return SkillGraph.load(seeded_engine)


@pytest.fixture
def locks() -> ProfileLocks:
    return ProfileLocks(timeout=2.0)


@pytest.fixture
def ledger(db_engine: Engine, locks: ProfileLocks):
    """A ledger with one worker: SQLite's single shared connection can't
    serve concurrent transactions."""
    ledger = ScoreLedger(db_engine, locks=locks, max_workers=1, timeout=10.0)
    yield ledger
    ledger.close()


@pytest.fixture
def test_config() -> SurvivorConfig:
    return SurvivorConfig(server_name="test", ledger_max_workers=1)


def set_profile(engine: Engine, profile_id: int, **values) -> None:
    """Force profile columns to known values for a test."""
    with Session(engine) as session:
        session.execute(update(Profile).where(Profile.id == profile_id).values(**values))
        session.commit()


def load_profile(engine: Engine, profile_id: int) -> Profile:
    with Session(engine, expire_on_commit=False) as session:
        return session.get(Profile, profile_id)


@pytest.fixture
def make_profile(db_engine: Engine):
    """Factory: ``make_profile("alice", level=5, skill_points=300) -> id``."""
    counter = iter(range(1, 10_000))

    def _make(username: str | None = None, **values) -> int:
        profile_id = create_profile(db_engine, username or f"player{next(counter)}")
        if values:
            set_profile(db_engine, profile_id, **values)
        return profile_id

    return _make


@pytest.fixture
def client(seeded_engine: Engine, skill_graph: SkillGraph, ledger: ScoreLedger,
           locks: ProfileLocks, test_config: SurvivorConfig):
    """FastAPI TestClient wired to the in-memory database."""
    from fastapi.testclient import TestClient

    from survivor.api import deps
    from survivor.api.main import app

    app.dependency_overrides = {
        deps.get_engine: lambda: seeded_engine,
        deps.get_config: lambda: test_config,
        deps.get_skill_graph: lambda: skill_graph,
        deps.get_ledger: lambda: ledger,
        deps.get_locks: lambda: locks,
    }
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides = {}
