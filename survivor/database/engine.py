"""
survivor.database.engine — Database Connection & Session Helpers
=================================================================

Every request runs synchronously against a pooled SQLAlchemy engine.
Storage faults are translated into :class:`~survivor.errors.PersistenceError`
at this boundary so services never leak driver exceptions to callers.

Usage::

    from survivor.database.engine import create_db_engine, init_db, get_session

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with get_session(engine) as session:
        session.add(Profile(username="drew"))
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from survivor.database.models import Base
from survivor.errors import PersistenceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(statement_timeout_seconds: float | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    The connection pool is sized for a game API behind a load balancer:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    When *statement_timeout_seconds* is given and the URL points at
    PostgreSQL, the server aborts any statement running longer than that.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    connect_args: dict = {}
    if statement_timeout_seconds and url.startswith("postgresql"):
        timeout_ms = int(statement_timeout_seconds * 1000)
        connect_args["options"] = f"-c statement_timeout={timeout_ms}"

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,    # Recycle connections after 1 hour
        connect_args=connect_args,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`survivor.database.models`.

    Safe to call on every startup.  After creating tables, seeds the
    default skill catalog; seeding only inserts skills that don't exist.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from survivor.database.seed import seed_skill_catalog

    seed_skill_catalog(engine)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def to_persistence_error(exc: SQLAlchemyError) -> PersistenceError:
    """Map a SQLAlchemy fault onto the core's retryable/fatal split.

    Connection loss, lock waits and timeouts are worth retrying; anything
    else (constraint violations, programming errors) is not.
    """
    retryable = isinstance(exc, (OperationalError, PoolTimeoutError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )
    return PersistenceError(f"Storage error: {exc.__class__.__name__}", retryable=retryable)


@contextmanager
def storage_boundary(action: str):
    """Re-raise storage faults inside the block as :class:`PersistenceError`."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while trying to %s", action)
        raise to_persistence_error(exc) from exc


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Profile(username="drew"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
