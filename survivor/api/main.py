"""
survivor.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn survivor.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from survivor.api.deps import ERROR_STATUS, get_engine, get_ledger, get_skill_graph  # noqa: E402
from survivor.api.routes.game import router as game_router  # noqa: E402
from survivor.api.routes.leaderboard import router as leaderboard_router  # noqa: E402
from survivor.api.routes.skills import router as skills_router  # noqa: E402
from survivor.database.engine import init_db  # noqa: E402
from survivor.errors import ErrorCode, SurvivorError  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: create tables, load the skill graph."""
    engine = get_engine()
    init_db(engine)
    graph = get_skill_graph()
    logger.info(
        "Survivor API started — %d skills loaded (%s)", len(graph), engine.url.database
    )
    yield
    get_ledger().close()
    logger.info("Survivor API shutting down")


app = FastAPI(
    title="Survivor Progression API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(game_router, prefix="/api")
app.include_router(leaderboard_router, prefix="/api")
app.include_router(skills_router, prefix="/api")


@app.exception_handler(SurvivorError)
async def survivor_error_handler(request: Request, exc: SurvivorError) -> JSONResponse:
    """Errors that escaped a service call (missing rows, storage faults)."""
    if exc.code is ErrorCode.PERSISTENCE_FAILURE:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 500),
        content={"error": exc.code.value, "message": str(exc), "retryable": exc.retryable},
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}
