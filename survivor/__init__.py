"""
Survivor — Progression & Scoring Backend for Desktop Survivor Dash
===================================================================
Tracks play sessions, keeps the three score streams (raw score,
leaderboard points, skill points) and their running totals, spends skill
points through a prerequisite-gated skill tree, and ranks players.

Package layout::

    survivor/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Earning rates, defaults, timeframe windows
    ├── errors.py          # ErrorCode taxonomy + exception hierarchy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session helper
    │   ├── models.py      # All ORM models (10 tables)
    │   └── seed.py        # Default skill catalog
    ├── engine/
    │   ├── session.py     # Session counters + lifecycle transitions
    │   ├── skills.py      # SkillGraph: cost curve + eligibility
    │   ├── leaderboard.py # Stream registry, windows, rank assignment
    │   └── locks.py       # Per-profile write serialization
    ├── services/
    │   ├── profile_service.py     # Profile lookups + lifetime stats
    │   ├── session_service.py     # Start / progress / end lifecycle
    │   ├── score_service.py       # ScoreLedger: three stream commands
    │   ├── skill_service.py       # Skill listings + upgrades
    │   └── leaderboard_service.py # Ranked reads
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency wiring
        └── routes/        # game, leaderboard, skills endpoints
"""

__version__ = "0.1.0"
