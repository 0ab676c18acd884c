"""
survivor.constants — Shared Constants
======================================

Single source of truth for the scoring design's fixed numbers.
Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

from datetime import timedelta

# ---------------------------------------------------------------------------
# Earning rates — provenance metadata stamped on every stream record.
# Points earned are reported by the game client; these are never used to
# recompute them.
# ---------------------------------------------------------------------------
LEADERBOARD_EARNING_RATE: float = 2.0  # points per second survived
SKILL_EARNING_RATE: float = 1.0        # points per second survived

# ---------------------------------------------------------------------------
# Session defaults
# ---------------------------------------------------------------------------
DEFAULT_GAME_MODE = "normal"
DEFAULT_END_REASON = "player_death"

# ---------------------------------------------------------------------------
# Profile defaults
# ---------------------------------------------------------------------------
STARTING_COINS = 50
STARTING_LEVEL = 1

# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
DEFAULT_LEADERBOARD_LIMIT = 50
MAX_LEADERBOARD_LIMIT = 100
DASHBOARD_LEADERBOARD_LIMIT = 10

# Rolling windows, not calendar boundaries.
TIMEFRAME_WINDOWS: dict[str, timedelta | None] = {
    "all": None,
    "daily": timedelta(hours=24),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}
