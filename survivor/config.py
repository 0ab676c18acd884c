"""
survivor.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for tuning that operators may want to change without
a redeploy: persistence timeouts, ledger fan-out width, leaderboard limits
and session defaults.  Secrets (``DATABASE_URL``) stay in the environment.

Usage::

    from survivor.config import load_config

    cfg = load_config()                    # reads ./config.yaml by default
    print(cfg.persistence_timeout_seconds) # 5.0
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from survivor.constants import (
    DEFAULT_END_REASON,
    DEFAULT_GAME_MODE,
    DEFAULT_LEADERBOARD_LIMIT,
    MAX_LEADERBOARD_LIMIT,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SurvivorConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    server_name: str

    # Persistence
    persistence_timeout_seconds: float = 5.0  # Per ledger stream
    # One pool serves every request; each session end queues three streams.
    # Size it to about 3 x the expected concurrent session ends, or streams
    # wait in the queue and time out (the write still lands; a retry then
    # reports it as a duplicate).
    ledger_max_workers: int = 3
    profile_lock_timeout_seconds: float = 10.0

    # Sessions
    default_game_mode: str = DEFAULT_GAME_MODE
    default_end_reason: str = DEFAULT_END_REASON

    # Leaderboards
    leaderboard_default_limit: int = DEFAULT_LEADERBOARD_LIMIT
    leaderboard_max_limit: int = MAX_LEADERBOARD_LIMIT


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SurvivorConfig:
    """Read *path* and return a :class:`SurvivorConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a limit or timeout is not positive.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cfg = SurvivorConfig(
        server_name=raw["server_name"],
        persistence_timeout_seconds=float(raw.get("persistence_timeout_seconds", 5.0)),
        ledger_max_workers=int(raw.get("ledger_max_workers", 3)),
        profile_lock_timeout_seconds=float(raw.get("profile_lock_timeout_seconds", 10.0)),
        default_game_mode=raw.get("default_game_mode") or DEFAULT_GAME_MODE,
        default_end_reason=raw.get("default_end_reason") or DEFAULT_END_REASON,
        leaderboard_default_limit=int(
            raw.get("leaderboard_default_limit", DEFAULT_LEADERBOARD_LIMIT)
        ),
        leaderboard_max_limit=int(raw.get("leaderboard_max_limit", MAX_LEADERBOARD_LIMIT)),
    )

    if cfg.persistence_timeout_seconds <= 0 or cfg.profile_lock_timeout_seconds <= 0:
        raise ValueError("Timeouts in config.yaml must be positive.")
    if cfg.ledger_max_workers < 1:
        raise ValueError("ledger_max_workers must be at least 1.")
    if not 1 <= cfg.leaderboard_default_limit <= cfg.leaderboard_max_limit:
        raise ValueError(
            "leaderboard_default_limit must be between 1 and leaderboard_max_limit."
        )
    return cfg
