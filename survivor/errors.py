"""
survivor.errors — Error Taxonomy
=================================

Write operations report expected conditions (missing profile, ineligible
upgrade) inside result dataclasses tagged with an :class:`ErrorCode`;
the exception classes below unwind their transactions and are converted
to result values at the service boundary.  Read helpers raise
:class:`NotFoundError` directly, and :class:`PersistenceError` may escape
any call.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence


class ErrorCode(enum.StrEnum):
    """Failure categories reported to the routing layer."""
    NOT_FOUND = "not_found"
    INVALID_UPGRADE = "invalid_upgrade"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_FAILURE = "persistence_failure"
    PARTIAL_FAILURE = "partial_failure"


class SurvivorError(Exception):
    """Base class for all core errors."""

    code: ErrorCode = ErrorCode.PERSISTENCE_FAILURE
    retryable: bool = False


class NotFoundError(SurvivorError):
    """A profile, session or skill does not exist."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


class InvalidUpgradeError(SurvivorError):
    """One or more upgrade preconditions failed at commit time."""

    code = ErrorCode.INVALID_UPGRADE

    def __init__(self, skill_id: str, reasons: Sequence[str]) -> None:
        self.skill_id = skill_id
        self.reasons = list(reasons)
        super().__init__(
            f"Cannot upgrade skill {skill_id!r}: {', '.join(self.reasons)}"
        )


class PersistenceError(SurvivorError):
    """The storage boundary was unreachable, timed out, or rejected a write."""

    code = ErrorCode.PERSISTENCE_FAILURE

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
