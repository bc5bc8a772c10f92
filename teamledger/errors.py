"""
Engine Error Taxonomy

Every error here is recoverable at the call site. None of them should
crash the process. Callers decide whether to refresh, retry or give up.

- UnresolvedIdentityError: no role derivable, treat as unauthenticated
- ForbiddenError: actor lacks authorship or organization ownership
- InvalidStateTransitionError: transition not in the allowed set
- StaleWriteError: version mismatch, caller must re-fetch
- RecordNotFoundError: target record does not exist (or is not visible)
- UnavailableError: store unreachable, caller may retry
"""

from typing import Optional
from uuid import UUID

from teamledger.services.storage.interface import (
    NotFoundError,
    PolicyViolationError,
    VersionConflictError,
)


class TeamLedgerError(Exception):
    """Base exception for engine operations."""

    def __init__(self, message: str, record_id: Optional[UUID] = None):
        super().__init__(message)
        self.record_id = record_id


class UnresolvedIdentityError(TeamLedgerError):
    """No role or organization could be derived for the actor."""

    def __init__(self, actor_id: Optional[str], reason: str = "no role could be resolved"):
        super().__init__(f"Unresolved identity {actor_id!r}: {reason}")
        self.actor_id = actor_id
        self.reason = reason


class ForbiddenError(TeamLedgerError):
    """Actor is neither the author nor an owner of the record's organization."""
    pass


class InvalidStateTransitionError(TeamLedgerError):
    """Attempted a transition that is not in the allowed set."""

    def __init__(
        self,
        message: str,
        record_id: Optional[UUID] = None,
        current_state: Optional[str] = None,
        event: Optional[str] = None,
    ):
        super().__init__(message, record_id)
        self.current_state = current_state
        self.event = event


class StaleWriteError(TeamLedgerError):
    """The record changed since the caller read it."""

    def __init__(
        self,
        message: str,
        record_id: Optional[UUID] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        super().__init__(message, record_id)
        self.expected_version = expected_version
        self.actual_version = actual_version


class RecordNotFoundError(TeamLedgerError):
    """Record does not exist or is not visible to the actor."""
    pass


class UnavailableError(TeamLedgerError):
    """The store could not be reached."""
    pass


def translate_storage_error(
    error: Exception,
    record_id: Optional[UUID] = None,
) -> TeamLedgerError:
    """
    Map a storage-layer exception to the engine taxonomy.

    VersionConflictError -> StaleWriteError
    PolicyViolationError -> ForbiddenError
    NotFoundError        -> RecordNotFoundError
    anything else        -> UnavailableError
    """
    if isinstance(error, VersionConflictError):
        return StaleWriteError(
            str(error),
            record_id=record_id,
            expected_version=error.expected_version,
            actual_version=error.actual_version,
        )
    if isinstance(error, PolicyViolationError):
        return ForbiddenError(f"Store policy {error.policy_name} rejected the write", record_id)
    if isinstance(error, NotFoundError):
        return RecordNotFoundError(str(error), record_id)
    return UnavailableError(str(error), record_id)
