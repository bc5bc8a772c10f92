"""
Approval State Machine

Lifecycle of a record:

    pending  --approve-->  approved
    pending  --decline-->  declined
    approved --edit----->  pending     (delegate edit)
    declined --edit----->  pending     (delegate re-proposal)
    pending  --edit----->  pending

The deletion flag is orthogonal to the approval state. A delegate sets
it; the owner confirms (hard delete) or cancels (clears the flag,
approval state untouched). Deletion is a removal, not a state.

DESIGN DECISION: Duplicate approver actions are idempotent. Approving an
approved record, or losing a race to another approver who made the same
decision, is a NOOP: no second audit event, no second notification.

CRITICAL: An approval must never land on content the owner did not see.
Callers pass the version they reviewed as expected_version; if a
delegate edited the record since, the approval is rejected with
StaleWriteError. Without expected_version the write is still a
compare-and-set on the version read in the same call.
"""

from typing import Optional
from uuid import UUID

from teamledger.access.visibility import VisibilityFilter
from teamledger.approval.transitions import TRANSITIONS, ApprovalEvent
from teamledger.audit import AuditLogger
from teamledger.errors import (
    ForbiddenError,
    InvalidStateTransitionError,
    StaleWriteError,
    TeamLedgerError,
    UnavailableError,
    translate_storage_error,
)
from teamledger.identity import IdentityResolver
from teamledger.models.actor import Actor, AuthSession, utc_now
from teamledger.models.audit import AuditEventType
from teamledger.models.notification import NotificationType
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    Outcome,
    RecordKind,
)
from teamledger.notifications import NotificationSink, NullNotificationSink
from teamledger.services.storage import (
    NotFoundError,
    RecordStoreInterface,
    StorageError,
    StoreContext,
    VersionConflictError,
)


Result = tuple[Outcome, Optional[FinanceRecord]]


class ApprovalService:
    """
    Owner-side decisions: approve, decline, confirm or cancel deletion.

    Every method returns (Outcome, record). The record is the state after
    the call (or the removed record for a confirmed deletion).
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        resolver: IdentityResolver,
        visibility: Optional[VisibilityFilter] = None,
        notifier: Optional[NotificationSink] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._visibility = visibility or VisibilityFilter(store, resolver)
        self._notifier = notifier or NullNotificationSink()
        self._audit = audit_logger or AuditLogger()

    async def approve(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        expected_version: Optional[int] = None,
        session: Optional[AuthSession] = None,
    ) -> Result:
        actor = await self._require_owner(actor_id, kind, record_id, session)
        return await self._decide(actor, kind, record_id, ApprovalEvent.APPROVE, expected_version)

    async def decline(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        expected_version: Optional[int] = None,
        session: Optional[AuthSession] = None,
    ) -> Result:
        actor = await self._require_owner(actor_id, kind, record_id, session)
        return await self._decide(actor, kind, record_id, ApprovalEvent.DECLINE, expected_version)

    async def confirm_deletion(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        session: Optional[AuthSession] = None,
    ) -> Result:
        """
        Hard-delete a record a delegate asked to remove.

        A record that is already gone is a NOOP; a record nobody asked
        to delete is an invalid transition.
        """
        actor = await self._require_owner(actor_id, kind, record_id, session)
        current = await self._visibility.get_for_actor(actor, kind, record_id)
        if current is None:
            return Outcome.NOOP, None
        if not current.deletion_requested:
            await self._invalid(actor, current, "confirm_deletion", "no deletion was requested")

        ctx = StoreContext(uid=actor.id)
        try:
            deleted = await self._store.delete_record(ctx, kind, record_id, current.version)
        except VersionConflictError as e:
            latest = await self._visibility.get_for_actor(actor, kind, record_id)
            if latest is None:
                return Outcome.NOOP, None
            raise await self._stale(actor, kind, record_id, e)
        except StorageError as e:
            raise await self._failed(actor, kind, record_id, e)

        if not deleted:
            return Outcome.NOOP, None
        await self._audit.log_transition(
            AuditEventType.DELETION_CONFIRMED,
            current,
            actor.id,
            details={"requested_by": current.deletion_requested_by},
        )
        return Outcome.DELETED, current

    async def cancel_deletion(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        session: Optional[AuthSession] = None,
    ) -> Result:
        """Clear a deletion request; the approval state is left as it was."""
        actor = await self._require_owner(actor_id, kind, record_id, session)
        current = await self._visibility.get_for_actor(actor, kind, record_id)
        if current is None:
            raise InvalidStateTransitionError(
                f"Record {record_id} does not exist",
                record_id=record_id,
                event="cancel_deletion",
            )
        if not current.deletion_requested:
            return Outcome.NOOP, current

        cleared = current.model_copy(
            update={"deletion_requested": False, "deletion_requested_by": None}
        )
        try:
            written = await self._store.update_record(
                StoreContext(uid=actor.id), cleared, current.version
            )
        except VersionConflictError as e:
            latest = await self._visibility.get_for_actor(actor, kind, record_id)
            if latest is not None and not latest.deletion_requested:
                return Outcome.NOOP, latest
            raise await self._stale(actor, kind, record_id, e)
        except StorageError as e:
            raise await self._failed(actor, kind, record_id, e)

        await self._audit.log_transition(AuditEventType.DELETION_CANCELLED, written, actor.id)
        return Outcome.APPLIED, written

    async def _decide(
        self,
        actor: Actor,
        kind: RecordKind,
        record_id: UUID,
        event: ApprovalEvent,
        expected_version: Optional[int],
    ) -> Result:
        target = TRANSITIONS[(ApprovalState.PENDING, event)]
        current = await self._visibility.get_for_actor(actor, kind, record_id)
        if current is None:
            error = InvalidStateTransitionError(
                f"Cannot {event.value} record {record_id}: it does not exist",
                record_id=record_id,
                event=event.value,
            )
            await self._audit.log_rejection(
                AuditEventType.INVALID_TRANSITION, kind.value, actor.id, str(error), record_id
            )
            raise error

        if current.approval_state == target:
            return Outcome.NOOP, current
        if (current.approval_state, event) not in TRANSITIONS:
            await self._invalid(actor, current, event.value, f"record is {current.approval_state.value}")

        if expected_version is not None and current.version != expected_version:
            raise await self._stale(
                actor,
                kind,
                record_id,
                VersionConflictError(
                    "Record changed since it was reviewed",
                    expected_version=expected_version,
                    actual_version=current.version,
                ),
            )

        decided = current.model_copy(update={"approval_state": target})
        if event == ApprovalEvent.APPROVE:
            decided.approved_by = actor.id
            decided.approved_at = utc_now()
        else:
            decided.approved_by = None
            decided.approved_at = None

        try:
            written = await self._store.update_record(
                StoreContext(uid=actor.id), decided, current.version
            )
        except VersionConflictError as e:
            latest = await self._visibility.get_for_actor(actor, kind, record_id)
            if latest is not None and latest.approval_state == target:
                return Outcome.NOOP, latest
            raise await self._stale(actor, kind, record_id, e)
        except NotFoundError:
            raise InvalidStateTransitionError(
                f"Cannot {event.value} record {record_id}: it was deleted",
                record_id=record_id,
                event=event.value,
            )
        except StorageError as e:
            raise await self._failed(actor, kind, record_id, e)

        if event == ApprovalEvent.APPROVE:
            await self._audit.log_transition(AuditEventType.RECORD_APPROVED, written, actor.id)
        else:
            await self._audit.log_transition(AuditEventType.RECORD_DECLINED, written, actor.id)
            await self._notifier.emit(written, NotificationType.RECORD_DECLINED)
        return Outcome.APPLIED, written

    async def _require_owner(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        session: Optional[AuthSession],
    ) -> Actor:
        actor = await self._resolver.resolve(actor_id, session)
        if not actor.is_owner:
            error = ForbiddenError(f"{actor.id} is not an approver", record_id)
            await self._audit.log_rejection(
                AuditEventType.MUTATION_FORBIDDEN, kind.value, actor.id, str(error), record_id
            )
            raise error
        return actor

    async def _invalid(self, actor: Actor, record: FinanceRecord, event: str, reason: str) -> None:
        error = InvalidStateTransitionError(
            f"Cannot {event} record {record.id}: {reason}",
            record_id=record.id,
            current_state=record.approval_state.value,
            event=event,
        )
        await self._audit.log_rejection(
            AuditEventType.INVALID_TRANSITION, record.kind.value, actor.id, str(error), record.id
        )
        raise error

    async def _stale(
        self,
        actor: Actor,
        kind: RecordKind,
        record_id: UUID,
        conflict: VersionConflictError,
    ) -> StaleWriteError:
        error = translate_storage_error(conflict, record_id)
        await self._audit.log_rejection(
            AuditEventType.STALE_WRITE_REJECTED, kind.value, actor.id, str(error), record_id
        )
        return error

    async def _failed(
        self,
        actor: Actor,
        kind: RecordKind,
        record_id: UUID,
        cause: StorageError,
    ) -> TeamLedgerError:
        error = translate_storage_error(cause, record_id)
        if isinstance(error, UnavailableError):
            await self._audit.log_store_failure(cause, kind.value, actor.id, record_id)
        return error
