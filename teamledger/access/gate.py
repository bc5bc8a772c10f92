"""
Mutation Gate

Decides whether a write applies immediately or becomes a proposal.

- Create: the author and organization come from the resolved actor,
  never from the payload. Owners create approved records; delegates
  create pending ones.
- Update: only the author or the organization's owner. A delegate's
  edit always resets the record to pending (an edit is a new proposal).
  An owner's edit keeps the current state.
- Delete: an owner hard-deletes. A delegate only flags the record for
  deletion; it stays visible and keeps counting until the owner
  confirms.

CRITICAL: Every write is one compare-and-set on the record version.
Field changes and the state reset land together or not at all.
"""

from typing import Any, Optional
from uuid import UUID

from teamledger.audit import AuditLogger
from teamledger.config import IdentitySettings, get_settings
from teamledger.errors import (
    ForbiddenError,
    StaleWriteError,
    TeamLedgerError,
    UnavailableError,
    translate_storage_error,
)
from teamledger.identity import IdentityResolver, author_display
from teamledger.access.visibility import VisibilityFilter
from teamledger.approval.transitions import ApprovalEvent, next_state
from teamledger.models.actor import Actor, AuthSession
from teamledger.models.audit import AuditEventType
from teamledger.models.notification import NotificationType
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    Outcome,
    RecordKind,
    parse_details,
)
from teamledger.notifications import NotificationSink, NullNotificationSink
from teamledger.services.storage import (
    RecordStoreInterface,
    StorageError,
    StoreContext,
    VersionConflictError,
)


def may_modify(actor: Actor, record: FinanceRecord) -> bool:
    """Author of the record, or owner of its organization."""
    return record.author_id == actor.id or actor.owns_organization(record.organization_key)


class MutationGate:
    """
    Create, update and delete for every record kind.

    Usage:
        gate = MutationGate(store, resolver, visibility, sink, audit_logger)
        record = await gate.propose("delegate-1", RecordKind.FINANCE_ENTRY, payload)
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        resolver: IdentityResolver,
        visibility: Optional[VisibilityFilter] = None,
        notifier: Optional[NotificationSink] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[IdentitySettings] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._visibility = visibility or VisibilityFilter(store, resolver)
        self._notifier = notifier or NullNotificationSink()
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().identity

    async def propose(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        payload: Any,
        session: Optional[AuthSession] = None,
    ) -> FinanceRecord:
        """
        Create a record.

        Raises:
            UnresolvedIdentityError: Actor has no role
            pydantic.ValidationError: Payload does not fit the kind
            ForbiddenError: The store rejected the insert
        """
        actor = await self._resolver.resolve(actor_id, session)
        details = parse_details(kind, payload)

        record = FinanceRecord(
            kind=kind,
            organization_key=actor.organization_key,
            author_id=actor.id,
            author_display=author_display(actor, self._settings),
            details=details,
        )
        if actor.is_owner:
            record.approval_state = ApprovalState.APPROVED
            record.approved_by = actor.id
            record.approved_at = record.created_at

        try:
            record = await self._store.insert_record(StoreContext(uid=actor.id), record)
        except StorageError as e:
            error = translate_storage_error(e, record.id)
            await self._reject(actor, kind, record.id, error, cause=e)
            raise error

        await self._audit.log_record_proposed(record)
        if record.approval_state == ApprovalState.PENDING:
            await self._notifier.emit(record, NotificationType.RECORD_SUBMITTED)
        return record

    async def update(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        payload: Any,
        expected_version: Optional[int] = None,
        session: Optional[AuthSession] = None,
    ) -> FinanceRecord:
        """
        Edit a record's kind-specific fields.

        The payload may be partial; missing fields keep their values.
        Common fields (state, author, organization) are never read
        from it.

        Raises:
            ForbiddenError: Actor is neither author nor organization owner
            StaleWriteError: expected_version is outdated, or a concurrent
                write won the race
        """
        actor = await self._resolver.resolve(actor_id, session)
        current = await self._load(actor, kind, record_id)

        if expected_version is not None and current.version != expected_version:
            error = StaleWriteError(
                f"Record {record_id} is at version {current.version}, expected {expected_version}",
                record_id=record_id,
                expected_version=expected_version,
                actual_version=current.version,
            )
            await self._reject(actor, kind, record_id, error)
            raise error

        merged = current.details.model_dump()
        merged.update(self._payload_dict(payload))
        merged["kind"] = kind.value
        updated = current.model_copy(update={"details": parse_details(kind, merged)})

        if not actor.is_owner:
            updated.approval_state = next_state(
                current.approval_state, ApprovalEvent.EDIT, record_id
            )
            updated.approved_by = None
            updated.approved_at = None

        written = await self._write(actor, updated, current.version)

        await self._audit.log_transition(
            AuditEventType.RECORD_UPDATED,
            written,
            actor.id,
            details={"previous_state": current.approval_state.value},
        )
        if not actor.is_owner:
            await self._notifier.emit(written, NotificationType.RECORD_RESUBMITTED)
        return written

    async def retract(
        self,
        actor_id: Optional[str],
        record_id: UUID,
        kind: RecordKind,
        session: Optional[AuthSession] = None,
    ) -> Outcome:
        """
        Delete (owner) or request deletion (delegate author).

        Returns:
            DELETED, DELETION_REQUESTED, or NOOP if the request was
            already pending or the record vanished concurrently
        """
        actor = await self._resolver.resolve(actor_id, session)
        current = await self._load(actor, kind, record_id)
        ctx = StoreContext(uid=actor.id)

        if actor.owns_organization(current.organization_key):
            try:
                deleted = await self._store.delete_record(ctx, kind, record_id)
            except StorageError as e:
                error = translate_storage_error(e, record_id)
                await self._reject(actor, kind, record_id, error, cause=e)
                raise error
            if not deleted:
                return Outcome.NOOP
            await self._audit.log_transition(AuditEventType.RECORD_DELETED, current, actor.id)
            return Outcome.DELETED

        if current.deletion_requested:
            return Outcome.NOOP

        flagged = current.model_copy(
            update={"deletion_requested": True, "deletion_requested_by": actor.id}
        )
        try:
            written = await self._store.update_record(ctx, flagged, current.version)
        except VersionConflictError as e:
            latest = await self._visibility.get_for_actor(actor, kind, record_id)
            if latest is not None and latest.deletion_requested:
                return Outcome.NOOP
            error = translate_storage_error(e, record_id)
            await self._reject(actor, kind, record_id, error, cause=e)
            raise error
        except StorageError as e:
            error = translate_storage_error(e, record_id)
            await self._reject(actor, kind, record_id, error, cause=e)
            raise error

        await self._audit.log_transition(AuditEventType.DELETION_REQUESTED, written, actor.id)
        await self._notifier.emit(written, NotificationType.DELETION_REQUESTED)
        return Outcome.DELETION_REQUESTED

    async def _load(self, actor: Actor, kind: RecordKind, record_id: UUID) -> FinanceRecord:
        """
        The current record, if the actor may modify it.

        A record the actor cannot see is reported as forbidden, so a
        missing record and a foreign one look the same.
        """
        current = await self._visibility.get_for_actor(actor, kind, record_id)
        if current is None or not may_modify(actor, current):
            error = ForbiddenError(
                f"Record {record_id} is not accessible to {actor.id}", record_id
            )
            await self._reject(actor, kind, record_id, error)
            raise error
        return current

    async def _write(
        self,
        actor: Actor,
        record: FinanceRecord,
        expected_version: int,
    ) -> FinanceRecord:
        try:
            return await self._store.update_record(
                StoreContext(uid=actor.id), record, expected_version
            )
        except StorageError as e:
            error = translate_storage_error(e, record.id)
            await self._reject(actor, record.kind, record.id, error, cause=e)
            raise error

    async def _reject(
        self,
        actor: Actor,
        kind: RecordKind,
        record_id: Optional[UUID],
        error: TeamLedgerError,
        cause: Optional[StorageError] = None,
    ) -> None:
        if isinstance(error, UnavailableError) and cause is not None:
            await self._audit.log_store_failure(cause, kind.value, actor.id, record_id)
            return
        if isinstance(error, StaleWriteError):
            event_type = AuditEventType.STALE_WRITE_REJECTED
        elif isinstance(error, UnavailableError):
            event_type = AuditEventType.STORE_UNAVAILABLE
        else:
            event_type = AuditEventType.MUTATION_FORBIDDEN
        await self._audit.log_rejection(
            event_type,
            kind.value,
            actor.id,
            str(error),
            record_id=record_id,
        )

    @staticmethod
    def _payload_dict(payload: Any) -> dict:
        if hasattr(payload, "model_dump"):
            data = payload.model_dump(exclude_unset=True)
        else:
            data = dict(payload)
        data.pop("kind", None)
        return data
