"""
Visibility Filter

Decides which records an actor may read.

Rules, in priority order:
1. An owner sees every record of their organization, in any state,
   unless the caller restricts the approval state.
2. A delegate sees only records they wrote, in any state.
3. Dashboards and summaries restrict to approved records.

Filters (dates, month/year, category, search, ...) only ever narrow the
role-scoped set. An unresolved actor gets an empty result, never an
error that would reveal whether records exist.

CRITICAL: The store applies its own SELECT policy to the same query.
This filter is the calling-layer half of that check, not a replacement.
"""

from typing import Optional
from uuid import UUID

from teamledger.errors import translate_storage_error
from teamledger.identity import IdentityResolver
from teamledger.models.actor import Actor, AuthSession
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    RecordFilters,
    RecordKind,
)
from teamledger.services.storage import (
    RecordStoreInterface,
    StorageError,
    StoreContext,
)


def can_see(actor: Actor, record: FinanceRecord) -> bool:
    """Role rule for a single record."""
    if actor.is_owner:
        return record.organization_key == actor.id
    return record.author_id == actor.id


def newest_first(records: list[FinanceRecord]) -> list[FinanceRecord]:
    return sorted(
        records,
        key=lambda r: (r.effective_date, r.created_at),
        reverse=True,
    )


class VisibilityFilter:
    """
    Role-scoped reads.

    Every public method takes the actor id explicitly; there is no
    ambient current user.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        resolver: IdentityResolver,
    ):
        self._store = store
        self._resolver = resolver

    async def list_visible(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> list[FinanceRecord]:
        """
        Records of a kind the actor may read, newest first.

        Raises:
            UnavailableError: The store could not be reached
        """
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is None:
            return []
        return await self.list_for_actor(actor, kind, filters)

    async def list_dashboard(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> list[FinanceRecord]:
        """Approved records only, as used by dashboards and totals."""
        filters = (filters or RecordFilters()).restricted_to(ApprovalState.APPROVED)
        return await self.list_visible(actor_id, kind, filters, session)

    async def list_pending_approvals(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        session: Optional[AuthSession] = None,
    ) -> list[FinanceRecord]:
        """
        Records waiting on someone.

        Owner: organization records that are pending or flagged for
        deletion. Delegate: their own pending records.
        """
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is None:
            return []
        records = await self.list_for_actor(actor, kind)
        if actor.is_owner:
            return [
                r for r in records
                if r.approval_state == ApprovalState.PENDING or r.deletion_requested
            ]
        return [r for r in records if r.approval_state == ApprovalState.PENDING]

    async def list_my_submissions(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        filters: Optional[RecordFilters] = None,
        session: Optional[AuthSession] = None,
    ) -> list[FinanceRecord]:
        """Records the actor wrote, in every state."""
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is None:
            return []
        records = await self.list_for_actor(actor, kind, filters)
        return [r for r in records if r.author_id == actor.id]

    async def get_visible(
        self,
        actor_id: Optional[str],
        kind: RecordKind,
        record_id: UUID,
        session: Optional[AuthSession] = None,
    ) -> Optional[FinanceRecord]:
        """One record, or None if it is missing or not visible."""
        actor = await self._resolver.resolve_or_none(actor_id, session)
        if actor is None:
            return None
        return await self.get_for_actor(actor, kind, record_id)

    async def list_for_actor(
        self,
        actor: Actor,
        kind: RecordKind,
        filters: Optional[RecordFilters] = None,
    ) -> list[FinanceRecord]:
        """list_visible() for an already-resolved actor."""
        filters = filters or RecordFilters()
        ctx = StoreContext(uid=actor.id)
        try:
            if actor.is_owner:
                rows = await self._store.list_records(
                    ctx,
                    kind,
                    organization_key=actor.id,
                    approval_state=filters.approval_state,
                )
            else:
                rows = await self._store.list_records(
                    ctx,
                    kind,
                    author_id=actor.id,
                    approval_state=filters.approval_state,
                )
        except StorageError as e:
            raise translate_storage_error(e)

        return newest_first([r for r in rows if can_see(actor, r) and filters.matches(r)])

    async def get_for_actor(
        self,
        actor: Actor,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinanceRecord]:
        try:
            record = await self._store.get_record(StoreContext(uid=actor.id), kind, record_id)
        except StorageError as e:
            raise translate_storage_error(e, record_id)
        if record is None or not can_see(actor, record):
            return None
        return record
