"""
In-Memory Storage Implementation

Used by tests and by the default "memory" backend.

DESIGN DECISION: One object implements every storage interface, so a
single instance behaves like one database with several tables. Every
read returns a deep copy; callers can never mutate stored rows in place.

CRITICAL: Each write is a synchronous critical section under a lock.
There is no await between the version check and the write, so a
compare-and-set is atomic even with many concurrent coroutines.
"""

import threading
from collections import defaultdict
from decimal import Decimal
from typing import Optional
from uuid import UUID

from teamledger.models.actor import DelegateRosterEntry, RoleRecord, utc_now
from teamledger.models.audit import AuditEvent
from teamledger.models.ledger import fund_totals
from teamledger.models.notification import StoredNotification
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    RecordFilters,
    RecordKind,
)
from teamledger.services.storage.interface import (
    AuditStorageInterface,
    DirectoryStoreInterface,
    DuplicateError,
    NotFoundError,
    NotificationStorageInterface,
    PolicyViolationError,
    RecordStoreInterface,
    StoreContext,
    StoreUnavailableError,
    VersionConflictError,
)
from teamledger.services.storage.policies import (
    FUND_TOTALS_POLICY,
    PolicyContext,
    PolicyOperation,
    policy_for,
)


class InMemoryStore(
    RecordStoreInterface,
    DirectoryStoreInterface,
    NotificationStorageInterface,
    AuditStorageInterface,
):
    """Thread-safe in-memory store with row policies."""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: dict[RecordKind, dict[UUID, FinanceRecord]] = {
            kind: {} for kind in RecordKind
        }
        self._role_records: dict[str, RoleRecord] = {}
        self._roster: dict[UUID, DelegateRosterEntry] = {}
        self._sequences: dict[tuple[str, str], int] = defaultdict(int)
        self._notifications: dict[str, list[StoredNotification]] = defaultdict(list)
        self._audit: list[AuditEvent] = []
        self._available = True

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def set_available(self, available: bool) -> None:
        """Simulate the store becoming (un)reachable."""
        self._available = available

    def raw_record(self, kind: RecordKind, record_id: UUID) -> Optional[FinanceRecord]:
        """Read a row without any policy (service-level access)."""
        with self._lock:
            row = self._records[kind].get(record_id)
            return row.model_copy(deep=True) if row else None

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError("In-memory store is marked unavailable")

    def _policy_context(self, ctx: StoreContext) -> PolicyContext:
        reports_to = frozenset(
            entry.owner_id
            for entry in self._roster.values()
            if entry.delegate_id == ctx.uid
        )
        return PolicyContext(uid=ctx.uid, reports_to=reports_to)

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def insert_record(self, ctx: StoreContext, record: FinanceRecord) -> FinanceRecord:
        self._ensure_available()
        with self._lock:
            policy = policy_for(PolicyOperation.INSERT)
            if not policy.accepts(self._policy_context(ctx), record):
                raise PolicyViolationError(
                    f"Insert of {record.kind.value} {record.id} rejected",
                    policy.name,
                )
            table = self._records[record.kind]
            if record.id in table:
                raise DuplicateError(f"Record already exists: {record.id}")
            table[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def get_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinanceRecord]:
        self._ensure_available()
        with self._lock:
            row = self._records[kind].get(record_id)
            if row is None:
                return None
            if not policy_for(PolicyOperation.SELECT).admits(self._policy_context(ctx), row):
                return None
            return row.model_copy(deep=True)

    async def list_records(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        organization_key: Optional[str] = None,
        author_id: Optional[str] = None,
        approval_state: Optional[ApprovalState] = None,
    ) -> list[FinanceRecord]:
        self._ensure_available()
        with self._lock:
            policy = policy_for(PolicyOperation.SELECT)
            pctx = self._policy_context(ctx)
            rows = []
            for row in self._records[kind].values():
                if not policy.admits(pctx, row):
                    continue
                if organization_key is not None and row.organization_key != organization_key:
                    continue
                if author_id is not None and row.author_id != author_id:
                    continue
                if approval_state is not None and row.approval_state != approval_state:
                    continue
                rows.append(row.model_copy(deep=True))
            return rows

    async def update_record(
        self,
        ctx: StoreContext,
        record: FinanceRecord,
        expected_version: int,
    ) -> FinanceRecord:
        self._ensure_available()
        with self._lock:
            policy = policy_for(PolicyOperation.UPDATE)
            pctx = self._policy_context(ctx)
            table = self._records[record.kind]
            stored = table.get(record.id)
            if stored is None or not policy.admits(pctx, stored):
                raise NotFoundError(f"Record not found: {record.id}")
            if stored.version != expected_version:
                raise VersionConflictError(
                    f"Record {record.id} is at version {stored.version}, "
                    f"expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=stored.version,
                )
            if not policy.accepts(pctx, record, stored):
                raise PolicyViolationError(
                    f"Update of {record.kind.value} {record.id} rejected",
                    policy.name,
                )
            written = record.model_copy(
                update={"version": expected_version + 1, "updated_at": utc_now()},
                deep=True,
            )
            table[record.id] = written
            return written.model_copy(deep=True)

    async def delete_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
        expected_version: Optional[int] = None,
    ) -> bool:
        self._ensure_available()
        with self._lock:
            table = self._records[kind]
            stored = table.get(record_id)
            if stored is None:
                return False
            if not policy_for(PolicyOperation.DELETE).admits(self._policy_context(ctx), stored):
                return False
            if expected_version is not None and stored.version != expected_version:
                raise VersionConflictError(
                    f"Record {record_id} is at version {stored.version}, "
                    f"expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=stored.version,
                )
            del table[record_id]
            return True

    async def fund_totals(
        self,
        ctx: StoreContext,
        organization_key: str,
        filters: Optional[RecordFilters] = None,
    ) -> tuple[Decimal, Decimal]:
        self._ensure_available()
        with self._lock:
            if not self._policy_context(ctx).member_of(organization_key):
                raise PolicyViolationError(
                    f"{ctx.uid} may not read fund totals of {organization_key}",
                    FUND_TOTALS_POLICY,
                )
            rows = [
                row for row in self._records[RecordKind.FUND_ENTRY].values()
                if row.organization_key == organization_key
                and (filters is None or filters.matches(row))
            ]
            return fund_totals(rows)

    # =========================================================================
    # DIRECTORY
    # =========================================================================

    async def get_role_record(self, actor_id: str) -> Optional[RoleRecord]:
        self._ensure_available()
        with self._lock:
            record = self._role_records.get(actor_id)
            return record.model_copy() if record else None

    async def save_role_record(self, record: RoleRecord) -> RoleRecord:
        self._ensure_available()
        with self._lock:
            self._role_records[record.actor_id] = record.model_copy()
            return record.model_copy()

    async def find_roster_entry(self, delegate_id: str) -> Optional[DelegateRosterEntry]:
        self._ensure_available()
        with self._lock:
            for entry in self._roster.values():
                if entry.delegate_id == delegate_id:
                    return entry.model_copy()
            return None

    async def get_roster_entry(self, roster_id: UUID) -> Optional[DelegateRosterEntry]:
        self._ensure_available()
        with self._lock:
            entry = self._roster.get(roster_id)
            return entry.model_copy() if entry else None

    async def list_roster(self, owner_id: str) -> list[DelegateRosterEntry]:
        self._ensure_available()
        with self._lock:
            entries = [e.model_copy() for e in self._roster.values() if e.owner_id == owner_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    async def save_roster_entry(self, entry: DelegateRosterEntry) -> DelegateRosterEntry:
        self._ensure_available()
        with self._lock:
            if entry.delegate_id:
                for other in self._roster.values():
                    if other.delegate_id == entry.delegate_id and other.id != entry.id:
                        raise DuplicateError(
                            f"Account {entry.delegate_id} is already on a roster"
                        )
            self._roster[entry.id] = entry.model_copy()
            return entry.model_copy()

    async def delete_roster_entry(self, roster_id: UUID) -> bool:
        self._ensure_available()
        with self._lock:
            return self._roster.pop(roster_id, None) is not None

    async def next_sequence_value(self, organization_key: str, name: str) -> int:
        self._ensure_available()
        with self._lock:
            self._sequences[(organization_key, name)] += 1
            return self._sequences[(organization_key, name)]

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def append_notification(self, notification: StoredNotification) -> bool:
        self._ensure_available()
        with self._lock:
            self._notifications[notification.organization_key].append(notification.model_copy())
            return True

    async def list_notifications(self, organization_key: str) -> list[StoredNotification]:
        self._ensure_available()
        with self._lock:
            items = [n.model_copy() for n in self._notifications.get(organization_key, [])]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items

    async def mark_notification_read(self, organization_key: str, notification_id: UUID) -> bool:
        self._ensure_available()
        with self._lock:
            for item in self._notifications.get(organization_key, []):
                if item.id == notification_id:
                    item.is_read = True
                    return True
            return False

    async def delete_notification(self, organization_key: str, notification_id: UUID) -> bool:
        self._ensure_available()
        with self._lock:
            items = self._notifications.get(organization_key, [])
            for index, item in enumerate(items):
                if item.id == notification_id:
                    del items[index]
                    return True
            return False

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def append_event(self, event: AuditEvent) -> bool:
        self._ensure_available()
        with self._lock:
            self._audit.append(event.model_copy(deep=True))
            return True

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        with self._lock:
            events = [
                e.model_copy(deep=True)
                for e in self._audit
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        with self._lock:
            events = [e.model_copy(deep=True) for e in self._audit]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
