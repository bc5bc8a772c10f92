"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

CRITICAL: Record operations take a StoreContext naming the authenticated
actor. Every backend evaluates the row policies in
teamledger.services.storage.policies against that context itself, so
organization isolation never depends on the calling layer alone.

The interface is intentionally simple - we're not building a full ORM.
Just the operations the approval engine needs.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from teamledger.models.actor import DelegateRosterEntry, RoleRecord
from teamledger.models.audit import AuditEvent
from teamledger.models.notification import StoredNotification
from teamledger.models.record import (
    ApprovalState,
    FinanceRecord,
    RecordFilters,
    RecordKind,
)


class StoreContext(BaseModel):
    """The authenticated actor a store call is made on behalf of."""
    model_config = ConfigDict(frozen=True)

    uid: str = Field(..., min_length=1)


class RecordStoreInterface(ABC):
    """
    Abstract interface for approval-shaped records.

    One logical table per RecordKind. All reads are filtered by the
    SELECT policy; writes are checked by INSERT/UPDATE/DELETE policies.
    """

    @abstractmethod
    async def insert_record(
        self,
        ctx: StoreContext,
        record: FinanceRecord,
    ) -> FinanceRecord:
        """
        Insert a new record.

        Raises:
            PolicyViolationError: If the INSERT policy rejects the row
            DuplicateError: If a record with the same id exists
        """
        pass

    @abstractmethod
    async def get_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinanceRecord]:
        """
        Retrieve a record by id.

        Returns:
            The record if it exists and is visible to ctx, None otherwise
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        organization_key: Optional[str] = None,
        author_id: Optional[str] = None,
        approval_state: Optional[ApprovalState] = None,
    ) -> list[FinanceRecord]:
        """
        List visible records of a kind, narrowed by equality predicates.

        Args:
            ctx: Actor the query runs as
            kind: Record kind (table)
            organization_key: Only rows of this organization
            author_id: Only rows written by this author
            approval_state: Only rows in this state

        Returns:
            Matching records (unordered)
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        ctx: StoreContext,
        record: FinanceRecord,
        expected_version: int,
    ) -> FinanceRecord:
        """
        Atomically replace a record if its stored version matches.

        The stored copy gets version = expected_version + 1.

        Raises:
            NotFoundError: If the row is missing or not visible to ctx
            VersionConflictError: If the stored version differs
            PolicyViolationError: If the UPDATE check rejects the new row
        """
        pass

    @abstractmethod
    async def delete_record(
        self,
        ctx: StoreContext,
        kind: RecordKind,
        record_id: UUID,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Hard-delete a record.

        Returns:
            True if a row was deleted, False if none was visible

        Raises:
            VersionConflictError: If expected_version is given and differs
        """
        pass

    @abstractmethod
    async def fund_totals(
        self,
        ctx: StoreContext,
        organization_key: str,
        filters: Optional[RecordFilters] = None,
    ) -> tuple[Decimal, Decimal]:
        """
        (approved deposits, approved withdrawals) of an organization's fund.

        An aggregate over every approved fund row of the organization,
        including rows the caller's SELECT policy hides. Only totals
        are returned.

        Raises:
            PolicyViolationError: If ctx is not a member of the organization
        """
        pass


class DirectoryStoreInterface(ABC):
    """
    Identity tables: role records, delegate roster and sequences.

    These are read by the identity resolver before an actor exists,
    so they are accessed with service-level rights. The provisioning
    layer performs the owner checks.
    """

    @abstractmethod
    async def get_role_record(self, actor_id: str) -> Optional[RoleRecord]:
        pass

    @abstractmethod
    async def save_role_record(self, record: RoleRecord) -> RoleRecord:
        """Insert or replace the role record for record.actor_id."""
        pass

    @abstractmethod
    async def find_roster_entry(self, delegate_id: str) -> Optional[DelegateRosterEntry]:
        """Find the roster entry linked to a delegate account."""
        pass

    @abstractmethod
    async def get_roster_entry(self, roster_id: UUID) -> Optional[DelegateRosterEntry]:
        pass

    @abstractmethod
    async def list_roster(self, owner_id: str) -> list[DelegateRosterEntry]:
        """Roster entries of an owner, newest first."""
        pass

    @abstractmethod
    async def save_roster_entry(self, entry: DelegateRosterEntry) -> DelegateRosterEntry:
        """Insert or replace a roster entry."""
        pass

    @abstractmethod
    async def delete_roster_entry(self, roster_id: UUID) -> bool:
        pass

    @abstractmethod
    async def next_sequence_value(self, organization_key: str, name: str) -> int:
        """
        Atomically increment and return a per-organization counter.

        The first call for a (organization_key, name) pair returns 1.
        """
        pass


class NotificationStorageInterface(ABC):
    """Owner inbox for notifications."""

    @abstractmethod
    async def append_notification(self, notification: StoredNotification) -> bool:
        pass

    @abstractmethod
    async def list_notifications(self, organization_key: str) -> list[StoredNotification]:
        """Notifications of an organization, newest first."""
        pass

    @abstractmethod
    async def mark_notification_read(self, organization_key: str, notification_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_notification(self, organization_key: str, notification_id: UUID) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or not visible to the caller)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class VersionConflictError(StorageError):
    """Conditional write lost: the stored version is not the expected one."""

    def __init__(self, message: str, expected_version: Optional[int], actual_version: int):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class PolicyViolationError(StorageError):
    """A row policy rejected the write."""

    def __init__(self, message: str, policy_name: str):
        super().__init__(message)
        self.policy_name = policy_name


class StoreUnavailableError(StorageError):
    """Could not connect to storage backend."""
    pass
