"""
Audit Logger

DESIGN DECISION: Every identity decision, record transition and rejected
mutation is logged. This provides:
1. Complete traceability of who proposed and who approved
2. Debugging capability when concurrent approvers collide
3. The owner can review the history of any record

The audit logger:
- Is async, like the storage it writes to
- Gracefully handles failures (a failed audit write never fails the
  operation that produced it)
- Separates store outages from unexpected storage errors
"""

from typing import Optional
from uuid import UUID

import structlog

from teamledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from teamledger.models.record import FinanceRecord
from teamledger.services.storage import (
    AuditStorageInterface,
    StorageError,
    StoreUnavailableError,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The store's audit table (for persistence and owner review)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("teamledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_identity_resolved(
        self,
        actor_id: str,
        role: str,
        organization_key: str,
        source: str,
    ) -> None:
        event = AuditEventBuilder.identity_resolved(
            actor_id=actor_id,
            role=role,
            organization_key=organization_key,
            source=source,
        )
        await self.log(event)

    async def log_identity_unresolved(self, actor_id: Optional[str], reason: str) -> None:
        await self.log(AuditEventBuilder.identity_unresolved(actor_id, reason))

    async def log_role_assigned(
        self,
        actor_id: str,
        role: str,
        organization_key: str,
        assigned_by: str,
        reason: str,
    ) -> None:
        event = AuditEventBuilder.role_assigned(
            actor_id=actor_id,
            role=role,
            organization_key=organization_key,
            assigned_by=assigned_by,
            reason=reason,
        )
        await self.log(event)

    async def log_delegate_change(
        self,
        event_type: AuditEventType,
        owner_id: str,
        roster_id: UUID,
        name: str,
        delegate_id: Optional[str] = None,
    ) -> None:
        event = AuditEventBuilder.delegate_change(
            event_type=event_type,
            owner_id=owner_id,
            roster_id=roster_id,
            name=name,
            delegate_id=delegate_id,
        )
        await self.log(event)

    async def log_record_proposed(
        self,
        record: FinanceRecord,
    ) -> None:
        event = AuditEventBuilder.record_proposed(
            record_id=record.id,
            kind=record.kind.value,
            actor_id=record.author_id,
            organization_key=record.organization_key,
            approval_state=record.approval_state.value,
        )
        await self.log(event)

    async def log_transition(
        self,
        event_type: AuditEventType,
        record: FinanceRecord,
        actor_id: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a record lifecycle step (update, approve, delete, ...)."""
        payload = {"approval_state": record.approval_state.value}
        payload.update(details or {})
        event = AuditEventBuilder.record_transition(
            event_type=event_type,
            record_id=record.id,
            kind=record.kind.value,
            actor_id=actor_id,
            organization_key=record.organization_key,
            version=record.version,
            details=payload,
        )
        await self.log(event)

    async def log_rejection(
        self,
        event_type: AuditEventType,
        kind: str,
        actor_id: Optional[str],
        reason: str,
        record_id: Optional[UUID] = None,
    ) -> None:
        """Log a refused mutation (forbidden, stale, invalid transition)."""
        event = AuditEventBuilder.mutation_rejected(
            event_type=event_type,
            record_id=record_id,
            kind=kind,
            actor_id=actor_id,
            reason=reason,
        )
        await self.log(event)

    async def log_fund_warning(
        self,
        actor_id: str,
        organization_key: str,
        amount: str,
        balance: str,
        record_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.fund_withdrawal_warning(
            actor_id=actor_id,
            organization_key=organization_key,
            amount=amount,
            balance=balance,
            record_id=record_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        actor_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
        await self.log(event)

    async def log_store_failure(
        self,
        error: StorageError,
        entity_type: str,
        actor_id: Optional[str],
        entity_id: Optional[UUID] = None,
    ) -> None:
        """
        Log a storage error that surfaced as UnavailableError.

        An unreachable store is STORE_UNAVAILABLE; any other storage
        error reaching this point is unexpected and is a SYSTEM_ERROR.
        """
        if isinstance(error, StoreUnavailableError):
            await self.log_rejection(
                AuditEventType.STORE_UNAVAILABLE,
                entity_type,
                actor_id,
                str(error),
                record_id=entity_id,
            )
        else:
            await self.log_error(
                type(error).__name__,
                str(error),
                actor_id=actor_id,
                entity_type=entity_type,
                entity_id=entity_id,
            )
