"""
Audit Models for TeamLedger

Every identity decision, record transition and rejected mutation is
logged for audit purposes. This provides:
1. A trail of who proposed, approved, declined or deleted what
2. Debugging information when concurrent approvers collide
3. Accountability for the owner/delegate split

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from teamledger.models.actor import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the approval lifecycle has its own event type.
    """
    # Identity
    IDENTITY_RESOLVED = "identity_resolved"
    IDENTITY_UNRESOLVED = "identity_unresolved"
    ROLE_ASSIGNED = "role_assigned"
    DELEGATE_ADDED = "delegate_added"
    DELEGATE_LINKED = "delegate_linked"
    DELEGATE_REMOVED = "delegate_removed"

    # Record lifecycle
    RECORD_PROPOSED = "record_proposed"
    RECORD_UPDATED = "record_updated"
    RECORD_APPROVED = "record_approved"
    RECORD_DECLINED = "record_declined"
    RECORD_DELETED = "record_deleted"
    DELETION_REQUESTED = "deletion_requested"
    DELETION_CONFIRMED = "deletion_confirmed"
    DELETION_CANCELLED = "deletion_cancelled"

    # Rejected mutations
    MUTATION_FORBIDDEN = "mutation_forbidden"
    STALE_WRITE_REJECTED = "stale_write_rejected"
    INVALID_TRANSITION = "invalid_transition"

    # Ledger
    FUND_WITHDRAWAL_WARNING = "fund_withdrawal_warning"

    # System events
    SYSTEM_ERROR = "system_error"
    STORE_UNAVAILABLE = "store_unavailable"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who and where
    actor_id: Optional[str] = Field(
        default=None,
        description="Actor that triggered the event"
    )
    organization_key: Optional[str] = Field(
        default=None,
        description="Organization the event belongs to"
    )

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'finance_entry', 'delegate')"
    )
    entity_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor_id": self.actor_id,
            "organization_key": self.organization_key,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, actor_id, organization_key,
         entity_type, entity_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.actor_id or "",
            self.organization_key or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_proposed(record_id, kind, actor_id, org, state)
        event = AuditEventBuilder.record_transition(
            AuditEventType.RECORD_APPROVED, record_id, kind, actor_id, org
        )
    """

    @staticmethod
    def identity_resolved(
        actor_id: str,
        role: str,
        organization_key: str,
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IDENTITY_RESOLVED,
            severity=AuditSeverity.DEBUG,
            actor_id=actor_id,
            organization_key=organization_key,
            entity_type="actor",
            description=f"Resolved {actor_id} as {role}",
            details={"role": role, "source": source},
        )

    @staticmethod
    def identity_unresolved(actor_id: Optional[str], reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IDENTITY_UNRESOLVED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type="actor",
            description="Identity could not be resolved",
            details={"reason": reason},
        )

    @staticmethod
    def role_assigned(
        actor_id: str,
        role: str,
        organization_key: str,
        assigned_by: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLE_ASSIGNED,
            actor_id=assigned_by,
            organization_key=organization_key,
            entity_type="actor",
            description=f"Role {role} assigned to {actor_id}",
            details={"subject": actor_id, "role": role, "reason": reason},
            is_user_action=assigned_by != "provisioning",
        )

    @staticmethod
    def delegate_change(
        event_type: AuditEventType,
        owner_id: str,
        roster_id: UUID,
        name: str,
        delegate_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            actor_id=owner_id,
            organization_key=owner_id,
            entity_type="delegate",
            entity_id=roster_id,
            description=f"Delegate {name}: {event_type.value.replace('_', ' ')}",
            details={"name": name, "delegate_id": delegate_id},
            is_user_action=True,
        )

    @staticmethod
    def record_proposed(
        record_id: UUID,
        kind: str,
        actor_id: str,
        organization_key: str,
        approval_state: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_PROPOSED,
            actor_id=actor_id,
            organization_key=organization_key,
            entity_type=kind,
            entity_id=record_id,
            description=f"New {kind} created as {approval_state}",
            details={"approval_state": approval_state},
            is_user_action=True,
        )

    @staticmethod
    def record_transition(
        event_type: AuditEventType,
        record_id: UUID,
        kind: str,
        actor_id: str,
        organization_key: str,
        version: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        payload = dict(details or {})
        if version is not None:
            payload["version"] = version
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            organization_key=organization_key,
            entity_type=kind,
            entity_id=record_id,
            description=f"{kind} {event_type.value.replace('_', ' ')}",
            details=payload,
            is_user_action=True,
        )

    @staticmethod
    def mutation_rejected(
        event_type: AuditEventType,
        record_id: Optional[UUID],
        kind: str,
        actor_id: Optional[str],
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type=kind,
            entity_id=record_id,
            description=f"Rejected: {reason}"[:500],
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def fund_withdrawal_warning(
        actor_id: str,
        organization_key: str,
        amount: str,
        balance: str,
        record_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FUND_WITHDRAWAL_WARNING,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            organization_key=organization_key,
            entity_type="fund_entry",
            entity_id=record_id,
            description=f"Withdrawal of {amount} exceeds fund balance {balance}",
            details={"amount": amount, "balance": balance},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        actor_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
