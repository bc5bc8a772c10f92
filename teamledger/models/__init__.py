"""
Data Models Package

This package contains all Pydantic models used in TeamLedger.
All data flowing through the engine must conform to these schemas.
"""

from teamledger.models.actor import (
    Actor,
    AuthSession,
    DelegateRosterEntry,
    Role,
    RoleRecord,
    RoleSource,
)
from teamledger.models.record import (
    ApprovalState,
    ClientDetails,
    EntryDetails,
    EntryType,
    FinanceRecord,
    FundDetails,
    FundDirection,
    InvestmentDetails,
    Outcome,
    PaymentStatus,
    RecordDetails,
    RecordFilters,
    RecordKind,
    parse_details,
)
from teamledger.models.ledger import (
    FundBalance,
    FundWithdrawalResult,
    LedgerSnapshot,
    MonthlyTotals,
    WithdrawalCheck,
)
from teamledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from teamledger.models.notification import (
    NotificationEvent,
    NotificationType,
    StoredNotification,
)
from teamledger.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Identity models
    "Actor",
    "AuthSession",
    "DelegateRosterEntry",
    "Role",
    "RoleRecord",
    "RoleSource",
    # Record models
    "ApprovalState",
    "ClientDetails",
    "EntryDetails",
    "EntryType",
    "FinanceRecord",
    "FundDetails",
    "FundDirection",
    "InvestmentDetails",
    "Outcome",
    "PaymentStatus",
    "RecordDetails",
    "RecordFilters",
    "RecordKind",
    "parse_details",
    # Ledger models
    "FundBalance",
    "FundWithdrawalResult",
    "LedgerSnapshot",
    "MonthlyTotals",
    "WithdrawalCheck",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Notification models
    "NotificationEvent",
    "NotificationType",
    "StoredNotification",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
